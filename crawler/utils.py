# crawler/utils.py
import logging
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

TWO_PLACES = Decimal("0.01")

# longer words first so "manat" is not left as "at"
_CURRENCY_RE = re.compile(
    r"(azn|manat|man\.?|₼|руб\.?|usd|eur|\$|€)", re.IGNORECASE
)
_NUMBER_RE = re.compile(r"\d[\d.,]*")

OUT_OF_STOCK_MARKERS = (
    "out of stock",
    "not in stock",
    "not available",
    "unavailable",
    "sold out",
    "stokda yoxdur",
    "yoxdur",
    "mövcud deyil",
    "нет в наличии",
    "отсутствует",
)


def utcnow():
    return datetime.now(timezone.utc)


def network_retry(logger, attempts=3, delay=2.0, exceptions=(Exception,)):
    """
    Build a tenacity retry controller for network calls.

    Waits grow linearly with the attempt number (delay, 2*delay, ...) and the
    last exception is re-raised once attempts are exhausted.

    Args:
        logger (logging.Logger): Logger used to report each retry
        attempts (int): Maximum number of attempts. Defaults to 3.
        delay (float): Base delay in seconds. Defaults to 2.0.
        exceptions (tuple): Exception types that trigger a retry

    Returns:
        tenacity.AsyncRetrying: Iterate with ``async for attempt in ...``

    Example:
        async for attempt in network_retry(logger):
            with attempt:
                return await client.get(url)
    """
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_incrementing(start=delay, increment=delay),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def _resolve_separators(number):
    if "," in number and "." in number:
        # whichever separator comes last is the decimal point
        if number.rfind(",") > number.rfind("."):
            return number.replace(".", "").replace(",", ".")
        return number.replace(",", "")

    sep = "," if "," in number else "." if "." in number else None
    if sep is None:
        return number

    parts = number.split(sep)
    if len(parts) == 2 and len(parts[1]) != 3:
        return f"{parts[0]}.{parts[1]}"
    if all(len(p) == 3 for p in parts[1:]):
        return "".join(parts)
    return "".join(parts[:-1]) + "." + parts[-1]


def parse_price(value):
    """
    Parse a shop price into an exact two-place Decimal.

    Accepts numbers from embedded JSON as well as display strings such as
    "2199,00 AZN", "1 299.99 ₼", "1.299,50 man." or "2,199 руб". Thousand
    separators, decimal comma or point, and currency words/symbols in English,
    Azerbaijani and Russian are tolerated.

    Args:
        value (str | int | float | Decimal | None): Raw price

    Returns:
        Decimal or None: Price quantized to 0.01, or None when nothing
            numeric can be read from the input.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        number = str(value)
    else:
        cleaned = _CURRENCY_RE.sub("", str(value))
        cleaned = re.sub(r"[\s\u00a0\u202f']", "", cleaned)
        m = _NUMBER_RE.search(cleaned)
        if not m:
            return None
        number = _resolve_separators(m.group(0).rstrip(".,"))

    try:
        price = Decimal(number)
    except InvalidOperation:
        return None
    if not price.is_finite():
        return None
    return price.quantize(TWO_PLACES)


def infer_in_stock(text):
    """
    Map availability text to an in-stock flag.

    Negative indicators in English, Azerbaijani or Russian mean out of stock.
    Anything else, including missing text, is treated as in stock.
    """
    if not text:
        return True
    lowered = text.lower()
    return not any(marker in lowered for marker in OUT_OF_STOCK_MARKERS)


def normalize_url(href, base_url):
    """Resolve a scraped href against the shop's base URL."""
    if not href:
        return None
    href = href.strip()
    base = base_url.rstrip("/")
    if href.startswith(("http://", "https://")):
        return href
    if href.startswith("//"):
        return "https:" + href
    if href.startswith("/"):
        return base + href
    return f"{base}/{href}"
