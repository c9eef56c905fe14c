# crawler/parsing.py
import json

from bs4 import BeautifulSoup


def soup_of(html):
    return BeautifulSoup(html, "lxml")


def first_text(element, selectors):
    """Stripped text of the first selector that yields non-empty text."""
    for selector in selectors:
        found = element.select_one(selector)
        if found is not None:
            text = found.get_text(" ", strip=True)
            if text:
                return text
    return None


def first_href(element, selectors):
    """First usable link, skipping anchors and javascript: pseudo-links."""
    for selector in selectors:
        for a in element.select(selector):
            href = (a.get("href") or "").strip()
            if href and not href.startswith("#") and not href.lower().startswith("javascript:"):
                return href
    return None


def first_image(element, selectors):
    """Prefer lazy-load ``data-src`` over ``src``; placeholder images are ignored."""
    for selector in selectors:
        for img in element.select(selector):
            for attr in ("data-src", "src"):
                src = (img.get(attr) or "").strip()
                if src and "placeholder" not in src.lower() and not src.startswith("data:"):
                    return src
    return None


def json_blob(soup, selector):
    """Parse the JSON body of an embedded <script> tag, or None."""
    script = soup.select_one(selector)
    if script is None or not script.string:
        return None
    try:
        return json.loads(script.string)
    except ValueError:
        return None


def dig(data, *path):
    """Walk nested dicts; None as soon as a key is missing."""
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data
