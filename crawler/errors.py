# crawler/errors.py

class PriceAggregatorError(Exception):
    """Base class for errors raised by the ingestion pipeline."""

class FetchError(PriceAggregatorError):
    """A page could not be fetched after all retry attempts."""

    def __init__(self, url, cause=None):
        self.url = url
        self.cause = cause
        super().__init__(f"Failed to fetch {url}: {cause}")

class UnknownShopError(PriceAggregatorError):
    def __init__(self, code):
        self.code = code
        super().__init__(f"Unknown shop: {code}")

class ShopNotScrapableError(PriceAggregatorError):
    """Shop exists but is inactive or has no registered scraper."""

    def __init__(self, code, reason):
        self.code = code
        self.reason = reason
        super().__init__(f"Shop {code} cannot be scraped: {reason}")
