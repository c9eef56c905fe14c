# crawler/fetchers.py
import logging

import httpx
from httpx import AsyncClient
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .config import (
    FETCH_RETRIES,
    FETCH_RETRY_DELAY,
    FETCH_TIMEOUT,
    RENDER_SETTLE,
    RENDER_WAIT_TIMEOUT,
    RENDERED_FETCH_ENABLED,
    USER_AGENT,
)
from .errors import FetchError
from .utils import network_retry

logger = logging.getLogger("crawler")


class StaticFetcher:
    def __init__(self, client=None, retries=FETCH_RETRIES, retry_delay=FETCH_RETRY_DELAY):
        self.client = client or AsyncClient(
            timeout=FETCH_TIMEOUT,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
        self.retries = retries
        self.retry_delay = retry_delay

    async def close(self):
        await self.client.aclose()

    async def fetch(self, url):
        """
        Fetch a server-rendered page with retries.

        Transport errors and error status codes are retried up to ``retries``
        times with linear backoff (retry_delay, 2*retry_delay, ...).

        Args:
            url (str): Page URL

        Returns:
            str: Response body

        Raises:
            FetchError: When every attempt failed; wraps the last error.
        """
        try:
            async for attempt in network_retry(
                logger, self.retries, self.retry_delay, (httpx.HTTPError,)
            ):
                with attempt:
                    logger.debug(
                        f"GET {url} (attempt {attempt.retry_state.attempt_number}/{self.retries})"
                    )
                    r = await self.client.get(url)
                    r.raise_for_status()
                    return r.text
        except httpx.HTTPError as e:
            raise FetchError(url, e) from e


class RenderedFetcher:
    """
    Browser-engine fetch for JavaScript-populated listings.

    Chromium is launched lazily on the first fetch and owned by this object;
    ``close()`` releases the context, the browser and the playwright driver.
    """

    def __init__(
        self,
        user_agent=USER_AGENT,
        timeout=FETCH_TIMEOUT,
        settle=RENDER_SETTLE,
        retries=FETCH_RETRIES,
        retry_delay=FETCH_RETRY_DELAY,
    ):
        self.user_agent = user_agent
        self.timeout_ms = int(timeout * 1000)
        self.settle_ms = int(settle * 1000)
        self.retries = retries
        self.retry_delay = retry_delay
        self._playwright = None
        self._browser = None
        self._context = None

    async def _new_page(self):
        if self._browser is None:
            logger.info("Launching headless Chromium")
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=True)
            self._context = await self._browser.new_context(user_agent=self.user_agent)
        return await self._context.new_page()

    async def _open(self, page, url):
        try:
            async for attempt in network_retry(
                logger, self.retries, self.retry_delay, (PlaywrightError,)
            ):
                with attempt:
                    await page.goto(url, timeout=self.timeout_ms, wait_until="domcontentloaded")
        except PlaywrightError as e:
            raise FetchError(url, e) from e

    async def _scroll(self, page, pause_ms):
        # lazy-loaded cards only enter the DOM once scrolled into view
        await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
        await page.wait_for_timeout(pause_ms)
        await page.evaluate("window.scrollTo(0, 0)")
        await page.wait_for_timeout(pause_ms)

    async def fetch(self, url, wait_for=None, wait_timeout=RENDER_WAIT_TIMEOUT):
        """
        Load ``url`` in the browser and return the final markup.

        Args:
            url (str): Page URL
            wait_for (str, optional): CSS selector to wait for after load.
                Timing out only logs a warning; whatever rendered is returned.
            wait_timeout (float): Seconds to wait for ``wait_for``

        Raises:
            FetchError: Navigation failed after all retries.
        """
        page = await self._new_page()
        try:
            await self._open(page, url)
            if wait_for:
                try:
                    await page.wait_for_selector(wait_for, timeout=int(wait_timeout * 1000))
                except PlaywrightTimeoutError:
                    logger.warning(f"Timed out waiting for '{wait_for}' on {url}, using partial page")
                await self._scroll(page, self.settle_ms // 2)
            else:
                await page.wait_for_timeout(self.settle_ms * 2)
                await self._scroll(page, self.settle_ms)
            return await page.content()
        finally:
            await page.close()

    async def fetch_with_load_more(self, url, button_selector, max_clicks):
        """
        Load ``url`` and keep clicking a "load more" control.

        Stops after ``max_clicks`` or when the control is gone or hidden.
        """
        page = await self._new_page()
        try:
            await self._open(page, url)
            await page.wait_for_timeout(self.settle_ms * 2)
            for click in range(1, max_clicks + 1):
                button = await page.query_selector(button_selector)
                if button is None or not await button.is_visible():
                    logger.info(f"No more '{button_selector}' after {click - 1} clicks on {url}")
                    break
                await button.scroll_into_view_if_needed()
                await page.wait_for_timeout(self.settle_ms // 2)
                try:
                    await button.click(timeout=5000)
                except PlaywrightError:
                    await page.evaluate("(el) => el.click()", button)
                await page.wait_for_timeout(self.settle_ms * 3 // 2)
            await self._scroll(page, self.settle_ms // 2)
            return await page.content()
        finally:
            await page.close()

    async def close(self):
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._playwright = self._browser = self._context = None


class Fetchers:
    """
    Fetch resources owned by one shop's scraping task.

    Use as ``async with Fetchers() as fetchers:`` so the HTTP client and the
    browser (if one was launched) are released however the task ends.
    """

    def __init__(self, static=None, rendered=None, rendered_enabled=RENDERED_FETCH_ENABLED):
        self.static = static or StaticFetcher()
        if rendered is None and rendered_enabled:
            rendered = RenderedFetcher()
        self.rendered = rendered

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        try:
            if self.rendered is not None:
                await self.rendered.close()
        finally:
            await self.static.close()
