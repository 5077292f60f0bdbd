# handle.py
import base64
import logging
from typing import Any, Dict, Optional
from urllib.parse import urljoin

from playwright.async_api import (
    Playwright, Browser, BrowserContext, Page,
    Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError,
)

from utilities.errors import (
    ActionFailed, ElementNotFound, InvalidAction, NavigationFailed, NavigationTimeout, SessionEnded,
)
from .constants import (
    HEADLESS, VIEWPORT, BROWSER_ARGS, NAVIGATION_TIMEOUT, ACTION_TIMEOUT,
    CLICK_SETTLE_MS, DEFAULT_SCROLL_AMOUNT, SCROLL_DIRECTIONS, HIGHLIGHT_STYLE,
)
from .extractor import extract_page_content
from .models import (
    BrowserAction, PageContent, ClickAction, ScrollAction, NavigateAction, TypeAction, HighlightAction,
)

logger = logging.getLogger(__name__)


def _first_line(e: Exception) -> str:
    return str(e).split('\n', 1)[0]


class BrowserHandle:
    """One Chromium browser + page bound to a single demo session."""

    def __init__(self, browser: Browser, context: BrowserContext, page: Page, config: Optional[Dict[str, Any]] = None):
        self.browser = browser
        self.context = context
        self.page = page
        self.config = config or {}
        self.navigation_timeout = self.config.get('navigation_timeout', NAVIGATION_TIMEOUT)
        self.action_timeout = self.config.get('action_timeout', ACTION_TIMEOUT)
        self._closed = False

    @classmethod
    async def launch(cls, playwright: Playwright, config: Optional[Dict[str, Any]] = None) -> "BrowserHandle":
        config = config or {}
        headless = not config.get('headful', not HEADLESS)
        browser = await playwright.chromium.launch(headless=headless, args=BROWSER_ARGS)
        try:
            context = await browser.new_context(viewport=config.get('viewport', VIEWPORT))
            page = await context.new_page()
        except Exception:
            await browser.close()
            raise
        logger.info(f"Browser launched (headless={headless})")
        return cls(browser, context, page, config)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def url(self) -> str:
        return self.page.url

    @property
    def is_alive(self) -> bool:
        return not self._closed and self.browser.is_connected() and not self.page.is_closed()

    def _ensure_open(self):
        if self._closed:
            raise SessionEnded("browser handle is closed")

    async def navigate(self, url: str):
        self._ensure_open()
        # Relative URLs resolve against the current page
        url = urljoin(self.page.url or "", url)
        logger.info(f"Navigating to {url}")
        try:
            await self.page.goto(url, wait_until='networkidle', timeout=self.navigation_timeout)
        except PlaywrightTimeoutError:
            raise NavigationTimeout(url, self.navigation_timeout)
        except PlaywrightError as e:
            if not self.is_alive:
                raise
            raise NavigationFailed(url, _first_line(e))

    async def _query(self, selector: str):
        try:
            element = await self.page.query_selector(selector)
        except PlaywrightError as e:
            if not self.is_alive:
                raise
            # Synthesized selectors are best-effort and may be invalid CSS
            raise ElementNotFound(selector, _first_line(e))
        if element is None:
            raise ElementNotFound(selector)
        return element

    async def click(self, selector: str):
        self._ensure_open()
        element = await self._query(selector)
        try:
            await element.click(timeout=self.action_timeout)
        except PlaywrightTimeoutError:
            raise ElementNotFound(selector, "element not clickable")
        except PlaywrightError as e:
            if not self.is_alive:
                raise
            raise ElementNotFound(selector, _first_line(e))
        # Wait for potential animations
        await self.page.wait_for_timeout(CLICK_SETTLE_MS)
        logger.info(f"Clicked {selector}")

    async def scroll(self, direction: str = 'down', amount: int = DEFAULT_SCROLL_AMOUNT):
        self._ensure_open()
        if direction not in SCROLL_DIRECTIONS:
            raise InvalidAction(f"scroll direction must be one of {SCROLL_DIRECTIONS}")
        delta = amount if direction == 'down' else -amount
        try:
            await self.page.evaluate("(delta) => window.scrollBy(0, delta)", delta)
        except PlaywrightError as e:
            if not self.is_alive:
                raise
            raise ActionFailed(f"Scroll {direction} failed ({_first_line(e)})")
        logger.info(f"Scrolled {direction} by {amount}")

    async def type(self, selector: str, text: str):
        self._ensure_open()
        element = await self._query(selector)
        try:
            await element.fill(text, timeout=self.action_timeout)
        except PlaywrightTimeoutError:
            raise ElementNotFound(selector, "element not editable")
        except PlaywrightError as e:
            if not self.is_alive:
                raise
            raise ElementNotFound(selector, _first_line(e))
        logger.info(f"Typed into {selector}")

    async def highlight(self, selector: Optional[str]):
        self._ensure_open()
        if not selector:
            return
        element = await self._query(selector)
        try:
            await element.evaluate(
                "(el, style) => { el.style.outline = style; el.scrollIntoView({block: 'center'}); }",
                HIGHLIGHT_STYLE,
            )
        except PlaywrightError as e:
            if not self.is_alive:
                raise
            raise ElementNotFound(selector, _first_line(e))
        logger.info(f"Highlighted {selector}")

    async def perform(self, action: BrowserAction):
        """Dispatch a BrowserAction to the matching primitive."""
        if isinstance(action, ClickAction):
            await self.click(action.target)
        elif isinstance(action, ScrollAction):
            await self.scroll(action.direction, action.amount)
        elif isinstance(action, NavigateAction):
            await self.navigate(action.url)
        elif isinstance(action, TypeAction):
            await self.type(action.target, action.text)
        elif isinstance(action, HighlightAction):
            await self.highlight(action.target)
        else:
            raise InvalidAction(f"Unsupported action: {action!r}")

    async def screenshot(self) -> str:
        self._ensure_open()
        data = await self.page.screenshot(full_page=False)
        return "data:image/png;base64," + base64.b64encode(data).decode('ascii')

    async def extract_content(self) -> PageContent:
        self._ensure_open()
        return await extract_page_content(self.page)

    async def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            await self.context.close()
        except PlaywrightError as e:
            logger.info(f"Context already closed: {e}")
        try:
            await self.browser.close()
        except PlaywrightError as e:
            logger.info(f"Browser already closed: {e}")
        logger.info("Browser closed")
