"""
ブラウザハンドルとセッションレジストリのテスト
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock, Mock, patch
import sys
import os

# プロジェクトルートをPythonパスに追加
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from browser.handle import BrowserHandle
from browser.models import ClickAction, ScrollAction, NavigateAction, TypeAction, HighlightAction
from browser.registry import SessionRegistry
from utilities.errors import (
    ActionFailed, AlreadyExists, ElementNotFound, InvalidAction, NavigationFailed, NavigationTimeout, NotFound,
    SessionEnded,
)
from conftest import FakeHandle


@pytest.fixture
def mock_page():
    """Playwright Pageのモック"""
    page = AsyncMock()
    page.url = "https://x.test/"
    page.is_closed = Mock(return_value=False)
    page.query_selector.return_value = AsyncMock()
    return page


@pytest.fixture
def handle(mock_page):
    browser = AsyncMock()
    browser.is_connected = Mock(return_value=True)
    context = AsyncMock()
    return BrowserHandle(browser, context, mock_page, {'navigation_timeout': 5000})


class TestBrowserHandle:
    """BrowserHandleのテスト"""

    @pytest.mark.asyncio
    async def test_navigate_waits_for_networkidle(self, handle, mock_page):
        await handle.navigate("https://x.test/about")
        mock_page.goto.assert_awaited_once_with("https://x.test/about", wait_until='networkidle', timeout=5000)

    @pytest.mark.asyncio
    async def test_navigate_timeout(self, handle, mock_page):
        mock_page.goto.side_effect = PlaywrightTimeoutError("Timeout 5000ms exceeded")
        with pytest.raises(NavigationTimeout) as exc_info:
            await handle.navigate("https://slow.test")
        assert exc_info.value.url == "https://slow.test"

    @pytest.mark.asyncio
    async def test_click_missing_element(self, handle, mock_page):
        mock_page.query_selector.return_value = None
        with pytest.raises(ElementNotFound) as exc_info:
            await handle.click("#missing")
        assert exc_info.value.selector == "#missing"

    @pytest.mark.asyncio
    async def test_click_invalid_selector(self, handle, mock_page):
        """不正なCSSセレクタも要素なしとして扱う"""
        mock_page.query_selector.side_effect = PlaywrightError("Unexpected token \"$\"\nwhile parsing selector")
        with pytest.raises(ElementNotFound):
            await handle.click("div.$bad")

    @pytest.mark.asyncio
    async def test_query_error_on_dead_browser_propagates(self, handle, mock_page):
        handle.browser.is_connected.return_value = False
        mock_page.query_selector.side_effect = PlaywrightError("Target closed")
        with pytest.raises(PlaywrightError):
            await handle.click("#a")

    @pytest.mark.asyncio
    async def test_click_success(self, handle, mock_page):
        element = AsyncMock()
        mock_page.query_selector.return_value = element
        await handle.click("button#go")
        element.click.assert_awaited_once()
        mock_page.wait_for_timeout.assert_awaited_once_with(1000)

    @pytest.mark.asyncio
    async def test_click_not_actionable(self, handle, mock_page):
        element = AsyncMock()
        element.click.side_effect = PlaywrightTimeoutError("not visible")
        mock_page.query_selector.return_value = element
        with pytest.raises(ElementNotFound):
            await handle.click("button#hidden")

    @pytest.mark.asyncio
    async def test_type_fills_element(self, handle, mock_page):
        element = AsyncMock()
        mock_page.query_selector.return_value = element
        await handle.type("input[name=q]", "hello")
        element.fill.assert_awaited_once_with("hello", timeout=handle.action_timeout)

    @pytest.mark.asyncio
    async def test_scroll(self, handle, mock_page):
        await handle.scroll("up", 200)
        assert mock_page.evaluate.call_args[0][1] == -200
        with pytest.raises(InvalidAction):
            await handle.scroll("sideways", 10)

    @pytest.mark.asyncio
    async def test_navigate_resolves_relative_url(self, handle, mock_page):
        await handle.navigate("/pricing")
        assert mock_page.goto.call_args[0][0] == "https://x.test/pricing"

    @pytest.mark.asyncio
    async def test_navigate_error_on_live_browser(self, handle, mock_page):
        """タイムアウト以外の遷移失敗も回復可能なエラーになる"""
        mock_page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED at https://nowhere.test/\nCall log:")
        with pytest.raises(NavigationFailed) as exc_info:
            await handle.navigate("https://nowhere.test/")
        assert exc_info.value.url == "https://nowhere.test/"
        assert "ERR_NAME_NOT_RESOLVED" in str(exc_info.value)
        assert "Call log" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_navigate_error_on_dead_browser_propagates(self, handle, mock_page):
        handle.browser.is_connected.return_value = False
        mock_page.goto.side_effect = PlaywrightError("Target page, context or browser has been closed")
        with pytest.raises(PlaywrightError):
            await handle.navigate("https://x.test/about")

    @pytest.mark.asyncio
    async def test_click_detached_element(self, handle, mock_page):
        element = AsyncMock()
        element.click.side_effect = PlaywrightError("Element is not attached to the DOM")
        mock_page.query_selector.return_value = element
        with pytest.raises(ElementNotFound):
            await handle.click("button#gone")

    @pytest.mark.asyncio
    async def test_scroll_error_on_live_browser(self, handle, mock_page):
        mock_page.evaluate.side_effect = PlaywrightError("Execution context was destroyed")
        with pytest.raises(ActionFailed):
            await handle.scroll("down", 100)

    @pytest.mark.asyncio
    async def test_highlight_error_on_live_browser(self, handle, mock_page):
        element = AsyncMock()
        element.evaluate.side_effect = PlaywrightError("Element is not attached to the DOM")
        mock_page.query_selector.return_value = element
        with pytest.raises(ElementNotFound):
            await handle.highlight("h1")

    @pytest.mark.asyncio
    async def test_perform_rejects_non_action(self, handle):
        with pytest.raises(InvalidAction):
            await handle.perform({"type": "click", "target": "#a"})

    @pytest.mark.asyncio
    async def test_highlight_without_target_is_noop(self, handle, mock_page):
        await handle.highlight(None)
        mock_page.query_selector.assert_not_called()

    @pytest.mark.asyncio
    async def test_perform_dispatch(self, handle):
        handle.click = AsyncMock()
        handle.scroll = AsyncMock()
        handle.navigate = AsyncMock()
        handle.type = AsyncMock()
        handle.highlight = AsyncMock()

        await handle.perform(ClickAction(target="#a"))
        await handle.perform(ScrollAction(direction="up", amount=50))
        await handle.perform(NavigateAction(url="https://x.test"))
        await handle.perform(TypeAction(target="#q", text="hi"))
        await handle.perform(HighlightAction(target="h1"))

        handle.click.assert_awaited_once_with("#a")
        handle.scroll.assert_awaited_once_with("up", 50)
        handle.navigate.assert_awaited_once_with("https://x.test")
        handle.type.assert_awaited_once_with("#q", "hi")
        handle.highlight.assert_awaited_once_with("h1")

    @pytest.mark.asyncio
    async def test_screenshot_data_url(self, handle, mock_page):
        mock_page.screenshot.return_value = b"\x89PNG"
        data = await handle.screenshot()
        assert data == "data:image/png;base64,iVBORw=="

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, handle):
        await handle.close()
        await handle.close()
        handle.context.close.assert_awaited_once()
        handle.browser.close.assert_awaited_once()
        assert handle.closed
        assert not handle.is_alive

    @pytest.mark.asyncio
    async def test_close_tolerates_dead_browser(self, handle):
        handle.browser.close.side_effect = PlaywrightError("Browser has been closed")
        await handle.close()
        assert handle.closed

    @pytest.mark.asyncio
    async def test_operations_after_close(self, handle):
        await handle.close()
        with pytest.raises(SessionEnded):
            await handle.navigate("https://x.test")
        with pytest.raises(SessionEnded):
            await handle.screenshot()

    @pytest.mark.asyncio
    async def test_launch(self):
        playwright = MagicMock()
        browser = AsyncMock()
        playwright.chromium.launch = AsyncMock(return_value=browser)

        handle = await BrowserHandle.launch(playwright, {'headful': True})

        assert handle.browser is browser
        assert playwright.chromium.launch.call_args[1]['headless'] is False
        browser.new_context.assert_awaited_once_with(viewport={"width": 1280, "height": 720})


class TestSessionRegistry:
    """SessionRegistryのテスト"""

    @pytest.mark.asyncio
    async def test_create_and_get(self, registry, launched):
        handle = await registry.create("s1", "https://x.test")
        assert registry.get("s1") is handle
        assert handle.url == "https://x.test"
        assert "s1" in registry
        assert len(launched) == 1

    @pytest.mark.asyncio
    async def test_create_without_url(self, registry):
        handle = await registry.create("s1")
        assert handle.navigations == []

    @pytest.mark.asyncio
    async def test_duplicate_create(self, registry, launched):
        await registry.create("s1", "https://x.test")
        with pytest.raises(AlreadyExists):
            await registry.create("s1", "https://x.test")
        assert len(launched) == 1

    @pytest.mark.asyncio
    async def test_concurrent_create_same_id(self, registry, launched):
        """同じIDの同時作成でもブラウザは1つだけ"""
        results = await asyncio.gather(
            registry.create("s1", "https://x.test"),
            registry.create("s1", "https://x.test"),
            return_exceptions=True,
        )
        assert sum(isinstance(r, AlreadyExists) for r in results) == 1
        assert len(launched) == 1

    @pytest.mark.asyncio
    async def test_concurrent_create_different_ids(self, registry, launched):
        await asyncio.gather(registry.create("a"), registry.create("b"))
        assert len(registry) == 2

    @pytest.mark.asyncio
    async def test_get_unknown(self, registry):
        with pytest.raises(NotFound):
            registry.get("nope")

    @pytest.mark.asyncio
    async def test_close_unknown(self, registry):
        with pytest.raises(NotFound):
            await registry.close("nope")

    @pytest.mark.asyncio
    async def test_close_twice(self, registry):
        handle = await registry.create("s1")
        await registry.close("s1")
        await registry.close("s1")
        assert handle.close_calls == 1
        with pytest.raises(NotFound):
            registry.get("s1")

    @pytest.mark.asyncio
    async def test_recreate_after_close(self, registry, launched):
        await registry.create("s1")
        await registry.close("s1")
        await registry.create("s1")
        assert len(launched) == 2

    @pytest.mark.asyncio
    async def test_closed_id_history_is_bounded(self, launched):
        async def launcher(session_id):
            return FakeHandle()

        registry = SessionRegistry({'closed_id_history': 2}, launcher=launcher)
        for session_id in ("s1", "s2", "s3"):
            await registry.create(session_id)
            await registry.close(session_id)

        assert len(registry._closed_ids) == 2
        await registry.close("s3")
        with pytest.raises(NotFound):
            await registry.close("s1")

    @pytest.mark.asyncio
    async def test_failed_navigation_releases_browser(self, launched):
        async def launcher(session_id):
            handle = FakeHandle()
            handle.fail_urls.add("https://slow.test")
            launched.append(handle)
            return handle

        registry = SessionRegistry(launcher=launcher)
        with pytest.raises(NavigationTimeout):
            await registry.create("s1", "https://slow.test")
        assert "s1" not in registry
        assert launched[0].closed
        # 失敗後は同じIDで作り直せる
        await registry.create("s1")

    @pytest.mark.asyncio
    async def test_failed_launch_leaves_no_entry(self):
        launcher = AsyncMock(side_effect=RuntimeError("no chromium"))
        registry = SessionRegistry(launcher=launcher)
        with pytest.raises(RuntimeError):
            await registry.create("s1")
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_session_serializes_operations(self, registry):
        handle = await registry.create("s1")

        async def navigate(url):
            async with registry.session("s1") as h:
                await h.navigate(url)

        await asyncio.gather(*(navigate(f"https://x.test/{i}") for i in range(5)))
        assert handle.max_active == 1
        assert len(handle.navigations) == 5

    @pytest.mark.asyncio
    async def test_session_unknown(self, registry):
        with pytest.raises(NotFound):
            async with registry.session("nope"):
                pass

    @pytest.mark.asyncio
    async def test_context_manager_closes_all(self, launched):
        async def launcher(session_id):
            handle = FakeHandle()
            launched.append(handle)
            return handle

        async with SessionRegistry(launcher=launcher) as registry:
            await registry.create("a")
            await registry.create("b")
        assert all(h.closed for h in launched)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_default_launcher_starts_playwright_once(self):
        with patch('browser.registry.async_playwright') as mock_async_playwright, \
                patch('browser.registry.BrowserHandle.launch', new_callable=AsyncMock) as mock_launch:
            playwright = AsyncMock()
            mock_async_playwright.return_value.start = AsyncMock(return_value=playwright)
            mock_launch.side_effect = lambda p, c: FakeHandle()

            registry = SessionRegistry({'headful': False})
            await registry.create("a")
            await registry.create("b")
            await registry.close_all()

            mock_async_playwright.return_value.start.assert_awaited_once()
            assert mock_launch.await_count == 2
            playwright.stop.assert_awaited_once()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
