"""
テスト共通のフィクスチャ
"""
import asyncio
import os
import sys

import pytest

# プロジェクトルートをPythonパスに追加
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from agent.bedrock import NarrationService
from browser.extractor import build_page_content
from browser.models import ClickAction, TypeAction, HighlightAction, NavigateAction
from browser.registry import SessionRegistry
from tour.service import DemoService
from utilities.errors import ElementNotFound, NavigationTimeout, SessionEnded


PAGES = {
    "https://x.test": {
        'title': "X Home",
        'headings': ["Welcome", "Features"],
        'buttons': [{'text': "Sign up", 'selector': "button#signup.primary"}],
        'links': [{'text': "About", 'href': "https://x.test/about", 'selector': 'a[href="/about"]'}],
        'forms': [],
        'paragraphs': ["X is a test site."],
    },
    "https://x.test/about": {
        'title': "About X",
        'headings': ["A", "B"],
        'buttons': [],
        'links': [],
        'forms': [],
        'paragraphs': [],
    },
    "https://x.test/pricing": {
        'title': "Pricing",
        'headings': ["Plans"],
        'buttons': [{'text': "Buy", 'selector': "button.buy"}],
        'links': [],
        'forms': [{'inputs': ["email"], 'action': "https://x.test/subscribe"}],
        'paragraphs': ["Cheap.", "Cheaper."],
    },
}


class FakeHandle:
    """BrowserHandleと同じインターフェースを持つテスト用ハンドル"""

    def __init__(self, pages=None):
        self.pages = pages if pages is not None else PAGES
        self.url = "about:blank"
        self.closed = False
        self.is_alive = True
        self.close_calls = 0
        self.navigations = []
        self.performed = []
        self.fail_urls = set()
        self.active = 0
        self.max_active = 0

    def _ensure_open(self):
        if self.closed:
            raise SessionEnded("browser handle is closed")

    async def navigate(self, url):
        self._ensure_open()
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0)
            if url in self.fail_urls:
                raise NavigationTimeout(url, 30000)
            self.navigations.append(url)
            self.url = url
        finally:
            self.active -= 1

    def _selectors(self):
        raw = self.pages.get(self.url, {})
        return {b['selector'] for b in raw.get('buttons', [])} | {"input[name=email]"}

    async def perform(self, action):
        self._ensure_open()
        self.performed.append(action)
        if isinstance(action, NavigateAction):
            await self.navigate(action.url)
        elif isinstance(action, (ClickAction, TypeAction)) or (isinstance(action, HighlightAction) and action.target):
            if action.target not in self._selectors():
                raise ElementNotFound(action.target)

    async def screenshot(self):
        self._ensure_open()
        return "data:image/png;base64,AAAA"

    async def extract_content(self):
        self._ensure_open()
        raw = self.pages.get(self.url, {})
        return build_page_content(self.url, raw.get('title', ""), raw)

    async def close(self):
        self.close_calls += 1
        self.closed = True
        self.is_alive = False


@pytest.fixture
def launched():
    """起動されたFakeHandleの記録"""
    return []


@pytest.fixture
def registry(launched):
    async def launcher(session_id):
        handle = FakeHandle()
        launched.append(handle)
        return handle
    return SessionRegistry(launcher=launcher)


@pytest.fixture
def narrator():
    """LLM未設定のナレーションサービス"""
    return NarrationService(model_id="")


@pytest.fixture
def service(registry, narrator):
    return DemoService(registry=registry, narrator=narrator)
