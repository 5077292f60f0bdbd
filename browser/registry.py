# registry.py
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from playwright.async_api import async_playwright

from utilities.errors import AlreadyExists, NotFound
from utilities.tombstones import ClosedIds
from .constants import CLOSED_ID_HISTORY
from .handle import BrowserHandle

logger = logging.getLogger(__name__)

Launcher = Callable[[str], Awaitable[BrowserHandle]]


class SessionRegistry:
    """Maps session ids to their BrowserHandle and owns their lifetime."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, launcher: Optional[Launcher] = None):
        self.config = config or {}
        self.playwright = None
        self._launcher = launcher or self._launch_browser
        self._handles: Dict[str, BrowserHandle] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._pending: Set[str] = set()
        self._closed_ids = ClosedIds(self.config.get('closed_id_history', CLOSED_ID_HISTORY))
        self._map_lock = asyncio.Lock()
        self._playwright_lock = asyncio.Lock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close_all()

    async def _launch_browser(self, session_id: str) -> BrowserHandle:
        async with self._playwright_lock:
            if self.playwright is None:
                self.playwright = await async_playwright().start()
        return await BrowserHandle.launch(self.playwright, self.config)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    async def create(self, session_id: str, main_url: Optional[str] = None) -> BrowserHandle:
        async with self._map_lock:
            if session_id in self._handles or session_id in self._pending:
                raise AlreadyExists(f"Session already has a browser: {session_id}")
            self._pending.add(session_id)

        # Launch outside the map lock so different sessions start concurrently
        try:
            handle = await self._launcher(session_id)
            try:
                if main_url:
                    await handle.navigate(main_url)
            except Exception:
                await handle.close()
                raise
        except Exception:
            async with self._map_lock:
                self._pending.discard(session_id)
            raise

        async with self._map_lock:
            self._pending.discard(session_id)
            self._closed_ids.discard(session_id)
            self._handles[session_id] = handle
            self._locks[session_id] = asyncio.Lock()
        logger.info(f"Session {session_id} registered ({len(self._handles)} live)")
        return handle

    def get(self, session_id: str) -> BrowserHandle:
        handle = self._handles.get(session_id)
        if handle is None:
            raise NotFound(f"No browser for session: {session_id}")
        return handle

    @asynccontextmanager
    async def session(self, session_id: str):
        """Hold the per-session lock while using the handle."""
        lock = self._locks.get(session_id)
        if lock is None:
            raise NotFound(f"No browser for session: {session_id}")
        async with lock:
            # The session may have been closed while waiting for the lock
            yield self.get(session_id)

    async def close(self, session_id: str):
        async with self._map_lock:
            handle = self._handles.pop(session_id, None)
            lock = self._locks.pop(session_id, None)
            if handle is None:
                if session_id in self._closed_ids:
                    return
                raise NotFound(f"No browser for session: {session_id}")
            self._closed_ids.add(session_id)
        # Let an in-flight operation on this session finish first
        async with lock:
            await handle.close()
        logger.info(f"Session {session_id} closed ({len(self._handles)} live)")

    async def close_all(self):
        async with self._map_lock:
            handles = list(self._handles.items())
            self._handles.clear()
            self._locks.clear()
            self._closed_ids.update(session_id for session_id, _ in handles)
        for session_id, handle in handles:
            try:
                await handle.close()
            except Exception as e:
                logger.error(f"Error closing session {session_id}: {e}")
        if self.playwright:
            await self.playwright.stop()
            self.playwright = None
