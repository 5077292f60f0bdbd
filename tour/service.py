import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Sequence, Union

from playwright.async_api import Error as PlaywrightError

from agent.bedrock import NarrationService, ScriptStep
from agent.config import BEDROCK_MODEL_ID
from agent.interpreter import CommandInterpreter, CommandResult, build_context
from browser.constants import CLOSED_ID_HISTORY
from browser.models import ACTION_TYPES, BrowserAction, PageContent, action_from_dict
from browser.registry import SessionRegistry
from tour.state_machine import Session, TourStateMachine, TourStatus
from utilities.errors import (
    ActionFailed, AlreadyExists, DemoError, InvalidAction, InvalidInput, NotFound, SessionEnded, SessionFailed,
)
from utilities.tombstones import ClosedIds

logger = logging.getLogger(__name__)


class DemoService:
    """
    デモセッションの操作をまとめたファサード

    HTTPハンドラやCLIなどの呼び出し側はこのクラスのメソッドだけを使う。
    async with で使うと終了時に全ブラウザを確実に閉じる。
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 registry: Optional[SessionRegistry] = None,
                 narrator: Optional[NarrationService] = None):
        self.config = config or {}
        self.registry = registry if registry is not None else SessionRegistry(self.config)
        self.narrator = narrator or NarrationService(model_id=self.config.get('model_id', BEDROCK_MODEL_ID))
        self.interpreter = CommandInterpreter(self.narrator)
        self._tours: Dict[str, TourStateMachine] = {}
        self._closed_ids = ClosedIds(self.config.get('closed_id_history', CLOSED_ID_HISTORY))

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _tour(self, session_id: str) -> TourStateMachine:
        tour = self._tours.get(session_id)
        if tour is None:
            raise NotFound(f"Session not found: {session_id}")
        return tour

    def _active_tour(self, session_id: str) -> TourStateMachine:
        tour = self._tour(session_id)
        if tour.session.status == TourStatus.ENDED:
            raise SessionEnded(f"Session {session_id} has ended")
        return tour

    @asynccontextmanager
    async def _guard(self, session_id: str):
        """想定外の例外はそのセッションだけを終了させる"""
        try:
            yield
        except DemoError:
            raise
        except PlaywrightError as e:
            if not self._browser_alive(session_id):
                logger.exception(f"Session {session_id} lost its browser")
                await self._fail(session_id)
                raise SessionFailed(f"Session {session_id} failed: {e}") from e
            logger.warning(f"Browser operation failed for {session_id}: {e}")
            raise ActionFailed(str(e).split('\n', 1)[0]) from e
        except Exception as e:
            logger.exception(f"Session {session_id} failed, releasing its browser")
            await self._fail(session_id)
            raise SessionFailed(f"Session {session_id} failed: {e}") from e

    def _browser_alive(self, session_id: str) -> bool:
        return session_id in self.registry and self.registry.get(session_id).is_alive

    async def _fail(self, session_id: str):
        tour = self._tours.get(session_id)
        if tour:
            tour.end()
        try:
            await self.registry.close(session_id)
        except NotFound:
            pass
        except Exception as e:
            logger.error(f"Error releasing browser for {session_id}: {e}")

    async def create_session(self, main_url: str, page_urls: Sequence[str], session_id: Optional[str] = None) -> str:
        if not isinstance(main_url, str) or not main_url.strip():
            raise InvalidInput("main URL is required")
        if not page_urls or isinstance(page_urls, str):
            raise InvalidInput("page URLs are required")
        page_urls = list(page_urls)
        if not all(isinstance(u, str) and u.strip() for u in page_urls):
            raise InvalidInput("page URLs must be non-empty strings")

        session_id = session_id or uuid.uuid4().hex
        if session_id in self._tours:
            raise AlreadyExists(f"Session already exists: {session_id}")

        await self.registry.create(session_id, main_url.strip())
        session = Session(session_id=session_id, main_url=main_url.strip(), page_urls=page_urls)
        self._tours[session_id] = TourStateMachine(session, self.registry, self.narrator)
        self._closed_ids.discard(session_id)
        logger.info(f"Session created: {session_id} ({len(page_urls)} pages)")
        return session_id

    def get_session(self, session_id: str) -> Session:
        return self._tour(session_id).session

    def start_tour(self, session_id: str, page_urls: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        tour = self._tour(session_id)
        tour.start(page_urls)
        return {
            'total_pages': len(tour.session.page_urls),
            'current_page': tour.session.page_urls[0],
        }

    async def advance_tour(self, session_id: str) -> Dict[str, Any]:
        tour = self._active_tour(session_id)
        async with self._guard(session_id):
            result = await tour.advance()
        return result.to_dict()

    def get_tour_progress(self, session_id: str) -> Dict[str, Any]:
        return self._tour(session_id).progress()

    async def end_tour(self, session_id: str):
        tour = self._tour(session_id)
        tour.end()
        await self.registry.close(session_id)
        logger.info(f"Tour ended: {session_id}")

    async def dispatch_browser_action(self, session_id: str, action: Union[BrowserAction, Dict[str, Any]]) -> Dict[str, Any]:
        if isinstance(action, dict):
            action = action_from_dict(action)
        elif not isinstance(action, tuple(ACTION_TYPES.values())):
            raise InvalidAction(f"Not a browser action: {action!r}")

        self._active_tour(session_id)
        async with self._guard(session_id):
            async with self.registry.session(session_id) as handle:
                await handle.perform(action)
                return {'success': True, 'current_url': handle.url}

    async def capture_screenshot(self, session_id: str) -> str:
        self._active_tour(session_id)
        async with self._guard(session_id):
            async with self.registry.session(session_id) as handle:
                return await handle.screenshot()

    async def extract_page_content(self, session_id: str) -> PageContent:
        self._active_tour(session_id)
        async with self._guard(session_id):
            async with self.registry.session(session_id) as handle:
                return await handle.extract_content()

    async def interpret_command(self, session_id: str, command: str,
                                context: Optional[Dict[str, Any]] = None) -> CommandResult:
        tour = self._active_tour(session_id)
        if not isinstance(command, str) or not command.strip():
            raise InvalidInput("command text is required")

        async with self._guard(session_id):
            async with self.registry.session(session_id) as handle:
                try:
                    current_page = await handle.extract_content()
                except (DemoError, PlaywrightError) as e:
                    if not handle.is_alive:
                        raise
                    logger.warning(f"Could not read current page for command context: {e}")
                    current_page = None

                session = tour.session
                full_context = build_context(session.steps, session.page_urls, session.tour_complete,
                                             current_page=current_page, extra=context)
                return await self.interpreter.handle(command, handle, full_context)

    async def generate_tour_script(self, url: str) -> List[ScriptStep]:
        if not isinstance(url, str) or not url.strip():
            raise InvalidInput("URL is required")
        return await self.narrator.generate_tour_script(url.strip())

    async def close_session(self, session_id: str):
        if session_id in self._closed_ids:
            return
        tour = self._tours.pop(session_id, None)
        if tour is None:
            raise NotFound(f"Session not found: {session_id}")
        tour.end()
        self._closed_ids.add(session_id)
        await self.registry.close(session_id)
        logger.info(f"Session closed: {session_id}")

    async def close(self):
        for tour in self._tours.values():
            tour.end()
        self._closed_ids.update(self._tours)
        self._tours.clear()
        await self.registry.close_all()
        usage = self.narrator.usage
        logger.info(f"Token usage - input: {usage['input_tokens']}, output: {usage['output_tokens']}")
