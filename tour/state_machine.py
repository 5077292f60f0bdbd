import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urldefrag

from playwright.async_api import Error as PlaywrightError

from agent.bedrock import NarrationService
from browser.handle import BrowserHandle
from browser.models import NavigateAction, TourStep
from browser.registry import SessionRegistry
from utilities.errors import DemoError, InvalidInput, InvalidState, SessionEnded

logger = logging.getLogger(__name__)


class TourStatus(str, Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    ENDED = "ended"


@dataclass
class Session:
    """1回のデモ実行の状態"""
    session_id: str
    main_url: str
    page_urls: List[str]
    current_index: int = 0
    status: TourStatus = TourStatus.INITIALIZING
    steps: List[TourStep] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def tour_complete(self) -> bool:
        return self.status == TourStatus.COMPLETED


@dataclass(frozen=True)
class AdvanceResult:
    has_next_page: bool
    next_page_url: Optional[str]
    tour_complete: bool
    step: Optional[TourStep] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'has_next_page': self.has_next_page,
            'next_page_url': self.next_page_url,
            'tour_complete': self.tour_complete,
        }


def normalize_url(url: str) -> str:
    return urldefrag(url or "")[0].rstrip('/')


def is_same_page(current_url: str, target_url: str) -> bool:
    """フラグメントと末尾のスラッシュを除いて同じURLならTrue"""
    return normalize_url(current_url) == normalize_url(target_url)


class TourStateMachine:
    """
    ページURLのリストを順に巡回するツアーの状態機械

    advance() 1回で1ページ分（遷移・抽出・ナレーション生成・記録）を処理する。
    ページ間の待ち時間（ナレーション再生など）は呼び出し側が制御する。
    """

    def __init__(self, session: Session, registry: SessionRegistry, narrator: NarrationService):
        self.session = session
        self.registry = registry
        self.narrator = narrator

    def start(self, page_urls: Optional[Sequence[str]] = None):
        if self.session.status == TourStatus.ENDED:
            raise SessionEnded(f"Session {self.session.session_id} has ended")
        if self.session.status != TourStatus.INITIALIZING:
            raise InvalidState(f"Tour already {self.session.status.value}")

        urls = list(page_urls) if page_urls is not None else list(self.session.page_urls)
        if not urls:
            raise InvalidInput("page URLs are required to start a tour")

        self.session.page_urls = urls
        self.session.current_index = 0
        self.session.status = TourStatus.RUNNING
        logger.info(f"Tour started for {self.session.session_id}: {len(urls)} pages")

    def _check_running(self):
        if self.session.status == TourStatus.ENDED:
            raise SessionEnded(f"Session {self.session.session_id} has ended")
        if self.session.status != TourStatus.RUNNING:
            raise InvalidState(f"Cannot advance a tour that is {self.session.status.value}")

    async def advance(self) -> AdvanceResult:
        session = self.session
        self._check_running()

        step = None
        async with self.registry.session(session.session_id) as handle:
            # Another advance may have run while waiting for the lock
            self._check_running()
            url = session.page_urls[session.current_index]
            try:
                step = await self._visit(handle, url)
            except (DemoError, PlaywrightError) as e:
                if not handle.is_alive:
                    raise
                logger.warning(f"Skipping tour page {url}: {e}")

            if session.status != TourStatus.RUNNING:
                raise SessionEnded(f"Session {session.session_id} ended during the step")

            if step is not None:
                session.steps.append(step)
            session.current_index += 1
            if session.current_index >= len(session.page_urls):
                session.status = TourStatus.COMPLETED
                logger.info(f"Tour completed for {session.session_id}")

            has_next = session.current_index < len(session.page_urls)
            next_url = session.page_urls[session.current_index] if has_next else None

        return AdvanceResult(
            has_next_page=has_next,
            next_page_url=next_url,
            tour_complete=not has_next,
            step=step,
        )

    async def _visit(self, handle: BrowserHandle, url: str) -> TourStep:
        actions = []
        if is_same_page(handle.url, url):
            logger.info(f"Already on {url}, skipping navigation")
        else:
            await handle.navigate(url)
            actions.append(NavigateAction(url=url, description=f"Navigate to {url}"))

        content = await handle.extract_content()
        visited = [step.page_content for step in self.session.steps]
        narration = await self.narrator.narrate(content, visited)
        return TourStep(page_url=url, page_content=content, narration=narration, actions=tuple(actions))

    def end(self):
        self.session.status = TourStatus.ENDED

    def progress(self) -> Dict[str, Any]:
        return {
            'current_index': self.session.current_index,
            'total_pages': len(self.session.page_urls),
            'status': self.session.status.value,
            'steps': [step.to_dict() for step in self.session.steps],
        }
