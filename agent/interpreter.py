import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from playwright.async_api import Error as PlaywrightError

from agent.bedrock import NarrationService
from agent.config import MAX_CONTEXT_ELEMENTS
from browser.handle import BrowserHandle
from browser.models import BrowserAction, PageContent, TourStep, action_to_dict
from utilities.errors import ActionFailed, ElementNotFound, InvalidInput, NavigationTimeout

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, I had trouble processing that command. Please try again."


@dataclass(frozen=True)
class CommandResult:
    action: Optional[BrowserAction]
    narration: str
    executed: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': action_to_dict(self.action) if self.action else None,
            'narration': self.narration,
            'executed': self.executed,
            'error': self.error,
        }


def build_context(steps: Sequence[TourStep], page_urls: Sequence[str], tour_complete: bool,
                  current_page: Optional[PageContent] = None,
                  extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """ツアー履歴と現在のページからLLMに渡すコンテキストを組み立てる"""
    context: Dict[str, Any] = {
        'visited_titles': [step.page_content.title for step in steps],
        'visited_urls': [step.page_url for step in steps],
        'page_urls': list(page_urls),
        'tour_complete': tour_complete,
    }
    if current_page is not None:
        context['current_page'] = {
            'url': current_page.url,
            'title': current_page.title,
            'headings': list(current_page.headings),
            'buttons': [{'text': b.text, 'selector': b.selector}
                        for b in current_page.buttons[:MAX_CONTEXT_ELEMENTS]],
            'links': [{'text': l.text, 'href': l.href, 'selector': l.selector}
                      for l in current_page.links[:MAX_CONTEXT_ELEMENTS]],
            'forms': [{'inputs': list(f.inputs), 'action': f.action} for f in current_page.forms],
        }
    if extra:
        context.update(extra)
    return context


class CommandInterpreter:
    """音声などから得た自然文コマンドをブラウザ操作に変換して実行する"""

    def __init__(self, narrator: NarrationService):
        self.narrator = narrator

    async def handle(self, command: str, handle: BrowserHandle, context: Dict[str, Any]) -> CommandResult:
        """
        コマンドを解釈し、認識できたアクションをブラウザに送る

        Args:
            command: ユーザーのコマンド文
            handle: セッションのブラウザハンドル（呼び出し側でロック済み）
            context: これまでのツアー内容（build_contextの結果）

        Returns:
            実行結果と読み上げ用ナレーション
        """
        if not isinstance(command, str) or not command.strip():
            raise InvalidInput("command text is required")
        command = command.strip()

        interpretation = await self.narrator.interpret(command, context)
        action = interpretation.action
        narration = interpretation.narration or f"Command processed: {command}"

        if action is None:
            return CommandResult(action=None, narration=narration, executed=False)

        try:
            await handle.perform(action)
        except (ElementNotFound, NavigationTimeout, ActionFailed) as e:
            logger.warning(f"Command '{command}' failed: {e}")
            return CommandResult(action=action, narration=APOLOGY, executed=False, error=str(e))
        except PlaywrightError as e:
            if not handle.is_alive:
                raise
            logger.warning(f"Command '{command}' failed: {e}")
            return CommandResult(action=action, narration=APOLOGY, executed=False, error=str(e))

        logger.info(f"Executed {action.type} for command '{command}'")
        return CommandResult(action=action, narration=narration, executed=True)
