import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import boto3
import botocore.exceptions
from botocore.config import Config

from agent.config import (
    AWS_REGION, BEDROCK_MODEL_ID, PROVIDER_TIMEOUT, MAX_RETRIES, RETRY_DELAY,
    NARRATION_MAX_TOKENS, NARRATION_TEMPERATURE,
    INTERPRET_MAX_TOKENS, INTERPRET_TEMPERATURE,
    SCRIPT_MAX_TOKENS, SCRIPT_TEMPERATURE,
)
from agent.prompt import (
    create_narration_system_prompt, create_narration_user_prompt,
    INTERPRET_SYSTEM_PROMPT, create_interpret_user_prompt,
    SCRIPT_SYSTEM_PROMPT, create_script_user_prompt,
)
from browser.models import (
    BrowserAction, PageContent, HighlightAction, NavigateAction, ScrollAction, action_from_dict,
)
from utilities.errors import (
    InvalidAction, UnknownActionType, MalformedModelOutput, ProviderUnavailable,
)
from utilities.json_utils import extract_json_object, extract_json_array

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Interpretation:
    """コマンド解釈の結果。actionがNoneの場合はナレーションのみ"""
    action: Optional[BrowserAction]
    narration: str


@dataclass(frozen=True)
class ScriptStep:
    action: BrowserAction
    narration: str
    duration: int


def fallback_narration(page: PageContent, visited: Sequence[PageContent] = ()) -> str:
    """LLMが使えない場合の定型ナレーション（タイトル・見出し数・ボタン数から生成）"""
    title = page.title or page.url
    if visited:
        context_text = f" We've already visited {len(visited)} page{'s' if len(visited) > 1 else ''}."
    else:
        context_text = " This is our first page."

    count = len(page.headings)
    features_text = f" This page has {count} section heading{'' if count == 1 else 's'}"
    if page.headings:
        features_text += f", including: {', '.join(page.headings[:3])}."
    else:
        features_text += "."

    interactive_text = f" There {'is' if len(page.buttons) == 1 else 'are'} {len(page.buttons)} interactive " \
                       f"element{'' if len(page.buttons) == 1 else 's'} you can use."

    return f"Welcome to {title}.{context_text}{features_text}{interactive_text} " \
           f"Feel free to explore the features on this page."


def fallback_interpretation(command: str) -> Interpretation:
    """コマンドをそのまま復唱するハイライトアクション"""
    return Interpretation(
        action=HighlightAction(description=f"Execute command: {command}"),
        narration=f"I understand you want to: {command}. Let me help you with that.",
    )


def fallback_script(url: str) -> List[ScriptStep]:
    return [
        ScriptStep(
            action=NavigateAction(url=url, description="Load homepage"),
            narration=f"Welcome to the demo of {url}. Let's explore the key features of this website.",
            duration=3,
        ),
        ScriptStep(
            action=ScrollAction(description="Scroll through homepage"),
            narration="Here you can see the main content and layout of the homepage.",
            duration=5,
        ),
    ]


def parse_interpretation(text: str) -> Interpretation:
    """
    モデル出力から {action, narration} を取り出す

    Raises:
        MalformedModelOutput: JSONが無い、またはアクションの項目が不正な場合
    """
    data = extract_json_object(text)
    narration = data.get('narration')
    narration = narration.strip() if isinstance(narration, str) else ""

    if 'action' not in data:
        raise MalformedModelOutput("model output has no 'action'")
    try:
        action = action_from_dict(data['action'])
    except UnknownActionType as e:
        # 語彙外のアクションはナレーションのみとして扱う
        logger.info(f"Model proposed unsupported action '{e.action_type}', narration only")
        action = None
    except InvalidAction as e:
        raise MalformedModelOutput(str(e)) from e

    return Interpretation(action=action, narration=narration)


def parse_script(text: str) -> List[ScriptStep]:
    steps = []
    for item in extract_json_array(text):
        if not isinstance(item, dict):
            raise MalformedModelOutput(f"script step must be an object: {item!r}")
        try:
            action = action_from_dict(item.get('action'))
        except InvalidAction as e:
            raise MalformedModelOutput(str(e)) from e
        narration = item.get('narration')
        duration = item.get('duration', 5)
        if not isinstance(narration, str) or isinstance(duration, bool) \
                or not isinstance(duration, (int, float)) or not math.isfinite(duration) or duration < 0:
            raise MalformedModelOutput(f"invalid script step: {item!r}")
        steps.append(ScriptStep(action=action, narration=narration.strip(), duration=int(duration)))
    if not steps:
        raise MalformedModelOutput("empty tour script")
    return steps


class NarrationService:
    """Amazon Bedrock Converse API を使ったナレーション生成とコマンド解釈"""

    def __init__(self, model_id: str = BEDROCK_MODEL_ID, region: str = AWS_REGION, client=None,
                 max_retries: int = MAX_RETRIES, retry_delay: float = RETRY_DELAY):
        self.model_id = model_id
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.client = client
        self.usage = {'input_tokens': 0, 'output_tokens': 0}

        if self.client is None and self.model_id:
            try:
                self.client = boto3.client(
                    "bedrock-runtime",
                    region_name=region,
                    config=Config(read_timeout=PROVIDER_TIMEOUT, retries={'max_attempts': 1}),
                )
            except botocore.exceptions.BotoCoreError as e:
                logger.warning(f"Bedrock client unavailable, using fallback narration: {e}")
                self.client = None

        if not self.available:
            logger.info("No completion provider configured - using fallback responses")

    @property
    def available(self) -> bool:
        return bool(self.model_id) and self.client is not None

    def _converse(self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> str:
        for attempt in range(self.max_retries + 1):
            try:
                response = self.client.converse(
                    modelId=self.model_id,
                    system=[{"text": system_prompt}],
                    messages=[{"role": "user", "content": [{"text": user_prompt}]}],
                    inferenceConfig={"maxTokens": max_tokens, "temperature": temperature},
                )
                break
            except botocore.exceptions.ClientError as e:
                if e.response['Error']['Code'] == 'ThrottlingException' and attempt < self.max_retries:
                    logger.warning(f"Throttled by Bedrock, retrying in {self.retry_delay}s "
                                   f"(attempt {attempt + 1}/{self.max_retries + 1})")
                    time.sleep(self.retry_delay)
                    continue
                raise

        usage = response.get('usage', {})
        self.usage['input_tokens'] += usage.get('inputTokens', 0)
        self.usage['output_tokens'] += usage.get('outputTokens', 0)

        if response.get('stopReason') == 'max_tokens':
            logger.warning("Model response hit max tokens, output may be truncated")

        try:
            content = response['output']['message']['content']
        except (KeyError, TypeError) as e:
            raise MalformedModelOutput(f"unexpected converse response: {e}") from e
        return "".join(block['text'] for block in content if 'text' in block)

    async def complete(self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> str:
        """
        LLMに問い合わせて応答テキストを返す

        Raises:
            ProviderUnavailable: 未設定、または呼び出しに失敗した場合
        """
        if not self.available:
            raise ProviderUnavailable("completion provider not configured")
        try:
            return await asyncio.to_thread(self._converse, system_prompt, user_prompt, max_tokens, temperature)
        except MalformedModelOutput:
            raise
        except Exception as e:
            raise ProviderUnavailable(f"completion request failed: {e}") from e

    async def narrate(self, page: PageContent, visited: Sequence[PageContent] = ()) -> str:
        system_prompt = create_narration_system_prompt([p.title for p in visited if p.title])
        try:
            text = await self.complete(system_prompt, create_narration_user_prompt(page),
                                       NARRATION_MAX_TOKENS, NARRATION_TEMPERATURE)
        except (ProviderUnavailable, MalformedModelOutput) as e:
            logger.info(f"Narration fallback for {page.url}: {e}")
            return fallback_narration(page, visited)

        text = text.strip()
        if not text:
            logger.info(f"Empty narration from model for {page.url}, using fallback")
            return fallback_narration(page, visited)
        return text

    async def interpret(self, command: str, context: Dict[str, Any]) -> Interpretation:
        try:
            text = await self.complete(INTERPRET_SYSTEM_PROMPT, create_interpret_user_prompt(command, context),
                                       INTERPRET_MAX_TOKENS, INTERPRET_TEMPERATURE)
            return parse_interpretation(text)
        except (ProviderUnavailable, MalformedModelOutput) as e:
            logger.info(f"Interpretation fallback for '{command}': {e}")
            return fallback_interpretation(command)

    async def generate_tour_script(self, url: str) -> List[ScriptStep]:
        try:
            text = await self.complete(SCRIPT_SYSTEM_PROMPT, create_script_user_prompt(url),
                                       SCRIPT_MAX_TOKENS, SCRIPT_TEMPERATURE)
            return parse_script(text)
        except (ProviderUnavailable, MalformedModelOutput) as e:
            logger.info(f"Tour script fallback for {url}: {e}")
            return fallback_script(url)
