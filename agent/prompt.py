import json
from typing import Any, Dict, List

from browser.models import PageContent
from agent.config import MAX_PROMPT_LINKS, MAX_CONTEXT_ELEMENTS


def create_narration_system_prompt(visited_titles: List[str]) -> str:
    """訪問済みページのタイトルを含むナレーション用システムプロンプトを生成"""
    if visited_titles:
        context_summary = f"Previously visited: {', '.join(visited_titles)}"
    else:
        context_summary = "This is the first page of the demo."

    return f"""You are an AI demo narrator providing engaging, informative commentary about website pages during an automated tour.

Guidelines:
- Speak in a conversational, professional tone
- Highlight key features, navigation, and content areas
- Keep narration concise but informative (30-60 seconds when spoken)
- Mention important buttons, forms, and interactive elements
- Don't repeat information from previously visited pages
- Focus on what makes this page unique and valuable
- Reply with the narration text only

Context: {context_summary}"""


def create_narration_user_prompt(page: PageContent) -> str:
    return f"""Create engaging narration for this page:

Title: {page.title}
URL: {page.url}

Key headings: {', '.join(page.headings)}
Interactive elements: {', '.join(b.text for b in page.buttons[:MAX_CONTEXT_ELEMENTS])}
Main content preview: {page.main_content}
Forms available: {'Yes' if page.forms else 'No'}
Navigation links: {', '.join(l.text for l in page.links[:MAX_PROMPT_LINKS])}

Generate natural, engaging narration that explains what users can see and do on this page."""


INTERPRET_SYSTEM_PROMPT = """You are an AI demo assistant helping users interact with a website through voice commands.
Interpret the user's command and convert it into a specific browser action.

Return ONLY a JSON object of the form:
{"action": {"type": "...", "target": "...", "value": "...", "url": "...", "direction": "...", "amount": 300, "description": "..."}, "narration": "..."}

Available actions (include only the fields each one needs):
- click: Click on an element (needs "target" CSS selector)
- scroll: Scroll the page ("direction" up/down, "amount" in pixels)
- navigate: Go to a specific page ("url")
- type: Type text into a field (needs "target" CSS selector and "value")
- highlight: Highlight an element for explanation ("target" optional)

"narration" is what to say to confirm or explain the action.
Prefer selectors that appear in the page context. If you can't determine the exact CSS selector, use highlight with a general description and suggest the user be more specific."""


def create_interpret_user_prompt(command: str, context: Dict[str, Any]) -> str:
    return f"""User command: "{command}"
Current page context: {json.dumps(context, ensure_ascii=False, default=str)}

Convert this command into a browser action."""


SCRIPT_SYSTEM_PROMPT = """You are an AI demo script generator. Create a comprehensive tour script for the given website URL.

Return ONLY a JSON array of tour steps, each with:
- action: the browser action to take (object with type, target/url, description)
- narration: what to say during this step
- duration: approximate time for this step in seconds

Focus on:
1. Homepage overview
2. Key features and navigation
3. Important sections or pages
4. Call-to-action elements

Make it engaging and informative for potential users."""


def create_script_user_prompt(url: str) -> str:
    return f"Generate a demo tour script for: {url}"
