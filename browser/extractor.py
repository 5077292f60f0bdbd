# extractor.py
import logging
from typing import Any, Dict, List

from playwright.async_api import Page

from .constants import MAX_LINK_TEXT, EXCERPT_NODES, MAX_EXCERPT_SIZE
from .models import PageContent, ElementRef, LinkRef, FormDescriptor

logger = logging.getLogger(__name__)

# Read-only collection in page context. Filtering happens in build_page_content.
EXTRACT_SCRIPT = """
(excerptNodes) => {
    const text = el => (el.textContent || '').trim();
    const selectorFor = el => {
        const cls = (el.getAttribute('class') || '').trim().split(/\\s+/)[0];
        return el.tagName.toLowerCase() + (el.id ? '#' + el.id : '') + (cls ? '.' + cls : '');
    };
    const headings = Array.from(document.querySelectorAll('h1, h2, h3, h4, h5, h6')).map(text);
    const buttons = Array.from(document.querySelectorAll(
        'button, [role="button"], input[type="button"], input[type="submit"]'
    )).map(el => ({ text: text(el) || el.value || '', selector: selectorFor(el) }));
    const links = Array.from(document.querySelectorAll('a[href]')).map(el => ({
        text: text(el),
        href: el.href,
        selector: 'a[href="' + el.getAttribute('href') + '"]'
    }));
    const forms = Array.from(document.querySelectorAll('form')).map(form => ({
        inputs: Array.from(form.querySelectorAll('input, textarea, select')).map(
            input => input.placeholder || input.name || input.tagName.toLowerCase()
        ),
        action: form.getAttribute('action') ? form.action : null
    }));
    const paragraphs = Array.from(document.querySelectorAll('p, li, span')).slice(0, excerptNodes).map(text);
    return { headings, buttons, links, forms, paragraphs };
}
"""


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def build_page_content(url: str, title: str, raw: Dict[str, Any]) -> PageContent:
    """Normalize the raw evaluate() result into an immutable PageContent."""
    headings = tuple(h for h in (_clean(h) for h in raw.get('headings', [])) if h)

    buttons = tuple(
        ElementRef(text=_clean(b.get('text')) or 'Button', selector=_clean(b.get('selector')))
        for b in raw.get('buttons', [])
    )

    links = []
    for link in raw.get('links', []):
        text = _clean(link.get('text'))
        # icon-only and decorative anchors
        if not text or len(text) >= MAX_LINK_TEXT:
            continue
        links.append(LinkRef(text=text, href=_clean(link.get('href')), selector=_clean(link.get('selector'))))

    forms = tuple(
        FormDescriptor(
            inputs=tuple(_clean(i) for i in form.get('inputs', []) if _clean(i)),
            action=_clean(form.get('action')) or None,
        )
        for form in raw.get('forms', [])
    )

    paragraphs: List[str] = [_clean(p) for p in raw.get('paragraphs', [])[:EXCERPT_NODES]]
    main_content = " ".join(p for p in paragraphs if p)[:MAX_EXCERPT_SIZE]

    return PageContent(
        url=url,
        title=_clean(title),
        headings=headings,
        buttons=buttons,
        links=tuple(links),
        forms=forms,
        main_content=main_content,
    )


async def extract_page_content(page: Page) -> PageContent:
    url = page.url
    title = await page.title()
    raw = await page.evaluate(EXTRACT_SCRIPT, EXCERPT_NODES)
    content = build_page_content(url, title, raw or {})
    logger.debug(f"Extracted {url}: {len(content.headings)} headings, {len(content.buttons)} buttons, "
                 f"{len(content.links)} links, {len(content.forms)} forms")
    return content
