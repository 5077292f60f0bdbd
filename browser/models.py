# models.py
from dataclasses import dataclass, field, asdict
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

from utilities.errors import InvalidAction, UnknownActionType
from .constants import DEFAULT_SCROLL_AMOUNT, SCROLL_DIRECTIONS


@dataclass(frozen=True)
class ElementRef:
    text: str
    selector: str


@dataclass(frozen=True)
class LinkRef:
    text: str
    href: str
    selector: str


@dataclass(frozen=True)
class FormDescriptor:
    inputs: Tuple[str, ...]
    action: Optional[str] = None


@dataclass(frozen=True)
class PageContent:
    url: str
    title: str
    headings: Tuple[str, ...] = ()
    buttons: Tuple[ElementRef, ...] = ()
    links: Tuple[LinkRef, ...] = ()
    forms: Tuple[FormDescriptor, ...] = ()
    main_content: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _check_str(action_type: str, name: str, value: Any, required: bool = True):
    if value is None and not required:
        return
    if not isinstance(value, str) or (required and not value.strip()):
        raise InvalidAction(f"{action_type} action requires a non-empty string '{name}'")


@dataclass(frozen=True)
class ClickAction:
    type: ClassVar[str] = "click"
    target: str
    description: str = ""

    def __post_init__(self):
        _check_str(self.type, 'target', self.target)
        _check_str(self.type, 'description', self.description, required=False)


@dataclass(frozen=True)
class ScrollAction:
    type: ClassVar[str] = "scroll"
    direction: str = "down"
    amount: int = DEFAULT_SCROLL_AMOUNT
    description: str = ""

    def __post_init__(self):
        if self.direction not in SCROLL_DIRECTIONS:
            raise InvalidAction(f"scroll direction must be one of {SCROLL_DIRECTIONS}, got {self.direction!r}")
        # bool is an int subclass
        if isinstance(self.amount, bool) or not isinstance(self.amount, int) or self.amount < 0:
            raise InvalidAction(f"scroll amount must be a non-negative integer, got {self.amount!r}")
        _check_str(self.type, 'description', self.description, required=False)


@dataclass(frozen=True)
class NavigateAction:
    type: ClassVar[str] = "navigate"
    url: str
    description: str = ""

    def __post_init__(self):
        _check_str(self.type, 'url', self.url)
        _check_str(self.type, 'description', self.description, required=False)


@dataclass(frozen=True)
class TypeAction:
    type: ClassVar[str] = "type"
    target: str
    text: str
    description: str = ""

    def __post_init__(self):
        _check_str(self.type, 'target', self.target)
        if not isinstance(self.text, str):
            raise InvalidAction("type action requires a string 'text'")
        _check_str(self.type, 'description', self.description, required=False)


@dataclass(frozen=True)
class HighlightAction:
    type: ClassVar[str] = "highlight"
    target: Optional[str] = None
    description: str = ""

    def __post_init__(self):
        _check_str(self.type, 'target', self.target, required=False)
        _check_str(self.type, 'description', self.description, required=False)


BrowserAction = Union[ClickAction, ScrollAction, NavigateAction, TypeAction, HighlightAction]

ACTION_TYPES = {
    cls.type: cls
    for cls in (ClickAction, ScrollAction, NavigateAction, TypeAction, HighlightAction)
}


@dataclass(frozen=True)
class TourStep:
    page_url: str
    page_content: PageContent
    narration: str
    actions: Tuple[BrowserAction, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'page_url': self.page_url,
            'page_content': self.page_content.to_dict(),
            'narration': self.narration,
            'actions': [action_to_dict(a) for a in self.actions],
        }


def _required_str(data: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise InvalidAction(f"{data.get('type')} action requires '{keys[0]}'")


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidAction(f"'{key}' must be a string, got {type(value).__name__}")
    return value.strip() or None


def action_from_dict(data: Dict[str, Any]) -> BrowserAction:
    """Build a BrowserAction from a loosely-typed dict (model output or request body)."""
    if not isinstance(data, dict):
        raise InvalidAction(f"action must be an object, got {type(data).__name__}")

    action_type = data.get('type')
    if not isinstance(action_type, str) or not action_type.strip():
        raise InvalidAction("action is missing 'type'")
    action_type = action_type.strip().lower()
    if action_type not in ACTION_TYPES:
        raise UnknownActionType(action_type)

    description = data.get('description') or ""
    if not isinstance(description, str):
        raise InvalidAction("'description' must be a string")

    if action_type == 'click':
        return ClickAction(target=_required_str(data, 'target', 'selector'), description=description)

    if action_type == 'navigate':
        return NavigateAction(url=_required_str(data, 'url', 'target'), description=description)

    if action_type == 'type':
        target = _required_str(data, 'target', 'selector')
        text = data.get('value', data.get('text'))
        if not isinstance(text, str):
            raise InvalidAction("type action requires 'value'")
        return TypeAction(target=target, text=text, description=description)

    if action_type == 'scroll':
        direction = data.get('direction') or 'down'
        if not isinstance(direction, str) or direction.lower() not in SCROLL_DIRECTIONS:
            raise InvalidAction(f"scroll direction must be one of {SCROLL_DIRECTIONS}")
        amount = data.get('amount', DEFAULT_SCROLL_AMOUNT)
        # bool is an int subclass
        if isinstance(amount, bool):
            raise InvalidAction("scroll amount must be a number")
        try:
            amount = int(amount)
        except (TypeError, ValueError, OverflowError):
            raise InvalidAction(f"scroll amount must be a number, got {amount!r}")
        if amount < 0:
            raise InvalidAction("scroll amount must not be negative")
        return ScrollAction(direction=direction.lower(), amount=amount, description=description)

    return HighlightAction(target=_optional_str(data, 'target'), description=description)


def action_to_dict(action: BrowserAction) -> Dict[str, Any]:
    data = asdict(action)
    data['type'] = action.type
    return data
