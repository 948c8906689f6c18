from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional


class ControlKind(str, Enum):
    BUTTON = "button"
    LINK = "link"
    INPUT = "input"
    TEXTAREA = "textarea"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    SELECT = "select"
    OPTION = "option"
    CONTAINER = "container"


_FOCUSABLE = {
    ControlKind.BUTTON,
    ControlKind.LINK,
    ControlKind.INPUT,
    ControlKind.TEXTAREA,
    ControlKind.SELECT,
    ControlKind.CHECKBOX,
    ControlKind.RADIO,
}


@dataclass(eq=False)
class Control:
    """
    One interactive element of the host surface.

    `voice_name` makes a control addressable by voice. `name` is the group id
    shared by radios (or any family of controls). Every operation records
    itself in `events` so hosts can mirror it onto a real widget toolkit.
    """

    kind: ControlKind
    voice_name: Optional[str] = None
    name: Optional[str] = None
    input_type: str = "text"
    value: str = ""
    label: str = ""
    checked: bool = False
    min: Optional[str] = None
    max: Optional[str] = None
    in_viewport: bool = True
    focusable: Optional[bool] = None
    toggle: bool = False
    expanded: bool = False
    children: List["Control"] = field(default_factory=list)
    parent: Optional["Control"] = field(default=None, repr=False)
    focused: bool = False
    click_count: int = 0
    events: List[str] = field(default_factory=list, repr=False)
    on_click: Optional[Callable[["Control"], None]] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        for c in self.children:
            c.parent = self

    def add(self, child: "Control") -> "Control":
        child.parent = self
        self.children.append(child)
        return child

    @property
    def is_focusable(self) -> bool:
        if self.focusable is not None:
            return bool(self.focusable)
        return self.kind in _FOCUSABLE

    @property
    def declared_name(self) -> str:
        return self.voice_name or self.label or self.value

    def descendants(self) -> Iterator["Control"]:
        for c in self.children:
            yield c
            yield from c.descendants()

    def options(self) -> List["Control"]:
        return [c for c in self.descendants() if c.kind == ControlKind.OPTION]

    def dispatch(self, event: str) -> None:
        self.events.append(event)

    def click(self) -> None:
        self.click_count += 1
        self.dispatch("click")
        if self.toggle:
            self.expanded = not self.expanded
        if self.on_click is not None:
            self.on_click(self)

    def focus(self) -> None:
        self.focused = True
        self.dispatch("focus")

    def scroll_into_view(self) -> None:
        self.in_viewport = True
        self.dispatch("scroll_into_view")

    def set_value(self, value: str) -> None:
        self.value = value
        self.dispatch("input")
        self.dispatch("change")

    def set_checked(self, checked: bool) -> None:
        if self.checked != bool(checked):
            self.checked = bool(checked)
            self.dispatch("change")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Control":
        data = dict(data)
        children = [cls.from_dict(c) for c in data.pop("children", []) or []]
        kind = ControlKind(str(data.pop("kind", "container")))
        allowed = {
            "voice_name", "name", "input_type", "value", "label", "checked",
            "min", "max", "in_viewport", "focusable", "toggle", "expanded",
        }
        unknown = set(data) - allowed
        if unknown:
            raise ValueError(f"unknown control fields: {sorted(unknown)}")
        return cls(kind=kind, children=children, **data)


class ControlSurface:
    """
    In-memory view of the host application: a control tree, a scrollable
    viewport and a navigation history.
    """

    def __init__(
        self,
        controls: Optional[Iterable[Control]] = None,
        *,
        page_width: int = 1280,
        page_height: int = 4000,
        location: str = "/",
    ):
        self.root = Control(ControlKind.CONTAINER, children=list(controls or []))
        self.page_width = int(page_width)
        self.page_height = int(page_height)
        self.scroll_x = 0
        self.scroll_y = 0
        self.history: List[str] = [location]
        self.back_count = 0

    def add(self, control: Control) -> Control:
        return self.root.add(control)

    def all_controls(self) -> List[Control]:
        return list(self.root.descendants())

    def voice_controls(self, scope: Optional[Control] = None) -> List[Control]:
        base = scope if scope is not None else self.root
        return [c for c in base.descendants() if c.voice_name]

    def selects(self) -> List[Control]:
        return [c for c in self.voice_controls() if c.kind == ControlKind.SELECT]

    def radio_groups(self) -> List[str]:
        groups: List[str] = []
        for c in self.voice_controls():
            if c.kind == ControlKind.RADIO and c.name and c.name not in groups:
                groups.append(c.name)
        return groups

    def radios_in_group(self, group: str) -> List[Control]:
        return [c for c in self.all_controls() if c.kind == ControlKind.RADIO and c.name == group]

    def family(self, group: str) -> List[Control]:
        key = str(group or "").strip().lower()
        return [c for c in self.all_controls() if c.name and c.name.lower() == key]

    # ---- viewport ----
    def scroll_by(self, dx: int, dy: int) -> None:
        self.scroll_to(self.scroll_x + int(dx), self.scroll_y + int(dy))

    def scroll_to(self, x: int, y: int) -> None:
        self.scroll_x = max(0, min(int(x), self.page_width))
        self.scroll_y = max(0, min(int(y), self.page_height))

    def scroll_to_top(self) -> None:
        self.scroll_to(0, 0)

    def scroll_to_bottom(self) -> None:
        self.scroll_to(0, self.page_height)

    # ---- navigation ----
    def navigate(self, location: str) -> None:
        self.history.append(location)

    @property
    def location(self) -> str:
        return self.history[-1]

    def go_back(self) -> None:
        self.back_count += 1
        if len(self.history) > 1:
            self.history.pop()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ControlSurface":
        controls = [Control.from_dict(c) for c in data.get("controls", [])]
        return cls(
            controls,
            page_width=int(data.get("page_width", 1280)),
            page_height=int(data.get("page_height", 4000)),
            location=str(data.get("location", "/")),
        )
