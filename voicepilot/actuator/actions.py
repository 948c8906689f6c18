from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from voicepilot.actuator.entities import ProcessedEntities
from voicepilot.actuator.resolver import match_score
from voicepilot.actuator.surface import Control, ControlKind, ControlSurface
from voicepilot.nlu.models import IntentType


@dataclass(frozen=True)
class ActionContext:
    surface: ControlSurface
    scroll_amount: int = 300
    option_threshold: float = 50.0
    logger: Optional[logging.Logger] = None

    @property
    def log(self) -> logging.Logger:
        return self.logger or logging.getLogger(__name__)


Action = Callable[[ProcessedEntities, ActionContext], bool]


def click_element(pe: ProcessedEntities, ctx: ActionContext) -> bool:
    if not pe.has("target") or pe.target_element is None:
        ctx.log.info("actuator: no valid target for click")
        return False
    pe.target_element.click()
    ctx.log.info(f"actuator: clicked '{pe.target_element.declared_name}'")
    return True


def fill_input(pe: ProcessedEntities, ctx: ActionContext) -> bool:
    el = pe.target_element
    if not pe.has("value") or el is None:
        ctx.log.info("actuator: missing target or value for fill")
        return False
    if el.kind not in {ControlKind.INPUT, ControlKind.TEXTAREA}:
        ctx.log.info(f"actuator: '{el.declared_name}' is not a text field")
        return False
    el.set_value(pe.text("value"))
    ctx.log.info(f"actuator: filled '{el.declared_name}'")
    return True


def scroll(pe: ProcessedEntities, ctx: ActionContext) -> bool:
    direction = pe.text("direction").strip().lower()
    s = ctx.surface
    amount = int(ctx.scroll_amount)
    if direction == "up":
        s.scroll_by(0, -amount)
    elif direction == "down":
        s.scroll_by(0, amount)
    elif direction == "left":
        s.scroll_by(-amount, 0)
    elif direction == "right":
        s.scroll_by(amount, 0)
    elif direction == "top":
        s.scroll_to_top()
    elif direction == "bottom":
        s.scroll_to_bottom()
    else:
        ctx.log.info(f"actuator: unknown scroll direction '{direction}'")
        return False
    return True


def scroll_to_element(pe: ProcessedEntities, ctx: ActionContext) -> bool:
    el = pe.target_element
    if not pe.has("target") or el is None:
        ctx.log.info("actuator: no valid target for scroll to element")
        return False
    if el.in_viewport:
        if el.is_focusable:
            el.focus()
        el.click()
    else:
        el.scroll_into_view()
        if el.is_focusable:
            el.focus()
    return True


def _set_checkbox(pe: ProcessedEntities, ctx: ActionContext, check: bool) -> bool:
    el = pe.target_element
    if not pe.has("target") or el is None:
        ctx.log.info("actuator: no valid target for checkbox")
        return False
    if el.kind != ControlKind.CHECKBOX:
        ctx.log.info(f"actuator: '{el.declared_name}' is not a checkbox")
        return False
    el.set_checked(check)
    return True


def check_checkbox(pe: ProcessedEntities, ctx: ActionContext) -> bool:
    return _set_checkbox(pe, ctx, True)


def uncheck_checkbox(pe: ProcessedEntities, ctx: ActionContext) -> bool:
    return _set_checkbox(pe, ctx, False)


def _set_all(pe: ProcessedEntities, ctx: ActionContext, check: bool) -> bool:
    done = False
    for el in pe.target_elements:
        if el.kind == ControlKind.CHECKBOX:
            el.set_checked(check)
            done = True
    if not done:
        ctx.log.info(f"actuator: no checkboxes in group '{pe.text('target_group')}'")
    return done


def check_all(pe: ProcessedEntities, ctx: ActionContext) -> bool:
    return _set_all(pe, ctx, True)


def uncheck_all(pe: ProcessedEntities, ctx: ActionContext) -> bool:
    return _set_all(pe, ctx, False)


def _option_texts(option: Control) -> List[str]:
    return [t for t in ((option.label or option.voice_name or option.value).lower(), option.value.lower()) if t]


def find_option(options: List[Control], target_name: str, threshold: float) -> Optional[Control]:
    """Exact label or value first, then substring, then the best fuzzy score above `threshold`."""
    wanted = target_name.strip().lower()
    if not wanted:
        return None
    for option in options:
        if wanted in _option_texts(option):
            return option
    for option in options:
        if any(wanted in t for t in _option_texts(option)):
            return option
    best: Optional[Control] = None
    best_score = threshold
    for option in options:
        score = max((match_score(t, wanted) for t in _option_texts(option)), default=0.0)
        if score > best_score:
            best, best_score = option, score
    return best


def select_in_dropdown(select: Control, target_name: str, ctx: ActionContext, *, option: Optional[Control] = None) -> bool:
    options = select.options()
    if option is None or not any(o is option for o in options):
        option = find_option(options, target_name, ctx.option_threshold)
    if option is None:
        ctx.log.info(f"actuator: no option '{target_name}' in '{select.declared_name}'")
        return False
    select.set_value(option.value or option.label)
    ctx.log.info(f"actuator: selected '{option.declared_name}'")
    return True


def select_radio_or_dropdown(pe: ProcessedEntities, ctx: ActionContext) -> bool:
    if pe.target_element is None or not pe.target_name:
        ctx.log.info("actuator: nothing to select")
        return False
    group = pe.group_element
    if group is not None and group.kind == ControlKind.SELECT:
        return select_in_dropdown(group, pe.target_name, ctx, option=pe.target_option)
    if pe.target_element.kind == ControlKind.RADIO:
        pe.target_element.set_checked(True)
        return True
    ctx.log.info("actuator: selection target is neither an option nor a radio")
    return False


def open_dropdown(pe: ProcessedEntities, ctx: ActionContext) -> bool:
    el = pe.target_element
    if not pe.has("target") or el is None:
        ctx.log.info("actuator: no valid target for open dropdown")
        return False
    if el.kind == ControlKind.SELECT:
        el.focus()
        el.click()
        el.expanded = True
        return True
    trigger = next((c for c in el.descendants() if c.toggle or c.kind == ControlKind.BUTTON), el)
    trigger.focus()
    trigger.click()
    return True


def go_back(pe: ProcessedEntities, ctx: ActionContext) -> bool:
    ctx.surface.go_back()
    return True


def default_action_table() -> Dict[IntentType, Action]:
    return {
        IntentType.CLICK_ELEMENT: click_element,
        IntentType.FILL_INPUT: fill_input,
        IntentType.SCROLL: scroll,
        IntentType.SCROLL_TO_ELEMENT: scroll_to_element,
        IntentType.CHECK_CHECKBOX: check_checkbox,
        IntentType.UNCHECK_CHECKBOX: uncheck_checkbox,
        IntentType.CHECK_ALL: check_all,
        IntentType.UNCHECK_ALL: uncheck_all,
        IntentType.SELECT_RADIO_OR_DROPDOWN: select_radio_or_dropdown,
        IntentType.OPEN_DROPDOWN: open_dropdown,
        IntentType.GO_BACK: go_back,
    }
