from __future__ import annotations

import re
from typing import Dict, Iterator, List, Optional

from voicepilot.nlu.models import CommandTemplate, IntentType


PLACEHOLDER_RE = re.compile(r"\(([A-Za-z_][A-Za-z0-9_]*)\)")

DIRECTIONS = frozenset({"up", "down", "left", "right", "top", "bottom"})


class CommandRegistry:
    """Ordered intent -> template table. Registration order breaks confidence ties."""

    def __init__(self, templates: Optional[List[CommandTemplate]] = None):
        self._templates: Dict[IntentType, CommandTemplate] = {}
        for t in templates or []:
            self.register(t)

    def register(self, template: CommandTemplate) -> None:
        if template.intent == IntentType.UNKNOWN:
            raise ValueError("the unknown intent cannot carry templates")
        declared = set(template.entities)
        for utterance in template.utterances:
            for name in PLACEHOLDER_RE.findall(utterance):
                if name not in declared:
                    raise ValueError(f"{template.intent.value}: placeholder ({name}) is not a declared entity")
        self._templates[template.intent] = template

    def get(self, intent: IntentType) -> Optional[CommandTemplate]:
        return self._templates.get(intent)

    def templates(self) -> List[CommandTemplate]:
        return list(self._templates.values())

    def intents(self) -> List[IntentType]:
        return list(self._templates.keys())

    def __iter__(self) -> Iterator[CommandTemplate]:
        return iter(self.templates())

    def __len__(self) -> int:
        return len(self._templates)


def default_templates() -> List[CommandTemplate]:
    return [
        CommandTemplate(
            IntentType.CLICK_ELEMENT,
            ("click (target)", "press (target)", "tap (target)"),
            ("target",),
        ),
        CommandTemplate(
            IntentType.FILL_INPUT,
            ("fill (target) as (value)", "enter (target) as (value)", "enter (target) with (value)", "fill (target) with (value)"),
            ("target", "value"),
            raw_entities=frozenset({"value"}),
        ),
        CommandTemplate(
            IntentType.SCROLL,
            ("scroll (direction)", "scroll to (direction)", "go (direction)", "go to (direction)"),
            ("direction",),
            entity_values={"direction": DIRECTIONS},
        ),
        CommandTemplate(
            IntentType.SCROLL_TO_ELEMENT,
            ("scroll to (target)", "go to (target)"),
            ("target",),
        ),
        CommandTemplate(
            IntentType.CHECK_CHECKBOX,
            ("check (target)", "select (target) checkbox", "tick (target)", "enable (target) option"),
            ("target",),
        ),
        CommandTemplate(
            IntentType.UNCHECK_CHECKBOX,
            ("uncheck (target)", "deselect (target) checkbox", "untick (target)", "disable (target) option"),
            ("target",),
        ),
        CommandTemplate(
            IntentType.CHECK_ALL,
            ("check all (target_group)", "select all (target_group)"),
            ("target_group",),
        ),
        CommandTemplate(
            IntentType.UNCHECK_ALL,
            ("uncheck all (target_group)", "deselect all (target_group)"),
            ("target_group",),
        ),
        CommandTemplate(
            IntentType.SELECT_RADIO_OR_DROPDOWN,
            (
                "select (target) in (group)",
                "choose (target) in (group)",
                "pick (target) in (group)",
                "select (target)",
                "choose (target)",
                "pick (target)",
            ),
            ("target", "group"),
        ),
        CommandTemplate(
            IntentType.OPEN_DROPDOWN,
            ("open (target) drop down", "open (target)", "drop down (target)"),
            ("target",),
        ),
        CommandTemplate(IntentType.GO_BACK, ("go back",)),
    ]


def default_registry() -> CommandRegistry:
    return CommandRegistry(default_templates())
