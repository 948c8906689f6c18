from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class IntentType(str, Enum):
    CLICK_ELEMENT = "click_element"
    FILL_INPUT = "fill_input"
    SCROLL = "scroll"
    SCROLL_TO_ELEMENT = "scroll_to_element"
    CHECK_CHECKBOX = "check_checkbox"
    UNCHECK_CHECKBOX = "uncheck_checkbox"
    CHECK_ALL = "check_all"
    UNCHECK_ALL = "uncheck_all"
    SELECT_RADIO_OR_DROPDOWN = "select_radio_or_dropdown"
    OPEN_DROPDOWN = "open_dropdown"
    GO_BACK = "go_back"
    UNKNOWN = "unknown"


class VoiceEntity(BaseModel):
    """An entity the user named in their own language, with its English equivalent."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    english: str
    spoken_form: str = ""

    @model_validator(mode="before")
    @classmethod
    def _accept_wire_names(cls, data: Any) -> Any:
        # LLM and backend payloads use `user_language` / `spokenForm`
        if isinstance(data, dict):
            data = dict(data)
            for alias in ("user_language", "spokenForm"):
                if alias in data:
                    data.setdefault("spoken_form", data.pop(alias))
        return data

    def forms(self) -> List[str]:
        out = [self.english]
        if self.spoken_form and self.spoken_form.lower() != self.english.lower():
            out.append(self.spoken_form)
        return [f for f in out if f]


EntityValue = Union[str, VoiceEntity]


def entity_text(value: Optional[EntityValue]) -> str:
    if value is None:
        return ""
    if isinstance(value, VoiceEntity):
        return value.english
    return str(value)


def entity_forms(value: Optional[EntityValue]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, VoiceEntity):
        return value.forms()
    return [str(value)] if str(value) else []


class IntentResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    intent: IntentType = IntentType.UNKNOWN
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    entities: Dict[str, EntityValue] = Field(default_factory=dict)
    source: str = "pattern"  # pattern|llm|remote

    @classmethod
    def unknown(cls, source: str = "pattern") -> "IntentResult":
        return cls(intent=IntentType.UNKNOWN, confidence=0.0, entities={}, source=source)

    @property
    def is_unknown(self) -> bool:
        return self.intent == IntentType.UNKNOWN

    def entity(self, name: str) -> str:
        return entity_text(self.entities.get(name))

    def summary(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass(frozen=True)
class CommandTemplate:
    """
    Utterance patterns for one intent.

    Patterns use `(name)` placeholders, e.g. "fill (target) with (value)".
    `raw_entities` absorb any free text trailing the matched segment.
    `entity_values` restricts an entity to a closed vocabulary.
    """

    intent: IntentType
    utterances: Tuple[str, ...]
    entities: Tuple[str, ...] = ()
    raw_entities: FrozenSet[str] = frozenset()
    entity_values: Mapping[str, FrozenSet[str]] = field(default_factory=dict)

    def accepts(self, entity: str, value: str) -> bool:
        allowed = self.entity_values.get(entity)
        return allowed is None or value in allowed
