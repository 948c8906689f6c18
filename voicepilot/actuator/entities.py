from __future__ import annotations

from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Callable, List, Mapping, Optional, Tuple

from voicepilot.actuator.normalizers import ValueNormalizer, pick_normalizer
from voicepilot.actuator.resolver import ElementResolver
from voicepilot.actuator.surface import Control, ControlKind
from voicepilot.nlu.models import EntityValue, IntentType, entity_forms, entity_text


_KEY_ALIASES = {"targetGroup": "target_group", "targetgroup": "target_group"}


@dataclass(frozen=True)
class ProcessedEntities:
    """Entities of one intent plus whatever the resolution stages found on screen."""

    raw: Mapping[str, EntityValue]
    target_element: Optional[Control] = None
    target_elements: Tuple[Control, ...] = ()
    group_element: Optional[Control] = None
    target_name: Optional[str] = None
    # the option control picked inside a dropdown
    target_option: Optional[Control] = None

    @classmethod
    def from_entities(cls, entities: Mapping[str, EntityValue]) -> "ProcessedEntities":
        raw = {_KEY_ALIASES.get(k, k): v for k, v in dict(entities or {}).items()}
        return cls(raw=MappingProxyType(raw))

    def has(self, name: str) -> bool:
        return bool(entity_text(self.raw.get(name)))

    def text(self, name: str) -> str:
        return entity_text(self.raw.get(name))

    def with_raw(self, name: str, value: EntityValue) -> "ProcessedEntities":
        raw = dict(self.raw)
        raw[name] = value
        return replace(self, raw=MappingProxyType(raw))


Stage = Callable[[IntentType, ProcessedEntities, ElementResolver], Optional[ProcessedEntities]]


def grouped_target_stage(intent: IntentType, pe: ProcessedEntities, resolver: ElementResolver) -> Optional[ProcessedEntities]:
    """A target inside a dropdown or radio set, named explicitly or the only one on screen."""
    if not pe.has("target"):
        return None
    if not pe.has("group") and intent != IntentType.SELECT_RADIO_OR_DROPDOWN:
        return None

    if pe.has("group"):
        cand = resolver.resolve_entity(pe.raw.get("group"))
        if cand is None:
            resolver.logger.info(f"resolver: no group matches '{pe.text('group')}'")
            return replace(pe, group_element=None, target_element=None)
        group = cand.element
    else:
        group = resolver.detect_single_group()
        if group is None:
            found = resolver.resolve_entity(pe.raw.get("target"))
            return replace(pe, target_element=found.element if found else None)

    item = resolver.resolve_in_group(pe.raw.get("target"), group)
    if item is None:
        resolver.logger.info(f"resolver: '{pe.text('target')}' not found in group '{group.declared_name}'")
        return replace(pe, group_element=group, target_element=None)
    if group.kind == ControlKind.SELECT:
        # the select itself is acted on; the option rides along
        return replace(pe, group_element=group, target_element=group, target_name=item.declared_name, target_option=item.element)
    return replace(pe, group_element=group, target_element=item.element, target_name=item.declared_name)


def multiple_target_stage(intent: IntentType, pe: ProcessedEntities, resolver: ElementResolver) -> Optional[ProcessedEntities]:
    if not pe.has("target_group"):
        return None
    members: List[Control] = []
    for form in entity_forms(pe.raw.get("target_group")):
        members = resolver.resolve_group(form)
        if members:
            break
    if not members:
        resolver.logger.info(f"resolver: group '{pe.text('target_group')}' has no controls")
    return replace(pe, target_elements=tuple(members))


def single_target_stage(intent: IntentType, pe: ProcessedEntities, resolver: ElementResolver) -> Optional[ProcessedEntities]:
    if not pe.has("target"):
        return None
    found = resolver.resolve_entity(pe.raw.get("target"))
    return replace(pe, target_element=found.element if found else None)


# first stage that applies wins
RESOLUTION_STAGES: Tuple[Stage, ...] = (grouped_target_stage, multiple_target_stage, single_target_stage)


def resolve_entities(intent: IntentType, pe: ProcessedEntities, resolver: ElementResolver) -> ProcessedEntities:
    for stage in RESOLUTION_STAGES:
        out = stage(intent, pe, resolver)
        if out is not None:
            return out
    return pe


def normalize_entities(intent: IntentType, pe: ProcessedEntities, normalizers: List[ValueNormalizer]) -> ProcessedEntities:
    if intent != IntentType.FILL_INPUT or pe.target_element is None or not pe.has("value"):
        return pe
    value = pe.text("value")
    n = pick_normalizer(normalizers, pe.target_element, value)
    if n is None:
        return pe
    return pe.with_raw("value", n.normalize(pe.target_element, value))
