from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from voicepilot.actuator.surface import Control, ControlKind, ControlSurface
from voicepilot.core.text_normalization import normalize_for_matching
from voicepilot.nlu.models import EntityValue, entity_forms
from voicepilot.nlu.similarity import edit_similarity, jaccard, token_lcs


EXACT_BONUS = 100.0
PHRASE_BONUS = 40.0
JACCARD_WEIGHT = 30.0
LCS_WEIGHT = 50.0
EDIT_WEIGHT = 20.0
# below this the edit term is noise; unrelated names must score 0
EDIT_SIMILARITY_FLOOR = 0.5


@dataclass(frozen=True)
class MatchCandidate:
    element: Control
    score: float
    declared_name: str


def _contains_phrase(haystack: Sequence[str], needle: Sequence[str]) -> bool:
    n = len(needle)
    if n == 0 or n > len(haystack):
        return False
    return any(list(haystack[i : i + n]) == list(needle) for i in range(len(haystack) - n + 1))


def match_score(declared: str, target: str) -> float:
    """
    Multi-factor similarity between a control's declared name and a spoken target.

    Both sides are lowercased, stripped of punctuation and split on whitespace:
    equality +100, target as a whole-token phrase of the name +40,
    token Jaccard x30, token LCS / longer length x50 and
    whole-string edit similarity x20 (only from EDIT_SIMILARITY_FLOOR up).
    """
    d = normalize_for_matching(declared)
    t = normalize_for_matching(target)
    dt, tt = d.split(), t.split()
    if not dt or not tt:
        return 0.0
    score = 0.0
    if d == t:
        score += EXACT_BONUS
    if _contains_phrase(dt, tt):
        score += PHRASE_BONUS
    score += jaccard(dt, tt) * JACCARD_WEIGHT
    score += token_lcs(dt, tt) / max(len(dt), len(tt)) * LCS_WEIGHT
    sim = edit_similarity(d, t)
    if sim >= EDIT_SIMILARITY_FLOOR:
        score += sim * EDIT_WEIGHT
    return score


class ElementResolver:
    def __init__(self, surface: ControlSurface, *, group_threshold: float = 50.0, logger=None):
        self.surface = surface
        self.group_threshold = float(group_threshold)
        self.logger = logger or logging.getLogger(__name__)

    def resolve(self, target: str, scope: Optional[Control] = None) -> Optional[MatchCandidate]:
        """Best voice-named control for `target`; ties keep surface order."""
        return self._best(target, self.surface.voice_controls(scope), minimum=0.0)

    def resolve_entity(self, value: Optional[EntityValue], scope: Optional[Control] = None) -> Optional[MatchCandidate]:
        best: Optional[MatchCandidate] = None
        for form in entity_forms(value):
            cand = self.resolve(form, scope)
            if cand is not None and (best is None or cand.score > best.score):
                best = cand
        if best is not None:
            self.logger.debug(f"resolver: '{best.declared_name}' ({best.score:.1f}) for {entity_forms(value)}")
        return best

    def resolve_group(self, group_name: str) -> List[Control]:
        """
        Controls belonging to a named group: the family sharing the group id,
        else the members of the best-matching voice-named group control.
        """
        family = self.surface.family(group_name)
        if family:
            return family
        cand = self.resolve(group_name)
        if cand is None:
            return []
        return self.group_members(cand.element)

    def group_members(self, group: Control) -> List[Control]:
        if group.kind == ControlKind.SELECT:
            return group.options()
        if group.kind == ControlKind.RADIO and group.name:
            return self.surface.radios_in_group(group.name)
        members = self.surface.voice_controls(group)
        if not members and group.name:
            members = self.surface.family(group.name)
        return members

    def resolve_in_group(self, value: Optional[EntityValue], group: Control) -> Optional[MatchCandidate]:
        members = self.group_members(group)
        best: Optional[MatchCandidate] = None
        for form in entity_forms(value):
            cand = self._best(form, members, minimum=self.group_threshold, use_all_names=True)
            if cand is not None and (best is None or cand.score > best.score):
                best = cand
        return best

    def detect_single_group(self) -> Optional[Control]:
        """The only grouped family on screen: one dropdown and no radios, or one radio set and no dropdown."""
        selects = self.surface.selects()
        radio_groups = self.surface.radio_groups()
        if len(selects) == 1 and not radio_groups:
            return selects[0]
        if not selects and len(radio_groups) == 1:
            radios = self.surface.radios_in_group(radio_groups[0])
            return radios[0] if radios else None
        return None

    def _best(self, target: str, controls: Sequence[Control], *, minimum: float, use_all_names: bool = False) -> Optional[MatchCandidate]:
        best: Optional[MatchCandidate] = None
        for c in controls:
            names = _names(c) if use_all_names else [c.voice_name or ""]
            for name in names:
                score = match_score(name, target)
                if score > minimum and (best is None or score > best.score):
                    best = MatchCandidate(element=c, score=score, declared_name=name)
        return best


def _names(control: Control) -> List[str]:
    out: List[str] = []
    for n in (control.voice_name, control.label, control.value):
        if n and n not in out:
            out.append(n)
    return out
