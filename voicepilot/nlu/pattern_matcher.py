from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from voicepilot.core.config.models import MatcherConfig
from voicepilot.core.text_normalization import clean_entity_value, normalize_for_matching, prepare_utterance
from voicepilot.nlu.models import CommandTemplate, IntentResult
from voicepilot.nlu.registry import PLACEHOLDER_RE, CommandRegistry, default_registry
from voicepilot.nlu.similarity import keyword_similarity


# "check all terms and then go back" -> two commands. A bare comma is not a
# connector: transcripts put commas inside spoken values ("hi, how are you").
CONNECTOR_RE = re.compile(r"\s*,?\s+(?:and then|then|and|also)\s+|\s*;\s*", re.IGNORECASE)
_ARTICLE_RE = re.compile(r"^(?:the|a|an)\s+", re.IGNORECASE)


@dataclass(frozen=True)
class CompiledPattern:
    template: CommandTemplate
    utterance: str
    regex: "re.Pattern[str]"
    keywords: Tuple[str, ...]
    placeholders: Tuple[str, ...]


@dataclass(frozen=True)
class ExactMatch:
    pattern: CompiledPattern
    confidence: float
    entities: Dict[str, str]

    def to_result(self) -> IntentResult:
        return IntentResult(
            intent=self.pattern.template.intent,
            confidence=round(self.confidence, 4),
            entities=dict(self.entities),
            source="pattern",
        )


@dataclass(frozen=True)
class FuzzyMatch:
    pattern: CompiledPattern
    score: float
    # (word index, keyword, rating) for every keyword of the pattern
    alignment: Tuple[Tuple[int, str, float], ...]


def compile_pattern(template: CommandTemplate, utterance: str) -> CompiledPattern:
    chunks = PLACEHOLDER_RE.split(utterance)
    items: List[Tuple[str, object]] = []
    keywords: List[str] = []
    for i, chunk in enumerate(chunks):
        if i % 2:
            items.append(("ph", chunk))
            continue
        words = chunk.lower().split()
        if words:
            items.append(("lit", words))
            keywords.extend(words)

    pieces: List[str] = []
    for idx, (kind, val) in enumerate(items):
        if kind == "lit":
            pieces.append(r"\s+".join(re.escape(w) for w in val))  # type: ignore[union-attr]
        elif idx == len(items) - 1:
            pieces.append(f"(?P<{val}>.+)")
        else:
            pieces.append(f"(?P<{val}>.+?)")
    body = r"\s+".join(pieces)
    if items and items[0][0] == "lit":
        body = r"(?<!\w)" + body
    if items and items[-1][0] == "lit":
        body = body + r"(?!\w)"

    placeholders = tuple(str(v) for k, v in items if k == "ph")
    return CompiledPattern(
        template=template,
        utterance=utterance,
        regex=re.compile(body, re.IGNORECASE),
        keywords=tuple(keywords),
        placeholders=placeholders,
    )


class PatternIntentMatcher:
    """
    Deterministic matcher over the command registry.

    Exact (structural) matches win when they clear `exact_threshold`. Otherwise
    the pattern keywords are walked fuzzily through the input; a convincing walk
    corrects the misheard words and the corrected text is matched again.
    """

    def __init__(self, registry: Optional[CommandRegistry] = None, *, cfg: Optional[MatcherConfig] = None, lang: str = "en", logger=None):
        self.registry = registry or default_registry()
        self.cfg = cfg or MatcherConfig()
        self.lang = str(lang or "en").lower()
        self.logger = logger or logging.getLogger(__name__)
        self._patterns: List[CompiledPattern] = []
        self.reload()

    def reload(self) -> None:
        self._patterns = [compile_pattern(t, u) for t in self.registry.templates() for u in t.utterances]

    def register(self, template: CommandTemplate) -> None:
        self.registry.register(template)
        self.reload()

    @property
    def patterns(self) -> List[CompiledPattern]:
        return list(self._patterns)

    def detect_intent(self, text: str) -> List[IntentResult]:
        if self.lang != "en":
            return [IntentResult.unknown()]
        prepared = prepare_utterance(text)
        if not prepared:
            return [IntentResult.unknown()]

        compound = self._split_compound(prepared)
        if compound:
            self.logger.debug(f"pattern: compound command with {len(compound)} parts")
            return compound

        best = self.best_exact(prepared)
        if best is not None and best.confidence >= self.cfg.exact_threshold:
            return [best.to_result()]

        fuzzy = self.best_fuzzy(prepared)
        if fuzzy is not None and fuzzy.score > self.cfg.fuzzy_threshold:
            corrected = self.correct(prepared, fuzzy)
            self.logger.debug(f"pattern: fuzzy {fuzzy.score:.2f} via '{fuzzy.pattern.utterance}' -> '{corrected}'")
            again = self.best_exact(corrected)
            if again is not None:
                return [again.to_result()]
        return [IntentResult.unknown()]

    # ---- exact ----
    def best_exact(self, text: str) -> Optional[ExactMatch]:
        best: Optional[ExactMatch] = None
        for p in self._patterns:
            m = self.match_pattern(text, p)
            if m is not None and (best is None or m.confidence > best.confidence):
                best = m
        return best

    def match_pattern(self, text: str, pattern: CompiledPattern) -> Optional[ExactMatch]:
        if not text:
            return None
        m = pattern.regex.search(text)
        if m is None:
            return None
        template = pattern.template
        entities: Dict[str, str] = {}
        for name in pattern.placeholders:
            value = clean_entity_value(m.group(name) or "")
            if name in template.raw_entities:
                trailing = text[m.end() :].strip()
                if trailing:
                    value = f"{value} {trailing}".strip()
            else:
                value = _ARTICLE_RE.sub("", value)
            if not value:
                return None
            if name in template.entity_values:
                value = value.lower()
                if not template.accepts(name, value):
                    return None
            entities[name] = value
        coverage = (m.end() - m.start()) / max(1, len(text))
        bonus = min(0.1, 0.05 * len(pattern.keywords))
        confidence = min(1.0, 0.8 * coverage + 0.1 + bonus)
        return ExactMatch(pattern=pattern, confidence=confidence, entities=entities)

    # ---- fuzzy ----
    def best_fuzzy(self, text: str) -> Optional[FuzzyMatch]:
        words = [normalize_for_matching(w) for w in text.split()]
        best: Optional[FuzzyMatch] = None
        for p in self._patterns:
            fm = self.fuzzy_match(words, p)
            if fm is not None and (best is None or fm.score > best.score):
                best = fm
        return best

    def fuzzy_score(self, text: str, pattern: CompiledPattern) -> float:
        fm = self.fuzzy_match([normalize_for_matching(w) for w in text.split()], pattern)
        return fm.score if fm is not None else 0.0

    def fuzzy_match(self, words: Sequence[str], pattern: CompiledPattern) -> Optional[FuzzyMatch]:
        if not pattern.keywords or not words:
            return None
        pos = 0
        alignment: List[Tuple[int, str, float]] = []
        for kw in pattern.keywords:
            best_rating = 0.0
            best_idx: Optional[int] = None
            for i in range(pos, len(words)):
                rating = keyword_similarity(kw, words[i])
                if rating > best_rating:
                    best_rating, best_idx = rating, i
            if best_idx is None or best_rating < self.cfg.keyword_floor:
                return None
            alignment.append((best_idx, kw, best_rating))
            pos = best_idx + 1
        score = sum(r for _, _, r in alignment) / len(alignment)
        return FuzzyMatch(pattern=pattern, score=score, alignment=tuple(alignment))

    def correct(self, text: str, fuzzy: FuzzyMatch) -> str:
        words = text.split()
        for idx, kw, rating in fuzzy.alignment:
            if self.cfg.fuzzy_threshold < rating < 1.0:
                words[idx] = kw
        return " ".join(words)

    # ---- compound ----
    def _split_compound(self, text: str) -> Optional[List[IntentResult]]:
        segments = [prepare_utterance(s) for s in CONNECTOR_RE.split(text)]
        segments = [s for s in segments if s]
        if len(segments) < 2:
            return None
        results: List[IntentResult] = []
        for seg in segments:
            m = self.best_exact(seg)
            if m is None or m.confidence < self.cfg.exact_threshold:
                return None
            results.append(m.to_result())
        return results
