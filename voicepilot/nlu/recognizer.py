from __future__ import annotations

import logging
from typing import List, Optional, Protocol

from voicepilot.core.config.models import AppConfig, RecognitionProvider
from voicepilot.core.errors import ConfigError
from voicepilot.nlu.llm_classifier import LLMIntentClassifier
from voicepilot.nlu.models import IntentResult
from voicepilot.nlu.pattern_matcher import PatternIntentMatcher
from voicepilot.nlu.registry import CommandRegistry, default_registry
from voicepilot.nlu.remote import RemoteRecognitionDriver


class RecognitionDriver(Protocol):
    async def detect_intent(self, text: str) -> List[IntentResult]: ...


class PatternRecognitionDriver:
    def __init__(self, matcher: PatternIntentMatcher):
        self.matcher = matcher

    async def detect_intent(self, text: str) -> List[IntentResult]:
        return self.matcher.detect_intent(text)


class HybridRecognitionDriver:
    """Pattern matcher first; the LLM only sees what the patterns could not place confidently."""

    def __init__(self, matcher: PatternIntentMatcher, llm: LLMIntentClassifier, *, min_confidence: float = 0.5, logger=None):
        self.matcher = matcher
        self.llm = llm
        self.min_confidence = float(min_confidence)
        self.logger = logger or logging.getLogger(__name__)

    def _settled(self, results: List[IntentResult]) -> bool:
        return bool(results) and all(not r.is_unknown and r.confidence >= self.min_confidence for r in results)

    async def detect_intent(self, text: str) -> List[IntentResult]:
        local = self.matcher.detect_intent(text)
        if self._settled(local):
            return local
        self.logger.info("recognizer: pattern result not confident; asking the LLM")
        remote = await self.llm.identify_intent(text)
        if any(not r.is_unknown for r in remote):
            return remote
        return local


def build_recognition_driver(cfg: AppConfig, *, registry: Optional[CommandRegistry] = None, logger=None) -> RecognitionDriver:
    rc = cfg.recognition
    registry = registry or default_registry()
    matcher = PatternIntentMatcher(registry, cfg=cfg.matcher, lang=cfg.lang, logger=logger)
    if rc.provider == RecognitionProvider.PATTERN:
        if cfg.lang != "en" and logger is not None:
            logger.warning(f"recognizer: pattern matching only understands English (lang={cfg.lang})")
        return PatternRecognitionDriver(matcher)
    if rc.provider == RecognitionProvider.LLM:
        return LLMIntentClassifier(rc, registry=registry, lang=cfg.lang, logger=logger)
    if rc.provider == RecognitionProvider.HYBRID:
        llm = LLMIntentClassifier(rc, registry=registry, lang=cfg.lang, logger=logger)
        return HybridRecognitionDriver(matcher, llm, min_confidence=rc.min_confidence, logger=logger)
    if rc.provider == RecognitionProvider.REMOTE:
        return RemoteRecognitionDriver(rc, logger=logger)
    raise ConfigError("Unsupported recognition provider.", provider=str(rc.provider))


class IntentRecognizer:
    """
    Single entry point for text -> intents.

    Whatever the configured driver does, callers get a non-empty list and
    never an exception; failures degrade to one unknown result.
    """

    def __init__(self, driver: RecognitionDriver, *, logger=None):
        self.driver = driver
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, cfg: AppConfig, *, registry: Optional[CommandRegistry] = None, logger=None) -> "IntentRecognizer":
        return cls(build_recognition_driver(cfg, registry=registry, logger=logger), logger=logger)

    async def detect_intent(self, text: str) -> List[IntentResult]:
        try:
            results = await self.driver.detect_intent(text)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"recognizer: driver {type(self.driver).__name__} failed: {e}")
            return [IntentResult.unknown()]
        if not results:
            return [IntentResult.unknown()]
        self.logger.info(
            "recognizer: " + ", ".join(f"{r.intent.value}({r.confidence:.2f})" for r in results)
        )
        return list(results)
