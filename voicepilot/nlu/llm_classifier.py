from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from voicepilot.core.config.models import RecognitionConfig
from voicepilot.core.errors import ConfigError
from voicepilot.nlu.models import IntentResult, IntentType, VoiceEntity
from voicepilot.nlu.registry import CommandRegistry, default_registry


DEFAULT_CHAT_URL = "https://api.openai.com/v1/chat/completions"

# Entities naming something on screen come back as {english, user_language}.
ELEMENT_ENTITIES = {"target", "target_group", "group"}

LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "no": "Norwegian",
    "nb": "Norwegian",
    "sv": "Swedish",
    "da": "Danish",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
    "it": "Italian",
    "nl": "Dutch",
    "pt": "Portuguese",
    "si": "Sinhala",
    "ta": "Tamil",
    "hi": "Hindi",
}

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(str(code or "en").lower(), str(code))


def strip_code_fences(content: str) -> str:
    return _FENCE_RE.sub("", str(content or "").strip()).strip()


class LLMIntentClassifier:
    """
    Intent classification through an OpenAI-compatible chat completions API.

    The model sees the intent vocabulary and entity names (never the utterance
    patterns) and must answer with a JSON array of {intent, confidence, entities}.
    Any transport or parse failure yields a single unknown result.
    """

    def __init__(self, cfg: RecognitionConfig, *, registry: Optional[CommandRegistry] = None, lang: str = "en", logger=None):
        if not cfg.api_key:
            raise ConfigError("An API key is required for LLM intent recognition.", provider=cfg.provider.value)
        self.cfg = cfg
        self.registry = registry or default_registry()
        self.lang = str(lang or "en").lower()
        self.logger = logger or logging.getLogger(__name__)

    @property
    def url(self) -> str:
        return self.cfg.api_url or DEFAULT_CHAT_URL

    def system_prompt(self) -> str:
        lang_name = language_name(self.lang)
        intents = [t.intent.value for t in self.registry.templates()]
        lines = [
            "You classify spoken commands for a voice-controlled user interface.",
            f"The user speaks {lang_name}.",
            f"Allowed intents: {', '.join(intents)}.",
        ]
        for t in self.registry.templates():
            if t.entities:
                lines.append(f'- "{t.intent.value}" can carry entities: {", ".join(t.entities)}.')
        lines += [
            "",
            "One utterance may contain several commands; return one object per command, in spoken order.",
            "Respond with a JSON array only, no markdown. Each object has:",
            '  "intent": one of the allowed intents, or "unknown";',
            '  "confidence": a number from 0 to 1;',
            '  "entities": an object of extracted entities.',
            "",
            f"Entities naming an element on screen ({', '.join(sorted(ELEMENT_ENTITIES))}) must be objects:",
            f'  {{"english": <lowercase English name>, "user_language": <the name in {lang_name}>}}.',
            "Text the user wants typed (value) is returned exactly as spoken.",
        ]
        if self.lang == "en":
            lines.append("Directions are one of up, down, left, right, top, bottom.")
        else:
            lines += [
                f"Interpret the command by meaning, not by word order; {lang_name} phrasing differs from English.",
                "Normalize directions to English (up, down, left, right, top, bottom),",
                "dates to YYYY-MM-DD or today/tomorrow/yesterday, and times to HH:MM or now.",
            ]
        lines.append('If nothing matches, return [{"intent": "unknown", "confidence": 0, "entities": {}}].')
        return "\n".join(lines)

    def _call_openai_compat(self, text: str) -> str:
        payload = {
            "model": self.cfg.model,
            "messages": [
                {"role": "system", "content": self.system_prompt()},
                {"role": "user", "content": text},
            ],
            "temperature": self.cfg.temperature,
        }
        headers = {"Authorization": f"Bearer {self.cfg.api_key}", "Content-Type": "application/json"}
        r = requests.post(self.url, json=payload, headers=headers, timeout=self.cfg.timeout_seconds)
        r.raise_for_status()
        data = r.json()
        return data["choices"][0]["message"]["content"]

    async def identify_intent(self, text: str) -> List[IntentResult]:
        if not str(text or "").strip():
            return [IntentResult.unknown(source="llm")]
        try:
            content = await asyncio.to_thread(self._call_openai_compat, text)
        except (requests.RequestException, KeyError, IndexError, TypeError, ValueError) as e:
            self.logger.warning(f"llm: classification request failed: {e}")
            return [IntentResult.unknown(source="llm")]
        return self.parse_response(content)

    detect_intent = identify_intent

    def parse_response(self, content: str) -> List[IntentResult]:
        try:
            obj = json.loads(strip_code_fences(content))
        except (json.JSONDecodeError, TypeError):
            self.logger.warning("llm: response was not JSON")
            return [IntentResult.unknown(source="llm")]
        return coerce_intent_results(obj, source="llm", logger=self.logger)


def coerce_intent_results(obj: Any, *, source: str, logger=None) -> List[IntentResult]:
    """Turn a decoded JSON answer (object or array) into results; never empty."""
    items = obj if isinstance(obj, list) else [obj]
    results = [r for r in (coerce_intent_result(item, source=source, logger=logger) for item in items) if r is not None]
    known = [r for r in results if not r.is_unknown]
    if known:
        return known
    return results or [IntentResult.unknown(source=source)]


def coerce_intent_result(item: Any, *, source: str, logger=None) -> Optional[IntentResult]:
    if not isinstance(item, dict):
        return None
    entities: Dict[str, Any] = {}
    raw_entities = item.get("entities") or {}
    if isinstance(raw_entities, dict):
        for name, value in raw_entities.items():
            if value is None:
                continue
            if isinstance(value, dict):
                try:
                    entities[str(name)] = VoiceEntity.model_validate(value)
                except ValidationError:
                    continue
            else:
                entities[str(name)] = str(value)
    try:
        confidence = min(1.0, max(0.0, float(item.get("confidence") or 0.0)))
    except (TypeError, ValueError):
        confidence = 0.0
    try:
        intent = IntentType(str(item.get("intent") or IntentType.UNKNOWN.value))
    except ValueError:
        if logger is not None:
            logger.info(f"{source}: dropped unsupported intent {item.get('intent')!r}")
        return IntentResult.unknown(source=source)
    if intent == IntentType.UNKNOWN:
        return IntentResult.unknown(source=source)
    return IntentResult(intent=intent, confidence=confidence, entities=entities, source=source)
