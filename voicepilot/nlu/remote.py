from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

import requests

from voicepilot.core.config.models import RecognitionConfig
from voicepilot.core.errors import ConfigError
from voicepilot.nlu.llm_classifier import coerce_intent_results
from voicepilot.nlu.models import IntentResult


DEFAULT_BACKEND_URL = "http://localhost:3000/api/v1"


class RemoteRecognitionDriver:
    """Delegates recognition to a backend exposing POST {api_url}/intent/text."""

    def __init__(self, cfg: RecognitionConfig, *, logger=None):
        if not cfg.api_key:
            raise ConfigError("An API key is required for remote intent recognition.", provider=cfg.provider.value)
        self.cfg = cfg
        self.logger = logger or logging.getLogger(__name__)

    @property
    def url(self) -> str:
        return f"{(self.cfg.api_url or DEFAULT_BACKEND_URL).rstrip('/')}/intent/text"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "X-Client-ID": self.cfg.api_key}
        if self.cfg.temperature is not None:
            headers["X-Recognition-Temperature"] = str(self.cfg.temperature)
        return headers

    def _post(self, text: str) -> Any:
        r = requests.post(self.url, json={"text": text}, headers=self._headers(), timeout=self.cfg.timeout_seconds)
        r.raise_for_status()
        return r.json()

    async def detect_intent(self, text: str) -> List[IntentResult]:
        if not str(text or "").strip():
            return [IntentResult.unknown(source="remote")]
        try:
            body = await asyncio.to_thread(self._post, text)
        except (requests.RequestException, ValueError) as e:
            self.logger.warning(f"remote: recognition request failed: {e}")
            return [IntentResult.unknown(source="remote")]
        data = body.get("data") if isinstance(body, dict) else None
        if not data:
            self.logger.warning("remote: response has no data field")
            return [IntentResult.unknown(source="remote")]
        return coerce_intent_results(data, source="remote", logger=self.logger)
