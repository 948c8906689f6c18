from __future__ import annotations

import asyncio

import pytest
import requests

from voicepilot.core.config.models import AppConfig, RecognitionConfig, RecognitionProvider
from voicepilot.core.errors import ConfigError
from voicepilot.nlu.llm_classifier import LLMIntentClassifier
from voicepilot.nlu.models import IntentResult, IntentType, VoiceEntity
from voicepilot.nlu.pattern_matcher import PatternIntentMatcher
from voicepilot.nlu.recognizer import (
    HybridRecognitionDriver,
    IntentRecognizer,
    PatternRecognitionDriver,
    build_recognition_driver,
)
from voicepilot.nlu.remote import RemoteRecognitionDriver

from .helpers.fakes import DummyLogger, FakeResponse


def _app(provider: RecognitionProvider, **kw) -> AppConfig:
    return AppConfig(recognition=RecognitionConfig(provider=provider, **kw))


# ---- remote backend ----
def test_remote_request_shape_and_data_parsing(monkeypatch):
    calls = []

    def fake_post(url, **kw):  # noqa: ANN001
        calls.append((url, kw))
        return FakeResponse(
            {
                "data": [
                    {"intent": "check_all", "confidence": 0.9, "entities": {"target_group": {"english": "terms", "user_language": "vilkår"}}},
                    {"intent": "go_back", "confidence": 0.8, "entities": {}},
                ]
            }
        )

    monkeypatch.setattr(requests, "post", fake_post)
    cfg = RecognitionConfig(provider=RecognitionProvider.REMOTE, api_key="client-1", api_url="http://backend/api/v1/", temperature=0.3)
    results = asyncio.run(RemoteRecognitionDriver(cfg, logger=DummyLogger()).detect_intent("kryss av alle vilkår og gå tilbake"))

    assert [r.intent for r in results] == [IntentType.CHECK_ALL, IntentType.GO_BACK]
    assert results[0].entities["target_group"] == VoiceEntity(english="terms", spoken_form="vilkår")
    assert all(r.source == "remote" for r in results)
    url, kw = calls[0]
    assert url == "http://backend/api/v1/intent/text"
    assert kw["json"] == {"text": "kryss av alle vilkår og gå tilbake"}
    assert kw["headers"]["X-Client-ID"] == "client-1"
    assert kw["headers"]["X-Recognition-Temperature"] == "0.3"


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse({"data": []}),
        FakeResponse({"error": "nope"}),
        FakeResponse(None, text="<html>"),
        FakeResponse({"data": [{"intent": "go_back"}]}, status_code=502),
    ],
)
def test_remote_failures_become_unknown(monkeypatch, response):
    monkeypatch.setattr(requests, "post", lambda url, **kw: response)
    cfg = RecognitionConfig(provider=RecognitionProvider.REMOTE, api_key="client-1")
    [res] = asyncio.run(RemoteRecognitionDriver(cfg, logger=DummyLogger()).detect_intent("go back"))
    assert res.is_unknown
    assert res.source == "remote"


def test_remote_needs_client_id():
    with pytest.raises(ConfigError):
        RemoteRecognitionDriver(RecognitionConfig(provider=RecognitionProvider.REMOTE))


# ---- driver selection ----
def test_build_driver_per_provider():
    assert isinstance(build_recognition_driver(_app(RecognitionProvider.PATTERN)), PatternRecognitionDriver)
    assert isinstance(build_recognition_driver(_app(RecognitionProvider.LLM, api_key="k")), LLMIntentClassifier)
    assert isinstance(build_recognition_driver(_app(RecognitionProvider.HYBRID, api_key="k")), HybridRecognitionDriver)
    assert isinstance(build_recognition_driver(_app(RecognitionProvider.REMOTE, api_key="k")), RemoteRecognitionDriver)


@pytest.mark.parametrize("provider", [RecognitionProvider.LLM, RecognitionProvider.HYBRID, RecognitionProvider.REMOTE])
def test_network_providers_need_a_key(provider):
    with pytest.raises(ConfigError):
        build_recognition_driver(_app(provider))


# ---- hybrid ----
class _StubLLM:
    def __init__(self, results):
        self.results = results
        self.calls = []

    async def identify_intent(self, text):  # noqa: ANN001
        self.calls.append(text)
        return list(self.results)


def test_hybrid_keeps_confident_pattern_result():
    llm = _StubLLM([IntentResult(intent=IntentType.GO_BACK, confidence=0.9, source="llm")])
    driver = HybridRecognitionDriver(PatternIntentMatcher(), llm, min_confidence=0.5, logger=DummyLogger())
    [res] = asyncio.run(driver.detect_intent("click submit button"))
    assert res.intent == IntentType.CLICK_ELEMENT
    assert res.source == "pattern"
    assert llm.calls == []


def test_hybrid_asks_llm_when_patterns_fail():
    llm = _StubLLM([IntentResult(intent=IntentType.GO_BACK, confidence=0.9, source="llm")])
    driver = HybridRecognitionDriver(PatternIntentMatcher(), llm, min_confidence=0.5, logger=DummyLogger())
    [res] = asyncio.run(driver.detect_intent("take me to the previous page"))
    assert res.intent == IntentType.GO_BACK
    assert res.source == "llm"
    assert llm.calls == ["take me to the previous page"]


def test_hybrid_falls_back_to_pattern_unknown_when_llm_has_nothing():
    llm = _StubLLM([IntentResult.unknown(source="llm")])
    driver = HybridRecognitionDriver(PatternIntentMatcher(), llm, logger=DummyLogger())
    [res] = asyncio.run(driver.detect_intent("tell me a joke"))
    assert res.is_unknown
    assert res.source == "pattern"


# ---- facade ----
class _Boom:
    async def detect_intent(self, text):  # noqa: ANN001
        raise RuntimeError("driver exploded")


class _Empty:
    async def detect_intent(self, text):  # noqa: ANN001
        return []


@pytest.mark.parametrize("driver", [_Boom(), _Empty()])
def test_recognizer_never_raises_and_never_returns_empty(driver):
    [res] = asyncio.run(IntentRecognizer(driver, logger=DummyLogger()).detect_intent("click save"))
    assert res.is_unknown


def test_recognizer_from_config_uses_patterns_by_default():
    rec = IntentRecognizer.from_config(AppConfig(), logger=DummyLogger())
    results = asyncio.run(rec.detect_intent("check all terms and go back"))
    assert [r.intent for r in results] == [IntentType.CHECK_ALL, IntentType.GO_BACK]
