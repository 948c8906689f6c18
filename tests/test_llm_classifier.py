from __future__ import annotations

import asyncio
import json

import pytest
import requests

from voicepilot.core.config.models import RecognitionConfig, RecognitionProvider
from voicepilot.core.errors import ConfigError
from voicepilot.nlu.llm_classifier import DEFAULT_CHAT_URL, LLMIntentClassifier, strip_code_fences
from voicepilot.nlu.models import IntentType, VoiceEntity

from .helpers.fakes import DummyLogger, FakeResponse


def _cfg(**kw) -> RecognitionConfig:
    base = {"provider": RecognitionProvider.LLM, "api_key": "sk-test", "model": "gpt-test", "temperature": 0.2}
    base.update(kw)
    return RecognitionConfig(**base)


def _chat(content: str) -> FakeResponse:
    return FakeResponse({"choices": [{"message": {"content": content}}]})


def test_missing_api_key_is_a_config_error():
    with pytest.raises(ConfigError):
        LLMIntentClassifier(_cfg(api_key=""))


def test_request_shape(monkeypatch):
    calls = []

    def fake_post(url, **kw):  # noqa: ANN001
        calls.append((url, kw))
        return _chat('[{"intent": "go_back", "confidence": 0.9, "entities": {}}]')

    monkeypatch.setattr(requests, "post", fake_post)
    clf = LLMIntentClassifier(_cfg(), lang="no", logger=DummyLogger())
    [res] = asyncio.run(clf.identify_intent("gå tilbake"))
    assert res.intent == IntentType.GO_BACK
    assert res.source == "llm"

    url, kw = calls[0]
    assert url == DEFAULT_CHAT_URL
    assert kw["headers"]["Authorization"] == "Bearer sk-test"
    assert kw["json"]["model"] == "gpt-test"
    assert kw["json"]["temperature"] == 0.2
    system, user = kw["json"]["messages"]
    assert user == {"role": "user", "content": "gå tilbake"}
    assert "Norwegian" in system["content"]
    assert "check_all" in system["content"]
    # the model gets the vocabulary, never the utterance patterns
    assert "(target)" not in system["content"]


def test_custom_endpoint(monkeypatch):
    seen = []
    monkeypatch.setattr(requests, "post", lambda url, **kw: seen.append(url) or _chat("[]"))
    clf = LLMIntentClassifier(_cfg(api_url="http://llm.local/v1/chat/completions"), logger=DummyLogger())
    [res] = asyncio.run(clf.identify_intent("click save"))
    assert seen == ["http://llm.local/v1/chat/completions"]
    assert res.is_unknown


def test_fenced_json_with_bilingual_entities():
    clf = LLMIntentClassifier(_cfg(), lang="no", logger=DummyLogger())
    content = "```json\n" + json.dumps(
        [
            {
                "intent": "click_element",
                "confidence": 0.92,
                "entities": {"target": {"english": "submit", "user_language": "send inn"}},
            }
        ]
    ) + "\n```"
    [res] = clf.parse_response(content)
    assert res.intent == IntentType.CLICK_ELEMENT
    assert res.confidence == pytest.approx(0.92)
    assert res.entities["target"] == VoiceEntity(english="submit", spoken_form="send inn")
    assert res.entity("target") == "submit"


def test_single_object_answer_is_accepted():
    clf = LLMIntentClassifier(_cfg(), logger=DummyLogger())
    [res] = clf.parse_response('{"intent": "fill_input", "confidence": 0.8, "entities": {"target": "email", "value": "a at b dot c"}}')
    assert res.intent == IntentType.FILL_INPUT
    assert res.entities == {"target": "email", "value": "a at b dot c"}


def test_unknown_items_are_dropped_next_to_known_ones():
    clf = LLMIntentClassifier(_cfg(), logger=DummyLogger())
    results = clf.parse_response(
        '[{"intent": "unknown"}, {"intent": "scroll", "confidence": 2, "entities": {"direction": "down"}}, {"intent": "dance"}]'
    )
    assert [r.intent for r in results] == [IntentType.SCROLL]
    assert results[0].confidence == 1.0


@pytest.mark.parametrize("content", ["not json at all", "", "[]", '"just a string"'])
def test_unusable_answers_become_unknown(content):
    clf = LLMIntentClassifier(_cfg(), logger=DummyLogger())
    [res] = clf.parse_response(content)
    assert res.is_unknown
    assert res.source == "llm"


def test_transport_failure_becomes_unknown(monkeypatch):
    def fake_post(url, **kw):  # noqa: ANN001
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "post", fake_post)
    clf = LLMIntentClassifier(_cfg(), logger=DummyLogger())
    [res] = asyncio.run(clf.identify_intent("click save"))
    assert res.is_unknown


def test_http_error_and_odd_body_become_unknown(monkeypatch):
    clf = LLMIntentClassifier(_cfg(), logger=DummyLogger())
    monkeypatch.setattr(requests, "post", lambda url, **kw: FakeResponse({"error": "x"}, status_code=500))
    assert asyncio.run(clf.identify_intent("click save"))[0].is_unknown
    monkeypatch.setattr(requests, "post", lambda url, **kw: FakeResponse({"choices": []}))
    assert asyncio.run(clf.identify_intent("click save"))[0].is_unknown


def test_blank_text_skips_the_request(monkeypatch):
    monkeypatch.setattr(requests, "post", lambda url, **kw: pytest.fail("no request expected"))
    clf = LLMIntentClassifier(_cfg(), logger=DummyLogger())
    assert asyncio.run(clf.identify_intent("   "))[0].is_unknown


def test_strip_code_fences():
    assert strip_code_fences("```json\n[1]\n```") == "[1]"
    assert strip_code_fences("```\n{}\n```") == "{}"
    assert strip_code_fences("[2]") == "[2]"
