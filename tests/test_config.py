from __future__ import annotations

import json

import pytest

from voicepilot.core.config import AppConfig, RecognitionProvider, load_config, write_config
from voicepilot.core.errors import ConfigError


def test_missing_file_means_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "nope.json"), env={})
    assert cfg == AppConfig()
    assert cfg.recognition.provider == RecognitionProvider.PATTERN
    assert cfg.matcher.exact_threshold == 0.9
    assert cfg.session.error_recovery_seconds == 2.0


def test_no_path_means_defaults():
    assert load_config(None, env={}) == AppConfig()


def test_corrupt_json_raises(tmp_path):
    p = tmp_path / "voicepilot.json"
    p.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError) as ei:
        load_config(str(p))
    assert ei.value.context["path"] == str(p)


def test_non_object_raises(tmp_path):
    p = tmp_path / "voicepilot.json"
    p.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(p))


def test_unknown_field_is_invalid(tmp_path):
    p = tmp_path / "voicepilot.json"
    p.write_text(json.dumps({"recognition": {"provider": "pattern", "bogus": 1}}), encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(p))


def test_out_of_range_threshold_is_invalid(tmp_path):
    p = tmp_path / "voicepilot.json"
    p.write_text(json.dumps({"matcher": {"exact_threshold": 1.5}}), encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(p))


def test_partial_file_fills_defaults(tmp_path):
    p = tmp_path / "voicepilot.json"
    p.write_text(
        json.dumps({"lang": " NO ", "wake_word": {"engine": "phrase", "sleep_words": ["Stop Listening", "  "]}}),
        encoding="utf-8",
    )
    cfg = load_config(str(p))
    assert cfg.lang == "no"
    assert cfg.wake_word.sleep_words == ["stop listening"]
    assert cfg.wake_word.wake_words == ["hey"]
    assert cfg.capture.mode.value == "push_to_talk"


def test_empty_lang_is_invalid():
    with pytest.raises(Exception):
        AppConfig(lang="  ")


def test_write_then_load(tmp_path):
    p = tmp_path / "config" / "voicepilot.json"
    cfg = AppConfig.model_validate({"recognition": {"provider": "hybrid", "api_key": "k", "min_confidence": 0.7}})
    write_config(str(p), cfg, include_secrets=True)
    assert load_config(str(p), env={}) == cfg


def test_written_config_leaves_keys_out(tmp_path):
    p = tmp_path / "voicepilot.json"
    write_config(str(p), AppConfig.model_validate({"transcription": {"api_key": "sk-stt"}}))
    assert "sk-stt" not in p.read_text(encoding="utf-8")
    assert load_config(str(p), env={}).transcription.api_key == ""


def test_environment_supplies_api_keys(tmp_path):
    p = tmp_path / "voicepilot.json"
    p.write_text(json.dumps({"recognition": {"provider": "llm", "api_key": "from-file"}}), encoding="utf-8")
    cfg = load_config(str(p), env={"VOICEPILOT_API_KEY": "shared"})
    assert cfg.transcription.api_key == "shared"
    assert cfg.recognition.api_key == "from-file"

    cfg = load_config(str(p), env={"VOICEPILOT_API_KEY": "shared", "VOICEPILOT_RECOGNITION_API_KEY": "rk", "VOICEPILOT_WAKE_WORD_ACCESS_KEY": " ak "})
    assert cfg.recognition.api_key == "rk"
    assert cfg.wake_word.access_key == "ak"


def test_empty_file_is_an_error(tmp_path):
    p = tmp_path / "voicepilot.json"
    p.write_text("  \n", encoding="utf-8")
    with pytest.raises(ConfigError) as ei:
        load_config(str(p), env={})
    assert ei.value.context["error"] == "empty"
