from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from voicepilot.core.config.models import AppConfig
from voicepilot.core.errors import ConfigError

# A shared key fills whichever remote provider has none of its own; the
# specific variables win over it and over the file.
ENV_SHARED_KEY = "VOICEPILOT_API_KEY"
ENV_KEYS = {
    "VOICEPILOT_TRANSCRIPTION_API_KEY": ("transcription", "api_key"),
    "VOICEPILOT_RECOGNITION_API_KEY": ("recognition", "api_key"),
    "VOICEPILOT_WAKE_WORD_ACCESS_KEY": ("wake_word", "access_key"),
}


@dataclass(frozen=True)
class ReadResult:
    ok: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


def read_json_file(path: str) -> ReadResult:
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        return ReadResult(ok=False, error="missing")
    except OSError as e:
        return ReadResult(ok=False, error=f"unreadable:{e.strerror or e}")
    if not text.strip():
        return ReadResult(ok=False, error="empty")
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        return ReadResult(ok=False, error=f"corrupt_json:line {e.lineno} col {e.colno}")
    if not isinstance(obj, dict):
        return ReadResult(ok=False, error=f"not_object:{type(obj).__name__}")
    return ReadResult(ok=True, data=obj)


def apply_env_overrides(data: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    """Return a copy of raw config data with API keys taken from the environment."""
    out = {k: (dict(v) if isinstance(v, dict) else v) for k, v in data.items()}
    shared = str(env.get(ENV_SHARED_KEY, "")).strip()
    if shared:
        for section in ("transcription", "recognition"):
            sec = out.setdefault(section, {})
            if isinstance(sec, dict) and not str(sec.get("api_key") or "").strip():
                sec["api_key"] = shared
    for var, (section, name) in ENV_KEYS.items():
        value = str(env.get(var, "")).strip()
        if not value:
            continue
        sec = out.setdefault(section, {})
        if isinstance(sec, dict):
            sec[name] = value
    return out


def load_config(path: Optional[str], *, env: Optional[Mapping[str, str]] = None, logger=None) -> AppConfig:
    """
    Load the application config.

    A missing file means defaults. A file that exists but cannot be parsed or
    fails validation raises ConfigError; we never run on a half-read config.
    Keys from the environment are merged in before validation.
    """
    data: Dict[str, Any] = {}
    if path:
        rr = read_json_file(path)
        if rr.ok:
            data = rr.data
        elif rr.error == "missing":
            if logger is not None:
                logger.info(f"config {path} not found; using defaults")
        else:
            raise ConfigError("Configuration file could not be read.", path=path, error=rr.error)
    data = apply_env_overrides(data, os.environ if env is None else env)
    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError("Configuration file is invalid.", path=path or "<defaults>", error=str(e)[:1000]) from e


def write_config(path: str, cfg: AppConfig, *, include_secrets: bool = False) -> None:
    """Write `cfg` as JSON. API keys are left out unless `include_secrets` is set."""
    data = cfg.model_dump(mode="json")
    if not include_secrets:
        for section, name in ENV_KEYS.values():
            data.get(section, {}).pop(name, None)
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
        f.write("\n")
    os.replace(tmp, path)
