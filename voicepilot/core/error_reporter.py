from __future__ import annotations

import json
import os
import threading
import time
import traceback
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

import requests

from voicepilot.core.events.redact import redact
from voicepilot.core.errors import (
    ConfigError,
    ErrorKind,
    MicrophoneAccessError,
    NetworkError,
    RecognitionError,
    TranscriptionError,
    VoicePilotError,
)


@dataclass
class ErrorReporterConfig:
    include_tracebacks: bool = False
    # errors.jsonl rolls over to errors.jsonl.1 past this size; 0 disables
    max_bytes: int = 1_000_000


class ErrorReporter:
    """
    Append-only JSONL record of failures.

    Each record carries the user-facing message and kind alongside a redacted
    copy of the internal error, so `/errors` can explain what happened without
    exposing keys or provider responses.
    """

    def __init__(self, *, path: str = os.path.join("logs", "errors.jsonl"), cfg: Optional[ErrorReporterConfig] = None, logger=None):
        self.path = path
        self.cfg = cfg or ErrorReporterConfig()
        self.logger = logger
        self._lock = threading.Lock()
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)

    def report_exception(
        self,
        exc: BaseException,
        *,
        trace_id: str,
        subsystem: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> VoicePilotError:
        err = normalize_exception(exc, subsystem=subsystem, context=context or {})
        self.write_error(err, trace_id=trace_id, subsystem=subsystem, internal_exc=exc)
        return err

    def write_error(self, err: VoicePilotError, *, trace_id: str, subsystem: str, internal_exc: Optional[BaseException] = None) -> None:
        ctx = dict(err.context or {})
        entry: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "trace_id": trace_id,
            "session_id": ctx.pop("session_id", None),
            "subsystem": subsystem,
            "error_code": err.code,
            "error_kind": err.kind.value,
            "severity": err.severity.value,
            "recoverable": bool(err.recoverable),
            "user_message": err.user_message,
            "safe_context": redact(ctx),
        }
        if internal_exc is not None:
            entry["internal_error"] = redact(f"{type(internal_exc).__name__}: {str(internal_exc)[:500]}")
            if self.cfg.include_tracebacks:
                tb = traceback.format_exception(type(internal_exc), internal_exc, internal_exc.__traceback__, limit=30)
                entry["internal_context"] = {"traceback": redact("".join(tb))}
        line = json.dumps(entry, ensure_ascii=False, default=str)
        with self._lock:
            self._rotate_if_needed()
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        if self.logger is not None:
            self.logger.warning(f"[{trace_id}] {subsystem} {err.code}: {entry.get('internal_error', err.user_message)}")

    def _rotate_if_needed(self) -> None:
        limit = int(self.cfg.max_bytes)
        if limit <= 0:
            return
        try:
            if os.path.getsize(self.path) < limit:
                return
        except OSError:
            return
        os.replace(self.path, self.path + ".1")

    def _records(self) -> Iterator[Dict[str, Any]]:
        try:
            f = open(self.path, "r", encoding="utf-8")
        except FileNotFoundError:
            return
        with f:
            for line in f:
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(obj, dict):
                    yield obj

    def tail(self, n: int = 20) -> List[Dict[str, Any]]:
        return list(deque(self._records(), maxlen=max(1, int(n))))

    def by_trace_id(self, trace_id: str) -> List[Dict[str, Any]]:
        return [r for r in self._records() if r.get("trace_id") == trace_id]

    def by_session_id(self, session_id: str) -> List[Dict[str, Any]]:
        return [r for r in self._records() if r.get("session_id") == session_id]


def normalize_exception(exc: BaseException, *, subsystem: str, context: Dict[str, Any]) -> VoicePilotError:
    if isinstance(exc, VoicePilotError):
        return exc

    msg = str(exc)
    ctx = dict(context or {})

    # Transport failures look the same whichever remote service raised them.
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return NetworkError(**ctx)
    if isinstance(exc, requests.HTTPError):
        status = getattr(getattr(exc, "response", None), "status_code", None)
        return NetworkError(status=status, **ctx)

    if subsystem == "config":
        return ConfigError("Configuration error.", error=msg, **ctx)
    if subsystem == "capture":
        return MicrophoneAccessError(**ctx)
    if subsystem == "stt":
        return TranscriptionError(**ctx)
    if subsystem in {"llm", "nlu"}:
        return RecognitionError(**ctx)

    # Driver errors raised outside their own subsystem still carry a kind.
    kind = getattr(exc, "kind", None)
    if kind == ErrorKind.MICROPHONE_ACCESS:
        return MicrophoneAccessError(**ctx)
    if kind == ErrorKind.TRANSCRIPTION:
        return TranscriptionError(**ctx)

    return VoicePilotError(code="unknown_error", user_message="Something went wrong.", context=ctx, kind=ErrorKind.UNKNOWN)
