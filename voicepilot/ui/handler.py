from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, TextIO

from voicepilot.core.config.models import UIConfig
from voicepilot.core.session import SessionState, SessionStatus


class UIHandler(Protocol):
    """Renderer for session status. Never mutates session state."""

    def init(self, cfg: UIConfig) -> None: ...

    def update_from_state(self, status: SessionStatus) -> None: ...

    def set_transcription(self, text: str) -> None: ...


@dataclass(frozen=True)
class StatusView:
    text: str
    button: str  # record|stop|disabled
    icon: str


STATUS_VIEWS: Dict[SessionState, StatusView] = {
    SessionState.IDLE: StatusView(text="Click to speak", button="record", icon="mic"),
    SessionState.LISTENING: StatusView(text="Listening...", button="stop", icon="mic-active"),
    SessionState.RECORDING: StatusView(text="Recording...", button="stop", icon="recording"),
    SessionState.PROCESSING: StatusView(text="Processing...", button="disabled", icon="spinner"),
    SessionState.EXECUTING: StatusView(text="Executing command...", button="disabled", icon="spinner"),
    SessionState.ERROR: StatusView(text="Something went wrong.", button="record", icon="error"),
}


def _coerce_text(value: Any, *, limit: int) -> str:
    text = str(value or "").strip()
    if not text:
        return ""
    return text[:limit]


def view_for(status: SessionStatus) -> StatusView:
    view = STATUS_VIEWS[status.state]
    if status.state == SessionState.ERROR and status.message:
        return StatusView(text=_coerce_text(status.message, limit=200), button=view.button, icon=view.icon)
    return view


def render_status(status: SessionStatus) -> str:
    view = view_for(status)
    return f"[{view.icon}] {view.text}"


class ConsoleUIHandler:
    """Writes status lines to a text stream; keeps the rendered history for inspection."""

    def __init__(self, *, stream: Optional[TextIO] = None, logger=None):
        self.stream = stream if stream is not None else sys.stdout
        self.logger = logger or logging.getLogger(__name__)
        self.cfg = UIConfig()
        self.lines: List[str] = []
        self.last_status: Optional[SessionStatus] = None
        self.transcription = ""

    def init(self, cfg: UIConfig) -> None:
        self.cfg = cfg

    def update_from_state(self, status: SessionStatus) -> None:
        line = render_status(status)
        if self.last_status is not None and render_status(self.last_status) == line:
            self.last_status = status
            return
        self.last_status = status
        self._write(line)

    def set_transcription(self, text: str) -> None:
        self.transcription = _coerce_text(text, limit=500)
        if self.cfg.show_transcription and self.transcription:
            self._write(f'  heard: "{self.transcription}"')

    def _write(self, line: str) -> None:
        self.lines.append(line)
        try:
            print(line, file=self.stream, flush=True)
        except (OSError, ValueError) as e:
            self.logger.warning(f"ui: console write failed: {e}")
