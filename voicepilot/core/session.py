from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set

from voicepilot.core.config.models import CaptureMode, SessionConfig
from voicepilot.core.errors import ErrorKind, user_message_for
from voicepilot.core.events import BaseEvent, SourceSubsystem, SpeechEvent, make_event
from voicepilot.nlu.models import IntentResult


class CancellationToken:
    """Identifies one voice session; cancelled when the session is superseded or stopped."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __repr__(self) -> str:
        return f"CancellationToken({self.session_id!r}, cancelled={self._cancelled})"


class SessionState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    RECORDING = "recording"
    PROCESSING = "processing"
    EXECUTING = "executing"
    ERROR = "error"


@dataclass(frozen=True)
class SessionStatus:
    """What a UI handler renders. Read-only snapshot of the core."""

    state: SessionState
    active: bool = False
    message: Optional[str] = None
    transcription: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    session_id: Optional[str] = None


@dataclass
class Cycle:
    trace_id: str
    # set once an nlu.completed event for this trace has been published
    recognized: bool = False


class CycleGate:
    """
    Lets one recognition + actuation cycle run at a time.

    The pipeline enters `cycle()` before it starts transcribing or recognizing;
    when the cycle ends with recognized intents, the gate stays held until the
    session core calls `finish()` for that trace, i.e. after the actuator is done.
    Later cycles wait in arrival order.
    """

    def __init__(self, *, timeout: float = 60.0, logger=None):
        self.timeout = float(timeout)
        self.logger = logger or logging.getLogger(__name__)
        self._lock = asyncio.Lock()
        self._done: Dict[str, asyncio.Event] = {}

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def cycle(self, trace_id: str) -> AsyncIterator[Cycle]:
        async with self._lock:
            done = self._done.setdefault(trace_id, asyncio.Event())
            current = Cycle(trace_id)
            try:
                yield current
                if current.recognized:
                    try:
                        await asyncio.wait_for(done.wait(), timeout=self.timeout)
                    except asyncio.TimeoutError:
                        self.logger.warning(f"[{trace_id}] cycle gate: actuation did not report back in {self.timeout}s")
            finally:
                self._done.pop(trace_id, None)

    def finish(self, trace_id: Optional[str]) -> None:
        if trace_id is None:
            return
        ev = self._done.get(trace_id)
        if ev is not None:
            ev.set()


class SessionCore:
    """
    The session state machine.

    Reacts to bus events only: UI buttons and wake/stop words start and stop
    sessions, capture / transcription / recognition events move the state
    along, and recognized intents are handed to the actuator. Long-running
    work (capture, transcription, actuation) runs in tasks owned by the core
    so bus handlers never block each other.

    Events stamped with a session id that is not the current, uncancelled
    session are stale and ignored.
    """

    def __init__(
        self,
        *,
        bus,
        pipeline,
        actuator,
        ui=None,
        wake_detector=None,
        cfg: Optional[SessionConfig] = None,
        error_reporter=None,
        logger=None,
    ):
        self.bus = bus
        self.pipeline = pipeline
        self.actuator = actuator
        self.ui = ui
        self.wake_detector = wake_detector
        self.cfg = cfg or SessionConfig()
        self.error_reporter = error_reporter
        self.logger = logger or logging.getLogger(__name__)

        self._state = SessionState.IDLE
        self._active = False
        self._token: Optional[CancellationToken] = None
        self._message: Optional[str] = None
        self._transcription: Optional[str] = None
        self._error_kind: Optional[ErrorKind] = None
        self._tasks: Set["asyncio.Task[Any]"] = set()
        self._recovery: Optional["asyncio.Task[Any]"] = None
        self._handlers: Dict[str, Callable[[BaseEvent], None]] = {}
        self._started = False
        # the pipeline enters this gate for every cycle; actuation releases it
        self.gate: CycleGate = getattr(pipeline, "gate", None) or CycleGate(timeout=self.cfg.max_cycle_seconds, logger=self.logger)
        pipeline.gate = self.gate

    # ---- lifecycle ----
    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._handlers = {
            SpeechEvent.RECORD_BUTTON_PRESSED.value: self._on_start_request,
            SpeechEvent.WAKE_WORD_DETECTED.value: self._on_start_request,
            SpeechEvent.STOP_BUTTON_PRESSED.value: self._on_stop_request,
            SpeechEvent.STOP_WORD_DETECTED.value: self._on_stop_request,
            SpeechEvent.RECORDING_STARTED.value: self._on_recording_started,
            SpeechEvent.RECORDING_STOPPED.value: self._on_recording_stopped,
            SpeechEvent.TRANSCRIPTION_STARTED.value: self._on_transcription_started,
            SpeechEvent.TRANSCRIPTION_COMPLETED.value: self._on_transcription_completed,
            SpeechEvent.NLU_COMPLETED.value: self._on_nlu_completed,
            SpeechEvent.ERROR_OCCURRED.value: self._on_error,
        }
        # one subscription keeps every session event on a single ordered queue
        self.bus.subscribe("*", self._dispatch, priority=10)
        if self.wake_detector is not None:
            self.wake_detector.start()
        self._render()

    async def shutdown(self) -> None:
        if self._token is not None:
            self._token.cancel()
        self._active = False
        if self.wake_detector is not None:
            self.wake_detector.stop()
        self.pipeline.release()
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._recovery = None

    async def settle(self, timeout: float = 10.0) -> bool:
        """Wait until the bus is drained and no session task is running."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            if not await self.bus.drain(timeout=remaining):
                return False
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                if await self.bus.drain(timeout=max(0.0, deadline - loop.time())) and not any(not t.done() for t in self._tasks):
                    return True
                continue
            await asyncio.wait(pending, timeout=max(0.0, deadline - loop.time()))

    # ---- public state ----
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def active(self) -> bool:
        return self._active

    @property
    def current_token(self) -> Optional[CancellationToken]:
        return self._token

    def status(self) -> SessionStatus:
        return SessionStatus(
            state=self._state,
            active=self._active,
            message=self._message,
            transcription=self._transcription,
            error_kind=self._error_kind,
            session_id=self._token.session_id if self._token else None,
        )

    async def start_listening(self) -> None:
        self._begin_session(reason="api")

    async def stop_listening(self) -> None:
        self._end_session(reason="api")

    async def submit_text(self, text: str) -> CancellationToken:
        """Typed input: runs the text through recognition and actuation as one cycle."""
        token = self._token if (self._token is not None and not self._token.cancelled) else self._new_token()
        self._spawn(self.pipeline.process_text(text, token), name="session-text")
        return token

    # ---- handlers ----
    def _dispatch(self, ev: BaseEvent) -> None:
        handler = self._handlers.get(ev.event_type)
        if handler is not None:
            handler(ev)

    def _on_start_request(self, ev: BaseEvent) -> None:
        self._begin_session(reason=ev.event_type)

    def _on_stop_request(self, ev: BaseEvent) -> None:
        self._end_session(reason=ev.event_type)

    def _on_recording_started(self, ev: BaseEvent) -> None:
        if self._is_stale(ev) or not self._active:
            return
        self._set_state(SessionState.RECORDING, trace_id=ev.trace_id)

    def _on_recording_stopped(self, ev: BaseEvent) -> None:
        if self._is_stale(ev) or not self._active:
            return
        if self._state == SessionState.RECORDING:
            self._set_state(SessionState.LISTENING, trace_id=ev.trace_id)

    def _on_transcription_started(self, ev: BaseEvent) -> None:
        if self._is_stale(ev):
            return
        self._set_state(SessionState.PROCESSING, trace_id=ev.trace_id)

    def _on_transcription_completed(self, ev: BaseEvent) -> None:
        if self._is_stale(ev):
            return
        text = str(ev.payload.get("text") or "")
        self._transcription = text
        if self.ui is not None:
            try:
                self.ui.set_transcription(text)
            except Exception as e:  # noqa: BLE001
                self.logger.warning(f"session: ui transcription update failed: {e}")
        # a spoken stop word ends the session even when it arrives as command text
        if self.wake_detector is not None and self.wake_detector.check_for_stop_word(text):
            self._end_session(reason="stop_word", cancel=True)

    def _on_nlu_completed(self, ev: BaseEvent) -> None:
        if self._is_stale(ev):
            self.gate.finish(ev.trace_id)
            return
        intents: List[IntentResult] = []
        for item in ev.payload.get("intents") or []:
            try:
                intents.append(IntentResult.model_validate(item))
            except Exception as e:  # noqa: BLE001
                self.logger.warning(f"[{ev.trace_id}] session: dropping malformed intent: {e}")
        token = self._token
        self._set_state(SessionState.EXECUTING, trace_id=ev.trace_id)
        self._spawn(self._actuate(intents, token, ev.trace_id), name="session-actuate")

    def _on_error(self, ev: BaseEvent) -> None:
        if self._is_stale(ev):
            return
        try:
            kind = ErrorKind(ev.payload.get("kind"))
        except ValueError:
            kind = ErrorKind.UNKNOWN
        self.logger.error(f"[{ev.trace_id}] session: error kind={kind.value} code={ev.payload.get('code')}")
        if self.pipeline.mode == CaptureMode.PUSH_TO_TALK and self._active:
            # the recording is gone; the user presses record again
            self._active = False
            if self.wake_detector is not None:
                self.wake_detector.start()
        self._error_kind = kind
        self._set_state(SessionState.ERROR, message=user_message_for(kind), trace_id=ev.trace_id)
        self._schedule_recovery(self._token)

    # ---- transitions ----
    def _begin_session(self, *, reason: str) -> None:
        if self._active:
            self.logger.debug(f"session: already listening; ignoring {reason}")
            return
        self._cancel_recovery()
        if self.wake_detector is not None:
            self.wake_detector.stop()
        token = self._new_token()
        self._active = True
        self._transcription = None
        self.logger.info(f"session: start {token.session_id} ({reason})")
        self._set_state(SessionState.LISTENING)
        self._spawn(self.pipeline.start_listening(token), name="session-listen")

    def _end_session(self, *, reason: str, cancel: bool = False) -> None:
        if not self._active:
            self.logger.debug(f"session: not listening; ignoring {reason}")
            return
        token = self._token
        self._active = False
        self.logger.info(f"session: stop {token.session_id if token else '-'} ({reason})")
        if token is not None:
            if cancel or self.pipeline.mode == CaptureMode.CONTINUOUS:
                token.cancel()
            self._spawn(self.pipeline.stop_listening(token), name="session-stop")
        if self.wake_detector is not None:
            self.wake_detector.start()
        self._set_state(SessionState.IDLE)

    async def _actuate(self, intents: List[Any], token: Optional[CancellationToken], trace_id: Optional[str]) -> None:
        try:
            await self._run_actuator(intents, token, trace_id)
        finally:
            self.gate.finish(trace_id)

    async def _run_actuator(self, intents: List[Any], token: Optional[CancellationToken], trace_id: Optional[str]) -> None:
        session_id = token.session_id if token else None
        try:
            ok = await self.actuator.perform_action(intents, trace_id=trace_id, session_id=session_id)
        except Exception as e:  # noqa: BLE001
            self._report(e, trace_id=trace_id, token=token)
            return
        self.logger.info(f"[{trace_id}] session: actuation finished ok={ok}")
        if token is not self._token:
            return
        if self._active and token is not None and not token.cancelled:
            self._resume_listening(token, trace_id=trace_id)
        elif self._state == SessionState.EXECUTING:
            self._set_state(SessionState.IDLE, trace_id=trace_id)

    def _resume_listening(self, token: CancellationToken, *, trace_id: Optional[str] = None) -> None:
        self._set_state(SessionState.LISTENING, trace_id=trace_id)
        if self.pipeline.mode == CaptureMode.CONTINUOUS:
            self.pipeline.listen_in_background(token)

    def _schedule_recovery(self, token: Optional[CancellationToken]) -> None:
        self._cancel_recovery()
        self._recovery = self._spawn(self._recover(token), name="session-recover")

    def _cancel_recovery(self) -> None:
        task, self._recovery = self._recovery, None
        if task is not None and not task.done():
            task.cancel()

    async def _recover(self, token: Optional[CancellationToken]) -> None:
        await asyncio.sleep(float(self.cfg.error_recovery_seconds))
        if self._state != SessionState.ERROR or token is not self._token:
            return
        self._error_kind = None
        if self._active and token is not None and not token.cancelled:
            self._resume_listening(token)
        else:
            self._set_state(SessionState.IDLE)

    def _report(self, exc: BaseException, *, trace_id: Optional[str], token: Optional[CancellationToken]) -> None:
        trace_id = trace_id or uuid.uuid4().hex[:12]
        kind = ErrorKind.UNKNOWN
        code = "session_error"
        if self.error_reporter is not None:
            ctx = {"session_id": token.session_id} if token is not None else {}
            err = self.error_reporter.report_exception(exc, trace_id=trace_id, subsystem="session", context=ctx)
            kind, code = err.kind, err.code
        else:
            self.logger.error(f"[{trace_id}] session: {exc}")
        self.bus.publish(
            make_event(
                SpeechEvent.ERROR_OCCURRED,
                source=SourceSubsystem.session,
                trace_id=trace_id,
                kind=kind.value,
                code=code,
                session_id=token.session_id if token else None,
            )
        )

    # ---- helpers ----
    def _new_token(self) -> CancellationToken:
        if self._token is not None:
            self._token.cancel()
        self._token = CancellationToken()
        return self._token

    def _is_stale(self, ev: BaseEvent) -> bool:
        sid = ev.session_id
        if sid is None:
            return False
        token = self._token
        if token is None or token.session_id != sid or token.cancelled:
            self.logger.info(f"[{ev.trace_id}] session: ignoring stale {ev.event_type} from {sid}")
            return True
        return False

    def _spawn(self, coro: Awaitable[Any], *, name: str) -> "asyncio.Task[Any]":
        task = asyncio.get_running_loop().create_task(self._guard(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, coro: Awaitable[Any], name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"session: task {name} failed: {e}")
            self._report(e, trace_id=None, token=self._token)

    def _set_state(self, new_state: SessionState, *, message: Optional[str] = None, trace_id: Optional[str] = None) -> None:
        old = self._state
        self._state = new_state
        self._message = message
        if new_state != SessionState.ERROR:
            self._error_kind = None
        if old != new_state:
            self.logger.info(f"session: {old.value} -> {new_state.value}")
            self.bus.publish(
                make_event(
                    SpeechEvent.SESSION_STATE_CHANGED,
                    source=SourceSubsystem.session,
                    trace_id=trace_id,
                    previous=old.value,
                    state=new_state.value,
                    session_id=self._token.session_id if self._token else None,
                )
            )
        self._render()

    def _render(self) -> None:
        if self.ui is None:
            return
        try:
            self.ui.update_from_state(self.status())
        except Exception as e:  # noqa: BLE001
            self.logger.warning(f"session: ui update failed: {e}")
