from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from voicepilot.core.config.models import CaptureConfig, CaptureMode
from voicepilot.core.error_reporter import normalize_exception
from voicepilot.core.events import EventSeverity, SourceSubsystem, SpeechEvent, make_event
from voicepilot.core.session import CancellationToken, Cycle, CycleGate
from voicepilot.nlu.models import IntentResult


def new_trace_id() -> str:
    return uuid.uuid4().hex[:12]


@asynccontextmanager
async def _ungated(trace_id: str) -> AsyncIterator[Cycle]:
    yield Cycle(trace_id)


class SpeechPipeline:
    """
    Capture -> transcription -> recognition for one session.

    Results travel as events (`transcription.*`, `nlu.completed`,
    `error.occurred`) stamped with the session id of the token that started
    the cycle; a cancelled token stops the cycle at the next step.
    """

    def __init__(
        self,
        *,
        recognizer,
        bus,
        transcriber=None,
        capturer=None,
        cfg: Optional[CaptureConfig] = None,
        error_reporter=None,
        logger=None,
    ):
        self.recognizer = recognizer
        self.bus = bus
        self.transcriber = transcriber
        self.capturer = capturer
        self.cfg = cfg or CaptureConfig()
        self.error_reporter = error_reporter
        self.logger = logger or logging.getLogger(__name__)
        self._listen_task: Optional["asyncio.Task[None]"] = None
        self._trace_id: Optional[str] = None
        # set by the session core so cycles run one at a time
        self.gate: Optional[CycleGate] = None

    @property
    def mode(self) -> CaptureMode:
        return self.cfg.mode

    async def start_listening(self, token: CancellationToken) -> None:
        if self.capturer is None:
            self.logger.info("pipeline: no capturer configured; text input only")
            return
        self._trace_id = new_trace_id()
        if self.mode == CaptureMode.CONTINUOUS:
            self.listen_in_background(token)
            return
        try:
            await self.capturer.start_recording(trace_id=self._trace_id, session_id=token.session_id)
        except Exception as e:  # noqa: BLE001
            self.fail(e, subsystem="capture", token=token, trace_id=self._trace_id)

    async def stop_listening(self, token: CancellationToken) -> None:
        if self.capturer is None:
            return
        if self.mode == CaptureMode.CONTINUOUS:
            self.capturer.stop_listening()
            task, self._listen_task = self._listen_task, None
            if task is not None and not task.done():
                task.cancel()
            return
        trace_id = self._trace_id or new_trace_id()
        try:
            audio = await self.capturer.stop_recording(trace_id=trace_id, session_id=token.session_id)
        except Exception as e:  # noqa: BLE001
            self.fail(e, subsystem="capture", token=token, trace_id=trace_id)
            return
        await self.process_audio(audio, token, trace_id=trace_id)

    def listen_in_background(self, token: CancellationToken) -> None:
        if self._listen_task is not None and not self._listen_task.done():
            return
        self._listen_task = asyncio.get_running_loop().create_task(self._listen_loop(token), name="pipeline-listen")

    async def _listen_loop(self, token: CancellationToken) -> None:
        # a failed window ends the loop; the session restarts it after recovery
        while not token.cancelled and await self.listen_once(token):
            pass

    async def listen_once(self, token: CancellationToken) -> bool:
        """Wait for one spoken utterance and run it through the cycle. False when capture failed or the session ended."""
        while self.capturer is not None and not token.cancelled:
            trace_id = new_trace_id()
            try:
                audio = await self.capturer.listen_for_utterance(self.cfg.vad, trace_id=trace_id, session_id=token.session_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                self.fail(e, subsystem="capture", token=token, trace_id=trace_id)
                return False
            if token.cancelled:
                return False
            if not audio:
                # nothing said in this window
                self.logger.debug("pipeline: no speech in utterance window")
                continue
            return await self.process_audio(audio, token, trace_id=trace_id)
        return False

    def _cycle(self, trace_id: str):
        if self.gate is None:
            return _ungated(trace_id)
        return self.gate.cycle(trace_id)

    async def process_audio(self, audio: bytes, token: CancellationToken, *, trace_id: Optional[str] = None) -> bool:
        trace_id = trace_id or new_trace_id()
        async with self._cycle(trace_id) as cycle:
            if token.cancelled:
                return False
            self._publish(SpeechEvent.AUDIO_CAPTURED, token, trace_id, bytes=len(audio))
            self._publish(SpeechEvent.TRANSCRIPTION_STARTED, token, trace_id)
            if self.transcriber is None:
                self.fail(RuntimeError("no transcription driver configured"), subsystem="stt", token=token, trace_id=trace_id)
                return False
            try:
                text = await self.transcriber.transcribe(audio)
            except Exception as e:  # noqa: BLE001
                self.fail(e, subsystem="stt", token=token, trace_id=trace_id)
                return False
            cycle.recognized = await self._recognize(text, token, trace_id)
            return cycle.recognized

    async def process_text(self, text: str, token: CancellationToken, *, trace_id: Optional[str] = None) -> bool:
        """Run a typed utterance through the same cycle as a transcribed one."""
        trace_id = trace_id or new_trace_id()
        async with self._cycle(trace_id) as cycle:
            if token.cancelled:
                return False
            self._publish(SpeechEvent.TRANSCRIPTION_STARTED, token, trace_id)
            cycle.recognized = await self._recognize(text, token, trace_id)
            return cycle.recognized

    async def _recognize(self, text: str, token: CancellationToken, trace_id: str) -> bool:
        if token.cancelled:
            return False
        self._publish(SpeechEvent.TRANSCRIPTION_COMPLETED, token, trace_id, text=text)
        if str(text or "").strip():
            intents = await self.recognizer.detect_intent(text)
        else:
            intents = [IntentResult.unknown()]
        if token.cancelled:
            self.logger.info(f"[{trace_id}] pipeline: session {token.session_id} cancelled; dropping recognition")
            return False
        self._publish(SpeechEvent.NLU_COMPLETED, token, trace_id, text=text, intents=[i.summary() for i in intents])
        return True

    def release(self) -> None:
        task, self._listen_task = self._listen_task, None
        if task is not None and not task.done():
            task.cancel()
        if self.capturer is None:
            return
        try:
            self.capturer.release()
        except Exception as e:  # noqa: BLE001
            self.logger.warning(f"pipeline: releasing microphone failed: {e}")

    def fail(self, exc: BaseException, *, subsystem: str, token: CancellationToken, trace_id: Optional[str] = None) -> None:
        trace_id = trace_id or new_trace_id()
        ctx: dict[str, Any] = {"session_id": token.session_id}
        if self.error_reporter is not None:
            err = self.error_reporter.report_exception(exc, trace_id=trace_id, subsystem=subsystem, context=ctx)
        else:
            err = normalize_exception(exc, subsystem=subsystem, context=ctx)
            self.logger.error(f"[{trace_id}] {subsystem} failed: {exc}")
        self.release()
        self._publish(
            SpeechEvent.ERROR_OCCURRED,
            token,
            trace_id,
            severity=EventSeverity.ERROR,
            kind=err.kind.value,
            code=err.code,
            subsystem=subsystem,
        )

    def _publish(self, event: SpeechEvent, token: CancellationToken, trace_id: str, *, severity: EventSeverity = EventSeverity.INFO, **payload: Any) -> None:
        source = SourceSubsystem.nlu if event == SpeechEvent.NLU_COMPLETED else SourceSubsystem.stt
        if event == SpeechEvent.ERROR_OCCURRED:
            source = SourceSubsystem(payload.get("subsystem")) if payload.get("subsystem") in SourceSubsystem._value2member_map_ else SourceSubsystem.session
        self.bus.publish(make_event(event, source=source, trace_id=trace_id, severity=severity, session_id=token.session_id, **payload))
