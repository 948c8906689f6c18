from __future__ import annotations

import asyncio
import io
import logging
import threading
import wave
from typing import Any, List, Optional

from voicepilot.core.config.models import CaptureConfig, VadConfig
from voicepilot.core.events import SourceSubsystem, SpeechEvent, make_event
from voicepilot.voice.errors import AudioError, DependencyMissing


def list_microphones() -> List[dict]:
    try:
        import sounddevice as sd  # type: ignore
    except Exception as e:
        raise DependencyMissing(f"sounddevice not available: {e}") from e

    devices = sd.query_devices()
    out: List[dict] = []
    for idx, d in enumerate(devices):
        if int(d.get("max_input_channels", 0)) <= 0:
            continue
        out.append({"index": idx, "name": d.get("name"), "hostapi": d.get("hostapi"), "max_input_channels": d.get("max_input_channels")})
    return out


def pcm_to_wav(pcm: bytes, sample_rate: int) -> bytes:
    """Mono 16-bit PCM -> WAV container bytes."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(int(sample_rate))
        wf.writeframes(pcm)
    return buf.getvalue()


def _import_webrtcvad():
    try:
        import webrtcvad  # type: ignore
    except Exception as e:
        raise DependencyMissing(f"webrtcvad not available: {e}") from e
    return webrtcvad


class VoiceActivityDetector:
    """
    Utterance endpointing on WebRTC VAD frame decisions.

    Mono 16-bit PCM is cut into `frame_ms` frames. An utterance starts once
    `min_speech_ms` of speech frames accumulate and ends after `silence_ms`
    of non-speech, or when it reaches `max_utterance_seconds`.
    """

    def __init__(self, cfg: VadConfig, *, sample_rate: int = 16000):
        webrtcvad = _import_webrtcvad()
        self.cfg = cfg
        self.sample_rate = int(sample_rate)
        self._vad = webrtcvad.Vad(int(cfg.aggressiveness))
        self.frame_samples = int(self.sample_rate * cfg.frame_ms / 1000)
        self._frame_bytes = self.frame_samples * 2
        self.reset()

    def reset(self) -> None:
        self._residual = b""
        self.speech_ms = 0
        self.silence_ms = 0
        self.total_ms = 0
        self.started = False

    @property
    def heard_speech(self) -> bool:
        return self.speech_ms > 0

    def process(self, pcm: bytes) -> bool:
        """Feed PCM of any length; True once the utterance is complete."""
        self._residual += pcm
        while len(self._residual) >= self._frame_bytes:
            frame = self._residual[: self._frame_bytes]
            self._residual = self._residual[self._frame_bytes :]
            if self._step(self._vad.is_speech(frame, self.sample_rate)):
                self._residual = b""
                return True
        return False

    def _step(self, is_speech: bool) -> bool:
        frame = int(self.cfg.frame_ms)
        self.total_ms += frame
        if is_speech:
            self.speech_ms += frame
            self.silence_ms = 0
            if self.speech_ms >= self.cfg.min_speech_ms:
                self.started = True
        elif self.started:
            self.silence_ms += frame
        if self.started and self.silence_ms >= self.cfg.silence_ms:
            return True
        return self.total_ms >= int(self.cfg.max_utterance_seconds * 1000)


class SoundDeviceCapturer:
    """
    Microphone capture through sounddevice.

    Push-to-talk keeps an input stream open between start_recording and
    stop_recording; continuous mode records one VAD-delimited utterance per
    listen_for_utterance call. The stream is closed on every exit path.
    """

    def __init__(self, *, cfg: Optional[CaptureConfig] = None, bus=None, logger=None):
        self.cfg = cfg or CaptureConfig()
        self.bus = bus
        self.logger = logger or logging.getLogger(__name__)
        self._stream: Any = None
        self._frames: List[Any] = []
        self._stop = threading.Event()

    @staticmethod
    def _import_audio():
        try:
            import numpy as np  # type: ignore
            import sounddevice as sd  # type: ignore
        except Exception as e:
            raise DependencyMissing(f"audio dependencies missing: {e}") from e
        return np, sd

    def _publish(self, event: SpeechEvent, trace_id: Optional[str], session_id: Optional[str]) -> None:
        if self.bus is not None:
            self.bus.publish(make_event(event, source=SourceSubsystem.capture, trace_id=trace_id, session_id=session_id))

    @property
    def recording(self) -> bool:
        return self._stream is not None

    async def start_recording(self, *, trace_id: Optional[str] = None, session_id: Optional[str] = None) -> None:
        if self._stream is not None:
            return
        np, sd = self._import_audio()
        self._frames = []

        def callback(indata, _frames, _time_info, status):  # noqa: ANN001
            self._frames.append(indata.copy())

        try:
            stream = sd.InputStream(
                samplerate=self.cfg.sample_rate,
                channels=1,
                dtype="int16",
                device=self.cfg.device_index,
                callback=callback,
            )
            stream.start()
        except Exception as e:
            self.release()
            raise AudioError(f"microphone unavailable: {e}") from e
        self._stream = stream
        self._publish(SpeechEvent.RECORDING_STARTED, trace_id, session_id)

    async def stop_recording(self, *, trace_id: Optional[str] = None, session_id: Optional[str] = None) -> bytes:
        if self._stream is None:
            raise AudioError("not recording")
        np, _sd = self._import_audio()
        self.release()
        self._publish(SpeechEvent.RECORDING_STOPPED, trace_id, session_id)
        frames, self._frames = self._frames, []
        if not frames:
            raise AudioError("no audio captured")
        audio = np.concatenate(frames, axis=0).astype("int16")
        return pcm_to_wav(audio.tobytes(), self.cfg.sample_rate)

    async def listen_for_utterance(
        self,
        vad: Optional[VadConfig] = None,
        *,
        trace_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> bytes:
        vad = vad or self.cfg.vad
        self._stop.clear()
        self._publish(SpeechEvent.RECORDING_STARTED, trace_id, session_id)
        try:
            pcm = await asyncio.to_thread(self._record_utterance, vad)
        finally:
            self._publish(SpeechEvent.RECORDING_STOPPED, trace_id, session_id)
        return pcm_to_wav(pcm, self.cfg.sample_rate) if pcm else b""

    def _record_utterance(self, vad: VadConfig) -> bytes:
        _np, sd = self._import_audio()
        endpoint = VoiceActivityDetector(vad, sample_rate=self.cfg.sample_rate)
        frame_len = endpoint.frame_samples
        chunks: List[bytes] = []
        try:
            with sd.InputStream(
                samplerate=self.cfg.sample_rate,
                channels=1,
                dtype="int16",
                device=self.cfg.device_index,
                blocksize=frame_len,
            ) as stream:
                while not self._stop.is_set():
                    data, _overflowed = stream.read(frame_len)
                    pcm = data.tobytes()
                    done = endpoint.process(pcm)
                    # keep the onset frames that led up to `started`
                    if endpoint.heard_speech:
                        chunks.append(pcm)
                    if done:
                        break
        except Exception as e:
            raise AudioError(f"recording failed: {e}") from e
        if self._stop.is_set() or not endpoint.started:
            return b""
        return b"".join(chunks)

    def stop_listening(self) -> None:
        self._stop.set()

    def release(self) -> None:
        self._stop.set()
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
