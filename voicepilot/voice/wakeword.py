from __future__ import annotations

import logging
import re
import threading
from typing import List, Optional

from voicepilot.core.config.models import WakeWordConfig, WakeWordEngine
from voicepilot.core.errors import ConfigError
from voicepilot.core.events import SourceSubsystem, SpeechEvent, make_event
from voicepilot.voice.errors import DependencyMissing


_STRIP_RE = re.compile(r"[.,!?;]")


def _clean(text: str) -> str:
    return " ".join(_STRIP_RE.sub("", str(text or "").lower()).split())


class WakeWordDetector:
    """
    Base detector: holds the wake/sleep vocabularies and the stop-word check
    every engine shares. Subclasses decide how wake words are spotted.
    """

    name = "base"

    def __init__(self, *, bus=None, logger=None):
        self.bus = bus
        self.logger = logger or logging.getLogger(__name__)
        self.wake_words: List[str] = []
        self.sleep_words: List[str] = []
        self._spotting = False

    def init(self, wake_words: List[str], sleep_words: List[str]) -> None:
        self.wake_words = [_clean(w) for w in wake_words if _clean(w)]
        self.sleep_words = [_clean(w) for w in sleep_words if _clean(w)]

    @property
    def spotting(self) -> bool:
        return self._spotting

    def start(self) -> None:
        self._spotting = True

    def stop(self) -> None:
        self._spotting = False

    def status(self) -> str:
        return f"wake_word_engine={self.name} spotting={self._spotting}"

    def check_for_stop_word(self, text: str) -> bool:
        """Exact match of the whole transcript against a sleep phrase."""
        if _clean(text) not in self.sleep_words:
            return False
        self.logger.info(f"wakeword: stop word '{_clean(text)}'")
        self._emit(SpeechEvent.STOP_WORD_DETECTED, word=_clean(text))
        return True

    def _emit(self, event: SpeechEvent, **payload) -> None:
        if self.bus is None:
            return
        ev = make_event(event, source=SourceSubsystem.wakeword, **payload)
        self.bus.publish_threadsafe(ev)


class NoWakeWordDetector(WakeWordDetector):
    name = "none"


class PhraseWakeWordDetector(WakeWordDetector):
    """Spots wake phrases in passively transcribed text the host feeds in."""

    name = "phrase"

    def feed_transcript(self, text: str) -> bool:
        if not self._spotting:
            return False
        cleaned = _clean(text)
        for phrase in self.wake_words:
            if cleaned == phrase or cleaned.startswith(phrase + " "):
                self.logger.info(f"wakeword: wake phrase '{phrase}'")
                self._emit(SpeechEvent.WAKE_WORD_DETECTED, word=phrase)
                return True
        return False


class PorcupineWakeWordDetector(WakeWordDetector):
    name = "porcupine"

    def __init__(
        self,
        *,
        access_key: str,
        keyword_paths: Optional[List[str]] = None,
        sensitivity: float = 0.6,
        device_index: Optional[int] = None,
        bus=None,
        logger=None,
    ):
        super().__init__(bus=bus, logger=logger)
        self.access_key = access_key
        self.keyword_paths = list(keyword_paths or [])
        self.sensitivity = float(sensitivity)
        self.device_index = device_index
        self._stop_evt = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._ready = False

    def is_ready(self) -> bool:
        return self._ready

    def status(self) -> str:
        return f"wake_word_engine=porcupine ready={self._ready} spotting={self._spotting}"

    def start(self) -> None:
        super().start()
        if self._thread and self._thread.is_alive():
            return
        self._stop_evt.clear()
        self._thread = threading.Thread(target=self._run, name="wakeword", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        super().stop()
        self._stop_evt.set()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)

    def _create(self):
        try:
            import pvporcupine  # type: ignore
            from pvrecorder import PvRecorder  # type: ignore
        except Exception as e:
            raise DependencyMissing(f"porcupine dependencies missing: {e}") from e
        if self.keyword_paths:
            porcupine = pvporcupine.create(
                access_key=self.access_key,
                keyword_paths=self.keyword_paths,
                sensitivities=[self.sensitivity] * len(self.keyword_paths),
            )
        else:
            # built-in keywords only; custom phrases need keyword_paths
            porcupine = pvporcupine.create(access_key=self.access_key, keywords=[w for w in self.wake_words if w in pvporcupine.KEYWORDS])
        recorder = PvRecorder(device_index=self.device_index if self.device_index is not None else -1, frame_length=porcupine.frame_length)
        return porcupine, recorder

    def _run(self) -> None:
        porcupine = None
        recorder = None
        try:
            porcupine, recorder = self._create()
            recorder.start()
            self._ready = True
            while not self._stop_evt.is_set():
                pcm = recorder.read()
                idx = porcupine.process(pcm)
                if idx >= 0:
                    word = self.wake_words[idx] if idx < len(self.wake_words) else str(idx)
                    self._emit(SpeechEvent.WAKE_WORD_DETECTED, word=word)
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"wakeword: porcupine stopped: {e}")
        finally:
            self._ready = False
            if recorder is not None:
                recorder.stop()
                recorder.delete()
            if porcupine is not None:
                porcupine.delete()


def build_wake_word_detector(cfg: WakeWordConfig, *, bus=None, device_index: Optional[int] = None, logger=None) -> WakeWordDetector:
    if cfg.engine == WakeWordEngine.NONE:
        detector: WakeWordDetector = NoWakeWordDetector(bus=bus, logger=logger)
    elif cfg.engine == WakeWordEngine.PHRASE:
        detector = PhraseWakeWordDetector(bus=bus, logger=logger)
    elif cfg.engine == WakeWordEngine.PORCUPINE:
        if not cfg.access_key:
            raise ConfigError("Porcupine needs an access key.")
        detector = PorcupineWakeWordDetector(
            access_key=cfg.access_key,
            keyword_paths=cfg.keyword_paths,
            sensitivity=cfg.sensitivity,
            device_index=device_index,
            bus=bus,
            logger=logger,
        )
    else:
        raise ConfigError("Unsupported wake word engine.", engine=str(cfg.engine))
    detector.init(cfg.wake_words, cfg.sleep_words)
    return detector
