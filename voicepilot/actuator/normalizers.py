from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional, Protocol

import dateparser

from voicepilot.actuator.surface import Control, ControlKind


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_EMAIL_WORDS = (
    (re.compile(r"\bat\b", re.IGNORECASE), "@"),
    (re.compile(r"\bdot\b", re.IGNORECASE), "."),
    (re.compile(r"\bunderscore\b", re.IGNORECASE), "_"),
    (re.compile(r"\bdash\b", re.IGNORECASE), "-"),
    (re.compile(r"\bplus\b", re.IGNORECASE), "+"),
)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_AND_RE = re.compile(r"\band\b", re.IGNORECASE)


class ValueNormalizer(Protocol):
    def can_normalize(self, control: Control, value: str) -> bool: ...

    def normalize(self, control: Control, value: str) -> str: ...


def _is_input(control: Control, input_type: str) -> bool:
    return control.kind == ControlKind.INPUT and control.input_type.lower() == input_type


def _clamp(value: str, low: Optional[str], high: Optional[str]) -> str:
    # ISO dates and HH:MM times order lexicographically
    if low and value < low:
        return low
    if high and value > high:
        return high
    return value


class EmailNormalizer:
    def can_normalize(self, control: Control, value: str) -> bool:
        return _is_input(control, "email")

    def normalize(self, control: Control, value: str) -> str:
        out = str(value)
        for pattern, repl in _EMAIL_WORDS:
            out = pattern.sub(repl, out)
        return re.sub(r"\s+", "", out).strip()


class DateNormalizer:
    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or datetime.now

    def can_normalize(self, control: Control, value: str) -> bool:
        return _is_input(control, "date")

    def _parse(self, value: str) -> Optional[date]:
        spoken = value.strip().lower()
        today = self.clock().date()
        if spoken in {"today", "now"}:
            return today
        if spoken == "tomorrow":
            return today + timedelta(days=1)
        if spoken == "yesterday":
            return today - timedelta(days=1)
        parsed = dateparser.parse(value, settings={"RELATIVE_BASE": self.clock()})
        return parsed.date() if parsed is not None else None

    def normalize(self, control: Control, value: str) -> str:
        try:
            parsed = self._parse(value)
        except Exception as e:  # noqa: BLE001
            logger.info(f"normalizer: could not read date {value!r}: {e}")
            return value
        if parsed is None:
            return value
        return _clamp(parsed.isoformat(), control.min, control.max)


class TimeNormalizer:
    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or datetime.now

    def can_normalize(self, control: Control, value: str) -> bool:
        return _is_input(control, "time")

    def normalize(self, control: Control, value: str) -> str:
        spoken = value.strip().lower()
        try:
            if spoken == "now":
                parsed: Optional[datetime] = self.clock()
            else:
                parsed = dateparser.parse(value, settings={"RELATIVE_BASE": self.clock()})
        except Exception as e:  # noqa: BLE001
            logger.info(f"normalizer: could not read time {value!r}: {e}")
            return value
        if parsed is None:
            return value
        return _clamp(parsed.strftime("%H:%M"), control.min, control.max)


class NumericNormalizer:
    def can_normalize(self, control: Control, value: str) -> bool:
        return _is_input(control, "number")

    def normalize(self, control: Control, value: str) -> str:
        cleaned = str(value).replace(",", "")
        cleaned = _AND_RE.sub("", cleaned)
        cleaned = re.sub(r"\s+", "", cleaned)
        m = _NUMBER_RE.search(cleaned)
        if not m:
            return value
        # adding 0 drops the exponent normalize() leaves on round numbers and turns -0 into 0
        return format(Decimal(m.group(0)).normalize() + 0, "f")


def default_normalizers(clock: Optional[Clock] = None) -> List[ValueNormalizer]:
    return [EmailNormalizer(), DateNormalizer(clock), TimeNormalizer(clock), NumericNormalizer()]


def pick_normalizer(normalizers: List[ValueNormalizer], control: Control, value: str) -> Optional[ValueNormalizer]:
    for n in normalizers:
        if n.can_normalize(control, value):
            return n
    return None
