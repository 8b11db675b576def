"""
Time-code translators used only for log messages.

The merge never decodes timestamps to order packets. These helpers turn
the raw 8-byte code into something an operator can read:

- HexTimeCode          : 16 lowercase hex digits, always succeeds.
- DaySegmentedTimeCode : CCSDS day-segmented layout
                         (16-bit day from 1958-01-01, 32-bit millisecond
                         of day, 16-bit microsecond of millisecond).
"""

from __future__ import annotations

import struct
from datetime import datetime, timedelta, timezone
from typing import Optional

from .config import TIME_SIZE
from .ports import TimeCodeTranslator

_EPOCH_1958 = datetime(1958, 1, 1, tzinfo=timezone.utc)
_MS_PER_DAY = 86_400_000
_CDS = struct.Struct(">HIH")


class HexTimeCode:
    def to_calendar(self, raw: bytes) -> Optional[str]:
        return bytes(raw[:TIME_SIZE]).hex()

    def to_seconds(self, raw: bytes) -> Optional[float]:
        return None


class DaySegmentedTimeCode:
    """Decode day / millisecond / microsecond segments; leap seconds are not applied."""

    def _fields(self, raw: bytes) -> Optional[tuple[int, int, int]]:
        if len(raw) < TIME_SIZE:
            return None
        days, ms, us = _CDS.unpack_from(raw, 0)
        # 1000 microseconds would roll into the next millisecond; treat as undecodable
        if ms >= _MS_PER_DAY or us >= 1000:
            return None
        return days, ms, us

    def to_calendar(self, raw: bytes) -> Optional[str]:
        fields = self._fields(raw)
        if fields is None:
            return None
        days, ms, us = fields
        dt = _EPOCH_1958 + timedelta(days=days, milliseconds=ms, microseconds=us)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")

    def to_seconds(self, raw: bytes) -> Optional[float]:
        fields = self._fields(raw)
        if fields is None:
            return None
        days, ms, us = fields
        return days * 86400.0 + ms / 1000.0 + us / 1_000_000.0


def make_translator(kind: str) -> TimeCodeTranslator:
    """Return the translator registered under `kind` ("hex" or "cds")."""
    if kind == "cds":
        return DaySegmentedTimeCode()
    return HexTimeCode()


def format_time(translator: TimeCodeTranslator, raw: Optional[bytes]) -> str:
    """Render `raw` through `translator`, falling back to hex when it cannot decode."""
    if raw is None:
        return "-"
    text = translator.to_calendar(raw)
    if text is None:
        text = bytes(raw[:TIME_SIZE]).hex()
    return text
