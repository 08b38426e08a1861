#!/usr/bin/env python3
"""Time points for light schedules.

A time point is one configured entry of a schedule: *when* (a fixed clock
time, or sunrise/sunset with an optional offset) and *what* (a color
temperature and a brightness).

Accepted time texts (case-insensitive, whitespace-tolerant)
-----------------------------------------------------------
* ``"8:00"``, ``"22:30"``           fixed clock time on the schedule's day
* ``"sunrise"``, ``"sunset"``       the solar event itself
* ``"sunrise + 30m"``               solar event shifted by whole minutes;
  the unit is any prefix of ``minutes`` (``m``, ``min``, ``minut``, ...) or ``mins``

The text is split into tokens and the complete token sequence has to match
one of the forms above; anything left over is an error. ``"sunrise - 1h"``
is rejected rather than read as plain ``"sunrise"``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, List, Tuple

from .errors import ParseError


class AnchorKind(Enum):
    """What a time point is anchored to."""
    FIXED = "fixed"
    SUNRISE = "sunrise"
    SUNSET = "sunset"

    @property
    def is_solar(self) -> bool:
        return self is not AnchorKind.FIXED


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(r"\s*(?:(?P<number>[0-9]+)|(?P<word>[a-z]+)|(?P<colon>:)|(?P<sign>[+-]))")

MINUTE_UNIT = "minutes"


def is_minute_unit(unit: str) -> bool:
    return bool(unit) and (MINUTE_UNIT.startswith(unit) or unit == "mins")


SOLAR_KEYWORDS = {
    "sunrise": AnchorKind.SUNRISE,
    "sunset": AnchorKind.SUNSET,
}


def _tokenize(text: str) -> List[Tuple[str, str]]:
    """Split ``text`` into ``(kind, value)`` tokens, failing on any stray character."""
    tokens: List[Tuple[str, str]] = []
    normalized = text.strip().lower()
    pos = 0
    while pos < len(normalized):
        match = _TOKEN_RE.match(normalized, pos)
        if not match:
            raise ParseError(f"Invalid time point '{text}': unexpected character '{normalized[pos]}'")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


# ---------------------------------------------------------------------------
# Anchor
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Anchor:
    """Parsed reference instant of a time point."""
    kind: AnchorKind
    hour: int = 0
    minute: int = 0
    offset_minutes: int = 0

    @property
    def is_solar(self) -> bool:
        return self.kind.is_solar

    def __str__(self) -> str:
        if self.kind is AnchorKind.FIXED:
            return f"{self.hour:02d}:{self.minute:02d}"
        if self.offset_minutes == 0:
            return self.kind.value
        sign = "+" if self.offset_minutes > 0 else "-"
        return f"{self.kind.value} {sign} {abs(self.offset_minutes)}m"


def parse_anchor(text: str) -> Anchor:
    """Parse a time text into an :class:`Anchor`.

    Raises:
        ParseError: if the text is not exactly one of the accepted forms.
    """
    if not isinstance(text, str):
        raise ParseError(f"Invalid time point {text!r}: expected a string")

    tokens = _tokenize(text)
    kinds = [kind for kind, _ in tokens]

    if not tokens:
        raise ParseError("Invalid time point: empty text")

    # HH:MM
    if kinds == ["number", "colon", "number"]:
        hour_text, minute_text = tokens[0][1], tokens[2][1]
        if len(hour_text) > 2 or len(minute_text) != 2:
            raise ParseError(f"Invalid time point '{text}': expected HH:MM")
        hour, minute = int(hour_text), int(minute_text)
        if hour > 23 or minute > 59:
            raise ParseError(f"Invalid time point '{text}': {hour}:{minute_text} is not a time of day")
        return Anchor(AnchorKind.FIXED, hour=hour, minute=minute)

    # sunrise | sunset [(+|-) N unit]
    keyword = tokens[0][1] if kinds[0] == "word" else None
    if keyword not in SOLAR_KEYWORDS:
        raise ParseError(f"Invalid time point '{text}': expected HH:MM, sunrise or sunset")
    kind = SOLAR_KEYWORDS[keyword]

    if len(tokens) == 1:
        return Anchor(kind)

    if kinds[1] != "sign":
        raise ParseError(f"Invalid time point '{text}': expected '+' or '-' after '{keyword}'")
    if len(tokens) < 3 or kinds[2] != "number":
        raise ParseError(f"Invalid time point '{text}': expected a number of minutes after '{tokens[1][1]}'")
    if len(tokens) < 4 or kinds[3] != "word":
        raise ParseError(f"Invalid time point '{text}': missing minute unit")
    unit = tokens[3][1]
    if not is_minute_unit(unit):
        raise ParseError(f"Invalid time point '{text}': unsupported unit '{unit}', offsets are given in minutes")
    if len(tokens) > 4:
        raise ParseError(f"Invalid time point '{text}': unexpected trailing '{tokens[4][1]}'")

    minutes = int(tokens[2][1])
    if tokens[1][1] == "-":
        minutes = -minutes
    return Anchor(kind, offset_minutes=minutes)


def resolve_anchor(anchor: Anchor, start_of_day: datetime, sunrise: datetime, sunset: datetime) -> datetime:
    """Turn an anchor into an absolute instant for the day starting at ``start_of_day``."""
    if anchor.kind is AnchorKind.FIXED:
        return datetime.combine(
            start_of_day.date(), time(anchor.hour, anchor.minute), tzinfo=start_of_day.tzinfo
        )
    base = sunrise if anchor.kind is AnchorKind.SUNRISE else sunset
    return base + timedelta(minutes=anchor.offset_minutes)


# ---------------------------------------------------------------------------
# Resolved entries
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class ResolvedTimestamp:
    """A light state that should be reached at an absolute instant."""
    time: datetime
    color_temperature: int
    brightness: int

    def __str__(self) -> str:
        return f"{self.time.isoformat(sep=' ', timespec='minutes')} {self.color_temperature}K/{self.brightness}%"


# ---------------------------------------------------------------------------
# TimePoint
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TimePoint:
    """One configured schedule entry, parsed at construction time."""
    text: str
    anchor: Anchor
    color_temperature: int
    brightness: int

    @classmethod
    def parse(cls, text: str, color_temperature: int, brightness: int) -> "TimePoint":
        """Parse and validate a configured entry.

        Args:
            text: Time text, e.g. ``"sunset - 30m"``
            color_temperature: Target color temperature in Kelvin
            brightness: Target brightness percentage (0-100)

        Raises:
            ParseError: on a malformed time text or out-of-range light values
        """
        anchor = parse_anchor(text)
        if isinstance(color_temperature, bool) or not isinstance(color_temperature, int) or color_temperature <= 0:
            raise ParseError(f"Invalid color temperature {color_temperature!r} for time point '{text}'")
        if isinstance(brightness, bool) or not isinstance(brightness, int) or not 0 <= brightness <= 100:
            raise ParseError(f"Invalid brightness {brightness!r} for time point '{text}': expected 0-100")
        return cls(text=text, anchor=anchor, color_temperature=color_temperature, brightness=brightness)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimePoint":
        """Build from a configuration entry (``time``, ``colorTemperature``, ``brightness``)."""
        if not isinstance(data, dict):
            raise ParseError(f"Invalid schedule entry {data!r}: expected a mapping")
        missing = [key for key in ("time", "colorTemperature", "brightness") if key not in data]
        if missing:
            raise ParseError(f"Schedule entry {data!r} is missing {', '.join(missing)}")
        return cls.parse(data["time"], data["colorTemperature"], data["brightness"])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.text,
            "colorTemperature": self.color_temperature,
            "brightness": self.brightness,
        }

    @property
    def kind(self) -> AnchorKind:
        return self.anchor.kind

    def resolve(self, start_of_day: datetime, sunrise: datetime, sunset: datetime) -> ResolvedTimestamp:
        return ResolvedTimestamp(
            resolve_anchor(self.anchor, start_of_day, sunrise, sunset),
            self.color_temperature,
            self.brightness,
        )

    def __str__(self) -> str:
        return f"'{self.text}' ({self.color_temperature}K/{self.brightness}%)"
