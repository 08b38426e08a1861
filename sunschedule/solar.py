#!/usr/bin/env python3
"""Sunrise and sunset lookup.

Schedule resolution only needs two instants per day. Anything providing
``sunrise(day, latitude, longitude)`` and ``sunset(day, latitude, longitude)``
can stand in for the astral-backed calculator below, e.g. a fixed stub in
tests.
"""

from __future__ import annotations

import logging
import os
from datetime import date, datetime
from typing import Optional, Protocol, Tuple

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from astral import LocationInfo
from astral.sun import sun

from .errors import SolarError

logger = logging.getLogger(__name__)


class SolarCalculator(Protocol):
    """Anything that knows when the sun rises and sets."""

    def sunrise(self, day: date, latitude: float, longitude: float) -> datetime:
        ...

    def sunset(self, day: date, latitude: float, longitude: float) -> datetime:
        ...


def resolve_timezone(timezone: Optional[str]):
    """Return a ZoneInfo for ``timezone``, falling back to UTC for unknown names."""
    if not timezone:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{timezone}', falling back to UTC")
        return ZoneInfo("UTC")


class AstralSolarCalculator:
    """Sun times computed with astral, returned in the given timezone."""

    def __init__(self, timezone: Optional[str] = None):
        self.tzinfo = resolve_timezone(timezone or os.getenv("TZ"))

    def sun_times(self, day: date, latitude: float, longitude: float) -> Tuple[datetime, datetime]:
        """Return ``(sunrise, sunset)`` for ``day``.

        Raises:
            SolarError: if the sun does not rise or set that day (polar day/night)
        """
        loc = LocationInfo(latitude=latitude, longitude=longitude, timezone=self.tzinfo.key)
        try:
            solar_events = sun(loc.observer, date=day, tzinfo=self.tzinfo)
        except ValueError as e:
            raise SolarError(f"No sunrise/sunset on {day.isoformat()} at ({latitude}, {longitude}): {e}") from e
        # Truncated to whole minutes
        sunrise = solar_events["sunrise"].replace(second=0, microsecond=0)
        sunset = solar_events["sunset"].replace(second=0, microsecond=0)
        return sunrise, sunset

    def sunrise(self, day: date, latitude: float, longitude: float) -> datetime:
        return self.sun_times(day, latitude, longitude)[0]

    def sunset(self, day: date, latitude: float, longitude: float) -> datetime:
        return self.sun_times(day, latitude, longitude)[1]
