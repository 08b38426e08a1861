#!/usr/bin/env python3
"""Schedule resolution: turns configured time points into one day's timeline.

Resolution model
----------------
* Fixed clock times ("08:00") are never moved.
* Solar time points ("sunrise + 30m") share two *adjusted* anchors, one for
  sunrise and one for sunset, seeded from the real sun times. When a solar
  point would land before its predecessor (or after its successor) in the
  configured order, its anchor slides just past that neighbor, one minute
  apart, and every point on the same anchor moves with it.
* A forward pass pushes anchors later, a backward pass pulls them earlier.
* The day is framed by the previous day's last entry and the next day's first
  entry so that any instant of the day lies between two entries.
* If the final timeline still runs backwards anywhere, the configuration
  cannot be satisfied for that day and an error is raised.

Example (sunrise 07:00):

    08:00          → 08:00
    sunrise        → 08:01   (anchor pushed from 07:00 to 08:01)
    sunrise + 30m  → 08:31
    22:00          → 22:00
"""

from __future__ import annotations

import logging
from bisect import bisect_right
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, tzinfo as TzInfo
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .errors import OrderError, UnsatisfiableError
from .timepoint import AnchorKind, ResolvedTimestamp, TimePoint, resolve_anchor

logger = logging.getLogger(__name__)

ONE_MINUTE = timedelta(minutes=1)
ONE_DAY = timedelta(days=1)

# Last instant the backward pass treats as belonging to the day
END_OF_DAY = time(23, 59, 59)


def day_bounds(day: date, tzinfo: Optional[TzInfo] = None) -> Tuple[datetime, datetime, datetime]:
    """Return ``(start_of_day, end_of_day, start_of_next_day)`` for ``day``."""
    start_of_day = datetime.combine(day, time.min, tzinfo=tzinfo)
    end_of_day = datetime.combine(day, END_OF_DAY, tzinfo=tzinfo)
    start_of_next_day = datetime.combine(day + ONE_DAY, time.min, tzinfo=tzinfo)
    return start_of_day, end_of_day, start_of_next_day


# ---------------------------------------------------------------------------
# DaySchedule
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DaySchedule:
    """Resolved timeline for one device and one day.

    ``entries`` holds the previous day's last entry, the configured time
    points in their configured order, and the next day's first entry.
    """
    date: date
    entries: Tuple[ResolvedTimestamp, ...]
    sunrise: datetime
    sunset: datetime
    adjusted_sunrise: datetime
    adjusted_sunset: datetime

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[ResolvedTimestamp]:
        return iter(self.entries)

    def __getitem__(self, index):
        return self.entries[index]

    @property
    def times(self) -> List[datetime]:
        return [entry.time for entry in self.entries]

    def interval_at(self, now: datetime) -> Tuple[ResolvedTimestamp, ResolvedTimestamp]:
        """Return the entries bracketing ``now``.

        The first element is the last entry at or before ``now``; when several
        entries share an instant the later one is in force from that instant.

        Raises:
            ValueError: if ``now`` lies outside the schedule's window
        """
        first, last = self.entries[0], self.entries[-1]
        if now < first.time or now > last.time:
            raise ValueError(
                f"{now.isoformat()} is outside the schedule window {first.time.isoformat()} - {last.time.isoformat()}"
            )
        index = bisect_right(self.times, now)
        if index >= len(self.entries):
            return self.entries[-2], self.entries[-1]
        return self.entries[index - 1], self.entries[index]

    def state_at(self, now: datetime) -> ResolvedTimestamp:
        """Interpolate the light state at ``now`` between its bracketing entries."""
        before, after = self.interval_at(now)
        span = (after.time - before.time).total_seconds()
        if span <= 0:
            return replace(after, time=now)
        progress = (now - before.time).total_seconds() / span
        color_temperature = before.color_temperature + (after.color_temperature - before.color_temperature) * progress
        brightness = before.brightness + (after.brightness - before.brightness) * progress
        return ResolvedTimestamp(now, int(round(color_temperature)), int(round(brightness)))

    def next_change(self, now: datetime) -> Optional[ResolvedTimestamp]:
        """First entry strictly after ``now``, or None past the end of the window."""
        index = bisect_right(self.times, now)
        if index >= len(self.entries):
            return None
        return self.entries[index]

    def __str__(self) -> str:
        return f"{self.date.isoformat()}: " + ", ".join(str(entry) for entry in self.entries)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def _describe(point: Optional[TimePoint], fallback: str) -> str:
    return str(point) if point is not None else fallback


def _check_inversion(
    earlier: Optional[TimePoint],
    later: Optional[TimePoint],
    earlier_time: datetime,
    later_time: datetime,
    boundary: str,
) -> None:
    """Raise OrderError for inversions no anchor adjustment can fix.

    ``None`` stands for the fixed day boundary named by ``boundary``.
    """
    earlier_kind = earlier.kind if earlier is not None else AnchorKind.FIXED
    later_kind = later.kind if later is not None else AnchorKind.FIXED

    if earlier_kind is AnchorKind.FIXED and later_kind is AnchorKind.FIXED:
        raise OrderError(
            f"Fixed time points {_describe(earlier, boundary)} and {_describe(later, boundary)} "
            f"are configured out of order ({earlier_time.strftime('%H:%M')} is after {later_time.strftime('%H:%M')})"
        )
    if earlier_kind.is_solar and later_kind.is_solar and not (
        earlier_kind is AnchorKind.SUNRISE and later_kind is AnchorKind.SUNSET
    ):
        raise OrderError(
            f"Solar time points {_describe(earlier, boundary)} and {_describe(later, boundary)} "
            f"are configured out of order ({earlier_time.isoformat()} is after {later_time.isoformat()})"
        )


def compute_schedule(
    time_points: Sequence[TimePoint],
    sunrise: datetime,
    sunset: datetime,
    day: Union[date, datetime],
) -> DaySchedule:
    """Resolve ``time_points`` into the timeline for ``day``.

    Args:
        time_points: Parsed time points in their intended chronological order
        sunrise: Real sunrise of ``day``
        sunset: Real sunset of ``day``
        day: The day to resolve; a datetime contributes its tzinfo, otherwise
            the tzinfo of ``sunrise`` is used

    Returns:
        DaySchedule with ``len(time_points) + 2`` non-decreasing entries

    Raises:
        ValueError: if no time points are given or naive and aware times are mixed
        OrderError: if two points are configured in an order that can never hold
        UnsatisfiableError: if an inversion remains after clamping
    """
    points = list(time_points)
    if not points:
        raise ValueError("A schedule needs at least one time point")

    if isinstance(day, datetime):
        zone = day.tzinfo or sunrise.tzinfo
        day = day.date()
    else:
        zone = sunrise.tzinfo
    if (sunrise.tzinfo is None) != (zone is None) or (sunset.tzinfo is None) != (zone is None):
        raise ValueError("Sunrise, sunset and day must all be either timezone-aware or naive")

    start_of_day, end_of_day, start_of_next_day = day_bounds(day, zone)
    count = len(points)

    adjusted: Dict[AnchorKind, datetime] = {
        AnchorKind.SUNRISE: sunrise,
        AnchorKind.SUNSET: sunset,
    }

    def instant(index: int) -> datetime:
        # -1 and count are the fixed day boundaries around the configured points
        if index < 0:
            return start_of_day
        if index >= count:
            return end_of_day
        return resolve_anchor(
            points[index].anchor, start_of_day, adjusted[AnchorKind.SUNRISE], adjusted[AnchorKind.SUNSET]
        )

    # Forward pass: push solar anchors past their predecessor.
    for index, point in enumerate(points):
        current, previous = instant(index), instant(index - 1)
        if current >= previous:
            continue
        earlier = points[index - 1] if index > 0 else None
        _check_inversion(earlier, point, previous, current, "start of day")
        if point.kind.is_solar:
            shift = previous - current + ONE_MINUTE
            adjusted[point.kind] += shift
            logger.debug(
                f"{point} at {current.isoformat()} precedes {_describe(earlier, 'start of day')}; "
                f"{point.kind.value} moved by {shift} to {adjusted[point.kind].isoformat()}"
            )

    # Backward pass: pull solar anchors before their successor.
    for index in reversed(range(count)):
        point = points[index]
        current, following = instant(index), instant(index + 1)
        if current <= following:
            continue
        later = points[index + 1] if index + 1 < count else None
        _check_inversion(point, later, current, following, "end of day")
        if point.kind.is_solar:
            shift = following - current - ONE_MINUTE
            adjusted[point.kind] += shift
            logger.debug(
                f"{point} at {current.isoformat()} follows {_describe(later, 'end of day')}; "
                f"{point.kind.value} moved by {shift} to {adjusted[point.kind].isoformat()}"
            )

    # Bridge entries from the neighboring days, using the real sun shifted by a day.
    previous_start = day_bounds(day - ONE_DAY, zone)[0]
    bridge_previous = points[-1].resolve(previous_start, sunrise - ONE_DAY, sunset - ONE_DAY)
    if bridge_previous.time >= start_of_day:
        bridge_previous = replace(bridge_previous, time=start_of_day - ONE_MINUTE)

    bridge_next = points[0].resolve(start_of_next_day, sunrise + ONE_DAY, sunset + ONE_DAY)
    if bridge_next.time < start_of_next_day:
        bridge_next = replace(bridge_next, time=start_of_next_day)

    resolved = [
        point.resolve(start_of_day, adjusted[AnchorKind.SUNRISE], adjusted[AnchorKind.SUNSET])
        for point in points
    ]
    entries = [bridge_previous] + resolved + [bridge_next]
    labels = ["last entry of the previous day"] + [str(point) for point in points] + ["first entry of the next day"]

    for index in range(1, len(entries)):
        if entries[index].time < entries[index - 1].time:
            raise UnsatisfiableError(
                f"Schedule for {day.isoformat()} cannot be satisfied: {labels[index]} resolves to "
                f"{entries[index].time.isoformat()}, before {labels[index - 1]} at "
                f"{entries[index - 1].time.isoformat()} "
                f"(sunrise {sunrise.isoformat()} adjusted to {adjusted[AnchorKind.SUNRISE].isoformat()}, "
                f"sunset {sunset.isoformat()} adjusted to {adjusted[AnchorKind.SUNSET].isoformat()})"
            )

    schedule = DaySchedule(
        date=day,
        entries=tuple(entries),
        sunrise=sunrise,
        sunset=sunset,
        adjusted_sunrise=adjusted[AnchorKind.SUNRISE],
        adjusted_sunset=adjusted[AnchorKind.SUNSET],
    )
    logger.debug(f"Resolved schedule {schedule}")
    return schedule
