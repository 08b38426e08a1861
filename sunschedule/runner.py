#!/usr/bin/env python3
"""Periodic driver that keeps lights on their resolved schedules.

The runner resolves one DaySchedule per device and day, applies the
interpolated state through a caller-supplied coroutine, and sleeps until the
next schedule entry or the update interval, whichever comes first. A
configuration change (``reload``) wakes it immediately; schedules are then
resolved again from scratch.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional

from .config import Configuration, lookup_schedule_for_device
from .errors import ScheduleError
from .schedule import DaySchedule
from .solar import SolarCalculator, resolve_timezone
from .timepoint import ResolvedTimestamp

logger = logging.getLogger(__name__)

# Seconds between state updates while a transition is in progress
DEFAULT_UPDATE_INTERVAL = 60


def update_interval_from_env() -> float:
    """Read UPDATE_INTERVAL, falling back to the default on a bad value."""
    value = os.getenv("UPDATE_INTERVAL")
    if not value:
        return DEFAULT_UPDATE_INTERVAL
    try:
        interval = float(value)
    except ValueError:
        interval = 0
    if interval <= 0:
        logger.warning(f"Invalid UPDATE_INTERVAL '{value}', using {DEFAULT_UPDATE_INTERVAL} seconds")
        return DEFAULT_UPDATE_INTERVAL
    return interval


ApplyState = Callable[[int, ResolvedTimestamp], Awaitable[None]]


class ScheduleRunner:
    """Apply scheduled light states to every configured device."""

    def __init__(
        self,
        configuration: Configuration,
        apply_state: ApplyState,
        calculator: Optional[SolarCalculator] = None,
        update_interval: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the runner.

        Args:
            configuration: Schedules and location to follow
            apply_state: Coroutine called with (device_id, state) on every update
            calculator: Sun time source, defaults to astral for the configured location
                and follows the location on reload
            update_interval: Maximum seconds between updates, defaults to $UPDATE_INTERVAL or 60
            clock: Returns the current time, defaults to now in the configured timezone
        """
        self.configuration = configuration
        self.apply_state = apply_state
        self._follow_location = calculator is None
        self.calculator = calculator or configuration.solar_calculator()
        if update_interval is None:
            update_interval = update_interval_from_env()
        self.update_interval = timedelta(seconds=update_interval)
        self.clock = clock or self._default_clock
        self.refresh_event: Optional[asyncio.Event] = None  # Created lazily in the running event loop
        self._schedules: Dict[int, DaySchedule] = {}
        self._schedule_date: Optional[date] = None
        self._running = False
        self._stopped = False

    def _default_clock(self) -> datetime:
        # Same zone the default astral calculator resolves sun times in
        return datetime.now(resolve_timezone(self.configuration.location.timezone or os.getenv("TZ")))

    def reload(self, configuration: Configuration) -> None:
        """Switch to a new configuration and wake the loop."""
        self.configuration = configuration
        if self._follow_location:
            self.calculator = configuration.solar_calculator()
        self._schedules = {}
        self._schedule_date = None
        logger.info("Configuration changed, schedules will be resolved again")
        if self.refresh_event is not None:
            self.refresh_event.set()

    def schedules_for(self, day: date) -> Dict[int, DaySchedule]:
        """Resolved schedules of all devices for ``day``.

        Devices whose schedule cannot be resolved are logged and left out;
        they are retried on the next day or after a reload.
        """
        if self._schedule_date == day:
            return self._schedules

        schedules: Dict[int, DaySchedule] = {}
        for device_id in self.configuration.device_ids:
            try:
                schedules[device_id] = lookup_schedule_for_device(
                    self.configuration, device_id, day, self.calculator
                )
            except ScheduleError as e:
                logger.error(f"Could not resolve schedule for device {device_id} on {day.isoformat()}: {e}")

        self._schedules = schedules
        self._schedule_date = day
        return schedules

    async def update_once(self, now: Optional[datetime] = None) -> datetime:
        """Apply the current state to every device.

        Returns:
            When the next update is due
        """
        now = now or self.clock()
        wake_at = now + self.update_interval

        schedules = self.schedules_for(now.date())
        if not schedules:
            logger.debug("No devices with a resolvable schedule")
            return wake_at

        for device_id, schedule in schedules.items():
            try:
                target = schedule.state_at(now)
            except ValueError as e:
                logger.error(f"Device {device_id}: {e}")
                continue

            try:
                await self.apply_state(device_id, target)
                logger.debug(f"Device {device_id} set to {target.color_temperature}K/{target.brightness}%")
            except Exception as e:
                logger.error(f"Failed to update device {device_id}: {e}")

            upcoming = schedule.next_change(now)
            if upcoming is not None and upcoming.time < wake_at:
                wake_at = upcoming.time

        logger.info(f"Updated {len(schedules)} device(s), next update at {wake_at.isoformat()}")
        return wake_at

    async def run(self) -> None:
        """Update devices until ``stop()`` is called or the task is cancelled.

        Sleeps until the next update is due, or until ``reload()`` signals a
        configuration change.
        """
        if self.refresh_event is None:
            self.refresh_event = asyncio.Event()

        self._running = not self._stopped
        logger.info("Schedule runner started")

        while self._running:
            try:
                wake_at = await self.update_once()
                timeout = max(0.0, (wake_at - self.clock()).total_seconds())
                try:
                    await asyncio.wait_for(self.refresh_event.wait(), timeout=timeout)
                    self.refresh_event.clear()
                    logger.debug("Woken by refresh signal")
                except asyncio.TimeoutError:
                    pass
            except asyncio.CancelledError:
                logger.info("Schedule runner cancelled")
                break
            except Exception as e:
                logger.error(f"Error in schedule runner: {e}")
                await asyncio.sleep(self.update_interval.total_seconds())

        self._running = False
        logger.info("Schedule runner stopped")

    def stop(self) -> None:
        """End the loop, including a run() that has not started yet."""
        self._stopped = True
        self._running = False
        if self.refresh_event is not None:
            self.refresh_event.set()
