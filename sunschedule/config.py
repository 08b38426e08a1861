#!/usr/bin/env python3
"""Configuration for light schedules.

This module handles schedule configuration:
- Reading the configuration file (JSON, or YAML for ``.yaml``/``.yml`` paths)
- Generating a default configuration when none exists
- Saving changes atomically, skipping writes when nothing changed
- Looking up which schedule a device belongs to and resolving it for a day

On-disk layout::

    {
      "version": 0,
      "location": {"latitude": 48.1, "longitude": 11.6, "timezone": "Europe/Berlin"},
      "schedules": [
        {
          "name": "default",
          "associatedDeviceIDs": [1, 2],
          "enableWhenLightsAppear": true,
          "schedule": [
            {"time": "sunrise", "colorTemperature": 2700, "brightness": 60},
            {"time": "22:00", "colorTemperature": 2000, "brightness": 70}
          ]
        }
      ]
    }

Time points are parsed while the configuration is built, so a loaded
configuration never holds an unparsed entry.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .errors import ConfigError, NotFoundError, ParseError
from .schedule import DaySchedule, compute_schedule
from .solar import AstralSolarCalculator, SolarCalculator
from .timepoint import TimePoint

logger = logging.getLogger(__name__)

CONFIGURATION_VERSION = 0

CONFIG_FILENAME = "config.json"

DEFAULT_LOCATION = {"latitude": None, "longitude": None, "timezone": None}

DEFAULT_SCHEDULE = {
    "name": "default",
    "associatedDeviceIDs": [],
    "enableWhenLightsAppear": True,
    "schedule": [
        {"time": "4:00", "colorTemperature": 2000, "brightness": 60},
        {"time": "sunrise", "colorTemperature": 2700, "brightness": 60},
        {"time": "sunrise + 30m", "colorTemperature": 5000, "brightness": 100},
        {"time": "sunset - 30m", "colorTemperature": 5000, "brightness": 100},
        {"time": "sunset", "colorTemperature": 2700, "brightness": 80},
        {"time": "22:00", "colorTemperature": 2000, "brightness": 70},
    ],
}


def _get_data_directory() -> str:
    """Get the appropriate data directory based on environment."""
    if os.path.exists("/config"):
        data_dir = "/config/sunschedule"
        os.makedirs(data_dir, exist_ok=True)
        return data_dir
    elif os.path.exists("/data"):
        return "/data"
    else:
        # Running in development - use local .data directory
        data_dir = os.path.join(os.getcwd(), ".data")
        os.makedirs(data_dir, exist_ok=True)
        return data_dir


def default_config_path() -> str:
    return os.getenv("SUNSCHEDULE_CONFIG") or os.path.join(_get_data_directory(), CONFIG_FILENAME)


def is_yaml_file(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in (".yaml", ".yml")


def _auto_location(location: Dict[str, Any]) -> Dict[str, Any]:
    """Fill a missing latitude/longitude/timezone from HA-style env vars."""
    resolved = dict(location)
    for key in ("latitude", "longitude"):
        if resolved.get(key) is not None:
            continue
        name = key.upper()
        try:
            resolved[key] = float(os.getenv(f"HASS_{name}", os.getenv(name, "")))
        except ValueError:
            raise ConfigError(f"Location {key} is not configured and {name} is not set")
    if not resolved.get("timezone"):
        resolved["timezone"] = os.getenv("HASS_TIME_ZONE", os.getenv("TZ", "")) or None
    return resolved


# ---------------------------------------------------------------------------
# Configuration values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Location:
    """Where sunrise and sunset are calculated for."""
    latitude: float
    longitude: float
    timezone: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Location":
        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"Invalid location {data!r}: expected a mapping")
        values = _auto_location(data or {})
        try:
            latitude, longitude = float(values["latitude"]), float(values["longitude"])
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid location {data!r}: latitude and longitude must be numbers")
        if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
            raise ConfigError(f"Invalid location ({latitude}, {longitude})")
        return cls(latitude, longitude, values.get("timezone"))

    def to_dict(self) -> Dict[str, Any]:
        return {"latitude": self.latitude, "longitude": self.longitude, "timezone": self.timezone}


@dataclass(frozen=True)
class LightSchedule:
    """A named schedule and the devices that follow it."""
    name: str
    device_ids: Tuple[int, ...]
    time_points: Tuple[TimePoint, ...]
    enable_when_lights_appear: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LightSchedule":
        if not isinstance(data, dict):
            raise ConfigError(f"Invalid schedule {data!r}: expected a mapping")
        name = str(data.get("name", ""))

        device_ids = data.get("associatedDeviceIDs") or []
        if not isinstance(device_ids, list) or any(
            isinstance(device_id, bool) or not isinstance(device_id, int) for device_id in device_ids
        ):
            raise ConfigError(f"Schedule '{name}': associatedDeviceIDs must be a list of integers")

        entries = data.get("schedule") or []
        if not isinstance(entries, list) or not entries:
            raise ConfigError(f"Schedule '{name}' has no time points")

        time_points = []
        for index, entry in enumerate(entries):
            try:
                time_points.append(TimePoint.from_dict(entry))
            except ParseError as e:
                raise ParseError(f"Schedule '{name}', entry {index}: {e}") from e

        return cls(
            name=name,
            device_ids=tuple(device_ids),
            time_points=tuple(time_points),
            enable_when_lights_appear=bool(data.get("enableWhenLightsAppear", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "associatedDeviceIDs": list(self.device_ids),
            "enableWhenLightsAppear": self.enable_when_lights_appear,
            "schedule": [point.to_dict() for point in self.time_points],
        }


@dataclass(frozen=True)
class Configuration:
    """Location plus light schedules, as read from one configuration file."""
    location: Location
    schedules: Tuple[LightSchedule, ...]
    version: int = CONFIGURATION_VERSION
    path: Optional[str] = field(default=None, compare=False)
    # Hash of the content last read from or written to ``path``
    stored_hash: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: Optional[str] = None) -> "Configuration":
        """Build and validate a configuration.

        Raises:
            ConfigError: on structural problems, or a device listed in two schedules
            ParseError: on a malformed time point
        """
        if not isinstance(data, dict):
            raise ConfigError(f"Invalid configuration: expected a mapping, got {type(data).__name__}")

        schedules_data = data.get("schedules") or []
        if not isinstance(schedules_data, list):
            raise ConfigError("Invalid configuration: 'schedules' must be a list")
        schedules = tuple(LightSchedule.from_dict(entry) for entry in schedules_data)

        owners: Dict[int, int] = {}
        for index, schedule in enumerate(schedules):
            for device_id in schedule.device_ids:
                if owners.setdefault(device_id, index) != index:
                    raise ConfigError(
                        f"Device {device_id} is associated with schedules "
                        f"'{schedules[owners[device_id]].name}' and '{schedule.name}'"
                    )

        version = data.get("version", CONFIGURATION_VERSION)
        if isinstance(version, bool) or not isinstance(version, int):
            raise ConfigError(f"Invalid configuration version {version!r}")

        return cls(
            location=Location.from_dict(data.get("location")),
            schedules=schedules,
            version=version,
            path=path,
        )

    @classmethod
    def default(cls, path: Optional[str] = None) -> "Configuration":
        return cls.from_dict(default_configuration_data(), path=path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "location": self.location.to_dict(),
            "schedules": [schedule.to_dict() for schedule in self.schedules],
        }

    def hash_value(self) -> str:
        """SHA-256 of the canonical JSON form."""
        raw = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def has_changed(self) -> bool:
        return self.stored_hash is None or self.hash_value() != self.stored_hash

    def schedule_for_device(self, device_id: int) -> LightSchedule:
        """Return the schedule ``device_id`` belongs to.

        Raises:
            NotFoundError: if no schedule lists the device
        """
        for schedule in self.schedules:
            if device_id in schedule.device_ids:
                return schedule
        raise NotFoundError(f"Device {device_id} is not associated with any schedule in configuration")

    @property
    def device_ids(self) -> List[int]:
        return [device_id for schedule in self.schedules for device_id in schedule.device_ids]

    def solar_calculator(self) -> AstralSolarCalculator:
        return AstralSolarCalculator(self.location.timezone)

    def light_schedule_for_day(
        self,
        device_id: int,
        day: Union[date, datetime],
        calculator: Optional[SolarCalculator] = None,
    ) -> DaySchedule:
        return lookup_schedule_for_device(self, device_id, day, calculator or self.solar_calculator())


def default_configuration_data() -> Dict[str, Any]:
    try:
        location = _auto_location(DEFAULT_LOCATION)
    except ConfigError:
        logger.warning("No location configured and LATITUDE/LONGITUDE not set, using 0.0/0.0")
        location = {"latitude": 0.0, "longitude": 0.0, "timezone": None}
    return {
        "version": CONFIGURATION_VERSION,
        "location": location,
        "schedules": [json.loads(json.dumps(DEFAULT_SCHEDULE))],
    }


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------

def lookup_schedule_for_device(
    configuration: Configuration,
    device_id: int,
    day: Union[date, datetime],
    calculator: SolarCalculator,
) -> DaySchedule:
    """Resolve the schedule of ``device_id`` for ``day``.

    Raises:
        NotFoundError: if the device is not part of any schedule
        OrderError, UnsatisfiableError: if the schedule cannot be resolved
    """
    light_schedule = configuration.schedule_for_device(device_id)
    calendar_day = day.date() if isinstance(day, datetime) else day
    location = configuration.location

    sunrise = calculator.sunrise(calendar_day, location.latitude, location.longitude)
    sunset = calculator.sunset(calendar_day, location.latitude, location.longitude)

    schedule = compute_schedule(light_schedule.time_points, sunrise, sunset, day)
    logger.info(
        f"Schedule '{light_schedule.name}' for device {device_id} on {calendar_day.isoformat()}: "
        f"{len(schedule)} entries (sunrise {sunrise.strftime('%H:%M')}, sunset {sunset.strftime('%H:%M')})"
    )
    return schedule


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _read_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            if is_yaml_file(path):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read configuration {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Could not read configuration {path}: expected a mapping at the top level")
    return data


def _write_file(path: str, data: Dict[str, Any]) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp", prefix=".sunschedule_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            if is_yaml_file(path):
                yaml.safe_dump(data, f, sort_keys=False, default_flow_style=False)
            else:
                json.dump(data, f, indent=2)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def backup_configuration(path: str, now: Optional[datetime] = None) -> str:
    """Move ``path`` aside as ``<path>_<MMDDYYYY>`` and return the backup name."""
    backup_path = f"{path}_{(now or datetime.now()).strftime('%m%d%Y')}"
    logger.debug(f"Moving configuration to {backup_path}")
    os.replace(path, backup_path)
    return backup_path


def save_configuration(configuration: Configuration, path: Optional[str] = None) -> Configuration:
    """Write ``configuration`` to disk unless its content is unchanged.

    Returns:
        The configuration with ``path`` and ``stored_hash`` updated
    """
    target = path or configuration.path
    if not target:
        raise ConfigError("No configuration filename configured")

    if target == configuration.path and not configuration.has_changed():
        logger.debug("Configuration hasn't changed. Omitting write.")
        return configuration

    logger.debug(f"Configuration changed. Saving to {target}")
    try:
        _write_file(target, configuration.to_dict())
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not write configuration {target}: {e}") from e
    return replace(configuration, path=target, stored_hash=configuration.hash_value())


def load_configuration(path: Optional[str] = None) -> Configuration:
    """Load the configuration, creating a default one when needed.

    Args:
        path: Configuration file. Defaults to ``$SUNSCHEDULE_CONFIG`` or
            ``config.json`` in the data directory.

    Raises:
        ConfigError: if the file cannot be read or is invalid
        ParseError: if a time point is malformed
    """
    path = path or default_config_path()

    if not os.path.exists(path):
        configuration = save_configuration(Configuration.default(path=path))
        logger.info(f"Default configuration generated at {path}")
        return configuration

    if not os.path.isfile(path):
        raise ConfigError(f"Configuration {path} is not a regular file")

    data = _read_file(path)
    if not data.get("schedules"):
        logger.warning("Your current configuration doesn't contain any schedules! Generating default schedule...")
        backup_path = backup_configuration(path)
        logger.info(f"Configuration backup created at {backup_path}")
        data = dict(data)
        data["schedules"] = default_configuration_data()["schedules"]
        configuration = save_configuration(Configuration.from_dict(data, path=path))
        logger.info("Default schedule created.")
        return configuration

    configuration = Configuration.from_dict(data, path=path)
    configuration = replace(configuration, stored_hash=configuration.hash_value())
    logger.info(f"Configuration {path} loaded ({len(configuration.schedules)} schedule(s))")
    return configuration
