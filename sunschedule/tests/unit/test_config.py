#!/usr/bin/env python3
"""Test configuration loading, saving and device lookup."""

import json
from datetime import date, datetime

import pytest
import yaml

from sunschedule.config import (
    Configuration,
    default_configuration_data,
    load_configuration,
    lookup_schedule_for_device,
    save_configuration,
)
from sunschedule.errors import ConfigError, NotFoundError, OrderError, ParseError
from sunschedule.timepoint import AnchorKind, ResolvedTimestamp


def at(text):
    return datetime.strptime(text, "%Y-%m-%d %H:%M")


class MockSunStateCalculator:
    """Returns the same sun times for every day and location."""

    def __init__(self, sunrise, sunset):
        self.mock_sunrise = sunrise
        self.mock_sunset = sunset

    def sunrise(self, day, latitude, longitude):
        return self.mock_sunrise

    def sunset(self, day, latitude, longitude):
        return self.mock_sunset


@pytest.fixture(autouse=True)
def no_location_env(monkeypatch):
    for name in ("HASS_LATITUDE", "HASS_LONGITUDE", "HASS_TIME_ZONE", "LATITUDE", "LONGITUDE", "TZ"):
        monkeypatch.delenv(name, raising=False)


def example_data(**overrides):
    data = {
        "version": 0,
        "location": {"latitude": 48.14, "longitude": 11.58, "timezone": "Europe/Berlin"},
        "schedules": [
            {
                "name": "living room",
                "associatedDeviceIDs": [1, 2],
                "enableWhenLightsAppear": True,
                "schedule": [
                    {"time": "4:00", "colorTemperature": 2000, "brightness": 60},
                    {"time": "sunrise", "colorTemperature": 2700, "brightness": 60},
                    {"time": "sunrise + 30m", "colorTemperature": 5000, "brightness": 100},
                    {"time": "sunset - 30m", "colorTemperature": 5000, "brightness": 100},
                    {"time": "sunset", "colorTemperature": 2700, "brightness": 80},
                    {"time": "22:00", "colorTemperature": 2000, "brightness": 70},
                ],
            },
            {
                "name": "bedroom",
                "associatedDeviceIDs": [3],
                "schedule": [
                    {"time": "10:00", "colorTemperature": 5000, "brightness": 100},
                    {"time": "8:00", "colorTemperature": 2700, "brightness": 80},
                ],
            },
        ],
    }
    data.update(overrides)
    return data


class TestConfigurationFromDict:
    """Building configurations from parsed files."""

    def test_parses_schedules(self):
        configuration = Configuration.from_dict(example_data())

        assert configuration.location.latitude == 48.14
        assert configuration.location.timezone == "Europe/Berlin"
        assert [schedule.name for schedule in configuration.schedules] == ["living room", "bedroom"]
        living_room = configuration.schedules[0]
        assert living_room.device_ids == (1, 2)
        assert living_room.enable_when_lights_appear is True
        assert living_room.time_points[2].kind is AnchorKind.SUNRISE
        assert living_room.time_points[2].anchor.offset_minutes == 30
        assert configuration.device_ids == [1, 2, 3]

    def test_to_dict_round_trip(self):
        data = example_data()
        data["schedules"][1]["enableWhenLightsAppear"] = False
        assert Configuration.from_dict(data).to_dict() == data

    def test_invalid_time_point_names_schedule_and_entry(self):
        data = example_data()
        data["schedules"][0]["schedule"][1]["time"] = "sunrise - 1h"
        with pytest.raises(ParseError, match="Schedule 'living room', entry 1"):
            Configuration.from_dict(data)

    def test_device_in_two_schedules(self):
        data = example_data()
        data["schedules"][1]["associatedDeviceIDs"] = [3, 2]
        with pytest.raises(ConfigError, match="Device 2"):
            Configuration.from_dict(data)

    def test_schedule_without_time_points(self):
        data = example_data()
        data["schedules"][1]["schedule"] = []
        with pytest.raises(ConfigError, match="no time points"):
            Configuration.from_dict(data)

    @pytest.mark.parametrize("device_ids", [["1"], [1.5], "1", [True]])
    def test_invalid_device_ids(self, device_ids):
        data = example_data()
        data["schedules"][0]["associatedDeviceIDs"] = device_ids
        with pytest.raises(ConfigError):
            Configuration.from_dict(data)

    def test_invalid_location(self):
        with pytest.raises(ConfigError):
            Configuration.from_dict(example_data(location={"latitude": 123.0, "longitude": 0.0}))

    def test_location_from_environment(self, monkeypatch):
        monkeypatch.setenv("LATITUDE", "52.52")
        monkeypatch.setenv("LONGITUDE", "13.40")
        monkeypatch.setenv("TZ", "Europe/Berlin")
        data = example_data()
        del data["location"]

        location = Configuration.from_dict(data).location

        assert (location.latitude, location.longitude, location.timezone) == (52.52, 13.40, "Europe/Berlin")

    def test_missing_location_without_environment(self):
        data = example_data()
        del data["location"]
        with pytest.raises(ConfigError, match="LATITUDE"):
            Configuration.from_dict(data)

    def test_environment_fills_only_missing_coordinate(self, monkeypatch):
        monkeypatch.setenv("LATITUDE", "50.0")
        monkeypatch.setenv("LONGITUDE", "20.0")

        location = Configuration.from_dict(example_data(location={"latitude": 10.0})).location

        assert (location.latitude, location.longitude) == (10.0, 20.0)

    def test_missing_coordinate_without_environment(self):
        with pytest.raises(ConfigError, match="longitude"):
            Configuration.from_dict(example_data(location={"latitude": 10.0}))

    def test_hash_tracks_content(self):
        first = Configuration.from_dict(example_data())
        second = Configuration.from_dict(example_data())
        assert first.hash_value() == second.hash_value()

        changed = example_data()
        changed["schedules"][0]["schedule"][0]["brightness"] = 10
        assert Configuration.from_dict(changed).hash_value() != first.hash_value()


class TestLookup:
    """Resolving the schedule of one device."""

    calculator = MockSunStateCalculator(at("2021-04-28 07:30"), at("2021-04-28 20:00"))

    def test_light_schedule_for_day(self):
        configuration = Configuration.from_dict(example_data())

        schedule = lookup_schedule_for_device(configuration, 1, at("2021-04-28 00:00"), self.calculator)

        assert list(schedule) == [
            ResolvedTimestamp(at("2021-04-27 22:00"), 2000, 70),
            ResolvedTimestamp(at("2021-04-28 04:00"), 2000, 60),
            ResolvedTimestamp(at("2021-04-28 07:30"), 2700, 60),
            ResolvedTimestamp(at("2021-04-28 08:00"), 5000, 100),
            ResolvedTimestamp(at("2021-04-28 19:30"), 5000, 100),
            ResolvedTimestamp(at("2021-04-28 20:00"), 2700, 80),
            ResolvedTimestamp(at("2021-04-28 22:00"), 2000, 70),
            ResolvedTimestamp(at("2021-04-29 04:00"), 2000, 60),
        ]

    def test_method_delegates_with_date(self):
        configuration = Configuration.from_dict(example_data())
        schedule = configuration.light_schedule_for_day(2, date(2021, 4, 28), self.calculator)
        assert len(schedule) == 8
        assert schedule.date == date(2021, 4, 28)

    def test_unknown_device(self):
        configuration = Configuration.from_dict(example_data())
        with pytest.raises(NotFoundError, match="Device 7"):
            lookup_schedule_for_device(configuration, 7, date(2021, 4, 28), self.calculator)

    def test_broken_schedule_only_affects_its_devices(self):
        configuration = Configuration.from_dict(example_data())
        with pytest.raises(OrderError):
            lookup_schedule_for_device(configuration, 3, date(2021, 4, 28), self.calculator)
        assert len(lookup_schedule_for_device(configuration, 1, date(2021, 4, 28), self.calculator)) == 8


class TestPersistence:
    """Reading and writing configuration files."""

    def test_missing_file_creates_default(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LATITUDE", "52.52")
        monkeypatch.setenv("LONGITUDE", "13.40")
        path = tmp_path / "config.json"

        configuration = load_configuration(str(path))

        assert path.exists()
        assert configuration.schedules[0].name == "default"
        assert len(configuration.schedules[0].time_points) == 6
        assert configuration.location.latitude == 52.52
        assert json.loads(path.read_text())["schedules"][0]["schedule"][1]["time"] == "sunrise"
        assert configuration.has_changed() is False

    def test_default_without_location_falls_back(self):
        data = default_configuration_data()
        assert data["location"]["latitude"] == 0.0
        assert Configuration.from_dict(data).schedules[0].device_ids == ()

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "from-env.json"
        path.write_text(json.dumps(example_data()))
        monkeypatch.setenv("SUNSCHEDULE_CONFIG", str(path))

        configuration = load_configuration()

        assert configuration.path == str(path)

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(example_data()))

        configuration = load_configuration(str(path))

        assert configuration == Configuration.from_dict(example_data())
        assert configuration.has_changed() is False

    @pytest.mark.parametrize(
        "filename, content",
        [
            ("config.json", "{not json"),
            ("config.yaml", "schedules: [unclosed"),
            ("config.json", "[]"),
        ],
    )
    def test_malformed_files(self, tmp_path, filename, content):
        path = tmp_path / filename
        path.write_text(content)
        with pytest.raises(ConfigError):
            load_configuration(str(path))

    def test_directory_is_rejected(self, tmp_path):
        with pytest.raises(ConfigError):
            load_configuration(str(tmp_path))

    def test_file_without_schedules_is_backed_up(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"location": {"latitude": 1.0, "longitude": 2.0}}))

        configuration = load_configuration(str(path))

        backups = list(tmp_path.glob("config.json_*"))
        assert len(backups) == 1
        assert json.loads(backups[0].read_text()) == {"location": {"latitude": 1.0, "longitude": 2.0}}
        assert configuration.schedules[0].name == "default"
        assert configuration.location.latitude == 1.0
        assert json.loads(path.read_text())["schedules"][0]["name"] == "default"

    def test_unchanged_configuration_is_not_written(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(example_data()))
        configuration = load_configuration(str(path))
        path.write_text("sentinel")

        assert save_configuration(configuration) is configuration
        assert path.read_text() == "sentinel"

    def test_save_and_reload(self, tmp_path):
        source = tmp_path / "config.json"
        source.write_text(json.dumps(example_data()))
        configuration = load_configuration(str(source))

        target = tmp_path / "copy.yml"
        saved = save_configuration(configuration, str(target))

        assert saved.path == str(target)
        assert saved.has_changed() is False
        assert load_configuration(str(target)) == configuration

    def test_save_without_path(self):
        with pytest.raises(ConfigError):
            save_configuration(Configuration.from_dict(example_data()))
