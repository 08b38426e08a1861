from .config import (
    Configuration,
    LightSchedule,
    Location,
    load_configuration,
    lookup_schedule_for_device,
    save_configuration,
)
from .errors import (
    ConfigError,
    NotFoundError,
    OrderError,
    ParseError,
    ScheduleError,
    SolarError,
    UnsatisfiableError,
)
from .runner import ScheduleRunner
from .schedule import DaySchedule, compute_schedule
from .solar import AstralSolarCalculator, SolarCalculator
from .timepoint import Anchor, AnchorKind, ResolvedTimestamp, TimePoint, parse_anchor, resolve_anchor

__all__ = [
    "Anchor",
    "AnchorKind",
    "AstralSolarCalculator",
    "ConfigError",
    "Configuration",
    "DaySchedule",
    "LightSchedule",
    "Location",
    "NotFoundError",
    "OrderError",
    "ParseError",
    "ResolvedTimestamp",
    "ScheduleError",
    "ScheduleRunner",
    "SolarCalculator",
    "SolarError",
    "TimePoint",
    "UnsatisfiableError",
    "compute_schedule",
    "load_configuration",
    "lookup_schedule_for_device",
    "parse_anchor",
    "resolve_anchor",
    "save_configuration",
]
