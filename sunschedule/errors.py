"""Exceptions raised while building or resolving light schedules."""


class ScheduleError(Exception):
    """Base class for all schedule errors."""


class ParseError(ScheduleError, ValueError):
    """A time point could not be parsed."""


class OrderError(ScheduleError):
    """Two time points are configured in an order that can never hold."""


class UnsatisfiableError(ScheduleError):
    """No clamping of the solar anchors yields a non-decreasing schedule."""


class NotFoundError(ScheduleError, LookupError):
    """A device is not associated with any schedule."""


class ConfigError(ScheduleError):
    """The configuration file or its content is invalid."""


class SolarError(ScheduleError):
    """Sunrise or sunset does not exist for the requested day and location."""
