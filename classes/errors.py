# classes/errors.py


class PlannerError(Exception):
    """Base class for errors raised by the planner core."""


class InvalidInput(PlannerError):
    """A calculation input could not be interpreted (e.g. an unparseable start date)."""


class CalendarConfigError(PlannerError):
    """The holiday calendar data file is missing or malformed."""


class ChannelUnavailable(PlannerError):
    """The broadcast connection is down or reconnecting."""


class UnauthenticatedChannelIdentity(PlannerError):
    """The channel handshake carried no verifiable identity."""
