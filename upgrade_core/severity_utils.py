import logging
from enum import IntEnum

from upgrade_core.models import FleetDecision


class Severity(IntEnum):
    """Nagios compatible exit codes."""
    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3

    @property
    def prefix(self) -> str:
        return _PREFIXES[self]

    @property
    def log_level(self) -> int:
        return _LOG_LEVELS[self]


_PREFIXES = {
    Severity.OK: 'Info',
    Severity.WARNING: 'Warning',
    Severity.CRITICAL: 'Critical',
    Severity.UNKNOWN: 'Unknown',
}

_LOG_LEVELS = {
    Severity.OK: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.CRITICAL: logging.CRITICAL,
    Severity.UNKNOWN: logging.ERROR,
}


class AbortRun(Exception):
    """Fatal condition that ends the run with a fixed severity."""

    def __init__(self, severity: Severity, message: str):
        super().__init__(message)
        self.severity = severity
        self.message = message


DECISION_SEVERITY = {
    FleetDecision.NO_RESTART: Severity.OK,
    FleetDecision.RESTART: Severity.OK,
    FleetDecision.BLOCKED: Severity.WARNING,
}


def severity_for_decision(decision) -> Severity:
    """Map the fleet decision to an exit severity; anything unexpected is UNKNOWN."""
    return DECISION_SEVERITY.get(decision, Severity.UNKNOWN)


def log_with_severity(logger, severity: Severity, message: str) -> None:
    logger.log(severity.log_level, message, extra={'prefix': severity.prefix})
