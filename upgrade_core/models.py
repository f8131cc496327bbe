from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class ImageStatus(Enum):
    """Patch state of one image reference, memoized for the run."""
    UNKNOWN = 'unknown'
    UP_TO_DATE = 'up-to-date'
    UPDATED = 'updated'
    UPDATE_NEEDED = 'update-needed'
    UNTAGGED = 'untagged'
    UNSUPPORTED = 'unsupported'


# Statuses that are reused as-is when another container shares the image
RESOLVED_STATUSES = (
    ImageStatus.UP_TO_DATE,
    ImageStatus.UPDATED,
    ImageStatus.UPDATE_NEEDED,
    ImageStatus.UNTAGGED,
)


class ContainerOutcome(Enum):
    OK = 'ok'
    RESTART_SCHEDULED = 'restart-scheduled'
    RESTART_BLOCKED = 'restart-blocked'
    MANAGER_UNDETERMINED = 'manager-undetermined'
    UNSUPPORTED_IMAGE = 'unsupported-image'
    STOPPED_SINCE_SCAN = 'stopped-since-scan'


class FleetDecision(Enum):
    NO_RESTART = 'no-restart'
    RESTART = 'restart'
    BLOCKED = 'blocked'


@dataclass
class ContainerRecord:
    """A running container as seen at inventory time."""
    name: str
    image: str
    original_image: Optional[str] = None  # tagged reference recovered for untagged images


@dataclass
class Inventory:
    containers: List[ContainerRecord] = field(default_factory=list)
    statuses: Dict[str, ImageStatus] = field(default_factory=dict)


@dataclass
class ExecResult:
    """Outcome of running a command inside a container."""
    exit_code: Optional[int]
    output: str = ''
    error: Optional[str] = None
    container_gone: bool = False  # container vanished or is no longer running

    @property
    def ok(self) -> bool:
        return self.error is None and self.exit_code == 0


@dataclass
class PullResult:
    ok: bool
    error: Optional[str] = None


@dataclass
class UpgradeCheck:
    """Structured result of a package upgrade dry run.

    kind is one of 'no-upgrades', 'pending' or 'failed'.
    """
    kind: str
    packages: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    NO_UPGRADES = 'no-upgrades'
    PENDING = 'pending'
    FAILED = 'failed'

    @classmethod
    def no_upgrades(cls) -> 'UpgradeCheck':
        return cls(cls.NO_UPGRADES)

    @classmethod
    def pending(cls, packages: List[str]) -> 'UpgradeCheck':
        return cls(cls.PENDING, packages=list(packages))

    @classmethod
    def failed(cls, reason: str) -> 'UpgradeCheck':
        return cls(cls.FAILED, reason=reason)


@dataclass
class Settings:
    """Runtime configuration for a single audit run."""
    probe_entrypoint: str = '/bin/bash'
    probe_name_prefix: str = 'upgrade_test_'
    rate_limit_threshold: int = 10
    decision_policy: str = 'sequential'  # sequential, blocked-wins
    restart_timeout: Optional[int] = None
    metrics_textfile: Optional[str] = None
    webhook_url: Optional[str] = None
    probers: List[str] = field(default_factory=lambda: ['apt'])


@dataclass
class RunReport:
    outcomes: Dict[str, ContainerOutcome] = field(default_factory=dict)
    statuses: Dict[str, ImageStatus] = field(default_factory=dict)
    decision: Optional[FleetDecision] = None
    restart_output: Optional[str] = None
    severity: Optional[int] = None  # exit severity, set once the run ends
