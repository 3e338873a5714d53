"""Data models for procprio."""

from dataclasses import dataclass
from enum import Enum, IntEnum


class Priority(IntEnum):
    """
    Scheduling decision for a process.

    The ranked values map onto OS priority classes. IGNORE and
    CONDITIONAL_IDLE are policy values: they are never written to the OS
    as-is. Numeric values are compared when a service rule competes with a
    process rule.
    """

    CONDITIONAL_IDLE = -2
    IGNORE = -1
    IDLE = 0
    BELOW_NORMAL = 1
    NORMAL = 2
    ABOVE_NORMAL = 3
    HIGH = 4
    HIGH_WITH_SCRIPT = 5

    @property
    def label(self) -> str:
        """Human-readable name."""
        return self.name.replace("_", " ").lower()

    @property
    def os_class(self) -> "Priority | None":
        """The OS priority class this decision is written as, if any."""
        if self is Priority.HIGH_WITH_SCRIPT:
            return Priority.HIGH
        if self in (Priority.IGNORE, Priority.CONDITIONAL_IDLE):
            return None
        return self


class RuleCategory(Enum):
    """Key types a priority rule can be stored under."""

    FULL_PATH = "full_path"
    SHORT_NAME = "short_name"
    PARTIAL = "partial"
    USERNAME = "username"


@dataclass(slots=True, frozen=True)
class RunningProcess:
    """A process as seen by one enumeration of the process list."""

    pid: int
    name: str


@dataclass(slots=True, frozen=True)
class ProcessIdentity:
    """Stable identity of a running process, resolved once when first seen."""

    pid: int
    executable_hash: str
    short_name: str
    full_path: str
    owning_user_ids: frozenset[str]
    username: str = ""
    # None when the process is not a service host or the lookup failed.
    hosted_service_names: tuple[str, ...] | None = None


@dataclass(slots=True, frozen=True)
class ObservedProcess:
    """A process record read back from the rule store."""

    executable_hash: str
    short_name: str
    full_path: str
    owning_user_ids: frozenset[str]
    usernames: tuple[str, ...] = ()
    parent_names: tuple[str, ...] = ()


@dataclass(slots=True)
class TrackedProcess:
    """Runtime state for a process known to be alive in this run."""

    pid: int
    name: str
    identity: ProcessIdentity | None = None
    priority: Priority | None = None
    high_power: bool = False
    conditional_idle: bool = False
    keep_high: bool = False


@dataclass(slots=True, frozen=True)
class LifecycleEvent:
    """Published by the monitor when a process starts or ends."""

    kind: str  # 'started' or 'ended'
    pid: int
    name: str
    priority: Priority | None
    timestamp: float
