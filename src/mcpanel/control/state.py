from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class RawState(str, Enum):
    """Instance state as reported by the compute backend."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "RawState":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class DisplayState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    HIBERNATING = "hibernating"
    PENDING = "pending"
    STOPPING = "stopping"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"


ACTIONS = ("start", "stop", "resume", "hibernate", "backup", "restore")

_PENDING_ACTIONS = {"start", "resume"}
_STOPPING_ACTIONS = {"stop", "hibernate"}

_PASSTHROUGH = {
    RawState.RUNNING: DisplayState.RUNNING,
    RawState.STOPPED: DisplayState.STOPPED,
    RawState.TERMINATED: DisplayState.TERMINATED,
    RawState.PENDING: DisplayState.PENDING,
    RawState.STOPPING: DisplayState.STOPPING,
}


def derive_display_state(
    raw_state: RawState, has_volume: bool, lock_action: str | None = None,
) -> DisplayState:
    """Map raw backend state, volume presence and the held action to a display state.

    An in-flight start/resume shows as pending and an in-flight stop/hibernate
    as stopping, whatever the backend currently reports. A stopped instance
    with no volume is hibernating, but only when no action is held.
    """
    if lock_action in _PENDING_ACTIONS:
        return DisplayState.PENDING
    if lock_action in _STOPPING_ACTIONS:
        return DisplayState.STOPPING
    if lock_action is None:
        if raw_state in (RawState.PENDING, RawState.STOPPING):
            return DisplayState(raw_state.value)
        if raw_state == RawState.STOPPED and not has_volume:
            return DisplayState.HIBERNATING
    return _PASSTHROUGH.get(raw_state, DisplayState.UNKNOWN)


@dataclass
class InstanceRecord:
    instance_id: str
    raw_state: RawState
    public_address: str | None = None
    has_volume: bool = True
    availability_zone: str = ""
    volume_ids: list[str] = field(default_factory=list)


@dataclass
class LockRecord:
    action: str
    acquired_at_ms: int


@dataclass
class BackupRecord:
    name: str
    date: str = "unknown"
    size: str = "unknown"


@dataclass
class PlayerCount:
    count: int
    last_updated: str = ""

    def __post_init__(self):
        if not self.last_updated:
            self.last_updated = datetime.now(timezone.utc).isoformat()


@dataclass
class CostLine:
    service: str
    cost: str


@dataclass
class CostSummary:
    period_start: str
    period_end: str
    total_cost: str
    currency: str = "USD"
    breakdown: list[CostLine] = field(default_factory=list)
    fetched_at: str = ""

    def __post_init__(self):
        if not self.fetched_at:
            self.fetched_at = datetime.now(timezone.utc).isoformat()


@dataclass
class StackStatus:
    name: str
    stack_id: str
    status: str
    outputs: dict[str, str] = field(default_factory=dict)


@dataclass
class ServerStatus:
    instance_id: str
    state: DisplayState
    has_volume: bool
    public_address: str | None = None
    server_action: LockRecord | None = None
    last_updated: str = ""

    def __post_init__(self):
        if not self.last_updated:
            self.last_updated = datetime.now(timezone.utc).isoformat()


@dataclass
class OperationResult:
    instance_id: str
    message: str
    warnings: list[str] = field(default_factory=list)


@dataclass
class StartResult(OperationResult):
    public_address: str = ""
    domain: str = ""


@dataclass
class StopResult(OperationResult):
    pass


@dataclass
class HibernateResult(OperationResult):
    backup_output: str = ""


@dataclass
class ResumeResult(OperationResult):
    public_address: str = ""
    domain: str = ""
    restored_from: str | None = None


@dataclass
class BackupResult(OperationResult):
    backup_name: str = ""
    output: str = ""


@dataclass
class RestoreResult(OperationResult):
    backup_name: str = "latest"
    output: str = ""
