"""In-memory state of the simulated backend, its baseline fixture and JSON persistence."""

import json
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from mcpanel.aws.costs import PERIODS, period_range
from mcpanel.control.state import BackupRecord, CostLine, CostSummary


DEFAULT_INSTANCE_ID = "i-mock1234567890abcdef"
DEFAULT_VOLUME_ID = "vol-mock1234567890abcdef"
DEFAULT_ZONE = "us-east-1a"
DEFAULT_STACK_ID = "arn:aws:cloudformation:us-east-1:123456789012:stack/minecraft-stack/abc123"
BASE_COSTS = {"current-month": "15.50", "last-month": "18.75", "last-30-days": "34.25"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SimVolume:
    volume_id: str
    device: str = "/dev/xvda"
    status: str = "attached"


@dataclass
class SimInstance:
    instance_id: str = DEFAULT_INSTANCE_ID
    state: str = "stopped"
    public_ip: str | None = None
    availability_zone: str = DEFAULT_ZONE
    volumes: list[SimVolume] = field(default_factory=list)
    # Pending transition; applied once the wall clock passes transition_due.
    transition_target: str | None = None
    transition_due: float = 0.0
    last_updated: str = ""

    def __post_init__(self):
        if not self.last_updated:
            self.last_updated = _now()

    @property
    def has_volume(self) -> bool:
        return bool(self.volumes)


@dataclass
class SimParameter:
    value: str
    type: str = "String"
    last_modified: str = ""

    def __post_init__(self):
        if not self.last_modified:
            self.last_modified = _now()


@dataclass
class SimCommand:
    command_id: str
    commands: list[str]
    status: str = "Pending"
    output: str = ""
    error: str = ""
    created_at: str = ""
    completed_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = _now()


@dataclass
class SimStack:
    exists: bool = True
    status: str = "CREATE_COMPLETE"
    stack_id: str = DEFAULT_STACK_ID


@dataclass
class FaultConfig:
    """Injected failure for one operation. ``fail_next`` is consumed when it fires."""

    fail_next: bool = False
    always_fail: bool = False
    error_code: str = "MockError"
    error_message: str = "Injected failure"

    @property
    def active(self) -> bool:
        return self.fail_next or self.always_fail


@dataclass
class SimulatedState:
    instance: SimInstance = field(default_factory=SimInstance)
    parameters: dict[str, SimParameter] = field(default_factory=dict)
    commands: list[SimCommand] = field(default_factory=list)
    backups: list[BackupRecord] = field(default_factory=list)
    costs: dict[str, CostSummary] = field(default_factory=dict)
    stack: SimStack = field(default_factory=SimStack)
    faults: dict[str, FaultConfig] = field(default_factory=dict)
    latency_ms: int = 0
    notifications: list[dict] = field(default_factory=list)
    scenario: str = "default"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SimulatedState":
        instance = dict(data.get("instance", {}))
        instance["volumes"] = [SimVolume(**v) for v in instance.get("volumes", [])]
        costs = {}
        for period, summary in data.get("costs", {}).items():
            summary = dict(summary)
            summary["breakdown"] = [CostLine(**line) for line in summary.get("breakdown", [])]
            costs[period] = CostSummary(**summary)
        return cls(
            instance=SimInstance(**instance),
            parameters={k: SimParameter(**v) for k, v in data.get("parameters", {}).items()},
            commands=[SimCommand(**c) for c in data.get("commands", [])],
            backups=[BackupRecord(**b) for b in data.get("backups", [])],
            costs=costs,
            stack=SimStack(**data.get("stack", {})),
            faults={k: FaultConfig(**v) for k, v in data.get("faults", {}).items()},
            latency_ms=data.get("latency_ms", 0),
            notifications=list(data.get("notifications", [])),
            scenario=data.get("scenario", "default"),
        )


def cost_fixture(period: str, total: str, breakdown: list[CostLine] | None = None,
                 today: date | None = None) -> CostSummary:
    start, end = period_range(period, today)
    if breakdown is None:
        breakdown = [
            CostLine("Amazon EC2", total),
            CostLine("Amazon EBS", "0.00"),
            CostLine("AWS Lambda", "0.00"),
            CostLine("Amazon SNS", "0.00"),
            CostLine("Amazon SES", "0.00"),
        ]
    return CostSummary(
        period_start=start.isoformat(), period_end=end.isoformat(),
        total_cost=total, breakdown=breakdown,
    )


def default_backups(now: datetime | None = None) -> list[BackupRecord]:
    now = now or datetime.now(timezone.utc)
    backups = []
    for days, size in ((1, "2.1 GB"), (2, "2.0 GB"), (3, "2.0 GB")):
        taken = now - timedelta(days=days)
        backups.append(BackupRecord(
            name=f"minecraft-backup-{taken.date().isoformat()}",
            date=taken.isoformat(),
            size=size,
        ))
    return backups


def default_state() -> SimulatedState:
    """Baseline fixture: one stopped instance with its root volume attached."""
    return SimulatedState(
        instance=SimInstance(volumes=[SimVolume(DEFAULT_VOLUME_ID)]),
        parameters={
            "/minecraft/email-allowlist": SimParameter("[]"),
            "/minecraft/player-count": SimParameter("0"),
        },
        backups=default_backups(),
        costs={period: cost_fixture(period, BASE_COSTS[period]) for period in PERIODS},
    )


class SimulatedStateStore:
    """Load and save a SimulatedState as JSON. A store without a path is a no-op."""

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else None

    def load(self) -> SimulatedState | None:
        if not self.path or not self.path.exists():
            return None
        return SimulatedState.from_dict(json.loads(self.path.read_text()))

    def save(self, state: SimulatedState) -> None:
        self.write(state.to_dict())

    def write(self, data: dict) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2))
