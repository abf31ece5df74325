"""Provider interface shared by the AWS and simulated backends."""

import asyncio
import json
import logging
import math
from abc import ABC, abstractmethod

from mcpanel.control.state import (
    BackupRecord,
    CostSummary,
    InstanceRecord,
    PlayerCount,
    RawState,
    StackStatus,
)
from mcpanel.errors import UnexpectedStateError, WaitTimeoutError

logger = logging.getLogger(__name__)


ALLOWLIST_PARAM = "/minecraft/email-allowlist"
PLAYER_COUNT_PARAM = "/minecraft/player-count"
SERVER_ACTION_PARAM = "/minecraft/server-action"

TERMINAL_STATES = {RawState.TERMINATED, RawState.SHUTTING_DOWN}
NOT_RUNNING_STATES = {RawState.STOPPING, RawState.STOPPED} | TERMINAL_STATES


def parse_backup_listing(output: str) -> list[BackupRecord]:
    """Parse ``name|size|date`` lines (rclone lsf --format pst) newest first."""
    backups = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split("|")
        name = parts[0]
        size = parts[1] if len(parts) > 1 and parts[1] else "unknown"
        date = parts[2] if len(parts) > 2 and parts[2] else "unknown"
        backups.append(BackupRecord(name=name, size=size, date=date))
    backups.sort(key=lambda b: b.date, reverse=True)
    return backups


class Provider(ABC):
    """Everything the control panel needs from the cloud, behind one interface.

    Subclasses implement the raw operations; the polling helpers, parameter
    wrappers and instance resolution are shared.
    """

    name = "provider"

    def __init__(self, poll_interval: float = 2.0):
        self.poll_interval = poll_interval

    # ── Instance discovery ──

    @abstractmethod
    async def find_instance_id(self) -> str:
        ...

    async def resolve_instance_id(self, instance_id: str | None = None) -> str:
        return instance_id or await self.find_instance_id()

    # ── Compute backend ──

    @abstractmethod
    async def describe(self, instance_id: str) -> InstanceRecord:
        ...

    @abstractmethod
    async def start_instance(self, instance_id: str) -> None:
        """Request a start. Returns without waiting for the running state."""

    @abstractmethod
    async def stop_instance(self, instance_id: str) -> None:
        """Request a stop. Returns without waiting for the stopped state."""

    @abstractmethod
    async def detach_and_delete_volumes(self, instance_id: str) -> None:
        ...

    @abstractmethod
    async def recreate_volume_from_baseline(self, instance_id: str) -> None:
        ...

    def _attempts_for(self, timeout_seconds: float) -> int:
        return max(1, math.ceil(timeout_seconds / self.poll_interval))

    async def await_state(
        self, instance_id: str, target: RawState | str, timeout_seconds: float = 300,
    ) -> None:
        """Poll until the instance reports ``target``.

        Raises UnexpectedStateError as soon as the instance is seen terminating
        (unless that is the target) and WaitTimeoutError once the attempt
        budget derived from ``timeout_seconds`` is spent.
        """
        target = RawState(target)
        attempts = self._attempts_for(timeout_seconds)
        for attempt in range(1, attempts + 1):
            record = await self.describe(instance_id)
            logger.debug(
                "Waiting for %s on %s (attempt %d/%d): %s",
                target.value, instance_id, attempt, attempts, record.raw_state.value,
            )
            if record.raw_state == target:
                return
            if record.raw_state in TERMINAL_STATES and target not in TERMINAL_STATES:
                raise UnexpectedStateError(
                    f"Instance entered unexpected state: {record.raw_state.value}",
                    state=record.raw_state.value,
                )
            if attempt < attempts:
                await asyncio.sleep(self.poll_interval)
        raise WaitTimeoutError(
            f"Instance did not reach {target.value} state within {timeout_seconds} seconds"
        )

    async def await_public_address(self, instance_id: str, timeout_seconds: float = 300) -> str:
        attempts = self._attempts_for(timeout_seconds)
        for attempt in range(1, attempts + 1):
            record = await self.describe(instance_id)
            logger.debug(
                "Polling for public IP on %s (attempt %d/%d): state=%s, ip=%s",
                instance_id, attempt, attempts, record.raw_state.value,
                record.public_address or "not assigned",
            )
            if record.public_address:
                return record.public_address
            if record.raw_state in NOT_RUNNING_STATES:
                raise UnexpectedStateError(
                    f"Instance entered unexpected state {record.raw_state.value} while waiting for IP",
                    state=record.raw_state.value,
                )
            if attempt < attempts:
                await asyncio.sleep(self.poll_interval)
        raise WaitTimeoutError(
            f"Timed out waiting for public IP address after {timeout_seconds} seconds"
        )

    # ── Command executor ──

    @abstractmethod
    async def execute_command(self, instance_id: str, commands: list[str]) -> str:
        ...

    @abstractmethod
    async def list_backups(self, instance_id: str | None = None) -> list[BackupRecord]:
        ...

    # ── Parameter store ──

    @abstractmethod
    async def get_parameter(self, name: str) -> str | None:
        ...

    @abstractmethod
    async def put_parameter(self, name: str, value: str, overwrite: bool = True) -> None:
        """Write ``name``. With ``overwrite=False`` raises ParameterAlreadyExists if present."""

    @abstractmethod
    async def delete_parameter(self, name: str) -> None:
        """Delete ``name``; deleting an absent parameter is not an error."""

    async def get_email_allowlist(self) -> list[str]:
        value = await self.get_parameter(ALLOWLIST_PARAM)
        if not value:
            return []
        if value.lstrip().startswith("["):
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return [str(e).strip() for e in parsed if str(e).strip()]
        return [e.strip() for e in value.split(",") if e.strip()]

    async def update_email_allowlist(self, emails: list[str]) -> None:
        await self.put_parameter(ALLOWLIST_PARAM, ",".join(emails), overwrite=True)

    @abstractmethod
    async def get_player_count(self) -> PlayerCount:
        ...

    # ── Billing, infrastructure, notifications ──

    @abstractmethod
    async def get_costs(self, period: str = "current-month") -> CostSummary:
        ...

    @abstractmethod
    async def get_stack_status(self, stack_name: str) -> StackStatus | None:
        ...

    async def check_stack_exists(self, stack_name: str) -> bool:
        return await self.get_stack_status(stack_name) is not None

    @abstractmethod
    async def send_notification(self, subject: str, body: str) -> None:
        ...
