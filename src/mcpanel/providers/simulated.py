"""In-process simulated backend for local development and tests.

The instance is a small state machine. Start and stop requests flip the state
immediately to ``pending``/``stopping`` and schedule the settled state after a
fixed delay; the scheduled transition is applied by the first operation that
observes the simulated state after the delay has passed, so it survives event
loop changes and process restarts when persistence is enabled.
"""

import asyncio
import copy
import logging
import random
import shlex
import time
import uuid
from datetime import datetime, timezone

from mcpanel.control.state import (
    BackupRecord,
    CostSummary,
    InstanceRecord,
    PlayerCount,
    RawState,
    StackStatus,
)
from mcpanel.aws.costs import PERIODS
from mcpanel.errors import (
    BackendError,
    CommandFailedError,
    ParameterAlreadyExists,
    ValidationError,
)
from mcpanel.providers.base import PLAYER_COUNT_PARAM, Provider
from mcpanel.providers.scenarios import get_scenario
from mcpanel.providers.simulated_state import (
    FaultConfig,
    SimCommand,
    SimParameter,
    SimVolume,
    SimulatedState,
    SimulatedStateStore,
    default_state,
)

logger = logging.getLogger(__name__)


# Operation names accepted by set_fault.
FAULT_OPERATIONS = (
    "findInstanceId",
    "getInstanceDetails",
    "startInstance",
    "stopInstance",
    "detachAndDeleteVolumes",
    "detachVolume",
    "deleteVolume",
    "handleResume",
    "executeSSMCommand",
    "listBackups",
    "getParameter",
    "putParameter",
    "deleteParameter",
    "getPlayerCount",
    "getCosts",
    "getStackStatus",
    "checkStackExists",
    "sendNotification",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _synthetic_address() -> str:
    return f"203.0.113.{random.randint(1, 254)}"


class SimulatedProvider(Provider):
    name = "mock"

    def __init__(
        self,
        state: SimulatedState | None = None,
        store: SimulatedStateStore | None = None,
        transition_delay: float = 2.5,
        step_delay: float = 0.5,
        poll_interval: float = 0.5,
        clock=time.time,
    ):
        super().__init__(poll_interval=poll_interval)
        self.store = store or SimulatedStateStore()
        self.state = state or self.store.load() or default_state()
        self.transition_delay = transition_delay
        self.step_delay = step_delay
        self.clock = clock
        self._lock = asyncio.Lock()

    # ── Internals ──

    async def _save(self) -> None:
        """Persist the state. Caller holds the lock, so writes land in order."""
        self.state.instance.last_updated = _now()
        if self.store.path:
            await asyncio.to_thread(self.store.write, self.state.to_dict())

    async def _settle(self) -> None:
        """Apply a scheduled transition whose delay has elapsed. Caller holds the lock."""
        instance = self.state.instance
        if not instance.transition_target or self.clock() < instance.transition_due:
            return
        instance.state = instance.transition_target
        instance.transition_target = None
        instance.transition_due = 0.0
        if instance.state == RawState.RUNNING.value:
            instance.public_ip = _synthetic_address()
        elif instance.state == RawState.STOPPED.value:
            instance.public_ip = None
        logger.debug("Simulated instance settled in %s", instance.state)
        await self._save()

    def _schedule(self, target: str) -> None:
        self.state.instance.transition_target = target
        self.state.instance.transition_due = self.clock() + self.transition_delay

    async def _begin(self, operation: str) -> None:
        """Raise an injected fault for ``operation`` if one is armed, then apply latency."""
        async with self._lock:
            fault = self.state.faults.get(operation)
            if fault and fault.active:
                if fault.fail_next:
                    fault.fail_next = False
                    if not fault.always_fail:
                        del self.state.faults[operation]
                    await self._save()
                logger.debug("Injected fault on %s: %s", operation, fault.error_code)
                raise BackendError(fault.error_code, fault.error_message)
            latency_ms = self.state.latency_ms
        if latency_ms > 0:
            await asyncio.sleep(latency_ms / 1000)

    # ── Discovery ──

    async def find_instance_id(self) -> str:
        await self._begin("findInstanceId")
        async with self._lock:
            return self.state.instance.instance_id

    # ── Compute ──

    async def describe(self, instance_id: str) -> InstanceRecord:
        await self._begin("getInstanceDetails")
        async with self._lock:
            await self._settle()
            instance = self.state.instance
            if instance_id != instance.instance_id:
                raise BackendError(
                    "InvalidInstanceID.NotFound", f"Instance {instance_id} not found",
                )
            return InstanceRecord(
                instance_id=instance.instance_id,
                raw_state=RawState.parse(instance.state),
                public_address=instance.public_ip,
                has_volume=instance.has_volume,
                availability_zone=instance.availability_zone,
                volume_ids=[v.volume_id for v in instance.volumes],
            )

    async def start_instance(self, instance_id: str) -> None:
        await self._begin("startInstance")
        async with self._lock:
            await self._settle()
            instance = self.state.instance
            if instance.state == RawState.RUNNING.value:
                return
            if instance.state != RawState.STOPPED.value:
                raise BackendError(
                    "IncorrectInstanceState", f"Cannot start instance in state: {instance.state}",
                )
            instance.state = RawState.PENDING.value
            self._schedule(RawState.RUNNING.value)
            await self._save()
        logger.info("Simulated instance %s starting", instance_id)

    async def stop_instance(self, instance_id: str) -> None:
        await self._begin("stopInstance")
        async with self._lock:
            await self._settle()
            instance = self.state.instance
            if instance.state == RawState.STOPPED.value:
                return
            if instance.state not in (RawState.RUNNING.value, RawState.PENDING.value):
                raise BackendError(
                    "IncorrectInstanceState", f"Cannot stop instance in state: {instance.state}",
                )
            instance.state = RawState.STOPPING.value
            self._schedule(RawState.STOPPED.value)
            await self._save()
        logger.info("Simulated instance %s stopping", instance_id)

    async def detach_and_delete_volumes(self, instance_id: str) -> None:
        await self._begin("detachAndDeleteVolumes")
        async with self._lock:
            await self._settle()
            if self.state.instance.state != RawState.STOPPED.value:
                raise BackendError(
                    "IncorrectState",
                    f"Cannot detach root volume while instance is {self.state.instance.state}",
                )
            volume_ids = [v.volume_id for v in self.state.instance.volumes]

        for volume_id in volume_ids:
            await self._begin("detachVolume")
            async with self._lock:
                for volume in self.state.instance.volumes:
                    if volume.volume_id == volume_id:
                        volume.status = "detaching"
                await self._save()
            await asyncio.sleep(self.step_delay)

            await self._begin("deleteVolume")
            async with self._lock:
                self.state.instance.volumes = [
                    v for v in self.state.instance.volumes if v.volume_id != volume_id
                ]
                await self._save()
            logger.info("Simulated volume %s detached and deleted", volume_id)

    async def recreate_volume_from_baseline(self, instance_id: str) -> None:
        await self._begin("handleResume")
        async with self._lock:
            await self._settle()
            instance = self.state.instance
            if instance.has_volume:
                logger.info("Instance %s already has a volume; nothing to restore", instance_id)
                return
            if not instance.availability_zone:
                raise BackendError(
                    "MissingAvailabilityZone",
                    f"Could not determine availability zone for {instance_id}",
                )

        await asyncio.sleep(self.step_delay)
        async with self._lock:
            if not self.state.instance.has_volume:
                volume_id = f"vol-mock{uuid.uuid4().hex[:17]}"
                self.state.instance.volumes.append(SimVolume(volume_id))
                await self._save()
                logger.info("Simulated volume %s attached to %s", volume_id, instance_id)

    # ── Commands ──

    def _simulate_output(self, commands: list[str]) -> str:
        joined = " ".join(commands)
        if "rclone lsf" in joined:
            return "\n".join(f"{b.name}|{b.size}|{b.date}" for b in self.state.backups)
        if "systemctl is-active" in joined:
            return "active" if self.state.instance.state == RawState.RUNNING.value else "inactive"

        args = shlex.split(commands[-1]) if commands else []
        name = args[1] if len(args) > 1 else None
        if "mc-backup" in joined:
            name = name or f"minecraft-backup-{datetime.now(timezone.utc):%Y%m%d-%H%M%S}"
            self.state.backups.insert(0, BackupRecord(name=name, date=_now(), size="2.0 GB"))
            return f"Backup completed successfully: {name}"
        if "mc-restore" in joined:
            if name and name not in {b.name for b in self.state.backups}:
                raise CommandFailedError(f"Backup not found: {name}")
            return "Restore completed successfully"
        return f"Command executed: {joined}"

    async def execute_command(self, instance_id: str, commands: list[str]) -> str:
        await self._begin("executeSSMCommand")
        async with self._lock:
            await self._settle()
            if self.state.instance.state != RawState.RUNNING.value:
                raise BackendError(
                    "InvalidInstanceId",
                    f"Instance {instance_id} is not in a valid state for command execution",
                )
            command = SimCommand(
                command_id=uuid.uuid4().hex, commands=list(commands), status="InProgress",
            )
            self.state.commands.append(command)
            await self._save()

        await asyncio.sleep(self.step_delay)

        async with self._lock:
            try:
                output = self._simulate_output(commands)
            except CommandFailedError as e:
                command.status = "Failed"
                command.error = e.message
                e.command_id = command.command_id
                raise
            else:
                command.status = "Success"
                command.output = output
            finally:
                command.completed_at = _now()
                await self._save()
        return output

    async def list_backups(self, instance_id: str | None = None) -> list[BackupRecord]:
        await self._begin("listBackups")
        async with self._lock:
            backups = [copy.copy(b) for b in self.state.backups]
        backups.sort(key=lambda b: b.date, reverse=True)
        return backups

    # ── Parameters ──

    async def get_parameter(self, name: str) -> str | None:
        await self._begin("getParameter")
        async with self._lock:
            parameter = self.state.parameters.get(name)
            return parameter.value if parameter else None

    async def put_parameter(self, name: str, value: str, overwrite: bool = True) -> None:
        await self._begin("putParameter")
        async with self._lock:
            existing = self.state.parameters.get(name)
            if existing and not overwrite:
                raise ParameterAlreadyExists(name)
            param_type = existing.type if existing else "String"
            self.state.parameters[name] = SimParameter(value, param_type)
            await self._save()

    async def delete_parameter(self, name: str) -> None:
        await self._begin("deleteParameter")
        async with self._lock:
            if self.state.parameters.pop(name, None) is not None:
                await self._save()

    async def get_player_count(self) -> PlayerCount:
        await self._begin("getPlayerCount")
        async with self._lock:
            parameter = self.state.parameters.get(PLAYER_COUNT_PARAM)
        if not parameter:
            return PlayerCount(count=0)
        try:
            count = int(parameter.value)
        except ValueError:
            count = 0
        return PlayerCount(count=count, last_updated=parameter.last_modified)

    # ── Billing, stack, notifications ──

    async def get_costs(self, period: str = "current-month") -> CostSummary:
        if period not in PERIODS:
            raise ValidationError(f"Unknown cost period: {period}")
        await self._begin("getCosts")
        async with self._lock:
            return copy.deepcopy(self.state.costs[period])

    async def get_stack_status(self, stack_name: str) -> StackStatus | None:
        await self._begin("getStackStatus")
        async with self._lock:
            stack = self.state.stack
            if not stack.exists:
                return None
            instance = self.state.instance
            return StackStatus(
                name=stack_name,
                stack_id=stack.stack_id,
                status=stack.status,
                outputs={
                    "InstanceId": instance.instance_id,
                    "PublicIP": instance.public_ip or "N/A",
                    "AvailabilityZone": instance.availability_zone,
                },
            )

    async def check_stack_exists(self, stack_name: str) -> bool:
        await self._begin("checkStackExists")
        async with self._lock:
            return self.state.stack.exists

    async def send_notification(self, subject: str, body: str) -> None:
        await self._begin("sendNotification")
        async with self._lock:
            self.state.notifications.append({"subject": subject, "body": body, "sent_at": _now()})
            await self._save()
        logger.info("Simulated notification: %s", subject)

    # ── Simulation controls ──

    async def reset(self) -> None:
        """Return to the baseline fixture, dropping faults, latency and scheduled transitions."""
        async with self._lock:
            self.state = default_state()
            await self._save()

    async def apply_scenario(self, name: str) -> None:
        scenario = get_scenario(name)
        async with self._lock:
            state = default_state()
            scenario.apply(state)
            state.scenario = scenario.name
            self.state = state
            await self._save()
        logger.info("Applied scenario %s", name)

    async def set_fault(self, operation: str, fault: FaultConfig) -> None:
        async with self._lock:
            self.state.faults[operation] = fault
            await self._save()

    async def clear_fault(self, operation: str | None = None) -> None:
        """Clear one operation's fault, or every fault when ``operation`` is None."""
        async with self._lock:
            if operation is None:
                self.state.faults.clear()
            else:
                self.state.faults.pop(operation, None)
            await self._save()

    async def set_latency(self, latency_ms: int) -> None:
        if latency_ms < 0:
            raise ValidationError("Latency must be a non-negative number of milliseconds")
        async with self._lock:
            self.state.latency_ms = latency_ms
            await self._save()

    async def patch_instance(self, **changes) -> None:
        """Overwrite fields of the simulated instance, cancelling any scheduled transition."""
        async with self._lock:
            instance = self.state.instance
            for key, value in changes.items():
                if not hasattr(instance, key):
                    raise ValidationError(f"Unknown instance field: {key}")
                setattr(instance, key, value)
            instance.transition_target = None
            instance.transition_due = 0.0
            await self._save()

    async def snapshot(self) -> dict:
        async with self._lock:
            await self._settle()
            return self.state.to_dict()
