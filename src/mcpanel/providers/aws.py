import asyncio
import logging

from botocore.exceptions import BotoCoreError, ClientError

from mcpanel.aws import ami, cloudformation, costs, ebs, ec2, ses, ssm
from mcpanel.config import Settings
from mcpanel.control.state import (
    BackupRecord,
    CostSummary,
    InstanceRecord,
    PlayerCount,
    RawState,
    StackStatus,
)
from mcpanel.errors import (
    BackendError,
    CommandFailedError,
    ParameterAlreadyExists,
    UnexpectedStateError,
    ValidationError,
    WaitTimeoutError,
)
from mcpanel.providers.base import PLAYER_COUNT_PARAM, Provider, parse_backup_listing

logger = logging.getLogger(__name__)


COMMAND_FAILED_STATUSES = {"Failed", "Cancelled", "TimedOut", "Cancelling"}
VOLUME_POLL_ATTEMPTS = 60
VOLUME_FAILED_STATES = {"error", "deleting", "deleted"}


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "Unknown")


def _error_message(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Message", str(exc))


class AwsProvider(Provider):
    """Provider backed by real AWS services through the ``mcpanel.aws`` modules."""

    name = "aws"

    def __init__(self, settings: Settings):
        super().__init__(poll_interval=settings.poll_interval_seconds)
        self.settings = settings
        self.region = settings.aws_region
        self.command_poll_interval = settings.command_poll_interval_seconds
        self.command_max_polls = settings.command_max_polls

    async def _call(self, func, *args, **kwargs):
        """Run a blocking boto3 call in a worker thread, translating AWS errors."""
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except ClientError as e:
            raise BackendError(_error_code(e), _error_message(e)) from e
        except BotoCoreError as e:
            raise BackendError(type(e).__name__, str(e)) from e

    # ── Discovery ──

    async def find_instance_id(self) -> str:
        if self.settings.instance_id:
            return self.settings.instance_id
        instance_id = await self._call(
            ec2.find_instance_id, self.region, self.settings.instance_name_tags,
        )
        if not instance_id:
            raise BackendError(
                "InstanceNotFound",
                f"No instance tagged {', '.join(self.settings.instance_name_tags)} found",
            )
        return instance_id

    # ── Compute ──

    async def describe(self, instance_id: str) -> InstanceRecord:
        instance = await self._call(ec2.describe_instance, self.region, instance_id)
        if not instance:
            raise BackendError("InvalidInstanceID.NotFound", f"Instance {instance_id} not found")
        summary = ec2.summarize_instance(instance)
        return InstanceRecord(
            instance_id=summary["instance_id"],
            raw_state=RawState.parse(summary["state"]),
            public_address=summary["public_ip"],
            has_volume=bool(summary["volume_ids"]),
            availability_zone=summary["availability_zone"],
            volume_ids=summary["volume_ids"],
        )

    async def start_instance(self, instance_id: str) -> None:
        record = await self.describe(instance_id)
        if record.raw_state == RawState.RUNNING:
            logger.info("Instance %s already running", instance_id)
            return
        await self._call(ec2.start_instance, self.region, instance_id)

    async def stop_instance(self, instance_id: str) -> None:
        record = await self.describe(instance_id)
        if record.raw_state == RawState.STOPPED:
            logger.info("Instance %s already stopped", instance_id)
            return
        await self._call(ec2.stop_instance, self.region, instance_id)

    async def _await_volume(self, volume_id: str, predicate, description: str) -> dict | None:
        for _ in range(VOLUME_POLL_ATTEMPTS):
            volume = await self._call(ebs.get_volume, self.region, volume_id)
            if predicate(volume):
                return volume
            state = volume.get("State") if volume else None
            if state in VOLUME_FAILED_STATES:
                raise UnexpectedStateError(
                    f"Volume {volume_id} entered {state} state while waiting to become {description}",
                    state=state,
                )
            await asyncio.sleep(self.poll_interval)
        raise WaitTimeoutError(f"Timed out waiting for volume {volume_id} to become {description}")

    async def detach_and_delete_volumes(self, instance_id: str) -> None:
        record = await self.describe(instance_id)
        for volume_id in record.volume_ids:
            logger.info("Detaching volume %s from %s", volume_id, instance_id)
            await self._call(ebs.detach_volume, self.region, volume_id)
            await self._await_volume(
                volume_id,
                lambda v: ebs.attachment_state(v) in (None, "detached"),
                "detached",
            )
            logger.info("Deleting volume %s", volume_id)
            await self._call(ebs.delete_volume, self.region, volume_id)

    async def recreate_volume_from_baseline(self, instance_id: str) -> None:
        record = await self.describe(instance_id)
        if record.has_volume:
            logger.info("Instance %s already has a volume; nothing to restore", instance_id)
            return
        if not record.availability_zone:
            raise BackendError(
                "MissingAvailabilityZone",
                f"Could not determine availability zone for {instance_id}",
            )
        try:
            snapshot_id = await self._call(ami.get_latest_baseline_snapshot, self.region)
        except RuntimeError as e:
            raise BackendError("BaselineNotFound", str(e)) from e

        logger.info("Creating volume from %s in %s", snapshot_id, record.availability_zone)
        volume_id = await self._call(
            ebs.create_volume, self.region, record.availability_zone, snapshot_id,
            tags={"Name": f"{self.settings.stack_name}-root"},
        )
        await self._await_volume(
            volume_id, lambda v: bool(v) and v.get("State") == "available", "available",
        )
        await self._call(ebs.attach_volume, self.region, volume_id, instance_id, ebs.ROOT_DEVICE)
        await self._await_volume(
            volume_id, lambda v: ebs.attachment_state(v) == "attached", "attached",
        )
        logger.info("Attached %s to %s at %s", volume_id, instance_id, ebs.ROOT_DEVICE)

    # ── Commands ──

    async def execute_command(self, instance_id: str, commands: list[str]) -> str:
        try:
            command_id = await self._call(ssm.send_command, self.region, instance_id, commands)
        except RuntimeError as e:
            raise BackendError("CommandNotSent", str(e)) from e
        logger.debug("Sent command %s to %s: %s", command_id, instance_id, commands)

        for attempt in range(1, self.command_max_polls + 1):
            await asyncio.sleep(self.command_poll_interval)
            try:
                invocation = await self._call(
                    ssm.get_command_invocation, self.region, command_id, instance_id,
                )
            except BackendError as e:
                # Not visible yet right after send_command.
                if e.code == "InvocationDoesNotExist":
                    continue
                raise

            status = invocation.get("Status", "")
            logger.debug("Command %s status (poll %d): %s", command_id, attempt, status)
            if status == "Success":
                return invocation.get("StandardOutputContent", "")
            if status in COMMAND_FAILED_STATUSES:
                stderr = invocation.get("StandardErrorContent") or f"Command {status.lower()}"
                raise CommandFailedError(stderr, command_id=command_id, status=status)

        raise WaitTimeoutError(
            f"Command {command_id} did not finish after {self.command_max_polls} polls"
        )

    async def list_backups(self, instance_id: str | None = None) -> list[BackupRecord]:
        if not self.settings.gdrive_remote:
            return []
        instance_id = await self.resolve_instance_id(instance_id)
        remote = f"{self.settings.gdrive_remote}:{self.settings.gdrive_root}/"
        command = f'rclone lsf {remote} --format "pst" --separator "|"'
        try:
            output = await self.execute_command(instance_id, [command])
        except (BackendError, WaitTimeoutError):
            logger.warning("Failed to list backups", exc_info=True)
            return []
        return parse_backup_listing(output)

    # ── Parameters ──

    async def get_parameter(self, name: str) -> str | None:
        parameter = await self._call(ssm.get_parameter, self.region, name)
        return parameter["Value"] if parameter else None

    async def put_parameter(self, name: str, value: str, overwrite: bool = True) -> None:
        try:
            await self._call(ssm.put_parameter, self.region, name, value, overwrite)
        except BackendError as e:
            if e.code == "ParameterAlreadyExists":
                raise ParameterAlreadyExists(name) from e
            raise

    async def delete_parameter(self, name: str) -> None:
        await self._call(ssm.delete_parameter, self.region, name)

    async def get_player_count(self) -> PlayerCount:
        parameter = await self._call(ssm.get_parameter, self.region, PLAYER_COUNT_PARAM)
        if not parameter:
            return PlayerCount(count=0)
        try:
            count = int(parameter.get("Value", "0"))
        except ValueError:
            count = 0
        modified = parameter.get("LastModifiedDate")
        return PlayerCount(count=count, last_updated=modified.isoformat() if modified else "")

    # ── Billing, stack, notifications ──

    async def get_costs(self, period: str = "current-month") -> CostSummary:
        if period not in costs.PERIODS:
            raise ValidationError(f"Unknown cost period: {period}")
        return await self._call(costs.get_costs, period)

    async def get_stack_status(self, stack_name: str) -> StackStatus | None:
        stack = await self._call(cloudformation.describe_stack, self.region, stack_name)
        if not stack:
            return None
        return StackStatus(
            name=stack.get("StackName", stack_name),
            stack_id=stack.get("StackId", ""),
            status=stack.get("StackStatus", "UNKNOWN"),
            outputs=cloudformation.stack_outputs(stack),
        )

    async def send_notification(self, subject: str, body: str) -> None:
        if not (self.settings.notify_sender and self.settings.notify_recipient):
            logger.debug("Notification email not configured, skipping: %s", subject)
            return
        await self._call(
            ses.send_email, self.region, self.settings.notify_sender,
            self.settings.notify_recipient, subject, body,
        )
