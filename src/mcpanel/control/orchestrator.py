import logging

from mcpanel.config import Settings
from mcpanel.control.dns import DnsUpdater, NullDns
from mcpanel.control.lock import ActionLock
from mcpanel.control.sanitize import sanitize_backup_name
from mcpanel.control.state import (
    BackupResult,
    DisplayState,
    HibernateResult,
    InstanceRecord,
    LockRecord,
    RawState,
    RestoreResult,
    ResumeResult,
    ServerStatus,
    StartResult,
    StopResult,
    derive_display_state,
)
from mcpanel.errors import (
    BackendError,
    ConflictError,
    PanelError,
    PreconditionError,
    ServiceNotReadyError,
    WaitTimeoutError,
)
from mcpanel.providers.base import Provider

logger = logging.getLogger(__name__)


GENERIC_FAILURES = {
    "start": "Failed to start server",
    "stop": "Failed to stop server",
    "resume": "Failed to resume server",
    "hibernate": "Failed to hibernate server",
    "backup": "Failed to create backup",
    "restore": "Failed to restore backup",
}


class Orchestrator:
    """Runs the multi-step server operations under the action lock.

    Each operation reads a fresh snapshot (instance + lock) to check its
    precondition, then takes the lock and performs its steps in order.
    Progress messages go to ``on_status``.
    """

    def __init__(
        self,
        provider: Provider,
        dns: DnsUpdater | None = None,
        settings: Settings | None = None,
        on_status=None,
        lock: ActionLock | None = None,
    ):
        self.provider = provider
        self.dns = dns or NullDns()
        self.settings = settings or Settings()
        self.on_status = on_status
        self.lock = lock or ActionLock(provider)

    def _notify(self, message: str) -> None:
        logger.info(message)
        if self.on_status:
            self.on_status(message)

    async def _snapshot(
        self, instance_id: str | None = None,
    ) -> tuple[InstanceRecord, LockRecord | None, DisplayState]:
        instance_id = await self.provider.resolve_instance_id(instance_id)
        record = await self.provider.describe(instance_id)
        held = await self.lock.current_action()
        state = derive_display_state(
            record.raw_state, record.has_volume, held.action if held else None,
        )
        return record, held, state

    async def _send_notification(self, subject: str, body: str) -> None:
        try:
            await self.provider.send_notification(subject, body)
        except Exception:
            logger.warning("Failed to send notification %r", subject, exc_info=True)

    async def _locked(self, action: str, steps):
        """Run ``steps`` under the lock, emailing a generic failure notice if they raise."""
        async with self.lock.hold(action):
            try:
                return await steps()
            except Exception:
                logger.exception("%s failed", action)
                await self._send_notification(
                    f"Minecraft server {action} failed", GENERIC_FAILURES[action],
                )
                raise

    async def _bring_up(self, instance_id: str) -> tuple[str, list[str]]:
        """Shared start/resume tail: volume, start, wait, address, DNS."""
        record = await self.provider.describe(instance_id)
        if not record.has_volume:
            self._notify("Restoring root volume from baseline image")
            await self.provider.recreate_volume_from_baseline(instance_id)

        self._notify("Starting instance")
        await self.provider.start_instance(instance_id)

        self._notify("Waiting for instance to be running")
        await self.provider.await_state(
            instance_id, RawState.RUNNING, self.settings.state_timeout_seconds,
        )

        self._notify("Waiting for public IP address")
        address = await self.provider.await_public_address(
            instance_id, self.settings.address_timeout_seconds,
        )

        warnings = []
        self._notify(f"Updating DNS to {address}")
        try:
            await self.dns.update(address)
        except Exception:
            logger.warning("DNS update failed for %s", address, exc_info=True)
            warnings.append(f"DNS update failed; the server is reachable at {address}")
        return address, warnings

    def _backup_command(self, name: str | None) -> str:
        return f"{self.settings.backup_script} {name}" if name else self.settings.backup_script

    def _restore_command(self, name: str | None) -> str:
        return f"{self.settings.restore_script} {name}" if name else self.settings.restore_script

    # ── Operations ──

    async def status(self, instance_id: str | None = None) -> ServerStatus:
        record, held, state = await self._snapshot(instance_id)
        return ServerStatus(
            instance_id=record.instance_id,
            state=state,
            has_volume=record.has_volume,
            public_address=record.public_address if record.raw_state == RawState.RUNNING else None,
            server_action=held,
        )

    async def start(self, instance_id: str | None = None) -> StartResult:
        record, held, state = await self._snapshot(instance_id)
        if held:
            raise ConflictError(held.action, requested="start server")
        if state == DisplayState.RUNNING:
            raise PreconditionError("Server is already running")
        instance_id = record.instance_id

        async def steps():
            address, warnings = await self._bring_up(instance_id)
            return StartResult(
                instance_id=instance_id,
                message=f"Server started at {address}",
                warnings=warnings,
                public_address=address,
                domain=self.settings.cloudflare_domain,
            )

        result = await self._locked("start", steps)
        where = result.domain or result.public_address
        await self._send_notification(
            "Your Minecraft Server IP",
            f"Server is starting up at {where} ({result.public_address}). "
            "It might take a minute or two to be ready.",
        )
        return result

    async def stop(self, instance_id: str | None = None) -> StopResult:
        record, held, state = await self._snapshot(instance_id)
        if held:
            raise ConflictError(held.action, requested="stop server")
        if state in (DisplayState.STOPPED, DisplayState.HIBERNATING):
            raise PreconditionError("Server is already stopped")
        if state not in (DisplayState.RUNNING, DisplayState.PENDING):
            raise PreconditionError(f"Cannot stop server in state: {state.value}")
        instance_id = record.instance_id

        async def steps():
            self._notify("Stopping instance")
            await self.provider.stop_instance(instance_id)
            return StopResult(instance_id=instance_id, message="Server stop command sent successfully")

        return await self._locked("stop", steps)

    async def hibernate(self, instance_id: str | None = None) -> HibernateResult:
        record, held, state = await self._snapshot(instance_id)
        if held:
            raise ConflictError(held.action, requested="hibernate server")
        instance_id = record.instance_id
        if state == DisplayState.HIBERNATING:
            return HibernateResult(
                instance_id=instance_id,
                message="Server is already hibernating (stopped with no volumes)",
            )
        if record.raw_state != RawState.RUNNING:
            raise PreconditionError(
                f"Cannot hibernate when server is {state.value}. Server must be running."
            )

        async def steps():
            self._notify("Backing up world before hibernating")
            output = await self.provider.execute_command(
                instance_id, [self._backup_command(None)],
            )
            self._notify("Stopping instance")
            await self.provider.stop_instance(instance_id)
            self._notify("Waiting for instance to stop")
            await self.provider.await_state(
                instance_id, RawState.STOPPED, self.settings.state_timeout_seconds,
            )
            self._notify("Deleting volumes")
            await self.provider.detach_and_delete_volumes(instance_id)
            return HibernateResult(
                instance_id=instance_id,
                message="Server hibernated. Volumes deleted after backup.",
                backup_output=output,
            )

        result = await self._locked("hibernate", steps)
        await self._send_notification(
            "Minecraft server hibernated",
            "The server was backed up, stopped and its volumes were deleted.",
        )
        return result

    async def resume(self, instance_id: str | None = None, backup_name: str | None = None) -> ResumeResult:
        if backup_name is not None:
            backup_name = sanitize_backup_name(backup_name)
        record, held, state = await self._snapshot(instance_id)
        if held:
            raise ConflictError(held.action, requested="resume server")
        if state == DisplayState.RUNNING:
            raise PreconditionError("Server is already running")
        if state not in (DisplayState.HIBERNATING, DisplayState.STOPPED):
            raise PreconditionError(
                f"Cannot resume from state: {state.value}. Server must be hibernating or stopped."
            )
        instance_id = record.instance_id

        async def steps():
            address, warnings = await self._bring_up(instance_id)
            message = f"Server resumed successfully at {address}"
            if backup_name:
                self._notify(f"Restoring backup {backup_name}")
                try:
                    await self.provider.execute_command(
                        instance_id, [self._restore_command(backup_name)],
                    )
                except PanelError as e:
                    raise BackendError(
                        "RestoreFailed", f"Server resumed but restore failed: {e.message}",
                    ) from e
                message += f" and restored from {backup_name}"
            return ResumeResult(
                instance_id=instance_id,
                message=message,
                warnings=warnings,
                public_address=address,
                domain=self.settings.cloudflare_domain,
                restored_from=backup_name,
            )

        result = await self._locked("resume", steps)
        await self._send_notification("Minecraft server resumed", result.message)
        return result

    async def backup(self, instance_id: str | None = None, name: str | None = None) -> BackupResult:
        if name is not None:
            name = sanitize_backup_name(name)
        record, held, state = await self._snapshot(instance_id)
        if held:
            raise ConflictError(held.action, requested="backup")
        if self.settings.backup_requires_running and state != DisplayState.RUNNING:
            raise PreconditionError(
                f"Cannot backup when server is {state.value}. Server must be running."
            )
        instance_id = record.instance_id

        async def steps():
            self._notify("Running backup")
            output = await self.provider.execute_command(instance_id, [self._backup_command(name)])
            return BackupResult(
                instance_id=instance_id,
                message="Backup completed successfully",
                backup_name=name or "",
                output=output,
            )

        result = await self._locked("backup", steps)
        await self._send_notification(
            "Minecraft backup completed", f"Backup {name or '(default name)'} completed.",
        )
        return result

    async def _service_active(self, instance_id: str) -> bool | None:
        """True/False from ``systemctl is-active``; None when the check itself failed."""
        try:
            output = await self.provider.execute_command(
                instance_id, [f"systemctl is-active {self.settings.service_name} || true"],
            )
        except (BackendError, WaitTimeoutError):
            logger.warning("Could not check service status; proceeding", exc_info=True)
            return None
        return output.strip() == "active"

    async def restore(self, instance_id: str | None = None, name: str | None = None) -> RestoreResult:
        if name is not None:
            name = sanitize_backup_name(name)
        record, held, state = await self._snapshot(instance_id)
        if held:
            raise ConflictError(held.action, requested="restore")
        if state != DisplayState.RUNNING:
            raise PreconditionError(
                f"Cannot restore when server is {state.value}. Server must be running."
            )
        instance_id = record.instance_id
        if await self._service_active(instance_id) is False:
            raise ServiceNotReadyError("Minecraft service is still initializing. Please wait a moment.")

        async def steps():
            self._notify(f"Restoring {name or 'latest backup'}")
            output = await self.provider.execute_command(instance_id, [self._restore_command(name)])
            return RestoreResult(
                instance_id=instance_id,
                message="Restore completed successfully",
                backup_name=name or "latest",
                output=output,
            )

        result = await self._locked("restore", steps)
        await self._send_notification(
            "Minecraft restore completed", f"Restored from {result.backup_name}.",
        )
        return result
