import asyncio
import threading
import time

import pytest

from mcpanel.control.state import RawState
from mcpanel.errors import (
    BackendError,
    CommandFailedError,
    ParameterAlreadyExists,
    UnexpectedStateError,
    ValidationError,
    WaitTimeoutError,
)
from mcpanel.providers.simulated import SimulatedProvider
from mcpanel.providers.simulated_state import (
    DEFAULT_INSTANCE_ID,
    FaultConfig,
    SimulatedStateStore,
)

IID = DEFAULT_INSTANCE_ID


@pytest.mark.asyncio
async def test_baseline_fixture(sim):
    record = await sim.describe(IID)
    assert record.raw_state == RawState.STOPPED
    assert record.has_volume
    assert record.availability_zone == "us-east-1a"
    assert record.public_address is None
    assert await sim.find_instance_id() == IID
    assert await sim.resolve_instance_id("i-other") == "i-other"


@pytest.mark.asyncio
async def test_describe_unknown_instance(sim):
    with pytest.raises(BackendError) as exc_info:
        await sim.describe("i-nope")
    assert exc_info.value.code == "InvalidInstanceID.NotFound"


@pytest.mark.asyncio
async def test_start_transitions_to_running_with_address(sim):
    await sim.start_instance(IID)
    assert (await sim.describe(IID)).raw_state == RawState.PENDING
    await sim.await_state(IID, RawState.RUNNING, timeout_seconds=2)
    address = await sim.await_public_address(IID, timeout_seconds=2)
    assert address.startswith("203.0.113.")


@pytest.mark.asyncio
async def test_start_on_running_is_noop(sim):
    await sim.apply_scenario("running")
    await sim.start_instance(IID)
    record = await sim.describe(IID)
    assert record.raw_state == RawState.RUNNING
    assert record.public_address == "203.0.113.42"


@pytest.mark.asyncio
async def test_stop_on_stopped_is_noop(sim):
    await sim.stop_instance(IID)
    assert (await sim.describe(IID)).raw_state == RawState.STOPPED
    assert sim.state.instance.transition_target is None


@pytest.mark.asyncio
async def test_stop_transitions_and_clears_address(sim):
    await sim.apply_scenario("running")
    await sim.stop_instance(IID)
    assert (await sim.describe(IID)).raw_state == RawState.STOPPING
    await sim.await_state(IID, "stopped", timeout_seconds=2)
    assert (await sim.describe(IID)).public_address is None


@pytest.mark.parametrize("scenario", ["starting", "stopping"])
@pytest.mark.asyncio
async def test_start_during_transition_is_rejected(sim, scenario):
    await sim.apply_scenario(scenario)
    with pytest.raises(BackendError) as exc_info:
        await sim.start_instance(IID)
    assert exc_info.value.code == "IncorrectInstanceState"


@pytest.mark.asyncio
async def test_await_state_times_out_on_stuck_pending(sim):
    await sim.apply_scenario("starting")
    with pytest.raises(WaitTimeoutError):
        await sim.await_state(IID, RawState.RUNNING, timeout_seconds=1)


@pytest.mark.asyncio
async def test_await_state_fails_early_on_termination(sim):
    await sim.apply_scenario("starting")

    async def terminate_soon():
        await asyncio.sleep(0.05)
        await sim.patch_instance(state="terminated")

    started = time.monotonic()
    task = asyncio.create_task(terminate_soon())
    with pytest.raises(UnexpectedStateError) as exc_info:
        await sim.await_state(IID, RawState.RUNNING, timeout_seconds=1)
    await task
    assert exc_info.value.state == "terminated"
    assert time.monotonic() - started < 1


@pytest.mark.asyncio
async def test_await_public_address_fails_when_stopped(sim):
    with pytest.raises(UnexpectedStateError):
        await sim.await_public_address(IID, timeout_seconds=1)


@pytest.mark.asyncio
async def test_recreate_volume_twice_is_noop_second_time(sim):
    await sim.apply_scenario("hibernated")
    assert not (await sim.describe(IID)).has_volume

    await sim.recreate_volume_from_baseline(IID)
    first = (await sim.describe(IID)).volume_ids
    assert len(first) == 1

    await sim.recreate_volume_from_baseline(IID)
    assert (await sim.describe(IID)).volume_ids == first


@pytest.mark.asyncio
async def test_recreate_volume_requires_zone(sim):
    await sim.apply_scenario("hibernated")
    await sim.patch_instance(availability_zone="")
    with pytest.raises(BackendError) as exc_info:
        await sim.recreate_volume_from_baseline(IID)
    assert exc_info.value.code == "MissingAvailabilityZone"


@pytest.mark.asyncio
async def test_detach_and_delete_volumes(sim):
    await sim.detach_and_delete_volumes(IID)
    record = await sim.describe(IID)
    assert not record.has_volume
    assert record.volume_ids == []


@pytest.mark.asyncio
async def test_detach_refused_while_running(sim):
    await sim.apply_scenario("running")
    with pytest.raises(BackendError):
        await sim.detach_and_delete_volumes(IID)
    assert (await sim.describe(IID)).has_volume


@pytest.mark.asyncio
async def test_volume_failure_aborts_teardown(sim):
    await sim.set_fault("deleteVolume", FaultConfig(fail_next=True, error_code="VolumeInUse"))
    with pytest.raises(BackendError) as exc_info:
        await sim.detach_and_delete_volumes(IID)
    assert exc_info.value.code == "VolumeInUse"
    assert sim.state.instance.volumes[0].status == "detaching"


@pytest.mark.asyncio
async def test_one_shot_fault_fires_once(sim):
    await sim.set_fault("startInstance", FaultConfig(
        fail_next=True, error_code="InsufficientInstanceCapacity", error_message="no capacity",
    ))
    with pytest.raises(BackendError) as exc_info:
        await sim.start_instance(IID)
    assert exc_info.value.code == "InsufficientInstanceCapacity"
    assert exc_info.value.message == "no capacity"
    assert (await sim.describe(IID)).raw_state == RawState.STOPPED

    await sim.start_instance(IID)
    assert (await sim.describe(IID)).raw_state == RawState.PENDING
    assert "startInstance" not in sim.state.faults


@pytest.mark.asyncio
async def test_always_fail_persists(sim):
    await sim.set_fault("getCosts", FaultConfig(always_fail=True, error_code="AccessDenied"))
    for _ in range(2):
        with pytest.raises(BackendError):
            await sim.get_costs()
    await sim.clear_fault("getCosts")
    assert (await sim.get_costs()).total_cost == "15.50"


@pytest.mark.asyncio
async def test_latency_is_applied(sim):
    await sim.set_latency(50)
    started = time.monotonic()
    await sim.find_instance_id()
    assert time.monotonic() - started >= 0.05


@pytest.mark.asyncio
async def test_negative_latency_rejected(sim):
    with pytest.raises(ValidationError):
        await sim.set_latency(-1)


@pytest.mark.asyncio
async def test_put_parameter_without_overwrite(sim):
    await sim.put_parameter("/x", "1", overwrite=False)
    with pytest.raises(ParameterAlreadyExists):
        await sim.put_parameter("/x", "2", overwrite=False)
    await sim.put_parameter("/x", "3")
    assert await sim.get_parameter("/x") == "3"
    await sim.delete_parameter("/x")
    await sim.delete_parameter("/x")
    assert await sim.get_parameter("/x") is None


@pytest.mark.asyncio
async def test_email_allowlist_round_trip(sim):
    assert await sim.get_email_allowlist() == []
    await sim.update_email_allowlist(["a@example.com", "b@example.com"])
    assert await sim.get_email_allowlist() == ["a@example.com", "b@example.com"]
    await sim.put_parameter("/minecraft/email-allowlist", '["c@example.com"]')
    assert await sim.get_email_allowlist() == ["c@example.com"]


@pytest.mark.asyncio
async def test_player_count(sim):
    assert (await sim.get_player_count()).count == 0
    await sim.apply_scenario("many-players")
    assert (await sim.get_player_count()).count == 18


@pytest.mark.asyncio
async def test_execute_command_requires_running(sim):
    with pytest.raises(BackendError) as exc_info:
        await sim.execute_command(IID, ["echo hi"])
    assert exc_info.value.code == "InvalidInstanceId"


@pytest.mark.asyncio
async def test_backup_command_records_backup(sim):
    await sim.apply_scenario("running")
    output = await sim.execute_command(IID, ["/usr/local/bin/mc-backup.sh nightly"])
    assert "nightly" in output
    backups = await sim.list_backups()
    assert backups[0].name == "nightly"
    assert sim.state.commands[-1].status == "Success"


@pytest.mark.asyncio
async def test_restore_of_missing_backup_fails(sim):
    await sim.apply_scenario("running")
    with pytest.raises(CommandFailedError) as exc_info:
        await sim.execute_command(IID, ["/usr/local/bin/mc-restore.sh nope"])
    assert "nope" in exc_info.value.message
    assert sim.state.commands[-1].status == "Failed"


@pytest.mark.asyncio
async def test_backups_listed_newest_first(sim):
    backups = await sim.list_backups()
    assert len(backups) == 3
    dates = [b.date for b in backups]
    assert dates == sorted(dates, reverse=True)


@pytest.mark.asyncio
async def test_costs_and_stack(sim):
    with pytest.raises(ValidationError):
        await sim.get_costs("forever")
    assert (await sim.get_costs("last-month")).total_cost == "18.75"

    stack = await sim.get_stack_status("MinecraftStack")
    assert stack.status == "CREATE_COMPLETE"
    assert stack.outputs["InstanceId"] == IID
    assert await sim.check_stack_exists("MinecraftStack")

    await sim.apply_scenario("stack-creating")
    assert (await sim.get_stack_status("MinecraftStack")).status == "CREATE_IN_PROGRESS"


@pytest.mark.asyncio
async def test_errors_scenario(sim):
    await sim.apply_scenario("errors")
    with pytest.raises(BackendError) as exc_info:
        await sim.start_instance(IID)
    assert exc_info.value.code == "InstanceLimitExceeded"
    with pytest.raises(BackendError):
        await sim.check_stack_exists("MinecraftStack")
    assert sim.state.scenario == "errors"


@pytest.mark.asyncio
async def test_unknown_scenario(sim):
    with pytest.raises(ValidationError, match="Scenario not found"):
        await sim.apply_scenario("meteor-strike")


@pytest.mark.asyncio
async def test_reset_drops_scheduled_transition(sim):
    await sim.start_instance(IID)
    await sim.reset()
    await asyncio.sleep(0.1)
    assert (await sim.describe(IID)).raw_state == RawState.STOPPED


@pytest.mark.asyncio
async def test_notifications_recorded(sim):
    await sim.send_notification("hello", "world")
    assert sim.state.notifications[0]["subject"] == "hello"


@pytest.mark.asyncio
async def test_state_persists_across_instances(tmp_path):
    store = SimulatedStateStore(tmp_path / "mock.json")
    first = SimulatedProvider(store=store, transition_delay=0.05, step_delay=0, poll_interval=0.01)
    await first.set_fault("stopInstance", FaultConfig(always_fail=True, error_code="Nope"))
    await first.start_instance(IID)

    second = SimulatedProvider(store=store, transition_delay=0.05, step_delay=0, poll_interval=0.01)
    assert second.state.faults["stopInstance"].error_code == "Nope"
    await second.await_state(IID, RawState.RUNNING, timeout_seconds=2)
    assert len(second.state.costs["current-month"].breakdown) == 5
    assert second.state.backups[0].name.startswith("minecraft-backup-")


@pytest.mark.asyncio
async def test_state_written_off_the_event_loop_thread(tmp_path, monkeypatch):
    store = SimulatedStateStore(tmp_path / "mock.json")
    writers = []
    write = store.write

    def recording_write(data):
        writers.append(threading.current_thread())
        write(data)

    monkeypatch.setattr(store, "write", recording_write)
    provider = SimulatedProvider(store=store, transition_delay=0, step_delay=0, poll_interval=0.01)
    await provider.set_latency(25)

    assert writers and threading.main_thread() not in writers
    assert store.load().latency_ms == 25
