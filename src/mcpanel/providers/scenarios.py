"""Named presets for the simulated backend.

Each scenario is applied on top of a freshly reset baseline state.
"""

from dataclasses import dataclass
from typing import Callable

from mcpanel.control.state import CostLine
from mcpanel.errors import ValidationError
from mcpanel.providers.simulated_state import (
    FaultConfig,
    SimParameter,
    SimStack,
    SimulatedState,
    cost_fixture,
)


SCENARIO_ADDRESS = "203.0.113.42"


@dataclass
class Scenario:
    name: str
    description: str
    apply: Callable[[SimulatedState], None]


def _running(state: SimulatedState) -> None:
    state.instance.state = "running"
    state.instance.public_ip = SCENARIO_ADDRESS


def _apply_default(state: SimulatedState) -> None:
    pass


def _apply_running(state: SimulatedState) -> None:
    _running(state)
    state.parameters["/minecraft/player-count"] = SimParameter("5")


def _apply_starting(state: SimulatedState) -> None:
    state.instance.state = "pending"
    state.instance.public_ip = None


def _apply_stopping(state: SimulatedState) -> None:
    state.instance.state = "stopping"
    state.instance.public_ip = SCENARIO_ADDRESS


def _apply_hibernated(state: SimulatedState) -> None:
    state.instance.state = "stopped"
    state.instance.public_ip = None
    state.instance.volumes = []


def _apply_high_cost(state: SimulatedState) -> None:
    _running(state)
    breakdown = [
        CostLine("Amazon EC2", "110.00"),
        CostLine("Amazon EBS", "12.50"),
        CostLine("AWS Lambda", "2.00"),
        CostLine("Amazon SNS", "0.50"),
        CostLine("Amazon SES", "0.50"),
    ]
    for period, total in (("current-month", "125.50"), ("last-month", "118.75"),
                          ("last-30-days", "244.25")):
        state.costs[period] = cost_fixture(period, total, breakdown=list(breakdown))


def _apply_no_backups(state: SimulatedState) -> None:
    state.backups = []


def _apply_many_players(state: SimulatedState) -> None:
    _running(state)
    state.parameters["/minecraft/player-count"] = SimParameter("18")


def _apply_stack_creating(state: SimulatedState) -> None:
    state.stack = SimStack(status="CREATE_IN_PROGRESS")


ERROR_FAULTS = {
    "startInstance": ("InstanceLimitExceeded", "You have reached the maximum number of running instances"),
    "stopInstance": ("IncorrectState", "Instance is in an incorrect state for this operation"),
    "getCosts": ("AccessDenied", "User is not authorized to access Cost Explorer"),
    "executeSSMCommand": ("InvalidInstanceId", "The specified instance ID is not valid"),
    "getStackStatus": ("ValidationError", "Stack does not exist"),
    "checkStackExists": ("ValidationError", "Stack does not exist"),
}


def _apply_errors(state: SimulatedState) -> None:
    for operation, (code, message) in ERROR_FAULTS.items():
        state.faults[operation] = FaultConfig(always_fail=True, error_code=code, error_message=message)


SCENARIOS: dict[str, Scenario] = {
    s.name: s for s in [
        Scenario("default", "Normal operation, instance stopped with default settings", _apply_default),
        Scenario("running", "Instance is already running with public IP assigned", _apply_running),
        Scenario("starting", "Instance is in pending state, transitioning to running", _apply_starting),
        Scenario("stopping", "Instance is in stopping state, transitioning to stopped", _apply_stopping),
        Scenario("hibernated", "Instance is stopped without volumes (hibernated state)", _apply_hibernated),
        Scenario("high-cost", "Instance with high monthly costs for testing cost alerts", _apply_high_cost),
        Scenario("no-backups", "No backups available for testing backup error handling", _apply_no_backups),
        Scenario("many-players", "Instance running with high player count", _apply_many_players),
        Scenario("stack-creating", "CloudFormation stack is in CREATE_IN_PROGRESS state", _apply_stack_creating),
        Scenario("errors", "Most operations fail with errors for testing error handling", _apply_errors),
    ]
}


def get_scenario(name: str) -> Scenario:
    scenario = SCENARIOS.get(name)
    if not scenario:
        raise ValidationError(
            f"Scenario not found: {name}. Available scenarios: {', '.join(SCENARIOS)}"
        )
    return scenario
