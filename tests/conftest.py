from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError

from mcpanel.config import Settings
from mcpanel.control.orchestrator import Orchestrator
from mcpanel.control.state import InstanceRecord, RawState
from mcpanel.providers.simulated import SimulatedProvider


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "uses_moto: test uses moto @mock_aws (allows boto3 calls)"
    )


@pytest.fixture(autouse=True)
def _block_real_aws(request, monkeypatch):
    """Prevent any test from making real AWS API calls."""
    if request.node.get_closest_marker("uses_moto"):
        return

    def _blocked_client(service, *a, **kw):
        raise RuntimeError(
            f"Unmocked boto3.client('{service}') call! "
            f"Add a @patch or fixture mock for this AWS call."
        )

    def _blocked_resource(service, *a, **kw):
        raise RuntimeError(
            f"Unmocked boto3.resource('{service}') call! "
            f"Add a @patch or fixture mock for this AWS call."
        )

    monkeypatch.setattr(boto3, "client", _blocked_client)
    monkeypatch.setattr(boto3, "resource", _blocked_resource)


# ── Settings and providers ──


@pytest.fixture
def settings():
    """Fast-polling mock-mode settings that ignore any local .env file."""
    return Settings(
        _env_file=None,
        backend_mode="mock",
        poll_interval_seconds=0.01,
        state_timeout_seconds=5,
        address_timeout_seconds=5,
        command_poll_interval_seconds=0,
        command_max_polls=3,
    )


@pytest.fixture
def sim():
    """Simulated provider with near-instant transitions."""
    return SimulatedProvider(transition_delay=0.05, step_delay=0, poll_interval=0.01)


class RecordingDns:
    def __init__(self, fail=False):
        self.addresses = []
        self.fail = fail

    async def update(self, address):
        if self.fail:
            raise RuntimeError("cloudflare unreachable")
        self.addresses.append(address)


@pytest.fixture
def dns():
    return RecordingDns()


@pytest.fixture
def orchestrator(sim, dns, settings):
    return Orchestrator(sim, dns=dns, settings=settings)


# ── Record factories ──


@pytest.fixture
def make_instance_record():
    """Factory for InstanceRecord with sensible defaults. Override any field via kwargs."""
    def _make(**overrides):
        defaults = dict(
            instance_id="i-test123", raw_state=RawState.RUNNING,
            public_address="203.0.113.7", has_volume=True,
            availability_zone="us-east-1a", volume_ids=["vol-test123"],
        )
        defaults.update(overrides)
        return InstanceRecord(**defaults)
    return _make


@pytest.fixture
def make_client_error():
    """Factory for botocore ClientError."""
    def _make(code: str, message: str = "error"):
        return ClientError({"Error": {"Code": code, "Message": message}}, "TestOp")
    return _make


@pytest.fixture
def make_ec2_instance():
    """Factory for a DescribeInstances instance dict."""
    def _make(state="running", public_ip="54.1.2.3", volume_ids=("vol-test123",), **extra):
        instance = {
            "InstanceId": "i-test123",
            "State": {"Name": state},
            "Placement": {"AvailabilityZone": "us-east-1a"},
            "BlockDeviceMappings": [
                {"DeviceName": "/dev/xvda", "Ebs": {"VolumeId": v}} for v in volume_ids
            ],
        }
        if public_ip:
            instance["PublicIpAddress"] = public_ip
        instance.update(extra)
        return instance
    return _make


@pytest.fixture
def mock_boto_client(monkeypatch):
    """Replace boto3.client with one returning a shared MagicMock."""
    client = MagicMock()
    monkeypatch.setattr(boto3, "client", MagicMock(return_value=client))
    return client
