import logging

from mcpanel.config import Settings
from mcpanel.errors import ConfigurationError
from mcpanel.providers.base import Provider

logger = logging.getLogger(__name__)


def create_provider(settings: Settings) -> Provider:
    """Build the single provider for this process from ``settings.backend_mode``."""
    if settings.backend_mode == "mock":
        from mcpanel.providers.simulated import SimulatedProvider
        from mcpanel.providers.simulated_state import SimulatedStateStore

        logger.info("Using simulated backend (state file: %s)", settings.mock_state_path or "none")
        return SimulatedProvider(
            store=SimulatedStateStore(settings.mock_state_path),
            transition_delay=settings.mock_transition_delay_seconds,
            poll_interval=min(settings.poll_interval_seconds, 0.5),
        )
    if settings.backend_mode == "aws":
        from mcpanel.providers.aws import AwsProvider

        return AwsProvider(settings)
    raise ConfigurationError(f"Unknown backend mode: {settings.backend_mode}")
