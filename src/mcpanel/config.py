"""Runtime settings, loaded from ``MC_*`` environment variables or a ``.env`` file."""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings


DEFAULT_STATE_DIR = Path.home() / ".mcpanel"


class Settings(BaseSettings):
    # Backend selection
    backend_mode: Literal["aws", "mock"] = "aws"

    # AWS
    aws_region: str = "us-east-1"
    instance_id: str = ""
    instance_name_tags: list[str] = ["MinecraftServer", "MinecraftStack/MinecraftServer"]
    stack_name: str = "MinecraftStack"

    # Cloudflare DNS
    cloudflare_zone_id: str = ""
    cloudflare_record_id: str = ""
    cloudflare_api_token: str = ""
    cloudflare_domain: str = ""

    # Google Drive backup remote (rclone)
    gdrive_remote: str = ""
    gdrive_root: str = ""

    # Notification email (SES)
    notify_sender: str = ""
    notify_recipient: str = ""

    # Remote scripts on the instance
    backup_script: str = "/usr/local/bin/mc-backup.sh"
    restore_script: str = "/usr/local/bin/mc-restore.sh"
    service_name: str = "minecraft"

    # Orchestration policy
    backup_requires_running: bool = True
    state_timeout_seconds: int = 300
    address_timeout_seconds: int = 300
    poll_interval_seconds: float = 2.0
    command_poll_interval_seconds: float = 2.0
    command_max_polls: int = 60

    # Simulated backend
    mock_state_path: Path | None = None
    mock_transition_delay_seconds: float = 2.5

    model_config = {"env_prefix": "MC_", "env_file": ".env", "extra": "ignore"}

    @property
    def dns_configured(self) -> bool:
        return bool(
            self.cloudflare_zone_id and self.cloudflare_record_id
            and self.cloudflare_api_token and self.cloudflare_domain
        )

    @property
    def is_mock(self) -> bool:
        return self.backend_mode == "mock"
