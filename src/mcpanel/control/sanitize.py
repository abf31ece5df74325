import re

from mcpanel.errors import ValidationError


MAX_BACKUP_NAME_LENGTH = 64
SAFE_BACKUP_NAME = re.compile(r"^[a-zA-Z0-9._-]+$")


def sanitize_backup_name(name: str | None) -> str:
    """Trim and validate a backup name before it is passed to a remote shell."""
    if not name or not isinstance(name, str):
        raise ValidationError("Backup name is required")
    trimmed = name.strip()
    if len(trimmed) > MAX_BACKUP_NAME_LENGTH:
        raise ValidationError(
            f"Backup name exceeds maximum length of {MAX_BACKUP_NAME_LENGTH} characters"
        )
    if not trimmed:
        raise ValidationError("Backup name cannot be empty")
    if not SAFE_BACKUP_NAME.match(trimmed):
        raise ValidationError(
            "Backup name contains invalid characters. "
            "Only alphanumeric, dots, dashes, and underscores are allowed."
        )
    return trimmed
