"""Security utilities for credential validation and protection."""

from __future__ import annotations

import stat
from pathlib import Path

# hcloud API tokens are always exactly this long
HCLOUD_TOKEN_LENGTH = 64

INVALID_TOKEN_MESSAGE = (
    f"entered token is invalid (must be exactly {HCLOUD_TOKEN_LENGTH} characters long)"
)


def validate_hcloud_token(token: str | None) -> tuple[bool, str | None]:
    """Validate hcloud API token format.

    Args:
        token: Token string to validate.

    Returns:
        Tuple of (is_valid, error_message).
    """
    if not token:
        return False, "token is empty"

    if len(token) != HCLOUD_TOKEN_LENGTH:
        return False, INVALID_TOKEN_MESSAGE

    return True, None


def validate_robot_credentials(
    username: str | None, password: str | None
) -> tuple[bool, str | None]:
    """Validate a robot basic-auth pair. Both halves must be non-empty."""
    if not username and not password:
        return False, "robot user name and password are both missing"
    if not username:
        return False, "robot user name is missing"
    if not password:
        return False, "robot password is missing"
    return True, None


def mask_token(token: str | None, prefix_len: int = 4, suffix_len: int = 4) -> str:
    """Mask a credential for safe logging/display.

    Args:
        token: Token to mask.
        prefix_len: Number of prefix characters to show.
        suffix_len: Number of suffix characters to show.

    Returns:
        Masked token string (e.g., "jr5g...nh75").
    """
    if not token:
        return "<empty>"

    if len(token) <= prefix_len + suffix_len:
        return "*" * len(token)

    return f"{token[:prefix_len]}...{token[-suffix_len:]}"


def check_file_permissions(path: Path) -> tuple[bool, str | None]:
    """Check that a credential file is not world writable.

    Symlinks are resolved, so a Kubernetes secret mount (``hcloud`` ->
    ``..data/hcloud``) is judged by its target.

    Args:
        path: Path to the file.

    Returns:
        Tuple of (is_secure, warning_message).
    """
    if not path.exists():
        return True, None

    try:
        mode = path.stat().st_mode
        if mode & stat.S_IWOTH:
            current_perms = oct(mode)[-3:]
            return False, f"File {path} is world writable ({current_perms})"
        return True, None
    except OSError as e:
        return False, f"Cannot check permissions for {path}: {e}"


__all__ = [
    "HCLOUD_TOKEN_LENGTH",
    "INVALID_TOKEN_MESSAGE",
    "validate_hcloud_token",
    "validate_robot_credentials",
    "mask_token",
    "check_file_permissions",
]
