"""Credential storage layout and retrieval.

Credentials are mounted as a secret volume below the root directory:

    <root>/etc/hetzner-secret/hcloud           hcloud API token
    <root>/etc/hetzner-secret/robot-user       robot basic-auth user
    <root>/etc/hetzner-secret/robot-password   robot basic-auth password

Files are read as raw bytes. Surrounding whitespace is stripped in
``decode_credential`` only, so the initial load and every reload see the
same value for the same bytes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Mapping

from hcloud_ccm.config.audit import is_audit_enabled, log_credential_access
from hcloud_ccm.config.security import check_file_permissions
from hcloud_ccm.errors import CredentialReadError, CredentialValidationError, WatcherSetupError

logger = logging.getLogger(__name__)

CREDENTIALS_SUBDIR = Path("etc") / "hetzner-secret"

HCLOUD_TOKEN_FILE = "hcloud"
ROBOT_USER_FILE = "robot-user"
ROBOT_PASSWORD_FILE = "robot-password"


def get_directory(root_dir: str | Path = "/") -> Path:
    """Get the credentials directory below ``root_dir``.

    Args:
        root_dir: Filesystem root; tests pass a temporary directory.

    Returns:
        Path to ``<root_dir>/etc/hetzner-secret``.
    """
    return Path(root_dir) / CREDENTIALS_SUBDIR


def read_credential_files(directory: str | Path, names: Iterable[str]) -> dict[str, bytes]:
    """Read the named credential files from ``directory``.

    Files that do not exist are left out of the result; deciding whether a
    missing file is acceptable is up to the caller.

    Args:
        directory: Credentials directory.
        names: File names to read.

    Returns:
        Mapping of file name to raw file content.

    Raises:
        WatcherSetupError: If ``directory`` does not exist.
        CredentialReadError: If a file exists but cannot be read.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise WatcherSetupError(f"credentials directory {directory} does not exist")

    material: dict[str, bytes] = {}
    for name in names:
        path = directory / name
        try:
            material[name] = path.read_bytes()
        except FileNotFoundError:
            continue
        except OSError as e:
            if is_audit_enabled():
                log_credential_access(name, path=path, success=False, error=str(e))
            raise CredentialReadError(f"cannot read credential file {path}: {e}") from e

        is_secure, warning = check_file_permissions(path)
        if not is_secure:
            logger.warning(warning)
        if is_audit_enabled():
            log_credential_access(name, path=path)
    return material


def decode_credential(raw: bytes | None) -> str:
    """Decode raw credential bytes, stripping surrounding whitespace.

    Raises:
        CredentialValidationError: If the bytes are not valid UTF-8.
    """
    if raw is None:
        return ""
    try:
        return raw.strip().decode("utf-8")
    except UnicodeDecodeError as e:
        raise CredentialValidationError(f"credential is not valid UTF-8: {e}") from e


def require_credential(material: Mapping[str, bytes], name: str) -> str:
    """Return the decoded credential ``name`` from ``material``.

    Raises:
        CredentialValidationError: If the file was missing or is empty.
    """
    if name not in material:
        raise CredentialValidationError(f"credential file '{name}' is missing")
    value = decode_credential(material[name])
    if not value:
        raise CredentialValidationError(f"credential file '{name}' is empty")
    return value


__all__ = [
    "CREDENTIALS_SUBDIR",
    "HCLOUD_TOKEN_FILE",
    "ROBOT_USER_FILE",
    "ROBOT_PASSWORD_FILE",
    "get_directory",
    "read_credential_files",
    "decode_credential",
    "require_credential",
]
