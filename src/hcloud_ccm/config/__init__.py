"""Configuration management.

Modules:
    settings: Environment variable parsing and validation
    credentials: Credential directory layout and file reading
    security: Credential format validation and masking
    audit: JSON-lines audit log for credential and API events
"""

from hcloud_ccm.config.credentials import (
    HCLOUD_TOKEN_FILE,
    ROBOT_PASSWORD_FILE,
    ROBOT_USER_FILE,
    decode_credential,
    get_directory,
    read_credential_files,
    require_credential,
)
from hcloud_ccm.config.security import (
    HCLOUD_TOKEN_LENGTH,
    mask_token,
    validate_hcloud_token,
    validate_robot_credentials,
)
from hcloud_ccm.config.settings import (
    DEFAULT_HCLOUD_ENDPOINT,
    DEFAULT_ROBOT_CACHE_TIMEOUT,
    DEFAULT_ROBOT_ENDPOINT,
    SETTINGS_SCHEMA,
    Settings,
    load_settings,
    validate_settings,
)

__all__ = [
    # Settings
    "DEFAULT_HCLOUD_ENDPOINT",
    "DEFAULT_ROBOT_ENDPOINT",
    "DEFAULT_ROBOT_CACHE_TIMEOUT",
    "SETTINGS_SCHEMA",
    "Settings",
    "load_settings",
    "validate_settings",
    # Credentials
    "HCLOUD_TOKEN_FILE",
    "ROBOT_USER_FILE",
    "ROBOT_PASSWORD_FILE",
    "get_directory",
    "read_credential_files",
    "decode_credential",
    "require_credential",
    # Security
    "HCLOUD_TOKEN_LENGTH",
    "mask_token",
    "validate_hcloud_token",
    "validate_robot_credentials",
]
