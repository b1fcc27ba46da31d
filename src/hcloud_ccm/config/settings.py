"""Environment driven configuration for hcloud-ccm.

Every setting comes from an environment variable. Values are parsed and
validated against ``SETTINGS_SCHEMA`` before the core sees them, so the
clients and the watch orchestrator only ever receive typed values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional, Tuple

from hcloud_ccm.errors import ConfigError

DEFAULT_HCLOUD_ENDPOINT = "https://api.hetzner.cloud/v1"
DEFAULT_ROBOT_ENDPOINT = "https://robot-ws.your-server.de"
DEFAULT_METRICS_ADDRESS = ":8233"
# Robot allows 200 server list requests per hour
DEFAULT_ROBOT_CACHE_TIMEOUT = 300.0
DEFAULT_DEBOUNCE = 0.1

_TRUE_VALUES = {"1", "t", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "f", "false", "no", "n", "off"}


def parse_bool(value: str) -> bool:
    """Parse a boolean environment value.

    Raises:
        ValueError: If the value is not a recognised boolean.
    """
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean '{value}'")


def parse_seconds(value: str) -> float:
    """Parse a duration in seconds; a trailing ``s`` is accepted."""
    stripped = value.strip()
    if stripped.endswith("s"):
        stripped = stripped[:-1]
    try:
        return float(stripped)
    except ValueError:
        raise ValueError(f"invalid duration '{value}'") from None


def parse_address(value: str) -> Tuple[str, int]:
    """Parse ``host:port`` (host may be empty) into a bind address."""
    host, sep, port = value.strip().rpartition(":")
    if not sep:
        raise ValueError(f"invalid address '{value}', expected host:port")
    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"invalid port in address '{value}'") from None
    return host or "0.0.0.0", port_number


# Format: env var -> (field name, parser, default, validator func or None)
# validator func takes the parsed value and returns (is_valid, error_message)
ValidatorFunc = Callable[[object], Tuple[bool, str]]

SETTINGS_SCHEMA: dict[str, tuple[str, Callable[[str], object], object, Optional[ValidatorFunc]]] = {
    "HCLOUD_TOKEN": ("hcloud_token", str.strip, None, None),
    "HCLOUD_ENDPOINT": (
        "hcloud_endpoint",
        str.strip,
        DEFAULT_HCLOUD_ENDPOINT,
        lambda v: (True, "")
        if isinstance(v, str) and v.startswith("http")
        else (False, "must be a valid HTTP/HTTPS URL"),
    ),
    "HCLOUD_DEBUG": ("debug", parse_bool, False, None),
    "HCLOUD_METRICS_ENABLED": ("metrics_enabled", parse_bool, True, None),
    "HCLOUD_METRICS_ADDRESS": (
        "metrics_address",
        parse_address,
        parse_address(DEFAULT_METRICS_ADDRESS),
        lambda v: (True, "") if 0 <= v[1] <= 65535 else (False, "port must be between 0 and 65535"),
    ),
    "HCLOUD_HOT_RELOAD_ENABLED": ("hot_reload_enabled", parse_bool, True, None),
    "HCLOUD_CREDENTIALS_DEBOUNCE": (
        "debounce",
        parse_seconds,
        DEFAULT_DEBOUNCE,
        lambda v: (True, "") if 0 <= v <= 60 else (False, "must be between 0 and 60 seconds"),
    ),
    "ROBOT_ENABLED": ("robot_enabled", parse_bool, False, None),
    "ROBOT_USER_NAME": ("robot_user", str.strip, None, None),
    "ROBOT_PASSWORD": ("robot_password", str.strip, None, None),
    "ROBOT_ENDPOINT": (
        "robot_endpoint",
        str.strip,
        DEFAULT_ROBOT_ENDPOINT,
        lambda v: (True, "")
        if isinstance(v, str) and v.startswith("http")
        else (False, "must be a valid HTTP/HTTPS URL"),
    ),
    "ROBOT_CACHE_TIMEOUT": (
        "robot_cache_timeout",
        parse_seconds,
        DEFAULT_ROBOT_CACHE_TIMEOUT,
        lambda v: (True, "") if v >= 0 else (False, "must not be negative"),
    ),
}


@dataclass(frozen=True)
class Settings:
    """Validated runtime settings."""

    hcloud_token: Optional[str] = None
    hcloud_endpoint: str = DEFAULT_HCLOUD_ENDPOINT
    debug: bool = False
    metrics_enabled: bool = True
    metrics_address: Tuple[str, int] = parse_address(DEFAULT_METRICS_ADDRESS)
    hot_reload_enabled: bool = True
    debounce: float = DEFAULT_DEBOUNCE
    robot_enabled: bool = False
    robot_user: Optional[str] = None
    robot_password: Optional[str] = None
    robot_endpoint: str = DEFAULT_ROBOT_ENDPOINT
    robot_cache_timeout: float = DEFAULT_ROBOT_CACHE_TIMEOUT


def validate_settings(environ: Mapping[str, str]) -> Tuple[dict, List[str]]:
    """Parse and validate settings from ``environ``.

    Args:
        environ: Environment mapping.

    Returns:
        Tuple of (parsed field values, validation error messages).
    """
    values: dict = {}
    errors: List[str] = []

    for var, (field_name, parser, default, validator) in SETTINGS_SCHEMA.items():
        raw = environ.get(var)
        # Unset and empty both mean "use the default"
        if raw is None or raw.strip() == "":
            values[field_name] = default
            continue

        try:
            value = parser(raw)
        except ValueError as e:
            errors.append(f"{var}: {e}")
            continue

        if validator:
            is_valid, error_msg = validator(value)
            if not is_valid:
                errors.append(f"{var}: {error_msg}")
                continue

        values[field_name] = value

    # Robot credentials from the environment come as a pair
    if bool(values.get("robot_user")) != bool(values.get("robot_password")):
        errors.append("ROBOT_USER_NAME/ROBOT_PASSWORD: both or neither must be set")

    return values, errors


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Load settings from environment variables.

    Args:
        environ: Environment mapping. Defaults to ``os.environ``.

    Returns:
        Validated Settings.

    Raises:
        ConfigError: If any variable is invalid. All problems are reported at once.
    """
    if environ is None:
        environ = os.environ

    values, errors = validate_settings(environ)
    if errors:
        raise ConfigError(errors[0], details="\n".join(errors[1:]) or None)
    return Settings(**values)


__all__ = [
    "DEFAULT_HCLOUD_ENDPOINT",
    "DEFAULT_ROBOT_ENDPOINT",
    "DEFAULT_METRICS_ADDRESS",
    "DEFAULT_ROBOT_CACHE_TIMEOUT",
    "DEFAULT_DEBOUNCE",
    "SETTINGS_SCHEMA",
    "Settings",
    "parse_bool",
    "parse_seconds",
    "parse_address",
    "validate_settings",
    "load_settings",
]
