"""
Tests for settings, credential files, credential validation and audit logging.
"""

import logging
import os

import pytest

from hcloud_ccm.config.audit import (
    AuditEvent,
    enable_audit_logging,
    is_audit_enabled,
    log_api_request,
    log_audit_event,
    log_credential_access,
    read_audit_log,
)
from hcloud_ccm.config.credentials import (
    decode_credential,
    get_directory,
    read_credential_files,
    require_credential,
)
from hcloud_ccm.config.security import (
    INVALID_TOKEN_MESSAGE,
    check_file_permissions,
    mask_token,
    validate_hcloud_token,
    validate_robot_credentials,
)
from hcloud_ccm.config.settings import (
    DEFAULT_HCLOUD_ENDPOINT,
    DEFAULT_ROBOT_CACHE_TIMEOUT,
    Settings,
    load_settings,
    parse_address,
    parse_bool,
    parse_seconds,
    validate_settings,
)
from hcloud_ccm.errors import (
    ConfigError,
    CredentialReadError,
    CredentialValidationError,
    WatcherSetupError,
)

from conftest import TOKEN_ONE, write_credential


# ═══════════════════════════════════════════════════════════════════════════════
# Test settings
# ═══════════════════════════════════════════════════════════════════════════════


class TestParsers:
    """Tests for the environment value parsers."""

    def test_parse_bool(self):
        assert parse_bool("true") is True
        assert parse_bool(" Yes ") is True
        assert parse_bool("0") is False
        assert parse_bool("off") is False

    def test_parse_bool_invalid(self):
        with pytest.raises(ValueError, match="invalid boolean 'maybe'"):
            parse_bool("maybe")

    def test_parse_seconds(self):
        assert parse_seconds("300") == 300.0
        assert parse_seconds("0.5s") == 0.5

    def test_parse_seconds_invalid(self):
        with pytest.raises(ValueError, match="invalid duration"):
            parse_seconds("five minutes")

    def test_parse_address(self):
        assert parse_address(":8233") == ("0.0.0.0", 8233)
        assert parse_address("127.0.0.1:9100") == ("127.0.0.1", 9100)

    def test_parse_address_invalid(self):
        with pytest.raises(ValueError, match="expected host:port"):
            parse_address("9100")
        with pytest.raises(ValueError, match="invalid port"):
            parse_address("localhost:http")


class TestLoadSettings:
    """Tests for load_settings function."""

    def test_defaults_from_empty_environment(self):
        settings = load_settings({})
        assert settings == Settings()
        assert settings.hcloud_token is None
        assert settings.hcloud_endpoint == DEFAULT_HCLOUD_ENDPOINT
        assert settings.metrics_address == ("0.0.0.0", 8233)
        assert settings.hot_reload_enabled is True
        assert settings.robot_cache_timeout == DEFAULT_ROBOT_CACHE_TIMEOUT

    def test_reads_values(self):
        settings = load_settings(
            {
                "HCLOUD_TOKEN": f"  {TOKEN_ONE}\n",
                "HCLOUD_DEBUG": "true",
                "HCLOUD_METRICS_ENABLED": "false",
                "ROBOT_ENABLED": "1",
                "ROBOT_USER_NAME": "user",
                "ROBOT_PASSWORD": "pass",
                "ROBOT_CACHE_TIMEOUT": "60s",
            }
        )
        assert settings.hcloud_token == TOKEN_ONE
        assert settings.debug is True
        assert settings.metrics_enabled is False
        assert settings.robot_enabled is True
        assert settings.robot_user == "user"
        assert settings.robot_cache_timeout == 60.0

    def test_empty_value_uses_default(self):
        settings = load_settings({"HCLOUD_ENDPOINT": "", "HCLOUD_METRICS_ENABLED": " "})
        assert settings.hcloud_endpoint == DEFAULT_HCLOUD_ENDPOINT
        assert settings.metrics_enabled is True

    def test_invalid_value_raises_config_error(self):
        with pytest.raises(ConfigError) as exc_info:
            load_settings({"HCLOUD_DEBUG": "maybe"})
        assert exc_info.value.message == "HCLOUD_DEBUG: invalid boolean 'maybe'"

    def test_all_errors_reported(self):
        values, errors = validate_settings(
            {"HCLOUD_ENDPOINT": "ftp://example.com", "ROBOT_CACHE_TIMEOUT": "-1"}
        )
        assert "HCLOUD_ENDPOINT: must be a valid HTTP/HTTPS URL" in errors
        assert "ROBOT_CACHE_TIMEOUT: must not be negative" in errors

        with pytest.raises(ConfigError) as exc_info:
            load_settings({"HCLOUD_ENDPOINT": "ftp://example.com", "ROBOT_CACHE_TIMEOUT": "-1"})
        assert exc_info.value.details

    def test_robot_pair_must_be_complete(self):
        _, errors = validate_settings({"ROBOT_USER_NAME": "user"})
        assert errors == ["ROBOT_USER_NAME/ROBOT_PASSWORD: both or neither must be set"]

    def test_debounce_range(self):
        _, errors = validate_settings({"HCLOUD_CREDENTIALS_DEBOUNCE": "120"})
        assert errors == ["HCLOUD_CREDENTIALS_DEBOUNCE: must be between 0 and 60 seconds"]

    def test_settings_are_frozen(self):
        settings = load_settings({})
        with pytest.raises(AttributeError):
            settings.debug = True


# ═══════════════════════════════════════════════════════════════════════════════
# Test credential files
# ═══════════════════════════════════════════════════════════════════════════════


class TestCredentialFiles:
    """Tests for reading credential material from the secret directory."""

    def test_get_directory(self, tmp_path):
        assert get_directory(tmp_path) == tmp_path / "etc" / "hetzner-secret"
        assert str(get_directory()) == "/etc/hetzner-secret"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(WatcherSetupError):
            read_credential_files(tmp_path / "missing", ["hcloud"])

    def test_reads_raw_bytes(self, secret_dir):
        write_credential(secret_dir, "hcloud", f"{TOKEN_ONE}\n")
        material = read_credential_files(secret_dir, ["hcloud"])
        assert material == {"hcloud": f"{TOKEN_ONE}\n".encode()}

    def test_missing_file_is_left_out(self, secret_dir):
        write_credential(secret_dir, "robot-user", "user")
        material = read_credential_files(secret_dir, ["robot-user", "robot-password"])
        assert material == {"robot-user": b"user"}

    def test_unreadable_file(self, secret_dir):
        (secret_dir / "hcloud").mkdir()
        with pytest.raises(CredentialReadError, match="cannot read credential file"):
            read_credential_files(secret_dir, ["hcloud"])

    def test_world_writable_file_warns(self, secret_dir, caplog):
        write_credential(secret_dir, "hcloud", TOKEN_ONE)
        os.chmod(secret_dir / "hcloud", 0o666)
        with caplog.at_level(logging.WARNING, logger="hcloud_ccm.config.credentials"):
            read_credential_files(secret_dir, ["hcloud"])
        assert "world writable" in caplog.text

    def test_decode_strips_whitespace(self):
        assert decode_credential(b"  secret\r\n") == "secret"
        assert decode_credential(None) == ""

    def test_decode_rejects_invalid_utf8(self):
        with pytest.raises(CredentialValidationError, match="not valid UTF-8"):
            decode_credential(b"\xff\xfe")

    def test_require_credential(self):
        assert require_credential({"hcloud": b"abc\n"}, "hcloud") == "abc"
        with pytest.raises(CredentialValidationError, match="'hcloud' is missing"):
            require_credential({}, "hcloud")
        with pytest.raises(CredentialValidationError, match="'hcloud' is empty"):
            require_credential({"hcloud": b" \n"}, "hcloud")


# ═══════════════════════════════════════════════════════════════════════════════
# Test credential validation
# ═══════════════════════════════════════════════════════════════════════════════


class TestValidateHcloudToken:
    """Tests for validate_hcloud_token function."""

    def test_valid_token(self):
        assert validate_hcloud_token(TOKEN_ONE) == (True, None)

    def test_wrong_length(self):
        assert validate_hcloud_token(TOKEN_ONE[:-1]) == (False, INVALID_TOKEN_MESSAGE)
        assert validate_hcloud_token(TOKEN_ONE + "x") == (False, INVALID_TOKEN_MESSAGE)

    def test_empty_token(self):
        assert validate_hcloud_token("") == (False, "token is empty")
        assert validate_hcloud_token(None) == (False, "token is empty")

    def test_message_text(self):
        assert INVALID_TOKEN_MESSAGE == (
            "entered token is invalid (must be exactly 64 characters long)"
        )


class TestValidateRobotCredentials:
    """Tests for validate_robot_credentials function."""

    def test_valid_pair(self):
        assert validate_robot_credentials("user", "pass") == (True, None)

    def test_partial_pairs(self):
        assert validate_robot_credentials("user", "") == (False, "robot password is missing")
        assert validate_robot_credentials(None, "pass") == (False, "robot user name is missing")
        assert validate_robot_credentials("", None) == (
            False,
            "robot user name and password are both missing",
        )


class TestMaskToken:
    """Tests for mask_token function."""

    def test_masks_middle(self):
        assert mask_token("abcdefghijkl") == "abcd...ijkl"

    def test_short_token_fully_masked(self):
        assert mask_token("short") == "*****"

    def test_empty(self):
        assert mask_token(None) == "<empty>"

    def test_custom_lengths(self):
        assert mask_token("robot-user-1", 2, 2) == "ro...-1"


class TestFilePermissions:
    """Tests for check_file_permissions function."""

    def test_private_file(self, tmp_path):
        path = tmp_path / "hcloud"
        path.write_text("x")
        os.chmod(path, 0o600)
        assert check_file_permissions(path) == (True, None)

    def test_missing_file(self, tmp_path):
        assert check_file_permissions(tmp_path / "missing") == (True, None)

    def test_world_writable(self, tmp_path):
        path = tmp_path / "hcloud"
        path.write_text("x")
        os.chmod(path, 0o666)
        is_secure, warning = check_file_permissions(path)
        assert is_secure is False
        assert "666" in warning


# ═══════════════════════════════════════════════════════════════════════════════
# Test audit log
# ═══════════════════════════════════════════════════════════════════════════════


class TestAuditLog:
    """Tests for the JSON-lines audit log."""

    def test_disabled_by_default(self):
        assert is_audit_enabled() is False
        assert read_audit_log() == []

    def test_records_credential_reads(self, tmp_path):
        enable_audit_logging(tmp_path / "audit" / "audit.log")
        log_credential_access("hcloud", path=tmp_path)
        log_credential_access("robot-password", success=False, error="permission denied")

        entries = read_audit_log()
        assert [e["event"] for e in entries] == [
            AuditEvent.CREDENTIAL_READ_FAILED,
            AuditEvent.CREDENTIAL_READ,
        ]
        assert entries[0]["success"] is False
        assert entries[0]["details"]["error"] == "permission denied"
        assert entries[1]["details"] == {"credential_file": "hcloud", "path": str(tmp_path)}

    def test_sensitive_details_are_masked(self, tmp_path):
        enable_audit_logging(tmp_path / "audit.log")
        log_audit_event("test", "message", {"token": TOKEN_ONE, "robot_password": "pw"})

        details = read_audit_log()[0]["details"]
        assert details["token"] == f"{TOKEN_ONE[:4]}...{TOKEN_ONE[-4:]}"
        assert details["robot_password"] == "***"
        assert TOKEN_ONE not in (tmp_path / "audit.log").read_text()

    def test_event_filter(self, tmp_path):
        enable_audit_logging(tmp_path / "audit.log")
        log_credential_access("hcloud")
        log_api_request("servers", status_code=200)
        assert len(read_audit_log(event_filter="api.")) == 1

    def test_log_file_is_private(self, tmp_path):
        log_path = tmp_path / "audit.log"
        enable_audit_logging(log_path)
        log_audit_event("test", "message")
        assert oct(log_path.stat().st_mode)[-3:] == "600"
