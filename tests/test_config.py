"""Tests for configuration management."""

from pathlib import Path

import pytest
from pydantic import ValidationError

import tokensign.config as config_module
from tokensign.config import Settings, get_settings, set_settings
from tokensign.errors import ErrorKind, RuntimeUnavailableError


def test_settings_default(temp_dir: Path, monkeypatch):
    monkeypatch.setenv("XDG_DATA_HOME", str(temp_dir / "xdg-data"))
    settings = Settings()

    assert settings.pkcs11_module is None
    assert settings.audit_enabled is True
    assert settings.fallback_key_family == "RSA"
    assert settings.get_data_dir() == temp_dir / "xdg-data" / "tokensign"


def test_settings_custom_dirs(temp_dir: Path):
    settings = Settings(data_dir=temp_dir / "data", config_dir=temp_dir / "config")

    assert settings.get_data_dir() == temp_dir / "data"
    assert settings.get_config_dir() == temp_dir / "config"
    assert settings.get_audit_path() == temp_dir / "data" / "audit.jsonl"
    assert (temp_dir / "data").is_dir()


def test_settings_from_environment(temp_dir: Path, monkeypatch):
    module = temp_dir / "libsofthsm2.so"
    monkeypatch.setenv("TOKENSIGN_PKCS11_MODULE", str(module))
    monkeypatch.setenv("TOKENSIGN_FALLBACK_KEY_FAMILY", "EC")
    monkeypatch.setenv("TOKENSIGN_AUDIT_ENABLED", "false")

    settings = Settings()

    assert settings.pkcs11_module == module
    assert settings.fallback_key_family == "EC"
    assert settings.audit_enabled is False


def test_audit_hmac_key_persisted(temp_dir: Path):
    settings = Settings(config_dir=temp_dir / "config")

    key = settings.get_audit_hmac_key()

    assert len(key) == 32
    assert settings.get_audit_hmac_key() == key
    assert (temp_dir / "config" / "audit-ledger.key").read_bytes() == key


def test_resolve_configured_module(temp_dir: Path):
    module = temp_dir / "libeTPkcs11.so"
    module.write_bytes(b"\x7fELF")

    assert Settings(pkcs11_module=module).resolve_module_path() == module


def test_resolve_missing_configured_module(temp_dir: Path):
    settings = Settings(pkcs11_module=temp_dir / "missing.so")

    with pytest.raises(RuntimeUnavailableError) as excinfo:
        settings.resolve_module_path()

    assert excinfo.value.kind is ErrorKind.RUNTIME_UNAVAILABLE


def test_resolve_searches_default_locations(temp_dir: Path, monkeypatch):
    present = temp_dir / "opensc-pkcs11.so"
    present.write_bytes(b"")
    monkeypatch.setattr(
        config_module,
        "DEFAULT_MODULE_PATHS",
        (str(temp_dir / "absent.so"), str(present)),
    )

    assert Settings().resolve_module_path() == present


def test_resolve_without_any_module(temp_dir: Path, monkeypatch):
    monkeypatch.setattr(config_module, "DEFAULT_MODULE_PATHS", (str(temp_dir / "absent.so"),))

    with pytest.raises(RuntimeUnavailableError, match="No PKCS#11 module found"):
        Settings().resolve_module_path()


def test_global_settings(override_settings):
    assert get_settings() is override_settings

    replacement = Settings(data_dir=override_settings.data_dir)
    set_settings(replacement)

    assert get_settings() is replacement


def test_log_level_normalized(monkeypatch):
    monkeypatch.setenv("TOKENSIGN_LOG_LEVEL", "debug")

    assert Settings().log_level == "DEBUG"


def test_unknown_log_level_rejected(monkeypatch):
    monkeypatch.setenv("TOKENSIGN_LOG_LEVEL", "LOUD")

    with pytest.raises(ValidationError, match="unknown log level"):
        Settings()
