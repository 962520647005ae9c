"""Configuration management with Pydantic and XDG base directory support."""

import logging
import os
import sys
from pathlib import Path
from typing import Literal

from pydantic import Field, PrivateAttr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tokensign.errors import RuntimeUnavailableError
from tokensign.utils.crypto import load_or_create_hmac_key

# Well-known PKCS#11 module locations, probed in order when none is configured.
DEFAULT_MODULE_PATHS: tuple[str, ...] = (
    "/usr/lib/libeTPkcs11.so",
    "/usr/lib/x86_64-linux-gnu/libeTPkcs11.so",
    r"C:\Windows\System32\eTPKCS11.dll",
    "/usr/lib/opensc-pkcs11.so",
    "/usr/lib/x86_64-linux-gnu/opensc-pkcs11.so",
    "/usr/lib/libykcs11.so",
    "/usr/lib/x86_64-linux-gnu/libykcs11.so",
    "/usr/lib/softhsm/libsofthsm2.so",
    "/usr/lib/x86_64-linux-gnu/softhsm/libsofthsm2.so",
    "/opt/homebrew/lib/opensc-pkcs11.so",
    "/usr/local/lib/opensc-pkcs11.so",
)

KeyFamilyName = Literal["RSA", "EC", "OTHER"]


def get_xdg_data_home() -> Path:
    """Get XDG_DATA_HOME directory, defaulting to ~/.local/share."""
    xdg_data = os.getenv("XDG_DATA_HOME")
    if xdg_data:
        return Path(xdg_data)
    return Path.home() / ".local" / "share"


def get_xdg_config_home() -> Path:
    """Get XDG_CONFIG_HOME directory, defaulting to ~/.config."""
    xdg_config = os.getenv("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config)
    return Path.home() / ".config"


class Settings(BaseSettings):
    """tokensign configuration settings.

    Precedence: CLI flag > environment variable > config file > defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="TOKENSIGN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    pkcs11_module: Path | None = Field(
        default=None,
        description="Path to the PKCS#11 shared library (auto-detected when unset)",
    )

    data_dir: Path | None = Field(
        default=None,
        description="Override data directory (defaults to XDG_DATA_HOME/tokensign)",
    )

    config_dir: Path | None = Field(
        default=None,
        description="Override config directory (defaults to XDG_CONFIG_HOME/tokensign)",
    )

    audit_enabled: bool = Field(
        default=True,
        description="Record sign/verify operations in the append-only audit ledger",
    )

    audit_hmac_key_path: Path | None = Field(
        default=None,
        description="Location of the audit ledger HMAC key for tamper detection",
    )

    fallback_key_family: KeyFamilyName = Field(
        default="RSA",
        description="Key family assumed when the token's signing key cannot be resolved",
    )

    log_level: str = Field(
        default="WARNING",
        description="Logging level for diagnostics written to stderr",
    )

    @field_validator("log_level")
    def _validate_log_level(cls, value: str) -> str:
        """Accept standard logging level names in any case."""
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {value}")
        return level

    _resolved_data_dir: Path | None = PrivateAttr(default=None)
    _data_dir_warning_emitted: bool = PrivateAttr(default=False)

    def get_data_dir(self) -> Path:
        """Get the data directory, creating if necessary."""
        if self._resolved_data_dir is not None:
            return self._resolved_data_dir

        if self.data_dir:
            data_dir = self.data_dir
            data_dir.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = data_dir
            return data_dir

        primary_dir = get_xdg_data_home() / "tokensign"
        try:
            primary_dir.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = primary_dir
            return primary_dir
        except PermissionError as exc:
            fallback = Path.cwd() / ".tokensign-data"
            fallback.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = fallback
            if not self._data_dir_warning_emitted:
                print(
                    f"Warning: cannot create data directory at {primary_dir} ({exc}). "
                    f"Using local '{fallback}' instead. Pass --data-dir to override.",
                    file=sys.stderr,
                )
                self._data_dir_warning_emitted = True
            return fallback

    def get_config_dir(self) -> Path:
        """Get the config directory, creating if necessary."""
        if self.config_dir:
            config_dir = self.config_dir
        else:
            config_dir = get_xdg_config_home() / "tokensign"

        config_dir.mkdir(parents=True, exist_ok=True)
        return config_dir

    def get_audit_path(self) -> Path:
        """Get path to audit ledger file."""
        return self.get_data_dir() / "audit.jsonl"

    def get_audit_hmac_key(self) -> bytes:
        """Return the HMAC key used to seal audit ledger metadata."""
        key_path = (
            self.audit_hmac_key_path
            if self.audit_hmac_key_path is not None
            else self.get_config_dir() / "audit-ledger.key"
        )
        return load_or_create_hmac_key(key_path, length=32)

    def resolve_module_path(self) -> Path:
        """Return the PKCS#11 module to load.

        Raises:
            RuntimeUnavailableError: If the configured module does not exist or
                no well-known module is installed.
        """
        if self.pkcs11_module is not None:
            module = self.pkcs11_module.expanduser()
            if not module.exists():
                raise RuntimeUnavailableError(f"PKCS#11 module not found: {module}")
            return module

        for candidate in DEFAULT_MODULE_PATHS:
            path = Path(candidate)
            if path.exists():
                return path

        raise RuntimeUnavailableError(
            "No PKCS#11 module found. Pass --module or set TOKENSIGN_PKCS11_MODULE."
        )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Set the global settings instance (useful for testing)."""
    global _settings
    _settings = settings
