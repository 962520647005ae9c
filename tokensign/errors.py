"""Error taxonomy for token signing operations.

Every failure surfaced by the core is a :class:`TokenSignError` subclass
carrying an :class:`ErrorKind`, so front-ends branch on ``exc.kind`` instead
of catching generic faults.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of core failures."""

    RUNTIME_UNAVAILABLE = "runtime_unavailable"
    TOKEN_METADATA_READ_FAILURE = "token_metadata_read_failure"
    TOKEN_NOT_FOUND = "token_not_found"
    KEY_RESOLUTION_FAILURE = "key_resolution_failure"
    AUTHENTICATION_FAILURE = "authentication_failure"
    NO_SIGNING_KEY = "no_signing_key"
    NO_PUBLIC_KEY = "no_public_key"
    CRYPTO_OPERATION_FAILURE = "crypto_operation_failure"
    IO_FAILURE = "io_failure"
    AUDIT_FAILURE = "audit_failure"
    RUNTIME_FAILURE = "runtime_failure"


class TokenSignError(Exception):
    """Base class for all token signing failures."""

    kind: ErrorKind = ErrorKind.RUNTIME_FAILURE

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class RuntimeUnavailableError(TokenSignError):
    """The PKCS#11 module could not be located, loaded or initialized."""

    kind = ErrorKind.RUNTIME_UNAVAILABLE


class TokenMetadataReadError(TokenSignError):
    """Token info for a single slot could not be read."""

    kind = ErrorKind.TOKEN_METADATA_READ_FAILURE


class TokenNotFoundError(TokenSignError):
    """The selected token is no longer present in its slot."""

    kind = ErrorKind.TOKEN_NOT_FOUND


class KeyResolutionError(TokenSignError):
    """The key type of the token's signing key could not be determined."""

    kind = ErrorKind.KEY_RESOLUTION_FAILURE


class AuthenticationError(TokenSignError):
    """Login with the supplied PIN was rejected."""

    kind = ErrorKind.AUTHENTICATION_FAILURE


class NoSigningKeyError(TokenSignError):
    """No private key with sign capability exists on the token."""

    kind = ErrorKind.NO_SIGNING_KEY


class NoPublicKeyError(TokenSignError):
    """No public key object exists on the token."""

    kind = ErrorKind.NO_PUBLIC_KEY


class CryptoOperationError(TokenSignError):
    """The token's sign or verify primitive failed."""

    kind = ErrorKind.CRYPTO_OPERATION_FAILURE


class ArtifactIOError(TokenSignError):
    """Reading the payload or reading/writing a signature file failed."""

    kind = ErrorKind.IO_FAILURE


class AuditLedgerError(TokenSignError):
    """The audit ledger is unreadable, damaged or cannot be appended to."""

    kind = ErrorKind.AUDIT_FAILURE


class TokenRuntimeError(TokenSignError):
    """Runtime fault that fits no narrower kind (session open, object search)."""

    kind = ErrorKind.RUNTIME_FAILURE


__all__ = [
    "ErrorKind",
    "TokenSignError",
    "RuntimeUnavailableError",
    "TokenMetadataReadError",
    "TokenNotFoundError",
    "KeyResolutionError",
    "AuthenticationError",
    "NoSigningKeyError",
    "NoPublicKeyError",
    "CryptoOperationError",
    "ArtifactIOError",
    "AuditLedgerError",
    "TokenRuntimeError",
]
