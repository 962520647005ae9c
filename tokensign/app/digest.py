"""Input preparation for signing mechanisms that do not hash internally."""

from __future__ import annotations

import hashlib

from tokensign.app.mechanisms import CKM_RSA_PKCS

# DER DigestInfo header: SEQUENCE { AlgorithmIdentifier(sha256, NULL), OCTET STRING(32) }
SHA256_DIGEST_INFO_PREFIX = bytes.fromhex("3031300d060960864801650304020105000420")


def wrap_sha256_digest_info(payload: bytes) -> bytes:
    """Return the 51-byte DER DigestInfo for the SHA-256 digest of ``payload``."""
    return SHA256_DIGEST_INFO_PREFIX + hashlib.sha256(payload).digest()


def prepare_input(mechanism_id: int, payload: bytes) -> bytes:
    """Return the exact bytes handed to the token's sign/verify primitive.

    Raw RSA PKCS#1 v1.5 expects a DigestInfo; every other supported mechanism
    hashes on the token and receives ``payload`` unchanged.
    """
    if mechanism_id == CKM_RSA_PKCS:
        return wrap_sha256_digest_info(payload)
    return payload
