"""Utility modules for common operations."""

from tokensign.utils.hashing import compute_sha256, compute_sha256_file
from tokensign.utils.paths import (
    SIGNATURE_SUFFIX,
    is_signature_path,
    original_path_for,
    signature_path_for,
)

__all__ = [
    "SIGNATURE_SUFFIX",
    "compute_sha256",
    "compute_sha256_file",
    "is_signature_path",
    "original_path_for",
    "signature_path_for",
]
