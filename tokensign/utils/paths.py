"""Signature artifact path conventions.

A signature lives next to the file it signs: ``<original path>.sig``.
"""

from __future__ import annotations

from pathlib import Path

SIGNATURE_SUFFIX = ".sig"


def signature_path_for(path: Path) -> Path:
    """Return the sibling signature path for ``path``."""
    path = Path(path)
    return path.with_name(path.name + SIGNATURE_SUFFIX)


def is_signature_path(path: Path) -> bool:
    """Return True when ``path`` carries the signature suffix (any case)."""
    return Path(path).name.lower().endswith(SIGNATURE_SUFFIX)


def original_path_for(signature_path: Path) -> Path:
    """Strip the signature suffix from ``signature_path``.

    Raises:
        ValueError: If ``signature_path`` does not end in ``.sig``.
    """
    signature_path = Path(signature_path)
    if not is_signature_path(signature_path):
        raise ValueError(
            f"Expected a signature file with a '{SIGNATURE_SUFFIX}' extension: {signature_path}"
        )
    name = signature_path.name[: -len(SIGNATURE_SUFFIX)]
    if not name:
        raise ValueError(f"Signature file has no original name: {signature_path}")
    return signature_path.with_name(name)
