"""Concrete adapters wiring application ports to built-in implementations."""

from __future__ import annotations

from .pykcs11_runtime import PyKCS11RuntimeAdapter, PyKCS11Session
from .storage import FileSystemStorageAdapter

__all__ = [
    "FileSystemStorageAdapter",
    "PyKCS11RuntimeAdapter",
    "PyKCS11Session",
]
