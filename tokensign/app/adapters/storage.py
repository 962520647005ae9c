"""Filesystem-backed storage port implementation."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from tokensign.app.ports import StoragePort
from tokensign.errors import ArtifactIOError
from tokensign.utils.hashing import compute_sha256_file


class FileSystemStorageAdapter(StoragePort):
    """Adapter that performs direct filesystem operations."""

    def read_bytes(self, path: Path) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as exc:
            raise ArtifactIOError(f"Cannot read {path}: {exc.strerror or exc}") from exc

    def write_bytes(self, path: Path, content: bytes) -> None:
        destination = Path(path)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=destination.parent, prefix=f".{destination.name}.", suffix=".tmp"
            )
        except OSError as exc:
            raise ArtifactIOError(f"Cannot write {destination}: {exc.strerror or exc}") from exc

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, destination)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise ArtifactIOError(f"Cannot write {destination}: {exc.strerror or exc}") from exc

    def compute_hash(self, path: Path) -> str:
        try:
            return compute_sha256_file(Path(path))
        except OSError as exc:
            raise ArtifactIOError(f"Cannot read {path}: {exc.strerror or exc}") from exc
