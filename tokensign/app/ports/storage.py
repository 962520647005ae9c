"""Storage port interface for payload and signature files."""

from pathlib import Path
from typing import Protocol


class StoragePort(Protocol):
    """Port interface for storage operations.

    Abstracts filesystem I/O to enable testing and alternative backends.

    Side effects: Reads/writes files (offline).
    """

    def read_bytes(self, path: Path) -> bytes:
        """Read a binary file.

        Raises:
            ArtifactIOError: If the file cannot be read
        """
        ...

    def write_bytes(self, path: Path, content: bytes) -> None:
        """Write a binary file atomically; no partial file is ever left behind.

        Raises:
            ArtifactIOError: If the file cannot be written
        """
        ...

    def compute_hash(self, path: Path) -> str:
        """Compute SHA-256 hash of file.

        Returns:
            Hex-encoded SHA-256 hash
        """
        ...
