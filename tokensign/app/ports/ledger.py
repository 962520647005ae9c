"""Ledger port interface for audit trail operations."""

from typing import Any, Protocol


class LedgerPort(Protocol):
    """Append-only, tamper-evident record of sign and verify operations."""

    def log(
        self,
        operation: str,
        inputs: list[str],
        outputs: list[str],
        args: dict[str, Any],
    ) -> Any:
        """Log an operation to the audit ledger.

        Args:
            operation: Operation name (e.g., "sign", "verify")
            inputs: List of input paths/identifiers
            outputs: List of output paths/identifiers
            args: Additional arguments/metadata
        """
        ...

    def verify(self) -> tuple[bool, str | None]:
        """Verify audit ledger integrity.

        Returns:
            Tuple of (is_valid, error_message)
        """
        ...

    def read_all(self) -> list[Any]:
        """Read all audit entries.

        Returns:
            List of audit entry DTOs
        """
        ...
