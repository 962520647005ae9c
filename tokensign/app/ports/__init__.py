"""Port interfaces for the tokensign application layer.

These protocol interfaces define contracts for adapters.
Domain logic depends on these ports, never on concrete implementations.
"""

__all__ = [
    "AttributeTemplate",
    "LedgerPort",
    "MechanismInfo",
    "StoragePort",
    "TokenInfoRecord",
    "TokenRuntimePort",
    "TokenSessionPort",
]

from tokensign.app.ports.ledger import LedgerPort
from tokensign.app.ports.storage import StoragePort
from tokensign.app.ports.token_runtime import (
    AttributeTemplate,
    MechanismInfo,
    TokenInfoRecord,
    TokenRuntimePort,
    TokenSessionPort,
)
