"""Token runtime port interface for PKCS#11 capabilities."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

AttributeTemplate = Sequence[tuple[int, Any]]


@dataclass(frozen=True, slots=True)
class TokenInfoRecord:
    """Descriptive token metadata as reported by the runtime (unpadded)."""

    label: str
    manufacturer: str
    model: str
    serial_number: str


@dataclass(frozen=True, slots=True)
class MechanismInfo:
    """A mechanism advertised by a slot together with its ``CKF_*`` flags."""

    mechanism: int
    flags: int


class TokenSessionPort(Protocol):
    """Port interface for a single PKCS#11 session.

    A session is exclusive to one operation: opened, used, torn down.
    Implementations raise :mod:`tokensign.errors` exceptions, never raw
    runtime errors.

    Side effects: Talks to the hardware token.
    """

    def login(self, pin: str) -> None:
        """Authenticate as the token user.

        Raises:
            AuthenticationError: If the PIN is rejected or locked
        """
        ...

    def logout(self) -> None:
        """End the authenticated state of the session."""
        ...

    def close(self) -> None:
        """Close the session."""
        ...

    def find_objects(self, template: AttributeTemplate) -> list[Any]:
        """Search session objects matching every ``(attribute, value)`` pair.

        Returns:
            Object handles in the order the token reports them
        """
        ...

    def get_attribute(self, obj: Any, attribute: int) -> Any:
        """Read a single attribute value of ``obj``."""
        ...

    def sign(self, mechanism: int, key: Any, data: bytes) -> bytes:
        """Sign ``data`` with ``key`` using ``mechanism``.

        Raises:
            CryptoOperationError: If the primitive fails
        """
        ...

    def verify(self, mechanism: int, key: Any, data: bytes, signature: bytes) -> bool:
        """Verify ``signature`` over ``data``.

        Returns:
            False when the signature does not match; True when it does

        Raises:
            CryptoOperationError: If the primitive itself fails
        """
        ...


class TokenRuntimePort(Protocol):
    """Port interface for the token runtime (PKCS#11 module).

    Side effects: Loads a native module and talks to hardware tokens.
    """

    def get_slots(self) -> list[int]:
        """Return ids of slots that currently hold a token.

        Raises:
            RuntimeUnavailableError: If the runtime cannot be loaded
        """
        ...

    def get_token_info(self, slot_id: int) -> TokenInfoRecord:
        """Read descriptive metadata of the token in ``slot_id``.

        Raises:
            TokenMetadataReadError: If the token info cannot be read
        """
        ...

    def get_mechanisms(self, slot_id: int) -> list[int]:
        """Return mechanism codes supported by ``slot_id`` in advertised order."""
        ...

    def get_mechanism_info(self, slot_id: int, mechanism: int) -> MechanismInfo:
        """Return flags for ``mechanism`` on ``slot_id``."""
        ...

    def open_session(self, slot_id: int, *, read_write: bool = False) -> TokenSessionPort:
        """Open a session on ``slot_id``.

        Raises:
            TokenNotFoundError: If the token was removed
        """
        ...
