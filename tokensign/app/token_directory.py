"""Token discovery: enumerate present tokens and re-resolve selected ones."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from tokensign.app.ports.token_runtime import TokenRuntimePort
from tokensign.errors import TokenMetadataReadError, TokenNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TokenHandle:
    """Identity and descriptive metadata of a present token.

    Handles are plain values: callers keep the list returned by
    :meth:`TokenDirectory.list_tokens` and pass a handle back into later calls.
    """

    slot_id: int
    label: str
    manufacturer: str
    model: str
    serial_number: str

    def to_dict(self) -> dict[str, object]:
        return asdict(self)

    def matches(self, selector: str) -> bool:
        """Return True when ``selector`` names this token by slot id or serial."""
        value = selector.strip()
        if value.isdigit() and int(value) == self.slot_id:
            return True
        return bool(self.serial_number) and value == self.serial_number


class TokenDirectory:
    """Enumerates tokens currently present in the runtime's slots."""

    def __init__(self, runtime: TokenRuntimePort) -> None:
        self.runtime = runtime

    def list_tokens(self) -> list[TokenHandle]:
        """Return a handle for every slot holding a readable token.

        A slot whose token info cannot be read is logged and skipped. An empty
        list means no token is present.

        Raises:
            RuntimeUnavailableError: If the token runtime cannot be loaded
        """
        tokens: list[TokenHandle] = []
        for slot_id in self.runtime.get_slots():
            try:
                info = self.runtime.get_token_info(slot_id)
            except TokenMetadataReadError as exc:
                logger.warning("Slot %s: error retrieving token info: %s", slot_id, exc)
                continue

            tokens.append(
                TokenHandle(
                    slot_id=slot_id,
                    label=info.label,
                    manufacturer=info.manufacturer,
                    model=info.model,
                    serial_number=info.serial_number,
                )
            )
        return tokens

    def resolve_slot(self, token: TokenHandle) -> int:
        """Return the live slot id of ``token``.

        The slot must still hold a token and, when the handle carries a serial
        number, the token in it must be the same one.

        Raises:
            TokenNotFoundError: If the token was removed or replaced
        """
        if token.slot_id not in self.runtime.get_slots():
            raise TokenNotFoundError(
                f"Selected token not found (slot {token.slot_id} holds no token)."
            )

        if not token.serial_number:
            return token.slot_id

        try:
            info = self.runtime.get_token_info(token.slot_id)
        except TokenMetadataReadError as exc:
            raise TokenNotFoundError(
                f"Selected token not found (slot {token.slot_id} unreadable: {exc})."
            ) from exc

        if info.serial_number != token.serial_number:
            raise TokenNotFoundError(
                f"Selected token not found (slot {token.slot_id} now holds serial "
                f"'{info.serial_number}', expected '{token.serial_number}')."
            )
        return token.slot_id
