"""Signing engine: authenticated, single-use sessions around the sign primitive."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tokensign.app.digest import prepare_input
from tokensign.app.mechanisms import mechanism_display_name
from tokensign.app.ports.token_runtime import TokenRuntimePort
from tokensign.app.sessions import PRIVATE_SIGNING_KEY_TEMPLATE, find_first, token_session
from tokensign.app.token_directory import TokenDirectory, TokenHandle
from tokensign.errors import NoSigningKeyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SignatureArtifact:
    """Raw signature bytes; carries no mechanism or key metadata."""

    signature: bytes

    def __bytes__(self) -> bytes:
        return self.signature

    def __len__(self) -> int:
        return len(self.signature)


class SigningEngine:
    """Signs payloads with the first signing-capable private key of a token."""

    def __init__(self, runtime: TokenRuntimePort, directory: TokenDirectory) -> None:
        self.runtime = runtime
        self.directory = directory

    def sign(
        self,
        token: TokenHandle,
        mechanism_id: int,
        pin: str,
        payload: bytes,
    ) -> SignatureArtifact:
        """Sign ``payload`` on ``token`` using ``mechanism_id``.

        The session is opened read-write, logged in with ``pin``, used for this
        single operation, then logged out and closed on every exit path.

        Raises:
            TokenNotFoundError: If the token is no longer present
            AuthenticationError: If the PIN is rejected
            NoSigningKeyError: If the token holds no private signing key
            CryptoOperationError: If the sign primitive fails
        """
        slot_id = self.directory.resolve_slot(token)

        with token_session(self.runtime, slot_id, read_write=True, pin=pin) as session:
            key = find_first(session, PRIVATE_SIGNING_KEY_TEMPLATE, what="private signing key")
            if key is None:
                raise NoSigningKeyError("No private signing key found on token.")

            data = prepare_input(mechanism_id, payload)
            signature = session.sign(mechanism_id, key, data)

        logger.info(
            "Slot %s: signed %d bytes with %s (%d-byte signature)",
            slot_id,
            len(payload),
            mechanism_display_name(mechanism_id),
            len(signature),
        )
        return SignatureArtifact(signature=bytes(signature))
