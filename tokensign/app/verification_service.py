"""Verification engine: read-only sessions around the verify primitive."""

from __future__ import annotations

import logging

from tokensign.app.digest import prepare_input
from tokensign.app.mechanisms import mechanism_display_name
from tokensign.app.ports.token_runtime import TokenRuntimePort
from tokensign.app.sessions import PUBLIC_KEY_TEMPLATE, find_first, token_session
from tokensign.app.token_directory import TokenDirectory, TokenHandle
from tokensign.errors import NoPublicKeyError

logger = logging.getLogger(__name__)


class VerificationEngine:
    """Verifies signatures with the first public key object of a token.

    The signature format does not record the mechanism that produced it; the
    caller must supply the same mechanism used at signing time, otherwise the
    wrong scheme is tested and the result is ``False``.
    """

    def __init__(self, runtime: TokenRuntimePort, directory: TokenDirectory) -> None:
        self.runtime = runtime
        self.directory = directory

    def verify(
        self,
        token: TokenHandle,
        mechanism_id: int,
        payload: bytes,
        signature: bytes,
    ) -> bool:
        """Return whether ``signature`` is valid for ``payload``.

        Raises:
            TokenNotFoundError: If the token is no longer present
            NoPublicKeyError: If the token exposes no public key
            CryptoOperationError: If the verify primitive itself fails
        """
        slot_id = self.directory.resolve_slot(token)

        with token_session(self.runtime, slot_id) as session:
            key = find_first(session, PUBLIC_KEY_TEMPLATE, what="public key")
            if key is None:
                raise NoPublicKeyError("No public key found on token.")

            data = prepare_input(mechanism_id, payload)
            valid = session.verify(mechanism_id, key, data, bytes(signature))

        logger.info(
            "Slot %s: %s signature check with %s",
            slot_id,
            "passed" if valid else "failed",
            mechanism_display_name(mechanism_id),
        )
        return bool(valid)
