"""Key family resolution for a token's signing key."""

from __future__ import annotations

import logging

import PyKCS11

from tokensign.app.mechanisms import KeyFamily
from tokensign.app.ports.token_runtime import TokenRuntimePort
from tokensign.app.sessions import PRIVATE_SIGNING_KEY_TEMPLATE, find_first, token_session
from tokensign.app.token_directory import TokenHandle
from tokensign.errors import KeyResolutionError, TokenSignError

logger = logging.getLogger(__name__)

_KEY_TYPE_FAMILIES: dict[int, KeyFamily] = {
    PyKCS11.CKK_RSA: KeyFamily.RSA,
    PyKCS11.CKK_EC: KeyFamily.EC,
}


class KeyResolver:
    """Classifies the first signing-capable private key on a token.

    Resolution is best effort: when no key is found or the lookup fails, the
    configured fallback family is returned (``RSA`` unless overridden).
    Callers must treat the result as a guess, not a verified fact.
    """

    def __init__(
        self,
        runtime: TokenRuntimePort,
        *,
        fallback: KeyFamily = KeyFamily.RSA,
    ) -> None:
        self.runtime = runtime
        self.fallback = fallback

    def resolve_key_family(self, token: TokenHandle) -> KeyFamily:
        """Return the algorithm family of ``token``'s signing key."""
        try:
            return self._lookup(token.slot_id)
        except TokenSignError as exc:
            logger.warning(
                "Slot %s: error retrieving key type (%s); assuming %s.",
                token.slot_id,
                exc,
                self.fallback.value,
            )
            return self.fallback

    def _lookup(self, slot_id: int) -> KeyFamily:
        with token_session(self.runtime, slot_id) as session:
            key = find_first(session, PRIVATE_SIGNING_KEY_TEMPLATE, what="private signing key")
            if key is None:
                raise KeyResolutionError("no private signing key visible without login")

            key_type = session.get_attribute(key, PyKCS11.CKA_KEY_TYPE)
            if key_type is None:
                raise KeyResolutionError("CKA_KEY_TYPE not readable")

        try:
            key_type = int(key_type)
        except (TypeError, ValueError) as exc:
            raise KeyResolutionError(f"CKA_KEY_TYPE is not a number: {key_type!r}") from exc

        family = _KEY_TYPE_FAMILIES.get(key_type, KeyFamily.OTHER)
        logger.debug("Slot %s: signing key type 0x%X resolved to %s", slot_id, key_type, family.value)
        return family
