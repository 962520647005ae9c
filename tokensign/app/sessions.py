"""Session lifecycle shared by key resolution, signing and verification."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import PyKCS11

from tokensign.app.ports.token_runtime import TokenRuntimePort, TokenSessionPort
from tokensign.errors import TokenSignError

logger = logging.getLogger(__name__)

PRIVATE_SIGNING_KEY_TEMPLATE: list[tuple[int, Any]] = [
    (PyKCS11.CKA_CLASS, PyKCS11.CKO_PRIVATE_KEY),
    (PyKCS11.CKA_SIGN, True),
]
PUBLIC_KEY_TEMPLATE: list[tuple[int, Any]] = [
    (PyKCS11.CKA_CLASS, PyKCS11.CKO_PUBLIC_KEY),
]


@contextmanager
def token_session(
    runtime: TokenRuntimePort,
    slot_id: int,
    *,
    read_write: bool = False,
    pin: str | None = None,
) -> Iterator[TokenSessionPort]:
    """Open a session on ``slot_id``, optionally log in, and always tear down.

    Logout runs whenever login succeeded and close runs whenever open
    succeeded, regardless of how the body exits. Teardown failures are logged
    and never replace the error raised by the body.
    """
    session = runtime.open_session(slot_id, read_write=read_write)
    logged_in = False
    try:
        if pin is not None:
            session.login(pin)
            logged_in = True
        yield session
    finally:
        if logged_in:
            try:
                session.logout()
            except TokenSignError as exc:
                logger.debug("Slot %s: logout failed: %s", slot_id, exc)
        try:
            session.close()
        except TokenSignError as exc:
            logger.warning("Slot %s: closing session failed: %s", slot_id, exc)


def find_first(
    session: TokenSessionPort, template: list[tuple[int, Any]], *, what: str
) -> Any | None:
    """Return the first object matching ``template`` (first-match policy).

    When several objects match, which one the token lists first is used and
    a warning names the ambiguity.
    """
    found = session.find_objects(template)
    if not found:
        return None
    if len(found) > 1:
        logger.warning("Token holds %d %s objects; using the first one found.", len(found), what)
    return found[0]
