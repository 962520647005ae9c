"""Public facade over token discovery, signing and verification.

Front-ends call these synchronous, blocking operations from a background
worker (see :mod:`tokensign.app.background`). Token handles are values:
:meth:`TokenService.list_tokens` returns them and the caller passes the
chosen one back into every later call.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from tokensign.app.key_resolver import KeyResolver
from tokensign.app.mechanisms import MechanismDescriptor, filter_mechanisms
from tokensign.app.ports import LedgerPort, MechanismInfo, StoragePort
from tokensign.app.signing_service import SigningEngine
from tokensign.app.token_directory import TokenDirectory, TokenHandle
from tokensign.app.verification_service import VerificationEngine
from tokensign.errors import ArtifactIOError, TokenNotFoundError, TokenSignError
from tokensign.utils.hashing import compute_sha256
from tokensign.utils.paths import original_path_for, signature_path_for

logger = logging.getLogger(__name__)


class TokenService:
    """Orchestrates the token-mediated signing workflow.

    All token I/O is delegated to the engines; all file I/O to the storage
    port. Completed operations are recorded in the audit ledger when one is
    configured.
    """

    def __init__(
        self,
        *,
        directory: TokenDirectory,
        key_resolver: KeyResolver,
        signer: SigningEngine,
        verifier: VerificationEngine,
        storage_port: StoragePort,
        ledger_port: LedgerPort | None = None,
    ) -> None:
        self.directory = directory
        self.key_resolver = key_resolver
        self.signer = signer
        self.verifier = verifier
        self.storage = storage_port
        self.ledger = ledger_port

    # ------------------------------------------------------------------ #
    # Token-level operations
    # ------------------------------------------------------------------ #

    def list_tokens(self) -> list[TokenHandle]:
        """Enumerate tokens currently present (empty when none)."""
        return self.directory.list_tokens()

    def find_token(
        self, selector: str, tokens: Sequence[TokenHandle] | None = None
    ) -> TokenHandle:
        """Pick a token by slot id or serial number.

        Raises:
            TokenNotFoundError: If no present token matches ``selector``
        """
        candidates = self.list_tokens() if tokens is None else tokens
        for token in candidates:
            if token.matches(selector):
                return token
        raise TokenNotFoundError(f"No token matches '{selector}'.")

    def list_signing_mechanisms(self, token: TokenHandle) -> list[MechanismDescriptor]:
        """Return the mechanisms that can sign with ``token``'s key.

        Mechanisms whose info cannot be read are logged and skipped. The first
        entry is the default selection.

        Raises:
            TokenNotFoundError: If the token is no longer present
        """
        runtime = self.directory.runtime
        slot_id = self.directory.resolve_slot(token)

        infos: list[MechanismInfo] = []
        for mechanism in runtime.get_mechanisms(slot_id):
            try:
                infos.append(runtime.get_mechanism_info(slot_id, mechanism))
            except TokenSignError as exc:
                logger.warning(
                    "Slot %s: skipping mechanism 0x%X, info unavailable: %s",
                    slot_id,
                    mechanism,
                    exc,
                )

        family = self.key_resolver.resolve_key_family(token)
        return filter_mechanisms(infos, family)

    def sign(self, token: TokenHandle, mechanism_id: int, pin: str, data: bytes) -> bytes:
        """Sign ``data`` on ``token`` and return the raw signature bytes."""
        return self.signer.sign(token, mechanism_id, pin, data).signature

    def verify(
        self, token: TokenHandle, mechanism_id: int, data: bytes, signature: bytes
    ) -> bool:
        """Verify ``signature`` over ``data`` with ``token``'s public key."""
        return self.verifier.verify(token, mechanism_id, data, signature)

    # ------------------------------------------------------------------ #
    # File-level operations
    # ------------------------------------------------------------------ #

    def sign_file(
        self, token: TokenHandle, mechanism_id: int, pin: str, path: Path
    ) -> Path:
        """Sign the file at ``path`` and write ``<path>.sig`` next to it.

        The signature file is only written after the token returned a
        signature, and it is written atomically.

        Returns:
            Path of the written signature file
        """
        source = Path(path)
        payload = self.storage.read_bytes(source)
        signature = self.sign(token, mechanism_id, pin, payload)

        sig_path = signature_path_for(source)
        self.storage.write_bytes(sig_path, signature)

        self._record(
            "sign",
            token,
            inputs=[str(source.resolve())],
            outputs=[str(sig_path.resolve())],
            sha256=compute_sha256(payload),
            signature_bytes=len(signature),
        )
        return sig_path

    def verify_file(self, token: TokenHandle, mechanism_id: int, signature_path: Path) -> bool:
        """Verify ``signature_path`` against the file it was derived from.

        The original file is ``signature_path`` with the ``.sig`` suffix removed.

        Raises:
            ArtifactIOError: If the path is not a ``.sig`` file or a file is unreadable
        """
        sig_path = Path(signature_path)
        try:
            original = original_path_for(sig_path)
        except ValueError as exc:
            raise ArtifactIOError(str(exc)) from exc

        payload = self.storage.read_bytes(original)
        signature = self.storage.read_bytes(sig_path)
        valid = self.verify(token, mechanism_id, payload, signature)

        self._record(
            "verify",
            token,
            inputs=[str(original.resolve()), str(sig_path.resolve())],
            outputs=[],
            sha256=compute_sha256(payload),
            valid=valid,
        )
        return valid

    def _record(
        self,
        operation: str,
        token: TokenHandle,
        *,
        inputs: list[str],
        outputs: list[str],
        **details: object,
    ) -> None:
        if self.ledger is None:
            return
        self.ledger.log(
            operation=operation,
            inputs=inputs,
            outputs=outputs,
            args={
                "slot_id": token.slot_id,
                "token_label": token.label,
                "token_serial": token.serial_number,
                **details,
            },
        )
