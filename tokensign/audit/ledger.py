"""Tamper-evident record of sign and verify requests.

Each line of ``audit.jsonl`` holds one :class:`AuditEntry`. An entry names the
SHA-256 digest of its predecessor and carries an HMAC seal over its sequence
number, that link, its own digest and the previous seal. The sidecar
``audit.meta`` seals the newest sequence number and digest, so dropping lines
from the end of the file is caught too.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from tokensign import __version__
from tokensign.errors import AuditLedgerError
from tokensign.utils.crypto import load_or_create_hmac_key, write_secure_file
from tokensign.utils.hashing import compute_sha256

logger = logging.getLogger(__name__)

ZERO_DIGEST = "0" * 64


class AuditEntry(BaseModel):
    """One recorded sign or verify request."""

    timestamp: str = Field(..., description="When the request completed (UTC, ISO 8601)")
    operation: str = Field(..., description="'sign' or 'verify'")
    inputs: list[str] = Field(default_factory=list, description="Files read by the request")
    outputs: list[str] = Field(default_factory=list, description="Signature files written")
    args: dict[str, Any] = Field(
        default_factory=dict, description="Token identity, payload digest and outcome"
    )
    versions: dict[str, str] = Field(default_factory=dict, description="Producing tool versions")
    previous_hash: str = Field(
        default=ZERO_DIGEST,
        description="Digest of the preceding entry; all zeros for the first one",
    )
    sequence: int | None = Field(default=None, ge=1, description="Position in the ledger, from 1")
    entry_hash: str | None = Field(
        default=None, description="SHA-256 of this entry without its digest and seal"
    )
    signature: str | None = Field(default=None, description="HMAC seal chaining this entry")

    def compute_hash(self) -> str:
        """SHA-256 over the canonical JSON of every field but the digest and seal."""
        body = self.model_dump(mode="json", exclude={"entry_hash", "signature"}, exclude_none=True)
        canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
        return compute_sha256(canonical.encode("utf-8"))

    def model_post_init(self, __context: Any) -> None:
        if self.entry_hash is None:
            self.entry_hash = self.compute_hash()


class AuditLedger:
    """Append-only JSONL ledger of token operations.

    A ledger found damaged when opened stays readable for :meth:`verify`, which
    reports the damage, but :meth:`log` refuses to extend it.
    """

    def __init__(self, ledger_path: Path, *, hmac_key: bytes | None = None) -> None:
        self.ledger_path = ledger_path
        self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
        self._seal_path = ledger_path.with_suffix(".meta")
        self._key = (
            hmac_key
            if hmac_key is not None
            else load_or_create_hmac_key(ledger_path.with_suffix(".key"), length=32)
        )

        self._tip_sequence = 0
        self._tip_hash = ZERO_DIGEST
        self._tip_seal = ZERO_DIGEST
        self._damage: str | None = None

        self._restore_tip()

    @property
    def damaged(self) -> str | None:
        """Why the ledger was found unusable when opened, or None."""
        return self._damage

    def _restore_tip(self) -> None:
        try:
            entries = self._parse()
        except (OSError, ValueError) as exc:
            self._mark_damaged(str(exc))
            return

        if entries:
            newest = entries[-1]
            self._tip_sequence = newest.sequence or len(entries)
            self._tip_hash = newest.entry_hash or ZERO_DIGEST
            self._tip_seal = newest.signature or ZERO_DIGEST

        try:
            sealed = self._read_seal()
        except (OSError, ValueError) as exc:
            self._mark_damaged(f"{self._seal_path.name} is invalid: {exc}")
            return

        if sealed is None:
            self._write_seal(self._tip_sequence, self._tip_hash if self._tip_sequence else None)

    def _mark_damaged(self, reason: str) -> None:
        self._damage = reason
        logger.warning("Audit ledger %s is damaged: %s", self.ledger_path, reason)

    def _parse(self) -> list[AuditEntry]:
        if not self.ledger_path.exists():
            return []

        entries: list[AuditEntry] = []
        with open(self.ledger_path, encoding="utf-8") as fh:
            for number, line in enumerate(fh, 1):
                if not line.strip():
                    continue
                try:
                    entries.append(AuditEntry.model_validate_json(line))
                except ValueError as exc:
                    raise ValueError(f"line {number} of {self.ledger_path} is unreadable: {exc}") from exc
        return entries

    def _seal(self, entry: AuditEntry, previous_seal: str) -> str:
        material = f"{entry.sequence or 0}|{entry.previous_hash}|{entry.entry_hash or ''}|{previous_seal}"
        return hmac.new(self._key, material.encode("utf-8"), hashlib.sha256).hexdigest()

    def _tip_mac(self, sequence: int, digest: str | None) -> str:
        material = f"{sequence}:{digest or ZERO_DIGEST}"
        return hmac.new(self._key, material.encode("utf-8"), hashlib.sha256).hexdigest()

    def _write_seal(self, sequence: int, digest: str | None) -> None:
        record = {
            "version": 1,
            "last_sequence": sequence,
            "last_hash": digest,
            "hmac": self._tip_mac(sequence, digest),
        }
        write_secure_file(
            self._seal_path,
            json.dumps(record, sort_keys=True, separators=(",", ":")).encode("utf-8"),
        )

    def _read_seal(self) -> dict[str, Any] | None:
        try:
            record = json.loads(self._seal_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None

        if not isinstance(record, dict):
            raise ValueError("seal is not a JSON object")
        mac = record.get("hmac")
        expected = self._tip_mac(int(record.get("last_sequence", 0)), record.get("last_hash"))
        if not isinstance(mac, str) or not hmac.compare_digest(expected, mac):
            raise ValueError("seal HMAC does not match")
        return record

    def log(
        self,
        operation: str,
        inputs: list[str] | None = None,
        outputs: list[str] | None = None,
        args: dict[str, Any] | None = None,
        versions: dict[str, str] | None = None,
    ) -> AuditEntry:
        """Append a sealed entry for ``operation`` and return it.

        Raises:
            AuditLedgerError: If the ledger is damaged or cannot be written
        """
        if self._damage is not None:
            raise AuditLedgerError(
                f"Refusing to append to damaged audit ledger {self.ledger_path}: {self._damage}"
            )

        stamped = {"tokensign": __version__, **(versions or {})}
        entry = AuditEntry(
            timestamp=datetime.now(UTC).isoformat(),
            operation=operation,
            inputs=inputs or [],
            outputs=outputs or [],
            args=args or {},
            versions=stamped,
            previous_hash=self._tip_hash,
            sequence=self._tip_sequence + 1,
        )
        entry.entry_hash = entry.compute_hash()
        entry.signature = self._seal(entry, self._tip_seal)

        try:
            with open(self.ledger_path, "a", encoding="utf-8") as fh:
                fh.write(entry.model_dump_json() + "\n")
                fh.flush()
                os.fsync(fh.fileno())
        except OSError as exc:
            raise AuditLedgerError(
                f"Cannot append to audit ledger {self.ledger_path}: {exc.strerror or exc}"
            ) from exc

        self._tip_sequence = entry.sequence or self._tip_sequence + 1
        self._tip_hash = entry.entry_hash or ZERO_DIGEST
        self._tip_seal = entry.signature or ZERO_DIGEST

        try:
            self._write_seal(self._tip_sequence, entry.entry_hash)
        except OSError as exc:
            self._mark_damaged(f"{self._seal_path.name} could not be updated: {exc}")
            raise AuditLedgerError(
                f"Cannot update audit seal {self._seal_path}: {exc.strerror or exc}"
            ) from exc

        return entry

    def read_all(self) -> list[AuditEntry]:
        """Return every entry, oldest first.

        Raises:
            AuditLedgerError: If the ledger file cannot be read or parsed
        """
        try:
            return self._parse()
        except (OSError, ValueError) as exc:
            raise AuditLedgerError(f"Cannot read audit ledger: {exc}") from exc

    def verify(self) -> tuple[bool, str | None]:
        """Check every digest, link and seal, then the sealed tip.

        Returns:
            ``(True, None)`` for an intact ledger, otherwise ``(False, reason)``.
        """
        try:
            sealed = self._read_seal()
            entries = self._parse()
        except (OSError, ValueError) as exc:
            return False, f"Audit ledger is damaged: {exc}"

        if not entries:
            if sealed and int(sealed.get("last_sequence", 0)) > 0:
                return False, "Audit ledger is empty but its seal records earlier entries."
            return True, None

        expected_link = ZERO_DIGEST
        previous_seal = ZERO_DIGEST
        for position, entry in enumerate(entries, 1):
            if entry.sequence is None or entry.entry_hash is None or entry.signature is None:
                return False, f"Entry {position} lacks a sequence number, digest or seal."
            if entry.sequence != position:
                return False, f"Entry {position} is numbered {entry.sequence}."

            actual = entry.compute_hash()
            if not hmac.compare_digest(entry.entry_hash, actual):
                return False, f"Entry {position} was modified (digest {actual} != {entry.entry_hash})."
            if entry.previous_hash != expected_link:
                return False, f"Entry {position} does not follow entry {position - 1}."
            if not hmac.compare_digest(entry.signature, self._seal(entry, previous_seal)):
                return False, f"Entry {position} has a bad seal."

            expected_link = entry.entry_hash
            previous_seal = entry.signature

        if sealed is None:
            return False, f"Seal file {self._seal_path.name} is missing."

        newest = entries[-1]
        if int(sealed.get("last_sequence", 0)) != newest.sequence:
            return False, (
                f"Seal records {sealed.get('last_sequence')} entries but the ledger holds "
                f"{newest.sequence}; entries were removed or added."
            )
        if sealed.get("last_hash") != newest.entry_hash:
            return False, "Seal does not match the newest entry; the ledger tail was altered."

        return True, None

    def get_by_operation(self, operation: str) -> list[AuditEntry]:
        """Entries recorded for ``operation`` ('sign' or 'verify')."""
        return [entry for entry in self.read_all() if entry.operation == operation]
