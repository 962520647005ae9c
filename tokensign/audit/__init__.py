"""Audit trail for signing operations."""

from tokensign.audit.ledger import AuditEntry, AuditLedger

__all__ = ["AuditEntry", "AuditLedger"]
