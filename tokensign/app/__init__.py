"""Application layer for tokensign.

This layer orchestrates the token signing workflow without direct device or
filesystem access. All side effects are delegated to adapters via port
interfaces.
"""

__all__ = [
    "AuditService",
    "KeyFamily",
    "KeyResolver",
    "MechanismDescriptor",
    "SignatureArtifact",
    "SigningEngine",
    "TaskOutcome",
    "TaskRunner",
    "TokenDirectory",
    "TokenHandle",
    "TokenService",
    "VerificationEngine",
]

from tokensign.app.audit_service import AuditService
from tokensign.app.background import TaskOutcome, TaskRunner
from tokensign.app.key_resolver import KeyResolver
from tokensign.app.mechanisms import KeyFamily, MechanismDescriptor
from tokensign.app.signing_service import SignatureArtifact, SigningEngine
from tokensign.app.token_directory import TokenDirectory, TokenHandle
from tokensign.app.token_service import TokenService
from tokensign.app.verification_service import VerificationEngine
