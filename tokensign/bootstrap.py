"""Application bootstrap wiring ports, adapters, and services."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from tokensign.app import (
    AuditService,
    KeyFamily,
    KeyResolver,
    SigningEngine,
    TaskRunner,
    TokenDirectory,
    TokenService,
    VerificationEngine,
)
from tokensign.app.adapters import FileSystemStorageAdapter, PyKCS11RuntimeAdapter
from tokensign.app.ports import (
    LedgerPort,
    MechanismInfo,
    StoragePort,
    TokenInfoRecord,
    TokenRuntimePort,
    TokenSessionPort,
)
from tokensign.audit.ledger import AuditLedger
from tokensign.config import Settings, get_settings

RuntimeFactory = Callable[[Settings], TokenRuntimePort]


@dataclass(slots=True)
class ApplicationContainer:
    """Aggregates wired services and adapters for the CLI layer."""

    settings: Settings
    runtime: TokenRuntimePort
    storage_port: StoragePort
    ledger_port: LedgerPort | None
    token_service: TokenService
    audit_service: AuditService
    task_runner: TaskRunner


class NoOpLedger:
    """Ledger implementation that drops all writes."""

    def log(self, *args: Any, **kwargs: Any) -> None:
        return None

    def read_all(self) -> list[dict[str, Any]]:
        return []

    def verify(self) -> tuple[bool, str | None]:
        return (True, None)


def default_runtime_factory(settings: Settings) -> TokenRuntimePort:
    """Build the PyKCS11 runtime for the configured module.

    Raises:
        RuntimeUnavailableError: If no PKCS#11 module can be located
    """
    return PyKCS11RuntimeAdapter(settings.resolve_module_path())


_runtime_factory: RuntimeFactory = default_runtime_factory


def set_runtime_factory(factory: RuntimeFactory | None) -> None:
    """Override how the token runtime is built (tests, alternative modules)."""
    global _runtime_factory
    _runtime_factory = factory or default_runtime_factory


class LazyTokenRuntime(TokenRuntimePort):
    """Defers building the token runtime until a token operation needs it.

    Commands that never touch a token (audit, help) work without a PKCS#11
    module installed.
    """

    def __init__(self, factory: Callable[[], TokenRuntimePort]) -> None:
        self._factory = factory
        self._runtime: TokenRuntimePort | None = None

    def _resolve(self) -> TokenRuntimePort:
        if self._runtime is None:
            self._runtime = self._factory()
        return self._runtime

    def get_slots(self) -> list[int]:
        return self._resolve().get_slots()

    def get_token_info(self, slot_id: int) -> TokenInfoRecord:
        return self._resolve().get_token_info(slot_id)

    def get_mechanisms(self, slot_id: int) -> list[int]:
        return self._resolve().get_mechanisms(slot_id)

    def get_mechanism_info(self, slot_id: int, mechanism: int) -> MechanismInfo:
        return self._resolve().get_mechanism_info(slot_id, mechanism)

    def open_session(self, slot_id: int, *, read_write: bool = False) -> TokenSessionPort:
        return self._resolve().open_session(slot_id, read_write=read_write)


def _create_ledger(settings: Settings) -> LedgerPort | None:
    if not settings.audit_enabled:
        return None
    return AuditLedger(settings.get_audit_path(), hmac_key=settings.get_audit_hmac_key())


def bootstrap_application(
    settings: Settings | None = None,
    *,
    runtime: TokenRuntimePort | None = None,
) -> ApplicationContainer:
    """Wire the application for the CLI or another front-end.

    The token runtime is built lazily; a missing PKCS#11 module surfaces as
    ``RuntimeUnavailableError`` from the first token operation.

    Args:
        settings: Settings to use (defaults to the global instance)
        runtime: Token runtime to use instead of the configured factory
    """
    active_settings = settings or get_settings()
    factory = _runtime_factory
    token_runtime = (
        runtime
        if runtime is not None
        else LazyTokenRuntime(lambda: factory(active_settings))
    )

    storage = FileSystemStorageAdapter()
    ledger = _create_ledger(active_settings)

    directory = TokenDirectory(token_runtime)
    key_resolver = KeyResolver(
        token_runtime,
        fallback=KeyFamily(active_settings.fallback_key_family),
    )
    token_service = TokenService(
        directory=directory,
        key_resolver=key_resolver,
        signer=SigningEngine(token_runtime, directory),
        verifier=VerificationEngine(token_runtime, directory),
        storage_port=storage,
        ledger_port=ledger if ledger is not None else NoOpLedger(),
    )

    return ApplicationContainer(
        settings=active_settings,
        runtime=token_runtime,
        storage_port=storage,
        ledger_port=ledger,
        token_service=token_service,
        audit_service=AuditService(ledger),
        task_runner=TaskRunner(),
    )
