"""tokensign CLI application with Typer."""

import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Annotated, NoReturn, TypeVar

import click
import typer
from pydantic import ValidationError

from tokensign import __version__
from tokensign.app import MechanismDescriptor, TaskRunner, TokenHandle, TokenService
from tokensign.app.mechanisms import mechanism_display_name, parse_mechanism
from tokensign.bootstrap import ApplicationContainer, bootstrap_application
from tokensign.config import get_settings, set_settings
from tokensign.errors import ErrorKind, TokenSignError
from tokensign.utils.cli_output import json_response
from tokensign.utils.paths import is_signature_path, original_path_for

T = TypeVar("T")

app = typer.Typer(
    name="tokensign",
    help="Sign and verify files with keys held on PKCS#11 hardware tokens",
    add_completion=True,
    no_args_is_help=True,
)
tokens_app = typer.Typer(help="Token discovery and mechanism listing")
app.add_typer(tokens_app, name="tokens")
audit_app = typer.Typer(help="Audit ledger management")
app.add_typer(audit_app, name="audit")

_STATUS_PREFIX: dict[ErrorKind, str] = {
    ErrorKind.RUNTIME_UNAVAILABLE: "Token runtime unavailable",
    ErrorKind.TOKEN_NOT_FOUND: "Selected token not found",
    ErrorKind.AUTHENTICATION_FAILURE: "Authentication failed",
    ErrorKind.NO_SIGNING_KEY: "No private signing key",
    ErrorKind.NO_PUBLIC_KEY: "No public key",
    ErrorKind.CRYPTO_OPERATION_FAILURE: "PKCS#11 error",
    ErrorKind.IO_FAILURE: "File error",
    ErrorKind.AUDIT_FAILURE: "Audit ledger error",
}


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"tokensign version {__version__}")
        raise typer.Exit()


def _fail(message: str, *, code: int = 1) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _report(exc: TokenSignError) -> NoReturn:
    """Print a terminal, human-readable status for a failed request."""
    prefix = _STATUS_PREFIX.get(exc.kind, "Error")
    code = 2 if exc.kind is ErrorKind.RUNTIME_UNAVAILABLE else 1
    _fail(f"{prefix}: {exc}", code=code)


def _in_background(runner: TaskRunner, fn: Callable[..., T], *args: object) -> T:
    """Run blocking token I/O on the worker thread, mapping failures to exits."""
    try:
        return runner.run(fn, *args)
    except TokenSignError as exc:
        _report(exc)


def _select_token(runner: TaskRunner, service: TokenService, selector: str) -> TokenHandle:
    tokens = _in_background(runner, service.list_tokens)
    if not tokens:
        _fail("No token found in any slot.")
    try:
        return service.find_token(selector, tokens)
    except TokenSignError as exc:
        _fail(f"{exc} Run 'tokensign tokens list' to see present tokens.")


def _select_mechanism(
    runner: TaskRunner,
    service: TokenService,
    token: TokenHandle,
    requested: str | None,
) -> MechanismDescriptor:
    mechanisms = _in_background(runner, service.list_signing_mechanisms, token)
    if not mechanisms:
        _fail("No signing mechanism available for the selected token.")
    if requested is None:
        return mechanisms[0]

    try:
        mechanism_id = parse_mechanism(requested)
    except ValueError as exc:
        _fail(str(exc))

    for mechanism in mechanisms:
        if mechanism.id == mechanism_id:
            return mechanism

    valid = ", ".join(m.display_name for m in mechanisms)
    _fail(
        f"{mechanism_display_name(mechanism_id)} is not a valid signing mechanism "
        f"for this token. Choose one of: {valid}"
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-V", callback=version_callback, is_eager=True),
    ] = None,
    module: Annotated[
        Path | None,
        typer.Option("--module", "-m", help="Path to the PKCS#11 library"),
    ] = None,
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", help="Override data directory"),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Diagnostic log level (DEBUG, INFO, WARNING, ...)"),
    ] = None,
) -> None:
    """tokensign - sign and verify files with PKCS#11 hardware tokens."""
    try:
        settings = get_settings()
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        _fail(f"Invalid configuration: {problems}")
    if module:
        settings.pkcs11_module = module
    if data_dir:
        settings.data_dir = data_dir
    if log_level:
        if log_level.upper() not in logging.getLevelNamesMapping():
            raise typer.BadParameter(f"Unknown log level: {log_level}", param_hint="--log-level")
        settings.log_level = log_level
    set_settings(settings)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@tokens_app.command("list")
def tokens_list(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List tokens currently present in a slot."""
    container = bootstrap_application()

    with container.task_runner as runner:
        tokens = _in_background(runner, container.token_service.list_tokens)

    if json_output:
        typer.echo(json_response("token_list", 1, tokens=[t.to_dict() for t in tokens]))
        return

    if not tokens:
        typer.secho("No token found in any slot.", fg=typer.colors.YELLOW)
        return

    typer.echo(f"{'SLOT':>6}  {'LABEL':<24} {'MANUFACTURER':<24} {'MODEL':<16} SERIAL")
    for token in tokens:
        typer.echo(
            f"{token.slot_id:>6}  {token.label:<24} {token.manufacturer:<24} "
            f"{token.model:<16} {token.serial_number}"
        )
    typer.secho("Token information loaded.", fg=typer.colors.GREEN)


@tokens_app.command("mechanisms")
def tokens_mechanisms(
    token: Annotated[str, typer.Argument(help="Slot id or serial number of the token")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List signing mechanisms valid for the token's key."""
    container = bootstrap_application()
    service = container.token_service

    with container.task_runner as runner:
        handle = _select_token(runner, service, token)
        mechanisms = _in_background(runner, service.list_signing_mechanisms, handle)

    if json_output:
        typer.echo(
            json_response(
                "mechanism_list",
                1,
                token=handle.to_dict(),
                mechanisms=[m.to_dict() for m in mechanisms],
            )
        )
        return

    if not mechanisms:
        typer.secho("No signing mechanism available for this token.", fg=typer.colors.YELLOW)
        return

    for index, mechanism in enumerate(mechanisms):
        marker = "  (default)" if index == 0 else ""
        typer.echo(f"0x{mechanism.id:08X}  {mechanism.display_name}{marker}")


@app.command("sign")
def sign(
    file: Annotated[Path, typer.Argument(help="File to sign")],
    token: Annotated[
        str,
        typer.Option("--token", "-t", help="Slot id or serial number of the token"),
    ],
    mechanism: Annotated[
        str | None,
        typer.Option(
            "--mechanism",
            "-M",
            help="Signing mechanism (name or code); defaults to the first valid one",
        ),
    ] = None,
) -> None:
    """Sign FILE on the token and write FILE.sig next to it."""
    if not file.is_file():
        _fail(f"Please select a valid file to sign: {file}")

    container = bootstrap_application()
    service = container.token_service

    with container.task_runner as runner:
        handle = _select_token(runner, service, token)
        selected = _select_mechanism(runner, service, handle, mechanism)

        try:
            pin = typer.prompt("Token PIN", hide_input=True)
        except click.exceptions.Abort:
            _fail("Signing cancelled: no PIN entered.")

        typer.secho(
            f"Signing in progress with {selected.display_name}...", fg=typer.colors.BLUE
        )
        sig_path = _in_background(runner, service.sign_file, handle, selected.id, pin, file)

    typer.secho(
        f"File signed successfully. Signature saved to: {sig_path}", fg=typer.colors.GREEN
    )


@app.command("verify")
def verify(
    signature_file: Annotated[Path, typer.Argument(help="Signature file (FILE.sig)")],
    token: Annotated[
        str,
        typer.Option("--token", "-t", help="Slot id or serial number of the token"),
    ],
    mechanism: Annotated[
        str | None,
        typer.Option(
            "--mechanism",
            "-M",
            help="Mechanism used at signing time; defaults to the first valid one",
        ),
    ] = None,
) -> None:
    """Verify SIGNATURE_FILE against the file it was made from."""
    if not signature_file.is_file():
        _fail(f"Please select a valid signature file for verification: {signature_file}")
    if not is_signature_path(signature_file):
        _fail("The selected file must be a signature file with a '.sig' extension.")

    original = original_path_for(signature_file)
    if not original.is_file():
        _fail(f"The original file was not found: {original}")

    container = bootstrap_application()
    service = container.token_service

    with container.task_runner as runner:
        handle = _select_token(runner, service, token)
        selected = _select_mechanism(runner, service, handle, mechanism)

        typer.secho(
            f"Verification in progress with {selected.display_name}...", fg=typer.colors.BLUE
        )
        valid = _in_background(runner, service.verify_file, handle, selected.id, signature_file)

    if valid:
        typer.secho("Signature verified successfully.", fg=typer.colors.GREEN)
        return
    _fail("Signature verification failed.")


@audit_app.command("show")
def audit_show(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
    tail: Annotated[
        int | None,
        typer.Option("--tail", "-n", help="Show last N entries"),
    ] = None,
) -> None:
    """Show audit ledger entries."""
    container = bootstrap_application()

    if not container.audit_service.is_enabled():
        typer.secho("Audit ledger is disabled", fg=typer.colors.YELLOW)
        return

    try:
        entries = container.audit_service.get_entries()
    except TokenSignError as exc:
        _report(exc)

    if not entries:
        typer.secho("No audit ledger entries found", fg=typer.colors.YELLOW)
        return

    if tail:
        entries = entries[-tail:]

    if json_output:
        typer.echo(
            json_response(
                "audit_log",
                1,
                total_entries=len(entries),
                entries=[e.model_dump(mode="json") for e in entries],
            )
        )
    else:
        for entry in entries:
            typer.echo(f"{entry.timestamp} | {entry.operation} | {entry.inputs}")


@audit_app.command("verify")
def audit_verify() -> None:
    """Verify audit ledger integrity."""
    container = bootstrap_application()

    if not container.audit_service.is_enabled():
        typer.secho("Audit ledger is disabled", fg=typer.colors.YELLOW)
        return

    valid, error = container.audit_service.verify()

    if valid:
        typer.secho("Audit ledger is valid", fg=typer.colors.GREEN)
        return

    _fail(error or "Audit ledger integrity check failed")


@app.command("doctor")
def doctor(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results as JSON"),
    ] = False,
) -> None:
    """Run health checks for the PKCS#11 setup and the audit ledger.

    Example:
        tokensign doctor
        tokensign --module /usr/lib/softhsm/libsofthsm2.so doctor --json
    """
    checks: list[dict[str, str | bool]] = []
    all_passed = True

    def add_check(name: str, passed: bool, message: str, suggestion: str = "") -> None:
        nonlocal all_passed
        if not passed:
            all_passed = False
        checks.append(
            {
                "name": name,
                "passed": passed,
                "message": message,
                "suggestion": suggestion,
            }
        )

    container: ApplicationContainer = bootstrap_application()
    settings = container.settings

    if settings.pkcs11_module is not None:
        add_check(
            "pkcs11_module",
            settings.pkcs11_module.exists(),
            f"PKCS#11 module: {settings.pkcs11_module}",
            "Check the --module path or TOKENSIGN_PKCS11_MODULE",
        )
    else:
        add_check("pkcs11_module", True, "PKCS#11 module: auto-detect")

    with container.task_runner as runner:
        try:
            tokens = runner.run(container.token_service.list_tokens)
        except TokenSignError as exc:
            add_check(
                "token_runtime",
                False,
                f"Token runtime failed: {exc}",
                "Install OpenSC or your token vendor's PKCS#11 library",
            )
        else:
            add_check("token_runtime", True, "Token runtime loaded")
            add_check(
                "tokens_present",
                True,
                f"{len(tokens)} token(s) present" if tokens else "No token found in any slot",
            )

    if container.audit_service.is_enabled():
        valid, error = container.audit_service.verify()
        add_check(
            "audit_ledger",
            valid,
            f"Audit ledger: {settings.get_audit_path()}"
            + (" (verified)" if valid else f" ({error})"),
            "Move the damaged ledger aside to start a new one",
        )
    else:
        add_check("audit_ledger", True, "Audit ledger disabled")

    if json_output:
        typer.echo(json_response("doctor_report", 1, all_passed=all_passed, checks=checks))
    else:
        typer.secho("tokensign doctor", fg=typer.colors.CYAN, bold=True)
        for check in checks:
            icon = "✓" if check["passed"] else "✗"
            color = typer.colors.GREEN if check["passed"] else typer.colors.RED
            typer.secho(f"  {icon} {check['message']}", fg=color)
            if check.get("suggestion") and not check["passed"]:
                typer.secho(f"    → {check['suggestion']}", fg=typer.colors.YELLOW)

    if not all_passed:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
