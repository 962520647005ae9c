"""PyKCS11-backed implementation of the token runtime port."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import PyKCS11
from PyKCS11 import PyKCS11Error

from tokensign.app.ports.token_runtime import (
    AttributeTemplate,
    MechanismInfo,
    TokenInfoRecord,
    TokenRuntimePort,
    TokenSessionPort,
)
from tokensign.errors import (
    AuthenticationError,
    CryptoOperationError,
    RuntimeUnavailableError,
    TokenMetadataReadError,
    TokenNotFoundError,
    TokenRuntimeError,
)

logger = logging.getLogger(__name__)

_AUTHENTICATION_CODES = frozenset(
    {
        PyKCS11.CKR_PIN_INCORRECT,
        PyKCS11.CKR_PIN_INVALID,
        PyKCS11.CKR_PIN_LEN_RANGE,
        PyKCS11.CKR_PIN_LOCKED,
        PyKCS11.CKR_PIN_EXPIRED,
    }
)
_TOKEN_GONE_CODES = frozenset(
    {
        PyKCS11.CKR_TOKEN_NOT_PRESENT,
        PyKCS11.CKR_DEVICE_REMOVED,
        PyKCS11.CKR_SLOT_ID_INVALID,
        PyKCS11.CKR_TOKEN_NOT_RECOGNIZED,
    }
)
_INVALID_SIGNATURE_CODES = frozenset(
    {
        PyKCS11.CKR_SIGNATURE_INVALID,
        PyKCS11.CKR_SIGNATURE_LEN_RANGE,
    }
)


def _describe(exc: PyKCS11Error) -> str:
    details = str(exc).strip()
    return details or f"CKR 0x{getattr(exc, 'value', 0):X}"


def _error_code(exc: PyKCS11Error) -> int | None:
    value = getattr(exc, "value", None)
    return value if isinstance(value, int) else None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return str(value).strip().rstrip("\x00").strip()


class PyKCS11Session(TokenSessionPort):
    """Session adapter translating PyKCS11 errors into the error taxonomy."""

    def __init__(self, session: Any, slot_id: int) -> None:
        self._session = session
        self.slot_id = slot_id

    def login(self, pin: str) -> None:
        try:
            self._session.login(pin, user_type=PyKCS11.CKU_USER)
        except PyKCS11Error as exc:
            code = _error_code(exc)
            if code in _AUTHENTICATION_CODES:
                raise AuthenticationError(
                    f"Token login failed: {_describe(exc)}", code=code
                ) from exc
            if code in _TOKEN_GONE_CODES:
                raise TokenNotFoundError(
                    f"Token removed during login: {_describe(exc)}", code=code
                ) from exc
            raise AuthenticationError(f"Token login failed: {_describe(exc)}", code=code) from exc

    def logout(self) -> None:
        try:
            self._session.logout()
        except PyKCS11Error as exc:
            raise TokenRuntimeError(f"Logout failed: {_describe(exc)}", code=_error_code(exc)) from exc

    def close(self) -> None:
        try:
            self._session.closeSession()
        except PyKCS11Error as exc:
            raise TokenRuntimeError(
                f"Closing session failed: {_describe(exc)}", code=_error_code(exc)
            ) from exc

    def find_objects(self, template: AttributeTemplate) -> list[Any]:
        try:
            return list(self._session.findObjects(list(template)))
        except PyKCS11Error as exc:
            raise self._runtime_error("Object search failed", exc) from exc

    def get_attribute(self, obj: Any, attribute: int) -> Any:
        try:
            values = self._session.getAttributeValue(obj, [attribute])
        except PyKCS11Error as exc:
            raise self._runtime_error("Reading object attribute failed", exc) from exc
        return values[0] if values else None

    def sign(self, mechanism: int, key: Any, data: bytes) -> bytes:
        try:
            signature = self._session.sign(key, data, PyKCS11.Mechanism(mechanism, None))
        except PyKCS11Error as exc:
            raise CryptoOperationError(
                f"PKCS#11 signing failed: {_describe(exc)}", code=_error_code(exc)
            ) from exc
        return bytes(signature)

    def verify(self, mechanism: int, key: Any, data: bytes, signature: bytes) -> bool:
        try:
            return bool(
                self._session.verify(key, data, signature, PyKCS11.Mechanism(mechanism, None))
            )
        except PyKCS11Error as exc:
            code = _error_code(exc)
            if code in _INVALID_SIGNATURE_CODES:
                return False
            raise CryptoOperationError(
                f"PKCS#11 error during verification: {_describe(exc)}", code=code
            ) from exc

    def _runtime_error(self, message: str, exc: PyKCS11Error) -> Exception:
        code = _error_code(exc)
        if code in _TOKEN_GONE_CODES:
            return TokenNotFoundError(f"{message}: token removed ({_describe(exc)})", code=code)
        return TokenRuntimeError(f"{message}: {_describe(exc)}", code=code)


class PyKCS11RuntimeAdapter(TokenRuntimePort):
    """Token runtime over a PKCS#11 shared library loaded with PyKCS11.

    The library is loaded lazily on first use so that constructing the
    adapter never touches the device.
    """

    def __init__(self, module_path: Path | str) -> None:
        self.module_path = Path(module_path)
        self._lib: Any | None = None

    def _library(self) -> Any:
        if self._lib is not None:
            return self._lib

        lib = PyKCS11.PyKCS11Lib()
        try:
            lib.load(str(self.module_path))
        except PyKCS11Error as exc:
            raise RuntimeUnavailableError(
                f"Cannot load PKCS#11 module {self.module_path}: {_describe(exc)}",
                code=_error_code(exc),
            ) from exc
        logger.debug("Loaded PKCS#11 module %s", self.module_path)
        self._lib = lib
        return lib

    def get_slots(self) -> list[int]:
        lib = self._library()
        try:
            return [int(slot) for slot in lib.getSlotList(tokenPresent=True)]
        except PyKCS11Error as exc:
            raise RuntimeUnavailableError(
                f"Listing slots failed: {_describe(exc)}", code=_error_code(exc)
            ) from exc

    def get_token_info(self, slot_id: int) -> TokenInfoRecord:
        lib = self._library()
        try:
            info = lib.getTokenInfo(slot_id)
        except PyKCS11Error as exc:
            raise TokenMetadataReadError(
                f"Reading token info failed: {_describe(exc)}", code=_error_code(exc)
            ) from exc
        return TokenInfoRecord(
            label=_text(info.label),
            manufacturer=_text(info.manufacturerID),
            model=_text(info.model),
            serial_number=_text(info.serialNumber),
        )

    def get_mechanisms(self, slot_id: int) -> list[int]:
        lib = self._library()
        try:
            names = lib.getMechanismList(slot_id)
        except PyKCS11Error as exc:
            raise self._slot_error("Listing mechanisms failed", exc) from exc

        mechanisms: list[int] = []
        for name in names:
            code = name if isinstance(name, int) else PyKCS11.CKM.get(name)
            if isinstance(code, int):
                mechanisms.append(code)
            else:
                logger.debug("Slot %s: ignoring unmapped mechanism %r", slot_id, name)
        return mechanisms

    def get_mechanism_info(self, slot_id: int, mechanism: int) -> MechanismInfo:
        lib = self._library()
        name = PyKCS11.CKM.get(mechanism, mechanism)
        try:
            info = lib.getMechanismInfo(slot_id, name)
        except (PyKCS11Error, KeyError) as exc:
            raise TokenRuntimeError(
                f"Reading info for mechanism 0x{mechanism:X} failed: {exc}"
            ) from exc
        return MechanismInfo(mechanism=mechanism, flags=int(info.flags))

    def open_session(self, slot_id: int, *, read_write: bool = False) -> PyKCS11Session:
        lib = self._library()
        flags = PyKCS11.CKF_SERIAL_SESSION
        if read_write:
            flags |= PyKCS11.CKF_RW_SESSION
        try:
            session = lib.openSession(slot_id, flags)
        except PyKCS11Error as exc:
            raise self._slot_error("Opening session failed", exc) from exc
        return PyKCS11Session(session, slot_id)

    def _slot_error(self, message: str, exc: PyKCS11Error) -> Exception:
        code = _error_code(exc)
        if code in _TOKEN_GONE_CODES:
            return TokenNotFoundError(f"{message}: token removed ({_describe(exc)})", code=code)
        return TokenRuntimeError(f"{message}: {_describe(exc)}", code=code)
