"""Pytest configuration and fixtures."""

from __future__ import annotations

import gc
import shutil
import tempfile
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import PyKCS11
import pytest
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)

from tokensign.app.mechanisms import (
    CKM_ECDSA,
    CKM_ECDSA_SHA1,
    CKM_ECDSA_SHA256,
    CKM_ECDSA_SHA384,
    CKM_ECDSA_SHA512,
    CKM_RSA_PKCS,
    CKM_SHA1_RSA_PKCS,
    CKM_SHA256_RSA_PKCS,
    CKM_SHA384_RSA_PKCS,
    CKM_SHA512_RSA_PKCS,
)
from tokensign.app.ports import MechanismInfo, TokenInfoRecord
from tokensign.bootstrap import set_runtime_factory
from tokensign.config import Settings
from tokensign.errors import (
    AuthenticationError,
    CryptoOperationError,
    RuntimeUnavailableError,
    TokenMetadataReadError,
    TokenNotFoundError,
    TokenRuntimeError,
)

SIGN_FLAGS = PyKCS11.CKF_SIGN | PyKCS11.CKF_VERIFY
CKM_SHA256 = 0x00000250
CKM_RSA_PKCS_KEY_PAIR_GEN = 0x00000000
CKM_VENDOR_SIGN = 0x80000001

_DIGESTS: dict[int, type[hashes.HashAlgorithm]] = {
    CKM_SHA1_RSA_PKCS: hashes.SHA1,
    CKM_SHA256_RSA_PKCS: hashes.SHA256,
    CKM_SHA384_RSA_PKCS: hashes.SHA384,
    CKM_SHA512_RSA_PKCS: hashes.SHA512,
    CKM_ECDSA_SHA1: hashes.SHA1,
    CKM_ECDSA_SHA256: hashes.SHA256,
    CKM_ECDSA_SHA384: hashes.SHA384,
    CKM_ECDSA_SHA512: hashes.SHA512,
}
_PREHASHED_BY_LENGTH: dict[int, type[hashes.HashAlgorithm]] = {
    20: hashes.SHA1,
    32: hashes.SHA256,
    48: hashes.SHA384,
    64: hashes.SHA512,
}
_RSA_MECHANISMS = frozenset(
    {CKM_RSA_PKCS, CKM_SHA1_RSA_PKCS, CKM_SHA256_RSA_PKCS, CKM_SHA384_RSA_PKCS, CKM_SHA512_RSA_PKCS}
)
_EC_MECHANISMS = frozenset(
    {CKM_ECDSA, CKM_ECDSA_SHA1, CKM_ECDSA_SHA256, CKM_ECDSA_SHA384, CKM_ECDSA_SHA512}
)


# ---------------------------------------------------------------------------
# Software token backed by real keys
# ---------------------------------------------------------------------------


def _rsa_raw_sign(key: rsa.RSAPrivateKey, data: bytes) -> bytes:
    size = (key.key_size + 7) // 8
    if len(data) > size - 11:
        raise CryptoOperationError("CKR_DATA_LEN_RANGE")
    block = b"\x00\x01" + b"\xff" * (size - len(data) - 3) + b"\x00" + data
    numbers = key.private_numbers()
    value = pow(int.from_bytes(block, "big"), numbers.d, numbers.public_numbers.n)
    return value.to_bytes(size, "big")


def _rsa_raw_verify(key: rsa.RSAPublicKey, data: bytes, signature: bytes) -> bool:
    size = (key.key_size + 7) // 8
    if len(signature) != size:
        return False
    numbers = key.public_numbers()
    value = pow(int.from_bytes(signature, "big"), numbers.e, numbers.n)
    expected = b"\x00\x01" + b"\xff" * (size - len(data) - 3) + b"\x00" + data
    return value.to_bytes(size, "big") == expected


def _ec_algorithm(mechanism: int, data: bytes) -> ec.ECDSA:
    if mechanism == CKM_ECDSA:
        digest = _PREHASHED_BY_LENGTH.get(len(data))
        if digest is None:
            raise CryptoOperationError("CKR_DATA_LEN_RANGE")
        return ec.ECDSA(Prehashed(digest()))
    return ec.ECDSA(_DIGESTS[mechanism]())


@dataclass
class FakeKeyObject:
    """Object handle returned by ``find_objects``."""

    object_class: int
    key_type: int


@dataclass
class FakeToken:
    """Software token holding one key pair."""

    private_key: Any
    label: str = "Test Token"
    manufacturer: str = "SafeNet, Inc."
    model: str = "eToken"
    serial_number: str = "0011223344"
    pin: str = "1234"
    mechanisms: dict[int, int] = field(default_factory=dict)
    private_keys: int = 1
    public_keys: int = 1
    key_type_readable: bool = True
    raw_key_type: Any = None
    fail_sign: bool = False
    fail_mechanism_info: set[int] = field(default_factory=set)

    @property
    def key_type(self) -> int:
        if isinstance(self.private_key, rsa.RSAPrivateKey):
            return PyKCS11.CKK_RSA
        if isinstance(self.private_key, ec.EllipticCurvePrivateKey):
            return PyKCS11.CKK_EC
        return PyKCS11.CKK_DSA

    def sign(self, mechanism: int, data: bytes) -> bytes:
        if self.fail_sign:
            raise CryptoOperationError("PKCS#11 signing failed: CKR_FUNCTION_FAILED")
        key = self.private_key
        if isinstance(key, rsa.RSAPrivateKey) and mechanism in _RSA_MECHANISMS:
            if mechanism == CKM_RSA_PKCS:
                return _rsa_raw_sign(key, data)
            return key.sign(data, padding.PKCS1v15(), _DIGESTS[mechanism]())
        if isinstance(key, ec.EllipticCurvePrivateKey) and mechanism in _EC_MECHANISMS:
            der = key.sign(data, _ec_algorithm(mechanism, data))
            r, s = decode_dss_signature(der)
            size = (key.curve.key_size + 7) // 8
            return r.to_bytes(size, "big") + s.to_bytes(size, "big")
        raise CryptoOperationError("PKCS#11 signing failed: CKR_KEY_TYPE_INCONSISTENT")

    def verify(self, mechanism: int, data: bytes, signature: bytes) -> bool:
        public = self.private_key.public_key()
        if isinstance(public, rsa.RSAPublicKey) and mechanism in _RSA_MECHANISMS:
            if mechanism == CKM_RSA_PKCS:
                return _rsa_raw_verify(public, data, signature)
            try:
                public.verify(signature, data, padding.PKCS1v15(), _DIGESTS[mechanism]())
            except InvalidSignature:
                return False
            return True
        if isinstance(public, ec.EllipticCurvePublicKey) and mechanism in _EC_MECHANISMS:
            algorithm = _ec_algorithm(mechanism, data)
            size = (public.curve.key_size + 7) // 8
            if len(signature) != 2 * size:
                return False
            der = encode_dss_signature(
                int.from_bytes(signature[:size], "big"), int.from_bytes(signature[size:], "big")
            )
            try:
                public.verify(der, data, algorithm)
            except InvalidSignature:
                return False
            return True
        raise CryptoOperationError(
            "PKCS#11 error during verification: CKR_KEY_TYPE_INCONSISTENT"
        )


class FakeSession:
    """Session over a :class:`FakeToken` that records its lifecycle."""

    def __init__(self, runtime: FakeTokenRuntime, slot_id: int, read_write: bool) -> None:
        self.runtime = runtime
        self.slot_id = slot_id
        self.read_write = read_write
        self.logged_in = False
        self.logged_out = False
        self.closed = False
        self.operations: list[str] = []

    @property
    def token(self) -> FakeToken:
        token = self.runtime.slots.get(self.slot_id)
        if token is None:
            raise TokenNotFoundError("token removed (CKR_TOKEN_NOT_PRESENT)")
        return token

    def login(self, pin: str) -> None:
        if pin != self.token.pin:
            raise AuthenticationError("Token login failed: CKR_PIN_INCORRECT")
        self.logged_in = True

    def logout(self) -> None:
        self.logged_out = True

    def close(self) -> None:
        self.closed = True

    def find_objects(self, template: Any) -> list[FakeKeyObject]:
        wanted = dict(template).get(PyKCS11.CKA_CLASS)
        token = self.token
        if wanted == PyKCS11.CKO_PRIVATE_KEY:
            return [
                FakeKeyObject(PyKCS11.CKO_PRIVATE_KEY, token.key_type)
                for _ in range(token.private_keys)
            ]
        if wanted == PyKCS11.CKO_PUBLIC_KEY:
            return [
                FakeKeyObject(PyKCS11.CKO_PUBLIC_KEY, token.key_type)
                for _ in range(token.public_keys)
            ]
        return []

    def get_attribute(self, obj: FakeKeyObject, attribute: int) -> Any:
        if attribute == PyKCS11.CKA_KEY_TYPE:
            if not self.token.key_type_readable:
                raise TokenRuntimeError("Reading object attribute failed: CKR_ATTRIBUTE_SENSITIVE")
            if self.token.raw_key_type is not None:
                return self.token.raw_key_type
            return obj.key_type
        return None

    def sign(self, mechanism: int, key: FakeKeyObject, data: bytes) -> bytes:
        self.operations.append("sign")
        self.runtime.signed_inputs.append(data)
        return self.token.sign(mechanism, data)

    def verify(self, mechanism: int, key: FakeKeyObject, data: bytes, signature: bytes) -> bool:
        self.operations.append("verify")
        return self.token.verify(mechanism, data, signature)


class FakeTokenRuntime:
    """In-memory token runtime keyed by slot id."""

    def __init__(self, slots: dict[int, FakeToken] | None = None) -> None:
        self.slots: dict[int, FakeToken] = dict(slots or {})
        self.unreadable_slots: set[int] = set()
        self.unavailable = False
        self.sessions: list[FakeSession] = []
        self.signed_inputs: list[bytes] = []

    def _check_available(self) -> None:
        if self.unavailable:
            raise RuntimeUnavailableError("Cannot load PKCS#11 module: CKR_GENERAL_ERROR")

    def get_slots(self) -> list[int]:
        self._check_available()
        return sorted(self.slots)

    def get_token_info(self, slot_id: int) -> TokenInfoRecord:
        self._check_available()
        if slot_id in self.unreadable_slots:
            raise TokenMetadataReadError("Reading token info failed: CKR_DEVICE_ERROR")
        token = self.slots[slot_id]
        return TokenInfoRecord(
            label=token.label,
            manufacturer=token.manufacturer,
            model=token.model,
            serial_number=token.serial_number,
        )

    def get_mechanisms(self, slot_id: int) -> list[int]:
        self._check_available()
        return list(self.slots[slot_id].mechanisms)

    def get_mechanism_info(self, slot_id: int, mechanism: int) -> MechanismInfo:
        token = self.slots[slot_id]
        if mechanism in token.fail_mechanism_info:
            raise TokenRuntimeError(f"Reading info for mechanism 0x{mechanism:X} failed")
        return MechanismInfo(mechanism=mechanism, flags=token.mechanisms[mechanism])

    def open_session(self, slot_id: int, *, read_write: bool = False) -> FakeSession:
        self._check_available()
        if slot_id not in self.slots:
            raise TokenNotFoundError("Opening session failed: token removed")
        session = FakeSession(self, slot_id, read_write)
        self.sessions.append(session)
        return session

    @property
    def open_sessions(self) -> list[FakeSession]:
        return [session for session in self.sessions if not session.closed]

    @property
    def dangling_logins(self) -> list[FakeSession]:
        return [s for s in self.sessions if s.logged_in and not s.logged_out]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    try:
        yield Path(tmpdir)
    finally:
        gc.collect()
        time.sleep(0.05)
        shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def sample_file(temp_dir: Path) -> Path:
    """Create a small document to sign."""
    file_path = temp_dir / "contract.txt"
    file_path.write_text("This agreement is signed with a hardware token.\n")
    return file_path


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_private_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def rsa_token(rsa_private_key) -> FakeToken:
    """RSA token advertising sign, digest and vendor mechanisms."""
    return FakeToken(
        private_key=rsa_private_key,
        mechanisms={
            CKM_RSA_PKCS_KEY_PAIR_GEN: PyKCS11.CKF_GENERATE_KEY_PAIR,
            CKM_RSA_PKCS: SIGN_FLAGS,
            CKM_SHA256: PyKCS11.CKF_DIGEST,
            CKM_SHA256_RSA_PKCS: SIGN_FLAGS,
            CKM_SHA1_RSA_PKCS: SIGN_FLAGS,
            CKM_ECDSA: SIGN_FLAGS,
            CKM_VENDOR_SIGN: SIGN_FLAGS,
        },
    )


@pytest.fixture
def ec_token(ec_private_key) -> FakeToken:
    """EC P-256 token advertising ECDSA and RSA mechanisms."""
    return FakeToken(
        private_key=ec_private_key,
        label="EC Token",
        serial_number="EC0042",
        mechanisms={
            CKM_RSA_PKCS: SIGN_FLAGS,
            CKM_ECDSA: SIGN_FLAGS,
            CKM_ECDSA_SHA256: SIGN_FLAGS,
            CKM_ECDSA_SHA384: SIGN_FLAGS,
            CKM_SHA256: PyKCS11.CKF_DIGEST,
        },
    )


@pytest.fixture
def fake_runtime(rsa_token: FakeToken) -> FakeTokenRuntime:
    """Runtime with the RSA token present in slot 0."""
    return FakeTokenRuntime({0: rsa_token})


@pytest.fixture
def make_runtime() -> Callable[..., FakeTokenRuntime]:
    """Factory building a runtime from ``{slot_id: token}``."""

    def _make(slots: dict[int, FakeToken] | None = None) -> FakeTokenRuntime:
        return FakeTokenRuntime(slots)

    return _make


@pytest.fixture
def override_settings(temp_dir: Path) -> Generator[Settings, None, None]:
    """Provide isolated tokensign settings scoped to tests."""

    import tokensign.config as config_module

    original_settings = getattr(config_module, "_settings", None)

    data_dir = temp_dir / "appdata"
    config_dir = temp_dir / "appconfig"
    data_dir.mkdir(parents=True, exist_ok=True)
    config_dir.mkdir(parents=True, exist_ok=True)

    settings = config_module.Settings(
        data_dir=data_dir,
        config_dir=config_dir,
        audit_enabled=True,
    )

    config_module._settings = settings

    try:
        yield settings
    finally:
        config_module._settings = original_settings


@pytest.fixture
def cli_runtime(
    override_settings: Settings, fake_runtime: FakeTokenRuntime
) -> Generator[FakeTokenRuntime, None, None]:
    """Route CLI-built containers to the fake runtime."""
    set_runtime_factory(lambda settings: fake_runtime)
    try:
        yield fake_runtime
    finally:
        set_runtime_factory(None)
