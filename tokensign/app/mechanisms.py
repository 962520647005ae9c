"""Signing mechanism catalog: key families and their compatible mechanisms."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

import PyKCS11

from tokensign.app.ports.token_runtime import MechanismInfo

CKM_RSA_PKCS = 0x00000001
CKM_SHA1_RSA_PKCS = 0x00000006
CKM_SHA256_RSA_PKCS = 0x00000040
CKM_SHA384_RSA_PKCS = 0x00000041
CKM_SHA512_RSA_PKCS = 0x00000042
CKM_ECDSA = 0x00001041
CKM_ECDSA_SHA1 = 0x00001042
CKM_ECDSA_SHA256 = 0x00001044
CKM_ECDSA_SHA384 = 0x00001045
CKM_ECDSA_SHA512 = 0x00001046

CANONICAL_NAMES: dict[int, str] = {
    CKM_RSA_PKCS: "CKM_RSA_PKCS",
    CKM_SHA1_RSA_PKCS: "CKM_SHA1_RSA_PKCS",
    CKM_SHA256_RSA_PKCS: "CKM_SHA256_RSA_PKCS",
    CKM_SHA384_RSA_PKCS: "CKM_SHA384_RSA_PKCS",
    CKM_SHA512_RSA_PKCS: "CKM_SHA512_RSA_PKCS",
    CKM_ECDSA: "CKM_ECDSA",
    CKM_ECDSA_SHA1: "CKM_ECDSA_SHA1",
    CKM_ECDSA_SHA256: "CKM_ECDSA_SHA256",
    CKM_ECDSA_SHA384: "CKM_ECDSA_SHA384",
    CKM_ECDSA_SHA512: "CKM_ECDSA_SHA512",
}


class KeyFamily(str, Enum):
    """Algorithm family of a token's signing key."""

    RSA = "RSA"
    EC = "EC"
    OTHER = "OTHER"


COMPATIBLE_MECHANISMS: dict[KeyFamily, frozenset[int]] = {
    KeyFamily.RSA: frozenset(
        {
            CKM_RSA_PKCS,
            CKM_SHA1_RSA_PKCS,
            CKM_SHA256_RSA_PKCS,
            CKM_SHA384_RSA_PKCS,
            CKM_SHA512_RSA_PKCS,
        }
    ),
    KeyFamily.EC: frozenset(
        {
            CKM_ECDSA,
            CKM_ECDSA_SHA1,
            CKM_ECDSA_SHA256,
            CKM_ECDSA_SHA384,
            CKM_ECDSA_SHA512,
        }
    ),
    KeyFamily.OTHER: frozenset(),
}


@dataclass(frozen=True, slots=True)
class MechanismDescriptor:
    """A signing mechanism offered to the caller."""

    id: int
    display_name: str
    can_sign: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "hex": f"0x{self.id:X}",
            "display_name": self.display_name,
            "can_sign": self.can_sign,
        }


def is_compatible(mechanism: int, family: KeyFamily) -> bool:
    """Return True when ``mechanism`` is valid for keys of ``family``."""
    return mechanism in COMPATIBLE_MECHANISMS.get(family, frozenset())


def mechanism_display_name(mechanism: int) -> str:
    """Return the canonical ``CKM_*`` name or a vendor label for ``mechanism``."""
    known = CANONICAL_NAMES.get(mechanism)
    if known is not None:
        return known

    name = PyKCS11.CKM.get(mechanism)
    if isinstance(name, str) and not name.startswith("CKM_VENDOR_DEFINED"):
        return name
    return f"Vendor Mechanism (0x{mechanism:X})"


def parse_mechanism(text: str) -> int:
    """Parse a mechanism given by name (``CKM_`` prefix optional) or code.

    Raises:
        ValueError: If ``text`` names no known mechanism.
    """
    value = text.strip()
    if not value:
        raise ValueError("Mechanism must not be empty")

    try:
        return int(value, 0)
    except ValueError:
        pass

    name = value.upper().replace("-", "_")
    if not name.startswith("CKM_"):
        name = f"CKM_{name}"

    for code, canonical in CANONICAL_NAMES.items():
        if canonical == name:
            return code

    code = PyKCS11.CKM.get(name)
    if isinstance(code, int):
        return code
    raise ValueError(f"Unknown mechanism: {text}")


def filter_mechanisms(
    infos: Iterable[MechanismInfo], family: KeyFamily
) -> list[MechanismDescriptor]:
    """Keep the sign-capable mechanisms that are valid for ``family``.

    Pure function over data already read from the slot; advertised order is
    preserved so the first entry can serve as the default selection.
    """
    descriptors: list[MechanismDescriptor] = []
    for info in infos:
        can_sign = bool(info.flags & PyKCS11.CKF_SIGN)
        if not can_sign or not is_compatible(info.mechanism, family):
            continue
        descriptors.append(
            MechanismDescriptor(
                id=info.mechanism,
                display_name=mechanism_display_name(info.mechanism),
                can_sign=can_sign,
            )
        )
    return descriptors
