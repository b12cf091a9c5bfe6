from __future__ import annotations

import hashlib

from cryptography.hazmat.primitives.asymmetric import ec

from emulator_api.settings import Settings

CURVE = ec.SECP256R1()
# P-256 group order
N = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551


_SERVICE_KEY: ec.EllipticCurvePrivateKey | None = None


def derive_service_key(*, private_key_hex: str | None, seed: str) -> ec.EllipticCurvePrivateKey:
    """Build the service account key.

    An explicit hex private scalar wins; otherwise the scalar is derived from
    `seed` so the same seed yields the same service key on every start.
    """

    if private_key_hex:
        raw = private_key_hex.strip()
        if raw[:2].casefold() == "0x":
            raw = raw[2:]
        try:
            d = int(raw, 16)
        except ValueError as e:
            raise ValueError("service private key must be hex") from e
    else:
        d = int.from_bytes(hashlib.sha3_256(seed.encode("utf-8")).digest(), "big") % N
    if d <= 0 or d >= N:
        raise ValueError("service private key out of range for P-256")
    return ec.derive_private_key(d, CURVE)


def encode_public_key(key: ec.EllipticCurvePrivateKey) -> str:
    """Public key as `0x` + X || Y, 32 bytes each, hex."""

    nums = key.public_key().public_numbers()
    return f"0x{nums.x:064x}{nums.y:064x}"


def init_service_key(*, settings: Settings) -> ec.EllipticCurvePrivateKey:
    """Derive the service key once and cache it.

    Safe to call multiple times; subsequent calls return the already derived key.
    """

    global _SERVICE_KEY
    if _SERVICE_KEY is None:
        _SERVICE_KEY = derive_service_key(private_key_hex=settings.service_private_key, seed=settings.service_key_seed)
    return _SERVICE_KEY


def reset_service_key_for_tests() -> None:
    global _SERVICE_KEY
    _SERVICE_KEY = None


def get_service_key() -> ec.EllipticCurvePrivateKey:
    if _SERVICE_KEY is None:
        raise RuntimeError("Service key not initialized. Call init_service_key() at startup.")
    return _SERVICE_KEY
