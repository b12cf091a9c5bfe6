from __future__ import annotations

import re

ADDRESS_LENGTH = 8

SERVICE_ADDRESS = "f8d6e0586b0a20c7"

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")


class InvalidAddressError(ValueError):
    pass


def parse_address(raw: str) -> str:
    """Decode a hex account address into its canonical form.

    Accepts an optional `0x` prefix and short addresses (left-padded with
    zeros, so `0x1` == `0x0000000000000001`). Returns 16 lowercase hex chars
    without a prefix.
    """

    value = raw.strip()
    if value[:2].casefold() == "0x":
        value = value[2:]
    if not value or not _HEX_RE.match(value):
        raise InvalidAddressError(f"invalid hex address: {raw!r}")
    if len(value) > ADDRESS_LENGTH * 2:
        raise InvalidAddressError(f"address longer than {ADDRESS_LENGTH} bytes: {raw!r}")
    return value.lower().rjust(ADDRESS_LENGTH * 2, "0")


def format_address(address: str) -> str:
    return f"0x{address}"
