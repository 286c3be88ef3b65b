"""TRON address encoding helpers."""

import base58

# Mainnet address prefix byte
TRON_ADDRESS_PREFIX = "41"
BASE58_ADDRESS_LENGTH = 34


def to_base58(raw: str) -> str:
    """
    Convert a raw TRON address to its canonical base58check form.

    TronGrid reports event addresses as ``0x`` + 20 hex bytes; the node API
    also uses ``41`` + 20 hex bytes. Canonical ``T...`` input is returned
    unchanged.

    Raises:
        ValueError: if the input is not a recognisable address
    """
    if not raw:
        raise ValueError("empty address")
    if not isinstance(raw, str):
        raise ValueError(f"address must be a string, got {type(raw).__name__}")

    raw = raw.strip()
    if raw.startswith("T") and len(raw) == BASE58_ADDRESS_LENGTH:
        # Round-trip through the checksum to reject typos
        base58.b58decode_check(raw)
        return raw

    hex_part = raw[2:] if raw.lower().startswith("0x") else raw
    if len(hex_part) == 40:
        hex_part = TRON_ADDRESS_PREFIX + hex_part
    if len(hex_part) != 42 or not hex_part.lower().startswith(TRON_ADDRESS_PREFIX):
        raise ValueError(f"not a TRON address: {raw!r}")

    payload = bytes.fromhex(hex_part)
    return base58.b58encode_check(payload).decode("ascii")


def to_hex(address: str) -> str:
    """Convert a base58check TRON address to ``41``-prefixed hex."""
    return base58.b58decode_check(address).hex()
