"""SS58 address encoding for substrate chains.

An address is ``base58(prefix || public_key || checksum)`` where the checksum
is the first two bytes of ``blake2b-512(b"SS58PRE" || prefix || public_key)``.
Network prefixes below 64 take one byte; prefixes up to 16383 take two.
Output matches ``scalecodec.utils.ss58``, which ships only with the
``substrate`` extra.
"""

from __future__ import annotations

import hashlib

import base58

_SS58_CONTEXT = b"SS58PRE"
_CHECKSUM_LENGTH = 2
_PUBLIC_KEY_LENGTHS = (32, 33)
MAX_PREFIX = 16383


class InvalidAddressError(ValueError):
    """Raised for malformed SS58 addresses or public keys."""


def _prefix_bytes(prefix: int) -> bytes:
    if 0 <= prefix < 64:
        return bytes([prefix])
    if 64 <= prefix <= MAX_PREFIX:
        first = ((prefix & 0b0000_0000_1111_1100) >> 2) | 0b0100_0000
        second = (prefix >> 8) | ((prefix & 0b0000_0000_0000_0011) << 6)
        return bytes([first, second])
    raise InvalidAddressError(f"SS58 prefix out of range: {prefix}")


def _checksum(payload: bytes) -> bytes:
    return hashlib.blake2b(_SS58_CONTEXT + payload, digest_size=64).digest()[:_CHECKSUM_LENGTH]


def ss58_encode(public_key: bytes | str, prefix: int = 0) -> str:
    """Derive the SS58 address for ``public_key`` under ``prefix``."""

    if isinstance(public_key, str):
        try:
            public_key = bytes.fromhex(public_key.removeprefix("0x"))
        except ValueError as exc:
            raise InvalidAddressError(f"Public key is not valid hex: {public_key}") from exc
    if len(public_key) not in _PUBLIC_KEY_LENGTHS:
        raise InvalidAddressError(
            f"Public key must be 32 or 33 bytes, got {len(public_key)}"
        )
    payload = _prefix_bytes(prefix) + public_key
    return base58.b58encode(payload + _checksum(payload)).decode("ascii")


def ss58_decode(address: str, expected_prefix: int | None = None) -> tuple[int, bytes]:
    """Return ``(prefix, public_key)`` for a checksummed SS58 address."""

    try:
        raw = base58.b58decode(address.strip())
    except ValueError as exc:
        raise InvalidAddressError(f"Address is not valid base58: {address}") from exc
    if not raw:
        raise InvalidAddressError("Address is empty")

    if raw[0] & 0b0100_0000:
        if len(raw) < 2:
            raise InvalidAddressError(f"Address is truncated: {address}")
        prefix_length = 2
        prefix = ((raw[0] & 0b0011_1111) << 2) | (raw[1] >> 6) | ((raw[1] & 0b0011_1111) << 8)
    else:
        prefix_length = 1
        prefix = raw[0]

    public_key = raw[prefix_length:-_CHECKSUM_LENGTH]
    if len(public_key) not in _PUBLIC_KEY_LENGTHS:
        raise InvalidAddressError(f"Address has an unexpected length: {address}")
    if _checksum(raw[:-_CHECKSUM_LENGTH]) != raw[-_CHECKSUM_LENGTH:]:
        raise InvalidAddressError(f"Address checksum mismatch: {address}")
    if expected_prefix is not None and prefix != expected_prefix:
        raise InvalidAddressError(
            f"Address {address} uses network prefix {prefix}, expected {expected_prefix}"
        )
    return prefix, public_key


def is_valid_address(address: str, expected_prefix: int | None = None) -> bool:
    try:
        ss58_decode(address, expected_prefix)
    except InvalidAddressError:
        return False
    return True


def reencode(address: str, prefix: int) -> str:
    """Render ``address`` for another network without changing the key."""

    _, public_key = ss58_decode(address)
    return ss58_encode(public_key, prefix)
