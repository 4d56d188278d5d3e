"""Signing identities and the keyring collaborator interface."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from .address import ss58_encode
from .errors import SigningError

logger = logging.getLogger(__name__)

DEFAULT_MNEMONIC_WORDS = 24


class Keypair(Protocol):
    public_key: bytes


class Keyring(Protocol):
    """Key derivation and signature capability supplied by the caller."""

    def generate(self, words: int = DEFAULT_MNEMONIC_WORDS) -> str: ...

    def derive_keypair(self, secret: str, ss58_prefix: int) -> Keypair: ...

    def sign(self, keypair: Keypair, data: bytes) -> bytes: ...


@dataclass(frozen=True)
class KeyMaterial:
    """A derived or imported signing identity.

    ``address`` is always ``ss58_encode(public_key, ss58_prefix)``. The seed
    phrase is only kept when the caller asked for it and is excluded from
    ``repr``.
    """

    address: str
    public_key: bytes
    ss58_prefix: int = 0
    seed_phrase: str | None = field(default=None, repr=False)
    name: str | None = None

    @property
    def public_key_hex(self) -> str:
        return "0x" + self.public_key.hex()

    @property
    def can_sign(self) -> bool:
        return bool(self.seed_phrase)

    def without_secret(self) -> "KeyMaterial":
        return replace(self, seed_phrase=None)

    @classmethod
    def from_keypair(
        cls,
        keypair: Keypair,
        ss58_prefix: int,
        *,
        seed_phrase: str | None = None,
        name: str | None = None,
    ) -> "KeyMaterial":
        public_key = bytes(keypair.public_key)
        address = ss58_encode(public_key, ss58_prefix)
        reported = getattr(keypair, "address", None) or getattr(keypair, "ss58_address", None)
        if reported and reported != address:
            raise SigningError(
                f"Keyring reported address {reported} but the public key encodes to {address}"
            )
        return cls(
            address=address,
            public_key=public_key,
            ss58_prefix=ss58_prefix,
            seed_phrase=seed_phrase,
            name=name,
        )


def derive_keypair(keyring: Keyring, secret: str, ss58_prefix: int = 0) -> Any:
    """Derive a keypair, wrapping keyring failures in :class:`SigningError`."""

    if not secret or not secret.strip():
        raise SigningError("A seed phrase or secret URI is required to derive a keypair")
    try:
        return keyring.derive_keypair(secret, ss58_prefix)
    except Exception as exc:
        # The message may echo the secret, so only the type is surfaced.
        logger.error("Key derivation failed: %s", type(exc).__name__)
        raise SigningError(f"Key derivation failed ({type(exc).__name__})") from exc


def generate_key_material(
    keyring: Keyring,
    name: str = "PolkaPay Account",
    words: int = DEFAULT_MNEMONIC_WORDS,
    ss58_prefix: int = 0,
) -> KeyMaterial:
    """Create a fresh mnemonic and return the identity it derives."""

    try:
        mnemonic = keyring.generate(words)
    except Exception as exc:
        raise SigningError(f"Mnemonic generation failed: {exc}") from exc
    keypair = derive_keypair(keyring, mnemonic, ss58_prefix)
    material = KeyMaterial.from_keypair(keypair, ss58_prefix, seed_phrase=mnemonic, name=name)
    logger.info("New keypair generated: %s (%s)", material.name, material.address)
    return material


def import_from_seed_phrase(
    keyring: Keyring,
    seed_phrase: str,
    name: str = "Imported Account",
    ss58_prefix: int = 0,
    *,
    keep_secret: bool = False,
) -> KeyMaterial:
    """Rebuild an identity from an existing seed phrase or secret URI."""

    keypair = derive_keypair(keyring, seed_phrase, ss58_prefix)
    material = KeyMaterial.from_keypair(
        keypair,
        ss58_prefix,
        seed_phrase=seed_phrase if keep_secret else None,
        name=name,
    )
    logger.info("Imported keypair %s (%s)", material.name, material.address)
    return material


def sign_data(keyring: Keyring, data: bytes, seed_phrase: str, ss58_prefix: int = 0) -> bytes:
    keypair = derive_keypair(keyring, seed_phrase, ss58_prefix)
    try:
        return bytes(keyring.sign(keypair, data))
    except Exception as exc:
        raise SigningError(f"Signing failed: {exc}") from exc
