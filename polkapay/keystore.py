"""Passphrase-protected storage for seed phrases.

Seed phrases are encrypted with AES-GCM under a scrypt-derived key. The
account address is bound as associated data, so a keystore cannot be
relabelled to another account without failing authentication.
"""

from __future__ import annotations

import base64
import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .keyring import KeyMaterial, Keyring, import_from_seed_phrase

logger = logging.getLogger(__name__)

_AESGCM_NONCE_SIZE = 12
_SCRYPT_SALT_SIZE = 16
_SCRYPT_KEY_LENGTH = 32
_SCRYPT_N = 2**15
_SCRYPT_R = 8
_SCRYPT_P = 1
KEYSTORE_VERSION = 1


class KeystoreError(RuntimeError):
    """Raised when a keystore cannot be decrypted or parsed."""


@dataclass
class EncryptedKeystore:
    """Serialized encrypted seed phrase for one account."""

    address: str
    ss58_prefix: int
    algorithm: str
    kdf: str
    salt: str
    nonce: str
    ciphertext: str
    name: str | None = None
    version: int = KEYSTORE_VERSION


def _derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = Scrypt(
        salt=salt,
        length=_SCRYPT_KEY_LENGTH,
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt_seed_phrase(material: KeyMaterial, passphrase: str) -> EncryptedKeystore:
    """Encrypt the seed phrase held by ``material``."""

    if not material.seed_phrase:
        raise KeystoreError(f"Key material for {material.address} does not carry a seed phrase")
    if not passphrase:
        raise KeystoreError("A non-empty passphrase is required")

    salt = os.urandom(_SCRYPT_SALT_SIZE)
    nonce = os.urandom(_AESGCM_NONCE_SIZE)
    key = _derive_key(passphrase, salt)
    ciphertext = AESGCM(key).encrypt(
        nonce, material.seed_phrase.encode("utf-8"), material.address.encode("ascii")
    )
    logger.debug("Encrypted seed phrase for %s", material.address)

    return EncryptedKeystore(
        address=material.address,
        ss58_prefix=material.ss58_prefix,
        algorithm="aes-gcm",
        kdf="scrypt",
        salt=base64.b64encode(salt).decode("ascii"),
        nonce=base64.b64encode(nonce).decode("ascii"),
        ciphertext=base64.b64encode(ciphertext).decode("ascii"),
        name=material.name,
    )


def decrypt_seed_phrase(keystore: EncryptedKeystore, passphrase: str) -> str:
    if keystore.algorithm != "aes-gcm" or keystore.kdf != "scrypt":
        raise KeystoreError(
            f"Unsupported keystore scheme {keystore.algorithm}/{keystore.kdf}"
        )
    try:
        salt = base64.b64decode(keystore.salt.encode("ascii"))
        nonce = base64.b64decode(keystore.nonce.encode("ascii"))
        ciphertext = base64.b64decode(keystore.ciphertext.encode("ascii"))
    except ValueError as exc:
        raise KeystoreError("Keystore fields are not valid base64") from exc

    key = _derive_key(passphrase, salt)
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, keystore.address.encode("ascii"))
    except InvalidTag as exc:
        raise KeystoreError("Failed to decrypt keystore; invalid passphrase or data") from exc
    return plaintext.decode("utf-8")


def unlock_keystore(keystore: EncryptedKeystore, passphrase: str, keyring: Keyring) -> KeyMaterial:
    """Decrypt ``keystore`` and re-derive the identity it belongs to."""

    seed_phrase = decrypt_seed_phrase(keystore, passphrase)
    material = import_from_seed_phrase(
        keyring,
        seed_phrase,
        name=keystore.name or "Imported Account",
        ss58_prefix=keystore.ss58_prefix,
        keep_secret=True,
    )
    if material.address != keystore.address:
        raise KeystoreError(
            f"Keystore for {keystore.address} decrypted to a seed phrase for {material.address}"
        )
    return material


def save_keystore(keystore: EncryptedKeystore, path: str | Path) -> Path:
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(keystore), indent=2, sort_keys=True))
    os.chmod(path, 0o600)
    logger.info("Saved keystore for %s to %s", keystore.address, path)
    return path


def load_keystore(path: str | Path) -> EncryptedKeystore:
    path = Path(path).expanduser()
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as exc:
        raise KeystoreError(f"Unable to read keystore {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise KeystoreError(f"Keystore {path} must contain a JSON object")
    try:
        return EncryptedKeystore(**data)
    except TypeError as exc:
        raise KeystoreError(f"Keystore {path} is missing fields: {exc}") from exc
