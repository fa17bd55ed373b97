"""Self-describing AES-GCM envelope for individual config values.

Envelope layout (before base64):
- 4 bytes: magic b'envx'
- 12 bytes: random nonce
- N bytes: ciphertext followed by the 16-byte GCM tag

The whole thing is standard (padded) base64 so it can sit inside a .env or
JSON value. A value only counts as encrypted when it decodes cleanly AND the
decoded bytes start with the magic and carry something after it; anything else
is plaintext and passes through decrypt untouched.

MAGIC and KEY_SIZE are part of the on-disk format. Changing either one makes
previously encrypted files unreadable.
"""
import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from envx.core.exceptions import DecryptionFailedError, InvalidKeySizeError


MAGIC = b"envx"
KEY_SIZE = 32  # AES-256
NONCE_SIZE = 12
TAG_SIZE = 16


def check_key_size(key: bytes) -> None:
    """Raise InvalidKeySizeError unless ``key`` is exactly KEY_SIZE bytes."""
    if len(key) != KEY_SIZE:
        raise InvalidKeySizeError(KEY_SIZE, len(key))


def generate_key() -> bytes:
    return os.urandom(KEY_SIZE)


def _b64decode(value: str) -> bytes | None:
    # Strict decode; None means "not base64", which callers treat as plaintext.
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


def _is_envelope(decoded: bytes | None) -> bool:
    return decoded is not None and len(decoded) > len(MAGIC) and decoded.startswith(MAGIC)


def is_encrypted(value: str) -> bool:
    """Return True if ``value`` looks like an envelope produced by encrypt_value.

    Never raises. Decrypt uses the exact same test to decide whether to touch
    a value, so the two can not disagree.
    """
    if not isinstance(value, str):
        return False
    return _is_envelope(_b64decode(value))


def encrypt_value(plaintext: str, key: bytes) -> str:
    """Encrypt ``plaintext`` under ``key`` and return the base64 envelope.

    Values that are already envelopes are returned unchanged, so running
    encrypt over a half-encrypted file is safe. Output differs on every call
    because the nonce is random.
    """
    check_key_size(key)

    if is_encrypted(plaintext):
        return plaintext

    nonce = os.urandom(NONCE_SIZE)
    ct = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(MAGIC + nonce + ct).decode("ascii")


def decrypt_value(value: str, key: bytes) -> str:
    """Decrypt an envelope produced by :func:`encrypt_value`.

    Anything that is not an envelope is returned unchanged. Once the magic
    matches, every failure (short body, bad tag, wrong key, non UTF-8
    plaintext) raises DecryptionFailedError and no partial data is returned.
    """
    check_key_size(key)

    decoded = _b64decode(value)
    if not _is_envelope(decoded):
        return value

    body = decoded[len(MAGIC):]
    if len(body) < NONCE_SIZE + TAG_SIZE:
        raise DecryptionFailedError("ciphertext too short")

    nonce, ct = body[:NONCE_SIZE], body[NONCE_SIZE:]
    try:
        pt = AESGCM(key).decrypt(nonce, ct, None)
    except InvalidTag:
        raise DecryptionFailedError("authentication failed (wrong key or tampered value)") from None

    try:
        return pt.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionFailedError("decrypted value is not valid UTF-8") from e
