import os

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .crypto import KEY_SIZE


SALT_SIZE = 32
DEFAULT_ITERATIONS = 100_000


def generate_salt(length: int = SALT_SIZE) -> bytes:
    """Return a cryptographically secure random salt."""
    return os.urandom(length)


def derive_key(
    password: bytes | str,
    salt: bytes,
    iterations: int = DEFAULT_ITERATIONS,
    key_len: int = KEY_SIZE,
) -> bytes:
    """
    Derive a key from a password using PBKDF2-HMAC-SHA256.
    Returns raw derived key bytes.
    """
    if isinstance(password, str):
        password = password.encode("utf-8")
    if iterations < 1:
        raise ValueError(f"iterations must be positive, got {iterations}")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=key_len,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password)
