"""Security helpers: value envelopes and key stores for envx.

This package provides:
- the AES-256-GCM envelope used for individual config values
- PBKDF2-HMAC-SHA256 key derivation
- interchangeable key stores (OS keyring, password-derived, in-memory)
  behind one load-or-create contract
"""

from .crypto import (
    KEY_SIZE,
    MAGIC,
    check_key_size,
    decrypt_value,
    encrypt_value,
    generate_key,
    is_encrypted,
)
from .kdf import generate_salt, derive_key
from .keystore import (
    KeyStore,
    KeyringKeyStore,
    KeyringBackend,
    UnavailableBackend,
    open_keystore,
)
from .memory_store import MemoryKeyStore
from .password_store import PasswordConfig, PasswordKeyStore

__all__ = [
    "KEY_SIZE",
    "MAGIC",
    "check_key_size",
    "decrypt_value",
    "encrypt_value",
    "generate_key",
    "is_encrypted",
    "generate_salt",
    "derive_key",
    "KeyStore",
    "KeyringKeyStore",
    "KeyringBackend",
    "UnavailableBackend",
    "open_keystore",
    "MemoryKeyStore",
    "PasswordConfig",
    "PasswordKeyStore",
]
