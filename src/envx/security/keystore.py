"""Key store contract and the OS credential-store backend.

Every backend hands out one 32-byte key per account and follows the same
lifecycle: ``get_key`` never creates, ``create_key`` never silently replaces,
and ``load_or_create_key`` only creates when the backend reports a clean
"not provisioned yet". Any other failure propagates, because a fresh key would
no longer decrypt values written under the old one.

The secure-storage backend wraps ``keyring``. Keys are base64-encoded before
storage to keep them string-friendly. Do not assume keyring provides
hardware-backed security on all platforms; ``assess_keyring_backend`` rejects
the obviously insecure ones and the store then reports the platform as
unavailable.
"""
from __future__ import annotations

import base64
import binascii
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

try:
    import keyring
except Exception:
    keyring = None

from envx.core.exceptions import (
    ConfigError,
    CorruptKeyError,
    KeyExistsError,
    KeyNotFoundError,
    PlatformUnavailableError,
)

from .crypto import KEY_SIZE, check_key_size, generate_key

logger = logging.getLogger(__name__)

DEFAULT_SERVICE = "com.envx.envx"

KEYSTORE_KEYRING = "keyring"
KEYSTORE_PASSWORD = "password"
KEYSTORE_MEMORY = "memory"

# accepted spellings for each backend; "macos" and "mock" are kept for old configs
KEYSTORE_ALIASES = {
    "keyring": KEYSTORE_KEYRING,
    "keychain": KEYSTORE_KEYRING,
    "macos": KEYSTORE_KEYRING,
    "password": KEYSTORE_PASSWORD,
    "memory": KEYSTORE_MEMORY,
    "mock": KEYSTORE_MEMORY,
}


def validate_account(account: str) -> str:
    """Return ``account`` or raise ValueError if it can not name a key."""
    if not isinstance(account, str) or not account.strip():
        raise ValueError("account must be a non-empty string")
    if "/" in account or "\\" in account or "\x00" in account or account in (".", ".."):
        raise ValueError(f"invalid account name: {account!r}")
    return account


class KeyStore(ABC):
    """Capability contract shared by every key backend."""

    kind: str = ""

    @abstractmethod
    def get_key(self, account: str) -> bytes:
        """Return the key for ``account`` or raise KeyNotFoundError."""

    @abstractmethod
    def set_key(self, account: str, key: bytes) -> None:
        """Persist ``key`` for ``account``, replacing any existing one."""

    @abstractmethod
    def create_key(self, account: str, overwrite: bool = False) -> bytes:
        """Provision a new key for ``account`` and return it."""

    def load_or_create_key(self, account: str) -> bytes:
        """Return the existing key for ``account`` or provision one.

        Only KeyNotFoundError leads to creation. A stored key with the wrong
        length is reported as corrupt instead of being replaced.
        """
        try:
            key = self.get_key(account)
        except KeyNotFoundError:
            logger.info("no key for account %s in %s store, creating one", account, self.kind)
            return self.create_key(account)

        if len(key) != KEY_SIZE:
            raise CorruptKeyError(
                f"stored key for account {account} has {len(key)} bytes, expected {KEY_SIZE}"
            )
        return key


# ----------------------------------------------------------------------
# Platform credential store
# ----------------------------------------------------------------------


class SecretBackend(ABC):
    """Narrow get/set view of a platform credential store."""

    @abstractmethod
    def get_secret(self, service: str, account: str) -> Optional[bytes]:
        """Return the stored bytes, or None if there is no record."""

    @abstractmethod
    def set_secret(self, service: str, account: str, secret: bytes) -> None:
        """Insert or update the record for (service, account)."""


class KeyringBackend(SecretBackend):
    """SecretBackend on top of the ``keyring`` package."""

    def __init__(self):
        if keyring is None:
            raise PlatformUnavailableError(
                "keyring package is not available; install keyring to use the keyring key store"
            )

    def get_secret(self, service: str, account: str) -> Optional[bytes]:
        secret = keyring.get_password(service, account)
        if secret is None:
            return None
        try:
            return base64.b64decode(secret, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CorruptKeyError(
                f"keyring entry for {service}/{account} is not valid base64"
            ) from e

    def set_secret(self, service: str, account: str, secret: bytes) -> None:
        keyring.set_password(service, account, base64.b64encode(secret).decode("ascii"))


class UnavailableBackend(SecretBackend):
    """Stand-in for hosts without a usable credential store."""

    def __init__(self, reason: str = "secure key storage is not available on this platform"):
        self.reason = reason

    def _fail(self):
        raise PlatformUnavailableError(
            f"{self.reason}; use the password key store (--keystore password) instead"
        )

    def get_secret(self, service: str, account: str) -> Optional[bytes]:
        self._fail()

    def set_secret(self, service: str, account: str, secret: bytes) -> None:
        self._fail()


def assess_keyring_backend() -> tuple[bool, str]:
    """Return (is_secure, message) describing the current keyring backend.

    Heuristics are used because the `keyring` package exposes different backends
    across platforms. If `keyring` is not available this returns (False, reason).
    """
    if keyring is None:
        return False, "keyring package is not installed"

    try:
        backend = keyring.get_keyring()
    except Exception as e:
        return False, f"failed to get keyring backend: {e}"

    name = backend.__class__.__name__
    priority = getattr(backend, "priority", None)

    insecure_indicators = ("Plaintext", "Uncrypted", "Simple", "File", "Fail", "Null")
    if any(tok in name for tok in insecure_indicators):
        return False, f"insecure backend detected: {name}"

    if priority is not None and priority <= 0:
        return False, f"no suitable secure keyring backend available (priority={priority}, backend={name})"

    if "Win" in name or "Keychain" in name or "SecretService" in name or "KWallet" in name:
        return True, f"backend looks acceptable: {name} (priority={priority})"

    return True, f"unknown backend '{name}', treat with caution (priority={priority})"


def default_secret_backend() -> SecretBackend:
    """Pick the keyring backend if this host has a secure one, else the stub."""
    secure, msg = assess_keyring_backend()
    if not secure:
        logger.debug("secure key storage unavailable: %s", msg)
        return UnavailableBackend(f"secure key storage is not available on this platform ({msg})")
    logger.debug("using keyring: %s", msg)
    return KeyringBackend()


class KeyringKeyStore(KeyStore):
    """Keys held by the OS credential store under (service, account)."""

    kind = KEYSTORE_KEYRING

    def __init__(
        self,
        service: str = DEFAULT_SERVICE,
        backend: Optional[SecretBackend] = None,
    ):
        self.service = service
        self.backend = backend if backend is not None else default_secret_backend()

    def get_key(self, account: str) -> bytes:
        validate_account(account)
        key = self.backend.get_secret(self.service, account)
        if key is None:
            raise KeyNotFoundError(account)
        return key

    def set_key(self, account: str, key: bytes) -> None:
        validate_account(account)
        check_key_size(key)
        self.backend.set_secret(self.service, account, key)

    def create_key(self, account: str, overwrite: bool = False) -> bytes:
        validate_account(account)
        if not overwrite and self.backend.get_secret(self.service, account) is not None:
            raise KeyExistsError(account)

        key = generate_key()
        self.set_key(account, key)
        logger.info("stored new key for account %s in %s", account, self.service)
        return key


# ----------------------------------------------------------------------
# Backend selection
# ----------------------------------------------------------------------


def normalize_kind(kind: str) -> str:
    """Map a configured backend name onto one of the KEYSTORE_* identifiers."""
    try:
        return KEYSTORE_ALIASES[kind.strip().lower()]
    except (KeyError, AttributeError):
        choices = ", ".join(sorted(set(KEYSTORE_ALIASES.values())))
        raise ConfigError(f"unknown keystore type: {kind!r} (choose from {choices})") from None


def open_keystore(
    kind: str,
    *,
    service: str = DEFAULT_SERVICE,
    password_config=None,
    salt_dir: Path | str | None = None,
    secret_backend: Optional[SecretBackend] = None,
) -> KeyStore:
    """Build the key store selected by ``kind``.

    Exactly one backend is active per invocation; nothing switches backends
    after this call.
    """
    # imported here: both modules subclass KeyStore from this module
    from .memory_store import MemoryKeyStore
    from .password_store import PasswordKeyStore

    kind = normalize_kind(kind)
    logger.debug("opening %s key store", kind)
    if kind == KEYSTORE_KEYRING:
        return KeyringKeyStore(service=service, backend=secret_backend)
    if kind == KEYSTORE_PASSWORD:
        return PasswordKeyStore(config=password_config, salt_dir=salt_dir)
    return MemoryKeyStore()
