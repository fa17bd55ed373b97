"""Password-derived key store.

No key is ever stored. The only state is a random 32-byte salt per account,
kept in ``<salt_dir>/<account>.salt``; the key is re-derived from the password
and that salt with PBKDF2-HMAC-SHA256 every time it is needed.

Salt lifecycle:

- written once, on the first ``create_key`` for an account
- reused on every later derivation, including a retried ``create_key`` after a
  failed password confirmation (the salt is written before confirmation)
- never regenerated while it is present and readable, unless the caller asks
  for ``overwrite=True``
- a salt file that exists but can not be read is an error, never a reason to
  write a new one

Because the salt survives a failed confirmation, a retry through
``load_or_create_key`` finds it and takes the ``get_key`` path: the password
is asked for once and is not confirmed, so a typo in that retry goes
unnoticed until decryption fails.

Two processes provisioning the same account at the same moment race on the
salt file and the last writer wins. Provisioning is a one-off, human-driven
step, so no locking is attempted.
"""
from __future__ import annotations

import getpass
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from envx.core.config import CONFIG_DIR_ENV_VAR
from envx.core.exceptions import (
    CorruptKeyError,
    KeyNotFoundError,
    PasswordMismatchError,
    UnsupportedOperationError,
)

from .kdf import DEFAULT_ITERATIONS, SALT_SIZE, derive_key, generate_salt
from .keystore import KEYSTORE_PASSWORD, KeyStore, validate_account

logger = logging.getLogger(__name__)

PASSWORD_ENV_VAR = "ENVX_PASSWORD"


def prompt_for_password(prompt: str) -> str:
    """Read a password from the terminal without echo."""
    return getpass.getpass(f"{prompt}: ")


def default_salt_dir() -> Path:
    override = os.getenv(CONFIG_DIR_ENV_VAR)
    if override:
        return Path(override) / "salts"
    try:
        return Path.home() / ".config" / "envx" / "salts"
    except RuntimeError:
        # no resolvable home directory
        return Path(".envx") / "salts"


@dataclass
class PasswordConfig:
    """Settings for :class:`PasswordKeyStore`.

    ``password`` wins over the ``env_var`` environment variable, which wins
    over ``prompt``. Pass a custom ``prompt`` to feed passwords from something
    other than a terminal.
    """

    iterations: int = DEFAULT_ITERATIONS
    password: Optional[str] = None
    prompt: Optional[Callable[[str], str]] = None
    env_var: str = PASSWORD_ENV_VAR


class PasswordKeyStore(KeyStore):
    kind = KEYSTORE_PASSWORD

    def __init__(self, config: Optional[PasswordConfig] = None, salt_dir: Path | str | None = None):
        self.config = config or PasswordConfig()
        if self.config.iterations < 1:
            raise ValueError(f"iterations must be positive, got {self.config.iterations}")
        self.salt_dir = Path(salt_dir) if salt_dir is not None else default_salt_dir()
        self._prompt = self.config.prompt or prompt_for_password

    # ------------------------------------------------------------------
    # Salt files
    # ------------------------------------------------------------------

    def salt_path(self, account: str) -> Path:
        return self.salt_dir / f"{validate_account(account)}.salt"

    def read_salt(self, account: str) -> bytes:
        """Return the stored salt.

        Raises KeyNotFoundError only when the file does not exist. Any other
        OSError (permissions, the path being a directory, ...) propagates.
        """
        path = self.salt_path(account)
        try:
            salt = path.read_bytes()
        except FileNotFoundError:
            raise KeyNotFoundError(account) from None

        if len(salt) != SALT_SIZE:
            raise CorruptKeyError(
                f"salt file {path} has {len(salt)} bytes, expected {SALT_SIZE}; "
                "refusing to replace it because existing values depend on it"
            )
        return salt

    def write_salt(self, account: str, salt: bytes) -> None:
        if len(salt) != SALT_SIZE:
            raise ValueError(f"invalid salt size: expected {SALT_SIZE} bytes, got {len(salt)}")
        path = self.salt_path(account)
        self.salt_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(salt)
        logger.debug("wrote salt file %s", path)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def _resolve_password(self, prompt: str, confirm: bool = False) -> str:
        if self.config.password:
            return self.config.password

        env_password = os.getenv(self.config.env_var) if self.config.env_var else None
        if env_password:
            return env_password

        password = self._prompt(prompt)
        if confirm:
            again = self._prompt(f"{prompt} (again)")
            if again != password:
                raise PasswordMismatchError("passwords do not match")
        return password

    def _derive(self, password: str, salt: bytes) -> bytes:
        if not password:
            raise ValueError("password must not be empty")
        return derive_key(password, salt, iterations=self.config.iterations)

    # ------------------------------------------------------------------
    # KeyStore
    # ------------------------------------------------------------------

    def get_key(self, account: str) -> bytes:
        # salt first: an unprovisioned account must not trigger a prompt
        salt = self.read_salt(account)
        password = self._resolve_password(f"Enter password for {account}")
        return self._derive(password, salt)

    def set_key(self, account: str, key: bytes) -> None:
        raise UnsupportedOperationError(
            "set_key is not supported by the password key store; keys are derived from passwords"
        )

    def create_key(self, account: str, overwrite: bool = False) -> bytes:
        """Provision ``account`` and return its derived key.

        The salt is persisted before the password is confirmed. If the
        confirmation fails the salt stays on disk and the next attempt reuses
        it.
        """
        salt = None
        if not overwrite:
            try:
                salt = self.read_salt(account)
                logger.debug("reusing existing salt for account %s", account)
            except KeyNotFoundError:
                salt = None

        if salt is None:
            salt = generate_salt()
            self.write_salt(account, salt)
            logger.info("created salt for account %s", account)

        password = self._resolve_password(f"Create password for {account}", confirm=True)
        return self._derive(password, salt)
