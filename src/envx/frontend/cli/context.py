"""Small helper to build an envx command context."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional
import getpass
import logging

from envx.core.config import Config, load_config, resolve_env_file
from envx.security.keystore import KEYSTORE_PASSWORD, KeyStore, SecretBackend, open_keystore
from envx.security.password_store import PasswordConfig

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Container for runtime objects a command needs."""

    config: Config
    keystore: KeyStore
    account: str
    env_path: Path
    _key: Optional[bytes] = field(default=None, repr=False)

    def load_key(self) -> bytes:
        """Load or provision the key for ``account``; cached for this invocation."""
        if self._key is None:
            logger.debug("loading key for account %s from %s store", self.account, self.keystore.kind)
            self._key = self.keystore.load_or_create_key(self.account)
        return self._key


def build_context(
    file: Optional[str] = None,
    name: Optional[str] = None,
    keystore: Optional[str] = None,
    password: Optional[str] = None,
    account: Optional[str] = None,
    cwd: Optional[str | Path] = None,
    prompt: Optional[Callable[[str], str]] = None,
    secret_backend: Optional[SecretBackend] = None,
    salt_dir: Optional[str | Path] = None,
) -> AppContext:
    """
    Resolve configuration, account and key store for one invocation.

    Flag values win over the directory and global config files; the env file
    is picked by :func:`envx.core.config.resolve_env_file`. Passing
    ``password`` (even an empty string) selects the password key store; an
    empty string means "ask for it" instead of supplying it.

    The key itself is not loaded here so commands that never touch values do
    not trigger a keyring lookup or a password prompt.
    """
    if password is not None:
        keystore = KEYSTORE_PASSWORD

    config = load_config(cwd, keystore=keystore, account=account)

    password_config = PasswordConfig(
        iterations=config.iterations,
        password=password or None,
        prompt=prompt,
    )
    store = open_keystore(
        config.keystore,
        password_config=password_config,
        salt_dir=salt_dir,
        secret_backend=secret_backend,
    )

    env_path = Path(resolve_env_file(config, file=file, name=name, cwd=cwd))
    if cwd is not None and not env_path.is_absolute():
        env_path = Path(cwd) / env_path

    return AppContext(
        config=config,
        keystore=store,
        account=config.account or getpass.getuser(),
        env_path=env_path,
    )
