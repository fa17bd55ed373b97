"""In-memory key store for tests and throwaway environments."""
from __future__ import annotations

import threading
from typing import Dict

from envx.core.exceptions import KeyExistsError, KeyNotFoundError

from .crypto import check_key_size, generate_key
from .keystore import KEYSTORE_MEMORY, KeyStore, validate_account


class MemoryKeyStore(KeyStore):
    """Keys live in a dict for the lifetime of the object.

    One lock covers every read and write so a test harness can share an
    instance between threads.
    """

    kind = KEYSTORE_MEMORY

    def __init__(self):
        self._keys: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get_key(self, account: str) -> bytes:
        validate_account(account)
        with self._lock:
            key = self._keys.get(account)
        if key is None:
            raise KeyNotFoundError(account)
        return bytes(key)

    def set_key(self, account: str, key: bytes) -> None:
        validate_account(account)
        check_key_size(key)
        with self._lock:
            self._keys[account] = bytes(key)

    def create_key(self, account: str, overwrite: bool = False) -> bytes:
        validate_account(account)
        key = generate_key()
        with self._lock:
            if not overwrite and account in self._keys:
                raise KeyExistsError(account)
            self._keys[account] = key
        return bytes(key)

    def load_or_create_key(self, account: str) -> bytes:
        # check-and-create under the lock so two threads agree on one key
        validate_account(account)
        with self._lock:
            key = self._keys.get(account)
            if key is None:
                key = generate_key()
                self._keys[account] = key
        return bytes(key)
