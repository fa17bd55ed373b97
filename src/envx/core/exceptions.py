"""
Exceptions for envx
Everything envx raises on purpose derives from EnvxError so the CLI has a
single place to catch and report. Plain OSError from salt files or the
credential store is never wrapped.
"""


class EnvxError(Exception):
    # general container for errors
    pass


class InvalidKeySizeError(EnvxError, ValueError):
    # raised when a key is not exactly KEY_SIZE bytes
    def __init__(self, expected: int, actual: int):
        super().__init__(f"invalid key size: expected {expected} bytes, got {actual}")
        self.expected = expected
        self.actual = actual


class DecryptionFailedError(EnvxError):
    # raised on tag mismatch, truncated envelope or wrong key
    pass


class KeyStoreError(EnvxError):
    # base for key store failures
    pass


class KeyNotFoundError(KeyStoreError):
    # raised when nothing is provisioned for the account yet
    def __init__(self, account: str):
        super().__init__(f"no key found for account: {account}")
        self.account = account


class KeyExistsError(KeyStoreError):
    # raised when create_key would replace an existing key
    def __init__(self, account: str):
        super().__init__(
            f"a key already exists for account: {account}; pass overwrite=True to replace it"
        )
        self.account = account


class CorruptKeyError(KeyStoreError):
    # raised when a stored key or salt exists but is malformed
    pass


class UnsupportedOperationError(KeyStoreError):
    # raised when a backend cannot perform the requested mutation
    pass


class PasswordMismatchError(KeyStoreError):
    # raised when the confirmation prompt does not match
    pass


class PlatformUnavailableError(KeyStoreError):
    # raised by the secure-storage backend on hosts without a usable keyring
    pass


class ConfigError(EnvxError):
    # raised on unreadable or invalid configuration
    pass


class EnvFileError(EnvxError):
    # raised when an env file cannot be parsed or rendered
    pass
