"""
Unit tests for the password-derived key store.
"""

import os
import stat

import pytest

from envx.core.exceptions import (
    CorruptKeyError,
    KeyNotFoundError,
    PasswordMismatchError,
    UnsupportedOperationError,
)
from envx.security.kdf import SALT_SIZE, derive_key
from envx.security.password_store import (
    PASSWORD_ENV_VAR,
    PasswordConfig,
    PasswordKeyStore,
    default_salt_dir,
)

ITERATIONS = 1000


class ScriptedPrompt:
    """Prompt double that answers from a list and records what it was asked."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.prompts = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        return self.answers.pop(0)


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture(autouse=True)
def no_password_env(monkeypatch):
    monkeypatch.delenv(PASSWORD_ENV_VAR, raising=False)


@pytest.fixture
def make_store(tmp_path):
    def _make(password=None, prompt=None):
        config = PasswordConfig(iterations=ITERATIONS, password=password, prompt=prompt)
        return PasswordKeyStore(config=config, salt_dir=tmp_path / "salts")
    return _make


# ==============================================================================
# Tests: Provisioning
# ==============================================================================

def test_get_key_before_provisioning(make_store):
    """No salt yet: not found, and nobody is asked for a password."""
    prompt = ScriptedPrompt()
    with pytest.raises(KeyNotFoundError):
        make_store(prompt=prompt).get_key("alice")
    assert prompt.prompts == []


def test_create_key_writes_private_salt(make_store, tmp_path):
    store = make_store(password="hunter2")
    key = store.create_key("alice")

    salt_file = tmp_path / "salts" / "alice.salt"
    assert salt_file.exists()
    assert len(salt_file.read_bytes()) == SALT_SIZE
    assert stat.S_IMODE(salt_file.stat().st_mode) == 0o600
    assert key == derive_key("hunter2", salt_file.read_bytes(), iterations=ITERATIONS)


def test_load_or_create_twice_returns_same_key(make_store, tmp_path):
    store = make_store(password="hunter2")
    first = store.load_or_create_key("alice")
    salt = (tmp_path / "salts" / "alice.salt").read_bytes()

    second = store.load_or_create_key("alice")
    assert first == second
    assert (tmp_path / "salts" / "alice.salt").read_bytes() == salt


def test_create_key_reuses_existing_salt(make_store, tmp_path):
    store = make_store(password="pw")
    store.create_key("alice")
    salt = (tmp_path / "salts" / "alice.salt").read_bytes()

    store.create_key("alice")
    assert (tmp_path / "salts" / "alice.salt").read_bytes() == salt


def test_create_key_overwrite_rotates_salt(make_store, tmp_path):
    store = make_store(password="pw")
    old_key = store.create_key("alice")
    old_salt = (tmp_path / "salts" / "alice.salt").read_bytes()

    new_key = store.create_key("alice", overwrite=True)
    assert (tmp_path / "salts" / "alice.salt").read_bytes() != old_salt
    assert new_key != old_key


# ==============================================================================
# Tests: Determinism
# ==============================================================================

def test_same_password_same_salt_same_key(make_store):
    make_store(password="pw").create_key("alice")
    assert make_store(password="pw").get_key("alice") == make_store(password="pw").get_key("alice")


def test_different_password_different_key(make_store):
    key = make_store(password="pw").create_key("alice")
    assert make_store(password="other").get_key("alice") != key


def test_accounts_have_independent_salts(make_store):
    store = make_store(password="pw")
    assert store.create_key("alice") != store.create_key("bob")


# ==============================================================================
# Tests: Password resolution
# ==============================================================================

def test_explicit_password_beats_env(make_store, monkeypatch, tmp_path):
    monkeypatch.setenv(PASSWORD_ENV_VAR, "from-env")
    key = make_store(password="explicit").create_key("alice")
    salt = (tmp_path / "salts" / "alice.salt").read_bytes()
    assert key == derive_key("explicit", salt, iterations=ITERATIONS)


def test_env_password_beats_prompt(make_store, monkeypatch, tmp_path):
    monkeypatch.setenv(PASSWORD_ENV_VAR, "from-env")
    prompt = ScriptedPrompt()
    key = make_store(prompt=prompt).create_key("alice")

    assert prompt.prompts == []
    salt = (tmp_path / "salts" / "alice.salt").read_bytes()
    assert key == derive_key("from-env", salt, iterations=ITERATIONS)


def test_get_key_prompts_once(make_store):
    make_store(password="pw").create_key("alice")
    prompt = ScriptedPrompt("pw")

    key = make_store(prompt=prompt).get_key("alice")
    assert len(prompt.prompts) == 1
    assert "alice" in prompt.prompts[0]
    assert key == make_store(password="pw").get_key("alice")


def test_create_key_prompts_for_confirmation(make_store):
    prompt = ScriptedPrompt("correct", "correct")
    key = make_store(prompt=prompt).create_key("alice")

    assert len(prompt.prompts) == 2
    assert key == make_store(password="correct").get_key("alice")


def test_empty_password_rejected(make_store):
    with pytest.raises(ValueError, match="empty"):
        make_store(prompt=ScriptedPrompt("", "")).create_key("alice")


# ==============================================================================
# Tests: Confirmation mismatch keeps the salt
# ==============================================================================

def test_mismatch_then_retry_reuses_salt(make_store, tmp_path):
    """correct/incorrect fails; the retry succeeds with the salt from the first try."""
    with pytest.raises(PasswordMismatchError):
        make_store(prompt=ScriptedPrompt("correct", "incorrect")).create_key("alice")

    salt_file = tmp_path / "salts" / "alice.salt"
    assert salt_file.exists()
    salt = salt_file.read_bytes()

    key = make_store(prompt=ScriptedPrompt("correct", "correct")).create_key("alice")
    assert salt_file.read_bytes() == salt
    assert key == derive_key("correct", salt, iterations=ITERATIONS)


def test_mismatch_through_load_or_create(make_store):
    with pytest.raises(PasswordMismatchError):
        make_store(prompt=ScriptedPrompt("a", "b")).load_or_create_key("alice")


def test_retry_through_load_or_create_is_not_confirmed(make_store, tmp_path):
    """The salt left by a failed confirmation sends the retry down get_key."""
    with pytest.raises(PasswordMismatchError):
        make_store(prompt=ScriptedPrompt("a", "b")).load_or_create_key("alice")

    retry = ScriptedPrompt("typo")
    key = make_store(prompt=retry).load_or_create_key("alice")

    assert len(retry.prompts) == 1
    salt = (tmp_path / "salts" / "alice.salt").read_bytes()
    assert key == derive_key("typo", salt, iterations=ITERATIONS)


# ==============================================================================
# Tests: Corrupt and unreadable salts
# ==============================================================================

def test_wrong_size_salt_is_corrupt(make_store, tmp_path):
    salt_dir = tmp_path / "salts"
    salt_dir.mkdir()
    (salt_dir / "alice.salt").write_bytes(b"x" * 16)

    store = make_store(password="pw")
    with pytest.raises(CorruptKeyError):
        store.get_key("alice")
    with pytest.raises(CorruptKeyError):
        store.load_or_create_key("alice")
    with pytest.raises(CorruptKeyError):
        store.create_key("alice")
    assert (salt_dir / "alice.salt").read_bytes() == b"x" * 16


def test_unreadable_salt_propagates(make_store, tmp_path):
    """A salt path that exists but can not be read is never replaced."""
    salt_path = tmp_path / "salts" / "alice.salt"
    salt_path.mkdir(parents=True)

    store = make_store(password="pw")
    with pytest.raises(OSError) as excinfo:
        store.load_or_create_key("alice")
    assert not isinstance(excinfo.value, FileNotFoundError)
    assert salt_path.is_dir()


# ==============================================================================
# Tests: Unsupported operations & config
# ==============================================================================

def test_set_key_unsupported(make_store):
    with pytest.raises(UnsupportedOperationError):
        make_store(password="pw").set_key("alice", os.urandom(32))


def test_rejects_non_positive_iterations(tmp_path):
    with pytest.raises(ValueError):
        PasswordKeyStore(PasswordConfig(iterations=0), salt_dir=tmp_path)


def test_account_name_cannot_escape_salt_dir(make_store):
    with pytest.raises(ValueError):
        make_store(password="pw").create_key("../evil")


def test_default_salt_dir_honours_config_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("ENVX_CONFIG_DIR", str(tmp_path))
    assert default_salt_dir() == tmp_path / "salts"
    assert PasswordKeyStore().salt_dir == tmp_path / "salts"
