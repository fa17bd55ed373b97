"""Unit tests for the in-memory key store."""

import os
import threading

import pytest

from envx.core.exceptions import InvalidKeySizeError, KeyExistsError, KeyNotFoundError
from envx.security.memory_store import MemoryKeyStore


@pytest.fixture
def store():
    return MemoryKeyStore()


def test_get_missing(store):
    with pytest.raises(KeyNotFoundError):
        store.get_key("alice")


def test_set_get_roundtrip(store):
    key = os.urandom(32)
    store.set_key("alice", key)
    assert store.get_key("alice") == key


def test_set_copies_input(store):
    key = bytearray(os.urandom(32))
    store.set_key("alice", key)
    key[0] ^= 0xFF
    assert store.get_key("alice") != bytes(key)


def test_set_wrong_size(store):
    with pytest.raises(InvalidKeySizeError):
        store.set_key("alice", b"short")


def test_create_refuses_existing(store):
    key = store.create_key("alice")
    with pytest.raises(KeyExistsError):
        store.create_key("alice")
    assert store.get_key("alice") == key
    assert store.create_key("alice", overwrite=True) != key


def test_load_or_create_idempotent(store):
    assert store.load_or_create_key("alice") == store.load_or_create_key("alice")


def test_instances_do_not_share_keys():
    assert MemoryKeyStore().load_or_create_key("alice") != MemoryKeyStore().load_or_create_key("alice")


def test_concurrent_load_or_create_agrees(store):
    """Threads racing on a fresh account all end up with the same key."""
    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(store.load_or_create_key("shared"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 8
    assert len(set(results)) == 1
