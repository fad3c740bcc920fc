"""Shared fixtures for the storage tests.

The repo root is put on sys.path so `board_lib` and `tests.fakes` import
without PYTHONPATH being set.
"""
import sys
from pathlib import Path

import pytest


def pytest_configure(config):
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))


@pytest.fixture
def metadata():
    from board_lib.storage.metadata_store import MetadataStore

    store = MetadataStore(':memory:')
    yield store
    store.close()


@pytest.fixture
def registry():
    from board_lib.config import DEFAULT_META_KEYS
    from board_lib.storage.keys import KeyRegistry

    return KeyRegistry(content_prefix='content_', meta_keys=DEFAULT_META_KEYS)


@pytest.fixture
def folder():
    from tests.fakes import FakeDirectoryHandle

    return FakeDirectoryHandle('boards')


@pytest.fixture
def make_manager(metadata, registry):
    """Build a StorageManager over the in-memory metadata store."""
    from board_lib.storage.manager import StorageManager
    from tests.fakes import FakePlatform

    def _make(platform=None, **kwargs):
        return StorageManager(platform or FakePlatform(), metadata, registry, **kwargs)

    return _make
