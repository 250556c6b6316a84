"""Shared fixtures for cache unit tests"""

import pytest

from sitepub.cache.store import BuildCache


@pytest.fixture(name="cache_dir")
def cache_dir_fixture(tmp_path):
    return tmp_path / "cache"


@pytest.fixture(name="cache")
def cache_fixture(cache_dir):
    """A fresh on-disk cache with no size cap."""
    cache = BuildCache.open(cache_dir)
    yield cache
    cache.engine.dispose()
