# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.03
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/conftest.py

"""
Shared test fixtures for the fsconverge test suite.
"""

from pathlib import Path
from typing import Optional

import pytest
from loguru import logger

from fsconverge.config.manager import BucketConfig, EngineConfig
from fsconverge.core.entity import EntityRegistry
from fsconverge.core.recursion import RecursionEngine
from fsconverge.storage.backup import BucketRegistry
from fsconverge.storage.fileserver import SourceDescription
from fsconverge.storage.sources import ClientRegistry, SourceResolver


@pytest.fixture(autouse=True)
def isolated_config_env(tmp_path, monkeypatch):
    """Keep tests away from the real user's fsconverge.yml."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    monkeypatch.delenv("FSCONVERGE_CONFIG_HOME", raising=False)
    yield
    logger.remove()


@pytest.fixture
def engine_config(tmp_path) -> EngineConfig:
    return EngineConfig(buckets={"main": BucketConfig(path=tmp_path / "bucket")})


@pytest.fixture
def registry(engine_config) -> EntityRegistry:
    return EntityRegistry(engine_config, BucketRegistry(engine_config))


class FakeFileClient:
    """In-memory file client: a fixed listing, descriptions and contents."""

    def __init__(self, listing: str = "", descriptions: Optional[dict] = None, contents: Optional[dict] = None):
        self.listing = listing
        self.descriptions = descriptions or {}
        self.contents = contents or {}
        self.list_calls = []
        self.closed = False

    def list(self, path, links="ignore", recurse=False, ignore=()):
        self.list_calls.append((path, links, recurse, tuple(ignore)))
        return self.listing

    def describe(self, path, links="ignore", checksum_type="md5") -> Optional[SourceDescription]:
        return self.descriptions.get(path)

    def retrieve(self, path, links="ignore") -> bytes:
        return self.contents[path]

    def close(self):
        self.closed = True


@pytest.fixture
def fake_client() -> FakeFileClient:
    return FakeFileClient()


@pytest.fixture
def resolver(engine_config, fake_client) -> SourceResolver:
    """Resolver whose fsc:// sources are all served by fake_client."""
    clients = ClientRegistry(engine_config, factory=lambda host, port, config: fake_client)
    return SourceResolver(engine_config, clients)


@pytest.fixture
def engine(registry, resolver) -> RecursionEngine:
    return RecursionEngine(registry, resolver)


@pytest.fixture
def nested_tree(tmp_path) -> Path:
    """d/top.txt, d/a/b/c/deep.txt: a directory three levels deep."""
    root = tmp_path / "d"
    (root / "a" / "b" / "c").mkdir(parents=True)
    (root / "top.txt").write_text("top")
    (root / "a" / "a.txt").write_text("a")
    (root / "a" / "b" / "b.txt").write_text("b")
    (root / "a" / "b" / "c" / "deep.txt").write_text("deep")
    return root
