"""Shared fakes and fixtures for the workshop mirror tests."""

import hashlib
from pathlib import Path
from typing import Dict, List

import pytest

from errors import ResolutionError
from file_tracker import InclusionPolicy
from metadata_store import MetadataStore
from steam_api import WorkshopCollection, WorkshopItem
from steamcmd import TransferResult
from syncer import SyncEngine

APP_ID = "4000"


def md5_of(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


class FakeResolver:
    """In-memory stand-in for the Steam page resolver."""

    def __init__(self) -> None:
        self.results: Dict[str, object] = {}
        self.failing: set[str] = set()
        self.calls: List[str] = []

    def add_item(self, item_id: str, version: str, title: str | None = None) -> None:
        self.results[item_id] = WorkshopItem(
            id=item_id, title=title or f"Item {item_id}", version_marker=version
        )

    def add_collection(self, collection_id: str, members: List[str], title: str | None = None) -> None:
        self.results[collection_id] = WorkshopCollection(
            id=collection_id, title=title or f"Collection {collection_id}", member_ids=list(members)
        )

    def resolve(self, workshop_id: str):
        self.calls.append(workshop_id)
        if workshop_id in self.failing or workshop_id not in self.results:
            raise ResolutionError(workshop_id, "HTTP 500")
        return self.results[workshop_id]


class FakeAgent:
    """Transfer agent that writes configured payloads into its content directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.payloads: Dict[str, Dict[str, bytes]] = {}
        self.results: Dict[str, List[TransferResult]] = {}
        self.calls: List[str] = []

    def content_path(self, app_id: str, item_id: str) -> Path:
        return self.root / "content" / app_id / item_id

    def transfer(self, app_id: str, item_id: str) -> TransferResult:
        self.calls.append(item_id)
        queued = self.results.get(item_id)
        if queued:
            result = queued.pop(0)
            if not result.ok:
                return result
        for relative, data in self.payloads.get(item_id, {}).items():
            target = self.content_path(app_id, item_id) / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        return TransferResult(True)


@pytest.fixture
def cache_root(tmp_path):
    return tmp_path / "cache"


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def agent(tmp_path):
    return FakeAgent(tmp_path / "steamcmd" / "steamapps" / "workshop")


@pytest.fixture
def store(tmp_path):
    store = MetadataStore(tmp_path / "metadata.json")
    store.load()
    return store


@pytest.fixture
def make_engine(store, resolver, agent, cache_root):
    def factory(patterns=("*.bsp", "*.nav"), **kwargs) -> SyncEngine:
        return SyncEngine(
            store,
            resolver,
            agent,
            app_id=APP_ID,
            cache_root=cache_root,
            policy=InclusionPolicy(patterns),
            maps_file=cache_root / "workshop_maps.txt",
            **kwargs,
        )

    return factory
