from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any, Dict, Iterator, List, Optional

from errors import CorruptStore, IoError
from utils import atomic_write_text


@dataclass(frozen=True)
class TrackedFile:
    relative_path: str
    digest: str = ""


@dataclass
class TrackedItem:
    id: str
    title: str
    version_marker: str
    files: List[TrackedFile] = field(default_factory=list)
    collection_ids: set[str] = field(default_factory=set)

    def add_collection(self, collection_id: str | None) -> bool:
        if not collection_id or collection_id in self.collection_ids:
            return False
        self.collection_ids.add(collection_id)
        return True


def is_safe_relative_path(value: str) -> bool:
    if not value:
        return False
    if PurePosixPath(value).is_absolute() or PureWindowsPath(value).is_absolute():
        return False
    if PureWindowsPath(value).drive:
        return False
    normalized = value.replace("\\", "/")
    if normalized.startswith("/"):
        return False
    parts = [part for part in normalized.split("/") if part not in ("", ".")]
    return bool(parts) and ".." not in parts


def _require_str(record: Dict[str, Any], key: str, item_id: str) -> str:
    value = record.get(key)
    if not isinstance(value, str):
        raise CorruptStore(f"Record {item_id} has no valid '{key}'")
    return value


def item_from_record(item_id: str, record: Any) -> TrackedItem:
    if not isinstance(record, dict):
        raise CorruptStore(f"Record {item_id} is not an object")
    title = _require_str(record, "title", item_id)
    version_marker = _require_str(record, "changelog_id", item_id)

    raw_files = record.get("files", [])
    if not isinstance(raw_files, list):
        raise CorruptStore(f"Record {item_id} has invalid 'files'")
    files: List[TrackedFile] = []
    for entry in raw_files:
        if not isinstance(entry, dict):
            raise CorruptStore(f"Record {item_id} has an invalid file entry")
        path = entry.get("path")
        digest = entry.get("hash", "")
        if not isinstance(path, str) or not isinstance(digest, str):
            raise CorruptStore(f"Record {item_id} has an invalid file entry")
        if not is_safe_relative_path(path):
            raise CorruptStore(f"Record {item_id} tracks unsafe path {path!r}")
        files.append(TrackedFile(relative_path=path, digest=digest))

    raw_collections = record.get("collection_ids", [])
    if not isinstance(raw_collections, list) or not all(
        isinstance(value, str) for value in raw_collections
    ):
        raise CorruptStore(f"Record {item_id} has invalid 'collection_ids'")

    return TrackedItem(
        id=str(item_id),
        title=title,
        version_marker=version_marker,
        files=files,
        collection_ids=set(raw_collections),
    )


def item_to_record(item: TrackedItem) -> Dict[str, Any]:
    return {
        "title": item.title,
        "changelog_id": item.version_marker,
        "files": [
            {"path": tracked.relative_path, "hash": tracked.digest}
            for tracked in item.files
        ],
        "collection_ids": sorted(item.collection_ids),
    }


class MetadataStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._items: Dict[str, TrackedItem] = {}

    def load(self) -> Dict[str, TrackedItem]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logging.info("No metadata store at %s, starting empty", self.path)
            self._items = {}
            return dict(self._items)
        except OSError as exc:
            raise IoError(f"Failed to read metadata store {self.path}: {exc}") from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CorruptStore(f"Metadata store {self.path} is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise CorruptStore(f"Metadata store {self.path} must contain a JSON object")

        self._items = {
            str(item_id): item_from_record(str(item_id), record)
            for item_id, record in payload.items()
        }
        logging.debug("Loaded %s tracked items from %s", len(self._items), self.path)
        return dict(self._items)

    def save(self, items: Optional[Dict[str, TrackedItem]] = None) -> None:
        if items is not None:
            self._items = dict(items)
        payload = {item_id: item_to_record(item) for item_id, item in self._items.items()}
        atomic_write_text(
            self.path,
            json.dumps(payload, ensure_ascii=True, indent=2, sort_keys=True) + "\n",
        )

    def get(self, item_id: str) -> Optional[TrackedItem]:
        return self._items.get(str(item_id))

    def upsert(self, item: TrackedItem) -> None:
        self._items[item.id] = item

    def remove(self, item_id: str) -> Optional[TrackedItem]:
        return self._items.pop(str(item_id), None)

    def ids(self) -> List[str]:
        return sorted(self._items)

    def items(self) -> List[TrackedItem]:
        return [self._items[item_id] for item_id in sorted(self._items)]

    def __contains__(self, item_id: object) -> bool:
        return str(item_id) in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self.ids())
