from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import Callable

from errors import CorruptStore
from metadata_store import TrackedFile, TrackedItem, is_safe_relative_path
from utils import file_digest


class FileStatus(enum.Enum):
    OK = "ok"
    MISSING = "missing"
    MODIFIED = "modified"


class IntegrityChecker:
    def __init__(self, cache_root: Path, hasher: Callable[[Path], str] = file_digest) -> None:
        self.cache_root = Path(cache_root)
        self.hasher = hasher

    def resolve(self, tracked: TrackedFile) -> Path:
        if not is_safe_relative_path(tracked.relative_path):
            raise CorruptStore(
                f"Tracked path {tracked.relative_path!r} escapes {self.cache_root}"
            )
        parts = [
            part
            for part in tracked.relative_path.replace("\\", "/").split("/")
            if part not in ("", ".")
        ]
        path = self.cache_root.joinpath(*parts)
        if path == self.cache_root:
            raise CorruptStore(
                f"Tracked path {tracked.relative_path!r} points at the cache root"
            )
        return path

    def check_file(self, tracked: TrackedFile) -> FileStatus:
        path = self.resolve(tracked)
        if not path.exists():
            return FileStatus.MISSING
        if not tracked.digest:
            return FileStatus.OK
        if self.hasher(path) != tracked.digest:
            return FileStatus.MODIFIED
        return FileStatus.OK

    def verify(self, item: TrackedItem) -> bool:
        for tracked in item.files:
            status = self.check_file(tracked)
            if status is not FileStatus.OK:
                logging.info(
                    "Integrity check failed for %s: %s is %s",
                    item.id,
                    tracked.relative_path,
                    status.value,
                )
                return False
        return True
