from __future__ import annotations

import fnmatch
import logging
import os
import shutil
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, List

from errors import IoError
from metadata_store import TrackedFile
from telemetry import start_span
from utils import ensure_dir, file_digest


class InclusionPolicy:
    """Whitelist of glob patterns matched against cache-relative POSIX paths.

    An empty whitelist rejects every path, so ingesting without an explicit
    configuration never moves anything.
    """

    def __init__(self, patterns: Iterable[str] | None = None) -> None:
        self.patterns = [p.strip() for p in (patterns or []) if p and p.strip()]

    def __call__(self, relative_path: str) -> bool:
        return self.allows(relative_path)

    def allows(self, relative_path: str) -> bool:
        if not self.patterns:
            return False
        candidate = str(relative_path).replace("\\", "/")
        return any(fnmatch.fnmatchcase(candidate, pattern) for pattern in self.patterns)

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def __repr__(self) -> str:
        return f"InclusionPolicy({self.patterns!r})"


class FileTracker:
    def __init__(self, hasher: Callable[[Path], str] = file_digest) -> None:
        self.hasher = hasher

    def ingest(
        self,
        source_root: Path,
        dest_root: Path,
        policy: Callable[[str], bool],
    ) -> List[TrackedFile]:
        source_root = Path(source_root)
        dest_root = Path(dest_root)
        if not source_root.exists():
            logging.info("Nothing to ingest: %s does not exist", source_root)
            return []

        with start_span(
            "files.ingest",
            {"files.source": str(source_root), "files.dest": str(dest_root)},
        ) as span:
            tracked: List[TrackedFile] = []
            try:
                self._walk(source_root, dest_root, policy, tracked)
            except IoError:
                if tracked:
                    logging.error(
                        "Ingest from %s aborted after moving %s files; moved files stay in %s",
                        source_root,
                        len(tracked),
                        dest_root,
                    )
                raise
            span.set_attribute("files.tracked", len(tracked))
            return tracked

    def _walk(
        self,
        source_root: Path,
        dest_root: Path,
        policy: Callable[[str], bool],
        tracked: List[TrackedFile],
    ) -> None:
        stack: List[tuple[Path, PurePosixPath]] = [(source_root, PurePosixPath())]
        while stack:
            src_dir, rel_dir = stack.pop()
            if not src_dir.exists():
                continue
            ensure_dir(dest_root.joinpath(*rel_dir.parts))

            try:
                with os.scandir(src_dir) as it:
                    entries = sorted(it, key=lambda entry: entry.name)
            except OSError as exc:
                raise IoError(f"Failed to list {src_dir}: {exc}") from exc

            subdirs: List[tuple[Path, PurePosixPath]] = []
            for entry in entries:
                rel_path = rel_dir / entry.name
                src_path = Path(entry.path)
                try:
                    is_dir = entry.is_dir()
                except OSError as exc:
                    raise IoError(f"Failed to stat {src_path}: {exc}") from exc
                if is_dir:
                    subdirs.append((src_path, rel_path))
                    continue

                relative = rel_path.as_posix()
                if not policy(relative):
                    logging.info("Skipping %s - not in whitelist", relative)
                    continue
                digest = self.hasher(src_path)
                self._move_file(src_path, dest_root.joinpath(*rel_path.parts))
                tracked.append(TrackedFile(relative_path=relative, digest=digest))

            # reversed so the first subdirectory in name order is visited next
            stack.extend(reversed(subdirs))

    @staticmethod
    def _move_file(src_path: Path, dest_path: Path) -> None:
        ensure_dir(dest_path.parent)
        try:
            shutil.copy2(src_path, dest_path)
            src_path.unlink()
        except OSError as exc:
            raise IoError(f"Failed to move {src_path} to {dest_path}: {exc}") from exc
