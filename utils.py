import hashlib
import os
from pathlib import Path

from errors import IoError

DIGEST_CHUNK_SIZE = 64 * 1024
_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def ensure_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise IoError(f"Failed to create directory {path}: {exc}") from exc


def file_digest(path: Path) -> str:
    digest = hashlib.md5(usedforsecurity=False)
    try:
        with Path(path).open("rb") as handle:
            while True:
                chunk = handle.read(DIGEST_CHUNK_SIZE)
                if not chunk:
                    break
                digest.update(chunk)
    except OSError as exc:
        raise IoError(f"Failed to hash file {path}: {exc}") from exc
    return digest.hexdigest()


def atomic_write_text(path: Path, text: str) -> None:
    ensure_dir(path.parent)
    temp_path = path.with_name(f"{path.name}.tmp")
    try:
        with temp_path.open("w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except OSError as exc:
        raise IoError(f"Failed to write {path}: {exc}") from exc
    finally:
        if temp_path.exists():
            try:
                temp_path.unlink()
            except FileNotFoundError:
                pass


def directory_size(root: Path) -> int:
    total = 0
    stack = [Path(root)]
    while stack:
        current = stack.pop()
        if not current.exists():
            continue
        try:
            with os.scandir(current) as entries:
                for entry in entries:
                    if entry.is_dir(follow_symlinks=False):
                        stack.append(Path(entry.path))
                    elif entry.is_file():
                        total += entry.stat().st_size
        except OSError as exc:
            raise IoError(f"Failed to scan {current}: {exc}") from exc
    return total


def format_file_size(size: int) -> str:
    value = float(size)
    unit_index = 0
    while value >= 1024.0 and unit_index < len(_SIZE_UNITS) - 1:
        value /= 1024.0
        unit_index += 1
    return f"{value:.2f} {_SIZE_UNITS[unit_index]}"
