from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

from metadata_store import TrackedItem
from utils import atomic_write_text

MAP_EXTENSION = ".bsp"


def extract_map_name(item: TrackedItem) -> Optional[str]:
    for tracked in item.files:
        if tracked.relative_path.lower().endswith(MAP_EXTENSION):
            stem = PurePosixPath(tracked.relative_path.replace("\\", "/")).stem
            return stem or None
    return None


def render_workshop_maps(items: Iterable[TrackedItem]) -> str:
    lines = ['"WorkshopMaps"', "{"]
    for item in sorted(items, key=lambda value: value.id):
        map_name = extract_map_name(item)
        if map_name is None:
            continue
        lines.append(f'\t"{map_name}"\t\t"{item.id}"')
    lines.append("}")
    return "\n".join(lines) + "\n"


def write_workshop_maps(path: Path, items: Iterable[TrackedItem]) -> None:
    content = render_workshop_maps(items)
    atomic_write_text(Path(path), content)
    logging.debug("Workshop maps written to %s", path)
