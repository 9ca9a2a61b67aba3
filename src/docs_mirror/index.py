from __future__ import annotations

import posixpath
from pathlib import Path
from typing import Iterable

from .manifest import METADATA_FILENAME, load_metadata

INDEX_HEADER = (
    "[Docs Mirror Index]",
    "root: .",
    "IMPORTANT: Read files on demand. Use this index to locate the right "
    "file, then read only that file.",
    "",
)


def _group_by_directory(saved_paths: Iterable[str]) -> dict[str, list[str]]:
    groups: dict[str, list[str]] = {}
    for saved_path in saved_paths:
        groups.setdefault(posixpath.dirname(saved_path), []).append(
            posixpath.basename(saved_path)
        )
    for files in groups.values():
        files.sort()
    return groups


def generate_index(saved_paths: Iterable[str]) -> str:
    """Compact ``dir:{file1,file2}`` listing, one directory per line."""
    groups = _group_by_directory(saved_paths)
    lines = list(INDEX_HEADER)
    for directory in sorted(groups):
        lines.append(f"{directory}:{{{','.join(groups[directory])}}}")
    return "\n".join(lines) + "\n"


def generate_index_from_metadata(content_dir: Path) -> str:
    metadata_path = content_dir / METADATA_FILENAME
    if not metadata_path.exists():
        raise FileNotFoundError(
            f"Crawl metadata not found at {metadata_path}. Run the crawl first."
        )
    metadata = load_metadata(metadata_path)
    if metadata is None:
        raise ValueError(f"Crawl metadata is malformed: {metadata_path}")

    saved_paths = [
        key
        for key, item in metadata.items.items()
        if item.status == "success" and item.status_reason != "removed"
    ]
    return generate_index(saved_paths)
