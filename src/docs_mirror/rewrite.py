from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .manifest import ResolutionEntry, relpath_posix
from .urls import split_fragment

logger = logging.getLogger(__name__)

REWRITE_SUFFIXES = (".md", ".txt")

_FENCE = re.compile(r"^(```|~~~)")
_MD_LINK = re.compile(r"\[[^\]]*\]\(([^)]*)\)")
_ABSOLUTE_HTTP = re.compile(r"^https?://", re.IGNORECASE)


@dataclass(frozen=True)
class RewriteResult:
    output: str
    changed: bool


@dataclass
class RewriteStats:
    scanned_files: int = 0
    changed_files: int = 0
    changed_paths: list[str] = field(default_factory=list)


def relative_link(from_saved_path: str, to_saved_path: str) -> str:
    rel = posixpath.relpath(to_saved_path, posixpath.dirname(from_saved_path) or ".")
    if not rel.startswith("."):
        rel = "./" + rel
    return rel


def _split_destination(inner: str) -> tuple[str, str, bool] | None:
    """Return (destination, trailing title, angle-bracketed)."""
    trimmed = inner.strip()
    if not trimmed:
        return None
    if trimmed.startswith("<"):
        end = trimmed.find(">")
        if end == -1:
            return None
        return trimmed[1:end], trimmed[end + 1 :], True
    parts = re.split(r"(\s)", trimmed, maxsplit=1)
    if len(parts) == 1:
        return trimmed, "", False
    return parts[0], parts[1] + parts[2], False


def rewrite_links(
    document: str,
    from_path: str,
    url_resolution: Mapping[str, ResolutionEntry],
    content_root: Path,
) -> RewriteResult:
    """Point absolute links at locally saved copies.

    ``from_path`` is the document's saved path relative to ``content_root``.
    Lines inside fenced code blocks are left as they are.
    """

    changed = False
    in_fence = False
    lines = document.split("\n")

    def _replace(m: re.Match[str]) -> str:
        nonlocal changed
        full, inner = m.group(0), m.group(1)
        parsed = _split_destination(inner)
        if parsed is None:
            return full
        destination, title, angled = parsed
        if not _ABSOLUTE_HTTP.match(destination):
            return full

        url, fragment = split_fragment(destination)
        entry = url_resolution.get(url)
        if entry is None or not (content_root / entry.saved_path).exists():
            return full

        target = relative_link(from_path, entry.saved_path) + fragment
        if angled:
            target = f"<{target}>"
        changed = True
        # Only the destination changes; surrounding whitespace is kept.
        leading = inner[: len(inner) - len(inner.lstrip())]
        trailing = inner[len(inner.rstrip()) :]
        return (
            full[: m.start(1) - m.start(0)]
            + leading
            + target
            + title
            + trailing
            + ")"
        )

    for i, line in enumerate(lines):
        if _FENCE.match(line.lstrip()):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        lines[i] = _MD_LINK.sub(_replace, line)

    return RewriteResult(output="\n".join(lines), changed=changed)


def rewrite_links_in_content(
    content_dir: Path,
    url_resolution: Mapping[str, ResolutionEntry],
) -> RewriteStats:
    content_dir = content_dir.resolve()
    stats = RewriteStats()
    if not content_dir.is_dir():
        return stats

    for path in sorted(content_dir.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in REWRITE_SUFFIXES:
            continue
        rel = relpath_posix(path, content_dir)
        text = path.read_bytes().decode("utf-8", errors="replace")
        stats.scanned_files += 1

        result = rewrite_links(text, rel, url_resolution, content_dir)
        if not result.changed:
            continue
        path.write_bytes(result.output.encode("utf-8"))
        stats.changed_files += 1
        stats.changed_paths.append(rel)
        logger.info("Rewrote links: %s", rel)

    return stats
