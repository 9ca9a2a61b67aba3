from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, MutableMapping

logger = logging.getLogger(__name__)

METADATA_FILENAME = "crawl-metadata.json"

STATUS_REASONS: dict[str, tuple[str, ...]] = {
    "success": ("new", "changed", "unchanged", "removed"),
    "skipped": ("outOfScope", "duplicate", "redirectOutOfScope", "redirectDuplicate"),
    "failed": ("httpError",),
}

RESULT_SUCCESS = "success"
RESULT_PARTIAL = "partial"
RESULT_ABORTED = "aborted"


def utc_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def relpath_posix(path: Path, base_dir: Path) -> str:
    rel = path.relative_to(base_dir)
    return rel.as_posix()


@dataclass(frozen=True)
class ItemRecord:
    status: str
    status_reason: str
    fetched_at: str

    def __post_init__(self) -> None:
        allowed = STATUS_REASONS.get(self.status)
        if allowed is None:
            raise ValueError(f"Unknown item status: {self.status!r}")
        if self.status_reason not in allowed:
            raise ValueError(
                f"Invalid statusReason {self.status_reason!r} "
                f"for status {self.status!r}"
            )

    def to_dict(self) -> dict[str, str]:
        return {
            "status": self.status,
            "statusReason": self.status_reason,
            "fetchedAt": self.fetched_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ItemRecord:
        return cls(
            status=str(data["status"]),
            status_reason=str(data["statusReason"]),
            fetched_at=str(data.get("fetchedAt") or ""),
        )


@dataclass(frozen=True)
class ResolutionEntry:
    final_url: str
    saved_path: str

    def to_dict(self) -> dict[str, str]:
        return {"finalUrl": self.final_url, "savedPath": self.saved_path}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResolutionEntry:
        return cls(final_url=str(data["finalUrl"]), saved_path=str(data["savedPath"]))


@dataclass
class CrawlMetadata:
    seed_url: str
    scope_prefix: str
    last_update: str
    result: str
    stats: dict[str, int]
    items: dict[str, ItemRecord]
    url_resolution: dict[str, ResolutionEntry] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "seedUrl": self.seed_url,
            "scopePrefix": self.scope_prefix,
            "lastUpdate": self.last_update,
            "result": self.result,
            "stats": dict(self.stats),
            "items": {k: v.to_dict() for k, v in self.items.items()},
            "urlResolution": {k: v.to_dict() for k, v in self.url_resolution.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CrawlMetadata:
        items: dict[str, ItemRecord] = {}
        for key, raw in (data.get("items") or {}).items():
            try:
                items[str(key)] = ItemRecord.from_dict(raw)
            except (KeyError, TypeError, ValueError, AttributeError):
                continue

        resolution: dict[str, ResolutionEntry] = {}
        for key, raw in (data.get("urlResolution") or {}).items():
            try:
                resolution[str(key)] = ResolutionEntry.from_dict(raw)
            except (KeyError, TypeError, AttributeError):
                continue

        stats = data.get("stats") or {}
        return cls(
            seed_url=str(data.get("seedUrl") or ""),
            scope_prefix=str(data.get("scopePrefix") or ""),
            last_update=str(data.get("lastUpdate") or ""),
            result=str(data.get("result") or ""),
            stats={str(k): int(v) for k, v in stats.items()},
            items=items,
            url_resolution=resolution,
        )


def _empty_stats() -> dict[str, int]:
    stats = {"uniqueUrls": 0}
    for status, reasons in STATUS_REASONS.items():
        stats[status] = 0
        for reason in reasons:
            stats[f"{status}.{reason}"] = 0
    return stats


def compute_stats(items: Mapping[str, ItemRecord]) -> dict[str, int]:
    stats = _empty_stats()
    stats["uniqueUrls"] = len(items)
    for item in items.values():
        stats[item.status] += 1
        stats[f"{item.status}.{item.status_reason}"] += 1
    return stats


def compute_result(items: Mapping[str, ItemRecord], *, aborted: bool) -> str:
    if aborted:
        return RESULT_ABORTED
    if any(item.status == "failed" for item in items.values()):
        return RESULT_PARTIAL
    return RESULT_SUCCESS


def build_metadata(
    *,
    seed_url: str,
    scope_prefix: str,
    items: Mapping[str, ItemRecord],
    aborted: bool,
    url_resolution: Mapping[str, ResolutionEntry] | None = None,
) -> CrawlMetadata:
    """Derive the persisted run report from the final ``items`` map.

    ``stats`` and ``result`` are computed from ``items`` alone.
    """

    return CrawlMetadata(
        seed_url=seed_url,
        scope_prefix=scope_prefix,
        last_update=utc_iso(),
        result=compute_result(items, aborted=aborted),
        stats=compute_stats(items),
        items=dict(items),
        url_resolution=dict(url_resolution or {}),
    )


def mark_removed_items(
    previous_items: Mapping[str, ItemRecord],
    current_items: MutableMapping[str, ItemRecord],
) -> None:
    """Flag previously successful entries not revisited in this run."""
    for key, item in previous_items.items():
        if item.status == "success" and key not in current_items:
            current_items[key] = ItemRecord(
                status="success",
                status_reason="removed",
                fetched_at=item.fetched_at,
            )


def load_json(path: Path) -> dict | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def load_metadata(path: Path) -> CrawlMetadata | None:
    data = load_json(path)
    if data is None:
        return None
    try:
        return CrawlMetadata.from_dict(data)
    except (TypeError, ValueError, AttributeError):
        logger.warning("Ignoring malformed metadata at %s", path)
        return None


def write_metadata(path: Path, metadata: CrawlMetadata) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(metadata.to_dict(), indent=2, ensure_ascii=False) + "\n"
    fd, tmp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
