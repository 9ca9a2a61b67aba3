from __future__ import annotations

import logging
import re
from enum import Enum
from pathlib import Path
from typing import Final

from .urls import saved_path_for_url

logger = logging.getLogger(__name__)

_TEXT_TYPE_MARKERS: Final[tuple[str, ...]] = (
    "application/json",
    "application/xml",
    "application/javascript",
)

_CHARSET = re.compile(r"charset=[\"']?([A-Za-z0-9._\-]+)", re.IGNORECASE)


class SaveResult(str, Enum):
    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


def is_text_content_type(content_type: str | None) -> bool:
    ct = (content_type or "").lower()
    return ct.startswith("text/") or any(m in ct for m in _TEXT_TYPE_MARKERS)


def is_html_content_type(content_type: str | None) -> bool:
    return "text/html" in (content_type or "").lower()


def decode_body(body: bytes, content_type: str | None) -> str:
    # Docs hosts routinely omit the charset; UTF-8 is the only sane default.
    m = _CHARSET.search(content_type or "")
    encoding = m.group(1) if m else "utf-8"
    try:
        return body.decode(encoding, errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


def save_content(url: str, body: str, content_dir: Path) -> SaveResult:
    """Persist ``body`` under the saved path derived from ``url``.

    Identical content already on disk is left alone (no write).
    """

    path = content_dir / saved_path_for_url(url)
    data = body.encode("utf-8")

    if path.exists():
        if path.read_bytes() == data:
            return SaveResult.UNCHANGED
        path.write_bytes(data)
        logger.info("Saved (changed): %s", path)
        return SaveResult.CHANGED

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    logger.info("Saved: %s", path)
    return SaveResult.NEW
