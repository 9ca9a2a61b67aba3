from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable
from urllib.parse import ParseResult, urljoin, urlparse, urlunparse

INDEX_FILENAME = "index.txt"

_SCHEME_PREFIX = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")

_MD_INLINE_LINK = re.compile(r"\[[^\]]*\]\(([^)]+)\)")
_MD_REFERENCE_DEF = re.compile(r"^\[[^\]]+\]:\s*(\S+)", re.MULTILINE)
_HTML_HREF = re.compile(r"href=[\"']([^\"']+)[\"']", re.IGNORECASE)
_BARE_HTTPS = re.compile(r"https://[^\s<>\"')\]]+")

_GITHUB_BLOB = re.compile(r"^https://github\.com/([^/]+/[^/]+)/blob/(.+)$")


def normalize_url(raw_url: str) -> str | None:
    """Normalize a URL for de-duplication.

    - Lowercases scheme + hostname.
    - Strips fragments.
    - Gives an empty path on a host the root path ``/``.

    Returns None when the input is not an absolute URL.
    """

    try:
        parsed: ParseResult = urlparse(raw_url.strip())
    except ValueError:
        return None
    scheme = (parsed.scheme or "").lower()
    netloc = (parsed.netloc or "").lower()
    if not scheme or not netloc:
        return None

    parsed = parsed._replace(
        scheme=scheme,
        netloc=netloc,
        path=parsed.path or "/",
        fragment="",
    )
    return urlunparse(parsed)


def split_fragment(url: str) -> tuple[str, str]:
    """Split ``url`` into (url without fragment, ``#fragment`` or "")."""
    head, sep, tail = url.partition("#")
    if not sep:
        return url, ""
    return head, "#" + tail


@dataclass(frozen=True)
class UrlScope:
    prefixes: tuple[str, ...]

    def is_allowed(self, url: str) -> bool:
        return any(url.startswith(prefix) for prefix in self.prefixes)


def saved_path_for_url(url: str) -> str:
    """Deterministic POSIX path (relative to the content dir) for ``url``.

    host + path segments; directory-style URLs and extension-less paths get
    ``index.txt`` appended. Dot segments are dropped so the path never climbs
    out of its host directory.
    """

    parsed = urlparse(url)
    host = parsed.netloc.rsplit("@", 1)[-1]
    segments = [s for s in parsed.path.split("/") if s not in {"", ".", ".."}]
    path = PurePosixPath(host, *segments)
    if parsed.path.endswith("/") or not path.suffix or not segments:
        path = path / INDEX_FILENAME
    return path.as_posix()


def to_raw_github_url(url: str) -> str | None:
    m = _GITHUB_BLOB.match(url)
    if not m:
        return None
    return f"https://raw.githubusercontent.com/{m.group(1)}/{m.group(2)}"


def _inline_destination(raw: str) -> str:
    # [text](<url> "title") and [text](url "title") both carry a title.
    raw = raw.strip()
    if raw.startswith("<") and ">" in raw:
        return raw[1 : raw.index(">")]
    return raw.split(None, 1)[0] if raw else raw


def _candidate_strings(body: str) -> Iterable[str]:
    for m in _MD_INLINE_LINK.finditer(body):
        yield _inline_destination(m.group(1))
    for m in _MD_REFERENCE_DEF.finditer(body):
        yield m.group(1).strip()
    for m in _HTML_HREF.finditer(body):
        yield m.group(1).strip()
    for m in _BARE_HTTPS.finditer(body):
        yield m.group(0)


def _resolve(raw: str, base_url: str) -> str | None:
    if not raw:
        return None
    if "://" in raw and not _SCHEME_PREFIX.match(raw):
        return None
    try:
        resolved = urljoin(base_url, raw)
    except ValueError:
        return None
    return normalize_url(resolved)


def extract_urls(
    body: str,
    base_url: str,
    scope_prefixes: Iterable[str],
) -> list[str]:
    """Find in-scope links in a markdown / HTML / plain-text body.

    Recognizes markdown inline links, markdown reference definitions, HTML
    ``href`` attributes and bare ``https://`` tokens. Targets are resolved
    against ``base_url``, fragments stripped, and only URLs starting with one
    of ``scope_prefixes`` are kept. Malformed targets are dropped.
    """

    scope = UrlScope(tuple(scope_prefixes))
    found: dict[str, None] = {}
    for raw in dict.fromkeys(_candidate_strings(body)):
        url = _resolve(raw, base_url)
        if url is None or not scope.is_allowed(url):
            continue
        found[url] = None
    return list(found)
