"""Run configuration for a mirror crawl.

Environment variables (read only by :meth:`CrawlConfig.from_env`):

- ``SEED_URL``: first URL fetched.
- ``SCOPE_PREFIX``: primary scope prefix, also recorded in the metadata.
- ``ADDITIONAL_SCOPE_PREFIXES``: comma separated extra prefixes.
- ``CONTENT_DIR``: where mirrored files and metadata live, relative to the root.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

DEFAULT_SEED_URL = "https://code.claude.com/docs/llms.txt"
DEFAULT_SCOPE_PREFIX = "https://code.claude.com/docs/en/"
DEFAULT_ADDITIONAL_SCOPE_PREFIXES: tuple[str, ...] = (
    "https://github.com/aws-solutions-library-samples",
)
DEFAULT_CONTENT_DIR = "content"


class ContentDirError(ValueError):
    """The content directory resolves outside the allowed root."""


def resolve_content_dir(content_dir: Path | str, root_dir: Path | str) -> Path:
    root = Path(root_dir).resolve()
    path = Path(content_dir)
    if not path.is_absolute():
        path = root / path
    path = path.resolve()
    if path == root or not path.is_relative_to(root):
        raise ContentDirError(f"CONTENT_DIR must be within root: {root} (got {path})")
    return path


def _split_prefixes(raw: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class CrawlConfig:
    seed_url: str = DEFAULT_SEED_URL
    scope_prefix: str = DEFAULT_SCOPE_PREFIX
    additional_scope_prefixes: tuple[str, ...] = DEFAULT_ADDITIONAL_SCOPE_PREFIXES
    content_dir: Path = Path(DEFAULT_CONTENT_DIR)
    root_dir: Path = field(default_factory=Path.cwd)
    max_redirects: int = 10
    timeout_s: int = 45
    default_retry_after_ms: int = 5000
    rewrite_links: bool = True

    @property
    def scope_prefixes(self) -> tuple[str, ...]:
        return (self.scope_prefix, *self.additional_scope_prefixes)

    def resolved_content_dir(self) -> Path:
        return resolve_content_dir(self.content_dir, self.root_dir)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        root_dir: Path | None = None,
    ) -> CrawlConfig:
        env = os.environ if environ is None else environ
        extra = env.get("ADDITIONAL_SCOPE_PREFIXES")
        return cls(
            seed_url=env.get("SEED_URL") or DEFAULT_SEED_URL,
            scope_prefix=env.get("SCOPE_PREFIX") or DEFAULT_SCOPE_PREFIX,
            additional_scope_prefixes=(
                DEFAULT_ADDITIONAL_SCOPE_PREFIXES
                if extra is None
                else _split_prefixes(extra)
            ),
            content_dir=Path(env.get("CONTENT_DIR") or DEFAULT_CONTENT_DIR),
            root_dir=root_dir if root_dir is not None else Path.cwd(),
        )
