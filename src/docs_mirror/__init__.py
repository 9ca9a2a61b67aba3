"""docs-mirror core library.

Incrementally mirrors a scoped part of a documentation site to local files,
keeping per-URL provenance in ``crawl-metadata.json`` between runs so unchanged
pages are not rewritten and vanished pages are flagged instead of deleted.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
