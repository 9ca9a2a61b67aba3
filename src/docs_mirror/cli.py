from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path

from .config import ContentDirError, CrawlConfig, resolve_content_dir
from .crawl import run_crawl
from .index import generate_index_from_metadata
from .manifest import METADATA_FILENAME, RESULT_ABORTED, load_metadata
from .rewrite import rewrite_links_in_content

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def _add_content_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--content-dir",
        type=Path,
        default=None,
        help="Mirror directory (default: $CONTENT_DIR or ./content)",
    )
    p.add_argument(
        "--root-dir",
        type=Path,
        default=None,
        help="The content dir must resolve inside this directory (default: cwd)",
    )


def _config_from_args(args: argparse.Namespace) -> CrawlConfig:
    cfg = CrawlConfig.from_env(root_dir=args.root_dir)
    overrides: dict = {}
    if args.content_dir is not None:
        overrides["content_dir"] = args.content_dir
    if getattr(args, "seed_url", None):
        overrides["seed_url"] = args.seed_url
    if getattr(args, "scope_prefix", None):
        overrides["scope_prefix"] = args.scope_prefix
    if getattr(args, "additional_scope_prefix", None) is not None:
        overrides["additional_scope_prefixes"] = tuple(args.additional_scope_prefix)
    if getattr(args, "timeout", None) is not None:
        overrides["timeout_s"] = int(args.timeout)
    if getattr(args, "no_rewrite_links", False):
        overrides["rewrite_links"] = False
    return dataclasses.replace(cfg, **overrides)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="docs-mirror")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    crawl_p = sub.add_parser("crawl", help="Mirror the configured scope")
    crawl_p.add_argument("--seed-url", default=None)
    crawl_p.add_argument("--scope-prefix", default=None)
    crawl_p.add_argument(
        "--additional-scope-prefix",
        action="append",
        default=None,
        help="Repeatable; replaces $ADDITIONAL_SCOPE_PREFIXES",
    )
    crawl_p.add_argument("--timeout", type=int, default=None)
    crawl_p.add_argument(
        "--no-rewrite-links",
        action="store_true",
        help="Skip the absolute-to-relative link rewrite after the crawl",
    )
    _add_content_args(crawl_p)

    rewrite_p = sub.add_parser(
        "rewrite-links",
        help="Rewrite absolute links using the saved URL resolution map",
    )
    _add_content_args(rewrite_p)

    index_p = sub.add_parser("index", help="Write a compact directory index")
    _add_content_args(index_p)
    index_p.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Index file (default: <content-dir>/docs/index.md)",
    )

    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, format=LOG_FORMAT)

    cfg = _config_from_args(args)
    try:
        content_dir = resolve_content_dir(cfg.content_dir, cfg.root_dir)
    except ContentDirError as e:
        print(str(e), file=sys.stderr)
        return 2

    if args.cmd == "crawl":
        metadata = run_crawl(cfg)
        stats = metadata.stats
        print(
            "crawl: "
            f"result={metadata.result} "
            f"success={stats.get('success', 0)} "
            f"skipped={stats.get('skipped', 0)} "
            f"failed={stats.get('failed', 0)}"
        )
        if metadata.result == RESULT_ABORTED:
            print("Aborted: repeated rate limiting", file=sys.stderr)
            return 3
        return 0

    if args.cmd == "rewrite-links":
        metadata = load_metadata(content_dir / METADATA_FILENAME)
        if metadata is None:
            print(
                f"No crawl metadata in {content_dir}; run the crawl first.",
                file=sys.stderr,
            )
            return 2
        stats = rewrite_links_in_content(content_dir, metadata.url_resolution)
        print(
            "rewrite-links: "
            f"scanned={stats.scanned_files} changed={stats.changed_files}"
        )
        return 0

    if args.cmd == "index":
        try:
            index = generate_index_from_metadata(content_dir)
        except (OSError, ValueError) as e:
            print(str(e), file=sys.stderr)
            return 2
        out = args.out or content_dir / "docs" / "index.md"
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(index, encoding="utf-8", newline="\n")
        print(f"Index written to {out} ({len(index.encode('utf-8'))} bytes)")
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
