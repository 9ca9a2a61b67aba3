from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from .config import CrawlConfig
from .content import is_html_content_type, save_content
from .http_client import (
    FetchError,
    FetchNonText,
    FetchOutcome,
    FetchOutOfScope,
    FetchRateLimited,
    FetchSuccess,
    HttpClient,
)
from .manifest import (
    METADATA_FILENAME,
    CrawlMetadata,
    ItemRecord,
    ResolutionEntry,
    build_metadata,
    load_metadata,
    mark_removed_items,
    utc_iso,
    write_metadata,
)
from .rewrite import rewrite_links, rewrite_links_in_content
from .state import MAX_CONSECUTIVE_ERRORS, QueueState
from .urls import (
    UrlScope,
    extract_urls,
    normalize_url,
    saved_path_for_url,
    to_raw_github_url,
)

logger = logging.getLogger(__name__)

TERMINAL_HTTP_STATUSES = {404, 406}


def extract_canonical(html: str) -> str | None:
    soup = BeautifulSoup(html, "html.parser")
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "canonical" in [r.lower() for r in rel]:
            href = str(link.get("href") or "").strip()
            return href or None
    return None


class Crawler:
    """Mirror the configured scope into ``content_dir``.

    One URL is processed per loop iteration. The only state that survives the
    run is the metadata file written at the end.
    """

    def __init__(
        self,
        *,
        http: HttpClient,
        config: CrawlConfig,
        content_dir: Path,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.http = http
        self.cfg = config
        self.content_dir = content_dir
        self.metadata_path = content_dir / METADATA_FILENAME
        self._sleep = sleep

        self.scope = UrlScope(config.scope_prefixes)
        self.state = QueueState()
        self.items: dict[str, ItemRecord] = {}
        self.url_resolution: dict[str, ResolutionEntry] = {}
        self.aborted = False

        # target URL -> URLs that are other names for the same document
        self._aliases: dict[str, set[str]] = {}
        # saved path -> final URL that wrote it this run
        self._saved_by: dict[str, str] = {}
        self._previous_resolution: dict[str, ResolutionEntry] = {}

    def _record(self, key: str, status: str, reason: str) -> None:
        self.items[key] = ItemRecord(
            status=status, status_reason=reason, fetched_at=utc_iso()
        )

    def _resolve(self, url: str, entry: ResolutionEntry) -> None:
        # Aliases chain (HTML page -> canonical -> canonical.md).
        pending = [url]
        seen: set[str] = set()
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            self.url_resolution[current] = entry
            pending.extend(self._aliases.get(current, ()))

    def _register_alias(self, alias: str, target: str) -> None:
        if alias == target:
            return
        self._aliases.setdefault(target, set()).add(alias)
        entry = self.url_resolution.get(target)
        if entry is not None:
            self._resolve(alias, entry)

    def _discover(self, url: str, *, alias_of: str | None = None) -> None:
        normalized = normalize_url(url)
        if normalized is None:
            return
        if not self.scope.is_allowed(normalized):
            if normalized not in self.items:
                logger.info("Skipped out-of-scope URL: %s", normalized)
                self._record(normalized, "skipped", "outOfScope")
            return
        if alias_of is not None:
            self._register_alias(alias_of, normalized)
        self.state.enqueue(normalized)

    def _handle_html(self, result: FetchSuccess) -> bool:
        """Follow HTML pages to their markdown variants; True if handled."""
        final = result.final_url
        if final.startswith(self.cfg.scope_prefix):
            canonical = extract_canonical(result.body)
            if canonical:
                canonical = normalize_url(urljoin(final, canonical))
            if canonical and canonical != final:
                self._discover(canonical, alias_of=final)
                if self.scope.is_allowed(canonical) and not canonical.endswith(".md"):
                    self._discover(canonical + ".md", alias_of=canonical)
            if not final.endswith(".md"):
                self._discover(final + ".md", alias_of=final)
            return True

        if final.startswith("https://github.com/"):
            raw_url = to_raw_github_url(final)
            if raw_url and raw_url.endswith(".md"):
                # raw.githubusercontent.com is fetched directly, not via scope
                self._register_alias(final, raw_url)
                self.state.enqueue(raw_url)
            return True

        return False

    def _on_success(self, url: str, result: FetchSuccess) -> None:
        state = self.state
        final = result.final_url
        redirected = final != url
        already_fetched = redirected and final in state.fetched

        state.reset_rate_limit_streak()
        state.mark_fetched(final)
        if redirected:
            state.mark_fetched(url)
            self._register_alias(url, final)

        if already_fetched:
            logger.info("Skipped redirect to already fetched URL: %s -> %s", url, final)
            self._record(url, "skipped", "redirectDuplicate")
            return

        if is_html_content_type(result.content_type) and self._handle_html(result):
            return

        saved_path = saved_path_for_url(final)
        previous_writer = self._saved_by.get(saved_path)
        if previous_writer is not None and previous_writer != final:
            logger.info("Skipped duplicate of %s: %s", previous_writer, final)
            self._record(final, "skipped", "duplicate")
            self._resolve(final, self.url_resolution[previous_writer])
            return

        body = result.body
        if self.cfg.rewrite_links:
            # Saved copies hold rewritten links; compare in the same form.
            known = {**self._previous_resolution, **self.url_resolution}
            body = rewrite_links(body, saved_path, known, self.content_dir).output
        try:
            change = save_content(final, body, self.content_dir)
        except OSError as e:
            logger.warning("Could not save %s: %s", final, e)
            state.mark_failed(final)
            self._record(final, "failed", "httpError")
            return
        self._saved_by[saved_path] = final
        self._record(saved_path, "success", change.value)
        self._resolve(final, ResolutionEntry(final_url=final, saved_path=saved_path))

        for new_url in extract_urls(result.body, final, self.cfg.scope_prefixes):
            state.enqueue(new_url)

    def _on_rate_limited(self, url: str, result: FetchRateLimited) -> None:
        self.state.record_rate_limited()
        if self.state.rate_limit_exhausted:
            logger.warning(
                "Aborting: %d consecutive 429 responses",
                self.state.consecutive_429_count,
            )
            self.aborted = True
            return
        delay_ms = result.retry_after_ms
        if delay_ms is None:
            delay_ms = self.cfg.default_retry_after_ms
        logger.info("Rate limited, waiting %dms...", delay_ms)
        self._sleep(delay_ms / 1000)
        self.state.requeue(url)

    def _on_error(self, url: str, result: FetchError) -> None:
        state = self.state
        state.reset_rate_limit_streak()
        signature = result.signature
        logger.info("Error fetching %s: %s", url, signature)

        if result.status in TERMINAL_HTTP_STATUSES:
            state.mark_failed(url)
            self._record(url, "failed", "httpError")
            return

        count = state.record_error(url, signature)
        if count >= MAX_CONSECUTIVE_ERRORS:
            logger.warning(
                "Giving up on %s after %d consecutive %s errors",
                url,
                count,
                signature,
            )
            state.mark_failed(url)
            self._record(url, "failed", "httpError")
        else:
            state.requeue(url)

    def _dispatch(self, url: str, result: FetchOutcome) -> None:
        if isinstance(result, FetchSuccess):
            self._on_success(url, result)
        elif isinstance(result, FetchRateLimited):
            self._on_rate_limited(url, result)
        elif isinstance(result, FetchError):
            self._on_error(url, result)
        elif isinstance(result, FetchOutOfScope):
            self.state.reset_rate_limit_streak()
            logger.warning(
                "Skipped out-of-scope redirect: %s -> %s",
                url,
                result.redirected_to,
            )
            self._record(result.original_url, "skipped", "redirectOutOfScope")
        elif isinstance(result, FetchNonText):
            self.state.reset_rate_limit_streak()
            logger.debug("Skipped non-text content: %s (%s)", url, result.content_type)
        else:
            raise TypeError(f"Unhandled fetch outcome: {result!r}")

    def crawl(self) -> CrawlMetadata:
        previous = load_metadata(self.metadata_path)
        previous_items = previous.items if previous is not None else {}
        if previous is not None:
            self._previous_resolution = dict(previous.url_resolution)

        self.state.enqueue(self.cfg.seed_url)

        while self.state and not self.aborted:
            url = self.state.dequeue()
            if url is None:
                break
            result = self.http.fetch(
                url,
                self.cfg.scope_prefixes,
                max_redirects=self.cfg.max_redirects,
            )
            self._dispatch(url, result)

        mark_removed_items(previous_items, self.items)

        url_resolution = {**self._previous_resolution, **self.url_resolution}

        metadata = build_metadata(
            seed_url=self.cfg.seed_url,
            scope_prefix=self.cfg.scope_prefix,
            items=self.items,
            aborted=self.aborted,
            url_resolution=url_resolution,
        )
        write_metadata(self.metadata_path, metadata)
        logger.info("Metadata written to %s", self.metadata_path)

        if self.cfg.rewrite_links:
            rewritten = rewrite_links_in_content(self.content_dir, url_resolution)
            logger.info(
                "Rewrote links in %d of %d files",
                rewritten.changed_files,
                rewritten.scanned_files,
            )

        logger.info(
            "Done. Fetched %d pages (result=%s).",
            len(self.state.fetched),
            metadata.result,
        )
        return metadata


def run_crawl(
    config: CrawlConfig,
    *,
    http: HttpClient | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> CrawlMetadata:
    """Validate the content dir, then crawl. Raises ContentDirError first."""
    content_dir = config.resolved_content_dir()
    if http is None:
        http = HttpClient(requests.Session(), timeout_s=config.timeout_s)
    crawler = Crawler(http=http, config=config, content_dir=content_dir, sleep=sleep)
    return crawler.crawl()
