from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from .urls import normalize_url

MAX_CONSECUTIVE_ERRORS = 3
MAX_CONSECUTIVE_RATE_LIMITS = 3


@dataclass
class ErrorStreak:
    count: int
    signature: str


@dataclass
class QueueState:
    """Worklist and bookkeeping for a single crawl invocation.

    A URL lives in at most one of ``queued``, ``fetched`` and ``failed``;
    ``queued`` always mirrors the contents of ``queue``.
    """

    queue: deque[str] = field(default_factory=deque)
    queued: set[str] = field(default_factory=set)
    fetched: set[str] = field(default_factory=set)
    failed: set[str] = field(default_factory=set)
    consecutive_errors_by_url: dict[str, ErrorStreak] = field(default_factory=dict)
    consecutive_429_count: int = 0

    def __len__(self) -> int:
        return len(self.queue)

    def __bool__(self) -> bool:
        return bool(self.queue)

    def is_known(self, url: str) -> bool:
        return url in self.queued or url in self.fetched or url in self.failed

    def enqueue(self, url: str) -> bool:
        normalized = normalize_url(url)
        if normalized is None or self.is_known(normalized):
            return False
        self.queue.append(normalized)
        self.queued.add(normalized)
        return True

    def dequeue(self) -> str | None:
        if not self.queue:
            return None
        url = self.queue.popleft()
        self.queued.discard(url)
        return url

    def requeue(self, url: str) -> None:
        # Tail, not head: one failing URL must not starve the rest.
        if url in self.queued:
            return
        self.queue.append(url)
        self.queued.add(url)

    def _unqueue(self, url: str) -> None:
        if url in self.queued:
            self.queued.discard(url)
            self.queue.remove(url)

    def mark_fetched(self, url: str) -> None:
        self._unqueue(url)
        self.failed.discard(url)
        self.fetched.add(url)
        self.consecutive_errors_by_url.pop(url, None)

    def mark_failed(self, url: str) -> None:
        self._unqueue(url)
        self.fetched.discard(url)
        self.failed.add(url)

    def record_error(self, url: str, signature: str) -> int:
        """Count consecutive identical errors for ``url``; returns the streak."""
        prev = self.consecutive_errors_by_url.get(url)
        if prev is not None and prev.signature == signature:
            prev.count += 1
            return prev.count
        self.consecutive_errors_by_url[url] = ErrorStreak(1, signature)
        return 1

    def record_rate_limited(self) -> int:
        self.consecutive_429_count += 1
        return self.consecutive_429_count

    def reset_rate_limit_streak(self) -> None:
        self.consecutive_429_count = 0

    @property
    def rate_limit_exhausted(self) -> bool:
        return self.consecutive_429_count >= MAX_CONSECUTIVE_RATE_LIMITS
