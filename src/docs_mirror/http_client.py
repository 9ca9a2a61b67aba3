from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Union
from urllib.parse import urljoin

import requests
from requests import exceptions as req_exc

from .content import decode_body, is_text_content_type
from .urls import UrlScope

logger = logging.getLogger(__name__)

DEFAULT_MAX_REDIRECTS = 10


@dataclass(frozen=True)
class FetchSuccess:
    final_url: str
    body: str
    content_type: str


@dataclass(frozen=True)
class FetchOutOfScope:
    original_url: str
    redirected_to: str


@dataclass(frozen=True)
class FetchRateLimited:
    retry_after_ms: int | None


@dataclass(frozen=True)
class FetchError:
    reason: str | None = None
    status: int | None = None

    @property
    def signature(self) -> str:
        """Key used to detect the same failure recurring for one URL."""
        if self.status is not None:
            return str(self.status)
        return self.reason or "unknown"


@dataclass(frozen=True)
class FetchNonText:
    content_type: str
    url: str


FetchOutcome = Union[
    FetchSuccess,
    FetchOutOfScope,
    FetchRateLimited,
    FetchError,
    FetchNonText,
]


def parse_retry_after_ms(value: str | None) -> int | None:
    """``Retry-After`` as a delay in milliseconds (integer seconds only)."""
    if not value:
        return None
    try:
        seconds = int(value.strip())
    except ValueError:
        return None
    if seconds < 0:
        return None
    return seconds * 1000


class HttpClient:
    """One logical fetch per call, following in-scope redirects by hand.

    No retries happen here; the crawl loop owns the retry policy.
    """

    def __init__(
        self,
        session: requests.Session,
        *,
        timeout_s: int = 45,
    ) -> None:
        self._session = session
        self._timeout_s = timeout_s

    def fetch(
        self,
        url: str,
        scope_prefixes: Iterable[str],
        *,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
    ) -> FetchOutcome:
        scope = UrlScope(tuple(scope_prefixes))
        current = url
        hops = 0

        while True:
            try:
                resp = self._session.get(
                    current,
                    allow_redirects=False,
                    timeout=self._timeout_s,
                    stream=True,
                )
            except req_exc.RequestException as e:
                return FetchError(reason=str(e))

            try:
                status = int(resp.status_code)

                if 300 <= status < 400:
                    location = resp.headers.get("location")
                    if not location:
                        return FetchError(reason="Redirect without Location header")
                    next_url = urljoin(current, location)
                    if not scope.is_allowed(next_url):
                        return FetchOutOfScope(original_url=url, redirected_to=next_url)
                    hops += 1
                    if hops > max_redirects:
                        return FetchError(reason="Too many redirects")
                    logger.debug("Redirect %s -> %s", current, next_url)
                    current = next_url
                    continue

                if status == 429:
                    return FetchRateLimited(
                        retry_after_ms=parse_retry_after_ms(
                            resp.headers.get("retry-after")
                        )
                    )

                if not 200 <= status < 300:
                    return FetchError(status=status)

                content_type = resp.headers.get("content-type") or ""
                if not is_text_content_type(content_type):
                    return FetchNonText(content_type=content_type, url=current)

                try:
                    raw = resp.content
                except req_exc.RequestException as e:
                    return FetchError(reason=str(e))
                return FetchSuccess(
                    final_url=current,
                    body=decode_body(raw, content_type),
                    content_type=content_type,
                )
            finally:
                resp.close()
