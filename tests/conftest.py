from __future__ import annotations

from pathlib import Path

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from docs_mirror.config import CrawlConfig
from docs_mirror.http_client import HttpClient


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        body: str | bytes = b"",
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        self.body_read = False
        self.closed = False

    @property
    def content(self) -> bytes:
        self.body_read = True
        return self._body

    def close(self) -> None:
        self.closed = True


def text(body: str, content_type: str = "text/plain; charset=utf-8") -> FakeResponse:
    return FakeResponse(200, body, {"Content-Type": content_type})


def redirect(location: str | None, status: int = 301) -> FakeResponse:
    headers = {"Location": location} if location is not None else {}
    return FakeResponse(status, b"", headers)


class FakeSession:
    """Stands in for requests.Session; routes URLs to canned responses.

    A route value may be a response, an exception instance, or a list of
    either (consumed in order, last one repeats).
    """

    def __init__(self, routes: dict | None = None) -> None:
        self.routes: dict = dict(routes or {})
        self.calls: list[str] = []
        self.kwargs: list[dict] = []
        self.responses: list[FakeResponse] = []

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.calls.append(url)
        self.kwargs.append(kwargs)
        route = self.routes.get(url)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            route = FakeResponse(404, "Not Found", {"Content-Type": "text/plain"})
        if isinstance(route, Exception):
            raise route
        # Fresh object per call so body_read/closed reflect this request.
        resp = FakeResponse(route.status_code, route._body, dict(route.headers))
        self.responses.append(resp)
        return resp


@pytest.fixture()
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture()
def http(fake_session: FakeSession) -> HttpClient:
    return HttpClient(fake_session, timeout_s=5)  # type: ignore[arg-type]


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def make_config(tmp_path: Path):
    def _make(**overrides) -> CrawlConfig:
        values = {
            "seed_url": "https://site.test/docs/",
            "scope_prefix": "https://site.test/docs/",
            "additional_scope_prefixes": (),
            "content_dir": Path("content"),
            "root_dir": tmp_path,
        }
        values.update(overrides)
        return CrawlConfig(**values)

    return _make


@pytest.fixture()
def connection_error() -> requests.ConnectionError:
    return requests.ConnectionError("Connection refused")
