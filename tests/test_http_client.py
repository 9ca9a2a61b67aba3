from __future__ import annotations

import pytest
import requests

from conftest import FakeResponse, FakeSession, redirect, text
from docs_mirror.http_client import (
    FetchError,
    FetchNonText,
    FetchOutOfScope,
    FetchRateLimited,
    FetchSuccess,
    HttpClient,
    parse_retry_after_ms,
)

SCOPE = ["https://site.test/docs/"]


def _client(routes: dict) -> tuple[HttpClient, FakeSession]:
    session = FakeSession(routes)
    return HttpClient(session, timeout_s=5), session  # type: ignore[arg-type]


def test_success_returns_body_and_content_type():
    client, session = _client({"https://site.test/docs/a": text("hello")})

    result = client.fetch("https://site.test/docs/a", SCOPE)

    assert result == FetchSuccess(
        final_url="https://site.test/docs/a",
        body="hello",
        content_type="text/plain; charset=utf-8",
    )
    assert session.kwargs[0]["allow_redirects"] is False
    assert session.kwargs[0]["timeout"] == 5


def test_in_scope_redirect_is_followed():
    client, session = _client(
        {
            "https://site.test/docs/old": redirect("https://site.test/docs/new"),
            "https://site.test/docs/new": text("moved"),
        }
    )

    result = client.fetch("https://site.test/docs/old", SCOPE)

    assert isinstance(result, FetchSuccess)
    assert result.final_url == "https://site.test/docs/new"
    assert session.calls == [
        "https://site.test/docs/old",
        "https://site.test/docs/new",
    ]


def test_relative_location_resolves_against_current_url():
    client, _ = _client(
        {
            "https://site.test/docs/a/b": redirect("../c", status=302),
            "https://site.test/docs/c": text("c"),
        }
    )

    result = client.fetch("https://site.test/docs/a/b", SCOPE)

    assert isinstance(result, FetchSuccess)
    assert result.final_url == "https://site.test/docs/c"


def test_out_of_scope_redirect_stops_before_following():
    client, session = _client(
        {
            "https://site.test/docs/a": redirect("https://site.test/docs/b"),
            "https://site.test/docs/b": redirect("https://elsewhere.test/x"),
        }
    )

    result = client.fetch("https://site.test/docs/a", SCOPE)

    assert result == FetchOutOfScope(
        original_url="https://site.test/docs/a",
        redirected_to="https://elsewhere.test/x",
    )
    assert "https://elsewhere.test/x" not in session.calls


def test_redirect_into_any_configured_prefix_is_followed():
    client, _ = _client(
        {
            "https://site.test/docs/a": redirect("https://repo.test/org/readme.md"),
            "https://repo.test/org/readme.md": text("# readme"),
        }
    )

    result = client.fetch("https://site.test/docs/a", SCOPE + ["https://repo.test/org"])

    assert isinstance(result, FetchSuccess)
    assert result.final_url == "https://repo.test/org/readme.md"


def test_redirect_without_location_is_an_error():
    client, _ = _client({"https://site.test/docs/a": redirect(None)})

    result = client.fetch("https://site.test/docs/a", SCOPE)

    assert result == FetchError(reason="Redirect without Location header")


def test_redirect_loop_hits_the_limit():
    client, session = _client(
        {
            "https://site.test/docs/a": redirect("https://site.test/docs/b"),
            "https://site.test/docs/b": redirect("https://site.test/docs/a"),
        }
    )

    result = client.fetch("https://site.test/docs/a", SCOPE, max_redirects=4)

    assert result == FetchError(reason="Too many redirects")
    assert len(session.calls) == 5


def test_rate_limited_with_retry_after_header():
    client, _ = _client(
        {"https://site.test/docs/a": FakeResponse(429, "", {"Retry-After": "5"})}
    )

    assert client.fetch("https://site.test/docs/a", SCOPE) == FetchRateLimited(
        retry_after_ms=5000
    )


def test_rate_limited_without_retry_after_header():
    client, _ = _client({"https://site.test/docs/a": FakeResponse(429, "")})

    assert client.fetch("https://site.test/docs/a", SCOPE) == FetchRateLimited(
        retry_after_ms=None
    )


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("5", 5000),
        (" 12 ", 12000),
        ("0", 0),
        (None, None),
        ("", None),
        ("soon", None),
        ("-1", None),
        ("Wed, 21 Oct 2015 07:28:00 GMT", None),
    ],
)
def test_parse_retry_after_ms(value, expected):
    assert parse_retry_after_ms(value) == expected


@pytest.mark.parametrize("status", [404, 406, 500, 503])
def test_non_2xx_status_is_an_error(status):
    client, _ = _client({"https://site.test/docs/a": FakeResponse(status, "nope")})

    assert client.fetch("https://site.test/docs/a", SCOPE) == FetchError(status=status)


def test_non_text_content_is_reported_without_reading_the_body():
    client, session = _client(
        {
            "https://site.test/docs/logo.png": FakeResponse(
                200, b"\x89PNG", {"Content-Type": "image/png"}
            )
        }
    )

    result = client.fetch("https://site.test/docs/logo.png", SCOPE)

    assert result == FetchNonText(
        content_type="image/png", url="https://site.test/docs/logo.png"
    )
    assert session.responses[0].body_read is False
    assert session.responses[0].closed is True


@pytest.mark.parametrize(
    "content_type",
    [
        "text/markdown",
        "TEXT/HTML; charset=UTF-8",
        "application/json",
        "application/xml; charset=utf-8",
        "application/javascript",
    ],
)
def test_text_families_are_accepted(content_type):
    client, _ = _client(
        {"https://site.test/docs/a": FakeResponse(200, "x", {"Content-Type": content_type})}
    )

    assert isinstance(client.fetch("https://site.test/docs/a", SCOPE), FetchSuccess)


def test_missing_content_type_is_non_text():
    client, _ = _client({"https://site.test/docs/a": FakeResponse(200, "x")})

    result = client.fetch("https://site.test/docs/a", SCOPE)

    assert isinstance(result, FetchNonText)
    assert result.content_type == ""


def test_transport_failure_becomes_an_error(connection_error):
    client, _ = _client({"https://site.test/docs/a": connection_error})

    result = client.fetch("https://site.test/docs/a", SCOPE)

    assert result == FetchError(reason="Connection refused")


def test_timeout_becomes_an_error():
    client, _ = _client({"https://site.test/docs/a": requests.Timeout("timed out")})

    result = client.fetch("https://site.test/docs/a", SCOPE)

    assert isinstance(result, FetchError)
    assert result.reason == "timed out"
    assert result.status is None


def test_error_signature_prefers_status():
    assert FetchError(status=503, reason="ignored").signature == "503"
    assert FetchError(reason="boom").signature == "boom"
    assert FetchError().signature == "unknown"


def test_body_is_decoded_as_utf8_when_charset_is_missing():
    client, _ = _client(
        {
            "https://site.test/docs/a": FakeResponse(
                200, "café".encode("utf-8"), {"Content-Type": "text/plain"}
            )
        }
    )

    result = client.fetch("https://site.test/docs/a", SCOPE)

    assert isinstance(result, FetchSuccess)
    assert result.body == "café"
