"""Tests for the compose (mailto/Gmail) and HTTP transports."""

from __future__ import annotations

import json
import webbrowser
from urllib.parse import parse_qs, unquote, urlsplit

import httpx
import pytest

from ratetrack.config import Settings
from ratetrack.transport import (
    ComposeTransport,
    HttpTransport,
    OutgoingMessage,
    build_transport,
    gmail_url,
    mailto_url,
)

MSG = OutgoingMessage(["a@example.com", "b@example.com"], "Weekly Work Ratings (x to y)", "line 1\nline 2 & more")
ENDPOINT = "https://mail.example.com/api/send-rating-report"


# ---- URLs ----


def test_mailto_url_encodes_subject_and_body():
    url = mailto_url(MSG)
    assert url.startswith("mailto:a@example.com,b@example.com?")
    q = parse_qs(urlsplit(url).query)
    assert q["subject"] == [MSG.subject]
    assert q["body"] == [MSG.body]


def test_gmail_url():
    url = gmail_url(MSG)
    assert url.startswith("https://mail.google.com/mail/?view=cm&fs=1&to=")
    q = parse_qs(urlsplit(url).query)
    assert q["to"] == ["a@example.com,b@example.com"]
    assert q["su"] == [MSG.subject]
    assert unquote(q["body"][0]) == MSG.body


# ---- ComposeTransport ----


def test_compose_is_not_confirmable():
    assert ComposeTransport().confirmable is False


def test_compose_opens_draft():
    opened: list[str] = []
    t = ComposeTransport("mailto", opener=lambda url: opened.append(url) or True)
    result = t.deliver(MSG)
    assert result.ok and not result.confirmed
    assert opened == [mailto_url(MSG)]


def test_compose_gmail_mode_uses_gmail_url():
    opened: list[str] = []
    ComposeTransport("gmail", opener=lambda url: opened.append(url) or True).deliver(MSG)
    assert opened[0].startswith("https://mail.google.com/")


def test_compose_reports_unopened_draft():
    result = ComposeTransport(opener=lambda url: False).deliver(MSG)
    assert not result.ok


def test_compose_browser_error_is_a_failed_result():
    def boom(url):
        raise webbrowser.Error("no runnable browser")

    result = ComposeTransport(opener=boom).deliver(MSG)
    assert not result.ok
    assert "no runnable browser" in result.detail


def test_compose_without_recipients():
    result = ComposeTransport(opener=lambda url: True).deliver(OutgoingMessage([], "s", "b"))
    assert not result.ok


def test_compose_bad_mode():
    with pytest.raises(ValueError):
        ComposeTransport("carrier-pigeon")


# ---- HttpTransport ----


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_http_is_confirmable():
    assert HttpTransport(ENDPOINT).confirmable is True


def test_http_posts_json_payload():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    result = HttpTransport(ENDPOINT, client=_client(handler)).deliver(MSG)

    assert result.ok and result.confirmed
    assert seen[0].method == "POST"
    assert str(seen[0].url) == ENDPOINT
    assert json.loads(seen[0].content) == {"to": MSG.to, "subject": MSG.subject, "text": MSG.body}


def test_http_non_2xx_is_failure():
    result = HttpTransport(ENDPOINT, client=_client(lambda r: httpx.Response(502, text="bad gateway"))).deliver(MSG)
    assert not result.ok
    assert "502" in result.detail


def test_http_network_error_is_failure_not_exception():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = HttpTransport(ENDPOINT, client=_client(handler)).deliver(MSG)
    assert not result.ok
    assert "connection refused" in result.detail


# ---- build_transport ----


def test_build_transport_picks_by_mode():
    assert isinstance(build_transport(Settings(mail_mode="mailto")), ComposeTransport)
    assert build_transport(Settings(mail_mode="gmail")).mode == "gmail"
    assert isinstance(build_transport(Settings(mail_mode="api", api_endpoint=ENDPOINT)), HttpTransport)


def test_build_transport_override_mode():
    assert isinstance(build_transport(Settings(), mode="gmail"), ComposeTransport)


def test_build_transport_api_needs_endpoint():
    with pytest.raises(ValueError):
        build_transport(Settings(), mode="api")


# ---- failures that are not HTTP errors ----


def test_http_invalid_endpoint_is_failure_not_exception():
    result = HttpTransport("http://[::1/send").deliver(MSG)
    assert not result.ok
    assert result.detail.startswith("request failed:")


def test_compose_opener_oserror_is_a_failed_result():
    def opener(url):
        raise OSError("xdg-open failed")

    result = ComposeTransport(opener=opener).deliver(MSG)
    assert not result.ok
    assert "xdg-open failed" in result.detail
