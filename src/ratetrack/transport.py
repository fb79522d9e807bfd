"""
Report delivery.

Two kinds of transport, kept apart on purpose:

  ComposeTransport (confirmable = False)
    Opens a pre-filled mailto: / Gmail compose draft. The user still has to
    press Send and we never learn whether they did. "ok" means "draft opened".

  HttpTransport (confirmable = True)
    POSTs the report to a mail-sending endpoint. "ok" means the endpoint
    answered 2xx.

The scheduler decides how to record a report based on `confirmable`.
"""

from __future__ import annotations

import logging
import webbrowser
from dataclasses import dataclass
from typing import Callable, Protocol
from urllib.parse import quote

import httpx

from .config import Settings

logger = logging.getLogger(__name__)

GMAIL_COMPOSE = "https://mail.google.com/mail/?view=cm&fs=1"


@dataclass(frozen=True)
class OutgoingMessage:
    to: list[str]
    subject: str
    body: str


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    confirmed: bool
    detail: str = ""


class Transport(Protocol):
    confirmable: bool

    def deliver(self, message: OutgoingMessage) -> DeliveryResult: ...


def mailto_url(message: OutgoingMessage) -> str:
    to = ",".join(message.to)
    return f"mailto:{quote(to, safe='@,')}?subject={quote(message.subject)}&body={quote(message.body)}"


def gmail_url(message: OutgoingMessage) -> str:
    to = ",".join(message.to)
    return f"{GMAIL_COMPOSE}&to={quote(to)}&su={quote(message.subject)}&body={quote(message.body)}"


class ComposeTransport:
    confirmable = False

    def __init__(self, mode: str = "mailto", opener: Callable[[str], bool] | None = None) -> None:
        if mode not in ("mailto", "gmail"):
            raise ValueError(f"compose mode must be 'mailto' or 'gmail' (got {mode!r})")
        self.mode = mode
        self.opener = opener or webbrowser.open

    def url_for(self, message: OutgoingMessage) -> str:
        return gmail_url(message) if self.mode == "gmail" else mailto_url(message)

    def deliver(self, message: OutgoingMessage) -> DeliveryResult:
        if not message.to:
            return DeliveryResult(False, False, "no recipients configured")
        url = self.url_for(message)
        try:
            opened = self.opener(url)
        except (webbrowser.Error, OSError) as e:
            logger.warning("could not open %s draft: %s", self.mode, e)
            return DeliveryResult(False, False, f"could not open draft: {e}")
        if opened is False:
            return DeliveryResult(False, False, "no browser / mail client available")
        return DeliveryResult(True, False, f"{self.mode} draft opened")


class HttpTransport:
    confirmable = True

    def __init__(self, endpoint: str, client: httpx.Client | None = None, timeout: float = 10.0) -> None:
        self.endpoint = endpoint
        self.client = client
        self.timeout = timeout

    def _post(self, client: httpx.Client, message: OutgoingMessage) -> httpx.Response:
        return client.post(
            self.endpoint,
            json={"to": message.to, "subject": message.subject, "text": message.body},
        )

    def deliver(self, message: OutgoingMessage) -> DeliveryResult:
        if not message.to:
            return DeliveryResult(False, False, "no recipients configured")
        try:
            if self.client is not None:
                resp = self._post(self.client, message)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = self._post(client, message)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("report delivery to %s failed: %s", self.endpoint, e)
            return DeliveryResult(False, False, f"request failed: {e}")

        if not resp.is_success:
            logger.warning("report delivery to %s failed: HTTP %s", self.endpoint, resp.status_code)
            return DeliveryResult(False, False, f"API failed: {resp.status_code} {resp.text[:200]}".rstrip())
        return DeliveryResult(True, True, f"sent via {self.endpoint}")


def build_transport(settings: Settings, mode: str | None = None) -> Transport:
    mode = mode or settings.mail_mode
    if mode == "api":
        if not settings.api_endpoint:
            raise ValueError("api mode needs an api_endpoint")
        return HttpTransport(settings.api_endpoint)
    return ComposeTransport(mode)
