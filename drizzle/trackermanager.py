"""Creates trackers that share transports per protocol."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit

import requests
from requests.adapters import HTTPAdapter

from .httptracker import HTTPTracker
from .resolver import resolve
from .tracker import Tracker
from .udptracker import Transport, UDPTracker


class UnsupportedSchemeError(ValueError):
    """The tracker URL has a scheme that is neither HTTP(S) nor UDP."""


class _ResolvingAdapter(HTTPAdapter):
    """Checks tracker hosts against the resolver rules before each request."""

    def __init__(self, blocklist: Any, dns_timeout: float) -> None:
        super().__init__()
        self._blocklist = blocklist
        self._dns_timeout = dns_timeout

    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        parts = urlsplit(request.url or "")
        host = parts.hostname or ""
        port = parts.port or (443 if parts.scheme == "https" else 80)
        hostport = f"[{host}]:{port}" if ":" in host else f"{host}:{port}"
        resolve(hostport, self._dns_timeout, self._blocklist)
        return super().send(request, **kwargs)


class TrackerManager:
    """Hands out HTTP and UDP trackers that reuse one transport each."""

    def __init__(self, blocklist: Any, dns_timeout: float, tls_skip_verify: bool) -> None:
        self.http_session = requests.Session()
        self.http_session.verify = not tls_skip_verify
        adapter = _ResolvingAdapter(blocklist, dns_timeout)
        self.http_session.mount("http://", adapter)
        self.http_session.mount("https://", adapter)
        self.udp_transport = Transport(blocklist, dns_timeout)

    def get(
        self, url: str, http_timeout: float, http_user_agent: str, http_max_response_length: int
    ) -> Tracker:
        """Return a tracker for ``url``; ``http_timeout`` is in seconds."""
        scheme = urlsplit(url).scheme
        if scheme in ("http", "https"):
            return HTTPTracker(
                url, http_timeout, http_user_agent, http_max_response_length, self.http_session
            )
        if scheme == "udp":
            return UDPTracker(url, self.udp_transport)
        raise UnsupportedSchemeError(f"unsupported tracker scheme: {scheme}")