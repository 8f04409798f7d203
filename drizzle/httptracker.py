"""Announcing to HTTP trackers."""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional
from urllib.parse import quote_plus, urlsplit

import requests

from .bencoding import BencodeError, decode
from .tracker import (
    Address,
    AnnounceRequest,
    AnnounceResponse,
    DecodeError,
    Event,
    Tracker,
    TrackerError,
    decode_peers_compact,
)

_MISSING = object()


class StatusError(Exception):
    """Tracker replied with a non-200 status and an undecodable body."""

    def __init__(self, code: int, body: str) -> None:
        super().__init__(f"http status: {code}")
        self.code = code
        self.body = body


@dataclass
class _Fields:
    failure_reason: str
    retry_in: str
    warning_message: str
    interval: int
    min_interval: int
    tracker_id: str
    complete: int
    incomplete: int
    peers: Any
    external_ip: bytes


def _get(d: dict, key: str, kind: type, default: Any) -> Any:
    value = d.get(key, default)
    if not isinstance(value, kind):
        raise BencodeError(f"invalid type for {key!r}")
    return value


def _text(d: dict, key: str) -> str:
    return _get(d, key, bytes, b"").decode("utf-8", "replace")


def _parse_fields(body: bytes) -> _Fields:
    d = decode(body)
    if not isinstance(d, dict):
        raise BencodeError("response is not a dictionary")
    return _Fields(
        failure_reason=_text(d, "failure reason"),
        retry_in=_text(d, "retry in"),
        warning_message=_text(d, "warning message"),
        interval=_get(d, "interval", int, 0),
        min_interval=_get(d, "min interval", int, 0),
        tracker_id=_text(d, "tracker id"),
        complete=_get(d, "complete", int, 0),
        incomplete=_get(d, "incomplete", int, 0),
        peers=d.get("peers", _MISSING),
        external_ip=_get(d, "external ip", bytes, b""),
    )


def _ip_key(ip: str) -> bytes:
    addr: Any = ipaddress.ip_address(ip)
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return addr.packed


def _parse_peers_dictionary(peers: list) -> list[Address]:
    addrs = []
    for entry in peers:
        if not isinstance(entry, dict):
            raise DecodeError()
        ip = entry.get("ip", b"")
        port = entry.get("port", 0)
        if not isinstance(ip, bytes) or not isinstance(port, int) or not 0 <= port <= 0xFFFF:
            raise DecodeError()
        try:
            addr: Any = ipaddress.ip_address(ip.decode("ascii"))
        except (UnicodeDecodeError, ValueError):
            raise DecodeError() from None
        if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
            addr = addr.ipv4_mapped
        addrs.append((str(addr), port))
    return addrs


class HTTPTracker(Tracker):
    """Tracker reached with HTTP GET announce requests."""

    def __init__(
        self,
        raw_url: str,
        timeout: float,
        user_agent: str,
        max_response_length: int,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._raw_url = raw_url
        self._timeout = timeout
        self._user_agent = user_agent
        self._max_response_length = max_response_length
        self._session = session if session is not None else requests.Session()
        self._tracker_id = ""
        self._log = logging.getLogger(f"{__name__}.{urlsplit(raw_url).netloc}")

    def url(self) -> str:
        return self._raw_url

    def _announce_url(self, request: AnnounceRequest) -> str:
        # Some private trackers require info_hash and peer_id to be the first parameters.
        t = request.torrent
        parts = [
            self._raw_url,
            "&info_hash=" if "?" in self._raw_url else "?info_hash=",
            quote_plus(bytes(t.info_hash), safe=""),
            "&peer_id=",
            quote_plus(bytes(t.peer_id), safe=""),
            f"&port={t.port}",
            f"&uploaded={t.bytes_uploaded}",
            f"&downloaded={t.bytes_downloaded}",
            f"&left={t.bytes_left}",
            "&compact=1",
            "&no_peer_id=1",
            f"&numwant={request.num_want}",
        ]
        if request.event != Event.NONE:
            parts.append(f"&event={request.event}")
        if self._tracker_id:
            parts.append(f"&trackerid={self._tracker_id}")
        parts.append("&key=" + bytes(t.peer_id[16:20]).hex())
        return "".join(parts)

    def _fetch(self, url: str) -> tuple[int, bytes]:
        limit = self._max_response_length
        with self._session.get(
            url, headers={"User-Agent": self._user_agent}, timeout=self._timeout, stream=True
        ) as resp:
            length = resp.headers.get("Content-Length", "")
            if length.isdigit() and int(length) > limit:
                raise ValueError(f"tracker response too large: {length}")
            body = bytearray()
            for chunk in resp.iter_content(chunk_size=65536):
                body += chunk
                if len(body) >= limit:
                    break
            self._log.debug("tracker responded %d with %d bytes body", resp.status_code, len(body))
            return resp.status_code, bytes(body[:limit])

    def announce(self, request: AnnounceRequest) -> AnnounceResponse:
        url = self._announce_url(request)
        self._log.debug("making request to: %r", url)
        code, body = self._fetch(url)

        try:
            fields = _parse_fields(body)
        except BencodeError:
            if code != 200:
                raise StatusError(code, body.decode("utf-8", "replace")) from None
            raise DecodeError() from None

        if fields.failure_reason:
            try:
                retry_minutes = int(fields.retry_in)
            except ValueError:
                retry_minutes = 0
            raise TrackerError(fields.failure_reason, timedelta(minutes=retry_minutes))

        if fields.tracker_id:
            self._tracker_id = fields.tracker_id

        peers: list[Address] = []
        if isinstance(fields.peers, list):
            peers = _parse_peers_dictionary(fields.peers)
        elif isinstance(fields.peers, bytes):
            try:
                peers = decode_peers_compact(fields.peers)
            except ValueError:
                raise DecodeError() from None
        elif fields.peers is not _MISSING:
            raise DecodeError()
        self._log.debug("got %d peers", len(peers))

        if fields.external_ip:
            peers = [p for p in peers if _ip_key(p[0]) != fields.external_ip]

        return AnnounceResponse(
            interval=timedelta(seconds=fields.interval),
            min_interval=timedelta(seconds=fields.min_interval),
            leechers=fields.incomplete,
            seeders=fields.complete,
            warning_message=fields.warning_message,
            peers=peers,
        )