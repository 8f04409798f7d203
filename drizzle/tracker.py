"""Common types for announcing torrents to trackers."""

from __future__ import annotations

import abc
import enum
import ipaddress
import random
import struct
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Sequence

Address = tuple[str, int]


def _ipv4_bytes(host: Any) -> bytes:
    addr = ipaddress.ip_address(host)
    if isinstance(addr, ipaddress.IPv6Address):
        if addr.ipv4_mapped is None:
            raise ValueError(f"not an IPv4 address: {addr}")
        addr = addr.ipv4_mapped
    return addr.packed


@dataclass(frozen=True)
class CompactPeer:
    """A 4-byte IPv4 address and a port; hashable, so usable as a dict key."""

    ip: bytes
    port: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "ip", bytes(self.ip))
        if len(self.ip) != 4:
            raise ValueError("compact peer IP must be 4 bytes")
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"invalid port: {self.port}")

    @classmethod
    def from_address(cls, address: tuple[Any, int]) -> CompactPeer:
        """Build from a ``(host, port)`` pair holding an IPv4 address."""
        host, port = address
        return cls(_ipv4_bytes(host), int(port))

    def address(self) -> Address:
        """Return the ``(ip, port)`` pair."""
        return str(ipaddress.IPv4Address(self.ip)), self.port

    def to_bytes(self) -> bytes:
        """Return the 6-byte compact form."""
        return self.ip + struct.pack(">H", self.port)

    @classmethod
    def from_bytes(cls, data: bytes) -> CompactPeer:
        """Parse the 6-byte compact form."""
        if len(data) != 6:
            raise ValueError("invalid compact peer length")
        data = bytes(data)
        return cls(data[:4], struct.unpack(">H", data[4:])[0])


def decode_peers_compact(data: bytes) -> list[Address]:
    """Parse a concatenation of compact peers into addresses."""
    if len(data) % 6 != 0:
        raise ValueError("invalid peer list length")
    data = bytes(data)
    return [CompactPeer.from_bytes(data[i : i + 6]).address() for i in range(0, len(data), 6)]


class Event(enum.IntEnum):
    """Announce event; values match the UDP tracker protocol."""

    NONE = 0
    COMPLETED = 1
    STARTED = 2
    STOPPED = 3

    def __str__(self) -> str:
        return _EVENT_NAMES[self]


_EVENT_NAMES = {
    Event.NONE: "empty",
    Event.COMPLETED: "completed",
    Event.STARTED: "started",
    Event.STOPPED: "stopped",
}


@dataclass
class Torrent:
    """Torrent fields sent in an announce request."""

    bytes_uploaded: int = 0
    bytes_downloaded: int = 0
    bytes_left: int = 0
    info_hash: bytes = bytes(20)
    peer_id: bytes = bytes(20)
    port: int = 0


@dataclass
class AnnounceRequest:
    """Parameters of an announce request."""

    torrent: Torrent
    event: Event = Event.NONE
    num_want: int = 0


@dataclass
class AnnounceResponse:
    """Result of a successful announce."""

    interval: timedelta = timedelta(0)
    min_interval: timedelta = timedelta(0)
    leechers: int = 0
    seeders: int = 0
    warning_message: str = ""
    peers: list[Address] = field(default_factory=list)


class DecodeError(Exception):
    """The tracker response could not be decoded."""

    def __init__(self, message: str = "cannot decode response") -> None:
        super().__init__(message)


class TrackerError(Exception):
    """Failure reason sent by the tracker."""

    def __init__(self, failure_reason: str, retry_in: timedelta = timedelta(0)) -> None:
        super().__init__(failure_reason)
        self.failure_reason = failure_reason
        self.retry_in = retry_in

    def __str__(self) -> str:
        return self.failure_reason


class Tracker(abc.ABC):
    """Something that peers of a torrent swarm can be announced to."""

    @abc.abstractmethod
    def announce(self, request: AnnounceRequest) -> AnnounceResponse:
        """Announce the transfer and return the tracker's answer."""

    @abc.abstractmethod
    def url(self) -> str:
        """URL of the tracker."""


class Tier(Tracker):
    """Group of trackers; a failed announce moves on to the next one."""

    def __init__(self, trackers: Sequence[Tracker]) -> None:
        self.trackers = list(trackers)
        if not self.trackers:
            raise ValueError("tier needs at least one tracker")
        random.shuffle(self.trackers)
        self._index = 0

    def announce(self, request: AnnounceRequest) -> AnnounceResponse:
        try:
            return self.trackers[self._index].announce(request)
        except Exception:
            self._index = (self._index + 1) % len(self.trackers)
            raise

    def url(self) -> str:
        return self.trackers[self._index].url()