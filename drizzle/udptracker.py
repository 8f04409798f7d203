"""Announcing to UDP trackers."""

from __future__ import annotations

import enum
import logging
import random
import socket
import struct
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, ClassVar, Optional, Protocol
from urllib.parse import urlsplit

from .bencoding import BencodeError, decode
from .resolver import resolve
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

CONNECTION_ID_MAGIC = 0x41727101980
CONNECTION_ID_INTERVAL = 60.0

# Read buffer must hold a packet of the largest expected size.
_MAX_NUM_WANT = 1000
_READ_SIZE = 20 + 6 * _MAX_NUM_WANT
_POLL_INTERVAL = 0.2

_HEADER = struct.Struct(">ii")
_CONNECT_REQUEST = struct.Struct(">qii")
_CONNECT_RESPONSE = struct.Struct(">iiq")
_ANNOUNCE_REQUEST = struct.Struct(">qii20s20sqqqiIIiHH")
_ANNOUNCE_RESPONSE = struct.Struct(">iiiii")

_log = logging.getLogger(__name__)


class Action(enum.IntEnum):
    """Action field of UDP tracker messages."""

    CONNECT = 0
    ANNOUNCE = 1
    ERROR = 3


class UDPBackOff:
    """Retry intervals for UDP tracker requests."""

    def __init__(self) -> None:
        self._n = 0

    def next_backoff(self) -> float:
        """Return the next wait in seconds."""
        if self._n > 8:
            self._n = 8
        delay = 15 * (2 ^ self._n)
        self._n += 1
        return float(delay)

    def reset(self) -> None:
        self._n = 0


class _Request(Protocol):
    connection_id: int
    transaction_id: int

    def to_bytes(self) -> bytes: ...


@dataclass
class _ConnectPacket:
    connection_id: int = CONNECTION_ID_MAGIC
    transaction_id: int = 0

    def to_bytes(self) -> bytes:
        return _CONNECT_REQUEST.pack(self.connection_id, Action.CONNECT, self.transaction_id)


@dataclass
class AnnouncePacket:
    """Announce request as sent to a UDP tracker, with optional URL data extension."""

    info_hash: bytes
    peer_id: bytes
    downloaded: int = 0
    left: int = 0
    uploaded: int = 0
    event: Event = Event.NONE
    num_want: int = 0
    port: int = 0
    ip: int = 0
    key: int = 0
    extensions: int = 0
    url_data: str = ""
    connection_id: int = 0
    transaction_id: int = 0
    action: ClassVar[Action] = Action.ANNOUNCE

    def to_bytes(self) -> bytes:
        packet = _ANNOUNCE_REQUEST.pack(
            self.connection_id,
            self.action,
            self.transaction_id,
            bytes(self.info_hash),
            bytes(self.peer_id),
            self.downloaded,
            self.left,
            self.uploaded,
            int(self.event),
            self.ip,
            self.key,
            self.num_want,
            self.port,
            self.extensions,
        )
        data = self.url_data.encode("utf-8")
        chunks = [data[pos : pos + 255] for pos in range(0, len(data), 255)]
        return packet + b"".join(bytes([0x2, len(chunk)]) + chunk for chunk in chunks)


@dataclass
class _Transaction:
    request: Any
    addr: Address
    response: bytes = b""
    error: Optional[BaseException] = None
    done: threading.Event = field(default_factory=threading.Event)

    @property
    def id(self) -> int:
        return self.request.transaction_id


@dataclass
class _Connection:
    id: int = 0
    timestamp: Optional[float] = None
    lock: threading.Lock = field(default_factory=threading.Lock)


def _new_transaction_id() -> int:
    return random.getrandbits(31)


class Transport:
    """Shared UDP socket that matches tracker replies to pending transactions."""

    def __init__(self, blocklist: Any, dns_timeout: float) -> None:
        self._blocklist = blocklist
        self._dns_timeout = dns_timeout
        self._sock: Optional[socket.socket] = None
        self._reader: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._connections: dict[str, _Connection] = {}
        self._transactions: dict[int, _Transaction] = {}
        self._closed = threading.Event()

    def _listen(self) -> None:
        with self._lock:
            if self._closed.is_set():
                raise RuntimeError("transport is closed")
            if self._sock is not None:
                return
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            sock.bind(("0.0.0.0", 0))
            sock.settimeout(_POLL_INTERVAL)
            self._sock = sock
            self._reader = threading.Thread(target=self._read_loop, args=(sock,), daemon=True)
            self._reader.start()

    def _get_connection(self, key: str) -> _Connection:
        with self._lock:
            return self._connections.setdefault(key, _Connection())

    def do(self, request: _Request, dest: str, timeout: Optional[float]) -> bytes:
        """Send ``request`` to ``dest`` (host:port), retrying until a reply arrives.

        ``timeout`` is in seconds; None waits until the transport is closed.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        self._listen()
        ip, port = resolve(dest, self._dns_timeout, self._blocklist)
        addr = (ip, port)
        conn = self._get_connection(f"{ip}:{port}")
        self._connect_connection(conn, addr, deadline)
        request.connection_id = conn.id
        request.transaction_id = _new_transaction_id()
        return self._retry(_Transaction(request, addr), deadline)

    def _connect_connection(self, conn: _Connection, addr: Address, deadline: Optional[float]) -> None:
        with conn.lock:
            if conn.timestamp is not None and time.monotonic() - conn.timestamp < CONNECTION_ID_INTERVAL:
                return
            conn.id = self._connect(addr, deadline)
            conn.timestamp = time.monotonic()

    def _connect(self, addr: Address, deadline: Optional[float]) -> int:
        trx = _Transaction(_ConnectPacket(transaction_id=_new_transaction_id()), addr)
        data = self._retry(trx, deadline)
        if len(data) < _CONNECT_RESPONSE.size:
            raise DecodeError("connect response too short")
        action, _trx_id, connection_id = _CONNECT_RESPONSE.unpack_from(data)
        if action != Action.CONNECT:
            raise DecodeError("invalid action in connect response")
        _log.debug("connect response from %s: connection id %d", addr, connection_id)
        return connection_id

    def _retry(self, trx: _Transaction, deadline: Optional[float]) -> bytes:
        with self._lock:
            if self._closed.is_set():
                raise ConnectionError("transport closed")
            self._transactions[trx.id] = trx
        backoff = UDPBackOff()
        try:
            while True:
                self._write(trx)
                delay = backoff.next_backoff()
                if deadline is not None:
                    delay = min(delay, max(0.0, deadline - time.monotonic()))
                if trx.done.wait(delay):
                    if trx.error is not None:
                        raise trx.error
                    return trx.response
                if deadline is not None and time.monotonic() >= deadline:
                    raise TimeoutError("udp tracker transaction timed out")
        finally:
            with self._lock:
                if self._transactions.get(trx.id) is trx:
                    del self._transactions[trx.id]

    def _write(self, trx: _Transaction) -> None:
        _log.debug("writing transaction %d", trx.id)
        sock = self._sock
        if sock is None:
            return
        try:
            sock.sendto(trx.request.to_bytes(), trx.addr)
        except OSError as exc:
            _log.error("cannot send to %s: %s", trx.addr, exc)

    def _read_loop(self, sock: socket.socket) -> None:
        while not self._closed.is_set():
            try:
                buf = sock.recv(_READ_SIZE)
            except socket.timeout:
                continue
            except OSError as exc:
                if not self._closed.is_set():
                    _log.error("read error: %s", exc)
                return
            self._handle_datagram(buf)

    def _handle_datagram(self, buf: bytes) -> None:
        _log.debug("read %d bytes", len(buf))
        if len(buf) < _HEADER.size:
            _log.error("datagram too short: %d bytes", len(buf))
            return
        action, trx_id = _HEADER.unpack_from(buf)
        with self._lock:
            trx = self._transactions.pop(trx_id, None)
        if trx is None:
            _log.debug("unexpected transaction_id: %d", trx_id)
            return
        if action == Action.ERROR:
            trx.error = _parse_error(buf[_HEADER.size :])
        else:
            trx.response = bytes(buf)
        trx.done.set()

    def close(self) -> None:
        """Stop reading and fail all pending transactions."""
        self._closed.set()
        with self._lock:
            sock, self._sock = self._sock, None
            pending = list(self._transactions.values())
            self._transactions.clear()
        for trx in pending:
            trx.error = ConnectionError("transport closed")
            trx.done.set()
        if self._reader is not None:
            self._reader.join()
        if sock is not None:
            sock.close()


def _parse_error(rest: bytes) -> Exception:
    try:
        d = decode(rest)
        if not isinstance(d, dict):
            raise BencodeError("error body is not a dictionary")
        reason = d.get("failure reason", b"")
        retry_in = d.get("retry in", b"")
        if not isinstance(reason, bytes) or not isinstance(retry_in, bytes):
            raise BencodeError("invalid error fields")
    except BencodeError:
        return DecodeError()
    try:
        minutes = int(retry_in)
    except ValueError:
        minutes = 0
    return TrackerError(reason.decode("utf-8", "replace"), timedelta(minutes=minutes))


def _request_uri(raw_url: str) -> str:
    parts = urlsplit(raw_url)
    uri = parts.path or "/"
    if parts.query:
        uri += "?" + parts.query
    return uri


class UDPTracker(Tracker):
    """Tracker reached over the UDP tracker protocol.

    ``timeout`` (seconds, None for no limit) bounds each announce.
    """

    def __init__(self, raw_url: str, transport: Transport) -> None:
        self._raw_url = raw_url
        self.dest = urlsplit(raw_url).netloc.rpartition("@")[2]
        self.url_data = _request_uri(raw_url)
        self.transport = transport
        self.timeout: Optional[float] = None

    def url(self) -> str:
        return self._raw_url

    def announce(self, request: AnnounceRequest) -> AnnounceResponse:
        t = request.torrent
        packet = AnnouncePacket(
            info_hash=bytes(t.info_hash),
            peer_id=bytes(t.peer_id),
            downloaded=t.bytes_downloaded,
            left=t.bytes_left,
            uploaded=t.bytes_uploaded,
            event=request.event,
            num_want=request.num_want,
            port=t.port & 0xFFFF,
            url_data=self.url_data,
        )
        packet.peer_id = packet.peer_id[:16] + struct.pack(">I", packet.key)
        reply = self.transport.do(packet, self.dest, self.timeout)
        try:
            interval, leechers, seeders, peers = _parse_announce_response(reply)
        except ValueError:
            raise DecodeError() from None
        _log.debug("announce response: interval=%d leechers=%d seeders=%d", interval, leechers, seeders)
        return AnnounceResponse(
            interval=timedelta(seconds=interval),
            leechers=leechers,
            seeders=seeders,
            peers=peers,
        )


def _parse_announce_response(data: bytes) -> tuple[int, int, int, list[Address]]:
    if len(data) < _ANNOUNCE_RESPONSE.size:
        raise ValueError("announce response too short")
    action, _trx_id, interval, leechers, seeders = _ANNOUNCE_RESPONSE.unpack_from(data)
    if action != Action.ANNOUNCE:
        raise ValueError("invalid action")
    peers = decode_peers_compact(data[_ANNOUNCE_RESPONSE.size :])
    return interval, leechers, seeders, peers