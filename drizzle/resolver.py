"""Resolution of ``host:port`` strings to IPv4 addresses."""

from __future__ import annotations

import concurrent.futures
import ipaddress
import re
import socket
from typing import Any, Optional

_PORT_RE = re.compile(r"[+-]?[0-9]+")


class ResolveError(Exception):
    """An address could not be resolved."""


class BlockedError(ResolveError):
    """The resolved IP is in the blocklist."""

    def __init__(self, message: str = "ip is blocked") -> None:
        super().__init__(message)


class NotIPv4AddressError(ResolveError):
    """The address is not IPv4."""

    def __init__(self, message: str = "not ipv4 address") -> None:
        super().__init__(message)


class InvalidPortError(ResolveError):
    """The port number is out of range."""

    def __init__(self, message: str = "invalid port number") -> None:
        super().__init__(message)


def _split_host_port(hostport: str) -> tuple[str, str]:
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise ResolveError(f"address {hostport}: missing ']' in address")
        host, rest = hostport[1:end], hostport[end + 1 :]
        if not rest.startswith(":"):
            raise ResolveError(f"address {hostport}: missing port in address")
        return host, rest[1:]
    host, sep, port = hostport.rpartition(":")
    if not sep:
        raise ResolveError(f"address {hostport}: missing port in address")
    if ":" in host:
        raise ResolveError(f"address {hostport}: too many colons in address")
    return host, port


def _to_ipv4(addr: Any) -> Optional[ipaddress.IPv4Address]:
    if isinstance(addr, ipaddress.IPv4Address):
        return addr
    return addr.ipv4_mapped


def resolve(hostport: str, timeout: float, blocklist: Any) -> tuple[str, int]:
    """Resolve ``hostport`` to an IPv4 ``(ip, port)`` pair.

    ``timeout`` is in seconds. ``blocklist`` is None or has a ``blocked(ip)`` method.
    """
    host, port_text = _split_host_port(hostport)
    if not _PORT_RE.fullmatch(port_text):
        raise ResolveError(f"invalid port {port_text!r}")
    port = int(port_text)
    if port <= 0 or port > 65535:
        raise InvalidPortError()
    try:
        addr: Any = ipaddress.ip_address(host)
    except ValueError:
        addr = ipaddress.ip_address(resolve_ipv4(host, timeout))
    ip4 = _to_ipv4(addr)
    if ip4 is None:
        raise NotIPv4AddressError()
    if blocklist is not None and blocklist.blocked(ip4):
        raise BlockedError()
    return str(ip4), port


def resolve_ipv4(host: str, timeout: float) -> str:
    """Look up ``host`` and return its first IPv4 address; ``timeout`` is in seconds."""
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    future = executor.submit(socket.getaddrinfo, host, None, 0, socket.SOCK_STREAM)
    executor.shutdown(wait=False)
    try:
        infos = future.result(timeout=timeout)
    except concurrent.futures.TimeoutError:
        raise ResolveError(f"lookup {host}: timed out") from None
    except OSError as exc:
        raise ResolveError(f"lookup {host}: {exc}") from exc
    for _family, _type, _proto, _name, sockaddr in infos:
        try:
            addr: Any = ipaddress.ip_address(sockaddr[0])
        except ValueError:
            continue
        ip4 = _to_ipv4(addr)
        if ip4 is not None:
            return str(ip4)
    raise NotIPv4AddressError()