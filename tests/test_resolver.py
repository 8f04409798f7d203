import ipaddress
import socket
from unittest import mock

import pytest

from drizzle.resolver import (
    BlockedError,
    InvalidPortError,
    NotIPv4AddressError,
    ResolveError,
    resolve,
    resolve_ipv4,
)


class _Blocklist:
    def __init__(self, blocked_ips):
        self.blocked_ips = {ipaddress.ip_address(ip) for ip in blocked_ips}
        self.checked = []

    def blocked(self, ip):
        self.checked.append(ip)
        return ip in self.blocked_ips


def test_resolve_literal_ipv4():
    assert resolve("1.2.3.4:80", 1, None) == ("1.2.3.4", 80)


def test_resolve_ipv4_mapped():
    assert resolve("[::ffff:1.2.3.4]:6881", 1, None) == ("1.2.3.4", 6881)


def test_resolve_ipv6_rejected():
    with pytest.raises(NotIPv4AddressError):
        resolve("[::1]:80", 1, None)


@pytest.mark.parametrize("hostport", ["1.2.3.4:0", "1.2.3.4:65536", "1.2.3.4:-1"])
def test_resolve_invalid_port(hostport):
    with pytest.raises(InvalidPortError):
        resolve(hostport, 1, None)


@pytest.mark.parametrize("hostport", ["1.2.3.4", "1.2.3.4:abc", "a:b:c", "[::1"])
def test_resolve_malformed(hostport):
    with pytest.raises(ResolveError):
        resolve(hostport, 1, None)


def test_resolve_blocked():
    bl = _Blocklist(["5.6.7.8"])
    with pytest.raises(BlockedError):
        resolve("5.6.7.8:1", 1, bl)
    assert resolve("5.6.7.9:1", 1, bl) == ("5.6.7.9", 1)
    assert len(bl.checked) == 2


def test_resolve_hostname_uses_lookup():
    infos = [
        (socket.AF_INET6, socket.SOCK_STREAM, 6, "", ("::1", 0, 0, 0)),
        (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("10.0.0.5", 0)),
    ]
    with mock.patch("drizzle.resolver.socket.getaddrinfo", return_value=infos):
        assert resolve("tracker.example.com:443", 1, None) == ("10.0.0.5", 443)


def test_resolve_ipv4_no_ipv4_result():
    infos = [(socket.AF_INET6, socket.SOCK_STREAM, 6, "", ("::1", 0, 0, 0))]
    with mock.patch("drizzle.resolver.socket.getaddrinfo", return_value=infos):
        with pytest.raises(NotIPv4AddressError):
            resolve_ipv4("tracker.example.com", 1)


def test_resolve_ipv4_lookup_failure():
    with mock.patch(
        "drizzle.resolver.socket.getaddrinfo", side_effect=socket.gaierror("no such host")
    ):
        with pytest.raises(ResolveError):
            resolve_ipv4("nonexistent.example.com", 1)