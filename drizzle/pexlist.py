"""Peer address lists for the peer exchange extension."""

from __future__ import annotations

import itertools
from typing import Any, Iterable

from .tracker import CompactPeer

# Except for the initial PEX message, at most this many added (and dropped) entries are sent.
MAX_PEERS = 50

MAX_LENGTH = 25


def _flush(peers: dict[CompactPeer, None], limit: bool) -> bytes:
    count = min(len(peers), MAX_PEERS) if limit else len(peers)
    taken = list(itertools.islice(peers, count))
    for peer in taken:
        del peers[peer]
    return b"".join(peer.to_bytes() for peer in taken)


class PEXList:
    """Added and dropped peer addresses waiting to be sent to a peer."""

    def __init__(self) -> None:
        self._added: dict[CompactPeer, None] = {}
        self._dropped: dict[CompactPeer, None] = {}
        self._flushed = False

    @classmethod
    def with_recently_seen(cls, peers: Iterable[CompactPeer]) -> PEXList:
        """Return a list whose dropped part holds ``peers``."""
        pex = cls()
        for peer in peers:
            pex._dropped[peer] = None
        return pex

    def add(self, address: tuple[Any, int]) -> None:
        """Mark the address as added."""
        peer = CompactPeer.from_address(address)
        self._added[peer] = None
        self._dropped.pop(peer, None)

    def drop(self, address: tuple[Any, int]) -> None:
        """Mark the address as dropped."""
        peer = CompactPeer.from_address(address)
        self._dropped[peer] = None
        self._added.pop(peer, None)

    def flush(self) -> tuple[bytes, bytes]:
        """Take out the compact added and dropped lists; later flushes are size limited."""
        added = _flush(self._added, self._flushed)
        dropped = _flush(self._dropped, self._flushed)
        self._flushed = True
        return added, dropped


class RecentlySeen:
    """Keeps the last MAX_LENGTH distinct peer addresses."""

    def __init__(self) -> None:
        self._peers: list[CompactPeer] = []
        self._offset = 0

    def add(self, address: tuple[Any, int]) -> None:
        peer = CompactPeer.from_address(address)
        if peer in self._peers:
            return
        if len(self._peers) >= MAX_LENGTH:
            self._peers[self._offset] = peer
        else:
            self._peers.append(peer)
        self._offset = (self._offset + 1) % MAX_LENGTH

    def peers(self) -> list[CompactPeer]:
        return list(self._peers)

    def __len__(self) -> int:
        return len(self._peers)