"""Downloads all blocks of one piece from one peer."""

from __future__ import annotations

from typing import Protocol

from .piece import Block, Piece


class BlockDuplicateError(Exception):
    """The received block was already downloaded."""

    def __init__(self, message: str = "received duplicate block") -> None:
        super().__init__(message)


class BlockNotRequestedError(Exception):
    """The received block was not requested; its data was still stored."""

    def __init__(self, message: str = "received not requested block") -> None:
        super().__init__(message)


class Peer(Protocol):
    def request_piece(self, index: int, begin: int, length: int) -> None: ...

    def cancel_piece(self, index: int, begin: int, length: int) -> None: ...

    def enabled_fast(self) -> bool: ...


class PieceDownloader:
    """Tracks remaining, in-flight and finished blocks of a piece."""

    def __init__(self, piece: Piece, peer: Peer, allowed_fast: bool, buffer: bytearray) -> None:
        self.piece = piece
        self.peer = peer
        self.allowed_fast = allowed_fast
        self.buffer = buffer
        self._remaining: list[int] = list(range(piece.num_blocks()))
        self._pending: dict[int, None] = {}
        self._done: set[int] = set()

    def _block(self, i: int) -> Block:
        block = self.piece.get_block(i)
        if block is None:
            raise RuntimeError(f"cannot get block {i}")
        return block

    def choked(self) -> None:
        """Peer choked us: pending requests go back to the remaining list."""
        if self.allowed_fast:
            return
        if self.peer.enabled_fast():
            # The peer rejects pending requests itself.
            return
        self._remaining.extend(self._pending)
        self._pending.clear()

    def got_block(self, block: Block, data: bytes) -> None:
        """Store a received block.

        Raises BlockDuplicateError without storing if the block is already done,
        and BlockNotRequestedError after storing if it was not requested.
        """
        if block.index in self._done:
            raise BlockDuplicateError()
        requested = block.index in self._pending
        chunk = bytes(data[: block.length])
        self.buffer[block.begin : block.begin + len(chunk)] = chunk
        self._pending.pop(block.index, None)
        self._done.add(block.index)
        if not requested:
            raise BlockNotRequestedError()

    def rejected(self, block: Block) -> None:
        """Peer rejected a request: the block goes back to the remaining list."""
        self._pending.pop(block.index, None)
        self._remaining.append(block.index)

    def cancel_pending(self) -> None:
        """Send cancels for all in-flight requests."""
        for i in self._pending:
            b = self._block(i)
            self.peer.cancel_piece(self.piece.index, b.begin, b.length)

    def request_blocks(self, queue_length: int) -> None:
        """Request remaining blocks until ``queue_length`` are in flight."""
        for i in list(self._remaining):
            if len(self._pending) >= queue_length:
                break
            b = self._block(i)
            if i not in self._done:
                self.peer.request_piece(self.piece.index, b.begin, b.length)
            self._remaining.pop(0)
            self._pending[i] = None

    def done(self) -> bool:
        """True when every block has been received."""
        return len(self._done) == self.piece.num_blocks()