import pytest

from drizzle.peerprotocol import RequestMessage
from drizzle.piece import BLOCK_SIZE, Block, Piece
from drizzle.piecedownloader import BlockDuplicateError, BlockNotRequestedError, PieceDownloader


class _TestPeer:
    def __init__(self, fast=False):
        self.requested = []
        self.canceled = []
        self.fast = fast

    def request_piece(self, index, begin, length):
        self.requested.append(RequestMessage(index, begin, length))

    def cancel_piece(self, index, begin, length):
        self.canceled.append(RequestMessage(index, begin, length))

    def enabled_fast(self):
        return self.fast


def _msgs(n):
    return [RequestMessage(1, i * BLOCK_SIZE, BLOCK_SIZE) for i in range(n)]


def _state(d):
    return len(d._remaining), len(d._pending), len(d._done)


def _block(i, length=BLOCK_SIZE):
    return Block(index=i, begin=i * BLOCK_SIZE, length=length)


def _new(peer=None, allowed_fast=False):
    pi = Piece(index=1, length=10 * BLOCK_SIZE + 42)
    pe = peer or _TestPeer()
    return PieceDownloader(pi, pe, allowed_fast, bytearray(10 * BLOCK_SIZE + 42)), pe


def test_piece_downloader():
    d, pe = _new()
    assert _state(d) == (11, 0, 0)
    assert not d.done()

    d.request_blocks(4)
    assert _state(d) == (7, 4, 0)
    assert not d.done()
    assert pe.requested == _msgs(4)

    d.request_blocks(4)
    assert _state(d) == (7, 4, 0)
    assert pe.requested == _msgs(4)

    d.got_block(_block(0), bytes(BLOCK_SIZE))
    assert len(pe.requested) == 4
    assert _state(d) == (7, 3, 1)
    assert not d.done()

    d.request_blocks(4)
    assert _state(d) == (6, 4, 1)
    assert pe.requested == _msgs(5)

    for i in range(1, 5):
        d.got_block(_block(i), bytes(BLOCK_SIZE))
    assert _state(d) == (6, 0, 5)
    assert not d.done()

    d.request_blocks(4)
    assert _state(d) == (2, 4, 5)
    assert pe.requested == _msgs(9)

    d.got_block(_block(5), bytes(BLOCK_SIZE))
    assert _state(d) == (2, 3, 6)

    d.choked()
    assert _state(d) == (5, 0, 6)
    assert not d.done()

    d.request_blocks(99)
    for i in range(6, 10):
        d.got_block(_block(i), bytes(BLOCK_SIZE))
    d.got_block(_block(10, 42), bytes(42))
    assert _state(d) == (0, 0, 11)
    assert d.done()


def test_got_block_copies_data_into_buffer():
    d, _ = _new()
    d.request_blocks(1)
    d.got_block(_block(0), b"\x07" * BLOCK_SIZE)
    assert d.buffer[:BLOCK_SIZE] == b"\x07" * BLOCK_SIZE
    assert len(d.buffer) == 10 * BLOCK_SIZE + 42


def test_duplicate_and_unrequested_blocks():
    d, _ = _new()
    with pytest.raises(BlockNotRequestedError):
        d.got_block(_block(3), bytes(BLOCK_SIZE))
    assert 3 in d._done
    with pytest.raises(BlockDuplicateError):
        d.got_block(_block(3), bytes(BLOCK_SIZE))


def test_rejected_and_cancel_pending():
    d, pe = _new()
    d.request_blocks(2)
    d.rejected(_block(0))
    assert _state(d) == (10, 1, 0)
    d.cancel_pending()
    assert pe.canceled == [RequestMessage(1, BLOCK_SIZE, BLOCK_SIZE)]


def test_choked_keeps_pending_with_fast_extension():
    d, _ = _new(peer=_TestPeer(fast=True))
    d.request_blocks(3)
    d.choked()
    assert _state(d) == (8, 3, 0)
    d2, _ = _new(allowed_fast=True)
    d2.request_blocks(3)
    d2.choked()
    assert _state(d2) == (8, 3, 0)