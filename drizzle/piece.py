"""Pieces of a torrent and the blocks they are requested in."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

BLOCK_SIZE = 16 * 1024
"""Size of the smallest unit of piece data requested from peers."""


@dataclass
class FileSection:
    """A contiguous region of one file that holds part of a piece."""

    file: Any
    offset: int
    length: int
    name: str


@dataclass(frozen=True)
class Block:
    """Part of a piece, as named in request messages."""

    index: int
    begin: int
    length: int


@dataclass(eq=False)
class Piece:
    """A piece of a torrent; compared by identity."""

    index: int = 0
    length: int = 0
    data: list[FileSection] = field(default_factory=list)
    hash: bytes = b""
    writing: bool = False
    done: bool = False

    def num_blocks(self) -> int:
        """Number of blocks in the piece."""
        return -(-self.length // BLOCK_SIZE)

    def get_block(self, i: int) -> Optional[Block]:
        """Return the block at index ``i``, or None if there is no such block."""
        count = self.num_blocks()
        if i < 0 or i >= count:
            return None
        rest = self.length % BLOCK_SIZE
        length = rest if rest and i == count - 1 else BLOCK_SIZE
        return Block(index=i, begin=i * BLOCK_SIZE, length=length)

    def find_block(self, begin: int, length: int) -> Optional[Block]:
        """Return the block starting at ``begin`` with ``length`` bytes, or None."""
        idx, rest = divmod(begin, BLOCK_SIZE)
        if rest:
            return None
        block = self.get_block(idx)
        if block is None or block.length != length:
            return None
        return block

    def verify_hash(self, buf: bytes) -> bool:
        """True if ``buf`` has the piece's length and SHA-1 hash."""
        if len(buf) != self.length:
            return False
        return hashlib.sha1(bytes(buf)).digest() == bytes(self.hash)  # noqa: S324


def new_pieces(info: Any, files: Sequence[Any]) -> list[Piece]:
    """Map the torrent's files onto its pieces.

    ``info`` provides ``files`` (each with ``length``), ``num_pieces``,
    ``piece_length``, ``length`` and ``piece_hash(i)``. Each entry of ``files``
    provides ``storage`` and ``name``.
    """
    file_lengths = [f.length for f in info.files]
    file_index = 0
    file_offset = 0
    total = 0
    pieces = []
    for i in range(info.num_pieces):
        sections = []
        length = 0
        left = info.piece_length
        while left > 0:
            n = min(left, file_lengths[file_index] - file_offset)
            current = files[file_index]
            sections.append(FileSection(file=current.storage, offset=file_offset, length=n, name=current.name))
            left -= n
            length += n
            file_offset += n
            total += n
            if total == info.length:
                break
            if file_offset == file_lengths[file_index]:
                file_index += 1
                file_offset = 0
        pieces.append(Piece(index=i, length=length, data=sections, hash=info.piece_hash(i)))
    return pieces