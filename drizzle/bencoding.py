"""Bencode encoding and decoding.

Byte strings decode to ``bytes``; dictionary keys decode to ``str``
(UTF-8 with surrogate escapes, so arbitrary key bytes survive a round trip).
"""

from __future__ import annotations

import re
from typing import Any

_INT_RE = re.compile(rb"0|-?[1-9][0-9]*")
_LENGTH_RE = re.compile(rb"0|[1-9][0-9]*")
_DIGITS = b"0123456789"


class BencodeError(ValueError):
    """Raised when a value cannot be encoded or data cannot be decoded."""


def encode(value: Any) -> bytes:
    """Return the bencoded form of ``value``."""
    out = bytearray()
    _encode_into(value, out)
    return bytes(out)


def _key_bytes(key: Any) -> bytes:
    if isinstance(key, str):
        return key.encode("utf-8", "surrogateescape")
    if isinstance(key, (bytes, bytearray)):
        return bytes(key)
    raise BencodeError(f"dictionary key must be a string, not {type(key).__name__}")


def _encode_into(value: Any, out: bytearray) -> None:
    if isinstance(value, int):
        out += b"i%de" % value
    elif isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
        out += b"%d:" % len(data)
        out += data
    elif isinstance(value, str):
        _encode_into(value.encode("utf-8", "surrogateescape"), out)
    elif isinstance(value, (list, tuple)):
        out += b"l"
        for item in value:
            _encode_into(item, out)
        out += b"e"
    elif isinstance(value, dict):
        items = sorted(((_key_bytes(k), v) for k, v in value.items()), key=lambda pair: pair[0])
        out += b"d"
        for raw_key, item in items:
            _encode_into(raw_key, out)
            _encode_into(item, out)
        out += b"e"
    else:
        raise BencodeError(f"cannot encode value of type {type(value).__name__}")


def decode(data: bytes) -> Any:
    """Decode a complete bencoded value; trailing bytes are an error."""
    data = bytes(data)
    value, end = decode_prefix(data)
    if end != len(data):
        raise BencodeError(f"trailing data after bencoded value at offset {end}")
    return value


def decode_prefix(data: bytes) -> tuple[Any, int]:
    """Decode the value at the start of ``data``; return it with the number of bytes consumed."""
    data = bytes(data)
    try:
        return _decode_at(data, 0)
    except RecursionError as exc:
        raise BencodeError("bencoded value nested too deeply") from exc


def _decode_string(data: bytes, pos: int) -> tuple[bytes, int]:
    colon = data.find(b":", pos)
    if colon < 0:
        raise BencodeError(f"missing ':' in string at offset {pos}")
    digits = data[pos:colon]
    if not _LENGTH_RE.fullmatch(digits):
        raise BencodeError(f"invalid string length {digits!r} at offset {pos}")
    start = colon + 1
    end = start + int(digits)
    if end > len(data):
        raise BencodeError(f"string at offset {pos} runs past end of data")
    return data[start:end], end


def _decode_at(data: bytes, pos: int) -> tuple[Any, int]:
    if pos >= len(data):
        raise BencodeError("unexpected end of data")
    lead = data[pos]
    if lead == ord("i"):
        end = data.find(b"e", pos + 1)
        if end < 0:
            raise BencodeError(f"unterminated integer at offset {pos}")
        digits = data[pos + 1 : end]
        if not _INT_RE.fullmatch(digits):
            raise BencodeError(f"invalid integer {digits!r} at offset {pos}")
        return int(digits), end + 1
    if lead == ord("l"):
        items = []
        pos += 1
        while True:
            if pos >= len(data):
                raise BencodeError("unterminated list")
            if data[pos] == ord("e"):
                return items, pos + 1
            item, pos = _decode_at(data, pos)
            items.append(item)
    if lead == ord("d"):
        result: dict[str, Any] = {}
        pos += 1
        while True:
            if pos >= len(data):
                raise BencodeError("unterminated dictionary")
            if data[pos] == ord("e"):
                return result, pos + 1
            if data[pos] not in _DIGITS:
                raise BencodeError(f"dictionary key must be a string at offset {pos}")
            raw_key, pos = _decode_string(data, pos)
            value, pos = _decode_at(data, pos)
            result[raw_key.decode("utf-8", "surrogateescape")] = value
    if lead in _DIGITS:
        return _decode_string(data, pos)
    raise BencodeError(f"invalid token {chr(lead)!r} at offset {pos}")