"""Messages of the BitTorrent peer wire protocol and its extension protocol."""

from __future__ import annotations

import enum
import ipaddress
import struct
from dataclasses import dataclass, field
from typing import Any, BinaryIO, ClassVar, Union

from .bencoding import BencodeError, decode_prefix, encode

EXTENSION_ID_HANDSHAKE = 0
EXTENSION_ID_METADATA = 1
EXTENSION_ID_PEX = 2

EXTENSION_KEY_METADATA = "ut_metadata"
EXTENSION_KEY_PEX = "ut_pex"

EXTENSION_METADATA_MESSAGE_TYPE_REQUEST = 0
EXTENSION_METADATA_MESSAGE_TYPE_DATA = 1
EXTENSION_METADATA_MESSAGE_TYPE_REJECT = 2


class MessageID(enum.IntEnum):
    """Identifier of a message sent between peers."""

    CHOKE = 0
    UNCHOKE = 1
    INTERESTED = 2
    NOT_INTERESTED = 3
    HAVE = 4
    BITFIELD = 5
    REQUEST = 6
    PIECE = 7
    CANCEL = 8
    PORT = 9
    SUGGEST = 13
    HAVE_ALL = 14
    HAVE_NONE = 15
    REJECT = 16
    ALLOWED_FAST = 17
    EXTENSION = 20

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")


@dataclass(frozen=True)
class HaveMessage:
    """Tells that a peer has the piece with ``index``."""

    index: int
    id: ClassVar[MessageID] = MessageID.HAVE

    def payload(self) -> bytes:
        return struct.pack(">I", self.index)


@dataclass(frozen=True)
class RequestMessage:
    """Requests a block of a piece."""

    index: int
    begin: int
    length: int
    id: ClassVar[MessageID] = MessageID.REQUEST

    def payload(self) -> bytes:
        return struct.pack(">III", self.index, self.begin, self.length)


@dataclass(frozen=True)
class PieceMessage:
    """Header of a message that carries block data."""

    index: int
    begin: int
    id: ClassVar[MessageID] = MessageID.PIECE

    def payload(self) -> bytes:
        return struct.pack(">II", self.index, self.begin)


@dataclass(frozen=True)
class BitfieldMessage:
    """Piece availability sent after the handshake."""

    data: bytes
    id: ClassVar[MessageID] = MessageID.BITFIELD

    def payload(self) -> bytes:
        return bytes(self.data)


@dataclass(frozen=True)
class PortMessage:
    """Announces the UDP port of the peer's DHT node."""

    port: int
    id: ClassVar[MessageID] = MessageID.PORT

    def payload(self) -> bytes:
        return struct.pack(">H", self.port)


@dataclass(frozen=True)
class _EmptyMessage:
    id: ClassVar[MessageID]

    def payload(self) -> bytes:
        return b""


class AllowedFastMessage(HaveMessage):
    """Allows downloading a piece regardless of choking status."""

    id = MessageID.ALLOWED_FAST


class ChokeMessage(_EmptyMessage):
    """Tells the peer not to request pieces."""

    id = MessageID.CHOKE


class UnchokeMessage(_EmptyMessage):
    """Tells the peer it may request pieces."""

    id = MessageID.UNCHOKE


class InterestedMessage(_EmptyMessage):
    """Tells the peer we want pieces from it."""

    id = MessageID.INTERESTED


class NotInterestedMessage(_EmptyMessage):
    """Tells the peer we want nothing from it."""

    id = MessageID.NOT_INTERESTED


class HaveAllMessage(_EmptyMessage):
    """Tells the peer we are a seed."""

    id = MessageID.HAVE_ALL


class HaveNoneMessage(_EmptyMessage):
    """Tells the peer we have no pieces."""

    id = MessageID.HAVE_NONE


class RejectMessage(RequestMessage):
    """Rejects a request from the peer."""

    id = MessageID.REJECT


class CancelMessage(RequestMessage):
    """Cancels a previously sent request."""

    id = MessageID.CANCEL


class InvalidExtensionMessageError(ValueError):
    """Raised when an extension message cannot be parsed."""


def _get(d: dict, key: str, kind: type, default: Any) -> Any:
    value = d.get(key, default)
    if not isinstance(value, kind):
        raise InvalidExtensionMessageError(f"invalid value for {key!r}: {value!r}")
    return value


@dataclass
class ExtensionHandshakeMessage:
    """Extension handshake: supported extensions and client details."""

    extensions: dict[str, int] = field(default_factory=dict)
    version: str = ""
    your_ip: bytes = b""
    metadata_size: int = 0
    request_queue: int = 0

    def _to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"m": dict(self.extensions), "v": self.version, "reqq": self.request_queue}
        if self.your_ip:
            d["yourip"] = self.your_ip
        if self.metadata_size:
            d["metadata_size"] = self.metadata_size
        return d

    @classmethod
    def _from_dict(cls, d: dict) -> ExtensionHandshakeMessage:
        raw = _get(d, "m", dict, {})
        extensions = {}
        for key, value in raw.items():
            if not isinstance(value, int):
                raise InvalidExtensionMessageError(f"invalid extension id for {key!r}")
            extensions[key] = value
        return cls(
            extensions=extensions,
            version=_get(d, "v", bytes, b"").decode("utf-8", "surrogateescape"),
            your_ip=_get(d, "yourip", bytes, b""),
            metadata_size=max(0, _get(d, "metadata_size", int, 0)),
            request_queue=max(0, _get(d, "reqq", int, 0)),
        )


@dataclass
class ExtensionMetadataMessage:
    """Message of the metadata extension; ``data`` follows the bencoded header."""

    msg_type: int
    piece: int
    total_size: int = 0
    data: bytes = b""

    def _to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"msg_type": self.msg_type, "piece": self.piece}
        if self.total_size:
            d["total_size"] = self.total_size
        return d

    @classmethod
    def _from_dict(cls, d: dict, data: bytes) -> ExtensionMetadataMessage:
        return cls(
            msg_type=_get(d, "msg_type", int, 0),
            piece=_get(d, "piece", int, 0),
            total_size=_get(d, "total_size", int, 0),
            data=data,
        )


@dataclass
class ExtensionPEXMessage:
    """Message of the peer exchange extension with compact peer lists."""

    added: bytes = b""
    dropped: bytes = b""

    def _to_dict(self) -> dict[str, Any]:
        return {"added": self.added, "dropped": self.dropped}

    @classmethod
    def _from_dict(cls, d: dict) -> ExtensionPEXMessage:
        return cls(added=_get(d, "added", bytes, b""), dropped=_get(d, "dropped", bytes, b""))


ExtensionPayload = Union[ExtensionHandshakeMessage, ExtensionMetadataMessage, ExtensionPEXMessage]


@dataclass
class ExtensionMessage:
    """An extension protocol message wrapping one of the extension payloads."""

    extended_message_id: int
    message: ExtensionPayload
    id: ClassVar[MessageID] = MessageID.EXTENSION

    def payload(self) -> bytes:
        body = bytes([self.extended_message_id]) + encode(self.message._to_dict())
        if isinstance(self.message, ExtensionMetadataMessage):
            body += self.message.data
        return body

    def write_to(self, stream: BinaryIO) -> int:
        """Write the message body to ``stream`` and return the number of bytes written."""
        data = self.payload()
        stream.write(data)
        return len(data)


def new_extension_handshake(
    metadata_size: int, version: str, your_ip: Any, request_queue_length: int
) -> ExtensionHandshakeMessage:
    """Build the handshake advertising the metadata and PEX extensions."""
    return ExtensionHandshakeMessage(
        extensions={EXTENSION_KEY_METADATA: EXTENSION_ID_METADATA, EXTENSION_KEY_PEX: EXTENSION_ID_PEX},
        version=version,
        your_ip=_truncate_ip(your_ip),
        metadata_size=metadata_size,
        request_queue=request_queue_length,
    )


def _truncate_ip(ip: Any) -> bytes:
    if ip is None:
        return b""
    if isinstance(ip, (bytes, bytearray)):
        if not ip:
            return b""
        ip = bytes(ip)
    addr = ipaddress.ip_address(ip)
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return addr.packed


def parse_extension_message(data: bytes) -> ExtensionMessage:
    """Parse the body of an extension message received from a peer."""
    if not data:
        raise InvalidExtensionMessageError("empty extension message")
    ext_id = data[0]
    body = bytes(data[1:])
    if ext_id not in (EXTENSION_ID_HANDSHAKE, EXTENSION_ID_METADATA, EXTENSION_ID_PEX):
        raise InvalidExtensionMessageError(f"peer sent invalid extension message id: {ext_id}")
    try:
        decoded, consumed = decode_prefix(body)
    except BencodeError as exc:
        raise InvalidExtensionMessageError(str(exc)) from exc
    if not isinstance(decoded, dict):
        raise InvalidExtensionMessageError("extension payload is not a dictionary")
    message: ExtensionPayload
    if ext_id == EXTENSION_ID_HANDSHAKE:
        message = ExtensionHandshakeMessage._from_dict(decoded)
    elif ext_id == EXTENSION_ID_METADATA:
        message = ExtensionMetadataMessage._from_dict(decoded, body[consumed:])
    else:
        message = ExtensionPEXMessage._from_dict(decoded)
    return ExtensionMessage(ext_id, message)