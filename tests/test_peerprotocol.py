import io
import ipaddress

import pytest

from drizzle.bencoding import decode, encode
from drizzle.peerprotocol import (
    EXTENSION_ID_HANDSHAKE,
    EXTENSION_ID_METADATA,
    EXTENSION_ID_PEX,
    EXTENSION_KEY_METADATA,
    EXTENSION_KEY_PEX,
    EXTENSION_METADATA_MESSAGE_TYPE_DATA,
    AllowedFastMessage,
    BitfieldMessage,
    CancelMessage,
    ChokeMessage,
    ExtensionMessage,
    ExtensionMetadataMessage,
    ExtensionPEXMessage,
    HaveMessage,
    InvalidExtensionMessageError,
    MessageID,
    PieceMessage,
    PortMessage,
    RejectMessage,
    RequestMessage,
    UnchokeMessage,
    new_extension_handshake,
    parse_extension_message,
)


@pytest.mark.parametrize(
    "mid, name",
    [
        (MessageID.CHOKE, "choke"),
        (MessageID.NOT_INTERESTED, "not interested"),
        (MessageID.HAVE_ALL, "have all"),
        (MessageID.ALLOWED_FAST, "allowed fast"),
        (MessageID.EXTENSION, "extension"),
    ],
)
def test_message_id_names(mid, name):
    assert str(mid) == name


def test_have_payload_is_big_endian_index():
    payload = HaveMessage(1234567).payload()
    assert int.from_bytes(payload, "big") == 1234567
    assert HaveMessage(1).payload() == b"\x00\x00\x00\x01"


def test_request_payload_fields():
    payload = RequestMessage(5, 16384, 42).payload()
    assert [int.from_bytes(payload[i : i + 4], "big") for i in (0, 4, 8)] == [5, 16384, 42]


def test_piece_payload_fields():
    payload = PieceMessage(9, 32768).payload()
    assert int.from_bytes(payload[:4], "big") == 9
    assert int.from_bytes(payload[4:], "big") == 32768


def test_bitfield_and_port_payloads():
    assert BitfieldMessage(b"\xf0\x0f").payload() == b"\xf0\x0f"
    port = PortMessage(6881).payload()
    assert int.from_bytes(port, "big") == 6881
    assert len(port) == 2


def test_derived_messages_share_payload_but_not_id():
    assert AllowedFastMessage(3).payload() == HaveMessage(3).payload()
    assert AllowedFastMessage(3).id is MessageID.ALLOWED_FAST
    assert RejectMessage(1, 2, 3).payload() == RequestMessage(1, 2, 3).payload()
    assert RejectMessage(1, 2, 3).id is MessageID.REJECT
    assert CancelMessage(1, 2, 3).id is MessageID.CANCEL


def test_empty_messages():
    assert ChokeMessage().payload() == b""
    assert ChokeMessage().id is MessageID.CHOKE
    assert UnchokeMessage().id is MessageID.UNCHOKE
    assert ChokeMessage() == ChokeMessage()


def test_new_extension_handshake_fields():
    msg = new_extension_handshake(100, "drizzle", "1.2.3.4", 250)
    assert msg.extensions == {EXTENSION_KEY_METADATA: EXTENSION_ID_METADATA, EXTENSION_KEY_PEX: EXTENSION_ID_PEX}
    assert msg.your_ip == ipaddress.ip_address("1.2.3.4").packed
    assert msg.metadata_size == 100
    assert msg.request_queue == 250


def test_handshake_truncates_mapped_ipv4_but_keeps_ipv6():
    mapped = new_extension_handshake(0, "v", "::ffff:1.2.3.4", 1)
    assert mapped.your_ip == ipaddress.ip_address("1.2.3.4").packed
    v6 = new_extension_handshake(0, "v", "2001:db8::1", 1)
    assert v6.your_ip == ipaddress.ip_address("2001:db8::1").packed


def test_handshake_round_trip():
    msg = new_extension_handshake(100, "drizzle", "1.2.3.4", 250)
    parsed = parse_extension_message(ExtensionMessage(EXTENSION_ID_HANDSHAKE, msg).payload())
    assert parsed.extended_message_id == EXTENSION_ID_HANDSHAKE
    assert parsed.message == msg


def test_handshake_omits_empty_optional_keys():
    msg = new_extension_handshake(0, "drizzle", None, 250)
    decoded = decode(ExtensionMessage(EXTENSION_ID_HANDSHAKE, msg).payload()[1:])
    assert "metadata_size" not in decoded
    assert "yourip" not in decoded


def test_handshake_negative_values_are_clamped():
    data = bytes([EXTENSION_ID_HANDSHAKE]) + encode({"m": {}, "v": b"", "reqq": -5, "metadata_size": -1})
    parsed = parse_extension_message(data).message
    assert (parsed.request_queue, parsed.metadata_size) == (0, 0)


def test_metadata_round_trip_keeps_trailing_data():
    msg = ExtensionMetadataMessage(EXTENSION_METADATA_MESSAGE_TYPE_DATA, 3, total_size=40000, data=b"piece bytes")
    ext = ExtensionMessage(EXTENSION_ID_METADATA, msg)
    payload = ext.payload()
    assert payload.endswith(b"piece bytes")
    assert parse_extension_message(payload).message == msg


def test_pex_round_trip():
    msg = ExtensionPEXMessage(added=b"\x01\x02\x03\x04\x1a\xe1", dropped=b"")
    parsed = parse_extension_message(ExtensionMessage(EXTENSION_ID_PEX, msg).payload())
    assert parsed.message == msg


def test_write_to_writes_payload_and_returns_count():
    ext = ExtensionMessage(EXTENSION_ID_PEX, ExtensionPEXMessage(added=b"abcdef"))
    stream = io.BytesIO()
    count = ext.write_to(stream)
    assert stream.getvalue() == ext.payload()
    assert count == len(stream.getvalue())
    assert stream.getvalue()[0] == EXTENSION_ID_PEX


@pytest.mark.parametrize("data", [b"", bytes([7]) + encode({}), bytes([EXTENSION_ID_PEX]) + b"xx"])
def test_parse_rejects_invalid_messages(data):
    with pytest.raises(InvalidExtensionMessageError):
        parse_extension_message(data)


def test_parse_rejects_wrong_field_type():
    data = bytes([EXTENSION_ID_METADATA]) + encode({"msg_type": b"not a number", "piece": 0})
    with pytest.raises(InvalidExtensionMessageError):
        parse_extension_message(data)