from datetime import timedelta

import pytest
import responses

from drizzle.bencoding import encode
from drizzle.httptracker import HTTPTracker, StatusError
from drizzle.tracker import (
    AnnounceRequest,
    CompactPeer,
    DecodeError,
    Event,
    Torrent,
    TrackerError,
)

RAW_URL = "http://127.0.0.1:5000/announce"
TIMEOUT = 2


def _tracker():
    return HTTPTracker(RAW_URL, TIMEOUT, "Mozilla/5.0", 2 * 1024 * 1024)


def _torrent(peer_byte, port, left):
    return Torrent(
        info_hash=bytes([6]) + bytes(19),
        peer_id=bytes([peer_byte]) + bytes(19),
        port=port,
        bytes_left=left,
    )


def test_http_tracker_seeder_and_leecher():
    seeder_peer = CompactPeer.from_address(("127.0.0.1", 1111)).to_bytes()
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.GET,
            RAW_URL,
            body=encode({"interval": 60, "complete": 1, "incomplete": 0, "peers": b""}),
        )
        rsps.add(
            responses.GET,
            RAW_URL,
            body=encode({"interval": 60, "complete": 1, "incomplete": 1, "peers": seeder_peer}),
        )
        trk = _tracker()
        trk.announce(AnnounceRequest(torrent=_torrent(1, 1111, 0)))
        resp = trk.announce(AnnounceRequest(torrent=_torrent(2, 2222, 1), num_want=10))
    assert len(resp.peers) == 1
    assert resp.peers[0][1] == 1111
    assert resp.interval == timedelta(seconds=60)
    assert (resp.seeders, resp.leechers) == (1, 1)


def test_announce_url_parameters():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, RAW_URL, body=encode({"interval": 60}))
        _tracker().announce(
            AnnounceRequest(torrent=_torrent(1, 1111, 0), event=Event.STARTED, num_want=10)
        )
        url = rsps.calls[0].request.url
        assert rsps.calls[0].request.headers["User-Agent"] == "Mozilla/5.0"
    expected = (
        RAW_URL
        + "?info_hash=%06"
        + "%00" * 19
        + "&peer_id=%01"
        + "%00" * 19
        + "&port=1111&uploaded=0&downloaded=0&left=0&compact=1&no_peer_id=1&numwant=10"
        + "&event=started&key=00000000"
    )
    assert url == expected


def test_tracker_id_is_remembered():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, RAW_URL, body=encode({"interval": 60, "tracker id": b"abc"}))
        rsps.add(responses.GET, RAW_URL, body=encode({"interval": 60}))
        trk = _tracker()
        trk.announce(AnnounceRequest(torrent=_torrent(1, 1111, 0)))
        trk.announce(AnnounceRequest(torrent=_torrent(1, 1111, 0)))
        assert "&trackerid=abc&" in rsps.calls[1].request.url
        assert "trackerid" not in rsps.calls[0].request.url


def test_failure_reason():
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.GET,
            RAW_URL,
            body=encode({"failure reason": b"not registered", "retry in": b"5"}),
        )
        with pytest.raises(TrackerError) as info:
            _tracker().announce(AnnounceRequest(torrent=_torrent(1, 1111, 0)))
    assert info.value.failure_reason == "not registered"
    assert info.value.retry_in == timedelta(minutes=5)


def test_status_error_on_undecodable_body():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, RAW_URL, body=b"oops", status=500)
        with pytest.raises(StatusError) as info:
            _tracker().announce(AnnounceRequest(torrent=_torrent(1, 1111, 0)))
    assert info.value.code == 500
    assert info.value.body == "oops"
    assert str(info.value) == "http status: 500"


def test_decode_error_on_ok_status():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, RAW_URL, body=b"oops", status=200)
        with pytest.raises(DecodeError):
            _tracker().announce(AnnounceRequest(torrent=_torrent(1, 1111, 0)))


def test_dictionary_peers_and_external_ip_filter():
    body = encode(
        {
            "interval": 30,
            "min interval": 10,
            "peers": [
                {"ip": b"1.2.3.4", "port": 1111},
                {"ip": b"5.6.7.8", "port": 2222},
            ],
            "external ip": bytes([1, 2, 3, 4]),
            "warning message": b"careful",
        }
    )
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, RAW_URL, body=body)
        resp = _tracker().announce(AnnounceRequest(torrent=_torrent(1, 1111, 0)))
    assert resp.peers == [("5.6.7.8", 2222)]
    assert resp.min_interval == timedelta(seconds=10)
    assert resp.warning_message == "careful"


def test_invalid_compact_peers():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, RAW_URL, body=encode({"interval": 60, "peers": b"\x01\x02\x03"}))
        with pytest.raises(DecodeError):
            _tracker().announce(AnnounceRequest(torrent=_torrent(1, 1111, 0)))


def test_url_with_query_uses_ampersand():
    url = RAW_URL + "?passkey=placeholder"
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, RAW_URL, body=encode({"interval": 60}))
        trk = HTTPTracker(url, TIMEOUT, "Mozilla/5.0", 1024)
        trk.announce(AnnounceRequest(torrent=_torrent(1, 1111, 0)))
        assert rsps.calls[0].request.url.startswith(url + "&info_hash=")
    assert trk.url() == url