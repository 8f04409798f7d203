# drizzle

The parts of a BitTorrent client that do the work, as a plain Python library.
You import the modules and put them together in your own client.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## What is included

| Module | Purpose |
| --- | --- |
| `drizzle.bencoding` | Encode and decode bencoded data (`encode`, `decode`, `decode_prefix`). Decoding errors raise `BencodeError`. |
| `drizzle.peerprotocol` | Peer wire messages with their `payload()` bytes, `MessageID`, and the extension protocol: `ExtensionMessage`, `new_extension_handshake` and `parse_extension_message` for the handshake, `ut_metadata` and `ut_pex`. |
| `drizzle.peersource` | `Source`, which records where a peer address came from. |
| `drizzle.stringutil` | `asciify` and `printable`, for showing untrusted names safely. |
| `drizzle.semaphore` | A counting `Semaphore` (`wait`, `signal`, usable with `with`) that reports how many callers hold it (`len()`) and how many are waiting (`waiting()`). |
| `drizzle.resumer` | Resume `Stats` and a `Spec` with `to_json()` and `Spec.from_json()`. |
| `drizzle.tracker` | `CompactPeer`, `decode_peers_compact`, `Event`, `Torrent`, `AnnounceRequest`, `AnnounceResponse`, the `Tracker` base class, and `Tier`, which moves to the next tracker after a failed announce. |
| `drizzle.pexlist` | `PEXList` and `RecentlySeen`, which build peer exchange lists. |
| `drizzle.resolver` | `resolve` turns `host:port` into an IPv4 `(ip, port)` pair and checks it against an optional blocklist (any object with a `blocked(ip)` method). |
| `drizzle.httptracker` | `HTTPTracker`, which announces over HTTP(S) using `requests`. |
| `drizzle.udptracker` | `UDPTracker` and its shared `Transport`, for UDP trackers (BEP 15), with `AnnouncePacket` and the `UDPBackOff` retry schedule. |
| `drizzle.trackermanager` | `TrackerManager`, which returns an `HTTPTracker` or `UDPTracker` for a URL and raises `UnsupportedSchemeError` for other schemes. |
| `drizzle.piece` | `Piece`, `Block`, `FileSection` and `new_pieces`, which map torrent files onto pieces. |
| `drizzle.sets` | `IdentitySet`, an ordered set that compares members by identity. |
| `drizzle.piececache` | An LRU piece `Cache`, bounded in bytes, whose entries expire a TTL after their last use. |
| `drizzle.piecedownloader` | `PieceDownloader`, which tracks the block requests of one piece from one peer. |
| `drizzle.filestorage` | `FileStorage`, which keeps torrent data in files under a directory; `open(name, size)` returns a file with `read_at`, `write_at` and `close`, and whether it existed. |
| `drizzle.urldownloader` | `URLDownloader` and `create_jobs`, for downloading piece ranges from webseeds with HTTP range requests. |
| `drizzle.webseedsource` | `WebseedSource` and `new_list`. |
| `drizzle.resourcemanager` | `ResourceManager`, which shares out a limited resource; waiting requests are told through a callback when their share is free. |
| `drizzle.piecepicker` | `PiecePicker`, which picks pieces rarest-first, switches to endgame mode, and splits work between peers and webseed sources. |

## Examples

Splitting a piece into blocks:

```python
from drizzle.piece import Piece

p = Piece(index=1, length=2 * 16 * 1024 + 42)
p.num_blocks()        # 3
p.get_block(2)        # Block(index=2, begin=32768, length=42)
p.get_block(3)        # None
```

Announcing to an HTTP tracker:

```python
from drizzle.tracker import AnnounceRequest, Torrent
from drizzle.trackermanager import TrackerManager

manager = TrackerManager(None, 5.0, False)
trk = manager.get("http://tracker.example.com/announce", 10.0, "drizzle", 2 * 1024 * 1024)
resp = trk.announce(AnnounceRequest(torrent=Torrent(info_hash=bytes(20), peer_id=bytes(20), port=6881)))
for ip, port in resp.peers:
    print(ip, port)
```

Caching piece reads:

```python
from drizzle.piececache import Cache

cache = Cache(max_size=10 * 1024 * 1024, ttl=60.0, parallel_reads=4)
data = cache.get("piece-7", lambda: b"...read from disk...")
```

Failures are raised as exceptions. For example, `drizzle.tracker.TrackerError`
carries the failure reason the tracker sent, and
`drizzle.resolver.BlockedError` means the address is on the blocklist.

## What it does not do

- There is no command-line program and no session that runs torrents; you
  connect the pieces yourself.
- There is no choking algorithm: deciding which peers to unchoke is left to
  your client.
- It does not open peer connections, perform the peer handshake or speak DHT.
- Resume data is only converted to and from JSON by `Spec`; there is no
  database that stores it.