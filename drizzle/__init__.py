"""BitTorrent client building blocks: peer protocol, trackers, piece picking, caching and storage."""

__version__ = "0.1.0"