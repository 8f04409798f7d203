"""How a peer was found."""

import enum


class Source(enum.IntEnum):
    """Origin of a peer address."""

    TRACKER = 0
    DHT = 1
    PEX = 2
    MANUAL = 3
    INCOMING = 4

    def __str__(self) -> str:
        return self.name.lower()