"""Data kept for resuming a torrent, and its JSON form."""

from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Union

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_TIME_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)


@dataclass
class Stats:
    """Transfer statistics of a torrent."""

    bytes_downloaded: int = 0
    bytes_uploaded: int = 0
    bytes_wasted: int = 0
    seeded_for: timedelta = timedelta(0)


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset() or timedelta(0)
    if not offset:
        return text + "Z"
    minutes = int(offset.total_seconds()) // 60
    sign = "+" if minutes >= 0 else "-"
    hours, mins = divmod(abs(minutes), 60)
    return f"{text}{sign}{hours:02d}:{mins:02d}"


def _parse_time(text: str) -> datetime:
    match = _TIME_RE.fullmatch(text)
    if not match:
        raise ValueError(f"invalid time: {text!r}")
    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    fraction, zone = match.group(7), match.group(8)
    micro = int((fraction + "000000")[:6]) if fraction else 0
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = 1 if zone[0] == "+" else -1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    return datetime(year, month, day, hour, minute, second, micro, tzinfo=tz)


def _nanoseconds(value: timedelta) -> int:
    return ((value.days * 86400 + value.seconds) * 1_000_000 + value.microseconds) * 1000


def _b64decode(value: Any) -> bytes:
    if value is None:
        return b""
    if not isinstance(value, str):
        raise ValueError(f"expected base64 string, got {value!r}")
    return base64.b64decode(value, validate=True)


@dataclass
class Spec:
    """Everything needed to resume an existing torrent."""

    info_hash: bytes = b""
    port: int = 0
    name: str = ""
    trackers: list[list[str]] = field(default_factory=list)
    url_list: list[str] = field(default_factory=list)
    fixed_peers: list[str] = field(default_factory=list)
    info: bytes = b""
    bitfield: bytes = b""
    added_at: datetime = _ZERO_TIME
    bytes_downloaded: int = 0
    bytes_uploaded: int = 0
    bytes_wasted: int = 0
    seeded_for: timedelta = timedelta(0)
    started: bool = False
    stop_after_download: bool = False

    def to_json(self) -> str:
        """Serialise to JSON; binary fields are base64, durations are nanoseconds."""
        obj = {
            "Port": self.port,
            "Name": self.name,
            "Trackers": [list(tier) for tier in self.trackers],
            "URLList": list(self.url_list),
            "FixedPeers": list(self.fixed_peers),
            "AddedAt": _format_time(self.added_at),
            "BytesDownloaded": self.bytes_downloaded,
            "BytesUploaded": self.bytes_uploaded,
            "BytesWasted": self.bytes_wasted,
            "Started": self.started,
            "StopAfterDownload": self.stop_after_download,
            "InfoHash": base64.b64encode(self.info_hash).decode("ascii"),
            "Info": base64.b64encode(self.info).decode("ascii"),
            "Bitfield": base64.b64encode(self.bitfield).decode("ascii"),
            "SeededFor": _nanoseconds(self.seeded_for),
        }
        return json.dumps(obj, separators=(",", ":"))

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> Spec:
        """Build a Spec from the JSON produced by to_json()."""
        obj = json.loads(data)
        if not isinstance(obj, dict):
            raise ValueError("spec JSON must be an object")
        added_at = obj.get("AddedAt")
        return cls(
            info_hash=_b64decode(obj.get("InfoHash")),
            info=_b64decode(obj.get("Info")),
            bitfield=_b64decode(obj.get("Bitfield")),
            seeded_for=timedelta(microseconds=int(obj.get("SeededFor") or 0) // 1000),
            port=int(obj.get("Port") or 0),
            name=obj.get("Name") or "",
            trackers=[list(tier) for tier in obj.get("Trackers") or []],
            url_list=list(obj.get("URLList") or []),
            fixed_peers=list(obj.get("FixedPeers") or []),
            added_at=_parse_time(added_at) if added_at else _ZERO_TIME,
            bytes_downloaded=int(obj.get("BytesDownloaded") or 0),
            bytes_uploaded=int(obj.get("BytesUploaded") or 0),
            bytes_wasted=int(obj.get("BytesWasted") or 0),
            started=bool(obj.get("Started")),
            stop_after_download=bool(obj.get("StopAfterDownload")),
        )