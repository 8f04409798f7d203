"""Web sources that torrent data can be downloaded from."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from .urldownloader import URLDownloader


@dataclass(eq=False)
class WebseedSource:
    """A URL for downloading torrent data, with its download state.

    ``download_speed`` is a meter object or None when nothing is measured.
    """

    url: str
    disabled: bool = False
    downloader: Optional[URLDownloader] = None
    last_error: Optional[BaseException] = None
    disabled_at: Optional[datetime] = None
    download_speed: Optional[Any] = None

    def downloading(self) -> bool:
        """True if data is being downloaded from this source."""
        return self.downloader is not None

    def remaining(self) -> int:
        """Pieces still to download from this source, not counting the current one."""
        if self.downloader is None:
            return 0
        return self.downloader.end - self.downloader.read_current() - 1


def new_list(sources: Iterable[str]) -> list[WebseedSource]:
    """Return a WebseedSource for each URL."""
    return [WebseedSource(url=url) for url in sources]