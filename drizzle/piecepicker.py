"""Choice of the next piece to download, from which peer or webseed source.

Things that matter when selecting a piece:

* the piece is done (hash checked and written to disk) or being written
* the peer has the piece
* the peer is choking us
* the piece is marked as allowed-fast
* the piece is requested from other peers
* the piece is reserved for a webseed source
* endgame mode is active (all pieces are requested)
* there are stalled peers (snubbed, or choked in the middle of a download)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from .piece import Piece
from .sets import IdentitySet
from .webseedsource import WebseedSource


@dataclass(frozen=True)
class Range:
    """A range of piece indexes; ``begin`` is inclusive, ``end`` exclusive."""

    begin: int = 0
    end: int = 0

    def __len__(self) -> int:
        return self.end - self.begin


@dataclass
class WebseedDownloadSpec:
    """Piece range to download from a webseed source."""

    source: WebseedSource
    begin: int
    end: int


@dataclass(eq=False)
class _PieceState:
    piece: Piece
    having: IdentitySet = field(default_factory=IdentitySet)
    requested: IdentitySet = field(default_factory=IdentitySet)
    snubbed: IdentitySet = field(default_factory=IdentitySet)
    choked: IdentitySet = field(default_factory=IdentitySet)
    # Downloading from a webseed source or reserved for one.
    requested_webseed: Optional[WebseedSource] = None

    @property
    def index(self) -> int:
        return self.piece.index

    @property
    def busy(self) -> bool:
        return self.piece.done or self.piece.writing

    def stalled_downloads(self) -> int:
        """Downloads whose peers are snubbed or choked."""
        return len(self.snubbed) + len(self.choked)

    def running_downloads(self) -> int:
        """Downloads that are actively progressing."""
        return len(self.requested) - self.stalled_downloads()

    def available_for_webseed(self, duplicate: bool) -> bool:
        if self.busy or self.requested_webseed is not None:
            return False
        if not duplicate:
            return self.requested_webseed is not None
        return True


class PiecePicker:
    """Tracks piece availability among peers and picks pieces to download.

    Peers are objects with the attributes ``downloading``, ``peer_choking``,
    ``snubbed``, ``bitfield`` (having a ``set(i)`` method) and
    ``received_allowed_fast`` (an IdentitySet of pieces).
    """

    def __init__(
        self,
        pieces: Sequence[Piece],
        max_duplicate_download: int,
        webseed_sources: Optional[Sequence[WebseedSource]],
    ) -> None:
        self._pieces = [_PieceState(p) for p in pieces]
        self._by_availability = list(self._pieces)
        self._by_stalled = list(self._pieces)
        self._max_duplicate_download = max_duplicate_download
        self._webseed_sources = list(webseed_sources or [])
        self._available = 0
        self._endgame = False

    # Webseed bookkeeping

    def close_webseed_downloader(self, src: WebseedSource) -> None:
        """Stop downloading from ``src`` and release its reserved pieces."""
        if src.download_speed is not None:
            src.download_speed.stop()
        src.download_speed = None
        downloader = src.downloader
        if downloader is None:
            return
        for i in range(downloader.begin, downloader.end):
            if self._pieces[i].requested_webseed is not src:
                raise RuntimeError(f"invalid source in piece: {i}")
            self._pieces[i].requested_webseed = None
        downloader.close()
        src.downloader = None

    def webseed_stop_at(self, src: WebseedSource, i: int) -> bool:
        """Make the downloader of ``src`` stop at index ``i``; True if it was closed."""
        downloader = src.downloader
        if downloader is None:
            raise RuntimeError("source is not downloading")
        for j in range(i, downloader.end):
            owner = self._pieces[j].requested_webseed
            if owner is not src:
                name = owner.url if owner is not None else None
                raise RuntimeError(f"invalid source in piece #{j}: {name}")
            self._pieces[j].requested_webseed = None
        downloader.update_end(i)
        if downloader.read_current() >= i:
            self.close_webseed_downloader(src)
            return True
        return False

    # Queries

    def available(self) -> int:
        """Number of pieces that at least one peer has."""
        return self._available

    def endgame(self) -> bool:
        """True once every piece has been requested."""
        return self._endgame

    def requested_peers(self, i: int) -> list[Any]:
        """Peers the piece at index ``i`` is requested from."""
        return list(self._pieces[i].requested)

    def requested_webseed_source(self, i: int) -> Optional[WebseedSource]:
        """Webseed source the piece at index ``i`` is reserved for."""
        return self._pieces[i].requested_webseed

    # Peer events

    def handle_have(self, pe: Any, i: int) -> None:
        """The peer has the piece at index ``i``."""
        pe.bitfield.set(i)
        self._add_having_peer(i, pe)

    def handle_allowed_fast(self, pe: Any, i: int) -> None:
        """The peer allows the piece at index ``i`` to be downloaded while choked."""
        pe.received_allowed_fast.add(self._pieces[i].piece)

    def handle_snubbed(self, pe: Any, i: int) -> None:
        """The peer is slow or stalled while downloading piece ``i``."""
        if pe in self._pieces[i].choked:
            raise RuntimeError("peer snubbed while choked")
        self._pieces[i].snubbed.add(pe)

    def handle_choke(self, pe: Any, i: int) -> None:
        """The peer choked us while downloading piece ``i``."""
        self._pieces[i].snubbed.remove(pe)
        self._pieces[i].choked.add(pe)

    def handle_unchoke(self, pe: Any, i: int) -> None:
        """The peer unchoked us while downloading piece ``i``."""
        self._pieces[i].choked.remove(pe)

    def handle_cancel_download(self, pe: Any, i: int) -> None:
        """The download of piece ``i`` from the peer is cancelled."""
        self._pieces[i].requested.remove(pe)
        self._pieces[i].snubbed.remove(pe)

    def handle_disconnect(self, pe: Any) -> None:
        """Forget the peer everywhere."""
        for i in range(len(self._pieces)):
            self.handle_cancel_download(pe, i)
            self._remove_having_peer(i, pe)

    def _add_having_peer(self, i: int, pe: Any) -> None:
        state = self._pieces[i]
        if state.having.add(pe) and len(state.having) == 1:
            self._available += 1

    def _remove_having_peer(self, i: int, pe: Any) -> None:
        state = self._pieces[i]
        if state.having.remove(pe) and len(state.having) == 0:
            self._available -= 1

    # Picking for peers

    def pick_for(self, pe: Any) -> tuple[Optional[Piece], bool]:
        """Select the next piece to download from the peer.

        Returns the piece (or None) and whether it is allowed-fast.
        """
        state, allowed_fast = self._find_piece(pe)
        if state is None:
            return None, False
        pe.snubbed = False
        state.requested.add(pe)
        return state.piece, allowed_fast

    def _find_piece(self, pe: Any) -> tuple[Optional[_PieceState], bool]:
        # A peer downloads one piece at a time.
        if pe.downloading:
            return None, False
        if self._downloading_webseed():
            if pe.peer_choking:
                return None, False
            state = self._pick_last_piece_of_smallest_gap(pe)
            if state is None:
                state = self._peer_steals_from_webseed(pe)
            if state is None:
                return None, False
            return state, state.piece in pe.received_allowed_fast
        state = self._pick_allowed_fast(pe)
        if state is not None:
            return state, True
        if pe.peer_choking:
            return None, False
        if self._endgame:
            return self._pick_endgame(pe), False
        state = self._pick_rarest(pe)
        if state is not None:
            return state, False
        if self._endgame:
            return self._pick_endgame(pe), False
        return self._pick_stalled(pe), False

    def _pick_allowed_fast(self, pe: Any) -> Optional[_PieceState]:
        for pi in pe.received_allowed_fast:
            state = self._pieces[pi.index]
            if state.busy:
                continue
            if len(state.requested) == 0 and pe in state.having:
                return state
        return None

    def _pick_rarest(self, pe: Any) -> Optional[_PieceState]:
        self._by_availability.sort(key=lambda s: len(s.having))
        has_unrequested = False
        for state in self._by_availability:
            if state.busy:
                continue
            if len(state.requested) == 0:
                if pe in state.having:
                    return state
                has_unrequested = True
        if not has_unrequested:
            self._endgame = True
        return None

    def _pick_endgame(self, pe: Any) -> Optional[_PieceState]:
        self._by_availability.sort(key=lambda s: s.running_downloads())
        for state in self._by_availability:
            if state.busy:
                continue
            if len(state.requested) < self._max_duplicate_download and pe in state.having:
                return state
        return None

    def _pick_stalled(self, pe: Any) -> Optional[_PieceState]:
        self._by_stalled.sort(key=lambda s: s.stalled_downloads())
        for state in self._by_stalled:
            if state.busy or state.running_downloads() > 0:
                continue
            if len(state.requested) < self._max_duplicate_download and pe in state.having:
                return state
        return None

    # Picking for webseed sources

    def pick_webseed(self, src: WebseedSource) -> Optional[WebseedDownloadSpec]:
        """Reserve the next piece range for ``src``; None if there is nothing to download."""
        r = self._find_range_for_webseed()
        if r.begin == r.end:
            return None
        for i in range(r.begin, r.end):
            if self._pieces[i].requested_webseed is not None:
                raise RuntimeError("already downloading from webseed url")
            self._pieces[i].requested_webseed = src
        return WebseedDownloadSpec(source=src, begin=r.begin, end=r.end)

    def _downloading_webseed(self) -> bool:
        return any(src.downloading() for src in self._webseed_sources)

    def _downloading_sources(self) -> list[WebseedSource]:
        return [src for src in self._webseed_sources if src.downloading()]

    def _find_range_for_webseed(self) -> Range:
        gaps = self._find_gaps()
        if not gaps:
            return self._webseed_steals_from_another_webseed()
        return max(gaps, key=len)

    def _webseed_steals_from_another_webseed(self) -> Range:
        downloading = self._downloading_sources()
        if not downloading:
            return Range()
        src = max(downloading, key=lambda s: s.remaining())
        downloader = src.downloader
        assert downloader is not None
        end = downloader.end
        begin = (downloader.read_current() + end + 1) // 2
        self.webseed_stop_at(src, begin)
        return Range(begin, end)

    def _peer_steals_from_webseed(self, pe: Any) -> Optional[_PieceState]:
        for src in self._downloading_sources():
            if src.remaining() == 0:
                continue
            downloader = src.downloader
            assert downloader is not None
            for i in range(downloader.end - 1, downloader.read_current(), -1):
                state = self._pieces[i]
                if state.busy or pe not in state.having or len(state.requested) > 0:
                    continue
                self.webseed_stop_at(src, i)
                return state
        return None

    def _find_gaps(self) -> list[Range]:
        return self._find_gaps_with(False) or self._find_gaps_with(True)

    def _find_gaps_with(self, duplicate: bool) -> list[Range]:
        gaps = []
        begin: Optional[int] = None
        for state in self._pieces:
            available = state.available_for_webseed(duplicate)
            if begin is None and available:
                begin = state.index
            elif begin is not None and not available:
                gaps.append(Range(begin, state.index))
                begin = None
        if begin is not None:
            gaps.append(Range(begin, len(self._pieces)))
        return gaps

    def _pick_last_piece_of_smallest_gap(self, pe: Any) -> Optional[_PieceState]:
        gaps = sorted(self._find_gaps(), key=len)
        for gap in gaps:
            for i in range(gap.end - 1, gap.begin - 1, -1):
                state = self._pieces[i]
                if pe not in state.having:
                    continue
                if pe.peer_choking and state.piece not in pe.received_allowed_fast:
                    continue
                return state
        return None