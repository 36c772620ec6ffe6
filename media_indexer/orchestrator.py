from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .crawlers import CrawlerRegistry
from .errors import TransportError
from .events import ScanEvents
from .merger import LibraryMerger
from .models import Song
from .pruner import GraphPruner
from .reconciliation import ReconciliationSession, RescanSession
from .repository import LibraryRepository
from .tag_codec import TagCodec

logger = logging.getLogger(__name__)


class ScanState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"


class ScanOutcome(str, Enum):
    COMPLETED = "completed"
    NO_CHANGES = "no_changes"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class ScanReport:
    library_id: int
    outcome: ScanOutcome
    new_songs: int = 0
    updated_songs: int = 0
    deleted_songs: int = 0
    deleted_albums: List[int] = field(default_factory=list)
    faulted_sources: List[str] = field(default_factory=list)


class ScanOrchestrator:
    """Runs one library scan at a time: crawl every source, then commit and prune.

    Requests arriving while a scan is running are dropped rather than queued.
    Nothing is written until all sources have been crawled, so a cancelled
    scan leaves the library untouched.
    """

    def __init__(
        self,
        repository: LibraryRepository,
        *,
        registry: Optional[CrawlerRegistry] = None,
        codec: Optional[TagCodec] = None,
        events: Optional[ScanEvents] = None,
        update_in_place: bool = False,
        active_library_id: Optional[int] = None,
    ) -> None:
        self.repository = repository
        self.registry = registry or CrawlerRegistry.default()
        self.codec = codec or TagCodec()
        self.events = events or ScanEvents()
        self.update_in_place = update_in_place
        self.active_library_id = active_library_id
        self.merger = LibraryMerger(repository)
        self.pruner = GraphPruner(repository, self.events)
        self.last_report: Optional[ScanReport] = None
        self._lock = threading.Lock()
        self._state = ScanState.IDLE
        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> ScanState:
        with self._lock:
            return self._state

    def run_scan(self, library_id: int, *, update_in_place: Optional[bool] = None) -> Optional[ScanReport]:
        """Scan on the calling thread; returns None if a scan is already running."""
        if not self._claim(library_id):
            return None
        return self._run_claimed(library_id, update_in_place)

    def start_scan(self, library_id: int, *, update_in_place: Optional[bool] = None) -> bool:
        if not self._claim(library_id):
            return False
        self._thread = threading.Thread(
            target=self._run_claimed,
            args=(library_id, update_in_place, False),
            name=f"scan-{library_id}",
            daemon=True,
        )
        self._thread.start()
        return True

    def cancel(self) -> None:
        if self.state is ScanState.SCANNING:
            logger.info("Scan cancellation requested")
        self._cancel.set()

    def wait(self, timeout: Optional[float] = None) -> Optional[ScanReport]:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return self.last_report

    def _claim(self, library_id: int) -> bool:
        with self._lock:
            if self._state is ScanState.SCANNING:
                logger.info("Scan of library %s dropped, a scan is already running", library_id)
                return False
            self._state = ScanState.SCANNING
            self._cancel.clear()
            self.last_report = None
            return True

    def _run_claimed(
        self, library_id: int, update_in_place: Optional[bool], reraise: bool = True
    ) -> Optional[ScanReport]:
        try:
            report = self._scan(library_id, self.update_in_place if update_in_place is None else update_in_place)
            self.last_report = report
            return report
        except Exception:
            if reraise:
                raise
            logger.exception("Scan of library %s failed", library_id)
            return None
        finally:
            with self._lock:
                self._state = ScanState.IDLE

    def _scan(self, library_id: int, update_in_place: bool) -> ScanReport:
        session_type = RescanSession if update_in_place else ReconciliationSession
        sessions: list[ReconciliationSession] = []
        faulted: list[str] = []
        for source in self.repository.sources(library_id):
            if self._cancel.is_set():
                break
            session = session_type.for_source(source, self.repository)
            sessions.append(session)
            crawler = self.registry.create(source)
            logger.info("Scanning %s (%s %s)", source.name, source.access.value, source.scan_root)
            try:
                parsed = crawler.scan(session, self.codec, self._cancel.is_set)
            except TransportError as exc:
                logger.error("Source %s unavailable: %s", source.name, exc)
                session.faulted = True
                faulted.append(source.name)
                continue
            logger.info("Scanned %s: %d files parsed", source.name, parsed)

        if self._cancel.is_set():
            logger.info("Scan of library %s cancelled, nothing written", library_id)
            return ScanReport(library_id=library_id, outcome=ScanOutcome.CANCELLED, faulted_sources=faulted)

        report = ScanReport(library_id=library_id, outcome=ScanOutcome.NO_CHANGES, faulted_sources=faulted)
        if not any(session.has_changes for session in sessions):
            logger.info("Library %s unchanged", library_id)
            return report

        with self.repository.writing():
            for session in sessions:
                for album in session.new_albums:
                    added = self.merger.merge(album, library_id)
                    session.mark_new(added)
                    report.new_songs += len(added)
                for song, scanned in session.updated:
                    self.merger.apply_update(song, scanned)
                    report.updated_songs += 1
            removed: Dict[int, Song] = {}
            for session in sessions:
                for song in (*session.changed_album_name, *session.replaced, *session.unmatched_songs()):
                    removed[song.id] = song
            report.deleted_albums = self.pruner.remove_songs(removed.values())
            report.deleted_songs = len(removed)

        report.outcome = ScanOutcome.COMPLETED
        logger.info(
            "Library %s: %d added, %d updated, %d deleted, %d albums removed",
            library_id,
            report.new_songs,
            report.updated_songs,
            report.deleted_songs,
            len(report.deleted_albums),
        )
        if library_id == self.active_library_id:
            self.events.library_changed(library_id)
        return report
