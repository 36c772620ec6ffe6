from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Iterable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .models import AccessType, Library
from .orchestrator import ScanOrchestrator, ScanState
from .repository import LibraryRepository

logger = logging.getLogger(__name__)


class WatchHandler(FileSystemEventHandler):
    def __init__(self, exts: Iterable[str], request_scan: Callable[[], None]) -> None:
        super().__init__()
        self.exts = {ext.lower() for ext in exts}
        self.request_scan = request_scan

    def on_created(self, event: FileSystemEvent) -> None:
        self._maybe_request(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._maybe_request(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._maybe_request(event, include_directories=True)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._maybe_request(event, include_directories=True)

    def _maybe_request(self, event: FileSystemEvent, include_directories: bool = False) -> None:
        src = event.src_path
        if isinstance(src, bytes):
            src = src.decode("utf-8", errors="replace")
        if event.is_directory:
            if not include_directories:
                return
        elif Path(src).suffix.lower() not in self.exts:
            return
        logger.debug("Change detected: %s", src)
        self.request_scan()


class ScanRequester:
    """Starts a background scan, remembering requests that arrive while one is running."""

    def __init__(self, orchestrator: ScanOrchestrator, library_id: int) -> None:
        self.orchestrator = orchestrator
        self.library_id = library_id
        self._pending = threading.Event()

    def request(self) -> None:
        if not self.orchestrator.start_scan(self.library_id):
            self._pending.set()

    def poll(self) -> None:
        if self._pending.is_set() and self.orchestrator.state is ScanState.IDLE:
            self._pending.clear()
            self.request()


def run_watch(
    orchestrator: ScanOrchestrator,
    repository: LibraryRepository,
    library: Library,
    exts: Iterable[str],
    *,
    interval: float = 1.0,
    stop: Optional[threading.Event] = None,
) -> None:
    folders = [
        source.folder
        for source in repository.sources(library.id)
        if source.access is AccessType.LOCAL and Path(source.folder).is_dir()
    ]
    if not folders:
        logger.warning("Library %s has no local folders to watch", library.name)
        return
    requester = ScanRequester(orchestrator, library.id)
    handler = WatchHandler(exts, requester.request)
    observer = Observer()
    for folder in folders:
        observer.schedule(handler, folder, recursive=True)
        logger.info("Watching %s", folder)
    stop = stop or threading.Event()
    observer.start()
    requester.request()
    try:
        while not stop.wait(interval):
            requester.poll()
    except KeyboardInterrupt:
        logger.info("Stopping watcher")
    finally:
        observer.stop()
        observer.join()
        orchestrator.cancel()
        orchestrator.wait()
