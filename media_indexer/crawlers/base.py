from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional

from ..errors import IndexerError
from ..models import AccessType, Mp3Tags, ScannedSong, Source
from ..reconciliation import ReconciliationSession
from ..tag_codec import TagCodec

logger = logging.getLogger(__name__)

CancelCheck = Callable[[], bool]
UnreachableCB = Callable[[str], None]


def _never() -> bool:
    return False


@dataclass(slots=True)
class CrawlEntry:
    path: str
    modified_time: datetime
    hint: Optional[Mp3Tags] = None


@dataclass(slots=True)
class ContainerBatch:
    """Candidate files found directly inside one container of a source."""

    container: str
    entries: List[CrawlEntry] = field(default_factory=list)


class SourceCrawler(ABC):
    """Walks one source container by container and feeds a reconciliation session."""

    access: AccessType

    def __init__(self, source: Source, *, extensions: Iterable[str] = (".mp3",)) -> None:
        self.source = source
        self.exts = {ext.lower() for ext in extensions}

    @abstractmethod
    def containers(
        self, is_cancelled: CancelCheck = _never, on_unreachable: Optional[UnreachableCB] = None
    ) -> Iterator[ContainerBatch]:
        """Yield one batch per container, checking ``is_cancelled`` before each one."""

    @abstractmethod
    def read_tags(self, entry: CrawlEntry, codec: TagCodec) -> Mp3Tags:
        """Return the tags for ``entry``; raises on transport or file errors."""

    def crawl(self) -> Iterator[CrawlEntry]:
        for batch in self.containers():
            yield from batch.entries

    def scan(
        self, session: ReconciliationSession, codec: TagCodec, is_cancelled: CancelCheck = _never
    ) -> int:
        """Crawl the source, parsing only files the session needs; returns the number parsed."""
        parsed = 0
        for batch in self.containers(is_cancelled, session.mark_unreachable):
            songs: list[ScannedSong] = []
            for entry in batch.entries:
                if is_cancelled():
                    logger.info("Scan of %s cancelled", self.source.name)
                    return parsed
                if not session.requires_scan(entry.path, entry.modified_time, entry.hint):
                    continue
                try:
                    tags = self.read_tags(entry, codec)
                except (IndexerError, OSError, EOFError) as exc:
                    logger.warning("Failed to read %s: %s", entry.path, exc)
                    continue
                logger.debug("Parsed %s", entry.path)
                songs.append(ScannedSong(path=entry.path, modified_time=entry.modified_time, tags=tags))
            if songs:
                parsed += len(songs)
                session.record_scanned(songs)
        return parsed

    def wanted(self, name: str) -> bool:
        lowered = name.lower()
        return any(lowered.endswith(ext) for ext in self.exts)
