from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from ..errors import TransportError
from ..models import AccessType, Mp3Tags, normalise_path
from ..tag_codec import TagCodec
from .base import CancelCheck, ContainerBatch, CrawlEntry, SourceCrawler, UnreachableCB, _never

logger = logging.getLogger(__name__)


class LocalCrawler(SourceCrawler):
    """Crawls a folder on the local filesystem."""

    access = AccessType.LOCAL

    @property
    def root(self) -> Path:
        return Path(self.source.folder).expanduser()

    def containers(
        self, is_cancelled: CancelCheck = _never, on_unreachable: Optional[UnreachableCB] = None
    ) -> Iterator[ContainerBatch]:
        root = self.root
        if not root.is_dir() or not os.access(root, os.R_OK | os.X_OK):
            raise TransportError(f"cannot read {root}")
        yield from self._walk(root, is_cancelled, on_unreachable)

    def read_tags(self, entry: CrawlEntry, codec: TagCodec) -> Mp3Tags:
        with self._absolute(entry.path).open("rb") as fh:
            return codec.read(fh)

    def _walk(
        self, directory: Path, is_cancelled: CancelCheck, on_unreachable: Optional[UnreachableCB]
    ) -> Iterator[ContainerBatch]:
        if is_cancelled():
            return
        relative = self._relative(directory)
        try:
            with os.scandir(directory) as it:
                children = sorted(it, key=lambda item: item.name)
        except OSError as exc:
            if directory == self.root:
                raise TransportError(f"cannot list {directory}: {exc}") from exc
            logger.warning("Skipping unreadable directory %s: %s", directory, exc)
            if on_unreachable is not None:
                on_unreachable(relative)
            return
        batch = ContainerBatch(container=relative)
        subdirectories: list[Path] = []
        for child in children:
            try:
                if child.is_dir(follow_symlinks=False):
                    subdirectories.append(Path(child.path))
                elif child.is_file() and self.wanted(child.name):
                    modified = datetime.fromtimestamp(child.stat().st_mtime)
                    batch.entries.append(
                        CrawlEntry(path=self._relative(Path(child.path)), modified_time=modified)
                    )
            except OSError as exc:
                logger.warning("Skipping %s: %s", child.path, exc)
        if batch.entries:
            logger.debug("Found %d files in %s", len(batch.entries), directory)
            yield batch
        for subdirectory in subdirectories:
            yield from self._walk(subdirectory, is_cancelled, on_unreachable)

    def _relative(self, path: Path) -> str:
        return normalise_path(path.relative_to(self.root).as_posix() if path != self.root else "/")

    def _absolute(self, relative: str) -> Path:
        return self.root / relative.lstrip("/")
