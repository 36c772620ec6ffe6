from __future__ import annotations

import logging
from typing import Callable, List

logger = logging.getLogger(__name__)

AlbumsDeletedCB = Callable[[List[int]], None]
LibraryChangedCB = Callable[[int], None]


class ScanEvents:
    """Fan-out of the notifications a scan produces to whoever registered for them."""

    def __init__(self) -> None:
        self._albums_deleted: list[AlbumsDeletedCB] = []
        self._library_changed: list[LibraryChangedCB] = []

    def on_albums_deleted(self, callback: AlbumsDeletedCB) -> None:
        self._albums_deleted.append(callback)

    def on_library_changed(self, callback: LibraryChangedCB) -> None:
        self._library_changed.append(callback)

    def albums_deleted(self, album_ids: List[int]) -> None:
        for callback in list(self._albums_deleted):
            try:
                callback(list(album_ids))
            except Exception:
                logger.exception("albums_deleted subscriber failed")

    def library_changed(self, library_id: int) -> None:
        for callback in list(self._library_changed):
            try:
                callback(library_id)
            except Exception:
                logger.exception("library_changed subscriber failed")
