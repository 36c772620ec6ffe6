"""Shared builders for tests that need a real SQLite-backed library."""

from __future__ import annotations

import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from media_indexer.merger import LibraryMerger
from media_indexer.models import AccessType, Library, Mp3Tags, ScannedAlbum, ScannedSong, Source
from media_indexer.repository import LibraryRepository
from media_indexer.store import LibraryStore

STAMP = datetime(2024, 1, 1, 12, 0)


def scanned_song(path: str, artist: str, album: str, title: str = "Title", track: str = "1", **tags) -> ScannedSong:
    song = ScannedSong(
        path=path,
        modified_time=STAMP,
        tags=Mp3Tags(artist=artist, album=album, title=title, track=track, **tags),
    )
    song.normalise()
    return song


def scanned_album(source_id: int, container: str, *songs: ScannedSong) -> ScannedAlbum:
    album = ScannedAlbum(name=songs[0].tags.album, source_id=source_id, container=container)
    for song in songs:
        album.add(song)
    return album


class LibraryTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.store = LibraryStore(self.tmp / "library.sqlite3")
        self.repository = LibraryRepository(self.store)
        self.library = self.repository.add_library(Library(name="Music"))
        self.source = self.repository.add_source(
            Source(name="Disk", library_id=self.library.id, access=AccessType.LOCAL, folder=str(self.tmp / "music"))
        )
        self.merger = LibraryMerger(self.repository)

    def tearDown(self) -> None:
        self.store.close()
        self._tmp.cleanup()

    def merge(self, container: str, *songs: ScannedSong):
        return self.merger.merge(scanned_album(self.source.id, container, *songs), self.library.id)
