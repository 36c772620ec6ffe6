from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from .models import AccessType, Mp3Tags, ScanAction, ScannedAlbum, ScannedSong, Song, Source
from .models import container_of, normalise_path
from .repository import LibraryRepository

logger = logging.getLogger(__name__)

FTP_CLOCK_OFFSET = timedelta(hours=1)


@dataclass(slots=True)
class KnownSong:
    """A persisted song together with the names it is filed under."""

    song: Song
    artist_name: str
    album_name: str


def upnp_key(artist: str, title: str, album: str, track: int) -> str:
    return f"{artist.casefold()}:{title.casefold()}:{album.casefold()}:{track}"


class ReconciliationSession:
    """Diffs one crawl of a source against the songs already stored for it.

    Nothing is written here; the session only classifies songs and buffers
    what the merger and pruner should do once every source has been crawled.
    """

    def __init__(self, source: Source, known: Iterable[KnownSong]) -> None:
        self.source = source
        self.new_albums: List[ScannedAlbum] = []
        self.replaced: List[Song] = []
        self.changed_album_name: List[Song] = []
        self.updated: List[Tuple[Song, ScannedSong]] = []
        self.faulted = False
        self._known: Dict[int, KnownSong] = {}
        self._by_key: Dict[str, Song] = {}
        self._actions: Dict[int, ScanAction] = {}
        self._unreachable: List[str] = []
        for entry in known:
            song = entry.song
            self._known[song.id] = entry
            self._actions[song.id] = ScanAction.NOT_MATCHED
            key = self._stored_key(entry)
            if key in self._by_key:
                logger.debug("Duplicate song key %s in source %s", key, source.name)
                continue
            self._by_key[key] = song

    @classmethod
    def for_source(cls, source: Source, repository: LibraryRepository) -> "ReconciliationSession":
        known: list[KnownSong] = []
        for song in repository.source_songs(source.id):
            album = repository.album(song.album_id)
            artist_album = repository.artist_album(song.artist_album_id)
            artist = repository.artist(artist_album.artist_id) if artist_album else None
            known.append(
                KnownSong(
                    song=song,
                    artist_name=artist.name if artist else "",
                    album_name=album.name if album else "",
                )
            )
        return cls(source, known)

    def requires_scan(
        self, path: str, modified_time: datetime, hint: Optional[Mp3Tags] = None
    ) -> bool:
        song = self._by_key.get(self._candidate_key(path, hint))
        if song is None:
            return True
        if self._same_time(song.modified_time, modified_time):
            self._actions[song.id] = ScanAction.MATCHED
            return False
        self._actions[song.id] = ScanAction.DIFFER
        return True

    def record_scanned(self, songs: Iterable[ScannedSong]) -> None:
        groups: Dict[str, ScannedAlbum] = {}
        for scanned in songs:
            scanned.normalise()
            if not self._accept(scanned):
                continue
            key = scanned.tags.album.casefold()
            album = groups.get(key)
            if album is None:
                album = ScannedAlbum(
                    name=scanned.tags.album,
                    source_id=self.source.id,
                    container=container_of(scanned.path),
                )
                groups[key] = album
            album.add(scanned)
        for album in groups.values():
            logger.debug(
                "Scanned album %s in %s: %d songs, single artist %s",
                album.name,
                album.container,
                len(album.songs),
                album.single_artist,
            )
            self.new_albums.append(album)

    def mark_unreachable(self, container: str) -> None:
        prefix = normalise_path(container).rstrip("/")
        logger.info("Songs under %s on %s kept, container unreachable", prefix or "/", self.source.name)
        self._unreachable.append(prefix)

    def mark_new(self, songs: Iterable[Song]) -> None:
        for song in songs:
            self._actions[song.id] = ScanAction.NEW

    def classification(self, song_id: int) -> ScanAction:
        return self._actions.get(song_id, ScanAction.NOT_MATCHED)

    def unmatched_songs(self) -> List[Song]:
        if self.faulted:
            return []
        return [
            entry.song
            for song_id, entry in self._known.items()
            if self._actions[song_id] is ScanAction.NOT_MATCHED
            and not self._is_unreachable(entry.song.path)
        ]

    @property
    def has_changes(self) -> bool:
        return bool(
            self.new_albums
            or self.replaced
            or self.changed_album_name
            or self.updated
            or self.unmatched_songs()
        )

    def _accept(self, scanned: ScannedSong) -> bool:
        song = self._by_key.get(self._scanned_key(scanned))
        if song is None or self._actions[song.id] is not ScanAction.DIFFER:
            return True
        known = self._known[song.id]
        if (
            known.album_name.casefold() != scanned.tags.album.casefold()
            or known.artist_name.casefold() != scanned.artist_name.casefold()
        ):
            logger.debug("Album of %s changed from %s", song.path, known.album_name)
            self.changed_album_name.append(song)
            return True
        return self._keep_existing(song, scanned)

    def _keep_existing(self, song: Song, scanned: ScannedSong) -> bool:
        self.replaced.append(song)
        return True

    def _same_time(self, stored: datetime, scanned: datetime) -> bool:
        if stored == scanned:
            return True
        if self.source.access is AccessType.FTP:
            return stored - FTP_CLOCK_OFFSET == scanned or stored + FTP_CLOCK_OFFSET == scanned
        return False

    def _stored_key(self, entry: KnownSong) -> str:
        if self.source.access is AccessType.UPNP:
            song = entry.song
            return upnp_key(entry.artist_name, song.title, entry.album_name, song.track)
        return normalise_path(entry.song.path)

    def _candidate_key(self, path: str, hint: Optional[Mp3Tags]) -> str:
        if self.source.access is AccessType.UPNP and hint is not None:
            return self._scanned_key(ScannedSong(path=path, modified_time=datetime.min, tags=replace(hint)))
        return normalise_path(path)

    def _scanned_key(self, scanned: ScannedSong) -> str:
        if self.source.access is AccessType.UPNP:
            scanned.normalise()
            return upnp_key(scanned.artist_name, scanned.tags.title, scanned.tags.album, scanned.track)
        return normalise_path(scanned.path)

    def _is_unreachable(self, path: str) -> bool:
        path = normalise_path(path)
        return any(path == prefix or path.startswith(prefix + "/") for prefix in self._unreachable)


class RescanSession(ReconciliationSession):
    """Updates modified songs in place instead of deleting and re-adding them."""

    def _keep_existing(self, song: Song, scanned: ScannedSong) -> bool:
        self.updated.append((song, scanned))
        return False
