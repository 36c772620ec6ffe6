from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Set

from .errors import IntegrityError
from .events import ScanEvents
from .models import Song
from .repository import LibraryRepository

logger = logging.getLogger(__name__)


class GraphPruner:
    """Removes containers left empty after songs have been deleted."""

    def __init__(self, repository: LibraryRepository, events: Optional[ScanEvents] = None) -> None:
        self.repository = repository
        self.events = events

    def remove_songs(self, songs: Iterable[Song]) -> List[int]:
        songs = [song for song in songs if song.id is not None]
        if not songs:
            return []
        grouped: Dict[int, Set[int]] = defaultdict(set)
        for song in songs:
            grouped[song.artist_album_id].add(song.id)
        self.repository.delete_songs(songs)
        return self.prune(grouped)

    def prune(self, deleted: Mapping[int, Set[int]]) -> List[int]:
        """Delete emptied ArtistAlbums, Artists and Albums; return the deleted album ids."""
        candidate_albums: Set[int] = set()
        for artist_album_id, song_ids in deleted.items():
            try:
                album_id = self._prune_artist_album(artist_album_id)
            except IntegrityError as exc:
                logger.warning("Skipping artist album %s: %s", artist_album_id, exc)
                continue
            if album_id is not None:
                candidate_albums.add(album_id)
            logger.debug("Pruned %d songs from artist album %s", len(song_ids), artist_album_id)
        deleted_albums: list[int] = []
        for album_id in sorted(candidate_albums):
            if self.repository.album_references(album_id):
                continue
            if self.repository.album_songs(album_id):
                logger.warning("Album %s has songs but no artist albums, keeping it", album_id)
                continue
            self.repository.delete_album(album_id)
            deleted_albums.append(album_id)
        if deleted_albums:
            logger.info("Deleted %d empty albums", len(deleted_albums))
            if self.events is not None:
                self.events.albums_deleted(deleted_albums)
        return deleted_albums

    def _prune_artist_album(self, artist_album_id: int) -> Optional[int]:
        artist_album = self.repository.artist_album(artist_album_id)
        if artist_album is None:
            raise IntegrityError("artist album no longer exists")
        if self.repository.count_songs(artist_album.id) > 0:
            return None
        self.repository.delete_artist_album(artist_album)
        artist = self.repository.artist(artist_album.artist_id)
        if artist is None:
            logger.warning("Artist %s of artist album %s no longer exists", artist_album.artist_id, artist_album.id)
        elif not self.repository.artist_albums(artist.id):
            self.repository.delete_artist(artist)
            logger.debug("Deleted empty artist %s", artist.name)
        return artist_album.album_id
