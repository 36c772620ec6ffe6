from __future__ import annotations

import logging
from typing import List, Optional

from .errors import IntegrityError
from .models import VARIOUS_ARTISTS, Album, Artist, ArtistAlbum, ScannedAlbum, ScannedSong, Song
from .models import container_of
from .repository import LibraryRepository

logger = logging.getLogger(__name__)


class LibraryMerger:
    """Files scanned albums into the persisted Artist / Album / ArtistAlbum graph."""

    def __init__(self, repository: LibraryRepository) -> None:
        self.repository = repository

    def resolve_album(self, scanned: ScannedAlbum, library_id: int) -> Album:
        """Find the Album the scanned songs belong to, creating it if there is none.

        A single-artist batch looks under its artist, a mixed one under the
        Various Artists artist. Failing that, an album of the same name that
        already holds songs from the same folder of the same source is reused,
        so a folder picking up a second artist keeps a single album.
        """
        artist_name = scanned.songs[0].artist_name if scanned.single_artist else VARIOUS_ARTISTS
        artist = self.repository.find_artist(library_id, artist_name)
        if artist is not None:
            artist_album = self.repository.find_artist_album(artist.id, scanned.name)
            if artist_album is not None:
                album = self.repository.album(artist_album.album_id)
                if album is not None:
                    logger.debug("Album %s found under artist %s", album.name, artist.name)
                    return album
        album = self._album_in_container(scanned, library_id)
        if album is not None:
            logger.debug("Album %s found in %s", album.name, scanned.container)
            return album
        album = self.repository.add_album(Album(name=scanned.name, library_id=library_id))
        logger.debug("Created album %s with id %s", album.name, album.id)
        return album

    def merge(self, scanned: ScannedAlbum, library_id: int) -> List[Song]:
        if not scanned.songs:
            return []
        album = self.resolve_album(scanned, library_id)
        added: list[Song] = []
        for scanned_song in scanned.songs:
            try:
                artist = self._artist(library_id, scanned_song.artist_name)
                artist_album = self._artist_album(artist, album)
                song = self.repository.add_song(
                    Song(
                        title=scanned_song.tags.title,
                        track=scanned_song.track,
                        path=scanned_song.path,
                        modified_time=scanned_song.modified_time,
                        length=scanned_song.length,
                        album_id=album.id,
                        artist_album_id=artist_album.id,
                        source_id=scanned.source_id,
                    )
                )
            except IntegrityError as exc:
                logger.warning("Skipping %s: %s", scanned_song.path, exc)
                continue
            self._update_album(album, artist.name, scanned_song)
            logger.debug(
                "Added %s - %s (track %d, %ds) to album %s",
                artist.name,
                song.title,
                song.track,
                song.length,
                album.name,
            )
            added.append(song)
        return added

    def apply_update(self, song: Song, scanned: ScannedSong) -> None:
        song.title = scanned.tags.title
        song.track = scanned.track
        song.length = scanned.length
        song.modified_time = scanned.modified_time
        self.repository.update_song(song)
        album = self.repository.album(song.album_id)
        if album is None:
            logger.warning("Updated %s but its album %s is missing", song.path, song.album_id)
            return
        changed = False
        if album.year == 0 and scanned.year:
            album.year = scanned.year
            changed = True
        if not album.genre and scanned.tags.genre:
            album.genre = scanned.tags.genre
            changed = True
        if changed:
            self.repository.update_album(album)
        logger.debug("Updated %s in place", song.path)

    def _artist(self, library_id: int, name: str) -> Artist:
        artist = self.repository.find_artist(library_id, name)
        if artist is None:
            artist = self.repository.add_artist(Artist(name=name, library_id=library_id))
            logger.debug("Created artist %s with id %s", artist.name, artist.id)
        return artist

    def _artist_album(self, artist: Artist, album: Album) -> ArtistAlbum:
        artist_album = next(
            (aa for aa in self.repository.artist_albums(artist.id) if aa.album_id == album.id), None
        )
        if artist_album is None:
            artist_album = self.repository.add_artist_album(
                ArtistAlbum(name=album.name, artist_id=artist.id, album_id=album.id)
            )
        return artist_album

    def _update_album(self, album: Album, artist_name: str, scanned: ScannedSong) -> None:
        changed = False
        if not album.artist_name:
            album.artist_name = artist_name
            changed = True
        elif album.artist_name != VARIOUS_ARTISTS and album.artist_name.casefold() != artist_name.casefold():
            album.artist_name = VARIOUS_ARTISTS
            changed = True
        if album.year == 0 and scanned.year:
            album.year = scanned.year
            changed = True
        if not album.genre and scanned.tags.genre:
            album.genre = scanned.tags.genre
            changed = True
        if changed:
            self.repository.update_album(album)

    def _album_in_container(self, scanned: ScannedAlbum, library_id: int) -> Optional[Album]:
        wanted = scanned.name.casefold()
        for album in self.repository.albums(library_id):
            if album.name.casefold() != wanted:
                continue
            for song in self.repository.album_songs(album.id):
                if song.source_id == scanned.source_id and container_of(song.path) == scanned.container:
                    return album
        return None
