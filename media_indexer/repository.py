from __future__ import annotations

import logging
from contextlib import contextmanager
from threading import RLock
from typing import Dict, Iterable, Iterator, List, Optional

from .errors import IntegrityError
from .models import Album, Artist, ArtistAlbum, Library, Song, Source
from .store import LibraryStore

logger = logging.getLogger(__name__)


class LibraryRepository:
    """Read-through cache over ``LibraryStore`` for the container entities.

    Artists, ArtistAlbums and Albums are cached once loaded; Songs are always
    fetched by parent id. Writers hold ``writing()`` so merge and prune never
    interleave with each other.
    """

    def __init__(self, store: LibraryStore) -> None:
        self.store = store
        self._lock = RLock()
        self._artists: Dict[int, Dict[int, Artist]] = {}
        self._artist_albums: Dict[int, List[ArtistAlbum]] = {}
        self._albums: Dict[int, Album] = {}
        self._albums_loaded: set[int] = set()

    @contextmanager
    def writing(self) -> Iterator[None]:
        with self._lock:
            yield

    # Libraries and sources

    def libraries(self) -> list[Library]:
        return self.store.get_libraries()

    def find_library(self, name: str) -> Optional[Library]:
        for library in self.store.get_libraries():
            if library.name.casefold() == name.casefold():
                return library
        return None

    def library(self, library_id: int) -> Optional[Library]:
        return self.store.get_library(library_id)

    def add_library(self, library: Library) -> Library:
        return self.store.add_library(library)

    def sources(self, library_id: int) -> list[Source]:
        return self.store.get_sources(library_id)

    def add_source(self, source: Source) -> Source:
        return self.store.add_source(source)

    def update_source(self, source: Source) -> None:
        self.store.update_source(source)

    # Artists

    def artists(self, library_id: int) -> list[Artist]:
        with self._lock:
            cached = self._artists.get(library_id)
            if cached is None:
                cached = {artist.id: artist for artist in self.store.get_artists(library_id)}
                self._artists[library_id] = cached
            return list(cached.values())

    def find_artist(self, library_id: int, name: str) -> Optional[Artist]:
        wanted = name.casefold()
        for artist in self.artists(library_id):
            if artist.name.casefold() == wanted:
                return artist
        return None

    def artist(self, artist_id: int) -> Optional[Artist]:
        with self._lock:
            for artists in self._artists.values():
                if artist_id in artists:
                    return artists[artist_id]
        return self.store.get_artist(artist_id)

    def add_artist(self, artist: Artist) -> Artist:
        with self._lock:
            self.artists(artist.library_id)
            self.store.add_artist(artist)
            self._artists[artist.library_id][artist.id] = artist
            return artist

    def delete_artist(self, artist: Artist) -> None:
        with self._lock:
            self.store.delete_artist(artist.id)
            self._artists.get(artist.library_id, {}).pop(artist.id, None)
            self._artist_albums.pop(artist.id, None)

    # ArtistAlbums

    def artist_albums(self, artist_id: int) -> list[ArtistAlbum]:
        with self._lock:
            cached = self._artist_albums.get(artist_id)
            if cached is None:
                cached = self.store.get_artist_albums(artist_id)
                self._artist_albums[artist_id] = cached
            return list(cached)

    def find_artist_album(self, artist_id: int, name: str) -> Optional[ArtistAlbum]:
        wanted = name.casefold()
        for artist_album in self.artist_albums(artist_id):
            if artist_album.name.casefold() == wanted:
                return artist_album
        return None

    def artist_album(self, artist_album_id: int) -> Optional[ArtistAlbum]:
        with self._lock:
            for artist_albums in self._artist_albums.values():
                for artist_album in artist_albums:
                    if artist_album.id == artist_album_id:
                        return artist_album
        return self.store.get_artist_album(artist_album_id)

    def album_references(self, album_id: int) -> list[ArtistAlbum]:
        return self.store.get_album_artist_albums(album_id)

    def add_artist_album(self, artist_album: ArtistAlbum) -> ArtistAlbum:
        with self._lock:
            if self.artist(artist_album.artist_id) is None:
                raise IntegrityError(f"artist {artist_album.artist_id} does not exist")
            if self.album(artist_album.album_id) is None:
                raise IntegrityError(f"album {artist_album.album_id} does not exist")
            self.artist_albums(artist_album.artist_id)
            self.store.add_artist_album(artist_album)
            self._artist_albums[artist_album.artist_id].append(artist_album)
            return artist_album

    def delete_artist_album(self, artist_album: ArtistAlbum) -> None:
        with self._lock:
            self.store.delete_artist_album(artist_album.id)
            cached = self._artist_albums.get(artist_album.artist_id)
            if cached is not None:
                self._artist_albums[artist_album.artist_id] = [
                    item for item in cached if item.id != artist_album.id
                ]

    # Albums

    def album(self, album_id: int) -> Optional[Album]:
        with self._lock:
            if album_id in self._albums:
                return self._albums[album_id]
            album = self.store.get_album(album_id)
            if album is not None:
                self._albums[album_id] = album
            return album

    def albums(self, library_id: int) -> list[Album]:
        with self._lock:
            if library_id not in self._albums_loaded:
                for album in self.store.get_albums(library_id):
                    self._albums.setdefault(album.id, album)
                self._albums_loaded.add(library_id)
            return [album for album in self._albums.values() if album.library_id == library_id]

    def add_album(self, album: Album) -> Album:
        with self._lock:
            self.store.add_album(album)
            self._albums[album.id] = album
            return album

    def update_album(self, album: Album) -> None:
        self.store.update_album(album)

    def delete_album(self, album_id: int) -> None:
        with self._lock:
            self.store.delete_album(album_id)
            self._albums.pop(album_id, None)

    # Songs

    def source_songs(self, source_id: int) -> list[Song]:
        return self.store.get_source_songs(source_id)

    def album_songs(self, album_id: int) -> list[Song]:
        return self.store.get_album_songs(album_id)

    def artist_album_songs(self, artist_album_id: int) -> list[Song]:
        return self.store.get_artist_album_songs(artist_album_id)

    def count_songs(self, artist_album_id: int) -> int:
        return self.store.count_artist_album_songs(artist_album_id)

    def add_song(self, song: Song) -> Song:
        with self._lock:
            if self.album(song.album_id) is None:
                raise IntegrityError(f"song {song.path!r} references missing album {song.album_id}")
            if self.artist_album(song.artist_album_id) is None:
                raise IntegrityError(
                    f"song {song.path!r} references missing artist album {song.artist_album_id}"
                )
            return self.store.add_song(song)

    def update_song(self, song: Song) -> None:
        self.store.update_song(song)

    def delete_songs(self, songs: Iterable[Song]) -> None:
        ids = [song.id for song in songs if song.id is not None]
        if ids:
            self.store.delete_songs(ids)
            logger.debug("Deleted %d songs", len(ids))
