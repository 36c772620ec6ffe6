from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Iterable, Optional

from .models import AccessType, Album, Artist, ArtistAlbum, Library, Song, Source


class LibraryStore:
    """SQLite-backed storage for libraries, sources and the artist/album/song graph.

    Every write commits immediately.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = path
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS library (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE
            );
            CREATE TABLE IF NOT EXISTS source (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                library_id INTEGER NOT NULL REFERENCES library(id),
                access TEXT NOT NULL,
                address TEXT NOT NULL DEFAULT '',
                folder TEXT NOT NULL DEFAULT '',
                port INTEGER NOT NULL DEFAULT 0
            );
            CREATE TABLE IF NOT EXISTS artist (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                library_id INTEGER NOT NULL REFERENCES library(id)
            );
            CREATE TABLE IF NOT EXISTS album (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                library_id INTEGER NOT NULL REFERENCES library(id),
                artist_name TEXT NOT NULL DEFAULT '',
                year INTEGER NOT NULL DEFAULT 0,
                genre TEXT NOT NULL DEFAULT ''
            );
            CREATE TABLE IF NOT EXISTS artist_album (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                artist_id INTEGER NOT NULL REFERENCES artist(id),
                album_id INTEGER NOT NULL REFERENCES album(id)
            );
            CREATE TABLE IF NOT EXISTS song (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                track INTEGER NOT NULL DEFAULT 0,
                path TEXT NOT NULL,
                modified_time TEXT NOT NULL,
                length INTEGER NOT NULL DEFAULT 0,
                album_id INTEGER NOT NULL REFERENCES album(id),
                artist_album_id INTEGER NOT NULL REFERENCES artist_album(id),
                source_id INTEGER NOT NULL REFERENCES source(id)
            );
            CREATE INDEX IF NOT EXISTS song_source ON song(source_id);
            CREATE INDEX IF NOT EXISTS song_artist_album ON song(artist_album_id);
            CREATE INDEX IF NOT EXISTS song_album ON song(album_id);
            CREATE INDEX IF NOT EXISTS artist_album_artist ON artist_album(artist_id);
            CREATE INDEX IF NOT EXISTS artist_album_album ON artist_album(album_id);
            """
        )
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # Libraries and sources

    def add_library(self, library: Library) -> Library:
        library.id = self._insert("INSERT INTO library(name) VALUES(?)", (library.name,))
        return library

    def get_libraries(self) -> list[Library]:
        rows = self._query("SELECT id, name FROM library ORDER BY id")
        return [Library(id=row[0], name=row[1]) for row in rows]

    def get_library(self, library_id: int) -> Optional[Library]:
        rows = self._query("SELECT id, name FROM library WHERE id = ?", (library_id,))
        return Library(id=rows[0][0], name=rows[0][1]) if rows else None

    def add_source(self, source: Source) -> Source:
        source.id = self._insert(
            "INSERT INTO source(name, library_id, access, address, folder, port) VALUES(?, ?, ?, ?, ?, ?)",
            (source.name, source.library_id, source.access.value, source.address, source.folder, source.port),
        )
        return source

    def update_source(self, source: Source) -> None:
        self._execute(
            "UPDATE source SET name = ?, access = ?, address = ?, folder = ?, port = ? WHERE id = ?",
            (source.name, source.access.value, source.address, source.folder, source.port, source.id),
        )

    def get_sources(self, library_id: int) -> list[Source]:
        rows = self._query(
            "SELECT id, name, library_id, access, address, folder, port FROM source WHERE library_id = ? ORDER BY id",
            (library_id,),
        )
        return [
            Source(
                id=row[0],
                name=row[1],
                library_id=row[2],
                access=AccessType(row[3]),
                address=row[4],
                folder=row[5],
                port=row[6],
            )
            for row in rows
        ]

    # Artists

    def add_artist(self, artist: Artist) -> Artist:
        artist.id = self._insert(
            "INSERT INTO artist(name, library_id) VALUES(?, ?)", (artist.name, artist.library_id)
        )
        return artist

    def get_artists(self, library_id: int) -> list[Artist]:
        rows = self._query(
            "SELECT id, name, library_id FROM artist WHERE library_id = ? ORDER BY id", (library_id,)
        )
        return [Artist(id=row[0], name=row[1], library_id=row[2]) for row in rows]

    def get_artist(self, artist_id: int) -> Optional[Artist]:
        rows = self._query("SELECT id, name, library_id FROM artist WHERE id = ?", (artist_id,))
        return Artist(id=rows[0][0], name=rows[0][1], library_id=rows[0][2]) if rows else None

    def delete_artist(self, artist_id: int) -> None:
        self._execute("DELETE FROM artist WHERE id = ?", (artist_id,))

    # Albums

    def add_album(self, album: Album) -> Album:
        album.id = self._insert(
            "INSERT INTO album(name, library_id, artist_name, year, genre) VALUES(?, ?, ?, ?, ?)",
            (album.name, album.library_id, album.artist_name, album.year, album.genre),
        )
        return album

    def update_album(self, album: Album) -> None:
        self._execute(
            "UPDATE album SET name = ?, artist_name = ?, year = ?, genre = ? WHERE id = ?",
            (album.name, album.artist_name, album.year, album.genre, album.id),
        )

    def get_album(self, album_id: int) -> Optional[Album]:
        rows = self._query(
            "SELECT id, name, library_id, artist_name, year, genre FROM album WHERE id = ?", (album_id,)
        )
        return _album(rows[0]) if rows else None

    def get_albums(self, library_id: int) -> list[Album]:
        rows = self._query(
            "SELECT id, name, library_id, artist_name, year, genre FROM album WHERE library_id = ? ORDER BY id",
            (library_id,),
        )
        return [_album(row) for row in rows]

    def delete_album(self, album_id: int) -> None:
        self._execute("DELETE FROM album WHERE id = ?", (album_id,))

    # ArtistAlbums

    def add_artist_album(self, artist_album: ArtistAlbum) -> ArtistAlbum:
        artist_album.id = self._insert(
            "INSERT INTO artist_album(name, artist_id, album_id) VALUES(?, ?, ?)",
            (artist_album.name, artist_album.artist_id, artist_album.album_id),
        )
        return artist_album

    def get_artist_album(self, artist_album_id: int) -> Optional[ArtistAlbum]:
        rows = self._query(
            "SELECT id, name, artist_id, album_id FROM artist_album WHERE id = ?", (artist_album_id,)
        )
        return _artist_album(rows[0]) if rows else None

    def get_artist_albums(self, artist_id: int) -> list[ArtistAlbum]:
        rows = self._query(
            "SELECT id, name, artist_id, album_id FROM artist_album WHERE artist_id = ? ORDER BY id",
            (artist_id,),
        )
        return [_artist_album(row) for row in rows]

    def get_album_artist_albums(self, album_id: int) -> list[ArtistAlbum]:
        rows = self._query(
            "SELECT id, name, artist_id, album_id FROM artist_album WHERE album_id = ? ORDER BY id",
            (album_id,),
        )
        return [_artist_album(row) for row in rows]

    def delete_artist_album(self, artist_album_id: int) -> None:
        self._execute("DELETE FROM artist_album WHERE id = ?", (artist_album_id,))

    # Songs

    def add_song(self, song: Song) -> Song:
        song.id = self._insert(
            """
            INSERT INTO song(title, track, path, modified_time, length, album_id, artist_album_id, source_id)
            VALUES(?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                song.title,
                song.track,
                song.path,
                song.modified_time.isoformat(),
                song.length,
                song.album_id,
                song.artist_album_id,
                song.source_id,
            ),
        )
        return song

    def update_song(self, song: Song) -> None:
        self._execute(
            "UPDATE song SET title = ?, track = ?, modified_time = ?, length = ? WHERE id = ?",
            (song.title, song.track, song.modified_time.isoformat(), song.length, song.id),
        )

    def get_source_songs(self, source_id: int) -> list[Song]:
        return self._songs("source_id", source_id)

    def get_artist_album_songs(self, artist_album_id: int) -> list[Song]:
        return self._songs("artist_album_id", artist_album_id)

    def get_album_songs(self, album_id: int) -> list[Song]:
        return self._songs("album_id", album_id)

    def count_artist_album_songs(self, artist_album_id: int) -> int:
        rows = self._query("SELECT COUNT(*) FROM song WHERE artist_album_id = ?", (artist_album_id,))
        return int(rows[0][0])

    def delete_songs(self, song_ids: Iterable[int]) -> None:
        with self._lock:
            self._conn.executemany("DELETE FROM song WHERE id = ?", [(song_id,) for song_id in song_ids])
            self._conn.commit()

    def _songs(self, column: str, value: int) -> list[Song]:
        rows = self._query(
            f"""
            SELECT id, title, track, path, modified_time, length, album_id, artist_album_id, source_id
            FROM song WHERE {column} = ? ORDER BY track, id
            """,
            (value,),
        )
        return [
            Song(
                id=row[0],
                title=row[1],
                track=row[2],
                path=row[3],
                modified_time=datetime.fromisoformat(row[4]),
                length=row[5],
                album_id=row[6],
                artist_album_id=row[7],
                source_id=row[8],
            )
            for row in rows
        ]

    def _insert(self, sql: str, params: tuple) -> int:
        with self._lock:
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
            return int(cursor.lastrowid)

    def _execute(self, sql: str, params: tuple) -> None:
        with self._lock:
            self._conn.execute(sql, params)
            self._conn.commit()

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            cursor = self._conn.execute(sql, params)
            return cursor.fetchall()


def _album(row: tuple) -> Album:
    return Album(
        id=row[0], name=row[1], library_id=row[2], artist_name=row[3], year=row[4], genre=row[5]
    )


def _artist_album(row: tuple) -> ArtistAlbum:
    return ArtistAlbum(id=row[0], name=row[1], artist_id=row[2], album_id=row[3])
