from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

VARIOUS_ARTISTS = "Various Artists"
UNKNOWN = "<Unknown>"

_LEADING_DIGITS = re.compile(r"\d+")
_YEAR = re.compile(r"\d{4}")


class AccessType(str, Enum):
    LOCAL = "local"
    FTP = "ftp"
    UPNP = "upnp"


class ScanAction(Enum):
    NOT_MATCHED = "not_matched"
    MATCHED = "matched"
    DIFFER = "differ"
    NEW = "new"


@dataclass(slots=True)
class Library:
    name: str
    id: Optional[int] = None


@dataclass(slots=True)
class Source:
    name: str
    library_id: int
    access: AccessType
    address: str = ""
    folder: str = ""
    port: int = 0
    id: Optional[int] = None

    @property
    def scan_root(self) -> str:
        if self.access is AccessType.LOCAL:
            return self.folder
        return self.address


@dataclass(slots=True)
class Artist:
    name: str
    library_id: int
    id: Optional[int] = None


@dataclass(slots=True)
class Album:
    name: str
    library_id: int
    artist_name: str = ""
    year: int = 0
    genre: str = ""
    id: Optional[int] = None


@dataclass(slots=True)
class ArtistAlbum:
    name: str
    artist_id: int
    album_id: int
    id: Optional[int] = None


@dataclass(slots=True)
class Song:
    title: str
    track: int
    path: str
    modified_time: datetime
    length: int
    album_id: int
    artist_album_id: int
    source_id: int
    id: Optional[int] = None


@dataclass(slots=True)
class Mp3Tags:
    artist: str = ""
    album_artist: str = ""
    title: str = ""
    album: str = ""
    track: str = ""
    year: str = ""
    genre: str = ""
    length: timedelta = field(default_factory=timedelta)


@dataclass(slots=True)
class ScannedSong:
    """Tags and location of a file picked up during a scan; never persisted."""

    path: str
    modified_time: datetime
    tags: Mp3Tags = field(default_factory=Mp3Tags)
    artist_name: str = ""
    track: int = 0
    year: int = 0
    length: int = 0

    def normalise(self) -> None:
        tags = self.tags
        if not tags.artist:
            tags.artist = UNKNOWN
        if not tags.album:
            tags.album = UNKNOWN
        if not tags.track:
            tags.track = "0"
        match = _LEADING_DIGITS.search(tags.track)
        self.track = int(match.group(0)) if match else 0
        self.length = int(tags.length.total_seconds())
        if tags.album_artist:
            self.artist_name = tags.album_artist
        else:
            self.artist_name = tags.artist.split("/")[0].strip() or UNKNOWN
        year = _YEAR.search(tags.year or "")
        self.year = int(year.group(0)) if year else 0
        tags.genre = (tags.genre or "").split(";")[0].strip()


@dataclass(slots=True)
class ScannedAlbum:
    name: str
    source_id: int
    container: str = ""
    songs: List[ScannedSong] = field(default_factory=list)
    single_artist: bool = True

    def add(self, song: ScannedSong) -> None:
        if self.songs and self.single_artist:
            if self.songs[0].artist_name.casefold() != song.artist_name.casefold():
                self.single_artist = False
        self.songs.append(song)


def container_of(path: str) -> str:
    head, _, _ = path.rpartition("/")
    return head or "/"


def normalise_path(path: str) -> str:
    cleaned = path.replace("\\", "/")
    cleaned = re.sub(r"/{2,}", "/", cleaned)
    if not cleaned.startswith("/"):
        cleaned = "/" + cleaned
    return cleaned
