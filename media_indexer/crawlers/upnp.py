from __future__ import annotations

import logging
import urllib.error
import urllib.request
import xml.etree.ElementTree as ET
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable, Iterator, List, Optional, Tuple
from urllib.parse import urlsplit
from xml.sax.saxutils import escape

from ..errors import TransportError
from ..models import AccessType, Mp3Tags, Source
from ..tag_codec import TagCodec
from .base import CancelCheck, ContainerBatch, CrawlEntry, SourceCrawler, UnreachableCB, _never

logger = logging.getLogger(__name__)

CONTENT_DIRECTORY = "urn:schemas-upnp-org:service:ContentDirectory:1"
SOAP_ENV = "http://schemas.xmlsoap.org/soap/envelope/"
ROOT_OBJECT = "0"
STORAGE_FOLDER = "object.container.storageFolder"
MUSIC_TRACK = "object.item.audioItem.musicTrack"
DEFAULT_PAGE_SIZE = 200

_BROWSE_BODY = """<?xml version="1.0" encoding="utf-8"?>
<s:Envelope xmlns:s="{env}" s:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">
<s:Body>
<u:Browse xmlns:u="{service}">
<ObjectID>{object_id}</ObjectID>
<BrowseFlag>BrowseDirectChildren</BrowseFlag>
<Filter>*</Filter>
<StartingIndex>{start}</StartingIndex>
<RequestedCount>{count}</RequestedCount>
<SortCriteria></SortCriteria>
</u:Browse>
</s:Body>
</s:Envelope>"""


def _local(tag: str) -> str:
    return tag.rpartition("}")[2]


def _children(element: ET.Element, name: str) -> List[ET.Element]:
    return [child for child in element if _local(child.tag) == name]


def _text(element: ET.Element, name: str) -> str:
    for child in _children(element, name):
        return (child.text or "").strip()
    return ""


def parse_duration(value: str) -> timedelta:
    """Parse a DIDL-Lite ``H+:MM:SS[.F]`` duration; malformed values give zero."""
    try:
        hours, minutes, seconds = value.strip().split(":")
        return timedelta(hours=int(hours), minutes=int(minutes), seconds=float(seconds))
    except ValueError:
        return timedelta()


def resource_path(url: str) -> str:
    parts = urlsplit(url)
    path = parts.path or "/"
    return f"{path}?{parts.query}" if parts.query else path


class ContentDirectoryBrowser:
    """Issues ContentDirectory Browse requests and returns the DIDL-Lite children."""

    def __init__(self, control_url: str, *, timeout: float = 10, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self.control_url = control_url
        self.timeout = timeout
        self.page_size = page_size

    def browse(self, object_id: str) -> List[ET.Element]:
        children: list[ET.Element] = []
        start = 0
        while True:
            page, returned, total = self._browse_page(object_id, start)
            children.extend(page)
            start += returned
            if returned == 0 or start >= total:
                return children

    def _browse_page(self, object_id: str, start: int) -> Tuple[List[ET.Element], int, int]:
        body = _BROWSE_BODY.format(
            env=SOAP_ENV,
            service=CONTENT_DIRECTORY,
            object_id=escape(object_id),
            start=start,
            count=self.page_size,
        ).encode("utf-8")
        req = urllib.request.Request(
            self.control_url,
            data=body,
            headers={
                "Content-Type": 'text/xml; charset="utf-8"',
                "SOAPAction": f'"{CONTENT_DIRECTORY}#Browse"',
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                envelope = ET.fromstring(resp.read())
        except (urllib.error.URLError, OSError) as exc:
            raise TransportError(f"browse of {object_id} failed: {exc}") from exc
        except ET.ParseError as exc:
            raise TransportError(f"malformed browse response for {object_id}: {exc}") from exc
        response = next((el for el in envelope.iter() if _local(el.tag) == "BrowseResponse"), None)
        if response is None:
            raise TransportError(f"no BrowseResponse for {object_id}")
        try:
            didl = ET.fromstring(_text(response, "Result") or "<DIDL-Lite/>")
            returned = int(_text(response, "NumberReturned") or 0)
            total = int(_text(response, "TotalMatches") or 0)
        except (ET.ParseError, ValueError) as exc:
            raise TransportError(f"malformed DIDL-Lite for {object_id}: {exc}") from exc
        return list(didl), returned, total


class UpnpCrawler(SourceCrawler):
    """Crawls a UPnP/DLNA media server; track metadata comes from the server, not the files."""

    access = AccessType.UPNP

    def __init__(
        self,
        source: Source,
        *,
        extensions: Iterable[str] = (".mp3",),
        browser: Optional[ContentDirectoryBrowser] = None,
        timeout: float = 10,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        super().__init__(source, extensions=extensions)
        self.browser = browser or ContentDirectoryBrowser(source.address, timeout=timeout, page_size=page_size)

    def containers(
        self, is_cancelled: CancelCheck = _never, on_unreachable: Optional[UnreachableCB] = None
    ) -> Iterator[ContainerBatch]:
        yield from self._walk(ROOT_OBJECT, "/", 0, is_cancelled)

    def read_tags(self, entry: CrawlEntry, codec: TagCodec) -> Mp3Tags:
        return replace(entry.hint) if entry.hint is not None else Mp3Tags()

    def _walk(self, object_id: str, title: str, level: int, is_cancelled: CancelCheck) -> Iterator[ContainerBatch]:
        if is_cancelled():
            return
        batch = ContainerBatch(container=title)
        subcontainers: list[tuple[str, str]] = []
        for element in self.browser.browse(object_id):
            kind = _local(element.tag)
            upnp_class = _text(element, "class")
            if kind == "container":
                if level == 0 or upnp_class == STORAGE_FOLDER:
                    subcontainers.append((element.get("id", ""), _text(element, "title")))
            elif kind == "item" and upnp_class == MUSIC_TRACK:
                entry = self._entry(element)
                if entry is not None:
                    batch.entries.append(entry)
        if batch.entries:
            logger.debug("Found %d tracks in %s", len(batch.entries), title)
            yield batch
        for child_id, child_title in subcontainers:
            yield from self._walk(child_id, f"{title.rstrip('/')}/{child_title}", level + 1, is_cancelled)

    def _entry(self, element: ET.Element) -> Optional[CrawlEntry]:
        resources = _children(element, "res")
        if not resources or not (resources[0].text or "").strip():
            logger.debug("Track %s has no resource", element.get("id"))
            return None
        res = resources[0]
        stamp = _text(element, "modificationTime")
        try:
            modified = datetime.fromtimestamp(int(stamp)) if stamp else datetime.fromtimestamp(0)
        except (ValueError, OverflowError, OSError):
            logger.debug("Bad modification time %r on %s", stamp, element.get("id"))
            modified = datetime.fromtimestamp(0)
        return CrawlEntry(
            path=resource_path(res.text.strip()),
            modified_time=modified,
            hint=self._hint(element, res.get("duration", "")),
        )

    @staticmethod
    def _hint(element: ET.Element, duration: str) -> Mp3Tags:
        artist = ""
        album_artist = _text(element, "albumArtist")
        for node in _children(element, "artist"):
            role = (node.get("role") or "").lower()
            if role == "albumartist":
                album_artist = album_artist or (node.text or "").strip()
            elif not artist:
                artist = (node.text or "").strip()
        date = _text(element, "date")
        return Mp3Tags(
            artist=artist or _text(element, "creator"),
            album_artist=album_artist,
            title=_text(element, "title"),
            album=_text(element, "album"),
            track=_text(element, "originalTrackNumber"),
            year=date[:4],
            genre=_text(element, "genre"),
            length=parse_duration(duration),
        )
