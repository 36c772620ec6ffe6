from __future__ import annotations

import ftplib
import io
import logging
import posixpath
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional

from ..errors import TransportError
from ..models import AccessType, Mp3Tags, Source, normalise_path
from ..tag_codec import ID3_HEADER_SIZE, TagCodec
from .base import CancelCheck, ContainerBatch, CrawlEntry, SourceCrawler, UnreachableCB, _never

logger = logging.getLogger(__name__)

DEFAULT_PORT = 21

# 03-14-21  09:05PM       <DIR>          Albums
_DOS_LINE = re.compile(
    r"^(?P<date>\d{2}-\d{2}-\d{2,4})\s+(?P<time>\d{1,2}:\d{2}\s*[AP]M)\s+(?P<size><DIR>|\d+)\s+(?P<name>.+)$",
    re.IGNORECASE,
)
# -rw-r--r--   1 owner group   4181248 Mar 14 21:05 01 Track.mp3
_UNIX_LINE = re.compile(
    r"^(?P<kind>[-dlbcps])\S{9}\S*\s+\d+\s+\S+\s+\S+\s+\d+\s+"
    r"(?P<month>[A-Za-z]{3})\s+(?P<day>\d{1,2})\s+(?P<when>\d{1,2}:\d{2}|\d{4})\s+(?P<name>.+)$"
)


@dataclass(slots=True)
class RemoteEntry:
    name: str
    is_dir: bool
    modified_time: datetime


def parse_mlsd_time(value: str) -> datetime:
    return datetime.strptime(value.split(".")[0], "%Y%m%d%H%M%S")


def parse_list_line(line: str, now: Optional[datetime] = None) -> Optional[RemoteEntry]:
    """Parse one LIST line in either DOS/IIS or Unix ``ls -l`` format."""
    line = line.rstrip("\r\n")
    match = _DOS_LINE.match(line)
    if match:
        date = match.group("date")
        year_format = "%Y" if len(date.split("-")[2]) == 4 else "%y"
        stamp = datetime.strptime(
            f"{date} {match.group('time').replace(' ', '').upper()}", f"%m-%d-{year_format} %I:%M%p"
        )
        return RemoteEntry(
            name=match.group("name"), is_dir=match.group("size").upper() == "<DIR>", modified_time=stamp
        )
    match = _UNIX_LINE.match(line)
    if match:
        kind = match.group("kind")
        if kind not in "-d":
            return None
        now = now or datetime.now()
        when = match.group("when")
        if ":" in when:
            stamp = datetime.strptime(
                f"{match.group('month')} {match.group('day')} {now.year} {when}", "%b %d %Y %H:%M"
            )
            if stamp > now:
                stamp = stamp.replace(year=now.year - 1)
        else:
            stamp = datetime.strptime(f"{match.group('month')} {match.group('day')} {when}", "%b %d %Y")
        return RemoteEntry(name=match.group("name"), is_dir=kind == "d", modified_time=stamp)
    return None


class FtpCrawler(SourceCrawler):
    """Crawls an anonymous FTP server in passive mode."""

    access = AccessType.FTP

    def __init__(
        self,
        source: Source,
        *,
        extensions: Iterable[str] = (".mp3",),
        timeout: float = 30,
        ftp_factory: Callable[[], ftplib.FTP] = ftplib.FTP,
    ) -> None:
        super().__init__(source, extensions=extensions)
        self.timeout = timeout
        self.ftp_factory = ftp_factory
        self._ftp: Optional[ftplib.FTP] = None
        self._use_mlsd = True

    @property
    def root(self) -> str:
        return normalise_path(self.source.folder or "/")

    def containers(
        self, is_cancelled: CancelCheck = _never, on_unreachable: Optional[UnreachableCB] = None
    ) -> Iterator[ContainerBatch]:
        self._ftp = self._connect()
        try:
            yield from self._walk(self.root, is_cancelled)
        finally:
            self._disconnect()

    def read_tags(self, entry: CrawlEntry, codec: TagCodec) -> Mp3Tags:
        if self._ftp is None:
            raise TransportError("not connected")
        remote = self._remote(entry.path)
        try:
            self._ftp.voidcmd("TYPE I")
            size = self._ftp.size(remote)
            data = self._retrieve_prefix(remote, codec)
        except ftplib.all_errors as exc:
            raise TransportError(f"cannot retrieve {remote}: {exc}") from exc
        return codec.read(io.BytesIO(data), length=size if size is not None else len(data))

    def _connect(self) -> ftplib.FTP:
        host = self.source.address
        port = self.source.port or DEFAULT_PORT
        ftp = self.ftp_factory()
        try:
            ftp.connect(host, port, timeout=self.timeout)
            ftp.login()
            ftp.set_pasv(True)
        except ftplib.all_errors as exc:
            raise TransportError(f"cannot connect to {host}:{port}: {exc}") from exc
        logger.info("Connected to ftp://%s:%d", host, port)
        return ftp

    def _disconnect(self) -> None:
        ftp, self._ftp = self._ftp, None
        if ftp is None:
            return
        try:
            ftp.quit()
        except ftplib.all_errors:
            ftp.close()

    def _walk(self, directory: str, is_cancelled: CancelCheck) -> Iterator[ContainerBatch]:
        if is_cancelled():
            return
        entries = self._list(directory)
        batch = ContainerBatch(container=self._relative(directory))
        subdirectories: list[str] = []
        for entry in sorted(entries, key=lambda item: item.name):
            path = posixpath.join(directory, entry.name)
            if entry.is_dir:
                subdirectories.append(path)
            elif self.wanted(entry.name):
                batch.entries.append(CrawlEntry(path=self._relative(path), modified_time=entry.modified_time))
        if batch.entries:
            logger.debug("Found %d files in %s", len(batch.entries), directory)
            yield batch
        for subdirectory in subdirectories:
            yield from self._walk(subdirectory, is_cancelled)

    def _list(self, directory: str) -> List[RemoteEntry]:
        ftp = self._ftp
        if self._use_mlsd:
            try:
                return [
                    RemoteEntry(
                        name=name,
                        is_dir=facts.get("type") == "dir",
                        modified_time=parse_mlsd_time(facts.get("modify", "19700101000000")),
                    )
                    for name, facts in ftp.mlsd(directory, facts=["type", "modify"])
                    if facts.get("type") in ("dir", "file")
                ]
            except ftplib.error_perm as exc:
                logger.debug("MLSD unsupported (%s), falling back to LIST", exc)
                self._use_mlsd = False
            except ftplib.all_errors as exc:
                raise TransportError(f"cannot list {directory}: {exc}") from exc
        lines: list[str] = []
        try:
            ftp.retrlines(f"LIST {directory}", lines.append)
        except ftplib.all_errors as exc:
            raise TransportError(f"cannot list {directory}: {exc}") from exc
        parsed = []
        for line in lines:
            entry = parse_list_line(line)
            if entry is None:
                logger.debug("Ignoring listing line %r", line)
            elif entry.name not in (".", ".."):
                parsed.append(entry)
        return parsed

    def _retrieve_prefix(self, remote: str, codec: TagCodec) -> bytes:
        conn = self._ftp.transfercmd(f"RETR {remote}")
        try:
            data = _receive(conn, ID3_HEADER_SIZE)
            data += _receive(conn, codec.prefix_length(data) - len(data))
        finally:
            conn.close()
        try:
            self._ftp.voidresp()
        except ftplib.error_temp as exc:
            # 426 once the transfer is cut short
            logger.debug("Partial transfer of %s ended with %s", remote, exc)
        return data

    def _relative(self, remote: str) -> str:
        root = self.root.rstrip("/")
        if root and remote.startswith(root):
            remote = remote[len(root) :]
        return normalise_path(remote or "/")

    def _remote(self, relative: str) -> str:
        return normalise_path(self.root.rstrip("/") + relative)


def _receive(conn, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = conn.recv(min(remaining, 65536))
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)
