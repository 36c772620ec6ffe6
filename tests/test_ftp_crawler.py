import ftplib
import io
import unittest
from datetime import datetime

from mp3_builders import CBR_128_FRAME_LENGTH, cbr_audio, id3_tag

from media_indexer.crawlers import CrawlEntry, FtpCrawler
from media_indexer.crawlers.ftp import parse_list_line, parse_mlsd_time
from media_indexer.errors import TransportError
from media_indexer.models import AccessType, Source
from media_indexer.reconciliation import ReconciliationSession
from media_indexer.tag_codec import TagCodec


class FakeConnection:
    def __init__(self, payload: bytes) -> None:
        self._stream = io.BytesIO(payload)
        self.received = 0
        self.closed = False

    def recv(self, size: int) -> bytes:
        chunk = self._stream.read(size)
        self.received += len(chunk)
        return chunk

    def close(self) -> None:
        self.closed = True


class FakeFTP:
    """In-memory stand-in for ftplib.FTP serving LIST or MLSD listings."""

    def __init__(self, listings, files=None, *, mlsd=None, fail_connect=False) -> None:
        self.listings = listings
        self.mlsd_listings = mlsd
        self.files = files or {}
        self.fail_connect = fail_connect
        self.connected_to = None
        self.passive = None
        self.commands: list[str] = []
        self.connections: list[FakeConnection] = []
        self.quit_called = False

    def connect(self, host, port, timeout=None):
        if self.fail_connect:
            raise OSError("connection refused")
        self.connected_to = (host, port, timeout)
        return "220 ready"

    def login(self):
        return "230 logged in"

    def set_pasv(self, value):
        self.passive = value

    def mlsd(self, path="", facts=()):
        if self.mlsd_listings is None:
            raise ftplib.error_perm("500 MLSD not understood")
        if path not in self.mlsd_listings:
            raise ftplib.error_temp("450 unavailable")
        yield from self.mlsd_listings[path]

    def retrlines(self, cmd, callback):
        path = cmd[len("LIST ") :]
        if path not in self.listings:
            raise ftplib.error_temp("450 unavailable")
        for line in self.listings[path]:
            callback(line)
        return "226 done"

    def voidcmd(self, cmd):
        self.commands.append(cmd)
        return "200 ok"

    def size(self, path):
        return len(self.files[path])

    def transfercmd(self, cmd):
        self.commands.append(cmd)
        conn = FakeConnection(self.files[cmd[len("RETR ") :]])
        self.connections.append(conn)
        return conn

    def voidresp(self):
        raise ftplib.error_temp("426 transfer aborted")

    def quit(self):
        self.quit_called = True


def _mp3(title: str, audio_bytes: int = CBR_128_FRAME_LENGTH * 400) -> bytes:
    frames = {"TPE1": "Band", "TALB": "Record", "TIT2": title, "TRCK": "1"}
    return id3_tag(frames, padding=16) + cbr_audio(audio_bytes)


def _source(folder: str = "") -> Source:
    return Source(id=1, name="Box", library_id=1, access=AccessType.FTP, address="nas.local", folder=folder)


class TestListingParser(unittest.TestCase):
    def test_dos_directory_and_file(self) -> None:
        directory = parse_list_line("03-14-21  09:05PM       <DIR>          Albums")
        self.assertTrue(directory.is_dir)
        self.assertEqual(directory.name, "Albums")
        self.assertEqual(directory.modified_time, datetime(2021, 3, 14, 21, 5))

        song = parse_list_line("11-02-2019  08:15AM             4181248 01 My Song.mp3\r\n")
        self.assertFalse(song.is_dir)
        self.assertEqual(song.name, "01 My Song.mp3")
        self.assertEqual(song.modified_time, datetime(2019, 11, 2, 8, 15))

    def test_unix_recent_and_old_entries(self) -> None:
        now = datetime(2024, 6, 1, 12, 0)
        recent = parse_list_line("-rw-r--r--   1 ftp ftp   4181248 Mar 14 21:05 01 Track.mp3", now)
        self.assertEqual((recent.name, recent.is_dir), ("01 Track.mp3", False))
        self.assertEqual(recent.modified_time, datetime(2024, 3, 14, 21, 5))

        old = parse_list_line("drwxr-xr-x   2 ftp ftp      4096 Jan  2  2019 Albums", now)
        self.assertEqual((old.name, old.is_dir), ("Albums", True))
        self.assertEqual(old.modified_time, datetime(2019, 1, 2))

    def test_future_date_belongs_to_last_year(self) -> None:
        entry = parse_list_line("-rw-r--r--   1 ftp ftp  10 Dec 24 18:00 x.mp3", datetime(2024, 1, 5))
        self.assertEqual(entry.modified_time, datetime(2023, 12, 24, 18, 0))

    def test_links_and_noise_are_ignored(self) -> None:
        self.assertIsNone(parse_list_line("lrwxrwxrwx   1 ftp ftp  10 Jan  2  2019 link -> target"))
        self.assertIsNone(parse_list_line("total 42"))

    def test_mlsd_time(self) -> None:
        self.assertEqual(parse_mlsd_time("20210314210500.123"), datetime(2021, 3, 14, 21, 5))


class TestFtpCrawler(unittest.TestCase):
    def make_crawler(self, fake: FakeFTP, folder: str = "") -> FtpCrawler:
        return FtpCrawler(_source(folder), ftp_factory=lambda: fake, timeout=5)

    def test_list_fallback_walks_tree(self) -> None:
        fake = FakeFTP(
            {
                "/": ["03-14-21  09:05PM       <DIR>          Band", "03-14-21  09:05PM   12 notes.txt"],
                "/Band": ["03-14-21  09:05PM       <DIR>          Record"],
                "/Band/Record": [
                    "03-14-21  09:05PM             4181248 01.mp3",
                    "03-14-21  09:06PM             4181248 02.MP3",
                ],
            }
        )
        batches = list(self.make_crawler(fake).containers())

        self.assertEqual(fake.connected_to, ("nas.local", 21, 5))
        self.assertTrue(fake.passive)
        self.assertTrue(fake.quit_called)
        self.assertEqual(len(batches), 1)
        self.assertEqual(batches[0].container, "/Band/Record")
        self.assertEqual(
            [(entry.path, entry.modified_time) for entry in batches[0].entries],
            [
                ("/Band/Record/01.mp3", datetime(2021, 3, 14, 21, 5)),
                ("/Band/Record/02.MP3", datetime(2021, 3, 14, 21, 6)),
            ],
        )

    def test_mlsd_listing(self) -> None:
        fake = FakeFTP(
            {},
            mlsd={
                "/music": [
                    (".", {"type": "cdir"}),
                    ("Band", {"type": "dir", "modify": "20200101000000"}),
                ],
                "/music/Band": [("01.mp3", {"type": "file", "modify": "20210314210500"})],
            },
        )
        batches = list(self.make_crawler(fake, folder="/music").containers())
        self.assertEqual([batch.container for batch in batches], ["/Band"])
        self.assertEqual(batches[0].entries[0].path, "/Band/01.mp3")
        self.assertEqual(batches[0].entries[0].modified_time, datetime(2021, 3, 14, 21, 5))

    def test_listing_failure_is_a_transport_error(self) -> None:
        fake = FakeFTP({"/": ["03-14-21  09:05PM       <DIR>          Band"]})
        with self.assertRaises(TransportError):
            list(self.make_crawler(fake).containers())
        self.assertTrue(fake.quit_called)

    def test_connect_failure_is_a_transport_error(self) -> None:
        with self.assertRaises(TransportError):
            list(self.make_crawler(FakeFTP({}, fail_connect=True)).containers())

    def test_scan_reads_only_the_tag_prefix(self) -> None:
        payload = _mp3("One")
        fake = FakeFTP(
            {"/": ["03-14-21  09:05PM             4181248 01.mp3"]},
            files={"/01.mp3": payload},
        )
        session = ReconciliationSession(_source(), [])
        crawler = self.make_crawler(fake)

        self.assertEqual(crawler.scan(session, TagCodec()), 1)

        self.assertIn("TYPE I", fake.commands)
        self.assertIn("RETR /01.mp3", fake.commands)
        conn = fake.connections[0]
        self.assertTrue(conn.closed)
        self.assertLess(conn.received, len(payload))
        song = session.new_albums[0].songs[0]
        self.assertEqual((song.tags.title, song.tags.album, song.artist_name), ("One", "Record", "Band"))
        expected = TagCodec().read(io.BytesIO(payload))
        self.assertEqual(song.tags.length, expected.length)
        self.assertGreater(song.length, 0)

    def test_read_tags_requires_connection(self) -> None:
        crawler = self.make_crawler(FakeFTP({}))
        with self.assertRaises(TransportError):
            crawler.read_tags(CrawlEntry(path="/x.mp3", modified_time=datetime(2020, 1, 1)), TagCodec())


if __name__ == "__main__":
    unittest.main()
