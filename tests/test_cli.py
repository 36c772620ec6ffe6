import io
import logging
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from datetime import datetime
from pathlib import Path
from unittest import mock

from mp3_builders import write_mp3

from media_indexer import cli
from media_indexer.orchestrator import ScanOutcome, ScanReport


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.music = self.tmp / "music"
        write_mp3(self.music / "Band" / "Record" / "01.mp3", artist="Band", album="Record", modified=datetime(2024, 1, 1))
        self.config = self.tmp / "config.yaml"
        self.config.write_text(
            f"store:\n  path: {self.tmp / 'library.sqlite3'}\n"
            "active_library: Home\n"
            "libraries:\n"
            "  - name: Home\n"
            "    sources:\n"
            f"      - name: Disk\n        access: local\n        folder: {self.music}\n",
            encoding="utf-8",
        )
        root = logging.getLogger()
        self._handlers = list(root.handlers)
        self._level = root.level
        self._cwd = os.getcwd()
        os.chdir(self.tmp)

    def tearDown(self) -> None:
        os.chdir(self._cwd)
        root = logging.getLogger()
        for handler in root.handlers:
            if handler not in self._handlers:
                handler.close()
        root.handlers[:] = self._handlers
        root.setLevel(self._level)
        self._tmp.cleanup()

    def run_main(self, *args: str) -> str:
        out = io.StringIO()
        with mock.patch("sys.argv", ["media-indexer", "--config", str(self.config), *args]):
            with redirect_stdout(out):
                cli.main()
        return out.getvalue()

    def test_scan_then_summary(self) -> None:
        output = self.run_main("scan")
        self.assertIn("Scan completed", output)
        self.assertIn("added:   1", output)

        output = self.run_main("summary")
        self.assertIn("Home: 1 artists, 1 albums, 1 songs", output)

        output = self.run_main("scan", "home")
        self.assertIn("Scan no_changes", output)

    def test_unknown_library_exits(self) -> None:
        with self.assertRaises(SystemExit) as ctx:
            self.run_main("scan", "Elsewhere")
        self.assertEqual(ctx.exception.code, 2)

    def test_print_report_lists_unavailable_sources(self) -> None:
        report = ScanReport(library_id=1, outcome=ScanOutcome.COMPLETED, new_songs=3, faulted_sources=["Nas"])
        out = io.StringIO()
        with redirect_stdout(out):
            cli.print_report(report)
        self.assertIn("unavailable sources: Nas", out.getvalue())


class TestShortPathFormatter(unittest.TestCase):
    def test_roots_are_stripped(self) -> None:
        formatter = cli.ShortPathFormatter("%(message)s", [Path("/srv/music")])
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "Parsed /srv/music/Band/01.mp3", None, None)
        self.assertEqual(formatter.format(record), "Parsed Band/01.mp3")


if __name__ == "__main__":
    unittest.main()
