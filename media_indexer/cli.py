from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from .app import MediaIndexerApp
from .config import Settings, find_config
from .errors import ConfigError
from .models import AccessType
from .orchestrator import ScanOrchestrator, ScanReport, ScanState
from .watch import run_watch

LOG_FORMAT = "%(levelname).1s | %(name)s | %(message)s"

C_RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",  # Cyan
    logging.INFO: "\033[37m",  # Light gray
    logging.WARNING: "\033[33m",  # Yellow
    logging.ERROR: "\033[31m",  # Red
    logging.CRITICAL: "\033[35m",  # Magenta
}


class ShortPathFormatter(logging.Formatter):
    def __init__(self, fmt: str, roots: list[Path]) -> None:
        super().__init__(fmt)
        self.roots = [str(root) for root in roots if root]

    def _shorten(self, message: str) -> str:
        for root in self.roots:
            if not message:
                break
            message = message.replace(f"{root}/", "")
            message = message.replace(root, "")
        return message

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        return self._shorten(message)


class ColorFormatter(ShortPathFormatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{C_RESET}"


class WarningBufferHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.WARNING)
        self.records: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
        except Exception:  # pragma: no cover
            msg = record.getMessage()
        self.records.append(msg)


def configure_logging(level: str, roots: list[Path], warn_log_path: Path) -> WarningBufferHandler:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    color_handler = logging.StreamHandler()
    color_handler.setFormatter(ColorFormatter(LOG_FORMAT, roots))
    root_logger.addHandler(color_handler)

    warn_buffer = WarningBufferHandler()
    warn_buffer.setFormatter(ShortPathFormatter(LOG_FORMAT, roots))
    root_logger.addHandler(warn_buffer)

    file_handler = logging.FileHandler(warn_log_path, mode="w", encoding="utf-8")
    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(ShortPathFormatter(LOG_FORMAT, roots))
    root_logger.addHandler(file_handler)
    return warn_buffer


def run_scan(orchestrator: ScanOrchestrator, library_id: int, update_in_place: Optional[bool]) -> Optional[ScanReport]:
    if not orchestrator.start_scan(library_id, update_in_place=update_in_place):
        print("A scan is already running.")
        return None
    while True:
        try:
            orchestrator.wait(0.5)
            if orchestrator.state is ScanState.IDLE:
                return orchestrator.last_report
        except KeyboardInterrupt:
            print("\nCancelling scan...")
            orchestrator.cancel()


def print_report(report: ScanReport) -> None:
    print(f"Scan {report.outcome.value}")
    print(f"  added:   {report.new_songs}")
    print(f"  updated: {report.updated_songs}")
    print(f"  deleted: {report.deleted_songs}")
    print(f"  albums removed: {len(report.deleted_albums)}")
    if report.faulted_sources:
        print(f"  unavailable sources: {', '.join(report.faulted_sources)}")


def print_summary(app: MediaIndexerApp) -> None:
    repository = app.repository
    for library in repository.libraries():
        songs = sum(len(repository.source_songs(source.id)) for source in repository.sources(library.id))
        print(
            f"{library.name}: {len(repository.artists(library.id))} artists, "
            f"{len(repository.albums(library.id))} albums, {songs} songs"
        )


def main() -> None:
    parser = argparse.ArgumentParser(description="Music library indexer")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)
    scan_parser = subparsers.add_parser("scan", help="Scan a library once")
    scan_parser.add_argument("library", nargs="?", help="Library name (defaults to the active library)")
    scan_parser.add_argument(
        "--update-in-place",
        action="store_true",
        default=None,
        help="Update modified songs instead of deleting and re-adding them",
    )
    watch_parser = subparsers.add_parser("watch", help="Rescan whenever local sources change")
    watch_parser.add_argument("library", nargs="?", help="Library name (defaults to the active library)")
    subparsers.add_parser("summary", help="Show artist, album and song counts per library")
    args = parser.parse_args()

    config_path = find_config(args.config)
    try:
        settings = Settings.load(config_path)
    except ConfigError as exc:
        parser.exit(2, f"error: {exc}\n")

    display_roots = [
        Path(source.folder)
        for library in settings.libraries
        for source in library.sources
        if source.access is AccessType.LOCAL
    ]
    warn_log_path = Path.cwd() / "media-indexer-warnings.log"
    warn_buffer = configure_logging(args.log_level, display_roots, warn_log_path)

    app = MediaIndexerApp.create(settings)
    try:
        match args.command:
            case "scan" | "watch":
                library = app.library(args.library)
                if library is None:
                    raise ConfigError(f"unknown library {args.library!r}")
                if args.command == "scan":
                    report = run_scan(app.orchestrator, library.id, args.update_in_place)
                    if report:
                        print_report(report)
                else:
                    run_watch(app.orchestrator, app.repository, library, settings.scan.extensions)
            case "summary":
                print_summary(app)
            case _:
                parser.error("Unknown command")
    except ConfigError as exc:
        parser.exit(2, f"error: {exc}\n")
    finally:
        app.close()
        if warn_buffer.records:
            print("\n\033[33mWarnings/Errors summary:\033[0m")
            for line in warn_buffer.records:
                print(f" - {line}")
            print(f"\nFull warning log: {warn_log_path}")


if __name__ == "__main__":
    main()
