from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from .config import LibrarySettings, Settings
from .crawlers import CrawlerRegistry
from .events import ScanEvents
from .models import Library, Source
from .orchestrator import ScanOrchestrator
from .repository import LibraryRepository
from .store import LibraryStore
from .tag_codec import TagCodec

logger = logging.getLogger(__name__)


@dataclass
class MediaIndexerApp:
    settings: Settings
    store: LibraryStore
    repository: LibraryRepository
    events: ScanEvents
    orchestrator: ScanOrchestrator
    libraries: Dict[str, Library] = field(default_factory=dict)

    @classmethod
    def create(cls, settings: Settings) -> "MediaIndexerApp":
        store = LibraryStore(settings.store.path)
        repository = LibraryRepository(store)
        events = ScanEvents()
        registry = CrawlerRegistry.default(
            extensions=settings.scan.extensions,
            ftp_timeout=settings.scan.ftp_timeout,
            upnp_timeout=settings.scan.upnp_timeout,
            upnp_page_size=settings.scan.upnp_page_size,
        )
        orchestrator = ScanOrchestrator(
            repository,
            registry=registry,
            codec=TagCodec(settings.scan.sync_window),
            events=events,
            update_in_place=settings.scan.update_in_place,
        )
        app = cls(
            settings=settings,
            store=store,
            repository=repository,
            events=events,
            orchestrator=orchestrator,
        )
        for library_settings in settings.libraries:
            library = app._ensure_library(library_settings)
            app.libraries[library.name.casefold()] = library
        active = app.library(settings.active_library) if settings.active_library else None
        orchestrator.active_library_id = active.id if active else None
        return app

    def library(self, name: Optional[str]) -> Optional[Library]:
        if name is None:
            name = self.settings.library_named(None).name
        return self.libraries.get(name.casefold())

    def close(self) -> None:
        self.store.close()

    def _ensure_library(self, settings: LibrarySettings) -> Library:
        library = self.repository.find_library(settings.name)
        if library is None:
            library = self.repository.add_library(Library(name=settings.name))
            logger.info("Created library %s", library.name)
        existing = {source.name.casefold(): source for source in self.repository.sources(library.id)}
        for source_settings in settings.sources:
            source = existing.get(source_settings.name.casefold())
            if source is None:
                source = self.repository.add_source(
                    Source(
                        name=source_settings.name,
                        library_id=library.id,
                        access=source_settings.access,
                        address=source_settings.address,
                        folder=source_settings.folder,
                        port=source_settings.port,
                    )
                )
                logger.info("Added source %s to library %s", source.name, library.name)
                continue
            changed = (
                source.access is not source_settings.access
                or source.address != source_settings.address
                or source.folder != source_settings.folder
                or source.port != source_settings.port
            )
            if changed:
                source.access = source_settings.access
                source.address = source_settings.address
                source.folder = source_settings.folder
                source.port = source_settings.port
                self.repository.update_source(source)
                logger.info("Updated source %s in library %s", source.name, library.name)
        return library
