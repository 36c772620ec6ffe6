from __future__ import annotations

from typing import Callable, Dict

from ..models import AccessType, Source
from .base import ContainerBatch, CrawlEntry, SourceCrawler
from .ftp import FtpCrawler
from .local import LocalCrawler
from .upnp import ContentDirectoryBrowser, UpnpCrawler

CrawlerFactory = Callable[[Source], SourceCrawler]


class CrawlerRegistry:
    """Maps an access method to the factory that builds its crawler."""

    def __init__(self) -> None:
        self._factories: Dict[AccessType, CrawlerFactory] = {}

    def register(self, access: AccessType, factory: CrawlerFactory) -> None:
        self._factories[access] = factory

    def create(self, source: Source) -> SourceCrawler:
        try:
            factory = self._factories[source.access]
        except KeyError:
            raise ValueError(f"no crawler registered for {source.access.value}") from None
        return factory(source)

    @classmethod
    def default(
        cls,
        *,
        extensions=(".mp3",),
        ftp_timeout: float = 30,
        upnp_timeout: float = 10,
        upnp_page_size: int = 200,
    ) -> "CrawlerRegistry":
        registry = cls()
        registry.register(AccessType.LOCAL, lambda source: LocalCrawler(source, extensions=extensions))
        registry.register(
            AccessType.FTP, lambda source: FtpCrawler(source, extensions=extensions, timeout=ftp_timeout)
        )
        registry.register(
            AccessType.UPNP,
            lambda source: UpnpCrawler(
                source, extensions=extensions, timeout=upnp_timeout, page_size=upnp_page_size
            ),
        )
        return registry


__all__ = [
    "ContainerBatch",
    "ContentDirectoryBrowser",
    "CrawlEntry",
    "CrawlerRegistry",
    "FtpCrawler",
    "LocalCrawler",
    "SourceCrawler",
    "UpnpCrawler",
]
