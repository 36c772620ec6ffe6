from __future__ import annotations


class IndexerError(Exception):
    """Base class for errors raised inside the indexer."""


class TransportError(IndexerError):
    """Raised when a source cannot be listed; aborts that source's crawl only."""


class ParseError(IndexerError):
    """Raised when tag or audio header data is malformed."""


class IntegrityError(IndexerError):
    """Raised when a persisted entity references a container that no longer exists."""


class ConfigError(IndexerError):
    """Raised when the configuration cannot be used."""
