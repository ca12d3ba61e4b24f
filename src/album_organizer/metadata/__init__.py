"""Metadata components: tag reading, classification and enrichment."""

from .alias_resolver import AliasResolver, normalize_artist
from .catalog import CatalogExtractor
from .directory_parser import DirectoryNameParser
from .tag_reader import MutagenTagReader, TagReader
from .classifier import AlbumClassifier, quality_tier
from .enrichment import DiscogsEnricher, NullEnricher

__all__ = [
    "AliasResolver",
    "normalize_artist",
    "CatalogExtractor",
    "DirectoryNameParser",
    "MutagenTagReader",
    "TagReader",
    "AlbumClassifier",
    "quality_tier",
    "DiscogsEnricher",
    "NullEnricher",
]
