"""
Album Classifier

Turns one album directory plus its tag bags into an AlbumDecision.

Metadata priority:
1. Tag bags (noise values ignored)
2. Directory name heuristics
3. Optional enrichment lookup for label and catalog number
4. "Unknown Artist" sentinel
"""

import logging
import os
import re
from collections import Counter
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from ..core.constants import (
    ARTIST_WEIGHT,
    COMPILATION_ARTIST_VALUES,
    COMPILATION_BASE_SCORE,
    DEFAULT_MANUAL_REVIEW_THRESHOLD,
    DEFAULT_NOISE_ARTIST_VALUES,
    ENRICHMENT_MIN_CONFIDENCE,
    LOSSLESS_EXTENSIONS,
    LOSSY_EXTENSIONS,
    MAX_YEAR,
    MIN_YEAR,
    TITLE_WEIGHT,
    UNKNOWN_ARTIST,
    UNTITLED,
    VARIOUS_ARTISTS,
    YEAR_WEIGHT,
)
from ..core.exceptions import MetadataMissing
from ..core.models import (
    AlbumDecision,
    AlbumStatus,
    CatalogDecision,
    EnrichmentResult,
    PartialDecision,
    QualityTier,
    TagBag,
    TrackFile,
)
from .alias_resolver import AliasResolver, clean_artist
from .catalog import CatalogExtractor
from .directory_parser import DirectoryNameParser

_YEAR_IN_TEXT = re.compile(r'(?<!\d)((?:19|20)\d{2})(?!\d)')
_TRAILING_YEAR = re.compile(r'\s*[\(\[]((?:19|20)\d{2})[\)\]]\s*$')

# Distinct track artists above which an album without album artist is a compilation
COMPILATION_MIN_ARTISTS = 3


class Enricher(Protocol):
    """Metadata enrichment collaborator; returns None for NoMatch"""

    def lookup(self, artist: str, title: str) -> Optional[EnrichmentResult]:
        ...


def quality_tier(extensions: Iterable[str]) -> QualityTier:
    """Quality tier from file extensions, case-insensitive"""
    normalized = {ext.lower().lstrip('.') for ext in extensions}
    has_lossless = bool(normalized & LOSSLESS_EXTENSIONS)
    has_lossy = bool(normalized & LOSSY_EXTENSIONS)

    if has_lossless and has_lossy:
        return QualityTier.MIXED
    if has_lossless:
        return QualityTier.LOSSLESS
    if has_lossy:
        return QualityTier.LOSSY
    return QualityTier.UNKNOWN


def parse_year(value: Optional[str]) -> Optional[int]:
    """First plausible four-digit year in a tag value"""
    if not value:
        return None
    match = _YEAR_IN_TEXT.search(str(value))
    if not match:
        return None
    year = int(match.group(1))
    return year if MIN_YEAR <= year <= MAX_YEAR else None


class AlbumClassifier:
    """
    Classify album directories.

    All pattern tables are supplied at construction and never modified.
    """

    def __init__(self,
                 alias_resolver: Optional[AliasResolver] = None,
                 directory_parser: Optional[DirectoryNameParser] = None,
                 catalog_extractor: Optional[CatalogExtractor] = None,
                 manual_review_threshold: int = DEFAULT_MANUAL_REVIEW_THRESHOLD,
                 noise_values: Sequence[str] = DEFAULT_NOISE_ARTIST_VALUES,
                 enricher: Optional[Enricher] = None,
                 enrichment_min_confidence: float = ENRICHMENT_MIN_CONFIDENCE):
        self.logger = logging.getLogger(__name__)
        self.noise_values = frozenset(value.strip().lower() for value in noise_values)
        self.alias_resolver = alias_resolver or AliasResolver()
        self.directory_parser = directory_parser or DirectoryNameParser(self.noise_values)
        self.catalog_extractor = catalog_extractor or CatalogExtractor()
        self.manual_review_threshold = manual_review_threshold
        self.enricher = enricher
        self.enrichment_min_confidence = enrichment_min_confidence

    def classify(self, album_dir: str, tracks: List[TrackFile]) -> AlbumDecision:
        """
        Classify one album directory.

        Args:
            album_dir: Album directory path
            tracks: Files of the album; audio tracks carry their tag bags

        Returns:
            AlbumDecision with status Classified or ManualReview
        """
        reasons: List[str] = []
        audio_tracks = [track for track in tracks if track.is_audio]
        quality = quality_tier(track.format for track in audio_tracks)

        try:
            bags = self._tag_bags(album_dir, audio_tracks)
        except MetadataMissing as e:
            self.logger.info(f"{e}; using directory heuristics")
            reasons.append("no usable tags")
            bags = []

        heuristic, disc_number = self._parse_directory(album_dir)
        if heuristic:
            reasons.append(f"directory pattern: {heuristic.pattern}")
        if disc_number is None:
            disc_number = self._disc_from_tags(bags)

        # Artist
        album_artists = self._values(bags, 'albumartist')
        track_artists = self._values(bags, 'artist')
        candidates = self._unique(album_artists + track_artists +
                                  ([heuristic.artist] if heuristic and heuristic.artist else []))

        is_compilation = self._is_compilation(album_artists, track_artists, heuristic)
        artist_present = True
        if is_compilation:
            artist = VARIOUS_ARTISTS
        else:
            raw_artist = self._most_common(album_artists) or self._most_common(track_artists)
            if raw_artist is None and heuristic and heuristic.artist:
                raw_artist = heuristic.artist
            if raw_artist is None:
                artist = UNKNOWN_ARTIST
                artist_present = False
                reasons.append("artist unknown")
            else:
                artist = self.alias_resolver.resolve(raw_artist)

        # Title
        title = self._most_common(self._values(bags, 'album'))
        if title is None and heuristic and heuristic.title:
            title = heuristic.title

        title_year = None
        title_catalog = None
        if title:
            title, title_year = self._split_trailing_year(title)
            title, title_catalog = self.catalog_extractor.extract(title)
            title, year_after_catalog = self._split_trailing_year(title)
            title_year = title_year or year_after_catalog
        title_present = bool(title)
        if not title_present:
            title = UNTITLED
            reasons.append("title unknown")

        # Year
        year = None
        for value in self._values(bags, 'date'):
            year = parse_year(value)
            if year:
                break
        if year is None and heuristic:
            year = heuristic.year
        if year is None:
            year = title_year

        catalog = self._resolve_catalog(bags, heuristic, title_catalog)
        if artist_present and title_present and not is_compilation:
            catalog = self._enrich(artist, title, catalog, reasons)

        confidence = self._confidence(artist_present, title_present, year is not None, is_compilation)
        status = AlbumStatus.CLASSIFIED
        if confidence < self.manual_review_threshold:
            status = AlbumStatus.MANUAL_REVIEW
            reasons.append(f"confidence {confidence} below threshold {self.manual_review_threshold}")

        decision = AlbumDecision(
            artist=artist,
            title=title,
            year=year,
            quality=quality,
            catalog_number=catalog.catalog_number,
            label=catalog.label,
            confidence=confidence,
            status=status,
            artist_candidates=candidates,
            is_compilation=is_compilation,
            disc_number=disc_number,
            catalog=catalog,
            reasons=reasons,
        )

        self.logger.debug(
            f"Classified {album_dir}: {artist} - {title} ({year}) "
            f"[{quality.value}] confidence={confidence} status={status.value}"
        )
        return decision

    def _tag_bags(self, album_dir: str, audio_tracks: List[TrackFile]) -> List[TagBag]:
        bags = [track.tags for track in audio_tracks if track.tags]
        if not bags:
            raise MetadataMissing(album_dir, "no readable tags")
        return bags

    def _parse_directory(self, album_dir: str) -> Tuple[Optional[PartialDecision], Optional[int]]:
        """Heuristics for the directory name; disc folders use their parent's name"""
        name = os.path.basename(os.path.normpath(album_dir))
        disc_number = self.directory_parser.disc_number(name)
        if disc_number is not None:
            name = os.path.basename(os.path.dirname(os.path.normpath(album_dir)))
        return self.directory_parser.parse(name), disc_number

    def _disc_from_tags(self, bags: List[TagBag]) -> Optional[int]:
        """Disc number only when the tags mark a multi-disc set"""
        for value in self._values(bags, 'discnumber'):
            match = re.match(r'\s*(\d+)\s*/\s*(\d+)', value)
            if match and int(match.group(2)) > 1:
                return int(match.group(1))
        return None

    def _values(self, bags: List[TagBag], key: str) -> List[str]:
        values = []
        for bag in bags:
            value = bag.get(key)
            if value is None:
                continue
            value = clean_artist(str(value))
            if value and value.lower() not in self.noise_values:
                values.append(value)
        return values

    @staticmethod
    def _most_common(values: List[str]) -> Optional[str]:
        if not values:
            return None
        counts = Counter(values)
        best = max(counts.values())
        # Ties resolve to the first spelling seen in track order
        return next(value for value in values if counts[value] == best)

    @staticmethod
    def _unique(values: List[str]) -> List[str]:
        seen = []
        for value in values:
            if value not in seen:
                seen.append(value)
        return seen

    def _is_compilation(self, album_artists: List[str], track_artists: List[str],
                        heuristic: Optional[PartialDecision]) -> bool:
        if any(value.lower() in COMPILATION_ARTIST_VALUES for value in album_artists):
            return True
        if album_artists:
            return False
        if heuristic and heuristic.is_compilation:
            return True
        distinct = {self.alias_resolver.key(value) for value in track_artists}
        return len(distinct) >= COMPILATION_MIN_ARTISTS

    @staticmethod
    def _split_trailing_year(title: str) -> Tuple[str, Optional[int]]:
        match = _TRAILING_YEAR.search(title)
        if not match or match.start() == 0:
            return title, None
        return title[:match.start()].rstrip(), parse_year(match.group(1))

    def _resolve_catalog(self, bags: List[TagBag], heuristic: Optional[PartialDecision],
                         title_catalog: Optional[str]) -> CatalogDecision:
        decision = CatalogDecision()

        for value in self._values(bags, 'catalognumber'):
            catalog = self.catalog_extractor.validate(value)
            if catalog:
                decision.catalog_number, decision.source, decision.confidence = catalog, 'tags', 1.0
                break

        if decision.catalog_number is None and heuristic and heuristic.catalog_number:
            if self.catalog_extractor.looks_like_catalog(heuristic.catalog_number):
                decision.catalog_number = self.catalog_extractor.validate(heuristic.catalog_number)
                decision.source, decision.confidence = 'directory', 0.6

        if decision.catalog_number is None and title_catalog:
            decision.catalog_number = self.catalog_extractor.validate(title_catalog)
            decision.source, decision.confidence = 'title', 0.5

        label = self._most_common(self._values(bags, 'label'))
        if label is None and heuristic and heuristic.label:
            label = heuristic.label
        decision.label = label
        if label and decision.source == 'none':
            decision.source, decision.confidence = 'tags', 1.0
        return decision

    def _enrich(self, artist: str, title: str, catalog: CatalogDecision,
                reasons: List[str]) -> CatalogDecision:
        """Fill label / catalog gaps from the enrichment collaborator"""
        if self.enricher is None or (catalog.label and catalog.catalog_number):
            return catalog

        result = self.enricher.lookup(artist, title)
        if result is None or result.confidence < self.enrichment_min_confidence:
            return catalog

        if not catalog.label and result.label:
            catalog.label = result.label
        if not catalog.catalog_number:
            catalog.catalog_number = self.catalog_extractor.validate(result.catalog_number)
        catalog.source = 'enrichment'
        catalog.confidence = result.confidence
        reasons.append(f"enriched (confidence {result.confidence:.2f})")
        return catalog

    @staticmethod
    def _confidence(artist_present: bool, title_present: bool, year_present: bool,
                    is_compilation: bool) -> int:
        score = COMPILATION_BASE_SCORE if is_compilation else (ARTIST_WEIGHT if artist_present else 0)
        if title_present:
            score += TITLE_WEIGHT
        if year_present:
            score += YEAR_WEIGHT
        return score
