"""
Album Directory Name Parser

Recovers artist/title/year/catalog hints from an album directory name.
Used after tags and before the "Unknown Artist" fallback.
"""

import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..core.constants import (
    COMPILATION_ARTIST_VALUES,
    DEFAULT_NOISE_ARTIST_VALUES,
    MAX_YEAR,
    MIN_YEAR,
    VARIOUS_ARTISTS,
)
from ..core.models import PartialDecision

_YEAR = r'(?:19|20)\d{2}'
_SPACED_SEPARATOR = re.compile(r'\s+-\s+')
_DISC_FOLDER = re.compile(r'^\s*(?:cd|disc|disk)[\s._-]*([0-9]+|[ivx]+)\s*$', re.IGNORECASE)
_ROMAN = {'i': 1, 'ii': 2, 'iii': 3, 'iv': 4, 'v': 5, 'vi': 6, 'vii': 7, 'viii': 8, 'ix': 9, 'x': 10}


def _clean_field(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = re.sub(r'\s+', ' ', value).strip(' -_.')
    return value or None


def _to_year(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    year = int(value)
    return year if MIN_YEAR <= year <= MAX_YEAR else None


def _build(pattern: str, groups: Dict[str, Any], **extra) -> PartialDecision:
    return PartialDecision(
        pattern=pattern,
        artist=_clean_field(groups.get('artist')),
        title=_clean_field(groups.get('title')),
        year=_to_year(groups.get('year') or groups.get('year_alt')),
        catalog_number=_clean_field(groups.get('catalog')),
        **extra
    )


def match_bracket_catalog(name: str) -> Optional[PartialDecision]:
    """[CAT123] Artist - Title (Year)"""
    match = re.fullmatch(
        r'\[(?P<catalog>[A-Za-z0-9][A-Za-z0-9 .\-]*\d[A-Za-z0-9]*)\]\s*'
        r'(?P<artist>.+?)\s+-\s+(?P<title>.+?)'
        r'(?:\s*[\(\[](?P<year>' + _YEAR + r')[\)\]])?',
        name
    )
    return _build('bracket_catalog', match.groupdict()) if match else None


def match_various_artists(name: str) -> Optional[PartialDecision]:
    """VA - Title [CAT] (Year)"""
    match = re.fullmatch(
        r'(?:VA|V\.A\.?|Various(?:\s+Artists)?)\s*-\s*(?P<title>.+?)'
        r'(?:\s*[\(\[](?P<year>' + _YEAR + r')[\)\]])?',
        name,
        re.IGNORECASE
    )
    if not match:
        return None
    return _build('various_artists', {**match.groupdict(), 'artist': VARIOUS_ARTISTS},
                  is_compilation=True)


def match_scene_release(name: str) -> Optional[PartialDecision]:
    """Artist - Title - ... - Year - Group or Artist-Title-...-Year-Group"""
    if _SPACED_SEPARATOR.search(name):
        # Bare hyphens belong to names like "Jay-Z" or "Jean-Michel Jarre"
        separator, field = r'\s+-\s+', r'.+?'
    else:
        separator, field = r'-', r'[^-]+?'
    match = re.fullmatch(
        r'(?P<artist>' + field + r')' + separator + r'(?P<title>' + field + r')' + separator +
        r'(?:' + field + separator + r')*?'
        r'(?P<year>' + _YEAR + r')' + separator + r'(?P<group>[A-Za-z0-9]+)',
        name
    )
    return _build('scene_release', match.groupdict()) if match else None


def match_catalog_artist_title(name: str) -> Optional[PartialDecision]:
    """CAT123 Artist - Title"""
    match = re.fullmatch(
        r'(?P<catalog>[A-Z]{2,}[A-Z0-9]*?[\s\-]?\d{2,6}[A-Z]?)\s+'
        r'(?P<artist>.+?)\s+-\s+(?P<title>.+)',
        name
    )
    return _build('catalog_artist_title', match.groupdict()) if match else None


def match_artist_title_year(name: str) -> Optional[PartialDecision]:
    """Artist - Title (Year)"""
    match = re.fullmatch(
        r'(?P<artist>.+?)\s+-\s+(?P<title>.+?)\s*[\(\[](?P<year>' + _YEAR + r')[\)\]]',
        name
    )
    return _build('artist_title_year', match.groupdict()) if match else None


def match_year_title(name: str) -> Optional[PartialDecision]:
    """(Year) Title or Year - Title"""
    match = re.fullmatch(
        r'(?:[\(\[](?P<year>' + _YEAR + r')[\)\]]\s*(?:-\s*)?'
        r'|(?P<year_alt>' + _YEAR + r')\s+-\s+)(?P<title>.+)',
        name
    )
    return _build('year_title', match.groupdict()) if match else None


def match_artist_title(name: str) -> Optional[PartialDecision]:
    """Artist - Title"""
    match = re.fullmatch(r'(?P<artist>.+?)\s+-\s+(?P<title>.+)', name)
    return _build('artist_title', match.groupdict()) if match else None


def match_title_only(name: str) -> Optional[PartialDecision]:
    """Title (Year)"""
    match = re.fullmatch(
        r'(?P<title>.+?)(?:\s*[\(\[](?P<year>' + _YEAR + r')[\)\]])?',
        name
    )
    return _build('title_only', match.groupdict()) if match else None


class DirectoryNameParser:
    """
    Ordered heuristic chain for album directory names.

    Recognizes names like:
    - "[KOMPAKT123] Artist - Title (2004)"
    - "VA - Title [CAT01] (1999)"
    - "Artist-Title-WEB-2019-GROUP"
    - "Jean-Michel Jarre - Oxygene - 1976 - FLAC"
    - "WARP123 Artist - Title"
    - "Artist - Title (1999)"
    - "(1999) Title"
    - "Artist - Title"

    The first pattern that fully matches wins.
    """

    def __init__(self, noise_values: Iterable[str] = DEFAULT_NOISE_ARTIST_VALUES):
        self.logger = logging.getLogger(__name__)
        self.noise_values = frozenset(value.strip().lower() for value in noise_values)
        self.patterns = self._compile_patterns()

    def _compile_patterns(self) -> List[Dict[str, Any]]:
        patterns: List[Dict[str, Any]] = [
            {'name': 'bracket_catalog', 'match': match_bracket_catalog, 'priority': 1},
            {'name': 'various_artists', 'match': match_various_artists, 'priority': 2},
            {'name': 'scene_release', 'match': match_scene_release, 'priority': 3},
            {'name': 'catalog_artist_title', 'match': match_catalog_artist_title, 'priority': 4},
            {'name': 'artist_title_year', 'match': match_artist_title_year, 'priority': 5},
            {'name': 'year_title', 'match': match_year_title, 'priority': 6},
            {'name': 'artist_title', 'match': match_artist_title, 'priority': 7},
            {'name': 'title_only', 'match': match_title_only, 'priority': 8},
        ]
        return sorted(patterns, key=lambda x: x['priority'])

    def parse(self, directory_name: str) -> Optional[PartialDecision]:
        """
        Parse a directory name into a partial decision.

        Args:
            directory_name: Last path component of the album directory

        Returns:
            PartialDecision from the first matching pattern, or None
        """
        cleaned = self._clean_name(directory_name)
        if not cleaned or cleaned.lower() in self.noise_values:
            return None

        for pattern_info in self.patterns:
            matcher: Callable[[str], Optional[PartialDecision]] = pattern_info['match']
            result = matcher(cleaned)
            if result is None:
                continue

            self._validate_artist(result)
            if result.title and result.title.lower() in self.noise_values:
                result.title = None

            self.logger.debug(
                f"Matched pattern '{pattern_info['name']}' for {directory_name!r}: "
                f"{result.artist} - {result.title}"
            )
            return result

        return None

    def _clean_name(self, name: str) -> str:
        cleaned = name.replace('_', ' ')
        return re.sub(r'\s+', ' ', cleaned).strip()

    def _validate_artist(self, result: PartialDecision) -> None:
        artist = result.artist
        if artist is None:
            return
        lowered = artist.lower()
        if lowered in COMPILATION_ARTIST_VALUES:
            result.artist = VARIOUS_ARTISTS
            result.is_compilation = True
        elif not self.is_valid_artist(artist):
            self.logger.debug(f"Rejected artist candidate {artist!r} from pattern {result.pattern}")
            result.artist = None

    def is_valid_artist(self, artist: Optional[str]) -> bool:
        """Reject noise values, bare years, track numbers and too-short names"""
        if not artist:
            return False
        artist = artist.strip()
        if artist.lower() in self.noise_values:
            return False
        if len(artist) < 2:
            return False
        if re.fullmatch(_YEAR, artist):
            return False
        if re.fullmatch(r'\d{1,3}\.?', artist):
            return False
        return True

    @staticmethod
    def disc_number(directory_name: str) -> Optional[int]:
        """Disc number for folders like "CD1", "Disc 2" or "Disk III"""
        match = _DISC_FOLDER.match(directory_name)
        if not match:
            return None
        token = match.group(1).lower()
        if token.isdigit():
            return int(token)
        return _ROMAN.get(token)
