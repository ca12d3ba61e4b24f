"""
Catalog number extraction from album titles.
"""

import logging
import re
from typing import Iterable, Optional, Tuple

from ..core.constants import DEFAULT_CATALOG_EXCLUSION_PATTERNS

# Trailing "(...)" or "[...]" group
_TRAILING_GROUP = re.compile(r'\s*(?P<open>[\(\[])(?P<token>[^\(\)\[\]]+)[\)\]]\s*$')

# Letters followed by digits, e.g. KOMPAKT123, WARP-CD 45, TRESOR.101, 2MR-004
_CATALOG_SHAPE = re.compile(
    r'^(?=.*[A-Za-z])(?=.*\d)[A-Za-z0-9]{1,12}(?:[\s.\-_]?[A-Za-z]{0,4})?[\s.\-_]?\d{1,6}[A-Za-z]{0,2}$'
)

# Leading words that mark a qualifier rather than a release identifier
_QUALIFIER = re.compile(
    r'^(?:cd|disc|disk|part|pt|vol|volume|remaster(?:ed)?|reissue|edition|deluxe|'
    r'anniversary|live|bonus|expanded|feat|ft|top)\b',
    re.IGNORECASE
)

# Release format tags that are neither title nor catalog
_FORMAT_TAG = re.compile(
    r'^(?:flac|mp3|wav|aiff|alac|aac|ogg|opus|web|cd|lp|ep|hi-?res|lossless|'
    r'\d{2,3}\s*(?:kbps|k)?|v0|v2|vbr|cbr|\d{2}[-\s/]\d{2,3}(?:khz)?|\d{2}bit|'
    r'(?:flac|mp3|wav)\s+\d{2,3}(?:[-\s/]\d{2,3})?)$',
    re.IGNORECASE
)


class CatalogExtractor:
    """
    Separate catalog numbers from titles.

    Only trailing bracketed/parenthesised tokens are considered. A token that
    matches an exclusion pattern (remix, mix, edit, version, instrumental,
    vocal, inch, vinyl) is kept verbatim in the title.
    """

    def __init__(self, exclusion_patterns: Iterable[str] = DEFAULT_CATALOG_EXCLUSION_PATTERNS):
        self.logger = logging.getLogger(__name__)
        self.exclusion_patterns = tuple(
            re.compile(pattern, re.IGNORECASE) for pattern in exclusion_patterns
        )

    def is_excluded(self, token: str) -> bool:
        return any(pattern.search(token) for pattern in self.exclusion_patterns)

    def looks_like_catalog(self, token: str) -> bool:
        token = token.strip()
        if not token or self.is_excluded(token) or _FORMAT_TAG.match(token):
            return False
        if _QUALIFIER.search(token):
            return False
        # Bare years are release dates, not catalog numbers
        if re.fullmatch(r'(19|20)\d{2}', token):
            return False
        return bool(_CATALOG_SHAPE.match(token))

    def validate(self, candidate: Optional[str]) -> Optional[str]:
        """Normalize a catalog candidate from any source, or reject it"""
        if not candidate:
            return None
        candidate = re.sub(r'\s+', ' ', str(candidate)).strip().strip('[]()').strip()
        if not candidate or self.is_excluded(candidate):
            return None
        if candidate.lower() in ('none', 'n/a', 'na', '-'):
            return None
        return candidate.upper()

    def strip_format_tags(self, title: str) -> str:
        """Remove trailing release format tags like [FLAC] or (WEB)"""
        while True:
            match = _TRAILING_GROUP.search(title)
            if not match or not _FORMAT_TAG.match(match.group('token').strip()):
                return title
            title = title[:match.start()].rstrip()

    def extract(self, title: str) -> Tuple[str, Optional[str]]:
        """
        Split a trailing catalog token from a title.

        Returns:
            (title without the catalog token, catalog number or None)
        """
        title = self.strip_format_tags(title.strip())
        match = _TRAILING_GROUP.search(title)
        if not match:
            return title, None

        token = match.group('token').strip()
        if not self.looks_like_catalog(token):
            return title, None

        clean_title = title[:match.start()].rstrip()
        if not clean_title:
            return title, None

        self.logger.debug(f"Catalog {token!r} extracted from {title!r}")
        return clean_title, token.upper()
