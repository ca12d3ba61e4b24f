"""
Destination path formatting.

Pure functions of an AlbumDecision; the engine is the same for every mode,
only the path rule differs.
"""

import re
import unicodedata
from types import MappingProxyType
from typing import Mapping, Optional

from .constants import (
    DEFAULT_QUALITY_TIER_NAMES,
    DEFAULT_TITLE_MAX_LENGTH,
    LABELS_FOLDER,
    VARIOUS_ARTISTS,
)
from .models import AlbumDecision, OrganizationMode

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f\x7f]')


def sanitize_component(value: Optional[str], max_length: Optional[int] = None) -> str:
    """Make one path component safe on common filesystems"""
    value = unicodedata.normalize('NFC', value or '')
    value = _UNSAFE_CHARS.sub('_', value)
    value = re.sub(r'\s+', ' ', value).strip(' .')
    if max_length and len(value) > max_length:
        value = value[:max_length].rstrip(' .')
    return value or '_'


class PathFormatter:
    """
    Build the relative destination of an album.

    artist mode:      <Tier>/<Artist>/<Title> (<Year>)
    electronic mode:  <Tier>/Labels/<Label>/<Artist> - <Title> [<Catalog>]
                      <Tier>/Various Artists/<Title> (<Year>)   (compilations)
                      artist layout when no label is known
    """

    def __init__(self, mode: OrganizationMode = OrganizationMode.ARTIST,
                 tier_names: Mapping[str, str] = DEFAULT_QUALITY_TIER_NAMES,
                 title_max_length: int = DEFAULT_TITLE_MAX_LENGTH):
        self.mode = OrganizationMode(mode)
        self.tier_names = MappingProxyType(dict(tier_names))
        self.title_max_length = title_max_length

    def tier_folder(self, decision: AlbumDecision) -> str:
        return sanitize_component(self.tier_names.get(decision.quality.value, decision.quality.value))

    def relative_path(self, decision: AlbumDecision, artist_folder: Optional[str] = None) -> str:
        """
        Relative destination for a decision.

        Args:
            decision: Classified album
            artist_folder: Existing spelling to reuse for the artist folder
        """
        tier = self.tier_folder(decision)
        artist = sanitize_component(artist_folder or decision.artist)

        if self.mode == OrganizationMode.ELECTRONIC:
            if decision.is_compilation:
                return '/'.join([tier, VARIOUS_ARTISTS, self._title_with_year(decision)])
            if decision.label:
                leaf = f"{artist_folder or decision.artist} - {self._truncate(decision.title)}"
                if decision.catalog_number:
                    leaf += f" [{decision.catalog_number}]"
                leaf = self._with_disc(leaf, decision)
                return '/'.join([tier, LABELS_FOLDER, sanitize_component(decision.label),
                                 sanitize_component(leaf)])

        return '/'.join([tier, artist, self._title_with_year(decision)])

    def _title_with_year(self, decision: AlbumDecision) -> str:
        leaf = self._truncate(decision.title)
        if decision.year:
            leaf += f" ({decision.year})"
        return sanitize_component(self._with_disc(leaf, decision))

    def _truncate(self, title: str) -> str:
        return sanitize_component(title, self.title_max_length)

    @staticmethod
    def _with_disc(leaf: str, decision: AlbumDecision) -> str:
        if decision.disc_number:
            return f"{leaf} (Disc {decision.disc_number})"
        return leaf
