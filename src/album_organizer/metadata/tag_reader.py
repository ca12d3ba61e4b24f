"""
Tag bag reader.

Returns raw per-file metadata as a flat dict. Missing or corrupt tags yield an
empty bag; classification then falls back to directory heuristics.
"""

import logging
from typing import Dict, Optional, Protocol

import mutagen
from mutagen import File as MutagenFile

from ..core.models import TagBag


class TagReader(Protocol):
    """Anything that can turn an audio file path into a tag bag"""

    def read(self, file_path: str) -> TagBag:
        ...


class MutagenTagReader:
    """Tag bag reader backed by mutagen"""

    # Normalized key -> tag names across ID3, Vorbis comments, MP4 and ASF
    TAG_MAPPING = {
        'artist': ['TPE1', 'artist', 'ARTIST', '\xa9ART', 'Author'],
        'albumartist': ['TPE2', 'albumartist', 'ALBUMARTIST', 'album artist', 'aART',
                        'WM/AlbumArtist'],
        'album': ['TALB', 'album', 'ALBUM', '\xa9alb', 'WM/AlbumTitle'],
        'date': ['TDRC', 'TYER', 'date', 'DATE', 'year', 'YEAR', '\xa9day', 'WM/Year'],
        'label': ['TPUB', 'label', 'LABEL', 'organization', 'ORGANIZATION', 'publisher',
                  'PUBLISHER', '----:com.apple.iTunes:LABEL', 'WM/Publisher'],
        'catalognumber': ['TXXX:CATALOGNUMBER', 'TXXX:CATALOG', 'catalognumber',
                          'CATALOGNUMBER', 'CATALOG', '----:com.apple.iTunes:CATALOGNUMBER'],
        'tracknumber': ['TRCK', 'tracknumber', 'TRACKNUMBER', 'trkn', 'WM/TrackNumber'],
        'discnumber': ['TPOS', 'discnumber', 'DISCNUMBER', 'disk', 'WM/PartOfSet'],
        'title': ['TIT2', 'title', 'TITLE', '\xa9nam', 'Title'],
    }

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def read(self, file_path: str) -> TagBag:
        """
        Read tags from one audio file.

        Args:
            file_path: Path of the audio file

        Returns:
            Dict of normalized tag keys to string values (empty when unreadable)
        """
        try:
            audio = MutagenFile(file_path)
        except (mutagen.MutagenError, OSError, ValueError) as e:
            self.logger.debug(f"Unreadable tags in {file_path}: {e}")
            return {}

        if audio is None or not audio.tags:
            self.logger.debug(f"No tags in {file_path}")
            return {}

        bag: Dict[str, str] = {}
        for key, possible_tags in self.TAG_MAPPING.items():
            value = self._first_value(audio.tags, possible_tags)
            if value:
                bag[key] = value
        return bag

    def _first_value(self, tags, possible_tags) -> Optional[str]:
        for tag in possible_tags:
            try:
                if tag not in tags:
                    continue
                value = tags[tag]
            except (KeyError, ValueError, TypeError):
                continue

            if isinstance(value, list):
                if not value:
                    continue
                value = value[0]
            if isinstance(value, tuple):
                # MP4 track/disc tuples
                value = value[0]
            if isinstance(value, bytes):
                value = value.decode('utf-8', errors='replace')

            if getattr(value, 'text', None):
                # ID3 frames
                value = value.text[0]

            text = str(value).replace('\x00', ' ').strip()
            if text:
                return text
        return None
