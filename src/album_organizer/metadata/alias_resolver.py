"""
Artist alias resolution.

Maps raw artist spellings onto one canonical artist using configured alias
groups plus a cosmetic normalization (diacritics, punctuation, case, spacing).
Nothing beyond those two rules is ever merged.
"""

import logging
import re
import unicodedata
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

from ..core.exceptions import ConfigurationInvalid

_WHITESPACE = re.compile(r'\s+')


def normalize_artist(name: str) -> str:
    """
    Normalized comparison key for an artist name.

    Symbols and punctuation become spaces, diacritics are stripped, case is
    folded and whitespace collapsed: "Atom™" -> "atom", "Sébastien  Léger"
    -> "sebastien leger".
    """
    if not name:
        return ""

    # Drop symbols before NFKD so marks like ™ do not decompose into letters
    chars = []
    for char in name:
        category = unicodedata.category(char)
        if category[0] in ('P', 'S'):
            chars.append(' ')
        else:
            chars.append(char)

    decomposed = unicodedata.normalize('NFKD', ''.join(chars))
    stripped = ''.join(c for c in decomposed if not unicodedata.combining(c))
    return _WHITESPACE.sub(' ', stripped.casefold()).strip()


def clean_artist(name: str) -> str:
    """Display form: trimmed with internal whitespace collapsed"""
    return _WHITESPACE.sub(' ', name or '').strip()


class AliasResolver:
    """
    Resolve raw artist names to canonical names.

    Each alias group is a sequence of spellings whose first entry is the
    canonical name. Groups are frozen at construction; a normalized spelling
    may belong to at most one group.
    """

    def __init__(self, alias_groups: Iterable[Sequence[str]] = ()):
        self.logger = logging.getLogger(__name__)

        canonical_by_key = {}
        for group in alias_groups:
            members = [clean_artist(str(member)) for member in group if clean_artist(str(member))]
            if not members:
                continue
            canonical = members[0]
            for member in members:
                key = normalize_artist(member)
                existing = canonical_by_key.get(key)
                if existing is not None and existing != canonical:
                    raise ConfigurationInvalid([
                        f"alias {member!r} maps to both {existing!r} and {canonical!r}"
                    ])
                canonical_by_key[key] = canonical

        self._canonical_by_key: Mapping[str, str] = MappingProxyType(canonical_by_key)
        self.logger.debug(f"AliasResolver initialized with {len(canonical_by_key)} aliases")

    @property
    def aliases(self) -> Mapping[str, str]:
        return self._canonical_by_key

    def resolve(self, raw_name: str) -> str:
        """Canonical artist name for a raw spelling"""
        cleaned = clean_artist(raw_name)
        return self._canonical_by_key.get(normalize_artist(cleaned), cleaned)

    def key(self, raw_name: str) -> str:
        """Identity key: equal for names that resolve to the same artist"""
        return normalize_artist(self.resolve(raw_name))

    def same_artist(self, first: str, second: str) -> bool:
        return self.key(first) == self.key(second)
