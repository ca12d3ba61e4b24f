"""
Duplicate detection with an atomic check-and-claim.

The lookup of earlier albums, the duplicate decision, the destination choice
and the Pending move record are written in one store transaction, so two
workers holding the same album can never both reach Committed.
"""

import logging
import os
import sqlite3
from typing import List, Optional, Tuple

from .layout import PathFormatter
from .models import Album, AlbumStatus, DuplicateCheck, DuplicateOutcome
from .state_store import StateStore, StoreTransaction
from ..metadata.alias_resolver import AliasResolver, normalize_artist


def identity_keys(album: Album, alias_resolver: AliasResolver) -> Tuple[str, str]:
    """Case and punctuation insensitive (artist, title) identity"""
    decision = album.decision
    title_key = normalize_artist(decision.title)
    if decision.disc_number:
        title_key += f"#disc{decision.disc_number}"
    return alias_resolver.key(decision.artist), title_key


class DuplicateDetector:
    """Compare albums against the state store and claim new ones"""

    def __init__(self, store: StateStore, path_formatter: PathFormatter,
                 alias_resolver: AliasResolver, destination_root: str,
                 run_id: Optional[str] = None, dry_run: bool = False):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.path_formatter = path_formatter
        self.alias_resolver = alias_resolver
        self.destination_root = os.path.abspath(destination_root)
        self.run_id = run_id
        self.dry_run = dry_run

    @staticmethod
    def classify_matches(album: Album, candidates: List[sqlite3.Row]) -> Tuple[DuplicateOutcome, Optional[int]]:
        """Exact content matches win over (artist, title) matches"""
        for row in candidates:
            if row['content_hash'] == album.content_hash:
                return DuplicateOutcome.EXACT_DUPLICATE, row['id']
        for row in candidates:
            if row['artist_key'] == album.artist_key and row['title_key'] == album.title_key:
                return DuplicateOutcome.VARIANT_DUPLICATE, row['id']
        return DuplicateOutcome.NO_MATCH, None

    def check_and_claim(self, album: Album) -> DuplicateCheck:
        """
        Record the album, decide its duplicate outcome and claim a destination.

        Returns:
            DuplicateCheck; for NoMatch it carries the Pending move id and
            the absolute destination path
        """
        album.artist_key, album.title_key = identity_keys(album, self.alias_resolver)

        def claim(txn: StoreTransaction) -> DuplicateCheck:
            album.status = AlbumStatus.DISCOVERED
            album_id = txn.upsert_album(album, dry_run=self.dry_run)
            outcome, existing_id = self.classify_matches(album, txn.find_duplicate_candidates(album))

            if outcome != DuplicateOutcome.NO_MATCH:
                detail = f"{outcome.value} of album #{existing_id}"
                txn.set_album_status(album_id, AlbumStatus.DUPLICATE_FLAGGED)
                txn.record_outcome(album_id, album.source_path, None, detail,
                                   outcome=AlbumStatus.DUPLICATE_FLAGGED, dry_run=self.dry_run)
                return DuplicateCheck(outcome=outcome, album_id=album_id, existing_album_id=existing_id)

            artist_folder = None
            if not album.decision.is_compilation:
                artist_folder = (txn.artist_folder(album.artist_key)
                                 or self._existing_artist_folder(album))
            relative = self.path_formatter.relative_path(album.decision, artist_folder)
            destination = self._avoid_collision(txn, os.path.join(self.destination_root, relative))

            move_id = txn.open_move(album_id, album.source_path, destination, dry_run=self.dry_run)
            txn.set_album_status(album_id, AlbumStatus.CLASSIFIED)
            return DuplicateCheck(outcome=outcome, album_id=album_id, move_id=move_id,
                                  destination_path=destination)

        check = self.store.run_in_transaction(claim, run_id=self.run_id)
        album.id = check.album_id

        if check.outcome == DuplicateOutcome.NO_MATCH:
            album.status = AlbumStatus.CLASSIFIED
            self.logger.debug(f"Claimed {album.source_path} -> {check.destination_path}")
        else:
            album.status = AlbumStatus.DUPLICATE_FLAGGED
            self.logger.info(
                f"{check.outcome.value}: {album.source_path} matches album #{check.existing_album_id}"
            )
        return check

    def _existing_artist_folder(self, album: Album) -> Optional[str]:
        """Artist folder already on disk whose name differs only cosmetically"""
        tier_dir = os.path.join(self.destination_root, self.path_formatter.tier_folder(album.decision))
        try:
            entries = sorted(os.listdir(tier_dir))
        except OSError:
            return None
        for entry in entries:
            if self.alias_resolver.key(entry) == album.artist_key and os.path.isdir(os.path.join(tier_dir, entry)):
                return entry
        return None

    def _avoid_collision(self, txn: StoreTransaction, destination: str) -> str:
        """Suffix " (2)", " (3)", ... while the path is taken by another album"""
        candidate = destination
        counter = 2
        while txn.destination_claimed(candidate) or os.path.lexists(candidate):
            candidate = f"{destination} ({counter})"
            counter += 1
        if candidate != destination:
            self.logger.info(f"Destination exists, using {candidate}")
        return candidate
