"""
Per-album pipeline: Scan -> Classify -> Deduplicate -> Relocate -> Record.

One call processes one album end to end. Every per-album error ends as a
Failed AlbumResult with an audit entry; nothing here aborts the run.
"""

import logging
import os
from typing import Optional

from .discovery import AlbumScanner
from .duplicate_detector import DuplicateDetector, identity_keys
from .exceptions import ClassificationAmbiguous, OrganizerError
from .models import Album, AlbumResult, AlbumStatus, DuplicateOutcome
from .relocation import RelocationExecutor
from .state_store import StateStore
from .worker_pool import Turn
from ..metadata.classifier import AlbumClassifier
from ..metadata.tag_reader import TagReader


class AlbumPipeline:
    """Run the phases for one album directory in strict order"""

    def __init__(self, scanner: AlbumScanner, tag_reader: TagReader,
                 classifier: AlbumClassifier, detector: DuplicateDetector,
                 executor: RelocationExecutor, store: StateStore,
                 run_id: Optional[str] = None, dry_run: bool = False):
        self.logger = logging.getLogger(__name__)
        self.scanner = scanner
        self.tag_reader = tag_reader
        self.classifier = classifier
        self.detector = detector
        self.executor = executor
        self.store = store
        self.run_id = run_id
        self.dry_run = dry_run

    def process(self, album_dir: str, turn: Optional[Turn] = None) -> AlbumResult:
        """
        Process one album directory.

        Args:
            album_dir: Album directory path
            turn: Place in the run's claim order; released once the album
                has claimed or failed

        Returns:
            AlbumResult; status Moved on success (Classified for a dry run)
        """
        try:
            return self._process(album_dir, turn)
        finally:
            if turn is not None:
                turn.release()

    def _process(self, album_dir: str, turn: Optional[Turn]) -> AlbumResult:
        album: Optional[Album] = None
        move_id: Optional[int] = None
        try:
            album = self._classify(album_dir)

            if album.decision.needs_review:
                return self._manual_review(album)

            if turn is not None:
                turn.wait()
            try:
                check = self.detector.check_and_claim(album)
            finally:
                if turn is not None:
                    turn.release()

            if check.outcome != DuplicateOutcome.NO_MATCH:
                return AlbumResult(
                    source_path=album_dir,
                    status=AlbumStatus.DUPLICATE_FLAGGED,
                    content_hash=album.content_hash,
                    duplicate=check.outcome,
                    confidence=album.decision.confidence,
                )

            move_id = check.move_id
            if self.dry_run:
                self.logger.info(f"[DRY RUN] Would move {album_dir} -> {check.destination_path}")
                return AlbumResult(
                    source_path=album_dir,
                    status=AlbumStatus.CLASSIFIED,
                    destination_path=check.destination_path,
                    content_hash=album.content_hash,
                    move_id=move_id,
                    duplicate=check.outcome,
                    confidence=album.decision.confidence,
                )

            move = self.executor.relocate(album, move_id, check.destination_path)
            return AlbumResult(
                source_path=album_dir,
                status=AlbumStatus.MOVED,
                destination_path=move.destination_path,
                content_hash=album.content_hash,
                move_id=move.id,
                duplicate=check.outcome,
                confidence=album.decision.confidence,
            )

        except (OrganizerError, OSError) as e:
            self.logger.error(f"Failed to process {album_dir}: {e}")
            # The executor records its own rollback once a move exists
            if move_id is None:
                self._record_failure(album_dir, album, e)
            return AlbumResult(
                source_path=album_dir,
                status=AlbumStatus.FAILED,
                content_hash=album.content_hash if album else None,
                move_id=move_id,
                confidence=album.decision.confidence if album else None,
                error=f"{type(e).__name__}: {e}",
            )

    def _classify(self, album_dir: str) -> Album:
        tracks = self.scanner.scan(album_dir)
        for track in tracks:
            if track.is_audio:
                track.tags = self.tag_reader.read(os.path.join(album_dir, track.relative_path))

        decision = self.classifier.classify(album_dir, tracks)
        album = Album(
            source_path=album_dir,
            decision=decision,
            tracks=tracks,
            content_hash=self.scanner.content_hash(tracks),
        )
        album.artist_key, album.title_key = identity_keys(album, self.classifier.alias_resolver)
        return album

    def _manual_review(self, album: Album) -> AlbumResult:
        """Report the album instead of moving it"""
        decision = album.decision
        reason = ClassificationAmbiguous(album.source_path, decision.confidence,
                                         self.classifier.manual_review_threshold)
        self.logger.warning(str(reason))

        def record(txn):
            album.status = AlbumStatus.MANUAL_REVIEW
            album_id = txn.upsert_album(album, dry_run=self.dry_run)
            txn.record_outcome(album_id, album.source_path, None,
                               f"ManualReview: {'; '.join(decision.reasons)}",
                               outcome=AlbumStatus.MANUAL_REVIEW, dry_run=self.dry_run)

        self.store.run_in_transaction(record, run_id=self.run_id)
        return AlbumResult(
            source_path=album.source_path,
            status=AlbumStatus.MANUAL_REVIEW,
            content_hash=album.content_hash,
            confidence=decision.confidence,
            error=str(reason),
        )

    def _record_failure(self, album_dir: str, album: Optional[Album], error: Exception) -> None:
        detail = f"{type(error).__name__}: {error}"

        def record(txn):
            album_id = None
            if album is not None:
                album.status = AlbumStatus.FAILED
                album_id = txn.upsert_album(album, dry_run=self.dry_run)
            txn.record_outcome(album_id, album_dir, None, detail, dry_run=self.dry_run)

        try:
            self.store.run_in_transaction(record, run_id=self.run_id)
        except OrganizerError as e:
            self.logger.error(f"Could not record failure of {album_dir}: {e}")
