"""
Relocation Executor

Moves one album directory with copy, verify, publish and delete:

1. Pending -> Verifying: every file is copied into a hidden staging
   directory next to the destination.
2. Each copy is compared with the scanned manifest by size and SHA-256.
3. The staging directory is renamed to the destination in one step, so a
   reader sees either nothing or the complete album.
4. Only then are the source files removed and the move Committed.

Any failure before the rename discards the staging directory, leaves the
source untouched and records Failed -> RolledBack.
"""

import logging
import os
import shutil
from typing import Dict, List, Optional

from .cleanup import prune_empty_ancestors
from .constants import DEFAULT_CLEANUP_MAX_LEVELS, STAGING_PREFIX
from .exceptions import FilesystemIO, OrganizerError, StoreContention, VerificationMismatch
from .models import ACTIVE_MOVE_STATUSES, Album, AlbumStatus, MoveRecord, MoveStatus, TrackFile
from .state_store import StateStore, StateTransitionError, StoreTransaction, checksum_summary
from ..utils.checksums import file_checksum
from ..utils.decorators import track_performance


def _file_path(root: str, relative_path: str) -> str:
    return os.path.join(root, *relative_path.split('/'))


def staging_path(destination: str, move_id: int) -> str:
    """Hidden sibling of the destination used while a move is in flight"""
    parent, name = os.path.split(destination.rstrip(os.sep))
    return os.path.join(parent, f"{STAGING_PREFIX}{name}-{move_id}")


class RelocationExecutor:
    """Copy/verify/commit relocation of album directories"""

    def __init__(self, store: StateStore, run_id: Optional[str] = None,
                 destination_root: Optional[str] = None,
                 cleanup_max_levels: int = DEFAULT_CLEANUP_MAX_LEVELS,
                 source_root: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.run_id = run_id
        self.destination_root = os.path.abspath(destination_root) if destination_root else None
        self.source_root = os.path.abspath(source_root) if source_root else None
        # Configured roots survive even when an album is the root itself
        self.protected_roots = frozenset(root for root in (self.source_root, self.destination_root) if root)
        self.cleanup_max_levels = cleanup_max_levels
        self._performance_metrics: Dict[str, List[float]] = {}

    @track_performance(threshold_ms=60000)
    def relocate(self, album: Album, move_id: int, destination: str) -> MoveRecord:
        """
        Relocate a claimed album.

        Args:
            album: Album with id, tracks and content hash
            move_id: Pending move opened by the duplicate detector
            destination: Absolute destination directory

        Returns:
            The Committed MoveRecord

        Raises:
            VerificationMismatch: a copy differs from the manifest (rolled back)
            FilesystemIO: an OS error stopped the move (rolled back)
            StoreContention: the store stayed locked
        """
        self.logger.info(f"Moving {album.source_path} -> {destination}")

        try:
            self._set_verifying(move_id)
            detail = self._transfer(album.source_path, destination, album.tracks, move_id,
                                    prune_root=self.destination_root)
        except (OrganizerError, OSError) as e:
            self._fail(move_id, album.id, f"{type(e).__name__}: {e}", AlbumStatus.FAILED)
            album.status = AlbumStatus.FAILED
            if isinstance(e, OSError):
                raise FilesystemIO(f"Moving {album.source_path} failed: {e}", e) from e
            raise

        move = self._commit(move_id, album.id, destination, album.tracks, album.content_hash, detail)
        album.status = AlbumStatus.MOVED
        album.canonical_path = destination
        self.logger.info(f"Committed move #{move_id}: {destination}")
        return move

    def recover_incomplete(self) -> int:
        """
        Resolve moves left in Pending or Verifying by an interrupted run.

        Returns:
            Number of moves resolved
        """
        moves = self.store.active_moves()
        if not moves:
            return 0

        self.logger.warning(f"Recovering {len(moves)} incomplete moves from an earlier run")
        recovered = 0
        for move in moves:
            try:
                self._recover(move)
                recovered += 1
            except (OrganizerError, OSError) as e:
                self.logger.error(f"Could not recover move #{move.id}: {e}")
        return recovered

    def undo(self, move_id: int) -> MoveRecord:
        """
        Move a committed album back to its original source path.

        The reverse move gets its own record; the original becomes RolledBack.

        Returns:
            The Committed reverse MoveRecord
        """
        original = self.store.get_move(move_id)
        if original is None:
            raise StateTransitionError(f"Move #{move_id} does not exist")
        if original.dry_run or original.status != MoveStatus.COMMITTED or not original.destination_path:
            raise StateTransitionError(
                f"Move #{move_id} is {original.status.value}; only committed moves can be undone"
            )
        if original.reverses_move_id is not None:
            raise StateTransitionError(f"Move #{move_id} is itself an undo")
        reclaim_root = self._is_empty_root(original.source_path)
        if os.path.lexists(original.source_path) and not reclaim_root:
            raise FilesystemIO(f"Cannot undo move #{move_id}: {original.source_path} is occupied")
        if not os.path.isdir(original.destination_path):
            raise FilesystemIO(f"Cannot undo move #{move_id}: {original.destination_path} is missing")

        album = self.store.get_album(original.album_id)
        tracks = self.store.get_tracks(original.album_id)

        def open_reverse(txn: StoreTransaction) -> int:
            return txn.open_move(original.album_id, original.destination_path, original.source_path,
                                 detail=f"undo of move #{move_id}", reverses_move_id=move_id)

        reverse_id = self.store.run_in_transaction(open_reverse, run_id=self.run_id)
        self.logger.info(f"Undoing move #{move_id}: {original.destination_path} -> {original.source_path}")

        try:
            self._set_verifying(reverse_id)
            if reclaim_root:
                # Published back in place by the rename below
                os.rmdir(original.source_path)
            detail = self._transfer(original.destination_path, original.source_path, tracks, reverse_id)
        except (OrganizerError, OSError) as e:
            # The album stays where the original move put it
            if reclaim_root:
                os.makedirs(original.source_path, exist_ok=True)
            self._fail(reverse_id, None, f"{type(e).__name__}: {e}")
            if isinstance(e, OSError):
                raise FilesystemIO(f"Undo of move #{move_id} failed: {e}", e) from e
            raise

        move = self._commit(reverse_id, original.album_id, original.source_path, tracks,
                            album['content_hash'], detail, reverses_move_id=move_id)

        if self.destination_root:
            prune_empty_ancestors(os.path.dirname(original.destination_path),
                                  self.destination_root, self.cleanup_max_levels)
        return move

    # ===== TRANSFER =====

    def _transfer(self, source: str, destination: str, tracks: List[TrackFile], move_id: int,
                  prune_root: Optional[str] = None) -> Optional[str]:
        """Copy, verify, publish, then delete the source; returns a cleanup note if any"""
        parent = os.path.dirname(destination)
        staging = staging_path(destination, move_id)
        os.makedirs(parent, exist_ok=True)

        if os.path.lexists(staging):
            shutil.rmtree(staging)
        os.makedirs(staging)

        try:
            for track in tracks:
                target = _file_path(staging, track.relative_path)
                os.makedirs(os.path.dirname(target), exist_ok=True)
                shutil.copy2(_file_path(source, track.relative_path), target)

            self._verify_copy(staging, tracks)

            if os.path.lexists(destination):
                raise FilesystemIO(f"Destination appeared during move: {destination}")
            os.rename(staging, destination)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            if prune_root:
                prune_empty_ancestors(parent, prune_root, self.cleanup_max_levels)
            raise

        return self._remove_source(source, tracks)

    def _verify_copy(self, directory: str, tracks: List[TrackFile]) -> None:
        """Compare every file in directory with the manifest"""
        for track in tracks:
            path = _file_path(directory, track.relative_path)
            if not os.path.isfile(path):
                raise VerificationMismatch(track.relative_path, "present", "missing")

            size = os.path.getsize(path)
            if size != track.size:
                raise VerificationMismatch(track.relative_path, f"{track.size} bytes", f"{size} bytes")

            checksum = file_checksum(path)
            if checksum != track.checksum:
                raise VerificationMismatch(track.relative_path, track.checksum, checksum)

    def _matches(self, directory: str, tracks: List[TrackFile]) -> bool:
        if not tracks or not os.path.isdir(directory):
            return False
        try:
            self._verify_copy(directory, tracks)
        except (VerificationMismatch, OSError) as e:
            self.logger.debug(f"{directory} does not match its manifest: {e}")
            return False
        return True

    def _is_empty_root(self, path: str) -> bool:
        """True for a configured root left empty by moving the album that was the root"""
        return (os.path.abspath(path) in self.protected_roots
                and os.path.isdir(path) and not os.listdir(path))

    def _remove_source(self, source: str, tracks: List[TrackFile]) -> Optional[str]:
        """Delete the moved files and any directories they leave empty"""
        problems = []
        for track in tracks:
            try:
                os.remove(_file_path(source, track.relative_path))
            except FileNotFoundError:
                continue
            except OSError as e:
                problems.append(f"{track.relative_path}: {e.strerror}")

        for current, _dirs, _files in os.walk(source, topdown=False):
            if os.path.abspath(current) in self.protected_roots:
                continue
            try:
                if not os.listdir(current):
                    os.rmdir(current)
            except OSError as e:
                problems.append(f"{current}: {e.strerror}")

        if not problems:
            return None
        # The verified copy is already published; leftovers are reported, not rolled back
        self.logger.warning(f"Source cleanup incomplete for {source}: {'; '.join(problems)}")
        return "source cleanup incomplete: " + "; ".join(problems)

    # ===== STATE =====

    def _set_verifying(self, move_id: int) -> None:
        self.store.run_in_transaction(
            lambda txn: txn.transition_move(move_id, MoveStatus.VERIFYING),
            run_id=self.run_id,
        )

    def _commit(self, move_id: int, album_id: int, destination: str, tracks: List[TrackFile],
                digest: str, detail: Optional[str] = None,
                reverses_move_id: Optional[int] = None) -> MoveRecord:
        summary = checksum_summary(tracks, digest)

        def commit(txn: StoreTransaction) -> MoveRecord:
            move = txn.transition_move(move_id, MoveStatus.COMMITTED,
                                       checksum_summary=summary, detail=detail)
            if reverses_move_id is not None:
                txn.transition_move(reverses_move_id, MoveStatus.ROLLED_BACK,
                                    detail=f"undone by move #{move_id}")
                txn.set_album_status(album_id, AlbumStatus.DISCOVERED, canonical_path=destination)
            else:
                txn.set_album_status(album_id, AlbumStatus.MOVED, canonical_path=destination)
            return move

        try:
            return self.store.run_in_transaction(commit, run_id=self.run_id)
        except StoreContention:
            self.logger.error(
                f"Move #{move_id} is published at {destination} but not recorded; "
                f"it will be resolved by recovery on the next run"
            )
            raise

    def _fail(self, move_id: int, album_id: Optional[int], detail: str,
              album_status: Optional[AlbumStatus] = None) -> None:
        """Record Failed -> RolledBack; the files were already restored"""
        self.logger.error(f"Move #{move_id} rolled back: {detail}")

        def rollback(txn: StoreTransaction) -> None:
            status = txn.get_move(move_id).status
            if status in ACTIVE_MOVE_STATUSES:
                txn.transition_move(move_id, MoveStatus.FAILED, detail=detail)
                status = MoveStatus.FAILED
            if status == MoveStatus.FAILED:
                txn.transition_move(move_id, MoveStatus.ROLLED_BACK)
            if album_id is not None and album_status is not None:
                txn.set_album_status(album_id, album_status)

        try:
            self.store.run_in_transaction(rollback, run_id=self.run_id)
        except StoreContention as e:
            # Left active; recovery resolves it on the next run
            self.logger.error(f"Could not record rollback of move #{move_id}: {e}")

    def _recover(self, move: MoveRecord) -> None:
        staging = staging_path(move.destination_path, move.id)
        if os.path.isdir(staging):
            shutil.rmtree(staging)
            self.logger.info(f"Removed leftover staging directory {staging}")

        tracks = self.store.get_tracks(move.album_id) if move.album_id else []
        album_status = None if move.reverses_move_id is not None else AlbumStatus.FAILED

        # Only a Verifying move can have published its copy
        if move.status == MoveStatus.VERIFYING and self._matches(move.destination_path, tracks):
            detail = "completed during recovery"
            note = self._remove_source(move.source_path, tracks) if os.path.isdir(move.source_path) else None
            if note:
                detail += f"; {note}"
            album = self.store.get_album(move.album_id)
            self._commit(move.id, move.album_id, move.destination_path, tracks,
                         album['content_hash'], detail, reverses_move_id=move.reverses_move_id)
            self.logger.info(f"Recovered move #{move.id} as Committed")
            return

        self._fail(move.id, move.album_id, "interrupted before verification completed", album_status)
