"""
Unit tests for the relocation executor: commit, rollback, recovery and undo.
"""

import json
import os
import shutil
from unittest.mock import patch

import pytest

from album_organizer.core.exceptions import FilesystemIO, VerificationMismatch
from album_organizer.core.models import AlbumStatus, MoveStatus
from album_organizer.core.relocation import RelocationExecutor, staging_path
from album_organizer.core.state_store import StateTransitionError
from conftest import build_album, make_album, snapshot


@pytest.fixture
def executor(store, library):
    return RelocationExecutor(store, run_id="run-1", destination_root=str(library['destination']))


@pytest.fixture
def album(library):
    source = make_album(library['source'], "Artist/Artist - Title (2001)",
                        extra={"cover.jpg": b"jpg", "Scans/back.png": b"png"})
    return build_album(source)


def claim(store, album, destination):
    """Record the album and open its Pending move"""
    def operation(txn):
        album_id = txn.upsert_album(album)
        move_id = txn.open_move(album_id, album.source_path, destination)
        txn.set_album_status(album_id, AlbumStatus.CLASSIFIED)
        return move_id

    return store.run_in_transaction(operation)


def target(library, *parts):
    return os.path.join(str(library['destination']), "Lossless", "Artist", *parts)


def event_statuses(store, move_id):
    return [event['status'] for event in store.move_events(move_id)]


class TestRelocate:
    """Test the copy/verify/publish/delete path."""

    def test_successful_move(self, executor, store, album, library):
        before = snapshot(album.source_path)
        destination = target(library, "Title (2001)")
        move_id = claim(store, album, destination)

        move = executor.relocate(album, move_id, destination)

        assert move.status == MoveStatus.COMMITTED
        assert snapshot(destination) == before
        assert not os.path.exists(album.source_path)
        assert event_statuses(store, move_id) == ["Pending", "Verifying", "Committed"]

        summary = json.loads(move.checksum_summary)
        assert summary['files'] == 4
        assert summary['digest'] == album.content_hash

        row = store.get_album(album.id)
        assert row['status'] == "Moved"
        assert row['canonical_path'] == destination
        assert album.status == AlbumStatus.MOVED

    def test_no_staging_left_behind(self, executor, store, album, library):
        destination = target(library, "Title (2001)")
        executor.relocate(album, claim(store, album, destination), destination)
        assert os.listdir(os.path.dirname(destination)) == ["Title (2001)"]

    def test_injected_verification_failure_rolls_back(self, executor, store, album, library):
        before = snapshot(library['source'])
        destination = target(library, "Title (2001)")
        move_id = claim(store, album, destination)

        with patch.object(executor, "_verify_copy",
                          side_effect=VerificationMismatch("01 - Track.flac", "a", "b")):
            with pytest.raises(VerificationMismatch):
                executor.relocate(album, move_id, destination)

        assert snapshot(library['source']) == before
        assert os.listdir(str(library['destination'])) == []
        assert store.get_move(move_id).status == MoveStatus.ROLLED_BACK
        assert event_statuses(store, move_id) == ["Pending", "Verifying", "Failed", "RolledBack"]
        assert store.get_album(album.id)['status'] == "Failed"

    def test_source_changed_after_scan_fails_verification(self, executor, store, album, library):
        destination = target(library, "Title (2001)")
        move_id = claim(store, album, destination)
        with open(os.path.join(album.source_path, "01 - Track.flac"), "ab") as f:
            f.write(b"late write")

        with pytest.raises(VerificationMismatch):
            executor.relocate(album, move_id, destination)

        assert os.path.isdir(album.source_path)
        assert not os.path.exists(destination)
        assert store.get_move(move_id).status == MoveStatus.ROLLED_BACK

    def test_copy_error_becomes_filesystem_io(self, executor, store, album, library):
        before = snapshot(library['source'])
        destination = target(library, "Title (2001)")
        move_id = claim(store, album, destination)

        with patch("album_organizer.core.relocation.shutil.copy2",
                   side_effect=OSError(28, "No space left on device")):
            with pytest.raises(FilesystemIO) as exc_info:
                executor.relocate(album, move_id, destination)

        assert isinstance(exc_info.value.original, OSError)
        assert snapshot(library['source']) == before
        assert not os.path.exists(destination)
        assert store.get_move(move_id).status == MoveStatus.ROLLED_BACK

    def test_destination_appearing_mid_move(self, executor, store, album, library):
        destination = target(library, "Title (2001)")
        move_id = claim(store, album, destination)
        original_verify = executor._verify_copy

        def verify_then_race(directory, tracks):
            original_verify(directory, tracks)
            os.makedirs(os.path.join(destination, "someone else"))

        with patch.object(executor, "_verify_copy", side_effect=verify_then_race):
            with pytest.raises(FilesystemIO):
                executor.relocate(album, move_id, destination)

        assert os.listdir(destination) == ["someone else"]
        assert os.path.isdir(album.source_path)
        assert store.get_move(move_id).status == MoveStatus.ROLLED_BACK

    def test_source_cleanup_problem_still_commits(self, executor, store, album, library):
        destination = target(library, "Title (2001)")
        move_id = claim(store, album, destination)

        with patch.object(executor, "_remove_source", return_value="source cleanup incomplete: busy"):
            move = executor.relocate(album, move_id, destination)

        assert move.status == MoveStatus.COMMITTED
        assert "source cleanup incomplete" in store.get_move(move_id).detail


class TestRecovery:
    """Test resolution of moves left active by an interrupted run."""

    def test_nothing_to_recover(self, executor):
        assert executor.recover_incomplete() == 0

    def test_pending_move_rolled_back(self, executor, store, album, library):
        before = snapshot(library['source'])
        destination = target(library, "Title (2001)")
        move_id = claim(store, album, destination)
        staging = staging_path(destination, move_id)
        os.makedirs(staging)
        with open(os.path.join(staging, "01 - Track.flac"), "wb") as f:
            f.write(b"partial")

        assert executor.recover_incomplete() == 1

        assert not os.path.exists(staging)
        assert snapshot(library['source']) == before
        assert store.get_move(move_id).status == MoveStatus.ROLLED_BACK
        assert store.get_album(album.id)['status'] == "Failed"

    def test_published_move_completed(self, executor, store, album, library):
        destination = target(library, "Title (2001)")
        move_id = claim(store, album, destination)
        store.run_in_transaction(lambda txn: txn.transition_move(move_id, MoveStatus.VERIFYING))
        # Crash after the rename, before the source was removed
        shutil.copytree(album.source_path, destination)

        assert executor.recover_incomplete() == 1

        move = store.get_move(move_id)
        assert move.status == MoveStatus.COMMITTED
        assert "completed during recovery" in move.detail
        assert not os.path.exists(album.source_path)
        assert store.get_album(album.id)['status'] == "Moved"

    def test_unverified_destination_rolled_back(self, executor, store, album, library):
        destination = target(library, "Title (2001)")
        move_id = claim(store, album, destination)
        store.run_in_transaction(lambda txn: txn.transition_move(move_id, MoveStatus.VERIFYING))

        assert executor.recover_incomplete() == 1

        assert store.get_move(move_id).status == MoveStatus.ROLLED_BACK
        assert os.path.isdir(album.source_path)

    def test_dry_run_moves_ignored(self, executor, store, album, library):
        store.run_in_transaction(lambda txn: txn.open_move(
            txn.upsert_album(album, dry_run=True), album.source_path,
            target(library, "Title (2001)"), dry_run=True
        ))
        assert executor.recover_incomplete() == 0


class TestUndo:
    """Test reversing committed moves."""

    @pytest.fixture
    def moved(self, executor, store, album, library):
        before = snapshot(album.source_path)
        destination = target(library, "Title (2001)")
        move = executor.relocate(album, claim(store, album, destination), destination)
        return move, before

    def test_undo_restores_source(self, executor, store, album, library, moved):
        move, before = moved

        reverse = executor.undo(move.id)

        assert reverse.status == MoveStatus.COMMITTED
        assert reverse.reverses_move_id == move.id
        assert snapshot(album.source_path) == before
        assert not os.path.exists(move.destination_path)
        # Emptied destination folders are pruned, the root stays
        assert os.listdir(str(library['destination'])) == []
        assert store.get_move(move.id).status == MoveStatus.ROLLED_BACK

        row = store.get_album(album.id)
        assert row['status'] == "Discovered"
        assert row['canonical_path'] == album.source_path

    def test_album_can_be_moved_again_after_undo(self, executor, store, album, library, moved):
        move, _ = moved
        executor.undo(move.id)

        destination = target(library, "Title (2001)")
        again = executor.relocate(album, claim(store, album, destination), destination)
        assert again.status == MoveStatus.COMMITTED
        assert executor.undo(again.id).status == MoveStatus.COMMITTED

    def test_undo_twice_rejected(self, executor, moved):
        move, _ = moved
        executor.undo(move.id)
        with pytest.raises(StateTransitionError):
            executor.undo(move.id)

    def test_undo_of_undo_rejected(self, executor, moved):
        move, _ = moved
        reverse = executor.undo(move.id)
        with pytest.raises(StateTransitionError):
            executor.undo(reverse.id)

    def test_undo_unknown_move(self, executor):
        with pytest.raises(StateTransitionError):
            executor.undo(404)

    def test_undo_requires_free_source(self, executor, album, moved):
        move, _ = moved
        os.makedirs(album.source_path)
        with pytest.raises(FilesystemIO):
            executor.undo(move.id)

    def test_undo_requires_destination(self, executor, moved):
        move, _ = moved
        shutil.rmtree(move.destination_path)
        with pytest.raises(FilesystemIO):
            executor.undo(move.id)

    def test_pending_move_cannot_be_undone(self, executor, store, album, library):
        move_id = claim(store, album, target(library, "Title (2001)"))
        with pytest.raises(StateTransitionError):
            executor.undo(move_id)


class TestAlbumAtSourceRoot:
    """Test an album whose directory is the configured source root."""

    @pytest.fixture
    def root_executor(self, store, library):
        return RelocationExecutor(store, run_id="run-1", destination_root=str(library['destination']),
                                  source_root=str(library['source']))

    @pytest.fixture
    def root_album(self, library):
        make_album(library['source'], ".", files=("01.flac", "02.flac"))
        return build_album(library['source'])

    def test_root_survives_the_move(self, root_executor, store, root_album, library):
        destination = target(library, "Title (2001)")

        move = root_executor.relocate(root_album, claim(store, root_album, destination), destination)

        assert move.status == MoveStatus.COMMITTED
        assert move.detail is None
        assert os.path.isdir(str(library['source']))
        assert os.listdir(str(library['source'])) == []
        assert sorted(os.listdir(destination)) == ["01.flac", "02.flac"]

    def test_undo_refills_the_empty_root(self, root_executor, store, root_album, library):
        before = snapshot(library['source'])
        destination = target(library, "Title (2001)")
        move = root_executor.relocate(root_album, claim(store, root_album, destination), destination)

        reverse = root_executor.undo(move.id)

        assert reverse.status == MoveStatus.COMMITTED
        assert snapshot(library['source']) == before
        assert not os.path.exists(destination)

    def test_non_empty_root_still_blocks_undo(self, root_executor, store, root_album, library):
        destination = target(library, "Title (2001)")
        move = root_executor.relocate(root_album, claim(store, root_album, destination), destination)
        (library['source'] / "new.flac").write_bytes(b"new")

        with pytest.raises(FilesystemIO):
            root_executor.undo(move.id)


def test_staging_path_is_hidden_sibling(tmp_path):
    destination = str(tmp_path / "Lossless" / "Artist" / "Title (2001)")
    assert staging_path(destination, 7) == str(tmp_path / "Lossless" / "Artist" / ".staging-Title (2001)-7")
