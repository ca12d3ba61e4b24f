"""
Unit tests for the duplicate detector's check-and-claim.
"""

import os
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from album_organizer.core.duplicate_detector import DuplicateDetector, identity_keys
from album_organizer.core.layout import PathFormatter
from album_organizer.core.models import AlbumStatus, DuplicateOutcome, MoveStatus
from album_organizer.metadata.alias_resolver import AliasResolver
from conftest import build_album, make_album


@pytest.fixture
def destination(library):
    return str(library['destination'])


@pytest.fixture
def detector(store, destination):
    return DuplicateDetector(store, PathFormatter(), AliasResolver(), destination)


def album_at(library, name, seed=None, **decision):
    return build_album(make_album(library['source'], name, seed=seed), **decision)


class TestIdentityKeys:

    def test_keys_are_normalized(self, library):
        album = album_at(library, "A", artist="  Sébastien LÉGER ", title="Hypnose!")
        assert identity_keys(album, AliasResolver()) == ("sebastien leger", "hypnose")

    def test_disc_number_in_title_key(self, library):
        resolver = AliasResolver([["Atom Heart", "Atom™"]])
        album = album_at(library, "A", artist="Atom™", title="Mono Tone", disc_number=2)
        assert identity_keys(album, resolver) == ("atom heart", "mono tone#disc2")


class TestCheckAndClaim:
    """Test outcomes and destination selection."""

    def test_first_album_claims_destination(self, detector, store, library, destination):
        album = album_at(library, "Artist - Title", artist="Artist", title="Title", year=2001)

        check = detector.check_and_claim(album)

        assert check.outcome == DuplicateOutcome.NO_MATCH
        assert check.destination_path == os.path.join(destination, "Lossless", "Artist", "Title (2001)")
        assert store.get_move(check.move_id).status == MoveStatus.PENDING
        assert store.get_album(check.album_id)['status'] == "Classified"
        assert album.status == AlbumStatus.CLASSIFIED
        assert album.id == check.album_id

    def test_exact_duplicate(self, detector, store, library):
        first = detector.check_and_claim(album_at(library, "One", seed="same"))
        second_album = album_at(library, "Two", seed="same")

        second = detector.check_and_claim(second_album)

        assert second.outcome == DuplicateOutcome.EXACT_DUPLICATE
        assert second.existing_album_id == first.album_id
        assert second.move_id is None
        assert store.get_album(second.album_id)['status'] == "DuplicateFlagged"
        outcome = store.move_history(limit=1)[0]
        assert outcome.status == MoveStatus.FAILED
        assert outcome.source_path == second_album.source_path
        assert outcome.detail == f"ExactDuplicate of album #{first.album_id}"
        assert outcome.outcome == "DuplicateFlagged"

    def test_variant_duplicate(self, detector, library):
        first = detector.check_and_claim(album_at(library, "One", artist="Artist", title="Title"))
        second = detector.check_and_claim(album_at(library, "Two", artist="ARTIST", title="title",
                                                   year=1999))

        assert second.outcome == DuplicateOutcome.VARIANT_DUPLICATE
        assert second.existing_album_id == first.album_id

    def test_exact_match_wins_over_variant(self, detector, library):
        detector.check_and_claim(album_at(library, "One", artist="Artist", title="Title"))
        exact = detector.check_and_claim(album_at(library, "Two", seed="x", artist="Other", title="Other"))
        check = detector.check_and_claim(album_at(library, "Three", seed="x", artist="Artist", title="Title"))
        assert check.outcome == DuplicateOutcome.EXACT_DUPLICATE
        assert check.existing_album_id == exact.album_id

    def test_failed_album_can_claim_again(self, detector, store, library):
        album = album_at(library, "One")
        check = detector.check_and_claim(album)

        def roll_back(txn):
            txn.transition_move(check.move_id, MoveStatus.FAILED)
            txn.transition_move(check.move_id, MoveStatus.ROLLED_BACK)
            txn.set_album_status(check.album_id, AlbumStatus.FAILED)

        store.run_in_transaction(roll_back)

        retry = detector.check_and_claim(album_at(library, "One"))

        assert retry.outcome == DuplicateOutcome.NO_MATCH
        assert retry.album_id == check.album_id
        assert retry.move_id != check.move_id


class TestArtistFolders:
    """Cosmetic artist variants share one folder."""

    def test_first_spelling_reused(self, detector, library, destination):
        detector.check_and_claim(album_at(library, "One", artist="Atom Heart", title="Mono"))
        check = detector.check_and_claim(album_at(library, "Two", artist="atom heart", title="Stereo"))
        assert check.outcome == DuplicateOutcome.NO_MATCH
        assert check.destination_path == os.path.join(destination, "Lossless", "Atom Heart", "Stereo (2001)")

    def test_existing_folder_on_disk_reused(self, detector, library, destination):
        os.makedirs(os.path.join(destination, "Lossless", "atom heart"))
        check = detector.check_and_claim(album_at(library, "One", artist="Atom Heart", title="Mono"))
        assert check.destination_path == os.path.join(destination, "Lossless", "atom heart", "Mono (2001)")

    def test_aliases_share_folder(self, store, library, destination):
        resolver = AliasResolver([["Atom Heart", "Atom™"]])
        detector = DuplicateDetector(store, PathFormatter(), resolver, destination)
        first = detector.check_and_claim(album_at(library, "One", artist="Atom Heart", title="A"))
        second = detector.check_and_claim(album_at(library, "Two", artist="Atom™", title="B"))
        assert os.path.dirname(first.destination_path) == os.path.dirname(second.destination_path)


class TestCollisions:

    def test_existing_directory_gets_suffix(self, detector, library, destination):
        taken = os.path.join(destination, "Lossless", "Artist", "Title (2001)")
        os.makedirs(taken)
        os.makedirs(taken + " (2)")

        check = detector.check_and_claim(album_at(library, "One", artist="Artist", title="Title"))

        assert check.destination_path == taken + " (3)"

    def test_claimed_destination_gets_suffix(self, detector, store, library):
        check = detector.check_and_claim(album_at(library, "One"))
        # Nothing on disk yet; the Pending move alone reserves the path
        assert not os.path.exists(check.destination_path)
        alternative = store.run_in_transaction(
            lambda txn: detector._avoid_collision(txn, check.destination_path)
        )
        assert alternative == check.destination_path + " (2)"


class TestDryRunIsolation:

    def test_dry_run_claims_are_scoped_to_their_run(self, store, library, destination):
        dry = DuplicateDetector(store, PathFormatter(), AliasResolver(), destination,
                                run_id="dry-1", dry_run=True)
        real = DuplicateDetector(store, PathFormatter(), AliasResolver(), destination, run_id="real-1")

        planned = dry.check_and_claim(album_at(library, "One", seed="same"))
        assert planned.outcome == DuplicateOutcome.NO_MATCH
        assert store.get_move(planned.move_id).dry_run is True

        # Inside the same dry run the plan counts
        assert dry.check_and_claim(album_at(library, "Two", seed="same")).outcome == \
            DuplicateOutcome.EXACT_DUPLICATE

        # A real run ignores it
        actual = real.check_and_claim(album_at(library, "Three", seed="same"))
        assert actual.outcome == DuplicateOutcome.NO_MATCH
        assert actual.destination_path == planned.destination_path


class TestConcurrentClaims:
    """Two workers holding the same album must not both claim it."""

    @pytest.mark.parametrize("same_content", [True, False])
    def test_single_winner(self, detector, library, same_content):
        albums = [
            album_at(library, f"Copy {i}", seed="same" if same_content else f"seed-{i}",
                     artist="Artist", title="Title")
            for i in range(8)
        ]
        barrier = threading.Barrier(len(albums))

        def claim(album):
            barrier.wait()
            return detector.check_and_claim(album)

        with ThreadPoolExecutor(max_workers=len(albums)) as executor:
            checks = list(executor.map(claim, albums))

        outcomes = [check.outcome for check in checks]
        expected = (DuplicateOutcome.EXACT_DUPLICATE if same_content
                    else DuplicateOutcome.VARIANT_DUPLICATE)
        assert outcomes.count(DuplicateOutcome.NO_MATCH) == 1
        assert outcomes.count(expected) == len(albums) - 1
        assert len({check.move_id for check in checks if check.move_id}) == 1
