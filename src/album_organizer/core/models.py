"""
Domain records shared by the classifier, store, executor and pipeline.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


TagBag = Dict[str, Any]


class QualityTier(Enum):
    """Quality tier derived from an album's audio formats"""
    LOSSLESS = "Lossless"
    LOSSY = "Lossy"
    MIXED = "Mixed"
    UNKNOWN = "Unknown"


class AlbumStatus(Enum):
    """Album lifecycle states"""
    DISCOVERED = "Discovered"
    CLASSIFIED = "Classified"
    DUPLICATE_FLAGGED = "DuplicateFlagged"
    MOVED = "Moved"
    FAILED = "Failed"
    MANUAL_REVIEW = "ManualReview"


class MoveStatus(Enum):
    """Relocation states recorded in move_history"""
    PENDING = "Pending"
    VERIFYING = "Verifying"
    COMMITTED = "Committed"
    FAILED = "Failed"
    ROLLED_BACK = "RolledBack"


ACTIVE_MOVE_STATUSES = (MoveStatus.PENDING, MoveStatus.VERIFYING)

ALLOWED_MOVE_TRANSITIONS = {
    MoveStatus.PENDING: (MoveStatus.VERIFYING, MoveStatus.FAILED),
    MoveStatus.VERIFYING: (MoveStatus.COMMITTED, MoveStatus.FAILED),
    MoveStatus.FAILED: (MoveStatus.ROLLED_BACK,),
    # Committed moves can only be reverted through undo
    MoveStatus.COMMITTED: (MoveStatus.ROLLED_BACK,),
    MoveStatus.ROLLED_BACK: (),
}


class DuplicateOutcome(Enum):
    """Result of checking an album against recorded albums"""
    NO_MATCH = "NoMatch"
    EXACT_DUPLICATE = "ExactDuplicate"
    VARIANT_DUPLICATE = "VariantDuplicate"


class OrganizationMode(Enum):
    """Destination layout rules"""
    ARTIST = "artist"
    ELECTRONIC = "electronic"


@dataclass
class TrackFile:
    """One file inside an album directory (audio or ancillary)"""
    relative_path: str
    format: str
    size: int
    checksum: str
    is_audio: bool = True
    tags: Optional[TagBag] = None


@dataclass
class CatalogDecision:
    """Catalog number and label with the source they came from"""
    catalog_number: Optional[str] = None
    label: Optional[str] = None
    source: str = "none"
    confidence: float = 0.0


@dataclass
class EnrichmentResult:
    """Positive answer from the enrichment collaborator"""
    label: Optional[str]
    catalog_number: Optional[str]
    confidence: float
    release_id: Optional[str] = None
    year: Optional[int] = None


@dataclass
class PartialDecision:
    """Fields recovered from a directory name by one heuristic"""
    pattern: str
    artist: Optional[str] = None
    title: Optional[str] = None
    year: Optional[int] = None
    catalog_number: Optional[str] = None
    label: Optional[str] = None
    is_compilation: bool = False


@dataclass
class AlbumDecision:
    """Structured classification of one album directory"""
    artist: str
    title: str
    year: Optional[int]
    quality: QualityTier
    catalog_number: Optional[str]
    label: Optional[str]
    confidence: int
    status: AlbumStatus = AlbumStatus.CLASSIFIED
    artist_candidates: List[str] = field(default_factory=list)
    is_compilation: bool = False
    disc_number: Optional[int] = None
    catalog: Optional[CatalogDecision] = None
    reasons: List[str] = field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        return self.status == AlbumStatus.MANUAL_REVIEW


@dataclass
class Album:
    """An album directory travelling through the pipeline"""
    source_path: str
    decision: AlbumDecision
    tracks: List[TrackFile]
    content_hash: str
    artist_key: str = ""
    title_key: str = ""
    status: AlbumStatus = AlbumStatus.DISCOVERED
    id: Optional[int] = None
    canonical_path: Optional[str] = None

    @property
    def audio_tracks(self) -> List[TrackFile]:
        return [track for track in self.tracks if track.is_audio]


@dataclass
class MoveRecord:
    """Audit entry for one relocation attempt"""
    id: int
    album_id: Optional[int]
    source_path: str
    destination_path: Optional[str]
    status: MoveStatus
    checksum_summary: Optional[str]
    created_at: float
    updated_at: float = 0.0
    detail: Optional[str] = None
    dry_run: bool = False
    run_id: Optional[str] = None
    reverses_move_id: Optional[int] = None
    # Album outcome for rows that record a decision rather than a relocation
    outcome: Optional[str] = None

    @property
    def is_relocation(self) -> bool:
        return self.outcome is None


@dataclass
class DuplicateCheck:
    """Outcome of the atomic check-and-claim step"""
    outcome: DuplicateOutcome
    album_id: int
    existing_album_id: Optional[int] = None
    move_id: Optional[int] = None
    destination_path: Optional[str] = None


@dataclass
class AlbumResult:
    """Per-album outcome reported to the caller"""
    source_path: str
    status: AlbumStatus
    destination_path: Optional[str] = None
    content_hash: Optional[str] = None
    move_id: Optional[int] = None
    duplicate: Optional[DuplicateOutcome] = None
    confidence: Optional[int] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == AlbumStatus.MOVED


@dataclass
class RunSummary:
    """Aggregate result of one organizer run"""
    run_id: str
    dry_run: bool
    results: List[AlbumResult] = field(default_factory=list)
    removed_directories: List[str] = field(default_factory=list)
    recovered_moves: int = 0
    skipped_directories: int = 0
    stopped_early: bool = False
    duration: float = 0.0

    def count(self, status: AlbumStatus) -> int:
        return sum(1 for result in self.results if result.status == status)

    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in AlbumStatus}
        for result in self.results:
            counts[result.status.value] += 1
        return counts

    def placements(self) -> List[Tuple[str, str]]:
        """(destination path, content hash) for every relocated album"""
        return sorted(
            (result.destination_path, result.content_hash)
            for result in self.results
            if result.destination_path and result.status == AlbumStatus.MOVED
        )
