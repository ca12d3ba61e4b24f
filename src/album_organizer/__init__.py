"""
Album Organizer

Organizes a messy collection of album directories into a canonical,
quality-tiered layout without ever leaving the source half-moved.

Features:
- Metadata-driven classification (tags, directory heuristics, enrichment)
- Artist alias merging and catalog number extraction
- Duplicate detection with an atomic check-and-claim
- Copy/verify/commit relocation with rollback, crash recovery and undo
- Parallel worker pool over a shared SQLite state store
"""

__version__ = "1.0.0"
__license__ = "MIT"

# Export main classes and functions
from .core.config_manager import ConfigManager, OrganizerConfig, get_config_manager
from .core.models import AlbumDecision, AlbumResult, AlbumStatus, MoveStatus, QualityTier, RunSummary
from .core.organizer import AlbumOrganizer
from .core.relocation import RelocationExecutor
from .core.state_store import StateStore
from .metadata.alias_resolver import AliasResolver
from .metadata.classifier import AlbumClassifier

__all__ = [
    "__version__",
    "__license__",
    "ConfigManager",
    "OrganizerConfig",
    "get_config_manager",
    "AlbumDecision",
    "AlbumResult",
    "AlbumStatus",
    "MoveStatus",
    "QualityTier",
    "RunSummary",
    "AlbumOrganizer",
    "RelocationExecutor",
    "StateStore",
    "AliasResolver",
    "AlbumClassifier",
]
