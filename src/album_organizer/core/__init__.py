"""Core components for Album Organizer."""

from .config_manager import ConfigManager, OrganizerConfig, get_config_manager
from .exceptions import (
    ClassificationAmbiguous,
    ConfigurationInvalid,
    DuplicateConflict,
    FilesystemIO,
    MetadataMissing,
    OrganizerError,
    StoreContention,
    VerificationMismatch,
)
from .state_store import StateStore, StateTransitionError
from .discovery import AlbumDiscovery, AlbumScanner
from .duplicate_detector import DuplicateDetector
from .relocation import RelocationExecutor
from .cleanup import CleanupPass, prune_empty_ancestors
from .worker_pool import ClaimSequencer, Turn, WorkerPool
from .organizer import AlbumOrganizer

__all__ = [
    "ConfigManager",
    "OrganizerConfig",
    "get_config_manager",
    "ClassificationAmbiguous",
    "ConfigurationInvalid",
    "DuplicateConflict",
    "FilesystemIO",
    "MetadataMissing",
    "OrganizerError",
    "StoreContention",
    "VerificationMismatch",
    "StateStore",
    "StateTransitionError",
    "AlbumDiscovery",
    "AlbumScanner",
    "DuplicateDetector",
    "RelocationExecutor",
    "CleanupPass",
    "prune_empty_ancestors",
    "ClaimSequencer",
    "Turn",
    "WorkerPool",
    "AlbumOrganizer",
]
