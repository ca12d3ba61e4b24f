"""
Exception hierarchy for Album Organizer.

Per-album errors are caught by the pipeline and recorded in the audit trail;
only ConfigurationInvalid and store initialization failures end a run.
"""

from typing import List, Optional


class OrganizerError(Exception):
    """Base exception for all organizer errors"""
    pass


class MetadataMissing(OrganizerError):
    """Tags could not be read; classification falls back to heuristics"""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        message = f"No usable metadata for {path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ClassificationAmbiguous(OrganizerError):
    """Confidence below the manual review threshold"""

    def __init__(self, path: str, confidence: int, threshold: int):
        self.path = path
        self.confidence = confidence
        self.threshold = threshold
        super().__init__(
            f"Classification of {path} is ambiguous "
            f"(confidence {confidence} < threshold {threshold})"
        )


class DuplicateConflict(OrganizerError):
    """Album matches a previously recorded album"""

    def __init__(self, path: str, outcome: str, existing_album_id: Optional[int] = None):
        self.path = path
        self.outcome = outcome
        self.existing_album_id = existing_album_id
        super().__init__(f"{outcome} for {path} (existing album #{existing_album_id})")


class VerificationMismatch(OrganizerError):
    """Copied file does not match its source"""

    def __init__(self, relative_path: str, expected: str, actual: str):
        self.relative_path = relative_path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Verification failed for {relative_path}: expected {expected}, got {actual}"
        )


class StoreContention(OrganizerError):
    """State store stayed locked after all retry attempts"""
    pass


class FilesystemIO(OrganizerError):
    """Permission, space or other OS level failure during a move"""

    def __init__(self, message: str, original: Optional[OSError] = None):
        self.original = original
        super().__init__(message)


class ConfigurationInvalid(OrganizerError):
    """Configuration failed validation; fatal at startup"""

    def __init__(self, issues: List[str]):
        self.issues = list(issues)
        super().__init__("Invalid configuration: " + "; ".join(self.issues))
