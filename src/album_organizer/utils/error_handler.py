"""
User-Friendly Error Handling

Converts technical exceptions into understandable error messages
with helpful suggestions for users.
"""

import logging
import sqlite3
import traceback
from enum import Enum
from typing import Any, Dict, List, Optional

from ..core.exceptions import (
    ConfigurationInvalid,
    DuplicateConflict,
    FilesystemIO,
    StoreContention,
    VerificationMismatch,
)
from ..core.state_store import StateTransitionError


class ErrorCategory(Enum):
    """Categories of errors"""
    FILE_ACCESS = "file_access"
    CONFIGURATION = "configuration"
    STORAGE = "storage"
    INTEGRITY = "integrity"
    USER_INPUT = "user_input"
    SYSTEM = "system"


class UserFriendlyError:
    """User-friendly error representation"""

    def __init__(self,
                 category: ErrorCategory,
                 title: str,
                 message: str,
                 suggestions: Optional[List[str]] = None,
                 technical_details: Optional[str] = None,
                 error_code: Optional[str] = None):
        self.category = category
        self.title = title
        self.message = message
        self.suggestions = suggestions or []
        self.technical_details = technical_details
        self.error_code = error_code


ERROR_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "config_invalid": {
        "category": ErrorCategory.CONFIGURATION,
        "title": "Invalid configuration",
        "message": "The configuration has problems: {issues}",
        "suggestions": [
            "Fix the listed settings in your config file or command line",
            "Run without --config to start from the defaults",
        ],
    },
    "file_not_found": {
        "category": ErrorCategory.FILE_ACCESS,
        "title": "Path not found",
        "message": "'{path}' does not exist.",
        "suggestions": [
            "Check the path for typos",
            "Use an absolute path",
        ],
    },
    "permission_denied": {
        "category": ErrorCategory.FILE_ACCESS,
        "title": "Permission denied",
        "message": "No permission to access '{path}'.",
        "suggestions": [
            "Check the permissions of the source and destination folders",
            "Make sure no other program holds the files open",
        ],
    },
    "disk_full": {
        "category": ErrorCategory.FILE_ACCESS,
        "title": "Destination is full",
        "message": "There is not enough free space at the destination.",
        "suggestions": [
            "Free some space or choose another destination",
            "Albums already moved stay committed; re-run to continue",
        ],
    },
    "filesystem_error": {
        "category": ErrorCategory.FILE_ACCESS,
        "title": "Move failed",
        "message": "{detail}",
        "suggestions": [
            "The source was left untouched; re-run once the cause is fixed",
        ],
    },
    "verification_failed": {
        "category": ErrorCategory.INTEGRITY,
        "title": "Copy verification failed",
        "message": "{detail}",
        "suggestions": [
            "Check the destination disk for errors",
            "The source was left untouched",
        ],
    },
    "store_busy": {
        "category": ErrorCategory.STORAGE,
        "title": "State database busy",
        "message": "The state database stayed locked: {detail}",
        "suggestions": [
            "Make sure no other run is writing to the same database",
            "Raise store.max_attempts or store.max_delay",
        ],
    },
    "database_error": {
        "category": ErrorCategory.STORAGE,
        "title": "Database error",
        "message": "The state database could not be used: {detail}",
        "suggestions": [
            "Check free space and permissions for the database file",
            "Point --db at a new file to start a fresh history",
        ],
    },
    "invalid_operation": {
        "category": ErrorCategory.USER_INPUT,
        "title": "Operation not possible",
        "message": "{detail}",
        "suggestions": [
            "Use 'history' to list moves and their status",
        ],
    },
    "system_error": {
        "category": ErrorCategory.SYSTEM,
        "title": "Unexpected error",
        "message": "An unexpected error occurred: {detail}",
        "suggestions": [
            "Run again with --log-level DEBUG and check the log",
        ],
    },
}


class ErrorHandler:
    """
    Converts technical exceptions into user-friendly error messages.

    Features:
    - Categorizes errors by type
    - Provides helpful suggestions
    - Hides technical details unless requested
    """

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.logger = logging.getLogger(__name__)
        self.error_templates = ERROR_TEMPLATES

    def handle_exception(self, exception: Exception,
                         context: Optional[Dict[str, Any]] = None) -> UserFriendlyError:
        """
        Convert exception to user-friendly error.

        Args:
            exception: The original exception
            context: Additional context information used in the message

        Returns:
            UserFriendlyError object
        """
        context = dict(context or {})
        context.setdefault("detail", str(exception))
        context.setdefault("path", getattr(exception, "filename", None) or "")
        if isinstance(exception, ConfigurationInvalid):
            context.setdefault("issues", "; ".join(exception.issues))

        error_key = self._classify_exception(exception)
        error_info = self.error_templates.get(error_key, self.error_templates["system_error"])

        try:
            formatted_message = error_info["message"].format(**context)
        except (KeyError, ValueError):
            formatted_message = error_info["message"]

        technical_details = None
        if self.verbose:
            technical_details = f"{type(exception).__name__}: {exception}\n{traceback.format_exc()}"

        return UserFriendlyError(
            category=error_info["category"],
            title=error_info["title"],
            message=formatted_message,
            suggestions=list(error_info["suggestions"]),
            technical_details=technical_details,
            error_code=error_key,
        )

    def _classify_exception(self, exception: Exception) -> str:
        """Classify exception to determine error template"""
        if isinstance(exception, ConfigurationInvalid):
            return "config_invalid"
        if isinstance(exception, VerificationMismatch):
            return "verification_failed"
        if isinstance(exception, StoreContention):
            return "store_busy"
        if isinstance(exception, (StateTransitionError, DuplicateConflict)):
            return "invalid_operation"
        if isinstance(exception, FilesystemIO):
            exception = exception.original or exception
            if not isinstance(exception, OSError):
                return "filesystem_error"

        if isinstance(exception, FileNotFoundError):
            return "file_not_found"
        if isinstance(exception, PermissionError):
            return "permission_denied"
        if isinstance(exception, OSError):
            if "No space left on device" in str(exception):
                return "disk_full"
            return "filesystem_error"
        if isinstance(exception, sqlite3.Error):
            return "database_error"
        return "system_error"

    def format_error_message(self, error: UserFriendlyError, show_suggestions: bool = True) -> str:
        """Format error for display"""
        lines = [f"❌ {error.title}", f"   {error.message}", ""]

        if show_suggestions and error.suggestions:
            lines.append("💡 Suggestions:")
            for suggestion in error.suggestions:
                lines.append(f"   • {suggestion}")
            lines.append("")

        if self.verbose and error.technical_details:
            lines.append("🔧 Technical details:")
            for line in error.technical_details.split('\n'):
                if line.strip():
                    lines.append(f"   {line}")
            lines.append("")

        if error.error_code:
            lines.append(f"🔍 Error code: {error.error_code}")

        return '\n'.join(lines)

    def log_error(self, error: UserFriendlyError) -> None:
        """Log error with appropriate level"""
        if error.category in (ErrorCategory.USER_INPUT, ErrorCategory.CONFIGURATION):
            self.logger.warning(f"User Error: {error.title} - {error.message}")
        else:
            self.logger.error(f"System Error: {error.title} - {error.message}")

        if self.verbose and error.technical_details:
            self.logger.debug(f"Technical details: {error.technical_details}")


def handle_user_error(exception: Exception, context: Optional[Dict[str, Any]] = None,
                      verbose: bool = False) -> str:
    """Convenience function to handle and format error"""
    handler = ErrorHandler(verbose=verbose)
    error = handler.handle_exception(exception, context)
    handler.log_error(error)
    return handler.format_error_message(error)
