"""
Empty directory cleanup after albums have left the source tree.
"""

import logging
import os
from typing import Iterable, List

from .constants import DEFAULT_CLEANUP_MAX_LEVELS

logger = logging.getLogger(__name__)


def _is_within(path: str, root: str) -> bool:
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        return False


def prune_empty_ancestors(start: str, stop_root: str,
                          max_levels: int = DEFAULT_CLEANUP_MAX_LEVELS) -> List[str]:
    """
    Remove start and its parents while they are empty.

    Never removes stop_root or anything outside it, and stops after
    max_levels directories or at the first directory that still has entries.

    Returns:
        Removed directories, deepest first
    """
    removed = []
    current = os.path.abspath(start)
    stop_root = os.path.abspath(stop_root)

    while len(removed) < max_levels:
        if current == stop_root or not _is_within(current, stop_root):
            break
        if not os.path.isdir(current) or os.path.islink(current):
            break
        try:
            if os.listdir(current):
                break
            os.rmdir(current)
        except OSError as e:
            logger.warning(f"Could not remove empty directory {current}: {e}")
            break
        removed.append(current)
        current = os.path.dirname(current)

    return removed


class CleanupPass:
    """
    Remove directories emptied by a run.

    Runs single-threaded after the worker pool has drained so it never races
    an in-flight move.
    """

    def __init__(self, root: str, max_levels: int = DEFAULT_CLEANUP_MAX_LEVELS):
        self.logger = logging.getLogger(__name__)
        self.root = os.path.abspath(root)
        self.max_levels = max_levels

    def run(self, moved_sources: Iterable[str]) -> List[str]:
        """
        Walk upward from the parent of every moved album.

        Args:
            moved_sources: Original paths of albums that reached Committed

        Returns:
            Every removed directory
        """
        removed = []
        parents = {os.path.dirname(os.path.abspath(path)) for path in moved_sources}

        # Deepest first so nested parents are empty by the time they are visited
        for parent in sorted(parents, key=lambda p: (-p.count(os.sep), p)):
            removed.extend(prune_empty_ancestors(parent, self.root, self.max_levels))

        if removed:
            self.logger.info(f"Cleanup removed {len(removed)} empty directories")
        return removed
