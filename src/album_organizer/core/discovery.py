"""
Album discovery and album scanning.

AlbumDiscovery yields album directory paths and nothing else; diagnostics go
to the module logger. AlbumScanner lists every file of one album with its
size and checksum.
"""

import hashlib
import logging
import os
from pathlib import Path
from typing import Generator, Iterable, List, Optional, Tuple

from .constants import AUDIO_EXTENSIONS, STAGING_PREFIX
from .models import TrackFile
from ..utils.checksums import combined_checksum, file_checksum

logger = logging.getLogger(__name__)

# Folders that never hold albums
IGNORED_DIRECTORIES = frozenset({'@eaDir', '__MACOSX', '.Trash', '.Trashes', 'lost+found'})


def audio_extension(file_name: str) -> Optional[str]:
    """Lower-case extension if the file is a recognized audio format"""
    ext = os.path.splitext(file_name)[1][1:].lower()
    return ext if ext in AUDIO_EXTENSIONS else None


class AlbumDiscovery:
    """
    Stream-based album directory discovery.

    A directory is an album if it directly contains at least one audio file.
    The walk is sorted, so the sequence is deterministic and can be resumed
    with ``resume_after``. Album directories are not searched for nested
    albums; their sub-folders travel with them.
    """

    def __init__(self, excluded_paths: Iterable[str] = ()):
        self.logger = logging.getLogger(__name__)
        self.excluded_paths = [os.path.abspath(path) for path in excluded_paths]

    def discover(self, root: str, resume_after: Optional[str] = None) -> Generator[str, None, None]:
        """
        Yield album directories under root in sorted walk order.

        Args:
            root: Collection root; it is an album itself if it holds audio files
            resume_after: Skip albums up to and including this path

        Yields:
            Absolute album directory paths
        """
        root = os.path.abspath(root)
        if not os.path.isdir(root):
            self.logger.warning(f"Source root not found: {root}")
            return

        self.logger.info(f"Discovering albums under {root}")
        found = 0
        skipping = resume_after is not None
        resume_after = os.path.abspath(resume_after) if resume_after else None

        for current, dirs, files in os.walk(root, onerror=self._log_walk_error):
            dirs[:] = sorted(
                d for d in dirs
                if not self._is_ignored(d) and os.path.join(current, d) not in self.excluded_paths
            )

            if not any(audio_extension(f) for f in files):
                continue

            # Album found; its sub-folders belong to it
            dirs.clear()

            if skipping:
                if current == resume_after:
                    skipping = False
                continue

            found += 1
            yield current

        self.logger.info(f"Discovered {found} album directories")

    def _is_ignored(self, name: str) -> bool:
        return name in IGNORED_DIRECTORIES or name.startswith('.')

    def _log_walk_error(self, error: OSError) -> None:
        self.logger.warning(f"Cannot read directory {error.filename}: {error.strerror}")


def directory_fingerprint(album_dir: str) -> Tuple[float, str]:
    """
    Modification time and listing digest of an album directory.

    The digest covers relative path, size and mtime of every file below the
    directory, so edits, renames, additions and removals all change it.

    Raises:
        OSError: when the directory cannot be read
    """
    entries = []
    for current, dirs, files in os.walk(album_dir):
        dirs[:] = sorted(d for d in dirs if not d.startswith(STAGING_PREFIX))
        for name in files:
            path = os.path.join(current, name)
            stat = os.stat(path)
            relative = Path(os.path.relpath(path, album_dir)).as_posix()
            entries.append(f"{stat.st_mtime_ns} {stat.st_size} {relative}")
    listing = '\n'.join(sorted(entries)).encode('utf-8', 'surrogateescape')
    digest = hashlib.sha256(listing).hexdigest()
    return os.stat(album_dir).st_mtime, digest


class AlbumScanner:
    """List the files of one album directory with sizes and checksums"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def scan(self, album_dir: str) -> List[TrackFile]:
        """
        Every regular file below album_dir, audio and ancillary, sorted.

        Raises:
            OSError: when a file cannot be read
        """
        tracks = []
        for current, dirs, files in os.walk(album_dir):
            dirs[:] = sorted(d for d in dirs if not d.startswith(STAGING_PREFIX))
            for name in sorted(files):
                path = os.path.join(current, name)
                if os.path.islink(path) or not os.path.isfile(path):
                    continue
                relative = Path(os.path.relpath(path, album_dir)).as_posix()
                ext = os.path.splitext(name)[1][1:].lower()
                is_audio = current == album_dir and audio_extension(name) is not None
                tracks.append(TrackFile(
                    relative_path=relative,
                    format=ext,
                    size=os.path.getsize(path),
                    checksum=file_checksum(path),
                    is_audio=is_audio,
                ))

        tracks.sort(key=lambda track: track.relative_path)
        self.logger.debug(f"Scanned {len(tracks)} files in {album_dir}")
        return tracks

    @staticmethod
    def content_hash(tracks: List[TrackFile]) -> str:
        """Digest of the audio content, independent of names and location"""
        audio = [track.checksum for track in tracks if track.is_audio]
        return combined_checksum(audio or [track.checksum for track in tracks])
