"""
Shared pytest fixtures for Album Organizer tests.

Provides temporary source/destination trees, a fake tag reader and a state
store in a temp directory.
"""

import os
import threading
from pathlib import Path
from typing import Dict, Optional

import pytest

from album_organizer.core.config_manager import (
    OrganizerConfig,
    OrganizationConfig,
    PathsConfig,
    ProcessingConfig,
)
from album_organizer.core.discovery import AlbumScanner
from album_organizer.core.models import Album, AlbumDecision, QualityTier
from album_organizer.core.state_store import StateStore


class FakeTagReader:
    """Tag reader returning the same bag for every file of an album directory"""

    def __init__(self, tags_by_album: Optional[Dict[str, Dict[str, str]]] = None):
        self.tags_by_album = {os.path.abspath(k): v for k, v in (tags_by_album or {}).items()}
        self.calls = 0
        self._lock = threading.Lock()

    def set_tags(self, album_dir, **tags) -> None:
        self.tags_by_album[os.path.abspath(str(album_dir))] = tags

    def read(self, file_path: str) -> Dict[str, str]:
        with self._lock:
            self.calls += 1
        return dict(self.tags_by_album.get(os.path.dirname(os.path.abspath(file_path)), {}))


def make_album(root, relative: str, files=("01 - Track.flac", "02 - Track.flac"),
               extra: Optional[Dict[str, bytes]] = None, seed: Optional[str] = None) -> Path:
    """Create an album directory whose file contents are unique to ``seed``"""
    album_dir = Path(root) / relative
    album_dir.mkdir(parents=True, exist_ok=True)
    seed = seed if seed is not None else relative
    for name in files:
        (album_dir / name).write_bytes(f"{seed}/{name}".encode('utf-8') * 64)
    for name, content in (extra or {}).items():
        path = album_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
    return album_dir


def snapshot(root) -> Dict[str, bytes]:
    """Relative path -> content for every file under root"""
    root = Path(root)
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob('*')) if path.is_file()
    }


def make_config(source, destination, state_db, workers: int = 1, dry_run: bool = False,
                mode: str = "artist", **classification) -> OrganizerConfig:
    config = OrganizerConfig(
        paths=PathsConfig(source_root=str(source), destination_root=str(destination),
                          state_db=str(state_db)),
        processing=ProcessingConfig(max_workers=workers),
        organization=OrganizationConfig(mode=mode),
        dry_run=dry_run,
    )
    for key, value in classification.items():
        setattr(config.classification, key, value)
    return config


def build_album(album_dir, artist="Artist", title="Title", year=2001,
                quality=QualityTier.LOSSLESS, **decision_fields) -> Album:
    """Album with real scanned tracks and a hand-made decision"""
    scanner = AlbumScanner()
    tracks = scanner.scan(str(album_dir))
    decision = AlbumDecision(
        artist=artist, title=title, year=year, quality=quality,
        catalog_number=decision_fields.pop('catalog_number', None),
        label=decision_fields.pop('label', None),
        confidence=decision_fields.pop('confidence', 60),
        **decision_fields
    )
    return Album(source_path=str(album_dir), decision=decision, tracks=tracks,
                 content_hash=scanner.content_hash(tracks))


@pytest.fixture
def library(tmp_path):
    """Empty source and destination roots plus a state database path"""
    source = tmp_path / "incoming"
    destination = tmp_path / "library"
    source.mkdir()
    destination.mkdir()
    return {
        'base': tmp_path,
        'source': source,
        'destination': destination,
        'db': tmp_path / "state" / "organizer.db",
    }


@pytest.fixture
def store(library):
    return StateStore(str(library['db']))


@pytest.fixture
def tag_reader():
    return FakeTagReader()
