"""
Album Organizer orchestrator.

Wires the components together from an OrganizerConfig and runs:
crash recovery -> discovery -> selection -> worker pool -> cleanup pass.
"""

import logging
import os
import time
import uuid
from typing import Generator, Iterable, List, Optional, Tuple

from .cleanup import CleanupPass
from .config_manager import OrganizerConfig, parse_since_date
from .discovery import AlbumDiscovery, AlbumScanner, directory_fingerprint
from .duplicate_detector import DuplicateDetector
from .exceptions import OrganizerError
from .layout import PathFormatter
from .models import AlbumResult, AlbumStatus, OrganizationMode, RunSummary
from .pipeline import AlbumPipeline
from .relocation import RelocationExecutor
from .state_store import StateStore
from .worker_pool import ClaimSequencer, WorkerPool
from ..metadata.alias_resolver import AliasResolver
from ..metadata.catalog import CatalogExtractor
from ..metadata.classifier import AlbumClassifier, Enricher
from ..metadata.directory_parser import DirectoryNameParser
from ..metadata.enrichment import DiscogsEnricher, NullEnricher
from ..metadata.tag_reader import MutagenTagReader, TagReader


class AlbumOrganizer:
    """
    Organize one source tree into the destination layout.

    Components can be injected for testing; everything else is built from
    the configuration.
    """

    def __init__(self, config: OrganizerConfig,
                 store: Optional[StateStore] = None,
                 tag_reader: Optional[TagReader] = None,
                 enricher: Optional[Enricher] = None,
                 run_id: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.dry_run = config.dry_run
        self.source_root = os.path.abspath(config.paths.source_root)
        self.destination_root = os.path.abspath(config.paths.destination_root)
        self.incremental = config.processing.incremental
        self.since = parse_since_date(config.processing.since)

        store_config = config.store
        self.store = store or StateStore(
            config.paths.state_db,
            max_attempts=store_config.max_attempts,
            base_delay=store_config.base_delay,
            max_delay=store_config.max_delay,
            busy_timeout=store_config.busy_timeout,
        )
        self.tag_reader = tag_reader or MutagenTagReader()
        self.enricher = enricher or self._create_enricher()

        classification = config.classification
        self.alias_resolver = AliasResolver(classification.alias_groups)
        self.classifier = AlbumClassifier(
            alias_resolver=self.alias_resolver,
            directory_parser=DirectoryNameParser(classification.noise_artist_values),
            catalog_extractor=CatalogExtractor(classification.catalog_exclusion_patterns),
            manual_review_threshold=classification.manual_review_threshold,
            noise_values=classification.noise_artist_values,
            enricher=self.enricher,
            enrichment_min_confidence=config.enrichment.min_confidence,
        )

        organization = config.organization
        self.path_formatter = PathFormatter(
            mode=OrganizationMode(organization.mode),
            tier_names=organization.quality_tier_names,
            title_max_length=organization.title_max_length,
        )
        self.detector = DuplicateDetector(
            self.store, self.path_formatter, self.alias_resolver, self.destination_root,
            run_id=self.run_id, dry_run=self.dry_run,
        )
        self.executor = RelocationExecutor(
            self.store, run_id=self.run_id, destination_root=self.destination_root,
            cleanup_max_levels=organization.cleanup_max_levels,
            source_root=self.source_root,
        )
        self.pipeline = AlbumPipeline(
            AlbumScanner(), self.tag_reader, self.classifier, self.detector,
            self.executor, self.store, run_id=self.run_id, dry_run=self.dry_run,
        )
        self.discovery = AlbumDiscovery(excluded_paths=[self.destination_root])
        self.worker_pool = WorkerPool(max_workers=config.processing.resolved_workers())
        self.cleanup = CleanupPass(self.source_root, organization.cleanup_max_levels)

        self.logger.info(
            f"AlbumOrganizer ready (run {self.run_id}, "
            f"{self.worker_pool.max_workers} workers, dry_run={self.dry_run})"
        )

    def _create_enricher(self) -> Enricher:
        enrichment = self.config.enrichment
        if not enrichment.enabled:
            return NullEnricher()
        return DiscogsEnricher(
            self.store,
            token=enrichment.token,
            rate_limit_per_minute=enrichment.rate_limit_per_minute,
            cache_ttl_hours=enrichment.cache_ttl_hours,
            timeout=enrichment.timeout,
        )

    def request_stop(self) -> None:
        """Stop taking new albums; in-flight albums finish"""
        self.worker_pool.request_stop()

    def run(self, album_dirs: Optional[Iterable[str]] = None) -> RunSummary:
        """
        Organize the source tree.

        Args:
            album_dirs: Albums to process instead of discovering them

        Returns:
            RunSummary with per-album results sorted by source path
        """
        start_time = time.time()
        summary = RunSummary(run_id=self.run_id, dry_run=self.dry_run)

        if not self.dry_run:
            summary.recovered_moves = self.executor.recover_incomplete()

        if album_dirs is None:
            album_dirs = self.discovery.discover(self.source_root)
        album_dirs = self._select(album_dirs, summary)

        # Claims follow discovery order whatever the worker count
        sequencer = ClaimSequencer()

        def process(item: Tuple[int, str]) -> AlbumResult:
            index, album_dir = item
            result = self.pipeline.process(album_dir, sequencer.turn(index))
            if not self.dry_run:
                self._record_directory(result)
            return result

        results: List[AlbumResult] = [
            result for _, result in self.worker_pool.process(
                enumerate(album_dirs), process, on_error=self._unexpected_error
            )
        ]
        results.sort(key=lambda result: result.source_path)
        summary.results = results
        summary.stopped_early = self.worker_pool.stopped

        # Single-threaded, after every worker has finished
        if not self.dry_run:
            moved = [result.source_path for result in results if result.status == AlbumStatus.MOVED]
            summary.removed_directories = self.cleanup.run(moved)

        summary.duration = time.time() - start_time
        self.logger.info(
            f"Run {self.run_id} finished in {summary.duration:.1f}s: "
            + ", ".join(f"{status}={count}" for status, count in summary.counts().items() if count)
        )
        return summary

    # ===== ALBUM SELECTION =====

    def _select(self, album_dirs: Iterable[str], summary: RunSummary) -> Generator[str, None, None]:
        """Drop directories older than the since date or unchanged since their last outcome"""
        for album_dir in album_dirs:
            if self.since is not None and not self._modified_since(album_dir):
                summary.skipped_directories += 1
                continue
            if self.incremental and not self._needs_processing(album_dir):
                summary.skipped_directories += 1
                continue
            yield album_dir

    def _modified_since(self, album_dir: str) -> bool:
        try:
            modified = os.stat(album_dir).st_mtime >= self.since
        except OSError:
            return True
        if not modified:
            self.logger.debug(f"Not modified since {self.config.processing.since}, skipping: {album_dir}")
        return modified

    def _needs_processing(self, album_dir: str) -> bool:
        """
        Compare a directory with its recorded fingerprint.

        Directories never seen, previously Failed, or changed in any file
        (mtime, size, name) are processed again.
        """
        record = self.store.processed_directory(album_dir)
        if record is None or record['status'] == AlbumStatus.FAILED.value:
            return True
        try:
            last_modified, digest = directory_fingerprint(album_dir)
        except OSError:
            return True
        if last_modified > record['last_modified'] or digest != record['directory_hash']:
            self.logger.debug(f"Changed since last run: {album_dir}")
            return True
        self.logger.debug(f"Unchanged since last run ({record['status']}), skipping: {album_dir}")
        return False

    def _record_directory(self, result: AlbumResult) -> None:
        """Remember how a directory was left so incremental runs can skip it"""
        album_dir = result.source_path
        try:
            if result.status == AlbumStatus.MOVED:
                self.store.run_in_transaction(
                    lambda txn: txn.forget_directory(album_dir), run_id=self.run_id
                )
                return
            last_modified, digest = directory_fingerprint(album_dir)
            self.store.run_in_transaction(
                lambda txn: txn.record_directory(album_dir, last_modified, digest, result.status),
                run_id=self.run_id,
            )
        except (OrganizerError, OSError) as e:
            self.logger.warning(f"Could not record processing state of {album_dir}: {e}")

    def _unexpected_error(self, item: Tuple[int, str], error: Exception) -> AlbumResult:
        _, album_dir = item
        self.logger.error(f"Unexpected error while processing {album_dir}", exc_info=error)
        return AlbumResult(
            source_path=album_dir,
            status=AlbumStatus.FAILED,
            error=f"{type(error).__name__}: {error}",
        )
