"""
Metadata enrichment for label and catalog number.

Implements a Discogs database search client with rate limiting and a
lookup cache kept in the state store. Misses are cached too. Any failure
(network, timeout, bad payload) is reported as no match.
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional

import requests

from ..core.constants import (
    DISCOGS_API_URL,
    ENRICHMENT_CACHE_TTL_HOURS,
    ENRICHMENT_RATE_LIMIT_PER_MINUTE,
    ENRICHMENT_TIMEOUT,
    ENRICHMENT_USER_AGENT,
)
from ..core.models import EnrichmentResult
from ..core.state_store import StateStore
from ..utils.decorators import handle_errors, retry, track_performance
from .alias_resolver import normalize_artist


class RateLimiter:
    """Sliding window rate limiter shared by all workers"""

    def __init__(self, max_requests: int = ENRICHMENT_RATE_LIMIT_PER_MINUTE, time_window: float = 60):
        self.max_requests = max_requests
        self.time_window = time_window
        self.requests: List[float] = []
        self._lock = threading.Lock()

    def wait_if_needed(self) -> None:
        """Wait if rate limit would be exceeded"""
        with self._lock:
            now = time.time()

            # Remove old requests
            self.requests = [req_time for req_time in self.requests
                             if now - req_time < self.time_window]

            if len(self.requests) >= self.max_requests:
                wait_time = self.time_window - (now - self.requests[0]) + 0.1
                if wait_time > 0:
                    time.sleep(wait_time)
                now = time.time()

            self.requests.append(now)


def cache_key(artist: str, title: str) -> str:
    return f"{normalize_artist(artist)}|{normalize_artist(title)}"


class NullEnricher:
    """Enricher used when enrichment is disabled"""

    def lookup(self, artist: str, title: str) -> Optional[EnrichmentResult]:
        return None


class DiscogsEnricher:
    """
    Discogs release search client.

    Features:
    - Label and catalog number lookup by (artist, title)
    - Rate limiting shared across worker threads
    - Cached results, including misses, with a TTL
    - Confidence from artist/title agreement of the best hit
    """

    def __init__(self, store: StateStore, token: str = "",
                 rate_limit_per_minute: int = ENRICHMENT_RATE_LIMIT_PER_MINUTE,
                 cache_ttl_hours: float = ENRICHMENT_CACHE_TTL_HOURS,
                 timeout: float = ENRICHMENT_TIMEOUT,
                 base_url: str = DISCOGS_API_URL):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.token = token
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.cache_ttl = cache_ttl_hours * 3600
        self.rate_limiter = RateLimiter(max_requests=rate_limit_per_minute, time_window=60)
        self._performance_metrics: Dict[str, List[float]] = {}

        self.logger.info("Discogs enrichment initialized")

    @handle_errors(log_level="warning", return_on_error=None)
    def lookup(self, artist: str, title: str) -> Optional[EnrichmentResult]:
        """
        Find label and catalog number for a release.

        Returns:
            EnrichmentResult or None when nothing matched or the lookup failed
        """
        key = cache_key(artist, title)
        cached = self._cached(key)
        if cached is not None:
            return cached or None

        result = self._search(artist, title)
        self._store(key, result)
        return result

    def _cached(self, key: str):
        """EnrichmentResult for a cached hit, False for a cached miss, None if absent"""
        with self.store.reader() as txn:
            row = txn.get_cached_lookup(key)
        if row is None or time.time() - row['fetched_at'] > self.cache_ttl:
            return None

        self.logger.debug(f"Enrichment cache hit: {key}")
        if not row['matched']:
            return False
        return EnrichmentResult(
            label=row['label'],
            catalog_number=row['catalog_number'],
            confidence=row['confidence'],
            release_id=row['release_id'],
            year=row['year'],
        )

    def _store(self, key: str, result: Optional[EnrichmentResult]) -> None:
        if result is None:
            self.store.run_in_transaction(lambda txn: txn.put_cached_lookup(key, matched=False))
            return
        self.store.run_in_transaction(lambda txn: txn.put_cached_lookup(
            key, matched=True, label=result.label, catalog_number=result.catalog_number,
            confidence=result.confidence, release_id=result.release_id, year=result.year,
        ))

    @track_performance(threshold_ms=5000)
    @retry(max_attempts=2, delay=1.0,
           exceptions=(requests.ConnectionError, requests.Timeout))
    def _search(self, artist: str, title: str) -> Optional[EnrichmentResult]:
        self.rate_limiter.wait_if_needed()

        params = {'type': 'release', 'artist': artist, 'release_title': title, 'per_page': 10}
        headers = {'User-Agent': ENRICHMENT_USER_AGENT}
        if self.token:
            headers['Authorization'] = f"Discogs token={self.token}"

        response = requests.get(
            f"{self.base_url}/database/search",
            params=params,
            headers=headers,
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()

        results = data.get('results', []) if isinstance(data, dict) else []
        best = self._find_best_result(artist, title, results)
        if best is None:
            self.logger.debug(f"No Discogs match for {artist} - {title}")
        return best

    def _find_best_result(self, artist: str, title: str,
                          results: List[Dict[str, Any]]) -> Optional[EnrichmentResult]:
        """Best scoring hit; Discogs titles read 'Artist - Title'"""
        wanted_artist = normalize_artist(artist)
        wanted_title = normalize_artist(title)
        best: Optional[EnrichmentResult] = None

        for hit in results:
            hit_artist, _, hit_title = str(hit.get('title', '')).partition(' - ')
            hit_artist = normalize_artist(hit_artist)
            hit_title = normalize_artist(hit_title)

            score = 0.0
            if hit_artist == wanted_artist:
                score += 0.5
            if hit_title == wanted_title:
                score += 0.5
            elif wanted_title and wanted_title in hit_title:
                score += 0.25

            labels = hit.get('label') or []
            label = labels[0] if labels else None
            catalog = hit.get('catno')
            if not label and not catalog:
                continue
            if catalog and catalog.strip().lower() == 'none':
                catalog = None

            if best is None or score > best.confidence:
                year = hit.get('year')
                best = EnrichmentResult(
                    label=label,
                    catalog_number=catalog,
                    confidence=score,
                    release_id=str(hit['id']) if hit.get('id') is not None else None,
                    year=int(year) if str(year or '').isdigit() else None,
                )

        if best is not None and best.confidence <= 0:
            return None
        return best
