"""
Lookup Client
=============
Resolves Document_IDs and Content_IDs against the document lookup API.

Request:   POST {base_url}{path}   {"Lookup_IDs": ["ABC-123", "CMS-POL-123456"]}
Response:  {"Results": [{"Title": ..., "Status": ..., "Content_ID": ..., "Document_ID": ...}]}
           (a bare list of records is accepted too)

Features:
- Retry with exponential backoff on timeouts, connection errors, 429 and 5xx
- One-hour result cache keyed by both identifiers, shared across threads
- Falls back to cached results when the API is unavailable
- Circuit breaker: after repeated failed attempts, lookups fail fast for a
  while instead of paying the retry and backoff cost again
"""

import threading
import time
from typing import Dict, Iterable, List, Optional, Tuple

import requests

from config_logging import (
    APP_NAME, VERSION, AppConfig, LookupServiceError, get_config, get_logger,
)

from .models import LookupResult

logger = get_logger('doc_medic.lookup')

BACKOFF_BASE_SECONDS = 1.0


def build_lookup_map(results: Iterable[LookupResult]) -> Dict[str, LookupResult]:
    """Key each result by its Document_ID and its Content_ID (case-sensitive)."""
    lookup_map: Dict[str, LookupResult] = {}
    for result in results:
        if result.document_id:
            lookup_map[result.document_id] = result
        if result.content_id:
            lookup_map[result.content_id] = result
    return lookup_map


class LookupClient:
    """
    HTTP client for the document lookup API.

    Example:
        client = LookupClient(base_url="https://lookup.example.com")
        lookup_map = client.resolve_map(index.extract_lookup_ids())
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        path: Optional[str] = None,
        timeout: Optional[int] = None,
        retries: Optional[int] = None,
        cache_ttl_seconds: Optional[int] = None,
        breaker_threshold: Optional[int] = None,
        breaker_open_seconds: Optional[int] = None,
        session: Optional[requests.Session] = None,
        config: Optional[AppConfig] = None,
    ):
        config = config or get_config()
        self.base_url = base_url if base_url is not None else config.lookup_base_url
        self.path = path if path is not None else config.lookup_path
        self.timeout = timeout if timeout is not None else config.lookup_timeout
        self.retries = retries if retries is not None else config.lookup_retries
        self.cache_ttl_seconds = (cache_ttl_seconds if cache_ttl_seconds is not None
                                  else config.cache_ttl_seconds)
        self.breaker_threshold = (breaker_threshold if breaker_threshold is not None
                                  else config.breaker_threshold)
        self.breaker_open_seconds = (breaker_open_seconds if breaker_open_seconds is not None
                                     else config.breaker_open_seconds)

        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': f'{APP_NAME}/{VERSION}',
        })

        self._cache: Dict[str, Tuple[LookupResult, float]] = {}
        self._lock = threading.Lock()
        self._failures = 0
        self._open_until = 0.0

    @property
    def url(self) -> str:
        if not self.base_url:
            return ""
        return self.base_url.rstrip('/') + '/' + self.path.lstrip('/')

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve(self, ids: Iterable[str],
                cancel_event: Optional[threading.Event] = None) -> List[LookupResult]:
        """
        Resolve identifiers to lookup results.

        Ids with no match are simply absent from the result. Blank ids are
        never sent. If the API fails after all retries, whatever is cached
        for the requested ids is returned.
        """
        wanted = sorted({i for i in ids if i and i.strip()})
        if not wanted:
            return []
        if not self.is_configured:
            logger.warning("Lookup API not configured, skipping resolution", ids=len(wanted))
            return []

        cached, missing = self._from_cache(wanted)
        if not missing:
            logger.debug("All ids served from cache", ids=len(wanted))
            return cached

        try:
            fresh = self._request(missing, cancel_event)
        except LookupServiceError as e:
            logger.warning(f"Lookup failed, using cached results: {e.message}",
                           status_code=e.status_code, cached=len(cached))
            return cached

        self._store(fresh)
        return self._unique(cached + fresh)

    def resolve_map(self, ids: Iterable[str],
                    cancel_event: Optional[threading.Event] = None) -> Dict[str, LookupResult]:
        return build_lookup_map(self.resolve(ids, cancel_event))

    def test_connection(self) -> bool:
        """Send an empty lookup to check that the API answers."""
        if not self.is_configured:
            return False
        try:
            response = self.session.post(self.url, json={'Lookup_IDs': []}, timeout=self.timeout)
            return response.ok
        except requests.RequestException as e:
            logger.warning(f"Lookup API connection test failed: {e}", url=self.url)
            return False

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    def _request(self, ids: List[str],
                 cancel_event: Optional[threading.Event] = None) -> List[LookupResult]:
        if self.is_circuit_open:
            raise LookupServiceError("Lookup circuit open, request skipped")

        last_error: Optional[LookupServiceError] = None

        for attempt in range(self.retries + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise LookupServiceError("Lookup cancelled")

            try:
                response = self.session.post(self.url, json={'Lookup_IDs': ids},
                                             timeout=self.timeout)
                if response.status_code == 429 or response.status_code >= 500:
                    last_error = LookupServiceError(
                        f"Lookup API returned HTTP {response.status_code}",
                        status_code=response.status_code)
                elif response.status_code >= 400:
                    raise LookupServiceError(
                        f"Lookup API rejected request: HTTP {response.status_code}",
                        status_code=response.status_code)
                else:
                    results = self._parse_response(response)
                    self._record_success()
                    logger.info(f"Resolved {len(results)} of {len(ids)} ids",
                                attempts=attempt + 1)
                    return results

            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                last_error = LookupServiceError(f"Lookup API unreachable: {e}")
            except requests.RequestException as e:
                raise LookupServiceError(f"Lookup request failed: {e}")

            self._record_failure()
            if attempt < self.retries:
                wait_time = BACKOFF_BASE_SECONDS * (2 ** attempt)
                logger.warning(f"Lookup attempt {attempt + 1} failed, retrying in {wait_time:.0f}s",
                               error=last_error.message)
                time.sleep(wait_time)

        raise last_error

    @staticmethod
    def _parse_response(response: requests.Response) -> List[LookupResult]:
        try:
            data = response.json()
        except ValueError as e:
            raise LookupServiceError(f"Lookup API returned invalid JSON: {e}",
                                     status_code=response.status_code)

        if isinstance(data, dict):
            records = next((v for k, v in data.items() if str(k).lower() == 'results'), None)
        else:
            records = data

        if records is None:
            return []
        if not isinstance(records, list):
            raise LookupServiceError("Lookup API response has no result list",
                                     status_code=response.status_code)

        results = []
        for record in records:
            if not isinstance(record, dict):
                continue
            result = LookupResult.from_api_dict(record)
            if not result.document_id or not result.content_id:
                logger.debug("Dropping incomplete lookup record", record=record)
                continue
            results.append(result)
        return results

    # -------------------------------------------------------------------------
    # Circuit breaker
    # -------------------------------------------------------------------------

    @property
    def is_circuit_open(self) -> bool:
        with self._lock:
            return time.time() < self._open_until

    def _record_failure(self):
        """Count a failed attempt; (re)open the breaker at the threshold."""
        with self._lock:
            self._failures += 1
            opened = self._failures >= self.breaker_threshold
            if opened:
                self._open_until = time.time() + self.breaker_open_seconds
            failures = self._failures

        if opened:
            logger.error("Lookup circuit opened", failures=failures,
                         seconds=self.breaker_open_seconds)

    def _record_success(self):
        with self._lock:
            self._failures = 0
            self._open_until = 0.0

    def reset_circuit(self):
        """Close the breaker and forget past failures."""
        self._record_success()

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    def _from_cache(self, ids: List[str]) -> Tuple[List[LookupResult], List[str]]:
        now = time.time()
        hits: List[LookupResult] = []
        missing: List[str] = []
        with self._lock:
            for lookup_id in ids:
                entry = self._cache.get(lookup_id)
                if entry is not None and entry[1] > now:
                    hits.append(entry[0])
                else:
                    self._cache.pop(lookup_id, None)
                    missing.append(lookup_id)
        return self._unique(hits), missing

    def _store(self, results: List[LookupResult]):
        expires_at = time.time() + self.cache_ttl_seconds
        with self._lock:
            for result in results:
                self._cache[result.document_id] = (result, expires_at)
                self._cache[result.content_id] = (result, expires_at)

    @staticmethod
    def _unique(results: List[LookupResult]) -> List[LookupResult]:
        seen = set()
        unique = []
        for result in results:
            key = (result.document_id, result.content_id)
            if key not in seen:
                seen.add(key)
                unique.append(result)
        return unique

    def clear_cache(self):
        with self._lock:
            self._cache.clear()

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
