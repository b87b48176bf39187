"""
Source Fetchers
Retrieve the current content of every configured sanctions list

A fetcher returns one FetchedRecord per source. Failures never raise:
they come back as FetchedRecord.failure(message) so that a broken
source cannot stop the others from being reconciled.

HttpSourceFetcher expects each source URL to serve a normalized JSON
document:

    {"published": 1700000000, "content": [{"names": [...], ...}, ...]}

Per-list parsing of raw government feeds happens upstream of this
service.
"""

import logging
from typing import Dict, Mapping, Optional

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
    RetryError
)

from config_manager import ConfigManager, SourcesConfig, get_config
from store.records import EntryFormatError, FetchedRecord

logger = logging.getLogger(__name__)

# Transport errors worth retrying; HTTP status errors are not
RETRYABLE_ERRORS = (requests.ConnectionError, requests.Timeout)


class SourceFetcher:
    """Interface of the source fetcher collaborator"""

    def fetch_all(self) -> Dict[str, FetchedRecord]:
        """Fetch every source

        Returns:
            Mapping of source name to its fetch result
        """
        raise NotImplementedError


class StaticSourceFetcher(SourceFetcher):
    """Serves fetch results from memory

    Values may be FetchedRecord instances or their wire form
    ({published, content, error}).
    """

    def __init__(self, results: Optional[Mapping[str, object]] = None):
        self.results: Dict[str, object] = dict(results or {})
        self.calls = 0

    def set(self, source: str, result: object) -> None:
        self.results[source] = result

    def fetch_all(self) -> Dict[str, FetchedRecord]:
        self.calls += 1
        fetched = {}
        for name, result in self.results.items():
            if isinstance(result, FetchedRecord):
                fetched[name] = result
                continue
            try:
                fetched[name] = FetchedRecord.from_dict(result)
            except EntryFormatError as e:
                fetched[name] = FetchedRecord.failure(f"Malformed content: {e}")
        return fetched


class HttpSourceFetcher(SourceFetcher):
    """Fetches normalized list documents over HTTP"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        session: Optional[requests.Session] = None,
        retry_wait=None
    ):
        """Initialize fetcher

        Args:
            config: Configuration manager instance
            session: Optional requests session (connection reuse, testing)
            retry_wait: tenacity wait strategy between attempts
                (default: exponential, 1 to 10 seconds)
        """
        self.config = config or get_config()
        self.sources_config: SourcesConfig = self.config.sources
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': self.sources_config.user_agent})

        self._get = retry(
            stop=stop_after_attempt(self.sources_config.max_retry_attempts),
            wait=retry_wait or wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )(self._get_once)

    def _get_once(self, url: str) -> requests.Response:
        response = self.session.get(url, timeout=self.sources_config.timeout_seconds)
        response.raise_for_status()
        return response

    def fetch_source(self, name: str, url: str) -> FetchedRecord:
        """Fetch and decode a single source

        Returns:
            FetchedRecord with data, or a failure carrying the reason
        """
        logger.info(f"Downloading list '{name}' from {url}")

        try:
            response = self._get(url)
        except (requests.RequestException, RetryError) as e:
            logger.error(f"✗ Failed to download list '{name}': {e}")
            return FetchedRecord.failure(f"Download failed: {e}")

        try:
            payload = response.json()
        except ValueError as e:
            return FetchedRecord.failure(f"Invalid JSON: {e}")

        if not isinstance(payload, dict):
            return FetchedRecord.failure("Invalid document: expected a JSON object")

        try:
            record = FetchedRecord.from_dict(payload)
        except EntryFormatError as e:
            return FetchedRecord.failure(f"Malformed content: {e}")

        if not record.failed:
            logger.info(f"✓ Downloaded list '{name}': {len(record.content)} entries, published={record.published}")
        return record

    def fetch_all(self) -> Dict[str, FetchedRecord]:
        return {
            endpoint.name: self.fetch_source(endpoint.name, endpoint.url)
            for endpoint in self.sources_config.endpoints
        }
