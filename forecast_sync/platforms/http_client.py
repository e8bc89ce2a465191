from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

import requests

from forecast_sync.core.utils import stable_hash

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)
DEFAULT_HEADERS = {"User-Agent": "forecast-sync/0.1", "Accept": "application/json"}


class SimpleHttpClient:
    """GET-only JSON client with retries and an optional on-disk TTL cache.

    A ``cache_ttl_seconds`` of 0 disables the cache entirely.
    """

    def __init__(
        self,
        timeout_seconds: int = 20,
        max_retries: int = 3,
        cache_ttl_seconds: int = 0,
        cache_dir: str = ".cache/forecast_sync_http",
        backoff_seconds: float = 1.0,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(1, max_retries)
        self.cache_ttl_seconds = cache_ttl_seconds
        self.backoff_seconds = backoff_seconds
        self.cache_path = Path(cache_dir)
        if self.cache_ttl_seconds > 0:
            self.cache_path.mkdir(parents=True, exist_ok=True)

    def _cache_file(self, url: str, params: dict[str, Any] | None) -> Path:
        cache_key = stable_hash(url + "|" + json.dumps(params or {}, sort_keys=True))
        return self.cache_path / f"{cache_key}.json"

    def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any] | list[Any]:
        cache_file = self._cache_file(url, params)
        if self.cache_ttl_seconds > 0 and cache_file.exists():
            age_seconds = time.time() - cache_file.stat().st_mtime
            if age_seconds <= self.cache_ttl_seconds:
                return json.loads(cache_file.read_text(encoding="utf-8"))

        delay = self.backoff_seconds
        last_error: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                response = requests.get(
                    url,
                    params=params,
                    headers={**DEFAULT_HEADERS, **(headers or {})},
                    timeout=self.timeout_seconds,
                )
                if response.status_code in RETRYABLE_STATUSES:
                    raise requests.HTTPError(
                        f"retryable status={response.status_code}", response=response
                    )
                response.raise_for_status()
                payload = response.json()
                if self.cache_ttl_seconds > 0:
                    cache_file.write_text(json.dumps(payload), encoding="utf-8")
                return payload
            except (requests.RequestException, ValueError) as exc:
                last_error = exc
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"GET {url} failed (attempt {attempt + 1}/{self.max_retries}): {exc}; retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    delay *= 2
        if last_error is None:
            raise RuntimeError("Unexpected HTTP client failure with no exception.")
        raise last_error
