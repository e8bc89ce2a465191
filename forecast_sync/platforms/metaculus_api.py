from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from forecast_sync.platforms.http_client import SimpleHttpClient

JsonDict = dict[str, Any]

DEFAULT_BASE_URL = "https://www.metaculus.com/api2"
# Safety net against a comments endpoint that keeps returning a `next` link.
MAX_COMMENT_PAGES = 50


@dataclass
class ApiPage:
    results: list[JsonDict]
    next: str | None = None


@dataclass
class ApiDetail:
    question: JsonDict
    comments: list[JsonDict] = field(default_factory=list)


class MetaculusApi:
    """Thin wrapper over the Metaculus api2 question and comment endpoints.

    Errors from the HTTP client propagate; a payload of the wrong shape
    raises ``ValueError``.
    """

    def __init__(self, base_url: str | None = None, http: SimpleHttpClient | None = None) -> None:
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.http = http or SimpleHttpClient()

    @property
    def questions_url(self) -> str:
        return f"{self.base_url}/questions/"

    def fetch_list(self, url: str) -> ApiPage:
        payload = self.http.get_json(url)
        if not isinstance(payload, dict) or not isinstance(payload.get("results"), list):
            raise ValueError(f"Unexpected question list payload from {url}")
        results = [row for row in payload["results"] if isinstance(row, dict)]
        return ApiPage(results=results, next=payload.get("next") or None)

    def fetch_detail(self, item_id: int | str, with_comments: bool = False) -> ApiDetail:
        question = self.http.get_json(f"{self.base_url}/questions/{item_id}/")
        if not isinstance(question, dict):
            raise ValueError(f"Unexpected question payload for {item_id}")
        comments = self.fetch_comments(item_id) if with_comments else []
        return ApiDetail(question=question, comments=comments)

    def fetch_comments(self, item_id: int | str) -> list[JsonDict]:
        comments: list[JsonDict] = []
        url: str | None = f"{self.base_url}/comments/"
        params: dict[str, Any] | None = {"question": item_id, "limit": 100}
        pages = 0
        while url and pages < MAX_COMMENT_PAGES:
            payload = self.http.get_json(url, params=params)
            pages += 1
            if isinstance(payload, list):
                comments.extend(row for row in payload if isinstance(row, dict))
                break
            if not isinstance(payload, dict):
                raise ValueError(f"Unexpected comments payload for {item_id}")
            comments.extend(row for row in payload.get("results", []) if isinstance(row, dict))
            url = payload.get("next") or None
            # The `next` link already carries the query string.
            params = None
        return comments
