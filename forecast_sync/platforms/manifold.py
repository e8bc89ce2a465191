from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

import requests

from forecast_sync.core.schemas import FetchedQuestion, QuestionOption
from forecast_sync.platforms.base import PlatformV2, V2FetchResult
from forecast_sync.platforms.http_client import SimpleHttpClient

logger = logging.getLogger(__name__)

PLATFORM_NAME = "manifold"
PAGE_SIZE = 1000


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def market_to_question(row: Mapping[str, Any]) -> FetchedQuestion | None:
    if str(row.get("outcomeType", "")).upper() != "BINARY":
        return None
    if row.get("isResolved"):
        return None
    market_id = row.get("id")
    probability = row.get("probability")
    if market_id is None or probability is None:
        return None
    probability = float(probability)
    pool = row.get("pool") or {}
    return FetchedQuestion(
        id=f"{PLATFORM_NAME}-{market_id}",
        title=str(row.get("question", "")),
        url=str(row.get("url", "")),
        description=str(row.get("textDescription", "")),
        options=[
            QuestionOption(name="Yes", probability=probability),
            QuestionOption(name="No", probability=1 - probability),
        ],
        quality_indicators={
            "createdTime": row.get("createdTime"),
            "volume7Days": _number(row.get("volume7Days")),
            "volume24Hours": _number(row.get("volume24Hours")),
            "pool": _number(pool.get("YES")) + _number(pool.get("NO")) if isinstance(pool, Mapping) else 0.0,
            "numforecasters": row.get("uniqueBettorCount"),
        },
    )


def calculate_stars(question: FetchedQuestion) -> int:
    indicators = question.quality_indicators
    volume_7_days = _number(indicators.get("volume7Days"))
    pool = _number(indicators.get("pool"))
    if volume_7_days > 250 or (pool > 500 and volume_7_days > 100):
        return 2
    return 1


class ManifoldFetcher:
    def __init__(
        self,
        base_url: str | None = None,
        http: SimpleHttpClient | None = None,
        sleep_seconds: float = 1.0,
        max_pages: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = (base_url or "https://api.manifold.markets/v0").rstrip("/")
        self.http = http or SimpleHttpClient()
        self.sleep_seconds = sleep_seconds
        self.max_pages = max_pages
        self.sleep = sleep

    def __call__(self, args: Mapping[str, str]) -> V2FetchResult | None:
        try:
            if args.get("id"):
                return self._fetch_one(args["id"])
            return self._fetch_all()
        except (requests.RequestException, ValueError) as exc:
            logger.error(f"Manifold fetch failed: {exc}")
            return None

    def _fetch_one(self, market_id: str) -> V2FetchResult:
        self.sleep(self.sleep_seconds)
        row = self.http.get_json(f"{self.base_url}/market/{market_id}")
        if not isinstance(row, dict):
            raise ValueError(f"Unexpected market payload for {market_id}")
        question = market_to_question(row)
        return V2FetchResult(questions=[question] if question else [], partial=True)

    def _fetch_all(self) -> V2FetchResult:
        questions: list[FetchedQuestion] = []
        before: str | None = None
        page = 0
        while True:
            if self.max_pages is not None and page >= self.max_pages:
                logger.info(f"Stopping after {page} manifold pages; treating the batch as partial")
                return V2FetchResult(questions=questions, partial=True)
            page += 1
            params: dict[str, Any] = {"limit": PAGE_SIZE}
            if before:
                params["before"] = before
            self.sleep(self.sleep_seconds)
            payload = self.http.get_json(f"{self.base_url}/markets", params=params)
            if not isinstance(payload, list):
                raise ValueError("Unexpected markets payload")
            for row in payload:
                question = market_to_question(row) if isinstance(row, dict) else None
                if question is not None:
                    questions.append(question)
            if len(payload) < PAGE_SIZE:
                break
            before = payload[-1].get("id")
            if not before:
                break
        return V2FetchResult(questions=questions, partial=False)


def build_manifold_platform(
    http: SimpleHttpClient,
    base_url: str | None = None,
    sleep_seconds: float = 1.0,
    max_pages: int | None = None,
) -> PlatformV2:
    return PlatformV2(
        name=PLATFORM_NAME,
        label="Manifold Markets",
        color="#793466",
        calculate_stars=calculate_stars,
        fetcher=ManifoldFetcher(base_url=base_url, http=http, sleep_seconds=sleep_seconds, max_pages=max_pages),
        fetcher_args=("id",),
    )
