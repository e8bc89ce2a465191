from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Mapping

import requests

from forecast_sync.core.schemas import FetchedQuestion, QuestionOption
from forecast_sync.platforms.base import PlatformV1
from forecast_sync.platforms.http_client import SimpleHttpClient

logger = logging.getLogger(__name__)

PLATFORM_NAME = "polymarket"


def _json_list(value: Any) -> list[Any]:
    # The gamma API encodes outcome arrays as JSON strings.
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return []
    return list(value) if isinstance(value, list) else []


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def market_to_question(row: Mapping[str, Any]) -> FetchedQuestion | None:
    market_id = row.get("id") or row.get("conditionId")
    if market_id is None:
        return None
    outcomes = _json_list(row.get("outcomes"))
    prices = _json_list(row.get("outcomePrices"))
    if not outcomes or len(outcomes) != len(prices):
        return None
    slug = row.get("slug")
    return FetchedQuestion(
        id=f"{PLATFORM_NAME}-{market_id}",
        title=str(row.get("question", row.get("title", ""))),
        url=f"https://polymarket.com/market/{slug}" if slug else "https://polymarket.com",
        description=str(row.get("description", "")),
        options=[
            QuestionOption(name=str(name), probability=_number(price))
            for name, price in zip(outcomes, prices)
        ],
        quality_indicators={
            "liquidity": _number(row.get("liquidity")),
            "volume": _number(row.get("volume")),
            "volume24Hours": _number(row.get("volume24hr")),
        },
    )


def calculate_stars(question: FetchedQuestion) -> int:
    liquidity = _number(question.quality_indicators.get("liquidity"))
    volume = _number(question.quality_indicators.get("volume"))
    if liquidity > 10_000 and volume > 100_000:
        return 4
    if liquidity > 1_000 and volume > 10_000:
        return 3
    if liquidity > 100:
        return 2
    return 1


class PolymarketFetcher:
    def __init__(
        self,
        base_url: str | None = None,
        http: SimpleHttpClient | None = None,
        sleep_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = (base_url or "https://gamma-api.polymarket.com").rstrip("/")
        self.http = http or SimpleHttpClient()
        self.sleep_seconds = sleep_seconds
        self.sleep = sleep

    def __call__(self) -> list[FetchedQuestion] | None:
        try:
            self.sleep(self.sleep_seconds)
            payload = self.http.get_json(
                f"{self.base_url}/markets",
                params={"active": "true", "closed": "false", "limit": 500},
            )
        except requests.RequestException as exc:
            logger.error(f"Polymarket fetch failed: {exc}")
            return None
        if not isinstance(payload, list):
            logger.error("Polymarket returned an unexpected payload")
            return None
        questions: list[FetchedQuestion] = []
        for row in payload:
            question = market_to_question(row) if isinstance(row, dict) else None
            if question is not None:
                questions.append(question)
        return questions


def build_polymarket_platform(
    http: SimpleHttpClient,
    base_url: str | None = None,
    sleep_seconds: float = 1.0,
) -> PlatformV1:
    return PlatformV1(
        name=PLATFORM_NAME,
        label="PolyMarket",
        color="#00314e",
        calculate_stars=calculate_stars,
        fetcher=PolymarketFetcher(base_url=base_url, http=http, sleep_seconds=sleep_seconds),
    )
