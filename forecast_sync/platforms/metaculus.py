"""Metaculus pastcast extraction.

One upstream item expands to zero, one or many resolved binary questions:

* ``group`` items are fetched in detail and every acceptable sub-question
  becomes its own question;
* ``forecast`` items become one question (members of a group are left to
  their group), fetched in detail together with their comment thread;
* ``claim`` and unknown types produce nothing.

Each question gets a vantage date sampled between its publish time and its
effective end, seeded by its id so that re-fetching reproduces it. The
seeding scheme is part of the stored data: the seed is the string
``"metaculus-<upstream id>"``, the generator is ``random.Random`` (Mersenne
Twister, str seeds hashed with SHA-512) and the fraction is its first
``random()`` draw. Changing any of these reshuffles every stored vantage
date.
"""

from __future__ import annotations

import logging
import random
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

import requests

from forecast_sync.core.schemas import Comment, FetchedPastcastQuestion
from forecast_sync.core.utils import parse_datetime, utc_now
from forecast_sync.platforms.base import PastcastFetchResult, PastcastPlatform
from forecast_sync.platforms.metaculus_api import MetaculusApi

logger = logging.getLogger(__name__)

PLATFORM_NAME = "metaculus"
SITE_URL = "https://www.metaculus.com"
AMBIGUOUS_RESOLUTION = -1

JsonDict = dict[str, Any]

_BOLD_MARKER = re.compile(r"\*\*")


@dataclass
class TransformResult:
    questions: list[FetchedPastcastQuestion] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _history_of(item: Mapping[str, Any]) -> list[JsonDict]:
    history = _mapping(item.get("community_prediction")).get("history")
    return history if isinstance(history, list) else []


def vantage_fraction(seed: str) -> float:
    return random.Random(seed).random()


def sample_vantage_date(seed: str, start: datetime, end: datetime) -> datetime:
    """Pick a point in ``[start, end)`` determined only by ``seed`` and the bounds."""
    if end <= start:
        raise ValueError(f"Empty question lifetime for {seed}: {start} .. {end}")
    vantage = start + (end - start) * vantage_fraction(seed)
    # timedelta * float rounds to the microsecond and could land on `end`.
    return min(vantage, end - timedelta(microseconds=1))


def effective_end(item: Mapping[str, Any]) -> datetime | None:
    close_time = parse_datetime(item.get("close_time"))
    resolve_time = parse_datetime(item.get("resolve_time"))
    if close_time is None:
        return None
    if resolve_time is None:
        return close_time
    return min(close_time, resolve_time)


def _community_median(point: Mapping[str, Any]) -> float | None:
    x1 = point.get("x1")
    if not isinstance(x1, Mapping):
        return None
    value = x1.get("q2")
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def aggregate_at(history: list[JsonDict], vantage_date: datetime) -> float | None:
    """Community median in force just before ``vantage_date``.

    Falls back to the earliest observation when none precedes it.
    """
    points: list[tuple[datetime, JsonDict]] = []
    for point in history:
        if not isinstance(point, Mapping):
            continue
        observed_at = parse_datetime(point.get("t"))
        if observed_at is not None:
            points.append((observed_at, point))
    if not points:
        return None
    points.sort(key=lambda p: p[0])
    chosen = points[0][1]
    for observed_at, point in points:
        if observed_at >= vantage_date:
            break
        chosen = point
    return _community_median(chosen)


def skip_reason(item: Mapping[str, Any], now: datetime) -> str | None:
    """Why ``item`` can't be used for backtesting, or None if it can."""
    if item.get("id") is None:
        return "missing id"
    resolution = item.get("resolution")
    if resolution is None or resolution == AMBIGUOUS_RESOLUTION:
        return "unresolved or ambiguous"

    possibilities = _mapping(item.get("possibilities"))
    if possibilities.get("type") != "binary":
        return "not binary"

    if not _history_of(item):
        return "no community prediction history"

    # A resolved date question whose range runs past today reveals that the
    # event happened before the cut-off.
    scale = _mapping(possibilities.get("scale"))
    if scale.get("format") == "date":
        scale_max = parse_datetime(scale.get("max"))
        if scale_max is None or scale_max > now:
            return "date range extends into the future"

    end = effective_end(item)
    if end is None:
        return "missing close time"
    # Open until the earlier of close and resolve time.
    if end > now:
        return "not closed yet"

    publish_time = parse_datetime(item.get("publish_time"))
    if publish_time is None or end <= publish_time:
        return "no usable lifetime"
    return None


def _clean_line(line: str) -> str:
    markers = [match.start() for match in _BOLD_MARKER.finditer(line)]
    parts: list[str] = []
    pos = 0
    # Pair markers left to right; an unpaired trailing marker is left alone.
    for open_at, close_at in zip(markers[0::2], markers[1::2]):
        inner = line[open_at + 2 : close_at]
        stripped = inner.strip()
        parts.append(line[pos:open_at])
        if stripped:
            leading = inner[: len(inner) - len(inner.lstrip())]
            trailing = inner[len(inner.rstrip()) :]
            parts.append(f"{leading}**{stripped}**{trailing}")
        else:
            parts.append(line[open_at : close_at + 2])
        pos = close_at + 2
    parts.append(line[pos:])
    return "".join(parts)


def clean_description(text: str) -> str:
    """Move whitespace just inside ``**`` markers to just outside them.

    Markers pair up within a line, so the closing marker of one span is
    never read as the opening marker of the next.
    """
    return "\n".join(_clean_line(line) for line in (text or "").split("\n"))


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def build_pastcast_question(
    item: Mapping[str, Any], title: str, description: str, url: str
) -> FetchedPastcastQuestion:
    question_id = f"{PLATFORM_NAME}-{item['id']}"
    publish_time = parse_datetime(item.get("publish_time"))
    end = effective_end(item)
    if publish_time is None or end is None:
        raise ValueError(f"{question_id} has no usable lifetime")
    vantage_date = sample_vantage_date(question_id, publish_time, end)
    history = _history_of(item)
    return FetchedPastcastQuestion(
        id=question_id,
        title=title,
        url=url,
        description=description,
        binary_resolution=item.get("resolution") == 1,
        vantage_date=vantage_date,
        vantage_aggregate_binary_forecast=aggregate_at(history, vantage_date),
    )


def build_comment(raw: Mapping[str, Any], question_id: str) -> Comment | None:
    raw_id = raw.get("id")
    created_at = parse_datetime(raw.get("created_time") or raw.get("created_at"))
    if raw_id is None or created_at is None:
        return None

    parent = raw.get("parent")
    if isinstance(parent, Mapping):
        parent = parent.get("id")

    author = raw.get("author_name")
    if not author and isinstance(raw.get("author"), Mapping):
        author = raw["author"].get("username")

    prediction = raw.get("prediction_value")
    if prediction is None and isinstance(raw.get("included_forecast"), Mapping):
        prediction = raw["included_forecast"].get("probability_yes")

    votes = raw.get("vote_score")
    if votes is None:
        votes = raw.get("number_of_votes", 0)

    return Comment(
        id=f"{PLATFORM_NAME}-{raw_id}",
        question_id=question_id,
        platform=PLATFORM_NAME,
        content=str(raw.get("comment_text") or raw.get("text") or ""),
        created_at=created_at,
        vote_total=int(_to_float(votes) or 0),
        parent_comment_id=f"{PLATFORM_NAME}-{parent}" if parent is not None else None,
        author_name=str(author or ""),
        prediction_value=_to_float(prediction),
    )


class MetaculusTransformer:
    def __init__(
        self,
        api: MetaculusApi,
        now: datetime,
        sleep_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api = api
        self.now = now
        self.sleep_seconds = sleep_seconds
        self.sleep = sleep

    def _throttle(self) -> None:
        self.sleep(self.sleep_seconds)

    def transform(self, item: Mapping[str, Any]) -> TransformResult:
        item_type = item.get("type")
        if item.get("id") is None:
            logger.warning(f"Metaculus {item_type} item without id, skipping")
            return TransformResult()
        if item_type == "group":
            return self._transform_group(item)
        if item_type == "forecast":
            return self._transform_forecast(item)
        if item_type != "claim":
            logger.warning(f"Unknown metaculus question type: {item_type}, skipping")
        return TransformResult()

    def _transform_group(self, item: Mapping[str, Any]) -> TransformResult:
        self._throttle()
        detail = self.api.fetch_detail(item["id"]).question
        if detail.get("type") != "group":
            logger.warning(f"Metaculus item {item['id']} is listed as a group but its detail is {detail.get('type')}, skipping")
            return TransformResult()

        group_title = item.get("title") or detail.get("title") or ""
        page_url = item.get("page_url") or detail.get("page_url") or ""
        description = clean_description(detail.get("description") or "")
        result = TransformResult()
        sub_questions = detail.get("sub_questions")
        for sub_question in sub_questions if isinstance(sub_questions, list) else []:
            if not isinstance(sub_question, Mapping):
                logger.warning(f"Malformed sub-question in metaculus group {item['id']}, skipping")
                continue
            reason = skip_reason(sub_question, self.now)
            if reason:
                logger.debug(f"Skipping metaculus sub-question {sub_question.get('id')}: {reason}")
                continue
            result.questions.append(
                build_pastcast_question(
                    sub_question,
                    title=f"{group_title} ({sub_question.get('title', '')})",
                    description=description,
                    url=f"{SITE_URL}{page_url}?sub-question={sub_question['id']}",
                )
            )
        return result

    def _transform_forecast(self, item: Mapping[str, Any]) -> TransformResult:
        if item.get("group"):
            return TransformResult()
        reason = skip_reason(item, self.now)
        if reason:
            logger.debug(f"Skipping metaculus question {item.get('id')}: {reason}")
            return TransformResult()

        self._throttle()
        detail = self.api.fetch_detail(item["id"], with_comments=True)
        question = build_pastcast_question(
            item,
            title=item.get("title") or "",
            description=clean_description(detail.question.get("description") or ""),
            url=f"{SITE_URL}{item.get('page_url') or ''}",
        )
        comments: list[Comment] = []
        for raw in detail.comments:
            comment = build_comment(raw, question.id)
            # Anything said after the vantage date would leak the outcome.
            if comment is not None and comment.created_at < question.vantage_date:
                comments.append(comment)
        return TransformResult(questions=[question], comments=comments)


def _truthy(value: str | None) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


class MetaculusFetcher:
    """Pastcast fetcher: the whole question list, or one item when ``id`` is given."""

    def __init__(
        self,
        api: MetaculusApi,
        sleep_seconds: float = 1.0,
        max_pages: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.api = api
        self.sleep_seconds = sleep_seconds
        self.max_pages = max_pages
        self.sleep = sleep
        self.clock = clock

    def __call__(self, args: Mapping[str, str]) -> PastcastFetchResult | None:
        transformer = MetaculusTransformer(
            self.api, now=self.clock(), sleep_seconds=self.sleep_seconds, sleep=self.sleep
        )
        debug = _truthy(args.get("debug"))
        item_id = int(args["id"]) if args.get("id") else None
        try:
            if item_id is not None:
                return self._fetch_one(transformer, item_id)
            return self._fetch_all(transformer, debug)
        except (requests.RequestException, ValueError) as exc:
            logger.error(f"Metaculus fetch failed: {exc}")
            return None

    def _fetch_one(self, transformer: MetaculusTransformer, item_id: int) -> PastcastFetchResult:
        self.sleep(self.sleep_seconds)
        item = self.api.fetch_detail(item_id).question
        result = transformer.transform(item)
        for question in result.questions:
            logger.info(f"Fetched {question}")
        return PastcastFetchResult(questions=result.questions, comments=result.comments, partial=True)

    def _fetch_all(self, transformer: MetaculusTransformer, debug: bool) -> PastcastFetchResult:
        questions: list[FetchedPastcastQuestion] = []
        comments: list[Comment] = []
        url: str | None = self.api.questions_url
        page = 0
        partial = False
        while url:
            if self.max_pages is not None and page >= self.max_pages:
                logger.info(f"Stopping after {page} pages; treating the batch as partial")
                partial = True
                break
            page += 1
            logger.info(f"Query #{page} - {url}")
            self.sleep(self.sleep_seconds)
            api_page = self.api.fetch_list(url)
            for item in api_page.results:
                result = transformer.transform(item)
                for question in result.questions:
                    if debug:
                        logger.info(f"{question}")
                    else:
                        logger.debug(f"- {question.title}")
                questions.extend(result.questions)
                comments.extend(result.comments)
            url = api_page.next
        return PastcastFetchResult(questions=questions, comments=comments, partial=partial)


def build_metaculus_platform(
    api: MetaculusApi,
    sleep_seconds: float = 1.0,
    max_pages: int | None = None,
) -> PastcastPlatform:
    return PastcastPlatform(
        name=PLATFORM_NAME,
        label="Metaculus",
        color="#006669",
        fetcher=MetaculusFetcher(api, sleep_seconds=sleep_seconds, max_pages=max_pages),
        fetcher_args=("id", "debug"),
    )
