"""Fetch-then-reconcile synchronization of one platform into storage.

``process_platform`` calls the platform's fetcher, diffs the fetched batch
against the stored records of that platform and applies creates, updates
and (for full batches) deletions. Live questions additionally get one
history entry per created or updated question. Pastcast questions are only
ever soft-deleted, and comments are never deleted.

Storage errors are not caught here: they abort the platform's sync and
propagate to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Mapping, Sequence

from forecast_sync.core.schemas import (
    Comment,
    FetchedPastcastQuestion,
    FetchedQuestion,
    HistoryEntry,
    PastcastQuestion,
    Question,
)
from forecast_sync.core.storage import COMMENT, HISTORY, PASTCAST_QUESTION, QUESTION, Storage
from forecast_sync.core.utils import utc_now
from forecast_sync.platforms.base import (
    PastcastFetchResult,
    PastcastPlatform,
    Platform,
    PlatformV1,
    PlatformV2,
    V2FetchResult,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncStats:
    created: int = 0
    updated: int = 0
    deleted: int = 0

    def describe(self) -> str:
        return f"{self.created} created, {self.updated} updated, {self.deleted} deleted"


@dataclass
class SyncSummary:
    platform: str
    partial: bool
    stats: dict[str, SyncStats] = field(default_factory=dict)

    def as_dict(self) -> dict[str, dict[str, int]]:
        return {
            collection: {
                "created": stats.created,
                "updated": stats.updated,
                "deleted": stats.deleted,
            }
            for collection, stats in self.stats.items()
        }


def prepare_question(candidate: FetchedQuestion, platform: PlatformV1 | PlatformV2, now: datetime) -> Question:
    quality_indicators = dict(candidate.quality_indicators)
    quality_indicators["stars"] = platform.calculate_stars(candidate)
    return Question(
        id=candidate.id,
        platform=platform.name,
        title=candidate.title,
        description=candidate.description,
        url=candidate.url,
        options=list(candidate.options),
        quality_indicators=quality_indicators,
        extra=dict(candidate.extra or {}),
        fetched=now,
    )


def prepare_pastcast_question(
    candidate: FetchedPastcastQuestion, platform: PastcastPlatform, now: datetime
) -> PastcastQuestion:
    return PastcastQuestion(
        id=candidate.id,
        platform=platform.name,
        title=candidate.title,
        description=candidate.description,
        url=candidate.url,
        binary_resolution=candidate.binary_resolution,
        vantage_date=candidate.vantage_date,
        vantage_aggregate_binary_forecast=candidate.vantage_aggregate_binary_forecast,
        fetched=now,
    )


def _check_args(platform: Platform, args: Mapping[str, str] | None) -> dict[str, str]:
    args = dict(args or {})
    unknown = sorted(set(args) - set(platform.fetcher_args))
    if unknown:
        raise ValueError(
            f"Platform {platform.name} does not accept arguments {unknown}; "
            f"declared: {list(platform.fetcher_args)}"
        )
    return args


def _fetch(platform: Platform, args: dict[str, str]) -> V2FetchResult | PastcastFetchResult | None:
    if isinstance(platform, PlatformV1):
        questions = platform.fetcher()
        if questions is None:
            return None
        return V2FetchResult(questions=list(questions), partial=False)
    if isinstance(platform, PlatformV2):
        result = platform.fetcher(args)
        if result is not None and not isinstance(result, V2FetchResult):
            raise TypeError(f"Platform {platform.name}: v2 fetcher returned {type(result).__name__}")
        return result
    if isinstance(platform, PastcastPlatform):
        result = platform.fetcher(args)
        if result is not None and not isinstance(result, PastcastFetchResult):
            raise TypeError(f"Platform {platform.name}: pastcast fetcher returned {type(result).__name__}")
        return result
    raise TypeError(f"Unsupported platform descriptor: {type(platform).__name__}")


def _partition(fetched: Sequence, stored_ids: set[str]) -> tuple[list, list]:
    created = []
    updated = []
    for record in fetched:
        if record.id in stored_ids:
            # TODO: skip the write when nothing but `fetched` changed.
            updated.append(record)
        else:
            created.append(record)
    return created, updated


def _dedupe_by_id(records: Sequence) -> list:
    by_id = {}
    for record in records:
        by_id[record.id] = record
    return list(by_id.values())


def _sync_questions(
    platform: PlatformV1 | PlatformV2,
    storage: Storage,
    candidates: Sequence[FetchedQuestion],
    partial: bool,
    now: datetime,
) -> SyncStats:
    stored = storage.find_many(QUESTION, platform=platform.name)
    stored_ids = {q.id for q in stored}
    prepared = _dedupe_by_id([prepare_question(c, platform, now) for c in candidates])
    fetched_ids = {q.id for q in prepared}

    created, updated = _partition(prepared, stored_ids)
    stats = SyncStats()

    storage.create_many(QUESTION, [replace(q, first_seen=now) for q in created])
    stats.created = len(created)

    for question in updated:
        storage.update(QUESTION, question.id, question)
        stats.updated += 1

    deleted_ids = [qid for qid in stored_ids if qid not in fetched_ids]
    if not partial:
        storage.delete_many(QUESTION, sorted(deleted_ids))
        stats.deleted = len(deleted_ids)

    storage.create_many(HISTORY, [HistoryEntry.from_question(q) for q in [*created, *updated]])
    return stats


def _sync_pastcast_questions(
    platform: PastcastPlatform,
    storage: Storage,
    candidates: Sequence[FetchedPastcastQuestion],
    partial: bool,
    now: datetime,
) -> SyncStats:
    stored = storage.find_many(PASTCAST_QUESTION, platform=platform.name)
    stored_ids = {q.id for q in stored}
    prepared = _dedupe_by_id([prepare_pastcast_question(c, platform, now) for c in candidates])
    fetched_ids = {q.id for q in prepared}

    created, updated = _partition(prepared, stored_ids)
    stats = SyncStats()

    storage.create_many(PASTCAST_QUESTION, created)
    stats.created = len(created)

    for question in updated:
        storage.update(PASTCAST_QUESTION, question.id, question)
        stats.updated += 1

    if not partial:
        # Pastcast questions are kept for backtesting; unseen ones are only flagged.
        for question in stored:
            if question.id in fetched_ids or question.is_deleted:
                continue
            storage.update(PASTCAST_QUESTION, question.id, replace(question, is_deleted=True))
            stats.deleted += 1
    return stats


def _sync_comments(platform: PastcastPlatform, storage: Storage, comments: Sequence[Comment]) -> SyncStats:
    stored_ids = {c.id for c in storage.find_many(COMMENT, platform=platform.name)}
    prepared = _dedupe_by_id([replace(c, platform=platform.name) for c in comments])
    created, updated = _partition(prepared, stored_ids)
    stats = SyncStats()

    storage.create_many(COMMENT, created)
    stats.created = len(created)
    for comment in updated:
        storage.update(COMMENT, comment.id, comment)
        stats.updated += 1
    return stats


def process_platform(
    platform: Platform,
    storage: Storage,
    args: Mapping[str, str] | None = None,
    now: datetime | None = None,
) -> SyncSummary | None:
    """Fetch ``platform`` and reconcile the result into ``storage``.

    Returns ``None`` without touching storage when the platform has no
    fetcher or the fetch failed or came back empty.
    """
    if platform.fetcher is None:
        logger.info(f"Platform {platform.name} doesn't have a fetcher, skipping")
        return None
    checked_args = _check_args(platform, args)
    now = now or utc_now()

    result = _fetch(platform, checked_args)
    if result is None or not result.questions:
        logger.warning(f"Platform {platform.name} didn't return any results")
        return None

    summary = SyncSummary(platform=platform.name, partial=result.partial)
    if isinstance(result, PastcastFetchResult):
        summary.stats[PASTCAST_QUESTION] = _sync_pastcast_questions(
            platform, storage, result.questions, result.partial, now
        )
        if result.comments:
            summary.stats[COMMENT] = _sync_comments(platform, storage, result.comments)
    else:
        summary.stats[QUESTION] = _sync_questions(platform, storage, result.questions, result.partial, now)

    if result.partial:
        logger.info(f"Platform {platform.name}: partial fetch, deletion skipped")
    for collection, stats in summary.stats.items():
        logger.info(f"Platform {platform.name} done, {collection}: {stats.describe()}")
    return summary


def upsert_single_question(
    storage: Storage,
    candidate: FetchedQuestion,
    platform: PlatformV1 | PlatformV2,
    now: datetime | None = None,
) -> Question:
    """Create or refresh one live question outside a full platform sync.

    ``first_seen`` is stamped only when the question is new.
    """
    now = now or utc_now()
    question = prepare_question(candidate, platform, now)
    stored = storage.upsert(QUESTION, question.id, create=replace(question, first_seen=now), update=question)
    return stored  # type: ignore[return-value]
