from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any

from forecast_sync.core.utils import from_iso, to_iso, utc_now


JsonDict = dict[str, Any]


@dataclass
class QuestionOption:
    name: str
    probability: float
    type: str = "PROBABILITY"

    def to_record(self) -> JsonDict:
        return asdict(self)

    @staticmethod
    def from_record(record: JsonDict) -> "QuestionOption":
        return QuestionOption(
            name=str(record.get("name", "")),
            probability=float(record.get("probability", 0.0)),
            type=record.get("type", "PROBABILITY"),
        )


@dataclass
class FetchedQuestion:
    """A live question as produced by a platform fetcher, before reconciliation."""

    id: str
    title: str
    url: str
    description: str
    options: list[QuestionOption]
    quality_indicators: JsonDict = field(default_factory=dict)
    extra: JsonDict = field(default_factory=dict)


@dataclass
class Question:
    id: str
    platform: str
    title: str
    description: str
    url: str
    options: list[QuestionOption]
    quality_indicators: JsonDict
    extra: JsonDict = field(default_factory=dict)
    fetched: datetime = field(default_factory=utc_now)
    first_seen: datetime | None = None

    def to_record(self) -> JsonDict:
        return {
            "id": self.id,
            "platform": self.platform,
            "title": self.title,
            "description": self.description,
            "url": self.url,
            "options": [option.to_record() for option in self.options],
            "quality_indicators": dict(self.quality_indicators),
            "extra": dict(self.extra),
            "fetched": to_iso(self.fetched),
            "first_seen": to_iso(self.first_seen),
        }

    @staticmethod
    def from_record(record: JsonDict) -> "Question":
        return Question(
            id=record["id"],
            platform=record["platform"],
            title=record.get("title", ""),
            description=record.get("description", ""),
            url=record.get("url", ""),
            options=[QuestionOption.from_record(o) for o in record.get("options", [])],
            quality_indicators=dict(record.get("quality_indicators", {})),
            extra=dict(record.get("extra") or {}),
            fetched=from_iso(record.get("fetched")) or utc_now(),
            first_seen=from_iso(record.get("first_seen")),
        )


@dataclass
class HistoryEntry:
    """Snapshot of a Question at the moment it was created or updated by a sync."""

    idref: str
    platform: str
    title: str
    description: str
    url: str
    options: list[QuestionOption]
    quality_indicators: JsonDict
    extra: JsonDict
    fetched: datetime
    pk: int | None = None

    @staticmethod
    def from_question(question: Question) -> "HistoryEntry":
        return HistoryEntry(
            idref=question.id,
            platform=question.platform,
            title=question.title,
            description=question.description,
            url=question.url,
            options=list(question.options),
            quality_indicators=dict(question.quality_indicators),
            extra=dict(question.extra),
            fetched=question.fetched,
        )

    def to_record(self) -> JsonDict:
        return {
            "pk": self.pk,
            "idref": self.idref,
            "platform": self.platform,
            "title": self.title,
            "description": self.description,
            "url": self.url,
            "options": [option.to_record() for option in self.options],
            "quality_indicators": dict(self.quality_indicators),
            "extra": dict(self.extra),
            "fetched": to_iso(self.fetched),
        }

    @staticmethod
    def from_record(record: JsonDict) -> "HistoryEntry":
        return HistoryEntry(
            pk=record.get("pk"),
            idref=record["idref"],
            platform=record["platform"],
            title=record.get("title", ""),
            description=record.get("description", ""),
            url=record.get("url", ""),
            options=[QuestionOption.from_record(o) for o in record.get("options", [])],
            quality_indicators=dict(record.get("quality_indicators", {})),
            extra=dict(record.get("extra") or {}),
            fetched=from_iso(record.get("fetched")) or utc_now(),
        )


@dataclass
class FetchedPastcastQuestion:
    id: str
    title: str
    url: str
    description: str
    binary_resolution: bool
    vantage_date: datetime
    vantage_aggregate_binary_forecast: float | None


@dataclass
class PastcastQuestion:
    id: str
    platform: str
    title: str
    description: str
    url: str
    binary_resolution: bool
    vantage_date: datetime
    vantage_aggregate_binary_forecast: float | None
    fetched: datetime = field(default_factory=utc_now)
    is_deleted: bool = False

    def to_record(self) -> JsonDict:
        record = asdict(self)
        record["vantage_date"] = to_iso(self.vantage_date)
        record["fetched"] = to_iso(self.fetched)
        return record

    @staticmethod
    def from_record(record: JsonDict) -> "PastcastQuestion":
        forecast = record.get("vantage_aggregate_binary_forecast")
        return PastcastQuestion(
            id=record["id"],
            platform=record["platform"],
            title=record.get("title", ""),
            description=record.get("description", ""),
            url=record.get("url", ""),
            binary_resolution=bool(record["binary_resolution"]),
            vantage_date=from_iso(record["vantage_date"]) or utc_now(),
            vantage_aggregate_binary_forecast=float(forecast) if forecast is not None else None,
            fetched=from_iso(record.get("fetched")) or utc_now(),
            is_deleted=bool(record.get("is_deleted", False)),
        )


@dataclass
class Comment:
    id: str
    question_id: str
    platform: str
    content: str
    created_at: datetime
    vote_total: int = 0
    parent_comment_id: str | None = None
    author_name: str = ""
    prediction_value: float | None = None

    def to_record(self) -> JsonDict:
        record = asdict(self)
        record["created_at"] = to_iso(self.created_at)
        return record

    @staticmethod
    def from_record(record: JsonDict) -> "Comment":
        prediction = record.get("prediction_value")
        return Comment(
            id=record["id"],
            question_id=record["question_id"],
            platform=record["platform"],
            content=record.get("content", ""),
            created_at=from_iso(record["created_at"]) or utc_now(),
            vote_total=int(record.get("vote_total") or 0),
            parent_comment_id=record.get("parent_comment_id"),
            author_name=record.get("author_name", ""),
            prediction_value=float(prediction) if prediction is not None else None,
        )
