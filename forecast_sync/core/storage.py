from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Literal, Union

from forecast_sync.core.schemas import Comment, HistoryEntry, PastcastQuestion, Question


QUESTION = "question"
PASTCAST_QUESTION = "pastcast_question"
COMMENT = "comment"
HISTORY = "history"

Collection = Literal["question", "pastcast_question", "comment", "history"]
Record = Union[Question, PastcastQuestion, Comment, HistoryEntry]

COLLECTIONS: tuple[str, ...] = (QUESTION, PASTCAST_QUESTION, COMMENT, HISTORY)


class Storage(ABC):
    """Typed CRUD over the four synced collections.

    Every operation is scoped to one collection. ``find_many`` filters by
    platform when one is given. History is append-only: implementations
    must refuse ``update`` and ``delete_many`` on it.
    """

    @abstractmethod
    def init(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def find_many(self, collection: Collection, platform: str | None = None) -> list[Record]:
        raise NotImplementedError

    @abstractmethod
    def create_many(self, collection: Collection, records: Iterable[Record]) -> None:
        raise NotImplementedError

    @abstractmethod
    def update(self, collection: Collection, record_id: str, record: Record) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_many(self, collection: Collection, ids: Iterable[str]) -> None:
        raise NotImplementedError

    @abstractmethod
    def upsert(self, collection: Collection, record_id: str, create: Record, update: Record) -> Record:
        raise NotImplementedError
