from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from forecast_sync.core.schemas import Comment, HistoryEntry, PastcastQuestion, Question
from forecast_sync.core.storage import (
    COMMENT,
    HISTORY,
    PASTCAST_QUESTION,
    QUESTION,
    Collection,
    Record,
    Storage,
)

MIGRATION_DIR = Path(__file__).parent / "migrations"

# SQLite caps the number of bound parameters per statement.
_DELETE_CHUNK = 500


@dataclass(frozen=True)
class _Table:
    name: str
    record_type: Any
    key: str
    columns: tuple[str, ...]
    json_columns: frozenset[str] = frozenset()
    immutable: frozenset[str] = frozenset()
    append_only: bool = False

    def column_name(self, field_name: str) -> str:
        return f"{field_name}_json" if field_name in self.json_columns else field_name


_QUESTION_FIELDS = (
    "id",
    "platform",
    "title",
    "description",
    "url",
    "options",
    "quality_indicators",
    "extra",
    "fetched",
    "first_seen",
)

TABLES: dict[str, _Table] = {
    QUESTION: _Table(
        name="questions",
        record_type=Question,
        key="id",
        columns=_QUESTION_FIELDS,
        json_columns=frozenset({"options", "quality_indicators", "extra"}),
        immutable=frozenset({"first_seen"}),
    ),
    HISTORY: _Table(
        name="history",
        record_type=HistoryEntry,
        key="pk",
        columns=("pk", "idref") + _QUESTION_FIELDS[1:-1],
        json_columns=frozenset({"options", "quality_indicators", "extra"}),
        append_only=True,
    ),
    PASTCAST_QUESTION: _Table(
        name="pastcast_questions",
        record_type=PastcastQuestion,
        key="id",
        columns=(
            "id",
            "platform",
            "title",
            "description",
            "url",
            "binary_resolution",
            "vantage_date",
            "vantage_aggregate_binary_forecast",
            "fetched",
            "is_deleted",
        ),
    ),
    COMMENT: _Table(
        name="comments",
        record_type=Comment,
        key="id",
        columns=(
            "id",
            "question_id",
            "platform",
            "content",
            "created_at",
            "vote_total",
            "parent_comment_id",
            "author_name",
            "prediction_value",
        ),
    ),
}


class SQLiteStorage(Storage):
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row

    def init(self) -> None:
        for sql_file in sorted(MIGRATION_DIR.glob("*.sql")):
            sql = sql_file.read_text(encoding="utf-8")
            self.conn.executescript(sql)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def _table(self, collection: Collection) -> _Table:
        try:
            return TABLES[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection}") from None

    def _json(self, value: Any) -> str:
        return json.dumps(value, ensure_ascii=False, sort_keys=True)

    def _to_row(self, table: _Table, record: Record) -> dict[str, Any]:
        if not isinstance(record, table.record_type):
            raise TypeError(
                f"Expected {table.record_type.__name__} for {table.name}, got {type(record).__name__}"
            )
        values = record.to_record()
        row: dict[str, Any] = {}
        for field_name in table.columns:
            value = values.get(field_name)
            if field_name in table.json_columns:
                value = self._json(value)
            row[table.column_name(field_name)] = value
        return row

    def _from_row(self, table: _Table, row: sqlite3.Row) -> Record:
        record: dict[str, Any] = {}
        for field_name in table.columns:
            value = row[table.column_name(field_name)]
            if field_name in table.json_columns:
                value = json.loads(value) if value else None
            record[field_name] = value
        return table.record_type.from_record(record)

    def find_many(self, collection: Collection, platform: str | None = None) -> list[Record]:
        table = self._table(collection)
        if platform is None:
            rows = self.conn.execute(f"SELECT * FROM {table.name} ORDER BY rowid").fetchall()
        else:
            rows = self.conn.execute(
                f"SELECT * FROM {table.name} WHERE platform = ? ORDER BY rowid",
                (platform,),
            ).fetchall()
        return [self._from_row(table, row) for row in rows]

    def _find_one(self, table: _Table, record_id: str) -> Record | None:
        row = self.conn.execute(
            f"SELECT * FROM {table.name} WHERE {table.key} = ?",
            (record_id,),
        ).fetchone()
        return self._from_row(table, row) if row else None

    def _insert(self, table: _Table, records: Iterable[Record]) -> int:
        inserted = 0
        for record in records:
            row = self._to_row(table, record)
            if table.append_only and row.get(table.key) is None:
                row.pop(table.key)
            columns = ", ".join(row.keys())
            placeholders = ", ".join("?" for _ in row)
            self.conn.execute(
                f"INSERT INTO {table.name} ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
            inserted += 1
        return inserted

    def create_many(self, collection: Collection, records: Iterable[Record]) -> None:
        table = self._table(collection)
        try:
            self._insert(table, records)
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()

    def _update(self, table: _Table, record_id: str, record: Record) -> None:
        row = self._to_row(table, record)
        assignments = {
            column: value
            for column, value in row.items()
            if column != table.key and column not in table.immutable
        }
        set_clause = ", ".join(f"{column} = ?" for column in assignments)
        cursor = self.conn.execute(
            f"UPDATE {table.name} SET {set_clause} WHERE {table.key} = ?",
            (*assignments.values(), record_id),
        )
        if cursor.rowcount == 0:
            raise KeyError(f"No {table.record_type.__name__} with id {record_id!r}")

    def update(self, collection: Collection, record_id: str, record: Record) -> None:
        table = self._table(collection)
        if table.append_only:
            raise ValueError(f"{collection} is append-only")
        self._update(table, record_id, record)
        self.conn.commit()

    def delete_many(self, collection: Collection, ids: Iterable[str]) -> None:
        table = self._table(collection)
        if table.append_only:
            raise ValueError(f"{collection} is append-only")
        id_list = list(ids)
        for start in range(0, len(id_list), _DELETE_CHUNK):
            chunk = id_list[start : start + _DELETE_CHUNK]
            placeholders = ",".join("?" for _ in chunk)
            self.conn.execute(
                f"DELETE FROM {table.name} WHERE {table.key} IN ({placeholders})",
                tuple(chunk),
            )
        self.conn.commit()

    def upsert(self, collection: Collection, record_id: str, create: Record, update: Record) -> Record:
        table = self._table(collection)
        if table.append_only:
            raise ValueError(f"{collection} is append-only")
        if self._find_one(table, record_id) is None:
            self._insert(table, [create])
        else:
            self._update(table, record_id, update)
        self.conn.commit()
        stored = self._find_one(table, record_id)
        if stored is None:
            raise RuntimeError(f"Upsert of {record_id!r} did not persist")
        return stored
