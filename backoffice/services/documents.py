"""Schema-less document store persisted in SQLite.

Each catalog collection lives in the single ``documents`` table: one row per
document, with the document body stored as JSON and queried through the
SQLite JSON1 functions. Documents are plain dictionaries carrying a 24-hex
``_id`` and, for timestamped collections, ``createdAt``/``updatedAt``.
"""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from ..config import AppConfig
from .events import DB_QUERY
from .naming import format_timestamp, new_object_id


LOGGER = logging.getLogger(__name__)


SortSpec = Sequence[Tuple[str, Union[int, str]]]

_COMPARISON_OPERATORS = {"<", "<=", ">", ">="}
_UNTIMESTAMPED_COLLECTIONS = {"cd_tracks"}


class DocumentNotFoundError(LookupError):
    """Raised when a document required by an operation does not exist."""

    def __init__(self, collection: str, document_id: str) -> None:
        super().__init__(f"{collection}/{document_id} does not exist")
        self.collection = collection
        self.document_id = document_id


def _field_expression(field_name: str) -> Tuple[str, List[Any]]:
    if field_name in {"_id", "id"}:
        return "id", []
    return "json_extract(body, ?)", [f"$.{field_name}"]


def _coerce_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


@dataclass(frozen=True)
class Query:
    """Immutable conjunction of SQL clauses over document fields.

    Builder methods return a new query, so partial queries can be shared::

        Query().equals("status", "published").contains("title", "rock")
    """

    clauses: Tuple[Tuple[str, Tuple[Any, ...]], ...] = field(default_factory=tuple)

    def _with(self, sql: str, params: Iterable[Any] = ()) -> "Query":
        return Query(self.clauses + ((sql, tuple(params)),))

    def equals(self, field_name: str, value: Any) -> "Query":
        if value is None:
            return self.is_null(field_name)
        expression, params = _field_expression(field_name)
        return self._with(f"{expression} = ?", [*params, _coerce_value(value)])

    def not_equals(self, field_name: str, value: Any) -> "Query":
        expression, params = _field_expression(field_name)
        return self._with(f"{expression} IS NOT ?", [*params, _coerce_value(value)])

    def is_null(self, field_name: str) -> "Query":
        expression, params = _field_expression(field_name)
        return self._with(f"{expression} IS NULL", params)

    def not_null(self, field_name: str) -> "Query":
        expression, params = _field_expression(field_name)
        return self._with(f"{expression} IS NOT NULL", params)

    def contains(self, field_name: str, text: str) -> "Query":
        """Case-insensitive substring match, the equivalent of an escaped ``$regex``."""

        expression, params = _field_expression(field_name)
        return self._with(
            f"instr(lower(CAST({expression} AS TEXT)), lower(?)) > 0",
            [*params, str(text)],
        )

    def starts_with(self, field_name: str, prefix: str) -> "Query":
        expression, params = _field_expression(field_name)
        return self._with(
            f"substr(CAST({expression} AS TEXT), 1, ?) = ?",
            [*params, len(prefix), prefix],
        )

    def not_starts_with(self, field_name: str, prefix: str) -> "Query":
        expression, params = _field_expression(field_name)
        return self._with(
            f"({expression} IS NULL OR substr(CAST({expression} AS TEXT), 1, ?) != ?)",
            [*params, *params, len(prefix), prefix],
        )

    def compare(self, field_name: str, operator: str, value: Any) -> "Query":
        if operator not in _COMPARISON_OPERATORS:
            raise ValueError(f"Unsupported comparison operator: {operator}")
        expression, params = _field_expression(field_name)
        return self._with(f"{expression} {operator} ?", [*params, _coerce_value(value)])

    def in_(self, field_name: str, values: Iterable[Any]) -> "Query":
        items = [_coerce_value(value) for value in values]
        if not items:
            return self._with("0")
        expression, params = _field_expression(field_name)
        placeholders = ", ".join("?" for _ in items)
        return self._with(f"{expression} IN ({placeholders})", [*params, *items])

    def not_in(self, field_name: str, values: Iterable[Any]) -> "Query":
        items = [_coerce_value(value) for value in values]
        if not items:
            return self
        expression, params = _field_expression(field_name)
        placeholders = ", ".join("?" for _ in items)
        return self._with(
            f"({expression} IS NULL OR {expression} NOT IN ({placeholders}))",
            [*params, *params, *items],
        )

    def any_of(self, *queries: "Query") -> "Query":
        """Add a disjunction of *queries*; empty alternatives are ignored."""

        fragments: List[str] = []
        params: List[Any] = []
        for query in queries:
            if not query.clauses:
                continue
            sql, query_params = query.compile()
            fragments.append(f"({sql})")
            params.extend(query_params)
        if not fragments:
            return self
        return self._with("(" + " OR ".join(fragments) + ")", params)

    def compile(self) -> Tuple[str, List[Any]]:
        if not self.clauses:
            return "1", []
        fragments = []
        params: List[Any] = []
        for sql, clause_params in self.clauses:
            fragments.append(sql)
            params.extend(clause_params)
        return " AND ".join(fragments), params


def _normalize_direction(direction: Union[int, str]) -> str:
    if isinstance(direction, str):
        return "DESC" if direction.strip().lower() in {"desc", "-1", "descending"} else "ASC"
    return "DESC" if int(direction) < 0 else "ASC"


class DocumentRepository:
    """Collection-oriented CRUD helpers over the ``documents`` table."""

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = config.database_file
        self._event_emitter: Optional[Callable[..., None]] = event_emitter

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting debug events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any) -> Iterator[Dict[str, Any]]:
        if self._event_emitter is None:
            yield payload
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        try:
            yield event_payload
        except Exception as exc:
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            event_payload.setdefault("status", "ok")
            filtered = {key: value for key, value in event_payload.items() if value is not None}
            self._event_emitter(DB_QUERY, action, payload=filtered, duration_ms=duration_ms)

    @staticmethod
    def _summarize_sql(statement: str) -> str:
        collapsed = " ".join(statement.strip().split())
        return collapsed[:180] + ("…" if len(collapsed) > 180 else "")

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] = (),
        *,
        action: str,
        collection: Optional[str] = None,
    ) -> sqlite3.Cursor:
        params = tuple(parameters)
        with self._track_db_event(
            action,
            collection=collection,
            sql=self._summarize_sql(statement),
            parameter_count=len(params),
        ) as event:
            cursor = connection.execute(statement, params)
            if cursor.rowcount >= 0:
                event.setdefault("rowcount", int(cursor.rowcount))
            return cursor

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with self._track_db_event("connect", database=str(self._db_path)) as event:
            connection = sqlite3.connect(self._db_path)
            event.setdefault("sqlite_version", sqlite3.sqlite_version)
        connection.row_factory = sqlite3.Row
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    @staticmethod
    def _decode(row: sqlite3.Row) -> Dict[str, Any]:
        document = json.loads(row["body"])
        document["_id"] = row["id"]
        return document

    @staticmethod
    def _order_clause(sort: Optional[SortSpec]) -> Tuple[str, List[Any]]:
        if not sort:
            return " ORDER BY rowid ASC", []
        fragments: List[str] = []
        params: List[Any] = []
        for field_name, direction in sort:
            expression, field_params = _field_expression(field_name)
            fragments.append(f"{expression} {_normalize_direction(direction)}")
            params.extend(field_params)
        fragments.append("rowid ASC")
        return " ORDER BY " + ", ".join(fragments), params

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def insert(self, collection: str, document: Mapping[str, Any]) -> Dict[str, Any]:
        """Store *document* and return it with ``_id`` and timestamps filled in."""

        stored = dict(document)
        stored["_id"] = str(stored.get("_id") or new_object_id())
        stored.pop("id", None)
        if collection not in _UNTIMESTAMPED_COLLECTIONS:
            now = format_timestamp()
            stored.setdefault("createdAt", now)
            stored["updatedAt"] = now
        with self._connect() as connection:
            self._execute(
                connection,
                "INSERT INTO documents (collection, id, body, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    collection,
                    stored["_id"],
                    json.dumps(stored, default=str),
                    stored.get("createdAt"),
                    stored.get("updatedAt"),
                ),
                action=f"{collection}.insert",
                collection=collection,
            )
        LOGGER.debug("Inserted %s/%s", collection, stored["_id"])
        return stored

    def replace(self, collection: str, document: Mapping[str, Any], *, touch: bool = True) -> Dict[str, Any]:
        """Overwrite the stored body of ``document['_id']`` with *document*."""

        stored = dict(document)
        stored.pop("id", None)
        document_id = str(stored.get("_id") or "")
        if touch and collection not in _UNTIMESTAMPED_COLLECTIONS:
            stored["updatedAt"] = format_timestamp()
        with self._connect() as connection:
            cursor = self._execute(
                connection,
                "UPDATE documents SET body = ?, updated_at = ? WHERE collection = ? AND id = ?",
                (
                    json.dumps(stored, default=str),
                    stored.get("updatedAt"),
                    collection,
                    document_id,
                ),
                action=f"{collection}.replace",
                collection=collection,
            )
            if cursor.rowcount == 0:
                raise DocumentNotFoundError(collection, document_id)
        return stored

    def update(
        self,
        collection: str,
        document_id: str,
        changes: Optional[Mapping[str, Any]] = None,
        *,
        unset: Iterable[str] = (),
        touch: bool = True,
    ) -> Optional[Dict[str, Any]]:
        """Apply ``$set``/``$unset`` style *changes* and return the new document.

        ``None`` is returned when the document does not exist.
        """

        current = self.get(collection, document_id)
        if current is None:
            return None
        current.update(changes or {})
        for key in unset:
            current.pop(key, None)
        return self.replace(collection, current, touch=touch)

    def delete(self, collection: str, document_id: str) -> bool:
        with self._connect() as connection:
            cursor = self._execute(
                connection,
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, str(document_id)),
                action=f"{collection}.delete",
                collection=collection,
            )
            removed = cursor.rowcount > 0
        if removed:
            LOGGER.debug("Deleted %s/%s", collection, document_id)
        return removed

    def delete_many(self, collection: str, query: Optional[Query] = None) -> int:
        where, params = (query or Query()).compile()
        with self._connect() as connection:
            cursor = self._execute(
                connection,
                f"DELETE FROM documents WHERE collection = ? AND {where}",
                [collection, *params],
                action=f"{collection}.delete_many",
                collection=collection,
            )
            return max(cursor.rowcount, 0)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, collection: str, document_id: Any) -> Optional[Dict[str, Any]]:
        if document_id is None:
            return None
        with self._connect() as connection:
            row = self._execute(
                connection,
                "SELECT id, body FROM documents WHERE collection = ? AND id = ?",
                (collection, str(document_id)),
                action=f"{collection}.get",
                collection=collection,
            ).fetchone()
        return self._decode(row) if row is not None else None

    def get_many(self, collection: str, document_ids: Iterable[Any]) -> List[Dict[str, Any]]:
        """Return the documents for *document_ids* in the requested order, skipping missing ids."""

        ordered = [str(value) for value in document_ids if value]
        if not ordered:
            return []
        found = {
            document["_id"]: document
            for document in self.find(collection, Query().in_("_id", set(ordered)))
        }
        return [found[document_id] for document_id in ordered if document_id in found]

    def find(
        self,
        collection: str,
        query: Optional[Query] = None,
        *,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        where, params = (query or Query()).compile()
        order, order_params = self._order_clause(sort)
        statement = f"SELECT id, body FROM documents WHERE collection = ? AND {where}{order}"
        parameters: List[Any] = [collection, *params, *order_params]
        if limit is not None and limit > 0:
            statement += " LIMIT ? OFFSET ?"
            parameters.extend([int(limit), max(int(skip), 0)])
        elif skip:
            statement += " LIMIT -1 OFFSET ?"
            parameters.append(max(int(skip), 0))
        with self._connect() as connection:
            rows = self._execute(
                connection,
                statement,
                parameters,
                action=f"{collection}.find",
                collection=collection,
            ).fetchall()
        return [self._decode(row) for row in rows]

    def find_one(
        self,
        collection: str,
        query: Optional[Query] = None,
        *,
        sort: Optional[SortSpec] = None,
    ) -> Optional[Dict[str, Any]]:
        matches = self.find(collection, query, sort=sort, limit=1)
        return matches[0] if matches else None

    def count(self, collection: str, query: Optional[Query] = None) -> int:
        where, params = (query or Query()).compile()
        with self._connect() as connection:
            row = self._execute(
                connection,
                f"SELECT COUNT(*) FROM documents WHERE collection = ? AND {where}",
                [collection, *params],
                action=f"{collection}.count",
                collection=collection,
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def exists(self, collection: str, query: Optional[Query] = None) -> bool:
        where, params = (query or Query()).compile()
        with self._connect() as connection:
            row = self._execute(
                connection,
                f"SELECT 1 FROM documents WHERE collection = ? AND {where} LIMIT 1",
                [collection, *params],
                action=f"{collection}.exists",
                collection=collection,
            ).fetchone()
        return row is not None

    def list_collections(self) -> List[str]:
        with self._connect() as connection:
            rows = self._execute(
                connection,
                "SELECT DISTINCT collection FROM documents ORDER BY collection",
                action="documents.collections",
            ).fetchall()
        return [row[0] for row in rows]


__all__ = ["DocumentNotFoundError", "DocumentRepository", "Query", "SortSpec"]
