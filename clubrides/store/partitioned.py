"""Partitioned item store over SQLAlchemy.

Every model is an item table addressed by its primary key. Each public call
runs in its own short transaction, so callers coordinate only through
conditional writes and bounded counters, never through shared session state.

Low-level failures are translated before they reach domain code:

- a failed precondition or duplicate insert -> ConcurrencyError
- driver/connection errors, including statement timeouts -> InternalError

Timeouts are reported, never retried here.
"""

import base64
import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from clubrides.errors import ConcurrencyError, InternalError, ValidationError
from clubrides.models.base import Base

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)

# keys per batch-get round trip
BATCH_GET_LIMIT = 100

# PostgreSQL SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"


@dataclass(frozen=True)
class Condition:
    """Precondition on the existing item.

    ``must_not_exist`` turns a put into an insert; ``expected`` guards a write
    on attribute equality (a list/tuple/set value means "one of").
    """

    must_not_exist: bool = False
    expected: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class Page:
    items: List[Any]
    next_cursor: Optional[str] = None


def _primary_key_names(model: Type[Base]) -> List[str]:
    return [column.name for column in model.__table__.primary_key.columns]


def _identity(model: Type[Base], key: Mapping[str, Any]) -> Tuple[Any, ...]:
    return tuple(key[name] for name in _primary_key_names(model))


def _key_clause(model: Type[Base], key: Mapping[str, Any]):
    names = _primary_key_names(model)
    if set(key) != set(names):
        raise ValueError(f"{model.__name__} key must name exactly {names}, got {sorted(key)}")
    table = model.__table__
    return and_(*(table.c[name] == key[name] for name in names))


def _match_clauses(model: Type[Base], attributes: Mapping[str, Any]) -> list:
    table = model.__table__
    clauses = []
    for name, value in attributes.items():
        column = table.c[name]
        if isinstance(value, (list, tuple, set, frozenset)):
            clauses.append(column.in_(list(value)))
        elif value is None:
            clauses.append(column.is_(None))
        else:
            clauses.append(column == value)
    return clauses


def _after_clause(columns: Sequence[Any], values: Sequence[Any], descending: bool):
    """Rows strictly after ``values`` in (c1, c2, ...) order."""
    clauses = []
    for index, column in enumerate(columns):
        equal_prefix = [columns[i] == values[i] for i in range(index)]
        step = column < values[index] if descending else column > values[index]
        clauses.append(and_(*equal_prefix, step))
    return or_(*clauses)


def _is_duplicate_key(exc: IntegrityError) -> bool:
    """Unique/primary-key violation only. NOT NULL, CHECK and FK failures are malformed writes."""
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode is not None:
        return pgcode == UNIQUE_VIOLATION
    message = str(exc.orig).lower()
    return "unique constraint" in message or "duplicate key" in message


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return {"dt": value.isoformat()}
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) != {"dt"}:
            raise ValidationError("Invalid pagination cursor", fields=["cursor"])
        try:
            return datetime.fromisoformat(value["dt"])
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid pagination cursor", fields=["cursor"]) from exc
    return value


def encode_cursor(values: Sequence[Any]) -> str:
    raw = json.dumps([_encode_value(v) for v in values], separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str, width: int) -> List[Any]:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (TypeError, ValueError) as exc:
        raise ValidationError("Invalid pagination cursor", fields=["cursor"]) from exc
    if not isinstance(payload, list) or len(payload) != width:
        raise ValidationError("Invalid pagination cursor", fields=["cursor"])
    return [_decode_value(v) for v in payload]


class PartitionedStore:
    """Conditional put/update/delete, bounded counters, ordered range queries and batch-get."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Internal helpers
    @contextmanager
    def _transaction(self, duplicate_is_conflict: bool = False) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            if duplicate_is_conflict and _is_duplicate_key(exc):
                raise ConcurrencyError("Conditional write rejected: item already exists") from exc
            logger.error("Store integrity failure: %s", exc.orig)
            raise InternalError() from exc
        except DBAPIError as exc:
            session.rollback()
            logger.error("Store call failed (%s): %s", type(exc.orig).__name__, exc.orig)
            raise InternalError("Store unavailable") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _reload(session: Session, model: Type[ModelT], key: Mapping[str, Any]) -> ModelT:
        stmt = select(model).where(_key_clause(model, key)).execution_options(populate_existing=True)
        return session.execute(stmt).scalar_one()

    # ------------------------------------------------------------------
    # Single-item primitives
    def get(self, model: Type[ModelT], key: Mapping[str, Any]) -> Optional[ModelT]:
        with self._transaction() as session:
            return session.execute(select(model).where(_key_clause(model, key))).scalar_one_or_none()

    def put(
        self,
        model: Type[ModelT],
        item: Mapping[str, Any],
        condition: Optional[Condition] = None,
    ) -> ModelT:
        """Write a whole item. Without a condition the item is upserted."""
        values = dict(item)
        key = {name: values[name] for name in _primary_key_names(model)}
        table = model.__table__
        must_not_exist = condition is not None and condition.must_not_exist
        with self._transaction(duplicate_is_conflict=must_not_exist) as session:
            if must_not_exist:
                session.execute(insert(table).values(**values))
            elif condition is not None and condition.expected:
                stmt = (
                    update(table)
                    .where(_key_clause(model, key), *_match_clauses(model, condition.expected))
                    .values(**values)
                )
                if session.execute(stmt).rowcount != 1:
                    raise ConcurrencyError("Conditional write rejected: precondition failed")
            else:
                session.merge(model(**values))
                session.flush()
            return self._reload(session, model, key)

    def update(
        self,
        model: Type[ModelT],
        key: Mapping[str, Any],
        values: Mapping[str, Any],
        condition: Optional[Condition] = None,
    ) -> ModelT:
        """Partial update of an existing item, guarded by ``condition.expected``."""
        clauses = [_key_clause(model, key)]
        if condition is not None:
            clauses.extend(_match_clauses(model, condition.expected))
        stmt = update(model.__table__).where(*clauses).values(**dict(values))
        with self._transaction() as session:
            if session.execute(stmt).rowcount != 1:
                raise ConcurrencyError("Conditional update rejected: precondition failed")
            return self._reload(session, model, key)

    def delete(
        self,
        model: Type[Base],
        key: Mapping[str, Any],
        condition: Optional[Condition] = None,
    ) -> bool:
        clauses = [_key_clause(model, key)]
        if condition is not None:
            clauses.extend(_match_clauses(model, condition.expected))
        with self._transaction() as session:
            deleted = session.execute(delete(model.__table__).where(*clauses)).rowcount == 1
            if not deleted and condition is not None:
                raise ConcurrencyError("Conditional delete rejected: precondition failed")
            return deleted

    def increment(
        self,
        model: Type[Base],
        key: Mapping[str, Any],
        attribute: str,
        delta: int = 1,
        upper_bound: Optional[int] = None,
        lower_bound: Optional[int] = None,
        upper_bound_attribute: Optional[str] = None,
    ) -> Optional[int]:
        """
        Atomically add ``delta`` to a counter in a single UPDATE statement.

        Returns the new value, or None when the result would leave
        [lower_bound, upper_bound]. ``upper_bound_attribute`` names a column of
        the same row holding the upper bound (NULL means unbounded), so the
        bound is read in the same statement as the write.
        A missing item is a ConcurrencyError.
        """
        table = model.__table__
        column = table.c[attribute]
        key_clause = _key_clause(model, key)
        stmt = update(table).where(key_clause).values({column: column + delta})
        if upper_bound is not None:
            stmt = stmt.where(column + delta <= upper_bound)
        if upper_bound_attribute is not None:
            bound = table.c[upper_bound_attribute]
            stmt = stmt.where(or_(bound.is_(None), column + delta <= bound))
        if lower_bound is not None:
            stmt = stmt.where(column + delta >= lower_bound)
        with self._transaction() as session:
            if session.execute(stmt).rowcount == 1:
                return session.execute(select(column).where(key_clause)).scalar_one()
            exists = session.execute(select(func.count()).select_from(table).where(key_clause)).scalar_one()
        if not exists:
            raise ConcurrencyError(f"{model.__name__} item disappeared during counter update")
        return None

    # ------------------------------------------------------------------
    # Multi-item reads
    def query(
        self,
        model: Type[ModelT],
        partition: Mapping[str, Any],
        sort_keys: Sequence[str],
        descending: bool = True,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        filters: Optional[Mapping[str, Any]] = None,
        sort_from: Any = None,
        sort_to: Any = None,
    ) -> Page:
        """
        Ordered range query inside one partition with keyset pagination.

        ``sort_from`` (inclusive) / ``sort_to`` (exclusive) bound the first sort key.
        ``next_cursor`` is set only when another page exists.
        """
        table = model.__table__
        sort_columns = [table.c[name] for name in sort_keys]
        stmt = select(model).where(*_match_clauses(model, partition))
        if filters:
            stmt = stmt.where(*_match_clauses(model, filters))
        if sort_from is not None:
            stmt = stmt.where(sort_columns[0] >= sort_from)
        if sort_to is not None:
            stmt = stmt.where(sort_columns[0] < sort_to)
        if cursor:
            stmt = stmt.where(_after_clause(sort_columns, decode_cursor(cursor, len(sort_columns)), descending))
        stmt = stmt.order_by(*(c.desc() if descending else c.asc() for c in sort_columns))
        if limit is not None:
            stmt = stmt.limit(limit + 1)

        with self._transaction() as session:
            items = list(session.execute(stmt).scalars().all())

        next_cursor = None
        if limit is not None and len(items) > limit:
            items = items[:limit]
            next_cursor = encode_cursor([getattr(items[-1], name) for name in sort_keys])
        return Page(items=items, next_cursor=next_cursor)

    def batch_get(self, model: Type[ModelT], keys: Iterable[Mapping[str, Any]]) -> List[ModelT]:
        """Items in the order of ``keys``; missing keys are skipped."""
        keys = list(keys)
        names = _primary_key_names(model)
        found: Dict[Tuple[Any, ...], ModelT] = {}
        for start in range(0, len(keys), BATCH_GET_LIMIT):
            chunk = keys[start:start + BATCH_GET_LIMIT]
            stmt = select(model).where(or_(*(_key_clause(model, k) for k in chunk)))
            with self._transaction() as session:
                for row in session.execute(stmt).scalars().all():
                    found[tuple(getattr(row, name) for name in names)] = row
        return [found[_identity(model, k)] for k in keys if _identity(model, k) in found]

    def count(
        self,
        model: Type[Base],
        partition: Mapping[str, Any],
        filters: Optional[Mapping[str, Any]] = None,
    ) -> int:
        stmt = select(func.count()).select_from(model.__table__).where(*_match_clauses(model, partition))
        if filters:
            stmt = stmt.where(*_match_clauses(model, filters))
        with self._transaction() as session:
            return session.execute(stmt).scalar_one()
