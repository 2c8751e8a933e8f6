# Overview: Generic persistence collaborator used by the sale and cash protocols.

from __future__ import annotations

import threading
from contextlib import contextmanager

from sqlalchemy import update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import NotFoundError, PersistenceError
from ..extensions import db
"""
Repository Invariants (authoritative)

- Every write call is its own DB transaction (commit on success, rollback on
  failure) unless it runs inside `transaction()`, where the block commits or
  rolls back as a whole.
- SQLAlchemy errors never escape: they become PersistenceError, flagged
  `retryable` for lock/deadlock (OperationalError) and optimistic-locking
  (StaleDataError) failures.
- Numeric counters are changed with a single `UPDATE ... SET f = f + :delta`
  so concurrent registers cannot lose updates.
"""


def _table(model) -> str:
    return getattr(model, "__tablename__", model.__name__)


class Repository:
    """insert / update / delete / get / query / increment_field over db.session."""

    def __init__(self):
        self._local = threading.local()

    # -------------------------------------------------------------------------
    # transactions
    # -------------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, "depth", 0) > 0

    @contextmanager
    def transaction(self):
        """Group several writes into one commit."""
        self._local.depth = getattr(self._local, "depth", 0) + 1
        try:
            yield self
        except Exception:
            self._local.depth -= 1
            if self._local.depth == 0:
                db.session.rollback()
            raise
        self._local.depth -= 1
        if self._local.depth == 0:
            try:
                db.session.commit()
            except SQLAlchemyError as exc:
                db.session.rollback()
                raise self._error(exc, "commit", None) from exc

    def _error(self, exc: Exception, action: str, model) -> PersistenceError:
        table = _table(model) if model is not None else None
        return PersistenceError(
            f"Database {action} failed" + (f" on {table}" if table else ""),
            details={"action": action, "table": table, "reason": exc.__class__.__name__},
            retryable=isinstance(exc, (OperationalError, StaleDataError)),
        )

    def _write(self, op, action: str, model):
        try:
            result = op()
            if not self.in_transaction:
                db.session.commit()
            return result
        except SQLAlchemyError as exc:
            if not self.in_transaction:
                db.session.rollback()
            raise self._error(exc, action, model) from exc

    def _read(self, op, model):
        try:
            return op()
        except SQLAlchemyError as exc:
            raise self._error(exc, "query", model) from exc

    # -------------------------------------------------------------------------
    # writes
    # -------------------------------------------------------------------------

    def insert(self, model, values: dict) -> int:
        """Insert one record and return its id."""
        def _op():
            obj = model(**values)
            db.session.add(obj)
            db.session.flush()
            return obj.id
        return self._write(_op, "insert", model)

    def update(self, model, record_id: int, patch: dict, *, expect: dict | None = None) -> bool:
        """
        Patch one record through the ORM (so version counters advance).

        With `expect`, the patch applies only if the locked row still has
        those values: a conditional state transition. Returns False when the
        row is missing or the expectation does not hold.
        """
        def _op():
            obj = db.session.query(model).filter_by(id=record_id).with_for_update().first()
            if obj is None:
                return False
            for key, value in (expect or {}).items():
                if getattr(obj, key) != value:
                    return False
            for key, value in patch.items():
                setattr(obj, key, value)
            db.session.flush()
            return True
        return self._write(_op, "update", model)

    def delete(self, model, record_id: int) -> bool:
        def _op():
            count = (
                db.session.query(model)
                .filter_by(id=record_id)
                .delete(synchronize_session="fetch")
            )
            return count > 0
        return self._write(_op, "delete", model)

    def increment_field(
        self,
        model,
        record_id: int,
        field: str,
        delta: int,
        *,
        floor: int | None = None,
    ) -> int | None:
        """
        Atomically add `delta` to a numeric column and return the new value.

        With `floor`, the update only applies if the result stays >= floor;
        None is returned when the guard rejects it. A missing row raises
        NotFoundError.
        """
        column = getattr(model, field)

        def _op():
            stmt = update(model).where(model.id == record_id)
            if floor is not None:
                stmt = stmt.where(column + delta >= floor)
            stmt = stmt.values({field: column + delta}).execution_options(synchronize_session="fetch")
            result = db.session.execute(stmt)
            if result.rowcount == 0:
                exists = db.session.query(model.id).filter(model.id == record_id).first()
                if exists is None:
                    raise NotFoundError(f"{_table(model)} {record_id} not found")
                return None
            return db.session.query(column).filter(model.id == record_id).scalar()
        return self._write(_op, "update", model)

    # -------------------------------------------------------------------------
    # reads
    # -------------------------------------------------------------------------

    def get(self, model, record_id: int):
        return self._read(lambda: db.session.get(model, record_id), model)

    def query(
        self,
        model,
        filters: dict | None = None,
        order_by: list[str] | tuple[str, ...] | None = None,
        limit: int | None = None,
    ) -> list:
        """
        Simple filtered query.

        filters: column -> value (lists/tuples become IN).
        order_by: column names, '-' prefix for descending.
        """
        def _op():
            q = db.session.query(model)
            for key, value in (filters or {}).items():
                column = getattr(model, key)
                if isinstance(value, (list, tuple, set)):
                    q = q.filter(column.in_(list(value)))
                else:
                    q = q.filter(column == value)
            for key in order_by or ():
                column = getattr(model, key.lstrip("-"))
                q = q.order_by(column.desc() if key.startswith("-") else column.asc())
            if limit:
                q = q.limit(limit)
            return q.all()
        return self._read(_op, model)


default_repository = Repository()


def get_repository(repository: Repository | None = None) -> Repository:
    return repository if repository is not None else default_repository
