"""
Uniform access to the named record collections.

Every call returns a `GatewayResult` instead of raising, mirroring the hosted
row store the browser client used to talk to: either `data` is set, or `error`
is, or neither is (the query ran fine and matched nothing). Callers must treat
that third outcome on its own; it is how a missing stock or a permission gap
shows up.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .logging_config import get_logger
from .models import Draft, League, Portfolio, PortfolioHolding, Profile, Stock, Transaction

logger = get_logger(__name__)

COLLECTIONS: dict[str, type] = {
    "Leagues": League,
    "Portfolios": Portfolio,
    "Portfolio Holdings": PortfolioHolding,
    "Transactions": Transaction,
    "Drafts": Draft,
    "Stocks": Stock,
    "Profiles": Profile,
}

FETCH_MODES = ("many", "maybe_single", "single")


@dataclass
class GatewayError:
    message: str
    kind: str = "backend"
    is_conflict: bool = False


@dataclass
class GatewayResult:
    data: Any = None
    error: GatewayError | None = None
    count: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def describe_exception(exc: SQLAlchemyError) -> GatewayError:
    orig = getattr(exc, "orig", None)
    message = str(orig) if orig is not None else str(exc)
    return GatewayError(
        message=message.strip() or exc.__class__.__name__,
        kind=exc.__class__.__name__,
        is_conflict=isinstance(exc, IntegrityError),
    )


class DataGateway:
    def __init__(self, db: Session):
        self.db = db

    def model_for(self, collection: str) -> type:
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection '{collection}'") from None

    def _criteria(self, model: type, eq: Mapping[str, Any] | None, where: Iterable[Any]) -> list[Any]:
        criteria = [getattr(model, column) == value for column, value in (eq or {}).items()]
        criteria.extend(where)
        return criteria

    def _ordering(self, model: type, order_by: Sequence[str]) -> list[Any]:
        clauses = []
        for spec in order_by:
            column = getattr(model, spec.lstrip("-"))
            clauses.append(column.desc() if spec.startswith("-") else column.asc())
        return clauses

    def select(
        self,
        collection: str,
        *,
        eq: Mapping[str, Any] | None = None,
        where: Iterable[Any] = (),
        order_by: Sequence[str] = (),
        limit: int | None = None,
        mode: str = "many",
        for_update: bool = False,
    ) -> GatewayResult:
        """
        Filtered select.

        `mode="many"` returns a list (possibly empty). `maybe_single` returns one row or
        None and errors on more than one. `single` errors unless exactly one row matches.
        Rows are always re-read from the store, never served stale from the session.
        """
        if mode not in FETCH_MODES:
            raise ValueError(f"Unknown fetch mode '{mode}'")
        model = self.model_for(collection)
        stmt = select(model).where(*self._criteria(model, eq, where))
        ordering = self._ordering(model, order_by)
        if ordering:
            stmt = stmt.order_by(*ordering)
        if limit is not None:
            stmt = stmt.limit(limit)
        if for_update:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)

        try:
            rows = list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            error = describe_exception(exc)
            logger.warning("select on %s failed: %s", collection, error.message)
            return GatewayResult(error=error)

        if mode == "many":
            return GatewayResult(data=rows, count=len(rows))
        if len(rows) > 1:
            return GatewayResult(
                error=GatewayError(
                    message=f"Results contain {len(rows)} rows, expected at most one",
                    kind="cardinality",
                ),
                count=len(rows),
            )
        if mode == "single" and not rows:
            return GatewayResult(
                error=GatewayError(message="Results contain 0 rows, expected exactly one", kind="cardinality"),
                count=0,
            )
        return GatewayResult(data=rows[0] if rows else None, count=len(rows))

    def insert(self, collection: str, values: Mapping[str, Any]) -> GatewayResult:
        model = self.model_for(collection)
        row = model(**dict(values))
        try:
            with self.db.begin_nested():
                self.db.add(row)
                self.db.flush()
        except SQLAlchemyError as exc:
            error = describe_exception(exc)
            logger.warning("insert into %s failed: %s", collection, error.message)
            return GatewayResult(error=error)
        return GatewayResult(data=row, count=1)

    def update(
        self,
        collection: str,
        values: Mapping[str, Any],
        *,
        eq: Mapping[str, Any] | None = None,
        where: Iterable[Any] = (),
    ) -> GatewayResult:
        """
        Update matching rows and return them re-read by the `eq` filters.

        Values may be SQL expressions over the row's own columns; they are evaluated by
        the store against the stored values, so `Portfolio.reserve_value - cost` is a
        single atomic decrement. `count` is the number of rows the update touched.
        """
        model = self.model_for(collection)
        stmt = (
            update(model)
            .where(*self._criteria(model, eq, where))
            .values(**dict(values))
            .execution_options(synchronize_session=False)
        )
        try:
            with self.db.begin_nested():
                affected = self.db.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            error = describe_exception(exc)
            logger.warning("update on %s failed: %s", collection, error.message)
            return GatewayResult(error=error)

        if not affected:
            return GatewayResult(data=[], count=0)
        reread = self.select(collection, eq=eq)
        if reread.error:
            return reread
        return GatewayResult(data=reread.data, count=affected)

    def delete(
        self,
        collection: str,
        *,
        eq: Mapping[str, Any] | None = None,
        where: Iterable[Any] = (),
    ) -> GatewayResult:
        model = self.model_for(collection)
        criteria = self._criteria(model, eq, where)
        if not criteria:
            raise ValueError("delete requires at least one filter")
        stmt = delete(model).where(*criteria).execution_options(synchronize_session=False)
        try:
            with self.db.begin_nested():
                affected = self.db.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            error = describe_exception(exc)
            logger.warning("delete on %s failed: %s", collection, error.message)
            return GatewayResult(error=error)
        return GatewayResult(data=None, count=affected)
