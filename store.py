from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime
from typing import Generic, Optional, TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from database import Base
from errors import ExternalStoreError, NotFoundError
from invoice_cycle import month_key
from models import Card, CardClosingOverride

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


class SystemClock:
    def __init__(self, timezone: Optional[str] = None) -> None:
        self.tz = ZoneInfo(timezone or get_settings().timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz).replace(tzinfo=None)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def now(self) -> datetime:
        return self.moment

    def today(self) -> date:
        return self.moment.date()


class RecordStore(Generic[ModelT]):
    """Per-call committing create/read/update/delete over one mapped model.

    Each write is its own unit of work; callers that touch several records
    issue the writes one after another and get no cross-record atomicity.
    """

    def __init__(self, session: Session, model: type[ModelT]) -> None:
        self.session = session
        self.model = model

    def _fail(self, action: str, exc: SQLAlchemyError) -> ExternalStoreError:
        self.session.rollback()
        logger.error(
            f"store_error: model={self.model.__tablename__} action={action} error={exc}"
        )
        return ExternalStoreError(f"Could not {action} {self.model.__tablename__}")

    def create(self, record: ModelT) -> int:
        try:
            self.session.add(record)
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("create", exc) from exc
        return record.id

    def get_by_id(self, record_id: int) -> Optional[ModelT]:
        try:
            return self.session.get(self.model, record_id)
        except SQLAlchemyError as exc:
            raise self._fail("read", exc) from exc

    def require(self, record_id: int) -> ModelT:
        record = self.get_by_id(record_id)
        if record is None:
            raise NotFoundError(f"{self.model.__name__} {record_id} not found")
        return record

    def list_by_filter(self, *criteria, order_by: Iterable = ()) -> list[ModelT]:
        stmt = select(self.model).where(*criteria)
        order = list(order_by) or [self.model.id]
        stmt = stmt.order_by(*order)
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise self._fail("list", exc) from exc

    def update(self, record_id: int, **fields) -> ModelT:
        record = self.require(record_id)
        for name, value in fields.items():
            setattr(record, name, value)
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("update", exc) from exc
        return record

    def delete(self, record_id: int) -> None:
        record = self.require(record_id)
        try:
            self.session.delete(record)
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("delete", exc) from exc

    def delete_many(self, record_ids: Iterable[int]) -> int:
        ids = list(record_ids)
        if not ids:
            return 0
        try:
            result = self.session.execute(
                delete(self.model)
                .where(self.model.id.in_(ids))
                .execution_options(synchronize_session="fetch")
            )
            self.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail("delete", exc) from exc
        return int(result.rowcount or 0)


def closing_day_for(session: Session, card: Card, on_date: date) -> int:
    """Closing day of ``card`` for a purchase on ``on_date``; a month override wins."""
    overrides = RecordStore(session, CardClosingOverride).list_by_filter(
        CardClosingOverride.card_id == card.id,
        CardClosingOverride.period == month_key(on_date),
    )
    if overrides:
        return overrides[0].closing_day
    return card.closing_day
