import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import LedgerError
from invoice_cycle import clamp_day, invoice_period, month_key, parse_month_key
from models import (
    Card,
    LedgerRecord,
    PaymentMethod,
    RecordStatus,
    RecurringTemplate,
)
from store import RecordStore, SystemClock, closing_day_for

logger = logging.getLogger(__name__)


@dataclass
class MaterializeResult:
    period: str
    created: list[LedgerRecord] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)


def template_applies(template: RecurringTemplate, period: str) -> bool:
    if not template.active:
        return False
    if template.start_period and period < template.start_period:
        return False
    if template.end_period and period > template.end_period:
        return False
    return True


def occurrence_date(template: RecurringTemplate, period: str) -> date:
    return clamp_day(period, template.day_of_month)


class RecurringEngine:
    def __init__(self, session: Session, clock=None) -> None:
        self.session = session
        self.clock = clock or SystemClock()
        self.records = RecordStore(session, LedgerRecord)
        self.templates = RecordStore(session, RecurringTemplate)
        self.cards = RecordStore(session, Card)

    def materialize(
        self, templates: Iterable[RecurringTemplate], reference_period: str
    ) -> MaterializeResult:
        """Create the missing instance of each template for ``reference_period``.

        Safe to run repeatedly: a template that already has an instance for
        the period is skipped. A failing template is logged and reported in
        ``failed`` without stopping the others.
        """
        parse_month_key(reference_period)
        result = MaterializeResult(period=reference_period)
        for template in list(templates):
            template_id = template.id
            if not template_applies(template, reference_period):
                result.skipped.append(template_id)
                continue
            try:
                record = self._materialize_one(template, reference_period)
            except (LedgerError, SQLAlchemyError) as exc:
                if isinstance(exc, SQLAlchemyError):
                    self.session.rollback()
                logger.exception(
                    f"materialize_failed: template={template_id} period={reference_period}"
                )
                result.failed[template_id] = str(exc)
                continue
            if record is None:
                result.skipped.append(template_id)
            else:
                result.created.append(record)

        logger.info(
            f"materialize: period={reference_period} created={len(result.created)} "
            f"skipped={len(result.skipped)} failed={len(result.failed)}"
        )
        return result

    def materialize_active(self, reference_period: Optional[str] = None) -> MaterializeResult:
        period = reference_period or month_key(self.clock.today())
        templates = self.templates.list_by_filter(RecurringTemplate.active.is_(True))
        return self.materialize(templates, period)

    def _materialize_one(
        self, template: RecurringTemplate, period: str
    ) -> Optional[LedgerRecord]:
        existing = self.records.list_by_filter(
            LedgerRecord.recurring_template_id == template.id,
            LedgerRecord.recurring_period == period,
        )
        if existing:
            return None

        on_date = occurrence_date(template, period)
        card_id = None
        invoice = None
        if template.payment_method == PaymentMethod.credit_card:
            card = self.cards.require(template.card_id)
            card_id = card.id
            invoice = invoice_period(on_date, closing_day_for(self.session, card, on_date))

        record = LedgerRecord(
            description=template.description,
            amount_cents=template.amount_cents,
            category=template.category,
            kind=template.kind,
            date=on_date,
            payment_method=template.payment_method,
            card_id=card_id,
            invoice_period=invoice,
            spender_member_id=template.spender_member_id,
            status=RecordStatus.pending,
            is_recurring=True,
            recurring_template_id=template.id,
            recurring_period=period,
        )
        self.records.create(record)
        return record
