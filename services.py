from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from csv_utils import NormalizedStatement, export_records, normalize_statement, read_statement
from errors import LedgerError, NotFoundError, PartialBatchFailure, ValidationError
from installments import (
    InstallmentPreview,
    InstallmentSeed,
    plan_series,
    preview_next,
)
from invoice_cycle import invoice_period, month_bounds, month_key, parse_month_key
from models import (
    Card,
    CardClosingOverride,
    Category,
    LedgerRecord,
    Member,
    PaymentMethod,
    RecordStatus,
    RecurringTemplate,
    TransactionKind,
)
from recurrence import MaterializeResult, RecurringEngine
from schemas import (
    CardIn,
    ClosingOverrideIn,
    ImportOptions,
    LedgerRecordIn,
    LedgerRecordUpdate,
    LedgerView,
    MemberIn,
    RecurringTemplateIn,
    SeriesOptions,
    StatementDraft,
)
from store import RecordStore, SystemClock, closing_day_for

logger = logging.getLogger(__name__)


def _unique(ids: list[int]) -> list[int]:
    seen: set[int] = set()
    ordered: list[int] = []
    for record_id in ids:
        if record_id not in seen:
            seen.add(record_id)
            ordered.append(record_id)
    return ordered


@dataclass
class LedgerFilters:
    kind: Optional[TransactionKind] = None
    category: Optional[Category] = None
    card_id: Optional[int] = None
    member_id: Optional[int] = None
    status: Optional[RecordStatus] = None
    query: Optional[str] = None

    def criteria(self) -> list:
        clauses = []
        if self.kind:
            clauses.append(LedgerRecord.kind == self.kind)
        if self.category:
            clauses.append(LedgerRecord.category == self.category)
        if self.card_id:
            clauses.append(LedgerRecord.card_id == self.card_id)
        if self.member_id:
            clauses.append(LedgerRecord.spender_member_id == self.member_id)
        if self.status:
            clauses.append(LedgerRecord.status == self.status)
        if self.query:
            like = f"%{self.query.lower()}%"
            clauses.append(func.lower(LedgerRecord.description).like(like))
        return clauses


@dataclass
class SelectionExpansion:
    ids: list[int]
    visible_count: int
    cascade_count: int

    @property
    def needs_confirmation(self) -> bool:
        return self.cascade_count > self.visible_count


@dataclass
class BulkResult:
    requested: list[int]
    succeeded: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    selection: Optional[SelectionExpansion] = None

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialBatchFailure(
                f"{len(self.failed)} of {len(self.requested)} records failed",
                succeeded=self.succeeded,
                failed=self.failed,
            )


@dataclass
class MemberTotal:
    member_id: Optional[int]
    member_name: str
    total_cents: int
    count: int


@dataclass
class InvoiceSummary:
    card_id: int
    card_name: str
    period: str
    total_cents: int
    records: list[LedgerRecord]
    by_member: list[MemberTotal]


@dataclass
class CardInvoiceTotal:
    card_id: int
    card_name: str
    total_cents: int


@dataclass
class MonthSummary:
    period: str
    income_cents: int
    fixed_expense_cents: int
    variable_expense_cents: int
    card_invoices: list[CardInvoiceTotal]

    @property
    def card_total_cents(self) -> int:
        return sum(item.total_cents for item in self.card_invoices)

    @property
    def balance_cents(self) -> int:
        return (
            self.income_cents
            - self.fixed_expense_cents
            - self.variable_expense_cents
            - self.card_total_cents
        )


class CardService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.cards = RecordStore(session, Card)
        self.overrides = RecordStore(session, CardClosingOverride)

    def list(self) -> list[Card]:
        return self.cards.list_by_filter(order_by=[Card.name, Card.id])

    def get(self, card_id: int) -> Card:
        card = self.cards.get_by_id(card_id)
        if not card:
            raise NotFoundError("Card not found")
        return card

    def create(self, data: CardIn) -> Card:
        card = Card(**data.model_dump())
        self.cards.create(card)
        return card

    def update(self, card_id: int, data: CardIn) -> Card:
        self.get(card_id)
        return self.cards.update(card_id, **data.model_dump())

    def delete(self, card_id: int) -> None:
        self.get(card_id)
        in_use = self.session.scalar(
            select(func.count(LedgerRecord.id)).where(LedgerRecord.card_id == card_id)
        )
        if in_use:
            raise ValidationError("Card still has ledger records")
        templates = self.session.scalar(
            select(func.count(RecurringTemplate.id)).where(
                RecurringTemplate.card_id == card_id
            )
        )
        if templates:
            raise ValidationError("Card is still used by recurring templates")
        self.cards.delete(card_id)

    def set_closing_override(
        self, card_id: int, data: ClosingOverrideIn
    ) -> CardClosingOverride:
        self.get(card_id)
        parse_month_key(data.period)
        existing = self.overrides.list_by_filter(
            CardClosingOverride.card_id == card_id,
            CardClosingOverride.period == data.period,
        )
        if existing:
            return self.overrides.update(existing[0].id, closing_day=data.closing_day)
        override = CardClosingOverride(
            card_id=card_id, period=data.period, closing_day=data.closing_day
        )
        self.overrides.create(override)
        return override

    def remove_closing_override(self, card_id: int, period: str) -> None:
        existing = self.overrides.list_by_filter(
            CardClosingOverride.card_id == card_id,
            CardClosingOverride.period == period,
        )
        if not existing:
            raise NotFoundError("Closing override not found")
        self.overrides.delete(existing[0].id)

    def closing_day(self, card_id: int, on_date: date) -> int:
        return closing_day_for(self.session, self.get(card_id), on_date)


class MemberService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.members = RecordStore(session, Member)

    def list(self) -> list[Member]:
        return self.members.list_by_filter(order_by=[Member.name, Member.id])

    def get(self, member_id: int) -> Member:
        member = self.members.get_by_id(member_id)
        if not member:
            raise NotFoundError("Member not found")
        return member

    def create(self, data: MemberIn) -> Member:
        if data.card_id is not None:
            CardService(self.session).get(data.card_id)
        member = Member(name=data.name.strip(), card_id=data.card_id)
        self.members.create(member)
        return member

    def delete(self, member_id: int) -> None:
        self.get(member_id)
        self.members.delete(member_id)


class LedgerService:
    def __init__(self, session: Session, clock=None) -> None:
        self.session = session
        self.clock = clock or SystemClock()
        self.records = RecordStore(session, LedgerRecord)

    def _card(self, card_id: Optional[int]) -> Optional[Card]:
        if card_id is None:
            return None
        return CardService(self.session).get(card_id)

    def _check_member(self, member_id: Optional[int]) -> None:
        if member_id is not None:
            MemberService(self.session).get(member_id)

    def _invoice_for(
        self, card: Optional[Card], on_date: date, use_purchase_date_logic: bool = True
    ) -> Optional[str]:
        if card is None:
            return None
        if not use_purchase_date_logic:
            return month_key(on_date)
        return invoice_period(on_date, closing_day_for(self.session, card, on_date))

    def get(self, record_id: int) -> LedgerRecord:
        record = self.records.get_by_id(record_id)
        if not record:
            raise NotFoundError("Record not found")
        return record

    def create(
        self, data: LedgerRecordIn, options: Optional[SeriesOptions] = None
    ) -> LedgerRecord:
        """Create one record, or a full installment series when parceled.

        For a series the record at ``data.installment_index`` is returned.
        """
        options = options or SeriesOptions()
        if data.installment_count > 1:
            series = self.create_series(data, options)
            return next(
                r for r in series if r.installment_index == data.installment_index
            )

        card = self._card(data.card_id)
        self._check_member(data.spender_member_id)
        record = LedgerRecord(
            description=data.description.strip(),
            amount_cents=data.amount_cents,
            category=data.category,
            kind=data.kind,
            date=data.date,
            payment_method=data.payment_method,
            card_id=data.card_id,
            invoice_period=self._invoice_for(
                card, data.date, options.use_purchase_date_logic
            ),
            spender_member_id=data.spender_member_id,
            creator_member_id=data.creator_member_id,
            status=data.status,
        )
        self.records.create(record)
        logger.info(
            f"record_created: id={record.id} invoice={record.invoice_period or '-'}"
        )
        return record

    def create_series(
        self, data: LedgerRecordIn, options: Optional[SeriesOptions] = None
    ) -> list[LedgerRecord]:
        options = options or SeriesOptions()
        card = self._card(data.card_id)
        self._check_member(data.spender_member_id)

        def closing(on_date: date) -> int:
            return closing_day_for(self.session, card, on_date)

        plan = plan_series(
            InstallmentSeed(
                description=data.description,
                amount_cents=data.amount_cents,
                date=data.date,
                installment_index=data.installment_index,
                installment_count=data.installment_count,
                card_id=data.card_id,
                amount_is_total=data.amount_is_total,
            ),
            generate_future=options.generate_future,
            generate_past=options.generate_past,
            use_purchase_date_logic=options.use_purchase_date_logic,
            closing_day=closing if card is not None else None,
        )

        created: list[LedgerRecord] = []
        for item in plan.items:
            record = LedgerRecord(
                description=plan.description,
                amount_cents=item.amount_cents,
                category=data.category,
                kind=data.kind,
                date=item.date,
                payment_method=data.payment_method,
                card_id=data.card_id,
                invoice_period=item.invoice_period,
                spender_member_id=data.spender_member_id,
                creator_member_id=data.creator_member_id,
                status=data.status,
                is_installment=True,
                installment_group_id=plan.group_id,
                installment_index=item.installment_index,
                installment_count=plan.installment_count,
                installment_amount_cents=plan.installment_amount_cents,
            )
            try:
                self.records.create(record)
            except LedgerError as exc:
                raise PartialBatchFailure(
                    f"Installment series stopped at {item.installment_index}/"
                    f"{plan.installment_count}",
                    succeeded=[r.id for r in created],
                    failed={item.installment_index: str(exc)},
                ) from exc
            created.append(record)

        logger.info(
            f"series_created: group={plan.group_id} records={len(created)} "
            f"count={plan.installment_count}"
        )
        return created

    def update(self, record_id: int, data: LedgerRecordUpdate) -> LedgerRecord:
        record = self.get(record_id)
        fields = data.model_dump(exclude_unset=True, exclude={"propagate_member"})
        member_set = "spender_member_id" in fields
        member_id = fields.pop("spender_member_id", None)

        if "card_id" in fields:
            if record.payment_method != PaymentMethod.credit_card:
                raise ValidationError("Only credit card records may reference a card")
            if fields["card_id"] is None:
                raise ValidationError("Credit card records require a card")
        if "description" in fields:
            fields["description"] = fields["description"].strip()

        new_date = fields.get("date", record.date)
        new_card_id = fields.get("card_id", record.card_id)
        if record.payment_method == PaymentMethod.credit_card and (
            new_date != record.date or new_card_id != record.card_id
        ):
            fields["invoice_period"] = self._invoice_for(self._card(new_card_id), new_date)

        group_id = record.installment_group_id if record.is_installment else None
        description = fields.get("description")
        if fields:
            record = self.records.update(record_id, **fields)

        # Siblings share one description; keep the group consistent.
        if group_id and description is not None:
            for sibling in self.siblings(group_id):
                if sibling.id != record_id and sibling.description != description:
                    self.records.update(sibling.id, description=description)

        if member_set:
            if data.propagate_member:
                MemberAssignmentService(self.session).assign_member(record_id, member_id)
            else:
                self._check_member(member_id)
                self.records.update(record_id, spender_member_id=member_id)
        return self.get(record_id)

    def set_status(self, record_id: int, status: RecordStatus) -> LedgerRecord:
        self.get(record_id)
        return self.records.update(record_id, status=status)

    def delete(self, record_id: int, cascade: bool = False) -> list[int]:
        record = self.get(record_id)
        group_id = record.installment_group_id if record.is_installment else None
        if cascade and group_id:
            ids = [r.id for r in self.siblings(group_id)]
            self.records.delete_many(ids)
            logger.info(f"group_deleted: group={group_id} records={len(ids)}")
            return ids
        self.records.delete(record_id)
        return [record_id]

    def siblings(self, group_id: str) -> list[LedgerRecord]:
        return self.records.list_by_filter(
            LedgerRecord.installment_group_id == group_id,
            order_by=[LedgerRecord.installment_index, LedgerRecord.id],
        )

    def list_for_period(
        self, period: str, filters: Optional[LedgerFilters] = None
    ) -> list[LedgerRecord]:
        filters = filters or LedgerFilters()
        bounds = month_bounds(period)
        in_period = or_(
            and_(
                LedgerRecord.payment_method == PaymentMethod.credit_card,
                LedgerRecord.invoice_period == period,
            ),
            and_(
                LedgerRecord.payment_method != PaymentMethod.credit_card,
                LedgerRecord.date.between(bounds.start, bounds.end),
            ),
        )
        return self.records.list_by_filter(
            in_period,
            *filters.criteria(),
            order_by=[LedgerRecord.date, LedgerRecord.id],
        )

    def history(self, filters: Optional[LedgerFilters] = None) -> list[LedgerRecord]:
        """All records with each installment group shown once (its lowest index)."""
        filters = filters or LedgerFilters()
        records = self.records.list_by_filter(*filters.criteria())
        representatives: dict[str, LedgerRecord] = {}
        singles: list[LedgerRecord] = []
        for record in records:
            group_id = record.installment_group_id
            if not (record.is_installment and group_id):
                singles.append(record)
                continue
            current = representatives.get(group_id)
            if current is None or record.installment_index < current.installment_index:
                representatives[group_id] = record
        combined = singles + list(representatives.values())
        combined.sort(key=lambda r: (r.date, r.id), reverse=True)
        return combined

    def installment_preview(
        self,
        record_id: int,
        viewed_period: Optional[str] = None,
        use_purchase_date_logic: bool = True,
    ) -> InstallmentPreview:
        record = self.get(record_id)
        if not record.is_installment:
            raise ValidationError("Record is not an installment")
        if viewed_period:
            parse_month_key(viewed_period)
        return preview_next(
            record.installment_index,
            record.installment_count,
            seed_date=record.date,
            viewed_period=viewed_period or record.invoice_period,
            use_purchase_date_logic=use_purchase_date_logic,
        )

    def export(self, period: str, filters: Optional[LedgerFilters] = None) -> str:
        return export_records(self.list_for_period(period, filters))


class MemberAssignmentService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.records = RecordStore(session, LedgerRecord)

    def assign_member(self, record_id: int, member_id: Optional[int]) -> list[int]:
        """Assign ``member_id`` to a record and, for installments, every sibling.

        Unlike bulk reassignment this fans out to the whole group. The first
        failing write stops the propagation.
        """
        record = self.records.get_by_id(record_id)
        if not record:
            raise NotFoundError("Record not found")
        if member_id is not None:
            MemberService(self.session).get(member_id)

        group_id = record.installment_group_id if record.is_installment else None
        self.records.update(record_id, spender_member_id=member_id)
        updated = [record_id]
        if group_id:
            siblings = self.records.list_by_filter(
                LedgerRecord.installment_group_id == group_id,
                LedgerRecord.id != record_id,
                order_by=[LedgerRecord.installment_index],
            )
            for sibling in siblings:
                sibling_id = sibling.id
                try:
                    self.records.update(sibling_id, spender_member_id=member_id)
                except LedgerError as exc:
                    raise PartialBatchFailure(
                        "Member assignment stopped before reaching every installment",
                        succeeded=updated,
                        failed={sibling_id: str(exc)},
                    ) from exc
                updated.append(sibling_id)

        logger.info(
            f"assign_member: record={record_id} member={member_id} updated={len(updated)}"
        )
        return updated


class BulkLedgerService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.records = RecordStore(session, LedgerRecord)

    def expand_history_selection(self, ids: list[int]) -> SelectionExpansion:
        """Expand history-view representatives to every sibling of their group."""
        visible = _unique(ids)
        expanded: list[int] = []
        for record_id in visible:
            record = self.records.get_by_id(record_id)
            if record is None or not (record.is_installment and record.installment_group_id):
                expanded.append(record_id)
                continue
            siblings = self.records.list_by_filter(
                LedgerRecord.installment_group_id == record.installment_group_id,
                order_by=[LedgerRecord.installment_index, LedgerRecord.id],
            )
            expanded.extend(s.id for s in siblings)
        expanded = _unique(expanded)
        return SelectionExpansion(
            ids=expanded, visible_count=len(visible), cascade_count=len(expanded)
        )

    def bulk_delete(self, ids: list[int], view: LedgerView = LedgerView.period) -> BulkResult:
        selection = None
        targets = _unique(ids)
        if view == LedgerView.history:
            selection = self.expand_history_selection(ids)
            targets = selection.ids
            if selection.needs_confirmation:
                logger.warning(
                    f"bulk_delete_cascade: selected={selection.visible_count} "
                    f"deleting={selection.cascade_count}"
                )

        result = BulkResult(requested=targets, selection=selection)
        for record_id in targets:
            try:
                self.records.delete(record_id)
            except LedgerError as exc:
                logger.warning(f"bulk_delete_failed: record={record_id} error={exc}")
                result.failed[record_id] = str(exc)
                continue
            result.succeeded.append(record_id)
        logger.info(
            f"bulk_delete: requested={len(targets)} deleted={len(result.succeeded)} "
            f"failed={len(result.failed)}"
        )
        return result

    def bulk_reassign_member(self, ids: list[int], member_id: Optional[int]) -> BulkResult:
        # Acts on the explicit selection only; installment siblings are untouched.
        if member_id is not None:
            MemberService(self.session).get(member_id)
        targets = _unique(ids)
        result = BulkResult(requested=targets)
        for record_id in targets:
            try:
                self.records.update(record_id, spender_member_id=member_id)
            except LedgerError as exc:
                logger.warning(f"bulk_reassign_failed: record={record_id} error={exc}")
                result.failed[record_id] = str(exc)
                continue
            result.succeeded.append(record_id)
        logger.info(
            f"bulk_reassign: member={member_id} requested={len(targets)} "
            f"updated={len(result.succeeded)} failed={len(result.failed)}"
        )
        return result


class RecurringTemplateService:
    def __init__(self, session: Session, clock=None) -> None:
        self.session = session
        self.clock = clock or SystemClock()
        self.templates = RecordStore(session, RecurringTemplate)

    def list(self) -> list[RecurringTemplate]:
        return self.templates.list_by_filter(
            order_by=[RecurringTemplate.day_of_month, RecurringTemplate.id]
        )

    def get(self, template_id: int) -> RecurringTemplate:
        template = self.templates.get_by_id(template_id)
        if not template:
            raise NotFoundError("Template not found")
        return template

    def _check_refs(self, data: RecurringTemplateIn) -> None:
        if data.card_id is not None:
            CardService(self.session).get(data.card_id)
        if data.spender_member_id is not None:
            MemberService(self.session).get(data.spender_member_id)

    def create(self, data: RecurringTemplateIn) -> RecurringTemplate:
        self._check_refs(data)
        template = RecurringTemplate(**data.model_dump())
        self.templates.create(template)
        return template

    def update(self, template_id: int, data: RecurringTemplateIn) -> RecurringTemplate:
        self.get(template_id)
        self._check_refs(data)
        return self.templates.update(template_id, **data.model_dump())

    def toggle_active(self, template_id: int, active: bool) -> RecurringTemplate:
        self.get(template_id)
        return self.templates.update(template_id, active=active)

    def delete(self, template_id: int) -> None:
        self.get(template_id)
        self.templates.delete(template_id)

    def materialize(self, period: Optional[str] = None) -> MaterializeResult:
        return RecurringEngine(self.session, self.clock).materialize_active(period)


class StatementImportService:
    def __init__(self, session: Session, clock=None) -> None:
        self.session = session
        self.clock = clock or SystemClock()

    def preview(
        self, content: str, reference_period: Optional[str] = None
    ) -> NormalizedStatement:
        if reference_period:
            parse_month_key(reference_period)
        rows = read_statement(content)
        return normalize_statement(
            rows, today=self.clock.today(), reference_period=reference_period
        )

    def commit(
        self, drafts: list[StatementDraft], options: ImportOptions
    ) -> list[LedgerRecord]:
        if options.card_id is not None:
            CardService(self.session).get(options.card_id)
        payment_method = (
            PaymentMethod.credit_card
            if options.card_id is not None
            else PaymentMethod.cash_or_transfer
        )
        series_options = SeriesOptions(
            generate_future=options.generate_future,
            generate_past=options.generate_past,
            use_purchase_date_logic=options.use_purchase_date_logic,
        )
        ledger = LedgerService(self.session, self.clock)
        created: list[LedgerRecord] = []
        for draft in drafts:
            if not draft.selected:
                continue
            try:
                data = LedgerRecordIn(
                    description=draft.description,
                    amount_cents=draft.amount_cents,
                    category=draft.category,
                    kind=draft.kind,
                    date=draft.date,
                    payment_method=payment_method,
                    card_id=options.card_id,
                    spender_member_id=options.spender_member_id,
                    creator_member_id=options.creator_member_id,
                    installment_index=draft.installment_index or 1,
                    installment_count=draft.installment_count or 1,
                )
            except SchemaValidationError as exc:
                raise PartialBatchFailure(
                    f"Import stopped at {draft.key}",
                    succeeded=[r.id for r in created],
                    failed={draft.key: str(exc)},
                ) from exc
            try:
                if data.installment_count > 1:
                    created.extend(ledger.create_series(data, series_options))
                else:
                    created.append(ledger.create(data, series_options))
            except PartialBatchFailure as exc:
                succeeded = [r.id for r in created] + exc.succeeded
                raise PartialBatchFailure(
                    f"Import stopped at {draft.key}",
                    succeeded=succeeded,
                    failed={draft.key: str(exc)},
                ) from exc
            except LedgerError as exc:
                raise PartialBatchFailure(
                    f"Import stopped at {draft.key}",
                    succeeded=[r.id for r in created],
                    failed={draft.key: str(exc)},
                ) from exc

        logger.info(f"statement_committed: drafts={len(drafts)} records={len(created)}")
        return created


class InvoiceService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.records = RecordStore(session, LedgerRecord)

    def _member_names(self) -> dict[int, str]:
        return {m.id: m.name for m in MemberService(self.session).list()}

    @staticmethod
    def _signed(record: LedgerRecord) -> int:
        # Card credits (refunds) reduce the invoice.
        if record.kind == TransactionKind.income:
            return -record.amount_cents
        return record.amount_cents

    def summary(self, card_id: int, period: str) -> InvoiceSummary:
        parse_month_key(period)
        card = CardService(self.session).get(card_id)
        records = self.records.list_by_filter(
            LedgerRecord.card_id == card_id,
            LedgerRecord.invoice_period == period,
            order_by=[LedgerRecord.date, LedgerRecord.id],
        )
        names = self._member_names()
        totals: dict[Optional[int], MemberTotal] = {}
        for record in records:
            member_id = record.spender_member_id
            entry = totals.get(member_id)
            if entry is None:
                name = names.get(member_id, "Unassigned") if member_id else "Unassigned"
                entry = totals[member_id] = MemberTotal(member_id, name, 0, 0)
            entry.total_cents += self._signed(record)
            entry.count += 1
        return InvoiceSummary(
            card_id=card.id,
            card_name=card.name,
            period=period,
            total_cents=sum(self._signed(r) for r in records),
            records=records,
            by_member=sorted(totals.values(), key=lambda t: t.total_cents, reverse=True),
        )

    def month_summary(self, period: str) -> MonthSummary:
        records = LedgerService(self.session).list_for_period(period)
        income = 0
        fixed = 0
        variable = 0
        cards: dict[int, int] = {}
        for record in records:
            if record.payment_method == PaymentMethod.credit_card:
                cards[record.card_id] = cards.get(record.card_id, 0) + self._signed(record)
            elif record.kind == TransactionKind.income:
                income += record.amount_cents
            elif record.kind == TransactionKind.fixed_expense:
                fixed += record.amount_cents
            else:
                variable += record.amount_cents
        card_names = {c.id: c.name for c in CardService(self.session).list()}
        return MonthSummary(
            period=period,
            income_cents=income,
            fixed_expense_cents=fixed,
            variable_expense_cents=variable,
            card_invoices=[
                CardInvoiceTotal(card_id, card_names.get(card_id, ""), total)
                for card_id, total in sorted(cards.items())
            ],
        )
