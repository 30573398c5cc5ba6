from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import NotFoundError, ValidationError
from models import Category, LedgerRecord, PaymentMethod, RecordStatus, TransactionKind
from schemas import (
    CardIn,
    ClosingOverrideIn,
    LedgerRecordIn,
    LedgerRecordUpdate,
    MemberIn,
    SeriesOptions,
)
from services import (
    CardService,
    InvoiceService,
    LedgerService,
    MemberService,
)
from store import FixedClock

CLOCK = FixedClock(datetime(2025, 3, 20, 12, 0))


def _setup(session: Session):
    card = CardService(session).create(
        CardIn(name="Nubank", closing_day=10, due_day=17, limit_cents=800000)
    )
    members = MemberService(session)
    alice = members.create(MemberIn(name="Alice", card_id=card.id))
    bruno = members.create(MemberIn(name="Bruno"))
    return card, alice, bruno


def _card_purchase(card_id: int, **kwargs) -> LedgerRecordIn:
    defaults = dict(
        description="Groceries",
        amount_cents=5000,
        category=Category.food,
        kind=TransactionKind.variable_expense,
        date=date(2025, 3, 15),
        payment_method=PaymentMethod.credit_card,
        card_id=card_id,
    )
    defaults.update(kwargs)
    return LedgerRecordIn(**defaults)


def test_card_purchase_gets_invoice_period_from_closing_day():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        ledger = LedgerService(session, CLOCK)

        late = ledger.create(_card_purchase(card.id))
        early = ledger.create(_card_purchase(card.id, date=date(2025, 3, 10)))

        assert late.invoice_period == "2025-04"
        assert early.invoice_period == "2025-03"
        assert late.status == RecordStatus.completed


def test_closing_override_applies_to_its_month_only():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        cards = CardService(session)
        cards.set_closing_override(card.id, ClosingOverrideIn(period="2025-03", closing_day=20))
        cards.set_closing_override(card.id, ClosingOverrideIn(period="2025-03", closing_day=18))
        ledger = LedgerService(session, CLOCK)

        march = ledger.create(_card_purchase(card.id))
        april = ledger.create(_card_purchase(card.id, date=date(2025, 4, 15)))

        assert cards.closing_day(card.id, date(2025, 3, 1)) == 18
        assert march.invoice_period == "2025-03"
        assert april.invoice_period == "2025-05"


def test_purchase_date_logic_off_uses_calendar_month():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        record = LedgerService(session, CLOCK).create(
            _card_purchase(card.id), SeriesOptions(use_purchase_date_logic=False)
        )

        assert record.invoice_period == "2025-03"


def test_credit_card_record_requires_card():
    with pytest.raises(ValueError):
        LedgerRecordIn(
            description="Shoes",
            amount_cents=100,
            date=date(2025, 1, 1),
            payment_method=PaymentMethod.credit_card,
        )
    with pytest.raises(ValueError):
        LedgerRecordIn(description="Cash", amount_cents=100, date=date(2025, 1, 1), card_id=1)


def test_unknown_card_or_member_is_not_found():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        ledger = LedgerService(session, CLOCK)

        with pytest.raises(NotFoundError):
            ledger.create(_card_purchase(999))
        with pytest.raises(NotFoundError):
            ledger.create(_card_purchase(card.id, spender_member_id=999))


def test_series_creation_returns_seed_and_shares_group():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, alice, _ = _setup(session)
        ledger = LedgerService(session, CLOCK)

        seed = ledger.create(
            _card_purchase(
                card.id,
                description="TV",
                amount_cents=30000,
                installment_index=2,
                installment_count=4,
                spender_member_id=alice.id,
            ),
            SeriesOptions(generate_past=True),
        )

        siblings = ledger.siblings(seed.installment_group_id)
        assert seed.installment_index == 2
        assert [s.installment_index for s in siblings] == [1, 2, 3, 4]
        assert [s.invoice_period for s in siblings] == [
            "2025-03",
            "2025-04",
            "2025-05",
            "2025-06",
        ]
        assert {s.spender_member_id for s in siblings} == {alice.id}
        assert siblings[0].display_description == "TV (1/4)"


def test_list_for_period_mixes_invoice_and_calendar_months():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        ledger = LedgerService(session, CLOCK)
        card_record = ledger.create(_card_purchase(card.id))
        april_cash = ledger.create(
            LedgerRecordIn(description="Bakery", amount_cents=900, date=date(2025, 4, 2))
        )
        ledger.create(
            LedgerRecordIn(description="Taxi", amount_cents=2500, date=date(2025, 3, 31))
        )

        april = ledger.list_for_period("2025-04")

        assert [r.id for r in april] == [card_record.id, april_cash.id]


def test_history_shows_one_row_per_installment_group():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        ledger = LedgerService(session, CLOCK)
        seed = ledger.create(
            _card_purchase(card.id, description="Sofa", installment_count=6)
        )
        single = ledger.create(_card_purchase(card.id, date=date(2025, 1, 5)))

        history = ledger.history()

        assert len(history) == 2
        group_rows = [r for r in history if r.is_installment]
        assert [r.id for r in group_rows] == [seed.id]
        assert history[-1].id == single.id


def test_date_edit_recomputes_invoice_period():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        ledger = LedgerService(session, CLOCK)
        record = ledger.create(_card_purchase(card.id))

        updated = ledger.update(record.id, LedgerRecordUpdate(date=date(2025, 3, 2)))

        assert updated.invoice_period == "2025-03"


def test_member_edit_propagates_to_siblings_unless_disabled():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, alice, bruno = _setup(session)
        ledger = LedgerService(session, CLOCK)
        seed = ledger.create(_card_purchase(card.id, installment_count=3))
        group = seed.installment_group_id

        ledger.update(seed.id, LedgerRecordUpdate(spender_member_id=alice.id))
        assert {r.spender_member_id for r in ledger.siblings(group)} == {alice.id}

        ledger.update(
            seed.id,
            LedgerRecordUpdate(spender_member_id=bruno.id, propagate_member=False),
        )
        members = [r.spender_member_id for r in ledger.siblings(group)]
        assert members == [bruno.id, alice.id, alice.id]


def test_description_edit_keeps_group_consistent():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        ledger = LedgerService(session, CLOCK)
        seed = ledger.create(_card_purchase(card.id, installment_count=3))

        ledger.update(seed.id, LedgerRecordUpdate(description="  Weekly groceries "))

        descriptions = {r.description for r in ledger.siblings(seed.installment_group_id)}
        assert descriptions == {"Weekly groceries"}


def test_card_cannot_be_attached_to_cash_record():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        ledger = LedgerService(session, CLOCK)
        cash = ledger.create(
            LedgerRecordIn(description="Bakery", amount_cents=900, date=date(2025, 4, 2))
        )

        with pytest.raises(ValidationError):
            ledger.update(cash.id, LedgerRecordUpdate(card_id=card.id))


def test_delete_with_cascade_removes_whole_group():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        ledger = LedgerService(session, CLOCK)
        seed = ledger.create(_card_purchase(card.id, installment_count=4))
        other = ledger.create(_card_purchase(card.id, installment_count=2))
        seed_id, seed_group = seed.id, seed.installment_group_id
        other_id, other_group = other.id, other.installment_group_id

        assert ledger.delete(seed_id) == [seed_id]
        assert len(ledger.siblings(seed_group)) == 3

        deleted = ledger.delete(other_id, cascade=True)
        assert len(deleted) == 2
        assert session.scalars(
            select(LedgerRecord).where(LedgerRecord.installment_group_id == other_group)
        ).all() == []


def test_status_toggle():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        ledger = LedgerService(session, CLOCK)
        record = ledger.create(_card_purchase(card.id, status=RecordStatus.pending))

        assert ledger.set_status(record.id, RecordStatus.completed).status == RecordStatus.completed
        with pytest.raises(NotFoundError):
            ledger.set_status(12345, RecordStatus.completed)


def test_card_with_records_cannot_be_deleted():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        LedgerService(session, CLOCK).create(_card_purchase(card.id))

        with pytest.raises(ValidationError):
            CardService(session).delete(card.id)


def test_installment_preview_for_record():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        ledger = LedgerService(session, CLOCK)
        seed = ledger.create(_card_purchase(card.id, installment_count=3))

        preview = ledger.installment_preview(seed.id, "2025-04")

        assert preview.next_index == 2
        assert preview.next_period == "2025-05"
        assert preview.remaining == 2


def test_invoice_summary_totals_per_member_and_nets_refunds():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, alice, bruno = _setup(session)
        ledger = LedgerService(session, CLOCK)
        ledger.create(_card_purchase(card.id, amount_cents=5000, spender_member_id=alice.id))
        ledger.create(_card_purchase(card.id, amount_cents=2000, spender_member_id=bruno.id))
        ledger.create(_card_purchase(card.id, amount_cents=700))
        ledger.create(
            _card_purchase(
                card.id,
                description="Refund",
                amount_cents=1000,
                kind=TransactionKind.income,
                category=Category.other_income,
                spender_member_id=alice.id,
            )
        )

        summary = InvoiceService(session).summary(card.id, "2025-04")

        assert summary.total_cents == 6700
        totals = {t.member_name: t.total_cents for t in summary.by_member}
        assert totals == {"Alice": 4000, "Bruno": 2000, "Unassigned": 700}


def test_month_summary_balance():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card, _, _ = _setup(session)
        ledger = LedgerService(session, CLOCK)
        ledger.create(
            LedgerRecordIn(
                description="Salary",
                amount_cents=1000000,
                kind=TransactionKind.income,
                category=Category.salary,
                date=date(2025, 4, 5),
            )
        )
        ledger.create(
            LedgerRecordIn(
                description="Rent",
                amount_cents=300000,
                kind=TransactionKind.fixed_expense,
                category=Category.rent,
                date=date(2025, 4, 5),
            )
        )
        ledger.create(
            LedgerRecordIn(description="Bakery", amount_cents=900, date=date(2025, 4, 2))
        )
        ledger.create(_card_purchase(card.id, amount_cents=5000))

        summary = InvoiceService(session).month_summary("2025-04")

        assert summary.income_cents == 1000000
        assert summary.fixed_expense_cents == 300000
        assert summary.variable_expense_cents == 900
        assert summary.card_total_cents == 5000
        assert summary.balance_cents == 1000000 - 300000 - 900 - 5000
