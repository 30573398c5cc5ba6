from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import ExternalStoreError, NotFoundError, PartialBatchFailure
from models import Card, Category, Member, PaymentMethod
from schemas import LedgerRecordIn, LedgerView
from services import BulkLedgerService, LedgerService, MemberAssignmentService
from store import FixedClock, RecordStore

CLOCK = FixedClock(datetime(2025, 3, 20, 12, 0))


def _seed(session: Session):
    card = Card(name="Itau", closing_day=5, due_day=12, limit_cents=0)
    alice = Member(name="Alice")
    bruno = Member(name="Bruno")
    session.add_all([card, alice, bruno])
    session.commit()

    ledger = LedgerService(session, CLOCK)
    series = ledger.create_series(
        LedgerRecordIn(
            description="Phone",
            amount_cents=20000,
            category=Category.other,
            date=date(2025, 3, 8),
            payment_method=PaymentMethod.credit_card,
            card_id=card.id,
            installment_count=3,
        )
    )
    single = ledger.create(
        LedgerRecordIn(description="Lunch", amount_cents=3500, date=date(2025, 3, 9))
    )
    return series, single, alice, bruno


def test_history_selection_expands_to_every_installment():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        series, single, _, _ = _seed(session)
        bulk = BulkLedgerService(session)

        expansion = bulk.expand_history_selection([series[0].id, single.id, series[0].id])

        assert expansion.visible_count == 2
        assert expansion.cascade_count == 4
        assert expansion.needs_confirmation
        assert expansion.ids == [r.id for r in series] + [single.id]


def test_history_bulk_delete_removes_groups():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        series, single, _, _ = _seed(session)
        group_id = series[0].installment_group_id

        result = BulkLedgerService(session).bulk_delete(
            [series[0].id, single.id], LedgerView.history
        )

        assert result.ok
        assert len(result.succeeded) == 4
        assert result.selection.cascade_count == 4
        assert LedgerService(session).siblings(group_id) == []


def test_period_bulk_delete_only_touches_selection():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        series, _, _, _ = _seed(session)
        group_id = series[0].installment_group_id
        target_id = series[1].id

        result = BulkLedgerService(session).bulk_delete([target_id], LedgerView.period)

        assert result.succeeded == [target_id]
        remaining = LedgerService(session).siblings(group_id)
        assert [r.installment_index for r in remaining] == [1, 3]


def test_bulk_delete_reports_missing_ids_and_keeps_going():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, single, _, _ = _seed(session)
        single_id = single.id

        result = BulkLedgerService(session).bulk_delete([999, single_id])

        assert result.succeeded == [single_id]
        assert list(result.failed) == [999]
        with pytest.raises(PartialBatchFailure) as excinfo:
            result.raise_for_failures()
        assert excinfo.value.succeeded == [single_id]


def test_bulk_reassign_does_not_cascade_to_siblings():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        series, single, alice, _ = _seed(session)

        result = BulkLedgerService(session).bulk_reassign_member(
            [series[0].id, single.id], alice.id
        )

        assert result.ok
        members = [r.spender_member_id for r in LedgerService(session).siblings(series[0].installment_group_id)]
        assert members == [alice.id, None, None]
        assert LedgerService(session).get(single.id).spender_member_id == alice.id


def test_bulk_reassign_rejects_unknown_member():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, single, _, _ = _seed(session)

        with pytest.raises(NotFoundError):
            BulkLedgerService(session).bulk_reassign_member([single.id], 999)


def test_assign_member_fans_out_to_group():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        series, _, _, bruno = _seed(session)

        updated = MemberAssignmentService(session).assign_member(series[1].id, bruno.id)

        assert updated == [series[1].id, series[0].id, series[2].id]
        siblings = LedgerService(session).siblings(series[0].installment_group_id)
        assert {r.spender_member_id for r in siblings} == {bruno.id}


def test_assign_member_can_clear_assignment():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        series, _, alice, _ = _seed(session)
        assignments = MemberAssignmentService(session)
        assignments.assign_member(series[0].id, alice.id)

        assignments.assign_member(series[0].id, None)

        siblings = LedgerService(session).siblings(series[0].installment_group_id)
        assert {r.spender_member_id for r in siblings} == {None}


def test_history_expansion_store_failure_surfaces_as_ledger_error(monkeypatch):
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        series, single, _, _ = _seed(session)
        ids = [r.id for r in series] + [single.id]

        def locked(self, *criteria, order_by=()):
            raise ExternalStoreError("Could not list ledger_records")

        monkeypatch.setattr(RecordStore, "list_by_filter", locked)
        service = BulkLedgerService(session)

        with pytest.raises(ExternalStoreError):
            service.expand_history_selection([series[0].id])
        with pytest.raises(ExternalStoreError):
            service.bulk_delete([series[0].id], LedgerView.history)

        monkeypatch.undo()
        assert all(LedgerService(session).get(record_id) for record_id in ids)


def test_assign_member_stops_on_first_failure(monkeypatch):
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        series, _, alice, _ = _seed(session)
        failing_id = series[1].id
        original_update = RecordStore.update

        def flaky_update(self, record_id, **fields):
            if record_id == failing_id:
                raise ExternalStoreError("store unavailable")
            return original_update(self, record_id, **fields)

        monkeypatch.setattr(RecordStore, "update", flaky_update)

        with pytest.raises(PartialBatchFailure) as excinfo:
            MemberAssignmentService(session).assign_member(series[0].id, alice.id)

        assert excinfo.value.succeeded == [series[0].id]
        assert list(excinfo.value.failed) == [failing_id]
        assert LedgerService(session).get(series[2].id).spender_member_id is None


def test_member_propagation_versus_bulk_reassign_scope():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        card = Card(name="Visa", closing_day=25, due_day=5, limit_cents=0)
        alice = Member(name="Alice")
        bruno = Member(name="Bruno")
        session.add_all([card, alice, bruno])
        session.commit()
        series = LedgerService(session, CLOCK).create_series(
            LedgerRecordIn(
                description="Bike",
                amount_cents=12000,
                date=date(2025, 1, 10),
                payment_method=PaymentMethod.credit_card,
                card_id=card.id,
                installment_count=6,
            )
        )
        group_id = series[0].installment_group_id

        updated = MemberAssignmentService(session).assign_member(series[2].id, alice.id)
        assert len(updated) == 6

        BulkLedgerService(session).bulk_reassign_member(
            [series[0].id, series[4].id], bruno.id
        )
        members = [r.spender_member_id for r in LedgerService(session).siblings(group_id)]
        assert members == [bruno.id, alice.id, alice.id, alice.id, bruno.id, alice.id]
