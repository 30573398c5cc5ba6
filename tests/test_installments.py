from datetime import date

import pytest

from errors import ValidationError
from installments import InstallmentSeed, plan_series, preview_next


def _seed(index: int = 3, count: int = 5, **kwargs) -> InstallmentSeed:
    defaults = dict(
        description="  Notebook  ",
        amount_cents=35000,
        date=date(2025, 1, 15),
        installment_index=index,
        installment_count=count,
        card_id=1,
    )
    defaults.update(kwargs)
    return InstallmentSeed(**defaults)


def test_future_siblings_follow_purchase_date_logic():
    plan = plan_series(_seed(), closing_day=10)

    assert [item.installment_index for item in plan.items] == [3, 4, 5]
    assert [item.date for item in plan.items] == [
        date(2025, 1, 15),
        date(2025, 2, 15),
        date(2025, 3, 15),
    ]
    assert [item.invoice_period for item in plan.items] == [
        "2025-02",
        "2025-03",
        "2025-04",
    ]
    assert plan.description == "Notebook"
    assert all(item.amount_cents == 35000 for item in plan.items)


def test_past_and_future_siblings_cover_whole_series():
    plan = plan_series(_seed(), generate_past=True, closing_day=10)

    assert [item.installment_index for item in plan.items] == [1, 2, 3, 4, 5]
    assert plan.items[0].date == date(2024, 11, 15)
    assert plan.items[0].invoice_period == "2024-12"


def test_seed_only_when_no_siblings_requested():
    plan = plan_series(_seed(), generate_future=False, closing_day=10)

    assert [item.installment_index for item in plan.items] == [3]
    assert plan.seed_index == 3


def test_past_only_generation():
    plan = plan_series(
        _seed(), generate_future=False, generate_past=True, closing_day=10
    )

    assert [item.installment_index for item in plan.items] == [1, 2, 3]


def test_without_purchase_date_logic_invoice_moves_one_month_per_index():
    plan = plan_series(
        _seed(),
        generate_past=True,
        use_purchase_date_logic=False,
        closing_day=10,
    )

    assert [item.invoice_period for item in plan.items] == [
        "2024-11",
        "2024-12",
        "2025-01",
        "2025-02",
        "2025-03",
    ]


def test_series_without_card_has_no_invoice_period():
    plan = plan_series(_seed(card_id=None))

    assert all(item.invoice_period is None for item in plan.items)


def test_closing_day_callable_is_resolved_per_sibling():
    def closing(on: date) -> int:
        return 20 if on.month == 2 else 10

    plan = plan_series(_seed(), closing_day=closing)

    assert [item.invoice_period for item in plan.items] == [
        "2025-02",
        "2025-02",
        "2025-04",
    ]


def test_total_amount_is_split_with_remainder_on_first_installment():
    plan = plan_series(
        _seed(index=1, count=3, amount_cents=1000, amount_is_total=True),
        closing_day=10,
    )

    assert plan.installment_amount_cents == 333
    assert [item.amount_cents for item in plan.items] == [334, 333, 333]


def test_split_remainder_lands_on_first_generated_installment():
    plan = plan_series(
        _seed(index=2, count=3, amount_cents=1000, amount_is_total=True),
        closing_day=10,
    )

    assert [item.installment_index for item in plan.items] == [2, 3]
    assert [item.amount_cents for item in plan.items] == [334, 333]


def test_sibling_dates_keep_original_day_after_short_month():
    plan = plan_series(_seed(index=1, count=3, date=date(2025, 1, 31)))

    assert [item.date for item in plan.items] == [
        date(2025, 1, 31),
        date(2025, 2, 28),
        date(2025, 3, 31),
    ]


def test_group_id_is_shared_and_reusable():
    plan = plan_series(_seed(), group_id="abc123")
    assert plan.group_id == "abc123"
    assert len(plan_series(_seed()).group_id) == 32


@pytest.mark.parametrize("index,count", [(0, 3), (4, 3), (1, 0)])
def test_out_of_range_installment_is_rejected(index: int, count: int):
    with pytest.raises(ValidationError):
        plan_series(_seed(index=index, count=count))


def test_preview_follows_viewed_invoice():
    preview = preview_next(3, 5, seed_date=date(2025, 1, 15), viewed_period="2025-04")

    assert preview.next_index == 4
    assert preview.next_period == "2025-05"
    assert preview.remaining == 2
    assert not preview.is_closed


def test_preview_without_purchase_logic_uses_seed_month():
    preview = preview_next(
        3,
        5,
        seed_date=date(2025, 1, 15),
        viewed_period="2025-04",
        use_purchase_date_logic=False,
    )

    assert preview.next_period == "2025-02"


def test_preview_of_last_installment_is_closed():
    preview = preview_next(5, 5, seed_date=date(2025, 1, 15))

    assert preview.is_closed
    assert preview.next_index is None
    assert preview.next_period is None


@pytest.mark.parametrize("generate_future", [True, False])
@pytest.mark.parametrize("generate_past", [True, False])
@pytest.mark.parametrize("use_purchase_date_logic", [True, False])
def test_generation_flag_matrix(
    generate_future: bool, generate_past: bool, use_purchase_date_logic: bool
):
    plan = plan_series(
        _seed(index=3, count=6),
        generate_future=generate_future,
        generate_past=generate_past,
        use_purchase_date_logic=use_purchase_date_logic,
        closing_day=10,
    )

    expected = [3]
    if generate_past:
        expected = [1, 2] + expected
    if generate_future:
        expected = expected + [4, 5, 6]
    assert [item.installment_index for item in plan.items] == expected

    dates = [item.date for item in plan.items]
    assert dates == sorted(dates)
    assert len(set(dates)) == len(dates)
    periods = [item.invoice_period for item in plan.items]
    assert len(set(periods)) == len(periods)
    seed_item = next(item for item in plan.items if item.installment_index == 3)
    if use_purchase_date_logic:
        assert seed_item.invoice_period == "2025-02"
    else:
        assert seed_item.invoice_period == "2025-01"
