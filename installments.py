"""Expansion of one parceled purchase into its sibling ledger records.

Every installment is persisted as its own record; siblings are tied together
only by a shared ``installment_group_id``. This module plans the series (dates,
amounts, invoice periods) without touching storage, so the service layer can
write the planned records one by one.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional, Union

from errors import ValidationError
from invoice_cycle import add_months, invoice_period, month_key, shift_month_key

ClosingDay = Union[int, Callable[[date], int]]


def new_group_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class InstallmentSeed:
    description: str
    amount_cents: int
    date: date
    installment_index: int
    installment_count: int
    card_id: Optional[int] = None
    amount_is_total: bool = False


@dataclass(frozen=True)
class PlannedInstallment:
    installment_index: int
    date: date
    amount_cents: int
    invoice_period: Optional[str]


@dataclass
class InstallmentPlan:
    group_id: str
    description: str
    installment_count: int
    installment_amount_cents: int
    items: list[PlannedInstallment] = field(default_factory=list)

    @property
    def seed_index(self) -> int:
        return self.items[0].installment_index if self.items else 0


@dataclass(frozen=True)
class InstallmentPreview:
    installment_index: int
    installment_count: int
    next_index: Optional[int]
    next_period: Optional[str]
    remaining: int
    is_closed: bool


def _split_amount(seed: InstallmentSeed) -> tuple[int, int]:
    """Return (per-installment amount, extra cents charged on installment 1)."""
    if not seed.amount_is_total:
        return seed.amount_cents, 0
    base, remainder = divmod(seed.amount_cents, seed.installment_count)
    if base <= 0:
        raise ValidationError("Amount is too small to split into installments")
    return base, remainder


def _resolve_closing(closing_day: ClosingDay, on: date) -> int:
    if callable(closing_day):
        return closing_day(on)
    return closing_day


def plan_series(
    seed: InstallmentSeed,
    *,
    generate_future: bool = True,
    generate_past: bool = False,
    use_purchase_date_logic: bool = True,
    closing_day: Optional[ClosingDay] = None,
    group_id: Optional[str] = None,
) -> InstallmentPlan:
    """Plan the records for ``seed`` and the requested siblings.

    With ``use_purchase_date_logic`` the seed date is the real purchase date
    and each sibling's invoice is recomputed from its own date and closing
    day. Without it the seed date already sits in its invoice month, so the
    invoice key moves by exactly one month per index. ``closing_day`` may be
    a fixed day or a callable resolving the day for a given purchase date;
    ``None`` means the series is not on a card and gets no invoice periods.
    """
    count = seed.installment_count
    start = seed.installment_index
    if count < 1 or not 1 <= start <= count:
        raise ValidationError(
            f"Installment {start}/{count} is out of range"
        )

    per_installment, remainder = _split_amount(seed)
    indices = [start]
    if generate_future:
        indices.extend(range(start + 1, count + 1))
    if generate_past and start > 1:
        indices.extend(range(1, start))

    seed_invoice_key = month_key(seed.date)
    plan = InstallmentPlan(
        group_id=group_id or new_group_id(),
        description=seed.description.strip(),
        installment_count=count,
        installment_amount_cents=per_installment,
    )
    for index in sorted(indices):
        offset = index - start
        sibling_date = add_months(seed.date, offset, desired_day=seed.date.day)
        period: Optional[str] = None
        if closing_day is not None:
            if use_purchase_date_logic:
                period = invoice_period(
                    sibling_date, _resolve_closing(closing_day, sibling_date)
                )
            else:
                period = shift_month_key(seed_invoice_key, offset)
        amount = per_installment + (remainder if index == min(indices) else 0)
        plan.items.append(
            PlannedInstallment(
                installment_index=index,
                date=sibling_date,
                amount_cents=amount,
                invoice_period=period,
            )
        )
    return plan


def preview_next(
    installment_index: int,
    installment_count: int,
    *,
    seed_date: date,
    viewed_period: Optional[str] = None,
    use_purchase_date_logic: bool = True,
) -> InstallmentPreview:
    # The on-screen projection follows the invoice being reviewed, not the
    # purchase day, when purchase-date logic is on.
    if not 1 <= installment_index <= installment_count:
        raise ValidationError(
            f"Installment {installment_index}/{installment_count} is out of range"
        )
    remaining = installment_count - installment_index
    if remaining == 0:
        return InstallmentPreview(
            installment_index=installment_index,
            installment_count=installment_count,
            next_index=None,
            next_period=None,
            remaining=0,
            is_closed=True,
        )
    if use_purchase_date_logic and viewed_period:
        next_period = shift_month_key(viewed_period, 1)
    else:
        next_period = shift_month_key(month_key(seed_date), 1)
    return InstallmentPreview(
        installment_index=installment_index,
        installment_count=installment_count,
        next_index=installment_index + 1,
        next_period=next_period,
        remaining=remaining,
        is_closed=False,
    )
