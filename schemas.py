import datetime as dt
from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import Category, PaymentMethod, RecordStatus, TransactionKind


class LedgerView(str, Enum):
    period = "period"
    history = "history"


class CardIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    limit_cents: int = Field(default=0, ge=0)
    closing_day: int = Field(..., ge=1, le=31)
    due_day: int = Field(..., ge=1, le=31)


class ClosingOverrideIn(BaseModel):
    period: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    closing_day: int = Field(..., ge=1, le=31)


class MemberIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    card_id: Optional[int] = None


class LedgerRecordIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    category: Category = Category.other
    kind: TransactionKind = TransactionKind.variable_expense
    date: date
    payment_method: PaymentMethod = PaymentMethod.cash_or_transfer
    card_id: Optional[int] = None
    spender_member_id: Optional[int] = None
    creator_member_id: Optional[int] = None
    status: RecordStatus = RecordStatus.completed
    installment_index: int = Field(default=1, ge=1)
    installment_count: int = Field(default=1, ge=1)
    amount_is_total: bool = False

    @model_validator(mode="after")
    def _check_consistency(self) -> "LedgerRecordIn":
        if self.payment_method == PaymentMethod.credit_card and self.card_id is None:
            raise ValueError("Credit card records require a card")
        if self.payment_method != PaymentMethod.credit_card and self.card_id is not None:
            raise ValueError("Only credit card records may reference a card")
        if self.installment_index > self.installment_count:
            raise ValueError("Installment index cannot exceed installment count")
        return self


class LedgerRecordUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    category: Optional[Category] = None
    date: Optional[dt.date] = None
    card_id: Optional[int] = None
    spender_member_id: Optional[int] = None
    propagate_member: bool = True


class SeriesOptions(BaseModel):
    generate_future: bool = True
    generate_past: bool = False
    use_purchase_date_logic: bool = True


class InstallmentPreviewOut(BaseModel):
    installment_index: int
    installment_count: int
    next_index: Optional[int]
    next_period: Optional[str]
    remaining: int
    is_closed: bool


class RecurringTemplateIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    category: Category
    kind: TransactionKind = TransactionKind.fixed_expense
    day_of_month: int = Field(..., ge=1, le=31)
    payment_method: PaymentMethod = PaymentMethod.cash_or_transfer
    card_id: Optional[int] = None
    spender_member_id: Optional[int] = None
    active: bool = True
    start_period: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}$")
    end_period: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}$")

    @model_validator(mode="after")
    def _check_card(self) -> "RecurringTemplateIn":
        if self.payment_method == PaymentMethod.credit_card and self.card_id is None:
            raise ValueError("Credit card templates require a card")
        if (
            self.start_period
            and self.end_period
            and self.start_period > self.end_period
        ):
            raise ValueError("Start period must be before end period")
        return self


class StatementDraft(BaseModel):
    key: str
    date: date
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    kind: TransactionKind
    category: Category
    is_installment: bool = False
    installment_index: Optional[int] = None
    installment_count: Optional[int] = None
    selected: bool = True


class ImportOptions(BaseModel):
    card_id: Optional[int] = None
    spender_member_id: Optional[int] = None
    creator_member_id: Optional[int] = None
    generate_future: bool = True
    generate_past: bool = False
    use_purchase_date_logic: bool = True


class ImportCommitIn(BaseModel):
    drafts: list[StatementDraft]
    options: ImportOptions = Field(default_factory=ImportOptions)


class BulkDeleteIn(BaseModel):
    ids: list[int] = Field(..., min_length=1)
    view: LedgerView = LedgerView.period


class BulkReassignIn(BaseModel):
    ids: list[int] = Field(..., min_length=1)
    member_id: Optional[int] = None


class AssignMemberIn(BaseModel):
    member_id: Optional[int] = None


class StatusIn(BaseModel):
    status: RecordStatus


class LedgerRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    display_description: str
    amount_cents: int
    category: Category
    kind: TransactionKind
    date: date
    payment_method: PaymentMethod
    card_id: Optional[int]
    invoice_period: Optional[str]
    spender_member_id: Optional[int]
    creator_member_id: Optional[int]
    status: RecordStatus
    is_installment: bool
    installment_group_id: Optional[str]
    installment_index: Optional[int]
    installment_count: Optional[int]
    installment_amount_cents: Optional[int]
    is_recurring: bool
    recurring_template_id: Optional[int]
