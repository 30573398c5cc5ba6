from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionKind(str, Enum):
    income = "income"
    fixed_expense = "fixed_expense"
    variable_expense = "variable_expense"


class PaymentMethod(str, Enum):
    cash_or_transfer = "cash_or_transfer"
    credit_card = "credit_card"


class RecordStatus(str, Enum):
    pending = "pending"
    completed = "completed"


class Category(str, Enum):
    # income
    salary = "salary"
    freelance = "freelance"
    investments = "investments"
    other_income = "other_income"
    # fixed bills
    rent = "rent"
    energy = "energy"
    water = "water"
    internet = "internet"
    phone = "phone"
    condo_fee = "condo_fee"
    subscriptions = "subscriptions"
    # variable
    food = "food"
    transport = "transport"
    health = "health"
    education = "education"
    leisure = "leisure"
    clothing = "clothing"
    other = "other"


INCOME_CATEGORIES = frozenset(
    {Category.salary, Category.freelance, Category.investments, Category.other_income}
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Card(Base, TimestampMixin):
    __tablename__ = "cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    closing_day: Mapped[int] = mapped_column(Integer, nullable=False)
    due_day: Mapped[int] = mapped_column(Integer, nullable=False)

    members: Mapped[list["Member"]] = relationship("Member", back_populates="card")
    closing_overrides: Mapped[list["CardClosingOverride"]] = relationship(
        "CardClosingOverride", back_populates="card", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "closing_day >= 1 AND closing_day <= 31", name="ck_card_closing_day"
        ),
        CheckConstraint("due_day >= 1 AND due_day <= 31", name="ck_card_due_day"),
        CheckConstraint("limit_cents >= 0", name="ck_card_limit_positive"),
    )


class CardClosingOverride(Base, TimestampMixin):
    __tablename__ = "card_closing_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    card_id: Mapped[int] = mapped_column(ForeignKey("cards.id"), nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    closing_day: Mapped[int] = mapped_column(Integer, nullable=False)

    card: Mapped["Card"] = relationship("Card", back_populates="closing_overrides")

    __table_args__ = (
        UniqueConstraint("card_id", "period", name="uq_closing_override_card_period"),
        CheckConstraint(
            "closing_day >= 1 AND closing_day <= 31",
            name="ck_closing_override_day",
        ),
    )


class Member(Base, TimestampMixin):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    card_id: Mapped[Optional[int]] = mapped_column(ForeignKey("cards.id"))

    card: Mapped[Optional["Card"]] = relationship("Card", back_populates="members")


class RecurringTemplate(Base, TimestampMixin):
    __tablename__ = "recurring_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[Category] = mapped_column(SAEnum(Category), nullable=False)
    kind: Mapped[TransactionKind] = mapped_column(
        SAEnum(TransactionKind), nullable=False, default=TransactionKind.fixed_expense
    )
    day_of_month: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(PaymentMethod), nullable=False, default=PaymentMethod.cash_or_transfer
    )
    card_id: Mapped[Optional[int]] = mapped_column(ForeignKey("cards.id"))
    spender_member_id: Mapped[Optional[int]] = mapped_column(Integer)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    start_period: Mapped[Optional[str]] = mapped_column(String(7))
    end_period: Mapped[Optional[str]] = mapped_column(String(7))

    card: Mapped[Optional["Card"]] = relationship("Card")
    instances: Mapped[list["LedgerRecord"]] = relationship(
        "LedgerRecord", back_populates="recurring_template"
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_template_amount_positive"),
        CheckConstraint(
            "day_of_month >= 1 AND day_of_month <= 31",
            name="ck_template_day_of_month",
        ),
    )


class LedgerRecord(Base, TimestampMixin):
    __tablename__ = "ledger_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[Category] = mapped_column(SAEnum(Category), nullable=False)
    kind: Mapped[TransactionKind] = mapped_column(
        SAEnum(TransactionKind), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(PaymentMethod), nullable=False
    )
    card_id: Mapped[Optional[int]] = mapped_column(ForeignKey("cards.id"))
    invoice_period: Mapped[Optional[str]] = mapped_column(String(7))
    # Weak member references: no foreign key, removing a member keeps history.
    spender_member_id: Mapped[Optional[int]] = mapped_column(Integer)
    creator_member_id: Mapped[Optional[int]] = mapped_column(Integer)
    status: Mapped[RecordStatus] = mapped_column(
        SAEnum(RecordStatus), nullable=False, default=RecordStatus.completed
    )

    is_installment: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    installment_group_id: Mapped[Optional[str]] = mapped_column(String(32))
    installment_index: Mapped[Optional[int]] = mapped_column(Integer)
    installment_count: Mapped[Optional[int]] = mapped_column(Integer)
    installment_amount_cents: Mapped[Optional[int]] = mapped_column(Integer)

    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_template_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_templates.id", ondelete="SET NULL")
    )
    recurring_period: Mapped[Optional[str]] = mapped_column(String(7))

    card: Mapped[Optional["Card"]] = relationship("Card")
    recurring_template: Mapped[Optional["RecurringTemplate"]] = relationship(
        "RecurringTemplate", back_populates="instances"
    )

    @property
    def display_description(self) -> str:
        if self.is_installment and self.installment_count:
            return (
                f"{self.description} "
                f"({self.installment_index}/{self.installment_count})"
            )
        return self.description

    __table_args__ = (
        UniqueConstraint(
            "recurring_template_id",
            "recurring_period",
            name="uq_record_template_period",
        ),
        Index("ix_records_date", "date"),
        Index("ix_records_card_invoice", "card_id", "invoice_period"),
        Index("ix_records_installment_group", "installment_group_id"),
        CheckConstraint("amount_cents > 0", name="ck_records_amount_positive"),
        CheckConstraint(
            "installment_index IS NULL OR "
            "(installment_index >= 1 AND installment_index <= installment_count)",
            name="ck_records_installment_index",
        ),
    )
