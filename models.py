from datetime import date, datetime
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
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from recurrence import Frequency, RecordType, RecurrenceTemplate, Member

__all__ = [
    "Category",
    "FinancialRecord",
    "Frequency",
    "HouseholdMember",
    "RecordType",
    "RecurringRecord",
]


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class HouseholdMember(Base, TimestampMixin):
    __tablename__ = "household_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    household_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200))
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    records: Mapped[list["FinancialRecord"]] = relationship(
        "FinancialRecord", back_populates="payer"
    )

    __table_args__ = (
        Index("ix_members_household_position", "household_id", "position", "id"),
    )

    def to_member(self) -> Member:
        return Member(id=self.id, display_name=self.display_name)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    household_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[RecordType] = mapped_column(SAEnum(RecordType), nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    records: Mapped[list["FinancialRecord"]] = relationship(
        "FinancialRecord", back_populates="category"
    )
    recurring_records: Mapped[list["RecurringRecord"]] = relationship(
        "RecurringRecord", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint(
            "household_id", "type", "name", name="uq_category_household_type_name"
        ),
    )


class FinancialRecord(Base, TimestampMixin):
    __tablename__ = "financial_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    household_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    type: Mapped[RecordType] = mapped_column(SAEnum(RecordType), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    payer_user_id: Mapped[int] = mapped_column(
        ForeignKey("household_members.id"), nullable=False
    )

    category: Mapped["Category"] = relationship("Category", back_populates="records")
    payer: Mapped["HouseholdMember"] = relationship(
        "HouseholdMember", back_populates="records"
    )

    __table_args__ = (
        Index("ix_records_household_date", "household_id", "date"),
        Index(
            "ix_records_household_payer_date", "household_id", "payer_user_id", "date"
        ),
        CheckConstraint("amount_cents >= 0", name="ck_records_amount_positive"),
    )


class RecurringRecord(Base, TimestampMixin):
    __tablename__ = "recurring_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    household_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    type: Mapped[RecordType] = mapped_column(SAEnum(RecordType), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    frequency: Mapped[Frequency] = mapped_column(
        SAEnum(Frequency), nullable=False, default=Frequency.monthly
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    payer_user_id: Mapped[int] = mapped_column(
        ForeignKey("household_members.id"), nullable=False
    )

    category: Mapped["Category"] = relationship(
        "Category", back_populates="recurring_records"
    )
    payer: Mapped["HouseholdMember"] = relationship("HouseholdMember")

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
        Index("ix_recurring_household_start", "household_id", "start_date"),
    )

    def to_template(self) -> RecurrenceTemplate:
        return RecurrenceTemplate(
            id=self.id,
            type=self.type,
            amount_cents=self.amount_cents,
            category_id=self.category_id,
            start_date=self.start_date,
            end_date=self.end_date,
            frequency=self.frequency,
            description=self.description,
            payer_user_id=self.payer_user_id,
        )
