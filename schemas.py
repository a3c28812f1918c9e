from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import Frequency, RecordType


class MemberIn(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, max_length=200)


class MemberRename(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=100)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: RecordType


class FinancialRecordIn(BaseModel):
    type: RecordType
    amount_cents: int = Field(..., ge=0)
    date: date
    description: Optional[str] = Field(default=None, max_length=200)
    category_id: int
    payer_user_id: int


class RecurringRecordIn(BaseModel):
    type: RecordType
    amount_cents: int = Field(..., ge=0)
    category_id: int
    start_date: date
    end_date: Optional[date] = None
    frequency: Frequency = Frequency.monthly
    description: Optional[str] = Field(default=None, max_length=200)
    payer_user_id: int

    @model_validator(mode="after")
    def _check_range(self) -> "RecurringRecordIn":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


class StatementRow(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: date
    type: RecordType
    amount_cents: int = Field(..., ge=0)
    description: str
    category: Optional[str] = None
