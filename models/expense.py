"""Pydantic models for Expense data"""
import re
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import date, datetime
from typing import Optional

SpendingDate = date

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def check_spending_date(value):
    """Accepts only `YYYY-MM-DD` strings or plain date objects."""
    if value is None:
        return value
    if isinstance(value, str):
        if not DATE_PATTERN.match(value):
            raise ValueError("date must use the YYYY-MM-DD format")
        return value
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    raise ValueError("date must use the YYYY-MM-DD format")


class ExpenseCategory(str, Enum):
    """Allowed expense category labels."""
    FOOD = "Food"
    TRANSPORT = "Transport"
    HOUSING = "Housing"
    UTILITIES = "Utilities"
    ENTERTAINMENT = "Entertainment"
    HEALTHCARE = "Healthcare"
    SHOPPING = "Shopping"
    EDUCATION = "Education"
    TRAVEL = "Travel"
    OTHER = "Other"


class ExpenseCreate(BaseModel):
    """
    Mutable fields accepted from callers when creating an expense.
    """
    amount: float = Field(gt=0, allow_inf_nan=False)
    category: ExpenseCategory
    date: date
    description: str = ""

    @field_validator("date", mode="before")
    @classmethod
    def check_date_format(cls, value):
        return check_spending_date(value)


class ExpenseUpdate(BaseModel):
    """Partial patch; only fields present in the request are applied."""
    amount: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)
    category: Optional[ExpenseCategory] = None
    date: Optional[SpendingDate] = None
    description: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def check_date_format(cls, value):
        return check_spending_date(value)


class Expense(ExpenseCreate):
    """
    Represents a single persisted expense.
    """
    id: Optional[str] = None
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)
