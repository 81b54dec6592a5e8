from datetime import datetime

from pydantic import BaseModel, Field

from .expense import Expense, ExpenseCategory, ExpenseStatus


class ExpenseTotals(BaseModel):
    """Count and converted-amount sum for one (category, status) group"""
    category: ExpenseCategory
    status: ExpenseStatus
    count: int = 0
    total_amount: float = 0.0


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_expenses: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(
            current_page=page,
            total_pages=-(-total // limit),
            total_expenses=total,
            has_next=page * limit < total,
            has_prev=page > 1,
        )


class CategoryBreakdown(BaseModel):
    category: ExpenseCategory
    count: int
    total_amount: float


class DashboardStats(BaseModel):
    """Company activity for one calendar month (UTC)"""
    company_id: str
    period_start: datetime
    period_end: datetime
    total_users: int
    total_expenses: int
    pending_expenses: int
    total_approved_amount: float
    by_category: list[CategoryBreakdown] = Field(default_factory=list)
    recent_expenses: list[Expense] = Field(default_factory=list)
