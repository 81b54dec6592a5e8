import uuid
from datetime import UTC, date, datetime
from enum import Enum

from pydantic import BaseModel, Field


class ExpenseCategory(str, Enum):
    TRAVEL = "travel"
    FOOD = "food"
    ACCOMMODATION = "accommodation"
    TRANSPORTATION = "transportation"
    OFFICE_SUPPLIES = "office_supplies"
    ENTERTAINMENT = "entertainment"
    OTHER = "other"


class ExpenseStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class StepStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    OVERRIDDEN = "overridden"


class Decision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


TERMINAL_STATUSES = (ExpenseStatus.APPROVED, ExpenseStatus.REJECTED)


def utcnow() -> datetime:
    return datetime.now(UTC)


class ApprovalStep(BaseModel):
    """One required approver on one expense"""
    approver_id: str
    sequence: int = Field(ge=0)
    status: StepStatus = StepStatus.PENDING
    comments: str | None = None
    decided_at: datetime | None = None
    is_manager_approval: bool = False
    is_required: bool = True


class Expense(BaseModel):
    """
    An expense together with its approval progress.

    ``approvals`` is populated once, at submission, by the approver resolver;
    after that only individual step statuses change. ``version`` is bumped by
    the store on every successful write and is the optimistic concurrency
    token for decisions.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    company_id: str
    employee_id: str
    department: str | None = None
    category: ExpenseCategory = ExpenseCategory.OTHER
    amount: float = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    converted_amount: float = Field(ge=0)  # in company currency, computed upstream
    description: str = ""
    expense_date: date | None = None

    status: ExpenseStatus = ExpenseStatus.PENDING
    approvals: list[ApprovalStep] = Field(default_factory=list)
    current_approval_level: int = 0
    rule_id: str | None = None
    final_approver: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    override_decision: Decision | None = None

    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def steps_for(self, approver_id: str) -> list[ApprovalStep]:
        return [step for step in self.approvals if step.approver_id == approver_id]
