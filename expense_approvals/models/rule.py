import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .expense import Expense, ExpenseCategory, utcnow


class ApprovalPolicy(str, Enum):
    """How an approval chain is considered complete"""
    SEQUENTIAL = "sequential"
    PERCENTAGE = "percentage"
    SPECIFIC_APPROVER = "specific_approver"
    HYBRID = "hybrid"


class RuleConditions(BaseModel):
    """Which expenses a rule applies to. Empty filters match anything."""
    min_amount: float = Field(0.0, ge=0)
    max_amount: float | None = None  # None = unbounded
    categories: list[ExpenseCategory] = Field(default_factory=list)
    departments: list[str] = Field(default_factory=list)

    def matches(self, expense: Expense) -> bool:
        amount = expense.converted_amount
        if amount < self.min_amount:
            return False
        if self.max_amount is not None and amount > self.max_amount:
            return False
        if self.categories and expense.category not in self.categories:
            return False
        if self.departments and expense.department not in self.departments:
            return False
        return True


class RuleApprover(BaseModel):
    user_id: str
    sequence: int = Field(ge=0)
    is_required: bool = True


class ApprovalRule(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    company_id: str
    name: str
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    approvers: list[RuleApprover] = Field(default_factory=list)
    policy: ApprovalPolicy = ApprovalPolicy.SEQUENTIAL
    percentage_required: int | None = Field(default=None, ge=1, le=100)
    specific_approvers: list[str] = Field(default_factory=list)
    require_manager_approval: bool = True
    priority: int = 1
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime | None = None

    def applies_to(self, expense: Expense) -> bool:
        return (
            self.is_active
            and self.company_id == expense.company_id
            and self.conditions.matches(expense)
        )

    def configuration_problems(self) -> list[str]:
        """
        Check the rule's internal consistency.

        Approver existence and roles need the user directory and are checked
        by the rule administrator; this only looks at the rule itself.

        Returns:
            Human-readable problems, empty when the rule is consistent
        """
        problems = []

        sequences = [approver.sequence for approver in self.approvers]
        if len(sequences) != len(set(sequences)):
            problems.append("Approver sequences must be unique within a rule")

        user_ids = [approver.user_id for approver in self.approvers]
        if len(user_ids) != len(set(user_ids)):
            problems.append("An approver may appear only once in a rule")

        if (
            self.conditions.max_amount is not None
            and self.conditions.max_amount < self.conditions.min_amount
        ):
            problems.append(
                f"max_amount {self.conditions.max_amount} is below min_amount {self.conditions.min_amount}"
            )

        if self.policy in (ApprovalPolicy.PERCENTAGE, ApprovalPolicy.HYBRID):
            if self.percentage_required is None:
                problems.append(f"percentage_required is required for {self.policy.value} rules")

        if self.policy in (ApprovalPolicy.SPECIFIC_APPROVER, ApprovalPolicy.HYBRID):
            if not self.specific_approvers:
                problems.append(f"specific_approvers is required for {self.policy.value} rules")

        unknown = [ref for ref in self.specific_approvers if ref not in user_ids]
        if unknown:
            problems.append(
                "specific_approvers must be listed as rule approvers: " + ", ".join(unknown)
            )

        return problems
