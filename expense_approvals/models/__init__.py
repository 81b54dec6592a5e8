from .expense import (
    ApprovalStep,
    Decision,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    StepStatus,
)
from .report import CategoryBreakdown, DashboardStats, ExpenseTotals, Pagination
from .rule import ApprovalPolicy, ApprovalRule, RuleApprover, RuleConditions

__all__ = [
    "ApprovalPolicy",
    "ApprovalRule",
    "ApprovalStep",
    "CategoryBreakdown",
    "DashboardStats",
    "Decision",
    "Expense",
    "ExpenseCategory",
    "ExpenseStatus",
    "ExpenseTotals",
    "Pagination",
    "RuleApprover",
    "RuleConditions",
    "StepStatus",
]
