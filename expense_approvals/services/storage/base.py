"""
Abstract base classes for expense and approval-rule storage.

Defines the interface that all stores must implement, enabling dependency
injection and easy swapping of storage backends:
- In-memory storage (for testing/demo)
- SQLite (for single-instance deployments)
- SQL Server / PostgreSQL (for production)
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Optional

from ...core.errors import ValidationError
from ...models import ApprovalRule, Expense, ExpenseCategory, ExpenseStatus, ExpenseTotals, StepStatus

OPEN_STATUSES = (ExpenseStatus.PENDING, ExpenseStatus.IN_REVIEW)


class ExpenseStoreBase(ABC):
    """
    Whole-document expense persistence with optimistic concurrency.

    Every successful write bumps ``Expense.version``. ``replace`` only
    succeeds when the stored version still equals the version the caller
    read, which is what serializes concurrent decisions on one expense.
    """

    @abstractmethod
    def create(self, expense: Expense) -> Expense:
        """
        Persist a newly submitted expense.

        Returns:
            The stored expense (version 1)
        """
        pass

    @abstractmethod
    def get(self, expense_id: str) -> Optional[Expense]:
        """
        Get an expense by ID.

        Returns:
            A detached copy of the stored expense, or None if not found
        """
        pass

    @abstractmethod
    def replace(self, expense: Expense, expected_version: int) -> Expense:
        """
        Conditionally overwrite an expense.

        Args:
            expense: Updated expense document
            expected_version: Version the caller read before computing the update

        Returns:
            The stored expense with its new version

        Raises:
            ExpenseNotFoundError: no expense with that ID
            ConcurrentUpdateError: another writer got there first
        """
        pass

    @abstractmethod
    def list_expenses(
        self,
        company_id: Optional[str] = None,
        employee_id: Optional[str] = None,
        status: Optional[ExpenseStatus] = None,
        category: Optional[ExpenseCategory] = None,
        expense_date_from: Optional[date] = None,
        expense_date_to: Optional[date] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        """
        List expenses matching all given filters, newest first.

        Args:
            expense_date_from: Inclusive lower bound on ``expense_date``
            expense_date_to: Inclusive upper bound on ``expense_date``;
                expenses without a date never match a date range
            page: 1-based page number, only used with ``limit``
            limit: Page size, or None for every matching expense
        """
        pass

    @abstractmethod
    def count_expenses(
        self,
        company_id: Optional[str] = None,
        employee_id: Optional[str] = None,
        status: Optional[ExpenseStatus] = None,
        category: Optional[ExpenseCategory] = None,
        expense_date_from: Optional[date] = None,
        expense_date_to: Optional[date] = None,
    ) -> int:
        """Number of expenses ``list_expenses`` would return without paging"""
        pass

    @abstractmethod
    def pending_for_approver(
        self,
        approver_id: str,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        """
        Open expenses on which the approver still has a pending step, newest first.
        """
        pass

    def count_pending_for_approver(self, approver_id: str) -> int:
        return len(self.pending_for_approver(approver_id))

    @abstractmethod
    def expense_totals(
        self,
        company_id: str,
        created_from: datetime,
        created_before: datetime,
    ) -> list[ExpenseTotals]:
        """
        Count and sum converted amounts of a company's expenses created in
        ``[created_from, created_before)``, grouped by category and status.
        """
        pass


class RuleStoreBase(ABC):
    """Per-company approval rule persistence"""

    @abstractmethod
    def create(self, rule: ApprovalRule) -> ApprovalRule:
        pass

    @abstractmethod
    def get(self, rule_id: str) -> Optional[ApprovalRule]:
        pass

    @abstractmethod
    def update(self, rule: ApprovalRule) -> ApprovalRule:
        """
        Raises:
            RuleNotFoundError: no rule with that ID
        """
        pass

    @abstractmethod
    def delete(self, rule_id: str) -> bool:
        """
        Returns:
            True if a rule was deleted, False if not found
        """
        pass

    @abstractmethod
    def list_for_company(self, company_id: str, active_only: bool = False) -> list[ApprovalRule]:
        """
        List a company's rules, highest priority first.
        """
        pass

    @abstractmethod
    def find_active_rules(self, company_id: str, converted_amount: float) -> list[ApprovalRule]:
        """
        Active rules of the company whose amount range contains the amount.

        Category and department filters are left to the approver resolver.
        """
        pass


def has_pending_step(expense: Expense, approver_id: str) -> bool:
    return any(
        step.approver_id == approver_id and step.status == StepStatus.PENDING
        for step in expense.approvals
    )


def page_window(page: int, limit: Optional[int]) -> tuple[int, Optional[int]]:
    """Validate paging arguments and return (offset, limit)"""
    if page < 1:
        raise ValidationError(f"page must be at least 1, got {page}")
    if limit is None:
        return 0, None
    if limit < 1:
        raise ValidationError(f"limit must be at least 1, got {limit}")
    return (page - 1) * limit, limit
