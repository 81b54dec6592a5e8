"""
In-memory stores (for tests and demo purposes).
In production, use a database (SQLite, SQL Server, PostgreSQL, etc.)
"""
import threading
from datetime import UTC, date, datetime
from typing import Dict, Optional

from ...core.errors import ConcurrentUpdateError, ExpenseNotFoundError, RuleNotFoundError
from ...models import ApprovalRule, Expense, ExpenseCategory, ExpenseStatus, ExpenseTotals
from .base import OPEN_STATUSES, ExpenseStoreBase, RuleStoreBase, has_pending_step, page_window


class InMemoryExpenseStore(ExpenseStoreBase):
    def __init__(self):
        self._expenses: Dict[str, Expense] = {}
        self._lock = threading.Lock()

    def create(self, expense: Expense) -> Expense:
        """Store a new expense and return the stored copy"""
        stored = expense.model_copy(deep=True)
        stored.version = 1
        with self._lock:
            self._expenses[stored.id] = stored
        return stored.model_copy(deep=True)

    def get(self, expense_id: str) -> Optional[Expense]:
        """Get expense by ID"""
        with self._lock:
            stored = self._expenses.get(expense_id)
            return stored.model_copy(deep=True) if stored else None

    def replace(self, expense: Expense, expected_version: int) -> Expense:
        """Overwrite an expense if nobody else has written it since it was read"""
        with self._lock:
            current = self._expenses.get(expense.id)
            if current is None:
                raise ExpenseNotFoundError(f"Expense {expense.id} not found")
            if current.version != expected_version:
                raise ConcurrentUpdateError(
                    f"Expense {expense.id} changed (version {current.version}, expected {expected_version})"
                )
            stored = expense.model_copy(deep=True)
            stored.version = expected_version + 1
            self._expenses[stored.id] = stored
            return stored.model_copy(deep=True)

    def _matching(
        self,
        company_id: Optional[str] = None,
        employee_id: Optional[str] = None,
        status: Optional[ExpenseStatus] = None,
        category: Optional[ExpenseCategory] = None,
        expense_date_from: Optional[date] = None,
        expense_date_to: Optional[date] = None,
    ) -> list[Expense]:
        with self._lock:
            expenses = [e.model_copy(deep=True) for e in self._expenses.values()]
        results = [
            e for e in expenses
            if (company_id is None or e.company_id == company_id)
            and (employee_id is None or e.employee_id == employee_id)
            and (status is None or e.status == status)
            and (category is None or e.category == category)
            and _in_date_range(e, expense_date_from, expense_date_to)
        ]
        results.sort(key=lambda e: e.created_at, reverse=True)
        return results

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
        offset, limit = page_window(page, limit)
        results = self._matching(
            company_id, employee_id, status, category, expense_date_from, expense_date_to
        )
        return _slice(results, offset, limit)

    def count_expenses(
        self,
        company_id: Optional[str] = None,
        employee_id: Optional[str] = None,
        status: Optional[ExpenseStatus] = None,
        category: Optional[ExpenseCategory] = None,
        expense_date_from: Optional[date] = None,
        expense_date_to: Optional[date] = None,
    ) -> int:
        return len(self._matching(
            company_id, employee_id, status, category, expense_date_from, expense_date_to
        ))

    def pending_for_approver(
        self,
        approver_id: str,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        offset, limit = page_window(page, limit)
        results = [
            e for e in self._matching()
            if e.status in OPEN_STATUSES and has_pending_step(e, approver_id)
        ]
        return _slice(results, offset, limit)

    def expense_totals(
        self,
        company_id: str,
        created_from: datetime,
        created_before: datetime,
    ) -> list[ExpenseTotals]:
        groups: Dict[tuple, ExpenseTotals] = {}
        for expense in self._matching(company_id=company_id):
            if not created_from <= expense.created_at < created_before:
                continue
            key = (expense.category, expense.status)
            totals = groups.setdefault(
                key, ExpenseTotals(category=expense.category, status=expense.status)
            )
            totals.count += 1
            totals.total_amount += expense.converted_amount
        return list(groups.values())


def _in_date_range(expense: Expense, start: Optional[date], end: Optional[date]) -> bool:
    if start is None and end is None:
        return True
    if expense.expense_date is None:
        return False
    return (start is None or expense.expense_date >= start) and (end is None or expense.expense_date <= end)


def _slice(expenses: list[Expense], offset: int, limit: Optional[int]) -> list[Expense]:
    if limit is None:
        return expenses[offset:]
    return expenses[offset:offset + limit]


class InMemoryRuleStore(RuleStoreBase):
    def __init__(self):
        self._rules: Dict[str, ApprovalRule] = {}
        self._lock = threading.Lock()

    def create(self, rule: ApprovalRule) -> ApprovalRule:
        with self._lock:
            self._rules[rule.id] = rule.model_copy(deep=True)
        return rule

    def get(self, rule_id: str) -> Optional[ApprovalRule]:
        with self._lock:
            rule = self._rules.get(rule_id)
            return rule.model_copy(deep=True) if rule else None

    def update(self, rule: ApprovalRule) -> ApprovalRule:
        with self._lock:
            if rule.id not in self._rules:
                raise RuleNotFoundError(f"Approval rule {rule.id} not found")
            stored = rule.model_copy(deep=True)
            stored.updated_at = datetime.now(UTC)
            self._rules[rule.id] = stored
            return stored.model_copy(deep=True)

    def delete(self, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None

    def list_for_company(self, company_id: str, active_only: bool = False) -> list[ApprovalRule]:
        with self._lock:
            rules = [r.model_copy(deep=True) for r in self._rules.values()]
        rules = [
            r for r in rules
            if r.company_id == company_id and (r.is_active or not active_only)
        ]
        rules.sort(key=lambda r: (r.priority, r.created_at), reverse=True)
        return rules

    def find_active_rules(self, company_id: str, converted_amount: float) -> list[ApprovalRule]:
        return [
            r for r in self.list_for_company(company_id, active_only=True)
            if r.conditions.min_amount <= converted_amount
            and (r.conditions.max_amount is None or converted_amount <= r.conditions.max_amount)
        ]
