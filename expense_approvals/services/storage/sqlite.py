"""
SQLite-based expense and approval-rule storage for production use.

Documents are stored as JSON next to the indexed columns the queries need.
Decisions are serialized with a conditional UPDATE on the version column, so
of two concurrent writers that read the same version exactly one wins.
"""

import sqlite3
from abc import ABC, abstractmethod
from contextlib import closing
from datetime import UTC, date, datetime
from typing import Optional

from ...core.errors import ConcurrentUpdateError, ExpenseNotFoundError, RuleNotFoundError
from ...models import ApprovalRule, Expense, ExpenseCategory, ExpenseStatus, ExpenseTotals
from .base import OPEN_STATUSES, ExpenseStoreBase, RuleStoreBase, has_pending_step, page_window


def _timestamp(moment: datetime) -> str:
    # Stored in UTC so text ordering matches time ordering
    return moment.astimezone(UTC).isoformat()


class _SQLiteStore(ABC):
    def __init__(self, db_path: str):
        """
        Initialize store with database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._init_database()

    @abstractmethod
    def _init_database(self):
        """Create tables and indexes if they don't exist"""
        pass

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory"""
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn


class SQLiteExpenseStore(_SQLiteStore, ExpenseStoreBase):
    """
    SQLite-backed expense store.

    Features:
    - Persistent storage across application restarts
    - Status/company/employee/date filtering on indexed columns
    - LIMIT/OFFSET paging and grouped totals in SQL
    - Optimistic concurrency via the version column
    """

    def _init_database(self):
        """Create expenses table if it doesn't exist"""
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS expenses (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    employee_id TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    category TEXT NOT NULL,
                    converted_amount REAL NOT NULL DEFAULT 0,
                    expense_date TEXT,
                    document TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT,
                    CHECK (status IN ('pending', 'in_review', 'approved', 'rejected'))
                )
            """)

            # Create indexes for common queries
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_expenses_company_status
                ON expenses(company_id, status)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_expenses_company_created
                ON expenses(company_id, created_at)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_expenses_employee
                ON expenses(employee_id)
            """)

            conn.commit()

    def create(self, expense: Expense) -> Expense:
        stored = expense.model_copy(deep=True)
        stored.version = 1

        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                INSERT INTO expenses (
                    id, company_id, employee_id, status, category,
                    converted_amount, expense_date, document, version, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                stored.id,
                stored.company_id,
                stored.employee_id,
                stored.status.value,
                stored.category.value,
                stored.converted_amount,
                stored.expense_date.isoformat() if stored.expense_date else None,
                stored.model_dump_json(),
                stored.version,
                _timestamp(stored.created_at),
            ))

            conn.commit()

        return stored

    def get(self, expense_id: str) -> Optional[Expense]:
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT document FROM expenses WHERE id = ?", (expense_id,))
            row = cursor.fetchone()

        if row is None:
            return None
        return Expense.model_validate_json(row["document"])

    def replace(self, expense: Expense, expected_version: int) -> Expense:
        stored = expense.model_copy(deep=True)
        stored.version = expected_version + 1
        updated_at = _timestamp(stored.updated_at or datetime.now(UTC))

        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                UPDATE expenses
                SET document = ?,
                    status = ?,
                    converted_amount = ?,
                    expense_date = ?,
                    version = ?,
                    updated_at = ?
                WHERE id = ? AND version = ?
            """, (
                stored.model_dump_json(),
                stored.status.value,
                stored.converted_amount,
                stored.expense_date.isoformat() if stored.expense_date else None,
                stored.version,
                updated_at,
                stored.id,
                expected_version,
            ))

            rows_affected = cursor.rowcount
            conn.commit()

            if rows_affected == 0:
                cursor.execute("SELECT version FROM expenses WHERE id = ?", (stored.id,))
                row = cursor.fetchone()
                if row is None:
                    raise ExpenseNotFoundError(f"Expense {stored.id} not found")
                raise ConcurrentUpdateError(
                    f"Expense {stored.id} changed (version {row['version']}, expected {expected_version})"
                )

        return stored

    @staticmethod
    def _where(
        company_id: Optional[str] = None,
        employee_id: Optional[str] = None,
        status: Optional[ExpenseStatus] = None,
        category: Optional[ExpenseCategory] = None,
        expense_date_from: Optional[date] = None,
        expense_date_to: Optional[date] = None,
    ) -> tuple[str, list]:
        clauses = []
        params = []
        for condition, value in (
            ("company_id = ?", company_id),
            ("employee_id = ?", employee_id),
            ("status = ?", status.value if status else None),
            ("category = ?", category.value if category else None),
            ("expense_date >= ?", expense_date_from.isoformat() if expense_date_from else None),
            ("expense_date <= ?", expense_date_to.isoformat() if expense_date_to else None),
        ):
            if value is not None:
                clauses.append(condition)
                params.append(value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

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
        where, params = self._where(
            company_id, employee_id, status, category, expense_date_from, expense_date_to
        )

        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()

            # LIMIT -1 means no limit in SQLite
            cursor.execute(f"""
                SELECT document
                FROM expenses
                {where}
                ORDER BY created_at DESC
                LIMIT ? OFFSET ?
            """, params + [limit if limit is not None else -1, offset])

            rows = cursor.fetchall()

        return [Expense.model_validate_json(row["document"]) for row in rows]

    def count_expenses(
        self,
        company_id: Optional[str] = None,
        employee_id: Optional[str] = None,
        status: Optional[ExpenseStatus] = None,
        category: Optional[ExpenseCategory] = None,
        expense_date_from: Optional[date] = None,
        expense_date_to: Optional[date] = None,
    ) -> int:
        where, params = self._where(
            company_id, employee_id, status, category, expense_date_from, expense_date_to
        )

        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT COUNT(*) FROM expenses {where}", params)
            return cursor.fetchone()[0]

    def pending_for_approver(
        self,
        approver_id: str,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        offset, limit = page_window(page, limit)

        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                SELECT document
                FROM expenses
                WHERE status IN (?, ?)
                ORDER BY created_at DESC
            """, tuple(status.value for status in OPEN_STATUSES))

            rows = cursor.fetchall()

        # Filter by pending step (approvals live inside the JSON document)
        results = []
        for row in rows:
            expense = Expense.model_validate_json(row["document"])
            if has_pending_step(expense, approver_id):
                results.append(expense)

        if limit is None:
            return results[offset:]
        return results[offset:offset + limit]

    def expense_totals(
        self,
        company_id: str,
        created_from: datetime,
        created_before: datetime,
    ) -> list[ExpenseTotals]:
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                SELECT category, status, COUNT(*) AS count, SUM(converted_amount) AS total_amount
                FROM expenses
                WHERE company_id = ? AND created_at >= ? AND created_at < ?
                GROUP BY category, status
            """, (company_id, _timestamp(created_from), _timestamp(created_before)))

            rows = cursor.fetchall()

        return [
            ExpenseTotals(
                category=row["category"],
                status=row["status"],
                count=row["count"],
                total_amount=row["total_amount"] or 0.0,
            )
            for row in rows
        ]


class SQLiteRuleStore(_SQLiteStore, RuleStoreBase):
    """SQLite-backed approval rule store"""

    def _init_database(self):
        """Create approval_rules table if it doesn't exist"""
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS approval_rules (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    priority INTEGER NOT NULL DEFAULT 1,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    min_amount REAL NOT NULL DEFAULT 0,
                    max_amount REAL,
                    document TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_rules_company_active
                ON approval_rules(company_id, is_active)
            """)

            conn.commit()

    @staticmethod
    def _columns(rule: ApprovalRule) -> tuple:
        return (
            rule.company_id,
            rule.priority,
            int(rule.is_active),
            rule.conditions.min_amount,
            rule.conditions.max_amount,
            rule.model_dump_json(),
        )

    def create(self, rule: ApprovalRule) -> ApprovalRule:
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                INSERT INTO approval_rules (company_id, priority, is_active, min_amount, max_amount, document, id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, self._columns(rule) + (rule.id, _timestamp(rule.created_at)))

            conn.commit()

        return rule

    def get(self, rule_id: str) -> Optional[ApprovalRule]:
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT document FROM approval_rules WHERE id = ?", (rule_id,))
            row = cursor.fetchone()

        if row is None:
            return None
        return ApprovalRule.model_validate_json(row["document"])

    def update(self, rule: ApprovalRule) -> ApprovalRule:
        stored = rule.model_copy(deep=True)
        stored.updated_at = datetime.now(UTC)

        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                UPDATE approval_rules
                SET company_id = ?,
                    priority = ?,
                    is_active = ?,
                    min_amount = ?,
                    max_amount = ?,
                    document = ?
                WHERE id = ?
            """, self._columns(stored) + (stored.id,))

            rows_affected = cursor.rowcount
            conn.commit()

        if rows_affected == 0:
            raise RuleNotFoundError(f"Approval rule {rule.id} not found")
        return stored

    def delete(self, rule_id: str) -> bool:
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM approval_rules WHERE id = ?", (rule_id,))
            rows_affected = cursor.rowcount
            conn.commit()

        return rows_affected > 0

    def list_for_company(self, company_id: str, active_only: bool = False) -> list[ApprovalRule]:
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                SELECT document
                FROM approval_rules
                WHERE company_id = ? AND (is_active = 1 OR ? = 0)
                ORDER BY priority DESC, created_at DESC
            """, (company_id, int(active_only)))

            rows = cursor.fetchall()

        return [ApprovalRule.model_validate_json(row["document"]) for row in rows]

    def find_active_rules(self, company_id: str, converted_amount: float) -> list[ApprovalRule]:
        with closing(self._get_connection()) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                SELECT document
                FROM approval_rules
                WHERE company_id = ?
                  AND is_active = 1
                  AND min_amount <= ?
                  AND (max_amount IS NULL OR max_amount >= ?)
                ORDER BY priority DESC, created_at DESC
            """, (company_id, converted_amount, converted_amount))

            rows = cursor.fetchall()

        return [ApprovalRule.model_validate_json(row["document"]) for row in rows]
