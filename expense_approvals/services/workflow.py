"""
Expense approval workflow: the persistence-aware shell around the engine.

The resolver and decision processor are pure; this module loads what they
need, persists what they return, and publishes events about it. Decisions
use optimistic concurrency: read the expense, compute the new state, write it
back only if nobody else wrote first, otherwise re-read and try again. A
retry on a step somebody else already decided surfaces as
AlreadyDecidedError / InvalidStateError from the processor.
"""

from datetime import UTC, date, datetime
from typing import Callable, Optional

from loguru import logger
from pydantic import BaseModel

from ..core.config import settings
from ..core.errors import (
    ConcurrentUpdateError,
    ExpenseNotFoundError,
    InvalidStateError,
    PermissionDeniedError,
)
from ..models import (
    ApprovalRule,
    CategoryBreakdown,
    DashboardStats,
    Decision,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
)
from ..models.expense import utcnow
from .approval_state import ApprovalStateMachine, derive_status
from .approver_resolver import ApproverResolver
from .decision_processor import DecisionProcessor, parse_decision
from .directory import InMemoryUserDirectory, UserDirectory
from .events import (
    EXPENSE_DECIDED,
    EXPENSE_OVERRIDDEN,
    EXPENSE_SUBMITTED,
    EventPublisher,
    ExpenseApprovalEvent,
)
from .storage import (
    ExpenseStoreBase,
    RuleStoreBase,
    SQLiteExpenseStore,
    SQLiteRuleStore,
)
from .storage.base import OPEN_STATUSES

RECENT_EXPENSES = 5


class StatusAudit(BaseModel):
    """Stored status versus the status re-derived from the approval steps"""
    expense_id: str
    stored_status: ExpenseStatus
    derived_status: ExpenseStatus
    consistent: bool


def month_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """UTC start of the month containing ``moment`` and of the month after it"""
    moment = moment.astimezone(UTC)
    start = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        return start, start.replace(year=start.year + 1, month=1)
    return start, start.replace(month=start.month + 1)


class ExpenseApprovalWorkflow:
    def __init__(
        self,
        expense_store: ExpenseStoreBase,
        rule_store: RuleStoreBase,
        directory: UserDirectory,
        resolver: Optional[ApproverResolver] = None,
        processor: Optional[DecisionProcessor] = None,
        event_publisher: Optional[EventPublisher] = None,
        max_retries: int = 3,
    ):
        self.expense_store = expense_store
        self.rule_store = rule_store
        self.directory = directory
        self.resolver = resolver or ApproverResolver()
        self.processor = processor or DecisionProcessor()
        self.event_publisher = event_publisher or EventPublisher(service_bus_sender=None)
        self.max_retries = max(1, max_retries)

    @classmethod
    def from_settings(
        cls,
        directory: Optional[UserDirectory] = None,
        event_publisher: Optional[EventPublisher] = None,
    ) -> "ExpenseApprovalWorkflow":
        """Wire SQLite stores and a configured processor from application settings"""
        if directory is None:
            if settings.user_directory_file:
                directory = InMemoryUserDirectory.from_json_file(settings.user_directory_file)
            else:
                directory = InMemoryUserDirectory()

        return cls(
            expense_store=SQLiteExpenseStore(settings.database_path),
            rule_store=SQLiteRuleStore(settings.database_path),
            directory=directory,
            processor=DecisionProcessor(
                require_rejection_comments=settings.require_rejection_comments,
                override_comment=settings.override_comment,
            ),
            event_publisher=event_publisher,
            max_retries=settings.decision_max_retries,
        )

    # ------------------------------------------------------------------ reads

    def get_expense(self, expense_id: str) -> Expense:
        expense = self.expense_store.get(expense_id)
        if expense is None:
            raise ExpenseNotFoundError(f"Expense {expense_id} not found")
        return expense

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
        return self.expense_store.list_expenses(
            company_id=company_id,
            employee_id=employee_id,
            status=status,
            category=category,
            expense_date_from=expense_date_from,
            expense_date_to=expense_date_to,
            page=page,
            limit=limit,
        )

    def count_expenses(
        self,
        company_id: Optional[str] = None,
        employee_id: Optional[str] = None,
        status: Optional[ExpenseStatus] = None,
        category: Optional[ExpenseCategory] = None,
        expense_date_from: Optional[date] = None,
        expense_date_to: Optional[date] = None,
    ) -> int:
        return self.expense_store.count_expenses(
            company_id=company_id,
            employee_id=employee_id,
            status=status,
            category=category,
            expense_date_from=expense_date_from,
            expense_date_to=expense_date_to,
        )

    def pending_for_approver(
        self,
        approver_id: str,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        return self.expense_store.pending_for_approver(approver_id, page=page, limit=limit)

    def count_pending_for_approver(self, approver_id: str) -> int:
        return self.expense_store.count_pending_for_approver(approver_id)

    def dashboard_stats(self, company_id: str, now: Optional[datetime] = None) -> DashboardStats:
        """
        Summarize a company's expense activity for the month containing ``now``.

        Monthly figures cover expenses created in ``[period_start, period_end)``.
        ``pending_expenses`` counts every open expense regardless of age, and
        ``recent_expenses`` is the five newest expenses of the company.
        """
        period_start, period_end = month_bounds(now or utcnow())
        totals = self.expense_store.expense_totals(company_id, period_start, period_end)

        by_category: dict[ExpenseCategory, CategoryBreakdown] = {}
        for group in totals:
            breakdown = by_category.setdefault(
                group.category,
                CategoryBreakdown(category=group.category, count=0, total_amount=0.0),
            )
            breakdown.count += group.count
            breakdown.total_amount += group.total_amount

        pending = sum(
            self.expense_store.count_expenses(company_id=company_id, status=status)
            for status in OPEN_STATUSES
        )

        return DashboardStats(
            company_id=company_id,
            period_start=period_start,
            period_end=period_end,
            total_users=len(self.directory.users_in_company(company_id)),
            total_expenses=sum(group.count for group in totals),
            pending_expenses=pending,
            total_approved_amount=sum(
                group.total_amount for group in totals if group.status == ExpenseStatus.APPROVED
            ),
            by_category=sorted(by_category.values(), key=lambda b: b.total_amount, reverse=True),
            recent_expenses=self.expense_store.list_expenses(
                company_id=company_id, limit=RECENT_EXPENSES
            ),
        )

    def rule_for(self, expense: Expense) -> Optional[ApprovalRule]:
        """The rule an expense was routed by, or None for the default policy"""
        if expense.rule_id is None:
            return None
        rule = self.rule_store.get(expense.rule_id)
        if rule is None:
            logger.warning(
                "Routing rule no longer exists, using sequential completion",
                expense_id=expense.id,
                rule_id=expense.rule_id,
            )
        return rule

    def awaiting_approvers(self, expense: Expense) -> list[str]:
        """Approvers who may act on the expense right now"""
        machine = ApprovalStateMachine(expense)
        return [step.approver_id for step in machine.actionable_steps(self.rule_for(expense))]

    def audit(self, expense_id: str) -> StatusAudit:
        expense = self.get_expense(expense_id)
        derived = derive_status(expense, self.rule_for(expense))
        # a chain that is still being reviewed derives to in_review, never pending
        stored = expense.status
        consistent = derived == stored or (
            stored == ExpenseStatus.PENDING and derived == ExpenseStatus.IN_REVIEW
        )
        if not consistent:
            logger.error(
                "Expense status does not match its approval steps",
                expense_id=expense_id,
                stored_status=stored.value,
                derived_status=derived.value,
            )
        return StatusAudit(
            expense_id=expense_id,
            stored_status=stored,
            derived_status=derived,
            consistent=consistent,
        )

    # ----------------------------------------------------------------- writes

    def submit_expense(self, expense: Expense) -> Expense:
        """
        Route a newly submitted expense and persist it.

        Args:
            expense: New expense with ``converted_amount`` already in
                company currency

        Returns:
            The stored expense, in review or already auto-approved
        """
        if expense.status != ExpenseStatus.PENDING or expense.approvals:
            raise InvalidStateError(f"Expense {expense.id} has already been submitted")

        expense = expense.model_copy(deep=True)
        if expense.department is None:
            employee = self.directory.get_user(expense.employee_id)
            if employee is not None:
                expense.department = employee.department

        rules = self.rule_store.find_active_rules(expense.company_id, expense.converted_amount)
        rule = self.resolver.select_rule(expense, rules)
        chain = self.resolver.build_chain(expense, rule, self.directory)

        ApprovalStateMachine(expense).start(chain, rule.id if rule else None, utcnow())
        stored = self.expense_store.create(expense)

        logger.info(
            "Expense submitted",
            expense_id=stored.id,
            company_id=stored.company_id,
            rule_id=stored.rule_id,
            status=stored.status.value,
            chain=[step.approver_id for step in stored.approvals],
        )
        self._publish(ExpenseApprovalEvent.from_expense(
            EXPENSE_SUBMITTED,
            stored,
            actor_id=stored.employee_id,
            next_approvers=self.awaiting_approvers(stored),
        ))
        return stored

    def decide(
        self,
        expense_id: str,
        approver_id: str,
        decision: Decision | str,
        comments: Optional[str] = None,
    ) -> Expense:
        """Apply an approver's decision and persist it (see DecisionProcessor.apply_decision)"""
        decision = parse_decision(decision)
        stored = self._write_with_retry(
            expense_id,
            lambda expense: self.processor.apply_decision(
                expense, self.rule_for(expense), approver_id, decision, comments
            ),
        )
        self._publish(ExpenseApprovalEvent.from_expense(
            EXPENSE_DECIDED,
            stored,
            actor_id=approver_id,
            decision=decision.value,
            next_approvers=self.awaiting_approvers(stored),
        ))
        return stored

    def override(
        self,
        expense_id: str,
        admin_id: str,
        decision: Decision | str,
        comments: Optional[str] = None,
    ) -> Expense:
        """
        Administrative override of the approval process.

        Raises:
            PermissionDeniedError: the actor is not an admin of the expense's company
        """
        decision = parse_decision(decision)
        expense = self.get_expense(expense_id)
        if not self.directory.is_admin(admin_id, expense.company_id):
            raise PermissionDeniedError(
                f"User {admin_id} is not an admin of company {expense.company_id}"
            )

        stored = self._write_with_retry(
            expense_id,
            lambda current: self.processor.override_decision(current, admin_id, decision, comments),
        )
        self._publish(ExpenseApprovalEvent.from_expense(
            EXPENSE_OVERRIDDEN,
            stored,
            actor_id=admin_id,
            decision=decision.value,
        ))
        return stored

    def _write_with_retry(
        self,
        expense_id: str,
        compute: Callable[[Expense], Expense],
    ) -> Expense:
        for attempt in range(1, self.max_retries + 1):
            current = self.get_expense(expense_id)
            updated = compute(current)
            try:
                return self.expense_store.replace(updated, expected_version=current.version)
            except ConcurrentUpdateError:
                logger.info(
                    "Concurrent update on expense, re-reading",
                    expense_id=expense_id,
                    attempt=attempt,
                )

        raise ConcurrentUpdateError(
            f"Expense {expense_id} kept changing; gave up after {self.max_retries} attempts"
        )

    def _publish(self, event: ExpenseApprovalEvent) -> None:
        try:
            self.event_publisher.publish(event)
        except Exception as e:
            # Don't fail the decision if event publishing fails
            logger.warning(
                "Failed to publish approval event",
                event_type=event.event_type,
                expense_id=event.expense_id,
                error=str(e),
            )
