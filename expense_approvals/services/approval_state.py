"""
Approval state machine for a single expense.

    pending --start()--> in_review --approve()--> approved
       |                     |
       |                     +------reject()----> rejected
       +--start([])--> approved

``approved`` and ``rejected`` are terminal: every mutating method refuses
to run once the expense has reached one of them. Administrative overrides are
the only exception and live in the decision processor.
"""

from datetime import datetime
from typing import Optional

from ..core.errors import InvalidStateError
from ..models import (
    ApprovalPolicy,
    ApprovalRule,
    ApprovalStep,
    Expense,
    ExpenseStatus,
    StepStatus,
)
from .policies import effective_policy, is_complete


class ApprovalStateMachine:
    """Wraps an expense and mutates its approval fields in place"""

    def __init__(self, expense: Expense):
        self.expense = expense

    @property
    def is_terminal(self) -> bool:
        return self.expense.is_terminal

    def pending_steps(self) -> list[ApprovalStep]:
        """Pending steps ordered by sequence, independent of storage order"""
        pending = [step for step in self.expense.approvals if step.status == StepStatus.PENDING]
        return sorted(pending, key=lambda step: step.sequence)

    def lowest_pending_level(self) -> Optional[int]:
        pending = self.pending_steps()
        return pending[0].sequence if pending else None

    def active_steps(self) -> list[ApprovalStep]:
        """Steps awaiting action at the current approval level"""
        return [
            step for step in self.pending_steps()
            if step.sequence == self.expense.current_approval_level
        ]

    def actionable_steps(self, rule: Optional[ApprovalRule]) -> list[ApprovalStep]:
        """
        Steps whose approver may act right now: the current level for
        sequential chains, every pending step otherwise.
        """
        if self.is_terminal:
            return []
        if effective_policy(rule) == ApprovalPolicy.SEQUENTIAL:
            return self.active_steps()
        return self.pending_steps()

    def _ensure_open(self) -> None:
        if self.is_terminal:
            raise InvalidStateError(
                f"Expense {self.expense.id} is already {self.expense.status.value}"
            )

    def start(self, chain: list[ApprovalStep], rule_id: Optional[str], now: datetime) -> Expense:
        """
        Attach the resolved chain and enter review.

        An empty chain means no approval is needed and the expense is
        approved on the spot.
        """
        self._ensure_open()
        if self.expense.approvals:
            raise InvalidStateError(f"Expense {self.expense.id} already has an approval chain")

        self.expense.approvals = list(chain)
        self.expense.rule_id = rule_id

        if not chain:
            self.expense.status = ExpenseStatus.APPROVED
            self.expense.approved_at = now
            self.expense.current_approval_level = 0
            return self.expense

        self.expense.status = ExpenseStatus.IN_REVIEW
        self.expense.current_approval_level = self.lowest_pending_level()
        return self.expense

    def record_step(
        self,
        step: ApprovalStep,
        status: StepStatus,
        comments: Optional[str],
        now: datetime,
    ) -> None:
        self._ensure_open()
        if step.status != StepStatus.PENDING:
            raise InvalidStateError(
                f"Step for approver {step.approver_id} is already {step.status.value}"
            )
        step.status = status
        step.comments = comments
        step.decided_at = now

    def advance(self) -> None:
        """Move the current level to the lowest sequence still pending"""
        level = self.lowest_pending_level()
        if level is not None:
            self.expense.current_approval_level = level

    def approve(self, final_approver: str, now: datetime) -> None:
        self._ensure_open()
        self.expense.status = ExpenseStatus.APPROVED
        self.expense.approved_at = now
        self.expense.final_approver = final_approver

    def reject(self, reason: Optional[str], now: datetime) -> None:
        self._ensure_open()
        self.expense.status = ExpenseStatus.REJECTED
        self.expense.rejected_at = now
        self.expense.rejection_reason = reason


def derive_status(expense: Expense, rule: Optional[ApprovalRule]) -> ExpenseStatus:
    """
    Recompute an expense's status from its approval steps alone.

    Used for audits: a stored status that disagrees with this value means
    the record was modified outside the engine.
    """
    if expense.override_decision is not None:
        return ExpenseStatus(expense.override_decision.value)
    if not expense.approvals:
        return ExpenseStatus.APPROVED
    if any(step.status == StepStatus.REJECTED for step in expense.approvals):
        return ExpenseStatus.REJECTED
    if is_complete(expense.approvals, rule):
        return ExpenseStatus.APPROVED
    return ExpenseStatus.IN_REVIEW
