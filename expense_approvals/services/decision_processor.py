"""
Decision processing: apply one approver's (or an administrator's) decision
to an expense and work out what happens next.

The processor never mutates the expense it is given. It returns an updated
copy, which the caller persists atomically (or discards), so a failed write
can never leave a half-applied decision behind.
"""

from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from ..core.errors import (
    AlreadyDecidedError,
    InternalConsistencyError,
    InvalidStateError,
    OutOfTurnError,
    StepNotFoundError,
    ValidationError,
)
from ..models import (
    ApprovalPolicy,
    ApprovalRule,
    ApprovalStep,
    Decision,
    Expense,
    ExpenseStatus,
    StepStatus,
)
from ..models.expense import utcnow
from .approval_state import ApprovalStateMachine
from .policies import effective_policy, is_complete


def parse_decision(decision: Decision | str) -> Decision:
    try:
        return Decision(decision)
    except ValueError:
        raise ValidationError(
            f"Invalid decision '{decision}': expected one of "
            + ", ".join(d.value for d in Decision)
        )


class DecisionProcessor:
    """
    Stateless decision engine.

    Configuration is fixed at construction; expense, rule and actor are
    passed on every call.
    """

    def __init__(
        self,
        require_rejection_comments: bool = True,
        override_comment: str = "Overridden by admin",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.require_rejection_comments = require_rejection_comments
        self.override_comment = override_comment
        self._clock = clock

    def _check_comments(self, decision: Decision, comments: Optional[str]) -> None:
        if (
            decision == Decision.REJECTED
            and self.require_rejection_comments
            and not (comments and comments.strip())
        ):
            raise ValidationError("Comments are required when rejecting an expense")

    def _find_pending_step(
        self,
        machine: ApprovalStateMachine,
        rule: Optional[ApprovalRule],
        approver_id: str,
    ) -> ApprovalStep:
        expense = machine.expense
        owned = expense.steps_for(approver_id)
        if not owned:
            raise StepNotFoundError(
                f"Approver {approver_id} is not part of the approval chain for expense {expense.id}"
            )

        pending = sorted(
            (step for step in owned if step.status == StepStatus.PENDING),
            key=lambda step: step.sequence,
        )
        if not pending:
            raise AlreadyDecidedError(
                f"Approver {approver_id} has already decided on expense {expense.id}"
            )

        step = pending[0]
        if effective_policy(rule) == ApprovalPolicy.SEQUENTIAL:
            level = machine.lowest_pending_level()
            if step.sequence != level:
                raise OutOfTurnError(
                    f"Expense {expense.id} is waiting on approval level {level}, "
                    f"approver {approver_id} is at level {step.sequence}"
                )
        return step

    def apply_decision(
        self,
        expense: Expense,
        rule: Optional[ApprovalRule],
        approver_id: str,
        decision: Decision | str,
        comments: Optional[str] = None,
    ) -> Expense:
        """
        Apply an approver's decision.

        Args:
            expense: Expense as loaded from storage (left untouched)
            rule: The rule the chain was resolved from, or None for the
                default manager-only policy
            approver_id: User acting on the expense
            decision: "approved" or "rejected"
            comments: Free text; becomes the rejection reason on rejection

        Returns:
            Updated copy of the expense

        Raises:
            ValidationError: unknown decision, or rejection without comments
            InvalidStateError: expense already approved/rejected
            StepNotFoundError: approver is not in the chain
            AlreadyDecidedError: approver's steps are all decided
            OutOfTurnError: sequential chain is waiting on an earlier level
        """
        decision = parse_decision(decision)

        if expense.is_terminal:
            raise InvalidStateError(
                f"Expense {expense.id} is already {expense.status.value}; no further decisions accepted"
            )
        if rule is not None and expense.rule_id != rule.id:
            raise InternalConsistencyError(
                f"Expense {expense.id} was routed by rule {expense.rule_id}, not {rule.id}"
            )
        self._check_comments(decision, comments)

        updated = expense.model_copy(deep=True)
        machine = ApprovalStateMachine(updated)
        step = self._find_pending_step(machine, rule, approver_id)
        now = self._clock()

        if decision == Decision.REJECTED:
            machine.record_step(step, StepStatus.REJECTED, comments, now)
            machine.reject(comments, now)
        else:
            machine.record_step(step, StepStatus.APPROVED, comments, now)
            if is_complete(updated.approvals, rule):
                machine.approve(approver_id, now)
            else:
                machine.advance()

        updated.updated_at = now

        logger.info(
            "Approval decision applied",
            expense_id=updated.id,
            approver_id=approver_id,
            decision=decision.value,
            policy=effective_policy(rule).value,
            status=updated.status.value,
            current_level=updated.current_approval_level,
        )
        return updated

    def override_decision(
        self,
        expense: Expense,
        admin_id: str,
        decision: Decision | str,
        comments: Optional[str] = None,
    ) -> Expense:
        """
        Force an expense into a terminal state, bypassing the approval policy.

        Works from any prior state, including an already approved or rejected
        expense. Every step still pending is marked overridden.
        """
        decision = parse_decision(decision)
        self._check_comments(decision, comments)

        updated = expense.model_copy(deep=True)
        now = self._clock()

        updated.status = ExpenseStatus(decision.value)
        updated.final_approver = admin_id
        updated.override_decision = decision
        if decision == Decision.APPROVED:
            updated.approved_at = now
            updated.rejected_at = None
            updated.rejection_reason = None
        else:
            updated.rejected_at = now
            updated.rejection_reason = comments
            updated.approved_at = None

        overridden = 0
        for step in updated.approvals:
            if step.status == StepStatus.PENDING:
                step.status = StepStatus.OVERRIDDEN
                step.comments = self.override_comment
                step.decided_at = now
                overridden += 1

        updated.updated_at = now

        logger.warning(
            "Administrative override applied",
            expense_id=updated.id,
            admin_id=admin_id,
            decision=decision.value,
            previous_status=expense.status.value,
            overridden_steps=overridden,
        )
        return updated
