"""
Approver resolution: which people must approve an expense, and in what order.

Rule selection is a pure filter + reduce over the company's rules. Chain
construction only consults the user directory, so resolving the same expense
against the same rules always yields the same chain.
"""

from typing import Iterable, Optional

from loguru import logger

from ..core.errors import InternalConsistencyError
from ..models import ApprovalRule, ApprovalStep, Expense
from .directory import UserDirectory

MANAGER_SEQUENCE = 0


class ApproverResolver:
    """
    Stateless resolver from (expense, rules) to an ordered approval chain.

    Holds no per-call state; the rule set and directory are passed in
    explicitly so one instance can be shared across requests.
    """

    def select_rule(
        self,
        expense: Expense,
        company_rules: Iterable[ApprovalRule],
    ) -> Optional[ApprovalRule]:
        """
        Pick the authoritative rule for an expense.

        Among active rules whose conditions match, the highest priority wins;
        ties go to the most recently created rule, then to the first one in
        input order.

        Returns:
            The authoritative rule, or None when no rule matches
        """
        candidates = [rule for rule in company_rules if rule.applies_to(expense)]
        if not candidates:
            return None
        return max(candidates, key=lambda rule: (rule.priority, rule.created_at))

    def build_chain(
        self,
        expense: Expense,
        rule: Optional[ApprovalRule],
        directory: UserDirectory,
    ) -> list[ApprovalStep]:
        """
        Build the pending approval chain for an expense under a rule.

        Args:
            expense: The submitted expense
            rule: Authoritative rule, or None to use the default policy
                (the employee's manager as sole approver)
            directory: Source of the manager relationship and approver roles

        Returns:
            Steps sorted ascending by sequence, all pending. Empty means the
            expense needs no approval.

        Raises:
            InternalConsistencyError: the rule names an approver who is not a
                manager/admin of the company. Rules are validated when saved,
                so this indicates stale or corrupted data.
        """
        manager_id = directory.manager_of(expense.employee_id)

        if rule is None:
            if manager_id is None:
                return []
            return [
                ApprovalStep(
                    approver_id=manager_id,
                    sequence=MANAGER_SEQUENCE,
                    is_manager_approval=True,
                )
            ]

        steps: list[ApprovalStep] = []
        if rule.require_manager_approval and manager_id is not None:
            steps.append(
                ApprovalStep(
                    approver_id=manager_id,
                    sequence=MANAGER_SEQUENCE,
                    is_manager_approval=True,
                )
            )
        offset = 1 if steps else 0

        for approver in rule.approvers:
            if not directory.is_eligible_approver(approver.user_id, rule.company_id):
                raise InternalConsistencyError(
                    f"Rule {rule.id} references unknown approver {approver.user_id}"
                )
            if any(step.approver_id == approver.user_id for step in steps):
                # the manager is also a rule approver; keep the earlier step only
                logger.debug(
                    "Skipping duplicate approver",
                    rule_id=rule.id,
                    approver_id=approver.user_id,
                )
                continue
            steps.append(
                ApprovalStep(
                    approver_id=approver.user_id,
                    sequence=approver.sequence + offset,
                    is_required=approver.is_required,
                )
            )

        steps.sort(key=lambda step: step.sequence)
        return steps

    def resolve(
        self,
        expense: Expense,
        company_rules: Iterable[ApprovalRule],
        directory: UserDirectory,
    ) -> list[ApprovalStep]:
        """Select the authoritative rule and build its approval chain"""
        rule = self.select_rule(expense, company_rules)
        steps = self.build_chain(expense, rule, directory)
        logger.info(
            "Resolved approval chain",
            expense_id=expense.id,
            rule_id=rule.id if rule else None,
            approvers=[step.approver_id for step in steps],
        )
        return steps
