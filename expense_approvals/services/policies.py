"""
Completion policies: when has an approval chain collected enough approvals?

Rejections are handled before these are consulted; a single rejection ends
the workflow regardless of policy.
"""

from typing import Optional, Sequence

from ..models import ApprovalPolicy, ApprovalRule, ApprovalStep, StepStatus


def effective_policy(rule: Optional[ApprovalRule]) -> ApprovalPolicy:
    """Expenses routed by the default (manager-only) policy are sequential"""
    return rule.policy if rule is not None else ApprovalPolicy.SEQUENTIAL


def _approved(steps: Sequence[ApprovalStep]) -> list[ApprovalStep]:
    return [step for step in steps if step.status == StepStatus.APPROVED]


def all_approved(steps: Sequence[ApprovalStep]) -> bool:
    return all(step.status == StepStatus.APPROVED for step in steps)


def percentage_met(steps: Sequence[ApprovalStep], percentage_required: Optional[int]) -> bool:
    # integer comparison; approved / total >= pct / 100 without float rounding
    if not steps:
        return True
    required = percentage_required if percentage_required is not None else 100
    return len(_approved(steps)) * 100 >= required * len(steps)


def specific_approver_approved(steps: Sequence[ApprovalStep], specific_approvers: Sequence[str]) -> bool:
    return any(step.approver_id in specific_approvers for step in _approved(steps))


def is_complete(steps: Sequence[ApprovalStep], rule: Optional[ApprovalRule]) -> bool:
    """
    Check whether the chain satisfies its rule's completion policy.

    - sequential: every step approved
    - percentage: approved share reaches percentage_required
    - specific_approver: any listed approver approved, or every step approved
    - hybrid: percentage met, or any listed approver approved
    """
    policy = effective_policy(rule)

    if policy == ApprovalPolicy.SEQUENTIAL:
        return all_approved(steps)

    if policy == ApprovalPolicy.PERCENTAGE:
        return percentage_met(steps, rule.percentage_required)

    if policy == ApprovalPolicy.SPECIFIC_APPROVER:
        return specific_approver_approved(steps, rule.specific_approvers) or all_approved(steps)

    if policy == ApprovalPolicy.HYBRID:
        return (
            percentage_met(steps, rule.percentage_required)
            or specific_approver_approved(steps, rule.specific_approvers)
        )

    raise ValueError(f"Unknown approval policy: {policy}")
