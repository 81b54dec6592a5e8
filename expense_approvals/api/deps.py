from fastapi import Depends

from ..services.events import get_event_publisher
from ..services.rule_admin import RuleAdministrator
from ..services.workflow import ExpenseApprovalWorkflow

_workflow: ExpenseApprovalWorkflow | None = None


def get_workflow() -> ExpenseApprovalWorkflow:
    """Process-wide workflow, built from settings on first use (override in tests)"""
    global _workflow
    if _workflow is None:
        _workflow = ExpenseApprovalWorkflow.from_settings(event_publisher=get_event_publisher())
    return _workflow


def get_rule_administrator(
    workflow: ExpenseApprovalWorkflow = Depends(get_workflow),
) -> RuleAdministrator:
    return RuleAdministrator(workflow.rule_store, workflow.directory)
