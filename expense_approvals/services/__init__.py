from .approval_state import ApprovalStateMachine, derive_status
from .approver_resolver import ApproverResolver
from .decision_processor import DecisionProcessor
from .directory import DirectoryUser, InMemoryUserDirectory, UserDirectory, UserRole
from .rule_admin import RuleAdministrator
from .workflow import ExpenseApprovalWorkflow, StatusAudit

__all__ = [
    "ApprovalStateMachine",
    "ApproverResolver",
    "DecisionProcessor",
    "DirectoryUser",
    "ExpenseApprovalWorkflow",
    "InMemoryUserDirectory",
    "RuleAdministrator",
    "StatusAudit",
    "UserDirectory",
    "UserRole",
    "derive_status",
]
