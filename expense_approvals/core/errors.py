"""
Error taxonomy for the approval engine.

Every error carries a stable ``error_code`` so the HTTP layer (or any other
caller) can map it to a response without string matching. None of these are
retried by the engine itself.
"""

from typing import Optional


class ExpenseApprovalError(Exception):
    """Base exception class for approval engine errors"""
    error_code = "EXPENSE_APPROVAL_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        super().__init__(self.message)


class ConfigurationError(ExpenseApprovalError):
    """Raised when an approval rule is misconfigured (rejected at save time)"""
    error_code = "CONFIGURATION_ERROR"


class ValidationError(ExpenseApprovalError):
    """Raised when a decision request is malformed"""
    error_code = "VALIDATION_ERROR"


class NotFoundError(ExpenseApprovalError):
    """Raised when an expense, rule or approval step does not exist"""
    error_code = "NOT_FOUND"


class ExpenseNotFoundError(NotFoundError):
    error_code = "EXPENSE_NOT_FOUND"


class RuleNotFoundError(NotFoundError):
    error_code = "RULE_NOT_FOUND"


class StepNotFoundError(NotFoundError):
    """Raised when the approver has no step in the expense's approval chain"""
    error_code = "APPROVAL_STEP_NOT_FOUND"


class InvalidStateError(ExpenseApprovalError):
    """Raised when a decision is not allowed in the expense's current state"""
    error_code = "INVALID_STATE"


class AlreadyDecidedError(InvalidStateError):
    """Raised when every step owned by the approver has already been decided"""
    error_code = "ALREADY_DECIDED"


class OutOfTurnError(InvalidStateError):
    """Raised when a sequential approver acts before earlier levels are done"""
    error_code = "OUT_OF_TURN"


class ConcurrentUpdateError(InvalidStateError):
    """Raised when a conditional write loses against a concurrent writer"""
    error_code = "CONCURRENT_UPDATE"


class PermissionDeniedError(ExpenseApprovalError):
    """Raised when a user attempts an action their role does not allow"""
    error_code = "PERMISSION_DENIED"


class InternalConsistencyError(ExpenseApprovalError):
    """Raised when stored data violates an invariant that validation should have enforced"""
    error_code = "INTERNAL_CONSISTENCY_ERROR"
