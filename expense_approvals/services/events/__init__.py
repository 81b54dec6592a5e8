from .event_publisher import (
    EXPENSE_DECIDED,
    EXPENSE_OVERRIDDEN,
    EXPENSE_SUBMITTED,
    EventPublisher,
    ExpenseApprovalEvent,
    get_event_publisher,
)

__all__ = [
    "EXPENSE_DECIDED",
    "EXPENSE_OVERRIDDEN",
    "EXPENSE_SUBMITTED",
    "EventPublisher",
    "ExpenseApprovalEvent",
    "get_event_publisher",
]
