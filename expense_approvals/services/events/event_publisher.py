"""
Azure Service Bus event publishing for expense approval events.

Enables downstream systems to react to approval outcomes:
- Payroll/reimbursement systems can pay out approved expenses
- Audit systems can track every decision and override
- Notification systems can alert employees
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Optional

from loguru import logger

from ...core.config import settings
from ...models import Expense

EXPENSE_SUBMITTED = "ExpenseSubmitted"
EXPENSE_DECIDED = "ExpenseDecided"
EXPENSE_OVERRIDDEN = "ExpenseOverridden"


@dataclass
class ExpenseApprovalEvent:
    """
    Event published when an expense enters or moves through approval.

    Carries enough of the expense for consumers to act without reading it
    back from the API.
    """

    event_type: str
    expense_id: str
    company_id: str
    employee_id: str
    status: str
    converted_amount: float
    actor_id: Optional[str] = None
    decision: Optional[str] = None
    rule_id: Optional[str] = None
    next_approvers: list[str] = field(default_factory=list)
    timestamp: Optional[str] = None

    def __post_init__(self):
        """Set timestamp if not provided"""
        if self.timestamp is None:
            self.timestamp = datetime.now(UTC).isoformat()

    @classmethod
    def from_expense(
        cls,
        event_type: str,
        expense: Expense,
        actor_id: Optional[str] = None,
        decision: Optional[str] = None,
        next_approvers: Optional[list[str]] = None,
    ) -> "ExpenseApprovalEvent":
        return cls(
            event_type=event_type,
            expense_id=expense.id,
            company_id=expense.company_id,
            employee_id=expense.employee_id,
            status=expense.status.value,
            converted_amount=expense.converted_amount,
            actor_id=actor_id,
            decision=decision,
            rule_id=expense.rule_id,
            next_approvers=next_approvers or [],
        )

    def to_dict(self) -> dict:
        """
        Convert event to dictionary for JSON serialization.

        Returns:
            Dictionary representation suitable for Service Bus message body
        """
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class EventPublisher:
    """
    Publishes events to an Azure Service Bus queue or topic.

    Usage:
        from azure.servicebus import ServiceBusClient
        client = ServiceBusClient.from_connection_string(conn_str)
        sender = client.get_queue_sender(queue_name="expense-events")
        publisher = EventPublisher(service_bus_sender=sender)

        # Disabled mode (no Service Bus configured)
        publisher = EventPublisher(service_bus_sender=None)
    """

    def __init__(
        self,
        service_bus_sender: Optional[object] = None,
        entity_name: str = "expense-events"
    ):
        """
        Initialize event publisher.

        Args:
            service_bus_sender: Azure Service Bus sender (ServiceBusSender) or None to disable
            entity_name: Service Bus queue or topic name
        """
        self.service_bus_sender = service_bus_sender
        self.entity_name = entity_name

    @property
    def enabled(self) -> bool:
        return self.service_bus_sender is not None

    def publish(self, event: ExpenseApprovalEvent) -> None:
        """
        Publish an approval event to Service Bus.

        Note:
            If service_bus_sender is None, this is a no-op (disabled mode).
            Useful for local development or when Service Bus is not configured.
        """
        if self.service_bus_sender is None:
            return

        from azure.servicebus import ServiceBusMessage

        message = ServiceBusMessage(
            event.to_json(),
            content_type="application/json",
            subject=event.event_type,
        )
        self.service_bus_sender.send_messages(message)
        logger.debug(
            "Published approval event",
            event_type=event.event_type,
            expense_id=event.expense_id,
            entity=self.entity_name,
        )


_default_publisher: Optional[EventPublisher] = None


def get_event_publisher() -> EventPublisher:
    """
    Get the process-wide event publisher, creating it on first use.

    Returns:
        EventPublisher instance (disabled if Service Bus is not configured)
    """
    global _default_publisher
    if _default_publisher is None:
        if settings.service_bus_connection_string:
            from azure.servicebus import ServiceBusClient

            client = ServiceBusClient.from_connection_string(settings.service_bus_connection_string)
            sender = client.get_queue_sender(queue_name=settings.service_bus_queue_name)
            _default_publisher = EventPublisher(sender, entity_name=settings.service_bus_queue_name)
            logger.info("Service Bus event publishing enabled", queue=settings.service_bus_queue_name)
        else:
            _default_publisher = EventPublisher(service_bus_sender=None)
    return _default_publisher
