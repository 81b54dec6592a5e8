"""
Tests for Service Bus event publishing.

Verifies that expense approval events are published to Azure Service Bus
for downstream processing (reimbursement, audit trails, notifications).
"""

import json

import pytest
from unittest.mock import Mock, patch

from conftest import make_expense
from expense_approvals.models import ExpenseStatus
from expense_approvals.services.events import (
    EXPENSE_DECIDED,
    EXPENSE_SUBMITTED,
    EventPublisher,
    ExpenseApprovalEvent,
)
from expense_approvals.services.events import event_publisher as event_publisher_module


@pytest.fixture
def mock_service_bus_sender():
    """Create a mock Service Bus sender matching Azure SDK interface"""
    return Mock()


@pytest.fixture
def event_publisher(mock_service_bus_sender):
    """Create EventPublisher with mocked Service Bus sender"""
    return EventPublisher(service_bus_sender=mock_service_bus_sender)


def decided_event(**overrides):
    data = {
        "event_type": EXPENSE_DECIDED,
        "expense_id": "exp-123",
        "company_id": "acme",
        "employee_id": "emp",
        "status": "approved",
        "converted_amount": 450.00,
        "actor_id": "mgr",
        "decision": "approved",
    }
    data.update(overrides)
    return ExpenseApprovalEvent(**data)


def test_event_structure():
    """Test that ExpenseApprovalEvent has correct structure"""
    event = decided_event()

    assert event.event_type == "ExpenseDecided"
    assert event.expense_id == "exp-123"
    assert event.actor_id == "mgr"
    assert event.decision == "approved"
    assert event.next_approvers == []
    assert event.timestamp is not None


def test_event_from_expense():
    expense = make_expense(status=ExpenseStatus.IN_REVIEW, rule_id="rule-9")

    event = ExpenseApprovalEvent.from_expense(
        EXPENSE_SUBMITTED, expense, actor_id="emp", next_approvers=["m1", "m2"]
    )

    assert event.expense_id == expense.id
    assert event.company_id == "acme"
    assert event.status == "in_review"
    assert event.converted_amount == 500.0
    assert event.rule_id == "rule-9"
    assert event.next_approvers == ["m1", "m2"]
    assert event.decision is None


def test_publish_event(event_publisher, mock_service_bus_sender):
    """Test publishing an expense decided event"""
    event_publisher.publish(decided_event(expense_id="exp-456"))

    # Verify Service Bus sender was called with send_messages
    assert mock_service_bus_sender.send_messages.called
    message = mock_service_bus_sender.send_messages.call_args[0][0]

    # Verify message content includes key fields
    assert "exp-456" in str(message)
    assert "ExpenseDecided" in str(message)
    assert message.subject == "ExpenseDecided"
    assert message.content_type == "application/json"


def test_publish_multiple_events(event_publisher, mock_service_bus_sender):
    """Test publishing multiple events in sequence"""
    event_publisher.publish(decided_event(expense_id="id-1"))
    event_publisher.publish(decided_event(expense_id="id-2", status="rejected", decision="rejected"))

    assert mock_service_bus_sender.send_messages.call_count == 2


def test_publish_with_null_service_bus_sender():
    """Test that publisher gracefully handles None sender (disabled mode)"""
    publisher = EventPublisher(service_bus_sender=None)

    # Should not raise an error
    publisher.publish(decided_event())

    assert publisher.enabled is False


def test_publisher_propagates_send_errors(event_publisher, mock_service_bus_sender):
    """Callers decide whether a failed publish matters"""
    mock_service_bus_sender.send_messages.side_effect = RuntimeError("connection lost")

    with pytest.raises(RuntimeError):
        event_publisher.publish(decided_event())


def test_event_serializes_to_json():
    """Test that event can be serialized to JSON for Service Bus"""
    event = decided_event(next_approvers=["m2"], rule_id="rule-1")

    data = json.loads(event.to_json())

    assert data["expense_id"] == "exp-123"
    assert data["converted_amount"] == 450.00
    assert data["next_approvers"] == ["m2"]
    assert data["rule_id"] == "rule-1"
    assert data["event_type"] == "ExpenseDecided"
    # Timestamp should be ISO format
    assert "T" in data["timestamp"]


def test_publisher_uses_entity_name():
    """Test that publisher can be configured with entity name (queue or topic)"""
    publisher = EventPublisher(service_bus_sender=Mock(), entity_name="expense-events-test")

    assert publisher.entity_name == "expense-events-test"
    assert publisher.enabled is True


def test_default_publisher_disabled_without_connection_string(monkeypatch):
    monkeypatch.setattr(event_publisher_module, "_default_publisher", None)
    monkeypatch.setattr(event_publisher_module.settings, "service_bus_connection_string", None)

    publisher = event_publisher_module.get_event_publisher()

    assert publisher.enabled is False
    assert event_publisher_module.get_event_publisher() is publisher


def test_default_publisher_uses_configured_queue(monkeypatch):
    monkeypatch.setattr(event_publisher_module, "_default_publisher", None)
    monkeypatch.setattr(event_publisher_module.settings, "service_bus_connection_string", "Endpoint=sb://test/")
    monkeypatch.setattr(event_publisher_module.settings, "service_bus_queue_name", "audit-queue")

    with patch("azure.servicebus.ServiceBusClient") as client_cls:
        publisher = event_publisher_module.get_event_publisher()

    client_cls.from_connection_string.assert_called_once_with("Endpoint=sb://test/")
    client_cls.from_connection_string.return_value.get_queue_sender.assert_called_once_with(
        queue_name="audit-queue"
    )
    assert publisher.enabled is True
    assert publisher.entity_name == "audit-queue"
