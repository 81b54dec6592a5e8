"""
Pytest configuration and shared fixtures.

This file registers custom pytest markers and command-line options, and
provides a small company directory used across the engine tests:

    admin        adm
    managers     mgr (manager of emp), m1, m2, m3, m4
    employees    emp (reports to mgr, department "sales"), loner (no manager)
    other co.    x-mgr (manager at company "other")
"""

import pytest

from expense_approvals.models import ApprovalRule, Expense, ExpenseCategory, RuleApprover
from expense_approvals.models.expense import utcnow
from expense_approvals.services import (
    ApprovalStateMachine,
    ApproverResolver,
    DecisionProcessor,
    DirectoryUser,
    ExpenseApprovalWorkflow,
    InMemoryUserDirectory,
    UserRole,
)
from expense_approvals.services.storage import InMemoryExpenseStore, InMemoryRuleStore

COMPANY = "acme"


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against real Azure resources"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring real Azure resources"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


@pytest.fixture
def directory():
    return InMemoryUserDirectory([
        DirectoryUser(id="adm", company_id=COMPANY, name="Ada Admin", role=UserRole.ADMIN),
        DirectoryUser(id="mgr", company_id=COMPANY, name="Morgan Manager", role=UserRole.MANAGER),
        DirectoryUser(id="m1", company_id=COMPANY, name="M One", role=UserRole.MANAGER),
        DirectoryUser(id="m2", company_id=COMPANY, name="M Two", role=UserRole.MANAGER),
        DirectoryUser(id="m3", company_id=COMPANY, name="M Three", role=UserRole.MANAGER),
        DirectoryUser(id="m4", company_id=COMPANY, name="M Four", role=UserRole.MANAGER),
        DirectoryUser(
            id="emp",
            company_id=COMPANY,
            name="Eve Employee",
            role=UserRole.EMPLOYEE,
            manager_id="mgr",
            department="sales",
        ),
        DirectoryUser(id="loner", company_id=COMPANY, name="Lone Employee", role=UserRole.EMPLOYEE),
        DirectoryUser(id="x-mgr", company_id="other", name="Other Manager", role=UserRole.MANAGER),
    ])


def make_expense(**overrides) -> Expense:
    data = {
        "company_id": COMPANY,
        "employee_id": "emp",
        "department": "sales",
        "category": ExpenseCategory.TRAVEL,
        "amount": 500.0,
        "currency": "USD",
        "converted_amount": 500.0,
        "description": "Client visit",
    }
    data.update(overrides)
    return Expense(**data)


def make_rule(approver_ids=(), **overrides) -> ApprovalRule:
    """Rule whose approvers get sequences 0, 1, 2... in the order given"""
    data = {
        "company_id": COMPANY,
        "name": "Test rule",
        "approvers": [
            RuleApprover(user_id=user_id, sequence=index)
            for index, user_id in enumerate(approver_ids)
        ],
        "require_manager_approval": False,
    }
    data.update(overrides)
    return ApprovalRule(**data)


def start_expense(expense: Expense, rule, directory) -> Expense:
    """Resolve the chain for ``rule`` and put the expense into review"""
    chain = ApproverResolver().build_chain(expense, rule, directory)
    ApprovalStateMachine(expense).start(chain, rule.id if rule else None, utcnow())
    return expense


@pytest.fixture
def processor():
    return DecisionProcessor()


@pytest.fixture
def expense_store():
    return InMemoryExpenseStore()


@pytest.fixture
def rule_store():
    return InMemoryRuleStore()


@pytest.fixture
def workflow(expense_store, rule_store, directory):
    return ExpenseApprovalWorkflow(expense_store, rule_store, directory)
