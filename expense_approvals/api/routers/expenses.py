from datetime import date

from fastapi import APIRouter, Depends, Query, status
from loguru import logger
from pydantic import BaseModel, Field

from ..deps import get_workflow
from ...models import Expense, ExpenseCategory, ExpenseStatus, Pagination
from ...services.teams import post_approval_request_card
from ...services.workflow import ExpenseApprovalWorkflow, StatusAudit

router = APIRouter(prefix="/expenses", tags=["expenses"])

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


class SubmitExpenseRequest(BaseModel):
    """Request body for POST /expenses (amount already converted upstream)"""
    company_id: str
    employee_id: str
    category: ExpenseCategory
    amount: float = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    converted_amount: float = Field(ge=0)
    description: str = Field(min_length=1)
    expense_date: date | None = None
    department: str | None = None


class DecisionRequest(BaseModel):
    """Request body for POST /expenses/{id}/decision"""
    approver_id: str
    decision: str  # "approved" | "rejected", validated by the engine
    comments: str | None = None


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_expense(
    req: SubmitExpenseRequest,
    workflow: ExpenseApprovalWorkflow = Depends(get_workflow),
):
    """
    Submit an expense and route it to its approvers.

    Expenses that need no approval (no matching rule and no manager) come
    back already approved.
    """
    expense = workflow.submit_expense(Expense(**req.model_dump()))

    notification = await post_approval_request_card(expense, workflow.awaiting_approvers(expense))
    return {
        "message": "Expense created successfully",
        "expense": expense,
        "notification": notification,
    }


@router.get("")
async def list_expenses(
    company_id: str | None = None,
    employee_id: str | None = None,
    status: ExpenseStatus | None = None,
    category: ExpenseCategory | None = None,
    expense_date_from: date | None = None,
    expense_date_to: date | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    workflow: ExpenseApprovalWorkflow = Depends(get_workflow),
):
    """
    Page through expenses, newest first.

    ``expense_date_from`` and ``expense_date_to`` are inclusive bounds on the
    date the expense was incurred.
    """
    filters = dict(
        company_id=company_id,
        employee_id=employee_id,
        status=status,
        category=category,
        expense_date_from=expense_date_from,
        expense_date_to=expense_date_to,
    )
    expenses = workflow.list_expenses(**filters, page=page, limit=limit)
    total = workflow.count_expenses(**filters)
    return {
        "total": total,
        "expenses": expenses,
        "pagination": Pagination.build(page, limit, total),
    }


@router.get("/pending/{approver_id}")
async def pending_approvals(
    approver_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    workflow: ExpenseApprovalWorkflow = Depends(get_workflow),
):
    """Open expenses on which the approver still has a pending step"""
    expenses = workflow.pending_for_approver(approver_id, page=page, limit=limit)
    total = workflow.count_pending_for_approver(approver_id)
    return {
        "total": total,
        "expenses": [
            {
                "expense": expense,
                "awaiting_you": approver_id in workflow.awaiting_approvers(expense),
            }
            for expense in expenses
        ],
        "pagination": Pagination.build(page, limit, total),
    }


@router.get("/{expense_id}", response_model=Expense)
async def get_expense(
    expense_id: str,
    workflow: ExpenseApprovalWorkflow = Depends(get_workflow),
):
    return workflow.get_expense(expense_id)


@router.get("/{expense_id}/audit", response_model=StatusAudit)
async def audit_expense(
    expense_id: str,
    workflow: ExpenseApprovalWorkflow = Depends(get_workflow),
):
    """Re-derive the expense status from its approval steps"""
    return workflow.audit(expense_id)


@router.post("/{expense_id}/decision")
async def decide(
    expense_id: str,
    req: DecisionRequest,
    workflow: ExpenseApprovalWorkflow = Depends(get_workflow),
):
    """
    Record an approver's decision.

    Example request:
    {
        "approver_id": "mgr-1",
        "decision": "rejected",
        "comments": "Receipt missing"
    }
    """
    awaiting_before = set(workflow.awaiting_approvers(workflow.get_expense(expense_id)))

    expense = workflow.decide(expense_id, req.approver_id, req.decision, req.comments)

    # Only notify approvers who were not already waiting on this expense
    newly_awaiting = [
        approver for approver in workflow.awaiting_approvers(expense)
        if approver not in awaiting_before
    ]
    notification = await post_approval_request_card(expense, newly_awaiting)

    logger.info(
        "Decision recorded via API",
        expense_id=expense_id,
        approver_id=req.approver_id,
        status=expense.status.value,
    )
    return {
        "message": f"Expense {req.decision} successfully",
        "expense": expense,
        "notification": notification,
    }
