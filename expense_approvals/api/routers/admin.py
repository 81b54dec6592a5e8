from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..deps import get_rule_administrator, get_workflow
from ...models import ApprovalPolicy, ApprovalRule, DashboardStats, RuleApprover, RuleConditions
from ...services.rule_admin import RuleAdministrator
from ...services.workflow import ExpenseApprovalWorkflow

router = APIRouter(prefix="/admin", tags=["admin"])


class ApprovalRuleCreate(BaseModel):
    """Request body for POST /admin/approval-rules"""
    company_id: str
    name: str = Field(min_length=1)
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    approvers: list[RuleApprover] = Field(default_factory=list)
    policy: ApprovalPolicy = ApprovalPolicy.SEQUENTIAL
    percentage_required: int | None = Field(default=None, ge=1, le=100)
    specific_approvers: list[str] = Field(default_factory=list)
    require_manager_approval: bool = True
    priority: int = 1
    is_active: bool = True


class ApprovalRuleUpdate(BaseModel):
    """Partial update; omitted fields keep their current value"""
    name: str | None = None
    conditions: RuleConditions | None = None
    approvers: list[RuleApprover] | None = None
    policy: ApprovalPolicy | None = None
    percentage_required: int | None = Field(default=None, ge=1, le=100)
    specific_approvers: list[str] | None = None
    require_manager_approval: bool | None = None
    priority: int | None = None
    is_active: bool | None = None


class OverrideRequest(BaseModel):
    """Request body for POST /admin/expenses/{id}/override"""
    admin_id: str
    decision: str
    comments: str | None = None


@router.post("/approval-rules", status_code=status.HTTP_201_CREATED)
async def create_approval_rule(
    req: ApprovalRuleCreate,
    rules: RuleAdministrator = Depends(get_rule_administrator),
):
    rule = rules.create_rule(ApprovalRule(**req.model_dump()))
    return {"message": "Approval rule created successfully", "approval_rule": rule}


@router.get("/approval-rules")
async def list_approval_rules(
    company_id: str,
    active_only: bool = False,
    rules: RuleAdministrator = Depends(get_rule_administrator),
):
    found = rules.list_rules(company_id, active_only=active_only)
    return {"total": len(found), "rules": found}


@router.get("/approval-rules/{rule_id}", response_model=ApprovalRule)
async def get_approval_rule(
    rule_id: str,
    rules: RuleAdministrator = Depends(get_rule_administrator),
):
    return rules.get_rule(rule_id)


@router.put("/approval-rules/{rule_id}")
async def update_approval_rule(
    rule_id: str,
    req: ApprovalRuleUpdate,
    rules: RuleAdministrator = Depends(get_rule_administrator),
):
    rule = rules.update_rule(rule_id, req.model_dump(exclude_unset=True))
    return {"message": "Approval rule updated successfully", "approval_rule": rule}


@router.delete("/approval-rules/{rule_id}")
async def delete_approval_rule(
    rule_id: str,
    rules: RuleAdministrator = Depends(get_rule_administrator),
):
    rules.delete_rule(rule_id)
    return {"message": "Approval rule deleted successfully"}


@router.post("/expenses/{expense_id}/override")
async def override_approval(
    expense_id: str,
    req: OverrideRequest,
    workflow: ExpenseApprovalWorkflow = Depends(get_workflow),
):
    """Force an expense to approved/rejected regardless of its approval chain"""
    expense = workflow.override(expense_id, req.admin_id, req.decision, req.comments)
    return {
        "message": f"Expense {req.decision} successfully (admin override)",
        "expense": expense,
    }


@router.get("/dashboard", response_model=DashboardStats)
async def dashboard(
    company_id: str,
    workflow: ExpenseApprovalWorkflow = Depends(get_workflow),
):
    """Current-month expense activity for a company"""
    return workflow.dashboard_stats(company_id)
