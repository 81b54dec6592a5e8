"""
Approval rule administration.

Rules are validated here, when they are saved, so that approver resolution
can trust every rule it reads.
"""

from typing import Any, Optional

import pydantic
from loguru import logger

from ..core.errors import ConfigurationError, RuleNotFoundError
from ..models import ApprovalRule
from .directory import UserDirectory
from .storage import RuleStoreBase

UPDATABLE_FIELDS = (
    "name",
    "conditions",
    "approvers",
    "policy",
    "percentage_required",
    "specific_approvers",
    "require_manager_approval",
    "priority",
    "is_active",
)


class RuleAdministrator:
    def __init__(self, rule_store: RuleStoreBase, directory: UserDirectory):
        self.rule_store = rule_store
        self.directory = directory

    def validate(self, rule: ApprovalRule) -> None:
        """
        Reject rules the engine could not route with.

        Raises:
            ConfigurationError: listing every problem found
        """
        problems = rule.configuration_problems()

        invalid = [
            approver.user_id for approver in rule.approvers
            if not self.directory.is_eligible_approver(approver.user_id, rule.company_id)
        ]
        if invalid:
            problems.append(
                "Approvers must be managers or admins of the company: " + ", ".join(invalid)
            )

        if problems:
            logger.warning("Rejected approval rule", rule_id=rule.id, problems=problems)
            raise ConfigurationError("Invalid approval rule: " + "; ".join(problems))

    def create_rule(self, rule: ApprovalRule) -> ApprovalRule:
        self.validate(rule)
        stored = self.rule_store.create(rule)
        logger.info(
            "Approval rule created",
            rule_id=stored.id,
            company_id=stored.company_id,
            policy=stored.policy.value,
            priority=stored.priority,
        )
        return stored

    def get_rule(self, rule_id: str) -> ApprovalRule:
        rule = self.rule_store.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Approval rule {rule_id} not found")
        return rule

    def list_rules(self, company_id: str, active_only: bool = False) -> list[ApprovalRule]:
        return self.rule_store.list_for_company(company_id, active_only=active_only)

    def update_rule(self, rule_id: str, changes: dict[str, Any]) -> ApprovalRule:
        """
        Apply a partial update. Identity fields (id, company, creation
        time) cannot be changed; unknown keys are ignored.
        """
        existing = self.get_rule(rule_id)

        data = existing.model_dump()
        data.update({key: value for key, value in changes.items() if key in UPDATABLE_FIELDS})
        try:
            updated = ApprovalRule.model_validate(data)
        except pydantic.ValidationError as e:
            raise ConfigurationError(f"Invalid approval rule: {e}")

        self.validate(updated)
        stored = self.rule_store.update(updated)
        logger.info("Approval rule updated", rule_id=rule_id, fields=sorted(changes))
        return stored

    def delete_rule(self, rule_id: str, company_id: Optional[str] = None) -> None:
        if company_id is not None and self.get_rule(rule_id).company_id != company_id:
            raise RuleNotFoundError(f"Approval rule {rule_id} not found")
        if not self.rule_store.delete(rule_id):
            raise RuleNotFoundError(f"Approval rule {rule_id} not found")
        logger.info("Approval rule deleted", rule_id=rule_id)
