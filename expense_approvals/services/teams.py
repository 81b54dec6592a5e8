import json
import httpx
from loguru import logger
from ..core.config import settings
from ..models import Expense

# Lightweight approver notification: post an Adaptive Card to a Teams Incoming Webhook.
# Approvers act through the API; the card only links to the expense.

ADAPTIVE_CARD_TEMPLATE = {
    "type": "message",
    "attachments": [{
        "contentType": "application/vnd.microsoft.card.adaptive",
        "content": {
            "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
            "type": "AdaptiveCard",
            "version": "1.4",
            "body": [
                {"type": "TextBlock", "weight": "Bolder", "size": "Medium", "text": "Expense Approval Needed"},
                {"type": "FactSet", "facts": []}
            ],
            "actions": []
        }
    }]
}

CARD_FIELDS = ["employee_id", "category", "amount", "currency", "converted_amount", "description", "expense_date"]


def build_approval_card(expense: Expense, approver_ids: list[str]) -> dict:
    card = json.loads(json.dumps(ADAPTIVE_CARD_TEMPLATE))
    facts = card["attachments"][0]["content"]["body"][1]["facts"]

    fields = expense.model_dump(mode="json")
    for k in CARD_FIELDS:
        if fields.get(k) not in (None, ""):
            facts.append({"title": k, "value": str(fields[k])})
    facts.append({"title": "awaiting", "value": ", ".join(approver_ids)})
    facts.append({"title": "level", "value": str(expense.current_approval_level)})

    card["attachments"][0]["content"]["actions"] = [
        {
            "type": "Action.OpenUrl",
            "title": "Review",
            "url": f"{settings.api_base_url}/expenses/{expense.id}"
        }
    ]
    return card


async def post_approval_request_card(expense: Expense, approver_ids: list[str]) -> dict:
    """Tell the approvers now awaiting action that an expense needs them"""
    if not settings.teams_webhook_url:
        return {"status": "skipped", "reason": "TEAMS_WEBHOOK_URL not set"}
    if not approver_ids:
        return {"status": "skipped", "reason": "no approvers awaiting action"}

    card = build_approval_card(expense, approver_ids)

    try:
        async with httpx.AsyncClient(timeout=10) as client:
            r = await client.post(settings.teams_webhook_url, json=card)
    except httpx.HTTPError as e:
        # notification is best effort; the decision is already persisted
        logger.warning("Teams notification failed", expense_id=expense.id, error=str(e))
        return {"status": "failed", "reason": str(e)}

    return {"status": "sent", "http_status": r.status_code}
