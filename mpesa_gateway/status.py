from datetime import datetime, timezone
from typing import Optional

from mpesa_gateway.errors import NotFoundError
from mpesa_gateway.models import PaymentIntent
from mpesa_gateway.repository import PaymentIntentRepository

STATUS_MESSAGES = {
    "PENDING": "Payment is being processed. Customer should check their phone.",
    "COMPLETED": "Payment completed successfully.",
    "FAILED": "Payment failed or was cancelled.",
}


def status_message(status: Optional[str]) -> str:
    return STATUS_MESSAGES.get((status or "").upper(), "Unknown status")


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # SQLite hands back naive datetimes; they were written in UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def intent_status_view(intent: PaymentIntent) -> dict:
    return {
        "success": True,
        "status": intent.status.lower(),
        "payment_id": intent.id,
        "order_id": intent.order_id,
        "amount": intent.amount,
        "phone": intent.phone,
        "mpesa_receipt_number": intent.mpesa_receipt_number,
        "result_desc": intent.result_desc,
        "created_at": _isoformat(intent.created_at),
        "updated_at": _isoformat(intent.updated_at),
        "message": status_message(intent.status),
    }


class StatusService:
    def __init__(self, repository: PaymentIntentRepository):
        self.repository = repository

    def get_status(self, identifier: str) -> dict:
        """Project the intent for an order id or checkout request id, newest first."""
        intent = self.repository.find_by_identifier(identifier)
        if intent is None:
            raise NotFoundError()
        return intent_status_view(intent)
