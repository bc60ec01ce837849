"""Reconciliation of Daraja STK push result callbacks.

The reconciler always answers with Daraja's acknowledgment schema. Replays
for an intent that already reached COMPLETED or FAILED are acknowledged
positively without touching the row, so provider retries are harmless.
"""
from dataclasses import dataclass
from typing import Any, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from mpesa_gateway.errors import GatewayError, InternalError, MalformedCallbackError, UnknownCorrelationId
from mpesa_gateway.models import COMPLETED, FAILED
from mpesa_gateway.repository import PaymentIntentRepository

logger = structlog.get_logger(__name__)

SUCCESS_RESULT_CODE = 0
RECEIPT_ITEM_NAME = "MpesaReceiptNumber"
DEFAULT_RESULT_DESC = "Unknown result"


@dataclass(frozen=True)
class CallbackAck:
    result_code: int
    result_desc: str
    http_status: int = 200

    @classmethod
    def success(cls) -> "CallbackAck":
        return cls(0, "Success")

    @classmethod
    def from_error(cls, error: GatewayError) -> "CallbackAck":
        return cls(1, error.message, error.http_status)

    def to_dict(self) -> dict:
        return {"ResultCode": self.result_code, "ResultDesc": self.result_desc}


@dataclass(frozen=True)
class StkCallback:
    checkout_request_id: str
    result_code: int
    result_desc: str
    items: List[dict]

    @property
    def succeeded(self) -> bool:
        return self.result_code == SUCCESS_RESULT_CODE

    def metadata_value(self, name: str) -> Optional[Any]:
        for item in self.items:
            if isinstance(item, dict) and item.get("Name") == name:
                return item.get("Value")
        return None


def parse_callback(payload: Any) -> StkCallback:
    """Pull the stkCallback envelope out of a Daraja notification."""
    body = payload.get("Body") if isinstance(payload, dict) else None
    callback = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(callback, dict):
        raise MalformedCallbackError()

    checkout_request_id = callback.get("CheckoutRequestID")
    if not checkout_request_id or not isinstance(checkout_request_id, str):
        raise MalformedCallbackError()

    try:
        result_code = int(callback["ResultCode"])
    except (KeyError, TypeError, ValueError):
        raise MalformedCallbackError()

    metadata = callback.get("CallbackMetadata")
    items = metadata.get("Item") if isinstance(metadata, dict) else None

    return StkCallback(
        checkout_request_id=checkout_request_id,
        result_code=result_code,
        result_desc=callback.get("ResultDesc") or DEFAULT_RESULT_DESC,
        items=items if isinstance(items, list) else [],
    )


class CallbackReconciler:
    def __init__(self, repository: PaymentIntentRepository):
        self.repository = repository

    def handle(self, payload: Any) -> CallbackAck:
        logger.info("mpesa_callback_received", payload=payload)
        try:
            return self._reconcile(payload)
        except MalformedCallbackError as exc:
            logger.error("mpesa_callback_malformed")
            return CallbackAck.from_error(exc)
        except UnknownCorrelationId as exc:
            return CallbackAck.from_error(exc)
        except SQLAlchemyError:
            logger.exception("mpesa_callback_store_unavailable")
            return CallbackAck.from_error(InternalError("Internal error"))
        except Exception:
            logger.exception("mpesa_callback_exception")
            return CallbackAck.from_error(InternalError("Internal error"))

    def _reconcile(self, payload: Any) -> CallbackAck:
        callback = parse_callback(payload)

        intent = self.repository.find_by_checkout_request_id(callback.checkout_request_id)
        if intent is None:
            logger.warning(
                "mpesa_transaction_not_found",
                checkout_request_id=callback.checkout_request_id,
            )
            raise UnknownCorrelationId()

        if intent.is_terminal:
            self._log_duplicate(intent, callback)
            return CallbackAck.success()

        if callback.succeeded:
            receipt = callback.metadata_value(RECEIPT_ITEM_NAME)
            won = self.repository.compare_and_swap_status(
                intent.id,
                COMPLETED,
                mpesa_receipt_number=str(receipt) if receipt is not None else None,
                result_desc=callback.result_desc,
                raw_callback=payload,
            )
            if won:
                logger.info(
                    "mpesa_payment_completed",
                    order_id=intent.order_id,
                    payment_id=intent.id,
                    receipt=receipt,
                    amount=intent.amount,
                )
        else:
            won = self.repository.compare_and_swap_status(
                intent.id,
                FAILED,
                result_desc=callback.result_desc,
                raw_callback=payload,
            )
            if won:
                logger.info(
                    "mpesa_payment_failed",
                    order_id=intent.order_id,
                    payment_id=intent.id,
                    result_code=callback.result_code,
                    reason=callback.result_desc,
                )

        if not won:
            # A concurrent delivery reached a terminal state first
            self._log_duplicate(self.repository.refresh(intent), callback)

        return CallbackAck.success()

    def _log_duplicate(self, intent, callback: StkCallback) -> None:
        logger.info(
            "mpesa_duplicate_callback_ignored",
            payment_id=intent.id,
            checkout_request_id=callback.checkout_request_id,
            current_status=intent.status,
            result_code=callback.result_code,
        )
