"""Payment initiation: validate, deduplicate, push, then record."""
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from mpesa_gateway.errors import GatewayError, InternalError
from mpesa_gateway.models import PaymentIntent
from mpesa_gateway.mpesa_service import MpesaClient
from mpesa_gateway.phone import normalize_phone
from mpesa_gateway.repository import DuplicateIntentError, PaymentIntentRepository
from mpesa_gateway.validation import validate_initiation

logger = structlog.get_logger(__name__)

ORDER_DESCRIPTION = "Order Payment"


@dataclass(frozen=True)
class InitiationResult:
    payment_id: int
    status: str
    checkout_request_id: Optional[str]
    merchant_request_id: Optional[str]
    duplicate: bool = False

    @classmethod
    def from_intent(cls, intent: PaymentIntent, duplicate: bool = False) -> "InitiationResult":
        return cls(
            payment_id=intent.id,
            status=intent.status,
            checkout_request_id=intent.checkout_request_id,
            merchant_request_id=intent.merchant_request_id,
            duplicate=duplicate,
        )

    def to_dict(self) -> dict:
        return {
            "success": True,
            "status": self.status.lower(),
            "message": (
                "Payment already initiated"
                if self.duplicate
                else "Payment initiated successfully. Customer will receive M-Pesa prompt."
            ),
            "payment_id": self.payment_id,
            "checkout_request_id": self.checkout_request_id,
            "merchant_request_id": self.merchant_request_id,
        }


class InitiationService:
    def __init__(self, repository: PaymentIntentRepository, mpesa: MpesaClient):
        self.repository = repository
        self.mpesa = mpesa

    def initiate(self, payload: Any, description: str = ORDER_DESCRIPTION) -> InitiationResult:
        """Start an STK push for an order, or describe the one already running.

        Raises ValidationError, UpstreamAuthError or UpstreamRequestError for
        the classified failures and InternalError for anything else. No intent
        is stored unless Daraja accepted the push request.
        """
        request = validate_initiation(payload)
        phone = normalize_phone(request.phone)

        try:
            return self._initiate(request.order_id, phone, request.amount_units, description)
        except GatewayError:
            raise
        except Exception as exc:
            logger.exception("mpesa_stk_push_unexpected_error", order_id=request.order_id)
            raise InternalError("Payment request failed. Please try again.") from exc

    def _initiate(self, order_id: str, phone: str, amount: int, description: str) -> InitiationResult:
        with self.repository.order_lock(order_id):
            existing = self.repository.find_by_order_id(order_id)
            if existing:
                return self._duplicate(existing)

            token = self.mpesa.get_access_token()
            response = self.mpesa.stk_push(token, phone, amount, order_id, description)

            try:
                intent = self.repository.create_pending(
                    order_id=order_id,
                    phone=phone,
                    amount=amount,
                    checkout_request_id=response.get("CheckoutRequestID"),
                    merchant_request_id=response.get("MerchantRequestID"),
                )
            except DuplicateIntentError:
                # Another worker recorded an intent for this order while we were pushing
                existing = self.repository.find_by_order_id(order_id)
                if existing is None:
                    raise
                return self._duplicate(existing)

            logger.info(
                "mpesa_stk_push_initiated",
                order_id=order_id,
                payment_id=intent.id,
                checkout_request_id=intent.checkout_request_id,
                phone=phone,
            )
            return InitiationResult.from_intent(intent)

    def _duplicate(self, intent: PaymentIntent) -> InitiationResult:
        logger.info(
            "duplicate_payment_request",
            order_id=intent.order_id,
            payment_id=intent.id,
            existing_status=intent.status,
        )
        return InitiationResult.from_intent(intent, duplicate=True)
