from decimal import Decimal
from typing import Any, Dict, List, Optional

import pydantic
from pydantic import AliasChoices, BaseModel, EmailStr, Field, StrictStr, field_validator

from mpesa_gateway.errors import ValidationError
from mpesa_gateway.phone import is_valid_mobile

MIN_AMOUNT = 1
MAX_AMOUNT = 150000

FIELD_NAMES = {"orderId": "order_id"}


class InitiationRequest(BaseModel):
    # Accepted as order_id or orderId; errors are reported under order_id
    order_id: StrictStr = Field(
        min_length=1, max_length=255, validation_alias=AliasChoices("order_id", "orderId")
    )
    amount: Decimal = Field(ge=MIN_AMOUNT, le=MAX_AMOUNT, allow_inf_nan=False)
    phone: StrictStr
    email: Optional[EmailStr] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        if not is_valid_mobile(v):
            raise ValueError("phone must be a Safaricom mobile number (07XXXXXXXX or 2547XXXXXXXX)")
        return v

    @property
    def amount_units(self) -> int:
        # Daraja only accepts whole shillings
        return int(self.amount)


def validate_initiation(payload: Any) -> InitiationRequest:
    """Validate an initiation payload or raise ValidationError listing every bad field."""
    if not isinstance(payload, dict):
        raise ValidationError({"body": ["Request body must be a JSON object"]})

    try:
        return InitiationRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError(_field_errors(exc)) from exc


def _field_errors(exc: pydantic.ValidationError) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "body"
        field = FIELD_NAMES.get(field, field)
        message = error["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.setdefault(field, []).append(message)
    return errors
