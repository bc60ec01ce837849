"""Error taxonomy shared by the services and the HTTP boundary.

Each error knows the HTTP status it maps to and carries a message that is
safe to show to the caller. Services raise them; the transport layer turns
them into JSON responses.
"""
from typing import Dict, List, Optional


class GatewayError(Exception):
    http_status = 500
    status = "error"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, http_status: Optional[int] = None):
        self.message = message or self.default_message
        if http_status is not None:
            self.http_status = http_status
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "status": self.status, "message": self.message}


class ValidationError(GatewayError):
    http_status = 400
    default_message = "Validation failed"

    def __init__(self, errors: Dict[str, List[str]], message: Optional[str] = None):
        self.errors = errors
        super().__init__(message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["errors"] = self.errors
        return body


class UpstreamAuthError(GatewayError):
    http_status = 500
    default_message = "Failed to authenticate with M-Pesa service"


class UpstreamRequestError(GatewayError):
    """The push request was rejected (400) or could not be completed (500)."""

    http_status = 500
    default_message = "Payment request failed. Please try again."


class MalformedCallbackError(GatewayError):
    http_status = 400
    default_message = "Invalid callback"


class UnknownCorrelationId(GatewayError):
    http_status = 404
    default_message = "Transaction not found"


class NotFoundError(GatewayError):
    http_status = 404
    status = "not_found"
    default_message = "Payment not found"


class InternalError(GatewayError):
    http_status = 500


class WebhookAuthError(GatewayError):
    http_status = 401
    default_message = "Unauthorized"


class AuthenticationError(GatewayError):
    http_status = 401
    default_message = "Invalid or missing token"


class ForbiddenError(GatewayError):
    http_status = 403
    default_message = "Forbidden"
