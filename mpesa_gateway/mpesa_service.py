"""Client for the Safaricom Daraja STK push (Lipa na M-Pesa Online) API."""
import base64
import threading
import time
from datetime import datetime
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

import httpx
import structlog

from mpesa_gateway.config import Settings, get_settings
from mpesa_gateway.errors import UpstreamAuthError, UpstreamRequestError

logger = structlog.get_logger(__name__)

TRANSACTION_TYPE = "CustomerPayBillOnline"
AUTH_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"

# Refresh a cached token this many seconds before Daraja expires it
TOKEN_EXPIRY_MARGIN = 60


class MpesaClient:
    def __init__(self, settings: Settings, http_client: Optional[httpx.Client] = None):
        self.settings = settings
        self.base_url = settings.mpesa_base_url
        self.http = http_client or httpx.Client(timeout=settings.mpesa_timeout)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    def get_access_token(self) -> str:
        """Return a valid bearer token, exchanging the consumer credentials when needed."""
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token

            try:
                response = self.http.get(
                    self.base_url + AUTH_PATH,
                    params={"grant_type": "client_credentials"},
                    auth=(self.settings.mpesa_consumer_key, self.settings.mpesa_consumer_secret),
                )
            except httpx.HTTPError as exc:
                logger.error("mpesa_auth_exception", error=str(exc))
                raise UpstreamAuthError() from exc

            data = _json_or_none(response)
            if response.is_error or not data or not data.get("access_token"):
                logger.error("mpesa_auth_error", http_status=response.status_code, body=data)
                raise UpstreamAuthError()

            try:
                expires_in = int(data.get("expires_in", 0))
            except (TypeError, ValueError):
                expires_in = 0
            self._token = data["access_token"]
            self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
            return self._token

    def timestamp(self, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(ZoneInfo(self.settings.mpesa_timezone))
        return now.strftime("%Y%m%d%H%M%S")

    def password(self, timestamp: str) -> str:
        raw = self.settings.mpesa_shortcode + self.settings.mpesa_passkey + timestamp
        return base64.b64encode(raw.encode()).decode()

    def stk_push(
        self,
        token: str,
        phone: str,
        amount: int,
        account_reference: str,
        description: str = "Order Payment",
    ) -> dict:
        """Ask Daraja to prompt ``phone`` for ``amount``.

        Returns the decoded response, which normally carries
        ``CheckoutRequestID`` and ``MerchantRequestID``. Raises
        :class:`UpstreamRequestError` with status 400 when Daraja rejects the
        request (``errorCode`` in the body) and 500 when the call fails.
        """
        timestamp = self.timestamp()
        payload = {
            "BusinessShortCode": self.settings.mpesa_shortcode,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": TRANSACTION_TYPE,
            "Amount": amount,
            "PartyA": phone,
            "PartyB": self.settings.mpesa_shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.settings.mpesa_callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": description,
        }

        try:
            response = self.http.post(
                self.base_url + STK_PUSH_PATH,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            logger.error("mpesa_stk_push_exception", error=str(exc), order_id=account_reference)
            raise UpstreamRequestError() from exc

        data = _json_or_none(response)
        if data is None:
            logger.error(
                "mpesa_stk_push_unreadable_response",
                http_status=response.status_code,
                order_id=account_reference,
            )
            raise UpstreamRequestError()

        if "errorCode" in data:
            logger.error(
                "mpesa_stk_push_error",
                error_code=data.get("errorCode"),
                error_message=data.get("errorMessage"),
                order_id=account_reference,
            )
            raise UpstreamRequestError(data.get("errorMessage") or "STK Push failed", http_status=400)

        if response.is_error:
            logger.error(
                "mpesa_stk_push_http_error",
                http_status=response.status_code,
                order_id=account_reference,
            )
            raise UpstreamRequestError()

        return data


def _json_or_none(response: httpx.Response) -> Optional[dict]:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


@lru_cache()
def get_mpesa_client() -> MpesaClient:
    return MpesaClient(get_settings())
