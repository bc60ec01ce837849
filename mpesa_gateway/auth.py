import base64
import hashlib
import hmac
from typing import Optional

import structlog
from fastapi import Depends, Header, Request
from jose import JWTError, jwt

from mpesa_gateway.config import Settings, get_settings
from mpesa_gateway.errors import AuthenticationError, WebhookAuthError

logger = structlog.get_logger(__name__)


def compute_hmac(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_hmac(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check a Shopify style base64 HMAC-SHA256 of the raw body in constant time."""
    if not signature:
        return False
    return hmac.compare_digest(compute_hmac(body, secret).encode(), signature.encode())


async def verify_shopify_webhook(
    request: Request,
    x_shopify_hmac_sha256: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
):
    if not x_shopify_hmac_sha256:
        logger.warning(
            "shopify_webhook_rejected_missing_hmac",
            ip=request.client.host if request.client else None,
            url=str(request.url),
        )
        raise WebhookAuthError("Unauthorized - Missing signature")

    body = await request.body()
    if not verify_hmac(body, x_shopify_hmac_sha256, settings.shopify_webhook_secret):
        logger.warning(
            "shopify_webhook_rejected_invalid_hmac",
            ip=request.client.host if request.client else None,
            expected=compute_hmac(body, settings.shopify_webhook_secret)[:10] + "...",
            received=x_shopify_hmac_sha256[:10] + "...",
        )
        raise WebhookAuthError("Unauthorized - Invalid signature")

    logger.info(
        "shopify_webhook_verified",
        shop_domain=request.headers.get("X-Shopify-Shop-Domain"),
        topic=request.headers.get("X-Shopify-Topic"),
    )


def verify_token(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
):
    try:
        scheme, token = (authorization or "").split()
        if scheme.lower() != "bearer" or not settings.jwt_secret:
            raise AuthenticationError()
        jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    except (ValueError, JWTError, AuthenticationError):
        raise AuthenticationError()
