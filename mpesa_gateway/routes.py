import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from mpesa_gateway.auth import verify_shopify_webhook, verify_token
from mpesa_gateway.callbacks import CallbackReconciler
from mpesa_gateway.config import Settings, get_settings
from mpesa_gateway.database import get_db
from mpesa_gateway.errors import ForbiddenError
from mpesa_gateway.initiation import InitiationService
from mpesa_gateway.mpesa_service import MpesaClient, get_mpesa_client
from mpesa_gateway.repository import PaymentIntentRepository
from mpesa_gateway.status import StatusService

SERVICE_NAME = "Shopify M-Pesa Gateway"
SANDBOX_TEST_PHONE = "254708374149"

router = APIRouter(prefix="/api")


def get_repository(db: Session = Depends(get_db)) -> PaymentIntentRepository:
    return PaymentIntentRepository(db)


def get_initiation_service(
    repository: PaymentIntentRepository = Depends(get_repository),
    mpesa: MpesaClient = Depends(get_mpesa_client),
) -> InitiationService:
    return InitiationService(repository, mpesa)


def get_callback_reconciler(
    repository: PaymentIntentRepository = Depends(get_repository),
) -> CallbackReconciler:
    return CallbackReconciler(repository)


def get_status_service(
    repository: PaymentIntentRepository = Depends(get_repository),
) -> StatusService:
    return StatusService(repository)


@router.get("/health")
def health():
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/payment/initiate", dependencies=[Depends(verify_shopify_webhook)])
def initiate_payment(
    payload: Any = Body(None),
    service: InitiationService = Depends(get_initiation_service),
):
    return service.initiate(payload).to_dict()


@router.post("/payment/initiate/internal", dependencies=[Depends(verify_token)])
def initiate_payment_internal(
    payload: Any = Body(None),
    service: InitiationService = Depends(get_initiation_service),
):
    return service.initiate(payload).to_dict()


@router.post("/payment/callback")
async def mpesa_callback(
    request: Request,
    reconciler: CallbackReconciler = Depends(get_callback_reconciler),
):
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    ack = await run_in_threadpool(reconciler.handle, payload)
    return JSONResponse(ack.to_dict(), status_code=ack.http_status)


@router.get("/payment/status/{identifier}")
def payment_status(
    identifier: str,
    service: StatusService = Depends(get_status_service),
):
    return service.get_status(identifier)


@router.post("/payment/test")
def sandbox_stk_push(
    settings: Settings = Depends(get_settings),
    service: InitiationService = Depends(get_initiation_service),
):
    """Send a 1 KES prompt to the Safaricom sandbox test number."""
    if settings.is_production:
        raise ForbiddenError("Test endpoint not available in production")

    result = service.initiate(
        {"order_id": f"TEST-{int(time.time())}", "amount": 1, "phone": SANDBOX_TEST_PHONE},
        description="Test Payment",
    )
    body = result.to_dict()
    body["message"] = f"Test STK Push sent to {SANDBOX_TEST_PHONE}"
    return body
