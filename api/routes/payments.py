"""
Payments API routes.

Thin adapters over PaymentAPI: parse the request, call the facade, render
the envelope with the HTTP status its code implies.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_payment_api, get_payment_settings
from application.dtos.payments import (
    CreateIntentRequest,
    CustomerCreate,
    FinalizeRequest,
    RefundRequest,
)
from application.services.payment_api import PaymentAPI
from core.exceptions import envelope_to_json_response
from core.logging_config import get_logger
from core.settings import PaymentSettings


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


@router.post("/intents")
async def create_intent(body: CreateIntentRequest, api: PaymentAPI = Depends(get_payment_api)):
    return envelope_to_json_response(await api.create_intent(body.amount, body.currency, body.metadata))


@router.post("/intents/{payment_intent_id}/finalize")
async def finalize_intent(
    payment_intent_id: str,
    body: Optional[FinalizeRequest] = None,
    api: PaymentAPI = Depends(get_payment_api),
):
    metadata = body.metadata if body else None
    return envelope_to_json_response(await api.finalize(payment_intent_id, metadata))


@router.post("/intents/{payment_intent_id}/cancel")
async def cancel_intent(payment_intent_id: str, api: PaymentAPI = Depends(get_payment_api)):
    return envelope_to_json_response(await api.cancel(payment_intent_id))


@router.get("/intents/{payment_intent_id}")
async def get_payment(payment_intent_id: str, api: PaymentAPI = Depends(get_payment_api)):
    return envelope_to_json_response(await api.get_payment(payment_intent_id))


@router.post("/refunds")
async def create_refund(body: RefundRequest, api: PaymentAPI = Depends(get_payment_api)):
    return envelope_to_json_response(await api.refund(body.payment_intent_id, body.amount, body.metadata))


@router.post("/customers")
async def create_customer(body: CustomerCreate, api: PaymentAPI = Depends(get_payment_api)):
    return envelope_to_json_response(await api.create_customer(body.to_fields()))


@router.get("/connection")
async def test_connection(api: PaymentAPI = Depends(get_payment_api)):
    return envelope_to_json_response(await api.test_connection())


@router.post("/webhook")
async def payments_webhook(
    request: Request,
    api: PaymentAPI = Depends(get_payment_api),
    payment_settings: PaymentSettings = Depends(get_payment_settings),
):
    # the signature covers the exact bytes received
    raw_body = await request.body()
    signature = request.headers.get(payment_settings.webhook.signature_header)
    response = await api.handle_webhook(raw_body, signature)
    if not response.is_success:
        logger.warning("webhook_rejected", code=response.code, error_type=response.error.type if response.error else None)
    return envelope_to_json_response(response)
