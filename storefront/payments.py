# storefront/payments.py
"""Gateway-facing endpoints.

All four routes end in the same SettlementService. Clients only ever see
generic messages; the reason for a rejection goes to the logs, keyed by
transaction_uuid.
"""
import ipaddress
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import Principal, get_current_principal, get_optional_principal
from .config import Settings, get_settings
from .database import get_session
from .dependencies import get_settlement_service
from .gateway import GatewayUnavailable
from .reconciliation import OutcomeKind, ReconciliationOutcome, SettlementService, SettlementUnavailable
from .repository import find_order_owner
from .schemas import PaymentStatusCheck, PaymentVerificationOut
from .state import OrderStatus
from .validator import PaymentMessage, PaymentValidationError, ValidationErrorKind, validate, validate_fields

logger = logging.getLogger(__name__)
audit = logging.getLogger("storefront.audit")

router = APIRouter(prefix="/api/orders", tags=["payments"])

INVALID_PAYMENT_DATA = "Invalid payment data"
NOT_VERIFIED = "Payment could not be verified"
CONTACT_SUPPORT = "Payment received but the order update failed. Please contact support."
OUT_OF_STOCK = "Payment received but the order could not be fulfilled. Please contact support."
GATEWAY_DOWN = "Payment status could not be confirmed right now. Please try again later."

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


async def _read_fields(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}
    try:
        body = await request.json()
    except ValueError as e:
        raise PaymentValidationError(ValidationErrorKind.MALFORMED_ENCODING, "body is not JSON") from e
    if not isinstance(body, dict):
        raise PaymentValidationError(ValidationErrorKind.MALFORMED_ENCODING, "body is not a JSON object")
    return body


def _parse_message(fields: dict, settings: Settings, received_timestamp: Optional[str] = None) -> PaymentMessage:
    # a forwarded redirect carries the base64 blob; a webhook posts the fields
    if isinstance(fields.get("data"), str):
        return validate(fields["data"], max_age_seconds=settings.message_max_age_seconds,
                        received_timestamp=received_timestamp)
    return validate_fields(fields, max_age_seconds=settings.message_max_age_seconds,
                           received_timestamp=received_timestamp)


def _invalid_payment(e: PaymentValidationError, source: str, request: Request) -> HTTPException:
    if e.kind == ValidationErrorKind.STALE_TRANSACTION:
        audit.warning("stale payment message from %s via %s: %s", _client_ip(request), source, e)
    else:
        logger.debug("invalid payment data from %s via %s: %s", _client_ip(request), source, e)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_PAYMENT_DATA)


def _respond(outcome: ReconciliationOutcome, response: Response) -> PaymentVerificationOut:
    if outcome.completed:
        return PaymentVerificationOut(
            success=True,
            status=OrderStatus.COMPLETED.value,
            transaction_uuid=outcome.transaction_uuid,
            message="Payment verified successfully",
        )
    if outcome.kind == OutcomeKind.AWAITING_PAYMENT:
        response.status_code = status.HTTP_202_ACCEPTED
        return PaymentVerificationOut(
            success=False,
            status=OrderStatus.PENDING.value,
            transaction_uuid=outcome.transaction_uuid,
            message="Payment is pending confirmation",
        )
    if outcome.kind == OutcomeKind.INVENTORY_CONFLICT:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=OUT_OF_STOCK)
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NOT_VERIFIED)


async def _verify(request: Request, response: Response, source: str, service: SettlementService,
                  settings: Settings, received_timestamp: Optional[str] = None) -> PaymentVerificationOut:
    try:
        fields = await _read_fields(request)
        message = _parse_message(fields, settings, received_timestamp)
    except PaymentValidationError as e:
        raise _invalid_payment(e, source, request) from e

    try:
        outcome = await service.reconcile(message, source=source)
    except SettlementUnavailable:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=CONTACT_SUPPORT)
    logger.info("payment %s via %s from %s: %s %s", message.transaction_uuid, source, _client_ip(request),
                outcome.kind.value, outcome.status.value if outcome.status else outcome.reason.value)
    return _respond(outcome, response)


def require_gateway_ip(request: Request, settings: Settings = Depends(get_settings)):
    if not settings.webhook_allowed_ips:
        return
    client_ip = _client_ip(request)
    try:
        address = ipaddress.ip_address(client_ip)
        allowed = any(address in ipaddress.ip_network(net, strict=False) for net in settings.webhook_allowed_ips)
    except ValueError:
        allowed = False
    if not allowed:
        audit.warning("webhook call from non-allowlisted address %r", client_ip)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


# 💳 Redirect payload forwarded by the storefront's success page
@router.post("/verify-payment", response_model=PaymentVerificationOut)
async def verify_payment(
    request: Request,
    response: Response,
    service: SettlementService = Depends(get_settlement_service),
    settings: Settings = Depends(get_settings),
    principal: Optional[Principal] = Depends(get_optional_principal),
):
    if principal is not None:
        logger.debug("verify-payment called by user %s", principal.user_id)
    return await _verify(request, response, "verify-payment", service, settings)


# 🔔 Server-to-server notification from eSewa
@router.post("/esewa-webhook", response_model=PaymentVerificationOut, dependencies=[Depends(require_gateway_ip)])
async def esewa_webhook(
    request: Request,
    response: Response,
    service: SettlementService = Depends(get_settlement_service),
    settings: Settings = Depends(get_settings),
    x_esewa_timestamp: Optional[str] = Header(None),
):
    return await _verify(request, response, "webhook", service, settings, received_timestamp=x_esewa_timestamp)


# ↩️ Browser redirect straight from eSewa (success_url)
@router.get("/esewa/callback")
async def esewa_callback(
    request: Request,
    data: Optional[str] = None,
    service: SettlementService = Depends(get_settlement_service),
    settings: Settings = Depends(get_settings),
):
    def redirect(page: str, **params) -> RedirectResponse:
        query = urlencode({k: v for k, v in params.items() if v})
        return RedirectResponse(url=f"{page}?{query}" if query else page, status_code=status.HTTP_303_SEE_OTHER)

    try:
        message = validate(data or "", max_age_seconds=settings.message_max_age_seconds)
    except PaymentValidationError as e:
        logger.debug("invalid redirect payload from %s: %s", _client_ip(request), e)
        return redirect(settings.failure_page_url, status=OrderStatus.FAILED.value)

    uuid = message.transaction_uuid
    try:
        outcome = await service.reconcile(message, source="redirect")
    except SettlementUnavailable:
        return redirect(settings.failure_page_url, transaction_uuid=uuid, status="CONTACT_SUPPORT")

    if outcome.completed:
        return redirect(settings.success_page_url, transaction_uuid=uuid, status=OrderStatus.COMPLETED.value)
    if outcome.kind == OutcomeKind.AWAITING_PAYMENT:
        return redirect(settings.success_page_url, transaction_uuid=uuid, status=OrderStatus.PENDING.value)
    if outcome.kind == OutcomeKind.INVENTORY_CONFLICT:
        return redirect(settings.failure_page_url, transaction_uuid=uuid, status="CONTACT_SUPPORT")
    return redirect(settings.failure_page_url, status=OrderStatus.FAILED.value)


# 🔎 Ask eSewa directly (token/status integration); only the order owner may trigger it
@router.post(
    "/verify-payment-status",
    response_model=PaymentVerificationOut,
    dependencies=[Depends(require_gateway_ip)],
)
async def verify_payment_status(
    payload: PaymentStatusCheck,
    response: Response,
    session: AsyncSession = Depends(get_session),
    service: SettlementService = Depends(get_settlement_service),
    principal: Principal = Depends(get_current_principal),
):
    owner = await find_order_owner(session, payload.transaction_uuid)
    if owner is None or owner != principal.user_id:
        audit.warning("status check by user %s for transaction %s they do not own",
                      principal.user_id, payload.transaction_uuid)
        raise HTTPException(status_code=404, detail="Order not found")
    try:
        outcome = await service.reconcile_with_gateway(payload.transaction_uuid)
    except GatewayUnavailable as e:
        logger.warning("eSewa status check for %s failed: %s", payload.transaction_uuid, e)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=GATEWAY_DOWN)
    except SettlementUnavailable:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=CONTACT_SUPPORT)
    return _respond(outcome, response)
