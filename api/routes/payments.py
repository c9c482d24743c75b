"""
Payments API routes.

Thin HTTP layer over `PaymentApplicationService`: order creation, checkout
verification, refunds, webhooks and read-only queries. No SDK details here.
Static paths are registered before `/{payment_id}` so they are never captured
by the catch-all lookup.
"""
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request

from api.dependencies import (
    get_payment_service,
    get_provider_payment_service,
    get_razorpay_payment_service,
    get_task_dispatcher,
)
from application.dtos.payments import (
    CreateOrderRequest,
    CreateOrderResponse,
    KeyDTO,
    OrderStatusDTO,
    PaymentDTO,
    PaymentStatsDTO,
    PendingEmailsResult,
    RefundRequest,
    RefundResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookAck,
)
from application.services.payment_service import PaymentApplicationService
from core.logging_config import get_logger
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from infrastructure.tasks import TaskDispatcher


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)

SERVICE_NAME = "payment-gateway"


def _headers(request: Request) -> dict[str, str]:
    return {k: v for k, v in request.headers.items()}


# ---- order lifecycle ----

@router.post("/create", summary="Create order", response_model=ApiResponse[CreateOrderResponse])
async def create_order(
    payload: CreateOrderRequest,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    """
    Create a gateway order and a local PENDING payment.

    The response carries the publishable `keyId` needed by the checkout widget.
    """
    order = await service.create_order(payload)
    return success_response(data=order, message="Order created")


@router.post("/create-order", summary="Create order (alias)", response_model=ApiResponse[CreateOrderResponse])
async def create_order_alias(
    payload: CreateOrderRequest,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    order = await service.create_order(payload)
    return success_response(data=order, message="Order created")


@router.post("/verify", summary="Verify checkout", response_model=ApiResponse[VerifyPaymentResponse])
async def verify_payment(
    payload: VerifyPaymentRequest,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    """Check the checkout signature and reconcile the payment; mismatch → 400."""
    result = await service.verify_payment(payload)
    return success_response(data=result, message="Payment verified")


@router.post("/confirm/{payment_id}", summary="Confirm payment", response_model=ApiResponse[PaymentDTO])
async def confirm_payment(
    payment_id: str,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    """Re-fetch the payment from the gateway and apply its status."""
    payment = await service.confirm_payment(payment_id)
    return success_response(data=payment, message="Payment confirmed")


@router.post("/refund", summary="Refund payment", response_model=ApiResponse[RefundResponse])
async def refund_payment(
    payload: RefundRequest,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    result = await service.refund(payload)
    return success_response(data=result, message=result.message)


# ---- webhooks ----

@router.post("/webhook", summary="Razorpay webhook", response_model=ApiResponse[WebhookAck])
async def razorpay_webhook(
    request: Request,
    service: PaymentApplicationService = Depends(get_razorpay_payment_service),
):
    """
    Receive a Razorpay event signed with `X-Razorpay-Signature`.

    200 when processed or ignored, 400 on an invalid signature, 500 when
    processing fails so the gateway retries delivery.
    """
    body = await request.body()
    ack = await service.handle_webhook(_headers(request), body)
    return success_response(data=ack, message="Webhook received")


@router.post("/webhooks/{provider}", summary="Provider webhook", response_model=ApiResponse[WebhookAck])
async def provider_webhook(
    provider: str,
    request: Request,
    service: PaymentApplicationService = Depends(get_provider_payment_service),
):
    body = await request.body()
    ack = await service.handle_webhook(_headers(request), body)
    return success_response(data=ack, message="Webhook received")


# ---- operations ----

@router.post(
    "/admin/send-pending-emails",
    summary="Dispatch pending notifications",
    response_model=ApiResponse[PendingEmailsResult],
)
async def send_pending_emails(
    limit: int = Query(100, ge=1, le=1000),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    dispatched = await service.send_pending_emails(limit=limit)
    return success_response(data=PendingEmailsResult(dispatched=dispatched), message="Pending emails dispatched")


@router.post("/admin/sync/{order_id}", summary="Queue gateway status sync")
async def sync_order_status(
    order_id: str,
    provider: str | None = Query(default=None, description="razorpay | stripe"),
    dispatcher: TaskDispatcher = Depends(get_task_dispatcher),
):
    dispatcher.sync_order_status(order_id, provider)
    logger.info("payment_status_sync_queued", gateway_order_id=order_id, provider=provider)
    return success_response(data={"orderId": order_id, "queued": True}, message="Status sync queued")


# ---- queries ----

@router.get("/status/{order_id}", summary="Order status", response_model=ApiResponse[OrderStatusDTO])
async def get_order_status(
    order_id: str,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    status = await service.get_order_status(order_id)
    return success_response(data=status)


@router.get("/stats", summary="Payment statistics", response_model=ApiResponse[PaymentStatsDTO])
async def get_stats(service: PaymentApplicationService = Depends(get_payment_service)):
    stats = await service.get_stats()
    return success_response(data=stats)


@router.get("/key", summary="Publishable key", response_model=ApiResponse[KeyDTO])
async def get_key(service: PaymentApplicationService = Depends(get_payment_service)):
    return success_response(data=service.get_key())


@router.get("/health", summary="Liveness")
async def payments_health():
    return {
        "status": "UP",
        "service": SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get(
    "/customer/{email}",
    summary="Payments by customer",
    response_model=ApiResponse[PaginatedData[PaymentDTO]],
)
async def list_customer_payments(
    email: str,
    page: int = Query(0, ge=0, description="页码，从 0 开始"),
    size: int = Query(20, ge=1, le=100),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    items, total = await service.list_by_customer(email, page, size)
    return paginated_response(items=items, total=total, page=page, size=size)


@router.get("/", summary="List payments", response_model=ApiResponse[PaginatedData[PaymentDTO]])
async def list_payments(
    page: int = Query(0, ge=0, description="页码，从 0 开始"),
    size: int = Query(20, ge=1, le=100),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    items, total = await service.list_payments(page, size)
    return paginated_response(items=items, total=total, page=page, size=size)


@router.get("/{payment_id}", summary="Get payment", response_model=ApiResponse[PaymentDTO])
async def get_payment(
    payment_id: str,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    payment = await service.get_payment(payment_id)
    return success_response(data=payment)
