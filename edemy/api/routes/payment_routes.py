# payment_routes.py
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from edemy.api.deps import get_current_user, require_admin, require_instructor
from edemy.core.errors import BadRequestError
from edemy.models.payment_model import PaymentConfirm, PaymentCreate, RefundIn
from edemy.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["Payments"])
svc = PaymentService()


@router.post("/create", status_code=201)
def create_payment(payload: PaymentCreate, user=Depends(get_current_user)):
    data = svc.create(user, payload.courseId, payload.provider, payload.currency, payload.couponCode)
    return {"success": True, "message": "Payment created", "data": data}


# -------------------- webhooks (sin sesión) --------------------
@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request):
    payload = await request.body()
    result = svc.handle_stripe_event(payload, request.headers.get("stripe-signature"))
    return {"success": True, "data": result}


@router.post("/webhooks/paypal")
async def paypal_webhook(request: Request):
    try:
        event = await request.json()
    except ValueError:
        raise BadRequestError("Invalid webhook payload", "INVALID_PAYLOAD")
    headers = {k.lower(): v for k, v in request.headers.items()}
    return {"success": True, "data": svc.handle_paypal_event(headers, event)}


# -------------------- reportes --------------------
@router.get("/my-payments")
def my_payments(status: Optional[str] = Query(None, pattern="^(pending|processing|completed|failed|refunded|cancelled)$"),
                page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                user=Depends(get_current_user)):
    return {"success": True, "data": svc.my_payments(user, status, page, limit)}


@router.get("/instructor/revenue")
def instructor_revenue(startDate: Optional[datetime] = None, endDate: Optional[datetime] = None,
                       user=Depends(require_instructor)):
    return {"success": True, "data": {"revenue": svc.instructor_revenue(user, startDate, endDate)}}


@router.get("/admin/revenue")
def admin_revenue(startDate: Optional[datetime] = None, endDate: Optional[datetime] = None,
                  user=Depends(require_admin)):
    return {"success": True, "data": {"revenue": svc.platform_revenue(startDate, endDate)}}


# -------------------- por pago --------------------
@router.post("/{payment_id}/confirm")
def confirm_payment(payment_id: str, payload: Optional[PaymentConfirm] = None, user=Depends(get_current_user)):
    payment = svc.confirm(user, payment_id, payload.providerPaymentId if payload else None)
    return {"success": True, "message": "Payment completed successfully", "data": {"payment": payment}}


@router.post("/{payment_id}/refund")
def refund_payment(payment_id: str, payload: RefundIn, user=Depends(get_current_user)):
    payment = svc.request_refund(user, payment_id, payload.reason, payload.amount)
    return {"success": True, "message": "Payment refunded", "data": {"payment": payment}}


@router.get("/{payment_id}/receipt")
def receipt(payment_id: str, user=Depends(get_current_user)):
    return {"success": True, "data": {"receipt": svc.receipt(user, payment_id)}}


@router.get("/{payment_id}")
def get_payment(payment_id: str, user=Depends(get_current_user)):
    return {"success": True, "data": {"payment": svc.get(user, payment_id)}}
