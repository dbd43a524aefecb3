# edemy/services/payment_service.py
"""
Pagos de cursos: creación con Stripe/PayPal, confirmación, webhooks,
reembolsos y reportes de ingresos.

Las transiciones de estado usan find_one_and_update con el estado esperado
en el filtro, así confirm() y el webhook pueden llegar en cualquier orden
y sólo uno de los dos completa el pago.

    pending/processing/failed --complete--> completed --refund--> refunded
    pending/processing --fail--> failed
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from edemy.config import settings
from edemy.core.errors import BadRequestError, ForbiddenError, NotFoundError
from edemy.repositories.mongo_repository import MongoRepository, clean, pagination, to_object_id
from edemy.repositories.user_repository import UserRepository
from edemy.services.cart_service import CartService
from edemy.services.course_service import CourseService, effective_price
from edemy.services.enrollment_service import LIVE_STATUSES, EnrollmentService
from edemy.services.payment_gateways import PayPalClient, StripeGateway
from edemy.utils import redis_stats
from edemy.utils.security import make_reference

OPEN_STATUSES = ["pending", "processing"]
# un intento fallido puede terminar cobrándose si el comprador reintenta con otra tarjeta
COMPLETABLE_STATUSES = OPEN_STATUSES + ["failed"]


def revenue_split(final_amount: float, share_pct: float) -> Dict[str, float]:
    instructor = round(final_amount * share_pct / 100, 2)
    return {
        "instructorShare": instructor,
        "platformShare": round(final_amount - instructor, 2),
        "instructorSharePercentage": share_pct,
    }


def build_pricing(course: Dict[str, Any], coupon_code: Optional[str] = None) -> Dict[str, Any]:
    subtotal = effective_price(course)
    coupon_pct = 0.0
    code = None
    if coupon_code:
        code = coupon_code.strip().upper()
        table = settings.coupon_table()
        if code not in table:
            raise BadRequestError("Invalid coupon code", "INVALID_COUPON")
        coupon_pct = table[code]
    coupon_discount = round(subtotal * coupon_pct / 100, 2)
    tax_rate = 0.0
    tax = round((subtotal - coupon_discount) * tax_rate, 2)
    return {
        "originalPrice": float(course.get("originalPrice") or course.get("price") or 0),
        "discount": float(course.get("discount") or 0),
        "couponCode": code,
        "couponDiscount": coupon_discount,
        "subtotal": subtotal,
        "tax": tax,
        "taxRate": tax_rate,
        "platformFee": 0.0,
        "finalAmount": max(round(subtotal - coupon_discount + tax, 2), 0.0),
    }


class PaymentService:
    def __init__(self):
        self.repo = MongoRepository("payments")
        self.users = UserRepository()
        self.courses = CourseService()
        self.enrollments = EnrollmentService()
        self.carts = CartService()
        self.stripe = StripeGateway()
        self.paypal = PayPalClient.from_settings()

    def _now(self) -> datetime:
        return datetime.utcnow()

    def _get(self, payment_id: str) -> Dict[str, Any]:
        doc = self.repo.find_one(payment_id)
        if not doc:
            raise NotFoundError("Payment not found", "PAYMENT_NOT_FOUND")
        return doc

    def _transition(self, payment_id, from_statuses: List[str], updates: Dict[str, Any],
                    extra_filter: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Cambia de estado sólo si el pago sigue en uno de `from_statuses`."""
        q: Dict[str, Any] = {"_id": to_object_id(payment_id), "status": {"$in": from_statuses}}
        if extra_filter:
            q.update(extra_filter)
        updates = dict(updates, updatedAt=self._now())
        return self.repo.col.find_one_and_update(q, {"$set": updates}, return_document=ReturnDocument.AFTER)

    # -------------------- creación --------------------
    def create(self, user: Dict[str, Any], course_id: str, provider: str = "stripe",
               currency: str = "USD", coupon_code: Optional[str] = None) -> Dict[str, Any]:
        uid = str(user["_id"])
        course = self.courses.repo.find_one(course_id)
        if not course:
            raise NotFoundError("Course not found", "COURSE_NOT_FOUND")
        if course.get("status") != "published":
            raise BadRequestError("Course is not available for purchase", "COURSE_NOT_PUBLISHED")
        if float(course.get("price") or 0) <= 0:
            raise BadRequestError("This course is free. Enroll directly instead.", "FREE_COURSE")
        if course.get("instructor") == uid:
            raise BadRequestError("You cannot purchase your own course", "OWN_COURSE")
        enrollment = self.enrollments.find_for(uid, str(course["_id"]))
        if enrollment and enrollment.get("status") in LIVE_STATUSES:
            raise BadRequestError("You are already enrolled in this course", "ALREADY_ENROLLED")

        pending = self.repo.find_one_by({
            "student": uid, "course": str(course["_id"]), "status": "pending", "paymentProvider": provider,
        })
        if pending:
            return self._checkout_payload(pending)

        pricing = build_pricing(course, coupon_code)
        payment = self.repo.create({
            "student": uid,
            "course": str(course["_id"]),
            "instructor": course.get("instructor"),
            "amount": pricing["finalAmount"],
            "currency": currency,
            "status": "pending",
            "paymentMethod": "card" if provider == "stripe" else "paypal",
            "paymentProvider": provider,
            "transactionId": make_reference("TXN", 8),
            "providerPaymentId": None,
            "providerCaptureId": None,
            "clientSecret": None,
            "approvalUrl": None,
            "pricing": pricing,
            "revenue": {"instructorShare": 0.0, "platformShare": 0.0,
                        "instructorSharePercentage": settings.INSTRUCTOR_SHARE_PERCENT},
            "refundInfo": {"isRefunded": False, "refundAmount": 0.0, "refundReason": None,
                           "refundedAt": None, "refundedBy": None},
            "receipt": {"receiptNumber": None, "invoiceNumber": None, "receiptUrl": None, "invoiceUrl": None},
            "webhookEvents": [],
            "completedAt": None,
            "failureReason": None,
            "metadata": {"courseTitle": course.get("title")},
        })
        pid = str(payment["_id"])

        if pricing["finalAmount"] <= 0:
            # cupón del 100 %: no hay nada que cobrar
            self.repo.update(pid, {"paymentProvider": "free", "paymentMethod": "free"})
            return self._checkout_payload(self.complete(pid))

        try:
            if provider == "stripe":
                intent = self.stripe.create_intent(
                    pricing["finalAmount"], currency,
                    {"paymentId": pid, "courseId": str(course["_id"]), "studentId": uid},
                )
                payment = self.repo.update(pid, {"providerPaymentId": intent["id"], "clientSecret": intent["client_secret"]})
            else:
                order = self.paypal.create_order(pricing["finalAmount"], currency, pid, course.get("title") or "Course")
                payment = self.repo.update(pid, {"providerPaymentId": order["id"], "approvalUrl": order["approval_url"]})
        except Exception as e:
            self.fail(pid, f"Provider error: {e}")
            raise

        logging.info(f"[payments.create] {pid} {provider} {pricing['finalAmount']} {currency} for course {course_id}")
        return self._checkout_payload(payment)

    @staticmethod
    def _checkout_payload(payment: Dict[str, Any]) -> Dict[str, Any]:
        out: Dict[str, Any] = {"payment": PaymentService.public(payment)}
        if payment.get("paymentProvider") == "stripe":
            out["clientSecret"] = payment.get("clientSecret")
        elif payment.get("paymentProvider") == "paypal":
            out["approvalUrl"] = payment.get("approvalUrl")
            out["orderId"] = payment.get("providerPaymentId")
        return out

    @staticmethod
    def public(payment: Dict[str, Any]) -> Dict[str, Any]:
        out = clean(payment)
        out.pop("clientSecret", None)
        out.pop("webhookEvents", None)
        return out

    # -------------------- máquina de estados --------------------
    def complete(self, payment_id: str, capture_id: Optional[str] = None) -> Dict[str, Any]:
        """Completa el pago, inscribe al alumno y acredita al instructor. Idempotente."""
        current = self._get(payment_id)
        now = self._now()
        final_amount = float(current["pricing"]["finalAmount"])
        split = revenue_split(final_amount, float(current["revenue"].get("instructorSharePercentage")
                                                  or settings.INSTRUCTOR_SHARE_PERCENT))
        updates: Dict[str, Any] = {
            "status": "completed",
            "completedAt": now,
            "fulfilled": False,
            "revenue": split,
            "receipt": {
                "receiptNumber": make_reference("REC", 6),
                "invoiceNumber": make_reference("INV", 6),
                "receiptUrl": f"/api/payments/{payment_id}/receipt",
                "invoiceUrl": f"/api/payments/{payment_id}/receipt",
            },
        }
        if capture_id:
            updates["providerCaptureId"] = capture_id
        payment = self._transition(payment_id, COMPLETABLE_STATUSES, updates)
        if payment is None:
            # otro camino (webhook / confirm) ya lo completó; reintenta la entrega si quedó a medias
            payment = self._get(payment_id)
            if payment["status"] != "completed" or payment.get("fulfilled", True):
                return payment
        else:
            logging.info(f"[payments.complete] {payment_id} completed, instructor share {split['instructorShare']}")
        return self._fulfill(payment_id)

    def _fulfill(self, payment_id: str) -> Dict[str, Any]:
        """Inscripción, carrito y ganancias del instructor; una sola vez por pago."""
        payment = self.repo.col.find_one_and_update(
            {"_id": to_object_id(payment_id), "status": "completed", "fulfilled": False},
            {"$set": {"fulfilled": True}},
            return_document=ReturnDocument.AFTER,
        )
        if payment is None:
            return self._get(payment_id)

        final_amount = float(payment["pricing"]["finalAmount"])
        try:
            course = self.courses.repo.find_one(payment["course"])
            if course:
                self.enrollments.create_enrollment(
                    payment["student"], course, payment_id=str(payment["_id"]), source="purchase", amount=final_amount
                )
            self.carts.discard(payment["student"], payment["course"])
            # último paso: el $inc no es idempotente
            self.users.apply(payment["instructor"], {"$inc": {
                "instructorProfile.earnings.total": payment["revenue"]["instructorShare"],
                "instructorProfile.earnings.pending": payment["revenue"]["instructorShare"],
            }})
        except Exception:
            self.repo.update(payment["_id"], {"fulfilled": False})
            logging.error(f"[payments.fulfill] ❌ {payment_id} left unfulfilled, will retry on next delivery")
            raise

        try:
            redis_stats.record_purchase(payment["course"], final_amount)
        except Exception as e:
            logging.warning(f"[payments.complete] stats skipped: {e}")
        return payment

    def fail(self, payment_id: str, reason: str) -> Optional[Dict[str, Any]]:
        payment = self._transition(payment_id, OPEN_STATUSES, {"status": "failed", "failureReason": reason})
        if payment:
            logging.warning(f"[payments.fail] {payment_id}: {reason}")
        return payment

    def refund(self, payment_id: str, amount: Optional[float], reason: str, refunded_by: str) -> Dict[str, Any]:
        current = self._get(payment_id)
        final_amount = float(current["pricing"]["finalAmount"])
        amount = final_amount if amount is None else round(float(amount), 2)
        if amount > final_amount:
            raise BadRequestError("Refund amount exceeds the amount paid", "REFUND_AMOUNT_EXCEEDED")

        payment = self._transition(
            payment_id, ["completed"],
            {
                "status": "refunded",
                "refundInfo": {
                    "isRefunded": True,
                    "refundAmount": amount,
                    "refundReason": reason,
                    "refundedAt": self._now(),
                    "refundedBy": refunded_by,
                },
            },
            extra_filter={"refundInfo.isRefunded": False},
        )
        if payment is None:
            raise BadRequestError("Only completed, non-refunded payments can be refunded", "NOT_REFUNDABLE")

        pct = float(payment["revenue"].get("instructorSharePercentage") or settings.INSTRUCTOR_SHARE_PERCENT)
        clawback = round(amount * pct / 100, 2)
        self.users.apply(payment["instructor"], {"$inc": {
            "instructorProfile.earnings.total": -clawback,
            "instructorProfile.earnings.pending": -clawback,
        }})
        self.enrollments.mark_refunded(payment["student"], payment["course"])
        logging.info(f"[payments.refund] {payment_id} refunded {amount} ({reason})")
        return payment

    # -------------------- confirmación desde el cliente --------------------
    def confirm(self, user: Dict[str, Any], payment_id: str, provider_payment_id: Optional[str] = None):
        payment = self._get(payment_id)
        if payment.get("student") != str(user["_id"]):
            raise ForbiddenError("Not authorized to confirm this payment", "NOT_PAYMENT_OWNER")
        if payment["status"] == "completed":
            return self.public(self.complete(payment_id))
        if payment["status"] not in COMPLETABLE_STATUSES:
            raise BadRequestError(f"Payment is {payment['status']}", "PAYMENT_NOT_PENDING")

        ref = provider_payment_id or payment.get("providerPaymentId")
        if not ref or ref != payment.get("providerPaymentId"):
            raise BadRequestError("Payment reference does not match", "PAYMENT_MISMATCH")

        if payment["paymentProvider"] == "stripe":
            intent = self.stripe.retrieve_intent(ref)
            if intent["status"] != "succeeded":
                if intent["status"] == "processing":
                    self._transition(payment_id, ["pending", "failed"], {"status": "processing"})
                raise BadRequestError("Payment has not succeeded yet", "PAYMENT_NOT_COMPLETED", providerStatus=intent["status"])
            return self.public(self.complete(payment_id))

        capture = self.paypal.capture_order(ref)
        if capture["status"] != "COMPLETED":
            raise BadRequestError("PayPal order was not captured", "PAYMENT_NOT_COMPLETED", providerStatus=capture["status"])
        return self.public(self.complete(payment_id, capture_id=capture.get("capture_id")))

    def request_refund(self, user: Dict[str, Any], payment_id: str, reason: str,
                       amount: Optional[float] = None) -> Dict[str, Any]:
        payment = self._get(payment_id)
        is_admin = user.get("role") == "admin"
        if payment.get("student") != str(user["_id"]) and not is_admin:
            raise ForbiddenError("Not authorized to refund this payment", "NOT_PAYMENT_OWNER")
        if (payment.get("refundInfo") or {}).get("isRefunded"):
            raise BadRequestError("Payment has already been refunded", "ALREADY_REFUNDED")
        if payment["status"] != "completed":
            raise BadRequestError("Only completed payments can be refunded", "NOT_REFUNDABLE")
        completed_at = payment.get("completedAt")
        if not is_admin and completed_at and completed_at < self._now() - timedelta(days=settings.REFUND_WINDOW_DAYS):
            raise BadRequestError(
                f"Refunds are only available within {settings.REFUND_WINDOW_DAYS} days of purchase",
                "REFUND_WINDOW_EXPIRED",
            )
        final_amount = float(payment["pricing"]["finalAmount"])
        if amount is not None and amount > final_amount:
            raise BadRequestError("Refund amount exceeds the amount paid", "REFUND_AMOUNT_EXCEEDED")

        if payment["paymentProvider"] == "stripe":
            self.stripe.refund(payment["providerPaymentId"], amount)
        elif payment["paymentProvider"] == "paypal":
            self.paypal.refund_capture(payment.get("providerCaptureId"), amount, payment.get("currency", "USD"),
                                       request_id=f"refund-{payment['transactionId']}")

        return self.public(self.refund(payment_id, amount, reason, str(user["_id"])))

    # -------------------- webhooks --------------------
    def _record_event(self, payment: Dict[str, Any], event_id: str, event_type: str) -> bool:
        """Agrega el evento al historial; False si ya se había procesado."""
        res = self.repo.col.update_one(
            {"_id": payment["_id"], "webhookEvents.eventId": {"$ne": event_id}},
            {"$push": {"webhookEvents": {"eventId": event_id, "type": event_type, "receivedAt": self._now()}}},
        )
        return res.modified_count > 0

    def _forget_event(self, payment: Dict[str, Any], event_id: str) -> None:
        """Saca el evento del historial para que el reintento del proveedor se procese."""
        self.repo.col.update_one({"_id": payment["_id"]}, {"$pull": {"webhookEvents": {"eventId": event_id}}})

    def handle_stripe_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        event = self.stripe.parse_webhook(payload, signature)
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type in ("payment_intent.succeeded", "payment_intent.payment_failed"):
            intent_id = obj.get("id")
        elif event_type == "charge.refunded":
            intent_id = obj.get("payment_intent")
        else:
            logging.info(f"[payments.webhook] stripe event {event_type} ignored")
            return {"received": True, "handled": False}

        payment = self.repo.find_one_by({"providerPaymentId": intent_id})
        if not payment:
            payment_id = (obj.get("metadata") or {}).get("paymentId")
            payment = self.repo.find_one(payment_id) if payment_id else None
        if not payment:
            logging.warning(f"[payments.webhook] no payment for stripe intent {intent_id}")
            return {"received": True, "handled": False}
        if not self._record_event(payment, event.get("id"), event_type):
            return {"received": True, "handled": False, "duplicate": True}

        pid = str(payment["_id"])
        try:
            if event_type == "payment_intent.succeeded":
                self.complete(pid)
            elif event_type == "payment_intent.payment_failed":
                message = (obj.get("last_payment_error") or {}).get("message") or "Payment failed"
                self.fail(pid, message)
            elif payment["status"] == "completed":
                self.refund(pid, int(obj.get("amount_refunded") or 0) / 100, "requested_by_customer", "stripe")
        except Exception:
            self._forget_event(payment, event.get("id"))
            raise
        return {"received": True, "handled": True}

    def handle_paypal_event(self, headers: Dict[str, str], event: Dict[str, Any]) -> Dict[str, Any]:
        if not self.paypal.verify_webhook(headers, event):
            raise BadRequestError("Webhook signature verification failed", "INVALID_SIGNATURE")
        event_type = event.get("event_type")
        resource = event.get("resource") or {}

        if event_type in ("PAYMENT.CAPTURE.COMPLETED", "PAYMENT.CAPTURE.DENIED"):
            capture_id = resource.get("id")
            order_id = ((resource.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id")
        elif event_type == "PAYMENT.CAPTURE.REFUNDED":
            up = next((l.get("href", "") for l in resource.get("links", []) if l.get("rel") == "up"), "")
            capture_id = up.rstrip("/").rsplit("/", 1)[-1] or None
            order_id = None
        else:
            logging.info(f"[payments.webhook] paypal event {event_type} ignored")
            return {"received": True, "handled": False}

        clauses = [{"providerCaptureId": capture_id}] if capture_id else []
        if order_id:
            clauses.append({"providerPaymentId": order_id})
        payment = self.repo.find_one_by({"paymentProvider": "paypal", "$or": clauses}) if clauses else None
        if not payment:
            logging.warning(f"[payments.webhook] no payment for paypal capture {capture_id}")
            return {"received": True, "handled": False}
        if not self._record_event(payment, event.get("id"), event_type):
            return {"received": True, "handled": False, "duplicate": True}

        pid = str(payment["_id"])
        try:
            if event_type == "PAYMENT.CAPTURE.COMPLETED":
                self.complete(pid, capture_id=capture_id)
            elif event_type == "PAYMENT.CAPTURE.DENIED":
                self.fail(pid, "Capture denied by PayPal")
            elif payment["status"] == "completed":
                amount = float(((resource.get("amount") or {}).get("value")) or payment["pricing"]["finalAmount"])
                self.refund(pid, amount, "requested_by_customer", "paypal")
        except Exception:
            self._forget_event(payment, event.get("id"))
            raise
        return {"received": True, "handled": True}

    # -------------------- consultas --------------------
    def my_payments(self, user: Dict[str, Any], status: Optional[str] = None,
                    page: int = 1, limit: int = 10) -> Dict[str, Any]:
        q: Dict[str, Any] = {"student": str(user["_id"])}
        if status:
            q["status"] = status
        items, total = self.repo.paginate(q, page=page, limit=limit, sort=[("createdAt", -1)])
        return {"payments": [self.public(p) for p in items], "pagination": pagination(page, limit, total, "payments")}

    def get(self, user: Dict[str, Any], payment_id: str) -> Dict[str, Any]:
        payment = self._get(payment_id)
        uid = str(user["_id"])
        if uid not in (payment.get("student"), payment.get("instructor")) and user.get("role") != "admin":
            raise ForbiddenError("Not authorized to view this payment", "NOT_PAYMENT_OWNER")
        return self.public(payment)

    def receipt(self, user: Dict[str, Any], payment_id: str) -> Dict[str, Any]:
        payment = self._get(payment_id)
        if payment.get("student") != str(user["_id"]) and user.get("role") != "admin":
            raise ForbiddenError("Not authorized to view this receipt", "NOT_PAYMENT_OWNER")
        if payment["status"] != "completed":
            raise BadRequestError("Receipt is only available for completed payments", "PAYMENT_NOT_COMPLETED")
        student = self.users.find_one(payment["student"]) or {}
        instructor = self.users.find_one(payment["instructor"]) or {}
        course = self.courses.repo.find_one(payment["course"]) or {}
        return {
            "receiptNumber": payment["receipt"]["receiptNumber"],
            "invoiceNumber": payment["receipt"]["invoiceNumber"],
            "transactionId": payment["transactionId"],
            "date": payment["completedAt"],
            "student": {"name": student.get("username"), "email": student.get("email")},
            "course": {"id": payment["course"], "title": course.get("title") or payment["metadata"].get("courseTitle")},
            "instructor": {"name": instructor.get("username")},
            "paymentMethod": payment["paymentMethod"],
            "paymentProvider": payment["paymentProvider"],
            "currency": payment["currency"],
            "pricing": payment["pricing"],
        }

    @staticmethod
    def _date_range(start: Optional[datetime], end: Optional[datetime]) -> Dict[str, Any]:
        rng: Dict[str, Any] = {}
        if start:
            rng["$gte"] = start
        if end:
            rng["$lte"] = end
        return {"completedAt": rng} if rng else {}

    def instructor_revenue(self, user: Dict[str, Any], start: Optional[datetime] = None,
                           end: Optional[datetime] = None) -> Dict[str, Any]:
        q = {"instructor": str(user["_id"]), "status": {"$in": ["completed", "refunded"]}, **self._date_range(start, end)}
        payments = self.repo.find(q)
        completed = [p for p in payments if p["status"] == "completed"]
        refunded = [p for p in payments if p["status"] == "refunded"]

        per_course: Dict[str, Dict[str, Any]] = {}
        for p in completed:
            row = per_course.setdefault(p["course"], {
                "courseId": p["course"], "title": (p.get("metadata") or {}).get("courseTitle"),
                "sales": 0, "revenue": 0.0,
            })
            row["sales"] += 1
            row["revenue"] = round(row["revenue"] + p["revenue"]["instructorShare"], 2)

        gross = sum(float(p["pricing"]["finalAmount"]) for p in completed)
        earnings = ((self.users.find_one(user["_id"]) or {}).get("instructorProfile") or {}).get("earnings") or {}
        return {
            "totalRevenue": round(sum(p["revenue"]["instructorShare"] for p in completed), 2),
            "grossSales": round(gross, 2),
            "totalSales": len(completed),
            "avgOrderValue": round(gross / len(completed), 2) if completed else 0,
            "refunds": {"count": len(refunded),
                        "amount": round(sum(p["refundInfo"]["refundAmount"] for p in refunded), 2)},
            "earnings": earnings,
            "perCourse": sorted(per_course.values(), key=lambda r: r["revenue"], reverse=True),
        }

    def platform_revenue(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict[str, Any]:
        q = {"status": {"$in": ["completed", "refunded"]}, **self._date_range(start, end)}
        payments = self.repo.find(q)
        completed = [p for p in payments if p["status"] == "completed"]
        gross = sum(float(p["pricing"]["finalAmount"]) for p in payments)
        refunded = sum(float(p["refundInfo"]["refundAmount"]) for p in payments if p["status"] == "refunded")
        return {
            "totalRevenue": round(gross, 2),
            "platformRevenue": round(sum(p["revenue"]["platformShare"] for p in completed), 2),
            "instructorPayouts": round(sum(p["revenue"]["instructorShare"] for p in completed), 2),
            "refundedAmount": round(refunded, 2),
            "netRevenue": round(gross - refunded, 2),
            "totalTransactions": len(payments),
        }
