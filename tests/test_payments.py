"""Payment tests with fake Stripe/PayPal gateways.

Invariants:
    - Completing a payment happens once, whichever of confirm/webhook arrives first
    - instructorShare = round(final * 70 / 100, 2) and platformShare is the remainder
    - Refunds claw back the instructor share and move the enrollment to refunded
    - Webhook events are processed once per event id
"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta

import pytest
import requests
from fastapi.testclient import TestClient

from edemy.api.routes import payment_routes
from edemy.config import settings
from edemy.core.errors import BadRequestError, ServiceUnavailableError
from edemy.repositories.mongo_repository import MongoRepository
from edemy.repositories.user_repository import UserRepository
from edemy.services import payment_gateways
from edemy.services.payment_gateways import PayPalClient, StripeGateway
from edemy.services.payment_service import build_pricing, revenue_split
from edemy.utils import redis_stats

from main import app


class FakeStripe:
    def __init__(self):
        self.intents = {}
        self.refunds = []

    def create_intent(self, amount, currency, metadata):
        intent_id = f"pi_{len(self.intents) + 1}"
        self.intents[intent_id] = {"status": "requires_payment_method", "amount": amount, "metadata": metadata}
        return {"id": intent_id, "client_secret": f"{intent_id}_secret", "status": "requires_payment_method"}

    def retrieve_intent(self, intent_id):
        return {"id": intent_id, "status": self.intents[intent_id]["status"], "latest_charge": None}

    def refund(self, intent_id, amount=None):
        self.refunds.append((intent_id, amount))
        return {"id": "re_1", "status": "succeeded"}

    def parse_webhook(self, payload, signature):
        if signature != "valid":
            raise BadRequestError("Webhook signature verification failed", "INVALID_SIGNATURE")
        return json.loads(payload)


class FakePayPal:
    def __init__(self):
        self.refunds = []

    def create_order(self, amount, currency, reference_id, description):
        return {"id": "ORDER-1", "status": "CREATED", "approval_url": "https://paypal.test/approve/ORDER-1"}

    def capture_order(self, order_id):
        return {"id": order_id, "status": "COMPLETED", "capture_id": "CAP-1"}

    def refund_capture(self, capture_id, amount=None, currency="USD", request_id=None):
        self.refunds.append((capture_id, amount))
        return {"id": "R-1", "status": "COMPLETED"}

    def verify_webhook(self, headers, event):
        return headers.get("paypal-transmission-sig") == "good"


@pytest.fixture
def stripe_fake(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr(payment_routes.svc, "stripe", fake)
    return fake


@pytest.fixture
def paypal_fake(monkeypatch):
    fake = FakePayPal()
    monkeypatch.setattr(payment_routes.svc, "paypal", fake)
    return fake


def _create(client, headers, course_id, **extra):
    return client.post("/api/payments/create", headers=headers, json={"courseId": course_id, **extra})


def _stripe_paid(client, stripe_fake, headers, course_id):
    data = _create(client, headers, course_id).json()["data"]
    payment = data["payment"]
    stripe_fake.intents[payment["providerPaymentId"]]["status"] = "succeeded"
    res = client.post(f"/api/payments/{payment['id']}/confirm", headers=headers)
    assert res.status_code == 200, res.json()
    return res.json()["data"]["payment"]


# -- pricing helpers -----------------------------------------------------------

def test_revenue_split():
    assert revenue_split(49.99, 70) == {"instructorShare": 34.99, "platformShare": 15.0, "instructorSharePercentage": 70}


def test_pricing_applies_discount_and_coupon():
    pricing = build_pricing({"price": 100, "discount": 20}, "welcome10")
    assert pricing["subtotal"] == 80
    assert pricing["couponCode"] == "WELCOME10"
    assert pricing["couponDiscount"] == 8
    assert pricing["finalAmount"] == 72


def test_unknown_coupon():
    with pytest.raises(BadRequestError) as exc:
        build_pricing({"price": 100}, "NOPE")
    assert exc.value.code == "INVALID_COUPON"


# -- create --------------------------------------------------------------------

def test_create_stripe_payment(client, student, make_course, stripe_fake):
    course = make_course(price=50)
    res = _create(client, student[1], course["id"])
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["clientSecret"] == "pi_1_secret"
    assert data["payment"]["status"] == "pending"
    assert data["payment"]["transactionId"].startswith("TXN-")
    assert "clientSecret" not in data["payment"]
    assert stripe_fake.intents["pi_1"]["metadata"]["paymentId"] == data["payment"]["id"]


def test_pending_payment_is_reused(client, student, make_course, stripe_fake):
    course = make_course(price=50)
    first = _create(client, student[1], course["id"]).json()["data"]["payment"]
    second = _create(client, student[1], course["id"]).json()["data"]["payment"]
    assert first["id"] == second["id"]
    assert len(stripe_fake.intents) == 1


@pytest.mark.parametrize("overrides,code", [
    ({"price": 0}, "FREE_COURSE"),
    ({"status": "draft", "sections": []}, "COURSE_NOT_PUBLISHED"),
])
def test_create_rejects_unbuyable_courses(client, student, make_course, stripe_fake, overrides, code):
    course = make_course(**overrides)
    res = _create(client, student[1], course["id"])
    assert res.status_code == 400
    assert res.json()["code"] == code


def test_create_missing_course(client, student, stripe_fake):
    assert _create(client, student[1], "64b000000000000000000000").status_code == 404


def test_create_own_course(client, instructor, make_course, stripe_fake):
    course = make_course(price=50)
    assert _create(client, instructor[1], course["id"]).json()["code"] == "OWN_COURSE"


def test_full_coupon_completes_without_provider(client, student, make_course, stripe_fake):
    course = make_course(price=50)
    data = _create(client, student[1], course["id"], couponCode="FREEBIE").json()["data"]
    assert data["payment"]["status"] == "completed"
    assert data["payment"]["paymentProvider"] == "free"
    assert stripe_fake.intents == {}


# -- confirm -------------------------------------------------------------------

def test_confirm_before_success_is_rejected(client, student, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _create(client, student[1], course["id"]).json()["data"]["payment"]
    res = client.post(f"/api/payments/{payment['id']}/confirm", headers=student[1])
    assert res.status_code == 400
    assert res.json()["code"] == "PAYMENT_NOT_COMPLETED"


def test_confirm_completes_enrolls_and_credits_instructor(client, student, instructor, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _stripe_paid(client, stripe_fake, student[1], course["id"])
    assert payment["status"] == "completed"
    assert payment["revenue"]["instructorShare"] == 35.0
    assert payment["revenue"]["platformShare"] == 15.0
    assert payment["receipt"]["receiptNumber"].startswith("REC-")

    enrollments = client.get("/api/enrollments/my-enrollments", headers=student[1]).json()["data"]["enrollments"]
    assert enrollments[0]["course"] == course["id"]
    assert enrollments[0]["payment"] == payment["id"]

    owner = UserRepository().find_one(instructor[0]["_id"])
    assert owner["instructorProfile"]["earnings"]["total"] == 35.0
    assert owner["instructorProfile"]["earnings"]["pending"] == 35.0
    assert redis_stats.course_stats(course["id"])["sales"] == 1

    # idempotente
    res = client.post(f"/api/payments/{payment['id']}/confirm", headers=student[1])
    assert res.status_code == 200
    owner = UserRepository().find_one(instructor[0]["_id"])
    assert owner["instructorProfile"]["earnings"]["total"] == 35.0


def test_enroll_with_completed_payment_is_idempotent(client, student, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _stripe_paid(client, stripe_fake, student[1], course["id"])
    res = client.post("/api/enrollments/enroll", headers=student[1],
                      json={"courseId": course["id"], "paymentId": payment["id"]})
    assert res.status_code == 201


def test_purchase_removes_course_from_cart(client, student, make_course, stripe_fake):
    course = make_course(price=50)
    client.post("/api/cart/add", headers=student[1], json={"courseId": course["id"]})
    _stripe_paid(client, stripe_fake, student[1], course["id"])
    cart = client.get("/api/cart", headers=student[1]).json()["data"]["cart"]
    assert cart["items"] == []


def test_paypal_checkout(client, student, make_course, paypal_fake):
    course = make_course(price=50)
    data = _create(client, student[1], course["id"], provider="paypal").json()["data"]
    assert data["approvalUrl"] == "https://paypal.test/approve/ORDER-1"
    res = client.post(f"/api/payments/{data['payment']['id']}/confirm", headers=student[1],
                      json={"providerPaymentId": "ORDER-1"})
    assert res.status_code == 200
    assert res.json()["data"]["payment"]["providerCaptureId"] == "CAP-1"


def test_only_owner_confirms(client, student, make_user, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _create(client, student[1], course["id"]).json()["data"]["payment"]
    _, other = make_user("mallory")
    assert client.post(f"/api/payments/{payment['id']}/confirm", headers=other).status_code == 403


# -- webhooks ------------------------------------------------------------------

def _stripe_event(event_id, event_type, obj):
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}})


def test_stripe_webhook_completes_once(client, student, instructor, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _create(client, student[1], course["id"]).json()["data"]["payment"]
    body = _stripe_event("evt_1", "payment_intent.succeeded", {"id": payment["providerPaymentId"]})

    res = client.post("/api/payments/webhooks/stripe", content=body, headers={"stripe-signature": "valid"})
    assert res.json()["data"]["handled"] is True
    res = client.post("/api/payments/webhooks/stripe", content=body, headers={"stripe-signature": "valid"})
    assert res.json()["data"]["duplicate"] is True

    stored = MongoRepository("payments").find_one(payment["id"])
    assert stored["status"] == "completed"
    assert len(stored["webhookEvents"]) == 1
    owner = UserRepository().find_one(instructor[0]["_id"])
    assert owner["instructorProfile"]["earnings"]["total"] == 35.0


def test_stripe_webhook_bad_signature(client, stripe_fake):
    res = client.post("/api/payments/webhooks/stripe", content="{}", headers={"stripe-signature": "forged"})
    assert res.status_code == 400
    assert res.json()["code"] == "INVALID_SIGNATURE"


def test_stripe_webhook_failure(client, student, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _create(client, student[1], course["id"]).json()["data"]["payment"]
    body = _stripe_event("evt_2", "payment_intent.payment_failed", {
        "id": payment["providerPaymentId"], "last_payment_error": {"message": "card declined"},
    })
    client.post("/api/payments/webhooks/stripe", content=body, headers={"stripe-signature": "valid"})
    stored = MongoRepository("payments").find_one(payment["id"])
    assert stored["status"] == "failed"
    assert stored["failureReason"] == "card declined"


def test_stripe_charge_refunded_webhook(client, student, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _stripe_paid(client, stripe_fake, student[1], course["id"])
    body = _stripe_event("evt_3", "charge.refunded", {"payment_intent": payment["providerPaymentId"], "amount_refunded": 5000})
    client.post("/api/payments/webhooks/stripe", content=body, headers={"stripe-signature": "valid"})
    stored = MongoRepository("payments").find_one(payment["id"])
    assert stored["status"] == "refunded"
    assert stored["refundInfo"]["refundAmount"] == 50.0


def test_paypal_webhook_capture_completed(client, student, make_course, paypal_fake):
    course = make_course(price=50)
    payment = _create(client, student[1], course["id"], provider="paypal").json()["data"]["payment"]
    event = {
        "id": "WH-1",
        "event_type": "PAYMENT.CAPTURE.COMPLETED",
        "resource": {"id": "CAP-9", "supplementary_data": {"related_ids": {"order_id": "ORDER-1"}}},
    }
    res = client.post("/api/payments/webhooks/paypal", json=event, headers={"paypal-transmission-sig": "good"})
    assert res.json()["data"]["handled"] is True
    stored = MongoRepository("payments").find_one(payment["id"])
    assert stored["status"] == "completed"
    assert stored["providerCaptureId"] == "CAP-9"

    res = client.post("/api/payments/webhooks/paypal", json=event, headers={"paypal-transmission-sig": "bad"})
    assert res.status_code == 400


def test_stripe_success_after_failed_attempt(client, student, instructor, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _create(client, student[1], course["id"]).json()["data"]["payment"]
    intent = payment["providerPaymentId"]
    failed = _stripe_event("evt_f", "payment_intent.payment_failed", {
        "id": intent, "last_payment_error": {"message": "card declined"},
    })
    succeeded = _stripe_event("evt_s", "payment_intent.succeeded", {"id": intent})
    client.post("/api/payments/webhooks/stripe", content=failed, headers={"stripe-signature": "valid"})
    assert MongoRepository("payments").find_one(payment["id"])["status"] == "failed"

    # el comprador reintenta con otra tarjeta sobre el mismo PaymentIntent
    res = client.post("/api/payments/webhooks/stripe", content=succeeded, headers={"stripe-signature": "valid"})
    assert res.json()["data"]["handled"] is True
    assert MongoRepository("payments").find_one(payment["id"])["status"] == "completed"
    enrollment = MongoRepository("enrollments").find_one_by({"student": str(student[0]["_id"]), "course": course["id"]})
    assert enrollment["status"] == "active"
    owner = UserRepository().find_one(instructor[0]["_id"])
    assert owner["instructorProfile"]["earnings"]["total"] == 35.0


def test_confirm_after_failed_attempt(client, student, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _create(client, student[1], course["id"]).json()["data"]["payment"]
    failed = _stripe_event("evt_f", "payment_intent.payment_failed", {"id": payment["providerPaymentId"]})
    client.post("/api/payments/webhooks/stripe", content=failed, headers={"stripe-signature": "valid"})

    stripe_fake.intents[payment["providerPaymentId"]]["status"] = "succeeded"
    res = client.post(f"/api/payments/{payment['id']}/confirm", headers=student[1])
    assert res.status_code == 200
    assert res.json()["data"]["payment"]["status"] == "completed"


def test_instructor_share_percent_setting(client, monkeypatch, student, instructor, make_course, stripe_fake):
    monkeypatch.setattr(settings, "INSTRUCTOR_SHARE_PERCENT", 80.0)
    course = make_course(price=50)
    payment = _stripe_paid(client, stripe_fake, student[1], course["id"])
    assert payment["revenue"]["instructorShare"] == 40.0
    owner = UserRepository().find_one(instructor[0]["_id"])
    assert owner["instructorProfile"]["earnings"]["total"] == 40.0


def test_webhook_redelivery_finishes_interrupted_completion(monkeypatch, student, instructor, make_course, stripe_fake):
    client = TestClient(app, raise_server_exceptions=False)
    course = make_course(price=50)
    payment = _create(client, student[1], course["id"]).json()["data"]["payment"]
    body = _stripe_event("evt_9", "payment_intent.succeeded", {"id": payment["providerPaymentId"]})

    users = payment_routes.svc.users
    original = users.apply
    calls = []

    def flaky_apply(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise RuntimeError("mongo primary stepped down")
        return original(*args, **kwargs)

    monkeypatch.setattr(users, "apply", flaky_apply)

    res = client.post("/api/payments/webhooks/stripe", content=body, headers={"stripe-signature": "valid"})
    assert res.status_code == 500
    stored = MongoRepository("payments").find_one(payment["id"])
    assert stored["status"] == "completed"
    assert stored["fulfilled"] is False
    assert stored["webhookEvents"] == []

    res = client.post("/api/payments/webhooks/stripe", content=body, headers={"stripe-signature": "valid"})
    assert res.status_code == 200
    assert res.json()["data"]["handled"] is True
    assert MongoRepository("payments").find_one(payment["id"])["fulfilled"] is True
    owner = UserRepository().find_one(instructor[0]["_id"])
    assert owner["instructorProfile"]["earnings"]["total"] == 35.0

    # una tercera entrega ya es duplicada y no vuelve a acreditar
    res = client.post("/api/payments/webhooks/stripe", content=body, headers={"stripe-signature": "valid"})
    assert res.json()["data"]["duplicate"] is True
    assert UserRepository().find_one(instructor[0]["_id"])["instructorProfile"]["earnings"]["total"] == 35.0


def test_paypal_webhook_capture_refunded(client, student, instructor, make_course, paypal_fake):
    course = make_course(price=50)
    payment = _create(client, student[1], course["id"], provider="paypal").json()["data"]["payment"]
    client.post(f"/api/payments/{payment['id']}/confirm", headers=student[1])
    event = {
        "id": "WH-2",
        "event_type": "PAYMENT.CAPTURE.REFUNDED",
        "resource": {
            "id": "R-9",
            "amount": {"value": "20.00", "currency_code": "USD"},
            "links": [{"rel": "up", "href": "https://api-m.paypal.com/v2/payments/captures/CAP-1"}],
        },
    }
    res = client.post("/api/payments/webhooks/paypal", json=event, headers={"paypal-transmission-sig": "good"})
    assert res.json()["data"]["handled"] is True
    stored = MongoRepository("payments").find_one(payment["id"])
    assert stored["status"] == "refunded"
    assert stored["refundInfo"]["refundAmount"] == 20.0
    owner = UserRepository().find_one(instructor[0]["_id"])
    assert owner["instructorProfile"]["earnings"]["total"] == 21.0


def test_unverified_paypal_webhook_is_rejected(client, monkeypatch, student, make_course, paypal_fake):
    course = make_course(price=50)
    payment = _create(client, student[1], course["id"], provider="paypal").json()["data"]["payment"]
    monkeypatch.setattr(payment_routes.svc, "paypal", PayPalClient("id", "secret", "sandbox"))
    monkeypatch.setattr(settings, "PAYPAL_WEBHOOK_ID", "")
    forged = {
        "id": "WH-X",
        "event_type": "PAYMENT.CAPTURE.COMPLETED",
        "resource": {"id": "CAP-X", "supplementary_data": {"related_ids": {"order_id": payment["providerPaymentId"]}}},
    }

    res = client.post("/api/payments/webhooks/paypal", json=forged)
    assert res.status_code == 503
    assert res.json()["code"] == "WEBHOOK_NOT_CONFIGURED"

    monkeypatch.setattr(settings, "PAYPAL_WEBHOOK_ID", "WH-ID")
    res = client.post("/api/payments/webhooks/paypal", json=forged)
    assert res.status_code == 400
    assert res.json()["code"] == "INVALID_SIGNATURE"
    assert MongoRepository("payments").find_one(payment["id"])["status"] == "pending"


# -- refunds -------------------------------------------------------------------

def test_refund_within_window(client, student, instructor, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _stripe_paid(client, stripe_fake, student[1], course["id"])
    res = client.post(f"/api/payments/{payment['id']}/refund", headers=student[1], json={"reason": "duplicate"})
    assert res.status_code == 200
    refunded = res.json()["data"]["payment"]
    assert refunded["status"] == "refunded"
    assert refunded["refundInfo"]["refundAmount"] == 50.0
    assert stripe_fake.refunds == [(payment["providerPaymentId"], None)]

    owner = UserRepository().find_one(instructor[0]["_id"])
    assert owner["instructorProfile"]["earnings"]["total"] == 0
    enr = client.get("/api/enrollments/my-enrollments", headers=student[1]).json()["data"]["enrollments"][0]
    assert enr["status"] == "refunded"

    res = client.post(f"/api/payments/{payment['id']}/refund", headers=student[1], json={})
    assert res.json()["code"] == "ALREADY_REFUNDED"


def test_refund_window_expired_except_for_admin(client, student, admin, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _stripe_paid(client, stripe_fake, student[1], course["id"])
    MongoRepository("payments").update(payment["id"], {"completedAt": datetime.utcnow() - timedelta(days=31)})

    res = client.post(f"/api/payments/{payment['id']}/refund", headers=student[1], json={})
    assert res.json()["code"] == "REFUND_WINDOW_EXPIRED"
    res = client.post(f"/api/payments/{payment['id']}/refund", headers=admin[1], json={"amount": 10})
    assert res.status_code == 200
    assert res.json()["data"]["payment"]["refundInfo"]["refundAmount"] == 10


def test_refund_amount_over_paid(client, student, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _stripe_paid(client, stripe_fake, student[1], course["id"])
    res = client.post(f"/api/payments/{payment['id']}/refund", headers=student[1], json={"amount": 80})
    assert res.json()["code"] == "REFUND_AMOUNT_EXCEEDED"


def test_refund_then_buy_again_reactivates_enrollment(client, student, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _stripe_paid(client, stripe_fake, student[1], course["id"])
    client.post(f"/api/payments/{payment['id']}/refund", headers=student[1], json={})
    second = _stripe_paid(client, stripe_fake, student[1], course["id"])
    enrollments = client.get("/api/enrollments/my-enrollments", headers=student[1]).json()["data"]["enrollments"]
    assert len(enrollments) == 1
    assert enrollments[0]["status"] == "active"
    assert enrollments[0]["payment"] == second["id"]


# -- reports -------------------------------------------------------------------

def test_receipt_and_history(client, student, make_course, stripe_fake):
    course = make_course(price=50)
    payment = _stripe_paid(client, stripe_fake, student[1], course["id"])
    receipt = client.get(f"/api/payments/{payment['id']}/receipt", headers=student[1]).json()["data"]["receipt"]
    assert receipt["course"]["title"] == course["title"]
    assert receipt["student"]["email"] == "student1@example.com"

    history = client.get("/api/payments/my-payments", headers=student[1]).json()["data"]
    assert history["pagination"]["totalPayments"] == 1


def test_instructor_and_admin_revenue(client, student, instructor, admin, make_course, stripe_fake):
    course = make_course(price=50)
    _stripe_paid(client, stripe_fake, student[1], course["id"])

    revenue = client.get("/api/payments/instructor/revenue", headers=instructor[1]).json()["data"]["revenue"]
    assert revenue["totalRevenue"] == 35.0
    assert revenue["totalSales"] == 1
    assert revenue["perCourse"][0]["courseId"] == course["id"]

    assert client.get("/api/payments/admin/revenue", headers=instructor[1]).status_code == 403
    platform = client.get("/api/payments/admin/revenue", headers=admin[1]).json()["data"]["revenue"]
    assert platform["platformRevenue"] == 15.0
    assert platform["netRevenue"] == 50.0


# -- gateways ------------------------------------------------------------------

def _stripe_signature(payload: str, secret: str) -> str:
    ts = int(time.time())
    sig = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def test_stripe_gateway_verifies_signatures(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    payload = json.dumps({"id": "evt_1", "object": "event", "type": "payment_intent.succeeded",
                          "data": {"object": {"id": "pi_1", "object": "payment_intent"}}})
    event = StripeGateway().parse_webhook(payload.encode(), _stripe_signature(payload, "whsec_test"))
    assert event["type"] == "payment_intent.succeeded"

    with pytest.raises(BadRequestError) as exc:
        StripeGateway().parse_webhook(payload.encode(), _stripe_signature(payload, "whsec_other"))
    assert exc.value.code == "INVALID_SIGNATURE"


class _Resp:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.content = json.dumps(body).encode()
        self.text = json.dumps(body)

    def json(self):
        return self._body


def test_paypal_client_creates_order(monkeypatch):
    calls = []
    monkeypatch.setattr(payment_gateways.requests, "post",
                        lambda *a, **kw: _Resp(200, {"access_token": "tok", "expires_in": 3600}))

    def fake_request(method, url, json=None, headers=None, timeout=None):
        calls.append((method, url, headers["Authorization"]))
        return _Resp(201, {"id": "ORDER-7", "status": "CREATED",
                           "links": [{"rel": "approve", "href": "https://paypal.test/approve/ORDER-7"}]})

    monkeypatch.setattr(payment_gateways.requests, "request", fake_request)
    client = PayPalClient("id", "secret", "sandbox")
    order = client.create_order(19.5, "usd", "pay-1", "Course")
    assert order == {"id": "ORDER-7", "status": "CREATED", "approval_url": "https://paypal.test/approve/ORDER-7"}
    assert calls == [("POST", "https://api-m.sandbox.paypal.com/v2/checkout/orders", "Bearer tok")]


def test_paypal_client_not_configured():
    with pytest.raises(payment_gateways.PayPalError) as exc:
        PayPalClient().create_order(10, "USD", "x", "y")
    assert exc.value.code == "PAYPAL_NOT_CONFIGURED"


def test_paypal_retries_reuse_request_id(monkeypatch):
    monkeypatch.setattr(payment_gateways.requests, "post",
                        lambda *a, **kw: _Resp(200, {"access_token": "tok", "expires_in": 3600}))
    monkeypatch.setattr(payment_gateways.time, "sleep", lambda seconds: None)
    sent = []

    def flaky_request(method, url, json=None, headers=None, timeout=None):
        sent.append(headers.get("PayPal-Request-Id"))
        if len(sent) == 1:
            raise requests.Timeout("read timed out")
        return _Resp(201, {"id": "R-1", "status": "COMPLETED"})

    monkeypatch.setattr(payment_gateways.requests, "request", flaky_request)
    client = PayPalClient("id", "secret", "sandbox")
    assert client.refund_capture("CAP-1", 10, "USD", request_id="refund-TXN-1") == {"id": "R-1", "status": "COMPLETED"}
    assert sent == ["refund-TXN-1", "refund-TXN-1"]

    sent.clear()
    client.capture_order("ORDER-1")
    assert sent == ["capture-ORDER-1", "capture-ORDER-1"]


def test_paypal_webhook_without_transmission_headers(monkeypatch):
    monkeypatch.setattr(settings, "PAYPAL_WEBHOOK_ID", "WH-ID")
    assert PayPalClient("id", "secret", "sandbox").verify_webhook({}, {"id": "WH-1"}) is False

    monkeypatch.setattr(settings, "PAYPAL_WEBHOOK_ID", "")
    with pytest.raises(ServiceUnavailableError):
        PayPalClient("id", "secret", "sandbox").verify_webhook({}, {"id": "WH-1"})


def test_stripe_webhook_without_secret_is_rejected(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    with pytest.raises(ServiceUnavailableError):
        StripeGateway().parse_webhook(b"{}", "t=1,v1=abc")
