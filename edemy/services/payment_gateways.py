"""
Adaptadores de pasarelas de pago.

StripeGateway envuelve la librería oficial `stripe`; PayPalClient habla con
la API REST v2 de PayPal vía `requests`. Ambos lanzan PaymentProviderError
para que los servicios no dependan de excepciones de terceros.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
import stripe

from edemy.config import settings
from edemy.core.errors import BadRequestError, PaymentProviderError, ServiceUnavailableError


def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))


# ===============================================================
# 💳 Stripe
# ===============================================================
class StripeGateway:
    def _key(self) -> str:
        if not settings.STRIPE_SECRET_KEY:
            raise PaymentProviderError("Stripe is not configured", "STRIPE_NOT_CONFIGURED")
        return settings.STRIPE_SECRET_KEY

    def create_intent(self, amount: float, currency: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self._key(),
                amount=to_minor_units(amount),
                currency=currency.lower(),
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logging.error(f"[stripe.create_intent] {e}")
            raise PaymentProviderError(f"Stripe error: {e.user_message or str(e)}")
        return {"id": intent["id"], "client_secret": intent["client_secret"], "status": intent["status"]}

    def retrieve_intent(self, intent_id: str) -> Dict[str, Any]:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self._key())
        except stripe.StripeError as e:
            logging.error(f"[stripe.retrieve_intent] {e}")
            raise PaymentProviderError(f"Stripe error: {e.user_message or str(e)}")
        return {"id": intent["id"], "status": intent["status"], "latest_charge": intent.get("latest_charge")}

    def refund(self, intent_id: str, amount: Optional[float] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"payment_intent": intent_id}
        if amount is not None:
            params["amount"] = to_minor_units(amount)
        try:
            refund = stripe.Refund.create(api_key=self._key(), **params)
        except stripe.StripeError as e:
            logging.error(f"[stripe.refund] {e}")
            raise PaymentProviderError(f"Stripe error: {e.user_message or str(e)}")
        return {"id": refund["id"], "status": refund["status"]}

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not settings.STRIPE_WEBHOOK_SECRET:
            raise ServiceUnavailableError("Stripe webhook secret is not configured", "WEBHOOK_NOT_CONFIGURED")
        try:
            event = stripe.Webhook.construct_event(payload, signature or "", settings.STRIPE_WEBHOOK_SECRET)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise BadRequestError(f"Webhook signature verification failed: {e}", "INVALID_SIGNATURE")
        return event.to_dict() if hasattr(event, "to_dict") else dict(event)


# ===============================================================
# 🅿️ PayPal
# ===============================================================
class PayPalError(PaymentProviderError):
    pass


@dataclass
class PayPalClient:
    client_id: str = ""
    client_secret: str = ""
    mode: str = "sandbox"
    timeout_seconds: int = 30
    _token: Optional[str] = field(default=None, repr=False)
    _token_expires: float = field(default=0.0, repr=False)

    @classmethod
    def from_settings(cls) -> "PayPalClient":
        return cls(settings.PAYPAL_CLIENT_ID, settings.PAYPAL_CLIENT_SECRET, settings.PAYPAL_MODE)

    @property
    def base_url(self) -> str:
        if self.mode == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    def _access_token(self) -> str:
        if not self.client_id or not self.client_secret:
            raise PayPalError("PayPal is not configured", "PAYPAL_NOT_CONFIGURED")
        if self._token and time.time() < self._token_expires:
            return self._token
        try:
            resp = requests.post(
                f"{self.base_url}/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as e:
            raise PayPalError(f"PayPal auth request failed: {e}")
        if resp.status_code != 200:
            raise PayPalError(f"PayPal auth failed: HTTP {resp.status_code}")
        body = resp.json()
        self._token = body["access_token"]
        self._token_expires = time.time() + int(body.get("expires_in", 300)) - 60
        return self._token

    def request_json(self, method: str, path: str, *, json_body: Optional[Dict[str, Any]] = None,
                     retries: int = 2, request_id: Optional[str] = None) -> Dict[str, Any]:
        """Reintenta timeouts, 429 y 5xx. Los POST llevan un PayPal-Request-Id fijo
        para todos los intentos, así PayPal no ejecuta dos veces una captura o un reembolso."""
        url = self.base_url + path
        extra_headers: Dict[str, str] = {}
        if method.upper() == "POST":
            extra_headers["PayPal-Request-Id"] = request_id or uuid.uuid4().hex
        last_err: Optional[Exception] = None
        for attempt in range(retries + 1):
            try:
                resp = requests.request(
                    method,
                    url,
                    json=json_body,
                    headers={
                        "Authorization": f"Bearer {self._access_token()}",
                        "Content-Type": "application/json",
                        **extra_headers,
                    },
                    timeout=self.timeout_seconds,
                )
            except requests.RequestException as e:
                last_err = e
                time.sleep(min(1 * (attempt + 1), 5))
                continue
            if resp.status_code == 429 or resp.status_code >= 500:
                last_err = PayPalError(f"HTTP {resp.status_code} from PayPal")
                time.sleep(min(2 * (attempt + 1), 10))
                continue
            if resp.status_code >= 400:
                raise PayPalError(f"HTTP {resp.status_code} from PayPal: {resp.text[:300]}")
            return resp.json() if resp.content else {}
        raise PayPalError(f"PayPal request failed after retries: {last_err}")

    def create_order(self, amount: float, currency: str, reference_id: str, description: str) -> Dict[str, Any]:
        order = self.request_json("POST", "/v2/checkout/orders", json_body={
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": reference_id,
                "description": description[:127],
                "amount": {"currency_code": currency.upper(), "value": f"{amount:.2f}"},
            }],
            "application_context": {
                "return_url": f"{settings.CLIENT_URL}/payment/success",
                "cancel_url": f"{settings.CLIENT_URL}/payment/cancel",
            },
        })
        approve = next((l["href"] for l in order.get("links", []) if l.get("rel") in ("approve", "payer-action")), None)
        return {"id": order["id"], "status": order.get("status"), "approval_url": approve}

    def capture_order(self, order_id: str) -> Dict[str, Any]:
        result = self.request_json("POST", f"/v2/checkout/orders/{order_id}/capture", json_body={},
                                   request_id=f"capture-{order_id}")
        capture_id = None
        for unit in result.get("purchase_units", []):
            for cap in (unit.get("payments") or {}).get("captures", []):
                capture_id = cap.get("id")
        return {"id": result.get("id"), "status": result.get("status"), "capture_id": capture_id}

    def refund_capture(self, capture_id: str, amount: Optional[float] = None, currency: str = "USD",
                       request_id: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if amount is not None:
            body["amount"] = {"value": f"{amount:.2f}", "currency_code": currency.upper()}
        result = self.request_json("POST", f"/v2/payments/captures/{capture_id}/refund", json_body=body,
                                   request_id=request_id)
        return {"id": result.get("id"), "status": result.get("status")}

    def verify_webhook(self, headers: Dict[str, str], event: Dict[str, Any]) -> bool:
        if not settings.PAYPAL_WEBHOOK_ID:
            # sin webhook id no hay forma de verificar la firma: se rechaza todo
            logging.error("[paypal.webhook] ❌ PAYPAL_WEBHOOK_ID not set, event rejected")
            raise ServiceUnavailableError("PayPal webhook id is not configured", "WEBHOOK_NOT_CONFIGURED")
        required = ("paypal-auth-algo", "paypal-cert-url", "paypal-transmission-id",
                    "paypal-transmission-sig", "paypal-transmission-time")
        if not all(headers.get(h) for h in required):
            return False
        result = self.request_json("POST", "/v1/notifications/verify-webhook-signature", json_body={
            "auth_algo": headers.get("paypal-auth-algo"),
            "cert_url": headers.get("paypal-cert-url"),
            "transmission_id": headers.get("paypal-transmission-id"),
            "transmission_sig": headers.get("paypal-transmission-sig"),
            "transmission_time": headers.get("paypal-transmission-time"),
            "webhook_id": settings.PAYPAL_WEBHOOK_ID,
            "webhook_event": event,
        })
        return result.get("verification_status") == "SUCCESS"
