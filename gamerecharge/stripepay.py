"""
Stripe Checkout over its REST API.

Sessions are created with a form-encoded POST to /v1/checkout/sessions.
Webhooks carry a ``Stripe-Signature: t=<ts>,v1=<hex>`` header: an
HMAC-SHA256 over ``"<ts>.<raw body>"`` with the endpoint secret.
"""
from typing import Dict, List, Optional, Tuple
import hashlib
import hmac
import json
import time

import httpx

from . import config
from .errors import PaymentError, WebhookError
from .infra.log import get_logger
from .mockpay import CreateSessionResult, PaymentAdapter, Product
from .model.db import Order

log = get_logger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300

_KINDS = {
    "checkout.session.completed": "succeeded",
    "checkout.session.expired": "expired",
    "payment_intent.payment_failed": "failed",
    "payment_intent.canceled": "canceled",
    # completion is driven by the checkout session event
    "payment_intent.succeeded": "ignored",
}


def _parse_signature(header: str) -> Tuple[Optional[int], List[str]]:
    ts, v1 = None, []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                ts = int(value)
            except ValueError:
                return None, []
        elif key == "v1":
            v1.append(value)
    return ts, v1


def stripe_signature(payload: bytes, ts: int, secret: str) -> str:
    signed = f"{ts}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


class StripePay(PaymentAdapter):
    name = "stripe"

    def __init__(self, secret_key: Optional[str] = None,
                 webhook_secret: Optional[str] = None,
                 api_base: Optional[str] = None):
        self.secret_key = secret_key or config.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or config.STRIPE_WEBHOOK_SECRET
        self.api_base = (api_base or config.STRIPE_API_BASE).rstrip("/")

    def configured(self) -> bool:
        return bool(self.secret_key and self.webhook_secret)

    async def create_session(
            self, http: httpx.AsyncClient, order: Order, product: Product,
            success_url: str, cancel_url: str, customer_email: str,
            meta: dict,
    ) -> CreateSessionResult:
        if not self.secret_key:
            raise PaymentError("Payment provider is not configured")

        item = "line_items[0]"
        pd = f"{item}[price_data][product_data]"
        form: Dict[str, str] = {
            "mode": "payment",
            "payment_method_types[0]": "card",
            f"{item}[price_data][currency]": order.currency,
            f"{item}[price_data][unit_amount]": str(order.amount),
            f"{pd}[name]": product["name"],
            f"{pd}[description]": product["description"],
            f"{pd}[metadata][sku_id]": product["sku_id"],
            f"{pd}[metadata][game_id]": product["game_id"],
            f"{item}[quantity]": "1",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": order.id,
            "billing_address_collection": "auto",
            "allow_promotion_codes": "false",
        }
        if product.get("image_url"):
            form[f"{pd}[images][0]"] = product["image_url"]
        if customer_email:
            form["customer_email"] = customer_email
        for k, v in meta.items():
            form[f"metadata[{k}]"] = str(v)

        try:
            resp = await http.post(
                f"{self.api_base}/v1/checkout/sessions",
                data=form,
                headers={
                    "Authorization": f"Bearer {self.secret_key}",
                    "Idempotency-Key": f"checkout-{order.id}",
                },
            )
        except httpx.HTTPError as e:
            log.error("[PAYMENT] stripe unreachable: %s", e)
            raise PaymentError("Payment service unavailable. "
                               "Please try again later.")
        if resp.status_code >= 400:
            log.error("[PAYMENT] stripe rejected session for order %s: "
                      "%s %s", order.id, resp.status_code, resp.text[:500])
            raise PaymentError()
        body = resp.json()
        if not body.get("url"):
            raise PaymentError("Stripe session creation failed: "
                               "no URL returned")
        return {"payment_session_id": body["id"], "redirect_url": body["url"]}

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        if not self.webhook_secret:
            raise WebhookError("Webhook secret not configured")
        header = headers.get("stripe-signature")
        if not header:
            raise WebhookError("No signature")
        ts, candidates = _parse_signature(header)
        if ts is None or not candidates:
            raise WebhookError("Invalid signature")
        if abs(time.time() - ts) > SIGNATURE_TOLERANCE_SECONDS:
            raise WebhookError("Signature timestamp outside tolerance")
        expected = stripe_signature(payload, ts, self.webhook_secret)
        if not any(hmac.compare_digest(expected, c) for c in candidates):
            raise WebhookError("Invalid signature")
        try:
            event = json.loads(payload.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise WebhookError("Invalid JSON")
        if not isinstance(event, dict):
            raise WebhookError("Invalid event")
        return event

    @staticmethod
    def _object(event: dict) -> dict:
        return (event.get("data") or {}).get("object") or {}

    def event_kind(self, event: dict) -> str:
        kind = _KINDS.get(event.get("type", ""), "")
        if kind == "succeeded" and \
                self._object(event).get("payment_status") != "paid":
            # async payment methods complete later
            return "ignored"
        return kind

    def event_ids(self, event: dict) -> Tuple[str, Optional[str]]:
        obj = self._object(event)
        psid = obj.get("id", "") if event.get("type", "").startswith(
            "checkout.session.") else ""
        return psid, event.get("id")

    def event_reference(self, event: dict) -> Optional[str]:
        obj = self._object(event)
        return (obj.get("client_reference_id")
                or (obj.get("metadata") or {}).get("orderId") or None)

    def event_amount(self, event: dict) -> Tuple[Optional[int], str]:
        obj = self._object(event)
        amount = obj.get("amount_total", obj.get("amount"))
        return (int(amount) if amount is not None else None,
                (obj.get("currency") or "").lower())
