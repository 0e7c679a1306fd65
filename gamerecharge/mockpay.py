from abc import ABC, abstractmethod
from typing import Optional, Tuple, TypedDict
import base64
import hashlib
import hmac
import json
import time
import uuid

import httpx

from . import config
from .errors import WebhookError
from .model.db import Order


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class CreateSessionResult(TypedDict):
    payment_session_id: str
    redirect_url: str


class Product(TypedDict):
    name: str
    description: str
    image_url: Optional[str]
    sku_id: str
    game_id: str


class PaymentAdapter(ABC):
    name = "abstract"

    # success_url may carry the {CHECKOUT_SESSION_ID} placeholder
    @abstractmethod
    async def create_session(
            self, http: httpx.AsyncClient, order: Order, product: Product,
            success_url: str, cancel_url: str, customer_email: str,
            meta: dict,
    ) -> CreateSessionResult: ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict: ...

    # "succeeded" | "failed" | "expired" | "canceled" | "ignored" | ""
    @abstractmethod
    def event_kind(self, event: dict) -> str:
        ...

    # (payment_session_id, idempotency_key)
    @abstractmethod
    def event_ids(self, event: dict) -> Tuple[str, Optional[str]]:
        ...

    # order id the session was opened for
    @abstractmethod
    def event_reference(self, event: dict) -> Optional[str]:
        ...

    # (amount, currency) actually charged
    @abstractmethod
    def event_amount(self, event: dict) -> Tuple[Optional[int], str]:
        ...

    def configured(self) -> bool:
        return True


# ----------------------------
# MockPay implementation
# ----------------------------
MOCK_EVENT_KINDS = ("succeeded", "failed", "canceled", "expired")


def mock_signature(payload: bytes, secret: Optional[str] = None) -> str:
    secret = config.MOCK_SECRET if secret is None else secret
    mac = hmac.new(secret.encode(), payload, hashlib.sha256).digest()
    return base64.b64encode(mac).decode()


def mock_event(kind: str, psid: str, order_id: str, amount: int,
               currency: str) -> dict:
    return {
        "type": f"payment.{kind}",
        "payment_session_id": psid,
        "order_id": order_id,
        "amount": int(amount),
        "currency": currency,
        "created_at": int(time.time()),
        "idempotency_key": f"evt_{uuid.uuid4().hex}",
    }


class MockPay(PaymentAdapter):
    """Hosted checkout served by this app under /mockpay/{psid}."""
    name = "mock"

    async def create_session(
            self, http: httpx.AsyncClient, order: Order, product: Product,
            success_url: str, cancel_url: str, customer_email: str,
            meta: dict,
    ) -> CreateSessionResult:
        psid = f"mock_{uuid.uuid4().hex}"
        redirect_url = f"/mockpay/{psid}"
        return {"payment_session_id": psid, "redirect_url": redirect_url}

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get("x-mockpay-signature")
        expected = mock_signature(payload)
        if not sig or not hmac.compare_digest(expected, sig):
            raise WebhookError("Invalid signature")
        try:
            event = json.loads(payload.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise WebhookError("Invalid JSON")
        if not isinstance(event, dict):
            raise WebhookError("Invalid event")
        return event

    def event_kind(self, event: dict) -> str:
        type_ = event.get("type", "")
        if not type_.startswith("payment."):
            return ""
        kind = type_.split(".")[-1]
        return kind if kind in MOCK_EVENT_KINDS else ""

    def event_ids(self, event: dict) -> Tuple[str, Optional[str]]:
        return (
                event.get("payment_session_id", ""),
                event.get("idempotency_key")
        )

    def event_reference(self, event: dict) -> Optional[str]:
        return event.get("order_id") or None

    def event_amount(self, event: dict) -> Tuple[Optional[int], str]:
        amount = event.get("amount")
        return (int(amount) if amount is not None else None,
                (event.get("currency") or "").lower())
