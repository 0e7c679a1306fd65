"""
Checkout flow: open a hosted payment session for one SKU, then settle the
order from the provider's webhook.

An order is inserted as ``pending`` before the provider is contacted and is
referenced by the session (client reference). Webhooks move it to
``completed`` or ``failed``; replays of the same event are no-ops.
"""
from typing import Any, Dict, Optional

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .deps import gated
from .errors import (
    NotFound, PaymentError, ValidationFailed, WebhookProcessingError,
)
from .helpers import format_amount, localized, now_ts
from .infra.log import get_logger
from .infra.timings import timeit
from .mockpay import MockPay, PaymentAdapter, Product
from .model.catalog import get_sku_with_game
from .model.checkoutsession import CheckoutSessionStore
from .model.db import Order, Profile
from .stripepay import StripePay

log = get_logger(__name__)


def make_adapter(provider: Optional[str] = None) -> PaymentAdapter:
    provider = (provider or config.PAYMENT_PROVIDER).lower()
    if provider == "stripe":
        return StripePay()
    return MockPay()


def check_price(price: Any) -> int:
    if isinstance(price, bool) or not isinstance(price, int):
        raise ValidationFailed("Price must be an integer value in cents")
    if price < config.MINIMUM_AMOUNT_CENTS:
        raise ValidationFailed(
            f"Minimum amount is "
            f"{format_amount(config.MINIMUM_AMOUNT_CENTS, 'usd')}")
    if price > config.MAXIMUM_AMOUNT_CENTS:
        raise ValidationFailed(
            f"Maximum amount is "
            f"{format_amount(config.MAXIMUM_AMOUNT_CENTS, 'usd')}")
    return price


# ----------------------------
# Create session
# ----------------------------
async def _fail_new_order(db: AsyncSession, order: Order) -> None:
    async with gated():
        order.status = "failed"
        order.updated_at = now_ts()
        await db.commit()


async def create_checkout_session(
    db: AsyncSession,
    store: CheckoutSessionStore,
    http: httpx.AsyncClient,
    adapter: PaymentAdapter,
    user: Profile,
    sku_id: str,
    locale: str = "en",
) -> Dict[str, Any]:
    log.info("[PAYMENT] checkout requested user=%s sku=%s locale=%s",
             user.id, sku_id, locale)

    async with timeit("db.get_sku"):
        found = await get_sku_with_game(db, sku_id)
    if found is None or found[1].status != "active":
        log.warning("[PAYMENT] sku %s not available", sku_id)
        raise NotFound(
            "The requested product is not available. "
            "Please try again later.")
    sku, game = found
    price = check_price((sku.prices or {}).get(config.DEFAULT_CURRENCY))

    order = Order(
        user_id=user.id,
        sku_id=sku.id,
        merchant_id=game.merchant_id,
        amount=price,
        currency=config.DEFAULT_CURRENCY,
        status="pending",
    )
    async with timeit("db.create_order"):
        async with gated():
            db.add(order)
            await db.commit()
    log.info("[PAYMENT] order %s created for %s", order.id,
             format_amount(price, order.currency))

    product: Product = {
        "name": localized(sku.name, locale, "Game Purchase"),
        "description": localized(sku.description, locale,
                                 "Digital game content"),
        "image_url": sku.image_url,
        "sku_id": sku.id,
        "game_id": game.id,
    }
    base = config.APP_BASE_URL
    success_url = (f"{base}/{locale}/payment/success"
                   f"?session_id={{CHECKOUT_SESSION_ID}}")
    cancel_url = f"{base}/{locale}/games/{game.id}"

    try:
        async with timeit("payment.create_session"):
            session = await adapter.create_session(
                http, order, product, success_url, cancel_url, user.email,
                {"orderId": order.id, "userId": user.id, "skuId": sku.id,
                 "gameId": game.id, "locale": locale},
            )
    except PaymentError:
        await _fail_new_order(db, order)
        log.error("[PAYMENT] session creation failed, order %s failed",
                  order.id)
        raise

    psid = session["payment_session_id"]
    try:
        async with timeit("checkoutsession.save"):
            await store.save(psid, {
                "order_id": order.id,
                "sku_id": sku.id,
                "user_id": user.id,
                "amount": price,
                "currency": order.currency,
                "customer_email": user.email,
                "locale": locale,
                "created_at": now_ts(),
                "game_id": game.id,
            })
    except Exception as exc:
        await _fail_new_order(db, order)
        log.exception("[PAYMENT] could not store session %s, order %s failed",
                      psid, order.id)
        raise PaymentError("Failed to create checkout session") from exc

    async with gated():
        order.checkout_session_id = psid
        await db.commit()

    log.info("[PAYMENT] session %s opened for order %s", psid, order.id)
    return {
        "success": True,
        "message": "Checkout session created successfully",
        "checkout_url": session["redirect_url"],
        "order_id": order.id,
        "session_id": psid,
    }


# ----------------------------
# Webhook
# ----------------------------
async def _find_order(db: AsyncSession, order_id: Optional[str],
                      psid: str) -> Optional[Order]:
    if order_id:
        return await db.get(Order, order_id)
    if psid:
        res = await db.execute(
            select(Order).where(Order.checkout_session_id == psid))
        return res.scalars().first()
    return None


async def _settle(db: AsyncSession, order_id: str, from_statuses,
                  values: Dict[str, Any]) -> bool:
    async with gated():
        res = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status.in_(from_statuses))
            .values(**values)
        )
        await db.commit()
    return res.rowcount > 0


async def _settle_event(db: AsyncSession, store: CheckoutSessionStore,
                        idem: Optional[str], order_id: str, from_statuses,
                        values: Dict[str, Any]) -> bool:
    # a failed settle must leave the event key unrecorded for redelivery
    try:
        return await _settle(db, order_id, from_statuses, values)
    except Exception:
        await db.rollback()
        await store.forget_event(idem)
        raise


async def handle_webhook(
    db: AsyncSession,
    store: CheckoutSessionStore,
    adapter: PaymentAdapter,
    payload: bytes,
    headers: Dict[str, str],
) -> Dict[str, Any]:
    event = adapter.verify_webhook(payload, headers)
    kind = adapter.event_kind(event)
    psid, idem = adapter.event_ids(event)
    log.info("[WEBHOOK] %s (%s) session=%s", event.get("type"), kind or "-",
             psid or "-")

    if not kind:
        return {"received": True, "message": "Event type not supported"}
    if kind == "ignored":
        return {"received": True, "message": "Event acknowledged"}

    reference = adapter.event_reference(event)
    if not reference and not psid:
        log.warning("[WEBHOOK] %s without order reference", event.get("type"))
        return {"received": True, "message": "No order reference"}

    async with timeit("db.get_order"):
        order = await _find_order(db, reference, psid)

    if kind == "succeeded":
        if order is None:
            log.error("[WEBHOOK] no order %s for paid session %s",
                      reference, psid)
            raise WebhookProcessingError("Order not found")
        if order.status == "completed":
            return {"received": True, "idempotent": True,
                    "order_status": order.status}
        amount, currency = adapter.event_amount(event)
        if amount != order.amount or currency != order.currency:
            log.error("[WEBHOOK] amount mismatch on order %s: paid %s %s, "
                      "expected %s %s", order.id, amount, currency,
                      order.amount, order.currency)
            raise WebhookProcessingError("Payment amount mismatch")

        async with timeit("checkoutsession.mark_event"):
            if not await store.mark_event_seen(idem):
                return {"received": True, "idempotent": True}

        ts = now_ts()
        # a late success still wins over an earlier failure
        async with timeit("db.complete_order"):
            done = await _settle_event(
                db, store, idem, order.id, ("pending", "failed"),
                {"status": "completed", "paid_at": ts, "updated_at": ts})
        if psid:
            await store.remove_pending(psid)
        if not done:
            await db.refresh(order)
            return {"received": True, "idempotent": True,
                    "order_status": order.status}
        log.info("[PAYMENT] order %s completed", order.id)
        return {"received": True, "order_status": "completed"}

    # failed | expired | canceled
    if order is None:
        log.warning("[WEBHOOK] no order for %s event on session %s",
                    kind, psid)
        return {"received": True, "message": "Order not found"}

    async with timeit("checkoutsession.mark_event"):
        if not await store.mark_event_seen(idem):
            return {"received": True, "idempotent": True}

    async with timeit("db.fail_order"):
        done = await _settle_event(
            db, store, idem, order.id, ("pending",),
            {"status": "failed", "updated_at": now_ts()})
    if psid:
        await store.remove_pending(psid)
    if not done:
        await db.refresh(order)
        return {"received": True, "order_status": order.status}
    log.info("[PAYMENT] order %s failed (%s)", order.id, kind)
    return {"received": True, "order_status": "failed"}
