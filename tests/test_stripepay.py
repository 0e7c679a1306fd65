import asyncio
from urllib.parse import parse_qs

import httpx
import pytest

from gamerecharge.errors import PaymentError
from gamerecharge.model.db import Order
from gamerecharge.stripepay import StripePay

PRODUCT = {
    "name": "100 Gems",
    "description": "Gems for Star Quest",
    "image_url": "https://cdn.example.com/gems.png",
    "sku_id": "sku-1",
    "game_id": "game-1",
}


def _order():
    return Order(id="order-1", user_id="user-1", sku_id="sku-1",
                 merchant_id="m-1", amount=999, currency="usd",
                 status="pending")


def _create(handler, secret_key="sk_test"):
    pay = StripePay(secret_key=secret_key, webhook_secret="whsec",
                    api_base="https://stripe.test")

    async def run():
        async with httpx.AsyncClient(
                transport=httpx.MockTransport(handler)) as http:
            return await pay.create_session(
                http, _order(), PRODUCT,
                "https://shop.test/en/payment/success"
                "?session_id={CHECKOUT_SESSION_ID}",
                "https://shop.test/en/games/game-1",
                "buyer@example.com", {"orderId": "order-1", "locale": "en"})

    return asyncio.run(run())


def test_create_session_posts_checkout_form():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["form"] = {k: v[0] for k, v in
                        parse_qs(request.content.decode()).items()}
        return httpx.Response(200, json={
            "id": "cs_test_1", "url": "https://checkout.stripe.test/cs_1"})

    result = _create(handler)
    assert result == {"payment_session_id": "cs_test_1",
                      "redirect_url": "https://checkout.stripe.test/cs_1"}

    assert seen["url"] == "https://stripe.test/v1/checkout/sessions"
    assert seen["headers"]["authorization"] == "Bearer sk_test"
    assert seen["headers"]["idempotency-key"] == "checkout-order-1"
    form = seen["form"]
    assert form["mode"] == "payment"
    assert form["client_reference_id"] == "order-1"
    assert form["customer_email"] == "buyer@example.com"
    assert form["line_items[0][price_data][currency]"] == "usd"
    assert form["line_items[0][price_data][unit_amount]"] == "999"
    assert form["line_items[0][quantity]"] == "1"
    assert form["line_items[0][price_data][product_data][name]"] == "100 Gems"
    assert (form["line_items[0][price_data][product_data][images][0]"]
            == PRODUCT["image_url"])
    assert form["metadata[orderId]"] == "order-1"
    assert form["success_url"].endswith("{CHECKOUT_SESSION_ID}")


def test_create_session_rejected_by_stripe():
    def handler(request):
        return httpx.Response(400, json={
            "error": {"message": "Invalid currency"}})

    with pytest.raises(PaymentError) as err:
        _create(handler)
    assert err.value.code == "PAY_001"


def test_create_session_without_url():
    def handler(request):
        return httpx.Response(200, json={"id": "cs_test_2"})

    with pytest.raises(PaymentError) as err:
        _create(handler)
    assert "no URL returned" in err.value.message


def test_create_session_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PaymentError) as err:
        _create(handler)
    assert "unavailable" in err.value.message


def test_create_session_needs_secret_key(monkeypatch):
    monkeypatch.setattr("gamerecharge.config.STRIPE_SECRET_KEY", "")

    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(PaymentError) as err:
        _create(handler, secret_key=None)
    assert "not configured" in err.value.message
