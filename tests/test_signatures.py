import json
import time

import pytest

from gamerecharge.errors import WebhookError
from gamerecharge.mockpay import MockPay, mock_event, mock_signature
from gamerecharge.stripepay import StripePay, stripe_signature


def test_mockpay_roundtrip():
    pay = MockPay()
    event = mock_event("succeeded", "mock_1", "order-1", 999, "usd")
    body = json.dumps(event).encode()
    parsed = pay.verify_webhook(body, {"x-mockpay-signature":
                                       mock_signature(body)})
    assert pay.event_kind(parsed) == "succeeded"
    assert pay.event_ids(parsed) == ("mock_1", event["idempotency_key"])
    assert pay.event_reference(parsed) == "order-1"
    assert pay.event_amount(parsed) == (999, "usd")


def test_mockpay_rejects_bad_signature():
    body = json.dumps(mock_event("failed", "mock_1", "o", 1, "usd")).encode()
    with pytest.raises(WebhookError):
        MockPay().verify_webhook(body, {"x-mockpay-signature": "nope"})
    with pytest.raises(WebhookError):
        MockPay().verify_webhook(body, {})


def test_mockpay_unknown_type_is_unsupported():
    assert MockPay().event_kind({"type": "payment.refunded"}) == ""
    assert MockPay().event_kind({"type": "charge.succeeded"}) == ""


def _stripe_event(type_, **obj):
    return {"id": "evt_1", "type": type_, "data": {"object": obj}}


def test_stripe_verify_and_map():
    pay = StripePay(secret_key="sk_test", webhook_secret="whsec")
    event = _stripe_event("checkout.session.completed", id="cs_1",
                          payment_status="paid", client_reference_id="o1",
                          amount_total=999, currency="USD")
    body = json.dumps(event).encode()
    now = int(time.time())
    header = f"t={now},v1={stripe_signature(body, now, 'whsec')}"
    parsed = pay.verify_webhook(body, {"stripe-signature": header})
    assert pay.event_kind(parsed) == "succeeded"
    assert pay.event_ids(parsed) == ("cs_1", "evt_1")
    assert pay.event_reference(parsed) == "o1"
    assert pay.event_amount(parsed) == (999, "usd")


def test_stripe_rejects_stale_or_forged():
    pay = StripePay(secret_key="sk_test", webhook_secret="whsec")
    body = b"{}"
    old = int(time.time()) - 3600
    with pytest.raises(WebhookError):
        pay.verify_webhook(body, {
            "stripe-signature":
                f"t={old},v1={stripe_signature(body, old, 'whsec')}"})
    now = int(time.time())
    with pytest.raises(WebhookError):
        pay.verify_webhook(body, {
            "stripe-signature":
                f"t={now},v1={stripe_signature(body, now, 'other')}"})
    with pytest.raises(WebhookError):
        pay.verify_webhook(body, {})


def test_stripe_unpaid_completion_is_ignored():
    pay = StripePay(secret_key="sk", webhook_secret="wh")
    event = _stripe_event("checkout.session.completed", id="cs_1",
                          payment_status="unpaid")
    assert pay.event_kind(event) == "ignored"
    assert pay.event_kind(_stripe_event("payment_intent.payment_failed",
                                        id="pi_1")) == "failed"
    assert pay.event_ids(_stripe_event("payment_intent.payment_failed",
                                       id="pi_1")) == ("", "evt_1")
    assert pay.configured()
    assert not StripePay(secret_key="", webhook_secret="").configured()
