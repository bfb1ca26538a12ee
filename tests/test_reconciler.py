import json
import time

import pytest
from structlog.testing import capture_logs

from app.errors import AuthenticityError, NotFoundError, StoreError
from app.models import PaymentStatus
from app.orchestrator import PaymentOrchestrator, StartPaymentRequest
from app.reconciler import APPLIED, DUPLICATE, IGNORED, STALE, WebhookReconciler
from conftest import make_event, sign


@pytest.fixture
def reconciler(store, gateway, notifier):
    return WebhookReconciler(store, gateway, notifier)


@pytest.fixture
def pending(store, gateway):
    """Start a payment for order A3 and return its active record."""

    def start(order_id="A3"):
        PaymentOrchestrator(store, gateway).start_payment(
            StartPaymentRequest(
                order_id=order_id,
                amount=2500,
                currency="usd",
                email="customer@example.com",
                phone="+15551234567",
            )
        )
        return store.get_active(order_id)

    return start


def test_succeeded_event_marks_paid_and_notifies_once(reconciler, pending, signed_event, notifier, store):
    record = pending()
    body, header = signed_event("payment_intent.succeeded", record.gateway_intent_id, "A3")

    first = reconciler.handle_event(body.encode(), header)
    second = reconciler.handle_event(body.encode(), header)

    assert first.outcome == APPLIED
    assert first.status is PaymentStatus.PAID
    assert second.outcome == DUPLICATE
    assert store.get_active("A3").status == "Paid"
    assert len(notifier.sent) == 1
    contact, outcome = notifier.sent[0]
    assert contact.email == "customer@example.com"
    assert outcome.order_id == "A3"
    assert outcome.status is PaymentStatus.PAID


def test_failed_event_marks_failed(reconciler, pending, signed_event, notifier, store):
    record = pending()
    body, header = signed_event("payment_intent.payment_failed", record.gateway_intent_id, "A3")

    result = reconciler.handle_event(body.encode(), header)

    assert result.outcome == APPLIED
    assert store.get_active("A3").status == "Failed"
    assert notifier.sent[0][1].status is PaymentStatus.FAILED


def test_terminal_record_ignores_opposite_event(reconciler, pending, signed_event, notifier, store):
    record = pending()
    paid_body, paid_header = signed_event("payment_intent.succeeded", record.gateway_intent_id, "A3")
    reconciler.handle_event(paid_body.encode(), paid_header)

    failed_body, failed_header = signed_event(
        "payment_intent.payment_failed", record.gateway_intent_id, "A3", event_id="evt_test_2"
    )
    result = reconciler.handle_event(failed_body.encode(), failed_header)

    assert result.outcome == DUPLICATE
    assert store.get_active("A3").status == "Paid"
    assert len(notifier.sent) == 1


def test_unhandled_event_type_is_acknowledged(reconciler, pending, signed_event, notifier, store):
    record = pending()
    body, header = signed_event("payment_intent.created", record.gateway_intent_id, "A3")

    result = reconciler.handle_event(body.encode(), header)

    assert result.outcome == IGNORED
    assert store.get_active("A3").status == "Pending"
    assert notifier.sent == []


def test_event_without_order_metadata_is_not_found(reconciler, pending, signed_event, store):
    record = pending()
    body, header = signed_event("payment_intent.succeeded", record.gateway_intent_id)

    with pytest.raises(NotFoundError):
        reconciler.handle_event(body.encode(), header)

    assert store.get_active("A3").status == "Pending"


def test_event_for_unknown_order_is_not_found(reconciler, signed_event):
    body, header = signed_event("payment_intent.succeeded", "pi_elsewhere", "OTHER-ENV-1")

    with pytest.raises(NotFoundError):
        reconciler.handle_event(body.encode(), header)


def test_event_for_superseded_intent_is_stale(reconciler, pending, signed_event, store):
    first = pending()
    store.transition(first.id, PaymentStatus.PENDING, PaymentStatus.FAILED)
    retry = pending()
    assert retry.gateway_intent_id != first.gateway_intent_id

    body, header = signed_event("payment_intent.payment_failed", first.gateway_intent_id, "A3")
    result = reconciler.handle_event(body.encode(), header)

    assert result.outcome == STALE
    assert store.get_active("A3").status == "Pending"


def test_notifier_failure_does_not_undo_transition(reconciler, pending, signed_event, notifier, store):
    notifier.fail = True
    record = pending()
    body, header = signed_event("payment_intent.succeeded", record.gateway_intent_id, "A3")

    with capture_logs() as logs:
        result = reconciler.handle_event(body.encode(), header)

    assert result.outcome == APPLIED
    assert store.get_active("A3").status == "Paid"
    assert any(entry["event"] == "notification_failed" for entry in logs)


def test_store_error_propagates_for_redelivery(reconciler, pending, signed_event, store, mocker):
    record = pending()
    body, header = signed_event("payment_intent.succeeded", record.gateway_intent_id, "A3")
    mocker.patch.object(store, "transition", side_effect=StoreError("store transition failed"))

    with pytest.raises(StoreError):
        reconciler.handle_event(body.encode(), header)

    mocker.stopall()
    assert reconciler.handle_event(body.encode(), header).outcome == APPLIED


def test_missing_signature_is_rejected(reconciler, pending, store):
    record = pending()
    body = json.dumps(make_event("payment_intent.succeeded", record.gateway_intent_id, "A3"))

    with capture_logs() as logs, pytest.raises(AuthenticityError):
        reconciler.handle_event(body.encode(), None)

    assert store.get_active("A3").status == "Pending"
    assert any(entry["event"] == "webhook_signature_rejected" for entry in logs)


@pytest.mark.parametrize(
    "header",
    [
        "garbage",
        "t=notanumber,v1=abc",
        "t=1700000000",
        "v1=deadbeef",
    ],
)
def test_malformed_signature_is_rejected(reconciler, pending, store, header):
    record = pending()
    body = json.dumps(make_event("payment_intent.succeeded", record.gateway_intent_id, "A3"))

    with pytest.raises(AuthenticityError):
        reconciler.handle_event(body.encode(), header)

    assert store.get_active("A3").status == "Pending"


def test_wrong_secret_is_rejected(reconciler, pending, signed_event, store):
    record = pending()
    body, header = signed_event("payment_intent.succeeded", record.gateway_intent_id, "A3", secret="whsec_other")

    with pytest.raises(AuthenticityError):
        reconciler.handle_event(body.encode(), header)

    assert store.get_active("A3").status == "Pending"


def test_tampered_payload_is_rejected(reconciler, pending, signed_event, store, notifier):
    record = pending()
    body, header = signed_event("payment_intent.payment_failed", record.gateway_intent_id, "A3")
    tampered = body.replace("payment_intent.payment_failed", "payment_intent.succeeded")

    with pytest.raises(AuthenticityError):
        reconciler.handle_event(tampered.encode(), header)

    assert store.get_active("A3").status == "Pending"
    assert notifier.sent == []


def test_expired_timestamp_is_rejected(reconciler, pending, store):
    record = pending()
    body = json.dumps(make_event("payment_intent.succeeded", record.gateway_intent_id, "A3"))
    header = sign(body, timestamp=int(time.time()) - 3600)

    with pytest.raises(AuthenticityError):
        reconciler.handle_event(body.encode(), header)

    assert store.get_active("A3").status == "Pending"


def test_signed_non_event_payload_is_rejected(reconciler):
    body = json.dumps({"hello": "world"})

    with pytest.raises(AuthenticityError):
        reconciler.handle_event(body.encode(), sign(body))
