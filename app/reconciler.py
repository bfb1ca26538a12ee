"""Webhook reconciler: applies signed gateway events to payment records.

Gateways redeliver events, so every step is safe to repeat. A transition
happens at most once (compare-and-swap on Pending) and only the call that
performed it notifies the customer.
"""

from dataclasses import dataclass

from app import config
from app.errors import AuthenticityError, NotFoundError
from app.gateway import INTENT_FAILED, INTENT_SUCCEEDED, GatewayEvent, PaymentGateway
from app.log import get_logger
from app.models import PaymentRecord, PaymentStatus
from app.notifier import outcome_for
from app.store import TransactionStore

logger = get_logger(__name__)

TRANSITIONS = {
    INTENT_SUCCEEDED: PaymentStatus.PAID,
    INTENT_FAILED: PaymentStatus.FAILED,
}

APPLIED = "applied"
DUPLICATE = "duplicate"
STALE = "stale"
IGNORED = "ignored"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: str
    event_type: str
    order_id: str | None = None
    status: PaymentStatus | None = None


class WebhookReconciler:
    def __init__(self, store: TransactionStore, gateway: PaymentGateway, notifier=None, signing_secret=None):
        self.store = store
        self.gateway = gateway
        self.notifier = notifier
        self.signing_secret = signing_secret

    def handle_event(self, raw_payload: bytes, signature_header: str | None) -> ReconcileResult:
        event = self._verify(raw_payload, signature_header)

        target = TRANSITIONS.get(event.type)
        if target is None:
            logger.info("webhook_event_ignored", event_id=event.event_id, event_type=event.type)
            return ReconcileResult(outcome=IGNORED, event_type=event.type, order_id=event.order_id)

        record = self._correlate(event)

        if record.gateway_intent_id != event.intent_id:
            # Event for an intent this order has since replaced
            log = logger.error if target is PaymentStatus.PAID else logger.info
            log(
                "webhook_event_stale",
                event_id=event.event_id,
                order_id=record.order_id,
                event_intent_id=event.intent_id,
                current_intent_id=record.gateway_intent_id,
            )
            return ReconcileResult(
                outcome=STALE,
                event_type=event.type,
                order_id=record.order_id,
                status=record.payment_status,
            )

        if self.store.transition(record.id, PaymentStatus.PENDING, target):
            record = self.store.get(record.id)
            logger.info(
                "payment_transitioned",
                order_id=record.order_id,
                record_id=record.id,
                status=target.value,
                event_id=event.event_id,
                source="webhook",
            )
            self._notify(record)
            return ReconcileResult(outcome=APPLIED, event_type=event.type, order_id=record.order_id, status=target)

        record = self.store.get(record.id)
        logger.info(
            "webhook_event_duplicate",
            event_id=event.event_id,
            event_type=event.type,
            order_id=record.order_id,
            status=record.status,
        )
        return ReconcileResult(
            outcome=DUPLICATE,
            event_type=event.type,
            order_id=record.order_id,
            status=record.payment_status,
        )

    def _verify(self, raw_payload: bytes, signature_header: str | None) -> GatewayEvent:
        secret = self.signing_secret or config.stripe_webhook_secret()
        try:
            return self.gateway.verify_and_parse_event(raw_payload, signature_header, secret)
        except AuthenticityError as exc:
            logger.warning(
                "webhook_signature_rejected",
                reason=exc.message,
                signature_present=bool(signature_header),
                payload_bytes=len(raw_payload or b""),
            )
            raise

    def _correlate(self, event: GatewayEvent) -> PaymentRecord:
        if not event.order_id:
            logger.warning("webhook_order_missing", event_id=event.event_id, intent_id=event.intent_id)
            raise NotFoundError("event carries no orderId metadata")
        record = self.store.get_active(event.order_id)
        if record is None:
            logger.warning(
                "webhook_order_unknown",
                event_id=event.event_id,
                order_id=event.order_id,
                intent_id=event.intent_id,
            )
            raise NotFoundError(f"no payment for order {event.order_id}")
        return record

    def _notify(self, record: PaymentRecord) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(*outcome_for(record))
        except Exception as exc:
            logger.warning(
                "notification_failed",
                order_id=record.order_id,
                status=record.status,
                error=exc.__class__.__name__,
            )
