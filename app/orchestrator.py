"""Payment orchestrator: starts payments without ever double-charging an order.

Duplicate submissions are resolved by the store's unique constraint on the
active order id, not by an in-process lock.
"""

from dataclasses import dataclass, field
from datetime import timedelta

from app import config
from app.errors import ConflictError, GatewayError, NotFoundError, StoreError, ValidationError
from app.gateway import PaymentGateway
from app.log import get_logger
from app.models import PaymentRecord, PaymentStatus, utcnow
from app.notifier import outcome_for
from app.store import TransactionStore

logger = get_logger(__name__)

# Gateway statuses that settle a pending record
SETTLED_STATUSES = {
    "succeeded": PaymentStatus.PAID,
    "canceled": PaymentStatus.FAILED,
}


@dataclass(frozen=True)
class StartPaymentRequest:
    order_id: str
    amount: int
    currency: str
    user_id: str | None = None
    email: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class StartPaymentResult:
    payment_record_id: str
    status: PaymentStatus
    already_paid: bool
    gateway_secret: str | None = field(default=None, repr=False)


def idempotency_key(order_id: str, attempt: int) -> str:
    return f"payment-{order_id}-{attempt}"


class PaymentOrchestrator:
    def __init__(self, store: TransactionStore, gateway: PaymentGateway, notifier=None):
        self.store = store
        self.gateway = gateway
        self.notifier = notifier

    def start_payment(self, request: StartPaymentRequest) -> StartPaymentResult:
        request = self.validate(request)

        existing = self.store.get_active(request.order_id)
        if existing is not None and existing.payment_status is not PaymentStatus.FAILED:
            return self._from_existing(existing, request)

        # Counts superseded rows, so each attempt gets its own idempotency key
        attempt = self.store.latest_attempt(request.order_id) + 1
        if existing is not None:
            # Failed attempts are retry-eligible: free the order id, then start fresh
            if self.store.supersede(existing):
                logger.info(
                    "payment_superseded",
                    order_id=existing.order_id,
                    record_id=existing.id,
                    attempt=existing.attempt,
                )

        intent = self.gateway.create_intent(
            amount=request.amount,
            currency=request.currency,
            metadata={"orderId": request.order_id, "userId": request.user_id or ""},
            idempotency_key=idempotency_key(request.order_id, attempt),
            receipt_email=request.email,
        )
        logger.info(
            "payment_intent_created",
            order_id=request.order_id,
            intent_id=intent.intent_id,
            attempt=attempt,
            amount=request.amount,
            currency=request.currency,
        )

        record = PaymentRecord(
            order_id=request.order_id,
            attempt=attempt,
            user_id=request.user_id,
            amount=request.amount,
            currency=request.currency,
            status=PaymentStatus.PENDING.value,
            gateway_intent_id=intent.intent_id,
            gateway_secret=intent.secret,
            email=request.email,
            phone=request.phone,
        )
        try:
            record = self.store.insert(record)
        except ConflictError:
            return self._after_conflict(request, intent.intent_id)
        except StoreError:
            logger.error(
                "orphaned_gateway_intent",
                order_id=request.order_id,
                intent_id=intent.intent_id,
                attempt=attempt,
                reason="store write failed after intent creation",
            )
            raise

        return StartPaymentResult(
            payment_record_id=record.id,
            status=PaymentStatus.PENDING,
            already_paid=False,
            gateway_secret=record.gateway_secret,
        )

    def validate(self, request: StartPaymentRequest) -> StartPaymentRequest:
        order_id = request.order_id.strip() if isinstance(request.order_id, str) else ""
        if not order_id:
            raise ValidationError("orderId is required")
        if isinstance(request.amount, bool) or not isinstance(request.amount, int) or request.amount <= 0:
            raise ValidationError("amount must be a positive integer in the smallest currency unit")
        currency = request.currency.lower() if isinstance(request.currency, str) else ""
        if currency not in config.supported_currencies():
            raise ValidationError(f"unsupported currency {request.currency!r}")
        return StartPaymentRequest(
            order_id=order_id,
            amount=request.amount,
            currency=currency,
            user_id=request.user_id,
            email=request.email,
            phone=request.phone,
        )

    def _from_existing(self, record: PaymentRecord, request: StartPaymentRequest) -> StartPaymentResult:
        if record.payment_status is PaymentStatus.PAID:
            logger.info("payment_already_paid", order_id=record.order_id, record_id=record.id)
            return StartPaymentResult(
                payment_record_id=record.id,
                status=PaymentStatus.PAID,
                already_paid=True,
            )

        if record.amount != request.amount or record.currency != request.currency:
            logger.warning(
                "payment_terms_mismatch",
                order_id=record.order_id,
                record_id=record.id,
                stored_amount=record.amount,
                requested_amount=request.amount,
                stored_currency=record.currency,
                requested_currency=request.currency,
            )
            raise ValidationError("amount and currency cannot change for a pending payment")

        logger.info(
            "payment_intent_reused",
            order_id=record.order_id,
            record_id=record.id,
            intent_id=record.gateway_intent_id,
        )
        return StartPaymentResult(
            payment_record_id=record.id,
            status=PaymentStatus.PENDING,
            already_paid=False,
            gateway_secret=record.gateway_secret,
        )

    def _after_conflict(self, request: StartPaymentRequest, intent_id: str) -> StartPaymentResult:
        winner = self.store.get_active(request.order_id)
        if winner is None or winner.gateway_intent_id != intent_id:
            # Idempotency keys usually collapse racers onto one intent; when they
            # don't, the losing intent is left unreferenced at the gateway
            logger.warning(
                "orphaned_gateway_intent",
                order_id=request.order_id,
                intent_id=intent_id,
                reason="lost concurrent insert",
            )
        if winner is None:
            recorded = self.store.get_by_intent(intent_id)
            if recorded is not None:
                logger.error(
                    "gateway_intent_already_recorded",
                    order_id=request.order_id,
                    intent_id=intent_id,
                    record_id=recorded.id,
                    attempt=recorded.attempt,
                )
            raise StoreError(f"conflict on order {request.order_id} but no active record")
        if winner.payment_status is PaymentStatus.FAILED:
            # The racer already failed; the client retries into a fresh attempt
            raise GatewayError(f"concurrent attempt for order {request.order_id} failed")
        return self._from_existing(winner, request)

    def get_payment(self, order_id: str) -> PaymentRecord:
        record = self.store.get_active(order_id)
        if record is None:
            raise NotFoundError(f"no payment for order {order_id}")
        cutoff = utcnow() - timedelta(seconds=config.stale_pending_seconds())
        if record.payment_status is PaymentStatus.PENDING and record.updated_at < cutoff:
            record = self.confirm_with_gateway(record)
        return record

    def confirm_with_gateway(self, record: PaymentRecord) -> PaymentRecord:
        """Settle a pending record from the gateway's own view of its intent."""
        try:
            intent = self.gateway.retrieve_intent(record.gateway_intent_id)
        except GatewayError:
            logger.warning("payment_confirm_skipped", order_id=record.order_id, record_id=record.id)
            return record

        target = SETTLED_STATUSES.get(intent.status)
        if target is None:
            return record
        if self.store.transition(record.id, PaymentStatus.PENDING, target):
            logger.info(
                "payment_transitioned",
                order_id=record.order_id,
                record_id=record.id,
                status=target.value,
                source="gateway_confirmation",
            )
            record = self.store.get(record.id)
            self._notify(record)
        else:
            record = self.store.get(record.id)
        return record

    def reconcile_stale(self) -> dict:
        cutoff = utcnow() - timedelta(seconds=config.stale_pending_seconds())
        results = {"checked": 0, "paid": 0, "failed": 0}
        for record in self.store.list_stale_pending(cutoff):
            results["checked"] += 1
            settled = self.confirm_with_gateway(record)
            if settled.payment_status is PaymentStatus.PAID:
                results["paid"] += 1
            elif settled.payment_status is PaymentStatus.FAILED:
                results["failed"] += 1
        logger.info("stale_payments_reconciled", **results)
        return results

    def _notify(self, record: PaymentRecord) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(*outcome_for(record))
        except Exception as exc:
            logger.warning("notification_failed", order_id=record.order_id, error=exc.__class__.__name__)
