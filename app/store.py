"""Transaction store: the authoritative copy of every payment record.

All writes are guarded: inserts rely on the unique constraints on
``active_order_id`` and ``gateway_intent_id``, status changes are
compare-and-swap updates on the current status. No read-modify-write
without a guard.
"""

from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import ConflictError, StoreError
from app.log import get_logger
from app.models import PaymentRecord, PaymentStatus, utcnow

logger = get_logger(__name__)


class TransactionStore:
    def __init__(self, db: Session):
        self.db = db

    def get_active(self, order_id: str) -> PaymentRecord | None:
        """Current (non-superseded) record for an order."""
        try:
            return (
                self.db.query(PaymentRecord)
                .filter(PaymentRecord.active_order_id == order_id)
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as exc:
            self._fail("get_active", exc, order_id=order_id)

    def get_by_intent(self, intent_id: str) -> PaymentRecord | None:
        try:
            return (
                self.db.query(PaymentRecord)
                .filter(PaymentRecord.gateway_intent_id == intent_id)
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as exc:
            self._fail("get_by_intent", exc, intent_id=intent_id)

    def insert(self, record: PaymentRecord) -> PaymentRecord:
        """Persist a new record. Raises ConflictError if either uniqueness constraint fires."""
        record.active_order_id = record.order_id
        try:
            self.db.add(record)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.info(
                "payment_insert_conflict",
                order_id=record.order_id,
                intent_id=record.gateway_intent_id,
                error=exc.orig.__class__.__name__,
            )
            raise ConflictError(f"payment for order {record.order_id} already exists") from exc
        except SQLAlchemyError as exc:
            self._fail("insert", exc, order_id=record.order_id)
        self.db.refresh(record)
        return record

    def transition(self, record_id: str, from_status: PaymentStatus, to_status: PaymentStatus) -> bool:
        """Move a record from one status to another.

        Returns True only when this call performed the change. Terminal
        records never move.
        """
        if from_status.is_terminal:
            return False
        try:
            changed = (
                self.db.query(PaymentRecord)
                .filter(PaymentRecord.id == record_id, PaymentRecord.status == from_status.value)
                .update({"status": to_status.value, "updated_at": utcnow()}, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self._fail("transition", exc, record_id=record_id)
        return changed == 1

    def supersede(self, record: PaymentRecord) -> bool:
        """Release the order id held by a Failed record so a retry can claim it."""
        try:
            changed = (
                self.db.query(PaymentRecord)
                .filter(
                    PaymentRecord.id == record.id,
                    PaymentRecord.status == PaymentStatus.FAILED.value,
                    PaymentRecord.active_order_id.isnot(None),
                )
                .update({"active_order_id": None, "updated_at": utcnow()}, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self._fail("supersede", exc, record_id=record.id)
        return changed == 1

    def get(self, record_id: str) -> PaymentRecord | None:
        try:
            return self.db.get(PaymentRecord, record_id, populate_existing=True)
        except SQLAlchemyError as exc:
            self._fail("get", exc, record_id=record_id)

    def latest_attempt(self, order_id: str) -> int:
        """Highest attempt number recorded for an order, superseded rows included; 0 if none."""
        try:
            latest = (
                self.db.query(func.max(PaymentRecord.attempt))
                .filter(PaymentRecord.order_id == order_id)
                .scalar()
            )
        except SQLAlchemyError as exc:
            self._fail("latest_attempt", exc, order_id=order_id)
        return latest or 0

    def list_stale_pending(self, older_than: datetime) -> list[PaymentRecord]:
        try:
            return (
                self.db.query(PaymentRecord)
                .filter(
                    PaymentRecord.status == PaymentStatus.PENDING.value,
                    PaymentRecord.active_order_id.isnot(None),
                    PaymentRecord.updated_at < older_than,
                )
                .order_by(PaymentRecord.updated_at)
                .all()
            )
        except SQLAlchemyError as exc:
            self._fail("list_stale_pending", exc)

    def _fail(self, operation: str, exc: SQLAlchemyError, **context):
        self.db.rollback()
        # str(exc) would carry bound parameters, including secrets
        logger.error(
            "store_operation_failed",
            operation=operation,
            error=exc.__class__.__name__,
            detail=str(getattr(exc, "orig", None) or ""),
            **context,
        )
        raise StoreError(f"store {operation} failed") from exc
