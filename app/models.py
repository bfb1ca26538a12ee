import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from app.database import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


def utcnow() -> datetime:
    # Stored naive, always UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_record_id() -> str:
    return uuid.uuid4().hex


class PaymentRecord(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("status IN ('Pending', 'Paid', 'Failed')", name="ck_payments_status"),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )

    id = Column(String(32), primary_key=True, default=new_record_id)
    order_id = Column(String, nullable=False, index=True)
    active_order_id = Column(String, unique=True, nullable=True)  # NULL once superseded
    attempt = Column(Integer, nullable=False, default=1)
    user_id = Column(String)
    amount = Column(Integer, nullable=False)                     # smallest currency unit
    currency = Column(String(3), nullable=False)
    status = Column(String(16), nullable=False, default=PaymentStatus.PENDING.value)
    gateway_intent_id = Column(String, unique=True, nullable=False)
    gateway_secret = Column(String, nullable=False)
    email = Column(String)
    phone = Column(String)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def superseded(self) -> bool:
        return self.active_order_id is None

    def __repr__(self) -> str:
        # never includes gateway_secret
        return (
            f"<PaymentRecord id={self.id} order_id={self.order_id} attempt={self.attempt} "
            f"status={self.status} intent={self.gateway_intent_id}>"
        )
