"""Payment gateway port.

The orchestrator and reconciler only talk to this interface, so the Stripe
adapter can be swapped for a fake in tests without touching either.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

INTENT_SUCCEEDED = "intent_succeeded"
INTENT_FAILED = "intent_failed"


@dataclass(frozen=True)
class Intent:
    """A gateway-side payment intent."""

    intent_id: str
    secret: str = field(repr=False)
    status: str


@dataclass(frozen=True)
class GatewayEvent:
    """A verified webhook event, normalized to the service's event types."""

    event_id: str | None
    type: str
    intent_id: str | None
    order_id: str | None


class PaymentGateway(ABC):
    @abstractmethod
    def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
        receipt_email: str | None = None,
    ) -> Intent:
        """Create a payment intent. Raises GatewayError."""
        ...

    @abstractmethod
    def retrieve_intent(self, intent_id: str) -> Intent:
        """Fetch the current gateway view of an intent. Raises GatewayError."""
        ...

    @abstractmethod
    def verify_and_parse_event(
        self,
        raw_payload: bytes,
        signature_header: str | None,
        signing_secret: str | None,
    ) -> GatewayEvent:
        """Authenticate a webhook delivery and parse it. Raises AuthenticityError."""
        ...
