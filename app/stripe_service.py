import json

import stripe

from app import config
from app.errors import AuthenticityError, GatewayError
from app.gateway import INTENT_FAILED, INTENT_SUCCEEDED, GatewayEvent, Intent, PaymentGateway
from app.log import get_logger

logger = get_logger(__name__)

EVENT_TYPES = {
    "payment_intent.succeeded": INTENT_SUCCEEDED,
    "payment_intent.payment_failed": INTENT_FAILED,
}


class StripeGateway(PaymentGateway):
    def __init__(self, api_key: str | None = None, tolerance: int | None = None):
        stripe.api_key = api_key or config.stripe_secret_key()
        stripe.max_network_retries = config.stripe_max_network_retries()
        stripe.default_http_client = stripe.RequestsClient(timeout=config.stripe_timeout())
        self.tolerance = tolerance if tolerance is not None else config.webhook_tolerance()

    def create_intent(self, amount, currency, metadata, idempotency_key=None, receipt_email=None):
        params = {
            "amount": amount,
            "currency": currency,
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if receipt_email:
            params["receipt_email"] = receipt_email
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            intent = stripe.PaymentIntent.create(**params)
        except stripe.StripeError as exc:
            logger.error(
                "stripe_create_intent_failed",
                order_id=metadata.get("orderId"),
                error=exc.__class__.__name__,
                http_status=exc.http_status,
                request_id=exc.request_id,
            )
            raise GatewayError("gateway rejected intent creation") from exc
        return Intent(intent_id=intent.id, secret=intent.client_secret, status=intent.status)

    def retrieve_intent(self, intent_id):
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.StripeError as exc:
            logger.warning(
                "stripe_retrieve_intent_failed",
                intent_id=intent_id,
                error=exc.__class__.__name__,
                http_status=exc.http_status,
            )
            raise GatewayError("gateway intent lookup failed") from exc
        return Intent(intent_id=intent.id, secret=intent.client_secret, status=intent.status)

    def verify_and_parse_event(self, raw_payload, signature_header, signing_secret):
        if not signature_header:
            raise AuthenticityError("missing signature header")
        if not signing_secret:
            raise AuthenticityError("webhook signing secret not configured")
        try:
            payload = raw_payload.decode("utf-8") if isinstance(raw_payload, bytes) else raw_payload
            stripe.WebhookSignature.verify_header(payload, signature_header, signing_secret, self.tolerance)
        except UnicodeDecodeError as exc:
            raise AuthenticityError("payload is not valid utf-8") from exc
        except stripe.SignatureVerificationError as exc:
            raise AuthenticityError(exc.user_message or "signature verification failed") from exc

        try:
            data = json.loads(payload)
            obj = data["data"]["object"]
            if not isinstance(obj, dict):
                raise TypeError(type(obj).__name__)
        except (ValueError, KeyError, TypeError) as exc:
            # Signed by the gateway but not an event we can read
            raise AuthenticityError("signed payload is not a gateway event") from exc

        metadata = obj.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        return GatewayEvent(
            event_id=data.get("id"),
            type=EVENT_TYPES.get(data.get("type"), data.get("type") or "unknown"),
            intent_id=obj.get("id"),
            order_id=metadata.get("orderId"),
        )
