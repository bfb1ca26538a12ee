"""Customer notifications for payment outcomes.

Delivery is best effort: every channel failure is logged and swallowed so
a payment's state transition never depends on an email or SMS going out.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from app import config
from app.log import get_logger
from app.models import PaymentRecord, PaymentStatus

logger = get_logger(__name__)

RESEND_URL = "https://api.resend.com/emails"
TWILIO_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


@dataclass(frozen=True)
class Contact:
    email: str | None
    phone: str | None


@dataclass(frozen=True)
class PaymentOutcome:
    order_id: str
    status: PaymentStatus
    amount: int
    currency: str

    @property
    def display_amount(self) -> str:
        return f"{self.amount / 100:.2f} {self.currency.upper()}"


def outcome_for(record: PaymentRecord) -> tuple[Contact, PaymentOutcome]:
    return (
        Contact(email=record.email, phone=record.phone),
        PaymentOutcome(
            order_id=record.order_id,
            status=record.payment_status,
            amount=record.amount,
            currency=record.currency,
        ),
    )


def compose_sms(outcome: PaymentOutcome) -> str:
    if outcome.status is PaymentStatus.PAID:
        return f"Your payment for Order {outcome.order_id} was successful!"
    return f"Your payment for Order {outcome.order_id} failed. Please try again."


def compose_email(outcome: PaymentOutcome) -> tuple[str, str, str]:
    """Return (subject, html, text) for the outcome."""
    if outcome.status is PaymentStatus.PAID:
        subject = "Payment Confirmation for Your Order"
        text = (
            f"We received your payment of {outcome.display_amount} for order {outcome.order_id}. "
            "Thank you!"
        )
    else:
        subject = "Payment Failure for Your Order"
        text = (
            f"Your payment of {outcome.display_amount} for order {outcome.order_id} failed. "
            "No charge was made; please try again."
        )
    html = f"<h1>{subject}</h1><p>{text}</p>"
    return subject, html, text


class EmailChannel(ABC):
    @abstractmethod
    def send(self, to: str, subject: str, html: str, text: str) -> None:
        ...


class SmsChannel(ABC):
    @abstractmethod
    def send(self, to: str, body: str) -> None:
        ...


class ResendEmailChannel(EmailChannel):
    def __init__(self, api_key: str, sender: str, timeout: float):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def send(self, to, subject, html, text):
        response = httpx.post(
            RESEND_URL,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={"from": self.sender, "to": [to], "subject": subject, "html": html, "text": text},
            timeout=self.timeout,
        )
        response.raise_for_status()
        logger.info("email_sent", message_id=response.json().get("id"))


class TwilioSmsChannel(SmsChannel):
    def __init__(self, account_sid: str, auth_token: str, from_number: str, timeout: float):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout

    def send(self, to, body):
        response = httpx.post(
            TWILIO_URL.format(sid=self.account_sid),
            auth=(self.account_sid, self.auth_token),
            data={"From": self.from_number, "To": to, "Body": body},
            timeout=self.timeout,
        )
        response.raise_for_status()
        logger.info("sms_sent", message_sid=response.json().get("sid"))


class Notifier:
    """Dispatches outcome messages to every configured channel."""

    def __init__(self, email: EmailChannel | None = None, sms: SmsChannel | None = None):
        self.email = email
        self.sms = sms

    def notify(self, contact: Contact, outcome: PaymentOutcome) -> None:
        if self.sms and contact.phone:
            try:
                self.sms.send(contact.phone, compose_sms(outcome))
            except Exception as exc:
                self._failed("sms", outcome, exc)
        if self.email and contact.email:
            try:
                subject, html, text = compose_email(outcome)
                self.email.send(contact.email, subject, html, text)
            except Exception as exc:
                self._failed("email", outcome, exc)

    def _failed(self, channel: str, outcome: PaymentOutcome, exc: Exception) -> None:
        logger.warning(
            "notification_failed",
            channel=channel,
            order_id=outcome.order_id,
            status=outcome.status.value,
            error=exc.__class__.__name__,
            detail=str(exc),
        )


class DeferredNotifier:
    """Queues notifications on a FastAPI BackgroundTasks so they run after the response."""

    def __init__(self, notifier: Notifier, background_tasks):
        self.notifier = notifier
        self.background_tasks = background_tasks

    def notify(self, contact: Contact, outcome: PaymentOutcome) -> None:
        self.background_tasks.add_task(self.notifier.notify, contact, outcome)


def build_notifier() -> Notifier:
    timeout = config.notify_timeout()
    email = None
    if config.resend_api_key():
        email = ResendEmailChannel(config.resend_api_key(), config.email_from(), timeout)
    sms = None
    if config.twilio_account_sid() and config.twilio_auth_token() and config.twilio_phone_number():
        sms = TwilioSmsChannel(
            config.twilio_account_sid(),
            config.twilio_auth_token(),
            config.twilio_phone_number(),
            timeout,
        )
    if email is None and sms is None:
        logger.warning("notifier_unconfigured")
    return Notifier(email=email, sms=sms)
