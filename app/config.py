import os
from pathlib import Path
from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


def _int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set. Check your .env file.")
    return url


def db_connect_timeout() -> int:
    return _int("DB_CONNECT_TIMEOUT_SECONDS", 5)


def stripe_secret_key() -> str | None:
    return os.getenv("STRIPE_SECRET_KEY")


def stripe_webhook_secret() -> str | None:
    return os.getenv("STRIPE_WEBHOOK_SECRET")


def stripe_timeout() -> float:
    return _float("STRIPE_TIMEOUT_SECONDS", 10)


def stripe_max_network_retries() -> int:
    return _int("STRIPE_MAX_NETWORK_RETRIES", 2)


def webhook_tolerance() -> int:
    return _int("WEBHOOK_TOLERANCE_SECONDS", 300)


def supported_currencies() -> frozenset[str]:
    raw = os.getenv("SUPPORTED_CURRENCIES", "usd,eur,gbp")
    return frozenset(c.strip().lower() for c in raw.split(",") if c.strip())


def default_currency() -> str:
    return os.getenv("DEFAULT_CURRENCY", "usd").lower()


def start_payment_timeout() -> float:
    return _float("START_PAYMENT_TIMEOUT_SECONDS", 15)


def stale_pending_seconds() -> int:
    return _int("STALE_PENDING_SECONDS", 900)


def jwt_secret() -> str | None:
    return os.getenv("JWT_SECRET")


def resend_api_key() -> str | None:
    return os.getenv("RESEND_API_KEY")


def email_from() -> str:
    return os.getenv("EMAIL_FROM", "Payments <onboarding@resend.dev>")


def twilio_account_sid() -> str | None:
    return os.getenv("TWILIO_ACCOUNT_SID")


def twilio_auth_token() -> str | None:
    return os.getenv("TWILIO_AUTH_TOKEN")


def twilio_phone_number() -> str | None:
    return os.getenv("TWILIO_PHONE_NUMBER")


def notify_timeout() -> float:
    return _float("NOTIFY_TIMEOUT_SECONDS", 5)


def log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def log_format() -> str:
    return os.getenv("LOG_FORMAT", "json").lower()
