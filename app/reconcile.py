"""Settle payments left Pending past STALE_PENDING_SECONDS against the gateway.

Meant for a scheduler (cron, k8s CronJob): ``python -m app.reconcile`` or the
``reconcile-payments`` script.
"""

from app.database import SessionLocal
from app.log import configure_logging
from app.notifier import build_notifier
from app.orchestrator import PaymentOrchestrator
from app.store import TransactionStore
from app.stripe_service import StripeGateway


def main() -> int:
    configure_logging()
    db = SessionLocal()
    try:
        orchestrator = PaymentOrchestrator(TransactionStore(db), StripeGateway(), build_notifier())
        orchestrator.reconcile_stale()
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
