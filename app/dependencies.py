from functools import lru_cache

from fastapi import BackgroundTasks, Depends
from sqlalchemy.orm import Session

from app.database import SessionLocal, get_db
from app.gateway import PaymentGateway
from app.notifier import DeferredNotifier, Notifier, build_notifier
from app.orchestrator import PaymentOrchestrator
from app.reconciler import WebhookReconciler
from app.store import TransactionStore
from app.stripe_service import StripeGateway


@lru_cache
def get_gateway() -> PaymentGateway:
    return StripeGateway()


@lru_cache
def get_notifier() -> Notifier:
    return build_notifier()


def get_session_factory():
    return SessionLocal


def get_store(db: Session = Depends(get_db)) -> TransactionStore:
    return TransactionStore(db)


def get_orchestrator(
    background_tasks: BackgroundTasks,
    store: TransactionStore = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> PaymentOrchestrator:
    return PaymentOrchestrator(store, gateway, DeferredNotifier(notifier, background_tasks))


def get_reconciler(
    background_tasks: BackgroundTasks,
    store: TransactionStore = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> WebhookReconciler:
    return WebhookReconciler(store, gateway, DeferredNotifier(notifier, background_tasks))
