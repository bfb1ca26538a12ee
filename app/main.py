import uuid

import structlog
from fastapi import Depends, FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError

from app.database import Base, engine
from app.dependencies import get_reconciler
from app.errors import PaymentServiceError, payment_error_handler, request_validation_handler
from app.log import configure_logging, get_logger
from app.reconciler import WebhookReconciler
from app.routes import router

configure_logging()
logger = get_logger(__name__)

app = FastAPI(title="Order Payment Service")

app.add_exception_handler(PaymentServiceError, payment_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None),
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    payload = await request.body()
    result = await run_in_threadpool(reconciler.handle_event, payload, stripe_signature)
    logger.info("webhook_processed", outcome=result.outcome, event_type=result.event_type, order_id=result.order_id)
    return {"received": True}
