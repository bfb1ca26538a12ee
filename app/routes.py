import asyncio
import contextvars

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, StrictInt

from app import config
from app.auth import verify_token
from app.dependencies import get_gateway, get_orchestrator, get_session_factory
from app.errors import GatewayError
from app.log import get_logger
from app.orchestrator import PaymentOrchestrator, StartPaymentRequest
from app.store import TransactionStore

logger = get_logger(__name__)

router = APIRouter()


class PaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId")
    user_id: str | None = Field(default=None, alias="userId")
    amount: StrictInt
    currency: str | None = None
    email: str | None = None
    phone: str | None = None


@router.post("/payments")
async def start_payment_api(
    request: PaymentRequest,
    claims: dict = Depends(verify_token),
    session_factory=Depends(get_session_factory),
    gateway=Depends(get_gateway),
):
    start = StartPaymentRequest(
        order_id=request.order_id,
        amount=request.amount,
        currency=request.currency or config.default_currency(),
        user_id=request.user_id or claims.get("sub"),
        email=request.email,
        phone=request.phone,
    )

    def run():
        # Own session: the worker may outlive this request on timeout
        db = session_factory()
        try:
            return PaymentOrchestrator(TransactionStore(db), gateway).start_payment(start)
        finally:
            db.close()

    loop = asyncio.get_running_loop()
    ctx = contextvars.copy_context()
    try:
        result = await asyncio.wait_for(
            loop.run_in_executor(None, ctx.run, run),
            timeout=config.start_payment_timeout(),
        )
    except asyncio.TimeoutError:
        # The worker keeps going and still persists (or logs) any intent it creates
        logger.error("start_payment_timeout", order_id=start.order_id)
        raise GatewayError(f"start payment timed out for order {start.order_id}")

    return {
        "gatewaySecret": result.gateway_secret,
        "paymentRecordId": result.payment_record_id,
        "alreadyPaid": result.already_paid,
        "status": result.status.value,
    }


@router.get("/payments/{order_id}")
def get_payment_api(
    order_id: str,
    claims: dict = Depends(verify_token),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    record = orchestrator.get_payment(order_id)
    return {
        "paymentRecordId": record.id,
        "orderId": record.order_id,
        "status": record.status,
        "amount": record.amount,
        "currency": record.currency,
    }
