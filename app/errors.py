"""Error taxonomy of the payment service.

Each error carries the client-safe message and HTTP status it maps to.
Internal detail goes to the server log, never into the response body.
"""

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.log import get_logger

logger = get_logger(__name__)


class PaymentServiceError(Exception):
    """Base error with a client-facing message and status code."""

    client_message = "Internal server error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "ERROR"

    def __init__(self, message: str | None = None):
        self.message = message or self.client_message
        super().__init__(self.message)


class ValidationError(PaymentServiceError):
    client_message = "Invalid request"
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_REQUEST"


class AuthenticityError(PaymentServiceError):
    client_message = "Invalid signature"
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_SIGNATURE"


class NotFoundError(PaymentServiceError):
    client_message = "Payment not found"
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class ConflictError(PaymentServiceError):
    """Concurrent insert lost the uniqueness race. Absorbed by the orchestrator."""

    client_message = "Conflict"
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class GatewayError(PaymentServiceError):
    client_message = "Payment could not be started, retry"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "GATEWAY_UNAVAILABLE"


class StoreError(PaymentServiceError):
    client_message = "Payment could not be processed, retry"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "STORE_UNAVAILABLE"


async def payment_error_handler(request: Request, exc: PaymentServiceError) -> JSONResponse:
    logger.warning(
        "request_failed",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
        reason=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.client_message})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("request_invalid", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": ValidationError.client_message},
    )
