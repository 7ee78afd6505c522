"""FastAPI exception handlers for converting CommerceError to HTTP responses.

The ErrorCode-to-HTTP status mapping:
- 400 Bad Request: malformed amounts, quantities, transfers, signatures
- 403 Forbidden: the actor may not perform the operation
- 404 Not Found: unknown order, transfer, refund or return request
- 409 Conflict: the operation is not valid in the current state
- 502 Bad Gateway: the payment provider rejected the call
- 504 Gateway Timeout: the payment provider did not answer in time

Usage:
    from commerce_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_504_GATEWAY_TIMEOUT,
)

from commerce_core.models.errors import CommerceError, ErrorCode
from commerce_core.utils.logging import get_logger

logger = get_logger(__name__)

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    # Malformed input -> 400 Bad Request
    ErrorCode.INVALID_QUANTITY: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_AMOUNT: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_TRANSFER: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: HTTP_400_BAD_REQUEST,
    # Authorization -> 403 Forbidden
    ErrorCode.UNAUTHORIZED: HTTP_403_FORBIDDEN,
    # Not found -> 404 Not Found
    ErrorCode.ORDER_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.TRANSFER_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.REFUND_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.RETURN_REQUEST_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.FULFILLMENT_WAREHOUSE_NOT_FOUND: HTTP_404_NOT_FOUND,
    # State conflicts -> 409 Conflict
    ErrorCode.INVALID_TRANSITION: HTTP_409_CONFLICT,
    ErrorCode.STOCK_CONFLICT: HTTP_409_CONFLICT,
    ErrorCode.INSUFFICIENT_STOCK: HTTP_409_CONFLICT,
    ErrorCode.ALREADY_FINALIZED: HTTP_409_CONFLICT,
    ErrorCode.OVER_REFUND: HTTP_409_CONFLICT,
    ErrorCode.PAYMENT_NOT_CAPTURED: HTTP_409_CONFLICT,
    ErrorCode.DUPLICATE_EVENT: HTTP_409_CONFLICT,
    # Payment provider -> 502/504
    ErrorCode.GATEWAY_ERROR: HTTP_502_BAD_GATEWAY,
    ErrorCode.GATEWAY_TIMEOUT: HTTP_504_GATEWAY_TIMEOUT,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """HTTP status code for an ErrorCode, 400 if not explicitly mapped."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def commerce_error_handler(request: Request, exc: CommerceError) -> JSONResponse:
    """Convert a CommerceError to its ErrorResponse body and HTTP status."""
    status_code = get_http_status_for_error(exc.code)
    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)

    return JSONResponse(
        status_code=status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback for uncaught exceptions; internal details are not exposed."""
    logger.exception("Unhandled exception: %s", exc)

    error_response = {
        "success": False,
        "error_code": "ERR_INTERNAL",
        "message": "An unexpected error occurred",
        "recovery": "Please try again later or contact support",
        "details": None,
    }

    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Example:
        app = FastAPI()
        register_exception_handlers(app)
    """
    app.add_exception_handler(CommerceError, commerce_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
