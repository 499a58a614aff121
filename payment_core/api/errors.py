"""
Error responses for the HTTP surface

Every failure leaves the API as {"success": false, "error": {"code", "message"}}
with a status derived from the code's error class.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..errors import ErrorClass, ErrorCode, Failure, PaymentError
from ..logging_config import get_logger


logger = get_logger("payment_core.api")

STATUS_BY_CLASS = {
    ErrorClass.AUTHENTICATION: 401,
    ErrorClass.AUTHORIZATION: 403,
    ErrorClass.RATE_LIMIT: 429,
    ErrorClass.VALIDATION: 400,
    ErrorClass.NOT_FOUND: 404,
    ErrorClass.BUSINESS_RULE: 400,
    ErrorClass.INFRASTRUCTURE: 500,
}


def status_for(code: ErrorCode) -> int:
    return STATUS_BY_CLASS[code.error_class]


def failure_response(failure: Failure) -> JSONResponse:
    return JSONResponse(status_code=status_for(failure.code), content=failure.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    """Render core failures, request validation errors and crashes in one shape"""

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError):
        return failure_response(exc.failure)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else ErrorCode.VALIDATION_ERROR.default_message
        return failure_response(Failure(ErrorCode.VALIDATION_ERROR, message))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return failure_response(Failure(ErrorCode.INTERNAL_ERROR, ErrorCode.INTERNAL_ERROR.default_message))
