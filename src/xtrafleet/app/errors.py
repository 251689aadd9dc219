"""Maps the domain error taxonomy onto HTTP responses.

Bodies are always ``{"detail": str, "code": str}`` (plus ``field_errors``
for validation failures). Stack traces never reach the client.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from xtrafleet.domain.errors import ValidationError, XtraFleetError

logger = logging.getLogger(__name__)


async def xtrafleet_error_handler(request: Request, exc: XtraFleetError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    elif exc.status_code == 401:
        logger.warning("Unauthenticated %s %s: %s", request.method, request.url.path, exc.message)
    body = {"detail": exc.public_detail, "code": exc.code}
    if isinstance(exc, ValidationError) and exc.field_errors:
        body["field_errors"] = exc.field_errors
    return JSONResponse(status_code=exc.status_code, content=body)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    field_errors = {
        ".".join(str(part) for part in err["loc"] if part != "body"): err["msg"]
        for err in exc.errors()
    }
    return JSONResponse(
        status_code=422,
        content={"detail": "Invalid request", "code": "validation_error", "field_errors": field_errors},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(XtraFleetError, xtrafleet_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
