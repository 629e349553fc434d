import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

# Result codes from lms.actions mapped onto HTTP statuses.
ERROR_STATUS = {
    "VALIDATION_ERROR": 400,
    "AVAILABLE_EXCEEDS_QUANTITY": 400,
    "INVALID_ID": 400,
    "BOOK_NOT_FOUND": 404,
    "BORROW_NOT_FOUND": 404,
    "ISBN_EXISTS": 409,
    "BOOK_UNAVAILABLE": 409,
    "ALREADY_BORROWED": 409,
    "BORROW_LIMIT_REACHED": 409,
    "ACTIVE_BORROWS": 409,
    "ALREADY_RETURNED": 409,
    "RENEWAL_LIMIT_REACHED": 409,
    "LIBRARIAN_CANNOT_BORROW": 403,
    "LIBRARIAN_ONLY": 403,
    "UNAUTHENTICATED": 401,
}

def envelope(success: bool, message: str | None = None, data=None, errors=None) -> dict:
    body = {"success": success}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if errors is not None:
        body["errors"] = errors
    return body

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 404 and message == "Not Found":
        message = "Route not found"
    if exc.status_code >= 500:
        logger.error(f"HTTP error {exc.status_code}: {message}")
    else:
        logger.info(f"HTTP {exc.status_code} on {request.method} {request.url.path}: {message}")
    return JSONResponse(status_code=exc.status_code, content=envelope(False, message), headers=getattr(exc, "headers", None))

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err["loc"][1:]) or str(err["loc"][0]), "message": err["msg"]}
        for err in exc.errors()
    ]
    logger.info(f"Request validation error on {request.url.path}: {errors}")
    return JSONResponse(status_code=400, content=envelope(False, "Validation failed", errors=errors))

async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=envelope(False, "Internal server error"))

def add_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
