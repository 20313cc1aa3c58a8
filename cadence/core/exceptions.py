import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cadence.credits.ledger import InsufficientBalanceError
from cadence.jobs.errors import GenerationError, InvalidSubmissionError, NotConfiguredError, UnauthenticatedError

logger = logging.getLogger("uvicorn.error")

# Pre-record submission errors and the HTTP status each maps to.
_GENERATION_ERROR_STATUS: dict[type[GenerationError], int] = {
  UnauthenticatedError: status.HTTP_401_UNAUTHORIZED,
  NotConfiguredError: status.HTTP_503_SERVICE_UNAVAILABLE,
  InvalidSubmissionError: status.HTTP_422_UNPROCESSABLE_CONTENT,
}


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  # Keep native JSON primitives unchanged.
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  # Serialize exception instances explicitly to avoid leaking non-serializable objects.
  if isinstance(value, BaseException):
    error_message = str(value)
    if error_message:
      return f"{type(value).__name__}: {error_message}"
    return type(value).__name__
  return str(value)


def _error_payload(detail: Any, *, request_id: str | None = None, code: str | None = None) -> dict[str, Any]:
  """Build a safe error payload that avoids leaking internal details to clients."""
  payload: dict[str, Any] = {"detail": detail}
  if code:
    payload["code"] = code
  # Attach a request id so support can correlate client reports to server logs.
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key != "input"}
    # Remove nested input values from context payloads as well.
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx

    sanitized.append(_coerce_json_safe(scrubbed))

  return sanitized


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Global exception handler to catch unhandled errors."""
  request_id = getattr(request.state, "request_id", None)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("Internal Server Error", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Log request validation errors for debugging without leaking payloads."""
  request_id = getattr(request.state, "request_id", None)
  sanitized_errors = _sanitize_validation_errors(exc.errors())
  # Keep validation logs concise because 422s are client-correctable and expected.
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, content=_error_payload(sanitized_errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Handle FastAPI HTTPExceptions while avoiding leaking internal diagnostics."""
  from cadence.config import get_settings

  settings = get_settings()
  request_id = getattr(request.state, "request_id", None)
  if exc.status_code >= 500:
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)
    # 503 carries an operator-facing reason; other 5xx stay generic.
    detail = exc.detail if exc.status_code == status.HTTP_503_SERVICE_UNAVAILABLE else "Internal Server Error"
    return JSONResponse(status_code=exc.status_code, content=_error_payload(detail, request_id=request_id))

  # Log 4xx HTTPExceptions when explicitly enabled for debugging.
  if settings.log_http_4xx:
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)

  return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail, request_id=request_id), headers=getattr(exc, "headers", None))


async def generation_exception_handler(request: Request, exc: GenerationError) -> JSONResponse:
  """Map submission precondition failures onto client-facing statuses."""
  request_id = getattr(request.state, "request_id", None)
  status_code = _GENERATION_ERROR_STATUS.get(type(exc), status.HTTP_502_BAD_GATEWAY)
  logger.warning("Submission rejected request_id=%s path=%s code=%s reason=%s", request_id, request.url.path, exc.code, exc.reason)
  return JSONResponse(status_code=status_code, content=_error_payload(exc.reason, request_id=request_id, code=exc.code))


async def insufficient_balance_exception_handler(request: Request, exc: InsufficientBalanceError) -> JSONResponse:
  """Reject submissions from users without enough credits."""
  request_id = getattr(request.state, "request_id", None)
  logger.info("Insufficient balance request_id=%s user_id=%s balance=%s required=%s", request_id, exc.user_id, exc.balance, exc.required)
  return JSONResponse(status_code=status.HTTP_402_PAYMENT_REQUIRED, content=_error_payload(str(exc), request_id=request_id, code="insufficient_balance"))
