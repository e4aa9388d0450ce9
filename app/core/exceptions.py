import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.ai.errors import GenerationError
from app.config import get_settings

GENERATION_FAILURE_DETAIL = "Failed to generate plan. Please try again."


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  # Exceptions end up in pydantic error contexts (e.g. custom validators).
  if isinstance(value, BaseException):
    message = str(value)
    return f"{type(value).__name__}: {message}" if message else type(value).__name__
  return str(value)


def _error_payload(detail: Any, *, request_id: str | None = None) -> dict[str, Any]:
  payload: dict[str, Any] = {"detail": detail}
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without echoing the submitted form values."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key != "input"}
    if isinstance(scrubbed.get("ctx"), dict):
      scrubbed["ctx"] = {key: value for key, value in scrubbed["ctx"].items() if key != "input"}
    sanitized.append(_coerce_json_safe(scrubbed))
  return sanitized


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Catch unhandled errors and hide their details from the caller."""
  logger = logging.getLogger("uvicorn.error")
  request_id = getattr(request.state, "request_id", None)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("Internal Server Error", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  request_id = getattr(request.state, "request_id", None)
  sanitized_errors = _sanitize_validation_errors(list(exc.errors()))
  logging.getLogger("uvicorn.error").warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload(sanitized_errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Keep 4xx details (including Retry-After headers) and mask 5xx details."""
  request_id = getattr(request.state, "request_id", None)
  logger = logging.getLogger("uvicorn.error")
  if exc.status_code >= 500:
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=_error_payload("Internal Server Error", request_id=request_id), headers=exc.headers)

  if get_settings().log_http_4xx:
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)

  return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail, request_id=request_id), headers=exc.headers)


async def generation_exception_handler(request: Request, exc: GenerationError) -> JSONResponse:
  """Report generation failures as a bad upstream response without leaking model output."""
  request_id = getattr(request.state, "request_id", None)
  logging.getLogger("uvicorn.error").error("Generation failure request_id=%s path=%s error_type=%s error=%s", request_id, request.url.path, type(exc).__name__, exc)
  return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=_error_payload(GENERATION_FAILURE_DETAIL, request_id=request_id))
