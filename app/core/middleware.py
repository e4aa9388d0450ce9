import json
import logging
import time
import uuid
from typing import Any

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.config import get_settings

logger = logging.getLogger("app.core.middleware")

_SENSITIVE_KEYS = frozenset({"password", "token", "key", "authorization", "cookie", "secret", "email", "name", "phone", "address"})


def _redact_sensitive_keys(data: Any) -> Any:
  """Mask sensitive values in JSON bodies before they reach the logs."""
  if isinstance(data, dict):
    return {key: ("***" if key.lower() in _SENSITIVE_KEYS else _redact_sensitive_keys(value)) for key, value in data.items()}
  if isinstance(data, list):
    return [_redact_sensitive_keys(item) for item in data]
  return data


def _header(scope: Scope, name: bytes) -> str | None:
  for key, value in scope.get("headers", []):
    if key.lower() == name:
      return value.decode("latin-1")
  return None


def _format_body_for_log(body: bytes, content_type: str | None, max_bytes: int) -> str:
  if not body:
    return "<empty>"
  if not content_type or "json" not in content_type.lower():
    return f"<{len(body)} bytes {content_type or 'unknown'}>"
  if len(body) > max_bytes:
    return body[:max_bytes].decode("utf-8", errors="replace") + "...(truncated)"

  text = body.decode("utf-8", errors="replace")
  try:
    return json.dumps(_redact_sensitive_keys(json.loads(text)), ensure_ascii=True)
  except json.JSONDecodeError:
    return text


class RequestLoggingMiddleware:
  """Tag each request with an id and log its method, path, status, and latency.

  Request bodies are logged only when body logging is enabled. Event-stream
  responses are never buffered, so long generations stream through untouched.
  """

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    settings = get_settings()
    request_id = str(uuid.uuid4())
    scope.setdefault("state", {})["request_id"] = request_id

    start_time = time.time()
    method = scope.get("method", "UNKNOWN")
    path = scope.get("path", "")
    logger.info("Incoming request request_id=%s %s %s", request_id, method, path)

    receive_wrapper = receive
    if settings.log_http_bodies:
      chunks: list[bytes] = []
      more_body = True
      while more_body:
        message = await receive()
        if message.get("type") != "http.request":
          break
        chunks.append(message.get("body", b""))
        more_body = message.get("more_body", False)

      request_body = b"".join(chunks)
      logger.info("Request body request_id=%s body=%s", request_id, _format_body_for_log(request_body, _header(scope, b"content-type"), settings.log_http_body_bytes))
      replayed = False

      async def receive_wrapper() -> Message:
        nonlocal replayed
        if replayed:
          return await receive()
        replayed = True
        return {"type": "http.request", "body": request_body, "more_body": False}

    status_code = 0

    async def send_wrapper(message: Message) -> None:
      nonlocal status_code
      if message["type"] == "http.response.start":
        status_code = message["status"]
        headers = MutableHeaders(scope=message)
        if "x-request-id" not in headers:
          headers["x-request-id"] = request_id
      await send(message)

    try:
      await self.app(scope, receive_wrapper, send_wrapper)
    finally:
      process_time = (time.time() - start_time) * 1000
      logger.info("Response request_id=%s status=%s (took %.2fms)", request_id, status_code, process_time)


class SecurityHeadersMiddleware:
  """Strip server fingerprinting headers and forbid MIME sniffing."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    async def send_wrapper(message: Message) -> None:
      if message["type"] == "http.response.start":
        headers = MutableHeaders(scope=message)
        for name in ("x-powered-by", "server"):
          if name in headers:
            del headers[name]
        headers["x-content-type-options"] = "nosniff"
      await send(message)

    await self.app(scope, receive, send_wrapper)
