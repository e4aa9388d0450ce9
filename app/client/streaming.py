"""Event-stream client that tracks plan generations in the generation store."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any

import httpx

from app.ai.errors import GenerationError
from app.generation.models import GenerationType
from app.generation.store import GenerationStore
from app.services.request_dedup import CancellationToken, RequestDeduplicator, generate_request_key

logger = logging.getLogger(__name__)

ENDPOINTS: dict[GenerationType, str] = {
  "workout": "/api/workout/generate",
  "meal": "/api/meal/generate",
}

_DATA_PREFIX = "data:"


def parse_event_line(line: str) -> dict[str, Any] | None:
  """Decode one `data: {...}` line; anything else yields None."""
  line = line.strip()
  if not line.startswith(_DATA_PREFIX):
    return None

  payload = line[len(_DATA_PREFIX) :].strip()
  try:
    frame = json.loads(payload)
  except json.JSONDecodeError:
    logger.debug("Skipping invalid event frame: %s", payload[:200])
    return None

  return frame if isinstance(frame, dict) else None


class StreamingPlanClient:
  """Request plans over HTTP and mirror the stream into the generation store.

  Identical concurrent requests share one HTTP call through the deduplicator.
  Every outcome ends in `complete` or `fail` on the record, including
  cancellation, so a reload can always read the terminal state.
  """

  def __init__(self, base_url: str, store: GenerationStore, deduplicator: RequestDeduplicator, *, transport: httpx.AsyncBaseTransport | None = None, timeout: float | None = None) -> None:
    self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)
    self._store = store
    self._deduplicator = deduplicator

  async def aclose(self) -> None:
    await self._http.aclose()

  async def __aenter__(self) -> StreamingPlanClient:
    return self

  async def __aexit__(self, *exc_info: object) -> None:
    await self.aclose()

  def request_key(self, kind: GenerationType, params: Mapping[str, Any]) -> str:
    return generate_request_key(ENDPOINTS[kind], params)

  async def generate(self, kind: GenerationType, params: Mapping[str, Any], *, token: str | None = None) -> Any:
    """Generate a plan, returning it once the stream reports completion."""
    key = self.request_key(kind, params)

    async def operation(cancel_token: CancellationToken) -> Any:
      record_id = self._store.start(kind, params)
      try:
        plan = await self._stream(kind, record_id, params, token, cancel_token)
      except asyncio.CancelledError:
        self._store.fail(record_id, "Generation was cancelled")
        raise
      except Exception as exc:
        self._store.fail(record_id, str(exc) or type(exc).__name__)
        raise

      self._store.complete(record_id, plan)
      return plan

    return await self._deduplicator.dedupe(key, operation)

  async def _stream(self, kind: GenerationType, record_id: str, params: Mapping[str, Any], token: str | None, cancel_token: CancellationToken) -> Any:
    headers = {"accept": "text/event-stream"}
    if token:
      headers["authorization"] = f"Bearer {token}"

    partial_content = ""
    try:
      async with self._http.stream("POST", ENDPOINTS[kind], json=dict(params), headers=headers) as response:
        if response.status_code >= 400:
          await response.aread()
          raise GenerationError(_error_detail(response))

        # Cache hits come back as a plain JSON body.
        if "text/event-stream" not in response.headers.get("content-type", ""):
          body = json.loads(await response.aread())
          if isinstance(body, dict) and "plan" in body:
            return body["plan"]
          raise GenerationError("Unexpected response from generation endpoint")

        async for line in response.aiter_lines():
          cancel_token.raise_if_cancelled()
          frame = parse_event_line(line)
          if frame is None:
            continue

          if frame.get("error"):
            raise GenerationError(str(frame["error"]))

          if frame.get("done"):
            return frame.get("plan")

          # A retry restarts the server-side attempt from scratch.
          if "retry" in frame:
            partial_content = ""

          partial_content += str(frame.get("chunk") or "")
          self._store.update_progress(record_id, int(frame.get("progress") or 0), partial_content)

    except httpx.HTTPError as exc:
      logger.warning("Generation request failed type=%s error=%s", kind, exc)
      raise GenerationError(f"Network error: {exc}") from exc

    raise GenerationError("Stream ended without a plan")

  def cancel(self, kind: GenerationType, params: Mapping[str, Any]) -> bool:
    """Abort the in-flight generation for `params`; awaiters see RequestCancelledError."""
    return self._deduplicator.cancel(self.request_key(kind, params))

  def cancel_all(self, kind: GenerationType) -> int:
    return self._deduplicator.cancel_all_for_endpoint(ENDPOINTS[kind])


def _error_detail(response: httpx.Response) -> str:
  try:
    body = response.json()
  except ValueError:
    return f"HTTP {response.status_code}"

  if isinstance(body, dict):
    detail = body.get("detail") or body.get("error")
    if isinstance(detail, str):
      return detail
  return f"HTTP {response.status_code}"
