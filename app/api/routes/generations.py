import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import Field

from app.api.deps import get_deduplicator, get_store
from app.generation.models import GenerationRecord, GenerationType
from app.generation.store import GenerationStore
from app.schema.plans import CamelModel
from app.services.request_dedup import RequestDeduplicator

router = APIRouter()
logger = logging.getLogger("app.api.routes.generations")


class PrefetchRequest(CamelModel):
  type: GenerationType
  params: dict[str, Any]
  priority: int = Field(default=1, ge=0)


class CancelRequest(CamelModel):
  """Cancel one fingerprint, or every in-flight request for an endpoint."""

  key: str | None = None
  endpoint: str | None = None


def _record_payload(record: GenerationRecord) -> dict[str, Any]:
  return {
    "id": record.id,
    "type": record.type,
    "params": record.params,
    "status": record.status,
    "progress": record.progress,
    "partialContent": record.partial_content,
    "result": record.result,
    "error": record.error,
    "startedAt": record.started_at,
    "updatedAt": record.updated_at,
  }


@router.get("/generations")
def list_generations(
  type: GenerationType | None = Query(default=None),  # noqa: A002, B008
  store: GenerationStore = Depends(get_store),  # noqa: B008
) -> list[dict[str, Any]]:
  return [_record_payload(record) for record in store.list_records(type)]


@router.get("/generations/incomplete")
def get_incomplete_generation(
  type: GenerationType = Query(...),  # noqa: A002, B008
  store: GenerationStore = Depends(get_store),  # noqa: B008
) -> dict[str, Any] | None:
  """Return the streaming generation a reloaded page should resume, if any."""
  record = store.get_incomplete(type)
  return _record_payload(record) if record is not None else None


@router.get("/generations/{record_id}")
def get_generation(record_id: str, store: GenerationStore = Depends(get_store)) -> dict[str, Any]:  # noqa: B008
  record = store.get(record_id)
  if record is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")
  return _record_payload(record)


@router.delete("/generations/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_generation(record_id: str, store: GenerationStore = Depends(get_store)) -> None:  # noqa: B008
  store.remove(record_id)


@router.delete("/generations", status_code=status.HTTP_204_NO_CONTENT)
def clear_generations(
  type: GenerationType | None = Query(default=None),  # noqa: A002, B008
  store: GenerationStore = Depends(get_store),  # noqa: B008
) -> None:
  store.clear(type)


@router.get("/prefetch")
def get_prefetch_queue(store: GenerationStore = Depends(get_store)) -> list[dict[str, Any]]:  # noqa: B008
  return [{"type": entry.type, "params": entry.params, "priority": entry.priority, "createdAt": entry.created_at} for entry in store.get_prefetch_queue()]


@router.post("/prefetch")
def add_prefetch(payload: PrefetchRequest, store: GenerationStore = Depends(get_store)) -> dict[str, bool]:  # noqa: B008
  return {"queued": store.add_to_prefetch(payload.type, payload.params, payload.priority)}


@router.delete("/prefetch", status_code=status.HTTP_204_NO_CONTENT)
def clear_prefetch(store: GenerationStore = Depends(get_store)) -> None:  # noqa: B008
  store.clear_prefetch()


@router.get("/requests/stats")
async def request_stats(deduplicator: RequestDeduplicator = Depends(get_deduplicator)) -> dict[str, Any]:  # noqa: B008
  stats = deduplicator.stats()
  return {"total": stats.total, "byEndpoint": stats.by_endpoint}


@router.post("/requests/cancel")
async def cancel_requests(
  payload: CancelRequest = Body(...),  # noqa: B008
  deduplicator: RequestDeduplicator = Depends(get_deduplicator),  # noqa: B008
) -> dict[str, int]:
  """Abort in-flight generations; awaiting streams end with an error frame."""
  if payload.key:
    return {"cancelled": int(deduplicator.cancel(payload.key))}
  if payload.endpoint:
    return {"cancelled": deduplicator.cancel_all_for_endpoint(payload.endpoint)}
  raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Provide a key or an endpoint")
