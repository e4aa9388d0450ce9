import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from app.api.deps import enforce_rate_limit, get_generation_service, get_store
from app.generation.store import GenerationStore
from app.services.generation import MEAL, WORKOUT, PlanGenerationService, PlanKind

router = APIRouter()
logger = logging.getLogger("app.api.routes.plans")

_PREFETCH_FLAG = "_prefetch"


def _is_prefetch(request: Request, payload: dict[str, Any]) -> bool:
  return request.headers.get("x-prefetch", "").lower() == "true" or payload.get(_PREFETCH_FLAG) is True


def _encode_frame(frame: dict[str, Any]) -> str:
  return f"data: {json.dumps(frame, ensure_ascii=False)}\n\n"


async def _event_stream(service: PlanGenerationService, plan_kind: PlanKind, form: Any) -> AsyncIterator[str]:
  async for frame in service.stream_events(plan_kind, form):
    yield _encode_frame(frame)


async def _generate(request: Request, payload: dict[str, Any], plan_kind: PlanKind, service: PlanGenerationService, store: GenerationStore) -> Any:
  if _is_prefetch(request, payload):
    params = {key: value for key, value in payload.items() if key != _PREFETCH_FLAG}
    store.add_to_prefetch(plan_kind.kind, params)
    await service.warm_up()
    return {"prefetched": True}

  try:
    form = plan_kind.form_model.model_validate(payload)
  except ValidationError as exc:
    raise RequestValidationError(exc.errors()) from exc

  cached = await service.cached_plan(plan_kind, form)
  if cached is not None:
    logger.info("Serving cached %s plan", plan_kind.kind)
    return {"plan": cached}

  headers = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
  return StreamingResponse(_event_stream(service, plan_kind, form), media_type="text/event-stream", headers=headers)


@router.post("/workout/generate", dependencies=[Depends(enforce_rate_limit)])
async def generate_workout(  # noqa: B008
  request: Request,
  payload: dict[str, Any] = Body(...),  # noqa: B008
  service: PlanGenerationService = Depends(get_generation_service),  # noqa: B008
  store: GenerationStore = Depends(get_store),  # noqa: B008
) -> Any:
  """Stream a workout plan as server-sent events."""
  return await _generate(request, payload, WORKOUT, service, store)


@router.post("/meal/generate", dependencies=[Depends(enforce_rate_limit)])
async def generate_meal(  # noqa: B008
  request: Request,
  payload: dict[str, Any] = Body(...),  # noqa: B008
  service: PlanGenerationService = Depends(get_generation_service),  # noqa: B008
  store: GenerationStore = Depends(get_store),  # noqa: B008
) -> Any:
  """Stream a meal plan as server-sent events."""
  return await _generate(request, payload, MEAL, service, store)
