from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.ai.errors import GenerationError
from app.api.routes import generations, plans
from app.config import get_settings
from app.core.exceptions import generation_exception_handler, global_exception_handler, http_exception_handler, request_validation_exception_handler
from app.core.lifespan import lifespan
from app.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware

settings = get_settings()

app = FastAPI(title="AI Gym Engine", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(
  CORSMiddleware,
  allow_origins=list(settings.allowed_origins),
  allow_credentials=True,
  allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
  allow_headers=["content-type", "authorization", "x-prefetch"],
  expose_headers=["content-length", "retry-after", "x-request-id"],
)

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(GenerationError, generation_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(plans.router, prefix="/api", tags=["plans"])
app.include_router(generations.router, prefix="/api", tags=["generations"])
