from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from cadence import __version__
from cadence.api.routes import credits, jobs, lyrics, notifications
from cadence.config import get_settings
from cadence.core.exceptions import generation_exception_handler, global_exception_handler, http_exception_handler, insufficient_balance_exception_handler, request_validation_exception_handler
from cadence.core.lifespan import lifespan
from cadence.core.middleware import RequestLoggingMiddleware
from cadence.credits.ledger import InsufficientBalanceError
from cadence.jobs.errors import GenerationError

settings = get_settings()

app = FastAPI(title="Cadence", version=__version__, lifespan=lifespan, docs_url=None if settings.environment == "production" else "/docs", redoc_url=None)

app.add_middleware(
  CORSMiddleware,
  allow_origins=list(settings.allowed_origins),
  allow_credentials=True,
  allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
  allow_headers=["content-type", "authorization", "x-owner-id", "x-request-id"],
  expose_headers=["content-length", "x-request-id"],
)

# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(GenerationError, generation_exception_handler)
app.add_exception_handler(InsufficientBalanceError, insufficient_balance_exception_handler)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": __version__}


app.include_router(jobs.router, prefix="/v1/jobs", tags=["jobs"])
app.include_router(credits.router, prefix="/v1/credits", tags=["credits"])
app.include_router(notifications.router, prefix="/v1/notifications", tags=["notifications"])
app.include_router(lyrics.router, prefix="/v1/lyrics", tags=["lyrics"])
