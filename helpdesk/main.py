"""Helpdesk API application.

Builds `app` with CORS and a per-client rate limit, renders every error in the
`{"error": {...}}` payload, mounts the `helpdesk.routers.*` modules and creates
missing tables when the server starts.
"""

from __future__ import annotations

import importlib
import logging
import os
import warnings
from contextlib import asynccontextmanager
from typing import List

from dotenv import load_dotenv

# Load .env before any module reads its settings
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from helpdesk.database import init_db
from helpdesk.errors import make_validation_error_response, register_error_handlers

logger = logging.getLogger(__name__)
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

# python-jose still calls datetime.utcnow()
warnings.filterwarnings("ignore", message=r"datetime.datetime.utcnow\(\) is deprecated")
warnings.filterwarnings("ignore", message=r"Accessing argon2.__version__ is deprecated")

DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT", "60/minute")
limiter = Limiter(key_func=get_remote_address, default_limits=[DEFAULT_RATE_LIMIT])


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Lifespan startup: initializing database")
    init_db()
    yield
    logger.info("Lifespan shutdown")


app = FastAPI(title="Helpdesk Backend", version="1.0.0", lifespan=lifespan)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

origins = os.getenv("CORS_ORIGINS", "*")
if origins == "*":
    allowed_origins: List[str] = ["*"]
else:
    allowed_origins = [o.strip() for o in origins.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

register_error_handlers(app)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content={"error": {"code": "rate_limited", "message": "Rate limit exceeded"}})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content=make_validation_error_response(exc.errors()))


@app.get("/api/health", tags=["Health"])
async def health() -> dict:
    return {"status": "ok"}


def _include_router(module_name: str) -> None:
    module = importlib.import_module(module_name)
    router = getattr(module, "router", None)
    if router is None:
        logger.warning("Module %s has no `router` attribute, skipping", module_name)
        return
    app.include_router(router)
    logger.debug("Included router: %s", module_name)


for r in ("auth", "companies", "roles", "users", "profile", "tickets", "attachments", "dashboard", "system"):
    _include_router(f"helpdesk.routers.{r}")


__all__ = ["app", "limiter"]
