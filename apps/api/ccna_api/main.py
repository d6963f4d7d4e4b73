from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ccna_api.api.v1.router import api_router
from ccna_api.core.cache import cache
from ccna_api.core.config import settings
from ccna_api.core.errors import TutorError, error_response
from ccna_api.core.logging import configure_logging
from ccna_api.core.rate_limit import RateLimitMiddleware

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(_: FastAPI):
    await cache.connect()
    logger.info("CCNA tutor API ready (model={}, cache={})", settings.gemini_model, cache.backend)
    yield
    await cache.close()


app = FastAPI(
    title="CCNA Mastery API",
    version="1.0.0",
    description="AI tutor and study catalog for CCNA flashcard decks.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_origin_regex=settings.cors_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RateLimitMiddleware, limit=settings.rate_limit_per_minute, window_seconds=60)


@app.exception_handler(TutorError)
async def tutor_error_handler(_: Request, exc: TutorError):
    status_code, body = error_response(exc)
    return JSONResponse(status_code=status_code, content=body)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(api_router, prefix=settings.api_v1_prefix)
