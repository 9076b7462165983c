from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from app.web import router as web_router
from datastore.factory import build_default_store
from logging_config import configure_logging
from services.dashboard import build_default_service


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    service = build_default_service()
    await service.run()
    try:
        yield
    finally:
        await service.shutdown()
        await service.store.aclose()
        build_default_service.cache_clear()
        build_default_store.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Live Temperature Dashboard",
        description="Live per-sensor temperatures, tracking windows and sampled reports.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    app.include_router(web_router)
    return app

app = create_app()
