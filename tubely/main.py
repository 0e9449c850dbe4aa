from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tubely.api.v1 import get_api_router
from tubely.core.config import get_settings
from tubely.core.db import create_engine, create_session_factory
from tubely.core.logging import configure_logging, get_logger, level_from_name
from tubely.core.storage import get_object_store
from tubely.media import FFmpegFastStartTranscoder, FFprobeMediaProbe


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(level=level_from_name(settings.log_level))
    logger = get_logger(component="app")
    object_store = get_object_store(settings)
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        app.state.object_store = object_store
        app.state.engine = engine
        app.state.session_factory = session_factory
        app.state.media_probe = FFprobeMediaProbe(binary=settings.ffprobe_binary, timeout_s=settings.probe_timeout_s)
        app.state.transcoder = FFmpegFastStartTranscoder(
            binary=settings.ffmpeg_binary,
            timeout_s=settings.transcode_timeout_s,
        )
        app.state.transcode_slots = asyncio.Semaphore(settings.max_concurrent_transcodes)
        logger.info("app_started", environment=settings.environment, storage_backend=settings.storage_backend)
        try:
            yield
        finally:
            await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )

    app.include_router(get_api_router())
    return app


__all__ = ["create_app"]
