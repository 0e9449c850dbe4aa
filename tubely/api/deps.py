from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tubely.core.auth import AuthContext, get_auth_context
from tubely.core.config import Settings, get_settings
from tubely.core.storage import ObjectStore
from tubely.services.ingest_service import VideoIngestPipeline
from tubely.services.video_repository import VideoRepository


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory = request.app.state.session_factory
    if not isinstance(session_factory, async_sessionmaker):  # pragma: no cover
        raise RuntimeError("session_factory_not_configured")
    async with session_factory() as session:
        yield session


def get_object_store(request: Request) -> ObjectStore:
    object_store: ObjectStore = request.app.state.object_store
    return object_store


def get_app_settings() -> Settings:
    return get_settings()


def get_video_repository(session: AsyncSession = Depends(get_session)) -> VideoRepository:
    return VideoRepository(session)


def get_ingest_pipeline(
    request: Request,
    repository: VideoRepository = Depends(get_video_repository),
    object_store: ObjectStore = Depends(get_object_store),
    settings: Settings = Depends(get_app_settings),
) -> VideoIngestPipeline:
    state = request.app.state
    return VideoIngestPipeline(
        settings,
        metadata=repository,
        object_store=object_store,
        probe=state.media_probe,
        transcoder=state.transcoder,
        transcode_slots=state.transcode_slots,
    )


RepositoryDependency = Annotated[VideoRepository, Depends(get_video_repository)]
PipelineDependency = Annotated[VideoIngestPipeline, Depends(get_ingest_pipeline)]
AuthDependency = Annotated[AuthContext, Depends(get_auth_context)]


def get_declared_content_length(request: Request) -> int | None:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


__all__ = [
    "get_session",
    "get_object_store",
    "get_app_settings",
    "get_video_repository",
    "get_ingest_pipeline",
    "RepositoryDependency",
    "PipelineDependency",
    "AuthDependency",
    "get_declared_content_length",
]
