from __future__ import annotations

from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tubely.db.models import Video


class MetadataStoreError(RuntimeError):
    """The metadata database could not complete a read or write."""


class VideoRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_video(self, video_id: str) -> Video | None:
        try:
            return await self.session.get(Video, video_id)
        except SQLAlchemyError as exc:
            raise MetadataStoreError(str(exc)) from exc

    async def update_video(self, video: Video) -> Video:
        try:
            self.session.add(video)
            await self.session.commit()
            await self.session.refresh(video)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise MetadataStoreError(str(exc)) from exc
        return video

    async def create_video(self, *, user_id: str, title: str, description: str | None = None) -> Video:
        video = Video(id=str(uuid4()), user_id=user_id, title=title, description=description)
        return await self.update_video(video)

    async def list_videos(self, user_id: str) -> list[Video]:
        stmt = select(Video).where(Video.user_id == user_id).order_by(Video.created_at.desc())
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            raise MetadataStoreError(str(exc)) from exc
        return list(result.scalars().all())


__all__ = ["VideoRepository", "MetadataStoreError"]
