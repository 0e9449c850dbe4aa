from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status

from tubely.api import deps
from tubely.api.limits import limit_request_body
from tubely.services.errors import IngestError
from tubely.services.video_repository import MetadataStoreError

from . import schemas


router = APIRouter(prefix="/videos", tags=["videos"])


def _parse_video_id(raw: str) -> str:
    try:
        return str(UUID(raw))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_video_id")


@router.post("", response_model=schemas.VideoResponse, status_code=status.HTTP_201_CREATED)
async def create_video(
    payload: schemas.VideoCreateRequest,
    repository: deps.RepositoryDependency,
    context: deps.AuthDependency,
) -> schemas.VideoResponse:
    try:
        video = await repository.create_video(
            user_id=context.user_id,
            title=payload.title,
            description=payload.description,
        )
    except MetadataStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="metadata_unavailable") from exc
    return schemas.VideoResponse.model_validate(video)


@router.get("", response_model=list[schemas.VideoResponse])
async def list_videos(repository: deps.RepositoryDependency, context: deps.AuthDependency) -> list[schemas.VideoResponse]:
    try:
        videos = await repository.list_videos(context.user_id)
    except MetadataStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="metadata_unavailable") from exc
    return [schemas.VideoResponse.model_validate(video) for video in videos]


@router.get("/{video_id}", response_model=schemas.VideoResponse)
async def get_video(
    video_id: str,
    repository: deps.RepositoryDependency,
    context: deps.AuthDependency,
) -> schemas.VideoResponse:
    try:
        video = await repository.get_video(_parse_video_id(video_id))
    except MetadataStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="metadata_unavailable") from exc
    if video is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="video_not_found")
    if video.user_id != context.user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not_video_owner")
    return schemas.VideoResponse.model_validate(video)


@router.post(
    "/{video_id}/upload",
    response_model=schemas.VideoResponse,
    responses={
        code: {"model": schemas.ErrorResponse}
        for code in (400, 401, 404, 413, 415, 500)
    },
)
async def upload_video(
    video_id: str,
    request: Request,
    pipeline: deps.PipelineDependency,
    context: deps.AuthDependency,
    content_length: int | None = Depends(deps.get_declared_content_length),
) -> schemas.VideoResponse:
    """Accept a multipart ``video`` part, remux it for fast start and store it.

    The body is only read after the caller has been confirmed as the owner, and
    reading stops once it passes the configured upload cap.
    """
    target_id = _parse_video_id(video_id)
    capped = limit_request_body(request, pipeline.settings.max_upload_size_bytes)
    try:
        result = await pipeline.run(
            video_id=target_id,
            user_id=context.user_id,
            load_form=lambda: capped.form(max_files=1),
            content_length=content_length,
        )
    except IngestError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.code) from exc
    return schemas.VideoResponse.model_validate(result.video)


__all__ = ["router"]
