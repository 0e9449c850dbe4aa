from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Protocol

from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from tubely.core.config import Settings
from tubely.core.logging import get_logger
from tubely.core.storage import ObjectStore, StorageError
from tubely.db.models import Video
from tubely.media import (
    AspectCategory,
    FastStartTranscoder,
    MediaProbe,
    ProbeFailure,
    TranscodeFailure,
    build_object_key,
    classify_aspect_ratio,
    staged_upload,
)

from .errors import (
    BadRequestError,
    IngestStage,
    InternalError,
    NotFoundError,
    PayloadTooLargeError,
    UnauthorizedError,
    UnsupportedMediaTypeError,
)
from .video_repository import MetadataStoreError

FormLoader = Callable[[], Awaitable[Mapping[str, Any]]]


class MetadataStore(Protocol):
    async def get_video(self, video_id: str) -> Video | None: ...

    async def update_video(self, video: Video) -> Video: ...


@dataclass(slots=True)
class IngestResult:
    video: Video
    category: AspectCategory
    storage_key: str
    location: str
    size_bytes: int


def parse_media_type(raw: str | None) -> str | None:
    """Return the bare ``type/subtype`` of a Content-Type value, or None if unusable."""
    if not raw:
        return None
    media_type = raw.split(";", 1)[0].strip().lower()
    major, sep, minor = media_type.partition("/")
    if not sep or not major or not minor or "/" in minor:
        return None
    return media_type


class VideoIngestPipeline:
    """Takes one multipart video upload through to a persisted, fast-start object.

    Stages run strictly in order: authorize, buffer, probe, transcode, upload,
    finalize. Probe failures fall back to ``AspectCategory.other``; every other
    failure aborts the request. Staged files are removed on every exit path.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        metadata: MetadataStore,
        object_store: ObjectStore,
        probe: MediaProbe,
        transcoder: FastStartTranscoder,
        transcode_slots: asyncio.Semaphore | None = None,
    ):
        self.settings = settings
        self.metadata = metadata
        self.object_store = object_store
        self.probe = probe
        self.transcoder = transcoder
        self.transcode_slots = transcode_slots or asyncio.Semaphore(settings.max_concurrent_transcodes)
        self.logger = get_logger(component="ingest_pipeline")

    async def run(
        self,
        *,
        video_id: str,
        user_id: str,
        load_form: FormLoader,
        content_length: int | None = None,
    ) -> IngestResult:
        logger = self.logger.bind(video_id=video_id, user_id=user_id)
        logger.info("ingest_stage", stage=IngestStage.received.value)

        video = await self._authorize(video_id, user_id)
        logger.info("ingest_stage", stage=IngestStage.authorized.value)

        self._check_declared_length(content_length)
        form = await self._load_form(load_form)
        try:
            upload, media_type = self._select_upload(form)
            with staged_upload(self.settings.temp_dir, suffix=self.settings.default_video_extension) as staged:
                size_bytes = await self._buffer(upload, staged.raw_path)
                logger.info("ingest_stage", stage=IngestStage.buffered.value, size_bytes=size_bytes)

                category = await self._classify(staged.raw_path, logger)
                logger.info("ingest_stage", stage=IngestStage.probed.value, category=category.value)

                processed = await self._transcode(staged.raw_path, logger)
                logger.info("ingest_stage", stage=IngestStage.transcoded.value)

                key = build_object_key(
                    category,
                    upload.filename,
                    default_extension=self.settings.default_video_extension,
                )
                location = await self._upload(processed, key, media_type, logger)
                logger.info("ingest_stage", stage=IngestStage.uploaded.value, key=key)

                video = await self._finalize(video, location, key, logger)
                logger.info("ingest_stage", stage=IngestStage.finalized.value, location=location)
        finally:
            close = getattr(form, "close", None)
            if close is not None:
                await close()

        return IngestResult(video=video, category=category, storage_key=key, location=location, size_bytes=size_bytes)

    async def _authorize(self, video_id: str, user_id: str) -> Video:
        try:
            video = await self.metadata.get_video(video_id)
        except MetadataStoreError as exc:
            raise InternalError("video_lookup_failed", stage=IngestStage.authorized, message=str(exc)) from exc
        if video is None:
            raise NotFoundError("video_not_found", stage=IngestStage.authorized)
        if video.user_id != user_id:
            raise UnauthorizedError("not_video_owner", stage=IngestStage.authorized)
        return video

    def _check_declared_length(self, content_length: int | None) -> None:
        if content_length is not None and content_length > self.settings.max_upload_size_bytes:
            raise PayloadTooLargeError("upload_too_large", stage=IngestStage.buffered)

    async def _load_form(self, load_form: FormLoader) -> Mapping[str, Any]:
        try:
            return await load_form()
        except (MultiPartException, StarletteHTTPException, ValueError) as exc:
            raise BadRequestError("malformed_multipart", stage=IngestStage.buffered, message=str(exc)) from exc

    def _select_upload(self, form: Mapping[str, Any]) -> tuple[UploadFile, str]:
        upload = form.get(self.settings.upload_field_name)
        if not isinstance(upload, UploadFile):
            raise BadRequestError("missing_upload_field", stage=IngestStage.buffered)

        media_type = parse_media_type(upload.content_type)
        if media_type is None:
            raise BadRequestError("missing_content_type", stage=IngestStage.buffered)
        if media_type != self.settings.supported_media_type:
            raise UnsupportedMediaTypeError("unsupported_media_type", stage=IngestStage.buffered, message=media_type)
        return upload, media_type

    async def _buffer(self, upload: UploadFile, target: Path) -> int:
        limit = self.settings.max_upload_size_bytes
        chunk_size = self.settings.upload_chunk_size_bytes
        written = 0
        with target.open("wb") as handle:
            while chunk := await upload.read(chunk_size):
                written += len(chunk)
                if written > limit:
                    raise PayloadTooLargeError("upload_too_large", stage=IngestStage.buffered)
                handle.write(chunk)
        if written == 0:
            raise BadRequestError("empty_upload", stage=IngestStage.buffered)
        return written

    async def _classify(self, path: Path, logger: Any) -> AspectCategory:
        try:
            geometry = await self.probe.probe(path)
        except ProbeFailure as exc:
            logger.warning("probe_failed_fallback", error=str(exc), category=AspectCategory.other.value)
            return AspectCategory.other
        category = classify_aspect_ratio(geometry.width, geometry.height)
        logger.debug(
            "probe_geometry",
            width=geometry.width,
            height=geometry.height,
            aspect_ratio=category.ratio_tag,
        )
        return category

    async def _transcode(self, source: Path, logger: Any) -> Path:
        try:
            async with self.transcode_slots:
                return await self.transcoder.transcode(source)
        except TranscodeFailure as exc:
            logger.error("transcode_failed", error=str(exc))
            raise InternalError("transcode_failed", stage=IngestStage.transcoded, message=str(exc)) from exc

    async def _upload(self, processed: Path, key: str, media_type: str, logger: Any) -> str:
        bucket = self.settings.s3_bucket

        def _put() -> None:
            with processed.open("rb") as body:
                self.object_store.put(bucket, key, body, media_type)

        try:
            await asyncio.to_thread(_put)
        except (StorageError, OSError) as exc:
            logger.error("object_upload_failed", bucket=bucket, key=key, error=str(exc))
            raise InternalError("upload_failed", stage=IngestStage.uploaded, message=str(exc)) from exc
        return self.object_store.object_url(bucket, key)

    async def _finalize(self, video: Video, location: str, key: str, logger: Any) -> Video:
        video.video_url = location
        try:
            return await self.metadata.update_video(video)
        except MetadataStoreError as exc:
            # The object stays in the bucket; reconciliation happens out of band.
            logger.error("orphaned_object", bucket=self.settings.s3_bucket, key=key, location=location, error=str(exc))
            raise InternalError("metadata_update_failed", stage=IngestStage.finalized, message=str(exc)) from exc


__all__ = ["VideoIngestPipeline", "IngestResult", "MetadataStore", "FormLoader", "parse_media_type"]
