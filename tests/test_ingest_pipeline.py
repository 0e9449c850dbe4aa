from __future__ import annotations

import asyncio
import re
from io import BytesIO
from pathlib import Path

import pytest
from starlette.datastructures import FormData, Headers, UploadFile
from starlette.formparsers import MultiPartException

from tubely.core.config import Settings
from tubely.db.models import Video
from tubely.media import AspectCategory, StreamGeometry
from tubely.services.errors import (
    BadRequestError,
    IngestStage,
    InternalError,
    NotFoundError,
    PayloadTooLargeError,
    UnauthorizedError,
    UnsupportedMediaTypeError,
)
from tubely.services.ingest_service import VideoIngestPipeline, parse_media_type

from tests.fakes import (
    FailingObjectStore,
    FailingProbe,
    FailingTranscoder,
    FakeProbe,
    FakeTranscoder,
    InMemoryVideoStore,
    RecordingObjectStore,
)

VIDEO_ID = "0b6f8c39-4f0e-4d0e-9c55-3f1a4b3b5a10"
OWNER = "user-owner"
BUCKET = "pipeline-bucket"
PAYLOAD = b"\x00\x00\x00\x18ftypmp42" + b"\x01" * 4096


class FormSource:
    """Counts how often the request body is materialised."""

    def __init__(self, form: FormData | None = None, error: Exception | None = None):
        self.form = form
        self.error = error
        self.calls = 0

    async def __call__(self) -> FormData:
        self.calls += 1
        if self.error is not None:
            raise self.error
        assert self.form is not None
        return self.form


def _upload(
    data: bytes = PAYLOAD,
    *,
    filename: str | None = "boots.mp4",
    content_type: str | None = "video/mp4",
) -> UploadFile:
    headers = Headers({"content-type": content_type}) if content_type is not None else Headers({})
    return UploadFile(file=BytesIO(data), filename=filename, headers=headers)


def _form(upload: UploadFile | None = None, field: str = "video") -> FormSource:
    items = [(field, upload if upload is not None else _upload())]
    return FormSource(FormData(items))


@pytest.fixture()
def settings(staging_dir: Path) -> Settings:
    return Settings(s3_bucket=BUCKET, temp_dir=staging_dir, upload_chunk_size_bytes=1024)


@pytest.fixture()
def video() -> Video:
    return Video(id=VIDEO_ID, user_id=OWNER, title="Boots", description=None)


@pytest.fixture()
def metadata(video: Video) -> InMemoryVideoStore:
    return InMemoryVideoStore(video)


def _pipeline(settings, metadata, *, probe=None, transcoder=None, object_store=None) -> VideoIngestPipeline:
    return VideoIngestPipeline(
        settings,
        metadata=metadata,
        object_store=object_store if object_store is not None else RecordingObjectStore(),
        probe=probe if probe is not None else FakeProbe(),
        transcoder=transcoder if transcoder is not None else FakeTranscoder(),
    )


def _run(pipeline: VideoIngestPipeline, source: FormSource, *, user_id: str = OWNER, content_length=None):
    return asyncio.run(
        pipeline.run(video_id=VIDEO_ID, user_id=user_id, load_form=source, content_length=content_length)
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("video/mp4", "video/mp4"),
        ("Video/MP4; codecs=avc1", "video/mp4"),
        ("video/webm", "video/webm"),
        ("", None),
        (None, None),
        ("video", None),
        ("video/", None),
        ("/mp4", None),
        ("video/mp4/extra", None),
    ],
)
def test_parse_media_type(raw, expected):
    assert parse_media_type(raw) == expected


def test_landscape_upload_is_stored_under_landscape_prefix(settings, metadata, staging_dir):
    store = RecordingObjectStore(region="us-east-2")
    probe = FakeProbe(StreamGeometry(width=1920, height=1080))
    transcoder = FakeTranscoder()
    pipeline = _pipeline(settings, metadata, probe=probe, transcoder=transcoder, object_store=store)

    result = _run(pipeline, _form())

    assert result.category == AspectCategory.landscape
    assert re.fullmatch(r"landscape/[0-9a-f]{64}\.mp4", result.storage_key)
    assert result.location == f"https://{BUCKET}.s3.us-east-2.amazonaws.com/{result.storage_key}"
    assert result.size_bytes == len(PAYLOAD)
    assert result.video.video_url == result.location
    assert metadata.updates == [result.location]

    assert len(store.puts) == 1
    put = store.puts[0]
    assert put["bucket"] == BUCKET
    assert put["key"] == result.storage_key
    assert put["content_type"] == "video/mp4"
    assert put["body"] == PAYLOAD

    # the probe sees the raw staged file, the transcoder gets the same path
    assert probe.calls == transcoder.calls
    assert list(staging_dir.iterdir()) == []


def test_portrait_upload_uses_portrait_prefix(settings, metadata):
    pipeline = _pipeline(settings, metadata, probe=FakeProbe(StreamGeometry(width=1080, height=1920)))

    result = _run(pipeline, _form())

    assert result.category == AspectCategory.portrait
    assert result.storage_key.startswith("portrait/")


def test_probe_failure_falls_back_to_other(settings, metadata):
    store = RecordingObjectStore()
    pipeline = _pipeline(settings, metadata, probe=FailingProbe(), object_store=store)

    result = _run(pipeline, _form())

    assert result.category == AspectCategory.other
    assert result.storage_key.startswith("other/")
    assert len(store.puts) == 1


def test_extension_comes_from_client_filename(settings, metadata):
    pipeline = _pipeline(settings, metadata)

    result = _run(pipeline, _form(_upload(filename="Holiday.M4V")))

    assert result.storage_key.endswith(".m4v")


def test_non_owner_is_rejected_before_body_is_read(settings, metadata, staging_dir):
    probe = FakeProbe()
    source = _form()
    pipeline = _pipeline(settings, metadata, probe=probe)

    with pytest.raises(UnauthorizedError) as excinfo:
        _run(pipeline, source, user_id="user-stranger")

    assert excinfo.value.code == "not_video_owner"
    assert excinfo.value.stage == IngestStage.authorized
    assert source.calls == 0
    assert probe.calls == []
    assert metadata.updates == []
    assert list(staging_dir.iterdir()) == []


def test_unknown_video_is_not_found(settings):
    source = _form()
    pipeline = _pipeline(settings, InMemoryVideoStore())

    with pytest.raises(NotFoundError) as excinfo:
        _run(pipeline, source)

    assert excinfo.value.code == "video_not_found"
    assert excinfo.value.status_code == 404
    assert source.calls == 0


def test_metadata_read_failure_is_internal(settings, video):
    pipeline = _pipeline(settings, InMemoryVideoStore(video, fail_reads=True))

    with pytest.raises(InternalError) as excinfo:
        _run(pipeline, _form())

    assert excinfo.value.code == "video_lookup_failed"


def test_declared_length_over_cap_is_rejected_without_reading(settings, metadata):
    settings.max_upload_size_bytes = 1024
    source = _form()
    pipeline = _pipeline(settings, metadata)

    with pytest.raises(PayloadTooLargeError) as excinfo:
        _run(pipeline, source, content_length=2048)

    assert excinfo.value.status_code == 413
    assert source.calls == 0


def test_streamed_bytes_over_cap_are_rejected(settings, metadata, staging_dir):
    settings.max_upload_size_bytes = 1000
    store = RecordingObjectStore()
    probe = FakeProbe()
    pipeline = _pipeline(settings, metadata, probe=probe, object_store=store)

    with pytest.raises(PayloadTooLargeError):
        _run(pipeline, _form(_upload(b"x" * 5000)))

    assert probe.calls == []
    assert store.puts == []
    assert list(staging_dir.iterdir()) == []


def test_upload_exactly_at_cap_is_accepted(settings, metadata):
    settings.max_upload_size_bytes = 2048
    pipeline = _pipeline(settings, metadata)

    result = _run(pipeline, _form(_upload(b"y" * 2048)), content_length=2048)

    assert result.size_bytes == 2048


def test_unsupported_media_type_creates_no_staged_file(settings, metadata, staging_dir):
    probe = FakeProbe()
    pipeline = _pipeline(settings, metadata, probe=probe)

    with pytest.raises(UnsupportedMediaTypeError) as excinfo:
        _run(pipeline, _form(_upload(content_type="video/webm")))

    assert excinfo.value.status_code == 415
    assert probe.calls == []
    assert list(staging_dir.iterdir()) == []


def test_missing_content_type_is_bad_request(settings, metadata):
    pipeline = _pipeline(settings, metadata)

    with pytest.raises(BadRequestError) as excinfo:
        _run(pipeline, _form(_upload(content_type=None)))

    assert excinfo.value.code == "missing_content_type"


def test_missing_video_field_is_bad_request(settings, metadata):
    pipeline = _pipeline(settings, metadata)

    with pytest.raises(BadRequestError) as excinfo:
        _run(pipeline, _form(field="thumbnail"))

    assert excinfo.value.code == "missing_upload_field"


def test_plain_text_field_is_not_an_upload(settings, metadata):
    pipeline = _pipeline(settings, metadata)

    with pytest.raises(BadRequestError) as excinfo:
        _run(pipeline, FormSource(FormData([("video", "not-a-file")])))

    assert excinfo.value.code == "missing_upload_field"


def test_malformed_multipart_is_bad_request(settings, metadata):
    pipeline = _pipeline(settings, metadata)

    with pytest.raises(BadRequestError) as excinfo:
        _run(pipeline, FormSource(error=MultiPartException("Missing boundary in multipart.")))

    assert excinfo.value.code == "malformed_multipart"


def test_empty_upload_is_bad_request(settings, metadata, staging_dir):
    pipeline = _pipeline(settings, metadata)

    with pytest.raises(BadRequestError) as excinfo:
        _run(pipeline, _form(_upload(b"")))

    assert excinfo.value.code == "empty_upload"
    assert list(staging_dir.iterdir()) == []


def test_transcode_failure_aborts_without_upload(settings, metadata, staging_dir):
    store = RecordingObjectStore()
    pipeline = _pipeline(settings, metadata, transcoder=FailingTranscoder(), object_store=store)

    with pytest.raises(InternalError) as excinfo:
        _run(pipeline, _form())

    assert excinfo.value.code == "transcode_failed"
    assert excinfo.value.stage == IngestStage.transcoded
    assert store.puts == []
    assert metadata.updates == []
    # the partial .processing file is removed too
    assert list(staging_dir.iterdir()) == []


def test_upload_failure_leaves_record_untouched(settings, metadata, video, staging_dir):
    pipeline = _pipeline(settings, metadata, object_store=FailingObjectStore())

    with pytest.raises(InternalError) as excinfo:
        _run(pipeline, _form())

    assert excinfo.value.code == "upload_failed"
    assert video.video_url is None
    assert metadata.updates == []
    assert list(staging_dir.iterdir()) == []


def test_metadata_update_failure_is_internal_after_upload(settings, video, staging_dir):
    store = RecordingObjectStore()
    pipeline = _pipeline(settings, InMemoryVideoStore(video, fail_updates=True), object_store=store)

    with pytest.raises(InternalError) as excinfo:
        _run(pipeline, _form())

    assert excinfo.value.code == "metadata_update_failed"
    assert excinfo.value.stage == IngestStage.finalized
    assert len(store.puts) == 1
    assert list(staging_dir.iterdir()) == []


def test_cancellation_mid_transcode_cleans_up(settings, metadata, staging_dir):
    store = RecordingObjectStore()

    async def scenario() -> None:
        transcoder = FakeTranscoder(block=asyncio.Event())
        pipeline = _pipeline(settings, metadata, transcoder=transcoder, object_store=store)
        task = asyncio.create_task(
            pipeline.run(video_id=VIDEO_ID, user_id=OWNER, load_form=_form())
        )
        await asyncio.wait_for(transcoder.started.wait(), timeout=5)
        assert len(list(staging_dir.iterdir())) == 2
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert store.puts == []
    assert metadata.updates == []
    assert list(staging_dir.iterdir()) == []


def test_transcodes_are_bounded_by_slots(settings):
    async def scenario() -> int:
        videos = [Video(id=f"{VIDEO_ID[:-1]}{n}", user_id=OWNER, title=f"v{n}") for n in range(3)]
        metadata = InMemoryVideoStore(*videos)
        release = asyncio.Event()
        transcoder = FakeTranscoder(block=release)
        pipeline = VideoIngestPipeline(
            settings,
            metadata=metadata,
            object_store=RecordingObjectStore(),
            probe=FakeProbe(),
            transcoder=transcoder,
            transcode_slots=asyncio.Semaphore(1),
        )
        tasks = [
            asyncio.create_task(pipeline.run(video_id=item.id, user_id=OWNER, load_form=_form()))
            for item in videos
        ]
        await asyncio.wait_for(transcoder.started.wait(), timeout=5)
        await asyncio.sleep(0.05)
        in_flight = len(transcoder.calls)
        release.set()
        results = await asyncio.gather(*tasks)
        assert len(results) == 3
        return in_flight

    assert asyncio.run(scenario()) == 1
