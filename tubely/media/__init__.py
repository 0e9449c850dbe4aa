"""Media helpers: probing, aspect classification, fast-start remux and key derivation."""

from tubely.media.aspect import AspectCategory, classify_aspect_ratio
from tubely.media.faststart import FastStartTranscoder, FFmpegFastStartTranscoder, TranscodeFailure, processing_path_for
from tubely.media.keys import build_object_key, object_key_extension
from tubely.media.probe import FFprobeMediaProbe, MediaProbe, ProbeFailure, StreamGeometry, parse_stream_geometry
from tubely.media.staging import StagedUpload, staged_upload

__all__ = [
    "AspectCategory",
    "classify_aspect_ratio",
    "FastStartTranscoder",
    "FFmpegFastStartTranscoder",
    "TranscodeFailure",
    "processing_path_for",
    "build_object_key",
    "object_key_extension",
    "FFprobeMediaProbe",
    "MediaProbe",
    "ProbeFailure",
    "StreamGeometry",
    "parse_stream_geometry",
    "StagedUpload",
    "staged_upload",
]
