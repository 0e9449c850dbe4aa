from __future__ import annotations

import enum

from fastapi import status


class IngestStage(str, enum.Enum):
    received = "received"
    authorized = "authorized"
    buffered = "buffered"
    probed = "probed"
    transcoded = "transcoded"
    uploaded = "uploaded"
    finalized = "finalized"


class IngestError(Exception):
    """A request-terminating failure, tagged with the stage it could not reach."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, code: str, *, stage: IngestStage, message: str | None = None):
        super().__init__(message or code)
        self.code = code
        self.stage = stage


class BadRequestError(IngestError):
    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedError(IngestError):
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(IngestError):
    status_code = status.HTTP_404_NOT_FOUND


class PayloadTooLargeError(IngestError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class UnsupportedMediaTypeError(IngestError):
    status_code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE


class InternalError(IngestError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


__all__ = [
    "IngestStage",
    "IngestError",
    "BadRequestError",
    "UnauthorizedError",
    "NotFoundError",
    "PayloadTooLargeError",
    "UnsupportedMediaTypeError",
    "InternalError",
]
