from __future__ import annotations

from starlette.requests import Request
from starlette.types import Message

from tubely.services.errors import IngestStage, PayloadTooLargeError


def limit_request_body(request: Request, max_bytes: int) -> Request:
    """Return a view of ``request`` whose body stream stops past ``max_bytes``.

    Bytes are counted as ASGI messages arrive, so requests without a
    Content-Length (chunked transfer) are cut off before the multipart
    parser spools the rest of the body.
    """
    received = 0
    upstream = request.receive

    async def receive() -> Message:
        nonlocal received
        message = await upstream()
        if message["type"] == "http.request":
            received += len(message.get("body", b""))
            if received > max_bytes:
                raise PayloadTooLargeError("upload_too_large", stage=IngestStage.buffered)
        return message

    return Request(request.scope, receive=receive)


__all__ = ["limit_request_body"]
