import zlib

from starlette.datastructures import Headers
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from bonusmart.core.exceptions import BadRequestError, error_response
from bonusmart.core.logging import get_logger

log = get_logger(__name__)

DEFAULT_MAX_BODY = 1024 * 1024


def inflate(data: bytes, max_size: int) -> bytes:
    """Decode one gzip member, refusing output larger than max_size bytes."""
    decoder = zlib.decompressobj(16 + zlib.MAX_WBITS)
    body = decoder.decompress(data, max_size + 1)
    if len(body) > max_size:
        raise ValueError(f"inflated body exceeds {max_size} bytes")
    if not decoder.eof:
        raise ValueError("truncated gzip stream")
    return body


class GzipRequestMiddleware:
    """Inflate ``Content-Encoding: gzip`` request bodies before routing."""

    def __init__(self, app: ASGIApp, max_size: int = DEFAULT_MAX_BODY) -> None:
        self.app = app
        self.max_size = max_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        encoding = Headers(scope=scope).get("content-encoding", "").lower()
        if "gzip" not in encoding:
            await self.app(scope, receive, send)
            return

        chunks = []
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunks.append(message.get("body", b""))
            more_body = message.get("more_body", False)

        try:
            body = inflate(b"".join(chunks), self.max_size)
        except (ValueError, zlib.error) as e:
            log.info("gzip_body_invalid", error=str(e))
            response = error_response(Request(scope), BadRequestError("Could not decompress request body"))
            await response(scope, receive, send)
            return

        headers = [
            (k, v) for k, v in scope["headers"]
            if k not in (b"content-encoding", b"content-length")
        ]
        headers.append((b"content-length", str(len(body)).encode("latin-1")))
        scope = dict(scope, headers=headers)

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)
