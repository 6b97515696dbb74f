"""HTTP binding of the session service (aiohttp.web)."""

import asyncio
import logging
from typing import Optional, Tuple

from aiohttp import hdrs, web
from pydantic import ValidationError as PydanticValidationError

from ..errors import (
    CapacityExceeded,
    ChunkscribeError,
    ChunkTooLarge,
    EntitlementDenied,
    SessionClosed,
    SessionNotFound,
    StorageFailure,
    TranscriptionUnavailable,
    UnsupportedEncoding,
    ValidationError,
)
from ..models.api import (
    AppendResponse,
    CancelResponse,
    ErrorResponse,
    FinalizeResponse,
    PartialResponse,
    StartSessionRequest,
    StartSessionResponse,
)
from .service import TranscriptionSessionService

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("service", TranscriptionSessionService)
OWNER_HEADER_KEY = web.AppKey("owner_header", str)

UPLOAD_FIELDS = ("file", "audio")

# most specific class first
ERROR_STATUS = (
    (UnsupportedEncoding, 415),
    (ChunkTooLarge, 413),
    (ValidationError, 400),
    (CapacityExceeded, 409),
    (SessionClosed, 409),
    (EntitlementDenied, 402),
    (SessionNotFound, 404),
    (StorageFailure, 503),
    (TranscriptionUnavailable, 503),
)


def status_for(error: ChunkscribeError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(error, cls):
            return status
    return 500


def error_response(status: int, code: str, message: str, retryable: bool = False) -> web.Response:
    body = ErrorResponse(error=code, message=message, retryable=retryable)
    return web.json_response(body.model_dump(), status=status)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except ChunkscribeError as e:
        status = status_for(e)
        log = logger.error if status >= 500 else logger.info
        log(f"{request.method} {request.path} -> {status} {e.code}: {e.message}")
        return error_response(status, e.code, e.message, e.retryable)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unhandled error for {request.method} {request.path}: {e}", exc_info=True)
        return error_response(500, "internal_error", "Internal server error")


def _service(request: web.Request) -> TranscriptionSessionService:
    return request.app[SERVICE_KEY]


def _owner(request: web.Request) -> str:
    owner_id = request.headers.get(request.app[OWNER_HEADER_KEY], "").strip()
    if not owner_id:
        raise web.HTTPUnauthorized(
            text=ErrorResponse(error="unauthorized",
                               message="Missing owner header").model_dump_json(),
            content_type="application/json")
    return owner_id


async def _read_upload(request: web.Request) -> Tuple[bytes, Optional[str]]:
    """Return the uploaded bytes and their declared content type."""
    if request.content_type.startswith("multipart/"):
        reader = await request.multipart()
        async for field in reader:
            if field.name in UPLOAD_FIELDS:
                data = await field.read()
                return bytes(data), field.headers.get(hdrs.CONTENT_TYPE)
        raise ValidationError("Multipart upload has no 'file' or 'audio' field")
    return await request.read(), request.headers.get(hdrs.CONTENT_TYPE)


async def healthz(request: web.Request) -> web.Response:
    service = _service(request)
    return web.json_response({
        "status": "ok",
        "backend": service.backend.service_name,
        "live_sessions": service.store.live_session_count(),
    })


async def start_session(request: web.Request) -> web.Response:
    owner_id = _owner(request)
    payload = StartSessionRequest()
    if request.can_read_body:
        try:
            payload = StartSessionRequest.model_validate(await request.json())
        except (ValueError, PydanticValidationError) as e:
            raise ValidationError(f"Invalid start request: {e}") from e

    session_id = await asyncio.to_thread(_service(request).start_session, owner_id, payload.session_id)
    return web.json_response(StartSessionResponse(session_id=session_id).model_dump(), status=201)


async def append_part(request: web.Request) -> web.Response:
    owner_id = _owner(request)
    session_id = request.match_info["session_id"]
    data, content_type = await _read_upload(request)
    if not content_type:
        raise UnsupportedEncoding("Missing content type")

    result = await asyncio.to_thread(_service(request).append, owner_id, session_id, data, content_type)
    body = AppendResponse(accepted_index=result.index, parts=result.part_count)
    return web.json_response(body.model_dump())


async def partial(request: web.Request) -> web.Response:
    owner_id = _owner(request)
    session_id = request.match_info["session_id"]
    raw_n = request.query.get("n")
    try:
        n = int(raw_n) if raw_n is not None else None
    except ValueError:
        raise ValidationError(f"Invalid n: {raw_n!r}") from None

    text = await asyncio.to_thread(_service(request).partial, owner_id, session_id, n)
    return web.json_response(PartialResponse(partial=text).model_dump())


async def finalize(request: web.Request) -> web.Response:
    owner_id = _owner(request)
    session_id = request.match_info["session_id"]
    future = _service(request).submit_finalize(owner_id, session_id)
    result = await asyncio.wrap_future(future)
    body = FinalizeResponse(session_id=result.session_id,
                            transcript=result.transcript,
                            parts=result.part_count,
                            failed_parts=result.failed_parts)
    return web.json_response(body.model_dump())


async def cancel(request: web.Request) -> web.Response:
    owner_id = _owner(request)
    session_id = request.match_info["session_id"]
    ok = await asyncio.to_thread(_service(request).cancel, owner_id, session_id)
    return web.json_response(CancelResponse(ok=ok).model_dump())


def create_app(service: TranscriptionSessionService,
               owner_header: str = "X-Owner-Id") -> web.Application:
    """Build the aiohttp application serving ``service``."""
    # multipart framing needs some room above the part limit
    max_size = service.store.max_part_bytes + 1024 * 1024
    app = web.Application(middlewares=[error_middleware], client_max_size=max_size)
    app[SERVICE_KEY] = service
    app[OWNER_HEADER_KEY] = owner_header

    app.router.add_get("/healthz", healthz)
    app.router.add_post("/sessions", start_session)
    app.router.add_post("/sessions/{session_id}/parts", append_part)
    app.router.add_get("/sessions/{session_id}/partial", partial)
    app.router.add_post("/sessions/{session_id}/finalize", finalize)
    app.router.add_delete("/sessions/{session_id}", cancel)

    async def on_cleanup(app: web.Application) -> None:
        await asyncio.to_thread(app[SERVICE_KEY].shutdown)

    app.on_cleanup.append(on_cleanup)
    return app
