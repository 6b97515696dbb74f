"""Async clients of the session API: over HTTP, or against an in-process service."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp

from ..errors import ChunkscribeError, RequestTimeout, error_from_code
from ..models.api import (
    AppendResponse,
    CancelResponse,
    ErrorResponse,
    FinalizeResponse,
    PartialResponse,
    StartSessionResponse,
)
from ..models.audio import AudioChunk
from ..models.session import AppendResult, FinalizeResult

logger = logging.getLogger(__name__)

# 180 parts at 60s each
DEFAULT_FINALIZE_TIMEOUT = 180 * 60.0


class SessionApi(ABC):
    """Client-facing surface of the session service."""

    @abstractmethod
    async def start_session(self, session_id: Optional[str] = None) -> str:
        """Start a session and return its id."""

    @abstractmethod
    async def append(self, session_id: str, chunk: AudioChunk) -> AppendResult:
        """Upload one chunk; returns the server-assigned index."""

    @abstractmethod
    async def partial(self, session_id: str, n: int = 3) -> str:
        """Preview the transcription of the most recent parts."""

    @abstractmethod
    async def finalize(self, session_id: str) -> FinalizeResult:
        """Assemble and return the transcript, closing the session."""

    @abstractmethod
    async def cancel(self, session_id: str) -> bool:
        """Abort the session and drop its parts."""


class HttpSessionApi(SessionApi):
    """Talks to the aiohttp server. One ClientSession per call so every event
    loop (worker thread or ``asyncio.run``) can use the same instance.

    ``timeout`` bounds every request except finalize, which transcribes the
    whole session before answering and gets ``finalize_timeout`` instead.
    """

    def __init__(self,
                 base_url: str,
                 owner_id: str,
                 timeout: float = 60.0,
                 owner_header: str = "X-Owner-Id",
                 finalize_timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.owner_id = owner_id
        self.timeout = timeout
        self.finalize_timeout = finalize_timeout if finalize_timeout is not None else DEFAULT_FINALIZE_TIMEOUT
        self.owner_header = owner_header
        logger.info(f"HttpSessionApi initialized for {self.base_url} as {owner_id}")

    @classmethod
    def from_config(cls, config) -> "HttpSessionApi":
        finalize_timeout = config.get('client.finalize_timeout_seconds')
        if finalize_timeout is None:
            finalize_timeout = (int(config.get('server.max_parts', 180))
                                * float(config.get('transcription.request_timeout_seconds', 60.0)))
        return cls(
            base_url=config.get('client.base_url', 'http://127.0.0.1:8080'),
            owner_id=config.get('client.owner_id', 'local'),
            timeout=float(config.get('client.request_timeout_seconds', 60.0)),
            owner_header=config.get('server.owner_header', 'X-Owner-Id'),
            finalize_timeout=float(finalize_timeout),
        )

    async def _request(self, method: str, path: str, timeout: Optional[float] = None,
                       **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = kwargs.pop("headers", {})
        headers[self.owner_header] = self.owner_id
        total = timeout if timeout is not None else self.timeout
        client_timeout = aiohttp.ClientTimeout(total=total)
        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.request(method, url, headers=headers, **kwargs) as response:
                    if response.status < 400:
                        return await response.json()
                    raise await self._error_from_response(response)
        except asyncio.TimeoutError as e:
            # checked first: ServerTimeoutError is also a ClientConnectionError
            logger.error(f"{method} {url} timed out after {total}s")
            raise RequestTimeout(f"No answer from session server within {total}s") from e
        except aiohttp.ClientConnectionError as e:
            logger.error(f"{method} {url} failed: {e}")
            raise ChunkscribeError(f"Could not reach session server: {e}") from e

    async def _error_from_response(self, response: aiohttp.ClientResponse) -> ChunkscribeError:
        body = await response.text()
        try:
            error = ErrorResponse.model_validate_json(body)
        except ValueError:
            return ChunkscribeError(f"HTTP {response.status}: {body[:200]}")
        logger.debug(f"Server error {response.status}: {error.error} {error.message}")
        return error_from_code(error.error, error.message)

    async def start_session(self, session_id: Optional[str] = None) -> str:
        payload = {"session_id": session_id} if session_id else {}
        data = await self._request("POST", "/sessions", json=payload)
        return StartSessionResponse.model_validate(data).session_id

    async def append(self, session_id: str, chunk: AudioChunk) -> AppendResult:
        data = await self._request(
            "POST", f"/sessions/{session_id}/parts",
            data=chunk.data,
            headers={"Content-Type": chunk.encoding.content_type},
        )
        response = AppendResponse.model_validate(data)
        return AppendResult(index=response.accepted_index, part_count=response.parts)

    async def partial(self, session_id: str, n: int = 3) -> str:
        data = await self._request("GET", f"/sessions/{session_id}/partial", params={"n": str(n)})
        return PartialResponse.model_validate(data).partial

    async def finalize(self, session_id: str) -> FinalizeResult:
        data = await self._request("POST", f"/sessions/{session_id}/finalize",
                                   timeout=self.finalize_timeout)
        response = FinalizeResponse.model_validate(data)
        return FinalizeResult(session_id=response.session_id,
                              transcript=response.transcript,
                              part_count=response.parts,
                              failed_parts=list(response.failed_parts))

    async def cancel(self, session_id: str) -> bool:
        data = await self._request("DELETE", f"/sessions/{session_id}")
        return CancelResponse.model_validate(data).ok


class LocalSessionApi(SessionApi):
    """Runs the blocking service calls in a thread so callers stay async."""

    def __init__(self, service, owner_id: str):
        self.service = service
        self.owner_id = owner_id

    async def start_session(self, session_id: Optional[str] = None) -> str:
        return await asyncio.to_thread(self.service.start_session, self.owner_id, session_id)

    async def append(self, session_id: str, chunk: AudioChunk) -> AppendResult:
        return await asyncio.to_thread(self.service.append, self.owner_id, session_id,
                                       chunk.data, chunk.encoding)

    async def partial(self, session_id: str, n: int = 3) -> str:
        return await asyncio.to_thread(self.service.partial, self.owner_id, session_id, n)

    async def finalize(self, session_id: str) -> FinalizeResult:
        future = self.service.submit_finalize(self.owner_id, session_id)
        return await asyncio.wrap_future(future)

    async def cancel(self, session_id: str) -> bool:
        return await asyncio.to_thread(self.service.cancel, self.owner_id, session_id)
