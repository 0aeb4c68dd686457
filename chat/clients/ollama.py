from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import httpx
from pydantic import ValidationError

from chat.errors import BackendProtocolError, BackendUnavailableError
from chat.models import ChatChunk, PartialReply, Turn
from config.settings import Settings, get_settings


logger = logging.getLogger("chatrelay.ollama")

CHAT_PATH = "/api/chat"


def build_payload(model: str, transcript: Sequence[Turn]) -> Dict[str, Any]:
    return {
        "model": model,
        "messages": [turn.model_dump() for turn in transcript],
        "stream": True,
    }


def decode_chunk(line: str) -> ChatChunk:
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise BackendProtocolError(f"Malformed stream line: {exc}") from exc
    if not isinstance(data, dict):
        raise BackendProtocolError(f"Expected a JSON object, got {type(data).__name__}")
    if data.get("error"):
        raise BackendProtocolError(f"Backend reported error: {data['error']}")
    try:
        return ChatChunk.model_validate(data)
    except ValidationError as exc:
        raise BackendProtocolError(f"Unexpected chunk shape: {exc}") from exc


class OllamaChatClient:
    """Streams chat completions from an Ollama-compatible ``/api/chat``."""

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 120.0,
        max_retries: int = 0,
        retry_backoff: float = 0.5,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_retries = max(0, max_retries)
        self.retry_backoff = retry_backoff
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "OllamaChatClient":
        settings = settings or get_settings()
        return cls(
            base_url=settings.ollama_base_url,
            model=settings.ollama_model,
            timeout=settings.ollama_timeout,
            max_retries=settings.ollama_max_retries,
            retry_backoff=settings.ollama_retry_backoff,
        )

    @asynccontextmanager
    async def _open(self, payload: Dict[str, Any]) -> AsyncIterator[httpx.Response]:
        url = f"{self.base_url}{CHAT_PATH}"
        attempt = 0
        while True:
            request = self._http.build_request("POST", url, json=payload)
            try:
                response = await self._http.send(request, stream=True)
            except httpx.TransportError as exc:
                if attempt < self.max_retries:
                    delay = self.retry_backoff * (2 ** attempt)
                    attempt += 1
                    logger.warning(
                        "Backend connect failed (%s); retry %s/%s in %.2fs",
                        exc, attempt, self.max_retries, delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise BackendUnavailableError(f"Chat backend unreachable: {exc}") from exc
            break

        try:
            if response.status_code >= 400:
                await response.aread()
                raise BackendUnavailableError(
                    f"Chat backend returned HTTP {response.status_code}: {response.text[:200]}"
                )
            yield response
        finally:
            await response.aclose()

    async def stream(self, transcript: Sequence[Turn]) -> AsyncIterator[PartialReply]:
        """Yield reply fragments as the backend produces them.

        Ends at end of body or at the first chunk marked ``done``.
        """
        payload = build_payload(self.model, transcript)
        delivered = 0
        async with self._open(payload) as response:
            try:
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    chunk = decode_chunk(line)
                    content = chunk.message.content if chunk.message else ""
                    delivered += 1
                    yield PartialReply(content=content, done=chunk.done)
                    if chunk.done:
                        return
            except httpx.TransportError as exc:
                if not delivered:
                    raise BackendUnavailableError(f"Chat backend dropped the connection: {exc}") from exc
                raise BackendProtocolError(f"Stream interrupted after {delivered} chunks: {exc}") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
