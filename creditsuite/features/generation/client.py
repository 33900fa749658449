"""
Remote generation RPC.

The AI backend is opaque: one request in, `{text, sources?}` out. Anything else
(non-2xx, transport error, unparseable or text-less body) is a generation
failure, and failures are never charged.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from creditsuite.core.config import settings
from creditsuite.core.errors import GenerationFailureError, GenerationTimeoutError

logger = logging.getLogger("creditsuite.generation")


@dataclass(frozen=True)
class GenerationSource:
    uri: str
    title: str = ""


@dataclass(frozen=True)
class GenerationResult:
    text: str
    sources: List[GenerationSource] = field(default_factory=list)
    audio_base64: Optional[str] = None


class GenerationClient(Protocol):
    async def invoke(
        self,
        prompt: str,
        service_key: str,
        user_id: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        ...


def parse_generation_payload(payload: Any) -> GenerationResult:
    if not isinstance(payload, dict):
        raise GenerationFailureError("Generation backend returned a malformed payload")
    if payload.get("error"):
        raise GenerationFailureError(str(payload["error"])[:500])
    text = payload.get("text")
    if not isinstance(text, str):
        raise GenerationFailureError("Generation backend returned no text")

    sources = []
    for item in payload.get("sources") or []:
        if isinstance(item, dict) and item.get("uri"):
            sources.append(GenerationSource(uri=str(item["uri"]), title=str(item.get("title") or "")))
    audio = payload.get("audioBase64")
    return GenerationResult(text=text, sources=sources, audio_base64=audio if isinstance(audio, str) else None)


class HttpGenerationClient:
    """Calls the generation function over HTTP with a bearer API key."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.url = url or settings.GENERATION_URL
        self.api_key = api_key if api_key is not None else settings.GENERATION_API_KEY
        self.timeout_seconds = timeout_seconds or settings.GENERATION_TIMEOUT_SECONDS

    async def invoke(
        self,
        prompt: str,
        service_key: str,
        user_id: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        if not self.url:
            raise GenerationFailureError("Generation backend is not configured", status_code=503)

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = {
            "prompt": prompt,
            "mode": service_key,
            "userId": user_id,
            "options": options or {},
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(self.url, json=body, headers=headers)
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as exc:
            raise GenerationTimeoutError("Generation backend timed out") from exc
        except httpx.HTTPStatusError as exc:
            logger.warning(
                f"[generation] backend returned {exc.response.status_code}",
                extra={"service_key": service_key, "error_code": "upstream_status"},
            )
            raise GenerationFailureError(f"Generation backend error ({exc.response.status_code})") from exc
        except httpx.HTTPError as exc:
            raise GenerationFailureError(f"Generation backend unreachable: {exc}") from exc
        except ValueError as exc:
            raise GenerationFailureError("Generation backend returned invalid JSON") from exc

        return parse_generation_payload(payload)
