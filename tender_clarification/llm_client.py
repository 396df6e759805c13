"""
llm_client.py — Async client for the Anthropic Messages endpoint.

Sends the fixed envelope {model, max_tokens, messages} and returns the
reply text. It knows nothing about prompts or JSON payloads; that's the
parser's job.

Failure mapping:
  - can't connect / timed out / connection dropped  -> TransportError
  - redirect loop / undecodable body                -> TransportError
  - any non-2xx status                              -> UpstreamError(status, message)
  - 2xx with a body that isn't JSON                 -> UpstreamError
  - JSON whose content blocks aren't text           -> MalformedResponseError

No retries here. Whether to retry is the orchestrator's decision.

The API key only ever goes into the request header. It's excluded from
repr() and never appears in log lines or exception messages.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from tender_clarification.config import DEFAULT_ANTHROPIC_VERSION, LLMConfig, config
from tender_clarification.errors import MalformedResponseError, TransportError, UpstreamError

logger = logging.getLogger(__name__)


class CompletionClient:
    """
    Usage:
        async with CompletionClient() as client:
            text = await client.complete(model, 4000, [{"role": "user", "content": prompt}])
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[LLMConfig] = None,
    ):
        settings = settings or config.llm
        self.endpoint = endpoint or settings.endpoint
        self._api_key = settings.api_key if api_key is None else api_key
        self.api_version = api_version or settings.api_version or DEFAULT_ANTHROPIC_VERSION
        self.timeout = timeout or settings.timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def __repr__(self) -> str:
        return f"CompletionClient(endpoint={self.endpoint!r}, api_version={self.api_version!r})"

    async def __aenter__(self) -> "CompletionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        headers = {
            "content-type": "application/json",
            "anthropic-version": self.api_version,
        }
        # Talking to our own proxy there's no key on this side; the proxy adds it.
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    async def complete(
        self,
        model: str,
        max_tokens: int,
        messages: List[Dict[str, str]],
    ) -> str:
        """Send one request and return the concatenated text blocks of the reply."""
        payload = {"model": model, "max_tokens": max_tokens, "messages": messages}

        # httpx timeouts are per phase; wait_for caps the whole request.
        try:
            response = await asyncio.wait_for(
                self._get_client().post(
                    self.endpoint, json=payload, headers=self._headers()
                ),
                self.timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            logger.error("LLM request timed out after %.0fs", self.timeout)
            raise TransportError(
                f"LLM endpoint did not respond within {self.timeout:.0f}s"
            ) from exc
        except httpx.TransportError as exc:
            logger.error("LLM endpoint unreachable: %s", type(exc).__name__)
            raise TransportError(f"Could not reach LLM endpoint: {exc}") from exc
        except httpx.RequestError as exc:
            # Redirect loops, undecodable bodies and the like.
            logger.error("LLM request failed: %s", type(exc).__name__)
            raise TransportError(f"LLM request failed: {exc}") from exc

        data = _json_or_none(response)

        if not response.is_success:
            message = _error_message(data, response)
            logger.error("LLM endpoint returned HTTP %d: %s", response.status_code, message)
            raise UpstreamError(response.status_code, message)

        if not isinstance(data, dict):
            raise UpstreamError(
                response.status_code, "LLM endpoint returned a non-JSON body"
            )

        text = _reply_text(data)
        usage = data.get("usage") or {}
        logger.info(
            "LLM replied with %d chars (in=%s, out=%s tokens, stop=%s)",
            len(text), usage.get("input_tokens", "?"),
            usage.get("output_tokens", "?"), data.get("stop_reason"),
        )
        return text


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _error_message(data: Any, response: httpx.Response) -> str:
    """Pull the most useful message out of an error body."""
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if data.get("message"):
            return str(data["message"])
    raw = response.text.strip()
    if raw:
        return raw[:500]
    return f"HTTP {response.status_code}"


def _reply_text(data: Dict[str, Any]) -> str:
    blocks = data.get("content") or []
    if not isinstance(blocks, list):
        raise MalformedResponseError("LLM reply content is not a list of blocks")

    parts: List[str] = []
    for block in blocks:
        if not isinstance(block, dict) or block.get("type", "text") != "text":
            continue
        text = block.get("text") or ""
        if not isinstance(text, str):
            raise MalformedResponseError("LLM reply text block is not a string")
        parts.append(text)
    return "".join(parts)
