"""WebFetch tool."""

import asyncio
import logging
from typing import Optional

import httpx

from crewgate.constants import DEFAULT_FETCH_BYTES, DEFAULT_FETCH_TIMEOUT_MS
from crewgate.tools.base import ToolContext, ToolExecutionResult, error, get_int, get_string

logger = logging.getLogger(__name__)


class WebFetch:
    """Fetches a URL and returns its status line and (truncated) body."""

    def __init__(
        self,
        timeout_ms: int = DEFAULT_FETCH_TIMEOUT_MS,
        max_bytes: int = DEFAULT_FETCH_BYTES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize WebFetch.

        Args:
            timeout_ms: Default request timeout
            max_bytes: Default body limit in bytes; the rest is never downloaded
            transport: Optional httpx transport, used to fake the network in tests
        """
        self.timeout_ms = timeout_ms
        self.max_bytes = max_bytes
        self.transport = transport

    async def fetch(self, params: dict, context: ToolContext) -> ToolExecutionResult:
        url = get_string(params.get("url")) or get_string(params.get("href"))
        if not url:
            return error("WebFetch tool requires url.")

        method = (get_string(params.get("method")) or "GET").upper()
        headers = params.get("headers") if isinstance(params.get("headers"), dict) else None
        body = get_string(params.get("body"))
        max_bytes = get_int(params, "max_bytes", "maxBytes", default=self.max_bytes)
        timeout_ms = get_int(params, "timeout_ms", "timeoutMs", default=self.timeout_ms)

        async def send() -> tuple[httpx.Response, bytes]:
            async with httpx.AsyncClient(
                transport=self.transport, follow_redirects=True
            ) as client:
                async with client.stream(method, url, headers=headers, content=body) as response:
                    data = bytearray()
                    async for chunk in response.aiter_bytes():
                        data.extend(chunk)
                        if len(data) >= max_bytes:
                            break
                    return response, bytes(data[:max_bytes])

        try:
            response, data = await context.cancel.run(send(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            return error(f"WebFetch failed: request timed out after {timeout_ms}ms")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return error(f"WebFetch failed: {e}")

        logger.debug("WebFetch %s %s -> %s", method, url, response.status_code)
        # A multi-byte character cut at the limit is dropped
        text = data.decode(response.encoding or "utf-8", errors="ignore")
        return ToolExecutionResult(
            content=f"Status: {response.status_code} {response.reason_phrase}\n\n{text}"
        )
