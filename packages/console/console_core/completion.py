"""
Streaming client for per-organization completion endpoints.

Posts the transcript with ``stream: true`` and yields incremental text:
- Records are read line by line, so a record split across network chunks is
  reassembled before parsing
- ``data: [DONE]`` ends the stream
- Every other ``data:`` record is JSON carrying ``choices[0].delta.content``
- Malformed records are logged and skipped without aborting the stream
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx
import structlog

from saas_console_shared.schemas.chat import AIEndpointConfig

from .errors import MalformedStreamFragment, TransportError
from .metrics import MetricsCollector

log = structlog.get_logger()

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class StreamRecord:
    """One parsed event-stream line."""
    text: str | None = None
    done: bool = False


_EMPTY = StreamRecord()


def parse_stream_record(line: str) -> StreamRecord:
    """Parse one event-stream line.

    Lines that carry no text (comments, other fields, blank separators,
    role-only deltas) give an empty record. Raises ``MalformedStreamFragment``
    for unparseable payloads.
    """
    if not line.startswith("data:"):
        return _EMPTY
    data = line[5:].strip()
    if not data:
        return _EMPTY
    if data == DONE_SENTINEL:
        return StreamRecord(done=True)
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        raise MalformedStreamFragment(
            "Stream record is not valid JSON", details={"data": data[:200]}
        ) from exc
    try:
        delta = payload["choices"][0].get("delta") or {}
    except (KeyError, IndexError, TypeError, AttributeError) as exc:
        raise MalformedStreamFragment(
            "Stream record has no choices", details={"data": data[:200]}
        ) from exc
    if not isinstance(delta, dict):
        raise MalformedStreamFragment(
            "Stream record delta is not an object", details={"data": data[:200]}
        )
    content = delta.get("content")
    if isinstance(content, str) and content:
        return StreamRecord(text=content)
    return _EMPTY


class CompletionClient:
    """One HTTP client shared by all turns; the endpoint comes from each call's config."""

    def __init__(
        self,
        read_timeout: float | None = None,
        connect_timeout: float = 10.0,
        verify_tls: bool = True,
        metrics: MetricsCollector | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._read_timeout = read_timeout
        self._connect_timeout = connect_timeout
        self._verify_tls = verify_tls
        self._metrics = metrics
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._read_timeout, connect=self._connect_timeout),
            verify=self._verify_tls,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def build_request_body(
        config: AIEndpointConfig, messages: list[dict[str, str]]
    ) -> dict[str, Any]:
        return {
            "model": config.model,
            "messages": messages,
            "max_tokens": config.max_output_tokens,
            "stream": True,
        }

    async def stream(
        self,
        config: AIEndpointConfig,
        messages: list[dict[str, str]],
    ) -> AsyncIterator[str]:
        """Yield text deltas until the end marker or the end of the body.

        Raises ``TransportError`` on connection failures and non-success
        responses. Cancelling the consuming task closes the response.
        """
        assert self._client
        headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Accept": "text/event-stream",
        }
        url = str(config.endpoint_url)
        body = self.build_request_body(config, messages)

        try:
            async with self._client.stream("POST", url, json=body, headers=headers) as response:
                if not response.is_success:
                    await response.aread()
                    log.error(
                        "completion.request_failed",
                        status=response.status_code,
                        model=config.model,
                    )
                    raise TransportError(
                        f"API request failed: {response.status_code} {response.reason_phrase}",
                        details={"status": response.status_code},
                    )

                log.info("completion.stream_opened", model=config.model, messages=len(messages))
                async for line in response.aiter_lines():
                    try:
                        record = parse_stream_record(line.rstrip("\r\n"))
                    except MalformedStreamFragment as exc:
                        if self._metrics:
                            self._metrics.inc("stream_fragments_skipped_total")
                        log.warning("completion.fragment_skipped", **exc.details)
                        continue
                    if record.done:
                        log.debug("completion.stream_done")
                        return
                    if record.text is None:
                        continue
                    if self._metrics:
                        self._metrics.inc("stream_deltas_total")
                    yield record.text
        except httpx.HTTPError as exc:
            log.error("completion.transport_error", error=str(exc))
            raise TransportError(
                f"Connection to the AI endpoint failed: {exc}",
                details={"error": type(exc).__name__},
            ) from exc
