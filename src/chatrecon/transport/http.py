from collections.abc import AsyncIterator, Mapping
from contextlib import AsyncExitStack
from typing import override

import httpx

from chatrecon.config import DEFAULT_TIMEOUT
from chatrecon.exceptions import TransportFailure
from chatrecon.log import get_logger
from chatrecon.transport.base import ChatTransport
from chatrecon.wire import DONE_SENTINEL, ChatRequest, StreamDelta, encode_request, parse_chunk

logger = get_logger(__name__)

EMPTY_HEADERS: Mapping[str, str] = {}


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """
    Yields the data payload of each server-sent event.

    Multi-line data fields are joined with newlines; comments and other fields are skipped.
    """
    buffer: list[str] = []
    async for line in lines:
        if not line:
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue
        if line.startswith(":"):
            continue
        field_name, _, value = line.partition(":")
        if field_name != "data":
            continue
        buffer.append(value.removeprefix(" "))
    if buffer:
        yield "\n".join(buffer)


class HttpChatTransport(ChatTransport):
    """
    POSTs chat requests as JSON and decodes the server-sent event response.

    An injected client stays the caller's to close; without one, each request uses its own.
    """

    api_url: str
    timeout: float
    headers: Mapping[str, str]

    def __init__(
        self,
        api_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Mapping[str, str] = EMPTY_HEADERS,
    ) -> None:
        self.api_url = api_url
        self.timeout = timeout
        self.headers = headers
        self._client = client

    @override
    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamDelta]:
        headers = {"content-type": "application/json", "accept": "text/event-stream", **self.headers}
        logger.debug("sending chat request", url=self.api_url, trigger=request.trigger, chat_id=request.chat_id)

        try:
            async with AsyncExitStack() as stack:
                client = self._client or await stack.enter_async_context(httpx.AsyncClient(timeout=self.timeout))
                response = await stack.enter_async_context(
                    client.stream("POST", self.api_url, content=encode_request(request), headers=headers)
                )
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportFailure(f"Chat endpoint returned HTTP {response.status_code}: {body[:200]}")

                async for data in iter_sse_data(response.aiter_lines()):
                    if data == DONE_SENTINEL:
                        return
                    delta = parse_chunk(data)
                    if delta is not None:
                        yield delta
        except httpx.HTTPError as e:
            raise TransportFailure(f"Chat request failed: {e}") from e
