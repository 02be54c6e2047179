from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatrecon.wire import ChatRequest, StreamDelta


class ChatTransport(ABC):
    @abstractmethod
    def stream(self, request: ChatRequest) -> AsyncIterator[StreamDelta]:
        """
        Sends the request and yields response deltas as they arrive.

        A single (non-streamed) response is simply a stream of one or more deltas.
        Failures are raised as TransportFailure.
        """
        ...

    async def aclose(self) -> None:
        """Releases any resources held by the transport."""
        return None
