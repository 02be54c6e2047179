# pyright: standard

import asyncio
from collections.abc import AsyncIterator, Sequence
from datetime import UTC, datetime, timedelta
from typing import override

from chatrecon.chat import Chat
from chatrecon.models import Message, TextPart
from chatrecon.transport.base import ChatTransport
from chatrecon.wire import ChatRequest, FinishChunk, StreamDelta, TextDeltaChunk

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

# Marks a point in a script where the transport waits for the test to resume it
PAUSE = object()

type ScriptItem = StreamDelta | Exception | object


def at(seconds: int) -> datetime:
    return T0 + timedelta(seconds=seconds)


def msg(id: str, role: str, text: str | None = None, seconds: int = 0) -> Message:
    parts = [TextPart(text=text)] if text is not None else []
    return Message(id=id, role=role, parts=parts, created_at=at(seconds))  # pyright: ignore[reportArgumentType]


def four_message_log() -> list[Message]:
    """[U1, A1, U2, A2] one second apart."""
    return [
        msg("u1", "user", "first question", 0),
        msg("a1", "assistant", "first answer", 1),
        msg("u2", "user", "second question", 2),
        msg("a2", "assistant", "second answer", 3),
    ]


def reply(text: str) -> list[ScriptItem]:
    return [TextDeltaChunk(delta=text), FinishChunk()]


class ScriptedTransport(ChatTransport):
    """
    Replays one script per request. A script item may be a delta, an exception
    to raise, or PAUSE to wait until `resume()` is called.
    """

    def __init__(self, *scripts: Sequence[ScriptItem]) -> None:
        self._scripts: list[Sequence[ScriptItem]] = list(scripts)
        self.requests: list[ChatRequest] = []
        # Copy of the chat's log at the moment each request was issued
        self.logs_at_request: list[list[Message]] = []
        self.chat: Chat | None = None
        self._reached = asyncio.Event()
        self._proceed = asyncio.Event()

    @override
    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamDelta]:
        self.requests.append(request)
        if self.chat is not None:
            self.logs_at_request.append(self.chat.messages)
        script = self._scripts.pop(0) if self._scripts else [FinishChunk()]
        for item in script:
            if item is PAUSE:
                self._reached.set()
                await self._proceed.wait()
                self._proceed.clear()
                continue
            if isinstance(item, Exception):
                raise item
            yield item  # pyright: ignore[reportReturnType]
            await asyncio.sleep(0)

    async def wait_paused(self) -> None:
        await self._reached.wait()
        self._reached.clear()

    def resume(self) -> None:
        self._proceed.set()


def texts(messages: Sequence[Message]) -> list[tuple[str, str]]:
    from chatrecon.models import message_text

    return [(m.role, message_text(m)) for m in messages]
