# pyright: standard
"""
Outbound request bodies and the inbound stream chunk codec.

The response stream is a sequence of JSON chunks tagged by `type`. Chunks are
parsed at this boundary into typed deltas; anything past it works with
the structs below and never with raw JSON.
"""

from typing import Literal
from urllib.parse import urlparse

import msgspec
from msgspec import Struct
from msgspec.structs import replace

from chatrecon.exceptions import TransportFailure
from chatrecon.models import (
    DataPart,
    FilePart,
    Message,
    Part,
    Payload,
    ReasoningPart,
    SourceDocumentPart,
    SourceUrlPart,
    TextPart,
    ToolInvocationPart,
    ToolState,
)

DONE_SENTINEL = "[DONE]"

# Framing chunks that carry nothing the log needs
IGNORED_CHUNK_TYPES: frozenset[str] = frozenset(
    {
        "text-start",
        "text-end",
        "reasoning-start",
        "reasoning-end",
        "start-step",
        "finish-step",
        "tool-input-delta",
        "message-metadata",
        "abort",
    }
)

# ---------- Requests ----------


class SubmitUserMessageRequest(
    Struct, frozen=True, tag="submit-user-message", tag_field="trigger", rename="camel", omit_defaults=True
):
    """Carries only the newest user message; prior history is already durable server-side."""

    chat_id: str
    message: Message
    message_id: str | None = None

    @property
    def trigger(self) -> Literal["submit-user-message"]:
        return "submit-user-message"


class RegenerateAssistantMessageRequest(
    Struct, frozen=True, tag="regenerate-assistant-message", tag_field="trigger", rename="camel", omit_defaults=True
):
    """Asks the server to regenerate every assistant message after `message_id`.

    `message` is set only when the target is a user message (the edit case).
    """

    chat_id: str
    message_id: str | None = None
    message: Message | None = None

    @property
    def trigger(self) -> Literal["regenerate-assistant-message"]:
        return "regenerate-assistant-message"


type ChatRequest = SubmitUserMessageRequest | RegenerateAssistantMessageRequest


def encode_request(request: ChatRequest) -> bytes:
    return msgspec.json.encode(request)


# ---------- Stream chunks ----------


class StartChunk(Struct, frozen=True, tag="start", tag_field="type", rename="camel"):
    message_id: str | None = None


class TextDeltaChunk(Struct, frozen=True, tag="text-delta", tag_field="type", rename="camel"):
    delta: str
    id: str | None = None


class ReasoningDeltaChunk(Struct, frozen=True, tag="reasoning-delta", tag_field="type", rename="camel"):
    delta: str
    id: str | None = None


class ToolInputStartChunk(Struct, frozen=True, tag="tool-input-start", tag_field="type", rename="camel"):
    tool_call_id: str
    tool_name: str


class ToolInputAvailableChunk(Struct, frozen=True, tag="tool-input-available", tag_field="type", rename="camel"):
    tool_call_id: str
    tool_name: str
    input: Payload = None


class ToolOutputAvailableChunk(Struct, frozen=True, tag="tool-output-available", tag_field="type", rename="camel"):
    tool_call_id: str
    output: Payload = None


class ToolOutputErrorChunk(Struct, frozen=True, tag="tool-output-error", tag_field="type", rename="camel"):
    tool_call_id: str
    error_text: str


class SourceUrlChunk(Struct, frozen=True, tag="source-url", tag_field="type", rename="camel"):
    source_id: str
    url: str
    title: str | None = None


class SourceDocumentChunk(Struct, frozen=True, tag="source-document", tag_field="type", rename="camel"):
    source_id: str
    media_type: str
    title: str
    filename: str | None = None


class FileChunk(Struct, frozen=True, tag="file", tag_field="type", rename="camel"):
    media_type: str
    url: str
    filename: str | None = None


class DataChunk(Struct, frozen=True, tag="data", tag_field="type", rename="camel"):
    name: str
    data: Payload = None
    id: str | None = None


class FinishChunk(Struct, frozen=True, tag="finish", tag_field="type", rename="camel"):
    pass


class ErrorChunk(Struct, frozen=True, tag="error", tag_field="type", rename="camel"):
    error_text: str


type StreamDelta = (
    StartChunk
    | TextDeltaChunk
    | ReasoningDeltaChunk
    | ToolInputStartChunk
    | ToolInputAvailableChunk
    | ToolOutputAvailableChunk
    | ToolOutputErrorChunk
    | SourceUrlChunk
    | SourceDocumentChunk
    | FileChunk
    | DataChunk
    | FinishChunk
    | ErrorChunk
)


def parse_chunk(data: str | bytes) -> StreamDelta | None:
    """
    Decodes one JSON chunk into a StreamDelta.

    Returns None for framing chunks that do not change the log.
    Raises TransportFailure for undecodable or unknown chunks.
    """
    try:
        raw = msgspec.json.decode(data)
    except msgspec.DecodeError as e:
        raise TransportFailure(f"Malformed stream chunk: {e}") from e

    match raw:
        case {"type": str(chunk_type)} if chunk_type in IGNORED_CHUNK_TYPES:
            return None
        case {"type": str(chunk_type)} if chunk_type.startswith("data-"):
            # Provider payloads are tagged "data-<name>" on the wire
            raw = {k: v for k, v in raw.items() if k != "type"} | {"type": "data", "name": chunk_type[5:]}
        case {"type": str()}:
            pass
        case _:
            raise TransportFailure(f"Stream chunk without a type: {data!r}")

    try:
        return msgspec.convert(raw, StreamDelta)
    except msgspec.ValidationError as e:
        raise TransportFailure(f"Unsupported stream chunk: {e}") from e


# ---------- Folding deltas into a message ----------


def _filename_from_url(url: str) -> str:
    name = urlparse(url).path.rsplit("/", 1)[-1]
    return name or "file"


def upsert_tool_part(
    parts: list[Part],
    tool_call_id: str,
    *,
    state: ToolState,
    tool_name: str | None = None,
    input: Payload | None = None,
    output: Payload | None = None,
    error_text: str | None = None,
    create: bool = True,
) -> bool:
    """
    Updates the tool-invocation part with this call id in place, or appends one.

    Fields passed as None keep their previous value. Returns False when no part
    matched and `create` is False.
    """
    for i, part in enumerate(parts):
        if isinstance(part, ToolInvocationPart) and part.tool_call_id == tool_call_id:
            parts[i] = replace(
                part,
                state=state,
                tool_name=tool_name if tool_name is not None else part.tool_name,
                input=input if input is not None else part.input,
                output=output if output is not None else part.output,
                error_text=error_text if error_text is not None else part.error_text,
            )
            return True

    if not create:
        return False

    parts.append(
        ToolInvocationPart(
            tool_call_id=tool_call_id,
            state=state,
            tool_name=tool_name,
            input=input,
            output=output,
            error_text=error_text,
        )
    )
    return True


def apply_delta(message: Message, delta: StreamDelta) -> None:
    """Folds a content delta into the streaming assistant message, in place."""
    parts = message.parts
    match delta:
        case TextDeltaChunk(delta=text):
            if parts and isinstance(parts[-1], TextPart):
                parts[-1] = TextPart(text=parts[-1].text + text)
            else:
                parts.append(TextPart(text=text))
        case ReasoningDeltaChunk(delta=text):
            if parts and isinstance(parts[-1], ReasoningPart):
                parts[-1] = ReasoningPart(text=parts[-1].text + text)
            else:
                parts.append(ReasoningPart(text=text))
        case ToolInputStartChunk(tool_call_id=call_id, tool_name=name):
            _ = upsert_tool_part(parts, call_id, state="input-streaming", tool_name=name)
        case ToolInputAvailableChunk(tool_call_id=call_id, tool_name=name, input=tool_input):
            _ = upsert_tool_part(parts, call_id, state="input-available", tool_name=name, input=tool_input)
        case ToolOutputAvailableChunk(tool_call_id=call_id, output=output):
            _ = upsert_tool_part(parts, call_id, state="output-available", output=output)
        case ToolOutputErrorChunk(tool_call_id=call_id, error_text=error_text):
            _ = upsert_tool_part(parts, call_id, state="output-error", error_text=error_text)
        case SourceUrlChunk(source_id=source_id, url=url, title=title):
            parts.append(SourceUrlPart(source_id=source_id, url=url, title=title))
        case SourceDocumentChunk(source_id=source_id, media_type=media_type, title=title, filename=filename):
            parts.append(SourceDocumentPart(source_id=source_id, media_type=media_type, title=title, filename=filename))
        case FileChunk(media_type=media_type, url=url, filename=filename):
            parts.append(FilePart(media_type=media_type, filename=filename or _filename_from_url(url), url=url))
        case DataChunk(name=name, data=data, id=data_id):
            parts.append(DataPart(name=name, data=data, id=data_id))
        case StartChunk() | FinishChunk() | ErrorChunk():
            pass

