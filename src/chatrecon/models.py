from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from msgspec import Struct, field

from chatrecon.exceptions import MalformedPartError

type Role = Literal["user", "assistant", "system"]
type ToolState = Literal["input-streaming", "input-available", "output-available", "output-error"]

# Opaque tool input/output and provider data, validated only where it is parsed off the wire.
type Payload = object

TOOL_STATES: frozenset[str] = frozenset({"input-streaming", "input-available", "output-available", "output-error"})

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

DEFAULT_TITLE = "New Chat"


def generate_id() -> str:
    return uuid4().hex


def utc_now() -> datetime:
    return datetime.now(UTC)


class ChatStatus(str, Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    STREAMING = "streaming"


# Default of the fields a part cannot do without, so an omitted argument reaches __post_init__
REQUIRED: Any = None


def _require(part_type: str, part: object, *names: str) -> None:
    missing = [name for name in names if getattr(part, name) is None]
    if missing:
        raise MalformedPartError(f"'{part_type}' part is missing required field(s): {', '.join(missing)}")


class TextPart(Struct, frozen=True, tag="text", tag_field="type", rename="camel"):
    text: str = REQUIRED

    def __post_init__(self) -> None:
        _require("text", self, "text")

    @property
    def type(self) -> Literal["text"]:
        return "text"


class ReasoningPart(Struct, frozen=True, tag="reasoning", tag_field="type", rename="camel"):
    text: str = REQUIRED

    def __post_init__(self) -> None:
        _require("reasoning", self, "text")

    @property
    def type(self) -> Literal["reasoning"]:
        return "reasoning"


class FilePart(Struct, frozen=True, tag="file", tag_field="type", rename="camel"):
    media_type: str = REQUIRED
    filename: str = REQUIRED
    url: str = REQUIRED

    def __post_init__(self) -> None:
        # media type, filename and url travel as a group
        _require("file", self, "media_type", "filename", "url")

    @property
    def type(self) -> Literal["file"]:
        return "file"


class SourceUrlPart(Struct, frozen=True, tag="source-url", tag_field="type", rename="camel", omit_defaults=True):
    source_id: str = REQUIRED
    url: str = REQUIRED
    title: str | None = None

    def __post_init__(self) -> None:
        _require("source-url", self, "source_id", "url")

    @property
    def type(self) -> Literal["source-url"]:
        return "source-url"


class SourceDocumentPart(
    Struct, frozen=True, tag="source-document", tag_field="type", rename="camel", omit_defaults=True
):
    source_id: str = REQUIRED
    media_type: str = REQUIRED
    title: str = REQUIRED
    filename: str | None = None
    url: str | None = None
    snippet: str | None = None

    def __post_init__(self) -> None:
        _require("source-document", self, "source_id", "media_type", "title")

    @property
    def type(self) -> Literal["source-document"]:
        return "source-document"


class ToolInvocationPart(
    Struct, frozen=True, tag="tool-invocation", tag_field="type", rename="camel", omit_defaults=True
):
    tool_call_id: str = REQUIRED
    state: ToolState = REQUIRED
    tool_name: str | None = None
    input: Payload | None = None
    output: Payload | None = None
    error_text: str | None = None

    def __post_init__(self) -> None:
        # call id and state are only meaningful together
        _require("tool-invocation", self, "tool_call_id", "state")
        if self.state not in TOOL_STATES:
            raise MalformedPartError(f"'tool-invocation' part has invalid state: {self.state!r}")

    @property
    def type(self) -> Literal["tool-invocation"]:
        return "tool-invocation"


class DataPart(Struct, frozen=True, tag="data", tag_field="type", rename="camel", omit_defaults=True):
    name: str = REQUIRED
    data: Payload = None
    id: str | None = None

    def __post_init__(self) -> None:
        _require("data", self, "name")

    @property
    def type(self) -> Literal["data"]:
        return "data"


type Part = TextPart | ReasoningPart | FilePart | SourceUrlPart | SourceDocumentPart | ToolInvocationPart | DataPart


class Message(Struct, rename="camel", omit_defaults=True):
    """
    A single entry in the canonical conversation log.

    Identity is the `id`; after creation a message only ever grows (streamed
    content, tool results) and is removed only by truncation.
    """

    id: str
    role: Role
    parts: list[Part] = field(default_factory=list)
    created_at: datetime | None = None
    # Legacy plain-content field, used as a text fallback when parts carry none
    content: str | None = None


class Section(Struct, frozen=True):
    id: str
    user_message: Message
    assistant_messages: list[Message] = field(default_factory=list)


class UploadedFile(Struct, frozen=True):
    name: str
    media_type: str
    url: str | None = None
    status: Literal["uploading", "uploaded", "error"] = "uploading"


def text_of(parts: Iterable[Part] | None) -> str:
    """Concatenates the bodies of all text parts, in order, separated by a single space."""
    if not parts:
        return ""
    return " ".join(part.text for part in parts if isinstance(part, TextPart))


def message_text(message: Message | None) -> str:
    """Text content of a message: its text parts, else the plain content field, else ''."""
    if message is None:
        return ""
    if any(isinstance(part, TextPart) for part in message.parts):
        return text_of(message.parts)
    return message.content or ""


def extract_title(message: Message, max_length: int = 100) -> str:
    """First text of a message truncated to max_length, used as a conversation title."""
    for part in message.parts:
        if isinstance(part, TextPart) and part.text:
            return part.text[:max_length]
    if message.content:
        return message.content[:max_length]
    return DEFAULT_TITLE


def user_message(
    text: str,
    *,
    files: Sequence[FilePart] = (),
    id: str | None = None,
    created_at: datetime | None = None,
) -> Message:
    parts: list[Part] = []
    if text:
        parts.append(TextPart(text=text))
    parts.extend(files)
    return Message(
        id=id or generate_id(),
        role="user",
        parts=parts,
        created_at=created_at or utc_now(),
    )


def find_message_index(messages: Sequence[Message], message_id: str) -> int:
    """Position of the message with the given id, or -1."""
    for i, message in enumerate(messages):
        if message.id == message_id:
            return i
    return -1
