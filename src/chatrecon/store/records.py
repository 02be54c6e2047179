# pyright: standard
from __future__ import annotations

import json
from datetime import UTC, datetime

from msgspec import Struct, field

from chatrecon.exceptions import MalformedPartError
from chatrecon.models import (
    TOOL_STATES,
    DataPart,
    FilePart,
    Message,
    Part,
    Payload,
    ReasoningPart,
    Role,
    SourceDocumentPart,
    SourceUrlPart,
    TextPart,
    ToolInvocationPart,
    utc_now,
)
from chatrecon.serialization import from_json, to_json

# Columns that must be present together for each part type
REQUIRED_COLUMNS: dict[str, tuple[str, ...]] = {
    "text": ("text_text",),
    "reasoning": ("reasoning_text",),
    "file": ("file_media_type", "file_filename", "file_url"),
    "source-url": ("source_url_source_id", "source_url_url"),
    "source-document": ("source_document_source_id", "source_document_media_type", "source_document_title"),
    "tool-invocation": ("tool_tool_call_id", "tool_state"),
    "data": ("data_prefix",),
}


class PartRecord(Struct, frozen=True, omit_defaults=True):
    """
    Flat persisted shape of a part: one optional column group per part type.

    Which group must be filled is decided by `type` alone.
    """

    order: int
    type: str

    text_text: str | None = None
    reasoning_text: str | None = None

    file_media_type: str | None = None
    file_filename: str | None = None
    file_url: str | None = None

    source_url_source_id: str | None = None
    source_url_url: str | None = None
    source_url_title: str | None = None

    source_document_source_id: str | None = None
    source_document_media_type: str | None = None
    source_document_title: str | None = None
    source_document_filename: str | None = None
    source_document_url: str | None = None
    source_document_snippet: str | None = None

    tool_tool_call_id: str | None = None
    tool_state: str | None = None
    tool_name: str | None = None
    tool_input: Payload | None = None
    tool_output: Payload | None = None
    tool_error_text: str | None = None

    data_prefix: str | None = None
    data_content: Payload | None = None
    data_id: str | None = None

    def __post_init__(self) -> None:
        if self.order < 0:
            raise MalformedPartError(f"Part order must be non-negative, got {self.order}.")
        if self.tool_state is not None and self.tool_state not in TOOL_STATES:
            raise MalformedPartError(f"Invalid tool state: {self.tool_state!r}")

        group_key = "tool-invocation" if self.type.startswith("tool-") else self.type
        if group_key not in REQUIRED_COLUMNS:
            raise MalformedPartError(f"Unknown part type: {self.type!r}")
        missing = [column for column in REQUIRED_COLUMNS[group_key] if getattr(self, column) is None]
        if missing:
            raise MalformedPartError(f"'{self.type}' part record is missing column(s): {', '.join(missing)}")


class StoredMessage(Struct, frozen=True, omit_defaults=True):
    """
    Persisted message record.

    `content` only appears in legacy records that predate parts; it is migrated
    into text parts on load.
    """

    id: str
    chat_id: str
    role: Role
    created_at: datetime = field(default_factory=utc_now)
    parts: list[PartRecord] = field(default_factory=list)
    content: str | list[dict[str, object]] | None = None

    def __post_init__(self) -> None:
        if self.created_at.tzinfo is None or self.created_at.utcoffset():
            object.__setattr__(self, "created_at", as_utc(self.created_at))
        if self.content is not None and not self.parts:
            migrated = [part_to_record(part, i) for i, part in enumerate(parts_from_content(self.content))]
            object.__setattr__(self, "parts", migrated)
            object.__setattr__(self, "content", None)


def parts_from_content(content: str | list[dict[str, object]] | None) -> list[Part]:
    """
    Derives parts from a plain `content` value.

    Strings become one text part; lists keep their text entries, or are kept
    verbatim as JSON text when they have none.
    """
    match content:
        case None:
            return []
        case str(text):
            return [TextPart(text=text)]
        case list(items):
            texts = [
                TextPart(text=str(item["text"])) for item in items if item.get("type") == "text" and "text" in item
            ]
            if texts:
                return texts
            return [TextPart(text=json.dumps(items))]


def part_to_record(part: Part, order: int) -> PartRecord:
    match part:
        case TextPart(text=text):
            return PartRecord(order=order, type="text", text_text=text)
        case ReasoningPart(text=text):
            return PartRecord(order=order, type="reasoning", reasoning_text=text)
        case FilePart(media_type=media_type, filename=filename, url=url):
            return PartRecord(
                order=order, type="file", file_media_type=media_type, file_filename=filename, file_url=url
            )
        case SourceUrlPart(source_id=source_id, url=url, title=title):
            return PartRecord(
                order=order,
                type="source-url",
                source_url_source_id=source_id,
                source_url_url=url,
                source_url_title=title,
            )
        case SourceDocumentPart():
            return PartRecord(
                order=order,
                type="source-document",
                source_document_source_id=part.source_id,
                source_document_media_type=part.media_type,
                source_document_title=part.title,
                source_document_filename=part.filename,
                source_document_url=part.url,
                source_document_snippet=part.snippet,
            )
        case ToolInvocationPart():
            return PartRecord(
                order=order,
                type="tool-invocation",
                tool_tool_call_id=part.tool_call_id,
                tool_state=part.state,
                tool_name=part.tool_name,
                tool_input=part.input,
                tool_output=part.output,
                tool_error_text=part.error_text,
            )
        case DataPart(name=name, data=data, id=data_id):
            return PartRecord(order=order, type="data", data_prefix=name, data_content=data, data_id=data_id)


def record_to_part(record: PartRecord) -> Part:
    match record.type:
        case "text":
            return TextPart(text=record.text_text)  # pyright: ignore[reportArgumentType]
        case "reasoning":
            return ReasoningPart(text=record.reasoning_text)  # pyright: ignore[reportArgumentType]
        case "file":
            return FilePart(
                media_type=record.file_media_type,  # pyright: ignore[reportArgumentType]
                filename=record.file_filename,  # pyright: ignore[reportArgumentType]
                url=record.file_url,  # pyright: ignore[reportArgumentType]
            )
        case "source-url":
            return SourceUrlPart(
                source_id=record.source_url_source_id,  # pyright: ignore[reportArgumentType]
                url=record.source_url_url,  # pyright: ignore[reportArgumentType]
                title=record.source_url_title,
            )
        case "source-document":
            return SourceDocumentPart(
                source_id=record.source_document_source_id,  # pyright: ignore[reportArgumentType]
                media_type=record.source_document_media_type,  # pyright: ignore[reportArgumentType]
                title=record.source_document_title,  # pyright: ignore[reportArgumentType]
                filename=record.source_document_filename,
                url=record.source_document_url,
                snippet=record.source_document_snippet,
            )
        case "data":
            return DataPart(name=record.data_prefix, data=record.data_content, id=record.data_id)  # pyright: ignore[reportArgumentType]
        case _:
            # Any "tool-*" type, including per-tool names written by other clients
            return ToolInvocationPart(
                tool_call_id=record.tool_tool_call_id,  # pyright: ignore[reportArgumentType]
                state=record.tool_state,  # pyright: ignore[reportArgumentType]
                tool_name=record.tool_name or _tool_name_from_type(record.type),
                input=record.tool_input,
                output=record.tool_output,
                error_text=record.tool_error_text,
            )


def _tool_name_from_type(part_type: str) -> str | None:
    if part_type == "tool-invocation":
        return None
    return part_type.removeprefix("tool-") or None


def to_record(chat_id: str, message: Message) -> StoredMessage:
    return StoredMessage(
        id=message.id,
        chat_id=chat_id,
        role=message.role,
        created_at=as_utc(message.created_at) if message.created_at else utc_now(),
        parts=[part_to_record(part, i) for i, part in enumerate(message.parts)],
    )


def from_record(record: StoredMessage) -> Message:
    parts = sorted(record.parts, key=lambda r: r.order)
    return Message(
        id=record.id,
        role=record.role,
        parts=[record_to_part(r) for r in parts],
        created_at=record.created_at,
    )


def as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def dumps_stored_message(record: StoredMessage) -> str:
    """Compact single-line JSON for a StoredMessage."""
    return to_json(record).decode("utf-8")


def load_stored_message(line: str | bytes) -> StoredMessage:
    return from_json(StoredMessage, line)
