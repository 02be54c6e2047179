# pyright: standard

from datetime import UTC, datetime
from pathlib import Path

import httpx
import msgspec
import pytest

from chatrecon.exceptions import MalformedPartError, StoreError, TruncationFailure
from chatrecon.models import (
    DataPart,
    FilePart,
    Message,
    SourceDocumentPart,
    SourceUrlPart,
    TextPart,
    ToolInvocationPart,
)
from chatrecon.store import (
    HttpTranscriptStore,
    InMemoryTranscriptStore,
    JsonlTranscriptStore,
    PartRecord,
    StoredMessage,
    from_record,
    load_stored_message,
    parts_from_content,
    to_record,
)
from tests.helpers import at, four_message_log, msg


def test_part_record_enforces_column_groups() -> None:
    # GIVEN records that violate the per-type column groups
    # THEN each is rejected
    with pytest.raises(MalformedPartError, match="text_text"):
        _ = PartRecord(order=0, type="text")
    with pytest.raises(MalformedPartError, match="file_url"):
        _ = PartRecord(order=0, type="file", file_media_type="image/png", file_filename="a.png")
    with pytest.raises(MalformedPartError, match="tool_state"):
        _ = PartRecord(order=0, type="tool-search", tool_tool_call_id="c1")
    with pytest.raises(MalformedPartError, match="Invalid tool state"):
        _ = PartRecord(order=0, type="tool-invocation", tool_tool_call_id="c1", tool_state="finished")
    with pytest.raises(MalformedPartError, match="Unknown part type"):
        _ = PartRecord(order=0, type="video")


def test_records_preserve_every_part_kind_and_order() -> None:
    message = Message(
        id="a1",
        role="assistant",
        created_at=at(5),
        parts=[
            TextPart(text="answer"),
            FilePart(media_type="image/png", filename="a.png", url="https://x/a.png"),
            SourceUrlPart(source_id="s1", url="https://x", title="X"),
            SourceDocumentPart(source_id="d1", media_type="application/pdf", title="Spec", filename="s.pdf"),
            ToolInvocationPart(tool_call_id="c1", state="output-available", tool_name="search", output={"n": 1}),
            DataPart(name="related", data=["q"]),
        ],
    )

    record = to_record("chat-1", message)

    assert [p.order for p in record.parts] == [0, 1, 2, 3, 4, 5]
    assert from_record(record) == message


def test_per_tool_record_types_load_as_tool_invocations() -> None:
    record = StoredMessage(
        id="a1",
        chat_id="c",
        role="assistant",
        created_at=at(0),
        parts=[PartRecord(order=0, type="tool-search", tool_tool_call_id="c1", tool_state="input-available")],
    )

    part = from_record(record).parts[0]

    assert part == ToolInvocationPart(tool_call_id="c1", state="input-available", tool_name="search")


def test_unnamed_tool_invocation_keeps_no_name() -> None:
    message = Message(id="a1", role="assistant", parts=[ToolInvocationPart(tool_call_id="c1", state="input-streaming")])
    record = to_record("c", message)

    assert from_record(record).parts == [ToolInvocationPart(tool_call_id="c1", state="input-streaming")]


def test_legacy_content_records_migrate_to_parts() -> None:
    # GIVEN a legacy line with plain content and a naive timestamp
    record = load_stored_message(
        '{"id":"u1","chat_id":"c","role":"user","created_at":"2024-05-01T12:00:00","content":"hello"}'
    )

    # THEN content becomes a text part and the timestamp is read as UTC
    assert record.content is None
    assert from_record(record).parts == [TextPart(text="hello")]
    assert record.created_at == datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def test_parts_from_content_variants() -> None:
    assert parts_from_content(None) == []
    assert parts_from_content("hi") == [TextPart(text="hi")]
    assert parts_from_content([{"type": "text", "text": "a"}, {"type": "image"}]) == [TextPart(text="a")]
    assert parts_from_content([{"type": "tool-call", "id": "x"}]) == [
        TextPart(text='[{"type": "tool-call", "id": "x"}]')
    ]


@pytest.mark.anyio
async def test_jsonl_append_is_idempotent_by_id(tmp_path: Path) -> None:
    store = JsonlTranscriptStore(tmp_path)
    message = four_message_log()[0]

    await store.append_transcript("chat-1", message)
    await store.append_transcript("chat-1", message)

    lines = store.transcript_path("chat-1").read_text().splitlines()
    assert len(lines) == 1
    assert [m.id for m in await store.load_transcript("chat-1")] == ["u1"]


@pytest.mark.anyio
async def test_jsonl_replace_rewrites_edited_and_dropped_records(tmp_path: Path) -> None:
    # GIVEN a stored [U1, A1, U2, A2]
    store = JsonlTranscriptStore(tmp_path)
    for message in four_message_log():
        await store.append_transcript("chat-1", message)

    # WHEN it is replaced by a log where U2 was edited in place and A2 dropped
    edited = [*four_message_log()[:2], msg("u2", "user", "changed", 2)]
    await store.replace_transcript("chat-1", edited)

    # THEN the file holds exactly that log
    assert await store.load_transcript("chat-1") == edited
    assert len(store.transcript_path("chat-1").read_text().splitlines()) == 3


@pytest.mark.anyio
async def test_jsonl_delete_trailing_is_strictly_after(tmp_path: Path) -> None:
    # GIVEN a stored [U1, A1, U2, A2] at t=0..3
    store = JsonlTranscriptStore(tmp_path)
    for message in four_message_log():
        await store.append_transcript("chat-1", message)

    # WHEN truncating after U2's timestamp
    deleted = await store.delete_trailing_records("chat-1", at(2))

    # THEN only records strictly newer are gone
    assert deleted == 1
    assert [m.id for m in await store.load_transcript("chat-1")] == ["u1", "a1", "u2"]


@pytest.mark.anyio
async def test_jsonl_delete_trailing_bounds(tmp_path: Path) -> None:
    store = JsonlTranscriptStore(tmp_path)
    for message in four_message_log():
        await store.append_transcript("chat-1", message)

    # newer than everything: no-op
    assert await store.delete_trailing_records("chat-1", at(100)) == 0
    assert len(await store.load_transcript("chat-1")) == 4

    # older than everything: deletes all
    assert await store.delete_trailing_records("chat-1", at(-100)) == 4
    assert await store.load_transcript("chat-1") == []

    # unknown conversation: nothing to delete
    assert await store.delete_trailing_records("other", at(0)) == 0


def test_jsonl_rejects_path_like_chat_ids(tmp_path: Path) -> None:
    store = JsonlTranscriptStore(tmp_path)

    with pytest.raises(StoreError):
        _ = store.transcript_path("../escape")
    with pytest.raises(TruncationFailure):
        _ = store.delete_trailing_sync("../escape", at(0))


def test_jsonl_corrupt_line_fails_truncation(tmp_path: Path) -> None:
    store = JsonlTranscriptStore(tmp_path)
    line = '{"id":"u1","chat_id":"chat-1","role":"user","parts":[{"order":0,"type":"text"}]}'
    _ = store.transcript_path("chat-1").write_text(line + "\n")

    with pytest.raises(TruncationFailure):
        _ = store.delete_trailing_sync("chat-1", at(0))
    with pytest.raises(StoreError):
        _ = store.load_sync("chat-1")


def test_jsonl_lists_chats(tmp_path: Path) -> None:
    store = JsonlTranscriptStore(tmp_path)
    for chat_id in ("b", "a"):
        _ = store.append_sync(chat_id, four_message_log()[0])

    assert store.list_chats() == ["a", "b"]


@pytest.mark.anyio
async def test_in_memory_store_follows_the_same_contract() -> None:
    store = InMemoryTranscriptStore()
    for message in four_message_log():
        await store.append_transcript("chat-1", message)
    await store.append_transcript("chat-1", four_message_log()[0])

    assert await store.delete_trailing_records("chat-1", at(1)) == 2
    assert [m.id for m in await store.load_transcript("chat-1")] == ["u1", "a1"]


@pytest.mark.anyio
async def test_http_store_truncation_contract() -> None:
    # GIVEN a store endpoint
    calls: list[tuple[str, str, bytes]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path, request.content))
        if request.url.path.endswith("/truncate"):
            return httpx.Response(200, json={"deleted": 2})
        if request.method == "GET":
            records = [to_record("c1", m) for m in four_message_log()[:2]]
            return httpx.Response(200, content=msgspec.json.encode(records))
        return httpx.Response(204)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    store = HttpTranscriptStore("https://store.example/", client=client)

    # WHEN truncating, appending and loading
    deleted = await store.delete_trailing_records("c1", at(2))
    await store.append_transcript("c1", four_message_log()[0])
    loaded = await store.load_transcript("c1")
    await store.aclose()
    # the injected client belongs to the caller
    assert not client.is_closed
    await client.aclose()

    # THEN each maps onto its endpoint
    assert deleted == 2
    assert calls[0][:2] == ("POST", "/chats/c1/truncate")
    assert msgspec.json.decode(calls[0][2]) == {"after": at(2).isoformat()}
    assert calls[1][:2] == ("POST", "/chats/c1/messages")
    assert [m.id for m in loaded] == ["u1", "a1"]


@pytest.mark.anyio
async def test_http_store_rejection_is_truncation_failure() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(403)))
    store = HttpTranscriptStore("https://store.example", client=client)

    with pytest.raises(TruncationFailure):
        _ = await store.delete_trailing_records("c1", at(0))
    with pytest.raises(StoreError):
        await store.append_transcript("c1", four_message_log()[0])


@pytest.mark.anyio
async def test_http_store_closes_only_its_own_client() -> None:
    store = HttpTranscriptStore("https://store.example")
    owned = store._client  # pyright: ignore[reportPrivateUsage]

    await store.aclose()

    assert owned.is_closed
