# pyright: standard

import asyncio

import pytest

from chatrecon.chat import Chat
from chatrecon.exceptions import MalformedPartError, PivotNotFoundError, TransportFailure
from chatrecon.models import ChatStatus, TextPart, ToolInvocationPart, user_message
from chatrecon.wire import (
    ErrorChunk,
    FinishChunk,
    RegenerateAssistantMessageRequest,
    StartChunk,
    SubmitUserMessageRequest,
    TextDeltaChunk,
    ToolInputAvailableChunk,
    ToolOutputAvailableChunk,
)
from tests.helpers import PAUSE, ScriptedTransport, four_message_log, reply, texts


@pytest.mark.anyio
async def test_send_message_walks_the_status_lifecycle() -> None:
    # GIVEN an empty conversation and a transport that pauses before and during its reply
    transport = ScriptedTransport(
        [PAUSE, StartChunk(message_id="a1"), PAUSE, TextDeltaChunk(delta="Hi"), FinishChunk()]
    )
    chat = Chat("c1", transport)
    seen: list[ChatStatus] = []
    _ = chat.subscribe(lambda c: seen.append(c.status))

    # WHEN the user submits "hello"
    task = asyncio.create_task(chat.send_message(user_message("hello")))
    await transport.wait_paused()

    # THEN the log holds the user message and the request is submitted
    assert texts(chat.messages) == [("user", "hello")]
    assert chat.status is ChatStatus.SUBMITTED
    assert chat.is_loading

    # WHEN the first delta arrives
    transport.resume()
    await transport.wait_paused()

    # THEN a new assistant message exists and the chat is streaming
    assert chat.status is ChatStatus.STREAMING
    assert [m.role for m in chat.messages] == ["user", "assistant"]
    assert chat.messages[1].id == "a1"

    # WHEN the stream ends
    transport.resume()
    result = await task

    # THEN the chat is idle again with the full reply
    assert result is None
    assert chat.status is ChatStatus.IDLE
    assert not chat.is_loading
    assert texts(chat.messages) == [("user", "hello"), ("assistant", "Hi")]
    # AND status only moved along idle -> submitted -> streaming -> idle
    statuses = [s for i, s in enumerate(seen) if i == 0 or seen[i - 1] is not s]
    assert statuses == [ChatStatus.IDLE, ChatStatus.SUBMITTED, ChatStatus.STREAMING, ChatStatus.IDLE]


@pytest.mark.anyio
async def test_send_message_carries_only_the_newest_message() -> None:
    transport = ScriptedTransport(reply("ok"))
    chat = Chat("c1", transport, four_message_log())

    _ = await chat.send_message(user_message("third", id="u3"))

    request = transport.requests[0]
    assert isinstance(request, SubmitUserMessageRequest)
    assert request.chat_id == "c1"
    assert request.message.id == "u3"
    assert request.message_id == "u3"


@pytest.mark.anyio
async def test_on_finish_fires_once_on_success() -> None:
    finished: list[str | None] = []
    chat = Chat("c1", ScriptedTransport(reply("done")), on_finish=lambda m: finished.append(m.id if m else None))

    _ = await chat.send_message(user_message("hi"))

    assert len(finished) == 1
    assert finished[0] == chat.messages[-1].id


@pytest.mark.anyio
async def test_transport_failure_is_reported_once_and_returned() -> None:
    # GIVEN a transport that fails mid-stream
    errors: list[TransportFailure] = []
    finished: list[object] = []
    transport = ScriptedTransport([TextDeltaChunk(delta="par"), TransportFailure("connection reset")])
    chat = Chat("c1", transport, on_error=errors.append, on_finish=finished.append)

    # WHEN a message is sent
    result = await chat.send_message(user_message("hi"))

    # THEN the failure is recorded, returned and reported exactly once, with no retry
    assert isinstance(result, TransportFailure)
    assert chat.error is result
    assert errors == [result]
    assert finished == []
    assert chat.status is ChatStatus.IDLE
    assert len(transport.requests) == 1


@pytest.mark.anyio
async def test_error_chunk_becomes_transport_failure() -> None:
    errors: list[TransportFailure] = []
    chat = Chat("c1", ScriptedTransport([ErrorChunk(error_text="rate limited")]), on_error=errors.append)

    _ = await chat.send_message(user_message("hi"))

    assert [e.message for e in errors] == ["rate limited"]
    assert chat.status is ChatStatus.IDLE


@pytest.mark.anyio
async def test_malformed_streamed_part_becomes_transport_failure(mocker) -> None:
    errors: list[TransportFailure] = []
    chat = Chat("c1", ScriptedTransport(reply("x")), on_error=errors.append)
    _ = mocker.patch("chatrecon.chat.apply_delta", side_effect=MalformedPartError("bad part"))

    _ = await chat.send_message(user_message("hi"))

    assert len(errors) == 1
    assert "bad part" in errors[0].message


def test_stop_from_idle_is_a_noop() -> None:
    chat = Chat("c1", ScriptedTransport())
    changes: list[ChatStatus] = []
    _ = chat.subscribe(lambda c: changes.append(c.status))

    chat.stop()
    chat.stop()

    assert chat.status is ChatStatus.IDLE
    assert chat.error is None
    assert changes == []


@pytest.mark.anyio
async def test_stop_abandons_the_stream_without_error() -> None:
    # GIVEN a stream that is mid-reply
    errors: list[TransportFailure] = []
    finished: list[object] = []
    transport = ScriptedTransport(
        [TextDeltaChunk(delta="partial"), PAUSE, TextDeltaChunk(delta=" never"), FinishChunk()]
    )
    chat = Chat("c1", transport, on_error=errors.append, on_finish=finished.append)
    task = asyncio.create_task(chat.send_message(user_message("hi")))
    await transport.wait_paused()
    assert chat.status is ChatStatus.STREAMING

    # WHEN stop is called (twice)
    chat.stop()
    chat.stop()
    result = await task

    # THEN the chat is idle without an error and later deltas are dropped
    assert result is None
    assert chat.status is ChatStatus.IDLE
    assert chat.error is None
    assert errors == [] and finished == []
    assert texts(chat.messages) == [("user", "hi"), ("assistant", "partial")]


@pytest.mark.anyio
async def test_regenerate_assistant_target_drops_it_and_after() -> None:
    transport = ScriptedTransport(reply("new answer"))
    chat = Chat("c1", transport, four_message_log())
    transport.chat = chat

    _ = await chat.regenerate("a1")

    # the log at request time ends at the user message before a1
    assert [m.id for m in transport.logs_at_request[0]] == ["u1"]
    request = transport.requests[0]
    assert request == RegenerateAssistantMessageRequest(chat_id="c1", message_id="a1", message=None)
    assert texts(chat.messages) == [("user", "first question"), ("assistant", "new answer")]


@pytest.mark.anyio
async def test_regenerate_user_target_keeps_it_and_sends_it() -> None:
    transport = ScriptedTransport(reply("again"))
    log = four_message_log()
    chat = Chat("c1", transport, log)

    _ = await chat.regenerate("u2")

    request = transport.requests[0]
    assert isinstance(request, RegenerateAssistantMessageRequest)
    assert request.message is not None and request.message.id == "u2"
    assert [m.id for m in chat.messages[:3]] == ["u1", "a1", "u2"]


@pytest.mark.anyio
async def test_regenerate_without_target_uses_last_assistant() -> None:
    transport = ScriptedTransport(reply("again"))
    chat = Chat("c1", transport, four_message_log())

    _ = await chat.regenerate()

    assert transport.requests[0].message_id == "a2"


@pytest.mark.anyio
async def test_regenerate_unknown_message_raises() -> None:
    chat = Chat("c1", ScriptedTransport(), four_message_log())

    with pytest.raises(PivotNotFoundError):
        _ = await chat.regenerate("missing")
    assert [m.id for m in chat.messages] == ["u1", "a1", "u2", "a2"]


@pytest.mark.anyio
async def test_tool_output_for_earlier_call_is_routed_by_call_id() -> None:
    # GIVEN a first exchange that leaves a tool call waiting for output
    transport = ScriptedTransport(
        [ToolInputAvailableChunk(tool_call_id="c1", tool_name="search", input={"q": "x"}), FinishChunk()],
        [ToolOutputAvailableChunk(tool_call_id="c1", output={"hits": 2}), TextDeltaChunk(delta="found 2")],
    )
    chat = Chat("c1", transport)
    _ = await chat.send_message(user_message("search x"))
    _ = await chat.send_message(user_message("and?"))

    # THEN the output lands on the invocation in the first assistant message
    first_reply = chat.messages[1]
    assert first_reply.parts == [
        ToolInvocationPart(
            tool_call_id="c1", state="output-available", tool_name="search", input={"q": "x"}, output={"hits": 2}
        )
    ]
    assert chat.messages[-1].parts == [TextPart(text="found 2")]


@pytest.mark.anyio
async def test_add_tool_result_routes_to_invocation() -> None:
    transport = ScriptedTransport([ToolInputAvailableChunk(tool_call_id="c9", tool_name="ask", input={"q": "?"})])
    chat = Chat("c1", transport)
    _ = await chat.send_message(user_message("hi"))

    message = chat.add_tool_result("c9", {"answer": "yes"})

    part = message.parts[0]
    assert isinstance(part, ToolInvocationPart)
    assert part.state == "output-available"
    assert part.output == {"answer": "yes"}
    with pytest.raises(PivotNotFoundError):
        _ = chat.add_tool_result("unknown", {})


@pytest.mark.anyio
async def test_add_tool_result_validates_declared_output_type() -> None:
    transport = ScriptedTransport([ToolInputAvailableChunk(tool_call_id="c9", tool_name="count", input={})])
    chat = Chat("c1", transport, tool_output_types={"count": int})
    _ = await chat.send_message(user_message("hi"))

    with pytest.raises(MalformedPartError):
        _ = chat.add_tool_result("c9", "not a number")
    _ = chat.add_tool_result("c9", 3)


def test_set_messages_accepts_updater_and_derives_sections() -> None:
    chat = Chat("c1", ScriptedTransport(), four_message_log())

    chat.set_messages(lambda messages: messages[:2])

    assert [m.id for m in chat.messages] == ["u1", "a1"]
    assert [s.id for s in chat.sections] == ["u1"]


def test_find_message() -> None:
    chat = Chat("c1", ScriptedTransport(), four_message_log())

    found = chat.find_message("u2")

    assert found is not None and found.role == "user"
    assert chat.find_message("missing") is None
