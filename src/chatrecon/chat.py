"""
The streaming transport adapter: owns the canonical message log of one
conversation and its request status.
"""

import asyncio
from collections.abc import Callable, Mapping, Sequence

from chatrecon.exceptions import InvalidPivotRoleError, MalformedPartError, PivotNotFoundError, TransportFailure
from chatrecon.log import get_logger
from chatrecon.models import (
    ChatStatus,
    Message,
    Payload,
    Section,
    ToolInvocationPart,
    find_message_index,
    generate_id,
    utc_now,
)
from chatrecon.sections import build_sections
from chatrecon.serialization import convert
from chatrecon.transport.base import ChatTransport
from chatrecon.wire import (
    ChatRequest,
    ErrorChunk,
    FinishChunk,
    RegenerateAssistantMessageRequest,
    StartChunk,
    SubmitUserMessageRequest,
    ToolOutputAvailableChunk,
    apply_delta,
    upsert_tool_part,
)

logger = get_logger(__name__)

type Listener = Callable[["Chat"], None]
type FinishCallback = Callable[[Message | None], None]
type ErrorCallback = Callable[[TransportFailure], None]
type MessagesUpdate = Sequence[Message] | Callable[[list[Message]], Sequence[Message]]


class Chat:
    """
    Status lifecycle: idle -> submitted on request, submitted -> streaming on the
    first delta, back to idle on completion, failure or stop.

    Transport failures never escape the public methods: they are recorded on
    `error`, reported once through `on_error` and returned to the caller.
    """

    chat_id: str
    error: TransportFailure | None

    def __init__(
        self,
        chat_id: str,
        transport: ChatTransport,
        messages: Sequence[Message] = (),
        *,
        on_finish: FinishCallback | None = None,
        on_error: ErrorCallback | None = None,
        id_generator: Callable[[], str] = generate_id,
        tool_output_types: Mapping[str, type] | None = None,
    ) -> None:
        self.chat_id = chat_id
        self.error = None
        self._transport = transport
        self._messages: list[Message] = list(messages)
        self._status = ChatStatus.IDLE
        self._active: asyncio.Task[Message | None] | None = None
        self._listeners: list[Listener] = []
        self._on_finish = on_finish
        self._on_error = on_error
        self._id_generator = id_generator
        self._tool_output_types: Mapping[str, type] = tool_output_types or {}
        self._log = logger.bind(chat_id=chat_id)

    # ---------- Observable state ----------

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def status(self) -> ChatStatus:
        return self._status

    @property
    def is_loading(self) -> bool:
        return self._status in (ChatStatus.SUBMITTED, ChatStatus.STREAMING)

    @property
    def sections(self) -> list[Section]:
        return build_sections(self._messages)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Registers a change listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def find_message(self, message_id: str) -> Message | None:
        index = find_message_index(self._messages, message_id)
        return self._messages[index] if index >= 0 else None

    def set_messages(self, update: MessagesUpdate) -> None:
        """Replaces the log, either with a sequence or with the result of an updater function."""
        new_messages = update(list(self._messages)) if callable(update) else update
        self._messages = list(new_messages)
        self._changed()

    # ---------- Operations ----------

    async def send_message(self, message: Message) -> TransportFailure | None:
        if message.created_at is None:
            message.created_at = utc_now()
        self._messages.append(message)
        self._changed()
        request = SubmitUserMessageRequest(chat_id=self.chat_id, message=message, message_id=message.id)
        return await self._make_request(request)

    async def regenerate(self, message_id: str | None = None) -> TransportFailure | None:
        """
        Regenerates the assistant output after a point in the log.

        A target assistant message is dropped together with everything after it.
        A target user message is kept as the new tail and sent along (edit case).
        Without a target, the last assistant message is regenerated.
        """
        if message_id is None:
            index = next(
                (i for i in range(len(self._messages) - 1, -1, -1) if self._messages[i].role == "assistant"), -1
            )
            if index < 0:
                raise PivotNotFoundError("No assistant message to regenerate.")
        else:
            index = find_message_index(self._messages, message_id)
            if index < 0:
                raise PivotNotFoundError(f"Message '{message_id}' not found in chat '{self.chat_id}'.")

        target = self._messages[index]
        match target.role:
            case "assistant":
                self._messages = self._messages[:index]
            case _:
                self._messages = self._messages[: index + 1]
        self._changed()

        request = RegenerateAssistantMessageRequest(
            chat_id=self.chat_id,
            message_id=target.id,
            message=target if target.role == "user" else None,
        )
        return await self._make_request(request)

    async def resubmit(self) -> TransportFailure | None:
        """Sends the trailing user message again, as a fresh submission."""
        if not self._messages or self._messages[-1].role != "user":
            raise InvalidPivotRoleError("The last message is not a user message; nothing to resubmit.")
        last = self._messages[-1]
        request = SubmitUserMessageRequest(chat_id=self.chat_id, message=last, message_id=last.id)
        return await self._make_request(request)

    def stop(self) -> None:
        """Abandons the active exchange. Safe to call at any time; a no-op when idle."""
        task = self._active
        if task is None and self._status is ChatStatus.IDLE:
            return
        self._active = None
        if task is not None and not task.done():
            _ = task.cancel()
        self._set_status(ChatStatus.IDLE)
        self._log.info("exchange stopped")

    def add_tool_result(self, tool_call_id: str, output: Payload) -> Message:
        """Routes a client-side tool result to the tool invocation with this call id."""
        for message in reversed(self._messages):
            for part in message.parts:
                if isinstance(part, ToolInvocationPart) and part.tool_call_id == tool_call_id:
                    self._validate_tool_output(part.tool_name, output)
                    _ = upsert_tool_part(
                        message.parts, tool_call_id, state="output-available", output=output, create=False
                    )
                    self._changed()
                    return message
        raise PivotNotFoundError(f"No tool invocation with call id '{tool_call_id}'.")

    # ---------- Internal ----------

    def _validate_tool_output(self, tool_name: str | None, output: Payload) -> None:
        if tool_name is None or tool_name not in self._tool_output_types:
            return
        _ = convert(output, self._tool_output_types[tool_name])

    async def _make_request(self, request: ChatRequest) -> TransportFailure | None:
        if self._active is not None:
            # A new request supersedes whatever is still streaming
            self.stop()

        self.error = None
        self._set_status(ChatStatus.SUBMITTED)
        task = asyncio.create_task(self._consume(request))
        self._active = task

        try:
            assistant = await task
        except asyncio.CancelledError:
            if self._active is task:
                # Cancelled from outside rather than through stop()
                self._active = None
                self._set_status(ChatStatus.IDLE)
                raise
            return None
        except TransportFailure as e:
            if self._active is task:
                self._active = None
                self._fail(e)
                return e
            return None
        except BaseException:
            if self._active is task:
                self._active = None
                self._set_status(ChatStatus.IDLE)
            raise

        if self._active is not task:
            return None
        self._active = None
        self._set_status(ChatStatus.IDLE)
        self._log.info("exchange finished", trigger=request.trigger, message_id=assistant.id if assistant else None)
        if self._on_finish is not None:
            self._on_finish(assistant)
        return None

    async def _consume(self, request: ChatRequest) -> Message | None:
        assistant: Message | None = None
        try:
            async for delta in self._transport.stream(request):
                match delta:
                    case ErrorChunk(error_text=error_text):
                        raise TransportFailure(error_text)
                    case FinishChunk():
                        continue
                    case StartChunk(message_id=message_id):
                        assistant = self._ensure_assistant(assistant, message_id)
                    case ToolOutputAvailableChunk(tool_call_id=call_id, output=output):
                        assistant = self._ensure_assistant(assistant, None)
                        if not self._route_tool_output(call_id, output):
                            apply_delta(assistant, delta)
                    case _:
                        assistant = self._ensure_assistant(assistant, None)
                        apply_delta(assistant, delta)
                self._changed()
        except MalformedPartError as e:
            raise TransportFailure(f"Malformed part in response: {e.message}") from e
        return assistant

    def _route_tool_output(self, tool_call_id: str, output: Payload) -> bool:
        # Results for calls started in an earlier message go back to that message
        for message in reversed(self._messages):
            if upsert_tool_part(message.parts, tool_call_id, state="output-available", output=output, create=False):
                return True
        return False

    def _ensure_assistant(self, assistant: Message | None, message_id: str | None) -> Message:
        if assistant is not None:
            return assistant
        assistant = Message(
            id=message_id or self._id_generator(),
            role="assistant",
            parts=[],
            created_at=utc_now(),
        )
        self._messages.append(assistant)
        self._set_status(ChatStatus.STREAMING)
        return assistant

    def _fail(self, error: TransportFailure) -> None:
        self.error = error
        self._set_status(ChatStatus.IDLE)
        self._log.error("exchange failed", error=error.message)
        if self._on_error is not None:
            self._on_error(error)

    def _set_status(self, status: ChatStatus) -> None:
        if status is self._status:
            return
        self._log.debug("status changed", old=self._status.value, new=status.value)
        self._status = status
        self._changed()

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self)
