"""The operations a conversation view offers its user."""

from collections.abc import Callable, Mapping, Sequence

from msgspec import Struct

from chatrecon import events
from chatrecon.chat import Chat
from chatrecon.config import CHAT_PATH_TEMPLATE, NEW_CHAT_PATH
from chatrecon.exceptions import ChatReconError, PivotNotFoundError, TransportFailure
from chatrecon.log import get_logger
from chatrecon.models import FilePart, Message, Payload, UploadedFile, generate_id, user_message
from chatrecon.notify import Notifier, RecordingNotifier
from chatrecon.reconcile.controller import ReconciliationController
from chatrecon.reconcile.results import ReconciliationResult
from chatrecon.reconcile.strategies import ReconciliationStrategy
from chatrecon.store.base import TranscriptStore
from chatrecon.transport.base import ChatTransport

logger = get_logger(__name__)


class Location(Struct):
    """Client-visible location of the conversation view."""

    path: str = NEW_CHAT_PATH


def files_from_uploads(uploads: Sequence[UploadedFile]) -> list[FilePart]:
    """File parts for the uploads that finished; pending or failed ones are left out."""
    return [
        FilePart(media_type=upload.media_type, filename=upload.name, url=upload.url)
        for upload in uploads
        if upload.status == "uploaded" and upload.url is not None
    ]


class ChatSession:
    """
    Wires a Chat, a reconciliation strategy and a notifier for one conversation.

    Every failure reaches the notifier exactly once; operations that fail
    structurally still raise so callers can react.
    """

    chat: Chat
    controller: ReconciliationController
    location: Location

    def __init__(
        self,
        chat_id: str,
        transport: ChatTransport,
        strategy: ReconciliationStrategy,
        notifier: Notifier | None = None,
        *,
        messages: Sequence[Message] = (),
        location: Location | None = None,
        id_generator: Callable[[], str] = generate_id,
        tool_output_types: Mapping[str, type] | None = None,
    ) -> None:
        self.notifier = notifier or RecordingNotifier()
        self.location = location or Location()
        self.chat = Chat(
            chat_id,
            transport,
            messages,
            on_finish=self._on_finish,
            on_error=self._on_error,
            id_generator=id_generator,
            tool_output_types=tool_output_types,
        )
        self.controller = ReconciliationController(self.chat, strategy, self.notifier)

    @classmethod
    async def mount(
        cls,
        chat_id: str,
        transport: ChatTransport,
        strategy: ReconciliationStrategy,
        store: TranscriptStore,
        notifier: Notifier | None = None,
        location: Location | None = None,
    ) -> "ChatSession":
        """Creates a session seeded with the persisted snapshot of the conversation."""
        messages = await store.load_transcript(chat_id)
        logger.debug("conversation mounted", chat_id=chat_id, messages=len(messages))
        if location is None and messages:
            location = Location(path=CHAT_PATH_TEMPLATE.format(chat_id=chat_id))
        return cls(chat_id, transport, strategy, notifier, messages=messages, location=location)

    @property
    def chat_id(self) -> str:
        return self.chat.chat_id

    # ---------- UI-facing operations ----------

    async def submit(self, text: str, attachments: Sequence[UploadedFile] = ()) -> TransportFailure | None:
        """Sends a new user turn. Blank text without finished uploads is ignored."""
        files = files_from_uploads(attachments)
        if not text.strip() and not files:
            return None
        return await self.chat.send_message(user_message(text if text.strip() else "", files=files))

    async def select_suggested_query(self, text: str) -> TransportFailure | None:
        return await self.chat.send_message(user_message(text))

    async def edit_and_regenerate(self, message_id: str, new_text: str) -> ReconciliationResult:
        return await self.controller.edit_and_regenerate(message_id, new_text)

    async def reload_from(self, message_id: str) -> ReconciliationResult:
        return await self.controller.reload_from(message_id)

    def stop(self) -> None:
        self.chat.stop()

    def provide_tool_result(self, tool_call_id: str, output: Payload) -> Message:
        try:
            return self.chat.add_tool_result(tool_call_id, output)
        except ChatReconError as e:
            logger.warning("tool result rejected", chat_id=self.chat_id, tool_call_id=tool_call_id, error=e.message)
            if isinstance(e, PivotNotFoundError):
                self.notifier.error(e.message)
            else:
                self.notifier.error(f"Invalid tool result: {e.message}")
            raise

    # ---------- Callbacks ----------

    def _on_finish(self, message: Message | None) -> None:
        events.emit(events.CHAT_HISTORY_UPDATED, chat_id=self.chat_id)
        if self.location.path == NEW_CHAT_PATH:
            self.location.path = CHAT_PATH_TEMPLATE.format(chat_id=self.chat_id)
            logger.debug("location updated", chat_id=self.chat_id, path=self.location.path)

    def _on_error(self, error: TransportFailure) -> None:
        self.notifier.error(f"Error in chat: {error.message}")
