"""
Where truncation authority lives.

Manual replay: the client truncates the local log, asks the store to drop the
trailing records and re-submits the new tail itself.

Server-delegated: the client only edits its local copy (in place, keeping ids)
and issues one regenerate request; the server truncates and regenerates.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from typing import ClassVar, Literal, override

from msgspec.structs import replace

from chatrecon.chat import Chat
from chatrecon.config import StrategyName
from chatrecon.exceptions import ConfigurationError, TransportFailure, TruncationFailure
from chatrecon.log import get_logger
from chatrecon.models import EPOCH, Message, TextPart, generate_id, message_text, utc_now
from chatrecon.reconcile.results import PhaseOutcome, ReconciliationResult
from chatrecon.store.base import TranscriptStore

logger = get_logger(__name__)


def _transport_outcome(failure: TransportFailure | None) -> PhaseOutcome:
    return PhaseOutcome.ok() if failure is None else PhaseOutcome.failed(failure)


class ReconciliationStrategy(ABC):
    """
    Applies an already validated edit or reload.

    `index` always points at an existing message: the edited user message for
    `edit`, the follower of a user message for `reload`.
    """

    name: ClassVar[StrategyName]

    @abstractmethod
    async def edit(self, chat: Chat, index: int, new_text: str) -> ReconciliationResult: ...

    @abstractmethod
    async def reload(self, chat: Chat, index: int) -> ReconciliationResult: ...


class ManualReplayStrategy(ReconciliationStrategy):
    name: ClassVar[StrategyName] = "manual"

    def __init__(self, store: TranscriptStore, id_generator: Callable[[], str] = generate_id) -> None:
        self.store = store
        self._id_generator = id_generator

    @override
    async def edit(self, chat: Chat, index: int, new_text: str) -> ReconciliationResult:
        target = chat.messages[index]
        pivot = target.created_at or EPOCH
        replacement = self._new_user_message(new_text)

        # Phase 1: local, everything from the target on becomes the single edited message
        chat.set_messages(lambda messages: [*messages[:index], replacement])

        return await self._confirm(chat, "edit", target.id, replacement, pivot)

    @override
    async def reload(self, chat: Chat, index: int) -> ReconciliationResult:
        messages = chat.messages
        follower = messages[index]
        preceding = messages[index - 1]
        pivot = follower.created_at or EPOCH
        replacement = self._new_user_message(message_text(preceding))

        chat.set_messages(lambda current: [*current[: index - 1], replacement])

        return await self._confirm(chat, "reload", follower.id, replacement, pivot)

    async def _confirm(
        self,
        chat: Chat,
        operation: Literal["edit", "reload"],
        target_id: str,
        replacement: Message,
        pivot: datetime,
    ) -> ReconciliationResult:
        # Phase 2: remote truncation, then replay only once the store agrees
        try:
            deleted = await self.store.delete_trailing_records(chat.chat_id, pivot)
        except TruncationFailure as e:
            return ReconciliationResult(
                operation=operation,
                target_id=target_id,
                local_applied=True,
                truncation=PhaseOutcome.failed(e),
                transport=PhaseOutcome.skipped(),
                new_message_id=replacement.id,
            )
        logger.debug("store truncated", chat_id=chat.chat_id, pivot=pivot.isoformat(), deleted=deleted)

        failure = await chat.resubmit()
        return ReconciliationResult(
            operation=operation,
            target_id=target_id,
            local_applied=True,
            truncation=PhaseOutcome.ok(),
            transport=_transport_outcome(failure),
            new_message_id=replacement.id,
        )

    def _new_user_message(self, text: str) -> Message:
        return Message(id=self._id_generator(), role="user", parts=[TextPart(text=text)], created_at=utc_now())


class ServerDelegatedStrategy(ReconciliationStrategy):
    name: ClassVar[StrategyName] = "delegated"

    @override
    async def edit(self, chat: Chat, index: int, new_text: str) -> ReconciliationResult:
        target = chat.messages[index]
        # Same id: tool results and other lookups are keyed by message id
        updated = replace(target, parts=[TextPart(text=new_text)])
        chat.set_messages(lambda messages: [*messages[:index], updated, *messages[index + 1 :]])

        failure = await chat.regenerate(updated.id)
        return ReconciliationResult(
            operation="edit",
            target_id=target.id,
            local_applied=True,
            transport=_transport_outcome(failure),
            new_message_id=updated.id,
        )

    @override
    async def reload(self, chat: Chat, index: int) -> ReconciliationResult:
        follower = chat.messages[index]
        failure = await chat.regenerate(follower.id)
        return ReconciliationResult(
            operation="reload",
            target_id=follower.id,
            local_applied=True,
            transport=_transport_outcome(failure),
        )


def strategy_from_name(name: StrategyName, store: TranscriptStore | None = None) -> ReconciliationStrategy:
    match name:
        case "manual":
            if store is None:
                raise ConfigurationError("The manual reconciliation strategy needs a transcript store.")
            return ManualReplayStrategy(store)
        case "delegated":
            return ServerDelegatedStrategy()
