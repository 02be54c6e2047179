from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Literal, NoReturn

from chatrecon.chat import Chat
from chatrecon.exceptions import (
    ChatReconError,
    InvalidPivotRoleError,
    NoPrecedingMessageError,
    PivotNotFoundError,
    ReconciliationInProgressError,
)
from chatrecon.log import get_logger
from chatrecon.models import find_message_index
from chatrecon.notify import Notifier
from chatrecon.reconcile.results import ReconciliationResult
from chatrecon.reconcile.strategies import ReconciliationStrategy

logger = get_logger(__name__)


class ReconciliationController:
    """
    Edit-and-regenerate and reload-from for one conversation.

    Structural problems (unknown pivot, wrong role, an operation already running)
    are reported and raised before anything is mutated. Failures after the local
    edit are reported and returned in the result; the local edit stays.
    """

    chat: Chat
    strategy: ReconciliationStrategy
    divergence_count: int
    failures: Counter[str]

    def __init__(self, chat: Chat, strategy: ReconciliationStrategy, notifier: Notifier | None = None) -> None:
        self.chat = chat
        self.strategy = strategy
        self.divergence_count = 0
        self.failures = Counter()
        self._notifier = notifier
        self._in_flight: Literal["edit", "reload"] | None = None
        self._log = logger.bind(chat_id=chat.chat_id, strategy=strategy.name)

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    async def edit_and_regenerate(self, message_id: str, new_text: str) -> ReconciliationResult:
        with self._exclusive("edit"):
            messages = self.chat.messages
            index = find_message_index(messages, message_id)
            if index < 0:
                self._reject(PivotNotFoundError(f"Message '{message_id}' not found; nothing to edit."))
            if messages[index].role != "user":
                self._reject(InvalidPivotRoleError(f"Only user messages can be edited, '{message_id}' is not one."))

            result = await self.strategy.edit(self.chat, index, new_text)
            self._record(result)
            return result

    async def reload_from(self, follower_message_id: str) -> ReconciliationResult:
        with self._exclusive("reload"):
            messages = self.chat.messages
            index = find_message_index(messages, follower_message_id)
            if index < 1:
                self._reject(
                    NoPrecedingMessageError(f"No message precedes '{follower_message_id}'; nothing to reload from.")
                )
            if messages[index - 1].role != "user":
                self._reject(
                    InvalidPivotRoleError(
                        f"Reload needs a user message before '{follower_message_id}', "
                        + f"found '{messages[index - 1].role}'."
                    )
                )

            result = await self.strategy.reload(self.chat, index)
            self._record(result)
            return result

    # ---------- Internal ----------

    @contextmanager
    def _exclusive(self, operation: Literal["edit", "reload"]) -> Iterator[None]:
        if self._in_flight is not None:
            self._reject(
                ReconciliationInProgressError(f"Cannot start a {operation} while a {self._in_flight} is in progress.")
            )
        self._in_flight = operation
        try:
            yield
        finally:
            self._in_flight = None

    def _reject(self, error: ChatReconError) -> NoReturn:
        self.failures[type(error).__name__] += 1
        self._log.warning("reconciliation rejected", error=error.message, error_type=type(error).__name__)
        if self._notifier is not None:
            self._notifier.error(error.message)
        raise error

    def _record(self, result: ReconciliationResult) -> None:
        if result.truncation.error is not None:
            error = result.truncation.error
            self.divergence_count += 1
            self.failures[type(error).__name__] += 1
            self._log.error(
                "store truncation failed; local log kept",
                operation=result.operation,
                message_id=result.target_id,
                error=error.message,
            )
            if self._notifier is not None:
                self._notifier.error(f"Failed to update saved history: {error.message}")

        if result.transport.error is not None:
            # Already reported to the user by the chat's error callback
            self.failures[type(result.transport.error).__name__] += 1
            self._log.error(
                "regeneration failed after local edit",
                operation=result.operation,
                message_id=result.target_id,
                error=result.transport.error.message,
            )

        if result.ok:
            self._log.info("reconciliation finished", operation=result.operation, message_id=result.target_id)
