from abc import ABC, abstractmethod
from datetime import datetime

from chatrecon.models import Message


class TranscriptStore(ABC):
    """
    The two contracts the client relies on, plus the snapshot read used at mount.

    Implementations serialize appends and truncations per conversation.
    """

    @abstractmethod
    async def append_transcript(self, chat_id: str, message: Message) -> None:
        """Persists a message. Appending an id that is already stored is a no-op."""
        ...

    @abstractmethod
    async def delete_trailing_records(self, chat_id: str, after: datetime) -> int:
        """
        Deletes every record of the conversation created strictly after `after`.

        Returns the number of deleted records. Raises TruncationFailure.
        """
        ...

    @abstractmethod
    async def load_transcript(self, chat_id: str) -> list[Message]:
        """Returns the persisted messages in creation order."""
        ...

    async def aclose(self) -> None:
        """Releases any resources held by the store."""
        return None
