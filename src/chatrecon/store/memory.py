from collections import defaultdict
from datetime import datetime
from typing import override

from chatrecon.models import Message
from chatrecon.store.base import TranscriptStore
from chatrecon.store.records import StoredMessage, as_utc, from_record, to_record


class InMemoryTranscriptStore(TranscriptStore):
    """Process-local store keeping records as they would be persisted."""

    def __init__(self) -> None:
        self._records: defaultdict[str, list[StoredMessage]] = defaultdict(list)

    @override
    async def append_transcript(self, chat_id: str, message: Message) -> None:
        records = self._records[chat_id]
        if any(r.id == message.id for r in records):
            return
        records.append(to_record(chat_id, message))

    @override
    async def delete_trailing_records(self, chat_id: str, after: datetime) -> int:
        pivot = as_utc(after)
        records = self._records[chat_id]
        kept = [r for r in records if r.created_at <= pivot]
        self._records[chat_id] = kept
        return len(records) - len(kept)

    @override
    async def load_transcript(self, chat_id: str) -> list[Message]:
        records = sorted(self._records[chat_id], key=lambda r: r.created_at)
        return [from_record(r) for r in records]
