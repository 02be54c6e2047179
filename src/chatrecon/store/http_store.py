from datetime import datetime
from typing import override

import httpx
import msgspec

from chatrecon.config import DEFAULT_TIMEOUT
from chatrecon.exceptions import StoreError, TruncationFailure
from chatrecon.models import Message
from chatrecon.serialization import to_json
from chatrecon.store.base import TranscriptStore
from chatrecon.store.records import StoredMessage, as_utc, from_record, to_record


class TruncateResponse(msgspec.Struct, frozen=True):
    deleted: int = 0


class HttpTranscriptStore(TranscriptStore):
    """
    The store contracts over HTTP:

    - POST {base}/chats/{id}/messages      append (idempotent by id)
    - POST {base}/chats/{id}/truncate      {"after": <iso timestamp>}
    - GET  {base}/chats/{id}/messages      snapshot
    """

    base_url: str

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None, timeout: float = DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @override
    async def append_transcript(self, chat_id: str, message: Message) -> None:
        try:
            response = await self._client.post(
                f"{self.base_url}/chats/{chat_id}/messages",
                content=to_json(to_record(chat_id, message)),
                headers={"content-type": "application/json"},
            )
            _ = response.raise_for_status()
        except httpx.HTTPError as e:
            raise StoreError(f"Could not append message '{message.id}': {e}") from e

    @override
    async def delete_trailing_records(self, chat_id: str, after: datetime) -> int:
        try:
            response = await self._client.post(
                f"{self.base_url}/chats/{chat_id}/truncate",
                json={"after": as_utc(after).isoformat()},
            )
            _ = response.raise_for_status()
        except httpx.HTTPError as e:
            raise TruncationFailure(f"Store rejected truncation of '{chat_id}': {e}") from e

        if not response.content:
            return 0
        try:
            return msgspec.json.decode(response.content, type=TruncateResponse).deleted
        except msgspec.DecodeError:
            return 0

    @override
    async def load_transcript(self, chat_id: str) -> list[Message]:
        try:
            response = await self._client.get(f"{self.base_url}/chats/{chat_id}/messages")
            _ = response.raise_for_status()
            records = msgspec.json.decode(response.content, type=list[StoredMessage])
        except httpx.HTTPError as e:
            raise StoreError(f"Could not load transcript '{chat_id}': {e}") from e
        except msgspec.DecodeError as e:
            raise StoreError(f"Malformed transcript for '{chat_id}': {e}") from e
        records.sort(key=lambda r: r.created_at)
        return [from_record(r) for r in records]

    @override
    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
