from __future__ import annotations

import asyncio
import re
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import ClassVar, override

import msgspec

from chatrecon.exceptions import MalformedPartError, StoreError, TruncationFailure
from chatrecon.log import get_logger
from chatrecon.models import Message
from chatrecon.store.atomic_io import append_line, atomic_write_lines
from chatrecon.store.base import TranscriptStore
from chatrecon.store.records import (
    StoredMessage,
    as_utc,
    dumps_stored_message,
    from_record,
    load_stored_message,
    to_record,
)

logger = get_logger(__name__)


class JsonlTranscriptStore(TranscriptStore):
    """
    One append-only JSONL file per conversation: <root>/<chat_id>.jsonl.

    - Appends are idempotent by message id.
    - Truncation rewrites the file atomically, keeping records at or before the pivot.
    - No index file; state is derived from the transcript itself.
    """

    _CHAT_ID_RE: ClassVar[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9_.-]+$")

    root: Path

    def __init__(self, root: Path) -> None:
        self.root = root

    # ---------- Public API ----------

    @override
    async def append_transcript(self, chat_id: str, message: Message) -> None:
        await asyncio.to_thread(self.append_sync, chat_id, message)

    @override
    async def delete_trailing_records(self, chat_id: str, after: datetime) -> int:
        return await asyncio.to_thread(self.delete_trailing_sync, chat_id, after)

    @override
    async def load_transcript(self, chat_id: str) -> list[Message]:
        return await asyncio.to_thread(self.load_sync, chat_id)

    async def replace_transcript(self, chat_id: str, messages: Sequence[Message]) -> None:
        await asyncio.to_thread(self.replace_sync, chat_id, messages)

    # ---------- Synchronous API (used by the CLI and the async wrappers) ----------

    def append_sync(self, chat_id: str, message: Message) -> bool:
        """Appends a message; returns False when its id was already stored."""
        path = self.transcript_path(chat_id)
        try:
            if any(r.id == message.id for r in self._read_records(path)):
                return False
            append_line(path, dumps_stored_message(to_record(chat_id, message)))
        except OSError as e:
            raise StoreError(f"Could not append to transcript '{chat_id}': {e}") from e
        return True

    def delete_trailing_sync(self, chat_id: str, after: datetime) -> int:
        pivot = as_utc(after)
        try:
            path = self.transcript_path(chat_id)
            records = self._read_records(path)
            kept = [r for r in records if r.created_at <= pivot]
            deleted = len(records) - len(kept)
            if deleted:
                atomic_write_lines(path, (dumps_stored_message(r) for r in kept))
        except (OSError, StoreError) as e:
            raise TruncationFailure(f"Could not truncate transcript '{chat_id}': {e}") from e

        logger.debug("transcript truncated", chat_id=chat_id, after=pivot.isoformat(), deleted=deleted)
        return deleted

    def load_sync(self, chat_id: str) -> list[Message]:
        path = self.transcript_path(chat_id)
        try:
            records = self._read_records(path)
        except OSError as e:
            raise StoreError(f"Could not read transcript '{chat_id}': {e}") from e
        # Stable sort keeps insertion order for identical timestamps
        records.sort(key=lambda r: r.created_at)
        return [from_record(r) for r in records]

    def replace_sync(self, chat_id: str, messages: Sequence[Message]) -> None:
        """Rewrites the transcript so it holds exactly `messages`."""
        path = self.transcript_path(chat_id)
        try:
            atomic_write_lines(path, (dumps_stored_message(to_record(chat_id, m)) for m in messages))
        except OSError as e:
            raise StoreError(f"Could not rewrite transcript '{chat_id}': {e}") from e
        logger.debug("transcript rewritten", chat_id=chat_id, messages=len(messages))

    def list_chats(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.stem for p in self.root.glob("*.jsonl") if p.is_file())

    def transcript_path(self, chat_id: str) -> Path:
        if not self._CHAT_ID_RE.match(chat_id) or chat_id in (".", ".."):
            raise StoreError(f"Invalid chat id: {chat_id!r}")
        return self.root / f"{chat_id}.jsonl"

    # ---------- Internal ----------

    def _read_records(self, path: Path) -> list[StoredMessage]:
        if not path.is_file():
            return []
        records: list[StoredMessage] = []
        with path.open("r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    records.append(load_stored_message(line))
                except (MalformedPartError, msgspec.DecodeError) as e:
                    raise StoreError(f"Corrupt record in {path} line {line_no}: {e}") from e
        return records
