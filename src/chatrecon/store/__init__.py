"""
Durable transcript storage.

Provides:
- Persisted record shapes and part <-> record conversion
- The TranscriptStore contract (append, truncate trailing, load)
- JSONL, HTTP and in-memory implementations
"""

from .base import TranscriptStore
from .http_store import HttpTranscriptStore
from .jsonl_store import JsonlTranscriptStore
from .memory import InMemoryTranscriptStore
from .records import (
    PartRecord,
    StoredMessage,
    dumps_stored_message,
    from_record,
    load_stored_message,
    parts_from_content,
    to_record,
)

__all__ = [
    "TranscriptStore",
    "HttpTranscriptStore",
    "JsonlTranscriptStore",
    "InMemoryTranscriptStore",
    "PartRecord",
    "StoredMessage",
    "dumps_stored_message",
    "from_record",
    "load_stored_message",
    "parts_from_content",
    "to_record",
]
