"""In-process named signals, used for notifications that cross conversation views."""

from collections import defaultdict
from collections.abc import Callable

from chatrecon.log import get_logger

CHAT_HISTORY_UPDATED = "chat-history-updated"

type Handler = Callable[..., None]

_handlers: defaultdict[str, list[Handler]] = defaultdict(list)

logger = get_logger(__name__)


def connect(name: str, handler: Handler) -> None:
    if handler not in _handlers[name]:
        _handlers[name].append(handler)


def disconnect(name: str, handler: Handler) -> None:
    if handler in _handlers[name]:
        _handlers[name].remove(handler)


def emit(name: str, **payload: object) -> None:
    logger.debug("event emitted", event_name=name, handlers=len(_handlers[name]))
    for handler in list(_handlers[name]):
        handler(**payload)
