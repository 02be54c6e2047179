from collections.abc import Iterable

from chatrecon.models import Message, Section


def build_sections(messages: Iterable[Message]) -> list[Section]:
    """
    Partitions a flat message log into sections: one user message plus the
    assistant messages that follow it, up to the next user message.

    Messages before the first user message and roles other than user/assistant
    are left out of the view. The log itself is never touched, so the result can
    be recomputed on every change.
    """
    result: list[Section] = []
    current: Section | None = None

    for message in messages:
        match message.role:
            case "user":
                if current is not None:
                    result.append(current)
                current = Section(id=message.id, user_message=message, assistant_messages=[])
            case "assistant" if current is not None:
                current.assistant_messages.append(message)
            case _:
                pass

    if current is not None:
        result.append(current)

    return result
