"""Terminal rendering of conversations."""

import sys
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from chatrecon.models import (
    FilePart,
    Message,
    SourceDocumentPart,
    SourceUrlPart,
    ToolInvocationPart,
    message_text,
)
from chatrecon.sections import build_sections

if TYPE_CHECKING:
    from chatrecon.chat import Chat


def is_terminal() -> bool:
    """Checks if stdout is a TTY."""
    return sys.stdout.isatty()


def render_message_text(message: Message) -> str:
    """Plain-text rendering of a message: its text, then one line per non-text part."""
    lines: list[str] = []
    if text := message_text(message):
        lines.append(text)
    for part in message.parts:
        match part:
            case FilePart(filename=filename, url=url):
                lines.append(f"[file] {filename} <{url}>")
            case SourceUrlPart(url=url, title=title):
                lines.append(f"[source] {title or url} <{url}>")
            case SourceDocumentPart(title=title):
                lines.append(f"[document] {title}")
            case ToolInvocationPart(tool_name=name, state=state):
                lines.append(f"[tool] {name or 'tool'} ({state})")
            case _:
                pass
    return "\n".join(lines)


def print_sections(messages: Sequence[Message]) -> None:
    """Prints each turn: the user message, then its replies, with ids for edit/reload."""
    from rich.console import Console
    from rich.markdown import Markdown
    from rich.rule import Rule

    console = Console()
    for number, section in enumerate(build_sections(messages)):
        console.print(Rule(f"turn {number}", style="dim"))
        console.print(f"[bold]user[/bold] [dim]{section.user_message.id}[/dim]")
        console.print(render_message_text(section.user_message), markup=False, highlight=False)
        for reply in section.assistant_messages:
            console.print(f"[bold]assistant[/bold] [dim]{reply.id}[/dim]")
            console.print(Markdown(render_message_text(reply)))


def live_stream(chat: "Chat") -> Callable[[], None]:
    """
    Renders the streaming assistant message live while the chat is loading.

    Returns a function that stops rendering.
    """
    from rich.console import Console
    from rich.live import Live
    from rich.markdown import Markdown
    from rich.spinner import Spinner

    live = Live(Spinner("dots", "Generating response..."), console=Console(), auto_refresh=True)
    live.start()

    def on_change(current: "Chat") -> None:
        messages = current.messages
        if messages and messages[-1].role == "assistant" and current.is_loading:
            live.update(Markdown(render_message_text(messages[-1])), refresh=True)

    unsubscribe = chat.subscribe(on_change)

    def stop() -> None:
        unsubscribe()
        messages = chat.messages
        if messages and messages[-1].role == "assistant":
            live.update(Markdown(render_message_text(messages[-1])), refresh=True)
        live.stop()

    return stop
