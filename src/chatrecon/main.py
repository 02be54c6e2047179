import asyncio
from collections.abc import Coroutine, Sequence
from sys import exit
from typing import Annotated, Any, final, override

import typer
from typer.core import TyperGroup

from chatrecon.config import Settings, load_settings
from chatrecon.console import is_terminal, live_stream, print_sections, render_message_text
from chatrecon.exceptions import ChatReconError
from chatrecon.log import configure_logging
from chatrecon.models import DEFAULT_TITLE, Message, extract_title
from chatrecon.notify import ConsoleNotifier
from chatrecon.reconcile.strategies import strategy_from_name
from chatrecon.session import ChatSession
from chatrecon.store.base import TranscriptStore
from chatrecon.store.http_store import HttpTranscriptStore
from chatrecon.store.jsonl_store import JsonlTranscriptStore
from chatrecon.transport.http import HttpChatTransport


@final
class ChatReconGroup(TyperGroup):
    @override
    def main(  # pyright: ignore[reportAny]
        self,
        args: Sequence[str] | None = None,
        prog_name: str | None = None,
        complete_var: str | None = None,
        standalone_mode: bool = True,
        windows_expand_args: bool = True,
        **extra: Any,  # pyright: ignore[reportAny, reportExplicitAny]
    ) -> Any:  # pyright: ignore[reportExplicitAny]
        try:
            return super().main(args, prog_name, complete_var, standalone_mode, windows_expand_args, **extra)  #  pyright: ignore[reportAny]
        except ChatReconError as e:
            typer.secho(f"Error: {e.message}", err=True, fg=typer.colors.RED)
            exit(e.exit_code)


app = typer.Typer(
    cls=ChatReconGroup,
    help="Inspect and continue streamed conversations: send, edit and reload turns.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)


@app.callback()
def main_callback(ctx: typer.Context) -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    ctx.obj = settings


def _settings(ctx: typer.Context) -> Settings:
    match ctx.obj:
        case Settings() as settings:
            return settings
        case _:
            return load_settings()


def _open_store(settings: Settings) -> TranscriptStore:
    if settings.store_url:
        return HttpTranscriptStore(settings.store_url, timeout=settings.timeout)
    return JsonlTranscriptStore(settings.store_dir)


async def _mirror_local_store(store: TranscriptStore, chat_id: str, messages: Sequence[Message]) -> None:
    # No server maintains the local file, so it is rewritten to match the client log,
    # including in-place edits and server-side truncations the delegated strategy relies on
    if isinstance(store, JsonlTranscriptStore):
        await store.replace_transcript(chat_id, messages)


def _run[T](coro: Coroutine[Any, Any, T]) -> T:  # pyright: ignore[reportExplicitAny]
    return asyncio.run(coro)


async def _with_session(settings: Settings, chat_id: str, action: str, *args: str) -> ChatSession:
    store = _open_store(settings)
    transport = HttpChatTransport(settings.api_url, timeout=settings.timeout)
    try:
        strategy = strategy_from_name(settings.strategy, store)
        session = await ChatSession.mount(chat_id, transport, strategy, store, notifier=ConsoleNotifier())
        stop_rendering = live_stream(session.chat) if is_terminal() else None
        try:
            match action:
                case "send":
                    _ = await session.submit(args[0])
                case "edit":
                    _ = await session.edit_and_regenerate(args[0], args[1])
                case "reload":
                    _ = await session.reload_from(args[0])
                case _:
                    raise ValueError(f"Unknown action: {action}")
        finally:
            if stop_rendering is not None:
                stop_rendering()
        await _mirror_local_store(store, chat_id, session.chat.messages)
    finally:
        await transport.aclose()
        await store.aclose()
    return session


async def _load_transcript(store: TranscriptStore, chat_id: str) -> list[Message]:
    try:
        return await store.load_transcript(chat_id)
    finally:
        await store.aclose()


def _print_reply(session: ChatSession) -> None:
    if is_terminal():
        return
    messages = session.chat.messages
    if messages and messages[-1].role == "assistant":
        print(render_message_text(messages[-1]))


@app.command()
def chats(ctx: typer.Context) -> None:
    """
    List conversations in the local transcript store, with their titles.
    """
    store = JsonlTranscriptStore(_settings(ctx).store_dir)
    for chat_id in store.list_chats():
        first_user = next((m for m in store.load_sync(chat_id) if m.role == "user"), None)
        title = extract_title(first_user) if first_user is not None else DEFAULT_TITLE
        print(f"{chat_id}\t{title}")


@app.command()
def history(
    ctx: typer.Context,
    chat_id: Annotated[str, typer.Argument(help="Conversation id.")],
) -> None:
    """
    Show a conversation grouped into turns, with message ids.
    """
    store = _open_store(_settings(ctx))
    messages = _run(_load_transcript(store, chat_id))
    if not messages:
        print(f"No messages in conversation '{chat_id}'.")
        raise typer.Exit(code=0)
    print_sections(messages)


@app.command()
def send(
    ctx: typer.Context,
    chat_id: Annotated[str, typer.Argument(help="Conversation id.")],
    text: Annotated[str, typer.Argument(help="Message text.")],
) -> None:
    """
    Send a new user message and stream the reply.
    """
    session = _run(_with_session(_settings(ctx), chat_id, "send", text))
    _print_reply(session)
    if session.chat.error is not None:
        raise typer.Exit(code=1)


@app.command()
def edit(
    ctx: typer.Context,
    chat_id: Annotated[str, typer.Argument(help="Conversation id.")],
    message_id: Annotated[str, typer.Argument(help="Id of the user message to edit.")],
    text: Annotated[str, typer.Argument(help="Replacement text.")],
) -> None:
    """
    Edit a past user message and regenerate everything after it.
    """
    session = _run(_with_session(_settings(ctx), chat_id, "edit", message_id, text))
    _print_reply(session)
    if session.chat.error is not None or session.controller.divergence_count:
        raise typer.Exit(code=1)


@app.command()
def reload(
    ctx: typer.Context,
    chat_id: Annotated[str, typer.Argument(help="Conversation id.")],
    message_id: Annotated[str, typer.Argument(help="Id of the message to regenerate.")],
) -> None:
    """
    Regenerate a reply, resending the user message before it.
    """
    session = _run(_with_session(_settings(ctx), chat_id, "reload", message_id))
    _print_reply(session)
    if session.chat.error is not None or session.controller.divergence_count:
        raise typer.Exit(code=1)


def main() -> None:
    app()
