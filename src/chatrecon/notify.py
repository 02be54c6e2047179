"""User-visible notifications (the toast seam)."""

from typing import Literal, Protocol, override

from msgspec import Struct


class Notifier(Protocol):
    def error(self, message: str) -> None: ...

    def info(self, message: str) -> None: ...


class ConsoleNotifier:
    """Prints notifications to stderr with rich markup."""

    def __init__(self) -> None:
        from rich.console import Console

        self._console = Console(stderr=True)

    def error(self, message: str) -> None:
        self._console.print(f"[red]{message}[/red]", highlight=False)

    def info(self, message: str) -> None:
        self._console.print(f"[dim]{message}[/dim]", highlight=False)


class Notification(Struct, frozen=True):
    level: Literal["error", "info"]
    message: str


class RecordingNotifier:
    """Keeps notifications in memory, for embedding and tests."""

    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    def error(self, message: str) -> None:
        self.notifications.append(Notification(level="error", message=message))

    def info(self, message: str) -> None:
        self.notifications.append(Notification(level="info", message=message))

    @property
    def errors(self) -> list[str]:
        return [n.message for n in self.notifications if n.level == "error"]

    @override
    def __repr__(self) -> str:
        return f"RecordingNotifier({len(self.notifications)} notifications)"
