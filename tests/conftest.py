# pyright: standard
from collections.abc import Iterator

import pytest

from chatrecon import events


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def clear_event_handlers() -> Iterator[None]:
    yield
    events._handlers.clear()  # pyright: ignore[reportPrivateUsage]
