import os
from pathlib import Path
from typing import Literal

from msgspec import Struct

from chatrecon.exceptions import ConfigurationError

type StrategyName = Literal["manual", "delegated"]

DEFAULT_API_URL = "http://localhost:3000/api/chat"
DEFAULT_STORE_DIR = ".chatrecon/transcripts"
DEFAULT_TIMEOUT = 60.0

NEW_CHAT_PATH = "/"
CHAT_PATH_TEMPLATE = "/search/{chat_id}"


class Settings(Struct, frozen=True):
    api_url: str = DEFAULT_API_URL
    store_dir: Path = Path(DEFAULT_STORE_DIR)
    strategy: StrategyName = "delegated"
    timeout: float = DEFAULT_TIMEOUT
    log_level: str = "WARNING"
    store_url: str | None = None


def _parse_strategy(raw: str) -> StrategyName:
    match raw.strip().lower():
        case "manual":
            return "manual"
        case "delegated":
            return "delegated"
        case other:
            raise ConfigurationError(f"Unknown reconciliation strategy '{other}'. Expected 'manual' or 'delegated'.")


def _parse_timeout(raw: str) -> float:
    try:
        timeout = float(raw)
    except ValueError:
        raise ConfigurationError(f"CHATRECON_TIMEOUT must be a number, got '{raw}'.") from None
    if timeout <= 0:
        raise ConfigurationError("CHATRECON_TIMEOUT must be positive.")
    return timeout


def load_settings() -> Settings:
    """Builds Settings from CHATRECON_* environment variables, falling back to defaults."""
    return Settings(
        api_url=os.getenv("CHATRECON_API_URL") or DEFAULT_API_URL,
        store_dir=Path(os.getenv("CHATRECON_STORE_DIR") or DEFAULT_STORE_DIR),
        strategy=_parse_strategy(os.getenv("CHATRECON_STRATEGY") or "delegated"),
        timeout=_parse_timeout(os.getenv("CHATRECON_TIMEOUT") or str(DEFAULT_TIMEOUT)),
        log_level=(os.getenv("CHATRECON_LOG_LEVEL") or "WARNING").upper(),
        store_url=os.getenv("CHATRECON_STORE_URL") or None,
    )
