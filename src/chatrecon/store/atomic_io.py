import os
from collections.abc import Iterable
from contextlib import suppress
from pathlib import Path
from tempfile import mkstemp


def atomic_write_lines(path: Path, lines: Iterable[str], encoding: str = "utf-8") -> None:
    """Replaces `path` with the given lines (one per line) without exposing a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = mkstemp(suffix=path.suffix, prefix=path.name + ".tmp", dir=path.parent)
    tmp_path = Path(tmp)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            for line in lines:
                _ = f.write(line)
                _ = f.write("\n")
            f.flush()
            with suppress(OSError):
                os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


def append_line(path: Path, line: str, encoding: str = "utf-8") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding=encoding) as f:
        _ = f.write(line)
        _ = f.write("\n")
        f.flush()
        with suppress(OSError):
            os.fsync(f.fileno())
