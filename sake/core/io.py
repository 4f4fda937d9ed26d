# sake/core/io.py
import contextlib
import os
import sys
import tempfile
from pathlib import Path

_DIR_FSYNC_PLATFORMS = ("darwin", "linux")


def _sync_parent(path: Path) -> None:
    """Flush the directory holding *path* so a rename into it is on disk (POSIX only)."""
    if not sys.platform.startswith(_DIR_FSYNC_PLATFORMS):
        return
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    with contextlib.suppress(OSError):
        dir_fd = os.open(path.parent, flags)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)


def ensure_file(path: Path | str) -> Path:
    """Create an empty file (and its parents) at *path* unless one already exists."""
    target = Path(path)
    if not target.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
        target.touch()
    return target


def atomic_write_text(path: Path | str, content: str) -> None:
    """
    Replace the file at *path* with *content* in one step.

    The text goes to a hidden sibling file which is fsynced and then moved
    over the destination with os.replace, so a reader sees either the old
    file or the new one. The sibling is removed if anything fails.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, scratch_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    scratch = Path(scratch_name)
    try:
        try:
            stream = os.fdopen(fd, "w", encoding="utf-8")
        except Exception:
            os.close(fd)
            raise
        with stream:
            stream.write(content)
            stream.flush()
            os.fsync(stream.fileno())
        os.replace(scratch, target)
    except Exception:
        with contextlib.suppress(OSError):
            scratch.unlink()
        raise
    _sync_parent(target)
