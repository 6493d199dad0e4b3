"""
release-orchestrator — filesystem utilities

File: src/release_orchestrator/utils/fs.py

Purpose
- Atomic writes for run archives and generated env files.
- Guarded deletion that refuses paths outside the pipeline working directory.
"""

from __future__ import annotations

import os
import tempfile
from contextlib import suppress
from pathlib import Path

PathLike = str | os.PathLike[str]


def atomic_write(
    path: PathLike,
    data: bytes | str,
    *,
    encoding: str = "utf-8",
    mode: int | None = None,
) -> None:
    """Replace ``path`` with ``data`` so readers see the old or the new file, never a mix.

    The bytes go to a sibling temp file that is fsynced and then renamed over
    the target. ``mode`` is set on the temp file, so a 0600 env file is never
    visible with wider permissions.
    """

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = data if isinstance(data, bytes) else data.encode(encoding)

    fd, scratch = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".part")
    try:
        with open(fd, "wb") as stream:
            stream.write(payload)
            stream.flush()
            os.fsync(stream.fileno())
        if mode is not None:
            os.chmod(scratch, mode)
        os.replace(scratch, target)
    except BaseException:
        with suppress(OSError):
            os.unlink(scratch)
        raise


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Whether ``child`` resolves to a location under the existing directory ``parent``."""

    root = Path(parent).resolve()
    if not root.is_dir():
        return False
    return Path(child).resolve().is_relative_to(root)


def safe_unlink(path: PathLike, root: PathLike) -> bool:
    """Remove one file under ``root``.

    Returns ``False`` if it was already gone. A path that escapes ``root``
    raises ``ValueError``; a directory raises ``IsADirectoryError``.
    """

    target = Path(path)
    # Resolve the parent only, so a symlink inside root is removed, not followed.
    located = target.parent.resolve() / target.name
    if not located.is_relative_to(Path(root).resolve(strict=True)):
        raise ValueError(f"refusing to delete path outside working directory: {target}")
    if target.is_dir() and not target.is_symlink():
        raise IsADirectoryError(f"refusing to delete directory: {target}")
    try:
        target.unlink()
    except FileNotFoundError:
        return False
    return True


__all__ = [
    "atomic_write",
    "is_within",
    "safe_unlink",
]
