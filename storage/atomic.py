"""
Atomic file writing with fsync, so readers never see a partial file.

Pattern:
  1. Write to temporary file in the same directory
  2. Call fsync to flush to disk
  3. chmod the temporary file to the final mode
  4. Rename atomically (atomic on POSIX filesystems)

A crash during the write leaves the old file intact.  Staples, CSRs and
published certificates all go through here.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional


def atomic_write_text(
    path: Path,
    content: str,
    encoding: str = "utf-8",
    mode: Optional[int] = None,
) -> None:
    """Atomically write text to a file with fsync."""
    atomic_write_bytes(path, content.encode(encoding), mode=mode)


def atomic_write_bytes(path: Path, content: bytes, mode: Optional[int] = None) -> None:
    """
    Atomically write bytes to a file with fsync.

    Writes to a temp file in the same directory, fsyncs, then renames atomically.
    When ``mode`` is given the permissions are applied before the rename.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    # Same directory as the target so the rename never crosses filesystems
    fd, temp_path = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
    )

    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        if mode is not None:
            os.chmod(temp_path, mode)

        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def atomic_copy(src: Path, dst: Path, mode: Optional[int] = None) -> bool:
    """
    Atomically replace ``dst`` with the bytes of ``src``.

    Returns False (and leaves ``dst`` untouched) when the contents already match.
    """
    data = src.read_bytes()
    if dst.exists() and dst.read_bytes() == data:
        if mode is not None:
            os.chmod(dst, mode)
        return False
    atomic_write_bytes(dst, data, mode=mode)
    return True
