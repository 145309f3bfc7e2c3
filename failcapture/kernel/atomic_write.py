"""Atomic write helpers (temp + fsync + replace).

Every bundle file goes through here so that a crash mid-write never leaves a
half-written file at its final path. The temp file is a dot-prefixed sibling of
the target, so the rename never crosses a filesystem boundary.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import IO, Any, Callable


def _fsync_dir(path: Path) -> None:
    try:
        fd = os.open(str(path), os.O_RDONLY)
    except Exception:
        return
    try:
        try:
            os.fsync(fd)
        except Exception:
            return
    finally:
        try:
            os.close(fd)
        except Exception:
            pass


def _replace_atomically(path: Path, fill: Callable[[IO[bytes]], None], *, fsync: bool) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd = None
    tmp_path = None
    try:
        tmp_fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        tmp_path = Path(tmp_name)
        with os.fdopen(tmp_fd, "wb") as handle:
            tmp_fd = None
            fill(handle)
            handle.flush()
            if fsync:
                try:
                    os.fsync(handle.fileno())
                except Exception:
                    pass
        os.replace(str(tmp_path), str(path))
        tmp_path = None
        if fsync:
            _fsync_dir(path.parent)
    finally:
        if tmp_fd is not None:
            try:
                os.close(tmp_fd)
            except Exception:
                pass
        if tmp_path is not None and tmp_path.exists():
            try:
                tmp_path.unlink()
            except Exception:
                pass


def atomic_write_bytes(path: Path, payload: bytes, *, fsync: bool = True) -> None:
    """Atomically write raw bytes."""
    data = bytes(payload)
    _replace_atomically(Path(path), lambda handle: handle.write(data), fsync=fsync)


def atomic_write_text(path: Path, text: str, *, fsync: bool = True) -> None:
    atomic_write_bytes(Path(path), str(text).encode("utf-8"), fsync=fsync)


def atomic_write_json(path: Path, payload: Any, *, sort_keys: bool = True, indent: int | None = 2) -> None:
    text = json.dumps(payload, sort_keys=bool(sort_keys), indent=indent, ensure_ascii=False)
    atomic_write_text(Path(path), text + "\n", fsync=True)


def atomic_copy_file(src: Path, dst: Path, *, fsync: bool = True) -> None:
    """Copy ``src`` to ``dst`` through a sibling temp file.

    Raises FileNotFoundError when ``src`` is missing; ``dst`` is untouched then.
    """
    with Path(src).open("rb") as source:
        _replace_atomically(
            Path(dst),
            lambda handle: shutil.copyfileobj(source, handle, length=1024 * 1024),
            fsync=fsync,
        )
