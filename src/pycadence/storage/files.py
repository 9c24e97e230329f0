"""File helpers for file-backed state: safe names and atomic writes."""

from __future__ import annotations

import logging
import os
import re
import shutil
import threading
import time
from pathlib import Path

import xxhash

from pycadence.errors import StorageError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_REPEATED_UNDERSCORES = re.compile(r"__+")


def sanitize_filename(value: str) -> str:
    """Replace characters that are unsafe in file names with underscores."""
    return _REPEATED_UNDERSCORES.sub("_", _UNSAFE_CHARS.sub("_", value))


def entity_filename(entity_id: str, suffix: str = ".json") -> str:
    """
    File name for an entity's state record.

    Sanitizing alone maps "a/b" and "a_b" to the same name, so a short
    xxhash of the raw id is appended to keep distinct ids apart.
    """
    digest = xxhash.xxh64(entity_id.encode("utf-8")).hexdigest()[:12]
    return f"{sanitize_filename(entity_id)}-{digest}{suffix}"


def atomic_write_text(target: Path, content: str) -> None:
    """
    Replace ``target`` with ``content`` atomically.

    Writes to a temporary sibling and renames it over the target. The
    previous file is backed up first and restored if anything fails, so a
    reader sees either the old or the new content, never a partial file.

    Raises:
        StorageError: If the write or rename fails
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    token = f"{os.getpid()}.{threading.get_ident()}"
    tmp = target.with_name(f"{target.name}.tmp.{token}")
    backup = target.with_name(f"{target.name}.bak.{token}")
    had_original = target.exists()

    try:
        if had_original:
            shutil.copy2(target, backup)
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, target)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        if had_original and backup.exists():
            os.replace(backup, target)
            logger.warning(f"Restored {target} from backup after failed write")
        raise StorageError(f"Failed to write {target}: {e}") from e
    finally:
        backup.unlink(missing_ok=True)


def write_output(output_dir: Path, task_id: str, output: str) -> str:
    """
    Archive a command's output and return the path as the task's output_ref.

    File name: ``<sanitized task id>_output_<epoch seconds>.txt``.
    """
    path = output_dir / f"{sanitize_filename(task_id)}_output_{int(time.time())}.txt"
    atomic_write_text(path, output)
    return str(path)
