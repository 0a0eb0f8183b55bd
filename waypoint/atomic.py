"""Crash-safe document publication for Waypoint stores.

A document is first staged as a hidden temp file next to its final name
(flushed, fsynced, permissions set), then published in one step:

- ``replace=True`` renames it over the target. Used for indexes, the config
  file and registry imports, which are rewritten whole.
- ``replace=False`` hard-links it to the target, which fails if the name is
  taken. Used for new checkpoint records: an id is claimed exactly once, even
  when two writers race for it.

Readers therefore see the previous document or the new one, never a torn
write. Failures come back as ``StorageError`` values; the staged file is
removed whatever happens.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from waypoint.errors import Result, StorageError, err, ok

logger = logging.getLogger(__name__)


def _stage(directory: Path, name: str, content: str, mode: int) -> str:
    """Write ``content`` to a durable temp file in ``directory``; return its path."""
    fd, staged = tempfile.mkstemp(dir=directory, prefix=f".{name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(staged, mode)
    except BaseException:
        os.unlink(staged)
        raise
    return staged


def publish(
    path: Path,
    content: str,
    mode: int = 0o600,
    replace: bool = True,
) -> Result[Path, StorageError]:
    """Publish text as ``path`` atomically.

    Args:
        path: Final document path; missing directories are created 0o700
        content: Document text (UTF-8)
        mode: Permissions of the published file
        replace: Overwrite an existing document (False: fail with DOCUMENT_EXISTS)

    Returns:
        Ok(path), or Err(StorageError) with code DOCUMENT_EXISTS,
        WRITE_PERMISSION_DENIED or WRITE_FAILED
    """
    path = Path(path)
    staged = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        staged = _stage(path.parent, path.name, content, mode)
        if replace:
            os.replace(staged, path)
            staged = None
        else:
            os.link(staged, path)
    except FileExistsError:
        return err(
            StorageError(
                code="DOCUMENT_EXISTS",
                message=f"{path} already exists",
                context={"path": str(path)},
            )
        )
    except PermissionError as e:
        logger.error(f"Permission denied publishing {path}: {e}")
        return err(
            StorageError(
                code="WRITE_PERMISSION_DENIED",
                message=f"Permission denied writing {path}",
                context={"path": str(path)},
            )
        )
    except OSError as e:
        logger.error(f"Could not publish {path}: {e}")
        return err(
            StorageError(
                code="WRITE_FAILED",
                message=f"Could not write {path}: {e}",
                context={"path": str(path), "error": str(e)},
            )
        )
    finally:
        # After a link the staged name is a second reference to the document
        if staged is not None and os.path.exists(staged):
            os.unlink(staged)

    logger.debug(f"Published {path}")
    return ok(path)


def write_json_document(
    path: Path,
    data: Any,
    mode: int = 0o600,
    indent: int | None = 2,
    replace: bool = True,
) -> Result[Path, StorageError]:
    """Encode ``data`` as UTF-8 JSON (newline-terminated) and publish it."""
    path = Path(path)
    try:
        content = json.dumps(data, indent=indent, ensure_ascii=False) + "\n"
    except (TypeError, ValueError) as e:
        return err(
            StorageError(
                code="ENCODE_FAILED",
                message=f"Cannot encode {path.name} as JSON: {e}",
                context={"path": str(path)},
            )
        )
    return publish(path, content, mode, replace)


def write_yaml_document(path: Path, data: Any, mode: int = 0o600) -> Result[Path, StorageError]:
    """Encode ``data`` with yaml.safe_dump, keeping key order, and publish it."""
    path = Path(path)
    try:
        content = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    except yaml.YAMLError as e:
        return err(
            StorageError(
                code="ENCODE_FAILED",
                message=f"Cannot encode {path.name} as YAML: {e}",
                context={"path": str(path)},
            )
        )
    return publish(path, content, mode)
