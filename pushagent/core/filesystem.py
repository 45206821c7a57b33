"""
Filesystem helpers for pushagent.

Provides atomic file writes for the spool directory and state files,
and archiving of store paths for upload.
"""

import io
import logging
import tarfile
import tempfile
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)


def atomic_write(
    file_path: Union[str, Path], content: Union[str, bytes], encoding: str = "utf-8"
) -> None:
    """
    Write file atomically using temp file + rename.

    This ensures the file is never in a partially-written state.
    If the write fails, the original file (if any) remains unchanged.

    Args:
        file_path: Path to write to
        content: Content to write (string or bytes)
        encoding: Text encoding (used only for string content)

    Example:
        >>> atomic_write('spool/event.json', '{"drv": "..."}')
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    # Temp file in the same directory keeps the rename on one filesystem
    temp_fd, temp_path_str = tempfile.mkstemp(
        dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
    )
    temp_path = Path(temp_path_str)

    try:
        if isinstance(content, str):
            with open(temp_fd, "w", encoding=encoding) as f:
                f.write(content)
        else:
            with open(temp_fd, "wb") as f:
                f.write(content)

        temp_path.replace(file_path)

    except Exception:
        try:
            temp_path.unlink(missing_ok=True)
        except (OSError, PermissionError):
            pass
        raise


def archive_path(path: Union[str, Path]) -> bytes:
    """
    Pack a store path (file, directory or symlink) into a gzipped tarball.

    Symlinks are stored as links, never followed.

    Args:
        path: Store path to archive

    Returns:
        The archive bytes

    Raises:
        FileNotFoundError: If the path does not exist
    """
    path = Path(path)
    if not path.exists() and not path.is_symlink():
        raise FileNotFoundError(f"Store path not found: {path}")

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        tar.add(str(path), arcname=path.name, recursive=True)

    data = buffer.getvalue()
    logger.debug(f"Archived {path} ({len(data)} bytes)")
    return data

