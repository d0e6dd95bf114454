"""Collision-free file creation for run artifacts."""

import logging
import shutil
from pathlib import Path
from typing import BinaryIO, Callable

from .errors import IOFailure

logger = logging.getLogger(__name__)

MAX_NAME_ATTEMPTS = 10_000


def write_exclusive(
    directory: Path,
    stem: str,
    extension: str,
    write: Callable[[BinaryIO], None],
) -> Path:
    """Write a new file without ever overwriting an existing one.

    Tries ``<stem>.<ext>``, then ``<stem>-1.<ext>``, ``<stem>-2.<ext>`` and so
    on, creating each candidate exclusively so concurrent writers cannot
    clobber each other. If ``write`` fails the partial file is removed.

    Args:
        directory: Target directory, created if missing.
        stem: File name without extension.
        extension: Extension without the leading dot.
        write: Callback that writes the content to the open binary file.

    Returns:
        Path of the file that was written.
    """
    directory.mkdir(parents=True, exist_ok=True)
    for attempt in range(MAX_NAME_ATTEMPTS):
        name = f"{stem}.{extension}" if attempt == 0 else f"{stem}-{attempt}.{extension}"
        path = directory / name
        try:
            f = open(path, "xb")
        except FileExistsError:
            continue
        try:
            with f:
                write(f)
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        return path
    raise FileExistsError(f"no free file name for {stem}.{extension} in {directory}")


def mark_final(path: Path) -> Path:
    """Copy the chosen asset to ``<stem>-final<suffix>`` next to it.

    The source is left in place so every path in the run history stays
    valid. An existing final copy is never replaced; the next free
    ``-final-N`` name is used instead.

    Raises:
        IOFailure: If the asset cannot be read or the copy cannot be written.
    """
    path = Path(path)
    extension = path.suffix.lstrip(".") or "png"
    try:
        with open(path, "rb") as src:
            final = write_exclusive(
                path.parent,
                f"{path.stem}-final",
                extension,
                lambda f: shutil.copyfileobj(src, f),
            )
    except OSError as exc:
        raise IOFailure(f"could not mark {path} as final: {exc}") from exc

    logger.info("Marked %s as final: %s", path.name, final)
    return final
