"""Moving a document's asset directory when the document gets saved."""

import shutil
from pathlib import Path

from loguru import logger

from layer_assets.config import MAX_DIR_RENAME_ATTEMPTS
from layer_assets.exceptions import FatalIOError


def backup_name(directory: Path, attempt: int) -> Path:
    """Name for the `attempt`-th backup of a directory: foo-old, foo-old-2, ..."""
    suffix = "-old" if attempt == 1 else f"-old-{attempt}"
    return directory.with_name(directory.name + suffix)


def claim_directory(directory: Path, *, max_attempts: int = MAX_DIR_RENAME_ATTEMPTS) -> Path | None:
    """Make `directory` available by renaming whatever is there out of the way.

    Returns the backup name used, or None if nothing had to be renamed.

    Raises:
        FatalIOError: When all backup names are taken.
    """
    if not directory.exists():
        return None
    for attempt in range(1, max_attempts + 1):
        backup = backup_name(directory, attempt)
        if not backup.exists():
            logger.info("Renaming existing asset directory {} to {}", directory, backup)
            directory.rename(backup)
            return backup
    msg = f"At least {max_attempts} other backups of {directory} already exist. Giving up."
    raise FatalIOError(msg)


def move_assets(source_dir: Path, target_dir: Path, relative_paths: list[str]) -> list[str]:
    """Move generated files between asset directories.

    Files that do not exist are skipped. Returns the paths that failed to move.
    """
    failed: list[str] = []
    for relative_path in relative_paths:
        source = source_dir / relative_path
        if not source.is_file():
            continue
        target = target_dir / relative_path
        logger.debug("Moving {} to {}", source, target)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(source, target)
        except OSError as e:
            logger.error("Could not move {} to {}: {}", source, target, e)
            failed.append(relative_path)
    return failed
