"""File writer for one asset directory."""

import logging
import os
import shutil
import tempfile
from collections import deque
from pathlib import Path

from layer_assets.config import ERRORS_FILE_NAME

ASSET_EXTENSIONS = (".png", ".jpg", ".gif", ".svg", ".webp")

# Only the most recent changes are kept in `updates`.
MAX_RECORDED_UPDATES = 1000


class AssetWriter:
    """Write generated assets into a directory in a careful way.

    - Do not touch files whose contents did not change.
    - Refuse paths escaping the asset directory and files that could not be assets.
    - Create folders on demand and remove them again once they are empty.

    The asset directory itself is created lazily, on the first write.
    """

    def __init__(self, datadir: str | Path, *, dry_run: bool = False) -> None:
        self.datadir = str(Path(datadir).expanduser().resolve())
        self.dry_run = dry_run
        self.logger = logging.getLogger("writer")
        self.logger.debug(f"Writer ready, datadir {self.datadir!r}, dry_run {dry_run!r}")

        # Recent changes: (action, absolute filename) tuples.
        self.updates: deque[tuple[str, str]] = deque(maxlen=MAX_RECORDED_UPDATES)
        self._tmpdir: str | None = None

    def is_possible_output(self, fname: str) -> bool:
        """Check if a file is something this writer may create or delete.

        Deleting is limited to these files so that a wrong asset directory does
        not lose user data.
        """
        return fname.lower().endswith(ASSET_EXTENSIONS) or Path(fname).name == ERRORS_FILE_NAME

    def _resolve(self, fname_rel: str, *, check_output: bool = True) -> Path:
        if Path(fname_rel).is_absolute():
            msg = f"must be relative: {fname_rel!r}"
            raise ValueError(msg)
        fname = str(Path(self.datadir) / fname_rel)
        if not str(Path(fname).resolve()).startswith(self.datadir + "/"):
            msg = f"Path escapes datadir: {fname!r}"
            raise ValueError(msg)
        if check_output and not self.is_possible_output(fname):
            msg = f"Wanted to write {fname!r} but is_possible_output() returns False"
            raise ValueError(msg)
        return Path(fname)

    def write_text(self, fname_rel: str, contents: str) -> None:
        path = self._resolve(fname_rel)
        action = "create"
        try:
            if path.read_text(encoding="utf-8") == contents:
                return
            action = "update"
        except (FileNotFoundError, UnicodeDecodeError):
            pass

        self.updates.append((action, str(path)))
        if self.dry_run:
            self.logger.info(f"dry-run: would {action} {str(path)!r}")
            return
        self.logger.debug(f"Writing ({action}) {str(path)!r}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(contents, encoding="utf-8")

    def append_text(self, fname_rel: str, contents: str) -> None:
        path = self._resolve(fname_rel)
        self.updates.append(("append", str(path)))
        if self.dry_run:
            self.logger.info(f"dry-run: would append to {str(path)!r}")
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(contents)

    def temp_path(self, fname_rel: str) -> Path:
        """Scratch file outside the asset directory, keeping the extension of `fname_rel`."""
        self._resolve(fname_rel)
        if self._tmpdir is None:
            self._tmpdir = tempfile.mkdtemp(prefix="layer-assets-")
        fd, name = tempfile.mkstemp(suffix=Path(fname_rel).suffix, dir=self._tmpdir)
        os.close(fd)
        return Path(name)

    def move_file(self, source: Path, fname_rel: str) -> None:
        path = self._resolve(fname_rel)
        self.updates.append(("move", str(path)))
        if self.dry_run:
            self.logger.info(f"dry-run: would move {str(source)!r} to {str(path)!r}")
            return
        self.logger.debug(f"Moving {str(source)!r} to {str(path)!r}")
        path.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(source, path)

    def discard_temp(self, path: Path) -> None:
        """Remove a scratch file from temp_path() if it is still there."""
        path.unlink(missing_ok=True)

    def delete_file(self, fname_rel: str) -> bool:
        path = self._resolve(fname_rel)
        if not path.is_file():
            return False
        self.updates.append(("delete", str(path)))
        if self.dry_run:
            self.logger.info(f"dry-run: would remove {str(path)!r}")
        else:
            self.logger.debug(f"Removing file: {str(path)!r}")
            path.unlink()
        return True

    def prune_empty_dirs(self, dirs_rel: list[str]) -> list[str]:
        """Remove empty folders and their empty ancestors, starting from the deepest ones."""
        removed: list[str] = []
        candidates: set[str] = set()
        for dirname_rel in dirs_rel:
            parts = Path(dirname_rel).parts
            for depth in range(1, len(parts) + 1):
                candidates.add(str(self._resolve("/".join(parts[:depth]), check_output=False)))
        for dirname in sorted(candidates, key=lambda x: (-x.count("/"), x)):
            path = Path(dirname)
            if not path.is_dir() or any(path.iterdir()):
                continue
            self.updates.append(("delete", dirname + "/"))
            if self.dry_run:
                self.logger.info(f"dry-run: would remove dir {dirname!r}")
            else:
                self.logger.debug(f"Removing dir: {dirname!r}")
                path.rmdir()
            removed.append(dirname)
        return removed

    def remove_if_empty(self) -> bool:
        path = Path(self.datadir)
        if not path.is_dir() or any(path.iterdir()):
            return False
        self.updates.append(("delete", self.datadir + "/"))
        if not self.dry_run:
            self.logger.debug(f"Removing empty asset directory {self.datadir!r}")
            path.rmdir()
        return True

    def close(self) -> None:
        """Remove the scratch directory. The writer stays usable and makes a new one on demand."""
        if self._tmpdir is not None:
            shutil.rmtree(self._tmpdir, ignore_errors=True)
            self._tmpdir = None
