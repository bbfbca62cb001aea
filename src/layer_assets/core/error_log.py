"""User-visible error reports kept in the asset directory."""

import logging
from datetime import datetime

from layer_assets.config import ERRORS_FILE_NAME
from layer_assets.protocols import WriterProtocol

DELETE = "delete"
WRITE = "write"
APPEND = "append"


class ErrorLog:
    """Collect errors per source object and mirror them to errors.txt.

    The file is rewritten when errors went away, appended to when errors were
    only added, and deleted when nothing is left to report.
    """

    LAYER = "layer"
    DOCUMENT = "document"
    COMP = "comp"

    def __init__(self) -> None:
        self.logger = logging.getLogger("errors")
        self._errors: dict[str, list[str]] = {}
        self._added: list[str] = []
        self._removed = False

    def add_error(self, source_id: int, source_name: str | None, error: str, *, source_type: str = LAYER) -> None:
        key = f"{source_type}-{source_id}"
        stamp = datetime.now().isoformat(sep=" ", timespec="seconds")
        line = f"[{stamp}] {source_type} \"{source_name}\": {error}\n"
        self._errors.setdefault(key, []).append(line)
        self._added.append(line)
        self.logger.debug(f"Error in {source_type} {source_id}: {error}")

    def remove_errors(self, source_id: int, *, source_type: str = LAYER) -> None:
        if self._errors.pop(f"{source_type}-{source_id}", None) is not None:
            self._removed = True

    def remove_all_errors(self) -> None:
        """Drop all errors and force the next report to rewrite the file."""
        self._errors = {}
        self._added = []
        self._removed = True

    def errors_for(self, source_id: int, *, source_type: str = LAYER) -> list[str]:
        return list(self._errors.get(f"{source_type}-{source_id}", []))

    def pending_report(self) -> tuple[str, str] | None:
        """Return what the errors file needs as (action, contents) and mark it done.

        The action is "delete", "write" or "append". Returns None when the file is
        already up to date.
        """
        if not self._errors:
            plan: tuple[str, str] | None = (DELETE, "")
        elif self._removed:
            plan = (WRITE, "".join(line for lines in self._errors.values() for line in lines))
        elif self._added:
            plan = (APPEND, "".join(self._added))
        else:
            plan = None
        self._added = []
        self._removed = False
        return plan


def write_report(writer: WriterProtocol, action: str, contents: str) -> None:
    """Carry out a plan returned by ErrorLog.pending_report()."""
    if action == DELETE:
        if writer.delete_file(ERRORS_FILE_NAME):
            logging.getLogger("errors").debug("Removed errors file, no errors left")
    elif action == WRITE:
        writer.write_text(ERRORS_FILE_NAME, contents)
    elif action == APPEND:
        writer.append_text(ERRORS_FILE_NAME, contents)
    else:
        msg = f"Unknown errors file action {action!r}"
        raise ValueError(msg)
