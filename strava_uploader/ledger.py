"""Persistent record of files that have already been delivered to Strava."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterator, List

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_LEDGER_FILE = "uploaded_files.json"
CORRUPT_SUFFIX = ".corrupt"


class UploadLedger:
    """Case-insensitive set of delivered file names backed by a JSON array.

    The file is read once on construction. Every :meth:`add` rewrites it before
    returning so a crash can never forget a delivery that already happened.
    Writes go to a temporary sibling that replaces the ledger in one step, so
    an interrupted write leaves the previous contents intact.

    A ledger that cannot be parsed is moved aside to ``<name>.corrupt`` before
    anything overwrites it. Pass ``create=False`` to leave the disk alone
    until the first :meth:`add`.
    """

    def __init__(
        self,
        path: str | Path = DEFAULT_LEDGER_FILE,
        *,
        create: bool = True,
    ) -> None:
        self.path = Path(path).expanduser()
        self._entries: Dict[str, str] = {}
        self._unreadable = False
        self._load(set_aside=create)
        if create and not self.path.exists() and self._save():
            logger.info("ledger_created", path=str(self.path))

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.contains(name)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._entries.values(), key=str.casefold))

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + CORRUPT_SUFFIX)

    def contains(self, name: str) -> bool:
        return _key(name) in self._entries

    def add(self, name: str) -> bool:
        """Record ``name`` as delivered and persist the ledger.

        Returns False when the ledger could not be written; the entry is still
        remembered for the rest of the run.
        """
        self._entries.setdefault(_key(name), name)
        if self._unreadable:
            self._set_aside()
        if not self._save():
            return False
        logger.debug("ledger_marked", file=name, path=str(self.path))
        return True

    def count(self) -> int:
        return len(self._entries)

    def _load(self, set_aside: bool = True) -> None:
        if not self.path.exists():
            return

        try:
            names = _read_names(self.path)
        except (OSError, ValueError) as exc:
            logger.warning(
                "ledger_load_failed",
                path=str(self.path),
                error=str(exc),
            )
            self._unreadable = True
            if set_aside:
                self._set_aside()
            return

        self._entries = {_key(name): name for name in names}
        logger.info("ledger_loaded", path=str(self.path), entries=len(self._entries))

    def _set_aside(self) -> None:
        self._unreadable = False
        if not self.path.is_file():
            return
        try:
            os.replace(self.path, self.backup_path)
        except OSError as exc:
            logger.error(
                "ledger_backup_failed",
                path=str(self.path),
                error=str(exc),
            )
            return
        logger.warning("ledger_backed_up", backup=str(self.backup_path))

    def _save(self) -> bool:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                json.dump(list(self), handle, indent=2)
                handle.write("\n")
            os.replace(tmp_name, self.path)
        except OSError as exc:
            logger.error("ledger_save_failed", path=str(self.path), error=str(exc))
            return False
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
        return True


def _key(name: str) -> str:
    return name.casefold()


def _read_names(path: Path) -> List[str]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError("Ledger file must be a JSON array.")
    return [str(item) for item in payload if isinstance(item, str) and item]
