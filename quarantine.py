# @even rygh
"""
Quarantine manager.

Moves a flagged file into a protected directory instead of deleting it.
Fails closed: if the move did not happen, the caller gets QuarantineError
and nothing may be marked isolated.
"""
import logging
import os
import stat
import time
from pathlib import Path
from threading import Lock
from typing import Callable, List, Union

from exceptions import QuarantineError

logger = logging.getLogger(__name__)

ACCESS_DENY_RULES = "Order deny,allow\nDeny from all\n"
SILENT_INDEX = "<?php // Silence is golden\n"
QUARANTINE_MARKER = ".isolated."


class QuarantineManager:
    def __init__(
        self,
        quarantine_dir: Path,
        access_control_file: str = ".htaccess",
        clock: Callable[[], float] = time.time,
    ):
        self.quarantine_dir = quarantine_dir
        self.access_control_file = access_control_file
        self._clock = clock
        self._lock = Lock()

    def ensure_directory(self) -> Path:
        """Create the quarantine directory and its deny markers on first use."""
        self.quarantine_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.quarantine_dir, 0o700)
        deny_file = self.quarantine_dir / self.access_control_file
        if not deny_file.exists():
            deny_file.write_text(ACCESS_DENY_RULES, encoding="utf-8")
        index_file = self.quarantine_dir / "index.php"
        if not index_file.exists():
            index_file.write_text(SILENT_INDEX, encoding="utf-8")
        return self.quarantine_dir

    def _target_for(self, source: Path) -> Path:
        # Caller holds the lock; timestamp suffix plus a counter keeps names unique
        stamp = int(self._clock())
        target = self.quarantine_dir / f"{source.name}{QUARANTINE_MARKER}{stamp}"
        counter = 1
        while target.exists():
            target = self.quarantine_dir / f"{source.name}{QUARANTINE_MARKER}{stamp}.{counter}"
            counter += 1
        return target

    def quarantine(self, file_path: Union[str, Path]) -> Path:
        """
        Rename file_path into the quarantine directory.

        Returns the new path. Raises QuarantineError when the source is gone,
        is not a regular file, or the rename fails (e.g. cross-device).
        """
        source = Path(file_path)
        if not source.is_file():
            logger.error(f"Quarantine failed: source missing | path={source}")
            raise QuarantineError(f"File does not exist: {source}", {"file_path": str(source)})

        try:
            self.ensure_directory()
        except OSError as e:
            raise QuarantineError(
                f"Cannot prepare quarantine directory: {type(e).__name__}: {str(e)}",
                {"quarantine_dir": str(self.quarantine_dir)},
            ) from e

        with self._lock:
            target = self._target_for(source)
            try:
                # os.rename refuses to cross filesystems, which is what we want
                os.rename(source, target)
            except OSError as e:
                logger.error(
                    f"Quarantine failed: {source} | {type(e).__name__}: {str(e)} | "
                    f"quarantine_dir={self.quarantine_dir}"
                )
                raise QuarantineError(
                    f"Failed to move file into quarantine: {type(e).__name__}: {str(e)}",
                    {"file_path": str(source), "quarantine_path": str(target)},
                ) from e

        try:
            os.chmod(target, stat.S_IRUSR)
        except OSError as e:
            logger.warning(f"Quarantined file permissions not tightened: {target} | {str(e)}")

        logger.info(f"File quarantined: {source} -> {target}")
        return target

    def list_quarantined(self) -> List[Path]:
        if not self.quarantine_dir.is_dir():
            return []
        return sorted(p for p in self.quarantine_dir.iterdir() if QUARANTINE_MARKER in p.name)
