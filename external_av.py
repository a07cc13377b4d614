# @even rygh
"""
External antivirus adapters.

The orchestrator only knows ExternalAVAdapter.scan(directory). The ClamAV
adapter owns subprocess invocation and its timeout; NullAVAdapter is used
where no engine is installed.
"""
import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from exceptions import ExternalServiceError
from patterns import AV_FOUND_LINE

logger = logging.getLogger(__name__)

Detection = Tuple[str, str]  # (file path, signature name)


class ExternalAVAdapter(ABC):
    @abstractmethod
    def scan(self, directory: Path) -> List[Detection]:
        """Return infected files; raise ExternalServiceError if the engine fails."""


class NullAVAdapter(ExternalAVAdapter):
    def scan(self, directory: Path) -> List[Detection]:
        logger.info(f"External AV not configured, nothing scanned: {directory}")
        return []


def parse_av_report(output: str) -> List[Detection]:
    detections: List[Detection] = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        match = AV_FOUND_LINE.match(line)
        if match:
            detections.append((match.group("path").strip(), match.group("signature").strip()))
    return detections


class ClamAVAdapter(ExternalAVAdapter):
    """
    Runs clamdscan (daemon, faster) and falls back to clamscan.

    Commands are passed as argument lists; the directory is never
    interpolated into a shell string.
    """

    DAEMON_COMMAND: Sequence[str] = ("clamdscan", "--multiscan", "--fdpass")
    STANDALONE_COMMAND: Sequence[str] = ("clamscan", "-r", "-i")

    def __init__(self, timeout: float = 600.0, runner=subprocess.run):
        self.timeout = timeout
        self._run = runner

    def _invoke(self, command: Sequence[str], directory: Path) -> Optional[str]:
        if shutil.which(command[0]) is None:
            return None
        try:
            completed = self._run(
                [*command, str(directory)],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ExternalServiceError(
                f"{command[0]} timed out after {self.timeout}s", {"directory": str(directory)}
            ) from e
        except OSError as e:
            logger.warning(f"{command[0]} failed to start: {type(e).__name__}: {str(e)}")
            return None

        output = (completed.stdout or "") + (completed.stderr or "")
        # Exit code 1 means "virus found", 2 means engine error
        if completed.returncode >= 2:
            logger.warning(f"{command[0]} reported an error | returncode={completed.returncode}")
            return None
        return output

    def scan(self, directory: Path) -> List[Detection]:
        output = self._invoke(self.DAEMON_COMMAND, directory)
        if output is None:
            output = self._invoke(self.STANDALONE_COMMAND, directory)
        if output is None:
            raise ExternalServiceError("No working ClamAV engine available", {"directory": str(directory)})
        detections = parse_av_report(output)
        logger.info(f"External AV scan completed: {directory} | detections={len(detections)}")
        return detections
