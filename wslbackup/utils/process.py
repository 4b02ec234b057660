"""
Thin wrappers over external tool processes.

ProcessHandle exposes a non-blocking status query for background processes
(the distro export), run_command covers the blocking invocations.
"""

import logging
import tempfile
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from wslbackup.errors import ToolMissing


logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Exit status and captured output of a finished command"""
    args: List[str]
    returncode: int
    stdout: bytes = b''
    stderr: bytes = b''

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def text(self, encoding: str = 'utf-8') -> str:
        return self.stdout.decode(encoding, errors='replace')

    def error_text(self) -> str:
        return self.stderr.decode('utf-8', errors='replace').strip()


class ProcessHandle:
    """
    Handle to a background process.

    The polling loop asks ``is_running()`` at a fixed interval and reads
    ``exit_code()`` once the process has terminated.
    """

    def __init__(self, args: List[str]):
        self.args = list(args)
        self._process = None
        self._stderr_file = None
        self._stderr = b''

    def start(self) -> 'ProcessHandle':
        """Spawn the process. Stdout is discarded, stderr spooled to a temp file."""
        logger.debug(f"Starting background process: {' '.join(self.args)}")
        # A pipe could fill up while nobody reads it during polling
        self._stderr_file = tempfile.TemporaryFile()
        try:
            self._process = subprocess.Popen(
                self.args,
                stdout=subprocess.DEVNULL,
                stderr=self._stderr_file,
            )
        except FileNotFoundError:
            self._stderr_file.close()
            raise ToolMissing(f"Executable not found: {self.args[0]}")
        return self

    def is_running(self) -> bool:
        if self._process is None:
            return False
        return self._process.poll() is None

    def exit_code(self) -> Optional[int]:
        """Exit code of the terminated process, None while still running."""
        if self._process is None:
            return None
        return self._process.poll()

    def wait(self, timeout: Optional[float] = None) -> int:
        """Block until the process exits and collect its stderr."""
        returncode = self._process.wait(timeout=timeout)
        if self._stderr_file is not None:
            self._stderr_file.seek(0)
            self._stderr = self._stderr_file.read()
            self._stderr_file.close()
            self._stderr_file = None
        return returncode

    @property
    def stderr(self) -> bytes:
        """Raw stderr, available after wait()."""
        return self._stderr


def run_command(args: List[str], timeout: Optional[float] = None) -> CommandResult:
    """
    Run a command to completion and capture its output.

    Args:
        args: Command line, executable first
        timeout: Optional timeout in seconds

    Returns:
        CommandResult with exit code and output

    Raises:
        ToolMissing: If the executable does not exist
    """
    logger.debug(f"Running command: {' '.join(args)}")
    try:
        completed = subprocess.run(args, capture_output=True, timeout=timeout)
    except FileNotFoundError:
        raise ToolMissing(f"Executable not found: {args[0]}")

    result = CommandResult(
        args=list(args),
        returncode=completed.returncode,
        stdout=completed.stdout or b'',
        stderr=completed.stderr or b'',
    )
    if not result.ok:
        logger.debug(f"Command exited with {result.returncode}: {result.error_text()}")
    return result
