"""
WSL distro handling for backup operations.

Supports:
- WslSource: wsl.exe adapter (export, import, unregister, list distros)
- ExportMonitor: runs an export in the background and tracks its progress
"""

import os
import time
import logging
from typing import Callable, List, Optional

from wslbackup.models import ExportProgress
from wslbackup.utils.process import ProcessHandle, run_command
from wslbackup.errors import ExportFailed, ImportFailed


logger = logging.getLogger(__name__)

# Utility distros that ship with Docker Desktop, never a backup target
IGNORED_DISTROS = ('docker-desktop', 'docker-desktop-data')


class WslSource:
    """
    Adapter for the host's wsl.exe.

    Only builds command lines and interprets exit codes; all process
    handling goes through wslbackup.utils.process.
    """

    def __init__(self, wsl_exe: str = 'wsl.exe'):
        """
        Initialize WSL adapter.

        Args:
            wsl_exe: Path or name of the wsl.exe executable
        """
        self.wsl_exe = wsl_exe

    def start_export(self, distro: str, destination: str) -> ProcessHandle:
        """
        Start exporting a distro to a tar file in the background.

        Args:
            distro: Registered distro name
            destination: Path of the tar file to write

        Returns:
            Started ProcessHandle
        """
        return ProcessHandle([self.wsl_exe, '--export', distro, destination]).start()

    def import_distro(self, name: str, install_dir: str, image_path: str):
        """
        Register a new distro from a tar image.

        Args:
            name: Name of the new distro
            install_dir: Directory that will hold the distro's virtual disk
            image_path: Path of the tar image

        Raises:
            ImportFailed: If the install directory cannot be created or wsl.exe reports an error
        """
        try:
            os.makedirs(install_dir, exist_ok=True)
        except OSError as e:
            raise ImportFailed(f"Cannot create install directory {install_dir}: {e}")
        result = run_command([self.wsl_exe, '--import', name, install_dir, image_path])
        if not result.ok:
            raise ImportFailed(
                f"wsl --import {name} failed (exit {result.returncode}): {_decode_wsl(result.stderr)}"
            )

    def unregister(self, distro: str):
        """
        Unregister a distro and delete its virtual disk.

        Used by the discard-restored command to clear a previous restore
        target; the restore flow itself never unregisters anything.

        Raises:
            ImportFailed: If wsl.exe reports an error
        """
        result = run_command([self.wsl_exe, '--unregister', distro])
        if not result.ok:
            raise ImportFailed(
                f"wsl --unregister {distro} failed (exit {result.returncode}): {_decode_wsl(result.stderr)}"
            )

    def list_distros(self) -> List[str]:
        """
        List registered distros, default distro first.

        Returns:
            List of distro names (empty if wsl.exe fails)
        """
        result = run_command([self.wsl_exe, '--list', '--quiet'])
        if not result.ok:
            logger.warning(f"wsl --list failed (exit {result.returncode})")
            return []

        return [line.strip() for line in _decode_wsl(result.stdout).splitlines() if line.strip()]

    def distro_exists(self, name: str) -> bool:
        return any(distro.lower() == name.lower() for distro in self.list_distros())

    def default_distro(self) -> Optional[str]:
        """Return the default distro, skipping Docker Desktop's utility distros."""
        for distro in self.list_distros():
            if distro.lower() not in IGNORED_DISTROS:
                return distro
        return None


def _decode_wsl(output: bytes) -> str:
    """
    Decode wsl.exe output.

    wsl.exe writes UTF-16LE to pipes; fall back to UTF-8 for wrappers that don't.
    """
    if not output:
        return ''
    if b'\x00' in output:
        text = output.decode('utf-16-le', errors='replace')
    else:
        text = output.decode('utf-8', errors='replace')
    return text.replace('\ufeff', '').replace('\x00', '').strip()


class ExportMonitor:
    """
    Runs a distro export and reports its progress.

    The export artifact's size is sampled at a fixed interval while the
    process runs. Completion is taken from the process's exit status only:
    the file size can stall mid-export on slow or network-backed storage.
    """

    def __init__(
        self,
        source: WslSource,
        poll_interval: float = 1.0,
        on_progress: Optional[Callable[[ExportProgress], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.source = source
        self.poll_interval = poll_interval
        self.on_progress = on_progress
        self.clock = clock
        self.sleep = sleep
        self.samples = []

    def export(self, distro: str, destination: str) -> int:
        """
        Export a distro and wait for it to finish.

        Args:
            distro: Registered distro name
            destination: Path of the tar file to write

        Returns:
            Final size of the export artifact in bytes

        Raises:
            ExportFailed: If the export exits non-zero or produces no artifact
        """
        # Leftover from an interrupted run
        try:
            _remove_file(destination)
            os.makedirs(os.path.dirname(os.path.abspath(destination)), exist_ok=True)
        except OSError as e:
            raise ExportFailed(f"Cannot prepare export destination {destination}: {e}")

        logger.info(f"Exporting {distro} to {destination}")
        started = self.clock()
        handle = self.source.start_export(distro, destination)

        while handle.is_running():
            self._sample(destination, started)
            self.sleep(self.poll_interval)

        exit_code = handle.wait()
        final = self._sample(destination, started)

        if exit_code != 0:
            try:
                _remove_file(destination)
            except OSError as e:
                logger.warning(f"Failed to remove partial export {destination}: {e}")
            message = f"wsl --export {distro} failed (exit {exit_code})"
            stderr = _decode_wsl(handle.stderr)
            if stderr:
                message += f": {stderr}"
            raise ExportFailed(message)

        if not os.path.exists(destination):
            raise ExportFailed(f"Export finished but produced no file: {destination}")

        logger.info(
            f"Export finished: {final.bytes_written} bytes in {final.elapsed_seconds:.1f}s "
            f"({final.throughput / 1024 / 1024:.2f} MB/s)"
        )
        return final.bytes_written

    def _sample(self, destination: str, started: float) -> ExportProgress:
        progress = ExportProgress(
            bytes_written=_file_size(destination),
            elapsed_seconds=self.clock() - started,
        )
        self.samples.append(progress)
        if self.on_progress:
            self.on_progress(progress)
        return progress


def _file_size(path: str) -> int:
    try:
        return os.path.getsize(path)
    except OSError:
        return 0


def _remove_file(path: str):
    try:
        os.remove(path)
        logger.debug(f"Removed {path}")
    except FileNotFoundError:
        pass
