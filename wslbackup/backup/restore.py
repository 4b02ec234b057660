"""
Restore of the latest remote archive into a new distro.

State machine:
    IDLE -> LOCATING -> DOWNLOADING -> DECOMPRESSING -> IMPORTING -> COMPLETE
with FAILED reachable from every state.

The restored distro is always registered under a new name; an existing
distro is never overwritten. Promoting the restored copy is left to the
operator.
"""

import os
import logging
from datetime import datetime
from typing import Callable, List, Optional

from wslbackup.config import Config
from wslbackup.models import RemoteEntry, RestoreResult, RestoreState
from wslbackup.utils.runlog import RunLog
from wslbackup.errors import BackupError, DownloadFailed, DuplicateTarget, NoBackupFound
from .compression import ZstdCodec, decompress_archive, parse_archive_timestamp, safe_distro_name
from .sources import WslSource
from .storage import RcloneStorage


logger = logging.getLogger(__name__)

RESTORED_SUFFIX = '-restored'

# Error stage reported for a failure in each working state
STATE_STAGES = {
    RestoreState.LOCATING: 'locate',
    RestoreState.DOWNLOADING: 'download',
    RestoreState.DECOMPRESSING: 'decompress',
    RestoreState.IMPORTING: 'import',
}


def restored_name(distro: str) -> str:
    """Name under which a distro's backup is imported."""
    return f"{distro}{RESTORED_SUFFIX}"


def archives_for_distro(entries: List[RemoteEntry], distro: str) -> List[RemoteEntry]:
    """Keep only archives taken from the given distro (names compare case-insensitively, as WSL does)."""
    wanted = safe_distro_name(distro).lower()
    return [entry for entry in entries if _distro_from_archive(entry.name).lower() == wanted]


def select_latest(entries: List[RemoteEntry]) -> Optional[RemoteEntry]:
    """
    Pick the most recent archive.

    Ordering uses the timestamp embedded in the archive name. Names that do
    not follow the naming scheme fall back to the remote modification time.
    """
    if not entries:
        return None

    def sort_key(entry: RemoteEntry):
        return parse_archive_timestamp(entry.name) or entry.modified or datetime.min

    return max(entries, key=sort_key)


class RestoreOrchestrator:
    """
    Locates, downloads, decompresses and imports the latest archive.
    """

    def __init__(
        self,
        config: Config,
        source: WslSource,
        codec: ZstdCodec,
        storage: RcloneStorage,
        run_log: RunLog,
        reporter: Optional[Callable[[str, str, str], None]] = None,
    ):
        self.config = config
        self.source = source
        self.codec = codec
        self.storage = storage
        self.run_log = run_log
        self.reporter = reporter
        self.state = RestoreState.IDLE
        self.transitions = [RestoreState.IDLE]

    def restore_latest(self) -> RestoreResult:
        """
        Run the restore flow.

        Returns:
            RestoreResult with the final state and the failing stage if any
        """
        result = RestoreResult()
        self.run_log.write("Restore started")

        try:
            self._run(result)
        except BackupError as e:
            self._fail(result, e.stage, str(e))
        except OSError as e:
            self._fail(result, STATE_STAGES.get(self.state, 'restore'), f"Filesystem error: {e}")
        finally:
            result.state = self.state

        if result.success:
            self.run_log.write(f"Restore complete: {result.archive_name} imported as {result.restored_name}")

        return result

    def _run(self, result: RestoreResult):
        # Locating
        self._transition(RestoreState.LOCATING)
        self._report('locate', 'start', f"Listing {self.storage.remote}")
        entries = self.storage.list_archives()
        if self.config.distro_name:
            entries = archives_for_distro(entries, self.config.distro_name)
        entry = select_latest(entries)
        if entry is None:
            scope = f" for {self.config.distro_name}" if self.config.distro_name else ""
            raise NoBackupFound(f"No archives{scope} found in {self.storage.remote}")
        result.archive_name = entry.name
        self._report('locate', 'ok', f"Latest archive: {entry.name} ({entry.size} bytes)")

        # Downloading
        self._transition(RestoreState.DOWNLOADING)
        archive_path, result.downloaded = self._download(entry)

        # Decompressing
        self._transition(RestoreState.DECOMPRESSING)
        self._report('decompress', 'start', f"Decompressing {entry.name}")
        raw_path = decompress_archive(self.codec, archive_path)
        self._report('decompress', 'ok', f"Image ready: {os.path.basename(raw_path)}")

        # Importing
        self._transition(RestoreState.IMPORTING)
        distro = self.config.distro_name or _distro_from_archive(entry.name)
        name = restored_name(distro)
        result.restored_name = name

        if self.source.distro_exists(name):
            raise DuplicateTarget(
                f"A distro named {name} already exists; run discard-restored first to restore again"
            )

        install_dir = os.path.join(self.config.instances_dir, name)
        result.install_dir = install_dir
        self._report('import', 'start', f"Importing as {name} into {install_dir}")
        self.source.import_distro(name, install_dir, raw_path)
        self._report('import', 'ok', f"Imported {name}")

        # Cleanup of the intermediate image; kept on any earlier failure
        try:
            os.remove(raw_path)
        except OSError as e:
            logger.warning(f"Failed to remove restored image {raw_path}: {e}")

        self._transition(RestoreState.COMPLETE)

    def _download(self, entry: RemoteEntry):
        """
        Download an archive unless a complete local copy already exists.

        A local file whose size differs from the remote size is treated as a
        truncated earlier download and fetched again.

        Returns:
            Tuple of (local path, whether a download happened)
        """
        restore_dir = self.config.restore_dir
        local_path = os.path.join(restore_dir, entry.name)

        if os.path.exists(local_path):
            try:
                local_size = os.path.getsize(local_path)
                if os.path.isfile(local_path) and local_size == entry.size:
                    self._report('download', 'ok', f"Reusing local copy {local_path}")
                    return local_path, False

                logger.warning(
                    f"Local copy of {entry.name} is {local_size} bytes, remote is {entry.size}; downloading again"
                )
                os.remove(local_path)
            except OSError as e:
                raise DownloadFailed(f"Cannot replace local copy {local_path}: {e}")

        self._report('download', 'start', f"Downloading {entry.name}")
        local_path = self.storage.download(entry.name, restore_dir)
        self._report('download', 'ok', f"Downloaded to {local_path}")
        return local_path, True

    def _fail(self, result: RestoreResult, stage: str, message: str):
        failed_in = self.state
        self._transition(RestoreState.FAILED)
        result.failure_stage = stage
        result.error_message = message
        self._report(stage, 'fail', message)
        self.run_log.write(f"Restore FAILED while {failed_in.value}: {message}")

    def _transition(self, state: RestoreState):
        logger.debug(f"Restore state: {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def _report(self, stage: str, status: str, message: str):
        if self.reporter:
            self.reporter(stage, status, message)


def _distro_from_archive(name: str) -> str:
    """Distro name part of an archive name ({distro}-{YYYYMMDD_HHMMSS}.tar.zst)."""
    base = name.split('.tar', 1)[0]
    if parse_archive_timestamp(name):
        return base.rsplit('-', 1)[0]
    return base


def execute_restore(config: Config, run_log: Optional[RunLog] = None, **kwargs) -> RestoreResult:
    """
    Build the tool adapters from config and restore the latest archive.
    """
    orchestrator = RestoreOrchestrator(
        config,
        WslSource(config.wsl_exe),
        ZstdCodec(config.zstd_exe),
        RcloneStorage(config.rclone_remote, config.rclone_exe, retries=config.upload_retries),
        run_log or RunLog(config.run_log_path),
        **kwargs
    )
    return orchestrator.restore_latest()
