"""
Backup executor - orchestrates the daily backup workflow.

Workflow:
1. Export the distro to a raw tar (background process, polled)
2. Compress the export into a .tar.zst archive
3. Upload the archive to the rclone remote
4. Verify the remote copy's MD5 against the local archive
5. Enforce local and cloud retention

Each step is a hard gate: a failure aborts the remaining steps. Artifacts of
completed steps are left on disk for the next manual run.
"""

import os
import time
import logging
from datetime import datetime
from typing import Callable, Optional

from wslbackup.config import Config
from wslbackup.models import BackupArchive, ExportProgress, RetentionPolicy, RunResult
from wslbackup.utils.lock import RunLock
from wslbackup.utils.runlog import RunLog
from wslbackup.errors import BackupError
from .compression import ZstdCodec, compress_export, generate_archive_filename, get_archive_size
from .retention import RetentionManager
from .sources import ExportMonitor, WslSource
from .storage import LocalStorage, RcloneStorage
from .verify import verify_upload


logger = logging.getLogger(__name__)


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for one distro.
    """

    def __init__(
        self,
        config: Config,
        source: WslSource,
        codec: ZstdCodec,
        storage: RcloneStorage,
        run_log: RunLog,
        reporter: Optional[Callable[[str, str, str], None]] = None,
        on_progress: Optional[Callable[[ExportProgress], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize backup executor.

        Args:
            config: Resolved configuration (distro name already set)
            source: WSL adapter
            codec: zstd adapter
            storage: rclone adapter
            run_log: Lifecycle log writer
            reporter: Optional callback (stage, status, message) for console output
            on_progress: Optional callback receiving export progress samples
            sleep: Sleep function used by the export poll loop
        """
        self.config = config
        self.source = source
        self.codec = codec
        self.storage = storage
        self.run_log = run_log
        self.reporter = reporter
        self.on_progress = on_progress
        self.sleep = sleep
        self.archive = None
        self.stage = None

    def execute(self) -> RunResult:
        """
        Execute the backup run.

        Returns:
            RunResult with sizes, ratio, elapsed time and the failing stage if any
        """
        result = RunResult()
        started = time.monotonic()
        distro = self.config.distro_name

        self.run_log.write(f"Backup started: {distro}")

        try:
            with RunLock(self.config.backup_dir):
                self._execute_workflow(result)
            result.success = True

        except BackupError as e:
            self._fail(result, e.stage, str(e))

        except OSError as e:
            self._fail(result, self.stage or 'backup', f"Filesystem error: {e}")

        finally:
            result.elapsed_seconds = time.monotonic() - started
            result.archive = self.archive

        if result.success:
            self.run_log.write(
                f"Backup complete: {os.path.basename(self.archive.local_path)} "
                f"raw={_mb(result.raw_size)} compressed={_mb(result.compressed_size)} "
                f"ratio={result.compression_ratio:.2f}x elapsed={result.elapsed_seconds:.0f}s"
            )

        return result

    def _execute_workflow(self, result: RunResult):
        """Execute the main backup workflow steps."""
        distro = self.config.distro_name
        timestamp = datetime.now()
        raw_path = os.path.join(self.config.backup_dir, generate_archive_filename(distro, timestamp))

        # Step 1: Export
        self._report('export', 'start', f"Exporting {distro}")
        monitor = ExportMonitor(
            self.source,
            poll_interval=self.config.poll_interval,
            on_progress=self.on_progress,
            sleep=self.sleep,
        )
        result.raw_size = monitor.export(distro, raw_path)
        self._report('export', 'ok', f"Exported {_mb(result.raw_size)}")

        # Step 2: Compress
        self._report('compress', 'start', f"Compressing (zstd level {self.config.compression_level})")
        archive_path = compress_export(self.codec, raw_path, level=self.config.compression_level)
        result.compressed_size = get_archive_size(archive_path)
        self.archive = BackupArchive(
            environment_name=distro,
            timestamp=timestamp,
            local_path=archive_path,
            raw_size=result.raw_size,
            compressed_size=result.compressed_size,
        )
        self._report(
            'compress', 'ok',
            f"Compressed to {_mb(result.compressed_size)} ({result.compression_ratio:.2f}x)"
        )

        # Step 3: Upload
        self._report('upload', 'start', f"Uploading to {self.storage.remote}")
        self.archive.remote_path = self.storage.upload(archive_path)
        self._report('upload', 'ok', f"Uploaded {self.archive.remote_path}")

        # Step 4: Verify
        self._report('verify', 'start', "Verifying remote MD5")
        self.archive.digest = verify_upload(self.storage, archive_path)
        self.archive.verified = True
        self._report('verify', 'ok', f"MD5 match {self.archive.digest}")

        # Step 5: Retention (only reached after verification)
        self._report('retention', 'start', "Enforcing retention")
        manager = RetentionManager(
            LocalStorage(self.config.backup_dir),
            self.storage,
            RetentionPolicy(self.config.retention_local, self.config.retention_cloud),
            log=self.run_log.write,
        )
        summary = manager.enforce()
        result.local_deleted = summary['local_deleted']
        result.cloud_pruned = summary['cloud_pruned']
        status = 'ok' if not summary['errors'] else 'warn'
        self._report(
            'retention', status,
            f"Removed {len(summary['local_deleted'])} local archive(s), "
            f"cloud prune {'done' if summary['cloud_pruned'] else 'failed'}"
        )

    def _fail(self, result: RunResult, stage: str, message: str):
        result.failure_stage = stage
        result.error_message = message
        self._report(stage, 'fail', message)
        self.run_log.write(f"FAILED at {stage}: {message}")

    def _report(self, stage: str, status: str, message: str):
        if status == 'start':
            self.stage = stage
        logger.debug(f"[{stage}] {status}: {message}")
        if self.reporter:
            self.reporter(stage, status, message)


def _mb(size: int) -> str:
    return f"{size / 1024 / 1024:.2f} MB"


def execute_backup(config: Config, run_log: Optional[RunLog] = None, **kwargs) -> RunResult:
    """
    Build the tool adapters from config and execute a backup run.

    Args:
        config: Resolved configuration
        run_log: Lifecycle log writer (defaults to the configured run log)
        **kwargs: Passed through to BackupExecutor (reporter, on_progress)

    Returns:
        RunResult of the run
    """
    executor = BackupExecutor(
        config,
        WslSource(config.wsl_exe),
        ZstdCodec(config.zstd_exe),
        RcloneStorage(config.rclone_remote, config.rclone_exe, retries=config.upload_retries),
        run_log or RunLog(config.run_log_path),
        **kwargs
    )
    return executor.execute()
