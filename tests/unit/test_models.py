"""
Unit tests for data models (wslbackup/models.py).
"""

from datetime import datetime

from wslbackup.models import (
    BackupArchive,
    ExportProgress,
    RestoreResult,
    RestoreState,
    RunResult,
    compression_ratio,
)


class TestCompressionRatio:

    def test_ratio(self):
        assert compression_ratio(4500, 1500) == 3.0

    def test_rounded_to_two_decimals(self):
        assert compression_ratio(1000, 3) == 333.33

    def test_zero_compressed_size(self):
        assert compression_ratio(1000, 0) == 0.0

    def test_run_result_property(self):
        assert RunResult(raw_size=9000, compressed_size=2000).compression_ratio == 4.5


class TestExportProgress:

    def test_throughput(self):
        assert ExportProgress(bytes_written=3000, elapsed_seconds=1.5).throughput == 2000.0

    def test_throughput_at_start(self):
        assert ExportProgress(bytes_written=0, elapsed_seconds=0.0).throughput == 0.0


class TestBackupArchive:

    def test_defaults(self):
        archive = BackupArchive(
            environment_name='Ubuntu',
            timestamp=datetime(2024, 1, 15, 2),
            local_path='/b/Ubuntu-20240115_020000.tar.zst',
        )

        assert archive.verified is False
        assert archive.remote_path is None
        assert 'Ubuntu 20240115_020000' in repr(archive)


class TestRestoreResult:

    def test_success_only_when_complete(self):
        assert RestoreResult(state=RestoreState.COMPLETE).success
        assert not RestoreResult(state=RestoreState.IMPORTING).success
        assert not RestoreResult().success
