"""
Unit tests for backup executor (wslbackup/backup/executor.py).

Runs the whole pipeline against the fake wsl, zstd and rclone adapters.
"""

import os
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from freezegun import freeze_time

from wslbackup.backup.executor import BackupExecutor
from wslbackup.utils.lock import RunLock, LOCK_FILENAME
from tests.fakes import FakeWsl, FakeCodec, FakeRemote


NOW = datetime(2024, 1, 15, 2, 0, 0)
ARCHIVE_NAME = 'Ubuntu-20240115_020000.tar.zst'
RAW_NAME = 'Ubuntu-20240115_020000.tar'


@pytest.fixture
def make_executor(config, run_log, fake_wsl, fake_codec, fake_remote):
    def _make(wsl=None, codec=None, remote=None, reporter=None, on_progress=None):
        return BackupExecutor(
            config,
            wsl or fake_wsl,
            codec or fake_codec,
            remote or fake_remote,
            run_log,
            reporter=reporter,
            on_progress=on_progress,
            sleep=lambda s: None,
        )
    return _make


def local_files(backup_dir):
    return sorted(p.name for p in backup_dir.iterdir() if p.is_file())


@freeze_time(NOW)
class TestSuccessfulRun:
    """Test a run where every stage succeeds."""

    def test_archive_uploaded_and_verified(self, make_executor, fake_remote, backup_dir):
        result = make_executor().execute()

        assert result.success
        assert result.failure_stage is None
        assert result.archive.verified
        assert result.archive.remote_path == f'remote:wsl/{ARCHIVE_NAME}'
        assert ARCHIVE_NAME in fake_remote.objects
        assert (backup_dir / ARCHIVE_NAME).exists()
        assert not (backup_dir / RAW_NAME).exists()

    def test_sizes_and_ratio(self, make_executor, backup_dir):
        wsl = FakeWsl(chunks=[b'x' * 3000, b'y' * 1500])

        result = make_executor(wsl=wsl).execute()

        assert result.raw_size == 4500
        assert result.compressed_size == os.path.getsize(backup_dir / ARCHIVE_NAME)
        assert result.compression_ratio == round(4500 / result.compressed_size, 2)

    def test_run_log_lines(self, make_executor, run_log):
        make_executor().execute()

        lines = run_log.read_lines()
        assert lines[0] == '2024-01-15 02:00:00  Backup started: Ubuntu'
        assert 'Backup complete: ' + ARCHIVE_NAME in lines[-1]
        assert 'ratio=' in lines[-1]

    def test_retention_after_verification(self, make_executor, make_archive, fake_remote, backup_dir):
        old = make_archive('Ubuntu-20240101_020000.tar.zst', NOW - timedelta(days=14))

        result = make_executor().execute()

        assert not old.exists()
        assert result.local_deleted == ['Ubuntu-20240101_020000.tar.zst']
        assert result.cloud_pruned
        assert fake_remote.deleted_older_than == [30]

    def test_reporter_sees_stages_in_order(self, make_executor):
        events = []

        make_executor(reporter=lambda stage, status, message: events.append((stage, status))).execute()

        started = [stage for stage, status in events if status == 'start']
        assert started == ['export', 'compress', 'upload', 'verify', 'retention']

    def test_progress_samples_forwarded(self, make_executor):
        samples = []

        make_executor(on_progress=samples.append).execute()

        assert samples
        assert samples[-1].bytes_written == 1024 + 2048 + 512

    def test_lock_released(self, make_executor, backup_dir):
        make_executor().execute()

        assert not (backup_dir / LOCK_FILENAME).exists()


@freeze_time(NOW)
class TestFailedRun:
    """Test that every stage is a hard gate."""

    def test_export_failure(self, make_executor, fake_remote, fake_codec, backup_dir, run_log):
        result = make_executor(wsl=FakeWsl(exit_code=1)).execute()

        assert not result.success
        assert result.failure_stage == 'export'
        assert result.archive is None
        assert local_files(backup_dir) == ['backup.log']
        assert fake_codec.compress_calls == []
        assert fake_remote.objects == {}
        assert run_log.read_lines()[-1].endswith('FAILED at export: ' + result.error_message)

    def test_compress_failure_keeps_raw_export(self, make_executor, fake_remote, backup_dir):
        result = make_executor(codec=FakeCodec(fail_compress=True)).execute()

        assert result.failure_stage == 'compress'
        assert (backup_dir / RAW_NAME).exists()
        assert not (backup_dir / ARCHIVE_NAME).exists()
        assert fake_remote.mkdir_calls == 0

    def test_upload_failure_keeps_archive(self, make_executor, make_archive, backup_dir):
        old = make_archive('Ubuntu-20240101_020000.tar.zst', NOW - timedelta(days=14))
        remote = FakeRemote(fail_upload=True)

        result = make_executor(remote=remote).execute()

        assert result.failure_stage == 'upload'
        assert 'connection reset' in result.error_message
        assert (backup_dir / ARCHIVE_NAME).exists()
        assert old.exists()
        assert remote.deleted_older_than == []

    @pytest.mark.parametrize('remote_kwargs', [{'corrupt': True}, {'hash_unsupported': True}])
    def test_verify_failure_skips_retention(self, make_executor, make_archive, backup_dir, remote_kwargs):
        old = make_archive('Ubuntu-20240101_020000.tar.zst', NOW - timedelta(days=14))
        remote = FakeRemote(**remote_kwargs)

        result = make_executor(remote=remote).execute()

        assert result.failure_stage == 'verify'
        assert not result.archive.verified
        assert (backup_dir / ARCHIVE_NAME).exists()
        assert old.exists()
        assert remote.deleted_older_than == []

    def test_failure_reported(self, make_executor):
        events = []

        make_executor(
            codec=FakeCodec(fail_compress=True),
            reporter=lambda stage, status, message: events.append((stage, status)),
        ).execute()

        assert events[-1] == ('compress', 'fail')

    def test_blocked_export_path_is_recorded(self, make_executor, fake_wsl, backup_dir, run_log):
        (backup_dir / RAW_NAME).mkdir()

        result = make_executor().execute()

        assert result.failure_stage == 'export'
        assert fake_wsl.exports == []
        assert run_log.read_lines()[-1].endswith('FAILED at export: ' + result.error_message)

    def test_blocked_archive_path_is_recorded(self, make_executor, fake_remote, backup_dir, run_log):
        (backup_dir / ARCHIVE_NAME).mkdir()

        result = make_executor().execute()

        assert result.failure_stage == 'compress'
        assert (backup_dir / RAW_NAME).exists()
        assert fake_remote.objects == {}
        assert 'FAILED at compress' in run_log.read_lines()[-1]

    def test_unexpected_filesystem_error_is_recorded(self, make_executor, run_log, backup_dir):
        remote = FakeRemote()

        with patch.object(remote, 'upload', side_effect=PermissionError('archive is locked')):
            result = make_executor(remote=remote).execute()

        assert not result.success
        assert result.failure_stage == 'upload'
        assert 'archive is locked' in result.error_message
        assert 'FAILED at upload' in run_log.read_lines()[-1]
        assert not (backup_dir / LOCK_FILENAME).exists()

    def test_lock_released_after_failure(self, make_executor, backup_dir):
        make_executor(wsl=FakeWsl(exit_code=1)).execute()

        assert not (backup_dir / LOCK_FILENAME).exists()


class TestConcurrentRuns:

    def test_second_run_refused_while_locked(self, make_executor, fake_wsl, backup_dir):
        lock = RunLock(str(backup_dir))
        lock.acquire()
        try:
            result = make_executor().execute()
        finally:
            lock.release()

        assert result.failure_stage == 'lock'
        assert fake_wsl.exports == []

    def test_stale_lock_is_replaced(self, make_executor, backup_dir):
        lock_path = backup_dir / LOCK_FILENAME
        lock_path.write_text('1234 0\n')
        os.utime(lock_path, (0, 0))

        result = make_executor().execute()

        assert result.success
        assert not lock_path.exists()
