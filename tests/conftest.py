"""
Shared pytest fixtures for wslbackup tests.

This module provides fixtures for:
- Config and run log pointing into a temporary backup directory
- Fake adapters for wsl.exe, zstd and rclone that work on real files
- Helpers for archives with controlled modification times
"""

import os
import time
from datetime import datetime

import pytest

from wslbackup.config import Config
from wslbackup.utils.runlog import RunLog
from tests.fakes import FakeWsl, FakeCodec, FakeRemote


@pytest.fixture
def backup_dir(tmp_path):
    path = tmp_path / 'backups'
    path.mkdir()
    return path


@pytest.fixture
def config(backup_dir):
    """Config with a resolved distro and a fast poll interval."""
    return Config(
        backup_dir=str(backup_dir),
        rclone_remote='remote:wsl',
        distro_name='Ubuntu',
        retention_local=7,
        retention_cloud=30,
        poll_interval=0.01,
    )


@pytest.fixture
def run_log(config):
    return RunLog(config.run_log_path)


@pytest.fixture
def fake_wsl():
    return FakeWsl()


@pytest.fixture
def fake_codec():
    return FakeCodec()


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def make_archive(backup_dir):
    """
    Create an archive file in the backup directory with a given modification time.

    Usage: make_archive('Ubuntu-20240101_020000.tar.zst', datetime(2024, 1, 1, 2))
    """
    def _make(name, modified: datetime, content=b'archive data', directory=None):
        path = (directory or backup_dir) / name
        path.write_bytes(content)
        ts = time.mktime(modified.timetuple())
        os.utime(path, (ts, ts))
        return path

    return _make


@pytest.fixture
def config_file(tmp_path):
    """Write a JSON config file and return its path."""
    import json

    def _write(data):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps(data))
        return str(path)

    return _write
