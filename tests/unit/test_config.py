"""
Unit tests for configuration loading (wslbackup/config.py).
"""

import os
import dataclasses
from unittest.mock import MagicMock

import pytest

from wslbackup.config import Config, load_config, resolve_distro
from wslbackup.errors import ConfigMissing, ConfigInvalid


VALID = {
    'backupDir': '/data/wsl-backups',
    'distroName': 'Ubuntu',
    'rcloneRemote': 'gdrive:Backups/WSL',
    'retentionLocal': 7,
    'retentionCloud': 30,
}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ('WSLBACKUP_CONFIG', 'WSLBACKUP_BACKUP_DIR', 'WSLBACKUP_DISTRO', 'WSLBACKUP_REMOTE'):
        monkeypatch.delenv(var, raising=False)


class TestLoadConfig:
    """Test load_config."""

    def test_load_valid_config(self, config_file):
        config = load_config(config_file(VALID))

        assert config.backup_dir == '/data/wsl-backups'
        assert config.distro_name == 'Ubuntu'
        assert config.rclone_remote == 'gdrive:Backups/WSL'
        assert config.retention_local == 7
        assert config.retention_cloud == 30

    def test_defaults_for_optional_values(self, config_file):
        config = load_config(config_file({'backupDir': '/b', 'rcloneRemote': 'r:p'}))

        assert config.distro_name == ''
        assert config.retention_local == 7
        assert config.retention_cloud == 30
        assert config.poll_interval == 1.0
        assert config.compression_level == 9
        assert config.run_log_path == os.path.join('/b', 'backup.log')

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigMissing):
            load_config(str(tmp_path / 'nope.json'))

    def test_path_from_environment(self, config_file, monkeypatch):
        path = config_file(VALID)
        monkeypatch.setenv('WSLBACKUP_CONFIG', path)

        assert load_config().distro_name == 'Ubuntu'

    def test_environment_overrides_file(self, config_file, monkeypatch):
        monkeypatch.setenv('WSLBACKUP_DISTRO', 'Debian')
        monkeypatch.setenv('WSLBACKUP_REMOTE', 'b2:wsl')

        config = load_config(config_file(VALID))

        assert config.distro_name == 'Debian'
        assert config.rclone_remote == 'b2:wsl'

    def test_invalid_json(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text('{"backupDir": ')

        with pytest.raises(ConfigInvalid):
            load_config(str(path))

    def test_utf8_bom_is_accepted(self, tmp_path):
        import json
        path = tmp_path / 'config.json'
        path.write_bytes(b'\xef\xbb\xbf' + json.dumps(VALID).encode('utf-8'))

        assert load_config(str(path)).distro_name == 'Ubuntu'

    @pytest.mark.parametrize('missing', ['backupDir', 'rcloneRemote'])
    def test_missing_required_value(self, config_file, missing):
        data = dict(VALID)
        del data[missing]

        with pytest.raises(ConfigInvalid, match=missing):
            load_config(config_file(data))

    def test_remote_without_colon(self, config_file):
        with pytest.raises(ConfigInvalid, match='remote:path'):
            load_config(config_file(dict(VALID, rcloneRemote='just-a-folder')))

    def test_trailing_slash_stripped_from_remote(self, config_file):
        config = load_config(config_file(dict(VALID, rcloneRemote='gdrive:WSL/')))
        assert config.rclone_remote == 'gdrive:WSL'

    @pytest.mark.parametrize('value', ['seven', -1, 2.5, True])
    def test_invalid_retention(self, config_file, value):
        with pytest.raises(ConfigInvalid):
            load_config(config_file(dict(VALID, retentionLocal=value)))

    def test_numeric_string_retention(self, config_file):
        config = load_config(config_file(dict(VALID, retentionCloud='14')))
        assert config.retention_cloud == 14

    @pytest.mark.parametrize('value', [0, 1.5, 'fast'])
    def test_invalid_poll_interval(self, config_file, value):
        with pytest.raises(ConfigInvalid):
            load_config(config_file(dict(VALID, pollInterval=value)))

    def test_config_is_immutable(self, config_file):
        config = load_config(config_file(VALID))

        with pytest.raises(dataclasses.FrozenInstanceError):
            config.distro_name = 'Other'


class TestResolveDistro:
    """Test distro auto-detection."""

    def test_configured_name_kept(self):
        config = Config(backup_dir='/b', rclone_remote='r:p', distro_name='Ubuntu')
        source = MagicMock()

        assert resolve_distro(config, source) is config
        source.default_distro.assert_not_called()

    def test_detected_when_empty(self):
        config = Config(backup_dir='/b', rclone_remote='r:p')
        source = MagicMock()
        source.default_distro.return_value = 'Ubuntu-22.04'

        resolved = resolve_distro(config, source)

        assert resolved.distro_name == 'Ubuntu-22.04'
        assert config.distro_name == ''

    def test_nothing_detected(self):
        config = Config(backup_dir='/b', rclone_remote='r:p')
        source = MagicMock()
        source.default_distro.return_value = None

        with pytest.raises(ConfigInvalid):
            resolve_distro(config, source)
