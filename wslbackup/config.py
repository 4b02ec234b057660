import os
import json
import logging
from dataclasses import dataclass, replace
from typing import Optional

from wslbackup.errors import ConfigMissing, ConfigInvalid


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = 'config.json'
CONFIG_ENV_VAR = 'WSLBACKUP_CONFIG'

# Environment variables take precedence over the config file
ENV_OVERRIDES = {
    'backup_dir': 'WSLBACKUP_BACKUP_DIR',
    'distro_name': 'WSLBACKUP_DISTRO',
    'rclone_remote': 'WSLBACKUP_REMOTE',
}

# Config file keys mapped to Config fields
FILE_KEYS = {
    'backupDir': 'backup_dir',
    'distroName': 'distro_name',
    'rcloneRemote': 'rclone_remote',
    'retentionLocal': 'retention_local',
    'retentionCloud': 'retention_cloud',
    'logFile': 'log_file',
    'pollInterval': 'poll_interval',
    'compressionLevel': 'compression_level',
    'uploadRetries': 'upload_retries',
    'wslExe': 'wsl_exe',
    'zstdExe': 'zstd_exe',
    'rcloneExe': 'rclone_exe',
}


@dataclass(frozen=True)
class Config:
    """Operator settings, loaded once per invocation and never mutated"""

    backup_dir: str
    rclone_remote: str
    distro_name: str = ''
    retention_local: int = 7
    retention_cloud: int = 30
    log_file: Optional[str] = None

    # Export polling (seconds, at most one second)
    poll_interval: float = 1.0

    # Codec and transport
    compression_level: int = 9
    upload_retries: int = 3

    # External tools
    wsl_exe: str = 'wsl.exe'
    zstd_exe: str = 'zstd'
    rclone_exe: str = 'rclone'

    @property
    def run_log_path(self) -> str:
        return self.log_file or os.path.join(self.backup_dir, 'backup.log')

    @property
    def log_dir(self) -> str:
        return os.path.join(self.backup_dir, 'logs')

    @property
    def restore_dir(self) -> str:
        return os.path.join(self.backup_dir, 'restore')

    @property
    def instances_dir(self) -> str:
        return os.path.join(self.backup_dir, 'instances')


def find_config_file(path: Optional[str] = None) -> str:
    """Return the config file location: explicit path, env var, or working directory."""
    return path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE


def load_config(path: Optional[str] = None) -> Config:
    """
    Load configuration from a JSON file.

    Args:
        path: Config file path (falls back to WSLBACKUP_CONFIG, then config.json)

    Returns:
        Validated Config instance

    Raises:
        ConfigMissing: If the config file does not exist
        ConfigInvalid: If the file cannot be parsed or fails validation
    """
    config_path = find_config_file(path)

    if not os.path.exists(config_path):
        raise ConfigMissing(f"Config file not found: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8-sig') as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigInvalid(f"Config file is not valid JSON ({config_path}): {e}")
    except OSError as e:
        raise ConfigInvalid(f"Failed to read config file {config_path}: {e}")

    if not isinstance(raw, dict):
        raise ConfigInvalid(f"Config file must contain a JSON object: {config_path}")

    values = {}
    for key, field_name in FILE_KEYS.items():
        if key in raw and raw[key] is not None:
            values[field_name] = raw[key]

    unknown = sorted(set(raw) - set(FILE_KEYS))
    if unknown:
        logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")

    for field_name, env_var in ENV_OVERRIDES.items():
        if os.environ.get(env_var):
            values[field_name] = os.environ[env_var]

    config = _build_config(values)
    logger.debug(f"Loaded config from {config_path}: {config}")
    return config


def _build_config(values: dict) -> Config:
    """Validate raw values and construct a Config."""
    for required in ('backup_dir', 'rclone_remote'):
        if not str(values.get(required) or '').strip():
            key = next(k for k, v in FILE_KEYS.items() if v == required)
            raise ConfigInvalid(f"Missing required config value: {key}")

    remote = str(values['rclone_remote']).strip().rstrip('/')
    if ':' not in remote:
        raise ConfigInvalid(f"rcloneRemote must be in remote:path form: {remote}")
    values['rclone_remote'] = remote
    values['backup_dir'] = os.path.expanduser(str(values['backup_dir']))
    values['distro_name'] = str(values.get('distro_name') or '').strip()

    for field_name in ('retention_local', 'retention_cloud', 'compression_level', 'upload_retries'):
        if field_name in values:
            values[field_name] = _as_int(field_name, values[field_name])

    if 'poll_interval' in values:
        try:
            values['poll_interval'] = float(values['poll_interval'])
        except (TypeError, ValueError):
            raise ConfigInvalid(f"pollInterval must be a number: {values['poll_interval']!r}")
        if not 0 < values['poll_interval'] <= 1:
            raise ConfigInvalid(f"pollInterval must be in (0, 1] seconds: {values['poll_interval']}")

    if 'compression_level' in values and not 1 <= values['compression_level'] <= 19:
        raise ConfigInvalid(f"compressionLevel must be between 1 and 19: {values['compression_level']}")

    return Config(**values)


def _as_int(field_name: str, value) -> int:
    """Coerce a config value to a non-negative integer."""
    if isinstance(value, bool):
        raise ConfigInvalid(f"{field_name} must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigInvalid(f"{field_name} must be an integer, got {value!r}")
    if isinstance(value, float) and number != value:
        raise ConfigInvalid(f"{field_name} must be an integer, got {value!r}")
    if number < 0:
        raise ConfigInvalid(f"{field_name} must not be negative: {number}")
    return number


def resolve_distro(config: Config, source) -> Config:
    """
    Fill in the distro name when the config leaves it empty.

    Args:
        config: Loaded configuration
        source: WslSource used to detect the default distro

    Returns:
        Config with distro_name set (the same instance if already set)

    Raises:
        ConfigInvalid: If no distro is configured and none can be detected
    """
    if config.distro_name:
        return config

    detected = source.default_distro()
    if not detected:
        raise ConfigInvalid("distroName is empty and no WSL distro could be detected")

    logger.info(f"Auto-detected distro: {detected}")
    return replace(config, distro_name=detected)
