"""
Error hierarchy for backup and restore runs.

Every error is terminal for the current invocation. The ``stage`` attribute
names the pipeline stage that failed and ends up in the run result and log.
"""


class BackupError(Exception):
    """Base exception for backup and restore failures."""
    stage = 'backup'


class ConfigMissing(BackupError):
    """Raised when the configuration file does not exist."""
    stage = 'config'


class ConfigInvalid(BackupError):
    """Raised when the configuration cannot be parsed or validated."""
    stage = 'config'


class ToolMissing(BackupError):
    """Raised when an external executable cannot be found."""
    stage = 'tools'


class RunInProgress(BackupError):
    """Raised when another run holds the backup directory lock."""
    stage = 'lock'


class ExportFailed(BackupError):
    """Raised when the distro export fails."""
    stage = 'export'


class CompressionFailed(BackupError):
    """Raised when compressing the raw export fails."""
    stage = 'compress'


class UploadFailed(BackupError):
    """Raised when the archive cannot be copied to the remote."""
    stage = 'upload'


class VerificationFailed(BackupError):
    """Raised when the remote digest is unavailable or does not match."""
    stage = 'verify'


class NoBackupFound(BackupError):
    """Raised when the remote holds no archives to restore."""
    stage = 'locate'


class DownloadFailed(BackupError):
    """Raised when an archive cannot be fetched from the remote."""
    stage = 'download'


class DecompressionFailed(BackupError):
    """Raised when decompressing a downloaded archive fails."""
    stage = 'decompress'


class DuplicateTarget(BackupError):
    """Raised when the restore target distro is already registered."""
    stage = 'import'


class ImportFailed(BackupError):
    """Raised when importing the restored image fails."""
    stage = 'import'


__all__ = [
    'BackupError',
    'ConfigMissing',
    'ConfigInvalid',
    'ToolMissing',
    'RunInProgress',
    'ExportFailed',
    'CompressionFailed',
    'UploadFailed',
    'VerificationFailed',
    'NoBackupFound',
    'DownloadFailed',
    'DecompressionFailed',
    'DuplicateTarget',
    'ImportFailed',
]
