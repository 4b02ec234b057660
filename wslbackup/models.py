from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass
class BackupArchive:
    """One exported distro snapshot"""
    environment_name: str
    timestamp: datetime
    local_path: str
    remote_path: Optional[str] = None
    raw_size: int = 0
    compressed_size: int = 0
    digest: Optional[str] = None
    verified: bool = False

    def __repr__(self):
        return f'<BackupArchive {self.environment_name} {self.timestamp:%Y%m%d_%H%M%S} verified={self.verified}>'


@dataclass(frozen=True)
class RetentionPolicy:
    """Independent local and cloud retention windows (days)"""
    local_days: int
    cloud_days: int


@dataclass
class RunResult:
    """Outcome of one backup invocation"""
    success: bool = False
    raw_size: int = 0
    compressed_size: int = 0
    elapsed_seconds: float = 0.0
    failure_stage: Optional[str] = None
    error_message: Optional[str] = None
    archive: Optional[BackupArchive] = None
    local_deleted: list = field(default_factory=list)
    cloud_pruned: bool = False

    @property
    def compression_ratio(self) -> float:
        return compression_ratio(self.raw_size, self.compressed_size)


@dataclass(frozen=True)
class ExportProgress:
    """One poll sample of a running export"""
    bytes_written: int
    elapsed_seconds: float

    @property
    def throughput(self) -> float:
        """Bytes per second since the export started"""
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.bytes_written / self.elapsed_seconds


@dataclass(frozen=True)
class RemoteEntry:
    """An object in the remote location, as listed by rclone"""
    name: str
    size: int
    modified: Optional[datetime] = None


class RestoreState(Enum):
    IDLE = 'idle'
    LOCATING = 'locating'
    DOWNLOADING = 'downloading'
    DECOMPRESSING = 'decompressing'
    IMPORTING = 'importing'
    COMPLETE = 'complete'
    FAILED = 'failed'


@dataclass
class RestoreResult:
    """Outcome of one restore invocation"""
    state: RestoreState = RestoreState.IDLE
    archive_name: Optional[str] = None
    restored_name: Optional[str] = None
    install_dir: Optional[str] = None
    downloaded: bool = False
    failure_stage: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.state == RestoreState.COMPLETE


def compression_ratio(raw_size: int, compressed_size: int) -> float:
    """Raw over compressed size, rounded to two decimals (0.0 when undefined)"""
    if not compressed_size:
        return 0.0
    return round(raw_size / compressed_size, 2)
