"""
Compression handlers for distro exports.

Exports are compressed with the zstd command line tool:
- <distro>-<YYYYMMDD_HHMMSS>.tar is the raw export
- <distro>-<YYYYMMDD_HHMMSS>.tar.zst is the archive that gets uploaded
"""

import os
import re
import logging
from datetime import datetime
from typing import Optional

from wslbackup.utils.process import run_command
from wslbackup.errors import CompressionFailed, DecompressionFailed


logger = logging.getLogger(__name__)

RAW_EXTENSION = '.tar'
ARCHIVE_EXTENSION = '.tar.zst'
TIMESTAMP_FORMAT = '%Y%m%d_%H%M%S'

# Mid-high point: most of the ratio of -19 at a fraction of the time
DEFAULT_LEVEL = 9

_TIMESTAMP_RE = re.compile(r'-(\d{8}_\d{6})\.tar(?:\.zst)?$')


class ZstdCodec:
    """
    Adapter for the zstd executable.
    """

    def __init__(self, zstd_exe: str = 'zstd'):
        self.zstd_exe = zstd_exe

    def compress(self, input_path: str, output_path: str, level: int = DEFAULT_LEVEL,
                 remove_input: bool = True) -> bool:
        """
        Compress a file using all cores.

        Returns:
            True if zstd exited successfully
        """
        args = [self.zstd_exe, '-T0', f'-{level}', '-q', '-f']
        if remove_input:
            args.append('--rm')
        args += ['-o', output_path, input_path]

        result = run_command(args)
        if not result.ok:
            logger.error(f"zstd compress failed (exit {result.returncode}): {result.error_text()}")
        return result.ok

    def decompress(self, input_path: str, output_path: str, remove_input: bool = False) -> bool:
        """
        Decompress a file.

        Returns:
            True if zstd exited successfully
        """
        args = [self.zstd_exe, '-d', '-q', '-f']
        if remove_input:
            args.append('--rm')
        args += ['-o', output_path, input_path]

        result = run_command(args)
        if not result.ok:
            logger.error(f"zstd decompress failed (exit {result.returncode}): {result.error_text()}")
        return result.ok


def compress_export(codec: ZstdCodec, raw_path: str, level: int = DEFAULT_LEVEL) -> str:
    """
    Compress a raw export into its sibling archive.

    The raw export is removed only once the archive exists; on failure it is
    kept for manual recovery.

    Args:
        codec: Codec adapter
        raw_path: Path to the raw .tar export
        level: zstd compression level

    Returns:
        Path to the .tar.zst archive

    Raises:
        CompressionFailed: If zstd fails or produces no output
    """
    if not os.path.exists(raw_path):
        raise CompressionFailed(f"Raw export not found: {raw_path}")

    archive_path = raw_path + '.zst'

    # Leftover from an interrupted run
    try:
        if os.path.exists(archive_path):
            os.remove(archive_path)
    except OSError as e:
        raise CompressionFailed(f"Cannot remove stale archive {archive_path}: {e}")

    logger.info(f"Compressing {raw_path} (zstd level {level})")
    ok = codec.compress(raw_path, archive_path, level=level, remove_input=True)

    if not ok or not os.path.exists(archive_path):
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError as e:
                logger.warning(f"Failed to remove partial archive {archive_path}: {e}")
        raise CompressionFailed(
            f"Compression of {os.path.basename(raw_path)} failed; raw export kept at {raw_path}"
        )

    if os.path.exists(raw_path):
        try:
            os.remove(raw_path)
        except OSError as e:
            logger.warning(f"Failed to remove raw export {raw_path}: {e}")

    return archive_path


def decompress_archive(codec: ZstdCodec, archive_path: str, raw_path: Optional[str] = None) -> str:
    """
    Decompress an archive into a raw tar image, keeping the archive.

    Args:
        codec: Codec adapter
        archive_path: Path to the .tar.zst archive
        raw_path: Output path (defaults to the archive path without .zst)

    Returns:
        Path to the raw tar image

    Raises:
        DecompressionFailed: If zstd fails or produces no output
    """
    raw_path = raw_path or strip_archive_extension(archive_path) + RAW_EXTENSION

    # Leftover from an interrupted restore
    try:
        if os.path.exists(raw_path):
            os.remove(raw_path)
    except OSError as e:
        raise DecompressionFailed(f"Cannot remove stale image {raw_path}: {e}")

    logger.info(f"Decompressing {archive_path}")
    ok = codec.decompress(archive_path, raw_path, remove_input=False)

    if not ok or not os.path.exists(raw_path):
        raise DecompressionFailed(f"Decompression of {os.path.basename(archive_path)} failed")

    return raw_path


def generate_archive_filename(distro_name: str, timestamp: Optional[datetime] = None) -> str:
    """
    Generate a standardized raw export filename.

    Format: {distro}-{YYYYMMDD_HHMMSS}.tar

    Args:
        distro_name: Name of the distro
        timestamp: Snapshot time (defaults to now)

    Returns:
        Filename (without path)
    """
    timestamp = timestamp or datetime.now()

    return f"{safe_distro_name(distro_name)}-{timestamp.strftime(TIMESTAMP_FORMAT)}{RAW_EXTENSION}"


def strip_archive_extension(filename: str) -> str:
    """
    Strip archive extension from filename.

    Handles the multi-part .tar.zst extension.
    """
    if filename.endswith(ARCHIVE_EXTENSION):
        return filename[:-len(ARCHIVE_EXTENSION)]
    elif filename.endswith(RAW_EXTENSION):
        return filename[:-len(RAW_EXTENSION)]
    else:
        return os.path.splitext(filename)[0]


def parse_archive_timestamp(filename: str) -> Optional[datetime]:
    """
    Extract the snapshot time embedded in an archive name.

    Returns:
        datetime, or None if the name does not follow the naming scheme
    """
    match = _TIMESTAMP_RE.search(os.path.basename(filename))
    if not match:
        return None
    try:
        return datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
    except ValueError:
        return None


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionFailed: If the file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionFailed(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionFailed(f"Failed to get archive size: {e}")


def safe_distro_name(distro_name: str) -> str:
    """Distro name as it appears in archive names (spaces and special chars become underscores)."""
    return "".join(
        c if c.isalnum() or c in ('-', '_', '.') else '_'
        for c in distro_name
    )
