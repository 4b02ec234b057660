"""
End-to-end integrity check of an uploaded archive.

The same algorithm (MD5) is computed locally and requested from the remote.
"""

import os
import hashlib
import logging

from wslbackup.errors import VerificationFailed
from .storage import StorageError


logger = logging.getLogger(__name__)

CHUNK_SIZE = 8 * 1024 * 1024


def calculate_md5(path: str) -> str:
    """Calculate the MD5 hex digest of a file."""
    hash_md5 = hashlib.md5()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
            hash_md5.update(chunk)
    return hash_md5.hexdigest()


def verify_upload(storage, local_path: str) -> str:
    """
    Compare the local archive's digest with the one the remote reports.

    Args:
        storage: RcloneStorage holding the uploaded object
        local_path: Path to the local archive

    Returns:
        The verified digest

    Raises:
        VerificationFailed: If either digest is unavailable or they differ
    """
    name = os.path.basename(local_path)

    try:
        local_digest = calculate_md5(local_path)
    except OSError as e:
        raise VerificationFailed(f"Cannot read local archive {local_path}: {e}")

    try:
        remote_digest = storage.hashsum(name, 'MD5')
    except StorageError as e:
        raise VerificationFailed(f"Remote digest unavailable for {name}: {e}")

    if not remote_digest:
        raise VerificationFailed(f"Remote digest unavailable for {name} (object missing or MD5 unsupported)")

    if local_digest.lower() != remote_digest.lower():
        raise VerificationFailed(
            f"Digest mismatch for {name}: local {local_digest}, remote {remote_digest}"
        )

    logger.info(f"Verified {name}: md5 {local_digest}")
    return local_digest
