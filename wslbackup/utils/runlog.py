"""
Append-only lifecycle log for backup and restore runs.

Each write opens the file, appends one line and closes it again, so every
line is on disk even when a stage fails and the run returns early.
"""

import os
import logging
from datetime import datetime


logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'


class RunLog:
    """
    Writer for the run log file.

    Line format: ``<YYYY-MM-DD HH:MM:SS>  <message>``
    """

    def __init__(self, path: str):
        self.path = path

    def write(self, message: str):
        """
        Append one line to the run log.

        Args:
            message: Lifecycle event to record
        """
        timestamp = datetime.now().strftime(TIMESTAMP_FORMAT)
        line = f"{timestamp}  {message}\n"

        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(self.path, 'a', encoding='utf-8') as f:
            f.write(line)

        logger.info(message)

    def read_lines(self) -> list:
        """Return all lines written so far (empty if the log does not exist)."""
        if not os.path.exists(self.path):
            return []
        with open(self.path, 'r', encoding='utf-8') as f:
            return f.read().splitlines()
