"""
Freshness report of the local backup directory.
"""

import os
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from .storage import LocalStorage


# A daily run that is more than an hour late counts as missed
OVERDUE_AFTER = timedelta(hours=25)

FRESH = 'FRESH'
OVERDUE = 'OVERDUE'
NO_BACKUPS = 'NONE'


def get_backup_status(backup_dir: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Describe the most recent local archive.

    Args:
        backup_dir: Local backup directory
        now: Reference time (defaults to now)

    Returns:
        Dict with 'state' (FRESH, OVERDUE or NONE), 'latest' (archive dict or
        None), 'age' (timedelta or None) and 'count'
    """
    now = now or datetime.now()
    archives = LocalStorage(backup_dir).list_archives() if os.path.isdir(backup_dir) else []

    if not archives:
        return {'state': NO_BACKUPS, 'latest': None, 'age': None, 'count': 0}

    latest = archives[0]
    age = now - latest['modified']

    return {
        'state': OVERDUE if age > OVERDUE_AFTER else FRESH,
        'latest': latest,
        'age': age,
        'count': len(archives),
    }


def format_age(age: timedelta) -> str:
    """Human readable age, e.g. '1d 2h 5m'."""
    total_minutes = max(int(age.total_seconds() // 60), 0)
    days, remainder = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(remainder, 60)
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
