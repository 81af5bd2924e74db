"""
User-facing notifications for the offline layer.

The UI is not part of this package; components call into a Notifier
whenever the user should see something (queued, synced, failed,
connectivity changes) and on every sync-status refresh.
"""

import logging
from typing import Any, Dict, Tuple


logger = logging.getLogger(__name__)


# Notification levels
INFO = 'info'
SUCCESS = 'success'
WARNING = 'warning'
ERROR = 'error'


class Notifier:
    """Interface for displaying transient messages to the user."""

    def notify(self, message: str, level: str = INFO) -> None:
        raise NotImplementedError

    def update_status(self, message: str, level: str, stats: Dict[str, Any]) -> None:
        """Refresh the persistent sync status indicator."""
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Notifier that writes every message to the log."""

    _LEVELS = {
        INFO: logging.INFO,
        SUCCESS: logging.INFO,
        WARNING: logging.WARNING,
        ERROR: logging.ERROR,
    }

    def notify(self, message: str, level: str = INFO) -> None:
        logger.log(self._LEVELS.get(level, logging.INFO), f"[{level}] {message}")

    def update_status(self, message: str, level: str, stats: Dict[str, Any]) -> None:
        logger.debug(f"Sync status: {message} ({stats})")


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'s' if count != 1 else ''}"


def describe_sync_status(stats: Dict[str, Any]) -> Tuple[str, str]:
    """
    Build the sync status line shown to the user.

    Pending entries take precedence over failed ones.

    Returns:
        (message, level) tuple
    """
    pending = stats.get('pending', 0)
    failed = stats.get('failed', 0)

    if pending > 0:
        return f"{_plural(pending, 'item')} waiting to sync", WARNING
    if failed > 0:
        return f"{_plural(failed, 'item')} failed to sync", ERROR
    return "All data synchronized", SUCCESS
