"""Notification sink used by the engine and the change watcher.

Delivery to the desktop is left to the embedding application; the default
sink writes notifications to the log.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Anything that can show a titled message to the user."""

    def notify(self, title: str, body: str) -> None: ...


class LogNotifier:
    """Sink that records notifications with the ``logging`` module."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    def notify(self, title: str, body: str) -> None:
        logger.log(self._level, "%s: %s", title, body)


def notify_sync_completed(sink: NotificationSink, count: int) -> None:
    sink.notify("Sync Completed", f"Successfully synced {count} file(s)")


def notify_conflicts_detected(sink: NotificationSink, count: int) -> None:
    sink.notify("Conflicts Detected", f"{count} file(s) have conflicts that need resolution")


def notify_sync_failed(sink: NotificationSink, error: str) -> None:
    sink.notify("Sync Failed", error)


def notify_file_changed(sink: NotificationSink, filename: str) -> None:
    sink.notify("Config File Changed", f"{filename} was modified")
