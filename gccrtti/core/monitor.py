# -*- coding: utf-8 -*-
"""
gccrtti/core/monitor.py - Cooperative cancellation

A TaskMonitor is handed to long-running searches, which poll it once per
iteration. Cancelling from another thread makes the next poll raise
AnalysisCancelledError.
"""

import threading
import logging
from typing import Optional

from .exceptions import AnalysisCancelledError

logger = logging.getLogger(__name__)


class TaskMonitor:
    """Progress and cancellation handle for one analysis call"""

    def __init__(self, message: str = "") -> None:
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self.message = message
        self.maximum = 0
        self.progress = 0

    def cancel(self) -> None:
        """Request cancellation; takes effect at the next check"""
        self._cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check_cancelled(self) -> None:
        """
        Raise if cancellation was requested

        Raises:
            AnalysisCancelledError
        """
        if self._cancelled.is_set():
            logger.debug("Cancelled: %s", self.message or "<task>")
            raise AnalysisCancelledError(
                "Operation cancelled",
                {"task": self.message} if self.message else None,
            )

    def set_message(self, message: str) -> None:
        self.message = message

    def initialize(self, maximum: int) -> None:
        with self._lock:
            self.maximum = maximum
            self.progress = 0

    def increment_progress(self, amount: int = 1) -> None:
        with self._lock:
            self.progress += amount


def ensure_monitor(monitor: Optional[TaskMonitor], message: str = "") -> TaskMonitor:
    """Return ``monitor`` or a fresh one that is never cancelled"""
    if monitor is None:
        return TaskMonitor(message)
    if message:
        monitor.set_message(message)
    return monitor
