# =============================================================================
# sync_core/offline/connection_manager.py
# Remote Reachability Detection and Monitoring
# =============================================================================
"""
ConnectionManager - tracks whether the remote backend is reachable.

Features:
- ONLINE / OFFLINE state machine driven by a health check
- Background daemon thread probing every CHECK_INTERVAL seconds
- Listener callbacks, called once per actual transition
- Reconciliation hook (queue drain + resync) after every healthy check
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
import logging

from sync_core.errors import ErrorContext, safe_execute

logger = logging.getLogger(__name__)

HEALTHY_STATUS = 200


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.ONLINE
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectionManager:
    """
    Connectivity monitor for one cache instance.

    Usage:
        manager = ConnectionManager(remote.health_check, reconcile=cache.reconcile)
        manager.register_callback(lambda online: print("online" if online else "offline"))
        manager.start_monitoring()
    """

    # Configuration
    CHECK_INTERVAL = 10     # Seconds between health checks
    JOIN_TIMEOUT = 5        # Seconds to wait for the thread on stop

    def __init__(
        self,
        health_check: Callable[[], int],
        reconcile: Optional[Callable[[], None]] = None,
        check_interval: Optional[float] = None,
    ):
        """
        Args:
            health_check: Returns an HTTP-style status; 200 means healthy
            reconcile: Run after every healthy check
            check_interval: Seconds between checks (default CHECK_INTERVAL)
        """
        self._health_check = health_check
        self._reconcile = reconcile
        self.check_interval = check_interval or self.CHECK_INTERVAL

        self._state = ConnectionState()
        self._state_lock = threading.Lock()
        self._callbacks: List[Callable[[bool], None]] = []
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()

    @property
    def state(self) -> ConnectionState:
        """Snapshot of the current connection state."""
        with self._state_lock:
            return replace(self._state)

    @property
    def status(self) -> ConnectionStatus:
        with self._state_lock:
            return self._state.status

    @property
    def is_online(self) -> bool:
        return self.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return self.status == ConnectionStatus.OFFLINE

    def check_connection(self) -> ConnectionStatus:
        """
        Check the remote once and update state.

        Returns:
            The new status
        """
        error_message = None
        try:
            healthy = self._health_check() == HEALTHY_STATUS
        except Exception as e:
            healthy = False
            error_message = str(e)
            logger.debug(f"Health check failed: {e}")

        new_status = ConnectionStatus.ONLINE if healthy else ConnectionStatus.OFFLINE
        now = datetime.now()

        with self._state_lock:
            old_status = self._state.status
            self._state.status = new_status
            self._state.last_check = now
            if healthy:
                self._state.last_online = now
                self._state.consecutive_failures = 0
                self._state.error_message = None
            else:
                self._state.consecutive_failures += 1
                self._state.error_message = error_message

        if old_status != new_status:
            logger.info(f"Connection status changed: {old_status.value} -> {new_status.value}")
            self._notify_callbacks(healthy)

        if healthy and self._reconcile is not None:
            with ErrorContext("Reconciling with the remote"):
                self._reconcile()

        return new_status

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor",
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread is not None and self._monitor_thread is not threading.current_thread():
            self._monitor_thread.join(timeout=self.JOIN_TIMEOUT)
        logger.debug("Connection monitoring stopped")

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_thread is not None and self._monitor_thread.is_alive()

    def _monitoring_loop(self) -> None:
        """Check immediately, then every check_interval seconds until stopped."""
        while not self._stop_monitoring.is_set():
            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

            if self._stop_monitoring.wait(timeout=self.check_interval):
                break

    def register_callback(self, callback: Callable[[bool], None]) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Called with True when the remote becomes reachable,
                False when it becomes unreachable
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[bool], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self, online: bool) -> None:
        for callback in list(self._callbacks):
            safe_execute(callback, online, error_message="Error in connection callback")

    def force_offline(self) -> None:
        """Force offline mode until the next healthy check."""
        with self._state_lock:
            old_status = self._state.status
            self._state.status = ConnectionStatus.OFFLINE
        if old_status != ConnectionStatus.OFFLINE:
            self._notify_callbacks(False)
        logger.info("Forced offline mode")

    def get_status_display(self) -> dict:
        """Get status information for display."""
        state = self.state
        return {
            "status": state.status.value,
            "is_online": state.status == ConnectionStatus.ONLINE,
            "monitoring": self.is_monitoring,
            "last_check": state.last_check.isoformat() if state.last_check else None,
            "last_online": state.last_online.isoformat() if state.last_online else None,
            "failures": state.consecutive_failures,
            "error": state.error_message,
        }
