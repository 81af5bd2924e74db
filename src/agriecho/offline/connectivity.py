"""
Connectivity tracking for the offline layer.

ConnectivityMonitor owns the single online/offline flag. It never polls:
environment signals call notify(is_online) and the monitor turns those
into state transitions. Only real transitions fire listeners, so
repeated "online" signals trigger at most one drain.

HealthCheckSignal is one such environment signal: a background thread
that probes the API health endpoint and reports reachability to the
monitor, with hysteresis to avoid flapping.
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, List, Optional

from agriecho.offline.notifier import Notifier, SUCCESS, WARNING


logger = logging.getLogger(__name__)

# How often the health signal probes (seconds)
CHECK_INTERVAL_ONLINE = 30      # Check every 30s when online
CHECK_INTERVAL_OFFLINE = 10     # Check every 10s when offline (faster recovery)

# Hysteresis: require N consecutive results before reporting a change
ONLINE_THRESHOLD = 1   # 1 success -> online immediately
OFFLINE_THRESHOLD = 3  # 3 consecutive failures -> offline


class ConnectivityState(Enum):
    """Connectivity of the client."""
    ONLINE = "online"
    OFFLINE = "offline"


class ConnectivityMonitor:
    """
    Two-state connectivity machine.

    Transitions:
    - OFFLINE -> ONLINE: notify user, call every on_online listener
    - ONLINE -> OFFLINE: notify user, call every on_offline listener
    - same state -> same state: ignored

    Usage:
        monitor = ConnectivityMonitor(initial_online=False, notifier=notifier)
        monitor.add_online_listener(lambda: scheduler.call_later(0, queue.drain))
        monitor.notify(True)   # transition, listener fires
        monitor.notify(True)   # no-op
    """

    def __init__(self, initial_online: bool = True, notifier: Optional[Notifier] = None):
        """
        Args:
            initial_online: Connectivity reported by the environment at startup
            notifier: Optional notifier for user-visible transition messages
        """
        self._lock = threading.Lock()
        self._state = ConnectivityState.ONLINE if initial_online else ConnectivityState.OFFLINE
        self._notifier = notifier
        self._online_listeners: List[Callable[[], None]] = []
        self._offline_listeners: List[Callable[[], None]] = []
        self._transitions = 0
        self._last_change: Optional[float] = None

        logger.info("ConnectivityMonitor initialized %s", self._state.name)

    @property
    def state(self) -> ConnectivityState:
        with self._lock:
            return self._state

    @property
    def is_online(self) -> bool:
        """True while the client believes it is online."""
        with self._lock:
            return self._state == ConnectivityState.ONLINE

    def add_online_listener(self, callback: Callable[[], None]) -> None:
        self._online_listeners.append(callback)

    def add_offline_listener(self, callback: Callable[[], None]) -> None:
        self._offline_listeners.append(callback)

    def notify(self, is_online: bool) -> bool:
        """
        Report the environment's current connectivity.

        Args:
            is_online: True when connectivity is available

        Returns:
            True if this caused a transition
        """
        target = ConnectivityState.ONLINE if is_online else ConnectivityState.OFFLINE

        with self._lock:
            if self._state == target:
                logger.debug("Already %s", target.name)
                return False
            old_state = self._state
            self._state = target
            self._transitions += 1
            self._last_change = time.time()

        logger.info("Connectivity transition: %s -> %s", old_state.name, target.name)

        # Listeners run outside the lock
        if target == ConnectivityState.ONLINE:
            self._announce("Back online! Syncing your data...", SUCCESS)
            listeners = list(self._online_listeners)
        else:
            self._announce("You're offline. Data will be saved locally.", WARNING)
            listeners = list(self._offline_listeners)

        for listener in listeners:
            try:
                listener()
            except Exception as e:
                logger.error("Connectivity listener error: %s", e)

        return True

    def go_online(self) -> bool:
        return self.notify(True)

    def go_offline(self) -> bool:
        return self.notify(False)

    def _announce(self, message: str, level: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(message, level)
        except Exception as e:
            logger.error("Notifier error: %s", e)

    def get_status(self) -> dict:
        with self._lock:
            return {
                'state': self._state.value,
                'online': self._state == ConnectivityState.ONLINE,
                'transitions': self._transitions,
                'last_change': self._last_change,
            }


class HealthCheckSignal:
    """
    Background health probe feeding a ConnectivityMonitor.

    Usage:
        signal = HealthCheckSignal(monitor, probe=api_client.health)
        signal.start()
        ...
        signal.stop()
    """

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        probe: Callable[[], bool],
        interval_online: float = CHECK_INTERVAL_ONLINE,
        interval_offline: float = CHECK_INTERVAL_OFFLINE,
    ):
        """
        Args:
            monitor: Monitor to report to
            probe: Callable returning True when the API is reachable
            interval_online: Seconds between probes while online
            interval_offline: Seconds between probes while offline
        """
        self._monitor = monitor
        self._probe = probe
        self._interval_online = interval_online
        self._interval_offline = interval_offline

        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._total_checks = 0
        self._total_failures = 0

        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._stop_event = threading.Event()

    def check_now(self) -> bool:
        """
        Run one probe and report it.

        Returns:
            True if the target is reachable.
        """
        try:
            reachable = bool(self._probe())
        except Exception as e:
            logger.error("Health check error: %s", e)
            reachable = False
        self._record(reachable)
        return reachable

    def _record(self, reachable: bool) -> None:
        """Apply hysteresis and forward a state to the monitor."""
        self._total_checks += 1

        if reachable:
            self._consecutive_successes += 1
            self._consecutive_failures = 0
            if self._consecutive_successes >= ONLINE_THRESHOLD:
                self._monitor.notify(True)
        else:
            self._consecutive_failures += 1
            self._consecutive_successes = 0
            self._total_failures += 1
            if self._consecutive_failures >= OFFLINE_THRESHOLD:
                self._monitor.notify(False)

    def _loop(self) -> None:
        self.check_now()

        while self._running:
            interval = self._interval_online if self._monitor.is_online else self._interval_offline
            if self._stop_event.wait(timeout=interval):
                break  # Stop requested
            if self._running:
                self.check_now()

    def start(self) -> None:
        """Start probing in a daemon thread."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="health-check-signal",
            daemon=True,
        )
        self._thread.start()
        logger.info("HealthCheckSignal started")

    def stop(self) -> None:
        """Stop probing."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=10)
            self._thread = None
        logger.info("HealthCheckSignal stopped")

    def get_status(self) -> dict:
        return {
            'consecutive_failures': self._consecutive_failures,
            'consecutive_successes': self._consecutive_successes,
            'total_checks': self._total_checks,
            'total_failures': self._total_failures,
        }
