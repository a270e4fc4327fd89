"""
Connection Lifecycle Controller
Health state machine of the upstream ingest channel
"""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fleetwatch.errors import InvalidTransition
from fleetwatch.models.connection import ConnectionState, ConnectionStatus

logger = logging.getLogger(__name__)

# Allowed moves; staying in the same state is always a no-op
TRANSITIONS = {
    ConnectionState.CONNECTING: {ConnectionState.CONNECTED, ConnectionState.DISCONNECTED},
    ConnectionState.CONNECTED: {ConnectionState.DISCONNECTED},
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING},
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionLifecycle:
    """CONNECTING → CONNECTED → DISCONNECTED → CONNECTING …

    The ingest client drives the transitions; everyone else only reads status().
    """

    def __init__(
        self,
        heartbeat_timeout: timedelta = timedelta(seconds=60),
        backoff_initial: timedelta = timedelta(seconds=5),
        backoff_max: timedelta = timedelta(seconds=60),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.heartbeat_timeout = heartbeat_timeout
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self._clock = clock
        self._lock = threading.Lock()

        self._state = ConnectionState.CONNECTING
        self._state_since = clock()
        self._last_update_at: Optional[datetime] = None
        self._last_message_at: Optional[datetime] = None
        self._attempts = 0
        self._last_error: Optional[str] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_update_at(self) -> Optional[datetime]:
        return self._last_update_at

    def _move(self, target: ConnectionState, now: Optional[datetime] = None) -> bool:
        with self._lock:
            if target == self._state:
                return False
            if target not in TRANSITIONS[self._state]:
                raise InvalidTransition(f"Cannot move from {self._state.value} to {target.value}")
            previous, self._state = self._state, target
            self._state_since = now or self._clock()
        logger.info(f"Upstream connection {previous.value} → {target.value}")
        return True

    def mark_connected(self, now: Optional[datetime] = None):
        """First successful handshake/subscription on the current attempt"""
        now = now or self._clock()
        self._move(ConnectionState.CONNECTED, now)
        self._attempts = 0
        self._last_error = None
        self._last_message_at = now

    def mark_disconnected(self, reason: str = "", now: Optional[datetime] = None):
        """Upstream failure or heartbeat timeout"""
        if self._move(ConnectionState.DISCONNECTED, now):
            self._last_error = reason or None
            if reason:
                logger.warning(f"Upstream disconnected: {reason}")

    def begin_reconnect(self, now: Optional[datetime] = None):
        """Leave DISCONNECTED once the backoff has elapsed"""
        if self._move(ConnectionState.CONNECTING, now):
            self._attempts += 1

    def next_backoff(self) -> float:
        """Seconds to wait before the next attempt, doubling up to the maximum"""
        delay = self.backoff_initial * (2 ** self._attempts)
        return min(delay, self.backoff_max).total_seconds()

    def record_message(self, now: Optional[datetime] = None):
        """Any upstream traffic counts as a heartbeat"""
        self._last_message_at = now or self._clock()

    def record_update(self, now: Optional[datetime] = None):
        """A report was successfully processed"""
        now = now or self._clock()
        self._last_update_at = now
        self._last_message_at = now

    def check_heartbeat(self, now: Optional[datetime] = None) -> bool:
        """Disconnect if a connected channel has been silent too long; returns True if it did"""
        now = now or self._clock()
        if self._state != ConnectionState.CONNECTED or self._last_message_at is None:
            return False
        if now - self._last_message_at < self.heartbeat_timeout:
            return False
        self.mark_disconnected(f"no upstream traffic for {self.heartbeat_timeout.total_seconds():g}s", now)
        return True

    def status(self) -> ConnectionStatus:
        with self._lock:
            return ConnectionStatus(
                state=self._state,
                last_update_at=self._last_update_at,
                state_since=self._state_since,
                reconnect_attempts=self._attempts,
                last_error=self._last_error,
            )
