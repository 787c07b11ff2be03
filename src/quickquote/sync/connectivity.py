"""
Connectivity sources for the sync orchestrator.

A source answers get_state() and lets callers subscribe to transitions.
SocketConnectivitySource probes the network itself and is polled by an
APScheduler interval job; ManualConnectivitySource is driven by whoever
owns it (the API layer, or tests).
"""
import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)

POLL_JOB_ID = "connectivity_poll"


@dataclass(frozen=True)
class ConnectivityState:
    is_connected: bool
    # None = unknown; treated as reachable
    is_internet_reachable: Optional[bool] = None

    @property
    def is_online(self) -> bool:
        return self.is_connected and self.is_internet_reachable is not False


ConnectivityListener = Callable[[ConnectivityState], None]


class _Subscribers:
    def __init__(self):
        self._callbacks: List[ConnectivityListener] = []

    def subscribe(self, callback: ConnectivityListener) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def publish(self, state: ConnectivityState) -> None:
        for callback in list(self._callbacks):
            try:
                callback(state)
            except Exception:
                logger.warning("Connectivity subscriber %r raised", callback, exc_info=True)


class ManualConnectivitySource:
    """Connectivity reported by an external party via set_state()."""

    def __init__(self, state: Optional[ConnectivityState] = None):
        self._state = state or ConnectivityState(is_connected=True, is_internet_reachable=None)
        self._subscribers = _Subscribers()

    async def get_state(self) -> ConnectivityState:
        return self._state

    def subscribe(self, callback: ConnectivityListener) -> Callable[[], None]:
        return self._subscribers.subscribe(callback)

    def set_state(self, state: ConnectivityState) -> None:
        changed = state != self._state
        self._state = state
        if changed:
            self._subscribers.publish(state)


class SocketConnectivitySource:
    """
    Probes connectivity with sockets.

    is_connected: the OS has a route to the probe host (UDP connect, no packets sent).
    is_internet_reachable: a TCP handshake with the probe host succeeds.
    """

    def __init__(self, host: str = "1.1.1.1", port: int = 443, timeout: float = 3.0):
        self.host = host
        self.port = port
        self.timeout = timeout
        self._subscribers = _Subscribers()
        self._last_state: Optional[ConnectivityState] = None

    async def get_state(self) -> ConnectivityState:
        if not self._has_route():
            return ConnectivityState(is_connected=False, is_internet_reachable=False)
        return ConnectivityState(is_connected=True, is_internet_reachable=await self._can_reach())

    def subscribe(self, callback: ConnectivityListener) -> Callable[[], None]:
        return self._subscribers.subscribe(callback)

    async def poll(self) -> None:
        """Probe once and publish if the state changed since the last probe."""
        state = await self.get_state()
        if state != self._last_state:
            logger.info(
                "Connectivity changed: connected=%s reachable=%s",
                state.is_connected, state.is_internet_reachable,
            )
            self._last_state = state
            self._subscribers.publish(state)

    def start_polling(self, scheduler: AsyncIOScheduler, interval_seconds: int = 5) -> None:
        scheduler.add_job(
            self.poll,
            trigger="interval",
            seconds=interval_seconds,
            id=POLL_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def _has_route(self) -> bool:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                sock.connect((self.host, self.port))
            return True
        except OSError:
            return False

    async def _can_reach(self) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True
