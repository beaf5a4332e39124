"""Connectivity monitor — two-state online/offline machine with edge events.

The platform reports connectivity through ``signal_online()`` /
``signal_offline()`` (or ``signal(bool)``). Only real transitions reach
listeners: a second "online" while already online is ignored.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import socket
from collections.abc import Callable

logger = logging.getLogger(__name__)


class ConnectivityState(str, enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"


TransitionListener = Callable[[ConnectivityState, ConnectivityState], None]
Probe = Callable[[], bool]


def socket_probe(host: str = "1.1.1.1", port: int = 53, timeout: float = 3.0) -> Probe:
    """Build a probe that reports online when a TCP connection succeeds."""

    def _probe() -> bool:
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError:
            return False

    return _probe


class ConnectivityMonitor:
    """Tracks online/offline state and notifies listeners on each edge.

    Listeners are plain callables invoked synchronously with
    ``(previous, current)``. A listener that raises is logged and skipped;
    the remaining listeners still receive the event.

    Usage::

        monitor = ConnectivityMonitor(probe=socket_probe())
        monitor.add_listener(lambda prev, cur: print(prev, "->", cur))
        monitor.signal_offline()
        monitor.signal_online()
    """

    def __init__(
        self,
        probe: Probe | None = None,
        *,
        initial: ConnectivityState | None = None,
    ) -> None:
        """Initialize and probe the starting state.

        Args:
            probe: Callable returning True when the platform is online.
            initial: Explicit starting state; skips the probe when given.
        """
        self._probe = probe
        self._listeners: list[TransitionListener] = []
        self._transitions = 0

        if initial is not None:
            self._state = initial
        elif probe is not None:
            self._state = self._run_probe()
        else:
            self._state = ConnectivityState.ONLINE
        logger.info("Connectivity monitor starting %s", self._state.value)

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state is ConnectivityState.ONLINE

    @property
    def has_probe(self) -> bool:
        return self._probe is not None

    @property
    def transitions(self) -> int:
        """Number of edges observed since construction."""
        return self._transitions

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: TransitionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Platform signals
    # ------------------------------------------------------------------

    def signal_online(self) -> bool:
        """Apply a "back online" signal. Returns True if state changed."""
        return self._transition(ConnectivityState.ONLINE)

    def signal_offline(self) -> bool:
        """Apply a "lost connectivity" signal. Returns True if state changed."""
        return self._transition(ConnectivityState.OFFLINE)

    def signal(self, online: bool) -> bool:
        return self.signal_online() if online else self.signal_offline()

    def probe(self) -> bool:
        """Re-run the platform probe and feed the result through ``signal``."""
        if self._probe is None:
            return False
        return self._transition(self._run_probe())

    async def refresh(self) -> bool:
        """Async ``probe()``: the probe runs in a worker thread, listeners
        are notified on the event loop. Returns True if state changed."""
        if self._probe is None:
            return False
        state = await asyncio.to_thread(self._run_probe)
        return self._transition(state)

    async def watch(self, interval: float, stop_event: asyncio.Event) -> None:
        """Poll the probe every ``interval`` seconds until ``stop_event`` is set."""
        if self._probe is None:
            raise ValueError("watch() requires a probe")

        logger.info("Polling connectivity every %.1fs", interval)
        while not stop_event.is_set():
            await self.refresh()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
        logger.info("Connectivity polling stopped")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run_probe(self) -> ConnectivityState:
        try:
            online = bool(self._probe())
        except Exception:
            logger.exception("Connectivity probe failed; assuming offline")
            online = False
        return ConnectivityState.ONLINE if online else ConnectivityState.OFFLINE

    def _transition(self, new_state: ConnectivityState) -> bool:
        if new_state is self._state:
            return False

        previous = self._state
        self._state = new_state
        self._transitions += 1
        logger.info("Connectivity %s -> %s", previous.value, new_state.value)

        for listener in list(self._listeners):
            try:
                listener(previous, new_state)
            except Exception:
                logger.exception("Connectivity listener %r failed", listener)
        return True
