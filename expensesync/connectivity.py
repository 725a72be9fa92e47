"""
Connectivity tracking for expensesync.

`ConnectivityState` is the single "is the remote authority reachable" signal
shared by the orchestrator and the entity services. It is an explicitly owned
object passed to its readers; `ConnectivityMonitor` is its only writer.

The signal is updated from two sources:
- transport-level online/offline notifications from the host application
  (authoritative for "definitely offline"), and
- an active liveness probe against the remote authority, which confirms that
  the link is actually usable.
"""

from __future__ import annotations

from typing import Awaitable, Callable, List

from expensesync.utils.logging import get_logger

log = get_logger(__name__)

ConnectivityListener = Callable[[bool, bool], None]
Probe = Callable[[], Awaitable[bool]]


class ConnectivityState:
    """
    Boolean reachability signal with change listeners.

    Listeners are called synchronously as ``listener(previous, current)`` and
    only when the value actually changes.
    """

    def __init__(self, online: bool = False) -> None:
        self._online = online
        self._listeners: List[ConnectivityListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_offline(self) -> bool:
        return not self._online

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set(self, online: bool) -> None:
        previous = self._online
        if previous == online:
            return
        self._online = online
        log.info("Connectivity changed", extra={"online": online})
        for listener in list(self._listeners):
            listener(previous, online)


class ConnectivityMonitor:
    """
    Writes the connectivity signal.

    Parameters
    ----------
    state : ConnectivityState
        The signal this monitor owns.
    probe : callable
        Coroutine function returning True when the remote authority answered
        the liveness check, typically ``gateway.ping``.
    link_up : bool
        Initial link-layer status, until the host reports otherwise.
    """

    def __init__(self, state: ConnectivityState, probe: Probe, link_up: bool = True) -> None:
        self.state = state
        self._probe = probe
        self._link_up = link_up

    @property
    def is_online(self) -> bool:
        return self.state.is_online

    def notify_online(self) -> None:
        """The host reports the link is up."""
        self._link_up = True
        self.state.set(True)

    def notify_offline(self) -> None:
        """The host reports the link is down; nothing can be reachable."""
        self._link_up = False
        self.state.set(False)

    async def check_connectivity(self) -> bool:
        """
        Probe the remote authority and update the signal.

        Never raises: a failed or erroring probe means offline. When the host
        has reported the link down, no probe is attempted.
        """
        if not self._link_up:
            self.state.set(False)
            return False
        try:
            online = bool(await self._probe())
        except Exception as exc:  # noqa: BLE001 - any probe failure reads as offline
            log.debug("Connectivity probe raised", extra={"error": str(exc)})
            online = False
        self.state.set(online)
        return online


__all__ = ["ConnectivityState", "ConnectivityMonitor", "ConnectivityListener"]
