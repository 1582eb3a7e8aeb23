"""
Connectivity Observation

ConnectivityObserver is the host-facing contract:
    is_online() -> bool
    on_change(callback) -> unsubscribe

ManualConnectivity is driven by the host (OS network events, tests).
ProbeConnectivity additionally probes the cloud on an interval.
"""

from typing import Callable, Protocol

from ...common.events import Listeners
from ...common.logging_setup import get_service_logger
from ...common.scheduler import ScheduledLoop
from .client import CloudClient

logger = get_service_logger("sync.connectivity")


class ConnectivityObserver(Protocol):
    def is_online(self) -> bool: ...

    def on_change(self, callback: Callable[[bool], None]) -> Callable[[], None]: ...


class ManualConnectivity:
    """Connectivity flag set explicitly; callbacks fire only on a real flip"""

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners = Listeners("connectivity")

    def is_online(self) -> bool:
        return self._online

    def on_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        return self._listeners.add(callback)

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return

        self._online = online
        logger.info("Back online" if online else "Went offline", extra={"online": online})
        self._listeners.emit(online)


class ProbeConnectivity(ManualConnectivity):
    """
    Connectivity inferred from periodic cloud probes.

    The host may still call set_online() when the OS reports a change;
    the next probe confirms or reverts it.
    """

    def __init__(
        self,
        client: CloudClient,
        health_path: str = "/api/health",
        interval_s: float = 15.0,
        online: bool = False,
    ):
        super().__init__(online=online)
        self.client = client
        self.health_path = health_path
        self._loop = ScheduledLoop(interval_s, self.probe, name="connectivity-probe")

    async def probe(self) -> bool:
        reachable = await self.client.probe(self.health_path)
        self.set_online(reachable)
        return reachable

    async def start(self) -> None:
        await self.probe()
        await self._loop.start()

    def stop(self) -> None:
        self._loop.stop()
