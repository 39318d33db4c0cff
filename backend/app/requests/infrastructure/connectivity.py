import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from app.requests.application.ports import ConnectionProbe, Sleep
from database.models import utcnow

logger = logging.getLogger(__name__)

Listener = Callable[[bool], None]


class ConnectivityMonitor:
    """Tracks whether the backing store is reachable.

    Listeners are called with the new state on every online/offline
    transition, never on repeated reports of the same state.
    """

    def __init__(
        self,
        probe: Optional[ConnectionProbe] = None,
        online: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._probe = probe
        self._clock = clock
        self._online = online
        self._was_offline = False
        self._listeners: List[Listener] = []
        now = clock()
        self.last_online_at: Optional[datetime] = now if online else None
        self.last_offline_at: Optional[datetime] = None if online else now

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def was_offline(self) -> bool:
        """True once the store has been unreachable at least once."""
        return self._was_offline

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        if online:
            self.last_online_at = self._clock()
            logger.info("Connection restored")
        else:
            self._was_offline = True
            self.last_offline_at = self._clock()
            logger.warning("Connection lost")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}")

    async def check_connection(self) -> bool:
        """Run the probe and record the result."""
        if self._probe is None:
            return self._online
        try:
            online = bool(await self._probe())
        except Exception as e:
            logger.warning(f"Connection check failed: {e}")
            online = False
        self.set_online(online)
        return online

    async def watch(self, interval: float, sleep: Sleep = asyncio.sleep) -> None:
        """Probe every ``interval`` seconds until cancelled."""
        while True:
            await sleep(interval)
            await self.check_connection()
