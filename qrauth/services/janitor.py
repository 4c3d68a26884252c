import asyncio
import logging

from qrauth.services.sessions import SessionStore

logger = logging.getLogger(__name__)


async def _purge_loop(store: SessionStore, stop_event: asyncio.Event, interval_seconds: int) -> None:
    while not stop_event.is_set():
        await asyncio.sleep(interval_seconds)
        purge_once(store)


def purge_once(store: SessionStore) -> int:
    purged = store.purge()
    if purged:
        logger.info(f"Janitor removed {purged} sessions past retention")
    return purged


class SessionJanitor:
    def __init__(self, store: SessionStore) -> None:
        self.store = store
        self._task: asyncio.Task | None = None
        self._stop = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_seconds: int = 30) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(_purge_loop(self.store, self._stop, interval_seconds))

    async def stop(self) -> None:
        if self._task:
            self._stop.set()
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
