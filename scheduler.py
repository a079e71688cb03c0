import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

from backend import Room
from constants import SWEEP_INTERVAL_SECONDS
from logging_config import get_logger

logger = get_logger(__name__)


class ExpiryScheduler:
    """Owns every timer task of the relay: room expiry, disconnect grace and the periodic sweep.

    Callbacks are awaited from the timer task and are expected to take the relay
    lock themselves. Timers re-check liveness when they fire, cancellation only
    saves the wakeup.
    """

    def __init__(self,
                 on_expire: Callable[[str], Awaitable[None]],
                 on_grace: Callable[[str, str], Awaitable[None]],
                 on_sweep: Callable[[], Awaitable[None]],
                 sweep_interval: float = SWEEP_INTERVAL_SECONDS):
        self._on_expire = on_expire
        self._on_grace = on_grace
        self._on_sweep = on_sweep
        self.sweep_interval = sweep_interval
        # room_id -> expiry task
        self._expiry_tasks: Dict[str, asyncio.Task] = {}
        # (room_id, member token) -> grace task
        self._grace_tasks: Dict[Tuple[str, str], asyncio.Task] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    def start(self):
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(f"Started room sweep every {self.sweep_interval} seconds")

    async def shutdown(self):
        tasks = list(self._expiry_tasks.values()) + list(self._grace_tasks.values())
        if self._sweep_task is not None:
            tasks.append(self._sweep_task)
        self._expiry_tasks.clear()
        self._grace_tasks.clear()
        self._sweep_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Scheduler stopped, cancelled {len(tasks)} timers")

    def arm_expiry(self, room: Room):
        delay = max(0.0, room.expire_at - time.time())
        self._cancel(self._expiry_tasks.pop(room.room_id, None))
        self._expiry_tasks[room.room_id] = asyncio.create_task(self._expire_later(room.room_id, delay))
        logger.debug(f"Armed expiry for room {room.room_id} in {delay:.1f} seconds")

    def arm_grace(self, room_id: str, token: str, delay: float):
        key = (room_id, token)
        self._cancel(self._grace_tasks.pop(key, None))
        self._grace_tasks[key] = asyncio.create_task(self._grace_later(room_id, token, delay))
        logger.debug(f"Armed {delay} second disconnect grace in room {room_id}")

    def cancel_grace(self, room_id: str, token: str):
        if self._cancel(self._grace_tasks.pop((room_id, token), None)):
            logger.debug(f"Cancelled disconnect grace in room {room_id}")

    def cancel_room(self, room_id: str):
        """Drop every timer that references a room. Called when the room is deleted."""
        self._cancel(self._expiry_tasks.pop(room_id, None))
        for key in [key for key in self._grace_tasks if key[0] == room_id]:
            self._cancel(self._grace_tasks.pop(key))
        logger.debug(f"Cancelled timers for room {room_id}")

    def pending_grace(self, room_id: str) -> int:
        return sum(1 for key in self._grace_tasks if key[0] == room_id)

    def has_expiry(self, room_id: str) -> bool:
        return room_id in self._expiry_tasks

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]) -> bool:
        # a timer may end up tearing down its own room; it must not cancel itself mid-callback
        if task is None or task.done() or task is asyncio.current_task():
            return False
        task.cancel()
        return True

    async def _expire_later(self, room_id: str, delay: float):
        try:
            await asyncio.sleep(delay)
            if self._expiry_tasks.get(room_id) is asyncio.current_task():
                del self._expiry_tasks[room_id]
            logger.info(f"Expiry timer fired for room {room_id}")
            await self._on_expire(room_id)
        except asyncio.CancelledError:
            logger.debug(f"Expiry timer cancelled for room {room_id}")
            raise
        except Exception as e:
            logger.error(f"Error expiring room {room_id}: {e}", exc_info=True)

    async def _grace_later(self, room_id: str, token: str, delay: float):
        key = (room_id, token)
        try:
            await asyncio.sleep(delay)
            if self._grace_tasks.get(key) is asyncio.current_task():
                del self._grace_tasks[key]
            await self._on_grace(room_id, token)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error handling disconnect grace in room {room_id}: {e}", exc_info=True)

    async def _sweep_loop(self):
        while True:
            try:
                await asyncio.sleep(self.sweep_interval)
                await self._on_sweep()
            except asyncio.CancelledError:
                logger.debug("Room sweep cancelled")
                break
            except Exception as e:
                logger.error(f"Error during room sweep: {e}", exc_info=True)
