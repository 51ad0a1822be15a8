import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Dict, Optional

from bioenroll.core.exceptions import DeviceBusyError

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """
    Owner of detached enrollment tasks.

    Request handlers hand work over and return; the supervisor keeps a
    reference to every running task, reports failures through ``on_error``
    and cancels what is left on shutdown.
    """

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def spawn(
        self,
        key: str,
        coro: Awaitable,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"enrollment-{key}")
        self._tasks[key] = task

        def _done(finished: asyncio.Task):
            if self._tasks.get(key) is finished:
                del self._tasks[key]
            if finished.cancelled():
                logger.info(f"Task {key} cancelled")
                return
            error = finished.exception()
            if error is not None:
                logger.error(f"Task {key} failed: {error}", exc_info=error)
                if on_error:
                    on_error(error)

        task.add_done_callback(_done)
        return task

    def is_running(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    async def join(self, key: str) -> None:
        task = self._tasks.get(key)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def join_all(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    def cancel(self, key: str) -> bool:
        task = self._tasks.get(key)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


class DeviceGate:
    """
    Exclusive access to the physical reader.

    ``serialize`` queues enrollments behind the one in progress; ``reject``
    refuses to start while another enrollment holds the reader.
    """

    def __init__(self, policy: str = "serialize"):
        if policy not in ("serialize", "reject"):
            raise ValueError(f"Unknown device concurrency policy: {policy}")
        self.policy = policy
        self._lock = asyncio.Lock()
        self._owner: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self._owner is not None or self._lock.locked()

    def claim(self, key: str) -> None:
        if self.policy != "reject" or self._owner == key:
            return
        if self._owner is not None:
            raise DeviceBusyError(
                "Fingerprint reader is busy with another enrollment",
                {"activeEnrollmentId": self._owner},
            )
        self._owner = key

    def release(self, key: str) -> None:
        if self._owner == key:
            self._owner = None

    @asynccontextmanager
    async def hold(self, key: str):
        self.claim(key)
        try:
            async with self._lock:
                yield
        finally:
            self.release(key)
