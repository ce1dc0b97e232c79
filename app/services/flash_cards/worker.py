import asyncio
import uuid
from typing import Awaitable, Callable, List, Optional

from app.core.logging_config import get_logger


logger = get_logger("generation_worker")

Handler = Callable[[uuid.UUID], Awaitable[None]]


class GenerationQueue:
    """In-process queue of session ids drained by a fixed pool of worker tasks.

    ``submit`` never blocks, so it can be used as the orchestrator's
    scheduler from inside a request handler.
    """

    def __init__(self, workers: int = 2):
        self.workers = max(1, workers)
        self._queue: "asyncio.Queue[uuid.UUID]" = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []
        self._handler: Optional[Handler] = None

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def submit(self, session_id: uuid.UUID) -> None:
        self._queue.put_nowait(session_id)
        logger.debug(f"Queued session {session_id} (depth={self._queue.qsize()})")

    def start(self, handler: Handler) -> None:
        if self._tasks:
            return
        self._handler = handler
        for i in range(self.workers):
            self._tasks.append(asyncio.create_task(self._work(i), name=f"generation-worker-{i}"))
        logger.info(f"Started {self.workers} generation worker(s)")

    async def _work(self, index: int) -> None:
        try:
            while True:
                session_id = await self._queue.get()
                try:
                    await self._handler(session_id)
                except Exception as e:
                    logger.exception(f"Worker {index}: session {session_id} crashed: {e}")
                finally:
                    self._queue.task_done()
        except asyncio.CancelledError:
            logger.info(f"Generation worker {index} cancelled; shutting down")
            raise

    async def join(self) -> None:
        """Wait until every submitted session has been handled."""
        await self._queue.join()

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
