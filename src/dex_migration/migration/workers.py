"""asyncio worker pool consuming batch ids from the work queue."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from dex_migration.utils.logging import get_logger, log_error

logger = get_logger(__name__)


class BatchWorkerPool:
    """
    Runs ``workers`` tasks that pull batch ids and hand them to ``handler``.

    Handlers enqueue replacement batches before they return, so
    ``queue.join()`` only resolves once no batch is left in flight.
    """

    def __init__(
        self,
        queue: asyncio.Queue,
        handler: Callable[[int], Awaitable[Any]],
        workers: int,
    ):
        self.queue = queue
        self.handler = handler
        self.workers = max(1, workers)

    async def _worker(self, worker_number: int) -> None:
        while True:
            batch_id = await self.queue.get()
            try:
                await self.handler(batch_id)
            except Exception as e:
                # The batch stays in processing; restart returns it to pending
                log_error(logger, e, "batch_worker", batch_id=batch_id, worker=worker_number)
            finally:
                self.queue.task_done()

    async def drain(self) -> None:
        """Process until the queue is empty and every handler has returned."""
        tasks = [
            asyncio.create_task(self._worker(number), name=f"batch-worker-{number}")
            for number in range(1, self.workers + 1)
        ]
        try:
            await self.queue.join()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
