"""Background execution of settlement runs with completion listeners"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, List, Set

from settlement_gateway.domain.models import RunSummary

logger = logging.getLogger(__name__)

RunJob = Callable[[], Awaitable[RunSummary]]
CompletionListener = Callable[[RunSummary], Awaitable[None]]


class RunHandle:
    """Reference to a submitted run"""

    def __init__(self, settlement_id: uuid.UUID, task: "asyncio.Task[RunSummary]"):
        self.settlement_id = settlement_id
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> RunSummary:
        # Cancelling the waiter must not cancel the run
        return await asyncio.shield(self._task)


class SettlementScheduler:
    """
    Runs submitted jobs as asyncio tasks on the current loop.

    Listeners are awaited in registration order once a job finishes; a
    failing listener is logged and the rest still run.
    """

    def __init__(self):
        self._listeners: List[CompletionListener] = []
        self._tasks: Set[asyncio.Task] = set()

    def add_listener(self, listener: CompletionListener) -> None:
        self._listeners.append(listener)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(self, settlement_id: uuid.UUID, job: RunJob) -> RunHandle:
        task = asyncio.get_running_loop().create_task(self._run(job), name=f"settlement-run-{settlement_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return RunHandle(settlement_id, task)

    async def _run(self, job: RunJob) -> RunSummary:
        summary = await job()
        for listener in list(self._listeners):
            try:
                await listener(summary)
            except Exception as e:
                logger.error(
                    f"Run completion listener failed: {e}",
                    extra={"settlement_id": str(summary.settlement_id)},
                )
        return summary

    async def shutdown(self) -> None:
        """Wait for in-flight runs to finish"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
