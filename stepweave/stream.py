"""Streaming execution support."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Optional

from .contracts import ExecutionResult, WorkflowStreamEvent


class WorkflowStreamController:
    """Queue of stream events for a single execution."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[WorkflowStreamEvent]] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: WorkflowStreamEvent) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[WorkflowStreamEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class WorkflowStream:
    """Async iterator over an execution's events plus its final result.

    The execution starts lazily on first iteration or on :meth:`result`.
    Awaiting :meth:`result` re-raises the workflow error of a failed run.
    """

    def __init__(
        self,
        execution_id: str,
        controller: WorkflowStreamController,
        runner: Callable[[], Awaitable[ExecutionResult]],
    ) -> None:
        self.execution_id = execution_id
        self._controller = controller
        self._runner = runner
        self._task: Optional[asyncio.Task[ExecutionResult]] = None

    def _ensure_started(self) -> asyncio.Task[ExecutionResult]:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        return self._task

    async def _run(self) -> ExecutionResult:
        try:
            return await self._runner()
        finally:
            self._controller.close()

    def __aiter__(self) -> AsyncIterator[WorkflowStreamEvent]:
        self._ensure_started()
        return self._controller.events()

    async def result(self) -> ExecutionResult:
        return await self._ensure_started()
