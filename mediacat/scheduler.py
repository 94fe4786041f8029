#!/usr/bin/env python3
"""
Priority task scheduler with bounded concurrency and retries

Pending tasks live in a binary heap keyed by (priority rank, submission
sequence): high before medium before low, FIFO within a priority. At most
max_concurrency tasks run at once; a finished task admits the next one
immediately. The scheduler knows nothing about what a task does - the
runner coroutine is injected.

A runner signals failure by raising. A failed task goes back on the heap
after retry_delay seconds with its original priority and sequence, until it
has been attempted max_attempts times; then task-failed is emitted and the
task is dropped.
"""

import asyncio
import heapq
import itertools
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from mediacat import events
from mediacat.constants import PRIORITY_RANK, DEFAULT_MAX_CONCURRENCY, DEFAULT_RETRY_DELAY
from mediacat.events import EventEmitter
from mediacat.exceptions import ResolutionError
from mediacat.models import ResolutionTask, ResolutionResult

logger = logging.getLogger(__name__)

Runner = Callable[[ResolutionTask], Awaitable[ResolutionResult]]


class TaskScheduler:
    """Runs ResolutionTasks through a runner coroutine"""

    def __init__(self, runner: Runner, max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
                 retry_delay: float = DEFAULT_RETRY_DELAY, emitter: Optional[EventEmitter] = None):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.runner = runner
        self.max_concurrency = max_concurrency
        self.retry_delay = retry_delay
        self.events = emitter or EventEmitter()

        self._heap: List[Tuple[int, int, ResolutionTask]] = []
        self._sequence = itertools.count(1)
        self._running: Set[asyncio.Task] = set()
        self._retry_handles: Set[asyncio.TimerHandle] = set()
        self._started = False
        self._drained = asyncio.Event()
        self._drained.set()

        self.completed = 0
        self.failed = 0
        self.retried = 0

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def submit(self, task: ResolutionTask):
        if task.priority not in PRIORITY_RANK:
            raise ValueError(f"Unknown priority: {task.priority}")
        task.sequence = next(self._sequence)
        self._push(task)
        logger.debug(f"Queued {task.item_id} ({task.priority}, #{task.sequence})")
        self._admit()

    def start(self):
        self._started = True
        self._admit()

    def stop(self):
        """Stop admitting tasks; running tasks finish, pending ones stay queued"""
        self._started = False

    def clear(self) -> int:
        """Drop pending tasks and scheduled retries; returns how many were dropped"""
        dropped = len(self._heap) + len(self._retry_handles)
        self._heap.clear()
        for handle in self._retry_handles:
            handle.cancel()
        self._retry_handles.clear()
        self._check_drained()
        return dropped

    def status(self) -> Dict:
        return {
            'pending': len(self._heap),
            'running': len(self._running),
            'waiting_retry': len(self._retry_handles),
            'completed': self.completed,
            'failed': self.failed,
            'retried': self.retried,
            'is_running': self._started,
        }

    async def wait_drained(self):
        """Block until nothing is pending, running, or waiting to retry"""
        await self._drained.wait()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _push(self, task: ResolutionTask):
        heapq.heappush(self._heap, (PRIORITY_RANK[task.priority], task.sequence, task))
        self._drained.clear()

    def _admit(self):
        while self._started and self._heap and len(self._running) < self.max_concurrency:
            _, _, task = heapq.heappop(self._heap)
            runner_task = asyncio.get_running_loop().create_task(self._run(task))
            self._running.add(runner_task)

    def _is_idle(self) -> bool:
        return not self._heap and not self._running and not self._retry_handles

    def _check_drained(self):
        if self._is_idle() and not self._drained.is_set():
            self._drained.set()
            logger.debug("Queue drained")
            self.events.emit(events.QUEUE_DRAINED, self.status())

    def _requeue(self, task: ResolutionTask, handle_box: list):
        self._retry_handles.discard(handle_box[0])
        self._push(task)
        self._admit()

    def _schedule_retry(self, task: ResolutionTask):
        handle_box = []
        handle = asyncio.get_running_loop().call_later(self.retry_delay, self._requeue, task, handle_box)
        handle_box.append(handle)
        self._retry_handles.add(handle)

    async def _run(self, task: ResolutionTask):
        task.attempts += 1
        self.events.emit(events.TASK_STARTED, {'task': task})
        try:
            result = await self.runner(task)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._handle_failure(task, e)
        else:
            self.completed += 1
            self.events.emit(events.TASK_COMPLETED, {'task': task, 'result': result})
        finally:
            self._running.discard(asyncio.current_task())
            self._admit()
            self._check_drained()

    def _handle_failure(self, task: ResolutionTask, error: Exception):
        if task.attempts < task.max_attempts:
            self.retried += 1
            logger.info(f"Retrying {task.item_id} in {self.retry_delay}s "
                        f"(attempt {task.attempts}/{task.max_attempts}): {error}")
            self._schedule_retry(task)
            return

        self.failed += 1
        result = error.result if isinstance(error, ResolutionError) else None
        if result is None:
            result = ResolutionResult(item_id=task.item_id, success=False, method='failed', error=str(error))
        logger.warning(f"Giving up on {task.item_id} after {task.attempts} attempts: {error}")
        self.events.emit(events.TASK_FAILED, {'task': task, 'result': result, 'error': str(error)})
