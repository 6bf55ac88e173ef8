"""
Task Queue

Durable, priority-ordered work queue backed by the `queue_tasks` table.

- One worker pool per task kind, each with its own concurrency limit.
  `print-job` runs with concurrency 1: one physical printer, so print
  submissions are serialised by the pool size alone.
- One dispatcher coroutine per pool claims tasks (priority, then FIFO) and
  hands each to its own asyncio task; a slow handler never blocks the
  dispatcher or other pools.
- Failed attempts are retried with exponential backoff up to the task's
  max_attempts, then kept in a bounded failed set.
- Every state change of a task is published on the hub's "queue" channel.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autoprint.api.v1.metrics import (
    GUARD_VIOLATIONS,
    QUEUE_DEPTH,
    TASK_COMPLETE_TOTAL,
    TASK_DURATION,
    TASK_FAILURES,
    TASKS_ENQUEUED,
    TASKS_INFLIGHT,
)
from autoprint.commands.complete_task import complete_task
from autoprint.commands.enqueue_task import enqueue_task
from autoprint.commands.fail_task import fail_task, prune_failed_tasks
from autoprint.commands.lease_task import lease_task
from autoprint.commands.requeue_stale import requeue_stale_tasks
from autoprint.db.models import QueueTask
from autoprint.db.store import unit_of_work
from autoprint.domain.errors import (
    ConfigurationError,
    GuardViolationError,
    QueueUnavailableError,
    TaskTimeoutError,
    is_retryable,
)
from autoprint.domain.models import KindStats, QueueStats, TaskContext, TaskHandle
from autoprint.domain.states import Channel, QueueEvent, TaskKind, TaskStatus
from autoprint.events.hub import EventHub
from autoprint.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

TaskHandler = Callable[[TaskContext], Awaitable[Any]]

@dataclass
class WorkerPool:
    kind: TaskKind
    handler: TaskHandler
    concurrency: int
    inflight: set[asyncio.Task] = field(default_factory=set)
    completed: int = 0
    wakeup: asyncio.Event = field(default_factory=asyncio.Event)

class TaskQueue:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hub: EventHub,
        settings: Settings = default_settings
    ):
        self.session_factory = session_factory
        self.hub = hub
        self.settings = settings
        self._pools: dict[TaskKind, WorkerPool] = {}
        self._dispatchers: list[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def register(self, kind: TaskKind, handler: TaskHandler, concurrency: int) -> None:
        if self._running:
            raise ConfigurationError("Handlers must be registered before the queue starts")
        if concurrency < 1:
            raise ConfigurationError(f"Concurrency for {kind} must be at least 1")
        self._pools[TaskKind(kind)] = WorkerPool(kind=TaskKind(kind), handler=handler, concurrency=concurrency)
        logger.info(f"Registered handler for task kind: {kind} (concurrency={concurrency})")

    def default_priority(self, kind: TaskKind) -> int:
        return {
            TaskKind.PROCESS_FILE: self.settings.PROCESS_FILE_PRIORITY,
            TaskKind.PRINT_JOB: self.settings.PRINT_JOB_PRIORITY,
            TaskKind.NOTIFY_USER: self.settings.NOTIFY_USER_PRIORITY,
        }.get(TaskKind(kind), 0)

    async def enqueue(
        self,
        kind: TaskKind,
        job_id: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
        priority: Optional[int] = None,
        delay: float = 0,
        max_attempts: Optional[int] = None
    ) -> TaskHandle:
        """
        Admits a task. `delay` is in seconds.
        Raises QueueUnavailableError if the backing store can't be reached.
        """
        kind = TaskKind(kind)
        if priority is None:
            priority = self.default_priority(kind)

        async with unit_of_work(self.session_factory, unavailable=QueueUnavailableError) as session:
            task = await enqueue_task(
                session,
                kind=kind,
                job_id=job_id,
                payload=payload or {},
                priority=priority,
                delay_seconds=delay,
                max_attempts=max_attempts or self.settings.TASK_MAX_ATTEMPTS
            )

        TASKS_ENQUEUED.labels(kind=kind).inc()
        QUEUE_DEPTH.labels(kind=kind).inc()
        logger.info(f"Task {task.id} ({kind}) enqueued for job {job_id} priority={priority} delay={delay}s")

        self.hub.publish(QueueEvent.TASK_ENQUEUED, {
            "task_id": task.id,
            "kind": str(kind),
            "job_id": job_id,
            "priority": priority,
        }, channel=Channel.QUEUE)

        pool = self._pools.get(kind)
        if pool:
            pool.wakeup.set()

        return TaskHandle(
            id=task.id,
            kind=kind,
            job_id=job_id,
            priority=priority,
            available_at=task.available_at
        )

    async def start(self) -> None:
        if self._running:
            return
        if not self._pools:
            raise ConfigurationError("No task handlers registered")

        async with unit_of_work(self.session_factory, unavailable=QueueUnavailableError) as session:
            recovered = await requeue_stale_tasks(session)
        if recovered:
            logger.warning(f"Recovered {recovered} task(s) left active by a previous run")

        self._running = True
        for pool in self._pools.values():
            self._dispatchers.append(asyncio.create_task(self._dispatch_loop(pool)))
        logger.info("Task queue started.")

    async def stop(self) -> None:
        """
        Stops dispatching and cancels in-flight attempts. Their rows stay
        ACTIVE and are returned to WAITING on the next start.
        """
        self._running = False
        for task in self._dispatchers:
            task.cancel()
        inflight = [t for pool in self._pools.values() for t in pool.inflight]
        for task in inflight:
            task.cancel()
        await asyncio.gather(*self._dispatchers, *inflight, return_exceptions=True)
        self._dispatchers = []
        logger.info("Task queue stopped.")

    async def _dispatch_loop(self, pool: WorkerPool) -> None:
        while self._running:
            try:
                if len(pool.inflight) >= pool.concurrency:
                    await asyncio.wait(set(pool.inflight), return_when=asyncio.FIRST_COMPLETED)
                    continue

                async with unit_of_work(self.session_factory, unavailable=QueueUnavailableError) as session:
                    task = await lease_task(session, pool.kind)

                if task is None:
                    await self._wait_for_work(pool)
                    continue

                QUEUE_DEPTH.labels(kind=pool.kind).dec()
                worker = asyncio.create_task(self._run_task(pool, task))
                pool.inflight.add(worker)
                worker.add_done_callback(pool.inflight.discard)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in {pool.kind} dispatcher: {e}", exc_info=True)
                await asyncio.sleep(self.settings.QUEUE_POLL_INTERVAL_SECONDS)

    async def _wait_for_work(self, pool: WorkerPool) -> None:
        try:
            await asyncio.wait_for(pool.wakeup.wait(), timeout=self.settings.QUEUE_POLL_INTERVAL_SECONDS)
        except asyncio.TimeoutError:
            pass
        pool.wakeup.clear()

    async def _run_task(self, pool: WorkerPool, task: QueueTask) -> None:
        ctx = TaskContext(
            task_id=task.id,
            kind=pool.kind,
            job_id=task.job_id,
            payload=dict(task.payload or {}),
            attempt=task.attempts + 1,
            max_attempts=task.max_attempts
        )
        logger.info(f"Task {ctx.task_id} ({ctx.kind}) attempt {ctx.attempt}/{ctx.max_attempts} started")
        self.hub.publish(QueueEvent.TASK_ACTIVE, {
            "task_id": ctx.task_id,
            "kind": str(ctx.kind),
            "job_id": ctx.job_id,
            "attempt": ctx.attempt,
        }, channel=Channel.QUEUE)

        TASKS_INFLIGHT.labels(kind=pool.kind).inc()
        started = asyncio.get_running_loop().time()
        try:
            result = await self._invoke(pool.handler, ctx)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._record_failure(pool, ctx, e)
        else:
            await self._record_success(pool, ctx, result)
        finally:
            TASKS_INFLIGHT.labels(kind=pool.kind).dec()
            TASK_DURATION.labels(kind=pool.kind).observe(asyncio.get_running_loop().time() - started)

    async def _invoke(self, handler: TaskHandler, ctx: TaskContext) -> Any:
        timeout = self.settings.TASK_EXECUTION_TIMEOUT_SECONDS
        if not timeout:
            return await handler(ctx)
        try:
            return await asyncio.wait_for(handler(ctx), timeout=timeout)
        except asyncio.TimeoutError:
            raise TaskTimeoutError(ctx.task_id, timeout) from None

    async def _record_success(self, pool: WorkerPool, ctx: TaskContext, result: Any) -> None:
        try:
            async with unit_of_work(self.session_factory, unavailable=QueueUnavailableError) as session:
                await complete_task(session, ctx.task_id)
        except Exception as e:
            # The row stays ACTIVE and is re-run after a restart
            logger.error(f"Task {ctx.task_id} succeeded but could not be acknowledged: {e}", exc_info=True)
            return

        pool.completed += 1
        TASK_COMPLETE_TOTAL.labels(kind=pool.kind).inc()
        logger.info(f"Task {ctx.task_id} ({ctx.kind}) completed after {ctx.attempt} attempt(s)")

        self.hub.publish(QueueEvent.TASK_COMPLETED, {
            "task_id": ctx.task_id,
            "kind": str(ctx.kind),
            "job_id": ctx.job_id,
            "attempts": ctx.attempt,
            "result": result if isinstance(result, dict) else None,
        }, channel=Channel.QUEUE)

    async def _record_failure(self, pool: WorkerPool, ctx: TaskContext, exc: Exception) -> None:
        error_msg = f"{type(exc).__name__}: {exc}"
        retryable = is_retryable(exc)

        if isinstance(exc, GuardViolationError):
            GUARD_VIOLATIONS.labels(kind=pool.kind).inc()
            logger.warning(f"Task {ctx.task_id} ({ctx.kind}) rejected by guard, dropping: {exc}")
            self.hub.publish(QueueEvent.GUARD_VIOLATION, {
                "task_id": ctx.task_id,
                "kind": str(ctx.kind),
                "job_id": ctx.job_id,
                "error": str(exc),
            }, channel=Channel.QUEUE)
        else:
            logger.error(f"Task {ctx.task_id} ({ctx.kind}) attempt {ctx.attempt} failed: {error_msg}")

        try:
            async with unit_of_work(self.session_factory, unavailable=QueueUnavailableError) as session:
                task, final = await fail_task(
                    session,
                    ctx.task_id,
                    error_msg,
                    retryable=retryable,
                    base_delay_seconds=self.settings.RETRY_BASE_DELAY_SECONDS,
                    max_delay_seconds=self.settings.RETRY_MAX_DELAY_SECONDS,
                    jitter=self.settings.RETRY_JITTER
                )
                if final:
                    await prune_failed_tasks(session, str(pool.kind), self.settings.FAILED_TASK_RETENTION)
        except Exception as e:
            logger.error(f"Could not record failure of task {ctx.task_id}: {e}", exc_info=True)
            return

        if final:
            TASK_FAILURES.labels(kind=pool.kind, type="final").inc()
            await self._finalize_job(pool, ctx, exc)
            self.hub.publish(QueueEvent.TASK_FAILED, {
                "task_id": ctx.task_id,
                "kind": str(ctx.kind),
                "job_id": ctx.job_id,
                "attempts": task.attempts,
                "error": error_msg,
                "final": True,
            }, channel=Channel.QUEUE)
        else:
            TASK_FAILURES.labels(kind=pool.kind, type="retryable").inc()
            QUEUE_DEPTH.labels(kind=pool.kind).inc() # Back to WAITING
            self.hub.publish(QueueEvent.TASK_RETRY_SCHEDULED, {
                "task_id": ctx.task_id,
                "kind": str(ctx.kind),
                "job_id": ctx.job_id,
                "attempts": task.attempts,
                "error": error_msg,
                "available_at": task.available_at.isoformat(),
            }, channel=Channel.QUEUE)
            pool.wakeup.set()

    async def _finalize_job(self, pool: WorkerPool, ctx: TaskContext, exc: Exception) -> None:
        """Lets the handler settle its job once the task is out of attempts."""
        hook = getattr(pool.handler, "on_final_failure", None)
        if hook is None or ctx.job_id is None:
            return
        try:
            await hook(ctx, exc)
        except Exception as e:
            logger.error(f"Could not mark job {ctx.job_id} failed after task {ctx.task_id}: {e}", exc_info=True)

    async def has_open_task(self, kind: TaskKind, job_id: str) -> bool:
        """True while a task of `kind` for the job is waiting or running."""
        stmt = (
            select(func.count(QueueTask.id))
            .where(
                QueueTask.kind == str(TaskKind(kind)),
                QueueTask.job_id == job_id,
                QueueTask.status.in_([TaskStatus.WAITING, TaskStatus.ACTIVE])
            )
        )
        async with unit_of_work(self.session_factory, unavailable=QueueUnavailableError) as session:
            return (await session.execute(stmt)).scalar_one() > 0

    async def get_stats(self) -> QueueStats:
        now = datetime.now(timezone.utc)
        async with unit_of_work(self.session_factory, unavailable=QueueUnavailableError) as session:
            counts = (await session.execute(
                select(QueueTask.kind, QueueTask.status, func.count(QueueTask.id))
                .group_by(QueueTask.kind, QueueTask.status)
            )).all()
            delayed_counts = (await session.execute(
                select(QueueTask.kind, func.count(QueueTask.id))
                .where(QueueTask.status == TaskStatus.WAITING, QueueTask.available_at > now)
                .group_by(QueueTask.kind)
            )).all()

        by_kind = {str(kind): KindStats(completed=pool.completed) for kind, pool in self._pools.items()}
        for kind, status, count in counts:
            ks = by_kind.setdefault(kind, KindStats())
            if status == TaskStatus.WAITING:
                ks.waiting += count
            elif status == TaskStatus.ACTIVE:
                ks.active += count
            elif status == TaskStatus.FAILED:
                ks.failed += count
        for kind, count in delayed_counts:
            ks = by_kind.setdefault(kind, KindStats())
            ks.delayed += count
            ks.waiting -= count

        stats = QueueStats(by_kind=by_kind)
        for kind, ks in by_kind.items():
            stats.waiting += ks.waiting
            stats.delayed += ks.delayed
            stats.active += ks.active
            stats.completed += ks.completed
            stats.failed += ks.failed
            QUEUE_DEPTH.labels(kind=kind).set(ks.waiting + ks.delayed)
        return stats

    async def get_failed(self, kind: Optional[TaskKind] = None, limit: int = 50) -> list[dict[str, Any]]:
        """Retained failed tasks, newest first."""
        stmt = select(QueueTask).where(QueueTask.status == TaskStatus.FAILED)
        if kind:
            stmt = stmt.where(QueueTask.kind == str(kind))
        stmt = stmt.order_by(QueueTask.updated_at.desc(), QueueTask.id.desc()).limit(limit)

        async with unit_of_work(self.session_factory, unavailable=QueueUnavailableError) as session:
            rows = (await session.execute(stmt)).scalars().all()

        return [
            {
                "task_id": t.id,
                "kind": t.kind,
                "job_id": t.job_id,
                "attempts": t.attempts,
                "max_attempts": t.max_attempts,
                "last_error": t.last_error,
                "payload": t.payload,
            }
            for t in rows
        ]
