"""
Resource governor: bounded, throttled execution of conversion work.

All counters and rolling metrics live on the governor instance and are only
mutated by its own methods; operations handed to execute() are wrapped so the
bookkeeping happens around them, never inside them.
"""

import asyncio
import gc
import os
import platform
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

import psutil

from .exceptions import ResourceTimeoutError
from .models import ResourceSnapshot
from .run_log import RunLogger
from .settings import GovernorConfig

T = TypeVar("T")

METRICS_WINDOW = 100
METRICS_TRIMMED = 50


@dataclass
class ResourceUsage:
    process_memory_mb: float
    cpu_percent: float


@dataclass
class ExecutionReport:
    operation_name: str
    operations: int
    parallel: bool
    batches: int = 0
    batch_sizes: List[int] = field(default_factory=list)
    peak_concurrency: int = 0
    started: int = 0
    throttle_timeouts: int = 0
    elapsed: float = 0.0
    memory_delta: int = 0


@dataclass
class PoolResult(Generic[T]):
    index: int
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class WorkerPool:
    """
    Fixed number of workers pulling jobs from a shared queue.

    Each job runs in a thread so CPU-heavy parsing does not stall the event
    loop. Results are posted on a second queue and handed back in submission
    order. run() returns only after every worker has drained and exited.
    """

    def __init__(self, size: int):
        self.size = max(1, int(size))

    async def _worker(self, func: Callable[[Any], T], jobs: asyncio.Queue, results: asyncio.Queue) -> None:
        while True:
            job = await jobs.get()
            try:
                if job is None:
                    return
                index, item = job
                try:
                    value = await asyncio.to_thread(func, item)
                except Exception as exc:
                    await results.put(PoolResult(index, error=exc))
                else:
                    await results.put(PoolResult(index, value=value))
            finally:
                jobs.task_done()

    async def run(self, func: Callable[[Any], T], items: Sequence[Any]) -> List[PoolResult]:
        if not items:
            return []
        jobs: asyncio.Queue = asyncio.Queue()
        results: asyncio.Queue = asyncio.Queue()
        for index, item in enumerate(items):
            jobs.put_nowait((index, item))
        worker_count = min(self.size, len(items))
        for _ in range(worker_count):
            jobs.put_nowait(None)

        workers = [asyncio.create_task(self._worker(func, jobs, results)) for _ in range(worker_count)]
        collected: List[PoolResult] = []
        try:
            for _ in range(len(items)):
                collected.append(await results.get())
        finally:
            await self.shutdown(workers)
        collected.sort(key=lambda result: result.index)
        return collected

    @staticmethod
    async def shutdown(workers: List[asyncio.Task]) -> None:
        await asyncio.gather(*workers, return_exceptions=True)


class ResourceGovernor:
    """Runs lists of async operations sequentially or in throttled batches."""

    def __init__(self, config: Optional[GovernorConfig] = None, run_logger: Optional[RunLogger] = None):
        self.config = config or GovernorConfig()
        self.run_logger = run_logger or RunLogger.disabled()
        self._process = psutil.Process(os.getpid())
        self._active_operations: set = set()
        self._running_tasks = 0
        self._queued_operations = 0
        self._processing_times: deque = deque(maxlen=METRICS_WINDOW)
        self._memory_deltas: deque = deque(maxlen=METRICS_WINDOW)
        self._throttle_timeouts = 0
        self.last_execution: Optional[ExecutionReport] = None
        print(
            f"Resource governor: max_concurrent={self.config.max_concurrent_operations}, "
            f"batch_size={self.config.effective_batch_size}, parallel={self.config.enable_parallel_processing}"
        )

    # -- sampling -----------------------------------------------------------

    def _rss_bytes(self) -> int:
        return self._process.memory_info().rss

    async def sample_usage(self) -> ResourceUsage:
        """Process RSS and a short-window process CPU sample."""
        interval = self.config.cpu_sample_interval
        cpu = await asyncio.to_thread(self._process.cpu_percent, interval)
        cpu = min(100.0, cpu / (psutil.cpu_count() or 1))
        return ResourceUsage(process_memory_mb=self._rss_bytes() / 1024 / 1024, cpu_percent=cpu)

    async def throttle_reason(self) -> Optional[str]:
        if self._running_tasks >= self.config.max_concurrent_operations:
            return f"{self._running_tasks} operations in flight"
        usage = await self.sample_usage()
        if usage.process_memory_mb > self.config.memory_threshold_mb:
            return f"memory {usage.process_memory_mb:.1f}MB over {self.config.memory_threshold_mb}MB"
        if usage.cpu_percent > self.config.cpu_threshold:
            return f"cpu {usage.cpu_percent:.1f}% over {self.config.cpu_threshold}%"
        return None

    async def wait_for_resources(self, run_logger: Optional[RunLogger] = None) -> bool:
        """
        Block while a threshold is exceeded, polling on a fixed interval.

        Returns False when the maximum wait elapsed; execution then proceeds
        anyway and the timeout is logged.
        """
        run_logger = run_logger or self.run_logger
        reason = await self.throttle_reason()
        if reason is None:
            return True
        print(f"    Throttling: {reason}")
        run_logger.info("throttle_wait", "Throttling operations due to resource constraints", reason=reason)

        interval = self.config.throttle_poll_interval or 0.01
        waited = 0.0
        while waited < self.config.throttle_max_wait:
            await asyncio.sleep(interval)
            waited += interval
            reason = await self.throttle_reason()
            if reason is None:
                return True

        timeout = ResourceTimeoutError(
            f"Resource availability timeout after {self.config.throttle_max_wait}s ({reason})",
            waited_seconds=waited,
        )
        self._throttle_timeouts += 1
        print(f"Warning: {timeout.message}")
        run_logger.warning("resource_timeout", timeout.message, waited=waited, reason=reason)
        return False

    # -- execution ----------------------------------------------------------

    async def _tracked(self, operation: Callable[[], Awaitable[T]], report: ExecutionReport) -> T:
        self._queued_operations -= 1
        report.started += 1
        self._running_tasks += 1
        report.peak_concurrency = max(report.peak_concurrency, self._running_tasks)
        try:
            return await operation()
        finally:
            self._running_tasks -= 1

    async def execute(
        self,
        operations: Sequence[Callable[[], Awaitable[T]]],
        operation_name: str = "batch",
        run_logger: Optional[RunLogger] = None,
    ) -> List[T]:
        """
        Run zero-argument coroutine functions and return their results in order.

        The first failure propagates and aborts the whole call.
        Events go to run_logger when given, otherwise to the governor's own logger.
        """
        operations = list(operations)
        run_logger = run_logger or self.run_logger
        parallel = self.config.enable_parallel_processing and len(operations) > 1
        report = ExecutionReport(operation_name=operation_name, operations=len(operations), parallel=parallel)
        operation_id = f"{operation_name}_{uuid.uuid4().hex[:8]}"
        started = time.perf_counter()
        start_rss = self._rss_bytes()

        if self.config.enable_resource_monitoring:
            self.check_health(run_logger)

        self._active_operations.add(operation_id)
        self._queued_operations += len(operations)
        try:
            if parallel:
                return await self._execute_parallel(operations, report, run_logger)
            return await self._execute_sequential(operations, report)
        finally:
            # Operations that never started after a failure leave the queue.
            self._queued_operations -= len(operations) - report.started
            self._active_operations.discard(operation_id)
            report.elapsed = time.perf_counter() - started
            report.memory_delta = self._rss_bytes() - start_rss
            self._processing_times.append(report.elapsed)
            self._memory_deltas.append(report.memory_delta)
            self.last_execution = report
            run_logger.info(
                "governor_execute",
                f"Completed {operation_name}",
                operations=report.operations,
                batches=report.batches,
                peak_concurrency=report.peak_concurrency,
                elapsed=round(report.elapsed, 3),
            )
            if self.config.enable_memory_optimization:
                self.optimize_memory(run_logger)

    async def _execute_sequential(self, operations, report: ExecutionReport) -> List[Any]:
        results = []
        for index, operation in enumerate(operations):
            report.batches += 1
            report.batch_sizes.append(1)
            try:
                results.append(await self._tracked(operation, report))
            except Exception as exc:
                print(f"Warning: sequential operation {index} failed: {exc}")
                raise
        return results

    async def _execute_parallel(self, operations, report: ExecutionReport, run_logger: RunLogger) -> List[Any]:
        batch_size = self.config.effective_batch_size
        results: List[Any] = []
        for start in range(0, len(operations), batch_size):
            batch = operations[start:start + batch_size]
            if not await self.wait_for_resources(run_logger):
                report.throttle_timeouts += 1
            report.batches += 1
            report.batch_sizes.append(len(batch))
            run_logger.info("governor_batch", "Starting batch", batch=report.batches, size=len(batch))

            tasks = [asyncio.ensure_future(self._tracked(operation, report)) for operation in batch]
            try:
                results.extend(await asyncio.gather(*tasks))
            except Exception as exc:
                print(f"Warning: operation in batch {report.batches} failed: {exc}")
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            if start + batch_size < len(operations):
                await asyncio.sleep(self.config.batch_delay)
        return results

    async def run_in_pool(
        self,
        func: Callable[[Any], T],
        items: Sequence[Any],
        raise_errors: bool = True,
        run_logger: Optional[RunLogger] = None,
    ) -> List[Any]:
        """Run a blocking function over items on a worker pool, results in submission order."""
        if not self.config.enable_parallel_processing:
            raise RuntimeError("Parallel processing is disabled")
        pool = WorkerPool(self.config.worker_pool_size)
        (run_logger or self.run_logger).info("worker_pool", "Starting worker pool", workers=pool.size, tasks=len(items))
        results = await pool.run(func, items)
        if raise_errors:
            for result in results:
                if not result.ok:
                    raise result.error
            return [result.value for result in results]
        return results

    # -- housekeeping -------------------------------------------------------

    def optimize_memory(self, run_logger: Optional[RunLogger] = None) -> bool:
        """Collect garbage and trim metric buffers when RSS is over the threshold."""
        rss_mb = self._rss_bytes() / 1024 / 1024
        if rss_mb <= self.config.memory_threshold_mb:
            return False
        print(f"    Memory usage high ({rss_mb:.2f}MB), running garbage collection")
        gc.collect()
        if len(self._processing_times) > METRICS_TRIMMED:
            self._processing_times = deque(list(self._processing_times)[-METRICS_TRIMMED:], maxlen=METRICS_WINDOW)
            self._memory_deltas = deque(list(self._memory_deltas)[-METRICS_TRIMMED:], maxlen=METRICS_WINDOW)
        (run_logger or self.run_logger).info("memory_optimized", "Garbage collection triggered", rss_mb=round(rss_mb, 2))
        return True

    def check_health(self, run_logger: Optional[RunLogger] = None) -> List[str]:
        warnings = []
        memory = psutil.virtual_memory()
        if memory.percent > 90:
            warnings.append(f"High memory usage: {memory.percent:.2f}%")
        cpu = psutil.cpu_percent(interval=None)
        if cpu > 90:
            warnings.append(f"High CPU usage: {cpu:.2f}%")
        if self._running_tasks > self.config.max_concurrent_operations * 0.8:
            warnings.append(f"High operation load: {self._running_tasks} active operations")
        for message in warnings:
            print(f"Warning: {message}")
            (run_logger or self.run_logger).warning("resource_pressure", message)
        return warnings

    def average_processing_time(self) -> float:
        if not self._processing_times:
            return 0.0
        return sum(self._processing_times) / len(self._processing_times)

    def snapshot(self) -> ResourceSnapshot:
        memory = psutil.virtual_memory()
        return ResourceSnapshot(
            cpu_percent=psutil.cpu_percent(interval=None),
            memory_used=memory.total - memory.available,
            memory_total=memory.total,
            memory_percent=memory.percent,
            process_memory_mb=self._rss_bytes() / 1024 / 1024,
            active_operations=self._running_tasks,
            queued_operations=max(0, self._queued_operations),
            average_processing_time=self.average_processing_time(),
        )

    def performance_stats(self) -> dict:
        average_memory = sum(self._memory_deltas) / len(self._memory_deltas) if self._memory_deltas else 0
        memory = psutil.virtual_memory()
        try:
            load_average = list(os.getloadavg())
        except (AttributeError, OSError):
            load_average = []
        return {
            "configuration": asdict(self.config),
            "statistics": {
                "totalOperations": len(self._processing_times),
                "averageProcessingTime": round(self.average_processing_time() * 1000),
                "averageMemoryUsage": round(average_memory / 1024 / 1024),
                "activeOperations": self._running_tasks,
                "queuedOperations": max(0, self._queued_operations),
                "throttleTimeouts": self._throttle_timeouts,
            },
            "system": {
                "cpuCount": psutil.cpu_count(),
                "totalMemory": memory.total,
                "freeMemory": memory.available,
                "platform": platform.system(),
                "loadAverage": load_average,
            },
        }

    def update_config(self, **changes) -> GovernorConfig:
        unknown = [key for key in changes if not hasattr(self.config, key)]
        if unknown:
            raise ValueError(f"Unknown governor settings: {', '.join(sorted(unknown))}")
        for key, value in changes.items():
            setattr(self.config, key, value)
        self.config.__post_init__()
        self.run_logger.info("governor_config_updated", "Governor configuration updated", **changes)
        return self.config
