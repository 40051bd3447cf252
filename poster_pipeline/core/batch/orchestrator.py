"""
Batch Orchestrator
==================

Turns a list of named poster variants into PNG artifacts, one task at a time.

Per task: ``pending -> processing -> completed | failed``. ``retry_failed()``
moves failed tasks back to pending. A task interrupted by ``cancel()`` goes
back to pending without an error, and untouched tasks stay pending, so a later
``start()`` picks up where the cancelled run stopped.

Only one rasterization is ever outstanding. Cancellation is observed at the
settle delay, the rasterization call, the inter-task delay and while paused.
Pausing lets the task in flight finish and holds the next one.
"""

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union
import asyncio

from poster_pipeline.config.logging import get_logger
from poster_pipeline.config.settings import Settings, get_settings
from poster_pipeline.core.batch.cancellation import BatchCancelledError, CancellationToken
from poster_pipeline.core.batch.delivery import (
    ArtifactDelivery,
    ArtifactDeliveryError,
    FileSystemDelivery,
    build_artifact_filename,
)
from poster_pipeline.core.batch.variants import build_variant_tasks
from poster_pipeline.core.rendering.rasterizer import (
    PlaywrightRasterizer,
    Rasterizer,
    encode_artifact,
)
from poster_pipeline.core.rendering.surface import PlaywrightSurfaceHost, SurfaceHost
from poster_pipeline.models.schemas import (
    BatchRunState,
    BatchTask,
    BatchTaskInput,
    CanvasDescription,
    OverallUpdate,
    RasterOptions,
    TaskStatus,
    TaskUpdate,
)

logger = get_logger(__name__)

TaskListener = Callable[[TaskUpdate], None]
OverallListener = Callable[[OverallUpdate], None]
CanvasLike = Union[CanvasDescription, RasterOptions, Mapping[str, Any]]


class BatchBusyError(Exception):
    """Raised when work is requested while the orchestrator is already processing."""
    pass


class BatchOrchestrator:
    """Sequential, cancellable, resumable batch renderer."""

    def __init__(
        self,
        tasks: Iterable[Union[BatchTaskInput, Mapping[str, Any]]],
        canvas: CanvasLike,
        subject_name: str,
        rasterizer: Optional[Rasterizer] = None,
        surface_host: Optional[SurfaceHost] = None,
        delivery: Optional[ArtifactDelivery] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.subject_name = subject_name
        self.logger: Any = logger.bind(component="batch_orchestrator", subject=subject_name)

        inputs = [
            item if isinstance(item, BatchTaskInput) else BatchTaskInput(**item) for item in tasks
        ]
        ids = [item.id for item in inputs]
        if len(set(ids)) != len(ids):
            raise ValueError("Batch task ids must be unique")

        self._tasks: List[BatchTask] = [BatchTask(id=item.id, name=item.name) for item in inputs]
        self._markup: Dict[str, str] = {item.id: item.markup for item in inputs}
        self.raster_options = self._resolve_raster_options(canvas)

        self._own_surface_host = surface_host is None
        self.surface_host = surface_host or PlaywrightSurfaceHost()
        self.rasterizer = rasterizer or PlaywrightRasterizer()
        self.delivery = delivery or FileSystemDelivery(self.settings.output_path)

        self._task_listeners: List[TaskListener] = []
        self._overall_listeners: List[OverallListener] = []

        self._token: Optional[CancellationToken] = None
        self._processing = False
        self._paused = False
        self._current_index = -1
        self._overall_progress = 0.0
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._idle_event = asyncio.Event()
        self._idle_event.set()

    @classmethod
    def from_template(
        cls,
        template: str,
        names: Iterable[str],
        canvas: CanvasLike,
        subject_name: str,
        **kwargs: Any,
    ) -> "BatchOrchestrator":
        """Build an orchestrator with one task per variant name of a template."""
        settings = kwargs.get("settings") or get_settings()
        tasks = build_variant_tasks(
            template,
            names,
            token=settings.variant_token,
            replacement=settings.variant_replacement,
        )
        return cls(tasks, canvas, subject_name, **kwargs)

    def _resolve_raster_options(self, canvas: CanvasLike) -> RasterOptions:
        if isinstance(canvas, Mapping):
            width, height = canvas["width"], canvas["height"]
        else:
            width, height = canvas.width, canvas.height
        return RasterOptions(width=int(width), height=int(height), scale=self.settings.raster_scale)

    # State

    @property
    def tasks(self) -> List[BatchTask]:
        """Copies of the current task records."""
        return [task.model_copy() for task in self._tasks]

    def get_task(self, task_id: str) -> BatchTask:
        return self._find(task_id).model_copy()

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def overall_progress(self) -> float:
        return self._overall_progress

    @property
    def state(self) -> BatchRunState:
        """Snapshot of the run."""
        return BatchRunState(
            tasks=self.tasks,
            current_index=self._current_index,
            is_processing=self._processing,
            is_paused=self._paused,
            overall_progress=self._overall_progress,
            completed_count=self._count(TaskStatus.COMPLETED),
            failed_count=self._count(TaskStatus.FAILED),
            pending_count=self._count(TaskStatus.PENDING),
        )

    def _count(self, status: TaskStatus) -> int:
        return sum(1 for task in self._tasks if task.status == status)

    def _find(self, task_id: str) -> BatchTask:
        for task in self._tasks:
            if task.id == task_id:
                return task
        raise KeyError(f"Unknown batch task: {task_id}")

    # Subscriptions

    def on_task_update(self, listener: TaskListener) -> Callable[[], None]:
        """Subscribe to per-task transitions. Returns an unsubscribe callable."""
        self._task_listeners.append(listener)
        return lambda: self._remove_listener(self._task_listeners, listener)

    def on_overall_update(self, listener: OverallListener) -> Callable[[], None]:
        """Subscribe to aggregate progress. Returns an unsubscribe callable."""
        self._overall_listeners.append(listener)
        return lambda: self._remove_listener(self._overall_listeners, listener)

    @staticmethod
    def _remove_listener(listeners: List[Any], listener: Any) -> None:
        if listener in listeners:
            listeners.remove(listener)

    def _notify(self, listeners: List[Any], update: Any) -> None:
        for listener in list(listeners):
            try:
                listener(update)
            except Exception:
                self.logger.exception("Batch listener raised", update=update.model_dump())

    def _update_task(self, task: BatchTask, **changes: Any) -> None:
        for field, value in changes.items():
            setattr(task, field, value)
        self._notify(
            self._task_listeners,
            TaskUpdate(task_id=task.id, status=task.status, progress=task.progress, error=task.error),
        )

    def _publish_overall(self) -> None:
        total = len(self._tasks)
        completed = self._count(TaskStatus.COMPLETED)
        failed = self._count(TaskStatus.FAILED)
        self._overall_progress = 100.0 * (completed + failed) / total if total else 0.0
        self._notify(
            self._overall_listeners,
            OverallUpdate(
                completed_count=completed,
                failed_count=failed,
                total_count=total,
                overall_progress=self._overall_progress,
            ),
        )

    # Run control

    async def start(self) -> None:
        """
        Process every pending task in order.

        No-op while a run is already processing. Returns when the queue is
        exhausted or the run is cancelled.
        """
        if self._processing:
            self.logger.warning("Batch already processing, start ignored")
            return

        token = CancellationToken()
        self._token = token
        self._processing = True
        self._paused = False
        self._resume_event.set()

        # A cancelled run may still be unwinding its last await.
        await self._idle_event.wait()
        self._idle_event.clear()

        self.logger.info("Batch run started", total=len(self._tasks), pending=self._count(TaskStatus.PENDING))
        try:
            await self._run(token)
            self.logger.info(
                "Batch run finished",
                completed=self._count(TaskStatus.COMPLETED),
                failed=self._count(TaskStatus.FAILED),
            )
        except BatchCancelledError:
            self.logger.info("Batch run cancelled", pending=self._count(TaskStatus.PENDING))
        finally:
            self._idle_event.set()
            if self._token is token:
                self._token = None
                self._processing = False
                self._paused = False
                self._current_index = -1

    async def _run(self, token: CancellationToken) -> None:
        queue = [index for index, task in enumerate(self._tasks) if task.status == TaskStatus.PENDING]

        for position, index in enumerate(queue):
            token.raise_if_cancelled()
            await self._wait_if_paused(token)
            # cancel() also releases a paused loop
            token.raise_if_cancelled()

            task = self._tasks[index]
            if task.status != TaskStatus.PENDING:
                continue

            self._current_index = index
            await self._process(task, token)
            self._publish_overall()

            if position < len(queue) - 1:
                await token.sleep(self.settings.inter_task_delay)

    async def _wait_if_paused(self, token: CancellationToken) -> None:
        if not self._paused:
            return
        self.logger.info("Batch paused before next task")
        await token.guard(self._resume_event.wait())
        self.logger.info("Batch resumed")

    async def process_one(self, task: Union[str, BatchTask]) -> BatchTask:
        """
        Render a single task outside the run loop.

        The task holds the orchestrator like a one-task run: ``cancel()``
        interrupts it and ``start()`` is ignored until it finishes.

        Args:
            task: Task id or task record

        Returns:
            Copy of the task after processing

        Raises:
            BatchBusyError: If a run or another task is already processing
            BatchCancelledError: If cancel() interrupted the task
        """
        record = self._find(task if isinstance(task, str) else task.id)
        if self._processing:
            raise BatchBusyError(f"Cannot process {record.id} while the batch is processing")

        token = CancellationToken()
        self._token = token
        self._processing = True

        await self._idle_event.wait()
        self._idle_event.clear()
        try:
            if record.status == TaskStatus.PROCESSING:
                raise BatchBusyError(f"Task {record.id} is already processing")
            self._current_index = self._tasks.index(record)
            await self._process(record, token)
            self._publish_overall()
        finally:
            self._idle_event.set()
            if self._token is token:
                self._token = None
                self._processing = False
                self._paused = False
                self._current_index = -1
        return record.model_copy()

    async def _process(self, task: BatchTask, token: CancellationToken) -> None:
        timeout = self.settings.raster_timeout
        self._update_task(task, status=TaskStatus.PROCESSING, progress=0, error=None, result=None)
        self.logger.info("Processing task", task_id=task.id, name=task.name)

        try:
            async with self.surface_host.mount(
                self._markup[task.id], self.raster_options, self.settings.mount_background
            ) as surface:
                self._update_task(task, progress=25)
                await token.sleep(self.settings.settle_delay)
                token.raise_if_cancelled()
                self._update_task(task, progress=50)

                png_bytes = await token.guard(
                    self.rasterizer.rasterize(surface, self.raster_options), timeout=timeout
                )

            self._update_task(task, progress=75)
            artifact = encode_artifact(
                png_bytes, self.raster_options, optimize=self.settings.optimize_png
            )
            self._update_task(task, status=TaskStatus.COMPLETED, progress=100, result=artifact)
            self.logger.info("Task completed", task_id=task.id, file_size=artifact.file_size)

        except (BatchCancelledError, asyncio.CancelledError):
            self._update_task(task, status=TaskStatus.PENDING, progress=0, error=None, result=None)
            self.logger.info("Task abandoned by cancellation", task_id=task.id)
            raise
        except asyncio.TimeoutError:
            self._fail(task, f"Rasterization timed out after {timeout}s")
        except Exception as e:
            self._fail(task, str(e) or type(e).__name__)

    def _fail(self, task: BatchTask, message: str) -> None:
        self._update_task(task, status=TaskStatus.FAILED, progress=0, error=message, result=None)
        self.logger.warning("Task failed", task_id=task.id, name=task.name, error=message)

    def pause(self) -> None:
        """Hold the next task. The task in flight is allowed to finish."""
        self._paused = True
        self._resume_event.clear()
        self.logger.info("Batch pause requested")

    def resume(self) -> None:
        """Release a paused run."""
        self._paused = False
        self._resume_event.set()
        self.logger.info("Batch resume requested")

    def cancel(self) -> None:
        """Stop the run at its next suspension point. Untouched tasks stay pending."""
        if self._token is not None:
            self._token.cancel()
        self._token = None
        self._processing = False
        self._paused = False
        self._resume_event.set()
        self._current_index = -1
        self.logger.info("Batch cancel requested")

    def retry_failed(self) -> int:
        """
        Move every failed task back to pending.

        Returns:
            Number of tasks reset
        """
        failed = [task for task in self._tasks if task.status == TaskStatus.FAILED]
        for task in failed:
            self._update_task(task, status=TaskStatus.PENDING, progress=0, error=None)
        if failed:
            self._publish_overall()
        self.logger.info("Failed tasks reset", count=len(failed))
        return len(failed)

    # Delivery

    def artifact_filename(self, task: BatchTask) -> str:
        return build_artifact_filename(self.subject_name, task.name, self.settings.artifact_suffix)

    async def download_one(self, task_id: str) -> str:
        """
        Deliver the artifact of one completed task.

        Raises:
            ArtifactDeliveryError: If the task has no artifact or delivery fails
        """
        try:
            task = self._find(task_id)
        except KeyError as e:
            raise ArtifactDeliveryError(str(e))
        if task.status != TaskStatus.COMPLETED or task.result is None:
            raise ArtifactDeliveryError(f"Task {task_id} has no completed artifact")
        return await self.delivery.deliver(self.artifact_filename(task), task.result)

    async def download_all(self) -> Dict[str, str]:
        """
        Deliver every completed artifact, staggered by ``download_stagger``.

        Returns:
            Task id to delivered location

        Raises:
            ArtifactDeliveryError: After attempting all, if any delivery failed
        """
        completed = [
            task
            for task in self._tasks
            if task.status == TaskStatus.COMPLETED and task.result is not None
        ]
        locations: Dict[str, str] = {}
        failures: List[str] = []

        for index, task in enumerate(completed):
            if index > 0:
                await asyncio.sleep(self.settings.download_stagger)
            try:
                locations[task.id] = await self.delivery.deliver(
                    self.artifact_filename(task), task.result
                )
            except ArtifactDeliveryError as e:
                self.logger.error("Artifact delivery failed", task_id=task.id, error=str(e))
                failures.append(task.name)

        self.logger.info("Artifacts delivered", delivered=len(locations), failed=len(failures))
        if failures:
            raise ArtifactDeliveryError(f"Failed to deliver artifacts for: {', '.join(failures)}")
        return locations

    async def close(self) -> None:
        """Release the surface host if this orchestrator created it."""
        if self._own_surface_host:
            await self.surface_host.close()
