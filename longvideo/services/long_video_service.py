"""
Long Video Service - entry point used by the API layer.

Creates tasks, runs their orchestration in the background, and serves
status, stats, manual regeneration, re-merge, listing and cleanup.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Dict, List, Optional

from ..config import AppConfig, BatchConfig
from ..exceptions import (
    AllSegmentsFailedError,
    NotConfiguredError,
    SegmentBusyError,
    SegmentNotFoundError,
    TaskBusyError,
    TaskNotFoundError,
)
from ..orchestration.enums import TaskStatus, RegenerateStage
from ..orchestration.models import Task, TaskOptions, Segment
from ..orchestration.orchestrator import (
    LongVideoOrchestrator,
    apply_merge_result,
    merge_request_for,
)
from ..orchestration.state_machine import create_task, get_stats, set_task_status
from ..persistence import TaskRepository, create_task_repository, create_history_sink
from ..rendering.local_merge import LocalMerger
from ..rendering.media_store import LocalMediaStore
from ..rendering.merge import MergeEngine, MergeResult
from .capabilities import Capabilities
from .credential_pool import CredentialPool
from .retry import FallbackEngine, RetryPolicy, backup_llm_targets
from .vectorengine import (
    VectorEngineClient,
    VectorEngineStoryAnalyzer,
    VectorEngineImageGenerator,
    VectorEngineVideoGenerator,
    VectorEngineNarrationSynthesizer,
    VectorEngineMergeService,
)

logger = logging.getLogger(__name__)

INTERRUPTED_ERROR = "Task interrupted by restart"


class LongVideoService:
    """
    Owns the repository and the orchestrator.

    Tasks whose loop is running are kept live in memory; every other read
    goes to the repository. Regeneration and re-merge are serialized per task.
    """

    def __init__(
        self,
        repository: TaskRepository,
        orchestrator: Optional[LongVideoOrchestrator],
        batch_config: Optional[BatchConfig] = None,
        clients: Optional[List[VectorEngineClient]] = None,
    ):
        self.repository = repository
        self.orchestrator = orchestrator
        self.batch = batch_config or BatchConfig()
        self._clients = list(clients or [])
        self._active: Dict[str, Task] = {}
        self._runners: Dict[str, asyncio.Task] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

        if orchestrator is not None:
            orchestrator.persist = self._persist
            orchestrator.pipeline.persist = self._persist

    @property
    def ready(self) -> bool:
        return self.orchestrator is not None

    def _require_orchestrator(self) -> LongVideoOrchestrator:
        if self.orchestrator is None:
            raise NotConfiguredError()
        return self.orchestrator

    async def _persist(self, task: Task) -> None:
        self.repository.save(task)

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        if task_id not in self._locks:
            self._locks[task_id] = asyncio.Lock()
        return self._locks[task_id]

    def _load(self, task_id: str) -> Task:
        task = self._active.get(task_id) or self.repository.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def is_running(self, task_id: str) -> bool:
        return task_id in self._active

    # ── Creation and execution ──────────────────────────────────────────────

    def create_task(
        self,
        duration_minutes: float,
        story: str,
        options: Optional[TaskOptions] = None,
        user_id: Optional[str] = None,
    ) -> Task:
        """Create and persist a pending task (does not start it)."""
        self._require_orchestrator()
        task = create_task(
            duration_minutes,
            story,
            options,
            user_id=user_id,
            segment_duration=self.batch.segment_duration,
            batch_size=self.batch.batch_size,
            credential_groups=self.orchestrator.engine.pool.group_count,
        )
        self.repository.save(task)
        return task

    def start(self, task: Task) -> asyncio.Task:
        """Schedule the orchestration loop on the running event loop."""
        orchestrator = self._require_orchestrator()
        self._active[task.id] = task
        runner = asyncio.create_task(self._run(orchestrator, task))
        self._runners[task.id] = runner
        return runner

    async def _run(self, orchestrator: LongVideoOrchestrator, task: Task) -> None:
        try:
            await orchestrator.run(task, lock=self._lock_for(task.id))
        except Exception as e:
            logger.exception(f"[ORCHESTRATOR] {task.id} crashed: {e}")
            set_task_status(task, TaskStatus.FAILED, f"Unexpected error: {e}")
            self.repository.save(task)
            await orchestrator.record_history(task)
        finally:
            self._active.pop(task.id, None)
            self._runners.pop(task.id, None)

    async def create_and_start(
        self,
        duration_minutes: float,
        story: str,
        options: Optional[TaskOptions] = None,
        user_id: Optional[str] = None,
    ) -> Task:
        task = self.create_task(duration_minutes, story, options, user_id)
        self.start(task)
        return task

    async def wait(self, task_id: str) -> Task:
        """Await a running task's loop (used by scripts and tests)."""
        runner = self._runners.get(task_id)
        if runner is not None:
            await runner
        return self._load(task_id)

    # ── Queries ─────────────────────────────────────────────────────────────

    def get_task_status(self, task_id: str) -> Task:
        return self._load(task_id)

    def get_task_stats(self, task_id: str) -> Dict:
        return get_stats(self._load(task_id), self.batch.default_segment_seconds)

    def list_tasks(self, user_id: Optional[str] = None) -> List[Task]:
        tasks = self.repository.list_tasks(user_id)
        return [self._active.get(t.id, t) for t in tasks]

    # ── Manual actions ──────────────────────────────────────────────────────

    async def regenerate_segment(self, task_id: str, segment_id: int, stage: RegenerateStage) -> Segment:
        """
        Re-run one or all stages of a finished segment.

        Raises:
            TaskNotFoundError / SegmentNotFoundError
            SegmentBusyError: the segment has not finished generating yet
        """
        orchestrator = self._require_orchestrator()
        async with self._lock_for(task_id):
            task = self._load(task_id)
            segment = task.get_segment(segment_id)
            if segment is None:
                raise SegmentNotFoundError(task_id, segment_id)
            if not segment.status.is_terminal:
                raise SegmentBusyError(task_id, segment_id)

            segment = await orchestrator.pipeline.regenerate(task, segment_id, stage)
            self.repository.save(task)
            return segment

    async def merge_task(self, task_id: str) -> MergeResult:
        """Merge again (e.g. after regenerating segments) and update the final URL."""
        orchestrator = self._require_orchestrator()
        async with self._lock_for(task_id):
            if self.is_running(task_id):
                raise TaskBusyError(task_id, "merge")
            task = self._load(task_id)
            if not task.completed_segments():
                raise AllSegmentsFailedError(task_id, task.total_segments)

            result = await orchestrator.merge_engine.merge(merge_request_for(task))
            apply_merge_result(task, result)
            if result.success:
                task.error = None
                set_task_status(task, TaskStatus.COMPLETED)
            else:
                set_task_status(task, TaskStatus.FAILED, result.error)
            self.repository.save(task)
            await orchestrator.record_history(task)
            return result

    def delete_task(self, task_id: str) -> bool:
        if self.is_running(task_id):
            raise TaskBusyError(task_id, "delete")
        deleted = self.repository.delete(task_id)
        if not deleted:
            raise TaskNotFoundError(task_id)
        self._locks.pop(task_id, None)
        return deleted

    # ── Maintenance ─────────────────────────────────────────────────────────

    def cleanup_expired(self) -> int:
        return self.repository.cleanup_expired(timedelta(days=self.batch.task_ttl_days))

    def recover_interrupted(self) -> int:
        """Fail tasks left unfinished by a previous process."""
        count = 0
        for task in self.repository.list_unfinished():
            if task.id in self._active:
                continue
            set_task_status(task, TaskStatus.FAILED, INTERRUPTED_ERROR)
            self.repository.save(task)
            count += 1
        if count:
            logger.warning(f"Marked {count} interrupted task(s) as failed")
        return count

    async def aclose(self) -> None:
        for client in self._clients:
            await client.aclose()


def build_service(app_config: AppConfig) -> LongVideoService:
    """Wire the production service from configuration."""
    repository = create_task_repository()

    if not app_config.credentials.has_pool:
        logger.warning("No upstream API keys - long video generation disabled")
        return LongVideoService(repository, None, app_config.batch)

    retry = app_config.retry
    pool = CredentialPool(app_config.credentials.api_keys, app_config.batch.credential_groups)
    engine = FallbackEngine(
        pool,
        policy=RetryPolicy(
            max_retries=retry.max_retries,
            base_delay=retry.base_delay,
            multiplier=retry.multiplier,
            max_delay=retry.max_delay,
        ),
        backup_targets=backup_llm_targets(
            app_config.credentials.openrouter_api_key if app_config.credentials.has_openrouter else None,
            app_config.credentials.openai_api_key if app_config.credentials.has_openai else None,
        ),
    )

    client = VectorEngineClient(
        app_config.credentials.api_base,
        timeout=retry.generation_timeout,
        poll_interval=retry.poll_interval,
        max_poll_attempts=retry.max_poll_attempts,
    )
    merge_client = VectorEngineClient(app_config.credentials.api_base, timeout=retry.merge_timeout)
    media_store = LocalMediaStore(app_config.paths.media_dir, app_config.public_base_url)

    capabilities = Capabilities(
        analyzer=VectorEngineStoryAnalyzer(client),
        image=VectorEngineImageGenerator(client),
        video=VectorEngineVideoGenerator(client),
        narration=VectorEngineNarrationSynthesizer(client, media_store),
        history=create_history_sink(),
    )
    merge_engine = MergeEngine(
        engine,
        cloud=VectorEngineMergeService(merge_client),
        local=LocalMerger(
            app_config.paths.ffmpeg_path,
            app_config.paths.ffprobe_path,
            media_store,
            work_dir=app_config.paths.data_dir / "merge",
        ),
    )
    orchestrator = LongVideoOrchestrator(
        engine,
        capabilities,
        merge_engine,
        cooldown=app_config.batch.inter_batch_cooldown,
    )
    return LongVideoService(repository, orchestrator, app_config.batch, clients=[client, merge_client])


_long_video_service: Optional[LongVideoService] = None


def get_long_video_service() -> LongVideoService:
    """Get singleton LongVideoService instance."""
    global _long_video_service
    if _long_video_service is None:
        from ..config import config
        _long_video_service = build_service(config)
    return _long_video_service


def set_long_video_service(service: Optional[LongVideoService]) -> None:
    """Replace the singleton (tests, custom wiring)."""
    global _long_video_service
    _long_video_service = service
