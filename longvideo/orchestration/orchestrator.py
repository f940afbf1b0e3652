"""
Long Video Orchestrator - task lifecycle.

    analyzing   one story analysis call populates every segment
    generating  batches run strictly in index order; segments of the active
                batch run concurrently, at most one per key of its group
    merging     completed segments, ordered by id, go to the merge engine
    completed / failed

Only analysis failure and an all-failed task end a task as failed by
themselves; segment failures stay on the segment.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from .enums import TaskStatus, SegmentStatus, BatchStatus
from .models import Task, Batch
from .pipeline_driver import SegmentPipeline, PersistHook
from .state_machine import (
    start_next_batch,
    update_segment,
    is_task_complete,
    all_segments_failed,
    set_task_status,
)
from ..exceptions import AnalysisError, AllSegmentsFailedError, CapabilityExhaustedError
from ..rendering.merge import MergeEngine, MergeRequest, MergeResult
from ..services.capabilities import Capabilities
from ..services.retry import FallbackEngine, ANALYSIS

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 5.0
HISTORY_TIMEOUT_SECONDS = 10.0


def merge_request_for(task: Task) -> MergeRequest:
    """Merge input built from completed segments in id order."""
    segments = task.completed_segments()
    options = task.options
    return MergeRequest(
        video_urls=[s.video_url for s in segments],
        audio_urls=[s.audio_url for s in segments],
        narrations=[s.narration for s in segments],
        durations=[s.duration for s in segments],
        bgm_type=options.bgm_type,
        subtitle_style=options.subtitle_style,
        resolution=options.resolution,
        output_format=options.output_format,
        narration_volume=options.narration_volume,
        bgm_volume=options.bgm_volume,
        original_volume=options.original_volume,
    )


def apply_merge_result(task: Task, result: MergeResult) -> None:
    task.final_video_url = result.video_url
    task.merge_mode = result.mode.value if result.mode else None
    task.merge_message = result.message
    task.segment_urls = list(result.segment_urls)


def history_outputs(task: Task) -> Dict[str, Any]:
    return {
        "final_video_url": task.final_video_url,
        "merge_mode": task.merge_mode,
        "merge_message": task.merge_message,
        "segment_urls": list(task.segment_urls),
        "segments": [
            {
                "id": s.id,
                "video_url": s.video_url,
                "audio_url": s.audio_url,
                "narration": s.narration,
            }
            for s in task.completed_segments()
        ],
    }


class LongVideoOrchestrator:
    """
    Drives a task from pending to a terminal status.

    `sleep` is injectable so the inter-batch cooldown can be skipped in tests.
    """

    def __init__(
        self,
        engine: FallbackEngine,
        capabilities: Capabilities,
        merge_engine: MergeEngine,
        persist: Optional[PersistHook] = None,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        sleep=asyncio.sleep,
        history_timeout: float = HISTORY_TIMEOUT_SECONDS,
    ):
        self.engine = engine
        self.capabilities = capabilities
        self.merge_engine = merge_engine
        self.persist = persist
        self.cooldown = cooldown
        self.sleep = sleep
        self.history_timeout = history_timeout
        self.pipeline = SegmentPipeline(engine, capabilities, persist)

    async def _save(self, task: Task) -> None:
        if self.persist is not None:
            await self.persist(task)

    async def record_history(self, task: Task) -> None:
        """Mirror task state to the history sink. Failures are logged, never raised."""
        sink = self.capabilities.history
        if sink is None:
            return
        try:
            await asyncio.wait_for(
                sink.record_status(
                    task.id,
                    task.status.value,
                    task.progress,
                    outputs=history_outputs(task) if task.status.is_terminal else None,
                    error=task.error,
                    user_id=task.user_id,
                ),
                timeout=self.history_timeout,
            )
        except Exception as e:
            logger.warning(f"[ORCHESTRATOR] {task.id} history update failed: {type(e).__name__}: {e}")

    async def _transition(self, task: Task, status: TaskStatus, error: Optional[str] = None) -> None:
        set_task_status(task, status, error)
        await self._save(task)
        await self.record_history(task)

    # ── Lifecycle ───────────────────────────────────────────────────────────

    async def run(self, task: Task, lock: Optional[asyncio.Lock] = None) -> Task:
        """
        Run the whole lifecycle. `lock` is the per-task regeneration lock; it is
        held while merging so a manual regeneration cannot interleave with it.
        """
        logger.info("=" * 60)
        logger.info(
            f"[ORCHESTRATOR] {task.id}: {task.total_segments} segments, "
            f"{task.total_batches} batches, {task.duration_minutes} min"
        )
        logger.info("=" * 60)

        try:
            await self.analyze(task)
        except AnalysisError as e:
            logger.error(f"[ORCHESTRATOR] {task.id} analysis failed: {e.message}")
            await self._transition(task, TaskStatus.FAILED, e.message)
            return task

        await self._transition(task, TaskStatus.GENERATING)
        await self.generate(task)
        if lock is not None:
            async with lock:
                await self.finish(task)
        else:
            await self.finish(task)
        return task

    async def analyze(self, task: Task) -> None:
        """Populate scenes and per-segment prompt/narration from one analysis call."""
        await self._transition(task, TaskStatus.ANALYZING)
        options = task.options

        try:
            result = await self.engine.run(
                ANALYSIS,
                lambda target, api_key: self.capabilities.analyzer.analyze(
                    task.story,
                    scene_count=task.total_segments,
                    character_description=options.character_description,
                    visual_style=options.visual_style,
                    language=options.language.value,
                    model=target.model,
                    api_key=api_key,
                    endpoint=target.endpoint,
                ),
                start_model=options.llm_model,
            )
        except CapabilityExhaustedError as e:
            raise AnalysisError(e.message)
        if not result.scenes:
            raise AnalysisError("Story analysis produced no scenes")

        task.scenes = result.scenes
        task.character_prompt = result.character_prompt
        for segment in task.segments:
            scene = task.scene_for(segment.id)
            update_segment(task, segment.id, {
                "prompt": scene.image_prompt or scene.description,
                "description": scene.description,
                "narration": scene.narration,
            })
        await self._save(task)
        logger.info(f"[ORCHESTRATOR] {task.id} analysis produced {len(task.scenes)} scenes")

    async def generate(self, task: Task) -> None:
        while True:
            batch = start_next_batch(task)
            if batch is None:
                break
            await self._save(task)
            await self.run_batch(task, batch)

            if any(b.status == BatchStatus.PENDING for b in task.batches):
                logger.info(f"[ORCHESTRATOR] {task.id} cooling down {self.cooldown}s before next batch")
                await self.sleep(self.cooldown)

    async def run_batch(self, task: Task, batch: Batch) -> None:
        group = self.engine.pool.group(batch.credential_group_index)
        semaphore = asyncio.Semaphore(group.size)
        segment_ids = [
            s.id for s in task.batch_segments(batch) if s.status == SegmentStatus.GENERATING
        ]

        logger.info(
            f"[ORCHESTRATOR] {task.id} batch {batch.index + 1}/{task.total_batches}: "
            f"{len(segment_ids)} segments on group {group.index} (concurrency {group.size})"
        )

        async def worker(segment_id: int):
            async with semaphore:
                return await self.pipeline.run(task, segment_id, batch.credential_group_index)

        results = await asyncio.gather(*[worker(i) for i in segment_ids], return_exceptions=True)

        for segment_id, result in zip(segment_ids, results):
            if isinstance(result, Exception):
                logger.error(f"[ORCHESTRATOR] {task.id} segment {segment_id} crashed: {result}")
                segment = task.get_segment(segment_id)
                if not segment.status.is_terminal:
                    update_segment(task, segment_id, {"status": SegmentStatus.FAILED, "error": str(result)})
        await self._save(task)

        completed = sum(1 for s in task.batch_segments(batch) if s.status == SegmentStatus.COMPLETED)
        logger.info(
            f"[ORCHESTRATOR] {task.id} batch {batch.index + 1} {batch.status.value}: "
            f"{completed}/{len(batch.segment_ids)} segments completed, progress {task.progress}%"
        )

    async def finish(self, task: Task) -> None:
        if not is_task_complete(task):
            raise RuntimeError(f"Task {task.id} has unfinished batches")

        if all_segments_failed(task):
            error = AllSegmentsFailedError(task.id, task.total_segments)
            logger.error(f"[ORCHESTRATOR] {task.id} {error.message}")
            await self._transition(task, TaskStatus.FAILED, error.message)
            return

        await self._transition(task, TaskStatus.MERGING)
        result = await self.merge_engine.merge(merge_request_for(task))
        apply_merge_result(task, result)

        if result.success:
            logger.info(f"[ORCHESTRATOR] {task.id} completed ({result.mode.value}): {result.video_url}")
            await self._transition(task, TaskStatus.COMPLETED)
        else:
            await self._transition(task, TaskStatus.FAILED, result.error)
