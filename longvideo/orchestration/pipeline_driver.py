"""
Pipeline Driver - drives one segment through image -> video -> narration.

Every stage goes through the FallbackEngine and writes its URL into the
segment as soon as it succeeds, so a later failure keeps earlier outputs.
Stage functions are usable on their own for manual regeneration.
"""
import logging
from typing import Awaitable, Callable, Optional

from .enums import SegmentStatus, StoryMode, RegenerateStage
from .models import Task, Segment
from .state_machine import update_segment
from ..services.capabilities import Capabilities
from ..services.retry import FallbackEngine, IMAGE, VIDEO, NARRATION

logger = logging.getLogger(__name__)

PersistHook = Callable[[Task], Awaitable[None]]

IMAGE_DONE_PROGRESS = 33
VIDEO_DONE_PROGRESS = 66


class SegmentPipeline:
    """
    Runs generation stages for segments of a task.

    `persist` is awaited after every segment write so observers (status API,
    durable repository) see partial results immediately.
    """

    def __init__(
        self,
        engine: FallbackEngine,
        capabilities: Capabilities,
        persist: Optional[PersistHook] = None,
    ):
        self.engine = engine
        self.capabilities = capabilities
        self.persist = persist

    async def _write(self, task: Task, segment_id: int, **patch) -> Segment:
        segment = update_segment(task, segment_id, patch)
        if self.persist is not None:
            await self.persist(task)
        return segment

    # ── Prompt assembly ─────────────────────────────────────────────────────

    @staticmethod
    def image_prompt(task: Task, segment: Segment) -> str:
        scene = task.scene_for(segment.id)
        base = (
            (scene.image_prompt or scene.description) if scene else None
        ) or segment.prompt or f"Scene {segment.id}"

        parts = []
        if task.options.story_mode == StoryMode.CHARACTER and task.character_prompt:
            parts.append(task.character_prompt)
        parts.append(base)
        if task.options.visual_style:
            parts.append(f"{task.options.visual_style} style")
        return ", ".join(parts)

    @staticmethod
    def video_prompt(task: Task, segment: Segment) -> str:
        scene = task.scene_for(segment.id)
        return (scene.description if scene else None) or segment.description or f"Video scene {segment.id}"

    @staticmethod
    def narration_text(task: Task, segment: Segment) -> str:
        scene = task.scene_for(segment.id)
        return segment.narration or (scene.narration if scene else None) or f"Scene {segment.id} narration"

    @staticmethod
    def reference_image(task: Task) -> Optional[str]:
        if task.options.story_mode == StoryMode.CHARACTER:
            return task.options.character_image_url
        return None

    # ── Stages ──────────────────────────────────────────────────────────────

    async def generate_image(self, task: Task, segment: Segment, group_index: Optional[int] = None) -> str:
        prompt = self.image_prompt(task, segment)
        reference = self.reference_image(task)
        mode = task.options.speed_mode.value

        image_url = await self.engine.run(
            IMAGE,
            lambda target, api_key: self.capabilities.image.generate(
                prompt,
                reference_image_url=reference,
                mode=mode,
                model=target.model,
                api_key=api_key,
            ),
            start_model=task.options.image_model,
            group_index=group_index,
            image=True,
        )
        await self._write(task, segment.id, image_url=image_url, progress=max(segment.progress, IMAGE_DONE_PROGRESS))
        return image_url

    async def generate_video(self, task: Task, segment: Segment, group_index: Optional[int] = None) -> str:
        image_url = segment.image_url
        if not image_url:
            image_url = await self.generate_image(task, segment, group_index)
        prompt = self.video_prompt(task, segment)

        video_url = await self.engine.run(
            VIDEO,
            lambda target, api_key: self.capabilities.video.generate(
                image_url,
                prompt,
                model=target.model,
                api_key=api_key,
            ),
            start_model=task.options.video_model,
            group_index=group_index,
        )
        await self._write(task, segment.id, video_url=video_url, progress=max(segment.progress, VIDEO_DONE_PROGRESS))
        return video_url

    async def generate_audio(self, task: Task, segment: Segment, group_index: Optional[int] = None) -> str:
        text = self.narration_text(task, segment)
        voice_id = task.options.voice_actor_id
        language = task.options.language.value

        audio_url = await self.engine.run(
            NARRATION,
            lambda target, api_key: self.capabilities.narration.synthesize(
                text,
                voice_id=voice_id,
                language=language,
                model=target.model,
                api_key=api_key,
            ),
            start_model=task.options.narration_model,
            group_index=group_index,
        )
        await self._write(task, segment.id, audio_url=audio_url)
        return audio_url

    # ── Drivers ─────────────────────────────────────────────────────────────

    async def run(self, task: Task, segment_id: int, group_index: Optional[int] = None) -> Segment:
        """
        Drive a generating segment through all three stages.

        Never raises for stage failures: the segment is marked failed with the
        error and the remaining stages are skipped.
        """
        segment = task.get_segment(segment_id)
        logger.info(f"[PIPELINE] {task.id} segment {segment_id}/{task.total_segments} started (group {group_index})")

        try:
            await self.generate_image(task, segment, group_index)
            await self.generate_video(task, segment, group_index)
            await self.generate_audio(task, segment, group_index)
        except Exception as e:
            logger.error(f"[PIPELINE] {task.id} segment {segment_id} failed: {e}")
            return await self._write(task, segment_id, status=SegmentStatus.FAILED, error=str(e))

        logger.info(f"[PIPELINE] {task.id} segment {segment_id} completed")
        return await self._write(task, segment_id, status=SegmentStatus.COMPLETED, progress=100, error=None)

    async def regenerate(self, task: Task, segment_id: int, stage: RegenerateStage) -> Segment:
        """
        Re-run one stage (or all) for a finished segment outside the batch loop.

        A completed segment stays completed when regeneration fails; the error
        is recorded and its previous outputs are kept.
        """
        segment = task.get_segment(segment_id)
        was_completed = segment.status == SegmentStatus.COMPLETED
        logger.info(f"[PIPELINE] {task.id} segment {segment_id} regenerate ({stage.value})")

        if not was_completed:
            await self._write(task, segment_id, status=SegmentStatus.GENERATING, error=None)

        try:
            if stage in (RegenerateStage.ALL, RegenerateStage.IMAGE):
                await self.generate_image(task, segment)
            if stage in (RegenerateStage.ALL, RegenerateStage.VIDEO):
                # a video-only rerun keeps the existing image unless there is none
                await self.generate_video(task, segment)
            if stage in (RegenerateStage.ALL, RegenerateStage.AUDIO):
                await self.generate_audio(task, segment)
        except Exception as e:
            logger.error(f"[PIPELINE] {task.id} segment {segment_id} regenerate failed: {e}")
            if was_completed:
                return await self._write(task, segment_id, error=str(e))
            return await self._write(task, segment_id, status=SegmentStatus.FAILED, error=str(e))

        if not segment.video_url:
            return await self._write(
                task,
                segment_id,
                status=SegmentStatus.FAILED,
                error="Segment has no video clip; regenerate the video stage",
            )
        return await self._write(task, segment_id, status=SegmentStatus.COMPLETED, progress=100, error=None)
