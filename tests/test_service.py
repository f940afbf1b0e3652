"""
Tests for LongVideoService: background runs, regeneration, re-merge and
maintenance.
"""
import asyncio

import pytest

from longvideo.config import AppConfig, BatchConfig, CredentialsConfig, PathsConfig, RetryConfig
from longvideo.exceptions import (
    AllSegmentsFailedError,
    NotConfiguredError,
    SegmentBusyError,
    SegmentNotFoundError,
    TaskBusyError,
    TaskNotFoundError,
)
from longvideo.orchestration import TaskStatus, SegmentStatus, RegenerateStage, create_task, start_next_batch
from longvideo.rendering.merge import MergeMode
from longvideo.services.long_video_service import (
    INTERRUPTED_ERROR,
    LongVideoService,
    build_service,
)

from conftest import FakeVideoGenerator


class TestCreateAndRun:

    @pytest.mark.asyncio
    async def test_create_and_run_to_completion(self, service, task_repository, sample_story):
        task = await service.create_and_start(1, sample_story, user_id="user-1")

        assert service.is_running(task.id)
        assert task_repository.get(task.id) is not None

        finished = await service.wait(task.id)

        assert finished.status == TaskStatus.COMPLETED
        assert not service.is_running(task.id)
        stored = task_repository.get(task.id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.final_video_url == "https://cdn.test/merged/final.mp4"
        assert stored.user_id == "user-1"

    @pytest.mark.asyncio
    async def test_status_reads_live_task_while_running(self, service, sample_story):
        task = await service.create_and_start(1, sample_story)

        assert service.get_task_status(task.id) is task
        await service.wait(task.id)

    @pytest.mark.asyncio
    async def test_unexpected_crash_fails_task(self, service, orchestrator, task_repository, sample_story):
        async def boom(task):
            raise RuntimeError("unexpected")

        orchestrator.generate = boom
        task = await service.create_and_start(1, sample_story)
        await service.wait(task.id)

        stored = task_repository.get(task.id)
        assert stored.status == TaskStatus.FAILED
        assert "unexpected" in stored.error

    def test_create_without_keys(self, task_repository):
        service = LongVideoService(task_repository, None)

        assert service.ready is False
        with pytest.raises(NotConfiguredError):
            service.create_task(1, "story")

    def test_unknown_task(self, service):
        with pytest.raises(TaskNotFoundError):
            service.get_task_status("long_video_0_unknown00")

    @pytest.mark.asyncio
    async def test_stats(self, service, sample_story):
        task = await service.create_and_start(1, sample_story)
        await service.wait(task.id)

        stats = service.get_task_stats(task.id)

        assert stats["completed_segments"] == 8
        assert stats["completed_batches"] == 2
        assert stats["estimated_seconds_remaining"] == 0


class TestRegenerate:

    @pytest.mark.asyncio
    async def test_regenerate_failed_segment_after_run(self, service, capabilities, sample_story):
        capabilities.video = FakeVideoGenerator(fail_prompts={"desc 3"})
        task = await service.create_and_start(1, sample_story)
        await service.wait(task.id)
        assert service.get_task_status(task.id).get_segment(3).status == SegmentStatus.FAILED

        capabilities.video.fail_prompts.clear()
        segment = await service.regenerate_segment(task.id, 3, RegenerateStage.ALL)

        assert segment.status == SegmentStatus.COMPLETED
        stored = service.get_task_status(task.id)
        assert stored.get_segment(3).video_url == segment.video_url
        assert stored.progress == 100

    @pytest.mark.asyncio
    async def test_generating_segment_is_busy(self, service, task_repository):
        task = create_task(1, "story")
        start_next_batch(task)
        task_repository.save(task)

        with pytest.raises(SegmentBusyError):
            await service.regenerate_segment(task.id, 1, RegenerateStage.VIDEO)

    @pytest.mark.asyncio
    async def test_unknown_segment(self, service, task_repository):
        task = create_task(1, "story")
        task_repository.save(task)

        with pytest.raises(SegmentNotFoundError):
            await service.regenerate_segment(task.id, 42, RegenerateStage.ALL)

    @pytest.mark.asyncio
    async def test_concurrent_regenerates_are_serialized(self, service, capabilities, sample_story):
        task = await service.create_and_start(1, sample_story)
        await service.wait(task.id)
        running = 0
        peak = 0
        original = capabilities.narration.synthesize

        async def tracked(text, **kwargs):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return await original(text, **kwargs)

        capabilities.narration.synthesize = tracked

        await asyncio.gather(
            service.regenerate_segment(task.id, 1, RegenerateStage.AUDIO),
            service.regenerate_segment(task.id, 1, RegenerateStage.AUDIO),
        )

        assert peak == 1


class TestMergeTask:

    @pytest.mark.asyncio
    async def test_remerge_updates_final_url(self, service, cloud_merge, sample_story):
        task = await service.create_and_start(1, sample_story)
        await service.wait(task.id)
        cloud_merge.url = "https://cdn.test/merged/v2.mp4"

        result = await service.merge_task(task.id)

        assert result.mode == MergeMode.CLOUD
        stored = service.get_task_status(task.id)
        assert stored.final_video_url == "https://cdn.test/merged/v2.mp4"
        assert stored.status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_remerge_recovers_all_failed_task(self, service, capabilities, sample_story):
        capabilities.video = FakeVideoGenerator(fail_all=True)
        task = await service.create_and_start(0.5, sample_story)
        await service.wait(task.id)
        assert service.get_task_status(task.id).status == TaskStatus.FAILED

        with pytest.raises(AllSegmentsFailedError):
            await service.merge_task(task.id)

        capabilities.video.fail_all = False
        for segment_id in range(1, 5):
            await service.regenerate_segment(task.id, segment_id, RegenerateStage.VIDEO)
        await service.merge_task(task.id)

        stored = service.get_task_status(task.id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.error is None

    @pytest.mark.asyncio
    async def test_merge_while_running_is_rejected(self, service, sample_story):
        task = await service.create_and_start(1, sample_story)

        with pytest.raises(TaskBusyError):
            await service.merge_task(task.id)
        await service.wait(task.id)


class TestMaintenance:

    @pytest.mark.asyncio
    async def test_list_and_delete(self, service, sample_story):
        first = await service.create_and_start(0.5, sample_story, user_id="a")
        second = await service.create_and_start(0.5, sample_story, user_id="b")

        with pytest.raises(TaskBusyError):
            service.delete_task(first.id)

        await service.wait(first.id)
        await service.wait(second.id)

        assert {t.id for t in service.list_tasks()} == {first.id, second.id}
        assert [t.id for t in service.list_tasks("a")] == [first.id]
        assert service.delete_task(first.id) is True
        with pytest.raises(TaskNotFoundError):
            service.delete_task(first.id)

    def test_recover_interrupted(self, service, task_repository):
        interrupted = create_task(1, "story")
        interrupted.status = TaskStatus.GENERATING
        finished = create_task(1, "story")
        finished.status = TaskStatus.COMPLETED
        task_repository.save(interrupted)
        task_repository.save(finished)

        assert service.recover_interrupted() == 1

        stored = task_repository.get(interrupted.id)
        assert stored.status == TaskStatus.FAILED
        assert stored.error == INTERRUPTED_ERROR
        assert task_repository.get(finished.id).status == TaskStatus.COMPLETED


class TestBuildService:

    def _config(self, tmp_path, keys):
        return AppConfig(
            credentials=CredentialsConfig(api_keys=keys, openrouter_api_key="PASTE_KEY"),
            batch=BatchConfig(credential_groups=2),
            retry=RetryConfig(),
            paths=PathsConfig(
                data_dir=tmp_path,
                media_dir=tmp_path / "media",
                ffmpeg_path="ffmpeg",
                ffprobe_path="ffprobe",
            ),
            storage_backend="memory",
        )

    @pytest.mark.asyncio
    async def test_wires_pool_and_engine(self, tmp_path):
        service = build_service(self._config(tmp_path, ["k1", "k2", "k3", "k4"]))

        assert service.ready is True
        assert service.orchestrator.engine.pool.group_count == 2
        assert service.orchestrator.engine.backup_targets == []
        task = service.create_task(1, "story")
        assert [b.credential_group_index for b in task.batches] == [0, 1]
        await service.aclose()

    def test_without_keys_is_not_ready(self, tmp_path):
        service = build_service(self._config(tmp_path, []))

        assert service.ready is False
