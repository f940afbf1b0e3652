"""
Tests for the orchestration loop.
"""
import asyncio

import pytest
from unittest.mock import AsyncMock

from longvideo.exceptions import UpstreamRequestError
from longvideo.orchestration import TaskStatus, SegmentStatus, BatchStatus, create_task
from longvideo.orchestration.orchestrator import LongVideoOrchestrator, merge_request_for
from longvideo.rendering.merge import MergeEngine, MergeMode
from longvideo.services.capabilities import AnalysisResult, HistorySink

from conftest import FakeAnalyzer, FakeVideoGenerator, FakeMergeService


class FailingHistorySink(HistorySink):

    def __init__(self):
        self.calls = 0

    async def record_status(self, task_id, status, progress, outputs=None, error=None, user_id=None):
        self.calls += 1
        raise RuntimeError("history database is down")


class SlowHistorySink(HistorySink):

    async def record_status(self, task_id, status, progress, outputs=None, error=None, user_id=None):
        await asyncio.sleep(10)


class TestLifecycle:
    """Full runs against fake capabilities."""

    @pytest.mark.asyncio
    async def test_successful_run(self, orchestrator, cloud_merge, history_sink, no_sleep):
        task = create_task(1, "story", user_id="user-1")

        await orchestrator.run(task)

        assert task.status == TaskStatus.COMPLETED
        assert task.progress == 100
        assert task.final_video_url == "https://cdn.test/merged/final.mp4"
        assert task.merge_mode == MergeMode.CLOUD.value
        assert all(s.status == SegmentStatus.COMPLETED for s in task.segments)
        assert all(b.status == BatchStatus.COMPLETED for b in task.batches)
        assert len(cloud_merge.calls) == 1
        assert len(cloud_merge.calls[0]["videos"]) == 8
        # one cooldown between the two batches
        no_sleep.assert_any_await(5.0)

        statuses = [r.status for r in history_sink.calls]
        assert statuses == ["analyzing", "generating", "merging", "completed"]
        assert history_sink.get(task.id).outputs["final_video_url"] == task.final_video_url

    @pytest.mark.asyncio
    async def test_analysis_populates_segments(self, orchestrator, capabilities):
        task = create_task(1, "story")

        await orchestrator.analyze(task)

        assert capabilities.analyzer.calls[0]["scene_count"] == 8
        assert capabilities.analyzer.calls[0]["model"] == "gpt-4o-mini"
        assert task.character_prompt == "a young hero"
        assert task.get_segment(3).narration == "narration 3"
        assert task.get_segment(3).prompt == "prompt 3"

    @pytest.mark.asyncio
    async def test_fewer_scenes_are_spread_over_segments(self, orchestrator, capabilities):
        capabilities.analyzer = FakeAnalyzer(scene_count=2)
        task = create_task(1, "story")

        await orchestrator.analyze(task)

        assert [s.narration for s in task.segments] == ["narration 1"] * 4 + ["narration 2"] * 4

    @pytest.mark.asyncio
    async def test_analysis_failure_fails_task(self, orchestrator, capabilities, cloud_merge):
        capabilities.analyzer = FakeAnalyzer(error=UpstreamRequestError("model unavailable", status_code=404))
        task = create_task(1, "story")

        await orchestrator.run(task)

        assert task.status == TaskStatus.FAILED
        assert "analysis failed" in task.error
        assert all(s.status == SegmentStatus.PENDING for s in task.segments)
        assert cloud_merge.calls == []

    @pytest.mark.asyncio
    async def test_analysis_without_scenes_fails_task(self, orchestrator, capabilities, cloud_merge):
        class EmptyAnalyzer(FakeAnalyzer):
            async def analyze(self, story, **kwargs):
                return AnalysisResult(scenes=[], character_prompt=None, model=kwargs["model"])

        capabilities.analyzer = EmptyAnalyzer()
        task = create_task(1, "story")

        await orchestrator.run(task)

        assert task.status == TaskStatus.FAILED
        assert task.error == "Story analysis produced no scenes"
        assert all(s.status == SegmentStatus.PENDING for s in task.segments)
        assert cloud_merge.calls == []

    @pytest.mark.asyncio
    async def test_all_segments_failed_skips_merge(self, engine, capabilities, no_sleep):
        """Every segment fails: the task fails and merge is never invoked."""
        capabilities.video = FakeVideoGenerator(fail_all=True)
        merge_engine = MergeEngine(engine, cloud=FakeMergeService())
        merge_engine.merge = AsyncMock()
        orchestrator = LongVideoOrchestrator(engine, capabilities, merge_engine, sleep=no_sleep)
        task = create_task(1, "story")

        await orchestrator.run(task)

        assert task.status == TaskStatus.FAILED
        assert "All 8 segments failed" in task.error
        assert all(s.status == SegmentStatus.FAILED for s in task.segments)
        assert all(b.status == BatchStatus.FAILED for b in task.batches)
        merge_engine.merge.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_partial_failure_merges_completed_segments(self, orchestrator, capabilities, cloud_merge):
        capabilities.video = FakeVideoGenerator(fail_prompts={"desc 4"})
        task = create_task(1, "story")

        await orchestrator.run(task)

        assert task.status == TaskStatus.COMPLETED
        assert task.get_segment(4).status == SegmentStatus.FAILED
        assert len(cloud_merge.calls[0]["videos"]) == 7
        assert task.progress == round(100 * 7 / 8)

    @pytest.mark.asyncio
    async def test_no_cooldown_after_last_batch(self, orchestrator, no_sleep):
        task = create_task(0.5, "story")

        await orchestrator.run(task)

        assert task.total_batches == 1
        assert 5.0 not in [c.args[0] for c in no_sleep.await_args_list]

    @pytest.mark.asyncio
    async def test_persist_hook_sees_progress(self, orchestrator):
        snapshots = []

        async def persist(task):
            snapshots.append(task.progress)

        orchestrator.persist = persist
        orchestrator.pipeline.persist = persist
        task = create_task(1, "story")

        await orchestrator.run(task)

        assert snapshots == sorted(snapshots)
        assert snapshots[-1] == 100


class TestBatchConcurrency:

    @pytest.mark.asyncio
    async def test_concurrency_limited_to_group_size(self, engine, capabilities, merge_engine, no_sleep):
        """Group size is 2, so no more than 2 segments run at once."""
        running = 0
        peak = 0
        original = capabilities.image.generate

        async def tracked(prompt, **kwargs):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return await original(prompt, **kwargs)

        capabilities.image.generate = tracked
        orchestrator = LongVideoOrchestrator(engine, capabilities, merge_engine, sleep=no_sleep)
        task = create_task(1, "story")

        await orchestrator.run(task)

        assert task.status == TaskStatus.COMPLETED
        assert peak == 2

    @pytest.mark.asyncio
    async def test_crashed_worker_marks_segment_failed(self, orchestrator):
        original = orchestrator.pipeline.run

        async def crashing(task, segment_id, group_index=None):
            if segment_id == 2:
                raise RuntimeError("worker crashed")
            return await original(task, segment_id, group_index)

        orchestrator.pipeline.run = crashing
        task = create_task(1, "story")

        await orchestrator.run(task)

        assert task.get_segment(2).status == SegmentStatus.FAILED
        assert task.get_segment(2).error == "worker crashed"
        assert task.status == TaskStatus.COMPLETED


class TestHistory:

    @pytest.mark.asyncio
    async def test_history_failure_is_ignored(self, engine, capabilities, merge_engine, no_sleep):
        sink = FailingHistorySink()
        capabilities.history = sink
        orchestrator = LongVideoOrchestrator(engine, capabilities, merge_engine, sleep=no_sleep)
        task = create_task(1, "story")

        await orchestrator.run(task)

        assert task.status == TaskStatus.COMPLETED
        assert sink.calls == 4

    @pytest.mark.asyncio
    async def test_history_timeout_is_bounded(self, engine, capabilities, merge_engine, no_sleep):
        capabilities.history = SlowHistorySink()
        orchestrator = LongVideoOrchestrator(
            engine, capabilities, merge_engine, sleep=no_sleep, history_timeout=0.01
        )
        task = create_task(0.5, "story")

        await asyncio.wait_for(orchestrator.run(task), timeout=5)

        assert task.status == TaskStatus.COMPLETED


class TestMergeRequest:

    def test_built_from_completed_segments_in_order(self):
        task = create_task(1, "story")
        for segment_id in (3, 1, 2):
            segment = task.get_segment(segment_id)
            segment.status = SegmentStatus.COMPLETED
            segment.video_url = f"https://cdn.test/{segment_id}.mp4"
            segment.narration = f"line {segment_id}"
        task.get_segment(4).status = SegmentStatus.FAILED

        request = merge_request_for(task)

        assert request.video_urls == ["https://cdn.test/1.mp4", "https://cdn.test/2.mp4", "https://cdn.test/3.mp4"]
        assert request.narrations == ["line 1", "line 2", "line 3"]
        assert request.durations == [8, 8, 8]
