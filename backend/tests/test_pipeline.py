"""Tests for the pipeline orchestrator with a scripted gateway."""

import json

import pytest

from conftest import analysis_json, scenes_json
from vizprompts.config import MIB
from vizprompts.errors import (
    BackendRefusalError,
    BackendUnavailableError,
    NormalizationError,
    UploadValidationError,
)
from vizprompts.orchestrator.pipeline import PromptPipeline
from vizprompts.orchestrator.progress import ProgressChannel


class TestUploadValidation:
    def test_oversized_upload_rejected_before_sampling(self, pipeline, gateway, monkeypatch):
        sampled = []
        monkeypatch.setattr(pipeline.sampler, "sample", lambda *a, **k: sampled.append(a))

        with pytest.raises(UploadValidationError, match="too large"):
            pipeline.validate(b"\x00" * (250 * MIB), "video/mp4", filename="huge.mp4")

        assert sampled == []
        assert gateway.requests == []

    def test_limit_is_inclusive(self, gateway, settings):
        settings.upload.max_bytes = 1024
        pipeline = PromptPipeline(gateway, settings)
        assert pipeline.validate(b"\x00" * 1024, "video/mp4").size == 1024
        with pytest.raises(UploadValidationError):
            pipeline.validate(b"\x00" * 1025, "video/mp4")

    def test_non_media_type_rejected(self, pipeline):
        with pytest.raises(UploadValidationError, match="Unsupported file type"):
            pipeline.validate(b"%PDF-1.7", "application/pdf", filename="doc.pdf")

    def test_missing_content_type_rejected(self, pipeline):
        with pytest.raises(UploadValidationError):
            pipeline.validate(b"data", None)

    def test_empty_file_rejected(self, pipeline):
        with pytest.raises(UploadValidationError, match="empty"):
            pipeline.validate(b"", "image/png")

    def test_category_from_mime(self, pipeline):
        assert pipeline.validate(b"x", "video/webm").category == "video"
        assert pipeline.validate(b"x", "image/png; charset=binary").category == "image"

    def test_allowlist_restricts_types(self, gateway, settings):
        settings.upload.allowed_mime_types = ["video/mp4"]
        pipeline = PromptPipeline(gateway, settings)
        with pytest.raises(UploadValidationError):
            pipeline.validate(b"x", "video/webm")


class TestAnalyze:
    @pytest.mark.asyncio
    async def test_ten_second_video_end_to_end(self, pipeline, gateway, history, ten_second_video):
        gateway.push(f"```json\n{analysis_json(3)}\n```")
        asset = pipeline.validate(ten_second_video, "video/x-msvideo", filename="clip.avi")

        outcome = await pipeline.analyze(asset, target_count=10)

        assert len(gateway.requests) == 1
        request = gateway.requests[0]
        assert len(request.frames) == 10
        assert [f.index for f in request.frames] == list(range(10))
        assert request.shape.name == "analysis"

        numbers = [s.scene_number for s in outcome.result.scenes]
        assert numbers == [1, 2, 3]
        assert json.loads(outcome.views.structured_json) == outcome.result.scenes[0].model_dump()
        assert len(outcome.views.super_structured["scenes"]) == 3

        assert len(history.items) == 1
        assert history.items[0].prompt == outcome.result.master_prompt
        assert history.items[0].thumbnail.startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_master_prompt_is_system_instruction(self, pipeline, gateway, ten_second_video):
        gateway.push(analysis_json(1))
        asset = pipeline.validate(ten_second_video, "video/x-msvideo")

        await pipeline.analyze(asset, master_prompt="You are a nature documentarian.", target_count=2)

        assert gateway.requests[0].instruction.startswith("You are a nature documentarian.")

    @pytest.mark.asyncio
    async def test_default_master_prompt_used(self, pipeline, gateway, ten_second_video):
        gateway.push(analysis_json(1))
        asset = pipeline.validate(ten_second_video, "video/x-msvideo")
        await pipeline.analyze(asset, target_count=2)
        assert gateway.requests[0].instruction.startswith(pipeline.default_master_prompt)

    @pytest.mark.asyncio
    async def test_normalization_failure_is_fatal(self, pipeline, gateway, history, ten_second_video):
        gateway.push('{"master_prompt": "only this"}')
        asset = pipeline.validate(ten_second_video, "video/x-msvideo")

        with pytest.raises(NormalizationError) as exc_info:
            await pipeline.analyze(asset, target_count=2)

        assert exc_info.value.raw == '{"master_prompt": "only this"}'
        assert history.items == []

    @pytest.mark.asyncio
    async def test_progress_events_in_order(self, pipeline, gateway, ten_second_video):
        gateway.push(analysis_json(1))
        asset = pipeline.validate(ten_second_video, "video/x-msvideo")
        progress = ProgressChannel()

        await pipeline.analyze(asset, target_count=2, progress=progress)
        progress.close()

        events = [event async for event in progress]
        assert [e.stage for e in events] == ["sampling", "analyzing", "projecting", "done"]
        percents = [e.percent for e in events]
        assert percents == sorted(percents)
        assert percents[-1] == 100

    @pytest.mark.asyncio
    async def test_history_failure_does_not_fail_run(self, gateway, settings, ten_second_video):
        class BrokenSink:
            async def record(self, item):
                raise RuntimeError("disk full")

        pipeline = PromptPipeline(gateway, settings, history=BrokenSink())
        gateway.push(analysis_json(1))
        asset = pipeline.validate(ten_second_video, "video/x-msvideo")

        outcome = await pipeline.analyze(asset, target_count=2)
        assert outcome.result.scenes


class TestRetry:
    @pytest.mark.asyncio
    async def test_unavailable_is_retried(self, pipeline, gateway, ten_second_video):
        gateway.push(BackendUnavailableError("503"), BackendUnavailableError("503"), analysis_json(1))
        asset = pipeline.validate(ten_second_video, "video/x-msvideo")

        outcome = await pipeline.analyze(asset, target_count=2)

        assert len(gateway.requests) == 3
        assert outcome.result.scenes

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, pipeline, gateway, ten_second_video):
        gateway.push(*[BackendUnavailableError("down") for _ in range(3)])
        asset = pipeline.validate(ten_second_video, "video/x-msvideo")

        with pytest.raises(BackendUnavailableError):
            await pipeline.analyze(asset, target_count=2)
        assert len(gateway.requests) == 3

    @pytest.mark.asyncio
    async def test_refusal_not_retried(self, pipeline, gateway):
        gateway.push(BackendRefusalError("blocked"))
        with pytest.raises(BackendRefusalError):
            await pipeline.refine("A prompt", "Make it better")
        assert len(gateway.requests) == 1


class TestStructureAndRefine:
    @pytest.mark.asyncio
    async def test_structure_pairs_text_with_scenes(self, pipeline, gateway):
        gateway.push(scenes_json(2))

        normalized = await pipeline.structure("Edited prompt text")

        assert normalized.ok
        assert normalized.value.master_prompt == "Edited prompt text"
        assert len(normalized.value.scenes) == 2
        request = gateway.requests[0]
        assert request.frames == ()
        assert request.shape.name == "scene_list"
        assert "Edited prompt text" in request.content

    @pytest.mark.asyncio
    async def test_structure_failure_returned_not_raised(self, pipeline, gateway):
        gateway.push("I cannot do that")
        normalized = await pipeline.structure("Edited prompt text")
        assert not normalized.ok
        assert normalized.placeholder()["details"] == "I cannot do that"

    @pytest.mark.asyncio
    async def test_run_prompt_records_history(self, pipeline, gateway, history):
        gateway.push(scenes_json(1))
        outcome = await pipeline.run_prompt("Template prompt")
        assert outcome.views.master_prompt == "Template prompt"
        assert history.items[0].thumbnail == ""

    @pytest.mark.asyncio
    async def test_refine_includes_negative_prompt(self, pipeline, gateway):
        gateway.push("  A sharper prompt.  ")

        refined = await pipeline.refine("A prompt", "Make it moody", negative_prompt="rain, umbrellas")

        assert refined == "A sharper prompt."
        request = gateway.requests[0]
        assert request.shape.kind == "text"
        assert "MUST NOT include" in request.content
        assert "rain, umbrellas" in request.content
        assert request.temperature == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_refine_blank_output_raises(self, pipeline, gateway):
        gateway.push("   ")
        with pytest.raises(NormalizationError):
            await pipeline.refine("A prompt", "Make it moody")


    @pytest.mark.asyncio
    async def test_history_left_to_caller_when_disabled(self, pipeline, gateway, history, ten_second_video):
        gateway.push(analysis_json(1), scenes_json(1))
        asset = pipeline.validate(ten_second_video, "video/x-msvideo")

        outcome = await pipeline.analyze(asset, target_count=2, record_history=False)
        await pipeline.run_prompt("Template prompt", record_history=False)
        assert history.items == []

        await pipeline.record(outcome)
        assert len(history.items) == 1
        assert history.items[0].thumbnail.startswith("data:image/png;base64,")
