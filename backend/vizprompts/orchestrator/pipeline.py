"""Pipeline orchestrator: sampler -> gateway -> normalizer -> projector.

Coordinates one run with:
- Upload validation before any stage starts
- Frame sampling off the event loop
- Bounded retry with backoff for BackendUnavailableError only
- Progress events published to an optional ProgressChannel
- Per-stage timing and logging
- One history record per successful run

Stages never swallow errors. Backend and sampling failures propagate as
typed exceptions; normalization failures come back as NormalizationResult
values from structure() so the session can decide between failing the run
and showing a placeholder.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from vizprompts.config import Settings
from vizprompts.errors import BackendUnavailableError
from vizprompts.orchestrator.progress import ProgressChannel
from vizprompts.pipeline.analysis import build_analysis_request, to_prompt_result
from vizprompts.pipeline.refinement import build_refine_request
from vizprompts.pipeline.structuring import build_structure_request, to_structured_result
from vizprompts.schemas.analysis import AnalysisRequest, HistoryItem, PromptResult
from vizprompts.schemas.media import Frame, MediaAsset, MediaInfo
from vizprompts.services.frame_sampler import FrameSampler
from vizprompts.services.history import HistorySink
from vizprompts.services.inference import InferenceGateway
from vizprompts.services.normalizer import NormalizationResult, normalize
from vizprompts.services.projector import ProjectedViews, project
from vizprompts.services.upload_validator import validate_upload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunOutcome:
    """Result of a successful analysis or template run."""

    result: PromptResult
    views: ProjectedViews
    frames: tuple[Frame, ...] = ()


class PromptPipeline:
    """Stateless run coordinator shared by sessions, the API and the CLI.

    The gateway is built once from configuration and passed in, so tests
    substitute a fake without touching module state.
    """

    def __init__(
        self,
        gateway: InferenceGateway,
        settings: Settings,
        sampler: Optional[FrameSampler] = None,
        history: Optional[HistorySink] = None,
    ):
        self.gateway = gateway
        self.settings = settings
        self.sampler = sampler or FrameSampler(frame_width=settings.pipeline.frame_width)
        self.history = history

    @property
    def default_master_prompt(self) -> str:
        return self.settings.pipeline.default_master_prompt

    @property
    def scene_fields(self) -> tuple[str, ...]:
        return tuple(self.settings.pipeline.scene_fields)

    @property
    def temperature(self) -> float:
        return self.settings.inference.temperature

    def validate(self, data: bytes, mime_type: Optional[str], filename: str = "upload") -> MediaAsset:
        """Upload boundary; raises UploadValidationError."""
        return validate_upload(data, mime_type, self.settings.upload, filename=filename)

    # ------------------------------------------------------------------
    # Gateway access
    # ------------------------------------------------------------------

    async def _infer(self, request: AnalysisRequest) -> str:
        cfg = self.settings.pipeline
        stage = request.metadata.get("stage", "request")
        retrying = AsyncRetrying(
            stop=stop_after_attempt(cfg.retry_max_attempts),
            wait=wait_exponential(multiplier=cfg.retry_base_delay, min=cfg.retry_base_delay, max=30),
            retry=retry_if_exception_type(BackendUnavailableError),
            reraise=True,
            before_sleep=lambda retry_state: logger.warning(
                f"{stage} retry {retry_state.attempt_number}/{cfg.retry_max_attempts}: "
                f"{retry_state.outcome.exception()}"
            ),
        )
        async for attempt in retrying:
            with attempt:
                return await self.gateway.infer(request)

    async def _run(self, request: AnalysisRequest) -> NormalizationResult:
        raw = await self._infer(request)
        return normalize(raw, request.shape)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def inspect(self, asset: MediaAsset) -> MediaInfo:
        """Preview metadata (resolution, duration) read off the event loop."""
        return await asyncio.to_thread(self.sampler.read_info, asset)

    async def sample(
        self,
        asset: MediaAsset,
        target_count: Optional[int] = None,
        progress: Optional[ProgressChannel] = None,
    ) -> list[Frame]:
        """Sampling stage; the asset is not needed once this returns.

        Raises:
            UnsupportedMediaError, EmptyMediaError: Sampling failed.
        """
        target_count = target_count or self.settings.pipeline.target_frame_count

        _publish(progress, "sampling", 10, "Extracting frames...")
        step_start = time.monotonic()
        frames = await asyncio.to_thread(self.sampler.sample, asset, target_count)
        logger.info(
            f"Sampled {len(frames)} frame(s) from {asset.filename!r} "
            f"in {time.monotonic() - step_start:.2f}s"
        )
        return frames

    async def analyze_frames(
        self,
        frames: Sequence[Frame],
        master_prompt: Optional[str] = None,
        progress: Optional[ProgressChannel] = None,
        record_history: bool = True,
    ) -> RunOutcome:
        """Run the single vision call over sampled frames and project the result.

        With record_history=False the caller decides whether the outcome is
        recorded (sessions record only runs that are still current).

        Raises:
            BackendUnavailableError, BackendRefusalError: Backend failed.
            NormalizationError: Output unusable; fatal for primary analysis.
        """
        master_prompt = master_prompt or self.default_master_prompt

        _publish(progress, "analyzing", 40, f"Analyzing {len(frames)} frame(s)...")
        step_start = time.monotonic()
        request = build_analysis_request(frames, master_prompt, self.scene_fields, self.temperature)
        result = to_prompt_result(await self._run(request))
        logger.info(f"Analysis step completed in {time.monotonic() - step_start:.2f}s")

        _publish(progress, "projecting", 90, "Building prompt views...")
        outcome = RunOutcome(result=result, views=project(result), frames=tuple(frames))
        if record_history:
            await self.record(outcome)

        _publish(progress, "done", 100, "Done")
        return outcome

    async def analyze(
        self,
        asset: MediaAsset,
        master_prompt: Optional[str] = None,
        target_count: Optional[int] = None,
        progress: Optional[ProgressChannel] = None,
        record_history: bool = True,
    ) -> RunOutcome:
        """Sample the asset, run the single vision call and project the result.

        Raises:
            UnsupportedMediaError, EmptyMediaError: Sampling failed.
            BackendUnavailableError, BackendRefusalError: Backend failed.
            NormalizationError: Output unusable; fatal for primary analysis.
        """
        run_start = time.monotonic()
        frames = await self.sample(asset, target_count, progress=progress)
        outcome = await self.analyze_frames(
            frames, master_prompt=master_prompt, progress=progress, record_history=record_history
        )
        logger.info(f"Run completed in {time.monotonic() - run_start:.2f}s")
        return outcome

    async def structure(self, prompt_text: str, master_prompt: Optional[str] = None) -> NormalizationResult:
        """Restructure prompt text into scenes.

        Normalization failures are returned, not raised. The successful
        value is a PromptResult pairing prompt_text with the new scenes.
        """
        request = build_structure_request(
            prompt_text,
            master_prompt or self.default_master_prompt,
            self.scene_fields,
            self.temperature,
        )
        normalized = await self._run(request)
        if not normalized.ok:
            return normalized
        return NormalizationResult(
            raw=normalized.raw,
            value=to_structured_result(prompt_text, normalized),
        )

    async def run_prompt(
        self,
        prompt_text: str,
        master_prompt: Optional[str] = None,
        progress: Optional[ProgressChannel] = None,
        record_history: bool = True,
    ) -> RunOutcome:
        """Structure a ready-made prompt (template run) with no media.

        Raises:
            NormalizationError: Output unusable; fatal like primary analysis.
        """
        _publish(progress, "structuring", 30, "Structuring prompt...")
        result = (await self.structure(prompt_text, master_prompt)).unwrap()

        _publish(progress, "projecting", 90, "Building prompt views...")
        outcome = RunOutcome(result=result, views=project(result))
        if record_history:
            await self.record(outcome)

        _publish(progress, "done", 100, "Done")
        return outcome

    async def refine(
        self,
        current_prompt: str,
        instruction: str,
        negative_prompt: Optional[str] = None,
        master_prompt: Optional[str] = None,
    ) -> str:
        """Rewrite a prompt under an instruction; returns the new prompt text.

        Raises:
            NormalizationError: The backend returned only whitespace.
        """
        request = build_refine_request(
            current_prompt,
            instruction,
            master_prompt or self.default_master_prompt,
            negative_prompt=negative_prompt,
            temperature=self.temperature,
        )
        return (await self._run(request)).unwrap()

    async def record(self, outcome: RunOutcome) -> None:
        """Write one history item for a successful run; failures are only logged."""
        if self.history is None:
            return
        item = HistoryItem(
            prompt=outcome.result.master_prompt,
            scenes=[scene.model_dump() for scene in outcome.result.scenes],
            thumbnail=outcome.frames[0].to_data_uri() if outcome.frames else "",
        )
        try:
            await self.history.record(item)
        except Exception as e:
            # History is best-effort; a failed write does not fail the run
            logger.warning(f"Failed to record history item {item.id}: {e}")


def _publish(progress: Optional[ProgressChannel], stage: str, percent: int, message: str) -> None:
    if progress is not None:
        progress.publish(stage, percent, message)
