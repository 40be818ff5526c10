"""Per-user prompt session: the run-level state machine.

The session is the single place that decides what the user sees after a
stage fails: the error text, whether the run drops back to idle or whether
the last good views stay visible.

Every run (new asset, analysis, template) bumps a generation counter. Work
started under an older generation is discarded when it completes, so a
slow restructuring call from a previous run can never overwrite the
current run's views.

The uploaded asset is released as soon as it has been sampled. A failed
analysis keeps only the sampled frames, so a retry does not sample again.
"""

import logging
import uuid
from typing import Optional

from vizprompts.errors import VizPromptsError
from vizprompts.orchestrator.debounce import Debouncer
from vizprompts.orchestrator.pipeline import PromptPipeline, RunOutcome
from vizprompts.orchestrator.progress import ProgressChannel
from vizprompts.orchestrator.state import InvalidTransitionError, can_transition, is_editable
from vizprompts.pipeline.templates import get_template
from vizprompts.schemas.analysis import PromptResult
from vizprompts.schemas.media import Frame, MediaAsset, MediaInfo
from vizprompts.services.projector import ProjectedViews, project

logger = logging.getLogger(__name__)


class PromptSession:
    """State for one user working on one asset or template at a time."""

    def __init__(
        self,
        pipeline: PromptPipeline,
        master_prompt: Optional[str] = None,
        debounce_seconds: Optional[float] = None,
        session_id: Optional[str] = None,
    ):
        self.id = session_id or uuid.uuid4().hex
        self.pipeline = pipeline
        self.master_prompt = master_prompt or pipeline.default_master_prompt

        self.status = "idle"
        self.generation = 0
        self.asset: Optional[MediaAsset] = None
        self.media: Optional[MediaInfo] = None
        self._frames: Optional[list[Frame]] = None
        self.source = ""
        self.result: Optional[PromptResult] = None
        self.views: Optional[ProjectedViews] = None
        self.draft = ""
        self.updating = False
        self.error: Optional[str] = None
        self.error_code: Optional[str] = None
        self.diagnostic: Optional[dict] = None
        self.progress = ProgressChannel()

        if debounce_seconds is None:
            debounce_seconds = pipeline.settings.pipeline.restructure_debounce_seconds
        self._debouncer = Debouncer(debounce_seconds, self._restructure)

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _transition(self, target: str) -> None:
        if not can_transition(self.status, target):
            raise InvalidTransitionError(f"Cannot move session from {self.status} to {target}")
        logger.debug(f"Session {self.id}: {self.status} -> {target}")
        self.status = target

    def _new_generation(self) -> int:
        self._debouncer.cancel()
        self.updating = False
        self.generation += 1
        return self.generation

    def _clear_output(self) -> None:
        self.result = None
        self.views = None
        self.draft = ""
        self.error = None
        self.error_code = None
        self.diagnostic = None

    def _fail(self, error: Exception) -> None:
        """Record a run failure and return to idle."""
        self._transition("failed")
        if isinstance(error, VizPromptsError):
            self.error = error.message
            self.error_code = error.error_code
        else:
            self.error = "An unknown error occurred."
            self.error_code = "internal_error"
        logger.warning(f"Session {self.id}: run failed ({self.error_code}): {self.error}")
        self._transition("idle")

    def _reject(self, error: VizPromptsError) -> None:
        """Drop an asset that failed validation or inspection; back to idle."""
        self._drop_media()
        self._clear_output()
        self.status = "idle"
        self.error = error.message
        self.error_code = error.error_code

    def _drop_media(self) -> None:
        self.asset = None
        self.media = None
        self._frames = None

    def _is_stale(self, generation: int, what: str) -> bool:
        if generation == self.generation:
            return False
        logger.info(f"Session {self.id}: discarding {what} from stale run {generation}")
        return True

    def _succeed(self, outcome: RunOutcome) -> None:
        self._transition("success")
        self.result = outcome.result
        self.views = outcome.views
        self.draft = outcome.result.master_prompt
        self._frames = None

    @property
    def pending_restructure(self) -> bool:
        return self._debouncer.pending

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def select_asset(self, data: bytes, mime_type: Optional[str], filename: str = "upload") -> MediaAsset:
        """Accept a new upload and move to previewing.

        Any pending restructuring is cancelled and in-flight work from the
        previous run becomes stale.

        Raises:
            UploadValidationError: The upload was rejected; the session is
                left idle with the error recorded.
        """
        self._new_generation()
        self._drop_media()
        self._clear_output()
        try:
            asset = self.pipeline.validate(data, mime_type, filename=filename)
        except VizPromptsError as e:
            self._reject(e)
            raise

        self._transition("previewing")
        self.asset = asset
        self.source = filename
        return asset

    async def inspect_asset(self) -> MediaInfo:
        """Read resolution and duration of the selected asset for the preview.

        Raises:
            InvalidTransitionError: No asset is being previewed.
            UnsupportedMediaError: The asset cannot be decoded; the session
                is left idle with the error recorded.
        """
        if self.asset is None or self.status != "previewing":
            raise InvalidTransitionError(f"No asset to inspect while {self.status}")

        generation = self.generation
        try:
            info = await self.pipeline.inspect(self.asset)
        except VizPromptsError as e:
            if generation == self.generation:
                self._reject(e)
            raise

        if generation == self.generation:
            self.media = info
        return info

    async def start_analysis(self, target_count: Optional[int] = None) -> Optional[RunOutcome]:
        """Run sampling and analysis for the selected asset.

        The asset is dropped once sampled. After a backend or
        normalization failure the sampled frames are kept and a retry
        reuses them (target_count is then ignored); after a sampling
        failure a new upload is required.

        Returns the outcome on success, None on failure or when the run
        was superseded before it finished.
        """
        if self.asset is None and self._frames is None:
            raise InvalidTransitionError("No asset selected")

        self._transition("processing")
        generation = self._new_generation()
        self._clear_output()
        self.progress = progress = ProgressChannel()

        try:
            frames = self._frames
            if frames is None:
                asset, self.asset = self.asset, None
                frames = await self.pipeline.sample(asset, target_count, progress=progress)
                if self._is_stale(generation, "sampling"):
                    return None
                self._frames = frames

            outcome = await self.pipeline.analyze_frames(
                frames,
                master_prompt=self.master_prompt,
                progress=progress,
                record_history=False,
            )
        except Exception as e:
            if self._is_stale(generation, "failure"):
                return None
            self._fail(e)
            if not isinstance(e, VizPromptsError):
                raise
            return None
        finally:
            progress.close()

        if self._is_stale(generation, "result"):
            return None

        self._succeed(outcome)
        await self.pipeline.record(outcome)
        return outcome

    async def load_template(self, template_id: str) -> Optional[RunOutcome]:
        """Load a library template and structure it with no media.

        Raises:
            KeyError: Unknown template id.
        """
        template = get_template(template_id)
        return await self.load_prompt(template.prompt, source=template.title)

    async def load_prompt(self, prompt_text: str, source: str = "Template") -> Optional[RunOutcome]:
        self._transition("processing")
        generation = self._new_generation()
        self._drop_media()
        self._clear_output()
        self.source = source
        self.progress = progress = ProgressChannel()

        try:
            outcome = await self.pipeline.run_prompt(
                prompt_text,
                master_prompt=self.master_prompt,
                progress=progress,
                record_history=False,
            )
        except Exception as e:
            if self._is_stale(generation, "failure"):
                return None
            self._fail(e)
            if not isinstance(e, VizPromptsError):
                raise
            return None
        finally:
            progress.close()

        if self._is_stale(generation, "result"):
            return None

        self._succeed(outcome)
        await self.pipeline.record(outcome)
        return outcome

    def cancel(self) -> None:
        """Leave the current run: drop pending edits and ignore in-flight work."""
        self._new_generation()
        self._drop_media()
        self.source = ""
        self._clear_output()
        self.progress.close()
        self.status = "idle"

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def edit_master_prompt(self, text: str) -> bool:
        """Replace the draft master prompt text.

        Outside of success the edit is ignored. When the text differs from
        the prompt the current views were built from, a restructuring call
        is scheduled after the quiet period; each further edit restarts the
        timer.

        Returns:
            True if a restructuring call is pending after this edit.
        """
        if not is_editable(self.status) or self.result is None:
            return False

        self.draft = text
        if text == self.result.master_prompt:
            self._debouncer.cancel()
            self.updating = False
            return False

        self.updating = True
        self._debouncer.schedule((text, self.generation))
        return True

    async def _restructure(self, payload: tuple[str, int]) -> None:
        text, generation = payload
        if generation != self.generation:
            return

        try:
            normalized = await self.pipeline.structure(text, self.master_prompt)
        except Exception as e:
            # Previous views stay visible alongside the error
            if generation == self.generation:
                self.updating = False
                if isinstance(e, VizPromptsError):
                    self.error = f"Failed to update analysis: {e.message}"
                    self.error_code = e.error_code
                else:
                    self.error = "Failed to update analysis: An unknown error occurred."
                    self.error_code = "internal_error"
            if not isinstance(e, VizPromptsError):
                raise
            return

        if generation != self.generation or not is_editable(self.status):
            logger.info(f"Session {self.id}: discarding restructure from stale run {generation}")
            return

        self.updating = False
        if not normalized.ok:
            self.error = f"Failed to update analysis: {normalized.error.message}"
            self.error_code = normalized.error.error_code
            self.diagnostic = normalized.placeholder()
            return

        self.result = normalized.value
        self.views = project(self.result)
        self.error = None
        self.error_code = None
        self.diagnostic = None
        logger.info(f"Session {self.id}: restructured into {len(self.result.scenes)} scene(s)")

    async def refine(
        self,
        instruction: str,
        negative_prompt: Optional[str] = None,
    ) -> Optional[str]:
        """Rewrite the draft master prompt; the rewrite is then restructured.

        Returns the refined text, or None if the call failed or went stale.
        """
        if not is_editable(self.status):
            raise InvalidTransitionError(f"Cannot refine while {self.status}")

        generation = self.generation
        try:
            text = await self.pipeline.refine(
                self.draft,
                instruction,
                negative_prompt=negative_prompt,
                master_prompt=self.master_prompt,
            )
        except VizPromptsError as e:
            if generation == self.generation:
                self.error = f"Failed to refine prompt: {e.message}"
                self.error_code = e.error_code
            return None

        if generation != self.generation:
            return None

        self.edit_master_prompt(text)
        return text

    async def wait_for_restructure(self) -> None:
        """Wait until no restructuring timer or call is pending."""
        await self._debouncer.wait()

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        """Plain-dict view of the session for the API and CLI."""
        progress = self.progress.latest
        return {
            "id": self.id,
            "status": self.status,
            "updating": self.updating,
            "generation": self.generation,
            "source": self.source,
            "draft": self.draft,
            "progress": (
                {"stage": progress.stage, "percent": progress.percent, "message": progress.message}
                if progress
                else None
            ),
            "views": self.views.export() if self.views else None,
            "error": self.error,
            "error_code": self.error_code,
            "diagnostic": self.diagnostic,
            "media": self.media.model_dump() if self.media else None,
        }
