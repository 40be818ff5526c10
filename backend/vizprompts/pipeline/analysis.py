"""Primary media analysis: frames in, master prompt plus scene breakdown out.

Builds the single vision request that turns an ordered frame sequence into
a narrative master prompt and a per-scene filmmaking breakdown, and turns
its normalized output into a PromptResult. A normalization failure here is
fatal to the run: there is no earlier scene data to fall back to.
"""

import logging
from typing import Sequence

from vizprompts.config import DEFAULT_SCENE_FIELDS
from vizprompts.errors import EmptyMediaError
from vizprompts.schemas.analysis import AnalysisRequest, PromptResult, analysis_shape
from vizprompts.schemas.media import Frame
from vizprompts.services.normalizer import NormalizationResult

logger = logging.getLogger(__name__)


# Appended to the user's master prompt persona.
ANALYSIS_SYSTEM_SUFFIX = (
    "Your task is to perform a multi-step analysis and return a single, "
    "structured JSON object adhering to the provided schema. Do not output "
    "any conversational text or markdown."
)

# {field_list} and {frame_count} are filled at runtime.
ANALYSIS_TASK_PROMPT = """You are a world-class AI film director and cinematographer. Analyze the following sequence of {frame_count} frame(s), given in chronological order, and return a single raw JSON object.

VIDEO-TO-PROMPT FRAMEWORK:
Break the frames down into distinct scenes. For each scene add an object to the `scene_analysis` array with:
- `scene_number`: integer starting at 1, increasing in chronological order
{field_list}

Strive for professional, evocative detail. Example scene object:
{{
  "scene_number": 1,
  "description": "A high-speed, low-angle tracking shot of a race car tearing down a rain-soaked city street at night, tires throwing up sheets of spray while neon signage smears across the wet asphalt and pedestrians under bright umbrellas scatter to the curb.",
  "camera_details": "Large-format cinema camera, low-angle tracking shot on a stabilized rig",
  "lighting": "Neon city light diffused by rain, high contrast",
  "color_palette": "Saturated umbrellas against dark wet asphalt, magenta and cyan reflections",
  "textures_details": "Slick road surface, water spray, streaked headlights, glossy livery",
  "atmosphere": "High energy, urban chaos, cinematic speed",
  "sound_design": "Roaring engine, hissing tires, splashing water, distant shouts"
}}

After the `scene_analysis` array, add this key to the root of the JSON object:
- `master_prompt`: synthesize every scene description into one cohesive, comma-separated paragraph that narrates the whole video chronologically for a text-to-video model.

Your output must be a single JSON object conforming to the schema. Do not include any conversational text or markdown."""


def format_field_list(scene_fields: Sequence[str]) -> str:
    """Render the configured scene fields as prompt bullet lines."""
    return "\n".join(f"- `{name}`: hyper-detailed, non-empty text" for name in scene_fields)


def build_system_instruction(master_prompt: str, suffix: str) -> str:
    """Combine the user's persona with the task framing for one call."""
    return f"{master_prompt.strip()}\n\n{suffix}"


def build_analysis_request(
    frames: Sequence[Frame],
    master_prompt: str,
    scene_fields: Sequence[str] = DEFAULT_SCENE_FIELDS,
    temperature: float = 0.7,
) -> AnalysisRequest:
    """Assemble the vision request for a sampled frame sequence.

    Raises:
        EmptyMediaError: If no frames were provided.
    """
    if not frames:
        raise EmptyMediaError("No frames were provided for analysis.")

    fields = tuple(scene_fields)
    return AnalysisRequest(
        instruction=build_system_instruction(master_prompt, ANALYSIS_SYSTEM_SUFFIX),
        content=ANALYSIS_TASK_PROMPT.format(
            frame_count=len(frames),
            field_list=format_field_list(fields),
        ),
        frames=tuple(frames),
        shape=analysis_shape(fields),
        temperature=temperature,
        metadata={"stage": "analysis"},
    )


def to_prompt_result(normalized: NormalizationResult) -> PromptResult:
    """Convert normalized analysis output to a PromptResult.

    Raises:
        NormalizationError: If the output failed parsing or validation.
    """
    output = normalized.unwrap()
    result = PromptResult(
        master_prompt=output.master_prompt,
        scenes=tuple(output.scene_analysis),
    )
    logger.info(f"Analysis produced {len(result.scenes)} scene(s)")
    return result
