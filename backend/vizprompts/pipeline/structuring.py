"""Restructuring: master prompt text in, scene breakdown out.

Used after the user edits the master prompt, when a template is loaded
and by the stateless structure endpoint. Text-only request; no frames.
"""

from typing import Sequence

from vizprompts.config import DEFAULT_SCENE_FIELDS
from vizprompts.pipeline.analysis import build_system_instruction, format_field_list
from vizprompts.schemas.analysis import AnalysisRequest, PromptResult, scene_list_shape
from vizprompts.services.normalizer import NormalizationResult

STRUCTURE_SYSTEM_SUFFIX = (
    "Your primary task is to convert a descriptive text prompt into a "
    "well-organized JSON array of scene objects. The JSON must adhere to the "
    "provided schema. Output only the raw JSON."
)

# {prompt_text} and {field_list} are filled at runtime.
STRUCTURE_TASK_PROMPT = """Based on the following text-to-video prompt, break it down into one or more scenes and convert it into a structured JSON array following a detailed filmmaking framework.
If the prompt describes a single continuous scene, create an array with just one scene object.
For each scene object provide:
- `scene_number`: integer starting at 1, increasing in chronological order
{field_list}

TEXT PROMPT:
"{prompt_text}\""""


def build_structure_request(
    prompt_text: str,
    master_prompt: str,
    scene_fields: Sequence[str] = DEFAULT_SCENE_FIELDS,
    temperature: float = 0.7,
) -> AnalysisRequest:
    """Assemble the text-only request that restructures a prompt into scenes."""
    fields = tuple(scene_fields)
    return AnalysisRequest(
        instruction=build_system_instruction(master_prompt, STRUCTURE_SYSTEM_SUFFIX),
        content=STRUCTURE_TASK_PROMPT.format(
            prompt_text=prompt_text.strip(),
            field_list=format_field_list(fields),
        ),
        shape=scene_list_shape(fields),
        temperature=temperature,
        metadata={"stage": "structure"},
    )


def to_structured_result(prompt_text: str, normalized: NormalizationResult) -> PromptResult:
    """Pair the (edited) prompt text with freshly structured scenes.

    Raises:
        NormalizationError: If the output failed parsing or validation.
    """
    scenes = normalized.unwrap()
    return PromptResult(master_prompt=prompt_text, scenes=tuple(scenes))
