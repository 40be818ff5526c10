"""Prompt refinement: rewrite a master prompt under a user instruction.

Text in, text out. The result becomes the new draft master prompt, which
in a session triggers the debounced restructuring.
"""

from typing import Literal, Optional

from vizprompts.pipeline.analysis import build_system_instruction
from vizprompts.schemas.analysis import TEXT_SHAPE, AnalysisRequest

RefineMode = Literal["refine", "detail"]

REFINE_SYSTEM_SUFFIX = (
    "Your task is to rewrite text-to-video prompts on request. Respond with "
    "the rewritten prompt only: no preamble, no quotes, no markdown."
)

DETAIL_INSTRUCTION = (
    "Add significantly more detail to the following prompt. Expand on the "
    "visual elements, character actions, environment, and cinematic "
    "qualities. Make it more vivid and descriptive."
)

DEFAULT_REFINE_INSTRUCTION = "Slightly rephrase and improve the prompt for clarity and impact."


def build_refine_instruction(
    mode: RefineMode = "refine",
    tone: Optional[str] = None,
    style: Optional[str] = None,
    camera: Optional[str] = None,
    lighting: Optional[str] = None,
    extra: Optional[str] = None,
) -> str:
    """Compose a refinement instruction from the user's selections.

    "detail" mode ignores the selections and asks for a richer rewrite.
    "refine" mode lists every chosen adjustment; with nothing chosen it
    asks for a light rephrase.
    """
    if mode == "detail":
        return DETAIL_INSTRUCTION

    parts = []
    if tone:
        parts.append(f"Give it a {tone.strip()} tone.")
    if style:
        parts.append(f"Make the style {style.strip()}.")
    if camera:
        parts.append(f"Use {camera.strip()} camera work.")
    if lighting:
        parts.append(f"Incorporate {lighting.strip()} lighting.")
    if extra and extra.strip():
        parts.append(f"Specifically: {extra.strip()}.")

    if not parts:
        return DEFAULT_REFINE_INSTRUCTION
    return "Refine the following prompt. " + " ".join(parts)


def build_refine_content(
    current_prompt: str,
    instruction: str,
    negative_prompt: Optional[str] = None,
) -> str:
    content = (
        f"Based on the following instruction, refine the provided text-to-video prompt.\n\n"
        f"INSTRUCTION: \"{instruction.strip()}\"\n\n"
    )
    if negative_prompt and negative_prompt.strip():
        content += (
            f"The refined prompt MUST NOT include any of the following elements: "
            f"\"{negative_prompt.strip()}\"\n\n"
        )
    content += (
        f"ORIGINAL PROMPT:\n\"{current_prompt.strip()}\"\n\n"
        "Return only the refined prompt text."
    )
    return content


def build_refine_request(
    current_prompt: str,
    instruction: str,
    master_prompt: str,
    negative_prompt: Optional[str] = None,
    temperature: float = 0.7,
) -> AnalysisRequest:
    """Assemble the text-only refinement request."""
    return AnalysisRequest(
        instruction=build_system_instruction(master_prompt, REFINE_SYSTEM_SUFFIX),
        content=build_refine_content(current_prompt, instruction, negative_prompt),
        shape=TEXT_SHAPE,
        temperature=temperature,
        metadata={"stage": "refine"},
    )
