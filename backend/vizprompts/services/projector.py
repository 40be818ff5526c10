"""Projection of a PromptResult into its exported views.

Pure and deterministic: the same PromptResult always yields byte-identical
views. Views are never stored on their own; callers re-run project()
whenever the underlying result changes.
"""

import json
from dataclasses import dataclass

from vizprompts.schemas.analysis import PromptResult


def _dumps(value) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


@dataclass(frozen=True)
class ProjectedViews:
    """Derived representations of one PromptResult.

    detailed_scenes holds the full scene list as plain dicts; the *_json
    attributes are the three copyable text blobs.
    """

    master_prompt: str
    detailed_scenes: tuple[dict, ...]
    structured_json: str
    detailed_json: str
    super_structured_json: str

    @property
    def super_structured(self) -> dict:
        return json.loads(self.super_structured_json)

    def export(self) -> dict[str, str]:
        """Named text blobs for presentation layers and file export."""
        return {
            "masterPrompt": self.master_prompt,
            "structured": self.structured_json,
            "detailed": self.detailed_json,
            "superStructured": self.super_structured_json,
        }


def build_super_structured(result: PromptResult) -> dict:
    """Merge master prompt and scenes keyed by scene number.

    Duplicate scene numbers resolve last-write-wins: a later scene with the
    same number replaces the earlier one, keeping the key's first position.
    """
    scenes: dict[str, dict] = {}
    for scene in result.scenes:
        data = scene.model_dump()
        number = data.pop("scene_number")
        scenes[f"scene_{number}"] = data
    return {"master_prompt": result.master_prompt, "scenes": scenes}


def project(result: PromptResult) -> ProjectedViews:
    """Derive the structured, detailed and super-structured views."""
    detailed = tuple(scene.model_dump() for scene in result.scenes)
    first = detailed[0] if detailed else {}
    return ProjectedViews(
        master_prompt=result.master_prompt,
        detailed_scenes=detailed,
        structured_json=_dumps(first),
        detailed_json=_dumps(list(detailed)),
        super_structured_json=_dumps(build_super_structured(result)),
    )
