"""Pydantic schemas for model analysis output and pipeline results.

SceneAnalysis is the per-scene record the model must return. The set of
descriptive fields is configurable (pipeline.scene_fields), so the scene
model actually used for validation is built by scene_model_for(); the
static SceneAnalysis class below covers the default field set and carries
field descriptions for the backend's constrained decoding.

Shapes bundle a validator with a plain-dict schema hint. The hint is sent
to the backend; the validator is what the normalizer trusts.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Annotated, Any, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializeAsAny,
    StrictInt,
    StrictStr,
    StringConstraints,
    TypeAdapter,
    create_model,
)

from vizprompts.config import DEFAULT_SCENE_FIELDS
from vizprompts.schemas.media import Frame

NonEmptyStr = Annotated[StrictStr, StringConstraints(strip_whitespace=True, min_length=1)]
SceneNumber = Annotated[StrictInt, Field(gt=0)]


class SceneBase(BaseModel):
    """Fields shared by every scene model regardless of configured field set."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    scene_number: SceneNumber = Field(
        description="Scene number starting from 1, in chronological order"
    )


class SceneAnalysis(SceneBase):
    """Scene breakdown following the filmmaking framework (default field set)."""

    description: NonEmptyStr = Field(
        description="Hyper-detailed narrative description of what happens in the scene"
    )
    camera_details: NonEmptyStr = Field(
        description="Camera body, lens, shot type and movement"
    )
    lighting: NonEmptyStr = Field(description="Light sources, quality and contrast")
    color_palette: NonEmptyStr = Field(description="Dominant colors and grading")
    textures_details: NonEmptyStr = Field(description="Surfaces, materials and fine detail")
    atmosphere: NonEmptyStr = Field(description="Mood and energy of the scene")
    sound_design: NonEmptyStr = Field(description="Diegetic sound, ambience and music cues")


@lru_cache(maxsize=16)
def scene_model_for(fields: tuple[str, ...] = DEFAULT_SCENE_FIELDS) -> type[SceneBase]:
    """Return the scene model for a configured field set.

    The default field set maps to the static SceneAnalysis class; any
    other set produces a dynamically created model with the same base.
    """
    if tuple(fields) == DEFAULT_SCENE_FIELDS:
        return SceneAnalysis
    definitions: dict[str, Any] = {name: (NonEmptyStr, ...) for name in fields}
    return create_model("SceneAnalysis", __base__=SceneBase, **definitions)


class PromptResult(BaseModel):
    """Normalized output of one analysis or restructuring call.

    Immutable; refine/restructure calls produce a new instance rather
    than mutating this one.
    """

    model_config = ConfigDict(frozen=True)

    master_prompt: str
    scenes: tuple[SerializeAsAny[SceneBase], ...] = ()


class HistoryItem(BaseModel):
    """One record handed to the history sink after a successful run."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    prompt: str
    scenes: list[dict]
    thumbnail: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Shapes
# ---------------------------------------------------------------------------

ShapeKind = Literal["json", "text"]


@dataclass(frozen=True, eq=False)
class Shape:
    """Expected output shape of one gateway call.

    kind="text" skips JSON parsing entirely (refine calls).
    """

    name: str
    kind: ShapeKind
    adapter: Optional[TypeAdapter] = None
    hint: Optional[dict] = None


def _scene_hint(fields: tuple[str, ...]) -> dict:
    properties: dict[str, dict] = {"scene_number": {"type": "integer"}}
    for name in fields:
        properties[name] = {"type": "string"}
    return {
        "type": "object",
        "properties": properties,
        "required": ["scene_number", *fields],
    }


@lru_cache(maxsize=16)
def analysis_shape(fields: tuple[str, ...] = DEFAULT_SCENE_FIELDS) -> Shape:
    """Shape of the primary analysis call: master prompt plus scene array."""
    scene_model = scene_model_for(fields)
    output_model = create_model(
        "AnalysisOutput",
        master_prompt=(NonEmptyStr, ...),
        scene_analysis=(Annotated[list[scene_model], Field(min_length=1)], ...),
    )
    hint = {
        "type": "object",
        "properties": {
            "master_prompt": {"type": "string"},
            "scene_analysis": {"type": "array", "items": _scene_hint(fields)},
        },
        "required": ["master_prompt", "scene_analysis"],
    }
    return Shape(name="analysis", kind="json", adapter=TypeAdapter(output_model), hint=hint)


@lru_cache(maxsize=16)
def scene_list_shape(fields: tuple[str, ...] = DEFAULT_SCENE_FIELDS) -> Shape:
    """Shape of a restructuring call: a non-empty array of scenes."""
    scene_model = scene_model_for(fields)
    adapter = TypeAdapter(Annotated[list[scene_model], Field(min_length=1)])
    hint = {"type": "array", "items": _scene_hint(fields)}
    return Shape(name="scene_list", kind="json", adapter=adapter, hint=hint)


TEXT_SHAPE = Shape(name="text", kind="text")


# ---------------------------------------------------------------------------
# Gateway request
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalysisRequest:
    """One structured call to the inference backend.

    instruction is the system-level directive (master prompt persona plus
    task framing); content is the user turn. frames are attached after the
    content in capture order.
    """

    instruction: str
    content: str
    frames: tuple[Frame, ...] = ()
    shape: Optional[Shape] = None
    temperature: Optional[float] = None
    metadata: dict = field(default_factory=dict)
