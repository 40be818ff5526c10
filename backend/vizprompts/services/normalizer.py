"""Response normalization for unreliable model output.

Model text is trimmed, unwrapped from a markdown code fence when present,
parsed as JSON and validated against the expected Shape. Failures are
returned as values, never raised: the caller decides whether a failure is
fatal (primary analysis) or replaced by a diagnostic placeholder
(re-projection after an edit).
"""

import json
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from pydantic import ValidationError

from vizprompts.errors import NormalizationError
from vizprompts.schemas.analysis import SceneBase, Shape

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Leading ``` with optional language tag, body, trailing ```
_FENCE_RE = re.compile(r"^```[\w+.-]*[ \t]*\n?(.*?)\n?\s*```$", re.DOTALL)

PLACEHOLDER_ERROR = "AI returned invalid JSON."


@dataclass(frozen=True)
class NormalizationResult(Generic[T]):
    """Either a validated value or a NormalizationError, plus the raw text."""

    raw: str
    value: Optional[T] = None
    error: Optional[NormalizationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the carried NormalizationError."""
        if self.error is not None:
            raise self.error
        return self.value

    def placeholder(self) -> dict:
        """Diagnostic object shown in place of an unusable structured result."""
        return {"error": PLACEHOLDER_ERROR, "details": self.raw}


def strip_code_fence(text: str) -> str:
    """Trim text and remove a surrounding fenced code block if present."""
    text = text.strip()
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text


def _describe_validation_error(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors()[:5]:
        location = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
        problems.append(f"{location}: {err.get('msg', 'invalid')}")
    more = exc.error_count() - len(problems)
    if more > 0:
        problems.append(f"... and {more} more")
    return "; ".join(problems)


def _warn_on_duplicate_scenes(value: Any, shape: Shape) -> None:
    scenes = getattr(value, "scene_analysis", value)
    if not isinstance(scenes, list) or not scenes or not isinstance(scenes[0], SceneBase):
        return
    counts = Counter(scene.scene_number for scene in scenes)
    duplicates = sorted(n for n, c in counts.items() if c > 1)
    if duplicates:
        logger.warning(
            f"{shape.name}: duplicate scene_number values {duplicates}; "
            "later scenes take precedence in projected views"
        )


def normalize(raw: str, shape: Shape) -> NormalizationResult:
    """Normalize raw model text against an expected shape.

    Args:
        raw: Text exactly as returned by the gateway.
        shape: Expected output shape. Text shapes only require non-empty text.

    Returns:
        NormalizationResult holding the validated value on success or a
        NormalizationError (with the raw text) on failure.
    """
    raw = raw or ""

    if shape.kind == "text":
        text = raw.strip()
        if not text:
            return NormalizationResult(
                raw=raw,
                error=NormalizationError("The AI model returned an empty response.", raw=raw),
            )
        return NormalizationResult(raw=raw, value=text)

    body = strip_code_fence(raw)

    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as e:
        logger.warning(f"{shape.name}: model output is not valid JSON ({e.msg} at pos {e.pos})")
        return NormalizationResult(
            raw=raw,
            error=NormalizationError(
                f"The AI model returned invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})",
                raw=raw,
                details={"shape": shape.name},
            ),
        )

    try:
        value = shape.adapter.validate_python(parsed)
    except ValidationError as e:
        diagnostic = _describe_validation_error(e)
        logger.warning(f"{shape.name}: model output failed validation: {diagnostic}")
        return NormalizationResult(
            raw=raw,
            error=NormalizationError(
                f"The AI model returned an incomplete analysis: {diagnostic}",
                raw=raw,
                details={"shape": shape.name, "error_count": e.error_count()},
            ),
        )

    _warn_on_duplicate_scenes(value, shape)
    return NormalizationResult(raw=raw, value=value)
