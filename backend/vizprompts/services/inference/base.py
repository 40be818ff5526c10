"""Abstract base class for inference gateways.

A gateway wraps exactly one external "generate content" call. It attaches
the instruction text as the system directive, enumerates frames as ordered
image attachments and forwards the shape hint when the backend supports
constrained decoding. It never retries and never parses the output: the
returned text goes to the response normalizer untouched.
"""

from abc import ABC, abstractmethod

from vizprompts.schemas.analysis import AnalysisRequest


class InferenceGateway(ABC):
    """Abstract base class for inference backends.

    Implementations raise BackendUnavailableError for transport failures,
    timeouts and non-2xx responses, and BackendRefusalError when the
    backend answered without usable text.
    """

    model_id: str

    @abstractmethod
    async def infer(self, request: AnalysisRequest) -> str:
        """Send one request to the backend and return its raw text output.

        Args:
            request: Instruction, user content, ordered frames and optional shape.

        Returns:
            Raw model text (not validated; may be fenced or malformed JSON).
        """
        ...

    async def aclose(self) -> None:
        """Release transport resources held by the gateway."""
        return None
