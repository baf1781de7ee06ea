"""
Output Display - pick how a run result should be presented
The payload itself is never parsed beyond locating the output value
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from serviceforge.errors import parse_api_error


class DisplayStrategy(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    DOCUMENT_ANSWER = "document_answer"


_DISPLAY_BY_OUTPUT_TYPE = {
    "text": DisplayStrategy.TEXT,
    "image": DisplayStrategy.IMAGE,
    "sound": DisplayStrategy.AUDIO,
    "audio": DisplayStrategy.AUDIO,
    "video": DisplayStrategy.VIDEO,
    "document": DisplayStrategy.DOCUMENT,
}

# Keys that mark a retrieval-augmented answer
_RAG_KEYS = ("source_documents", "sources", "answer", "rag_prompt")

_OUTPUT_KEYS = ("final_output", "output", "answer", "result", "response", "text", "content")

OUTPUT_ERROR_PATTERNS = (
    "error with openai",
    "error with gemini",
    "error with anthropic",
    "error code:",
    "api error",
    "authentication failed",
    "invalid api key",
    "quota exceeded",
    "rate limit",
    "image_generation_user_error",
    "image_generation_error",
    "generation_error",
    "api_key_error",
    "unauthorized",
    "forbidden",
    "bad request",
    "payment required",
)


@dataclass(frozen=True)
class OutputError:
    """Provider error text found inside a successful response"""
    error_type: str
    original: str

    def user_message(self, context: str = "operation") -> str:
        return parse_api_error({"type": self.error_type, "message": self.original}, context)


def is_document_answer(payload: Any) -> bool:
    return isinstance(payload, Mapping) and any(payload.get(key) for key in _RAG_KEYS)


def select_display(output_type: Optional[str], payload: Any = None) -> DisplayStrategy:
    """Display strategy for a service's declared output type"""
    if is_document_answer(payload):
        return DisplayStrategy.DOCUMENT_ANSWER
    return _DISPLAY_BY_OUTPUT_TYPE.get((output_type or "").strip().lower(), DisplayStrategy.TEXT)


def extract_output(payload: Any) -> Any:
    """
    Locate the output value of a run response.

    RAG answers prefer `answer`; everything else prefers `final_output`.
    A nested `results[0].output` is used as a last resort.
    """
    if not isinstance(payload, Mapping):
        return payload

    keys = _OUTPUT_KEYS
    if is_document_answer(payload):
        keys = ("answer", "response", "output", "final_output")
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value

    results = payload.get("results")
    if isinstance(results, list) and results and isinstance(results[0], Mapping):
        return results[0].get("output")
    return None


def detect_output_error(output: Any) -> Optional[OutputError]:
    """Return an OutputError if the output text is actually a provider error"""
    if not isinstance(output, str) or not output:
        return None
    lowered = output.lower()
    if not any(pattern in lowered for pattern in OUTPUT_ERROR_PATTERNS):
        return None

    if "image_generation_user_error" in lowered or "image_generation_error" in lowered:
        error_type = "image_generation_error"
    elif "quota exceeded" in lowered:
        error_type = "quota_exceeded"
    elif "rate limit" in lowered:
        error_type = "rate_limit"
    elif "invalid api key" in lowered or "authentication failed" in lowered:
        error_type = "invalid_api_key"
    elif "unauthorized" in lowered or "forbidden" in lowered:
        error_type = "unauthorized"
    else:
        error_type = "api_error"
    return OutputError(error_type=error_type, original=output)


def display_context(output_type: Optional[str], payload: Any = None) -> str:
    """Wording for error messages about this output"""
    strategy = select_display(output_type, payload)
    return {
        DisplayStrategy.DOCUMENT_ANSWER: "document analysis",
        DisplayStrategy.IMAGE: "image generation",
        DisplayStrategy.AUDIO: "audio generation",
        DisplayStrategy.TEXT: "text generation",
    }.get(strategy, "operation")
