"""
Errors - failure taxonomy for pipeline editing and execution

ValidationError   local precondition failed, nothing was sent
IntegrityError    the step chain is corrupt (a defect, not a user error)
UpstreamError     the backend answered with a non-success status
NetworkError      transport failure; RequestTimeout when the bound was hit
"""

import json
from typing import Any, Optional


# Phases a run can fail in
PHASE_UPLOAD = "upload"
PHASE_PROCESSING = "processing"
PHASE_EXECUTION = "execution"


class ServiceForgeError(Exception):
    """Base class for all ServiceForge errors"""

    def user_message(self) -> str:
        return str(self)


class ValidationError(ServiceForgeError):
    """Missing or invalid input, file or credential binding"""
    pass


class RunInProgressError(ValidationError):
    """A run is already in flight for this pipeline"""
    pass


class IntegrityError(ServiceForgeError):
    """Workflow chain corruption (ambiguous head, cycle, dangling pointer)"""
    pass


class UpstreamError(ServiceForgeError):
    """Non-success response from the backend"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        detail: Any = None,
        phase: str = PHASE_EXECUTION,
        context: str = "service execution"
    ):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail
        self.phase = phase
        self.context = context

    def user_message(self) -> str:
        return parse_api_error(self.detail if self.detail is not None else str(self), self.context)


class NetworkError(ServiceForgeError):
    """Transport failure talking to the backend"""

    def __init__(self, message: str, phase: str = PHASE_EXECUTION, context: str = "service execution"):
        super().__init__(message)
        self.phase = phase
        self.context = context

    def user_message(self) -> str:
        if self.phase == PHASE_UPLOAD:
            return "Upload failed: could not send the file to the server. Please check your connection and try again."
        if self.phase == PHASE_PROCESSING:
            return "Processing failed: the server could not be reached after the file was uploaded. Please try again."
        return f"{self.context.capitalize()} failed: could not reach the server. Please try again."


class RequestTimeout(NetworkError):
    """A backend call exceeded the configured timeout"""

    def user_message(self) -> str:
        if self.phase == PHASE_UPLOAD:
            return "Upload timed out: the file took too long to upload. Try a smaller file or a faster connection."
        if self.phase == PHASE_PROCESSING:
            return "Processing timed out: the file was uploaded but processing took too long. Please try again later."
        return f"{self.context.capitalize()} timed out: the request took too long to complete."


def extract_error_message(error: Any) -> str:
    """Pull a message out of the various error payload shapes the backend returns"""
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        if error.get("detail"):
            detail = error["detail"]
            return detail if isinstance(detail, str) else json.dumps(detail)
        if error.get("message"):
            return str(error["message"])
        if error.get("error"):
            inner = error["error"]
            return inner if isinstance(inner, str) else json.dumps(inner)
        if error.get("type"):
            message = str(error["type"])
            if error.get("message"):
                message += f": {error['message']}"
            return message
        return json.dumps(error)
    return str(error)


API_KEY_ERROR_PATTERNS = (
    "api key", "invalid key", "authentication failed", "unauthorized",
    "access denied", "invalid token", "invalid credentials", "quota exceeded",
    "billing", "payment required", "subscription", "forbidden", "key not found",
    "invalid api", "api_key", "permission denied", "rate limit", "usage limit",
    "insufficient", "expired", "revoked", "not authorized",
)


def parse_api_error(error: Any, context: str = "operation") -> str:
    """
    Turn a backend error payload into a user-facing message.

    Args:
        error: Error payload (string, dict with detail/message/error/type)
        context: What was being done, e.g. "file upload", "image generation"

    Returns:
        Human readable message
    """
    message = extract_error_message(error)
    normalized = message.lower()

    if "too large" in normalized:
        return f"{context.capitalize()} failed: the file is larger than the server accepts."

    if any(pattern in normalized for pattern in API_KEY_ERROR_PATTERNS):
        if "quota exceeded" in normalized or "usage limit" in normalized or "billing" in normalized:
            return "API Key Quota Exceeded: Your API key has reached its usage limit. Please check your billing."
        if "rate limit" in normalized:
            return "Rate Limit Exceeded: You're making requests too quickly. Please wait a moment and try again."
        if "payment required" in normalized or "subscription" in normalized or "insufficient" in normalized:
            return "Payment Required: Your API subscription needs to be renewed or you have insufficient credits."
        if any(word in normalized for word in ("expired", "revoked")):
            return "API Key Expired: Your API key has expired or been revoked. Please update your configuration."
        if "permission denied" in normalized or "not authorized" in normalized:
            return "Model Access Denied: Your API key doesn't have access to the requested model."
        return "Invalid API Key: The API key you provided is invalid or has expired. Please verify your API keys."

    return f"{context.capitalize()} failed: {message}"
