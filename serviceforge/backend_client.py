"""
Backend Client - HTTP access to the mini-services backend
Agent catalog, API-key vault, pipeline persistence, upload and run endpoints
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from .config import Settings, get_settings
from .errors import (
    PHASE_EXECUTION,
    PHASE_UPLOAD,
    NetworkError,
    RequestTimeout,
    UpstreamError,
    extract_error_message,
)
from .logger_config import get_logger

logger = get_logger("serviceforge.backend_client")

# multipart file part: (filename, content, content type)
FilePart = Tuple[str, bytes, str]


class BackendClient:
    """
    Thin wrapper over httpx.Client.

    Every call is bounded by the configured timeout and never retried.
    Failures are raised as UpstreamError, NetworkError or RequestTimeout,
    tagged with the phase of the run they belong to.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Args:
            settings: Backend location, token and timeout (defaults to environment)
            transport: Optional httpx transport, used by tests
        """
        self.settings = settings or get_settings()
        headers = {}
        if self.settings.access_token:
            headers["Authorization"] = f"Bearer {self.settings.access_token}"
        self._client = httpx.Client(
            base_url=self.settings.backend_url,
            headers=headers,
            timeout=self.settings.request_timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "BackendClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        phase: str = PHASE_EXECUTION,
        context: str = "service execution",
        **kwargs: Any
    ) -> httpx.Response:
        params = dict(kwargs.pop("params", None) or {})
        params.setdefault("current_user_id", self.settings.user_id)

        try:
            response = self._client.request(method, path, params=params, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"{method} {path} timed out after {self.settings.request_timeout}s")
            raise RequestTimeout(f"{method} {path} timed out: {e}", phase=phase, context=context) from e
        except httpx.RequestError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise NetworkError(f"Failed to reach backend at {self.settings.backend_url}: {e}",
                               phase=phase, context=context) from e

        if response.is_success:
            return response

        try:
            detail = response.json()
        except ValueError:
            detail = {"detail": response.reason_phrase or response.text}
        message = extract_error_message(detail) or response.reason_phrase
        logger.warning(f"{method} {path} returned {response.status_code}: {message}")
        raise UpstreamError(
            f"{method} {path} returned {response.status_code}: {message}",
            status_code=response.status_code,
            detail=detail,
            phase=phase,
            context=context,
        )

    def _request_json(
        self,
        method: str,
        path: str,
        phase: str = PHASE_EXECUTION,
        context: str = "service execution",
        **kwargs: Any
    ) -> Any:
        """
        Send a request and decode its JSON body.

        Returns:
            Decoded body, None for 204 or an empty body

        Raises:
            UpstreamError: success status with a body that is not JSON
        """
        response = self._request(method, path, phase=phase, context=context, **kwargs)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"{method} {path} returned {response.status_code} with a non-JSON body")
            raise UpstreamError(
                f"{method} {path} returned {response.status_code} with a non-JSON body",
                status_code=response.status_code,
                detail={"detail": "Unexpected non-JSON response from the server"},
                phase=phase,
                context=context,
            ) from e

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def list_agents(self) -> List[Dict[str, Any]]:
        return self._request_json("GET", "/api/v1/agents/", context="agent catalog") or []

    def list_agent_types(self) -> List[Dict[str, Any]]:
        return self._request_json("GET", "/api/v1/agents/types", context="agent types") or []

    def list_api_keys(self) -> List[Dict[str, Any]]:
        return self._request_json("GET", "/api/v1/api-keys", context="API key listing") or []

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    def create_pipeline(self, payload: Mapping[str, Any]) -> Any:
        return self._request_json("POST", "/api/v1/mini-services", context="service creation",
                                  json=dict(payload))

    def list_pipelines(self) -> List[Dict[str, Any]]:
        return self._request_json("GET", "/api/v1/mini-services", context="service listing") or []

    def get_pipeline(self, pipeline_id: Any) -> Dict[str, Any]:
        return self._request_json("GET", f"/api/v1/mini-services/{pipeline_id}", context="service loading")

    def delete_pipeline(self, pipeline_id: Any) -> None:
        self._request("DELETE", f"/api/v1/mini-services/{pipeline_id}", context="service deletion")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def upload_file(self, file_part: FilePart, field_name: str = "file", context: str = "file upload") -> Any:
        return self._request_json(
            "POST", "/api/v1/mini-services/upload",
            phase=PHASE_UPLOAD, context=context,
            files={field_name: file_part},
        )

    def run_pipeline(
        self,
        pipeline_id: Any,
        body: Mapping[str, Any],
        phase: str = PHASE_EXECUTION,
        context: str = "service execution"
    ) -> Any:
        return self._request_json(
            "POST", f"/api/v1/mini-services/{pipeline_id}/run",
            phase=phase, context=context, json=dict(body),
        )

    def run_multipart(
        self,
        endpoint: str,
        data: Mapping[str, str],
        files: Mapping[str, FilePart],
        context: str = "service execution"
    ) -> Any:
        return self._request_json(
            "POST", endpoint,
            context=context, data=dict(data), files=dict(files),
        )
