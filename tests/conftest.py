import os

# keep test runs from creating logs/ in the working directory
os.environ.setdefault("SERVICEFORGE_LOG_DIR", "")

import httpx
import pytest

from orchestration.workflow_executor import ExecutionDispatcher
from orchestration.workflow_graph import WorkflowGraph
from serviceforge.agent_catalog import AgentCatalog, ApiKeyCatalog
from serviceforge.backend_client import BackendClient
from serviceforge.config import Settings
from serviceforge.credentials import CredentialBinder


AGENT_RECORDS = [
    {"id": 1, "name": "Gemini Writer", "description": "Drafts long-form text", "input_type": "text",
     "output_type": "text", "agent_type": "gemini", "owner_id": 7, "is_favorited": True,
     "favorite_count": 5, "trending_score": 1.5, "created_at": "2025-01-10T09:00:00",
     "config": {"temperature": 0.2}},
    {"id": 2, "name": "Image Maker", "description": "Turns prompts into pictures", "input_type": "text",
     "output_type": "image", "agent_type": "dalle", "owner_id": 3, "favorite_count": 12,
     "trending_score": 4.0, "created_at": "2025-03-02T12:00:00"},
    {"id": 3, "name": "Transcriber", "description": "Audio to text", "input_type": "sound",
     "output_type": "text", "agent_type": "transcribe", "owner_id": 7, "favorite_count": 1,
     "trending_score": 9.0, "created_at": "2024-11-20T08:30:00"},
    {"id": 4, "name": "Doc QA", "description": "Answers questions about uploaded documents",
     "input_type": "text", "output_type": "text", "agent_type": "RAG", "owner_id": 3},
    {"id": 5, "name": "Whisper", "description": "Speech recognition", "input_type": "sound",
     "output_type": "text", "agent_type": "whisper", "owner_id": 3},
    {"id": 6, "name": "Captioner", "description": "Describes images", "input_type": "image",
     "output_type": "text", "agent_type": "custom_endpoint_llm", "owner_id": 3},
    {"id": 7, "name": "Narrator", "description": "Reads text aloud", "input_type": "text",
     "output_type": "sound", "agent_type": "edge_tts", "owner_id": 7},
    {"id": 8, "name": "Summarizer", "description": "Short summaries", "input_type": "text",
     "output_type": "text", "agent_type": "custom_endpoint_llm", "owner_id": 3},
]

API_KEY_RECORDS = [
    {"id": 11, "provider": "gemini", "name": "Main", "api_key": "g-secret"},
    {"id": 12, "provider": "openai", "name": "", "api_key": "o-secret"},
    {"id": 13, "provider": "Gemini", "name": "Backup", "api_key": "g-backup"},
    {"id": 14, "provider": "claude", "name": "No value"},
]


class FakeBackend:
    """Routes requests by (method, path) and records every request it sees"""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, status=200, json=None, handler=None):
        self.routes[(method, path)] = handler or (status, json)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"detail": "Not Found"})
        if callable(route):
            return route(request)
        status, body = route
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def paths(self):
        return [(r.method, r.url.path) for r in self.requests]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        backend_url="http://backend.test",
        access_token="token-123",
        user_id="7",
        request_timeout=5.0,
        drafts_dir=str(tmp_path / "drafts"),
        log_dir=None,
    )


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(settings, backend):
    with BackendClient(settings, transport=httpx.MockTransport(backend)) as backend_client:
        yield backend_client


@pytest.fixture
def seeded_backend(backend):
    """Backend serving the test agent catalog and stored keys"""
    backend.add("GET", "/api/v1/agents/types", json=[])
    backend.add("GET", "/api/v1/agents/", json=AGENT_RECORDS)
    backend.add("GET", "/api/v1/api-keys", json=API_KEY_RECORDS)
    return backend


@pytest.fixture
def catalog():
    return AgentCatalog.from_records(AGENT_RECORDS)


@pytest.fixture
def api_keys():
    return ApiKeyCatalog.from_records(API_KEY_RECORDS)


@pytest.fixture
def empty_graph(catalog):
    return WorkflowGraph(catalog)


@pytest.fixture
def binder(api_keys):
    return CredentialBinder(api_keys)


@pytest.fixture
def dispatcher(client):
    return ExecutionDispatcher(client)


def build_graph(catalog, *agent_ids):
    """Graph with one step per agent, step ids s0, s1, ..."""
    graph = WorkflowGraph(catalog)
    for index, agent_id in enumerate(agent_ids):
        graph = graph.add_step(agent_id, step_id=f"s{index}")
    return graph


@pytest.fixture
def make_graph(catalog):
    return lambda *agent_ids: build_graph(catalog, *agent_ids)
