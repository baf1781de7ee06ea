import json

import pytest

from orchestration.workflow_manager import PipelineStore
from serviceforge.api_models import ServiceDetails
from serviceforge.errors import UpstreamError, ValidationError

LIST_PATH = "/api/v1/mini-services"


@pytest.fixture
def store(client):
    return PipelineStore(client)


@pytest.fixture
def details():
    return ServiceDetails(name="Podcast Summary", description="Transcribe then summarize")


# ----------------------------------------------------------------------
# Saving
# ----------------------------------------------------------------------

def test_save_posts_dense_chain_and_declared_types(store, backend, make_graph, details):
    backend.add("POST", LIST_PATH, json={"id": 42, "name": "Podcast Summary"})
    graph = make_graph("1", "3", "8").remove_step("s0")

    created = store.save_pipeline(graph, details)

    body = json.loads(backend.requests[0].content)
    assert body["name"] == "Podcast Summary"
    assert (body["input_type"], body["output_type"]) == ("sound", "text")
    assert body["workflow"]["nodes"] == {
        "0": {"agent_id": 3, "next": "1", "settings": {}, "agent_type": "transcribe"},
        "1": {"agent_id": 8, "next": None, "settings": {}, "agent_type": "custom_endpoint_llm"},
    }
    assert created == {"id": 42, "name": "Podcast Summary"}
    assert store.pipelines == [created]


def test_save_requires_a_name(store, backend, make_graph):
    with pytest.raises(ValidationError, match="name"):
        store.save_pipeline(make_graph("8"), ServiceDetails(name="  "))

    assert backend.requests == []


def test_save_requires_steps(store, backend, empty_graph, details):
    with pytest.raises(ValidationError, match="at least one agent"):
        store.save_pipeline(empty_graph, details)

    assert backend.requests == []


def test_save_rejects_incompatible_reordered_chain(store, backend, make_graph, details):
    graph = make_graph("8", "2").move_down("s0")

    with pytest.raises(ValidationError, match="Image Maker"):
        store.save_pipeline(graph, details)

    assert backend.requests == []


# ----------------------------------------------------------------------
# Listing, loading and deleting
# ----------------------------------------------------------------------

def test_load_graph_parses_stored_service(store, backend, catalog):
    backend.add("GET", f"{LIST_PATH}/12", json={
        "id": 12, "name": "Narrated", "input_type": "text", "output_type": "sound",
        "workflow": {"nodes": {
            "0": {"agent_id": 1, "next": "1", "settings": {"temperature": 0.5}},
            "1": {"agent_id": 7, "next": None},
        }},
    })

    graph = store.load_graph(12, catalog)

    assert graph.agent_ids() == ["1", "7"]
    assert graph.get("0").settings == {"temperature": 0.5}


def test_delete_removes_service_from_list(store, backend):
    backend.add("GET", LIST_PATH, json=[{"id": 1}, {"id": 2}])
    backend.add("DELETE", f"{LIST_PATH}/1", status=204)
    store.list_pipelines()

    store.delete_pipeline(1)

    assert store.pipelines == [{"id": 2}]


def test_failed_delete_refreshes_list_from_backend(store, backend):
    backend.add("GET", LIST_PATH, json=[{"id": 1}, {"id": 2}])
    store.list_pipelines()
    backend.add("GET", LIST_PATH, json=[{"id": 1}, {"id": 2}, {"id": 3}])
    backend.add("DELETE", f"{LIST_PATH}/1", status=500, json={"detail": "database locked"})

    with pytest.raises(UpstreamError):
        store.delete_pipeline(1)

    assert store.pipelines == [{"id": 1}, {"id": 2}, {"id": 3}]


def test_failed_delete_restores_list_when_refresh_fails(store, backend):
    backend.add("GET", LIST_PATH, json=[{"id": 1}, {"id": 2}])
    store.list_pipelines()
    backend.add("GET", LIST_PATH, status=503, json={"detail": "maintenance"})
    backend.add("DELETE", f"{LIST_PATH}/1", status=500, json={"detail": "database locked"})

    with pytest.raises(UpstreamError):
        store.delete_pipeline(1)

    assert store.pipelines == [{"id": 1}, {"id": 2}]


# ----------------------------------------------------------------------
# Drafts
# ----------------------------------------------------------------------

def test_draft_storage_is_created_with_gitignore(store):
    assert store.drafts_dir.is_dir()
    assert (store.drafts_dir / ".gitignore").read_text() == "*\n!.gitignore\n"


def test_save_and_restore_draft(client, store, make_graph, details, catalog):
    graph = make_graph("3", "8").update_settings("s1", "style", "bullets")

    assert store.save_draft(graph, details)
    assert (store.drafts_dir / "Podcast_Summary.json").exists()
    assert not list(store.drafts_dir.glob("*.tmp"))

    restored_graph, restored_details = PipelineStore(client).restore_draft("Podcast Summary", catalog)

    assert restored_graph.agent_ids() == ["3", "8"]
    assert restored_graph.tail().settings == {"style": "bullets"}
    assert restored_details.name == "Podcast Summary"
    assert restored_details.description == "Transcribe then summarize"


def test_resaving_draft_keeps_created_at(store, make_graph, details):
    store.save_draft(make_graph("8"), details)
    first = json.loads((store.drafts_dir / "Podcast_Summary.json").read_text())

    store.save_draft(make_graph("8", "7"), details)
    second = json.loads((store.drafts_dir / "Podcast_Summary.json").read_text())

    assert second["created_at"] == first["created_at"]
    assert second["metadata"]["step_count"] == 2


def test_unnamed_empty_draft(store, empty_graph, catalog):
    assert store.save_draft(empty_graph, ServiceDetails())

    graph, details = store.restore_draft("Untitled Service", catalog)

    assert graph.is_empty()
    assert details.name == ""


def test_draft_names_are_sanitized(store, make_graph, details):
    store.save_draft(make_graph("8"), details, draft_name="My/Draft: v1")

    assert (store.drafts_dir / "My_Draft__v1.json").exists()
    assert store.draft_exists("My/Draft: v1")


def test_list_drafts(store, make_graph, details):
    store.save_draft(make_graph("8"), details, draft_name="One")
    store.save_draft(make_graph("8", "7"), details, draft_name="Two")

    drafts = {draft["name"]: draft for draft in store.list_drafts()}

    assert set(drafts) == {"One", "Two"}
    assert drafts["Two"]["step_count"] == 2


def test_missing_draft(store, catalog):
    assert store.load_draft("nothing here") is None
    assert store.restore_draft("nothing here", catalog) is None
    assert not store.delete_draft("nothing here")


def test_delete_draft(store, make_graph, details):
    store.save_draft(make_graph("8"), details)

    assert store.delete_draft("Podcast Summary")
    assert not store.draft_exists("Podcast Summary")
    assert store.load_draft("Podcast Summary") is None


def test_export_then_import_draft(store, make_graph, details, catalog, tmp_path):
    store.save_draft(make_graph("2", "6"), details)
    export_path = tmp_path / "exported.json"

    assert store.export_draft("Podcast Summary", str(export_path))
    assert store.import_draft(str(export_path), catalog, draft_name="Copy")

    graph, _ = store.restore_draft("Copy", catalog)
    assert graph.agent_ids() == ["2", "6"]


def test_import_rejects_missing_or_broken_files(store, catalog, tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")

    assert not store.import_draft(str(tmp_path / "absent.json"), catalog)
    assert not store.import_draft(str(broken), catalog)
