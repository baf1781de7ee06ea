import pytest

from orchestration.orchestration_parser import PipelineParser
from serviceforge.errors import IntegrityError, ValidationError


def service(nodes, **fields):
    record = {"id": 12, "name": "Podcast Summary", "workflow": {"nodes": nodes}}
    record.update(fields)
    return record


PODCAST = service(
    {
        "1": {"agent_id": 8, "next": None, "settings": {}, "agent_type": "custom_endpoint_llm"},
        "0": {"agent_id": 3, "next": "1", "settings": {"lang": "en"}, "agent_type": "transcribe"},
    },
    input_type="sound",
    output_type="text",
)


def test_parse_follows_next_pointers_not_key_order(catalog):
    graph = PipelineParser().parse_workflow(PODCAST, catalog)

    assert [step.id for step in graph.ordered_sequence()] == ["0", "1"]
    assert graph.agent_ids() == ["3", "8"]
    assert graph.get("0").settings == {"lang": "en"}
    assert (graph.input_type, graph.output_type) == ("sound", "text")


def test_stored_declared_types_take_precedence(catalog):
    record = service({"0": {"agent_id": 8}}, input_type="document", output_type="document")

    graph = PipelineParser().parse_workflow(record, catalog)

    assert (graph.input_type, graph.output_type) == ("document", "document")


def test_missing_declared_types_are_derived(catalog):
    graph = PipelineParser().parse_workflow(service({"0": {"agent_id": 2}}), catalog)

    assert (graph.input_type, graph.output_type) == ("text", "image")


def test_agent_missing_from_catalog_keeps_stored_type(catalog):
    record = service({"0": {"agent_id": 99, "agent_type": "transcribe"}})

    graph = PipelineParser().parse_workflow(record, catalog)

    assert graph.catalog.get("99").name == "Agent 99"
    assert graph.catalog.capability_for("99").agent_type == "transcribe"
    assert "99" not in catalog


def test_empty_workflow_parses_to_empty_graph(catalog):
    graph = PipelineParser().parse_workflow(service({}), catalog)

    assert graph.is_empty()
    assert graph.input_type == "select"


def test_corrupt_stored_chain_raises_integrity_error(catalog):
    record = service({
        "0": {"agent_id": 8, "next": "1"},
        "1": {"agent_id": 8, "next": "0"},
    })

    with pytest.raises(IntegrityError):
        PipelineParser().parse_workflow(record, catalog)


def test_cycle_is_rejected_even_with_stored_types(catalog):
    record = service(
        {
            "0": {"agent_id": 8, "next": "1"},
            "1": {"agent_id": 8, "next": "0"},
        },
        input_type="text",
        output_type="text",
    )

    with pytest.raises(IntegrityError):
        PipelineParser().parse_workflow(record, catalog)


def test_malformed_nodes_raise_validation_error(catalog):
    with pytest.raises(ValidationError):
        PipelineParser().parse_workflow(service({"0": {"next": None}}), catalog)
    with pytest.raises(ValidationError):
        PipelineParser().parse_workflow(service(["not", "a", "mapping"]), catalog)


def test_validate_workflow_accepts_well_formed_record(catalog):
    assert PipelineParser().validate_workflow(PODCAST, catalog) == (True, [])


def test_validate_workflow_reports_problems(catalog):
    parser = PipelineParser()

    valid, errors = parser.validate_workflow(service({
        "0": {"agent_id": 8, "next": "5"},
        "1": {"agent_id": 77, "next": "1"},
    }), catalog)

    assert not valid
    assert "Node 0 points to missing node 5" in errors
    assert "Node 1 points to itself" in errors
    assert "Node 1 uses unknown agent 77" in errors


def test_validate_workflow_reports_empty_and_unordered(catalog):
    parser = PipelineParser()

    assert parser.validate_workflow(service({})) == (False, ["Workflow has no nodes"])

    valid, errors = parser.validate_workflow(service({
        "0": {"agent_id": 8, "next": "1"},
        "1": {"agent_id": 8, "next": "0"},
    }), catalog)
    assert not valid
    assert errors[0].startswith("Could not determine execution order")
