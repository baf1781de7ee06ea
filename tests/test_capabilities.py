import json

from orchestration.capabilities import (
    CapabilityTable,
    DispatchContext,
    FileInput,
    Strategy,
    provider_for,
)
from serviceforge.api_models import AgentTypeInfo


def test_lookup_normalizes_agent_type():
    table = CapabilityTable()

    assert table.lookup(" Transcribe ").strategy == Strategy.TWO_PHASE_UPLOAD
    assert table.lookup("RAG").strategy == Strategy.QUERY_ONLY_INVOKE
    assert table.lookup("whisper").strategy == Strategy.DIRECT_MULTIPART_INVOKE
    assert table.lookup("gemini") is None
    assert "pdf_reader" in table


def test_requires_api_key_falls_back_to_credential_set():
    table = CapabilityTable()

    assert table.requires_api_key("gemini")
    assert table.requires_api_key("rag")
    assert table.requires_api_key("document_analyzer")
    assert not table.requires_api_key("transcribe")
    assert not table.requires_api_key("edge_tts")


def test_provider_aliases():
    assert provider_for("rag") == "gemini"
    assert provider_for("File_Output") == "gemini"
    assert provider_for("dalle") == "openai"
    assert provider_for("claude") == "claude"


def test_file_acceptance_and_size_limit():
    transcribe = CapabilityTable().lookup("transcribe")

    assert transcribe.accepts("meeting.MP3")
    assert not transcribe.accepts("notes.pdf")
    assert transcribe.max_file_size_bytes == 100 * 1024 * 1024
    assert transcribe.consumes_file


def test_dynamic_fields_skip_missing_values():
    whisper = CapabilityTable().lookup("whisper")

    without_file = whisper.build_dynamic_fields(DispatchContext(agent_id="5"))
    with_file = whisper.build_dynamic_fields(DispatchContext(
        agent_id="5",
        file=FileInput("talk.wav", b"RIFF"),
        api_keys={"5": "secret"},
        options={"include_timestamps": True},
    ))

    assert without_file == {"include_timestamps": False}
    assert with_file["filename"] == "talk.wav"
    assert json.loads(with_file["api_keys"]) == {"5": "secret"}
    assert with_file["include_timestamps"] is True


def test_rag_collection_id_uses_agent_id():
    rag = CapabilityTable().lookup("rag")

    assert rag.build_dynamic_fields(DispatchContext(agent_id="4")) == {"collection_id": "rag_collection_4"}


def test_direct_multipart_endpoint_template():
    assert CapabilityTable().lookup("whisper").endpoint_for("5") == "/api/v1/agents/5/transcribe"


def test_merge_agent_types_returns_extended_copy():
    base = CapabilityTable()
    infos = [
        AgentTypeInfo.model_validate({"type": "transcribe", "supportedFileTypes": [".MP3"], "maxFileSize": 50}),
        AgentTypeInfo.model_validate({"type": "ocr", "requiresUpload": True, "supportedFileTypes": [".png"],
                                      "api_key_required": "True"}),
        AgentTypeInfo.model_validate({"type": "voice_clone", "endpoint": "/api/v1/agents/{agent_id}/clone",
                                      "fileFieldName": "sample", "supportedFileTypes": [".wav"]}),
        AgentTypeInfo.model_validate({"type": "gemini", "api_key_required": "True"}),
    ]

    merged = base.merge_agent_types(infos)

    assert merged.lookup("transcribe").accepted_file_extensions == (".mp3",)
    assert merged.lookup("transcribe").max_file_size_mb == 50
    assert merged.lookup("transcribe").dynamic_field_builders
    assert merged.lookup("ocr").strategy == Strategy.TWO_PHASE_UPLOAD
    assert merged.lookup("ocr").requires_api_key
    assert merged.lookup("voice_clone").strategy == Strategy.DIRECT_MULTIPART_INVOKE
    assert merged.lookup("voice_clone").file_field_name == "sample"
    assert merged.lookup("gemini") is None
    assert "ocr" not in base


def test_catalog_resolves_capabilities_at_load(catalog):
    assert catalog.capability_for("3").strategy == Strategy.TWO_PHASE_UPLOAD
    assert catalog.capability_for(4).strategy == Strategy.QUERY_ONLY_INVOKE
    assert catalog.capability_for("1") is None
    assert catalog.requires_api_key("4")
    assert not catalog.requires_api_key("8")
