"""
Capability Table - agent type to execution strategy
Decides how a pipeline containing a given agent type has to be run
"""

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from serviceforge.api_models import CREDENTIAL_AGENT_TYPES, AgentTypeInfo


class Strategy(str, Enum):
    """Request protocols a run can use"""
    PLAIN_INVOKE = "plain_invoke"
    QUERY_ONLY_INVOKE = "query_only_invoke"
    TWO_PHASE_UPLOAD = "two_phase_upload"
    DIRECT_MULTIPART_INVOKE = "direct_multipart_invoke"


@dataclass(frozen=True)
class FileInput:
    """A user-selected file"""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"
    # full size when content holds only the first bytes of a larger upload
    declared_size: Optional[int] = None

    @property
    def size(self) -> int:
        if self.declared_size is not None:
            return self.declared_size
        return len(self.content)

    @property
    def extension(self) -> str:
        return Path(self.filename).suffix.lower()


@dataclass(frozen=True)
class DispatchContext:
    """What dynamic field builders may look at"""
    agent_id: str
    text: str = ""
    file: Optional[FileInput] = None
    api_keys: Mapping[str, str] = field(default_factory=dict)
    options: Mapping[str, Any] = field(default_factory=dict)


FieldBuilder = Callable[[DispatchContext], Any]


def include_timestamps(ctx: DispatchContext) -> bool:
    return bool(ctx.options.get("include_timestamps", False))


def original_filename(ctx: DispatchContext) -> Optional[str]:
    return ctx.file.filename if ctx.file else None


def forwarded_api_keys(ctx: DispatchContext) -> Optional[str]:
    return json.dumps(dict(ctx.api_keys)) if ctx.api_keys else None


def rag_collection_id(ctx: DispatchContext) -> str:
    return f"rag_collection_{ctx.agent_id}"


AUDIO_EXTENSIONS = (".mp3", ".wav", ".m4a", ".ogg", ".flac", ".webm", ".mp4")
DOCUMENT_EXTENSIONS = (".pdf", ".docx", ".txt", ".doc", ".rtf")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif")


@dataclass(frozen=True)
class Capability:
    """Execution descriptor for one agent type"""
    agent_type: str
    strategy: Strategy
    file_field_name: str = "file"
    accepted_file_extensions: Tuple[str, ...] = ()
    max_file_size_mb: float = 10
    requires_api_key: bool = False
    has_query_only_ui: bool = False
    endpoint: Optional[str] = None
    processing_context: str = "file processing"
    dynamic_field_builders: Tuple[Tuple[str, FieldBuilder], ...] = ()

    @property
    def consumes_file(self) -> bool:
        return self.strategy in (Strategy.TWO_PHASE_UPLOAD, Strategy.DIRECT_MULTIPART_INVOKE)

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)

    def accepts(self, filename: str) -> bool:
        if not self.accepted_file_extensions:
            return True
        return Path(filename).suffix.lower() in self.accepted_file_extensions

    def build_dynamic_fields(self, ctx: DispatchContext) -> Dict[str, Any]:
        """Evaluate the field builders; fields that come out as None are left out"""
        fields = {}
        for name, builder in self.dynamic_field_builders:
            value = builder(ctx)
            if value is not None:
                fields[name] = value
        return fields

    def endpoint_for(self, agent_id: str) -> str:
        template = self.endpoint or "/api/v1/agents/{agent_id}/run"
        return template.format(agent_id=agent_id)


DEFAULT_CAPABILITIES: Tuple[Capability, ...] = (
    Capability(
        agent_type="transcribe",
        strategy=Strategy.TWO_PHASE_UPLOAD,
        accepted_file_extensions=AUDIO_EXTENSIONS,
        max_file_size_mb=100,
        has_query_only_ui=False,
        processing_context="audio transcription",
        dynamic_field_builders=(("include_timestamps", include_timestamps),),
    ),
    Capability(
        agent_type="rag",
        strategy=Strategy.QUERY_ONLY_INVOKE,
        requires_api_key=True,
        has_query_only_ui=True,
        processing_context="document analysis",
        dynamic_field_builders=(("collection_id", rag_collection_id),),
    ),
    Capability(
        agent_type="document_analyzer",
        strategy=Strategy.TWO_PHASE_UPLOAD,
        accepted_file_extensions=DOCUMENT_EXTENSIONS,
        max_file_size_mb=10,
        requires_api_key=True,
        processing_context="document processing",
    ),
    Capability(
        agent_type="pdf_reader",
        strategy=Strategy.TWO_PHASE_UPLOAD,
        accepted_file_extensions=(".pdf",),
        max_file_size_mb=10,
        processing_context="document processing",
    ),
    Capability(
        agent_type="whisper",
        strategy=Strategy.DIRECT_MULTIPART_INVOKE,
        file_field_name="audio_file",
        accepted_file_extensions=AUDIO_EXTENSIONS,
        max_file_size_mb=25,
        endpoint="/api/v1/agents/{agent_id}/transcribe",
        processing_context="audio transcription",
        dynamic_field_builders=(
            ("filename", original_filename),
            ("api_keys", forwarded_api_keys),
            ("include_timestamps", include_timestamps),
        ),
    ),
)

# Which key provider serves which agent type
PROVIDER_ALIASES = {
    "rag": "gemini",
    "file_output": "gemini",
    "document_analyzer": "gemini",
    "dalle": "openai",
}


def normalize_agent_type(agent_type: Optional[str]) -> str:
    return (agent_type or "").strip().lower()


def provider_for(agent_type: str) -> str:
    """Key provider whose stored keys can serve this agent type"""
    normalized = normalize_agent_type(agent_type)
    return PROVIDER_ALIASES.get(normalized, normalized)


class CapabilityTable:
    """Static lookup from agent type to Capability"""

    def __init__(self, capabilities: Iterable[Capability] = DEFAULT_CAPABILITIES):
        self._entries: Dict[str, Capability] = {
            normalize_agent_type(cap.agent_type): cap for cap in capabilities
        }

    def lookup(self, agent_type: Optional[str]) -> Optional[Capability]:
        return self._entries.get(normalize_agent_type(agent_type))

    def __contains__(self, agent_type: str) -> bool:
        return normalize_agent_type(agent_type) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def agent_types(self) -> Tuple[str, ...]:
        return tuple(sorted(self._entries))

    def requires_api_key(self, agent_type: Optional[str]) -> bool:
        capability = self.lookup(agent_type)
        if capability is not None:
            return capability.requires_api_key
        return normalize_agent_type(agent_type) in CREDENTIAL_AGENT_TYPES

    def merge_agent_types(self, infos: Iterable[AgentTypeInfo]) -> "CapabilityTable":
        """
        Extend the table with descriptors served by the backend.

        Known entries keep their strategy and field builders and take the
        backend's file limits; unknown types that handle files get a
        two-phase upload (or direct multipart when an endpoint is given).
        """
        entries = dict(self._entries)
        for info in infos:
            key = normalize_agent_type(info.type)
            extensions = tuple(ext.lower() for ext in info.supported_file_types)
            existing = entries.get(key)
            if existing is not None:
                entries[key] = replace(
                    existing,
                    accepted_file_extensions=extensions or existing.accepted_file_extensions,
                    max_file_size_mb=info.max_file_size or existing.max_file_size_mb,
                    requires_api_key=info.api_key_required or existing.requires_api_key,
                )
                continue

            handles_files = info.requires_upload or bool(extensions)
            if not handles_files:
                continue
            strategy = Strategy.DIRECT_MULTIPART_INVOKE if info.endpoint and not info.requires_upload \
                else Strategy.TWO_PHASE_UPLOAD
            entries[key] = Capability(
                agent_type=key,
                strategy=strategy,
                file_field_name=info.file_field_name,
                accepted_file_extensions=extensions,
                max_file_size_mb=info.max_file_size,
                requires_api_key=info.api_key_required,
                has_query_only_ui=info.has_special_ui,
                endpoint=info.endpoint,
            )
        return CapabilityTable(entries.values())
