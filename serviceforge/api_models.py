"""
API Models - Pydantic models for backend records and request/response bodies
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# Agent types whose runs need a provider API key
CREDENTIAL_AGENT_TYPES = frozenset({
    "gemini",
    "openai",
    "claude",
    "dalle",
    "rag",
    "file_output",
    "document_analyzer",
})

MEDIA_TYPES = ("text", "image", "sound", "video", "document")

# config values offered as a model picker
MODEL_CHOICES = ("gpt-4", "gpt-3.5-turbo", "claude-3")


class AgentSetting(BaseModel):
    """Editable step setting derived from an agent's config"""
    name: str
    label: str
    type: Literal["select", "range", "textarea"]
    options: List[str] = Field(default_factory=list)
    min: float = 0
    max: float = 1
    step: float = 0.1

    def default_value(self) -> Any:
        if self.type == "select":
            return self.options[0] if self.options else ""
        if self.type == "range":
            return (self.min + self.max) / 2
        return ""


def settings_schema(config: Dict[str, Any], system_instruction: str = "") -> List[AgentSetting]:
    """
    Derive the editable settings of an agent from its config.

    Args:
        config: Agent config as stored by the backend
        system_instruction: Agent system instruction, adds a free-text setting when set

    Returns:
        Settings in config order. Values that map to no editor are skipped.
    """
    schema = []
    for key, value in config.items():
        if isinstance(value, str) and value in MODEL_CHOICES:
            schema.append(AgentSetting(name=key, label=key.capitalize(), type="select",
                                       options=list(MODEL_CHOICES)))
        elif key == "temperature" and isinstance(value, (int, float)) and not isinstance(value, bool):
            schema.append(AgentSetting(name=key, label="Temperature", type="range"))
        elif isinstance(value, str) and len(value) > 20:
            schema.append(AgentSetting(name=key, label=key.capitalize(), type="textarea"))
    if system_instruction:
        schema.append(AgentSetting(name="systemInstruction", label="System Instruction", type="textarea"))
    return schema


class Agent(BaseModel):
    """Catalog entry for one agent"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique agent id")
    name: str = Field(..., description="Display name")
    description: str = ""
    input_type: str = Field("text", description="text, image, sound, video or document")
    output_type: str = Field("text", description="text, image, sound, video or document")
    agent_type: str = Field("", description="Capability tag, e.g. gemini, rag, transcribe")
    requires_api_key: bool = False
    owner_id: str = ""
    is_public: bool = False
    is_favorited: bool = False
    favorite_count: int = 0
    trending_score: float = 0.0
    created_at: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)
    system_instruction: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_record(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("id") is not None:
            data["id"] = str(data["id"])
        if data.get("owner_id") is not None:
            data["owner_id"] = str(data["owner_id"])
        data["input_type"] = data.get("input_type") or "text"
        data["output_type"] = data.get("output_type") or "text"
        agent_type = (data.get("agent_type") or "").strip().lower()
        data["agent_type"] = agent_type
        # derived, never taken from the wire
        data["requires_api_key"] = agent_type in CREDENTIAL_AGENT_TYPES
        data["created_at"] = data.get("created_at") or data.get("date_created") or ""
        data["config"] = data.get("config") or {}
        data["system_instruction"] = data.get("system_instruction") or ""
        return data

    def settings_schema(self) -> List[AgentSetting]:
        return settings_schema(self.config, self.system_instruction)

    def default_settings(self) -> Dict[str, Any]:
        """Initial settings of a new step running this agent"""
        return {setting.name: setting.default_value() for setting in self.settings_schema()}


class ApiKeyRecord(BaseModel):
    """Stored provider API key"""
    id: str
    provider: str
    name: str = ""
    api_key: Optional[str] = Field(None, description="Literal secret, only when returned by the backend")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: Any) -> str:
        return str(value or "").strip().lower()

    def display_name(self) -> str:
        return self.name or f"{self.provider.capitalize()} Key {self.id}"


class AgentTypeInfo(BaseModel):
    """Agent-type descriptor as served by the backend's agent types endpoint"""
    model_config = ConfigDict(populate_by_name=True)

    type: str
    input_type: str = "text"
    output_type: str = "text"
    api_key_required: bool = False
    endpoint: Optional[str] = None
    file_field_name: str = Field("file", alias="fileFieldName")
    supported_file_types: List[str] = Field(default_factory=list, alias="supportedFileTypes")
    max_file_size: float = Field(10, alias="maxFileSize")
    has_special_ui: bool = Field(False, alias="hasSpecialUI")
    requires_upload: bool = Field(False, alias="requiresUpload")

    @field_validator("api_key_required", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> bool:
        # the backend sends "True"/"False" strings
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return bool(value)


class ServiceDetails(BaseModel):
    """Presentation details of the service being assembled"""
    name: str = Field("", max_length=100, description="Service name")
    description: str = Field("", max_length=2000)
    icon: str = "Wand2"
    color: str = "from-purple-600 to-purple-800"
    placeholder: str = ""
    button_text: str = "Generate"
    is_public: bool = False


class PipelineNode(BaseModel):
    """One persisted step, keyed by its dense index"""
    agent_id: Any
    next: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    agent_type: str = ""


class PipelineWorkflow(BaseModel):
    nodes: Dict[str, PipelineNode] = Field(default_factory=dict)


class PipelineCreateRequest(BaseModel):
    """Body of the create mini-service call"""
    name: str
    description: str = ""
    input_type: str
    output_type: str
    workflow: PipelineWorkflow
    icon: str = "Wand2"
    color: str = "from-purple-600 to-purple-800"
    placeholder: str = ""
    button_text: str = "Generate"
    is_public: bool = False


class RunRequest(BaseModel):
    """JSON body of a run call; dynamic capability fields ride along as extras"""
    model_config = ConfigDict(extra="allow")

    input: str
    api_keys: Dict[str, str] = Field(default_factory=dict)


class RunResponse(BaseModel):
    """Run result; the backend uses one of output, final_output or answer"""
    model_config = ConfigDict(extra="allow")

    output: Optional[Any] = None
    final_output: Optional[Any] = None
    answer: Optional[Any] = None
    process_id: Optional[Any] = None
    error: Optional[Any] = None

    def result(self) -> Any:
        for value in (self.final_output, self.output, self.answer):
            if value is not None:
                return value
        return None


class UploadResponse(BaseModel):
    """Response of the generic upload endpoint"""
    model_config = ConfigDict(extra="allow")

    saved_as: str


class ErrorResponse(BaseModel):
    """Error response model"""
    error: str
    detail: Optional[str] = None
    phase: Optional[str] = None


# ----------------------------------------------------------------------
# Builder API
# ----------------------------------------------------------------------

class AddStepRequest(BaseModel):
    """Request to append an agent to the pipeline"""
    agent_id: str = Field(..., description="Catalog id of the agent")
    settings: Optional[Dict[str, Any]] = Field(None, description="Step settings, defaults to the agent's config")

    @field_validator("agent_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)


class MoveStepRequest(BaseModel):
    direction: Literal["up", "down"]


class SettingUpdateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    value: Any = None


class CredentialBindRequest(BaseModel):
    """Bind either a stored key (key_id) or a literal secret (value)"""
    key_id: Optional[str] = Field(None, description="Id of a stored API key")
    value: Optional[str] = Field(None, description="Literal secret")

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "CredentialBindRequest":
        if (self.key_id is None) == (self.value is None):
            raise ValueError("Provide exactly one of key_id or value")
        return self


class StepInfo(BaseModel):
    id: str
    agent_id: str
    agent_name: str
    agent_type: str
    input_type: str
    output_type: str
    settings: Dict[str, Any] = Field(default_factory=dict)
    next: Optional[str] = None
    requires_api_key: bool = False
    credential_bound: bool = False


class PipelineState(BaseModel):
    """Current pipeline as seen by the builder"""
    details: ServiceDetails
    input_type: str
    output_type: str
    steps: List[StepInfo] = Field(default_factory=list)
    required_input_type: Optional[str] = None
    missing_credentials: List[str] = Field(default_factory=list)
    compatibility_problems: List[str] = Field(default_factory=list)


class RunResult(BaseModel):
    """Builder API response for a pipeline run"""
    strategy: str
    display: str
    output: Any = None
    process_id: Optional[Any] = None
    upload_handle: Optional[str] = None
    error_message: Optional[str] = None
    payload: Any = None


class SuccessResponse(BaseModel):
    """Generic success response"""
    success: bool = True
    message: str
    data: Optional[Dict[str, Any]] = None
