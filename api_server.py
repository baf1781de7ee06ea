"""
ServiceForge Builder API Server
FastAPI server exposing pipeline editing, credential binding, run, save and delete
"""

import json
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from orchestration.capabilities import CapabilityTable, FileInput
from orchestration.compatibility import OwnershipFilter, SortOrder, required_input_type, select_agents
from orchestration.output_display import display_context
from orchestration.workflow_executor import ConversationTurn, ExecutionDispatcher
from orchestration.workflow_graph import WorkflowGraph
from orchestration.workflow_manager import PipelineStore
from serviceforge.agent_catalog import AgentCatalog, ApiKeyCatalog
from serviceforge.api_models import (
    AddStepRequest,
    Agent,
    AgentTypeInfo,
    CredentialBindRequest,
    ErrorResponse,
    MoveStepRequest,
    PipelineState,
    RunResult,
    ServiceDetails,
    SettingUpdateRequest,
    StepInfo,
    SuccessResponse,
)
from serviceforge.backend_client import BackendClient
from serviceforge.config import Settings, get_settings
from serviceforge.credentials import CredentialBinder, LiteralSecret, StoredKeyRef
from serviceforge.errors import (
    IntegrityError,
    RequestTimeout,
    RunInProgressError,
    ServiceForgeError,
    ValidationError,
)
from serviceforge.logger_config import get_logger

logger = get_logger("serviceforge.api_server")


class BuilderSession:
    """
    State of one builder: catalogs, the pipeline being assembled and its
    credential bindings. Edits replace the graph snapshot wholesale.
    """

    def __init__(self, client: BackendClient, drafts_dir: Optional[str] = None):
        self.client = client
        self.capabilities = CapabilityTable()
        self.catalog = AgentCatalog(capabilities=self.capabilities)
        self.api_keys = ApiKeyCatalog()
        self.graph = WorkflowGraph(self.catalog)
        self.details = ServiceDetails()
        self.binder = CredentialBinder(self.api_keys)
        self.dispatcher = ExecutionDispatcher(client)
        self.store = PipelineStore(client, drafts_dir)

    def refresh(self) -> None:
        """Reload agent types, agents and stored keys from the backend"""
        infos = [AgentTypeInfo.model_validate(info) for info in self.client.list_agent_types()]
        self.capabilities = CapabilityTable().merge_agent_types(infos)
        self.catalog = AgentCatalog.from_records(self.client.list_agents(), self.capabilities)
        self.api_keys = self.api_keys.refresh(self.client)
        self.binder.set_api_keys(self.api_keys)
        self.graph = WorkflowGraph(self.catalog, self.graph.steps, self.graph.input_type, self.graph.output_type)

    def apply(self, graph: WorkflowGraph) -> None:
        self.graph = graph
        self.binder.prune(graph)

    def state(self) -> PipelineState:
        bound = {r.step_id for r in self.binder.required_targets(self.graph)} - \
            {r.step_id for r in self.binder.missing(self.graph)}
        steps = []
        for step in self.graph.ordered_sequence():
            agent = self.catalog.get(step.agent_id)
            steps.append(StepInfo(
                id=step.id,
                agent_id=step.agent_id,
                agent_name=agent.name if agent else f"Agent {step.agent_id}",
                agent_type=agent.agent_type if agent else "",
                input_type=agent.input_type if agent else "",
                output_type=agent.output_type if agent else "",
                settings=dict(step.settings),
                next=step.next,
                requires_api_key=self.catalog.requires_api_key(step.agent_id),
                credential_bound=step.id in bound,
            ))
        return PipelineState(
            details=self.details,
            input_type=self.graph.input_type,
            output_type=self.graph.output_type,
            steps=steps,
            required_input_type=required_input_type(self.graph),
            missing_credentials=[r.step_id for r in self.binder.missing(self.graph)],
            compatibility_problems=self.graph.compatibility_problems(),
        )

    def run_binder(self, graph: WorkflowGraph) -> CredentialBinder:
        """Binder for running a stored pipeline: session bindings, then first stored key per provider"""
        binder = CredentialBinder(self.api_keys)
        for target_id, source in self.binder.bindings().items():
            binder.bind(target_id, source)
        binder.auto_select(graph)
        return binder


# Global session
session: Optional[BuilderSession] = None


def initialize_session(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.BaseTransport] = None
) -> BuilderSession:
    """Create the builder session and load catalogs"""
    global session

    settings = settings or get_settings()
    logger.info(f"Connecting to backend at {settings.backend_url}")
    session = BuilderSession(BackendClient(settings, transport=transport), settings.drafts_dir)
    try:
        session.refresh()
        logger.info(f"Loaded {len(session.catalog)} agents and {len(session.api_keys)} API keys")
    except ServiceForgeError as e:
        logger.warning(f"Starting with empty catalogs, backend unavailable: {e}")
    return session


def get_session() -> BuilderSession:
    if session is None:
        raise HTTPException(status_code=503, detail="Builder session is not initialized")
    return session


def to_http_error(error: ServiceForgeError) -> HTTPException:
    """Map a ServiceForge error to an HTTP error with a user-facing message"""
    if isinstance(error, RunInProgressError):
        status_code = 409
    elif isinstance(error, ValidationError):
        status_code = 422
    elif isinstance(error, IntegrityError):
        status_code = 500
    elif isinstance(error, RequestTimeout):
        status_code = 504
    else:
        status_code = 502

    detail = ErrorResponse(
        error=error.user_message(),
        detail=str(error),
        phase=getattr(error, "phase", None),
    )
    return HTTPException(status_code=status_code, detail=detail.model_dump())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize builder session on startup"""
    if session is None:
        initialize_session()
    yield
    if session is not None:
        session.client.close()


# Create FastAPI app
app = FastAPI(
    title="ServiceForge Builder API",
    description="Assemble, save and run mini-service pipelines",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# CATALOG ENDPOINTS
# ============================================================================

@app.post("/api/v1/builder/refresh", response_model=SuccessResponse)
def refresh_catalogs(current: BuilderSession = Depends(get_session)):
    """Reload agents, agent types and stored API keys"""
    try:
        current.refresh()
    except ServiceForgeError as e:
        raise to_http_error(e)
    return SuccessResponse(
        message="Catalogs refreshed",
        data={"agents": len(current.catalog), "api_keys": len(current.api_keys)},
    )


@app.get("/api/v1/builder/agents", response_model=List[Agent])
def list_compatible_agents(
    input_type: str = "any",
    output_type: str = "any",
    ownership: OwnershipFilter = OwnershipFilter.ALL,
    category: Optional[str] = None,
    query: Optional[str] = None,
    sort: SortOrder = SortOrder.RECENTLY_ADDED,
    current: BuilderSession = Depends(get_session)
):
    """Agents that can be appended to the current pipeline"""
    try:
        return select_agents(
            current.graph,
            input_type=input_type,
            output_type=output_type,
            ownership=ownership,
            user_id=current.client.settings.user_id,
            category=category,
            query=query,
            order=sort,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ServiceForgeError as e:
        raise to_http_error(e)


# ============================================================================
# PIPELINE EDITING ENDPOINTS
# ============================================================================

@app.get("/api/v1/builder/pipeline", response_model=PipelineState)
def get_pipeline_state(current: BuilderSession = Depends(get_session)):
    try:
        return current.state()
    except ServiceForgeError as e:
        raise to_http_error(e)


@app.put("/api/v1/builder/details", response_model=PipelineState)
def update_details(details: ServiceDetails, current: BuilderSession = Depends(get_session)):
    current.details = details
    return current.state()


@app.post("/api/v1/builder/steps", response_model=PipelineState)
def add_step(request: AddStepRequest, current: BuilderSession = Depends(get_session)):
    """Append an agent at the tail of the pipeline"""
    try:
        current.apply(current.graph.add_step(request.agent_id, request.settings))
        return current.state()
    except ServiceForgeError as e:
        raise to_http_error(e)


@app.delete("/api/v1/builder/steps/{step_id}", response_model=PipelineState)
def remove_step(step_id: str, current: BuilderSession = Depends(get_session)):
    try:
        current.apply(current.graph.remove_step(step_id))
        return current.state()
    except ServiceForgeError as e:
        raise to_http_error(e)


@app.post("/api/v1/builder/steps/{step_id}/move", response_model=PipelineState)
def move_step(step_id: str, request: MoveStepRequest, current: BuilderSession = Depends(get_session)):
    try:
        if request.direction == "up":
            current.apply(current.graph.move_up(step_id))
        else:
            current.apply(current.graph.move_down(step_id))
        return current.state()
    except ServiceForgeError as e:
        raise to_http_error(e)


@app.put("/api/v1/builder/steps/{step_id}/settings", response_model=PipelineState)
def update_step_settings(
    step_id: str,
    request: SettingUpdateRequest,
    current: BuilderSession = Depends(get_session)
):
    try:
        current.apply(current.graph.update_settings(step_id, request.name, request.value))
        return current.state()
    except ServiceForgeError as e:
        raise to_http_error(e)


# ============================================================================
# CREDENTIAL ENDPOINTS
# ============================================================================

@app.put("/api/v1/builder/credentials/{target_id}", response_model=PipelineState)
def bind_credential(
    target_id: str,
    request: CredentialBindRequest,
    current: BuilderSession = Depends(get_session)
):
    """Bind a stored key or a literal secret to a step (or agent)"""
    if request.key_id is not None:
        if current.api_keys.get(request.key_id) is None:
            raise HTTPException(status_code=404, detail=f"API key '{request.key_id}' not found")
        current.binder.bind(target_id, StoredKeyRef(request.key_id))
    else:
        current.binder.bind(target_id, LiteralSecret(request.value))
    return current.state()


@app.delete("/api/v1/builder/credentials/{target_id}", response_model=PipelineState)
def unbind_credential(target_id: str, current: BuilderSession = Depends(get_session)):
    if not current.binder.unbind(target_id):
        raise HTTPException(status_code=404, detail=f"No credential bound to '{target_id}'")
    return current.state()


@app.post("/api/v1/builder/credentials/auto-select", response_model=PipelineState)
def auto_select_credentials(current: BuilderSession = Depends(get_session)):
    """Bind the first stored key of the right provider to every unbound step"""
    try:
        current.binder.auto_select(current.graph)
        return current.state()
    except ServiceForgeError as e:
        raise to_http_error(e)


# ============================================================================
# SAVE / DELETE / RUN ENDPOINTS
# ============================================================================

@app.post("/api/v1/builder/save")
def save_pipeline(current: BuilderSession = Depends(get_session)):
    """Validate the current pipeline and create it on the backend"""
    try:
        return current.store.save_pipeline(current.graph, current.details)
    except ServiceForgeError as e:
        raise to_http_error(e)


@app.get("/api/v1/services")
def list_services(current: BuilderSession = Depends(get_session)):
    try:
        return current.store.list_pipelines()
    except ServiceForgeError as e:
        raise to_http_error(e)


@app.delete("/api/v1/services/{service_id}", response_model=SuccessResponse)
def delete_service(service_id: str, current: BuilderSession = Depends(get_session)):
    try:
        current.store.delete_pipeline(service_id)
    except ServiceForgeError as e:
        raise to_http_error(e)
    return SuccessResponse(message=f"Service {service_id} deleted")


def _parse_conversation(raw: str) -> List[ConversationTurn]:
    if not raw:
        return []
    try:
        turns = json.loads(raw)
        return [ConversationTurn(role=str(t["role"]), content=str(t["content"])) for t in turns]
    except (ValueError, TypeError, KeyError) as e:
        raise HTTPException(status_code=422, detail=f"Invalid conversation history: {e}")


def _read_upload(file: UploadFile, limit: int) -> FileInput:
    """Read an uploaded file, stopping one byte past the size limit"""
    content = file.file.read(limit + 1)
    declared_size = None
    if len(content) > limit:
        declared_size = file.size if file.size and file.size > len(content) else len(content)
        logger.info(f"Upload '{file.filename}' exceeds {limit} bytes, not reading the rest")
    return FileInput(
        filename=file.filename,
        content=content,
        content_type=file.content_type or "application/octet-stream",
        declared_size=declared_size,
    )


@app.post("/api/v1/services/{service_id}/run", response_model=RunResult)
def run_service(
    service_id: str,
    input: str = Form(""),
    include_timestamps: bool = Form(False),
    conversation: str = Form(""),
    file: Optional[UploadFile] = File(None),
    current: BuilderSession = Depends(get_session)
):
    """Run a saved service with text and/or a file"""
    turns = _parse_conversation(conversation)

    try:
        graph = current.store.load_graph(service_id, current.catalog)
        _, capability, _ = current.dispatcher.resolve_strategy(graph)
        file_input = None
        if file is not None and file.filename and capability is not None and capability.consumes_file:
            file_input = _read_upload(file, capability.max_file_size_bytes)
        result = current.dispatcher.dispatch(
            graph,
            current.run_binder(graph),
            service_id,
            text=input,
            file=file_input,
            options={"include_timestamps": include_timestamps},
            conversation=turns,
        )
    except ServiceForgeError as e:
        logger.warning(f"Run of service {service_id} failed: {e}")
        raise to_http_error(e)

    error_message = None
    if result.output_error is not None:
        error_message = result.output_error.user_message(display_context(graph.output_type, result.payload))
    return RunResult(
        strategy=result.strategy.value,
        display=result.display.value,
        output=result.output,
        process_id=result.process_id,
        upload_handle=result.upload_handle,
        error_message=error_message,
        payload=result.payload,
    )


# ============================================================================
# DRAFT ENDPOINTS
# ============================================================================

@app.get("/api/v1/builder/drafts")
def list_drafts(current: BuilderSession = Depends(get_session)) -> List[Dict[str, Any]]:
    return current.store.list_drafts()


@app.post("/api/v1/builder/drafts", response_model=SuccessResponse)
def save_draft(name: Optional[str] = None, current: BuilderSession = Depends(get_session)):
    if not current.store.save_draft(current.graph, current.details, draft_name=name):
        raise HTTPException(status_code=500, detail="Failed to save draft")
    return SuccessResponse(message="Draft saved")


@app.post("/api/v1/builder/drafts/{name}/load", response_model=PipelineState)
def load_draft(name: str, current: BuilderSession = Depends(get_session)):
    try:
        restored = current.store.restore_draft(name, current.catalog)
    except ServiceForgeError as e:
        raise to_http_error(e)
    if restored is None:
        raise HTTPException(status_code=404, detail=f"Draft '{name}' not found")
    graph, details = restored
    current.apply(graph)
    current.details = details
    return current.state()


@app.delete("/api/v1/builder/drafts/{name}", response_model=SuccessResponse)
def delete_draft(name: str, current: BuilderSession = Depends(get_session)):
    if not current.store.delete_draft(name):
        raise HTTPException(status_code=404, detail=f"Draft '{name}' not found")
    return SuccessResponse(message=f"Draft '{name}' deleted")


# ============================================================================
# HEALTH CHECK
# ============================================================================

@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "session_initialized": session is not None,
        "agents_loaded": len(session.catalog) if session else 0,
        "run_in_progress": session.dispatcher.is_running if session else False,
    }


@app.get("/")
def root():
    """Root endpoint"""
    return {
        "name": "ServiceForge Builder API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
