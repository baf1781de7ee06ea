"""
Workflow Executor - run a saved pipeline against the backend

One run goes through resolve -> validate -> execute -> classify.
The request protocol is picked from the first step whose agent type has a
capability entry; pipelines without one use a plain JSON invoke.
"""

import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from serviceforge.api_models import Agent, RunRequest, RunResponse, UploadResponse
from serviceforge.backend_client import BackendClient
from serviceforge.credentials import CredentialBinder
from serviceforge.errors import (
    PHASE_EXECUTION,
    PHASE_PROCESSING,
    PHASE_UPLOAD,
    RunInProgressError,
    UpstreamError,
    ValidationError,
)
from serviceforge.logger_config import get_logger

from .capabilities import Capability, DispatchContext, FileInput, Strategy
from .output_display import (
    DisplayStrategy,
    OutputError,
    detect_output_error,
    extract_output,
    select_display,
)
from .workflow_graph import WorkflowGraph

logger = get_logger("serviceforge.workflow_executor")


@dataclass(frozen=True)
class ConversationTurn:
    """One earlier chat message"""
    role: str
    content: str


def compose_input(text: str, conversation: Sequence[ConversationTurn] = ()) -> str:
    """Fold chat history into the input sent to the backend"""
    if not conversation:
        return text
    history = "\n".join(
        f"{'User' if turn.role == 'user' else 'Assistant'}: {turn.content}" for turn in conversation
    )
    return f"This is the current conversation history: {history} and this is the latest message of the user: {text}"


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class ExecutionRequest:
    """Everything a run needs, captured before the first request goes out"""
    pipeline_id: str
    agent_ids: Tuple[str, ...]
    strategy: Strategy
    capability: Optional[Capability]
    primary_agent: Optional[Agent]
    output_type: str
    credentials: Mapping[str, str]
    missing_credentials: Tuple[str, ...] = ()
    text: str = ""
    file: Optional[FileInput] = None
    conversation: Tuple[ConversationTurn, ...] = ()
    options: Mapping[str, Any] = field(default_factory=dict)

    def dispatch_context(self) -> DispatchContext:
        agent_id = self.primary_agent.id if self.primary_agent else ""
        return DispatchContext(
            agent_id=agent_id,
            text=self.text,
            file=self.file,
            api_keys=self.credentials,
            options=self.options,
        )

    @property
    def processing_context(self) -> str:
        return self.capability.processing_context if self.capability else "service execution"


@dataclass(frozen=True)
class ExecutionResult:
    """Successful run outcome"""
    strategy: Strategy
    payload: Any
    display: DisplayStrategy
    output: Any
    process_id: Optional[Any] = None
    upload_handle: Optional[str] = None
    output_error: Optional[OutputError] = None

    @property
    def succeeded(self) -> bool:
        return self.output_error is None


class ExecutionDispatcher:
    """
    Resolves, validates and executes pipeline runs.

    Only one run may be in flight per dispatcher; a second call while one is
    running raises RunInProgressError.
    """

    def __init__(self, client: BackendClient):
        """
        Args:
            client: Backend client used for uploads and run calls
        """
        self.client = client
        self._in_flight = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._in_flight.locked()

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    @staticmethod
    def resolve_strategy(graph: WorkflowGraph) -> Tuple[Strategy, Optional[Capability], Optional[Agent]]:
        """
        Pick the request protocol for a pipeline.

        Returns:
            (strategy, deciding capability, deciding agent); the last two are
            None for PlainInvoke
        """
        for step in graph.ordered_sequence():
            capability = graph.catalog.capability_for(step.agent_id)
            if capability is not None:
                return capability.strategy, capability, graph.catalog.get(step.agent_id)
        return Strategy.PLAIN_INVOKE, None, None

    def resolve(
        self,
        graph: WorkflowGraph,
        binder: CredentialBinder,
        pipeline_id: Any,
        text: str = "",
        file: Optional[FileInput] = None,
        options: Optional[Mapping[str, Any]] = None,
        conversation: Iterable[ConversationTurn] = ()
    ) -> ExecutionRequest:
        sequence = graph.ordered_sequence()
        if not sequence:
            raise ValidationError("Pipeline has no steps to run")

        strategy, capability, primary_agent = self.resolve_strategy(graph)
        if primary_agent is None:
            primary_agent = graph.catalog.get(sequence[0].agent_id)

        missing = tuple(requirement.agent_name for requirement in binder.missing(graph))
        return ExecutionRequest(
            pipeline_id=str(pipeline_id),
            agent_ids=tuple(step.agent_id for step in sequence),
            strategy=strategy,
            capability=capability,
            primary_agent=primary_agent,
            output_type=graph.output_type,
            credentials=MappingProxyType(dict(binder.resolve_all(graph))),
            missing_credentials=missing,
            text=text or "",
            file=file,
            conversation=tuple(conversation),
            options=MappingProxyType(dict(options or {})),
        )

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    @staticmethod
    def validate(request: ExecutionRequest) -> None:
        """
        Check local preconditions; nothing is sent when this raises.

        Raises:
            ValidationError: describing the first failed precondition
        """
        strategy = request.strategy
        capability = request.capability

        if strategy in (Strategy.PLAIN_INVOKE, Strategy.QUERY_ONLY_INVOKE):
            if not request.text.strip():
                if strategy == Strategy.QUERY_ONLY_INVOKE:
                    raise ValidationError("Please provide a query for the document agent")
                raise ValidationError("Please enter some input before running the service")
            if strategy == Strategy.QUERY_ONLY_INVOKE and request.missing_credentials:
                raise ValidationError(
                    f"API key is required for: {', '.join(request.missing_credentials)}"
                )
            return

        if request.file is None:
            raise ValidationError("Please select a file to upload")
        if not capability.accepts(request.file.filename):
            accepted = ", ".join(capability.accepted_file_extensions)
            raise ValidationError(
                f"Unsupported file type '{request.file.extension or request.file.filename}'. Accepted: {accepted}"
            )
        if request.file.size > capability.max_file_size_bytes:
            raise ValidationError(
                f"File is too large ({request.file.size / (1024 * 1024):.1f} MB). "
                f"Maximum size is {capability.max_file_size_mb:g} MB"
            )
        if request.missing_credentials:
            raise ValidationError(
                f"API key is required for: {', '.join(request.missing_credentials)}"
            )

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        logger.info(f"Running pipeline {request.pipeline_id} with {request.strategy.value} "
                    f"({len(request.agent_ids)} steps)")
        if request.strategy == Strategy.TWO_PHASE_UPLOAD:
            return self._run_two_phase(request)
        if request.strategy == Strategy.DIRECT_MULTIPART_INVOKE:
            return self._run_direct_multipart(request)
        return self._run_json(request)

    def _run_json(self, request: ExecutionRequest) -> ExecutionResult:
        body: Dict[str, Any] = {}
        if request.strategy == Strategy.QUERY_ONLY_INVOKE:
            body.update(request.capability.build_dynamic_fields(request.dispatch_context()))
        run_request = RunRequest(
            input=compose_input(request.text, request.conversation),
            api_keys=dict(request.credentials),
            **body,
        )
        context = request.processing_context
        payload = self.client.run_pipeline(
            request.pipeline_id, run_request.model_dump(),
            phase=PHASE_EXECUTION, context=context,
        )
        return self.classify(request, payload, PHASE_EXECUTION, context)

    def _run_two_phase(self, request: ExecutionRequest) -> ExecutionResult:
        capability = request.capability
        file = request.file

        logger.info(f"Uploading '{file.filename}' ({file.size} bytes)")
        upload_payload = self.client.upload_file(
            (file.filename, file.content, file.content_type),
            field_name=capability.file_field_name,
        )
        self._raise_for_payload_error(upload_payload, PHASE_UPLOAD, "file upload")
        saved_as = upload_payload.get("saved_as") if isinstance(upload_payload, Mapping) else None
        if not isinstance(saved_as, str) or not saved_as:
            logger.warning(f"Upload of '{file.filename}' returned no usable handle: {upload_payload!r}")
            raise UpstreamError(
                "Upload response did not include a storage handle",
                detail={"detail": "the server did not return where the file was stored"},
                phase=PHASE_UPLOAD, context="file upload",
            )
        handle = UploadResponse.model_validate(upload_payload).saved_as
        logger.info(f"Upload stored as '{handle}', starting processing")

        run_request = RunRequest(
            input=compose_input(handle, request.conversation),
            api_keys=dict(request.credentials),
            **capability.build_dynamic_fields(request.dispatch_context()),
        )
        payload = self.client.run_pipeline(
            request.pipeline_id, run_request.model_dump(),
            phase=PHASE_PROCESSING, context=capability.processing_context,
        )
        return self.classify(request, payload, PHASE_PROCESSING, capability.processing_context,
                             upload_handle=handle)

    def _run_direct_multipart(self, request: ExecutionRequest) -> ExecutionResult:
        capability = request.capability
        file = request.file

        data: Dict[str, str] = {}
        if request.conversation:
            data["input"] = compose_input(request.text, request.conversation)
        elif request.text and not capability.has_query_only_ui:
            data["input"] = request.text
        for name, value in capability.build_dynamic_fields(request.dispatch_context()).items():
            data[name] = _form_value(value)
        if capability.has_query_only_ui and request.text.strip():
            data["query"] = request.text

        endpoint = capability.endpoint_for(request.primary_agent.id)
        payload = self.client.run_multipart(
            endpoint, data,
            {capability.file_field_name: (file.filename, file.content, file.content_type)},
            context=capability.processing_context,
        )
        return self.classify(request, payload, PHASE_EXECUTION, capability.processing_context)

    # ------------------------------------------------------------------
    # Classify
    # ------------------------------------------------------------------

    @staticmethod
    def _raise_for_payload_error(payload: Any, phase: str, context: str) -> None:
        if isinstance(payload, Mapping) and payload.get("error"):
            raise UpstreamError(
                f"Backend reported an error during {context}: {payload['error']}",
                status_code=200, detail=payload, phase=phase, context=context,
            )

    def classify(
        self,
        request: ExecutionRequest,
        payload: Any,
        phase: str = PHASE_EXECUTION,
        context: str = "service execution",
        upload_handle: Optional[str] = None
    ) -> ExecutionResult:
        """Turn a success response into an ExecutionResult, or raise for embedded errors"""
        self._raise_for_payload_error(payload, phase, context)

        process_id = None
        if isinstance(payload, Mapping):
            process_id = RunResponse.model_validate(dict(payload)).process_id

        output = extract_output(payload)
        output_error = detect_output_error(output)
        if output_error is not None:
            logger.warning(f"Pipeline {request.pipeline_id} returned provider error text: "
                           f"{output_error.error_type}")

        return ExecutionResult(
            strategy=request.strategy,
            payload=payload,
            display=select_display(request.output_type, payload),
            output=output,
            process_id=process_id,
            upload_handle=upload_handle,
            output_error=output_error,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def dispatch(
        self,
        graph: WorkflowGraph,
        binder: CredentialBinder,
        pipeline_id: Any,
        text: str = "",
        file: Optional[FileInput] = None,
        options: Optional[Mapping[str, Any]] = None,
        conversation: Iterable[ConversationTurn] = ()
    ) -> ExecutionResult:
        """
        Run a pipeline end to end.

        Args:
            graph: Pipeline to run (snapshotted before any request)
            binder: Credential bindings for the pipeline's steps
            pipeline_id: Backend id of the saved pipeline
            text: User text input
            file: User-selected file, for file-consuming strategies
            options: UI options read by dynamic field builders
            conversation: Earlier chat turns, folded into the input

        Returns:
            ExecutionResult

        Raises:
            RunInProgressError: another run is still in flight
            ValidationError: a local precondition failed; nothing was sent
            IntegrityError: the step chain is corrupt
            UpstreamError, NetworkError, RequestTimeout: the run failed
        """
        if not self._in_flight.acquire(blocking=False):
            raise RunInProgressError("A run is already in progress, wait for it to finish")
        try:
            request = self.resolve(graph, binder, pipeline_id, text, file, options, conversation)
            self.validate(request)
            result = self.execute(request)
            logger.info(f"Pipeline {request.pipeline_id} finished ({result.display.value} output)")
            return result
        finally:
            self._in_flight.release()
