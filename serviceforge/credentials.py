"""
Credential Binding - which API key each pipeline step runs with
Secrets are forwarded opaquely; nothing here stores or transforms them
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from .agent_catalog import ApiKeyCatalog
from .logger_config import get_logger

if TYPE_CHECKING:
    from orchestration.workflow_graph import WorkflowGraph

logger = get_logger("serviceforge.credentials")


@dataclass(frozen=True)
class StoredKeyRef:
    """Reference to a key kept in the backend's vault"""
    id: str
    kind: str = "storedKeyRef"


@dataclass(frozen=True)
class LiteralSecret:
    """Secret value typed in by the user"""
    value: str
    kind: str = "literal"

    def __repr__(self) -> str:
        return "LiteralSecret(value='***')"


CredentialSource = Union[StoredKeyRef, LiteralSecret]


@dataclass(frozen=True)
class RequiredCredential:
    """A step that cannot run without a key"""
    step_id: str
    agent_id: str
    agent_name: str
    provider: str


class CredentialBinder:
    """
    Tracks the credential source bound to each step.

    Bindings are keyed by step id; a binding keyed by agent id is used as a
    fallback for every step running that agent.
    """

    def __init__(self, api_keys: Optional[ApiKeyCatalog] = None):
        """
        Args:
            api_keys: Snapshot of stored keys used to resolve StoredKeyRef bindings
        """
        self.api_keys = api_keys if api_keys is not None else ApiKeyCatalog()
        self._bindings: Dict[str, CredentialSource] = {}

    def set_api_keys(self, api_keys: ApiKeyCatalog) -> None:
        """Swap in a refreshed key snapshot; existing bindings are kept"""
        self.api_keys = api_keys

    def bind(self, target_id: Any, source: CredentialSource) -> None:
        """
        Bind a credential source to a step (or agent).

        Args:
            target_id: Step id, or agent id to cover every step of that agent
            source: StoredKeyRef or LiteralSecret
        """
        if not isinstance(source, (StoredKeyRef, LiteralSecret)):
            raise TypeError(f"Unsupported credential source: {type(source).__name__}")
        self._bindings[str(target_id)] = source
        logger.debug(f"Bound {source.kind} credential to '{target_id}'")

    def unbind(self, target_id: Any) -> bool:
        return self._bindings.pop(str(target_id), None) is not None

    def binding(self, target_id: Any) -> Optional[CredentialSource]:
        return self._bindings.get(str(target_id))

    def bindings(self) -> Dict[str, CredentialSource]:
        return dict(self._bindings)

    def resolve_source(self, source: Optional[CredentialSource]) -> Optional[str]:
        """Literal value behind a source, None when it can't be resolved"""
        if source is None:
            return None
        if isinstance(source, LiteralSecret):
            return source.value or None
        record = self.api_keys.get(source.id)
        if record is None or not record.api_key:
            return None
        return record.api_key

    def required_targets(self, graph: "WorkflowGraph") -> List[RequiredCredential]:
        """Steps of the graph whose agent type needs a key"""
        from orchestration.capabilities import provider_for

        required = []
        for step in graph.ordered_sequence():
            agent = graph.catalog.get(step.agent_id)
            if agent is None or not graph.catalog.requires_api_key(agent.id):
                continue
            required.append(RequiredCredential(
                step_id=step.id,
                agent_id=agent.id,
                agent_name=agent.name,
                provider=provider_for(agent.agent_type),
            ))
        return required

    def _source_for(self, requirement: RequiredCredential) -> Optional[CredentialSource]:
        return self._bindings.get(requirement.step_id) or self._bindings.get(requirement.agent_id)

    def resolve_all(self, graph: Optional["WorkflowGraph"] = None) -> Dict[str, str]:
        """
        Resolve bindings to literal secret values.

        Args:
            graph: When given, only steps needing a key are resolved and the
                result is keyed by agent id, which is what the run endpoint expects

        Returns:
            Mapping of id to literal secret; unresolvable bindings are left out
        """
        resolved: Dict[str, str] = {}
        if graph is None:
            for target_id, source in self._bindings.items():
                value = self.resolve_source(source)
                if value:
                    resolved[target_id] = value
            return resolved

        for requirement in self.required_targets(graph):
            value = self.resolve_source(self._source_for(requirement))
            if value:
                resolved[requirement.agent_id] = value
        return resolved

    def missing(self, graph: "WorkflowGraph") -> List[RequiredCredential]:
        return [
            requirement for requirement in self.required_targets(graph)
            if not self.resolve_source(self._source_for(requirement))
        ]

    def all_required_bound(self, graph: "WorkflowGraph") -> bool:
        return not self.missing(graph)

    def prune(self, graph: "WorkflowGraph") -> List[str]:
        """
        Drop bindings whose step left the graph or no longer needs a key.

        Returns:
            Removed target ids
        """
        required = self.required_targets(graph)
        keep = {r.step_id for r in required} | {r.agent_id for r in required}
        removed = [target_id for target_id in self._bindings if target_id not in keep]
        for target_id in removed:
            del self._bindings[target_id]
        if removed:
            logger.info(f"Cleared {len(removed)} stale credential binding(s)")
        return removed

    def auto_select(self, graph: "WorkflowGraph") -> Dict[str, str]:
        """
        Bind the first stored key of the matching provider to every step that
        needs one and has nothing bound yet.

        Returns:
            Mapping of step id to the key id that was selected
        """
        selected = {}
        for requirement in self.required_targets(graph):
            if self._source_for(requirement) is not None:
                continue
            candidates = self.api_keys.for_provider(requirement.provider)
            if candidates:
                self.bind(requirement.step_id, StoredKeyRef(candidates[0].id))
                selected[requirement.step_id] = candidates[0].id
        return selected
