"""
Agent Catalog - read-only snapshots of the backend's agents and stored API keys
A snapshot is never mutated; refresh() hands back a new one
"""

from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Mapping, Optional

from .api_models import Agent, ApiKeyRecord
from .errors import ValidationError
from .logger_config import get_logger

if TYPE_CHECKING:
    from orchestration.capabilities import Capability, CapabilityTable
    from .backend_client import BackendClient

logger = get_logger("serviceforge.agent_catalog")


class AgentCatalog:
    """
    Snapshot of available agents keyed by id.
    Capability descriptors are resolved once, when the snapshot is built.
    """

    def __init__(self, agents: Iterable[Agent] = (), capabilities: Optional["CapabilityTable"] = None):
        if capabilities is None:
            from orchestration.capabilities import CapabilityTable
            capabilities = CapabilityTable()
        self.capabilities = capabilities
        self._agents: Dict[str, Agent] = {}
        for agent in agents:
            if agent.id in self._agents:
                logger.warning(f"Duplicate agent id '{agent.id}' in catalog, keeping the last one")
            self._agents[agent.id] = agent
        self._capability_by_agent: Dict[str, Optional["Capability"]] = {
            agent_id: capabilities.lookup(agent.agent_type)
            for agent_id, agent in self._agents.items()
        }

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        capabilities: Optional["CapabilityTable"] = None
    ) -> "AgentCatalog":
        """
        Build a catalog from raw backend agent records.

        Args:
            records: Dicts as returned by the agents endpoint
            capabilities: Capability table to resolve agent types against

        Returns:
            New AgentCatalog
        """
        agents = []
        for record in records:
            if record.get("id") is None:
                logger.warning(f"Skipping agent record without id: {record.get('name', '?')}")
                continue
            agents.append(Agent.model_validate(record))
        return cls(agents, capabilities)

    def refresh(self, client: "BackendClient") -> "AgentCatalog":
        """Fetch a fresh snapshot; this one stays untouched"""
        catalog = AgentCatalog.from_records(client.list_agents(), self.capabilities)
        logger.info(f"Agent catalog refreshed: {len(catalog)} agents")
        return catalog

    def get(self, agent_id: Any) -> Optional[Agent]:
        return self._agents.get(str(agent_id))

    def require(self, agent_id: Any) -> Agent:
        agent = self.get(agent_id)
        if agent is None:
            raise ValidationError(f"Agent '{agent_id}' is not in the catalog")
        return agent

    def capability_for(self, agent_id: Any) -> Optional["Capability"]:
        return self._capability_by_agent.get(str(agent_id))

    def requires_api_key(self, agent_id: Any) -> bool:
        agent = self.get(agent_id)
        if agent is None:
            return False
        return self.capabilities.requires_api_key(agent.agent_type)

    def list_agents(self) -> List[Agent]:
        return list(self._agents.values())

    def __iter__(self) -> Iterator[Agent]:
        return iter(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: Any) -> bool:
        return str(agent_id) in self._agents


class ApiKeyCatalog:
    """Snapshot of the user's stored API keys"""

    def __init__(self, keys: Iterable[ApiKeyRecord] = ()):
        self._keys: Dict[str, ApiKeyRecord] = {key.id: key for key in keys}

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "ApiKeyCatalog":
        return cls(ApiKeyRecord.model_validate(record) for record in records)

    def refresh(self, client: "BackendClient") -> "ApiKeyCatalog":
        catalog = ApiKeyCatalog.from_records(client.list_api_keys())
        logger.info(f"API key catalog refreshed: {len(catalog)} keys")
        return catalog

    def get(self, key_id: Any) -> Optional[ApiKeyRecord]:
        return self._keys.get(str(key_id))

    def for_provider(self, provider: str) -> List[ApiKeyRecord]:
        provider = provider.strip().lower()
        return [key for key in self._keys.values() if key.provider == provider]

    def grouped_by_provider(self) -> Dict[str, List[ApiKeyRecord]]:
        grouped: Dict[str, List[ApiKeyRecord]] = {}
        for key in self._keys.values():
            grouped.setdefault(key.provider, []).append(key)
        return grouped

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[ApiKeyRecord]:
        return iter(self._keys.values())
