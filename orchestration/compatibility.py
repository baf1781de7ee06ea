"""
Compatibility Filter - which agents may be appended to a pipeline
Only narrows what is offered; existing steps are never re-validated here
"""

from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from serviceforge.api_models import Agent

from .workflow_graph import UNSET, WorkflowGraph

ANY = "any"

# Builder category tabs
AGENT_TYPE_CATEGORIES = {
    "Gemini": ("gemini",),
    "ChatGPT": ("openai", "gpt_vision", "openai_assistant", "dalle"),
    "Claude": ("claude",),
    "TTS": ("edge_tts", "bark_tts", "kokoro_tts"),
    "Media": ("whisper", "transcribe"),
    "Document": ("rag", "pdf_reader", "document_analyzer"),
    "Translation": ("google_translate",),
    "Custom": ("custom_endpoint_llm",),
    "File Output": ("file_output",),
}


class OwnershipFilter(str, Enum):
    ALL = "all"
    MINE = "mine"
    FAVORITES = "favorites"


class SortOrder(str, Enum):
    MOST_FAVORITED = "most_favorited"
    TRENDING = "trending"
    RECENTLY_ADDED = "recently_added"
    NAME = "name"


def _is_wildcard(value: Optional[str]) -> bool:
    return value is None or value.strip().lower() in (ANY, UNSET, "")


def required_input_type(graph: WorkflowGraph) -> Optional[str]:
    """Input type the next appended agent must accept, None for an empty pipeline"""
    tail = graph.tail()
    if tail is None:
        return None
    agent = graph.catalog.get(tail.agent_id)
    return agent.output_type if agent else graph.output_type


def compatible_agents(
    graph: WorkflowGraph,
    input_type: Optional[str] = ANY,
    output_type: Optional[str] = ANY
) -> List[Agent]:
    """
    Agents that can be appended at the tail.

    Args:
        graph: Current pipeline
        input_type: Optional filter, only honoured while the pipeline is empty
        output_type: Optional filter on the agent's output type

    Returns:
        Matching agents in catalog order
    """
    required = required_input_type(graph)
    if required is not None:
        input_type = required

    matches = []
    for agent in graph.catalog:
        if not _is_wildcard(input_type) and agent.input_type != input_type:
            continue
        if not _is_wildcard(output_type) and agent.output_type != output_type:
            continue
        matches.append(agent)
    return matches


def filter_by_ownership(agents: Iterable[Agent], ownership: OwnershipFilter, user_id: str = "") -> List[Agent]:
    if ownership == OwnershipFilter.MINE:
        return [agent for agent in agents if agent.owner_id == str(user_id)]
    if ownership == OwnershipFilter.FAVORITES:
        return [agent for agent in agents if agent.is_favorited]
    return list(agents)


def filter_by_category(agents: Iterable[Agent], category: Optional[str]) -> List[Agent]:
    if not category or category == "All":
        return list(agents)
    if category not in AGENT_TYPE_CATEGORIES:
        raise ValueError(f"Unknown agent category: {category}")
    types = AGENT_TYPE_CATEGORIES[category]
    return [agent for agent in agents if agent.agent_type in types]


def search_agents(agents: Iterable[Agent], query: Optional[str]) -> List[Agent]:
    if not query or not query.strip():
        return list(agents)
    needle = query.strip().lower()
    return [
        agent for agent in agents
        if needle in agent.name.lower()
        or needle in agent.description.lower()
        or needle in agent.agent_type
    ]


def _created_timestamp(agent: Agent) -> float:
    try:
        return datetime.fromisoformat(agent.created_at.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def sort_agents(agents: Iterable[Agent], order: SortOrder) -> List[Agent]:
    if order == SortOrder.MOST_FAVORITED:
        return sorted(agents, key=lambda a: a.favorite_count, reverse=True)
    if order == SortOrder.TRENDING:
        return sorted(agents, key=lambda a: a.trending_score, reverse=True)
    if order == SortOrder.RECENTLY_ADDED:
        return sorted(agents, key=_created_timestamp, reverse=True)
    return sorted(agents, key=lambda a: a.name.lower())


def select_agents(
    graph: WorkflowGraph,
    input_type: Optional[str] = ANY,
    output_type: Optional[str] = ANY,
    ownership: OwnershipFilter = OwnershipFilter.ALL,
    user_id: str = "",
    category: Optional[str] = None,
    query: Optional[str] = None,
    order: SortOrder = SortOrder.RECENTLY_ADDED
) -> List[Agent]:
    """Agent picker: compatibility first, then ownership, category, search and sort"""
    agents = compatible_agents(graph, input_type, output_type)
    agents = filter_by_ownership(agents, ownership, user_id)
    agents = filter_by_category(agents, category)
    agents = search_agents(agents, query)
    return sort_agents(agents, order)
