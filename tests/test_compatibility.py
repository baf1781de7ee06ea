import pytest

from orchestration.compatibility import (
    OwnershipFilter,
    SortOrder,
    compatible_agents,
    required_input_type,
    select_agents,
)


def agent_ids(agents):
    return {agent.id for agent in agents}


def test_empty_pipeline_offers_every_agent(empty_graph, catalog):
    assert agent_ids(compatible_agents(empty_graph)) == {agent.id for agent in catalog}


def test_empty_pipeline_honours_both_filters(empty_graph):
    assert agent_ids(compatible_agents(empty_graph, input_type="sound")) == {"3", "5"}
    assert agent_ids(compatible_agents(empty_graph, output_type="image")) == {"2"}
    assert agent_ids(compatible_agents(empty_graph, input_type="text", output_type="sound")) == {"7"}


def test_select_sentinel_means_no_filter(empty_graph):
    assert compatible_agents(empty_graph, "select", "select") == compatible_agents(empty_graph)


def test_required_input_type_follows_tail(empty_graph, make_graph):
    assert required_input_type(empty_graph) is None
    assert required_input_type(make_graph("2")) == "image"
    assert required_input_type(make_graph("2", "6")) == "text"


def test_image_tail_never_offers_text_input_agents(make_graph):
    graph = make_graph("2")

    offered = compatible_agents(graph, input_type="text")

    assert agent_ids(offered) == {"6"}
    assert all(agent.input_type != "text" for agent in offered)


def test_output_filter_still_narrows_non_empty_pipeline(make_graph):
    graph = make_graph("8")

    assert agent_ids(compatible_agents(graph)) == {"1", "2", "4", "7", "8"}
    assert agent_ids(compatible_agents(graph, output_type="sound")) == {"7"}


def test_existing_steps_are_not_revalidated(make_graph):
    # incompatible chain: image output feeding a text agent
    graph = make_graph("8", "2").move_down("s0")

    assert agent_ids(compatible_agents(graph)) == {"1", "2", "4", "7", "8"}


def test_ownership_filters(empty_graph):
    mine = select_agents(empty_graph, ownership=OwnershipFilter.MINE, user_id="7")
    favorites = select_agents(empty_graph, ownership=OwnershipFilter.FAVORITES)

    assert agent_ids(mine) == {"1", "3", "7"}
    assert agent_ids(favorites) == {"1"}


def test_category_and_search(empty_graph):
    assert agent_ids(select_agents(empty_graph, category="Media")) == {"3", "5"}
    assert agent_ids(select_agents(empty_graph, category="Document")) == {"4"}
    assert agent_ids(select_agents(empty_graph, query="PICTURES")) == {"2"}
    assert agent_ids(select_agents(empty_graph, query="tts")) == {"7"}


def test_unknown_category_is_rejected(empty_graph):
    with pytest.raises(ValueError):
        select_agents(empty_graph, category="Robots")


def test_sort_orders(empty_graph):
    by_favorites = select_agents(empty_graph, order=SortOrder.MOST_FAVORITED)
    by_trend = select_agents(empty_graph, order=SortOrder.TRENDING)
    by_date = select_agents(empty_graph, order=SortOrder.RECENTLY_ADDED)

    assert [a.id for a in by_favorites[:3]] == ["2", "1", "3"]
    assert [a.id for a in by_trend[:3]] == ["3", "2", "1"]
    assert [a.id for a in by_date[:3]] == ["2", "1", "3"]


def test_filters_combine_with_compatibility(make_graph):
    graph = make_graph("2")

    assert select_agents(graph, category="Media") == []
