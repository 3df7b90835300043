"""Tests for bounded multi-hop graph expansion."""

from unittest.mock import MagicMock

import pytest

from fitmem.models.core import GraphEntity, GraphRelationship, GraphSearchResult
from fitmem.services.errors import UpstreamError, ValidationError
from fitmem.services.graph_traversal import GraphTraversalEngine, clamp_depth

SEED_NAMES = ['A', 'B', 'C', 'D', 'E', 'F']


def seed_result():
    return GraphSearchResult(entities=[GraphEntity(name=name, type='concept') for name in SEED_NAMES],
                             relationships=[GraphRelationship('user', name, 'knows') for name in SEED_NAMES])


def neighbours(entity):
    return GraphSearchResult(entities=[GraphEntity(name=entity), GraphEntity(name=f'{entity}1')],
                             relationships=[GraphRelationship(entity, f'{entity}1', 'linked_to')])


@pytest.fixture
def graph_store():
    store = MagicMock()

    def get_relations(user_id, entity=None, relationship_type=None, depth=1, limit=None):
        return seed_result() if entity is None else neighbours(entity)

    store.get_relations.side_effect = get_relations
    return store


class TestClampDepth:

    @pytest.mark.parametrize('depth,expected', [(None, 1), (0, 1), (-4, 1), (1, 1), (2, 2), (3, 3), (9, 3)])
    def test_clamp(self, depth, expected):
        assert clamp_depth(depth) == expected


class TestRelationships:

    def test_depth_one_is_single_lookup(self, graph_store, pro_tier):
        result = GraphTraversalEngine(graph_store, pro_tier).relationships('user-1')
        assert graph_store.get_relations.call_count == 1
        assert result.entity_names() == SEED_NAMES

    def test_depth_two_fans_out_to_first_five(self, graph_store, pro_tier):
        result = GraphTraversalEngine(graph_store, pro_tier).relationships('user-1', depth=2)

        assert graph_store.get_relations.call_count == 6
        expanded = [c.kwargs['entity'] for c in graph_store.get_relations.call_args_list[1:]]
        assert expanded == ['A', 'B', 'C', 'D', 'E']
        assert 'F' in result.entity_names()
        assert 'F1' not in result.entity_names()
        assert 'E1' in result.entity_names()

    def test_results_are_deduplicated(self, graph_store, pro_tier):
        result = GraphTraversalEngine(graph_store, pro_tier).relationships('user-1', depth=3)

        names = result.entity_names()
        assert len(names) == len(set(names))
        keys = [r.key for r in result.relationships]
        assert len(keys) == len(set(keys))

    def test_first_seen_entity_wins(self, graph_store, pro_tier):
        result = GraphTraversalEngine(graph_store, pro_tier).relationships('user-1', depth=2)
        entity_a = [e for e in result.entities if e.name == 'A'][0]
        assert entity_a.type == 'concept'

    def test_failed_hop_is_skipped(self, graph_store, pro_tier):
        def get_relations(user_id, entity=None, relationship_type=None, depth=1, limit=None):
            if entity == 'B':
                raise RuntimeError('neptune timeout')
            return seed_result() if entity is None else neighbours(entity)

        graph_store.get_relations.side_effect = get_relations
        result = GraphTraversalEngine(graph_store, pro_tier).relationships('user-1', depth=2)

        assert graph_store.get_relations.call_count == 6
        assert 'B1' not in result.entity_names()
        assert {'A1', 'C1', 'D1', 'E1'} <= set(result.entity_names())

    def test_seed_failure_is_upstream_error(self, pro_tier):
        store = MagicMock()
        store.get_relations.side_effect = RuntimeError('down')
        with pytest.raises(UpstreamError, match='Graph relationship lookup failed'):
            GraphTraversalEngine(store, pro_tier).relationships('user-1')

    def test_relationship_type_applies_to_every_hop(self, graph_store, pro_tier):
        GraphTraversalEngine(graph_store, pro_tier).relationships('user-1', relationship_type='trains', depth=2)
        assert all(c.kwargs['relationship_type'] == 'trains' for c in graph_store.get_relations.call_args_list)

    def test_free_tier_returns_empty(self, graph_store, free_tier):
        result = GraphTraversalEngine(graph_store, free_tier).relationships('user-1', depth=3)
        assert result.is_empty()
        graph_store.get_relations.assert_not_called()

    def test_user_id_required(self, graph_store, pro_tier):
        with pytest.raises(ValidationError):
            GraphTraversalEngine(graph_store, pro_tier).relationships('')


class TestEntities:

    def test_entities_on_pro(self, pro_tier):
        store = MagicMock()
        store.get_entities.return_value = [GraphEntity(name='squat', type='exercise')]
        engine = GraphTraversalEngine(store, pro_tier)

        assert engine.entities_by_type('user-1', 'exercise', limit=5)[0].name == 'squat'
        store.get_entities.assert_called_once_with('user-1', entity_type='exercise', limit=5)

    def test_entities_on_free(self, free_tier):
        store = MagicMock()
        assert GraphTraversalEngine(store, free_tier).entities('user-1') == []
        store.get_entities.assert_not_called()

    def test_search_by_entity_is_depth_one(self, graph_store, pro_tier):
        GraphTraversalEngine(graph_store, pro_tier).search_by_entity('user-1', 'squat')
        graph_store.get_relations.assert_called_once()
        assert graph_store.get_relations.call_args.kwargs['entity'] == 'squat'
