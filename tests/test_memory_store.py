"""Tests for the OpenSearch/Neptune/Bedrock backed memory store."""

from unittest.mock import MagicMock

import pytest

from fitmem.services.fact_extraction import FactExtractionError
from fitmem.services.memory_store import MemoryStore, MemoryStoreError
from fitmem.utils.bedrock_embed import BedrockEmbedError
from fitmem.utils.neptune_client import NeptuneError
from fitmem.utils.opensearch_client import OpenSearchError

EMBEDDING = [0.1, 0.2, 0.3]


def hit(doc_id, text, score=0.0, **extra):
    return {'id': doc_id, 'score': score, 'document': {'id': doc_id, 'memory': text, 'user_id': 'user-1', **extra}}


@pytest.fixture
def opensearch():
    client = MagicMock()
    client.vector_search.return_value = []
    client.index_document.return_value = True
    client.delete_document.return_value = True
    return client


@pytest.fixture
def embed():
    client = MagicMock()
    client.embed_memory.return_value = EMBEDDING
    client.embed_query.return_value = EMBEDDING
    return client


@pytest.fixture
def extractor():
    service = MagicMock()
    service.decide_operations.return_value = (True, [])
    return service


@pytest.fixture
def graph():
    return MagicMock()


@pytest.fixture
def reranker():
    return MagicMock()


@pytest.fixture
def store(opensearch, embed, extractor, reranker, graph):
    return MemoryStore(opensearch, embed, extractor, reranker=reranker, graph=graph)


def indexed(opensearch, index_type):
    return [c.args[0] for c in opensearch.index_document.call_args_list if c.args[1] == index_type]


class TestInit:

    def test_creates_indexes(self, store, opensearch):
        created = [c.args[0] for c in opensearch.create_index_if_not_exists.call_args_list]
        assert created == ['memory', 'history']

    def test_index_failure_is_not_fatal(self, opensearch, embed, extractor):
        opensearch.create_index_if_not_exists.side_effect = OpenSearchError('forbidden')
        assert MemoryStore(opensearch, embed, extractor).graph is None


class TestAdd:

    def test_requires_user_id(self, store):
        with pytest.raises(MemoryStoreError):
            store.add([{'role': 'user', 'content': 'hi'}], {})

    def test_empty_messages(self, store, extractor):
        assert store.add([], {'user_id': 'user-1'}).results == []
        extractor.extract_facts.assert_not_called()

    def test_verbatim_add_without_inference(self, store, opensearch, extractor):
        messages = [{'role': 'user', 'content': ' Bench press 80kg '}, {'role': 'assistant', 'content': 'Nice!'}]

        result = store.add(messages, {'user_id': 'user-1', 'infer': False, 'metadata': {'source': 'log'}})

        extractor.extract_facts.assert_not_called()
        opensearch.vector_search.assert_not_called()
        assert [e.memory for e in result.created] == ['Bench press 80kg']

        doc = indexed(opensearch, 'memory')[0]
        assert doc['memory'] == 'Bench press 80kg'
        assert doc['user_id'] == 'user-1'
        assert doc['metadata'] == {'source': 'log'}
        assert doc['embedding'] == EMBEDDING
        assert doc['immutable'] is False

        history = indexed(opensearch, 'history')[0]
        assert history['event'] == 'ADD'
        assert history['memory_id'] == doc['id']

    def test_extracted_facts_keep_categories(self, store, opensearch, extractor):
        extractor.extract_facts.return_value = [{'text': 'Is vegan', 'categories': ['dietary_info']}]

        store.add([{'role': 'user', 'content': 'I went vegan'}], {'user_id': 'user-1', 'infer': True})

        assert indexed(opensearch, 'memory')[0]['categories'] == ['dietary_info']

    def test_extraction_options_are_forwarded(self, store, extractor):
        extractor.extract_facts.return_value = []
        store.add([{'role': 'user', 'content': 'x'}], {'user_id': 'user-1', 'includes': 'diet', 'excludes': 'weather'})

        kwargs = extractor.extract_facts.call_args.kwargs
        assert kwargs['includes'] == 'diet'
        assert kwargs['excludes'] == 'weather'

    def test_contradicted_memories_are_deleted_except_immutable(self, store, opensearch, extractor):
        extractor.extract_facts.return_value = [{'text': 'Is vegan', 'categories': []}]
        opensearch.vector_search.return_value = [hit('m1', 'Eats meat', immutable=True), hit('m2', 'Eats fish')]
        extractor.decide_operations.return_value = (True, [0, 1])

        result = store.add([{'role': 'user', 'content': 'I went vegan'}], {'user_id': 'user-1'})

        opensearch.delete_document.assert_called_once_with('m2', 'memory')
        assert [(e.id, e.event) for e in result.results][0] == ('m2', 'DELETE')
        assert [e.memory for e in result.created] == ['Is vegan']
        assert extractor.decide_operations.call_args.args == ('Is vegan', ['Eats meat', 'Eats fish'])

    def test_duplicate_fact_is_not_created(self, store, opensearch, extractor):
        extractor.extract_facts.return_value = [{'text': 'Runs daily', 'categories': []}]
        opensearch.vector_search.return_value = [hit('m1', 'Runs every day')]
        extractor.decide_operations.return_value = (False, [])

        result = store.add([{'role': 'user', 'content': 'I run daily'}], {'user_id': 'user-1'})

        assert result.results == []
        assert indexed(opensearch, 'memory') == []

    def test_write_options_shape_document(self, store, opensearch):
        store.add([{'role': 'user', 'content': 'Peanut allergy'}], {
            'user_id': 'user-1',
            'infer': False,
            'immutable': True,
            'timestamp': 1700000000,
            'expiration_date': '2030-06-30',
        })

        doc = indexed(opensearch, 'memory')[0]
        assert doc['immutable'] is True
        assert doc['expires_at'] == '2030-06-30T23:59:59'
        assert doc['created_at'] == doc['updated_at']

    @pytest.mark.parametrize('bad_option', [{'expiration_date': '2026/12/31'}, {'expiration_date': '2026-02-30'},
                                            {'timestamp': 'yesterday'}, {'timestamp': 10**20}])
    def test_bad_write_options_change_nothing(self, store, opensearch, extractor, bad_option):
        extractor.extract_facts.return_value = [{'text': 'Is vegan', 'categories': []}]
        opensearch.vector_search.return_value = [hit('old', 'Eats meat')]
        extractor.decide_operations.return_value = (True, [0])

        with pytest.raises(MemoryStoreError, match='Invalid write options'):
            store.add([{'role': 'user', 'content': 'I went vegan'}], {'user_id': 'user-1', **bad_option})

        extractor.extract_facts.assert_not_called()
        opensearch.delete_document.assert_not_called()
        opensearch.index_document.assert_not_called()

    def test_graph_relations_on_enable_graph(self, store, extractor, graph):
        extractor.extract_relations.return_value = {
            'entities': [{'name': 'user', 'type': 'person'}, {'name': 'yoga', 'type': 'exercise'}],
            'relations': [{'source': 'user', 'relationship': 'practices', 'target': 'yoga'}],
        }

        store.add([{'role': 'user', 'content': 'I practice yoga'}], {'user_id': 'user-1', 'infer': False, 'enable_graph': True})

        extractor.extract_relations.assert_called_once_with('user-1', ['I practice yoga'])
        graph.upsert_entity.assert_any_call('user-1', 'yoga', 'exercise')
        graph.create_relation.assert_called_once_with('user-1', 'user', 'practices', 'yoga')

    def test_no_graph_write_without_flag(self, store, extractor, graph):
        store.add([{'role': 'user', 'content': 'I practice yoga'}], {'user_id': 'user-1', 'infer': False})
        extractor.extract_relations.assert_not_called()
        graph.create_relation.assert_not_called()

    @pytest.mark.parametrize('error', [NeptuneError('gremlin timeout'), FactExtractionError('bad json')])
    def test_graph_failure_keeps_memories(self, store, extractor, error):
        extractor.extract_relations.side_effect = error
        result = store.add([{'role': 'user', 'content': 'I practice yoga'}], {
            'user_id': 'user-1',
            'infer': False,
            'enable_graph': True
        })
        assert len(result.created) == 1

    def test_backend_failure(self, store, embed):
        embed.embed_memory.side_effect = BedrockEmbedError('throttled')
        with pytest.raises(MemoryStoreError, match='Memory add failed'):
            store.add([{'role': 'user', 'content': 'hi'}], {'user_id': 'user-1', 'infer': False})


class TestSearch:

    def test_vector_search_by_default(self, store, opensearch):
        opensearch.vector_search.return_value = [hit('a', 'Squats', 0.8), hit('b', 'Deadlifts', 0.9)]

        results = store.search('legs', {'user_id': 'user-1', 'limit': 5, 'filters': {'categories': {'in': ['x']}}})

        assert [r.text for r in results] == ['Deadlifts', 'Squats']
        opensearch.vector_search.assert_called_once_with(EMBEDDING, 'user-1', 10, {'categories': {'in': ['x']}})
        opensearch.hybrid_search.assert_not_called()

    def test_keyword_search_uses_hybrid(self, store, opensearch):
        opensearch.hybrid_search.return_value = []
        store.search('knee', {'user_id': 'user-1', 'keyword_search': True})
        opensearch.hybrid_search.assert_called_once()
        assert opensearch.hybrid_search.call_args.args[0] == 'knee'

    def test_rerank_rescores_then_thresholds(self, store, opensearch, reranker):
        opensearch.vector_search.return_value = [hit('a', 'A', 0.9), hit('b', 'B', 0.8), hit('c', 'C', 0.7)]
        reranker.rerank.return_value = [
            {'index': 2, 'relevance_score': 0.95},
            {'index': 1, 'relevance_score': 0.6},
            {'index': 0, 'relevance_score': 0.1},
        ]

        results = store.search('q', {'user_id': 'user-1', 'rerank': True, 'top_k': 20, 'threshold': 0.5, 'limit': 1})

        assert [(r.text, r.score) for r in results] == [('C', 0.95)]
        reranker.rerank.assert_called_once_with('q', ['A', 'B', 'C'])
        assert opensearch.vector_search.call_args.args[2] == 20

    def test_rerank_without_backend(self, opensearch, embed, extractor):
        opensearch.vector_search.return_value = [hit('a', 'A', 0.9)]
        store = MemoryStore(opensearch, embed, extractor)
        with pytest.raises(MemoryStoreError):
            store.search('q', {'user_id': 'user-1', 'rerank': True})

    def test_opensearch_failure(self, store, opensearch):
        opensearch.vector_search.side_effect = OpenSearchError('timeout')
        with pytest.raises(MemoryStoreError, match='Memory search failed'):
            store.search('q', {'user_id': 'user-1'})


class TestReadsAndEdits:

    def test_get_all(self, store, opensearch):
        opensearch.list_documents.return_value = [{'id': 'a', 'memory': 'A', 'user_id': 'user-1'}]
        assert [m.text for m in store.get_all('user-1')] == ['A']
        opensearch.list_documents.assert_called_once_with('memory', user_id='user-1')

    def test_get_expired_memory(self, store, opensearch):
        opensearch.get_document.return_value = {'id': 'a', 'memory': 'A', 'expires_at': '2001-01-01T23:59:59'}
        assert store.get('a') is None

    def test_get_memory(self, store, opensearch):
        opensearch.get_document.return_value = {'id': 'a', 'memory': 'A', 'expires_at': '2999-01-01T23:59:59'}
        assert store.get('a').text == 'A'

    def test_update(self, store, opensearch, embed):
        opensearch.get_document.return_value = {'id': 'a', 'memory': 'Runs 5k', 'user_id': 'user-1', 'metadata': {'x': 1}}

        updated = store.update('a', 'Runs 10k', {'y': 2})

        assert updated.text == 'Runs 10k'
        assert updated.metadata == {'x': 1, 'y': 2}
        doc_id, fields, index_type = opensearch.update_document.call_args.args
        assert (doc_id, index_type) == ('a', 'memory')
        assert fields['embedding'] == EMBEDDING
        assert indexed(opensearch, 'history')[0]['event'] == 'UPDATE'

    def test_update_missing(self, store, opensearch):
        opensearch.get_document.return_value = None
        assert store.update('a', 'text') is None

    def test_update_immutable(self, store, opensearch):
        opensearch.get_document.return_value = {'id': 'a', 'memory': 'Peanut allergy', 'immutable': True}
        with pytest.raises(MemoryStoreError, match='immutable'):
            store.update('a', 'No allergy')
        opensearch.update_document.assert_not_called()

    def test_delete_missing(self, store, opensearch):
        opensearch.get_document.return_value = None
        assert store.delete('a') is False
        opensearch.delete_document.assert_not_called()

    def test_delete_records_history(self, store, opensearch):
        opensearch.get_document.return_value = {'id': 'a', 'memory': 'A', 'user_id': 'user-1'}
        assert store.delete('a') is True
        assert indexed(opensearch, 'history')[0]['event'] == 'DELETE'

    def test_delete_all_clears_graph(self, store, opensearch, graph):
        opensearch.delete_user_documents.return_value = 3
        assert store.delete_all('user-1') == 3
        graph.delete_user_graph.assert_called_once_with('user-1')

    def test_history(self, store, opensearch):
        store.history('a')
        opensearch.list_documents.assert_called_once_with('history', clauses=[{'term': {'memory_id': 'a'}}])


class TestGraphReads:

    def test_get_relations(self, store, graph):
        graph.get_relations.return_value = {
            'entities': [{'name': 'user', 'type': 'person'}, {'name': 'squat', 'type': 'exercise'}],
            'relations': [{'source': 'user', 'relationship': 'performs', 'target': 'squat'}],
        }

        result = store.get_relations('user-1', entity='squat', limit=5)

        assert result.entity_names() == ['user', 'squat']
        assert result.relationships[0].key == ('user', 'squat', 'performs')
        graph.get_relations.assert_called_once_with('user-1', entity_name='squat', relationship_type=None, limit=5)

    def test_get_entities(self, store, graph):
        graph.get_entities.return_value = [{'name': 'squat', 'type': 'exercise'}]
        assert store.get_entities('user-1', 'exercise')[0].type == 'exercise'

    def test_no_graph_backend(self, opensearch, embed, extractor):
        store = MemoryStore(opensearch, embed, extractor)
        assert store.get_relations('user-1').is_empty()
        assert store.get_entities('user-1') == []

    def test_graph_failure(self, store, graph):
        graph.get_relations.side_effect = NeptuneError('connection closed')
        with pytest.raises(MemoryStoreError):
            store.get_relations('user-1')
