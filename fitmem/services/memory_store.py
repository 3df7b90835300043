"""
Memory store backed by OpenSearch (memories, history), Neptune (knowledge
graph) and Bedrock (embeddings, reranking, fact extraction).
"""

import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..models.core import AddMemoryResult, GraphEntity, GraphRelationship, GraphSearchResult, Memory, MemoryEvent, ScoredMemory
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.bedrock_rerank import BedrockRerank, BedrockRerankError
from ..utils.config import AppConfig
from ..utils.constants import GRAPH_DEFAULT_ENTITY_LIMIT, MEMORY_SEARCH_DEFAULT_LIMIT, SEARCH_DEFAULT_TOP_K
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, NeptuneError
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.timestamp_utils import checked_timestamp, end_of_day, parse_datetime
from .fact_extraction import FactExtractionError, FactExtractionService

logger = get_logger(__name__)

# Existing memories compared against each new fact
SIMILAR_MEMORY_TOP_K = 5

BACKEND_ERRORS = (OpenSearchError, NeptuneError, BedrockEmbedError, BedrockRerankError, FactExtractionError)


class MemoryStoreError(Exception):
    """Custom exception for memory store errors."""
    pass


def _write_times(options: Dict[str, Any]) -> Tuple[datetime, Optional[datetime]]:
    """Creation and expiry times of a write, checked before anything is read or deleted."""
    try:
        timestamp = options.get('timestamp')
        created_at = checked_timestamp(timestamp) if timestamp is not None else datetime.now()
        expiration_date = options.get('expiration_date')
        expires_at = end_of_day(expiration_date) if expiration_date else None
    except ValueError as e:
        raise MemoryStoreError(f'Invalid write options: {e}')
    return created_at, expires_at


def _is_expired(doc: Dict[str, Any]) -> bool:
    expires_at = parse_datetime(doc.get('expires_at'))
    return expires_at is not None and expires_at <= datetime.now(expires_at.tzinfo)


class MemoryStore:
    """Per-user memory store with LLM-driven writes and vector search."""

    def __init__(self,
                 opensearch: OpenSearchClient,
                 embed: BedrockEmbed,
                 extractor: FactExtractionService,
                 reranker: Optional[BedrockRerank] = None,
                 graph: Optional[NeptuneClient] = None):
        """
        Args:
            opensearch: Client for the memory and history indexes
            embed: Embedding client for memory text and queries
            extractor: Fact extraction service used when writes infer facts
            reranker: Rerank client; requests asking for reranking fail without one
            graph: Neptune client; graph reads return nothing and graph writes are skipped without one
        """
        self.opensearch = opensearch
        self.embed = embed
        self.extractor = extractor
        self.reranker = reranker
        self.graph = graph

        try:
            self.opensearch.create_index_if_not_exists('memory')
            self.opensearch.create_index_if_not_exists('history')
        except OpenSearchError as e:
            logger.warning(f'Failed to create OpenSearch indexes: {e}')

        logger.info('Initialized MemoryStore')

    @classmethod
    def from_config(cls, app_config: AppConfig, llm) -> 'MemoryStore':
        return cls(opensearch=OpenSearchClient(app_config.opensearch),
                   embed=BedrockEmbed(app_config.bedrock_embed),
                   extractor=FactExtractionService(llm),
                   reranker=BedrockRerank(app_config.bedrock_rerank),
                   graph=NeptuneClient(app_config.neptune))

    def add(self, messages: List[Dict[str, str]], options: Dict[str, Any]) -> AddMemoryResult:
        """Store what a conversation says about the user.

        Args:
            messages: List of message dicts with 'role' and 'content' keys
            options: `user_id` plus optional metadata, infer, includes, excludes,
                custom_instructions, custom_categories, enable_graph, timestamp,
                expiration_date and immutable

        Returns:
            AddMemoryResult with one ADD/DELETE event per change

        Raises:
            MemoryStoreError: If extraction or storage fails
        """
        user_id = options.get('user_id')
        if not user_id:
            raise MemoryStoreError('user_id is required to add memories')
        if not messages:
            logger.warning('Empty messages provided for memory add')
            return AddMemoryResult()

        write_times = _write_times(options)

        infer = options.get('infer', True)
        try:
            if infer:
                facts = self.extractor.extract_facts(messages,
                                                     includes=options.get('includes'),
                                                     excludes=options.get('excludes'),
                                                     custom_instructions=options.get('custom_instructions'),
                                                     custom_categories=options.get('custom_categories'))
            else:
                facts = [{
                    'text': msg['content'].strip(),
                    'categories': []
                } for msg in messages if msg.get('role') == 'user' and msg.get('content', '').strip()]

            events: List[MemoryEvent] = []
            for fact in facts:
                events.extend(self._apply_fact(user_id, fact, options, infer, write_times))

            created = [e.memory for e in events if e.event == 'ADD']
            if options.get('enable_graph') and created:
                self._add_to_graph(user_id, created)

            logger.debug(f'Memory add for user {user_id}: {len(facts)} facts, {len(events)} changes')
            return AddMemoryResult(results=events)

        except BACKEND_ERRORS as e:
            logger.error(f'Service error during memory add: {e}')
            raise MemoryStoreError(f'Memory add failed: {e}')

    def _apply_fact(self, user_id: str, fact: Dict[str, Any], options: Dict[str, Any], infer: bool,
                    write_times: Tuple[datetime, Optional[datetime]]) -> List[MemoryEvent]:
        text = fact['text']
        embedding = self.embed.embed_memory(text)

        similar = []
        if infer:
            similar = [hit['document'] for hit in self.opensearch.vector_search(embedding, user_id, SIMILAR_MEMORY_TOP_K)]
        create, delete_indices = self.extractor.decide_operations(text, [doc.get('memory', '') for doc in similar])

        document = None
        if create:
            document = self._document(str(uuid.uuid4()), user_id, text, fact, embedding, options, write_times)

        events = []
        for idx in delete_indices:
            doc = similar[idx]
            if doc.get('immutable'):
                logger.debug(f'Keeping immutable memory {doc.get("id")} despite contradiction')
                continue
            if self.opensearch.delete_document(doc['id'], 'memory'):
                self._record(doc['id'], user_id, 'DELETE', old_memory=doc.get('memory'))
                events.append(MemoryEvent(id=doc['id'], memory=doc.get('memory', ''), event='DELETE'))

        if document is not None:
            self.opensearch.index_document(document, 'memory')
            self._record(document['id'], user_id, 'ADD', new_memory=text)
            events.append(MemoryEvent(id=document['id'], memory=text, event='ADD'))

        return events

    @staticmethod
    def _document(memory_id: str, user_id: str, text: str, fact: Dict[str, Any], embedding: List[float],
                  options: Dict[str, Any], write_times: Tuple[datetime, Optional[datetime]]) -> Dict[str, Any]:
        created_at, expires_at = write_times
        document = {
            'id': memory_id,
            'user_id': user_id,
            'memory': text,
            'categories': list(fact.get('categories') or []),
            'metadata': dict(options.get('metadata') or {}),
            'immutable': bool(options.get('immutable', False)),
            'embedding': embedding,
            'created_at': created_at.isoformat(),
            'updated_at': created_at.isoformat()
        }
        if expires_at is not None:
            document['expires_at'] = expires_at.isoformat()
        return document

    def _add_to_graph(self, user_id: str, facts: List[str]) -> None:
        if self.graph is None:
            logger.debug('No graph backend configured, skipping relation extraction')
            return

        try:
            extracted = self.extractor.extract_relations(user_id, facts)
            for entity in extracted['entities']:
                self.graph.upsert_entity(user_id, entity['name'], entity['type'])
            for relation in extracted['relations']:
                self.graph.create_relation(user_id, relation['source'], relation['relationship'], relation['target'])
            logger.debug(f'Added {len(extracted["relations"])} relations to graph for user {user_id}')
        except (FactExtractionError, NeptuneError) as e:
            logger.warning(f'Memories stored without graph update: {e}')

    def _record(self, memory_id: str, user_id: str, event: str, old_memory: Optional[str] = None,
                new_memory: Optional[str] = None) -> None:
        self.opensearch.index_document({
            'id': str(uuid.uuid4()),
            'memory_id': memory_id,
            'user_id': user_id,
            'event': event,
            'old_memory': old_memory,
            'new_memory': new_memory,
            'created_at': datetime.now().isoformat()
        }, 'history')

    def search(self, query: str, request: Dict[str, Any]) -> List[ScoredMemory]:
        """Semantic search over one user's memories.

        Args:
            query: Search text
            request: `user_id` plus optional limit, threshold, rerank, top_k,
                keyword_search and filters

        Returns:
            Hits ordered by score, at most `limit`, none below `threshold`

        Raises:
            MemoryStoreError: If a backend call fails or reranking is unavailable
        """
        user_id = request['user_id']
        limit = request.get('limit') or MEMORY_SEARCH_DEFAULT_LIMIT
        threshold = request.get('threshold')
        rerank = bool(request.get('rerank'))
        size = max(request.get('top_k') or SEARCH_DEFAULT_TOP_K, limit)
        filters = request.get('filters')

        try:
            vector = self.embed.embed_query(query)
            if request.get('keyword_search'):
                hits = self.opensearch.hybrid_search(query, vector, user_id, size, filters)
            else:
                hits = self.opensearch.vector_search(vector, user_id, size, filters)

            memories = [ScoredMemory.from_document(hit['document'], score=float(hit['score'])) for hit in hits]

            if rerank and memories:
                if self.reranker is None:
                    raise MemoryStoreError('Reranking requested but no rerank backend is configured')
                ranked = self.reranker.rerank(query, [m.text for m in memories])
                memories = [replace(memories[r['index']], score=r['relevance_score']) for r in ranked]

        except BACKEND_ERRORS as e:
            logger.error(f'Service error during memory search: {e}')
            raise MemoryStoreError(f'Memory search failed: {e}')

        if threshold is not None:
            memories = [m for m in memories if m.score >= threshold]
        memories.sort(key=lambda m: m.score, reverse=True)
        return memories[:limit]

    def get_all(self, user_id: str) -> List[Memory]:
        """All unexpired memories of a user, oldest first."""
        try:
            return [Memory.from_document(doc) for doc in self.opensearch.list_documents('memory', user_id=user_id)]
        except OpenSearchError as e:
            raise MemoryStoreError(f'Memory fetch failed: {e}')

    def get(self, memory_id: str) -> Optional[Memory]:
        try:
            doc = self.opensearch.get_document(memory_id, 'memory')
        except OpenSearchError as e:
            raise MemoryStoreError(f'Memory get failed: {e}')
        if doc is None or _is_expired(doc):
            return None
        return Memory.from_document(doc)

    def update(self, memory_id: str, text: str, metadata: Optional[Dict[str, Any]] = None) -> Optional[Memory]:
        """Replace a memory's text, re-embedding it.

        Returns:
            The updated memory, or None if it does not exist

        Raises:
            MemoryStoreError: If the memory is immutable or a backend call fails
        """
        current = self.get(memory_id)
        if current is None:
            return None
        if current.immutable:
            raise MemoryStoreError(f'Memory {memory_id} is immutable')

        now = datetime.now()
        fields = {'memory': text, 'updated_at': now.isoformat()}
        if metadata is not None:
            fields['metadata'] = {**current.metadata, **metadata}

        try:
            fields['embedding'] = self.embed.embed_memory(text)
            self.opensearch.update_document(memory_id, fields, 'memory')
            self._record(memory_id, current.user_id, 'UPDATE', old_memory=current.text, new_memory=text)
        except BACKEND_ERRORS as e:
            logger.error(f'Service error during memory update: {e}')
            raise MemoryStoreError(f'Memory update failed: {e}')

        return replace(current, text=text, updated_at=now, metadata=fields.get('metadata', current.metadata))

    def delete(self, memory_id: str) -> bool:
        """Delete one memory. Returns False if it does not exist."""
        try:
            doc = self.opensearch.get_document(memory_id, 'memory')
            if doc is None:
                return False
            deleted = self.opensearch.delete_document(memory_id, 'memory')
            if deleted:
                self._record(memory_id, doc.get('user_id', ''), 'DELETE', old_memory=doc.get('memory'))
            return deleted
        except OpenSearchError as e:
            logger.error(f'OpenSearch error during memory deletion: {e}')
            raise MemoryStoreError(f'Memory deletion failed: {e}')

    def delete_all(self, user_id: str) -> int:
        """Delete all of a user's memories and their graph. Returns the number of memories deleted."""
        try:
            count = self.opensearch.delete_user_documents(user_id, 'memory')
            if self.graph is not None:
                self.graph.delete_user_graph(user_id)
            logger.info(f'Deleted {count} memories for user {user_id}')
            return count
        except (OpenSearchError, NeptuneError) as e:
            logger.error(f'Service error during memory deletion: {e}')
            raise MemoryStoreError(f'Memory deletion failed: {e}')

    def history(self, memory_id: str) -> List[Dict[str, Any]]:
        """Change events of one memory, oldest first."""
        try:
            return self.opensearch.list_documents('history', clauses=[{'term': {'memory_id': memory_id}}])
        except OpenSearchError as e:
            raise MemoryStoreError(f'Memory history failed: {e}')

    def get_entities(self,
                     user_id: str,
                     entity_type: Optional[str] = None,
                     limit: Optional[int] = GRAPH_DEFAULT_ENTITY_LIMIT) -> List[GraphEntity]:
        if self.graph is None:
            return []
        try:
            return [GraphEntity(name=e['name'], type=e['type']) for e in self.graph.get_entities(user_id, entity_type, limit)]
        except NeptuneError as e:
            raise MemoryStoreError(f'Entity lookup failed: {e}')

    def get_relations(self,
                      user_id: str,
                      entity: Optional[str] = None,
                      relationship_type: Optional[str] = None,
                      depth: int = 1,
                      limit: Optional[int] = GRAPH_DEFAULT_ENTITY_LIMIT) -> GraphSearchResult:
        """Single-hop relationship lookup. Deeper traversal is done by the caller."""
        if depth != 1:
            logger.debug(f'Graph lookups are single hop, ignoring depth={depth}')
        if self.graph is None:
            return GraphSearchResult()

        try:
            data = self.graph.get_relations(user_id, entity_name=entity, relationship_type=relationship_type, limit=limit)
        except NeptuneError as e:
            raise MemoryStoreError(f'Relationship lookup failed: {e}')

        return GraphSearchResult(entities=[GraphEntity(name=e['name'], type=e['type']) for e in data['entities']],
                                 relationships=[
                                     GraphRelationship(source=r['source'], target=r['target'], relationship=r['relationship'])
                                     for r in data['relations']
                                 ])
