"""
OpenSearch client wrapper for the memory, history and user indexes.
"""

import time
from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError as OpenSearchNotFoundError
from opensearchpy.exceptions import OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger
from .timestamp_utils import end_of_day

logger = get_logger(__name__)

INDEX_TYPES = ('memory', 'history', 'user', 'settings')

# Top-level memory fields; any other filter field is looked up under metadata
MEMORY_FIELDS = ('id', 'user_id', 'memory', 'categories', 'created_at', 'updated_at', 'expires_at', 'immutable')

# Text field used for keyword matching per index
TEXT_FIELDS = {'memory': 'memory', 'history': 'new_memory', 'user': 'name', 'settings': 'custom_instructions'}

RANGE_OPERATORS = ('gt', 'gte', 'lt', 'lte')

# Upper bound for listing endpoints
MAX_LIST_SIZE = 1000


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


def _field_path(field: str) -> str:
    if field in MEMORY_FIELDS or field.startswith('metadata.'):
        return field
    return f'metadata.{field}'


def _date_bound(operator: str, value: Any) -> Any:
    # A bare day as an upper bound covers the whole day
    if operator == 'lte' and isinstance(value, str) and len(value) == 10:
        return end_of_day(value).isoformat()
    return value


def translate_condition(condition: Dict[str, Any]) -> Dict[str, Any]:
    """
    Translate one {field, operator, value} condition into a query clause.

    Args:
        condition: Condition dictionary from a search filter

    Returns:
        OpenSearch query clause

    Raises:
        OpenSearchError: If the condition is incomplete or the operator is unknown
    """
    field = condition.get('field')
    operator = condition.get('operator', 'eq')
    value = condition.get('value')
    if not field:
        raise OpenSearchError(f'Filter condition without field: {condition}')

    path = _field_path(field)
    if operator == 'eq':
        return {'term': {path: value}}
    if operator == 'ne':
        return {'bool': {'must_not': [{'term': {path: value}}]}}
    if operator in RANGE_OPERATORS:
        return {'range': {path: {operator: _date_bound(operator, value)}}}
    if operator == 'in':
        values = value if isinstance(value, (list, tuple)) else [value]
        return {'terms': {path: list(values)}}
    if operator == 'contains':
        return {'match': {path: value}}
    raise OpenSearchError(f'Unsupported filter operator: {operator}')


def translate_filters(filters: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Translate a search filter object into bool-filter clauses.

    Args:
        filters: Filter object with optional categories, created_at, metadata, AND and OR keys

    Returns:
        List of clauses to place under bool.filter
    """
    if not filters:
        return []

    clauses: List[Dict[str, Any]] = []

    categories = (filters.get('categories') or {}).get('in')
    if categories:
        clauses.append({'terms': {'categories': list(categories)}})

    created_at = filters.get('created_at') or {}
    bounds = {op: _date_bound(op, created_at[op]) for op in RANGE_OPERATORS if created_at.get(op)}
    if bounds:
        clauses.append({'range': {'created_at': bounds}})

    for key, value in (filters.get('metadata') or {}).items():
        clauses.append({'term': {f'metadata.{key}': value}})

    for condition in filters.get('AND') or []:
        clauses.append(translate_condition(condition))

    or_conditions = filters.get('OR') or []
    if or_conditions:
        clauses.append({
            'bool': {
                'should': [translate_condition(c) for c in or_conditions],
                'minimum_should_match': 1
            }
        })

    return clauses


def _not_expired() -> Dict[str, Any]:
    return {
        'bool': {
            'should': [{
                'bool': {
                    'must_not': [{
                        'exists': {
                            'field': 'expires_at'
                        }
                    }]
                }
            }, {
                'range': {
                    'expires_at': {
                        'gt': 'now'
                    }
                }
            }],
            'minimum_should_match': 1
        }
    }


def _hits(response: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [{'id': hit['_source'].get('id', hit['_id']), 'score': hit.get('_score') or 0.0, 'document': hit['_source']}
            for hit in response['hits']['hits']]


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client=None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built opensearch-py client (built from config if None)
        """
        self.config = config

        if client is None:
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service='aoss', refreshable_credentials=credentials)
            endpoint = config.endpoint.split('://', 1)[-1]
            client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                http_auth=auth,
                                use_ssl=True,
                                verify_certs=True,
                                connection_class=RequestsHttpConnection)
        self.client = client

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def index_name(self, index_type: str) -> str:
        if index_type not in INDEX_TYPES:
            raise OpenSearchError(f'Unknown index type: {index_type}')
        return f'{self.config.index_name}_{index_type}'

    def _index_body(self, index_type: str) -> Dict[str, Any]:
        if index_type == 'memory':
            return {
                'mappings': {
                    'properties': {
                        'id': {
                            'type': 'keyword'
                        },
                        'user_id': {
                            'type': 'keyword'
                        },
                        'memory': {
                            'type': 'text'
                        },
                        'categories': {
                            'type': 'keyword'
                        },
                        'metadata': {
                            'type': 'object'
                        },
                        'immutable': {
                            'type': 'boolean'
                        },
                        'embedding': {
                            'type': 'knn_vector',
                            'dimension': self.config.dimension,
                            'method': {
                                'name': 'hnsw',
                                'space_type': 'cosinesimil',
                                'engine': 'nmslib'
                            }
                        },
                        'created_at': {
                            'type': 'date'
                        },
                        'updated_at': {
                            'type': 'date'
                        },
                        'expires_at': {
                            'type': 'date'
                        }
                    }
                },
                'settings': {
                    'index': {
                        'knn': True,
                        'knn.algo_param.ef_search': 100
                    }
                }
            }
        if index_type == 'history':
            return {
                'mappings': {
                    'properties': {
                        'id': {
                            'type': 'keyword'
                        },
                        'memory_id': {
                            'type': 'keyword'
                        },
                        'user_id': {
                            'type': 'keyword'
                        },
                        'event': {
                            'type': 'keyword'
                        },
                        'old_memory': {
                            'type': 'text'
                        },
                        'new_memory': {
                            'type': 'text'
                        },
                        'created_at': {
                            'type': 'date'
                        }
                    }
                }
            }
        if index_type == 'settings':
            return {
                'mappings': {
                    'properties': {
                        'id': {
                            'type': 'keyword'
                        },
                        'custom_instructions': {
                            'type': 'text'
                        },
                        'custom_categories': {
                            'type': 'object',
                            'enabled': False
                        },
                        'updated_at': {
                            'type': 'date'
                        }
                    }
                }
            }
        return {
            'mappings': {
                'properties': {
                    'id': {
                        'type': 'keyword'
                    },
                    'name': {
                        'type': 'text'
                    },
                    'email': {
                        'type': 'keyword'
                    },
                    'created_at': {
                        'type': 'date'
                    }
                }
            }
        }

    def create_index_if_not_exists(self, index_type: str, sync_wait: float = 15) -> str:
        """
        Create an index if it doesn't exist.

        Args:
            index_type: One of memory, history, user or settings
            sync_wait: Seconds to wait after creation for the collection to sync

        Returns:
            'exists', 'created' or 'failed'
        """
        index_name = self.index_name(index_type)

        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=index_name, body=self._index_body(index_type))
            logger.info(f'Created index {index_name}')
            if not response.get('acknowledged', False):
                return 'failed'
            if sync_wait:
                logger.info(f'Waiting {sync_wait}s for index {index_name} sync-up...')
                time.sleep(sync_wait)
            return 'created'
        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')

    def index_document(self, document: Dict[str, Any], index_type: str) -> bool:
        """
        Index a document. The document carries its own `id` field.

        Args:
            document: Document to index
            index_type: One of memory, history, user or settings

        Returns:
            True if indexing was successful, False otherwise
        """
        index_name = self.index_name(index_type)

        try:
            response = self.client.index(index=index_name, body=document)

            success = response.get('result') in ['created', 'updated']
            if success:
                logger.debug(f'Indexed document {document.get("id")} in {index_name}')
            else:
                logger.warning(f'Unexpected result indexing document: {response}')
            return success

        except OpenSearchException as e:
            logger.error(f'Error indexing document: {e}')
            raise OpenSearchError(f'Failed to index document: {e}')

    def _find(self, doc_id: str, index_type: str) -> Optional[Dict[str, Any]]:
        search_body = {'size': 1, 'query': {'term': {'id': doc_id}}, '_source': {'excludes': ['embedding']}}
        response = self.client.search(index=self.index_name(index_type), body=search_body)
        hits = response['hits']['hits']
        return hits[0] if hits else None

    def get_document(self, doc_id: str, index_type: str = 'memory') -> Optional[Dict[str, Any]]:
        """
        Get a document by its `id` field.

        Args:
            doc_id: Document id
            index_type: One of memory, history, user or settings

        Returns:
            The document source without its embedding, or None if not found
        """
        try:
            hit = self._find(doc_id, index_type)
            return hit['_source'] if hit else None

        except OpenSearchNotFoundError:
            return None
        except OpenSearchException as e:
            logger.error(f'Error getting document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to get document: {e}')

    def update_document(self, doc_id: str, fields: Dict[str, Any], index_type: str = 'memory') -> bool:
        """
        Partially update a document by its `id` field.

        Returns:
            True if the document was found and updated, False if not found
        """
        try:
            hit = self._find(doc_id, index_type)
            if hit is None:
                logger.warning(f'Document {doc_id} not found for update')
                return False

            response = self.client.update(index=self.index_name(index_type), id=hit['_id'], body={'doc': fields})
            return response.get('result') in ['updated', 'noop']

        except OpenSearchException as e:
            logger.error(f'Error updating document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to update document: {e}')

    def delete_document(self, doc_id: str, index_type: str = 'memory') -> bool:
        """
        Delete a document by its `id` field.

        Returns:
            True if deletion was successful, False if not found
        """
        try:
            hit = self._find(doc_id, index_type)
            if hit is None:
                logger.warning(f'Document {doc_id} not found for deletion')
                return False

            response = self.client.delete(index=self.index_name(index_type), id=hit['_id'])
            success = response.get('result') == 'deleted'
            if success:
                logger.debug(f'Deleted document {doc_id} from {self.index_name(index_type)}')
            return success

        except OpenSearchNotFoundError:
            logger.warning(f'Document {doc_id} not found for deletion')
            return False
        except OpenSearchException as e:
            logger.error(f'Error deleting document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to delete document: {e}')

    def list_documents(self,
                       index_type: str,
                       user_id: Optional[str] = None,
                       clauses: Optional[List[Dict[str, Any]]] = None,
                       size: int = MAX_LIST_SIZE,
                       include_expired: bool = False) -> List[Dict[str, Any]]:
        """
        List documents, oldest first, optionally restricted to one owner.

        Args:
            index_type: One of memory, history, user or settings
            user_id: Owner to restrict to
            clauses: Extra bool-filter clauses
            size: Maximum documents to return
            include_expired: Keep memories whose expires_at has passed

        Returns:
            List of document sources without embeddings
        """
        filter_clauses = list(clauses or [])
        if user_id is not None:
            filter_clauses.append({'term': {'user_id': user_id}})
        if index_type == 'memory' and not include_expired:
            filter_clauses.append(_not_expired())

        search_body = {
            'size': size,
            'query': {
                'bool': {
                    'filter': filter_clauses
                }
            } if filter_clauses else {
                'match_all': {}
            },
            'sort': [{
                'created_at': {
                    'order': 'asc',
                    'unmapped_type': 'date'
                }
            }],
            '_source': {
                'excludes': ['embedding']
            }
        }

        try:
            response = self.client.search(index=self.index_name(index_type), body=search_body)
            return [hit['_source'] for hit in response['hits']['hits']]

        except OpenSearchException as e:
            logger.error(f'Error listing {index_type} documents: {e}')
            raise OpenSearchError(f'Failed to list documents: {e}')

    def delete_user_documents(self, user_id: str, index_type: str = 'memory') -> int:
        """
        Delete every document a user owns in one index.

        Returns:
            Number of documents deleted
        """
        documents = self.list_documents(index_type, user_id=user_id, include_expired=True)
        return sum(1 for doc in documents if self.delete_document(doc['id'], index_type))

    def _filtered_bool(self, must: Dict[str, Any], user_id: str, filters: Optional[Dict[str, Any]],
                       index_type: str) -> Dict[str, Any]:
        filter_clauses = [{'term': {'user_id': user_id}}] + translate_filters(filters)
        if index_type == 'memory':
            filter_clauses.append(_not_expired())
        return {'bool': {'must': [must], 'filter': filter_clauses}}

    def vector_search(self,
                      query_vector: List[float],
                      user_id: str,
                      top_k: Optional[int] = 20,
                      filters: Optional[Dict[str, Any]] = None,
                      index_type: str = 'memory') -> List[Dict[str, Any]]:
        """
        Perform vector similarity search.

        Args:
            query_vector: Query vector for similarity search
            user_id: User ID to filter results
            top_k: Number of results to return (default 20)
            filters: Search filter object, translated with translate_filters
            index_type: Index to search

        Returns:
            List of {'id', 'score', 'document'} hits
        """
        search_body = {
            'size': top_k,
            'query': self._filtered_bool({'knn': {
                'embedding': {
                    'vector': query_vector,
                    'k': top_k
                }
            }}, user_id, filters, index_type),
            '_source': {
                'excludes': ['embedding']
            }
        }

        try:
            results = _hits(self.client.search(index=self.index_name(index_type), body=search_body))
            logger.debug(f'Vector search returned {len(results)} results for user {user_id}')
            return results

        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')

    def keyword_search(self,
                       query_text: str,
                       user_id: str,
                       top_k: Optional[int] = 20,
                       filters: Optional[Dict[str, Any]] = None,
                       index_type: str = 'memory') -> List[Dict[str, Any]]:
        """Perform keyword-based text search.

        Args:
            query_text: Text query for keyword search
            user_id: User ID to filter results
            top_k: Number of results to return
            filters: Search filter object, translated with translate_filters
            index_type: Index to search

        Returns:
            List of {'id', 'score', 'document'} hits
        """
        search_body = {
            'size': top_k,
            'query': self._filtered_bool({'match': {
                TEXT_FIELDS[index_type]: query_text
            }}, user_id, filters, index_type),
            '_source': {
                'excludes': ['embedding']
            }
        }

        try:
            results = _hits(self.client.search(index=self.index_name(index_type), body=search_body))
            logger.debug(f'Keyword search returned {len(results)} results for user {user_id}')
            return results

        except OpenSearchException as e:
            logger.error(f'Error performing keyword search: {e}')
            raise OpenSearchError(f'Keyword search failed: {e}')

    def hybrid_search(self,
                      query_text: str,
                      query_vector: List[float],
                      user_id: str,
                      top_k: Optional[int] = 20,
                      filters: Optional[Dict[str, Any]] = None,
                      index_type: str = 'memory',
                      vector_weight: float = 0.5) -> List[Dict[str, Any]]:
        """Perform hybrid search combining vector and keyword search.

        Scores of each side are min-max normalised to [0, 1] before the
        weighted merge.

        Args:
            query_text: Text query for keyword search
            query_vector: Vector for similarity search
            user_id: User ID to filter results
            top_k: Number of results to return
            filters: Search filter object
            index_type: Index to search
            vector_weight: Weight for vector search (0-1)

        Returns:
            List of hits with combined scores
        """
        vector_results = self.vector_search(query_vector, user_id, top_k * 2, filters, index_type)
        keyword_results = self.keyword_search(query_text, user_id, top_k * 2, filters, index_type)

        def normalize_scores(results):
            if not results:
                return results
            scores = [r['score'] for r in results]
            min_score, max_score = min(scores), max(scores)
            if max_score == min_score:
                return results
            for result in results:
                result['score'] = (result['score'] - min_score) / (max_score - min_score)
            return results

        vector_results = normalize_scores(vector_results)
        keyword_results = normalize_scores(keyword_results)

        combined_results = {}
        keyword_weight = 1.0 - vector_weight

        for result in vector_results:
            combined_results[result['id']] = {'document': result['document'], 'vector_score': result['score'], 'keyword_score': 0.0}

        for result in keyword_results:
            doc_id = result['id']
            if doc_id in combined_results:
                combined_results[doc_id]['keyword_score'] = result['score']
            else:
                combined_results[doc_id] = {
                    'document': result['document'],
                    'vector_score': 0.0,
                    'keyword_score': result['score']
                }

        final_results = []
        for doc_id, data in combined_results.items():
            combined_score = (data['vector_score'] * vector_weight + data['keyword_score'] * keyword_weight)
            final_results.append({'id': doc_id, 'score': combined_score, 'document': data['document']})

        final_results.sort(key=lambda x: x['score'], reverse=True)
        return final_results[:top_k]

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name('memory'))
            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
