"""
Tiered memory search: basic, reranked, keyword + filtered, and graph-augmented.
"""

from typing import Any, Dict, Iterable, List, Optional

from ..models.core import AdvancedSearchResult, ScoredMemory
from ..utils.constants import GRAPH_DEFAULT_DEPTH
from ..utils.logging_config import get_logger
from .errors import require, upstream_call
from .graph_traversal import GraphTraversalEngine
from .tier_policy import SearchOptions, TierPolicy

logger = get_logger(__name__)

# Search fields passed to the store as-is when defined
PASSTHROUGH_FIELDS = ('limit', 'threshold', 'rerank', 'top_k', 'keyword_search')


def build_filters(options: SearchOptions) -> Dict[str, Any]:
    """Build the store filter object. Only non-empty keys are attached."""
    filters: Dict[str, Any] = {}

    if options.categories:
        filters['categories'] = {'in': list(options.categories)}

    created_at = {}
    if options.date_from:
        created_at['gte'] = options.date_from
    if options.date_to:
        created_at['lte'] = options.date_to
    if created_at:
        filters['created_at'] = created_at

    if options.metadata:
        filters['metadata'] = dict(options.metadata)
    if options.and_conditions:
        filters['AND'] = list(options.and_conditions)
    if options.or_conditions:
        filters['OR'] = list(options.or_conditions)

    return filters


def build_request(user_id: str, options: SearchOptions) -> Dict[str, Any]:
    """Build the store search request from resolved options."""
    request: Dict[str, Any] = {'user_id': user_id}
    for name in PASSTHROUGH_FIELDS:
        value = getattr(options, name)
        if value is not None:
            request[name] = value

    filters = build_filters(options)
    if filters:
        request['filters'] = filters
    return request


def shape_results(results: Iterable[ScoredMemory], threshold: Optional[float],
                  limit: Optional[int]) -> List[ScoredMemory]:
    """Drop hits under `threshold`, order by score, then cut to `limit`."""
    hits = [r for r in results if threshold is None or r.score >= threshold]
    hits.sort(key=lambda r: r.score, reverse=True)
    return hits[:limit] if limit is not None else hits


class SearchOrchestrator:
    """Decide what to ask the memory store for a search, and shape what comes back."""

    def __init__(self, store, tier_policy: TierPolicy, graph: GraphTraversalEngine):
        self.store = store
        self.tier_policy = tier_policy
        self.graph = graph

    def search(self, query: str, user_id: str, options: Optional[SearchOptions] = None) -> List[ScoredMemory]:
        """Semantic search with optional filters.

        Pro-only fields in `options` are dropped on the free tier.

        Raises:
            ValidationError: If query or user_id is missing
            UpstreamError: If the memory store call fails
        """
        require(query, 'query')
        require(user_id, 'userId')

        resolved = self.tier_policy.resolve_search(options)
        return self._run(query, user_id, resolved)

    def advanced_search(self, query: str, user_id: str,
                        options: Optional[SearchOptions] = None) -> AdvancedSearchResult:
        """Search with pro defaults (reranking) and optional graph context.

        A failed graph fetch is logged and leaves `graph` unset instead of
        failing the search.
        """
        require(query, 'query')
        require(user_id, 'userId')

        resolved = self.tier_policy.resolve_search(options, advanced=True)
        memories = self._run(query, user_id, resolved)
        result = AdvancedSearchResult(memories=memories, reranked=bool(resolved.rerank) and bool(memories))

        if resolved.include_graph:
            try:
                result.graph = self.graph.relationships(user_id, depth=resolved.depth or GRAPH_DEFAULT_DEPTH)
            except Exception as e:
                logger.warning(f'Graph context unavailable for search, returning memories only: {e}')

        return result

    def search_with_graph(self, query: str, user_id: str, depth: int = GRAPH_DEFAULT_DEPTH,
                          limit: Optional[int] = None) -> AdvancedSearchResult:
        return self.advanced_search(query, user_id, SearchOptions(limit=limit, include_graph=True, depth=depth))

    def _run(self, query: str, user_id: str, options: SearchOptions) -> List[ScoredMemory]:
        request = build_request(user_id, options)
        logger.debug(f'Memory search for user {user_id}: {sorted(request)}')

        with upstream_call('Memory search'):
            results = self.store.search(query, request)

        return shape_results(results, options.threshold, options.limit)
