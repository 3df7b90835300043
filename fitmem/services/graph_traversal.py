"""
Bounded multi-hop expansion over the memory store's knowledge graph.
"""

from typing import List, Optional

from ..models.core import GraphEntity, GraphSearchResult
from ..utils.config import TierConfig
from ..utils.constants import GRAPH_DEFAULT_DEPTH, GRAPH_DEFAULT_ENTITY_LIMIT, GRAPH_FANOUT_CAP, GRAPH_MAX_DEPTH
from ..utils.logging_config import get_logger
from .errors import require, upstream_call

logger = get_logger(__name__)


def clamp_depth(depth: Optional[int]) -> int:
    """Clamp a traversal depth into [1, GRAPH_MAX_DEPTH]."""
    if depth is None:
        return GRAPH_DEFAULT_DEPTH
    return max(1, min(GRAPH_MAX_DEPTH, int(depth)))


class GraphTraversalEngine:
    """Expand relationship lookups hop by hop, deduplicating after every merge.

    Each store lookup is a single direct query. For depth > 1 the first
    `fanout_cap` entity names of a hop are expanded one at a time at depth - 1.
    A failed secondary hop is skipped; only the seed lookup can fail the call.
    On the free tier every lookup returns an empty result.
    """

    def __init__(self, store, tier: TierConfig, fanout_cap: int = GRAPH_FANOUT_CAP):
        self.store = store
        self.tier = tier
        self.fanout_cap = fanout_cap

    def relationships(self,
                      user_id: str,
                      entity_name: Optional[str] = None,
                      relationship_type: Optional[str] = None,
                      depth: Optional[int] = GRAPH_DEFAULT_DEPTH,
                      limit: Optional[int] = GRAPH_DEFAULT_ENTITY_LIMIT) -> GraphSearchResult:
        """Get relationships for a user, optionally around one entity.

        Args:
            user_id: Graph owner
            entity_name: Restrict the seed lookup to relationships touching this entity
            relationship_type: Restrict every hop to this relationship type
            depth: Traversal depth, clamped to [1, 3]
            limit: Maximum relationships per lookup

        Returns:
            Merged, deduplicated GraphSearchResult

        Raises:
            UpstreamError: If the seed lookup fails
        """
        require(user_id, 'userId')
        if not self.tier.is_pro:
            logger.debug('Graph lookup skipped on free tier')
            return GraphSearchResult()

        with upstream_call('Graph relationship lookup'):
            seed = self._lookup(user_id, entity_name, relationship_type, limit)

        return self.traverse(user_id, seed, clamp_depth(depth), relationship_type, limit)

    def traverse(self,
                 user_id: str,
                 seed: GraphSearchResult,
                 depth: int,
                 relationship_type: Optional[str] = None,
                 limit: Optional[int] = GRAPH_DEFAULT_ENTITY_LIMIT) -> GraphSearchResult:
        """Expand `seed` by `depth - 1` further hops and merge everything."""
        depth = clamp_depth(depth)
        if depth <= 1:
            return GraphSearchResult.merge([seed])

        hops = [seed]
        for name in seed.entity_names()[:self.fanout_cap]:
            try:
                next_seed = self._lookup(user_id, name, relationship_type, limit)
                hops.append(self.traverse(user_id, next_seed, depth - 1, relationship_type, limit))
            except Exception as e:
                logger.warning(f"Skipping graph hop from '{name}': {e}")

        merged = GraphSearchResult.merge(hops)
        logger.debug(f'Graph traversal at depth {depth} found {len(merged.entities)} entities, '
                     f'{len(merged.relationships)} relationships')
        return merged

    def entities(self,
                 user_id: str,
                 entity_type: Optional[str] = None,
                 limit: Optional[int] = GRAPH_DEFAULT_ENTITY_LIMIT) -> List[GraphEntity]:
        require(user_id, 'userId')
        if not self.tier.is_pro:
            return []

        with upstream_call('Graph entity lookup'):
            return self.store.get_entities(user_id, entity_type=entity_type, limit=limit)

    def entities_by_type(self, user_id: str, entity_type: str,
                         limit: Optional[int] = GRAPH_DEFAULT_ENTITY_LIMIT) -> List[GraphEntity]:
        require(entity_type, 'type')
        return self.entities(user_id, entity_type=entity_type, limit=limit)

    def search_by_entity(self, user_id: str, entity_name: str) -> GraphSearchResult:
        """All relationships directly connected to one entity."""
        require(entity_name, 'entity')
        return self.relationships(user_id, entity_name=entity_name, depth=1)

    def _lookup(self, user_id: str, entity_name: Optional[str], relationship_type: Optional[str],
                limit: Optional[int]) -> GraphSearchResult:
        return self.store.get_relations(user_id,
                                        entity=entity_name,
                                        relationship_type=relationship_type,
                                        depth=1,
                                        limit=limit)
