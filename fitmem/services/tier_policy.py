"""
Feature-tier option resolution.

Options are layered field by field, lowest to highest precedence:

    free-tier defaults < pro-tier defaults (pro only) < explicit per-request values

For writes, saved project settings are folded into the pro-tier defaults.

A field counts as "set" when it is not None, so a request can switch a pro
default off by passing False. On the free tier, pro-only fields are dropped
after merging instead of raising.
"""

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, List, Optional, TypeVar

from ..utils.config import TierConfig
from ..utils.constants import (MEMORY_SEARCH_DEFAULT_LIMIT, PRO_EXTRACTION_CATEGORIES, PRO_EXTRACTION_EXCLUDES,
                               PRO_EXTRACTION_INCLUDES, PRO_EXTRACTION_INSTRUCTIONS, SEARCH_RERANK_TOP_K)
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import checked_timestamp, parse_day
from .errors import ValidationError

logger = get_logger(__name__)

PRO_ONLY_FIELDS = frozenset({
    'rerank',
    'top_k',
    'keyword_search',
    'include_graph',
    'enable_graph',
    'includes',
    'excludes',
    'custom_instructions',
    'custom_categories',
})


@dataclass(frozen=True)
class AddOptions:
    """Extraction options for a memory write."""
    infer: Optional[bool] = None
    includes: Optional[str] = None
    excludes: Optional[str] = None
    custom_instructions: Optional[str] = None
    custom_categories: Optional[Dict[str, str]] = None
    enable_graph: Optional[bool] = None
    version: Optional[str] = None
    timestamp: Optional[int] = None
    expiration_date: Optional[str] = None
    immutable: Optional[bool] = None

    def to_request(self) -> Dict[str, Any]:
        """Wire options for the memory store; unset fields are omitted, never sent as null."""
        return defined_fields(self)

    def validate(self) -> None:
        """Reject malformed write dates before anything is looked up or stored."""
        if self.expiration_date is not None:
            try:
                parse_day(self.expiration_date)
            except ValueError:
                raise ValidationError(f'expirationDate must be a YYYY-MM-DD day, got {self.expiration_date!r}')
        if self.timestamp is not None:
            try:
                checked_timestamp(self.timestamp)
            except ValueError:
                raise ValidationError(f'timestamp must be epoch seconds, got {self.timestamp!r}')


@dataclass(frozen=True)
class SearchOptions:
    """Request-scoped search options. Rebuilt on every call."""
    limit: Optional[int] = None
    threshold: Optional[float] = None
    rerank: Optional[bool] = None
    top_k: Optional[int] = None
    keyword_search: Optional[bool] = None
    categories: Optional[List[str]] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    and_conditions: Optional[List[Dict[str, Any]]] = None
    or_conditions: Optional[List[Dict[str, Any]]] = None
    include_graph: Optional[bool] = None
    depth: Optional[int] = None


T = TypeVar('T', AddOptions, SearchOptions)

FREE_ADD_DEFAULTS = AddOptions(infer=True)
PRO_ADD_DEFAULTS = AddOptions(includes=PRO_EXTRACTION_INCLUDES,
                              excludes=PRO_EXTRACTION_EXCLUDES,
                              custom_instructions=PRO_EXTRACTION_INSTRUCTIONS,
                              custom_categories=PRO_EXTRACTION_CATEGORIES,
                              infer=True,
                              enable_graph=True)

FREE_SEARCH_DEFAULTS = SearchOptions(limit=MEMORY_SEARCH_DEFAULT_LIMIT)
PRO_ADVANCED_SEARCH_DEFAULTS = SearchOptions(rerank=True, top_k=SEARCH_RERANK_TOP_K)


def defined_fields(options) -> Dict[str, Any]:
    return {f.name: getattr(options, f.name) for f in fields(options) if getattr(options, f.name) is not None}


def resolve(free: T, pro: T, request: Optional[T], is_pro: bool) -> T:
    """Merge option layers by precedence and gate pro-only fields.

    Args:
        free: Free-tier defaults
        pro: Pro-tier defaults, applied only when `is_pro`
        request: Explicit per-request values (may be None)
        is_pro: Whether the pro tier is enabled

    Returns:
        A new options value of the same type
    """
    layers = [free, pro] if is_pro else [free]
    if request is not None:
        layers.append(request)

    merged: Dict[str, Any] = {}
    for layer in layers:
        merged.update(defined_fields(layer))

    if not is_pro:
        dropped = sorted(name for name in merged if name in PRO_ONLY_FIELDS)
        if dropped:
            logger.warning(f'Ignoring pro-tier options on free tier: {", ".join(dropped)}')
        for name in dropped:
            del merged[name]

    return type(free)(**merged)


class TierPolicy:
    """Resolve effective write and search options for the configured tier."""

    def __init__(self,
                 tier: TierConfig,
                 free_add: AddOptions = FREE_ADD_DEFAULTS,
                 pro_add: AddOptions = PRO_ADD_DEFAULTS,
                 free_search: SearchOptions = FREE_SEARCH_DEFAULTS,
                 pro_search: SearchOptions = PRO_ADVANCED_SEARCH_DEFAULTS,
                 project_settings=None):
        """
        Args:
            tier: Tier configuration
            project_settings: Source of project-level extraction settings layered over the
                pro write defaults; anything with an `add_options()` method
        """
        self.tier = tier
        self.project_settings = project_settings
        self.free_add = free_add
        self.pro_add = pro_add
        self.free_search = free_search
        self.pro_search = pro_search

    @property
    def is_pro(self) -> bool:
        return self.tier.is_pro

    def resolve_add(self, request: Optional[AddOptions] = None) -> AddOptions:
        """Resolve write options. Saved project settings override the pro defaults, requests override both."""
        pro_add = self.pro_add
        if self.is_pro and self.project_settings is not None:
            pro_add = replace(pro_add, **defined_fields(self.project_settings.add_options()))
        return resolve(self.free_add, pro_add, request, self.is_pro)

    def resolve_search(self, request: Optional[SearchOptions] = None, advanced: bool = False) -> SearchOptions:
        """Resolve search options.

        Pro search defaults (reranking) only apply to advanced searches. When
        reranking is active the candidate count is clamped so top_k >= limit;
        without reranking top_k is dropped.
        """
        pro_defaults = self.pro_search if advanced else SearchOptions()
        options = resolve(self.free_search, pro_defaults, request, self.is_pro)

        if options.rerank:
            top_k = max(options.top_k or SEARCH_RERANK_TOP_K, options.limit or 0)
            return replace(options, top_k=top_k)
        return replace(options, top_k=None)
