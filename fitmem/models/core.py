"""
Core data models for the coaching memory system.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..utils.timestamp_utils import parse_datetime, to_iso


@dataclass
class Memory:
    """A stored fact or conversational snippet owned by one user.

    Read-only for the core; new memories only appear through the write-back path.
    """
    id: str
    text: str
    user_id: str = ''
    metadata: Dict[str, Any] = field(default_factory=dict)
    categories: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    immutable: bool = False

    @classmethod
    def from_document(cls, doc: Dict[str, Any], **extra) -> 'Memory':
        """Build from a memory-index document (`_source` without the embedding)."""
        return cls(id=doc.get('id', ''),
                   text=doc.get('memory', doc.get('text', '')),
                   user_id=doc.get('user_id', ''),
                   metadata=doc.get('metadata') or {},
                   categories=list(doc.get('categories') or []),
                   created_at=parse_datetime(doc.get('created_at')),
                   updated_at=parse_datetime(doc.get('updated_at')),
                   expires_at=parse_datetime(doc.get('expires_at')),
                   immutable=bool(doc.get('immutable', False)),
                   **extra)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = to_iso(self.created_at)
        data['updated_at'] = to_iso(self.updated_at)
        data['expires_at'] = to_iso(self.expires_at)
        return data


@dataclass
class ScoredMemory(Memory):
    """A search hit. Exists only for the duration of one search call."""
    score: float = 0.0


@dataclass
class MemoryEvent:
    """One change the memory store applied while adding memories."""
    id: str
    memory: str
    event: str  # ADD, UPDATE or DELETE


@dataclass
class AddMemoryResult:
    results: List[MemoryEvent] = field(default_factory=list)

    @property
    def created(self) -> List[MemoryEvent]:
        return [r for r in self.results if r.event == 'ADD']


@dataclass
class GraphEntity:
    """Named node extracted from memory text. Identity is `name` (case-sensitive)."""
    name: str
    type: str = ''
    properties: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GraphRelationship:
    """Typed edge between two entities. Identity is (source, target, relationship)."""
    source: str
    target: str
    relationship: str
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.source, self.target, self.relationship)


def _unique_entities(entities: Iterable[GraphEntity]) -> List[GraphEntity]:
    by_name: Dict[str, GraphEntity] = {}
    for entity in entities:
        by_name.setdefault(entity.name, entity)
    return list(by_name.values())


def _unique_relationships(relationships: Iterable[GraphRelationship]) -> List[GraphRelationship]:
    by_key: Dict[Tuple[str, str, str], GraphRelationship] = {}
    for relationship in relationships:
        by_key.setdefault(relationship.key, relationship)
    return list(by_key.values())


@dataclass
class GraphSearchResult:
    """Entities and relationships, each deduplicated by identity.

    First occurrence wins; insertion order is preserved.
    """
    entities: List[GraphEntity] = field(default_factory=list)
    relationships: List[GraphRelationship] = field(default_factory=list)

    def __post_init__(self):
        self.entities = _unique_entities(self.entities)
        self.relationships = _unique_relationships(self.relationships)

    @staticmethod
    def merge(results: Iterable['GraphSearchResult']) -> 'GraphSearchResult':
        results = list(results)
        return GraphSearchResult(entities=[e for r in results for e in r.entities],
                                 relationships=[rel for r in results for rel in r.relationships])

    def entity_names(self) -> List[str]:
        return [entity.name for entity in self.entities]

    def is_empty(self) -> bool:
        return not self.entities and not self.relationships

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entities': [asdict(e) for e in self.entities],
            'relationships': [asdict(r) for r in self.relationships],
        }


@dataclass
class AdvancedSearchResult:
    memories: List[ScoredMemory]
    reranked: bool = False
    graph: Optional[GraphSearchResult] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'memories': [m.to_dict() for m in self.memories], 'reranked': self.reranked}
        if self.graph is not None:
            data['graph'] = self.graph.to_dict()
        return data


@dataclass
class ProfileAnalysis:
    """How complete a user's fitness profile is. Recomputed per request, never persisted."""
    has_basic_info: bool
    has_goals: bool
    has_current_fitness: bool
    has_injury_info: bool
    has_diet_info: bool
    has_lifestyle_info: bool
    missing_categories: List[str]
    completion_percentage: int
    suggested_question: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChatResult:
    message: str
    response: str
    memories_used: List[str]
    new_memories_created: int
    profile_completeness: int
    is_new_user: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class User:
    id: str
    name: str
    email: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = to_iso(self.created_at)
        return data


@dataclass
class ProjectSettings:
    """Project-wide extraction settings applied to every pro-tier write."""
    custom_instructions: Optional[str] = None
    custom_categories: Dict[str, str] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'ProjectSettings':
        return cls(custom_instructions=doc.get('custom_instructions'),
                   custom_categories=dict(doc.get('custom_categories') or {}),
                   updated_at=parse_datetime(doc.get('updated_at')))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['updated_at'] = to_iso(self.updated_at)
        return data
