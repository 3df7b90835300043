"""
Memory Management Service: the single entry point for chat, memory, search,
graph and profile operations.
"""

import random
from typing import Any, Dict, List, Optional

from ..models.core import (AddMemoryResult, AdvancedSearchResult, ChatResult, GraphEntity, GraphSearchResult, Memory,
                           ProjectSettings, ScoredMemory, User)
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import AppConfig, config
from ..utils.constants import (FITNESS_ONBOARDING_PROMPTS, GRAPH_DEFAULT_DEPTH, GRAPH_DEFAULT_ENTITY_LIMIT, REMEMBER_TEXT_ACK,
                               REMEMBER_TEXT_PREFIX)
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient
from .context_builder import ContextBuilder
from .conversation import ConversationOrchestrator
from .errors import NotFoundError, ValidationError, require, upstream_call
from .graph_traversal import GraphTraversalEngine
from .memory_store import MemoryStore
from .profile_analyzer import ProfileAnalyzer
from .project_settings import ProjectSettingsStore, normalize_categories
from .search_orchestrator import SearchOrchestrator
from .tier_policy import AddOptions, SearchOptions, TierPolicy
from .user_registry import UserRegistry

logger = get_logger(__name__)


class MemoryManagementService:
    """Unified service wiring the coaching core to its AWS-backed collaborators.

    Every public method validates its input and checks that referenced users
    and memories exist before touching the store. Collaborator failures come
    back as UpstreamError labeled with the failed operation.
    """

    def __init__(self,
                 llm=None,
                 store=None,
                 user_registry=None,
                 project_settings=None,
                 app_config: Optional[AppConfig] = None,
                 rng: Optional[random.Random] = None):
        """
        Args:
            llm: Chat-completion client (BedrockLLM built from config if None)
            store: Memory store (MemoryStore built from config if None)
            user_registry: User registry (UserRegistry built from config if None)
            project_settings: Project settings store (ProjectSettingsStore built from config if None)
            app_config: Application configuration, uses the global config if None
            rng: Random source for follow-up questions and onboarding prompts
        """
        app_config = app_config or config
        self.rng = rng or random.Random()

        self.llm = llm or BedrockLLM(app_config.bedrock_llm)
        self.store = store or MemoryStore.from_config(app_config, self.llm)
        self.user_registry = user_registry or UserRegistry(OpenSearchClient(app_config.opensearch))
        self.project_settings = project_settings or ProjectSettingsStore(OpenSearchClient(app_config.opensearch))

        self.tier_policy = TierPolicy(app_config.tier, project_settings=self.project_settings)
        self.context_builder = ContextBuilder()
        self.analyzer = ProfileAnalyzer(self.rng)
        self.graph = GraphTraversalEngine(self.store, app_config.tier)
        self.search_orchestrator = SearchOrchestrator(self.store, self.tier_policy, self.graph)
        self.conversation = ConversationOrchestrator(self.llm,
                                                     self.store,
                                                     self.user_registry,
                                                     self.search_orchestrator,
                                                     self.tier_policy,
                                                     app_config.chat,
                                                     context_builder=self.context_builder,
                                                     analyzer=self.analyzer)

        logger.info(f'Initialized MemoryManagementService ({"pro" if app_config.tier.is_pro else "free"} tier)')

    def _require_user(self, user_id: str) -> None:
        require(user_id, 'userId')
        with upstream_call('User lookup'):
            exists = self.user_registry.exists(user_id)
        if not exists:
            raise NotFoundError(f'User with ID {user_id} not found')

    # Chat

    def chat(self, message: str, user_id: str) -> ChatResult:
        return self.conversation.chat(message, user_id)

    def onboarding_prompt(self) -> str:
        """One of the fixed onboarding greetings, chosen uniformly at random."""
        return self.rng.choice(FITNESS_ONBOARDING_PROMPTS)

    # Memory writes

    def add_memory(self,
                   messages: List[Dict[str, str]],
                   user_id: str,
                   metadata: Optional[Dict[str, Any]] = None,
                   options: Optional[AddOptions] = None) -> AddMemoryResult:
        """Store a conversation as memories, with tier-resolved extraction options.

        Raises:
            ValidationError: If messages or user_id is missing, or a write date is malformed
            NotFoundError: If the user is not registered
            UpstreamError: If the memory store fails
        """
        if not messages:
            raise ValidationError('messages is required')
        if options is not None:
            options.validate()
        self._require_user(user_id)

        with upstream_call('Project settings'):
            resolved = self.tier_policy.resolve_add(options)
        request: Dict[str, Any] = {'user_id': user_id, **resolved.to_request()}
        if metadata:
            request['metadata'] = metadata

        with upstream_call('Memory add'):
            result = self.store.add(messages, request)

        logger.info(f'Added memories for user {user_id}: {len(result.created)} created, {len(result.results)} changes')
        return result

    def add_from_text(self,
                      content: str,
                      user_id: str,
                      metadata: Optional[Dict[str, Any]] = None,
                      options: Optional[AddOptions] = None) -> int:
        """Remember uploaded text. Returns the number of memories extracted."""
        require(content, 'content')
        messages = [
            {'role': 'user', 'content': f'{REMEMBER_TEXT_PREFIX}{content.strip()}'},
            {'role': 'assistant', 'content': REMEMBER_TEXT_ACK},
        ]
        return len(self.add_memory(messages, user_id, metadata, options).created)

    # Memory reads and edits

    def get_user_memories(self, user_id: str) -> List[Memory]:
        self._require_user(user_id)
        with upstream_call('Memory fetch'):
            return self.store.get_all(user_id)

    def get_memory(self, memory_id: str) -> Memory:
        require(memory_id, 'memoryId')
        with upstream_call('Memory get'):
            memory = self.store.get(memory_id)
        if memory is None:
            raise NotFoundError(f'Memory with ID {memory_id} not found')
        return memory

    def update_memory(self, memory_id: str, text: str, metadata: Optional[Dict[str, Any]] = None) -> Memory:
        """Replace a memory's text.

        Raises:
            ValidationError: If memory_id or text is missing
            NotFoundError: If the memory does not exist
            UpstreamError: If the store rejects the update (e.g. the memory is immutable)
        """
        require(text, 'text')
        self.get_memory(memory_id)

        with upstream_call('Memory update'):
            updated = self.store.update(memory_id, text, metadata)
        if updated is None:
            raise NotFoundError(f'Memory with ID {memory_id} not found')
        return updated

    def delete_memory(self, memory_id: str) -> None:
        require(memory_id, 'memoryId')
        with upstream_call('Memory delete'):
            deleted = self.store.delete(memory_id)
        if not deleted:
            raise NotFoundError(f'Memory with ID {memory_id} not found')

    def delete_all_user_memories(self, user_id: str) -> int:
        require(user_id, 'userId')
        with upstream_call('Memory delete'):
            return self.store.delete_all(user_id)

    def memory_history(self, memory_id: str) -> List[Dict[str, Any]]:
        require(memory_id, 'memoryId')
        with upstream_call('Memory history'):
            return self.store.history(memory_id)

    # Search

    def search(self, query: str, user_id: str, options: Optional[SearchOptions] = None) -> List[ScoredMemory]:
        return self.search_orchestrator.search(query, user_id, options)

    def advanced_search(self, query: str, user_id: str, options: Optional[SearchOptions] = None) -> AdvancedSearchResult:
        return self.search_orchestrator.advanced_search(query, user_id, options)

    def search_with_graph(self, query: str, user_id: str, depth: int = GRAPH_DEFAULT_DEPTH,
                          limit: Optional[int] = None) -> AdvancedSearchResult:
        return self.search_orchestrator.search_with_graph(query, user_id, depth, limit)

    # Graph

    def graph_entities(self, user_id: str, entity_type: Optional[str] = None,
                       limit: Optional[int] = GRAPH_DEFAULT_ENTITY_LIMIT) -> List[GraphEntity]:
        return self.graph.entities(user_id, entity_type, limit)

    def graph_relationships(self,
                            user_id: str,
                            entity_name: Optional[str] = None,
                            relationship_type: Optional[str] = None,
                            depth: Optional[int] = GRAPH_DEFAULT_DEPTH,
                            limit: Optional[int] = GRAPH_DEFAULT_ENTITY_LIMIT) -> GraphSearchResult:
        return self.graph.relationships(user_id, entity_name, relationship_type, depth, limit)

    def entities_by_type(self, user_id: str, entity_type: str,
                         limit: Optional[int] = GRAPH_DEFAULT_ENTITY_LIMIT) -> List[GraphEntity]:
        return self.graph.entities_by_type(user_id, entity_type, limit)

    def search_by_entity(self, user_id: str, entity_name: str) -> GraphSearchResult:
        return self.graph.search_by_entity(user_id, entity_name)

    # Profile

    def profile_analysis(self, user_id: str) -> Dict[str, Any]:
        """Profile completeness for a user plus their memory count."""
        memories = self.get_user_memories(user_id)
        analysis = self.analyzer.analyze(self.context_builder.profile_text(memories))
        return {**analysis.to_dict(), 'total_memories': len(memories)}

    # Users

    def create_user(self, name: str, email: Optional[str] = None) -> User:
        require(name, 'name')
        with upstream_call('User creation'):
            return self.user_registry.create_user(name, email)

    def list_users(self) -> List[User]:
        with upstream_call('User listing'):
            return self.user_registry.list_users()

    def ensure_default_user(self) -> Optional[User]:
        with upstream_call('Default user setup'):
            return self.user_registry.ensure_default_user()

    def get_user(self, user_id: str) -> User:
        require(user_id, 'userId')
        with upstream_call('User lookup'):
            user = self.user_registry.get_user(user_id)
        if user is None:
            raise NotFoundError(f'User with ID {user_id} not found')
        return user

    def delete_user(self, user_id: str) -> None:
        """Remove a user from the registry. Their memories are left in place."""
        require(user_id, 'userId')
        with upstream_call('User deletion'):
            deleted = self.user_registry.delete_user(user_id)
        if not deleted:
            raise NotFoundError(f'User with ID {user_id} not found')

    def create_session(self, user_id: str) -> str:
        self._require_user(user_id)
        return self.user_registry.generate_session_id(user_id)

    # Project settings

    def get_project_settings(self) -> ProjectSettings:
        with upstream_call('Project settings'):
            return self.project_settings.get()

    def update_custom_instructions(self, instructions: str) -> ProjectSettings:
        """Replace the project-wide extraction instructions used by pro-tier writes."""
        require(instructions, 'instructions')
        with upstream_call('Project settings update'):
            return self.project_settings.update_instructions(instructions.strip())

    def update_custom_categories(self, categories: List[Dict[str, str]]) -> ProjectSettings:
        """Replace the project-wide extraction categories.

        Args:
            categories: Non-empty list of {category_name: description} objects
        """
        normalize_categories(categories)
        with upstream_call('Project settings update'):
            return self.project_settings.update_categories(categories)

    def health_components(self) -> Dict[str, Any]:
        """Live clients for health reporting; entries the store lacks are None."""
        return {
            'bedrock_llm': self.llm,
            'bedrock_embed': getattr(self.store, 'embed', None),
            'bedrock_rerank': getattr(self.store, 'reranker', None),
            'neptune': getattr(self.store, 'graph', None),
            'opensearch': getattr(self.store, 'opensearch', None),
        }
