"""
Chat turn orchestration: retrieve, assemble context, generate, remember.
"""

from typing import Dict, List, Optional

from ..models.core import ChatResult, ProfileAnalysis
from ..utils.config import ChatConfig
from ..utils.constants import (FITNESS_COACH_SYSTEM_PROMPT, MEMORY_SEARCH_LIMIT, MEMORY_SEARCH_THRESHOLD,
                               NEW_USER_INSTRUCTIONS, PROFILE_COMPLETE_GUIDANCE, PROFILE_GUIDANCE_TEMPLATE)
from ..utils.logging_config import get_logger
from .category_rules import get_rule
from .context_builder import ContextBuilder
from .errors import NotFoundError, UpstreamError, require, upstream_call
from .profile_analyzer import ProfileAnalyzer
from .search_orchestrator import SearchOrchestrator
from .tier_policy import SearchOptions, TierPolicy

logger = get_logger(__name__)


def build_system_prompt(context: str, analysis: ProfileAnalysis, is_new_user: bool) -> str:
    """Persona, then onboarding or profile guidance, then memory context."""
    parts = [FITNESS_COACH_SYSTEM_PROMPT]

    if is_new_user:
        parts.append(NEW_USER_INSTRUCTIONS)
    elif analysis.missing_categories:
        missing = ', '.join(get_rule(key).name for key in analysis.missing_categories)
        parts.append(PROFILE_GUIDANCE_TEMPLATE.format(completion=analysis.completion_percentage,
                                                      missing=missing,
                                                      question=analysis.suggested_question))
    else:
        parts.append(PROFILE_COMPLETE_GUIDANCE)

    if context:
        parts.append(context)

    return '\n\n'.join(parts)


class ConversationOrchestrator:
    """Run one chat turn end to end.

    Steps run in a fixed order and any collaborator failure fails the turn,
    except the final write-back when configured to be lenient.
    """

    def __init__(self,
                 llm,
                 store,
                 user_registry,
                 search: SearchOrchestrator,
                 tier_policy: TierPolicy,
                 chat_config: ChatConfig,
                 context_builder: Optional[ContextBuilder] = None,
                 analyzer: Optional[ProfileAnalyzer] = None):
        self.llm = llm
        self.store = store
        self.user_registry = user_registry
        self.search = search
        self.tier_policy = tier_policy
        self.chat_config = chat_config
        self.context_builder = context_builder or ContextBuilder()
        self.analyzer = analyzer or ProfileAnalyzer()

    def chat(self, message: str, user_id: str) -> ChatResult:
        """Answer a message as the coach, using and extending the user's memory.

        Raises:
            ValidationError: If message or user_id is missing
            NotFoundError: If the user is not registered
            UpstreamError: If the memory store or LLM fails
        """
        require(message, 'message')
        require(user_id, 'userId')

        with upstream_call('User lookup'):
            exists = self.user_registry.exists(user_id)
        if not exists:
            raise NotFoundError(f'User with ID {user_id} not found')

        with upstream_call('Memory fetch'):
            all_memories = self.store.get_all(user_id)
        is_new_user = len(all_memories) == 0

        relevant = self.search.search(message, user_id,
                                      SearchOptions(limit=MEMORY_SEARCH_LIMIT, threshold=MEMORY_SEARCH_THRESHOLD))

        full_profile = self.context_builder.build_full_profile(all_memories)
        relevant_context = self.context_builder.build_relevant(relevant)
        context = self.context_builder.combine(full_profile, relevant_context)

        if is_new_user:
            logger.info(f'New user {user_id} detected, using onboarding flow')
        else:
            logger.info(f'User {user_id} has {len(all_memories)} memories, {len(relevant)} relevant to query')
            for i, memory in enumerate(relevant, start=1):
                logger.debug(f'  {i}. [score {memory.score:.3f}] {memory.text}')

        analysis = self.analyzer.analyze(self.context_builder.profile_text(all_memories))
        logger.info(f'Profile {analysis.completion_percentage}% complete')
        if analysis.missing_categories:
            logger.debug(f'Missing profile categories: {", ".join(analysis.missing_categories)}')

        messages = [
            {'role': 'system', 'content': build_system_prompt(context, analysis, is_new_user)},
            {'role': 'user', 'content': message},
        ]
        with upstream_call('LLM completion'):
            response = self.llm.complete(messages,
                                         max_tokens=self.chat_config.max_tokens,
                                         temperature=self.chat_config.temperature)

        created = self._remember_turn(user_id, message, response)

        return ChatResult(message=message,
                          response=response,
                          memories_used=[m.text for m in relevant],
                          new_memories_created=created,
                          profile_completeness=analysis.completion_percentage,
                          is_new_user=is_new_user)

    def _remember_turn(self, user_id: str, message: str, response: str) -> int:
        """Store the exchange as new memories; returns how many were created."""
        turn: List[Dict[str, str]] = [
            {'role': 'user', 'content': message},
            {'role': 'assistant', 'content': response},
        ]
        try:
            with upstream_call('Memory write-back'):
                options = {'user_id': user_id, **self.tier_policy.resolve_add().to_request()}
                result = self.store.add(turn, options)
        except UpstreamError as e:
            if self.chat_config.fail_on_write_back_error:
                raise
            logger.warning(f'Returning answer without remembering the turn: {e}')
            return 0

        return len(result.created)
