"""
Render a user's memories into prompt-ready context text.
"""

from typing import Dict, List, Sequence

from ..models.core import Memory, ScoredMemory
from .category_rules import BUCKET_LABELS, bucket_label

PROFILE_HEADER = '--- USER FITNESS PROFILE ---'
RELEVANT_SEPARATOR = '--- RELEVANT TO CURRENT QUERY ---'
NO_RELEVANT_MEMORIES = 'No specific memories match this query.'
RELEVANT_INTRO = 'Here is what I remember about this user:'
RELEVANT_OUTRO = 'Use this context to provide a personalized response.'


class ContextBuilder:
    """Build the full-profile block and the query-relevant block of the system prompt."""

    @staticmethod
    def group(memories: Sequence[Memory]) -> Dict[str, List[str]]:
        """Bucket every memory text under exactly one label, in fixed label order."""
        buckets: Dict[str, List[str]] = {label: [] for label in BUCKET_LABELS}
        for memory in memories:
            buckets[bucket_label(memory.text)].append(memory.text)
        return buckets

    def build_full_profile(self, memories: Sequence[Memory]) -> str:
        """Render all of a user's memories grouped by category. Empty buckets are skipped.

        Returns:
            The profile block, or '' when there are no memories
        """
        if not memories:
            return ''

        sections = [PROFILE_HEADER]
        for label, items in self.group(memories).items():
            if items:
                sections.append(f'\n{label}:')
                sections.extend(f'  - {item}' for item in items)

        return '\n'.join(sections)

    def build_relevant(self, memories: Sequence[ScoredMemory]) -> str:
        """Render search hits as a numbered list.

        Returns:
            The relevant block, or '' meaning "no context available"
        """
        if not memories:
            return ''

        lines = '\n'.join(f'{i}. {memory.text}' for i, memory in enumerate(memories, start=1))
        return f'{RELEVANT_INTRO}\n{lines}\n\n{RELEVANT_OUTRO}'

    @staticmethod
    def combine(full_profile: str, relevant: str) -> str:
        if not full_profile:
            return relevant
        return f'{full_profile}\n\n{RELEVANT_SEPARATOR}\n{relevant or NO_RELEVANT_MEMORIES}'

    @staticmethod
    def profile_text(memories: Sequence[Memory]) -> str:
        """Concatenate memory texts for profile analysis."""
        return '\n'.join(memory.text for memory in memories)
