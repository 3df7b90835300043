"""
Profile completeness analysis over free-text memory snippets.
"""

import random
from typing import Optional

from ..models.core import ProfileAnalysis
from .category_rules import CATEGORY_RULES, get_rule


class ProfileAnalyzer:
    """Score how much of the six-category fitness profile the memories cover."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def analyze(self, profile_text: str) -> ProfileAnalysis:
        """Analyze concatenated memory text.

        A category is present when any of its keywords occurs in the text.
        Missing categories keep the fixed priority order, and the suggested
        question is drawn from the highest-priority missing category.

        Args:
            profile_text: Memory texts joined together; may be empty

        Returns:
            ProfileAnalysis for this snapshot
        """
        text = (profile_text or '').lower()
        present = {rule.key: rule.matches(text) for rule in CATEGORY_RULES}
        missing = [rule.key for rule in CATEGORY_RULES if not present[rule.key]]

        completion = int(round(100 * (len(CATEGORY_RULES) - len(missing)) / len(CATEGORY_RULES)))

        return ProfileAnalysis(has_basic_info=present['basic_info'],
                               has_goals=present['fitness_goals'],
                               has_current_fitness=present['current_fitness'],
                               has_injury_info=present['injuries_limitations'],
                               has_diet_info=present['dietary_info'],
                               has_lifestyle_info=present['lifestyle'],
                               missing_categories=missing,
                               completion_percentage=completion,
                               suggested_question=self.next_question(missing))

    def next_question(self, missing_categories) -> Optional[str]:
        if not missing_categories:
            return None
        return self.rng.choice(get_rule(missing_categories[0]).questions)
