"""
Keyword rule table for the six fitness-profile categories.

ProfileAnalyzer uses it to decide which categories a user's memories cover,
ContextBuilder uses it to file each memory under a labeled bucket. Both apply
the same test: case-insensitive substring containment of any keyword.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

OTHER_LABEL = 'Other'


@dataclass(frozen=True)
class CategoryRule:
    """One profile category.

    Attributes:
        key: Stable identifier reported in `missing_categories`
        name: Human readable category name
        label: Bucket header used when rendering the full profile
        keywords: Lower-case substrings; any hit marks the category present
        questions: Follow-up questions asked when the category is missing
    """
    key: str
    name: str
    label: str
    keywords: Tuple[str, ...]
    questions: Tuple[str, ...]

    def matches(self, text: str) -> bool:
        lowered = text.lower()
        return any(keyword in lowered for keyword in self.keywords)


# Priority order: lower index = asked about first, tested first when bucketing
CATEGORY_RULES: Tuple[CategoryRule, ...] = (
    CategoryRule(
        key='basic_info',
        name='Basic Info',
        label='Personal Info',
        keywords=('name', 'years old', 'year old', 'age:', 'aged', 'gender', 'male', 'height', 'weight', 'tall', 'born'),
        questions=(
            "I'd love to personalize your experience! What should I call you?",
            'To give you better advice, could you share your age and gender?',
            "What's your current height and weight? This helps me tailor recommendations.",
        )),
    CategoryRule(
        key='fitness_goals',
        name='Fitness Goals',
        label='Fitness Goals',
        keywords=('goal', 'want to', 'trying to', 'target', 'aim', 'lose', 'gain', 'build muscle', 'improve', 'get fit'),
        questions=(
            "What's your main fitness goal right now? (e.g., lose weight, build muscle, get stronger, improve endurance)",
            'Do you have a target weight or body composition goal in mind?',
            "What's your timeline for achieving this goal?",
            'What motivated you to start this fitness journey?',
        )),
    CategoryRule(
        key='current_fitness',
        name='Current Fitness Level',
        label='Exercise & Training',
        keywords=('workout', 'exercise', 'train', 'gym', 'routine', 'run', 'lift', 'cardio', 'beginner', 'intermediate',
                  'advanced', '/week', 'per week', 'times a week', 'yoga', 'swim', 'cycling', 'fitness level'),
        questions=(
            'How would you describe your current fitness level? (beginner, intermediate, advanced)',
            'Are you currently following any workout routine?',
            'How many days per week do you typically exercise?',
            'What types of exercise do you enjoy most?',
        )),
    CategoryRule(
        key='injuries_limitations',
        name='Injuries & Limitations',
        label='Injuries & Limitations',
        keywords=('injur', 'pain', 'hurt', 'surgery', 'limitation', 'avoid', 'sprain', 'tendon', 'physio', 'chronic'),
        questions=(
            'Do you have any current injuries or pain I should know about?',
            'Any past injuries that might affect your training?',
            'Are there any exercises or movements you need to avoid?',
        )),
    CategoryRule(
        key='dietary_info',
        name='Nutrition & Diet',
        label='Diet & Nutrition',
        keywords=('diet', 'eat', 'food', 'allerg', 'protein', 'calorie', 'meal', 'vegetarian', 'vegan', 'keto',
                  'supplement', 'nutrition', 'breakfast', 'snack'),
        questions=(
            'Do you follow any specific diet? (vegetarian, keto, etc.)',
            'Any food allergies or intolerances I should know about?',
            'How would you describe your current eating habits?',
            'Are you taking any supplements?',
        )),
    CategoryRule(
        key='lifestyle',
        name='Lifestyle',
        label='Lifestyle',
        keywords=('sleep', 'stress', 'job', 'office', 'desk', 'sedentary', 'equipment', 'dumbbell', 'schedule', 'shift',
                  'commute', 'works as'),
        questions=(
            'How many hours of sleep do you typically get?',
            'Do you have access to a gym, or do you prefer home workouts?',
            'What equipment do you have available?',
            'Is your job mostly sedentary or active?',
        )),
)

CATEGORY_KEYS: Tuple[str, ...] = tuple(rule.key for rule in CATEGORY_RULES)
BUCKET_LABELS: Tuple[str, ...] = tuple(rule.label for rule in CATEGORY_RULES) + (OTHER_LABEL,)


def get_rule(key: str) -> CategoryRule:
    for rule in CATEGORY_RULES:
        if rule.key == key:
            return rule
    raise KeyError(f'Unknown profile category: {key}')


def first_matching_rule(text: str) -> Optional[CategoryRule]:
    """Return the first rule in priority order whose keywords occur in `text`."""
    for rule in CATEGORY_RULES:
        if rule.matches(text):
            return rule
    return None


def bucket_label(text: str) -> str:
    """File a memory under exactly one bucket label; unmatched text goes to Other."""
    rule = first_matching_rule(text)
    return rule.label if rule else OTHER_LABEL
