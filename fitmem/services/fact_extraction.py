"""
Fact extraction service: turns conversations into short memory facts,
decides how new facts change existing memories, and pulls entity
relationships out of facts for the knowledge graph.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.logging_config import get_logger
from .category_rules import CATEGORY_RULES

logger = get_logger(__name__)

DEFAULT_FACT_CATEGORIES = {rule.key: rule.name for rule in CATEGORY_RULES}

FACT_EXTRACTION_PROMPT = """You are a memory extraction system for a personal fitness coach. Extract facts about the USER from the conversation.

Rules:
- Each fact is one short third-person sentence, e.g. "Is 30 years old", "Goal is to lose 10kg"
- Only extract information the user stated about themselves; never extract the assistant's statements
- Preserve numbers, units, frequencies and dates exactly
- Label every fact with one or more of these categories:
{categories}
{guidance}
Return a JSON array with this exact format:
```json
[
  {{
    "text": "fact sentence",
    "categories": ["category_key"]
  }}
]
```

Return empty array [] if there is nothing worth remembering."""  # noqa: E501

MEMORY_DECISION_PROMPT = """You are an AI memory management system. Your task is to analyze a new memory against existing memories and decide how to update the memory database.

## Input
- A new memory (i.e., fact)
- A list of existing related memories

## Task
1. DELETE: IF the new memory contradicts existing ones, THEN mark contradictory existing memories for deletion.
2. CREATE: After considering DELETION, decide if the new memory should be created:
   - Check if the new memory is redundant with the REMAINING memories (excluding the ones you marked for deletion)
   - Only create the new memory if it provides unique information not covered by the remaining memories

## Rule
ONLY delete if ALL these conditions are met:
- The memories are about the EXACT SAME attribute of the user
- They make contradictory claims about it
- Both memories cannot be true simultaneously

Valid deletion example:
- "Weighs 82kg" vs "Weighs 78kg" (same attribute, contradictory values)

NEVER delete for examples:
- Different attributes: "Trains 3x/week" vs "Goal is to run a marathon"
- Compatible facts that can coexist: "Likes yoga" vs "Lifts weights on Mondays"

When ANY doubt exists, keep both memories.

## Output format
```json
{
    "delete_indices": [],
    "create_new": true/false
}
```
"""  # noqa: E501

RELATION_EXTRACTION_PROMPT = """You are an expert knowledge graph extraction system. Extract entities and relationships from facts about a user.

Special handling for the user:
- The user is always the entity named "{user_id}" with type "person"
- Facts are written in third person about the user; use "{user_id}" as their subject

Extract entities such as exercises, sports, goals, body parts, foods, equipment, places, schedules and conditions.
Relationship names are short snake_case verbs, e.g. "trains", "wants_to", "allergic_to", "injured", "eats".

Return JSON with this exact format:
```json
{{
  "entities": [{{"name": "entity name", "type": "person|exercise|goal|body_part|food|equipment|place|condition|concept"}}],
  "relations": [{{"source": "entity name", "relationship": "relationship_name", "target": "entity name"}}]
}}
```

Only extract what is explicitly stated. Every relation endpoint must appear in entities.
Return {{"entities": [], "relations": []}} if nothing is found."""


class FactExtractionError(Exception):
    """Custom exception for fact extraction errors."""
    pass


def _conversation_text(messages: List[Dict[str, str]]) -> str:
    content_list = []
    for msg in messages:
        if msg.get('role') in ['user', 'assistant'] and msg.get('content', '').strip():
            content_list.append(f'{msg["role"].capitalize()}:\n{msg["content"]}')
    return '\n\n'.join(content_list)


def _strip_code_fence(response: str) -> str:
    text = response.strip()
    for marker in ('```json', '```'):
        if text.startswith(marker):
            text = text[len(marker):]
            break
    if text.endswith('```'):
        text = text[:-3]
    return text.strip()


def _guidance(includes: Optional[str], excludes: Optional[str], custom_instructions: Optional[str]) -> str:
    parts = [part for part in (custom_instructions, includes, excludes) if part]
    if not parts:
        return ''
    return '\nAdditional guidance:\n' + '\n\n'.join(parts) + '\n'


class FactExtractionService:
    """Extract memory facts and graph triples from conversations using Bedrock LLMs."""

    def __init__(self, llm: BedrockLLM):
        self.llm = llm
        logger.info('Initialized FactExtractionService')

    def _ask_json(self, system_prompt: str, user_message: str) -> Any:
        """Prefill a ```json block and parse the model's answer.

        Raises:
            BedrockLLMError: If the LLM call fails
            json.JSONDecodeError: If the answer is not valid JSON
        """
        messages = [{
            'role': 'user',
            'content': [{
                'text': user_message
            }]
        }, {
            'role': 'assistant',
            'content': [{
                'text': '```json'
            }]
        }]
        response, _ = self.llm.generate_response(messages=messages, system_prompt=system_prompt, stop_sequences=['```'])
        return json.loads(_strip_code_fence(response))

    def extract_facts(self,
                      messages: List[Dict[str, str]],
                      includes: Optional[str] = None,
                      excludes: Optional[str] = None,
                      custom_instructions: Optional[str] = None,
                      custom_categories: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """Extract short facts about the user from a conversation.

        Args:
            messages: List of message dicts with 'role' and 'content' keys
            includes: What the extraction must capture
            excludes: What the extraction must ignore
            custom_instructions: Free-form extraction rules
            custom_categories: Category key to description; defaults to the profile categories

        Returns:
            List of {'text': str, 'categories': [str]}

        Raises:
            FactExtractionError: If the LLM call fails
        """
        content = _conversation_text(messages)
        if not content:
            logger.debug('No content found for fact extraction')
            return []

        categories = custom_categories or DEFAULT_FACT_CATEGORIES
        system_prompt = FACT_EXTRACTION_PROMPT.format(
            categories='\n'.join(f'- {key}: {description}' for key, description in categories.items()),
            guidance=_guidance(includes, excludes, custom_instructions))

        try:
            facts_data = self._ask_json(system_prompt, f'Extract facts from the conversation:\n{content}')
        except BedrockLLMError as e:
            logger.error(f'LLM error during fact extraction: {e}')
            raise FactExtractionError(f'Fact extraction failed: {e}')
        except json.JSONDecodeError as e:
            logger.error(f'Failed to parse fact extraction JSON: {e}')
            return []

        if not isinstance(facts_data, list):
            logger.warning(f'Expected list, got {type(facts_data)}')
            return []

        facts = []
        for fact_data in facts_data:
            if isinstance(fact_data, str):
                fact_data = {'text': fact_data}
            if not isinstance(fact_data, dict):
                continue
            text = str(fact_data.get('text', '')).strip()
            if not text:
                continue
            labels = fact_data.get('categories') or []
            facts.append({'text': text, 'categories': [c for c in labels if c in categories]})

        logger.debug(f'Extracted {len(facts)} facts from conversation')
        return facts

    def decide_operations(self, new_fact: str, existing: List[str]) -> Tuple[bool, List[int]]:
        """Use LLM to decide whether to create a fact and which existing memories it replaces.

        Failures fall back to creating the fact without deleting anything.

        Args:
            new_fact: Candidate memory text
            existing: Texts of similar existing memories

        Returns:
            Tuple of (create_new, indices into `existing` to delete)
        """
        if not existing:
            return True, []

        candidates_info = ''.join(f'Memory {i}: {text}\n' for i, text in enumerate(existing) if text)
        user_message = f"""## Existing memories
{candidates_info}

## New memory
{new_fact}
"""

        try:
            decision = self._ask_json(MEMORY_DECISION_PROMPT, user_message)
        except json.JSONDecodeError as e:
            logger.warning(f'Failed to parse memory decision: {e}')
            return True, []
        except BedrockLLMError as e:
            logger.error(f'LLM error in memory operations decision: {e}')
            return True, []

        if not isinstance(decision, dict):
            return True, []

        delete_indices = [idx for idx in decision.get('delete_indices', []) if isinstance(idx, int) and 0 <= idx < len(existing)]
        return bool(decision.get('create_new', True)), delete_indices

    def extract_relations(self, user_id: str, facts: List[str]) -> Dict[str, List[Dict[str, str]]]:
        """Extract entities and (source, relationship, target) triples from facts.

        Relations whose endpoints are not among the extracted entities are dropped.

        Returns:
            {'entities': [{name, type}], 'relations': [{source, relationship, target}]}

        Raises:
            FactExtractionError: If the LLM call fails
        """
        empty = {'entities': [], 'relations': []}
        facts = [fact for fact in facts if fact and fact.strip()]
        if not facts:
            return empty

        system_prompt = RELATION_EXTRACTION_PROMPT.format(user_id=user_id)
        try:
            data = self._ask_json(system_prompt, 'Extract entities and relationships from these facts:\n' +
                                  '\n'.join(f'- {fact}' for fact in facts))
        except BedrockLLMError as e:
            logger.error(f'LLM error during relation extraction: {e}')
            raise FactExtractionError(f'Relation extraction failed: {e}')
        except json.JSONDecodeError as e:
            logger.error(f'Failed to parse relation extraction JSON: {e}')
            return empty

        if not isinstance(data, dict):
            return empty

        entities = {}
        for entity in data.get('entities') or []:
            name = str(entity.get('name', '')).strip() if isinstance(entity, dict) else ''
            if name:
                entities.setdefault(name, {'name': name, 'type': str(entity.get('type') or 'concept').strip().lower()})

        relations = []
        for relation in data.get('relations') or []:
            if not isinstance(relation, dict):
                continue
            source = str(relation.get('source', '')).strip()
            target = str(relation.get('target', '')).strip()
            relationship = str(relation.get('relationship', '')).strip().lower().replace(' ', '_')
            if not all([source, target, relationship]):
                continue
            if source not in entities or target not in entities:
                logger.debug('Skip relation due to missing source or target entity')
                continue
            relations.append({'source': source, 'relationship': relationship, 'target': target})

        logger.debug(f'Extracted {len(entities)} entities and {len(relations)} relations')
        return {'entities': list(entities.values()), 'relations': relations}
