"""
MCP Interface Layer using fastmcp: exposes the coaching service as agent tools.
"""

from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from fitmem.services.errors import ValidationError
from fitmem.services.memory_management import MemoryManagementService
from fitmem.services.tier_policy import AddOptions, SearchOptions
from fitmem.utils.config import config
from fitmem.utils.constants import GRAPH_DEFAULT_DEPTH, GRAPH_DEFAULT_ENTITY_LIMIT, GRAPH_MAX_DEPTH
from fitmem.utils.health_check import get_system_info
from fitmem.utils.logging_config import get_logger

logger = get_logger(__name__)

mcp = FastMCP('FitMem')

_service: Optional[MemoryManagementService] = None


def get_service() -> MemoryManagementService:
    """Build the service on first use so importing this module never touches AWS."""
    global _service
    if _service is None:
        _service = MemoryManagementService()
    return _service


@contextmanager
def tool_call(operation: str):
    """Turn any failure into a tool error of the form '<operation> failed: <reason>'."""
    try:
        yield
    except Exception as e:
        logger.error(f'{operation} failed in MCP tool: {e}')
        raise Exception(f'{operation} failed: {e}')


def _validate_depth(depth: int) -> int:
    if not isinstance(depth, int) or not 1 <= depth <= GRAPH_MAX_DEPTH:
        raise ValidationError(f'depth must be between 1 and {GRAPH_MAX_DEPTH}, got {depth}')
    return depth


@mcp.tool()
def chat(user_id: str, message: str) -> Dict[str, Any]:
    """Chat with the fitness coach. The turn is remembered for future conversations.

    Args:
        user_id: Registered user ID
        message: User message

    Returns:
        Response, memories used, new memories created, profile completeness and new-user flag
    """
    with tool_call('Chat'):
        return get_service().chat(message, user_id).to_dict()


@mcp.tool()
def onboarding_prompt() -> str:
    """Get a greeting that starts the onboarding conversation for a new user."""
    with tool_call('Onboarding prompt'):
        return get_service().onboarding_prompt()


@mcp.tool()
def upload_text(user_id: str, content: str) -> Dict[str, int]:
    """Remember a block of text about the user, e.g. the contents of an uploaded file.

    Returns:
        Number of memories extracted
    """
    with tool_call('Text upload'):
        return {'memories_extracted': get_service().add_from_text(content, user_id)}


@mcp.tool()
def add_memory(user_id: str,
               messages: List[Dict[str, str]],
               metadata: Optional[Dict[str, Any]] = None,
               infer: Optional[bool] = None,
               immutable: Optional[bool] = None,
               expiration_date: Optional[str] = None) -> Dict[str, Any]:
    """Store a conversation as memories.

    Args:
        user_id: Registered user ID
        messages: List of {'role': 'user'|'assistant', 'content': str}
        metadata: Metadata attached to every created memory
        infer: Extract facts with the LLM (default) or store user messages verbatim
        immutable: Protect created memories from updates and contradiction deletes
        expiration_date: YYYY-MM-DD after which the memories are no longer returned

    Returns:
        List of {id, memory, event} changes
    """
    options = AddOptions(infer=infer, immutable=immutable, expiration_date=expiration_date)
    with tool_call('Memory add'):
        result = get_service().add_memory(messages, user_id, metadata, options)
        return {'results': [{'id': r.id, 'memory': r.memory, 'event': r.event} for r in result.results]}


@mcp.tool()
def search_memories(user_id: str,
                    query: str,
                    limit: Optional[int] = None,
                    threshold: Optional[float] = None,
                    categories: Optional[List[str]] = None,
                    date_from: Optional[str] = None,
                    date_to: Optional[str] = None,
                    metadata: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Semantic search over a user's memories.

    Args:
        user_id: Registered user ID
        query: Natural language query
        limit: Maximum number of results (default: 10)
        threshold: Minimum relevance score in [0, 1]
        categories: Only memories labeled with one of these categories
        date_from: Only memories created on or after this day (YYYY-MM-DD)
        date_to: Only memories created on or before this day (YYYY-MM-DD)
        metadata: Only memories whose metadata matches every key

    Returns:
        Memories ordered by relevance score
    """
    options = SearchOptions(limit=limit,
                            threshold=threshold,
                            categories=categories,
                            date_from=date_from,
                            date_to=date_to,
                            metadata=metadata)
    with tool_call('Memory search'):
        return [m.to_dict() for m in get_service().search(query, user_id, options)]


@mcp.tool()
def advanced_search(user_id: str,
                    query: str,
                    limit: Optional[int] = None,
                    threshold: Optional[float] = None,
                    rerank: Optional[bool] = None,
                    top_k: Optional[int] = None,
                    keyword_search: Optional[bool] = None,
                    categories: Optional[List[str]] = None,
                    date_from: Optional[str] = None,
                    date_to: Optional[str] = None,
                    metadata: Optional[Dict[str, Any]] = None,
                    and_conditions: Optional[List[Dict[str, Any]]] = None,
                    or_conditions: Optional[List[Dict[str, Any]]] = None,
                    include_graph: Optional[bool] = None,
                    depth: int = GRAPH_DEFAULT_DEPTH) -> Dict[str, Any]:
    """Search with reranking, keyword matching, filters and graph context (pro tier).

    Conditions are {'field', 'operator', 'value'} with operator one of
    eq, ne, gt, gte, lt, lte, in, contains. On the free tier, pro-only
    options are ignored.

    Returns:
        {'memories': [...], 'reranked': bool, 'graph': {...}?}
    """
    with tool_call('Advanced search'):
        options = SearchOptions(limit=limit,
                                threshold=threshold,
                                rerank=rerank,
                                top_k=top_k,
                                keyword_search=keyword_search,
                                categories=categories,
                                date_from=date_from,
                                date_to=date_to,
                                metadata=metadata,
                                and_conditions=and_conditions,
                                or_conditions=or_conditions,
                                include_graph=include_graph,
                                depth=_validate_depth(depth))
        return get_service().advanced_search(query, user_id, options).to_dict()


@mcp.tool()
def graph_search(user_id: str, query: str, depth: int = GRAPH_DEFAULT_DEPTH, limit: Optional[int] = None) -> Dict[str, Any]:
    """Search memories and attach the user's knowledge graph up to `depth` hops (1-3)."""
    with tool_call('Graph search'):
        return get_service().search_with_graph(query, user_id, _validate_depth(depth), limit).to_dict()


@mcp.tool()
def graph_entities(user_id: str, entity_type: Optional[str] = None, limit: int = GRAPH_DEFAULT_ENTITY_LIMIT) -> List[Dict[str, Any]]:
    """List entities in the user's knowledge graph, optionally of one type."""
    with tool_call('Graph entities'):
        return [{'name': e.name, 'type': e.type} for e in get_service().graph_entities(user_id, entity_type, limit)]


@mcp.tool()
def graph_entities_by_type(user_id: str, entity_type: str, limit: int = GRAPH_DEFAULT_ENTITY_LIMIT) -> List[Dict[str, Any]]:
    """List entities of one type, e.g. 'exercise' or 'food'."""
    with tool_call('Graph entities by type'):
        return [{'name': e.name, 'type': e.type} for e in get_service().entities_by_type(user_id, entity_type, limit)]


@mcp.tool()
def graph_relationships(user_id: str,
                        entity: Optional[str] = None,
                        relationship_type: Optional[str] = None,
                        depth: int = GRAPH_DEFAULT_DEPTH,
                        limit: int = GRAPH_DEFAULT_ENTITY_LIMIT) -> Dict[str, Any]:
    """Relationships in the user's knowledge graph, expanded up to `depth` hops (1-3)."""
    with tool_call('Graph relationships'):
        return get_service().graph_relationships(user_id, entity, relationship_type, _validate_depth(depth), limit).to_dict()


@mcp.tool()
def graph_search_by_entity(user_id: str, entity: str) -> Dict[str, Any]:
    """All relationships directly connected to one entity."""
    with tool_call('Graph entity search'):
        return get_service().search_by_entity(user_id, entity).to_dict()


@mcp.tool()
def get_user_memories(user_id: str) -> List[Dict[str, Any]]:
    """All memories of a user, oldest first."""
    with tool_call('Memory fetch'):
        return [m.to_dict() for m in get_service().get_user_memories(user_id)]


@mcp.tool()
def get_memory(memory_id: str) -> Dict[str, Any]:
    with tool_call('Memory get'):
        return get_service().get_memory(memory_id).to_dict()


@mcp.tool()
def update_memory(memory_id: str, text: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Replace a memory's text. Immutable memories cannot be updated."""
    with tool_call('Memory update'):
        return get_service().update_memory(memory_id, text, metadata).to_dict()


@mcp.tool()
def delete_memory(memory_id: str) -> Dict[str, str]:
    with tool_call('Memory delete'):
        get_service().delete_memory(memory_id)
        return {'deleted': memory_id}


@mcp.tool()
def delete_all_memories(user_id: str) -> Dict[str, int]:
    """Delete every memory and the knowledge graph of a user."""
    with tool_call('Memory delete'):
        return {'deleted': get_service().delete_all_user_memories(user_id)}


@mcp.tool()
def memory_history(memory_id: str) -> List[Dict[str, Any]]:
    """Change history (ADD, UPDATE, DELETE events) of one memory."""
    with tool_call('Memory history'):
        return get_service().memory_history(memory_id)


@mcp.tool()
def profile_analysis(user_id: str) -> Dict[str, Any]:
    """How complete the user's fitness profile is, what is missing, and what to ask next."""
    with tool_call('Profile analysis'):
        return get_service().profile_analysis(user_id)


@mcp.tool()
def create_user(name: str, email: Optional[str] = None) -> Dict[str, Any]:
    with tool_call('User creation'):
        return get_service().create_user(name, email).to_dict()


@mcp.tool()
def list_users() -> List[Dict[str, Any]]:
    with tool_call('User listing'):
        return [u.to_dict() for u in get_service().list_users()]


@mcp.tool()
def get_user(user_id: str) -> Dict[str, Any]:
    with tool_call('User lookup'):
        return get_service().get_user(user_id).to_dict()


@mcp.tool()
def delete_user(user_id: str) -> Dict[str, str]:
    """Remove a user from the registry. Their memories are kept; use delete_all_memories to erase them."""
    with tool_call('User deletion'):
        get_service().delete_user(user_id)
        return {'message': f'User {user_id} deleted successfully'}


@mcp.tool()
def create_session(user_id: str) -> Dict[str, str]:
    """Start a new conversation session for a registered user."""
    with tool_call('Session creation'):
        return {'session_id': get_service().create_session(user_id)}


@mcp.tool()
def get_project_settings() -> Dict[str, Any]:
    """Project-wide extraction instructions and categories used for pro-tier memory writes."""
    with tool_call('Project settings'):
        return get_service().get_project_settings().to_dict()


@mcp.tool()
def update_custom_instructions(instructions: str) -> Dict[str, Any]:
    """Replace the project-wide instructions that guide memory extraction."""
    with tool_call('Project settings update'):
        return get_service().update_custom_instructions(instructions).to_dict()


@mcp.tool()
def update_custom_categories(categories: List[Dict[str, str]]) -> Dict[str, Any]:
    """Replace the project-wide memory categories.

    Args:
        categories: Non-empty list of {category_name: description} objects
    """
    with tool_call('Project settings update'):
        return get_service().update_custom_categories(categories).to_dict()


@mcp.tool()
def health() -> Dict[str, Any]:
    """Per-component health and service configuration."""
    with tool_call('Health check'):
        return get_system_info(get_service().health_components())


def main():
    try:
        default_user = get_service().ensure_default_user()
        if default_user:
            logger.info(f'Created default user {default_user.id}')
    except Exception as e:
        logger.warning(f'Could not ensure default user: {e}')

    if config.mcp.transport == 'stdio':
        mcp.run(transport='stdio')
    else:
        mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)


if __name__ == '__main__':
    main()
