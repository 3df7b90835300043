"""
Amazon Neptune graph database client with Gremlin Python driver and AWS SigV4 authentication.

Each user owns a separate graph of `Entity` vertices joined by `Relation`
edges. Edges carry their endpoint names so single-hop lookups never need a
second traversal.
"""

from functools import wraps
from typing import Any, Dict, List, Optional

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal
from gremlin_python.process.graph_traversal import __
from gremlin_python.process.traversal import P

from .config import NeptuneConfig
from .logging_config import get_logger
from .timestamp_utils import to_seconds_str

logger = get_logger(__name__)

DEFAULT_ENTITY_TYPE = 'concept'


class NeptuneError(Exception):
    """Custom exception for Neptune errors."""
    pass


def retry_on_connection_error(func):
    """Decorator to retry Neptune operations on connection errors."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except Exception as e:
            if 'cannot write to closing transport' in str(e).lower():
                logger.warning(f'Connection error detected: {e}. Reconnecting...')
                self.close()
                self._connect()
                try:
                    return func(self, *args, **kwargs)
                except Exception as retry_e:
                    logger.error(f'Error in {func.__name__}: {retry_e}')
                    raise NeptuneError(f'Failed to {func.__name__}: {retry_e}')
            else:
                logger.error(f'Error in {func.__name__}: {e}')
                raise NeptuneError(f'Failed to {func.__name__}: {e}')

    return wrapper


def _first(data: Dict[Any, Any], key: str, default: Any = '') -> Any:
    # value_map returns vertex properties as lists and edge properties as scalars
    value = data.get(key, default)
    if isinstance(value, list):
        return value[0] if value else default
    return value


def entity_id(user_id: str, name: str) -> str:
    return f'{user_id}:{name}'


class NeptuneClient:
    """Amazon Neptune client using Gremlin Python driver with AWS authentication."""

    def __init__(self, config: NeptuneConfig, g=None):
        """
        Initialize Neptune client with Gremlin driver.

        Args:
            config: NeptuneConfig instance with connection parameters
            g: Pre-built graph traversal source (connects to Neptune if None)
        """
        self.config = config
        self.connection = None
        self.g = g
        if g is None:
            self._connect()
            logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self):
        """Establish connection to Neptune."""
        conn_string = f'wss://{self.config.endpoint}:{self.config.port}/gremlin'

        credentials = Session().get_credentials()
        if credentials is None:
            raise NeptuneError('No AWS credentials found')
        creds = credentials.get_frozen_credentials()

        region = self.config.region or Session().region_name or 'us-east-1'

        # Signed request headers for the WebSocket handshake
        request = AWSRequest(method='GET', url=conn_string, data=None)
        SigV4Auth(creds, 'neptune-db', region).add_auth(request)

        self.connection = DriverRemoteConnection(conn_string,
                                                 'g',
                                                 headers=request.headers.items(),
                                                 transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))
        self.g = traversal().with_remote(self.connection)

    def close(self):
        """Close the Neptune connection."""
        if self.connection is not None:
            self.connection.close()

    @retry_on_connection_error
    def upsert_entity(self, user_id: str, name: str, entity_type: Optional[str] = None) -> str:
        """
        Create an entity vertex unless the user already has one with this name.

        Args:
            user_id: Graph owner
            name: Entity name (identity within the user's graph)
            entity_type: Entity type label

        Returns:
            Vertex id
        """
        vertex_id = entity_id(user_id, name)
        if self.g.V().has('Entity', 'id', vertex_id).has_next():
            return vertex_id

        self.g.addV('Entity').property('id', vertex_id)\
            .property('user_id', user_id)\
            .property('name', name)\
            .property('type', entity_type or DEFAULT_ENTITY_TYPE)\
            .property('created_at', to_seconds_str())\
            .next()

        logger.debug(f'Created entity vertex: {vertex_id}')
        return vertex_id

    @retry_on_connection_error
    def create_relation(self, user_id: str, source: str, relationship: str, target: str) -> bool:
        """
        Connect two entities with a typed edge. Existing edges are left untouched.

        Args:
            user_id: Graph owner
            source: Source entity name
            relationship: Relationship type
            target: Target entity name

        Returns:
            True if a new edge was created, False if it already existed
        """
        source_id = self.upsert_entity(user_id, source)
        target_id = self.upsert_entity(user_id, target)

        exists = self.g.E().has('Relation', 'user_id', user_id)\
            .has('source', source)\
            .has('target', target)\
            .has('relationship', relationship)\
            .has_next()
        if exists:
            return False

        self.g.V().has('Entity', 'id', source_id).as_('s')\
            .V().has('Entity', 'id', target_id)\
            .addE('Relation').from_('s')\
            .property('user_id', user_id)\
            .property('source', source)\
            .property('target', target)\
            .property('relationship', relationship)\
            .property('created_at', to_seconds_str())\
            .next()

        logger.debug(f'Created relation: {source} -[{relationship}]-> {target}')
        return True

    @retry_on_connection_error
    def get_relations(self,
                      user_id: str,
                      entity_name: Optional[str] = None,
                      relationship_type: Optional[str] = None,
                      limit: Optional[int] = 20) -> Dict[str, List[Dict[str, Any]]]:
        """
        Single-hop relationship lookup.

        Args:
            user_id: Graph owner
            entity_name: Only edges touching this entity
            relationship_type: Only edges of this type
            limit: Maximum edges to return

        Returns:
            {'entities': [{name, type}], 'relations': [{source, relationship, target}]}
        """
        edges = self.g.E().has('Relation', 'user_id', user_id)
        if relationship_type:
            edges = edges.has('relationship', relationship_type)
        if entity_name:
            edges = edges.or_(__.has('source', entity_name), __.has('target', entity_name))
        if limit:
            edges = edges.limit(limit)

        relations = [{
            'source': _first(data, 'source'),
            'relationship': _first(data, 'relationship'),
            'target': _first(data, 'target')
        } for data in edges.value_map().to_list()]

        names = []
        for relation in relations:
            for name in (relation['source'], relation['target']):
                if name not in names:
                    names.append(name)

        entities = []
        if names:
            found = self.g.V().has('Entity', 'user_id', user_id).has('name', P.within(names)).value_map().to_list()
            types = {_first(data, 'name'): _first(data, 'type', DEFAULT_ENTITY_TYPE) for data in found}
            entities = [{'name': name, 'type': types.get(name, DEFAULT_ENTITY_TYPE)} for name in names]

        logger.debug(f'Found {len(relations)} relations for user {user_id}'
                     f'{f" around {entity_name!r}" if entity_name else ""}')
        return {'entities': entities, 'relations': relations}

    @retry_on_connection_error
    def get_entities(self, user_id: str, entity_type: Optional[str] = None, limit: Optional[int] = 20) -> List[Dict[str, Any]]:
        """
        List a user's entities, optionally of one type.

        Returns:
            List of {name, type}
        """
        vertices = self.g.V().has('Entity', 'user_id', user_id)
        if entity_type:
            vertices = vertices.has('type', entity_type)
        if limit:
            vertices = vertices.limit(limit)

        return [{
            'name': _first(data, 'name'),
            'type': _first(data, 'type', DEFAULT_ENTITY_TYPE)
        } for data in vertices.value_map().to_list()]

    @retry_on_connection_error
    def delete_user_graph(self, user_id: str) -> bool:
        """
        Delete all of one user's relations and entities.

        Returns:
            True if deletion was successful
        """
        self.g.E().has('Relation', 'user_id', user_id).drop().iterate()
        self.g.V().has('Entity', 'user_id', user_id).drop().iterate()
        logger.debug(f'Deleted graph for user: {user_id}')
        return True

    @retry_on_connection_error
    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy, False otherwise
        """
        self.g.V().limit(1).count().next()
        return True
