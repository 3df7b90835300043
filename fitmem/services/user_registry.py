"""
User registry stored in the OpenSearch user index.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from ..models.core import User
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.timestamp_utils import parse_datetime

logger = get_logger(__name__)

DEFAULT_USER_NAME = 'Demo User'


class UserRegistryError(Exception):
    """Custom exception for user registry errors."""
    pass


def generate_session_id(user_id: str) -> str:
    return f'session-{user_id}-{uuid.uuid4()}'


class UserRegistry:
    """Known users of the coach. Chat and memory reads require a registered user."""

    def __init__(self, opensearch: OpenSearchClient):
        self.opensearch = opensearch

        try:
            self.opensearch.create_index_if_not_exists('user')
        except OpenSearchError as e:
            logger.warning(f'Failed to create user index: {e}')

    @staticmethod
    def _to_user(doc) -> User:
        return User(id=doc['id'], name=doc.get('name', ''), email=doc.get('email'), created_at=parse_datetime(doc.get('created_at')))

    def exists(self, user_id: str) -> bool:
        return self.get_user(user_id) is not None

    def get_user(self, user_id: str) -> Optional[User]:
        try:
            doc = self.opensearch.get_document(user_id, 'user')
        except OpenSearchError as e:
            raise UserRegistryError(f'User lookup failed: {e}')
        return self._to_user(doc) if doc else None

    def create_user(self, name: str, email: Optional[str] = None) -> User:
        """
        Register a new user.

        Args:
            name: Display name
            email: Optional contact email

        Returns:
            The created User

        Raises:
            UserRegistryError: If the user could not be stored
        """
        user = User(id=str(uuid.uuid4()), name=name, email=email, created_at=datetime.now())
        document = {'id': user.id, 'name': user.name, 'created_at': user.created_at.isoformat()}
        if email:
            document['email'] = email

        try:
            if not self.opensearch.index_document(document, 'user'):
                raise UserRegistryError(f'User {user.id} was not stored')
        except OpenSearchError as e:
            raise UserRegistryError(f'User creation failed: {e}')

        logger.info(f'Created user {user.id} ({name})')
        return user

    def list_users(self) -> List[User]:
        try:
            return [self._to_user(doc) for doc in self.opensearch.list_documents('user')]
        except OpenSearchError as e:
            raise UserRegistryError(f'User listing failed: {e}')

    def delete_user(self, user_id: str) -> bool:
        try:
            return self.opensearch.delete_document(user_id, 'user')
        except OpenSearchError as e:
            raise UserRegistryError(f'User deletion failed: {e}')

    def ensure_default_user(self) -> Optional[User]:
        """Create the demo user when the registry is empty. Returns it, or None if users already exist."""
        if self.list_users():
            return None
        return self.create_user(DEFAULT_USER_NAME)

    def generate_session_id(self, user_id: str) -> str:
        return generate_session_id(user_id)
