"""Tests for the OpenSearch-backed user registry."""

from unittest.mock import MagicMock

import pytest

from fitmem.services.user_registry import DEFAULT_USER_NAME, UserRegistry, UserRegistryError, generate_session_id
from fitmem.utils.opensearch_client import OpenSearchError


@pytest.fixture
def opensearch():
    client = MagicMock()
    client.index_document.return_value = True
    client.list_documents.return_value = []
    return client


@pytest.fixture
def registry(opensearch):
    return UserRegistry(opensearch)


def test_creates_user_index(registry, opensearch):
    opensearch.create_index_if_not_exists.assert_called_once_with('user')


def test_create_user(registry, opensearch):
    user = registry.create_user('Sam', 'sam@example.com')

    document, index_type = opensearch.index_document.call_args.args
    assert index_type == 'user'
    assert document['id'] == user.id
    assert document['name'] == 'Sam'
    assert document['email'] == 'sam@example.com'


def test_create_user_not_stored(registry, opensearch):
    opensearch.index_document.return_value = False
    with pytest.raises(UserRegistryError):
        registry.create_user('Sam')


def test_exists(registry, opensearch):
    opensearch.get_document.return_value = {'id': 'u1', 'name': 'Sam', 'created_at': '2024-05-01T10:00:00'}
    assert registry.exists('u1') is True
    assert registry.get_user('u1').created_at.year == 2024
    opensearch.get_document.assert_called_with('u1', 'user')

    opensearch.get_document.return_value = None
    assert registry.exists('u2') is False


def test_lookup_failure(registry, opensearch):
    opensearch.get_document.side_effect = OpenSearchError('timeout')
    with pytest.raises(UserRegistryError):
        registry.exists('u1')


def test_ensure_default_user_on_empty_registry(registry):
    assert registry.ensure_default_user().name == DEFAULT_USER_NAME


def test_ensure_default_user_with_existing_users(registry, opensearch):
    opensearch.list_documents.return_value = [{'id': 'u1', 'name': 'Sam'}]
    assert registry.ensure_default_user() is None
    opensearch.index_document.assert_not_called()


def test_session_ids_are_unique():
    first, second = generate_session_id('u1'), generate_session_id('u1')
    assert first.startswith('session-u1-')
    assert first != second


def test_delete_user(registry, opensearch):
    opensearch.delete_document.return_value = True
    assert registry.delete_user('u1') is True
    opensearch.delete_document.assert_called_once_with('u1', 'user')


def test_delete_failure(registry, opensearch):
    opensearch.delete_document.side_effect = OpenSearchError('forbidden')
    with pytest.raises(UserRegistryError, match='User deletion failed'):
        registry.delete_user('u1')
