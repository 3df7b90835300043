"""
Pytest configuration and fixtures for FitMem tests.

Every AWS collaborator is replaced with a MagicMock; no test touches the network.
"""

import random
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from fitmem.models.core import AddMemoryResult, Memory, ProjectSettings, ScoredMemory
from fitmem.services.tier_policy import AddOptions
from fitmem.utils.config import ChatConfig, TierConfig, load_config


@pytest.fixture
def free_tier():
    return TierConfig(is_pro=False)


@pytest.fixture
def pro_tier():
    return TierConfig(is_pro=True)


@pytest.fixture
def chat_config():
    return ChatConfig(max_tokens=1000, temperature=0.7, fail_on_write_back_error=False)


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def make_memory():
    """Factory for stored memories."""

    def _make(text, memory_id=None, user_id='user-1', **kwargs):
        return Memory(id=memory_id or f'mem-{abs(hash(text)) % 10000}', text=text, user_id=user_id, **kwargs)

    return _make


@pytest.fixture
def make_hit():
    """Factory for scored search hits."""

    def _make(text, score, memory_id=None, user_id='user-1'):
        return ScoredMemory(id=memory_id or f'hit-{text}', text=text, user_id=user_id, score=score)

    return _make


@pytest.fixture
def mock_store():
    """Memory store with an empty user by default."""
    store = MagicMock()
    store.get_all.return_value = []
    store.search.return_value = []
    store.add.return_value = AddMemoryResult()
    return store


@pytest.fixture
def mock_registry():
    registry = MagicMock()
    registry.exists.return_value = True
    return registry


@pytest.fixture
def mock_settings():
    """Project settings store with nothing saved."""
    settings = MagicMock()
    settings.get.return_value = ProjectSettings()
    settings.add_options.return_value = AddOptions()
    return settings


@pytest.fixture
def mock_llm():
    llm = MagicMock()
    llm.complete.return_value = "Welcome! I'm FitCoach. What's your main fitness goal?"
    return llm


@pytest.fixture
def app_config(free_tier, chat_config):
    """Environment-loaded config with a known tier and chat settings."""
    return replace(load_config(), tier=free_tier, chat=chat_config)


@pytest.fixture
def pro_app_config(app_config, pro_tier):
    return replace(app_config, tier=pro_tier)
