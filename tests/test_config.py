"""Tests for environment-driven configuration."""

import pytest

from fitmem.utils.config import load_config


@pytest.mark.parametrize('value,expected', [('true', True), ('1', True), ('Yes', True), ('false', False), ('', False)])
def test_pro_tier_flag(monkeypatch, value, expected):
    monkeypatch.setenv('PRO_TIER', value)
    assert load_config().tier.is_pro is expected


def test_free_tier_by_default(monkeypatch):
    monkeypatch.delenv('PRO_TIER', raising=False)
    assert load_config().tier.is_pro is False


def test_chat_settings(monkeypatch):
    monkeypatch.setenv('CHAT_MAX_TOKENS', '500')
    monkeypatch.setenv('CHAT_TEMPERATURE', '0.2')
    monkeypatch.setenv('CHAT_FAIL_ON_WRITE_BACK_ERROR', 'true')

    chat = load_config().chat

    assert chat.max_tokens == 500
    assert chat.temperature == 0.2
    assert chat.fail_on_write_back_error is True


def test_opensearch_settings(monkeypatch):
    monkeypatch.setenv('OPENSEARCH_INDEX', 'coach')
    monkeypatch.setenv('OPENSEARCH_PORT', '9200')

    opensearch = load_config().opensearch

    assert opensearch.index_name == 'coach'
    assert opensearch.port == 9200
