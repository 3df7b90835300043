"""Tests for component health reporting."""

from unittest.mock import MagicMock

from fitmem.utils.health_check import check_health, get_health_status, get_system_info

COMPONENTS = ('bedrock_llm', 'bedrock_embed', 'bedrock_rerank', 'neptune', 'opensearch')


def healthy_components(**overrides):
    components = {}
    for name in COMPONENTS:
        component = MagicMock()
        component.health_check.return_value = True
        components[name] = component
    components.update(overrides)
    return components


def test_all_healthy(app_config):
    status = get_health_status(healthy_components(), app_config)

    assert set(status) == set(COMPONENTS)
    assert all(s['healthy'] for s in status.values())
    assert status['bedrock_llm']['model'] == app_config.bedrock_llm.model_id
    assert check_health(healthy_components(), app_config) is True


def test_failing_component(app_config):
    broken = MagicMock()
    broken.health_check.side_effect = RuntimeError('gremlin server unreachable')

    status = get_health_status(healthy_components(neptune=broken), app_config)

    assert status['neptune'] == {'healthy': False, 'service': 'Amazon Neptune', 'error': 'gremlin server unreachable'}
    assert check_health(healthy_components(neptune=broken), app_config) is False


def test_system_info(pro_app_config):
    info = get_system_info(healthy_components(), pro_app_config)

    assert info['service_name'] == 'FitMem'
    assert info['configuration']['tier'] == 'pro'
    assert info['configuration']['memory_index_prefix'] == pro_app_config.opensearch.index_name
    assert set(info['health_status']) == set(COMPONENTS)
