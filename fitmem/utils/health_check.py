"""
Health check utilities for the application.
"""

from typing import Any, Callable, Dict, Optional

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .bedrock_rerank import BedrockRerank
from .config import AppConfig, config
from .logging_config import get_logger
from .neptune_client import NeptuneClient
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def _component_status(service: str, factory: Callable[[], Any], **details) -> Dict[str, Any]:
    try:
        healthy = bool(factory().health_check())
        return {'healthy': healthy, 'service': service, **details}
    except Exception as e:
        return {'healthy': False, 'service': service, 'error': str(e)}


def get_health_status(components: Optional[Dict[str, Any]] = None, app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Args:
        components: Live clients keyed like the result; missing ones are built from config
        app_config: AppConfig instance, uses default if None

    Returns:
        Dictionary with health status of each component
    """
    app_config = app_config or config
    components = components or {}

    def client(key: str, build: Callable[[], Any]) -> Callable[[], Any]:
        return lambda: components[key] if components.get(key) is not None else build()

    return {
        'bedrock_llm':
        _component_status('Amazon Bedrock LLM',
                          client('bedrock_llm', lambda: BedrockLLM(app_config.bedrock_llm)),
                          model=app_config.bedrock_llm.model_id),
        'bedrock_embed':
        _component_status('Amazon Bedrock Embed',
                          client('bedrock_embed', lambda: BedrockEmbed(app_config.bedrock_embed)),
                          model=app_config.bedrock_embed.model_id),
        'bedrock_rerank':
        _component_status('Amazon Bedrock Rerank',
                          client('bedrock_rerank', lambda: BedrockRerank(app_config.bedrock_rerank)),
                          model=app_config.bedrock_rerank.model_id),
        'neptune':
        _component_status('Amazon Neptune',
                          client('neptune', lambda: NeptuneClient(app_config.neptune)),
                          endpoint=app_config.neptune.endpoint),
        'opensearch':
        _component_status('Amazon OpenSearch',
                          client('opensearch', lambda: OpenSearchClient(app_config.opensearch)),
                          endpoint=app_config.opensearch.endpoint),
    }


def check_health(components: Optional[Dict[str, Any]] = None, app_config: Optional[AppConfig] = None) -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    health_status = get_health_status(components, app_config)
    all_healthy = all(status.get('healthy', False) for status in health_status.values())

    if all_healthy:
        logger.info('All system components are healthy')
    else:
        unhealthy = ', '.join(name for name, status in health_status.items() if not status.get('healthy'))
        logger.warning(f'Unhealthy components: {unhealthy}')

    return all_healthy


def get_system_info(components: Optional[Dict[str, Any]] = None, app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    app_config = app_config or config
    return {
        'service_name': 'FitMem',
        'version': '1.0.0',
        'environment': app_config.environment,
        'configuration': {
            'tier': 'pro' if app_config.tier.is_pro else 'free',
            'bedrock_llm_model': app_config.bedrock_llm.model_id,
            'bedrock_embed_model': app_config.bedrock_embed.model_id,
            'bedrock_rerank_model': app_config.bedrock_rerank.model_id,
            'memory_index_prefix': app_config.opensearch.index_name,
            'aws_region': app_config.bedrock_llm.region
        },
        'health_status': get_health_status(components, app_config)
    }
