"""
Configuration management for AWS services and application settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class BedrockRerankConfig:
    """Configuration for Amazon Bedrock Rerank service."""
    region: str
    model_id: str
    retry_attempts: int
    retry_delay: float


@dataclass
class NeptuneConfig:
    """Configuration for Amazon Neptune graph database."""
    endpoint: str
    port: int
    region: str


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_name: str
    dimension: int


@dataclass(frozen=True)
class TierConfig:
    """Feature tier. Built once at startup and injected into the components that gate on it."""
    is_pro: bool = False


@dataclass
class ChatConfig:
    """Configuration for the coaching chat turn."""
    max_tokens: int
    temperature: float
    fail_on_write_back_error: bool


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    bedrock_rerank: BedrockRerankConfig
    neptune: NeptuneConfig
    opensearch: OpenSearchConfig
    tier: TierConfig
    chat: ChatConfig
    mcp: MCPConfig


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '4096')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    # Bedrock Rerank configuration
    bedrock_rerank_config = BedrockRerankConfig(region=os.getenv('BEDROCK_RERANK_AWS_REGION', 'us-west-2'),
                                                model_id=os.getenv('BEDROCK_RERANK_MODEL_ID', 'amazon.rerank-v1:0'),
                                                retry_attempts=int(os.getenv('BEDROCK_RERANK_RETRY_ATTEMPTS', '3')),
                                                retry_delay=float(os.getenv('BEDROCK_RERANK_RETRY_DELAY', '1.0')))

    # Neptune configuration
    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'))

    # Memory store configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'fitmem'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')))

    # Feature tier
    tier_config = TierConfig(is_pro=_env_flag('PRO_TIER'))

    # Chat configuration
    chat_config = ChatConfig(max_tokens=int(os.getenv('CHAT_MAX_TOKENS', '1000')),
                             temperature=float(os.getenv('CHAT_TEMPERATURE', '0.7')),
                             fail_on_write_back_error=_env_flag('CHAT_FAIL_ON_WRITE_BACK_ERROR'))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_rerank=bedrock_rerank_config,
                     bedrock_embed=bedrock_embed_config,
                     neptune=neptune_config,
                     opensearch=opensearch_config,
                     tier=tier_config,
                     chat=chat_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
