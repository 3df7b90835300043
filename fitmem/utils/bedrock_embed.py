"""
Amazon Bedrock embedding client for memory text and search queries.
"""

import json
import random
import time
from typing import Any, Dict, List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

# Cohere input types per embedding purpose
COHERE_INPUT_TYPES = {'memory': 'search_document', 'query': 'search_query'}


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Turns memory text and queries into vectors for the memory index."""

    def __init__(self, config: BedrockEmbedConfig, client=None):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
            client: Pre-built bedrock-runtime client (built from config if None)
        """
        self.config = config
        self.model_id = config.model_id
        self.dimension = config.dimension

        self.bedrock = client or boto3.client(service_name='bedrock-runtime', region_name=config.region)

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _invoke(self, data: Dict[str, Any]) -> Dict[str, Any]:
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')
                return json.loads(response.get('body').read())

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def _request_body(self, text: str, purpose: str) -> Dict[str, Any]:
        model = self.model_id.lower()
        if 'titan' in model:
            return {'inputText': text, 'dimensions': self.dimension}
        if 'cohere' in model:
            if self.dimension != 1024:
                raise BedrockEmbedError(f'Cohere models only support 1024 dimensions, got {self.dimension}')
            return {'input_type': COHERE_INPUT_TYPES[purpose], 'texts': [text]}
        raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

    def embed(self, text: str, purpose: str = 'memory') -> List[float]:
        """
        Embed a memory or a search query.

        Args:
            text: Text to embed
            purpose: 'memory' for stored text, 'query' for search input

        Returns:
            Embedding vector of the configured dimension

        Raises:
            BedrockEmbedError: If the model is unsupported or the call fails
        """
        if purpose not in COHERE_INPUT_TYPES:
            raise BedrockEmbedError(f'Unknown embedding purpose: {purpose}')
        if not text or not text.strip():
            logger.warning(f'Empty text provided for {purpose} embedding')
            return [0.0] * self.dimension

        response = self._invoke(self._request_body(text, purpose))
        if 'embedding' in response:
            return response['embedding']
        embeddings = response.get('embeddings') or []
        if not embeddings:
            raise BedrockEmbedError('Embedding response contained no vectors')
        return embeddings[0]

    def embed_memory(self, text: str) -> List[float]:
        return self.embed(text, 'memory')

    def embed_query(self, text: str) -> List[float]:
        return self.embed(text, 'query')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            return len(self.embed_query('health check')) == self.dimension

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
