"""
Amazon Bedrock Rerank client for reordering memory search candidates.
"""

import json
import random
import time
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockRerankConfig
from .logging_config import get_logger

logger = get_logger(__name__)

# Regions where Bedrock serves rerank models
RERANK_REGIONS = ('us-west-2', 'ap-northeast-1', 'ca-central-1', 'eu-central-1')


class BedrockRerankError(Exception):
    """Custom exception for Bedrock Rerank errors."""
    pass


class BedrockRerank:
    """Scores candidate memory texts against a query with a Bedrock rerank model."""

    def __init__(self, config: BedrockRerankConfig, client=None):
        """
        Initialize Bedrock Rerank client.

        Args:
            config: BedrockRerankConfig instance with connection parameters
            client: Pre-built bedrock-runtime client (built from config if None)
        """
        self.config = config
        self.model_id = config.model_id
        if config.region not in RERANK_REGIONS:
            logger.warning(f'Rerank models may not be available in region {config.region}')

        self.bedrock_runtime = client or boto3.client('bedrock-runtime', region_name=config.region)
        logger.info(f'Initialized Bedrock Rerank client in region: {config.region}, with model: {config.model_id}')

    def rerank(self, query: str, texts: List[str], top_k: Optional[int] = None) -> List[Dict[str, float]]:
        """
        Rerank texts by relevance to the query.

        Args:
            query: Search query string
            texts: Candidate texts, in the order the caller will index into
            top_k: Number of results to return (default: all texts)

        Returns:
            List of {'index': int, 'relevance_score': float}, most relevant first

        Raises:
            BedrockRerankError: If reranking fails
        """
        if not query or not query.strip() or not texts:
            return []

        top_k = len(texts) if top_k is None else min(top_k, len(texts))
        data = {'query': query.strip(), 'documents': list(texts), 'top_n': top_k}
        if 'cohere' in self.model_id.lower():
            data['api_version'] = 2
        body = json.dumps(data)

        logger.debug(f'Reranking {len(texts)} candidates for query: {query[:50]}...')

        for attempt in range(self.config.retry_attempts):
            try:
                response = self.bedrock_runtime.invoke_model(modelId=self.model_id,
                                                             accept='application/json',
                                                             contentType='application/json',
                                                             body=body)
                response_body = json.loads(response.get('body').read())

                if 'results' not in response_body:
                    raise BedrockRerankError('Invalid response format')

                return [{'index': res['index'], 'relevance_score': float(res.get('relevance_score', 0.0))}
                        for res in response_body['results']]

            except (ClientError, BotoCoreError, json.JSONDecodeError) as e:
                logger.warning(f'Bedrock Rerank attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockRerankError(f'Bedrock Rerank failed after {self.config.retry_attempts} attempts: {e}')
            except BedrockRerankError:
                raise
            except Exception as e:
                logger.error(f'Unexpected error during reranking: {e}')
                raise BedrockRerankError(f'Unexpected reranking error: {e}')
        raise BedrockRerankError(f'Bedrock Rerank failed after {self.config.retry_attempts} attempts')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock Rerank service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            return len(self.rerank('health check', ['first candidate', 'second candidate'], top_k=1)) > 0

        except Exception as e:
            logger.error(f'Bedrock Rerank health check failed: {e}')
            return False
