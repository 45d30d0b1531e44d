"""
Amazon Bedrock embedding client wrapper with retry logic and error handling.
"""

import json
import random
import time
from typing import List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

# Cohere embed models accept at most this many texts per request
COHERE_MAX_BATCH = 96


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling."""

    def __init__(self, config: BedrockEmbedConfig):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension

        self.bedrock = boto3.client(service_name='bedrock-runtime', region_name=config.region)

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Args:
            data: Request data dictionary

        Returns:
            Response dictionary from Bedrock API

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock Embed request attempt {attempt + 1}/{self.config.retry_attempts}')

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

    def _embed(self, texts: List[str], input_type: str) -> List[List[float]]:
        """Embed texts, failing hard when the service returns no vector."""
        model = self.model_id.lower()

        if 'titan' in model:
            vectors = []
            for text in texts:
                response = self._call_with_retry({'inputText': text, 'dimensions': self.output_embedding_length})
                vectors.append(response.get('embedding'))

        elif 'cohere' in model:
            if self.output_embedding_length != 1024:
                raise BedrockEmbedError(f'Cohere models only support 1024 dimensions, got {self.output_embedding_length}')

            vectors = []
            for start in range(0, len(texts), COHERE_MAX_BATCH):
                chunk = texts[start:start + COHERE_MAX_BATCH]
                response = self._call_with_retry({'input_type': input_type, 'texts': chunk})
                embeddings = response.get('embeddings') or []
                if len(embeddings) != len(chunk):
                    raise BedrockEmbedError(f'Expected {len(chunk)} embeddings, got {len(embeddings)}')
                vectors.extend(embeddings)

        else:
            raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

        for vector in vectors:
            if not vector:
                raise BedrockEmbedError('Failed to generate embedding: no vector returned')
        return vectors

    def embed_document(self, text: str) -> List[float]:
        """
        Generate embeddings for document text.

        Args:
            text: Text to embed

        Returns:
            List of embedding values

        Raises:
            BedrockEmbedError: If the text is empty or embedding generation fails
        """
        if not text or not text.strip():
            raise BedrockEmbedError('Cannot embed empty document text')

        try:
            return self._embed([text], 'search_document')[0]
        except BedrockEmbedError:
            raise
        except Exception as e:
            logger.error(f'Error generating document embedding: {e}')
            raise BedrockEmbedError(f'Document embedding failed: {e}')

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for several documents, preserving order.

        Raises:
            BedrockEmbedError: If any text is empty or embedding generation fails
        """
        if not texts:
            return []
        if any(not text or not text.strip() for text in texts):
            raise BedrockEmbedError('Cannot embed empty document text')

        try:
            return self._embed(list(texts), 'search_document')
        except BedrockEmbedError:
            raise
        except Exception as e:
            logger.error(f'Error generating batch embeddings: {e}')
            raise BedrockEmbedError(f'Batch embedding failed: {e}')

    def embed_query(self, text: str) -> List[float]:
        """
        Generate embeddings for query text.

        Args:
            text: Query text to embed

        Returns:
            List of embedding values

        Raises:
            BedrockEmbedError: If the query is empty or embedding generation fails
        """
        if not text or not text.strip():
            raise BedrockEmbedError('Cannot embed empty query text')

        try:
            return self._embed([text], 'search_query')[0]
        except BedrockEmbedError:
            raise
        except Exception as e:
            logger.error(f'Error generating query embedding: {e}')
            raise BedrockEmbedError(f'Query embedding failed: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed_document('test')
            return len(test_embedding) == self.output_embedding_length

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
