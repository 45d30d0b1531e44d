"""
Amazon Bedrock LLM client wrapper with retry logic and error handling.

Uses the Converse API so a single call can carry a tool configuration; the
agent loop drives the tool-use round trips.
"""

import random
import time
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


class BedrockLLM:
    """Amazon Bedrock LLM client with retry logic and error handling."""

    def __init__(self, config: BedrockLLMConfig):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
        """
        self.config = config

        # Create Bedrock runtime client with timeout configuration
        self.bedrock_runtime = boto3.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=600,
                read_timeout=600,
                retries={'max_attempts': 0}  # We handle retries manually
            ))

        logger.info(f'Initialized Bedrock LLM client (fast: {config.fast_model_id}, thinking: {config.thinking_model_id})')

    def converse(self,
                 messages: List[Dict[str, Any]],
                 system_prompt: str,
                 model_tier: str = 'fast',
                 tool_specs: Optional[List[Dict[str, Any]]] = None,
                 max_tokens: Optional[int] = None,
                 temperature: Optional[float] = None) -> Dict[str, Any]:
        """
        Run one Converse round trip with retry logic.

        Args:
            messages: Conversation so far in Bedrock message format
            system_prompt: System prompt for the conversation
            model_tier: 'fast' or 'thinking'
            tool_specs: Optional list of Bedrock ``toolSpec`` dicts
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)

        Returns:
            Dict with ``message`` (assistant message), ``stop_reason`` and ``usage``

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        model_id = self.config.model_for_tier(model_tier)
        inf_params = {
            'maxTokens': max_tokens or self.config.max_tokens,
            'temperature': temperature if temperature is not None else self.config.temperature,
        }
        request = {
            'modelId': model_id,
            'messages': messages,
            'system': [{'text': system_prompt}],
            'inferenceConfig': inf_params,
        }
        if tool_specs:
            request['toolConfig'] = {'tools': [{'toolSpec': spec} for spec in tool_specs]}

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock LLM request attempt {attempt + 1}/{self.config.retry_attempts} ({model_id})')

                response = self.bedrock_runtime.converse(**request)
                message = response.get('output', {}).get('message')
                if message is None:
                    raise BedrockLLMError('Bedrock LLM returned no message')

                return {
                    'message': message,
                    'stop_reason': response.get('stopReason', 'end_turn'),
                    'usage': response.get('usage', {}),
                }

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts: {e}')

            except BedrockLLMError:
                raise
            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_messages = [{'role': 'user', 'content': [{'text': 'Hi'}]}]
            response = self.converse(messages=test_messages,
                                     system_prompt="You are a helpful assistant. Respond with just 'OK'.",
                                     max_tokens=10,
                                     temperature=0.0)
            text = ''.join(block.get('text', '') for block in response['message'].get('content', []))
            return len(text.strip()) > 0

        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
