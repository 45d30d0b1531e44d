"""
Health check utilities for the application.
"""

import os
from typing import TYPE_CHECKING, Any, Dict, Optional

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import config
from .logging_config import get_logger
from .opensearch_client import OpenSearchClient

if TYPE_CHECKING:
    from ..services.owner_runtime import OwnerRegistry

logger = get_logger(__name__)


def check_health(registry: Optional['OwnerRegistry'] = None) -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(registry)

        # Check if all components are healthy
        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            logger.warning('Some system components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status(registry: Optional['OwnerRegistry'] = None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Args:
        registry: Owner registry whose clients and open databases are probed. Fresh
            clients are built from config when None.

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    # Check Bedrock LLM
    try:
        llm = registry.llm if registry else BedrockLLM(config.bedrock_llm)
        health_status['bedrock_llm'] = {
            'healthy': llm.health_check(),
            'service': 'Amazon Bedrock LLM',
            'model': config.bedrock_llm.fast_model_id
        }
    except Exception as e:
        health_status['bedrock_llm'] = {'healthy': False, 'service': 'Amazon Bedrock LLM', 'error': str(e)}

    # Check Bedrock Embed
    try:
        embed = registry.embed if registry else BedrockEmbed(config.bedrock_embed)
        health_status['bedrock_embed'] = {
            'healthy': embed.health_check(),
            'service': 'Amazon Bedrock Embed',
            'model': config.bedrock_embed.model_id
        }
    except Exception as e:
        health_status['bedrock_embed'] = {'healthy': False, 'service': 'Amazon Bedrock Embed', 'error': str(e)}

    # Check OpenSearch
    try:
        opensearch = registry.opensearch if registry else OpenSearchClient(config.opensearch)
        health_status['opensearch'] = {
            'healthy': opensearch.health_check(),
            'service': 'Amazon OpenSearch',
            'endpoint': config.opensearch.endpoint
        }
    except Exception as e:
        health_status['opensearch'] = {'healthy': False, 'service': 'Amazon OpenSearch', 'error': str(e)}

    # Check the local store: every open owner database, else that the data dir is usable
    try:
        databases = registry.open_databases() if registry else []
        if databases:
            store_healthy = all(database.health_check() for database in databases)
        else:
            os.makedirs(config.store.data_dir, exist_ok=True)
            store_healthy = os.access(config.store.data_dir, os.W_OK)
        health_status['store'] = {
            'healthy': store_healthy,
            'service': 'Memory store',
            'data_dir': config.store.data_dir
        }
    except Exception as e:
        health_status['store'] = {'healthy': False, 'service': 'Memory store', 'error': str(e)}

    return health_status


def format_health_status(health_status: Dict[str, Any]) -> str:
    """Render a health status dictionary as one line per component."""
    lines = []
    for component, status in health_status.items():
        state = 'healthy' if status.get('healthy') else 'unhealthy'
        detail = status.get('error') or status.get('model') or status.get('endpoint') or status.get('data_dir') or ''
        lines.append(f'- {component}: {state}' + (f' ({detail})' if detail else ''))
    return '\n'.join(lines)
