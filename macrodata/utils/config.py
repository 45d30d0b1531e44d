"""
Configuration management for AWS services and application settings.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    fast_model_id: str
    thinking_model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float

    def model_for_tier(self, tier: str) -> str:
        """Resolve a model tier name to a Bedrock model id."""
        if tier == 'thinking':
            return self.thinking_model_id
        if tier == 'fast':
            return self.fast_model_id
        raise ValueError(f'Unknown model tier: {tier}')


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_name: str
    dimension: int
    use_ssl: bool
    aws_auth: bool
    index_sync_wait: float


@dataclass
class StoreConfig:
    """Configuration for the per-owner relational store."""
    data_dir: str
    database_url: Optional[str]


@dataclass
class ConversationConfig:
    """Configuration for conversation log indexing."""
    projects_dir: str
    user_prompt_cap: int
    assistant_summary_cap: int
    embed_batch_size: int


@dataclass
class SchedulerConfig:
    """Configuration for scheduled task execution."""
    tick_seconds: float
    scheduled_max_steps: int
    refine_max_steps: int
    summary_cap: int


@dataclass
class RemoteToolConfig:
    """Configuration for remote MCP tool servers."""
    timeout: float


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
    opensearch: OpenSearchConfig
    store: StoreConfig
    conversations: ConversationConfig
    scheduler: SchedulerConfig
    remote_tools: RemoteToolConfig
    mcp: MCPConfig


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          fast_model_id=os.getenv('BEDROCK_LLM_FAST_MODEL_ID',
                                                                  'anthropic.claude-3-haiku-20240307-v1:0'),
                                          thinking_model_id=os.getenv('BEDROCK_LLM_THINKING_MODEL_ID',
                                                                      'anthropic.claude-3-sonnet-20240229-v1:0'),
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

    # Vector search configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'macrodata'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')),
                                         use_ssl=_env_bool('OPENSEARCH_USE_SSL', 'true'),
                                         aws_auth=_env_bool('OPENSEARCH_AWS_AUTH', 'true'),
                                         index_sync_wait=float(os.getenv('OPENSEARCH_INDEX_SYNC_WAIT', '15')))

    # Relational store configuration
    store_config = StoreConfig(data_dir=os.path.expanduser(os.getenv('MACRODATA_ROOT', '~/.config/macrodata')),
                               database_url=os.getenv('MACRODATA_DATABASE_URL'))

    # Conversation index configuration
    conversation_config = ConversationConfig(
        projects_dir=os.path.expanduser(os.getenv('CONVERSATIONS_PROJECTS_DIR', '~/.claude/projects')),
        user_prompt_cap=int(os.getenv('CONVERSATIONS_USER_PROMPT_CAP', '1000')),
        assistant_summary_cap=int(os.getenv('CONVERSATIONS_ASSISTANT_SUMMARY_CAP', '500')),
        embed_batch_size=int(os.getenv('CONVERSATIONS_EMBED_BATCH_SIZE', '64')))

    # Scheduler configuration
    scheduler_config = SchedulerConfig(tick_seconds=float(os.getenv('SCHEDULER_TICK_SECONDS', '30')),
                                       scheduled_max_steps=int(os.getenv('SCHEDULER_MAX_STEPS', '15')),
                                       refine_max_steps=int(os.getenv('REFINE_MAX_STEPS', '10')),
                                       summary_cap=int(os.getenv('SCHEDULER_SUMMARY_CAP', '500')))

    remote_tool_config = RemoteToolConfig(timeout=float(os.getenv('REMOTE_TOOL_TIMEOUT', '30')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     opensearch=opensearch_config,
                     store=store_config,
                     conversations=conversation_config,
                     scheduler=scheduler_config,
                     remote_tools=remote_tool_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
