"""
Centralized logging configuration for the memory engine.

The stdio MCP transport owns stdout, so log records go to stderr in that mode.
"""

import logging
import os
import sys
from typing import List, Optional

from .config import AppConfig

# Client libraries that log every request at INFO
_NOISY_LOGGERS = ('botocore', 'boto3', 'urllib3', 'opensearch')

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _handlers(config: AppConfig) -> List[logging.Handler]:
    stream = sys.stderr if config.mcp.transport == 'stdio' else sys.stdout
    handlers: List[logging.Handler] = [logging.StreamHandler(stream)]

    log_file = os.getenv('MACRODATA_LOG_FILE')
    if log_file:
        if not os.path.isabs(log_file):
            log_file = os.path.join(config.store.data_dir, log_file)
        os.makedirs(os.path.dirname(log_file), exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    return handlers


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Configure the root logger for the process.

    Args:
        config: AppConfig instance, uses default if None
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    logging.basicConfig(level=getattr(logging, config.log_level.upper()),
                        format=LOG_FORMAT,
                        handlers=_handlers(config))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Get a module logger at the configured level.

    Args:
        name: Logger name (usually __name__)
        config: AppConfig instance, uses default if None

    Returns:
        Logger instance
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, config.log_level.upper()))
    return logger
