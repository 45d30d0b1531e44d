"""
External Tool Federation: calls tools on remote MCP servers the owner has connected.

Connections are read from ``<data_dir>/<owner>/mcps.json``; token exchange
happens elsewhere and this module only reads the stored credentials.
"""

import json
import os
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import requests

from ..models.core import ConnectedServer
from ..utils.config import RemoteToolConfig, config
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

NO_TEXT_RESULT = 'Tool returned no text content.'


class RemoteToolError(Exception):
    """Custom exception for remote tool server errors."""
    pass


class CredentialRegistry:
    """Read-only view of an owner's connected tool servers."""

    def __init__(self, path: str):
        self.path = path

    def servers(self) -> List[ConnectedServer]:
        if not os.path.isfile(self.path):
            return []

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                records = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f'Failed to read credential registry {self.path}: {e}')
            raise RemoteToolError(f'Failed to read connected servers: {e}')

        servers = []
        for record in records if isinstance(records, list) else []:
            if not isinstance(record, dict) or not record.get('name') or not record.get('endpoint'):
                logger.warning(f'Skipping malformed server entry in {self.path}')
                continue
            servers.append(
                ConnectedServer(name=record['name'],
                                endpoint=record['endpoint'],
                                access_token=record.get('accessToken') or record.get('access_token') or '',
                                refresh_token=record.get('refreshToken') or record.get('refresh_token'),
                                expires_at=record.get('tokenExpiresAt') or record.get('expires_at'),
                                connected_at=record.get('connectedAt') or record.get('connected_at')))
        return servers

    def get(self, name: str) -> Optional[ConnectedServer]:
        for server in self.servers():
            if server.name == name:
                return server
        return None


class RemoteToolClient:
    """JSON-RPC over HTTP client for remote MCP servers."""

    def __init__(self, remote_config: Optional[RemoteToolConfig] = None, session: Optional[requests.Session] = None):
        self.config = remote_config or config.remote_tools
        self.session = session or requests.Session()

    def _rpc(self, server: ConnectedServer, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = urljoin(server.endpoint, '/mcp')
        body = {'jsonrpc': '2.0', 'id': 1, 'method': method, 'params': params}
        headers = {'Content-Type': 'application/json', 'Authorization': f'Bearer {server.access_token}'}

        try:
            response = self.session.post(url, json=body, headers=headers, timeout=self.config.timeout)
        except requests.RequestException as e:
            logger.error(f'Request to {server.name} failed: {e}')
            raise RemoteToolError(f'Request to {server.name} failed: {e}')

        if not response.ok:
            raise RemoteToolError(f'HTTP {response.status_code}: {response.text}')

        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteToolError(f'Invalid JSON from {server.name}: {e}')

        error = payload.get('error') if isinstance(payload, dict) else None
        if error:
            message = error.get('message') if isinstance(error, dict) else str(error)
            raise RemoteToolError(message or f'{method} failed')

        return payload.get('result') or {}

    def list_tools(self, server: ConnectedServer) -> List[Dict[str, Any]]:
        """
        List tools offered by a server.

        Returns:
            Tool descriptors with at least ``name`` and optionally ``description``

        Raises:
            RemoteToolError: On transport, HTTP or JSON-RPC errors
        """
        result = self._rpc(server, 'tools/list', {})
        tools = result.get('tools') or []
        logger.debug(f'{server.name} offers {len(tools)} tools')
        return tools

    def call_tool(self, server: ConnectedServer, tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        """
        Call a tool and return its text content blocks joined by newlines.

        Raises:
            RemoteToolError: On transport, HTTP or JSON-RPC errors
        """
        result = self._rpc(server, 'tools/call', {'name': tool_name, 'arguments': arguments or {}})
        texts = [
            block['text'] for block in result.get('content') or []
            if isinstance(block, dict) and block.get('type') == 'text' and block.get('text')
        ]
        return '\n'.join(texts) or NO_TEXT_RESULT
