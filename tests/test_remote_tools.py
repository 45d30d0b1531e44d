import json
from unittest.mock import MagicMock

import pytest
import requests

from macrodata.models.core import ConnectedServer
from macrodata.services.remote_tools import CredentialRegistry, RemoteToolClient, RemoteToolError
from macrodata.utils.config import RemoteToolConfig

SERVER = ConnectedServer(name='github', endpoint='https://tools.example.com/base', access_token='tok')


def response(status=200, payload=None, text=''):
    mock = MagicMock()
    mock.status_code = status
    mock.ok = 200 <= status < 300
    mock.text = text or json.dumps(payload)
    mock.json.return_value = payload
    return mock


def client_returning(mock_response):
    session = MagicMock()
    session.post.return_value = mock_response
    return RemoteToolClient(RemoteToolConfig(timeout=5), session=session), session


def test_call_tool_sends_json_rpc_and_joins_text():
    client, session = client_returning(
        response(payload={'jsonrpc': '2.0', 'id': 1, 'result': {'content': [
            {'type': 'text', 'text': 'line one'},
            {'type': 'image', 'data': '...'},
            {'type': 'text', 'text': 'line two'},
        ]}}))

    assert client.call_tool(SERVER, 'search', {'q': 'bug'}) == 'line one\nline two'

    args, kwargs = session.post.call_args
    assert args[0] == 'https://tools.example.com/mcp'
    assert kwargs['json'] == {'jsonrpc': '2.0', 'id': 1, 'method': 'tools/call',
                              'params': {'name': 'search', 'arguments': {'q': 'bug'}}}
    assert kwargs['headers']['Authorization'] == 'Bearer tok'
    assert kwargs['timeout'] == 5


def test_call_tool_without_text_content():
    client, _ = client_returning(response(payload={'result': {'content': []}}))
    assert client.call_tool(SERVER, 'noop') == 'Tool returned no text content.'


def test_http_errors_carry_status_and_body():
    client, _ = client_returning(response(status=401, text='unauthorized'))
    with pytest.raises(RemoteToolError, match='HTTP 401: unauthorized'):
        client.list_tools(SERVER)


def test_json_rpc_errors_carry_remote_message():
    client, _ = client_returning(response(payload={'error': {'code': -32601, 'message': 'Method not found'}}))
    with pytest.raises(RemoteToolError, match='Method not found'):
        client.call_tool(SERVER, 'missing')


def test_transport_errors_are_wrapped():
    session = MagicMock()
    session.post.side_effect = requests.ConnectionError('refused')
    client = RemoteToolClient(RemoteToolConfig(timeout=5), session=session)
    with pytest.raises(RemoteToolError):
        client.list_tools(SERVER)


def test_list_tools():
    client, session = client_returning(response(payload={'result': {'tools': [{'name': 'search'}]}}))
    assert client.list_tools(SERVER) == [{'name': 'search'}]
    assert session.post.call_args.kwargs['json']['method'] == 'tools/list'


def test_credential_registry_reads_connected_servers(tmp_path):
    path = tmp_path / 'mcps.json'
    path.write_text(json.dumps([
        {'name': 'github', 'endpoint': 'https://gh.example.com', 'accessToken': 'a', 'tokenExpiresAt': 123,
         'connectedAt': '2025-01-01T00:00:00Z'},
        {'endpoint': 'https://nameless.example.com'},
    ]))
    registry = CredentialRegistry(str(path))

    servers = registry.servers()
    assert [s.name for s in servers] == ['github']
    assert servers[0].access_token == 'a'
    assert servers[0].expires_at == 123
    assert registry.get('missing') is None


def test_missing_registry_means_no_servers(tmp_path):
    assert CredentialRegistry(str(tmp_path / 'mcps.json')).servers() == []
