import asyncio
import pytest
from unittest.mock import patch, AsyncMock, MagicMock

import fastmcp_server
from errors import TransientRemoteError

@pytest.fixture
def services():
    return {'db_manager': MagicMock(), 'gmail_client': MagicMock(), 'sync_lock': asyncio.Lock()}

@pytest.mark.asyncio
@patch('fastmcp_server.sync_history', new_callable=AsyncMock)
async def test_delta_request_passes_limit_and_lock(mock_sync_history, services):
    mock_sync_history.return_value = {'totalNew': 0, 'emails': [], 'cursor': 'H1'}

    result = await fastmcp_server.handle_delta_request(services, limit='5')

    assert result == {'totalNew': 0, 'emails': [], 'cursor': 'H1'}
    mock_sync_history.assert_called_once_with(
        services['db_manager'], services['gmail_client'], limit=5, lock=services['sync_lock']
    )

@pytest.mark.asyncio
@pytest.mark.parametrize("raw_limit", [None, 0, '0', 'abc', -2])
@patch('fastmcp_server.sync_history', new_callable=AsyncMock)
async def test_delta_request_bad_limit_falls_back_to_default(mock_sync_history, raw_limit, services):
    await fastmcp_server.handle_delta_request(services, limit=raw_limit)
    assert mock_sync_history.call_args.kwargs['limit'] == 10

@pytest.mark.asyncio
@patch('fastmcp_server.sync_history', new_callable=AsyncMock)
async def test_delta_request_failure_is_structured(mock_sync_history, services):
    mock_sync_history.side_effect = TransientRemoteError("history.list failed with HTTP 503")

    result = await fastmcp_server.handle_delta_request(services)

    assert result == {"success": False, "error": "history.list failed with HTTP 503"}

@pytest.mark.asyncio
@patch('fastmcp_server.read_history_page', new_callable=AsyncMock)
async def test_history_request_coerces_parameters(mock_read_page, services):
    mock_read_page.return_value = {'total': 0, 'emails': [], 'finished': True}

    result = await fastmcp_server.handle_history_request(services, offset='-3', limit='x', since_id='')

    assert result == {'total': 0, 'emails': [], 'finished': True}
    mock_read_page.assert_called_once_with(
        services['db_manager'], services['gmail_client'],
        offset=0, limit=10, since_id=None, lock=services['sync_lock']
    )

@pytest.mark.asyncio
@patch('fastmcp_server.read_history_page', new_callable=AsyncMock)
async def test_history_request_forwards_since_id(mock_read_page, services):
    await fastmcp_server.handle_history_request(services, offset=20, limit=5, since_id='m42')
    assert mock_read_page.call_args.kwargs == {
        'offset': 20, 'limit': 5, 'since_id': 'm42', 'lock': services['sync_lock'],
    }

@pytest.mark.asyncio
@patch('fastmcp_server.read_history_page', new_callable=AsyncMock)
async def test_history_request_failure_is_structured(mock_read_page, services):
    mock_read_page.side_effect = RuntimeError("boom")
    assert await fastmcp_server.handle_history_request(services) == {"success": False, "error": "boom"}

@pytest.mark.asyncio
async def test_health_check():
    result = await fastmcp_server.health_check()
    assert result['status'] == 'healthy'
    assert 'timestamp' in result

@pytest.mark.asyncio
@patch('fastmcp_server.get_credentials')
@patch('fastmcp_server.GmailClient')
@patch('fastmcp_server.DatabaseManager')
async def test_get_services_connects_once(MockDbManager, MockGmailClient, mock_get_creds, monkeypatch):
    monkeypatch.setattr(fastmcp_server, '_state', {})
    monkeypatch.setattr(fastmcp_server, '_state_lock', None)
    MockDbManager.return_value.connect = AsyncMock()
    MockGmailClient.return_value.connect = AsyncMock()

    first = await fastmcp_server.get_services()
    second = await fastmcp_server.get_services()

    assert first is second
    MockDbManager.assert_called_once()
    MockGmailClient.return_value.connect.assert_called_once()
    assert isinstance(first['sync_lock'], asyncio.Lock)
