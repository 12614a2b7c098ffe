# conftest.py - Configuration for pytest
# Shared fixtures: an in-memory DatabaseManager and a mocked GmailClient,
# plus helpers that build Gmail API message resources.

import base64
import datetime as dtmodule # Alias to avoid conflict with fixture names
from email.utils import format_datetime
from unittest.mock import MagicMock, AsyncMock

import pytest
import pytest_asyncio

import config
from db import DatabaseManager
from gmail_client import GmailClient

def encode_body(text: str) -> str:
    """Base64url without padding, the way Gmail returns body data."""
    return base64.urlsafe_b64encode(text.encode('utf-8')).decode('ascii').rstrip('=')

def rfc2822(days_ago: float) -> str:
    when = dtmodule.datetime.now(dtmodule.timezone.utc) - dtmodule.timedelta(days=days_ago)
    return format_datetime(when)

def make_message(message_id, subject='Hello', days_ago=0.0, sender='alice@example.com',
                 recipient='bob@example.com', body='<p>Hi there</p>', date=None, parts=None):
    """Builds a full-format Gmail message resource."""
    headers = [
        {'name': 'From', 'value': sender},
        {'name': 'To', 'value': recipient},
        {'name': 'Subject', 'value': subject},
    ]
    date_value = date if date is not None else rfc2822(days_ago)
    if date_value:
        headers.append({'name': 'Date', 'value': date_value})
    payload = {'mimeType': 'text/html', 'headers': headers, 'body': {}}
    if parts is not None:
        payload['mimeType'] = 'multipart/alternative'
        payload['parts'] = parts
    else:
        payload['body'] = {'data': encode_body(body), 'size': len(body)}
    return {'id': message_id, 'payload': payload}

def history_record(*message_ids, record_id='1'):
    return {'id': record_id, 'messagesAdded': [{'message': {'id': mid}} for mid in message_ids]}

@pytest.fixture(autouse=True)
def quiet_progress(monkeypatch):
    """No tqdm bars in test output."""
    monkeypatch.setattr(config, 'SHOW_PROGRESS', False)

@pytest_asyncio.fixture
async def db_manager():
    """
    Provides a DatabaseManager instance connected to an in-memory SQLite database
    with schema initialized.
    """
    manager = DatabaseManager(":memory:")
    await manager.connect()  # connect also calls setup_schema
    yield manager
    await manager.close()

@pytest.fixture
def mocked_gmail_client():
    """Provides a MagicMock for the GmailClient, mocking its interface."""
    mock = MagicMock(spec=GmailClient)
    mock.connect = AsyncMock()
    mock.close = AsyncMock()
    mock.get_current_history_id = AsyncMock(return_value='H100')
    mock.list_history = AsyncMock(return_value=([], None))
    mock.get_message = AsyncMock()
    mock.list_messages = AsyncMock(return_value=([], None))
    return mock

@pytest.fixture
def gmail_messages(mocked_gmail_client):
    """Dict of message_id -> message resource served by mocked_gmail_client.get_message."""
    messages = {}

    async def _get_message(message_id):
        return messages[message_id]

    mocked_gmail_client.get_message.side_effect = _get_message
    return messages
