import asyncio
import os
import sys

from google.auth.exceptions import TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

import config # read at call time so tests and the CLI can adjust it
from config import SCOPES, TOKEN_PATH, HISTORY_PAGE_SIZE, MESSAGE_LIST_PAGE_SIZE
from errors import TransientRemoteError, RemoteRequestError, HistoryExpiredError
from utils import async_retry, debug_print

TRANSIENT_HTTP_STATUSES = {429, 500, 502, 503, 504}

class GmailClient:
    def __init__(self, creds, user_id='me', service=None):
        self.creds = creds
        self.user_id = user_id
        self.service = service

    @async_retry()
    async def connect(self):
        """Build the Gmail v1 service"""
        if self.service is None:
            print(f"Connecting to the Gmail API as {self.user_id}...")
            loop = asyncio.get_running_loop()
            self.service = await loop.run_in_executor(
                None, lambda: build('gmail', 'v1', credentials=self.creds, cache_discovery=False)
            )
            print("Gmail API client ready")
        return self.service

    async def _execute(self, make_request, description):
        """Run a blocking googleapiclient request in the executor, bounded by the per-call deadline.

        Errors are translated to TransientRemoteError (worth retrying) or RemoteRequestError.
        """
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, lambda: make_request().execute()),
                timeout=config.REMOTE_CALL_TIMEOUT_SECONDS
            )
        except HttpError as e:
            status = e.resp.status if e.resp is not None else None
            if status in TRANSIENT_HTTP_STATUSES:
                raise TransientRemoteError(f"{description} failed with HTTP {status}") from e
            raise RemoteRequestError(f"{description} failed with HTTP {status}: {e}", status=status) from e
        except asyncio.TimeoutError as e:
            raise TransientRemoteError(
                f"{description} timed out after {config.REMOTE_CALL_TIMEOUT_SECONDS}s"
            ) from e
        except (OSError, TransportError) as e:
            raise TransientRemoteError(f"{description} failed: {e}") from e

    @async_retry()
    async def get_current_history_id(self) -> str:
        """Return the mailbox's current history id (the position a fresh cursor starts from)."""
        profile = await self._execute(
            lambda: self.service.users().getProfile(userId=self.user_id), 'getProfile'
        )
        history_id = profile.get('historyId')
        if not history_id:
            raise RemoteRequestError("Gmail profile response has no historyId")
        return str(history_id)

    @async_retry()
    async def list_history(self, start_history_id, page_token=None, max_results=HISTORY_PAGE_SIZE):
        """Fetch one page of messageAdded history after start_history_id.

        Returns (history_records, next_page_token); next_page_token is None on the last page.
        """
        debug_print(f"history.list start={start_history_id} page_token={page_token}")
        try:
            response = await self._execute(
                lambda: self.service.users().history().list(
                    userId=self.user_id,
                    startHistoryId=start_history_id,
                    historyTypes=['messageAdded'],
                    maxResults=max_results,
                    pageToken=page_token
                ),
                'history.list'
            )
        except RemoteRequestError as e:
            if e.status == 404:
                raise HistoryExpiredError(
                    f"History id {start_history_id} is no longer available", status=404
                ) from e
            raise
        return response.get('history', []), response.get('nextPageToken') or None

    @async_retry()
    async def get_message(self, message_id) -> dict:
        """Fetch a message in 'full' format (headers plus the MIME part tree)."""
        return await self._execute(
            lambda: self.service.users().messages().get(userId=self.user_id, id=message_id, format='full'),
            f'messages.get({message_id})'
        )

    @async_retry()
    async def list_messages(self, query, page_token=None, max_results=MESSAGE_LIST_PAGE_SIZE):
        """Fetch one page of message ids matching a Gmail search query.

        Returns (message_ids, next_page_token).
        """
        response = await self._execute(
            lambda: self.service.users().messages().list(
                userId=self.user_id, q=query, maxResults=max_results, pageToken=page_token
            ),
            'messages.list'
        )
        message_ids = [str(m['id']) for m in response.get('messages', [])]
        return message_ids, response.get('nextPageToken') or None

    async def close(self):
        """Release the underlying HTTP connection"""
        if self.service is not None:
            try:
                await asyncio.get_running_loop().run_in_executor(None, self.service.close)
            except OSError as e:
                print(f"Error closing Gmail API client: {e}")
            finally:
                self.service = None

def get_credentials(client_secret_file_path: str):
    """Obtain or refresh OAuth2 credentials."""
    # client_secret_file_path is the path to the client_secret.json (or equivalent)
    # TOKEN_PATH is where the user's token is stored.
    # SCOPES defines the permissions.

    creds = None
    if os.path.exists(TOKEN_PATH):
        try:
            creds = Credentials.from_authorized_user_file(TOKEN_PATH, SCOPES)
        except ValueError as e:
            print(f"Error loading token from {TOKEN_PATH}: {e}. Will attempt to re-authenticate.")
            creds = None

    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            try:
                print("Credentials expired. Refreshing token...")
                creds.refresh(Request())
                print("Token refreshed successfully.")
            except Exception as e:
                print(f"Error refreshing token: {e}. Proceeding to full authentication flow.")
                creds = None # Reset creds to trigger full flow

        # This block executes if creds is None (initial run, failed load, or failed refresh)
        if not creds:
            print("No valid credentials, attempting to authenticate...")
            if not os.path.exists(client_secret_file_path):
                sys.exit(f"Error: Client secret file not found at '{client_secret_file_path}'. Please ensure it's correctly specified and accessible.")
            try:
                flow = InstalledAppFlow.from_client_secrets_file(client_secret_file_path, SCOPES)
                creds = flow.run_local_server(port=0)
                print("Authentication successful.")
            except Exception as e:
                sys.exit(f"Failed to authenticate: {e}. Please check your client secret file and network connection.")

        try:
            with open(TOKEN_PATH, 'w') as token_file:
                token_file.write(creds.to_json())
            print(f"Credentials saved to {TOKEN_PATH}")
        except OSError as e:
            print(f"Error saving token to {TOKEN_PATH}: {e}")

    return creds
