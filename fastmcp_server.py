import asyncio
import datetime
import uvicorn

from mcp.server.fastmcp import FastMCP

import config
from config import DEFAULT_LIMIT, DEFAULT_OFFSET
from db import DatabaseManager
from gmail_client import GmailClient, get_credentials
from sync import sync_history, read_history_page
from utils import parse_int_param, debug_print

mcp = FastMCP(
    "Gmail History Sync",
    instructions="Incremental Gmail history sync backed by a local SQLite store.",
)

# Shared by every MCP session: one database connection, one Gmail client and one
# lock so that delta passes and backfills never run concurrently.
_state = {}
_state_lock = None

async def get_services() -> dict:
    """Connects the database and the Gmail client on first use."""
    global _state_lock
    if _state_lock is None:
        _state_lock = asyncio.Lock()
    async with _state_lock:
        if not _state:
            print("MCP Server starting up...")
            db_manager = DatabaseManager(config.DEFAULT_DB_PATH)
            await db_manager.connect()
            creds = get_credentials(config.DEFAULT_CREDS_JSON_PATH)
            gmail_client = GmailClient(creds)
            await gmail_client.connect()
            _state.update(db_manager=db_manager, gmail_client=gmail_client, sync_lock=asyncio.Lock())
            print("Database connected and Gmail client ready.")
    return _state

async def handle_delta_request(services: dict, limit=None) -> dict:
    """Run a delta pass and shape the reply like the HTTP endpoint: {totalNew, emails, cursor}."""
    limit = parse_int_param(limit, DEFAULT_LIMIT, allow_zero=False)
    try:
        return await sync_history(
            services['db_manager'], services['gmail_client'], limit=limit, lock=services['sync_lock']
        )
    except Exception as e:
        print(f"Error in emails_delta: {e}")
        return {"success": False, "error": str(e)}

async def handle_history_request(services: dict, offset=None, limit=None, since_id=None) -> dict:
    """Serve one snapshot page: {total, emails, finished}."""
    offset = parse_int_param(offset, DEFAULT_OFFSET)
    limit = parse_int_param(limit, DEFAULT_LIMIT, allow_zero=False)
    debug_print(f"emails_history offset={offset} limit={limit} since_id={since_id}")
    try:
        return await read_history_page(
            services['db_manager'], services['gmail_client'],
            offset=offset, limit=limit, since_id=since_id or None, lock=services['sync_lock']
        )
    except Exception as e:
        print(f"Error in emails_history: {e}")
        return {"success": False, "error": str(e)}

@mcp.tool()
async def health_check() -> dict:
    """
    Checks the health of the MCP server.
    Returns a dictionary with the server status and current timestamp.
    """
    return {
        "status": "healthy",
        "message": "Gmail History Sync MCP Server is running.",
        "timestamp": datetime.datetime.now().isoformat()
    }

@mcp.tool()
async def emails_delta(limit: int | None = None) -> dict:
    """
    Pulls messages added to Gmail since the last call and stores them locally.
    The first call only records the starting point and returns no emails.
    Returns {totalNew, emails, cursor}; emails holds at most `limit` (default 10) entries.
    """
    services = await get_services()
    return await handle_delta_request(services, limit)

@mcp.tool()
async def emails_history(offset: int | None = None, limit: int | None = None, since_id: str | None = None) -> dict:
    """
    Pages through locally stored emails, newest first.
    An empty store (or a since_id) triggers a one-off fetch of the last 30 days from Gmail first.
    Returns {total, emails, finished}.
    """
    services = await get_services()
    return await handle_history_request(services, offset, limit, since_id)

def run_server(host=config.DEFAULT_MCP_HOST, port=config.DEFAULT_MCP_PORT):
    config.SHOW_PROGRESS = False
    print(f"Starting MCP Server on {host}:{port}")
    uvicorn.run(mcp.streamable_http_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    run_server()
