import argparse
import asyncio
import json
import sys

import tabulate

# Local imports
import config # Ensure config is imported to allow modification of DEBUG_MODE
from config import DEFAULT_DB_PATH, DEFAULT_CREDS_JSON_PATH, DEFAULT_LIMIT, DEFAULT_OFFSET
from db import DatabaseManager
from gmail_client import GmailClient, get_credentials
from sync import sync_history, read_history_page

def display_emails(emails):
    """Print emails as a table (body is left out, it rarely fits a terminal)."""
    if not emails:
        print("\nNo emails.")
        return
    rows = [(e['id'], e['from'], e['to'], e['subject'], e['date']) for e in emails]
    print(tabulate.tabulate(rows, headers=['id', 'from', 'to', 'subject', 'date'], tablefmt='psql'))

async def open_services(args):
    creds = get_credentials(args.creds)
    if not creds:
        sys.exit("Failed to get Gmail credentials.")

    db_manager = DatabaseManager(args.db)
    await db_manager.connect()
    gmail_client = GmailClient(creds)
    try:
        await gmail_client.connect()
    except Exception:
        await db_manager.close()
        raise
    return db_manager, gmail_client

async def close_services(db_manager, gmail_client):
    if gmail_client:
        await gmail_client.close()
    if db_manager and db_manager.db:
        await db_manager.close()

async def handle_sync_command(args):
    db_manager, gmail_client = await open_services(args)
    try:
        result = await sync_history(db_manager, gmail_client, limit=args.limit)
    finally:
        await close_services(db_manager, gmail_client)

    if args.json:
        print(json.dumps(result, indent=2))
        return
    print(f"\n{result['totalNew']} new email(s), cursor {result['cursor']}")
    display_emails(result['emails'])

async def handle_history_command(args):
    db_manager, gmail_client = await open_services(args)
    try:
        result = await read_history_page(
            db_manager, gmail_client, offset=args.offset, limit=args.limit, since_id=args.since_id
        )
    finally:
        await close_services(db_manager, gmail_client)

    if args.json:
        print(json.dumps(result, indent=2))
        return
    shown_to = args.offset + len(result['emails'])
    print(f"\nShowing {args.offset + 1 if result['emails'] else 0}-{shown_to} of {result['total']} stored email(s)")
    display_emails(result['emails'])
    if not result['finished']:
        print(f"More available: rerun with --offset {shown_to}")

def non_negative_int(value):
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {value}")
    return number

def positive_int(value):
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return number

async def main():
    parser = argparse.ArgumentParser(description='Incremental Gmail history sync into SQLite')
    parser.add_argument('--db', default=DEFAULT_DB_PATH, help='Path to SQLite database file.')
    parser.add_argument('--creds', default=DEFAULT_CREDS_JSON_PATH, help='Path to OAuth2 client secrets JSON (e.g., client_secret.json).')
    parser.add_argument('--debug', action='store_true', help='Enable detailed debug output.')

    subparsers = parser.add_subparsers(title='commands', dest='command', required=True, help='Available commands')

    # --- Sync Command ---
    sync_parser = subparsers.add_parser('sync', help='Store messages added since the last sync (the first run only records a baseline).')
    sync_parser.add_argument('--limit', type=positive_int, default=DEFAULT_LIMIT, help='Maximum number of new emails to print (default: 10).')
    sync_parser.add_argument('--json', action='store_true', help='Print the raw result as JSON.')

    # --- History Command ---
    history_parser = subparsers.add_parser('history', help='Page through stored emails, backfilling the last 30 days if the store is empty.')
    history_parser.add_argument('--offset', type=non_negative_int, default=DEFAULT_OFFSET, help='Number of stored emails to skip (default: 0).')
    history_parser.add_argument('--limit', type=positive_int, default=DEFAULT_LIMIT, help='Page size (default: 10).')
    history_parser.add_argument('--since-id', help='Refresh from Gmail before serving the page.')
    history_parser.add_argument('--json', action='store_true', help='Print the raw result as JSON.')

    # --- Serve MCP Command ---
    serve_mcp_parser = subparsers.add_parser('serve-mcp', help='Start the Model Context Protocol (MCP) server.')
    serve_mcp_parser.add_argument('--mcp-host', default=config.DEFAULT_MCP_HOST, help='Host for the MCP server (default: 0.0.0.0).')
    serve_mcp_parser.add_argument('--mcp-port', type=int, default=config.DEFAULT_MCP_PORT, help='Port for the MCP server (default: 8001).')

    args = parser.parse_args()

    if args.debug:
        config.DEBUG_MODE = True # Set DEBUG_MODE in the config module
        print("Debug mode enabled (via config.DEBUG_MODE).")
        print(f"Parsed arguments: {args}")

    # Command dispatching
    if args.command == 'sync':
        await handle_sync_command(args)
    elif args.command == 'history':
        await handle_history_command(args)
    elif args.command == 'serve-mcp':
        config.DEFAULT_DB_PATH = args.db
        config.DEFAULT_CREDS_JSON_PATH = args.creds
        # Imported here so the CLI does not need the MCP stack for plain syncs
        from fastmcp_server import run_server
        # uvicorn.run starts its own event loop
        await asyncio.to_thread(run_server, args.mcp_host, args.mcp_port)
    else:
        parser.print_help()

def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nProgram terminated by user.")
    except Exception as e:
        import traceback
        print(f"\nProgram terminated due to an unhandled error: {e}")
        print(traceback.format_exc())
        sys.exit(1)

if __name__ == '__main__':
    run()
