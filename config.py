# config.py - Centralized configuration for the application

# --- OAuth2 Configuration ---
# SCOPES: Defines the access scope for the Gmail API. History sync only reads mail.
SCOPES = ['https://www.googleapis.com/auth/gmail.readonly']

# TOKEN_PATH: Path to the stored OAuth2 token file.
# This file stores user's access and refresh tokens, and is created
# automatically when the authorization flow completes for the first time.
TOKEN_PATH = 'token.json'

# CLIENT_SECRET_PATH: Path to the client secret JSON file downloaded from Google Cloud Console.
# This file is required for the OAuth2 flow to identify the application.
CLIENT_SECRET_PATH = 'creds.json' # Standard name, user must provide this file.

# --- Sync Behavior Configuration ---
# HISTORY_PAGE_SIZE: Number of history records requested per history.list page.
HISTORY_PAGE_SIZE = 10

# MESSAGE_LIST_PAGE_SIZE: Number of message ids requested per messages.list page during backfill.
MESSAGE_LIST_PAGE_SIZE = 100

# RETENTION_DAYS: Messages older than this (or without a usable Date header)
# are never admitted by the delta sync.
RETENTION_DAYS = 30

# BACKFILL_QUERY: Gmail search query used to populate an empty store.
BACKFILL_QUERY = 'newer_than:30d'

# CHUNK_SIZE: Number of message ids looked up per query when checking which ids are already stored.
# Keeps us well below SQLite's bound-variable limit.
CHUNK_SIZE = 250

# EMAILS_PER_COMMIT: Number of messages to insert before committing changes to the database.
EMAILS_PER_COMMIT = 20

# MAX_RESOLVE_RETRIES: Maximum number of passes that retry a message whose resolution was skipped
# before it is left alone for good.
MAX_RESOLVE_RETRIES = 3

# REMOTE_CALL_TIMEOUT_SECONDS: Deadline applied to every single Gmail API round trip.
REMOTE_CALL_TIMEOUT_SECONDS = 30

# --- Application Defaults ---
# DEFAULT_DB_PATH: Default path for the SQLite database file.
DEFAULT_DB_PATH = 'mail.sqlite3'

# DEFAULT_CREDS_JSON_PATH: Default path for the OAuth2 client secrets JSON file.
# This is distinct from TOKEN_PATH; this is the application's credential file, not the user token.
# Corresponds to the --creds argument in main.py, and should point to CLIENT_SECRET_PATH by default.
DEFAULT_CREDS_JSON_PATH = CLIENT_SECRET_PATH

# DEFAULT_LIMIT / DEFAULT_OFFSET: Paging defaults for the delta and history endpoints.
DEFAULT_LIMIT = 10
DEFAULT_OFFSET = 0

# --- MCP Server ---
DEFAULT_MCP_HOST = '0.0.0.0'
DEFAULT_MCP_PORT = 8001

# --- Debugging ---
# DEBUG: Global flag to enable or disable debug print statements and behaviors.
# Can be overridden by the --debug command-line argument.
DEBUG_MODE = False # Default to False, can be set by CLI

# SHOW_PROGRESS: Show tqdm progress bars while resolving messages.
# The MCP server turns this off since nobody is watching its terminal.
SHOW_PROGRESS = True
