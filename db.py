import asyncio
import datetime
import aiosqlite

from config import CHUNK_SIZE
from errors import StoreUnavailableError

def _now_iso():
    return datetime.datetime.now(datetime.timezone.utc).isoformat()

class DatabaseManager:
    def __init__(self, db_path):
        self.db_path = db_path
        self.db = None

    async def connect(self):
        """Connect to the database"""
        try:
            self.db = await aiosqlite.connect(self.db_path)
            await self.setup_schema()
        except aiosqlite.Error as e:
            raise StoreUnavailableError(f"Cannot open database {self.db_path}: {e}") from e
        return self.db

    async def close(self):
        """Close the database connection"""
        if self.db:
            await self.db.commit()
            await self.db.close()
            self.db = None

    async def rollback(self):
        """Discard everything written since the last commit"""
        if self.db:
            await self.db.rollback()

    async def commit_with_retry(self, max_retries=3):
        """Commit transaction with retry logic. Raises StoreUnavailableError once retries run out."""
        for attempt in range(max_retries):
            try:
                await self.db.commit()
                return True
            except aiosqlite.Error as e:
                if attempt == max_retries - 1:
                    print(f"Failed to commit after {max_retries} attempts: {e}")
                    raise StoreUnavailableError(f"Commit failed: {e}") from e
                await asyncio.sleep(0.1 * (attempt + 1))  # Exponential backoff

    async def setup_schema(self):
        """Set up the database schema"""
        # Performance pragmas for better SQLite performance
        await self.db.execute("PRAGMA journal_mode=WAL;")
        await self.db.execute("PRAGMA synchronous=NORMAL;")
        await self.db.execute("PRAGMA temp_store=MEMORY;")

        # Append-only history of Gmail history ids; the newest row is the current cursor
        await self.db.execute('''
            CREATE TABLE IF NOT EXISTS history_cursor (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                token TEXT UNIQUE NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')
        await self.db.execute('CREATE INDEX IF NOT EXISTS idx_history_cursor_updated ON history_cursor(updated_at)')

        await self.db.execute('''
            CREATE TABLE IF NOT EXISTS received_messages (
                id TEXT PRIMARY KEY,
                sender TEXT NOT NULL,
                recipient TEXT NOT NULL,
                subject TEXT,
                body TEXT,
                received_at TEXT,
                stored_at TEXT
            )
        ''')
        await self.db.execute('CREATE INDEX IF NOT EXISTS idx_received_at ON received_messages(received_at)')

        await self.db.execute('''
            CREATE TABLE IF NOT EXISTS resolve_failures (
                message_id TEXT PRIMARY KEY,
                retry_count INTEGER DEFAULT 1,
                last_error TEXT,
                updated_at TEXT
            )
        ''')

        await self.db.execute('''
            CREATE TABLE IF NOT EXISTS sync_status (
                id INTEGER PRIMARY KEY,
                kind TEXT,
                start_time TEXT,
                end_time TEXT,
                status TEXT,
                message TEXT
            )
        ''')

        await self.db.commit()

    async def log_sync_start(self, kind, message):
        """Log the start of a sync operation"""
        async with self.db.execute('''
            INSERT INTO sync_status (kind, start_time, status, message)
            VALUES (?, ?, 'STARTED', ?)
        ''', (kind, _now_iso(), message)) as cursor:
            status_id = cursor.lastrowid
        await self.db.commit()
        return status_id

    async def log_sync_end(self, status_id, status, message):
        """Log the completion of a sync operation"""
        await self.db.execute(
            "UPDATE sync_status SET end_time = ?, status = ?, message = ? WHERE id = ?",
            (_now_iso(), status, message, status_id)
        )
        await self.db.commit()

    async def get_sync_status(self, status_id) -> dict | None:
        async with self.db.execute(
            "SELECT kind, start_time, end_time, status, message FROM sync_status WHERE id = ?", (status_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        return {'kind': row[0], 'start_time': row[1], 'end_time': row[2], 'status': row[3], 'message': row[4]}

    # --- Cursor ---
    async def load_latest_cursor(self) -> dict | None:
        """Returns the most recently updated cursor row, or None before the first baseline."""
        query = "SELECT token, updated_at FROM history_cursor ORDER BY updated_at DESC, id DESC LIMIT 1"
        async with self.db.execute(query) as cursor:
            row = await cursor.fetchone()
        if row:
            return {'token': row[0], 'updated_at': row[1]}
        return None

    async def save_cursor(self, token: str, updated_at: str):
        """Inserts a new cursor row, or only refreshes the timestamp when the token is already known."""
        await self.db.execute('''
            INSERT INTO history_cursor (token, updated_at) VALUES (?, ?)
            ON CONFLICT(token) DO UPDATE SET updated_at = excluded.updated_at
        ''', (token, updated_at))
        await self.commit_with_retry()

    async def count_cursors(self) -> int:
        async with self.db.execute('SELECT COUNT(*) FROM history_cursor') as cursor:
            row = await cursor.fetchone()
            return row[0] if row and row[0] is not None else 0

    # --- Materialized messages ---
    async def insert_message_if_absent(self, message: dict) -> bool:
        """Stores a normalized message keyed by its Gmail id. Returns False if the id was already stored."""
        async with self.db.execute('''
            INSERT OR IGNORE INTO received_messages (id, sender, recipient, subject, body, received_at, stored_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        ''', (
            message['id'], message['from'], message['to'], message['subject'],
            message.get('body', ''), message['date'], _now_iso()
        )) as cursor:
            return cursor.rowcount == 1

    async def get_known_message_ids(self, message_ids) -> set[str]:
        """Returns the subset of message_ids that already have a stored row."""
        message_ids = list(message_ids)
        known = set()
        for i in range(0, len(message_ids), CHUNK_SIZE):
            chunk = message_ids[i:i + CHUNK_SIZE]
            placeholders = ','.join('?' for _ in chunk)
            async with self.db.execute(
                f'SELECT id FROM received_messages WHERE id IN ({placeholders})', chunk
            ) as cursor:
                known.update(str(row[0]) for row in await cursor.fetchall())
        return known

    async def count_messages(self) -> int:
        async with self.db.execute('SELECT COUNT(*) FROM received_messages') as cursor:
            row = await cursor.fetchone()
            return row[0] if row and row[0] is not None else 0

    async def get_messages_page(self, offset: int, limit: int, descending=True) -> list[dict]:
        """Returns an offset/limit slice of stored messages ordered by receipt time."""
        direction = 'DESC' if descending else 'ASC'
        query = f'''
            SELECT id, sender, recipient, subject, body, received_at
            FROM received_messages
            ORDER BY received_at {direction}, id {direction}
            LIMIT ? OFFSET ?
        '''
        async with self.db.execute(query, (limit, offset)) as cursor:
            rows = await cursor.fetchall()
        return [
            {'id': row[0], 'from': row[1], 'to': row[2], 'subject': row[3], 'body': row[4], 'date': row[5]}
            for row in rows
        ]

    # --- Skipped resolutions ---
    async def get_resolve_failures(self) -> dict[str, int]:
        """Retrieves skipped message ids and their retry counts."""
        failures = {}
        query = "SELECT message_id, retry_count FROM resolve_failures ORDER BY updated_at, message_id"
        async with self.db.execute(query) as cursor:
            async for row in cursor:
                failures[row[0]] = row[1]
        return failures

    async def add_or_update_resolve_failure(self, message_id: str, retry_count: int, error: str):
        """Adds a new skipped message or updates the retry count of an existing one."""
        await self.db.execute('''
            INSERT OR REPLACE INTO resolve_failures (message_id, retry_count, last_error, updated_at)
            VALUES (?, ?, ?, ?)
        ''', (message_id, retry_count, error, _now_iso()))

    async def remove_resolve_failure(self, message_id: str):
        await self.db.execute("DELETE FROM resolve_failures WHERE message_id = ?", (message_id,))
