import datetime
import aiosqlite
from tqdm import tqdm

# Local imports
import config # Import the config module
from config import (
    BACKFILL_QUERY, DEFAULT_LIMIT, DEFAULT_OFFSET, EMAILS_PER_COMMIT, HISTORY_PAGE_SIZE,
    MAX_RESOLVE_RETRIES, MESSAGE_LIST_PAGE_SIZE, RETENTION_DAYS,
)
from checkpoint import CursorStore
from db import DatabaseManager
from errors import HistoryExpiredError, StoreUnavailableError
from gmail_client import GmailClient
from history import HistoryPaginator
from rendering import resolve_message
from utils import debug_print

# Errors raised by a closed or broken aiosqlite connection
_STORE_ERRORS = (aiosqlite.Error, StoreUnavailableError, ValueError)

def _is_recent(iso_date, cutoff):
    """True if iso_date is at or after cutoff. Missing dates count as too old."""
    if not iso_date:
        return False
    try:
        received = datetime.datetime.fromisoformat(iso_date)
    except ValueError:
        return False
    if received.tzinfo is None:
        received = received.replace(tzinfo=datetime.timezone.utc)
    return received >= cutoff

def _unique(ids):
    seen = set()
    ordered = []
    for message_id in ids:
        if message_id not in seen:
            seen.add(message_id)
            ordered.append(message_id)
    return ordered

async def _record_skips(db_manager: DatabaseManager, skipped, failures):
    """Bump the retry count of every message whose resolution was skipped in this pass.

    Messages that run out of retries are dropped from the table instead of lingering there.
    """
    for message_id, reason in skipped:
        retry_count = failures.get(message_id, 0) + 1
        if retry_count >= MAX_RESOLVE_RETRIES:
            print(f"Giving up on message {message_id} after {retry_count} failed attempts: {reason}")
            await db_manager.remove_resolve_failure(message_id)
            continue
        await db_manager.add_or_update_resolve_failure(message_id, retry_count, str(reason)[:500])

class HistorySyncer:
    def __init__(self, db_manager: DatabaseManager, gmail_client: GmailClient,
                 page_size=HISTORY_PAGE_SIZE, retention_days=RETENTION_DAYS):
        """Initialize the HistorySyncer"""
        self.db_manager = db_manager
        self.gmail_client = gmail_client
        self.cursor_store = CursorStore(db_manager)
        self.paginator = HistoryPaginator(gmail_client, page_size)
        self.retention = datetime.timedelta(days=retention_days)
        self.last_status_id = None

    async def start_sync(self, message):
        """Start sync operation and log it"""
        self.last_status_id = await self.db_manager.log_sync_start('delta', message)

    async def finish_sync(self, status, message):
        """Finish sync operation and log it"""
        await self.db_manager.log_sync_end(self.last_status_id, status, message)

    async def establish_baseline(self) -> str:
        """Store Gmail's current history id as the cursor."""
        token = await self.gmail_client.get_current_history_id()
        await self.cursor_store.save(token)
        return token

    async def collect_candidates(self, changes):
        """Message ids worth resolving this pass, in discovery order.

        Duplicate deliveries collapse onto their first occurrence, earlier skipped messages
        that still have retries left go last, and ids already in the store are dropped.
        Returns (candidate_ids, failures, already_known).
        """
        discovered = _unique(change['message_id'] for change in changes)
        failures = await self.db_manager.get_resolve_failures()
        discovered_set = set(discovered)
        retry_ids = [mid for mid, count in failures.items()
                     if count < MAX_RESOLVE_RETRIES and mid not in discovered_set]
        if retry_ids:
            print(f"Retrying {len(retry_ids)} previously skipped message(s)")
        ordered = discovered + retry_ids
        known = await self.db_manager.get_known_message_ids(ordered)
        return [mid for mid in ordered if mid not in known], failures, known

    async def resolve_all(self, candidate_ids, cutoff):
        """Resolve every candidate before anything is written.

        Returns (recent_messages, skipped, resolved_ids). A TransientRemoteError propagates
        and nothing from this pass reaches the store.
        """
        recent = []
        skipped = []
        resolved_ids = []
        pbar = tqdm(total=len(candidate_ids), desc='Resolving new messages', disable=not config.SHOW_PROGRESS)
        try:
            for message_id in candidate_ids:
                message, reason = await resolve_message(self.gmail_client, message_id)
                pbar.update(1)
                if message is None:
                    print(f"Skipped message {message_id}: {reason}")
                    skipped.append((message_id, reason))
                    continue
                resolved_ids.append(message_id)
                if not _is_recent(message['date'], cutoff):
                    debug_print(f"Message {message_id} dated {message['date']} is outside the retention window")
                    continue
                recent.append(message)
        finally:
            pbar.close()
        return recent, skipped, resolved_ids

    async def persist(self, messages, skipped, failures, cleared_ids):
        """Insert messages (existing ids are left alone) and update skip bookkeeping.

        Everything is committed before returning. Returns the messages that were newly stored.
        """
        stored = []
        emails_since_commit = 0
        for message in messages:
            if await self.db_manager.insert_message_if_absent(message):
                stored.append(message)
            else:
                debug_print(f"Message {message['id']} was already stored")
            emails_since_commit += 1
            if emails_since_commit >= EMAILS_PER_COMMIT:
                await self.db_manager.commit_with_retry()
                emails_since_commit = 0

        await _record_skips(self.db_manager, skipped, failures)
        for message_id in cleared_ids:
            if message_id in failures:
                await self.db_manager.remove_resolve_failure(message_id)

        await self.db_manager.commit_with_retry()
        return stored

    async def run(self, limit=DEFAULT_LIMIT) -> dict:
        """One reconciliation pass. Returns {'totalNew', 'emails', 'cursor'}."""
        await self.start_sync('Starting history delta sync')
        try:
            cursor = await self.cursor_store.load()
            if cursor is None:
                token = await self.establish_baseline()
                print(f"No history cursor found; baseline set to {token}")
                await self.finish_sync('BASELINE', f'Baseline history id {token}')
                return {'totalNew': 0, 'emails': [], 'cursor': token}

            start_token = cursor['token']
            print(f"Resuming history sync from history id {start_token}")
            try:
                changes = await self.paginator.drain(start_token)
            except HistoryExpiredError:
                token = await self.establish_baseline()
                print(f"History id {start_token} has expired; baseline reset to {token}")
                await self.finish_sync('RESET', f'History id {start_token} expired, reset to {token}')
                return {'totalNew': 0, 'emails': [], 'cursor': token}

            candidate_ids, failures, known = await self.collect_candidates(changes)
            print(f"Found {len(changes)} added message record(s), {len(candidate_ids)} to resolve")

            cutoff = datetime.datetime.now(datetime.timezone.utc) - self.retention
            recent, skipped, resolved_ids = await self.resolve_all(candidate_ids, cutoff)
            stored = await self.persist(recent, skipped, failures, set(resolved_ids) | known)

            # Gmail may have moved on while we were resolving
            new_token = await self.gmail_client.get_current_history_id()
            await self.cursor_store.save(new_token)

            if stored:
                await self.finish_sync('COMPLETED', f'Stored {len(stored)} new messages, cursor {new_token}')
            else:
                await self.finish_sync('COMPLETED_NO_CHANGES', f'No new messages, cursor {new_token}')
            return {'totalNew': len(stored), 'emails': stored[:limit], 'cursor': new_token}

        except aiosqlite.Error as e:
            await self._log_failure(e)
            raise StoreUnavailableError(f"Database error during history sync: {e}") from e
        except Exception as e:
            await self._log_failure(e)
            raise

    async def _log_failure(self, error):
        print(f"\nHistory sync failed: {error}")
        try:
            await self.db_manager.rollback()
            await self.finish_sync('ERROR', str(error)[:200])
        except _STORE_ERRORS as log_err:
            print(f"Error recording sync failure: {log_err}")

async def sync_history(db_manager: DatabaseManager, gmail_client: GmailClient, limit=DEFAULT_LIMIT, lock=None) -> dict:
    """Run one delta pass. Pass the same asyncio.Lock from every caller that may run concurrently."""
    syncer = HistorySyncer(db_manager, gmail_client)
    if lock is None:
        return await syncer.run(limit)
    async with lock:
        return await syncer.run(limit)

class SnapshotReader:
    def __init__(self, db_manager: DatabaseManager, gmail_client: GmailClient,
                 backfill_query=BACKFILL_QUERY, page_size=MESSAGE_LIST_PAGE_SIZE):
        self.db_manager = db_manager
        self.gmail_client = gmail_client
        self.backfill_query = backfill_query
        self.page_size = page_size

    async def page(self, offset=DEFAULT_OFFSET, limit=DEFAULT_LIMIT, since_id=None) -> dict:
        """Serve a page of stored messages, backfilling from Gmail first if the store is empty.

        Returns {'total', 'emails', 'finished'}. A since_id forces a refresh from Gmail even
        when rows are already stored.
        """
        try:
            total = await self.db_manager.count_messages()
            if total > 0 and not since_id:
                emails = await self.db_manager.get_messages_page(offset, limit, descending=True)
                return {'total': total, 'emails': emails, 'finished': offset + len(emails) >= total}

            await self.backfill()
            total = await self.db_manager.count_messages()
            emails = await self.db_manager.get_messages_page(offset, limit, descending=False)
            return {'total': total, 'emails': emails, 'finished': offset + len(emails) >= total}
        except aiosqlite.Error as e:
            raise StoreUnavailableError(f"Database error while reading history: {e}") from e

    async def list_all_message_ids(self):
        """Every message id matching the backfill query, across all pages."""
        message_ids = []
        page_token = None
        while True:
            page_ids, page_token = await self.gmail_client.list_messages(
                self.backfill_query, page_token=page_token, max_results=self.page_size
            )
            message_ids.extend(page_ids)
            if not page_token:
                break
        return _unique(message_ids)

    async def backfill(self) -> int:
        """Store every recent message that is not stored yet. Returns the number of new rows.

        All-or-nothing: every missing message is resolved before the first insert, and the
        inserts land in a single commit. A failed backfill leaves the store empty, so the
        next read backfills again.
        """
        status_id = await self.db_manager.log_sync_start('backfill', f'Backfilling {self.backfill_query}')
        try:
            message_ids = await self.list_all_message_ids()
            known = await self.db_manager.get_known_message_ids(message_ids)
            missing = [mid for mid in message_ids if mid not in known]
            print(f"Backfill: {len(message_ids)} message(s) match '{self.backfill_query}', {len(missing)} not stored yet")

            resolved = []
            skipped = []
            pbar = tqdm(total=len(missing), desc='Backfilling messages', disable=not config.SHOW_PROGRESS)
            try:
                for message_id in missing:
                    message, reason = await resolve_message(self.gmail_client, message_id)
                    pbar.update(1)
                    if message is None:
                        skipped.append((message_id, reason))
                        continue
                    resolved.append(message)
            finally:
                pbar.close()

            failures = await self.db_manager.get_resolve_failures()
            inserted = 0
            for message in resolved:
                if await self.db_manager.insert_message_if_absent(message):
                    inserted += 1
                if message['id'] in failures:
                    await self.db_manager.remove_resolve_failure(message['id'])
            await _record_skips(self.db_manager, skipped, failures)
            await self.db_manager.commit_with_retry()
            await self.db_manager.log_sync_end(status_id, 'COMPLETED', f'Backfilled {inserted} messages')
            return inserted
        except Exception as e:
            print(f"\nBackfill failed: {e}")
            try:
                # Drop uncommitted inserts before the status row commits
                await self.db_manager.rollback()
                await self.db_manager.log_sync_end(status_id, 'ERROR', str(e)[:200])
            except _STORE_ERRORS as log_err:
                print(f"Error recording backfill failure: {log_err}")
            raise

async def read_history_page(db_manager: DatabaseManager, gmail_client: GmailClient,
                            offset=DEFAULT_OFFSET, limit=DEFAULT_LIMIT, since_id=None, lock=None) -> dict:
    """Serve one snapshot page. Shares the sync lock so a backfill never overlaps a delta pass."""
    reader = SnapshotReader(db_manager, gmail_client)
    if lock is None:
        return await reader.page(offset, limit, since_id)
    async with lock:
        return await reader.page(offset, limit, since_id)
