import datetime

from utils import debug_print

class CursorStore:
    def __init__(self, db_manager):
        """Persists the Gmail history id that the last successful pass acknowledged.

        Nothing is cached in memory: every load goes back to the database, so two
        callers sharing a DatabaseManager always see the same watermark.

        Args:
            db_manager: An instance of DatabaseManager.
        """
        self.db_manager = db_manager

    async def load(self) -> dict | None:
        """Return the current cursor ({'token', 'updated_at'}) or None if no baseline exists yet."""
        cursor = await self.db_manager.load_latest_cursor()
        debug_print(f"Loaded history cursor: {cursor}")
        return cursor

    async def save(self, token: str):
        """Record token as the current cursor. Saving a known token only bumps its timestamp."""
        if not token:
            raise ValueError("Refusing to save an empty history cursor")
        updated_at = datetime.datetime.now(datetime.timezone.utc).isoformat()
        await self.db_manager.save_cursor(str(token), updated_at)
        debug_print(f"Saved history cursor {token} at {updated_at}")
