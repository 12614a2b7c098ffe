from config import HISTORY_PAGE_SIZE
from utils import debug_print

MESSAGE_ADDED = 'messageAdded'

class HistoryPaginator:
    def __init__(self, gmail_client, page_size=HISTORY_PAGE_SIZE):
        """Drains Gmail's history feed starting from a stored history id.

        Args:
            gmail_client: A connected GmailClient.
            page_size: maxResults for each history.list call.
        """
        self.gmail_client = gmail_client
        self.page_size = page_size

    async def iter_pages(self, start_history_id):
        """Yield (page_token, history_records) per page until Gmail stops returning a nextPageToken.

        The page count is unknown up front and the generator cannot be restarted; a failing
        page fetch raises out of the generator.
        """
        page_token = None
        while True:
            records, next_page_token = await self.gmail_client.list_history(
                start_history_id, page_token=page_token, max_results=self.page_size
            )
            yield page_token, records
            if not next_page_token:
                break
            page_token = next_page_token

    async def drain(self, start_history_id) -> list[dict]:
        """Collect every messageAdded change after start_history_id, in page order then list order.

        Nothing is returned unless every page was fetched; any error propagates and the
        partial result is dropped.
        """
        changes = []
        pages = 0
        async for page_token, records in self.iter_pages(start_history_id):
            pages += 1
            for record in records:
                # Other mutation kinds (labels, deletions) may share a record; only additions matter here
                for added in record.get('messagesAdded') or []:
                    message = added.get('message') or {}
                    if not message.get('id'):
                        continue
                    changes.append({
                        'message_id': str(message['id']),
                        'kind': MESSAGE_ADDED,
                        'page_token': page_token,
                    })
        debug_print(f"Drained {len(changes)} added messages from {pages} history page(s) after {start_history_id}")
        return changes
