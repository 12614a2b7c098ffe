import base64
import binascii
import re
from typing import Optional

from errors import RemoteRequestError
from utils import debug_print, parse_email_date

_STYLE_BLOCK = re.compile(r'<style[\s\S]*?</style>', re.IGNORECASE)
_SCRIPT_BLOCK = re.compile(r'<script[\s\S]*?</script>', re.IGNORECASE)
_TAG = re.compile(r'<[^>]+>')
_WHITESPACE_RUN = re.compile(r'\s+')


def html_to_text(html: Optional[str]) -> str:
    """Flattens an HTML (or plain text) body to a single line of text.

    Drops <style> and <script> blocks, then every remaining tag, then collapses
    whitespace runs to one space and trims. Entities are left untouched.
    """
    if not html:
        return ""
    text = _STYLE_BLOCK.sub("", html)
    text = _SCRIPT_BLOCK.sub("", text)
    text = _TAG.sub("", text)
    text = _WHITESPACE_RUN.sub(" ", text)
    return text.strip()


def _decode_body_data(data: str) -> str:
    """Decodes a Gmail body payload (base64url, padding often stripped) to text."""
    raw = data.encode('ascii') if isinstance(data, str) else data
    raw = raw.replace(b'+', b'-').replace(b'/', b'_')
    raw += b'=' * (-len(raw) % 4)
    return base64.urlsafe_b64decode(raw).decode('utf-8', errors='replace')


def extract_body(part: Optional[dict]) -> str:
    """Returns the text of the first part carrying body data, in pre-order over `parts`.

    A part with data is returned as-is (after html_to_text) without looking at its
    children. A child whose text comes out empty does not stop the search: the next
    sibling is tried.
    """
    if not part:
        return ""
    data = (part.get('body') or {}).get('data')
    if data:
        try:
            return html_to_text(_decode_body_data(data))
        except (binascii.Error, UnicodeError) as e:
            # An undecodable part counts as empty; the search moves on to the next sibling
            debug_print(f"Undecodable body part ({part.get('mimeType')}): {e}")
            return ""
    for child in part.get('parts') or []:
        inner = extract_body(child)
        if inner:
            return inner
    return ""


def get_header(headers, name: str) -> str:
    """Value of the first header whose name matches exactly, or '' if absent."""
    for header in headers or []:
        if header.get('name') == name:
            return header.get('value') or ""
    return ""


def normalize_message(message_id: str, message: dict) -> dict:
    """Turns a full-format Gmail message resource into the stored shape.

    Missing headers become '', a missing or unparseable Date becomes None.
    """
    payload = message.get('payload') or {}
    headers = payload.get('headers') or []
    return {
        'id': str(message_id),
        'from': get_header(headers, 'From'),
        'to': get_header(headers, 'To'),
        'subject': get_header(headers, 'Subject'),
        'body': extract_body(payload),
        'date': parse_email_date(get_header(headers, 'Date')),
    }


async def resolve_message(gmail_client, message_id: str):
    """Fetch and normalize one message.

    Returns (message, None) on success or (None, reason) when the message has to be
    skipped: the API rejected the request for good, or the payload could not be decoded.
    TransientRemoteError is not caught; it aborts the calling pass.
    """
    try:
        message = await gmail_client.get_message(message_id)
        return normalize_message(message_id, message), None
    except RemoteRequestError as e:
        reason = str(e)
    except (binascii.Error, UnicodeError, AttributeError, TypeError, ValueError) as e:
        reason = f"malformed message payload: {e!r}"
    debug_print(f"Skipping message {message_id}: {reason}")
    return None, reason
