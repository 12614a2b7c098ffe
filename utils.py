import asyncio
import datetime
import functools
import random
from email.utils import parsedate_to_datetime

# Import constants from config.py
import config # Import the config module

def debug_print(*args, **kwargs):
    # Access DEBUG_MODE directly from the config module
    if config.DEBUG_MODE:
        print(*args, **kwargs)

# Parse an email Date header into a UTC ISO string. Anything unparseable yields None.
def parse_email_date(date_str):
    if not date_str:
        return None

    try:
        parsed = parsedate_to_datetime(date_str)
    except (TypeError, ValueError, IndexError):
        # Some senders put ISO timestamps in the Date header
        try:
            parsed = datetime.datetime.fromisoformat(date_str.strip())
        except ValueError:
            debug_print(f"Unparseable Date header: {date_str!r}")
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed.astimezone(datetime.timezone.utc).isoformat()

def parse_int_param(value, default, allow_zero=True):
    """Coerce a query parameter to a non-negative int, falling back to default.

    With allow_zero=False a zero value also falls back (a limit of 0 means "use the default").
    """
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if number < 0 or (number == 0 and not allow_zero):
        return default
    return number

def async_retry(attempts=3, delay_seconds=1, backoff_factor=2, jitter_range=(0, 1),
                exceptions=(asyncio.TimeoutError, ConnectionError, TimeoutError)):
    """
    A decorator for retrying an async function if it raises a transient exception.

    Args:
        attempts: The maximum number of attempts.
        delay_seconds: The initial delay between retries in seconds.
        backoff_factor: The factor by which the delay increases after each retry.
        jitter_range: A tuple (min_jitter, max_jitter) to add random jitter to the delay.
                      Helps prevent thundering herd problem.
        exceptions: The exception types considered transient. Anything else propagates at once.
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            last_exception = None
            current_delay = delay_seconds
            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt < attempts - 1:
                        actual_delay = current_delay
                        if jitter_range and jitter_range[0] < jitter_range[1]:
                            actual_delay += random.uniform(jitter_range[0], jitter_range[1])

                        debug_print(f"Retry {attempt + 1}/{attempts} for {func.__name__} after error: {e}. Retrying in {actual_delay:.2f}s...")
                        await asyncio.sleep(actual_delay)
                        current_delay *= backoff_factor
                    else:
                        debug_print(f"Function {func.__name__} failed after {attempts} attempts.")
            raise last_exception
        return wrapper
    return decorator
