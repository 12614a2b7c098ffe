# tests/test_utils.py
import asyncio
import pytest
from unittest.mock import AsyncMock

from utils import async_retry, parse_email_date, parse_int_param

@pytest.mark.parametrize("header, expected", [
    ("Mon, 1 Jan 2024 12:00:00 +0000", "2024-01-01T12:00:00+00:00"),
    ("Mon, 1 Jan 2024 12:00:00 -0500", "2024-01-01T17:00:00+00:00"),
    ("1 Jan 2024 12:00:00 +0100 (CET)", "2024-01-01T11:00:00+00:00"),
    ("2024-03-05T08:30:00+02:00", "2024-03-05T06:30:00+00:00"),
    ("2024-03-05T08:30:00", "2024-03-05T08:30:00+00:00"),
])
def test_parse_email_date_normalizes_to_utc(header, expected):
    assert parse_email_date(header) == expected

@pytest.mark.parametrize("header", [None, "", "not a date", "Someday, 99 Foo 2024"])
def test_parse_email_date_unparseable(header):
    assert parse_email_date(header) is None

@pytest.mark.parametrize("value, default, allow_zero, expected", [
    ("5", 10, True, 5),
    (7, 10, True, 7),
    ("0", 0, True, 0),
    ("0", 10, False, 10),
    ("-3", 10, False, 10),
    ("-1", 0, True, 0),
    ("abc", 10, False, 10),
    (None, 10, False, 10),
    ("2.5", 0, True, 0),
])
def test_parse_int_param(value, default, allow_zero, expected):
    assert parse_int_param(value, default, allow_zero=allow_zero) == expected

@pytest.mark.asyncio
async def test_async_retry_succeeds_after_transient_failures(monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr('utils.asyncio.sleep', sleep)
    calls = {'count': 0}

    @async_retry(attempts=3, delay_seconds=1, backoff_factor=2, jitter_range=None)
    async def flaky():
        calls['count'] += 1
        if calls['count'] < 3:
            raise ConnectionError("connection dropped")
        return "ok"

    assert await flaky() == "ok"
    assert calls['count'] == 3
    assert [c.args[0] for c in sleep.call_args_list] == [1, 2]

@pytest.mark.asyncio
async def test_async_retry_gives_up_with_last_error(monkeypatch):
    monkeypatch.setattr('utils.asyncio.sleep', AsyncMock())

    @async_retry(attempts=2)
    async def always_times_out():
        raise asyncio.TimeoutError()

    with pytest.raises(asyncio.TimeoutError):
        await always_times_out()

@pytest.mark.asyncio
async def test_async_retry_does_not_retry_other_errors(monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr('utils.asyncio.sleep', sleep)
    calls = {'count': 0}

    @async_retry(attempts=5)
    async def broken():
        calls['count'] += 1
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        await broken()
    assert calls['count'] == 1
    sleep.assert_not_called()
