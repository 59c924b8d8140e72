from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from cliploop.models import ClipFilter, FetchResult
from cliploop.services.fetcher import fetch_diverse, fetch_diverse_channels, merge_unique, paginate
from cliploop.services.twitch import ClipSourceError


def test_merge_unique_keeps_first_seen(make_clip):
    a = [make_clip(1), make_clip(2)]
    b = [make_clip(2, views=99), make_clip(3)]
    merged = merge_unique(a, b)
    assert [c.id for c in merged] == ["clip1", "clip2", "clip3"]
    assert merged[1].view_count == 0


@pytest.mark.asyncio
async def test_fetch_diverse_deduplicates_across_filters(make_clip):
    # ALL_TIME and LAST_WEEK share 30 of their 100 ids each
    all_time = [make_clip(i) for i in range(100)]
    last_week = [make_clip(i) for i in range(70, 170)]

    async def fake_fetch(client, channel, limit, clip_filter, cursor=None):
        if clip_filter == ClipFilter.ALL_TIME:
            return FetchResult(clips=all_time, has_next_page=True, end_cursor="AT1", filter=clip_filter)
        if clip_filter == ClipFilter.LAST_WEEK:
            return FetchResult(clips=last_week, has_next_page=True, end_cursor="LW1", filter=clip_filter)
        return FetchResult(filter=clip_filter)

    with patch("cliploop.services.fetcher.fetch_page", new=AsyncMock(side_effect=fake_fetch)) as mock_fetch:
        result = await fetch_diverse(MagicMock(), "chan", days=900)

    ids = [c.id for c in result.clips]
    assert len(ids) == 170
    assert len(set(ids)) == 170
    assert ids[:100] == [f"clip{i}" for i in range(100)]
    assert ids[100:] == [f"clip{i}" for i in range(100, 170)]

    # 900 days -> ALL_TIME is primary, so only three distinct filters are requested
    assert mock_fetch.await_count == 3
    assert result.filter == ClipFilter.ALL_TIME
    assert result.end_cursor == "AT1"
    assert result.has_next_page is True


@pytest.mark.asyncio
async def test_fetch_diverse_keeps_primary_pagination_only(make_clip):
    async def fake_fetch(client, channel, limit, clip_filter, cursor=None):
        start = {ClipFilter.LAST_WEEK: 0, ClipFilter.ALL_TIME: 100, ClipFilter.LAST_MONTH: 200}[clip_filter]
        clips = [make_clip(i) for i in range(start, start + 30)]
        return FetchResult(clips=clips, has_next_page=True, end_cursor=f"{clip_filter.value}-next", filter=clip_filter)

    with patch("cliploop.services.fetcher.fetch_page", new=AsyncMock(side_effect=fake_fetch)):
        result = await fetch_diverse(MagicMock(), "chan", days=7)

    assert result.filter == ClipFilter.LAST_WEEK
    assert result.end_cursor == "LAST_WEEK-next"
    # primary first, then ALL_TIME, then LAST_MONTH
    assert result.clips[0].id == "clip0"
    assert result.clips[30].id == "clip100"
    assert result.clips[60].id == "clip200"


@pytest.mark.asyncio
async def test_fetch_diverse_isolates_filter_failures(make_clip):
    async def fake_fetch(client, channel, limit, clip_filter, cursor=None):
        if clip_filter == ClipFilter.LAST_MONTH:
            return FetchResult(clips=[make_clip(i) for i in range(25)], filter=clip_filter)
        raise ClipSourceError("HTTP error! status: 500")

    with patch("cliploop.services.fetcher.fetch_page", new=AsyncMock(side_effect=fake_fetch)):
        result = await fetch_diverse(MagicMock(), "chan", days=30)

    assert len(result.clips) == 25
    # primary filter is LAST_MONTH here, and it succeeded
    assert result.filter == ClipFilter.LAST_MONTH


@pytest.mark.asyncio
async def test_fetch_diverse_low_yield_pages_all_time(make_clip):
    pages = {
        None: FetchResult(clips=[make_clip(i) for i in range(5)], has_next_page=True, end_cursor="p2"),
        "p2": FetchResult(clips=[make_clip(i) for i in range(5, 15)], has_next_page=True, end_cursor="p3"),
        "p3": FetchResult(clips=[make_clip(i) for i in range(15, 25)], has_next_page=True, end_cursor="p4"),
    }

    async def fake_fetch(client, channel, limit, clip_filter, cursor=None):
        if clip_filter == ClipFilter.ALL_TIME:
            return pages[cursor]
        return FetchResult(filter=clip_filter)

    with patch("cliploop.services.fetcher.fetch_page", new=AsyncMock(side_effect=fake_fetch)) as mock_fetch:
        result = await fetch_diverse(MagicMock(), "chan", days=900)

    assert len(result.clips) == 25
    assert len({c.id for c in result.clips}) == 25
    # 3 filter fetches + 3 fallback pages (the first fallback page repeats ALL_TIME page 1)
    assert mock_fetch.await_count == 6


@pytest.mark.asyncio
async def test_fetch_diverse_total_failure_returns_empty():
    mock_fetch = AsyncMock(side_effect=ClipSourceError("offline"))
    with patch("cliploop.services.fetcher.fetch_page", new=mock_fetch):
        result = await fetch_diverse(MagicMock(), "chan", days=900)

    assert result.clips == []
    assert result.has_next_page is False
    assert result.end_cursor is None


@pytest.mark.asyncio
async def test_fetch_diverse_malformed_body_returns_empty(mock_client):
    client = mock_client(lambda request: httpx.Response(200, json={"data": "oops"}))

    result = await fetch_diverse(client, "chan", 900)

    assert result.clips == []
    assert result.has_next_page is False
    assert result.filter == ClipFilter.ALL_TIME
    # three filters, one fallback page, one last-resort page
    assert len(client.sent) == 5
    await client.aclose()


@pytest.mark.asyncio
async def test_fetch_diverse_channels_unions_across_channels(make_clip):
    async def fake_diverse(client, channel, days):
        if channel == "one":
            return FetchResult(clips=[make_clip(1), make_clip(2)], has_next_page=True, end_cursor="c1")
        return FetchResult(clips=[make_clip(2), make_clip(3)], has_next_page=False)

    with patch("cliploop.services.fetcher.fetch_diverse", new=AsyncMock(side_effect=fake_diverse)):
        results = await fetch_diverse_channels(MagicMock(), ["one", "two", "one"], 900)

    assert [r.channel for r in results] == ["one", "two"]
    assert [c.id for c in results[0].result.clips] == ["clip1", "clip2"]
    assert [c.id for c in results[1].result.clips] == ["clip3"]
    assert results[0].result.end_cursor == "c1"


@pytest.mark.asyncio
async def test_paginate_stops_when_cursor_repeats(make_clip):
    # The API keeps handing back the same cursor
    calls = []

    async def fake_fetch(client, channel, limit, clip_filter, cursor=None):
        calls.append(cursor)
        n = len(calls)
        return FetchResult(clips=[make_clip(n)], has_next_page=True, end_cursor="STUCK", filter=clip_filter)

    with patch("cliploop.services.fetcher.fetch_page", new=AsyncMock(side_effect=fake_fetch)):
        result = await paginate(MagicMock(), "chan", ClipFilter.ALL_TIME, max_clips=1000)

    assert calls == [None, "STUCK"]
    assert result.has_next_page is False
    assert [c.id for c in result.clips] == ["clip1", "clip2"]


@pytest.mark.asyncio
async def test_paginate_follows_cursors_until_last_page(make_clip):
    pages = {
        "start": FetchResult(clips=[make_clip(i) for i in range(100)], has_next_page=True, end_cursor="a"),
        "a": FetchResult(clips=[make_clip(i) for i in range(100, 200)], has_next_page=True, end_cursor="b"),
        "b": FetchResult(clips=[make_clip(i) for i in range(200, 250)], has_next_page=False, end_cursor=None),
    }

    async def fake_fetch(client, channel, limit, clip_filter, cursor=None):
        return pages[cursor]

    with patch("cliploop.services.fetcher.fetch_page", new=AsyncMock(side_effect=fake_fetch)):
        result = await paginate(MagicMock(), "chan", ClipFilter.LAST_MONTH, start_cursor="start", max_clips=400)

    assert len(result.clips) == 250
    assert result.has_next_page is False
    assert result.end_cursor == "b"
    assert result.filter == ClipFilter.LAST_MONTH


@pytest.mark.asyncio
async def test_paginate_respects_max_clips(make_clip):
    async def fake_fetch(client, channel, limit, clip_filter, cursor=None):
        n = int(cursor or 0)
        clips = [make_clip(i) for i in range(n, n + 100)]
        return FetchResult(clips=clips, has_next_page=True, end_cursor=str(n + 100))

    with patch("cliploop.services.fetcher.fetch_page", new=AsyncMock(side_effect=fake_fetch)) as mock_fetch:
        result = await paginate(MagicMock(), "chan", ClipFilter.ALL_TIME, start_cursor="0", max_clips=200)

    assert mock_fetch.await_count == 2
    assert len(result.clips) == 200
    assert result.end_cursor == "200"
    assert result.has_next_page is True


@pytest.mark.asyncio
async def test_paginate_first_page_failure_raises():
    with patch("cliploop.services.fetcher.fetch_page", new=AsyncMock(side_effect=ClipSourceError("x"))):
        with pytest.raises(ClipSourceError):
            await paginate(MagicMock(), "chan", ClipFilter.ALL_TIME, start_cursor="c")


@pytest.mark.asyncio
async def test_paginate_tops_up_from_all_time(make_clip):
    async def fake_fetch(client, channel, limit, clip_filter, cursor=None):
        if clip_filter == ClipFilter.LAST_DAY:
            return FetchResult(clips=[make_clip(1), make_clip(2)], has_next_page=False)
        return FetchResult(clips=[make_clip(2), make_clip(3), make_clip(4)], has_next_page=False)

    with patch("cliploop.services.fetcher.fetch_page", new=AsyncMock(side_effect=fake_fetch)):
        result = await paginate(MagicMock(), "chan", ClipFilter.LAST_DAY, max_clips=10)

    assert [c.id for c in result.clips] == ["clip1", "clip2", "clip3", "clip4"]
    assert result.filter == ClipFilter.LAST_DAY
