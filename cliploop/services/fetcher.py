import asyncio
import logging
import math
from typing import Iterable, List, Optional, Set

import httpx

from ..config import settings
from ..models import ChannelResult, Clip, ClipFilter, FetchResult
from .twitch import ClipSourceError, fetch_page, get_dynamic_filter

logger = logging.getLogger(__name__)


def merge_unique(*collections: Iterable[Clip]) -> List[Clip]:
    """Concatenates clip collections, keeping the first occurrence of each id."""
    merged = []
    seen = set()
    for clips in collections:
        for clip in clips:
            if clip.id not in seen:
                seen.add(clip.id)
                merged.append(clip)
    return merged


async def _collect_all_time(
    client: httpx.AsyncClient,
    channel: str,
    seen: Set[str],
    max_pages: int,
    target: Optional[int] = None,
) -> List[Clip]:
    """
    Walks ALL_TIME pages from the top, returning only clips not in `seen`.
    `seen` is updated in place. Stops early once `target` new clips are found.
    Failures end the walk; whatever was gathered so far is kept.
    """
    added = []
    cursor = None

    for page in range(max_pages):
        try:
            result = await fetch_page(client, channel, settings.PAGE_SIZE, ClipFilter.ALL_TIME, cursor)
        except ClipSourceError as e:
            logger.warning(f"ALL_TIME fallback page {page + 1} failed for {channel}: {e}")
            break

        for clip in result.clips:
            if clip.id not in seen:
                seen.add(clip.id)
                added.append(clip)

        if target is not None and len(added) >= target:
            break
        if not result.clips or not result.has_next_page or not result.end_cursor:
            break
        if result.end_cursor == cursor:
            logger.error(f"Cursor did not advance for {channel} (ALL_TIME), stopping")
            break
        cursor = result.end_cursor

        if page + 1 < max_pages:
            await asyncio.sleep(settings.PAGINATION_DELAY)

    return added


async def fetch_diverse(client: httpx.AsyncClient, channel: str, days: float = 900) -> FetchResult:
    """
    Fetches one page per time-range filter concurrently and merges them.

    Filters run in priority order (primary, ALL_TIME, LAST_WEEK, LAST_MONTH) and
    are merged in that order, so a clip first seen under a higher-priority filter
    keeps its place. Only the primary filter's pagination state is returned.
    A filter that fails contributes nothing; this never raises for fetch faults.
    """
    primary = get_dynamic_filter(days)
    filters = list(dict.fromkeys([
        primary,
        ClipFilter.ALL_TIME,
        ClipFilter.LAST_WEEK,
        ClipFilter.LAST_MONTH,
    ]))

    logger.info(f"Fetching clips for {channel} with filters {[f.value for f in filters]}")

    results = await asyncio.gather(
        *(fetch_page(client, channel, settings.PAGE_SIZE, f) for f in filters),
        return_exceptions=True,
    )

    clips = []
    seen = set()
    failures = 0
    primary_result = None

    for clip_filter, result in zip(filters, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            failures += 1
            logger.warning(f"Failed fetch for {channel} ({clip_filter.value}): {result}")
            continue

        if clip_filter == primary:
            primary_result = result

        for clip in result.clips:
            if clip.id not in seen:
                seen.add(clip.id)
                clips.append(clip)

    logger.info(f"Combined {len(clips)} unique clips for {channel} from {len(filters)} fetches")

    if len(clips) < settings.LOW_YIELD_FLOOR:
        logger.info(f"Low clip count for {channel} ({len(clips)}), paging ALL_TIME fallback")
        extra = await _collect_all_time(client, channel, seen, settings.FALLBACK_PAGES)
        clips.extend(extra)
        logger.info(f"Added {len(extra)} clips from ALL_TIME fallback")

    if not clips and failures == len(filters):
        logger.warning(f"Every filter failed for {channel}, trying a single ALL_TIME page")
        try:
            last = await fetch_page(client, channel, settings.PAGE_SIZE, ClipFilter.ALL_TIME)
        except ClipSourceError as e:
            logger.error(f"All clip fetches failed for {channel}: {e}")
            return FetchResult(filter=primary)
        return last

    if primary_result is None:
        return FetchResult(clips=clips, filter=primary)

    return FetchResult(
        clips=clips,
        has_next_page=primary_result.has_next_page,
        end_cursor=primary_result.end_cursor,
        filter=primary,
    )


async def fetch_diverse_channels(
    client: httpx.AsyncClient,
    channels: Iterable[str],
    days: float = 900,
) -> List[ChannelResult]:
    """
    Runs fetch_diverse for every channel concurrently.
    Clips already returned for an earlier channel are removed from later ones,
    so the union of all results has unique ids.
    """
    names = list(dict.fromkeys(c for c in channels if c))
    results = await asyncio.gather(*(fetch_diverse(client, name, days) for name in names))

    seen = set()
    channel_results = []
    for name, result in zip(names, results):
        unique = [c for c in result.clips if c.id not in seen]
        seen.update(c.id for c in unique)
        channel_results.append(ChannelResult(
            channel=name,
            result=result.model_copy(update={"clips": unique}),
        ))
    return channel_results


async def paginate(
    client: httpx.AsyncClient,
    channel: str,
    clip_filter: ClipFilter,
    start_cursor: Optional[str] = None,
    max_clips: int = 300,
) -> FetchResult:
    """
    Pages forward sequentially from `start_cursor`, up to `max_clips` clips.

    Stops on an empty page, a page without a next cursor, or a cursor that did
    not advance. The returned cursor continues the chain; `has_next_page` is
    False once the chain is exhausted or halted. Raises ClipSourceError only
    when the very first page fails.
    """
    clip_filter = ClipFilter(clip_filter)
    max_requests = max(1, math.ceil(max_clips / settings.PAGE_SIZE))

    clips = []
    seen = set()
    cursor = start_cursor
    has_next_page = True
    requests = 0

    while len(clips) < max_clips and requests < max_requests:
        try:
            result = await fetch_page(client, channel, settings.PAGE_SIZE, clip_filter, cursor)
        except ClipSourceError as e:
            if requests == 0:
                raise
            logger.warning(f"Pagination for {channel} ({clip_filter.value}) interrupted: {e}")
            break
        requests += 1

        if not result.clips:
            logger.info(f"No clips returned on request {requests} for {channel}, stopping")
            has_next_page = False
            break

        for clip in result.clips:
            if clip.id not in seen:
                seen.add(clip.id)
                clips.append(clip)

        if not result.has_next_page or not result.end_cursor:
            has_next_page = False
            break

        if result.end_cursor == cursor:
            logger.error(f"Cursor did not change for {channel} ({clip_filter.value}): {cursor}")
            has_next_page = False
            break
        cursor = result.end_cursor

        if requests < max_requests and len(clips) < max_clips:
            await asyncio.sleep(settings.PAGINATION_DELAY)

    logger.info(f"Fetched {len(clips)} clips across {requests} requests for {channel} ({clip_filter.value})")

    # Fresh chains on a narrow filter can run dry quickly; fill up from ALL_TIME
    if len(clips) < max_clips and clip_filter != ClipFilter.ALL_TIME and start_cursor is None:
        needed = max_clips - len(clips)
        extra = await _collect_all_time(
            client, channel, seen, math.ceil(needed / settings.PAGE_SIZE), target=needed,
        )
        clips.extend(extra)
        logger.info(f"Added {len(extra)} additional clips from ALL_TIME for {channel}")

    return FetchResult(
        clips=clips,
        has_next_page=has_next_page,
        end_cursor=cursor,
        filter=clip_filter,
    )
