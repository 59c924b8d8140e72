import asyncio
import logging
import math
import random
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import httpx

from ..config import settings
from ..models import (
    Clip,
    ClipFilter,
    FetchResult,
    PlaylistState,
    PlaylistStats,
    ShuffleStrategy,
    SmartShuffle,
)
from .fetcher import fetch_diverse_channels, merge_unique, paginate
from .shuffle import apply_strategy
from .twitch import ClipSourceError, get_clip_client, resolve_playback_url

logger = logging.getLogger(__name__)


class NoClipsError(Exception):
    """No clips are available for the requested channels and filters."""


def split_channels(channels: Union[str, Iterable[str]]) -> List[str]:
    """Accepts 'a,b' or ['a', 'b'] and returns unique, lower-cased channel names."""
    if isinstance(channels, str):
        channels = channels.split(",")
    names = [c.strip().lower() for c in channels if c and c.strip()]
    return list(dict.fromkeys(names))


def filter_by_date_range(clips: Sequence[Clip], days: float, now: Optional[datetime] = None) -> List[Clip]:
    """
    Keeps clips created within the last `days` days. The cutoff itself is
    inclusive: a clip created exactly `days` ago is kept. Clips without a
    creation time are dropped. `days <= 0` disables the filter.
    """
    if not days or days <= 0:
        return list(clips)

    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=days)

    kept = []
    for clip in clips:
        created = clip.created_at
        if created is None:
            continue
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        if created >= cutoff:
            kept.append(clip)
    return kept


def filter_by_min_views(clips: Sequence[Clip], min_views: int) -> List[Clip]:
    if not min_views or min_views <= 0:
        return list(clips)
    return [c for c in clips if c.view_count >= min_views]


class PlaylistManager:
    """
    Owns the playback queue.

    The queue lives in a single immutable PlaylistState that is swapped whole on
    every change, so a reader never sees a sequence from one version paired with
    a cursor from another.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, rng: Optional[random.Random] = None):
        self._client = client
        self._owns_client = client is None
        self._rng = rng
        self._state = PlaylistState()
        self.strategy: ShuffleStrategy = SmartShuffle()

        self._days: float = 0
        self._min_views: int = 0
        self._pagination: Dict[str, FetchResult] = {}
        self._background_task: Optional[asyncio.Task] = None
        self._generation = 0
        # (state version, next pass order) computed by peek_next_clip at the end of a pass
        self._pending_wrap: Optional[Tuple[int, List[Clip]]] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = get_clip_client()
        return self._client

    @property
    def state(self) -> PlaylistState:
        return self._state

    @property
    def playlist(self) -> List[Clip]:
        return list(self._state.sequence)

    @property
    def current_index(self) -> int:
        return self._state.cursor

    def _replace(self, sequence: Sequence[Clip], cursor: int):
        self._state = PlaylistState(
            sequence=tuple(sequence),
            cursor=cursor,
            version=self._state.version + 1,
        )

    def _filter(self, clips: Sequence[Clip]) -> List[Clip]:
        return filter_by_min_views(filter_by_date_range(clips, self._days), self._min_views)

    async def load_initial(
        self,
        channels: Union[str, Iterable[str]],
        days: float = 900,
        min_views: int = 0,
        strategy: Optional[ShuffleStrategy] = None,
    ):
        """
        Loads a first batch of clips for immediate playback, then grows the
        playlist in the background. Raises NoClipsError if nothing survives the
        date and view filters.
        """
        names = split_channels(channels)
        if not names:
            raise ValueError("At least one channel name is required")

        if self._background_task and not self._background_task.done():
            self._background_task.cancel()
        self._generation += 1

        self._days = days
        self._min_views = min_views
        if strategy is not None:
            self.strategy = strategy

        results = await fetch_diverse_channels(self.client, names, days)
        fetched = merge_unique(*(r.result.clips for r in results))
        clips = self._filter(fetched)

        logger.info(
            f"Initial load for {', '.join(names)}: {len(fetched)} fetched, "
            f"{len(clips)} after filters (days={days}, views>={min_views})"
        )

        if not clips:
            raise NoClipsError(
                f"No clips available for {', '.join(names)} "
                f"in the last {days} days with at least {min_views} views"
            )

        self._replace(apply_strategy(clips, self.strategy, self._rng), 0)
        self._pagination = {r.channel: r.result for r in results}

        self._background_task = asyncio.create_task(self._grow_in_background(self._generation))

    async def _grow_in_background(self, generation: int):
        try:
            await self.grow(generation)
        except Exception as e:
            logger.warning(f"Background playlist growth failed: {e}")

    async def grow(self, generation: Optional[int] = None) -> int:
        """
        Pages forward from each channel's retained cursor and merges new clips.
        Returns the number of clips added.
        """
        generation = self._generation if generation is None else generation

        pending = {
            channel: result for channel, result in self._pagination.items()
            if result.has_next_page and result.end_cursor
        }
        budget = settings.BACKGROUND_TARGET - len(self._state.sequence)
        if not pending or budget <= 0:
            logger.info("No further pages to load in the background")
            return 0

        per_channel = math.ceil(budget / len(pending))
        logger.info(f"Background loading up to {per_channel} clips from {len(pending)} channel(s)")

        channels = list(pending)
        results = await asyncio.gather(
            *(
                paginate(
                    self.client,
                    channel,
                    pending[channel].filter or ClipFilter.ALL_TIME,
                    pending[channel].end_cursor,
                    per_channel,
                )
                for channel in channels
            ),
            return_exceptions=True,
        )

        if generation != self._generation:
            logger.info("Playlist was reloaded, discarding background results")
            return 0

        new_clips = []
        for channel, result in zip(channels, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(f"Background fetch failed for {channel}: {result}")
                continue
            self._pagination[channel] = result.model_copy(update={"clips": []})
            new_clips.extend(result.clips)

        added = self.merge_clips(self._filter(new_clips))
        logger.info(f"Background load added {added} clips, playlist now {len(self._state.sequence)}")
        return added

    def merge_clips(self, clips: Iterable[Clip]) -> int:
        """
        Adds unseen clips and reshuffles the whole playlist, keeping the
        playback position just past the clip that was last handed out.
        """
        state = self._state
        known = {c.id for c in state.sequence}
        fresh = merge_unique([c for c in clips if c.id not in known])
        if not fresh:
            return 0

        reshuffled = apply_strategy(list(state.sequence) + fresh, self.strategy, self._rng)

        cursor = 0
        if state.cursor > 0:
            played_id = state.sequence[min(state.cursor, len(state.sequence)) - 1].id
            cursor = min(state.cursor, len(reshuffled))
            for i, clip in enumerate(reshuffled):
                if clip.id == played_id:
                    cursor = i + 1
                    break

        self._replace(reshuffled, cursor)
        return len(fresh)

    def _next_pass_order(self) -> List[Clip]:
        """
        Order for the pass after the current one. Computed once per state version
        so a peek and the following get_next_clip() agree.
        """
        state = self._state
        if self._pending_wrap is not None and self._pending_wrap[0] == state.version:
            return self._pending_wrap[1]

        reshuffled = apply_strategy(state.sequence, self.strategy, self._rng)
        # Don't replay the clip that just finished
        if len(reshuffled) > 1 and state.cursor > 0:
            last_id = state.sequence[state.cursor - 1].id
            if reshuffled[0].id == last_id:
                reshuffled[0], reshuffled[1] = reshuffled[1], reshuffled[0]
        self._pending_wrap = (state.version, reshuffled)
        return reshuffled

    def get_next_clip(self) -> Optional[Clip]:
        """Returns the next clip, looping with a fresh shuffle at the end. None only if empty."""
        if not self._state.sequence:
            logger.warning("No clips in playlist")
            return None

        if self._state.cursor >= len(self._state.sequence):
            logger.info("End of playlist reached, reshuffling...")
            self._replace(self._next_pass_order(), 0)
            self._pending_wrap = None

        state = self._state
        clip = state.sequence[state.cursor]
        self._replace(state.sequence, state.cursor + 1)
        return clip

    def peek_next_clip(self) -> Optional[Clip]:
        """
        Returns the clip get_next_clip() will hand out next, without consuming it.
        Never changes the playlist state.
        """
        state = self._state
        if not state.sequence:
            return None
        if state.cursor >= len(state.sequence):
            return self._next_pass_order()[0]
        return state.sequence[state.cursor]

    async def get_playback_url(self, clip: Clip) -> Optional[str]:
        slug = clip.playback_slug
        if not slug:
            return None
        try:
            return await resolve_playback_url(self.client, slug)
        except ClipSourceError as e:
            logger.error(f"Error fetching playback URL for {slug}: {e}")
            return None

    def set_strategy(self, strategy: ShuffleStrategy):
        self.strategy = strategy
        self._replace(apply_strategy(self._state.sequence, strategy, self._rng), 0)
        logger.info(f"Shuffle strategy set to {strategy.kind}")

    def get_stats(self) -> PlaylistStats:
        state = self._state
        return PlaylistStats(
            total_clips=len(state.sequence),
            current_index=state.cursor,
            remaining_clips=max(0, len(state.sequence) - state.cursor),
            strategy=self.strategy.kind,
            background_loading=bool(self._background_task and not self._background_task.done()),
        )

    def is_empty(self) -> bool:
        return not self._state.sequence

    def clear(self):
        if self._background_task and not self._background_task.done():
            self._background_task.cancel()
        self._generation += 1
        self._pagination = {}
        self._replace((), 0)

    async def wait_for_background(self):
        """Waits for the current background load, if any, to settle."""
        task = self._background_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def aclose(self):
        self.clear()
        await self.wait_for_background()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
