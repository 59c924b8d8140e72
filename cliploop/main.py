import asyncio
import logging
from typing import List, Optional, Protocol

from cliploop.models import Clip, PlayerConfig
from cliploop.services.playlist import PlaylistManager

logger = logging.getLogger(__name__)

# Seconds to wait before trying the next clip after an unplayable one
SKIP_DELAY = 1.0
MAX_SKIPS = 5


class ClipPlayer(Protocol):
    """What the app needs from a video player."""

    async def play_clip(self, url: str) -> None: ...

    def preload_clip(self, url: str) -> None: ...


class ConsolePlayer:
    """Stand-in player that logs what it would play."""

    def __init__(self, volume: float = 0.5):
        self.volume = volume
        self.played: List[str] = []
        self.preloaded: List[str] = []

    async def play_clip(self, url: str) -> None:
        logger.info(f"Playing {url} (volume {self.volume})")
        self.played.append(url)

    def preload_clip(self, url: str) -> None:
        logger.debug(f"Preloading {url}")
        self.preloaded.append(url)


class ClipPlayerApp:
    def __init__(self, config: PlayerConfig, player: ClipPlayer, manager: Optional[PlaylistManager] = None):
        self.config = config
        self.player = player
        self.playlist_manager = manager or PlaylistManager()
        self.current_clip: Optional[Clip] = None
        self.is_initialized = False

    async def initialize(self):
        """Loads the playlist. NoClipsError propagates so the caller can show it."""
        logger.info(f"Initializing clip player for channel(s): {', '.join(self.config.channels)}")
        await self.playlist_manager.load_initial(
            self.config.channels,
            self.config.days,
            self.config.views,
            self.config.strategy,
        )
        logger.info(f"Loaded {len(self.playlist_manager.playlist)} clips")
        self.is_initialized = True

    async def play_next_clip(self, skip_delay: float = SKIP_DELAY) -> Optional[Clip]:
        """
        Plays the next playable clip. Unplayable clips are skipped after a short
        delay, up to MAX_SKIPS in a row. Returns the clip played, or None.
        """
        for _ in range(MAX_SKIPS + 1):
            clip = self.playlist_manager.get_next_clip()
            if clip is None:
                logger.error("No clips available to play")
                return None

            url = await self.playlist_manager.get_playback_url(clip)
            if url:
                logger.info(f"Playing clip: {clip.title}")
                self.current_clip = clip
                await self.player.play_clip(url)
                return clip

            logger.warning(f"Failed to get playback URL for {clip.id}, skipping to next clip")
            await asyncio.sleep(skip_delay)

        logger.error(f"Gave up after {MAX_SKIPS + 1} unplayable clips")
        return None

    async def preload_upcoming(self) -> Optional[str]:
        """Resolves the upcoming clip's URL and hands it to the player for preloading."""
        clip = self.playlist_manager.peek_next_clip()
        if clip is None:
            return None
        url = await self.playlist_manager.get_playback_url(clip)
        if url:
            self.player.preload_clip(url)
        return url

    async def close(self):
        await self.playlist_manager.aclose()
