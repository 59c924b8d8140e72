import argparse
import asyncio
import logging
import os
import sys

# Ensure we are running from the correct directory
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from cliploop.config import settings
from cliploop.main import ClipPlayerApp, ConsolePlayer
from cliploop.models import PlayerConfig
from cliploop.services.playlist import NoClipsError
from cliploop.services.utils import parse_player_config


def build_config(args) -> PlayerConfig:
    if args.query:
        return parse_player_config(args.query)
    return PlayerConfig(
        channel_name=args.channel,
        days=args.days,
        views=args.views,
        shuffle=args.shuffle,
        volume=args.volume,
    )


async def main(args):
    config = build_config(args)
    player = ConsolePlayer(volume=config.volume)
    app = ClipPlayerApp(config, player)

    try:
        await app.initialize()
        for _ in range(args.clips):
            clip = await app.play_next_clip()
            if clip is None:
                break
            print(f"{clip.title} | {clip.view_count} views | {clip.url}")
            await app.preload_upcoming()

        if args.wait:
            await app.playlist_manager.wait_for_background()
        stats = app.playlist_manager.get_stats()
        print(f"Playlist: {stats.total_clips} clips, position {stats.current_index}, strategy {stats.strategy}")
    except NoClipsError as e:
        print(f"Error: {e}")
        return 1
    finally:
        await app.close()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Shuffle and play Twitch clips for one or more channels")
    parser.add_argument("--channel", help="Channel name, comma separated for several")
    parser.add_argument("--query", help='Raw query string, e.g. "channelName=foo&days=30&shuffle=weighted"')
    parser.add_argument("--days", type=float, default=900, help="Only clips from the last N days")
    parser.add_argument("--views", type=int, default=0, help="Minimum view count")
    parser.add_argument("--shuffle", default="smart", choices=["uniform", "random", "stratified", "weighted", "smart"])
    parser.add_argument("--volume", type=float, default=0.5)
    parser.add_argument("--clips", type=int, default=5, help="How many clips to play")
    parser.add_argument("--wait", action="store_true", help="Wait for background loading before exiting")
    args = parser.parse_args()

    if not args.channel and not args.query:
        parser.error("one of --channel or --query is required")

    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    sys.exit(asyncio.run(main(args)))
