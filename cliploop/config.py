import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    # Public web client id used by the Twitch site itself, no OAuth involved
    TWITCH_CLIENT_ID = os.getenv("TWITCH_CLIENT_ID", "kd1unb4b3q4t58fwlpcbzcbnm76a8fp")
    GQL_ENDPOINT = os.getenv("GQL_ENDPOINT", "https://gql.twitch.tv/gql")

    # Persisted query hashes
    CLIPS_CARDS_QUERY_HASH = os.getenv(
        "CLIPS_CARDS_QUERY_HASH",
        "1cd671bfa12cec480499c087319f26d21925e9695d1f80225aae6a4354f23088"
    )
    CLIP_PLAYBACK_QUERY_HASH = os.getenv(
        "CLIP_PLAYBACK_QUERY_HASH",
        "9c0a5b51612a41b06bfb93065deb6fd7bb7e011db2beb6e5e5d7588ae7f3ff4b"
    )

    # The API refuses more than 100 clips per page
    PAGE_SIZE = 100
    LOW_YIELD_FLOOR = int(os.getenv("LOW_YIELD_FLOOR", "20"))
    FALLBACK_PAGES = int(os.getenv("FALLBACK_PAGES", "3"))
    # Seconds between sequential page requests
    PAGINATION_DELAY = float(os.getenv("PAGINATION_DELAY", "0.1"))
    BACKGROUND_TARGET = int(os.getenv("BACKGROUND_TARGET", "400"))
    REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "10"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()
