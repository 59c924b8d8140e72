import logging
from typing import Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ..config import settings
from ..models import Broadcaster, Clip, ClipFilter, Curator, FetchResult, Game

logger = logging.getLogger(__name__)

CLIPS_QUERY = """
query ChannelClips($login: String!, $limit: Int!, $after: Cursor, $criteria: UserClipsInput) {
  user(login: $login) {
    clips(first: $limit, after: $after, criteria: $criteria) {
      pageInfo { hasNextPage endCursor }
      edges {
        cursor
        node {
          id slug title viewCount createdAt durationSeconds thumbnailURL url
          curator { login displayName }
          game { id name }
          broadcaster { login displayName }
        }
      }
    }
  }
}
"""


class ClipSourceError(Exception):
    """Transport or protocol failure talking to the clips API."""


def get_clip_client() -> httpx.AsyncClient:
    """Builds the shared HTTP client keyed by the public client id."""
    return httpx.AsyncClient(
        headers={
            "Client-ID": settings.TWITCH_CLIENT_ID,
            "Content-Type": "application/json",
        },
        timeout=settings.REQUEST_TIMEOUT,
    )


def get_dynamic_filter(days: float) -> ClipFilter:
    """Picks the narrowest time-range filter that still covers `days`."""
    if days <= 1:
        return ClipFilter.LAST_DAY
    if days <= 7:
        return ClipFilter.LAST_WEEK
    if days <= 30:
        return ClipFilter.LAST_MONTH
    return ClipFilter.ALL_TIME


async def _post(client: httpx.AsyncClient, body):
    try:
        response = await client.post(settings.GQL_ENDPOINT, json=body)
    except httpx.HTTPError as e:
        raise ClipSourceError(f"Request to clips API failed: {e}") from e

    if not response.is_success:
        raise ClipSourceError(f"HTTP error! status: {response.status_code}")

    try:
        return response.json()
    except ValueError as e:
        raise ClipSourceError("Clips API returned a non-JSON body") from e


def _raise_for_errors(payload):
    if not isinstance(payload, dict):
        raise ClipSourceError(f"Unexpected response type: {type(payload).__name__}")
    errors = payload.get("errors")
    if errors:
        messages = ", ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
        raise ClipSourceError(f"GraphQL errors: {messages}")


def extract_end_cursor(connection: dict) -> Optional[str]:
    """
    Finds the next-page cursor wherever this response shape keeps it.
    Page-level `pageInfo.endCursor` wins; otherwise the last edge carrying a cursor.
    """
    page_info = connection.get("pageInfo") or {}
    if page_info.get("endCursor"):
        return page_info["endCursor"]

    for edge in reversed(connection.get("edges") or []):
        if edge and edge.get("cursor"):
            return edge["cursor"]
    return None


def _clip_from_node(node: dict, channel: str, url: str, broadcaster: Optional[dict]) -> Optional[Clip]:
    curator = node.get("curator")
    game = node.get("game")
    try:
        clip = Clip(
            id=str(node["id"]),
            slug=node.get("slug"),
            title=node.get("title") or "",
            created_at=node.get("createdAt"),
            view_count=node.get("viewCount") or 0,
            duration_seconds=node.get("durationSeconds") or 0,
            thumbnail_url=node.get("thumbnailURL") or "",
            url=url,
            curator=Curator(
                display_name=curator.get("displayName") or curator.get("login") or "",
                login=curator.get("login"),
            ) if curator else None,
            game=Game(id=game.get("id"), name=game.get("name") or "") if game else None,
            broadcaster=Broadcaster(
                display_name=(broadcaster or {}).get("displayName") or channel,
                login=(broadcaster or {}).get("login") or channel,
            ),
        )
    except ValidationError as e:
        logger.warning(f"Dropping malformed clip {node.get('id')}: {e}")
        return None

    # Without a slug there is no way to request a playback URL
    if not clip.playback_slug:
        return None
    return clip


def _card_node(node: dict, channel: str) -> Optional[Clip]:
    # Cards carry neither a watch URL nor the broadcaster; both come from the channel
    if not node or not node.get("id") or not node.get("slug"):
        return None
    url = f"https://www.twitch.tv/{channel}/clip/{node['slug']}"
    return _clip_from_node(node, channel, url, None)


def _connection_node(node: dict, channel: str) -> Optional[Clip]:
    if not node or not node.get("id"):
        return None
    url = node.get("url") or ""
    if not url and node.get("slug"):
        url = f"https://www.twitch.tv/{channel}/clip/{node['slug']}"
    return _clip_from_node(node, channel, url, node.get("broadcaster"))


def _build_result(connection: Optional[dict], channel: str, clip_filter: ClipFilter, to_clip) -> FetchResult:
    if not connection:
        return FetchResult(filter=clip_filter)

    edges = connection.get("edges") or []
    clips = []
    for edge in edges:
        clip = to_clip((edge or {}).get("node"), channel)
        if clip:
            clips.append(clip)

    page_info = connection.get("pageInfo") or {}
    end_cursor = extract_end_cursor(connection)
    # A page that claims more results but gives no cursor cannot be continued
    has_next_page = bool(page_info.get("hasNextPage")) and end_cursor is not None

    logger.info(
        f"{channel} ({clip_filter.value}): {len(clips)}/{len(edges)} clips, "
        f"hasNextPage={has_next_page}"
    )
    return FetchResult(
        clips=clips,
        has_next_page=has_next_page,
        end_cursor=end_cursor,
        filter=clip_filter,
    )


def _user_clips(payload: dict, channel: str) -> Optional[dict]:
    user = (payload.get("data") or {}).get("user")
    if not user:
        logger.warning(f"No user data found for channel: {channel}")
        return None
    return user.get("clips")


def normalize_clips_cards(payload: dict, channel: str, clip_filter: ClipFilter) -> FetchResult:
    """Normalizes a ClipsCards__User response (cursor lives on each edge)."""
    return _build_result(_user_clips(payload, channel), channel, clip_filter, _card_node)


def normalize_clip_connection(payload: dict, channel: str, clip_filter: ClipFilter) -> FetchResult:
    """Normalizes a literal-query response (cursor on pageInfo, edges as backup)."""
    return _build_result(_user_clips(payload, channel), channel, clip_filter, _connection_node)


async def fetch_page(
    client: httpx.AsyncClient,
    channel: str,
    limit: int = 100,
    clip_filter: ClipFilter = ClipFilter.ALL_TIME,
    cursor: Optional[str] = None,
    persisted: bool = True,
) -> FetchResult:
    """Fetches one page of clips for a channel. Raises ClipSourceError on any transport/API fault."""
    limit = max(1, min(limit, settings.PAGE_SIZE))
    clip_filter = ClipFilter(clip_filter)

    variables = {
        "login": channel,
        "limit": limit,
        "criteria": {"filter": clip_filter.value},
    }

    if persisted:
        # ClipsCards__User names its pagination variable `cursor`, not `after`
        if cursor:
            variables["cursor"] = cursor
        body = {
            "operationName": "ClipsCards__User",
            "variables": variables,
            "extensions": {
                "persistedQuery": {
                    "version": 1,
                    "sha256Hash": settings.CLIPS_CARDS_QUERY_HASH,
                }
            },
        }
    else:
        if cursor:
            variables["after"] = cursor
        body = {"query": CLIPS_QUERY, "variables": variables}

    logger.debug(f"Fetching {limit} clips for {channel} ({clip_filter.value}) cursor={cursor}")

    payload = await _post(client, body)
    _raise_for_errors(payload)

    normalize = normalize_clips_cards if persisted else normalize_clip_connection
    try:
        return normalize(payload, channel, clip_filter)
    except (AttributeError, TypeError, KeyError) as e:
        raise ClipSourceError(f"Malformed clips response for {channel}: {e}") from e


async def resolve_playback_url(client: httpx.AsyncClient, slug: str) -> Optional[str]:
    """
    Resolves a signed, short-lived video URL for one clip.
    Returns None when the clip is unplayable (missing clip, source, signature or token).
    """
    body = [
        {
            "operationName": "ClipsDownloadButton",
            "variables": {"slug": slug},
            "extensions": {
                "persistedQuery": {
                    "version": 1,
                    "sha256Hash": settings.CLIP_PLAYBACK_QUERY_HASH,
                }
            },
        }
    ]

    payload = await _post(client, body)
    if isinstance(payload, list):
        payload = payload[0] if payload else {}
    _raise_for_errors(payload)

    data = payload.get("data")
    clip_data = data.get("clip") if isinstance(data, dict) else None
    if not isinstance(clip_data, dict):
        logger.warning(f"No clip data found for slug: {slug}")
        return None

    qualities = clip_data.get("videoQualities") or []
    first = qualities[0] if isinstance(qualities, list) and qualities else None
    source_url = first.get("sourceURL") if isinstance(first, dict) else None
    if not source_url:
        logger.warning(f"No video quality found for clip: {slug}")
        return None

    access = clip_data.get("playbackAccessToken")
    if not isinstance(access, dict):
        access = {}
    signature = access.get("signature")
    token = access.get("value")
    if not signature or not token:
        logger.warning(f"Missing access token data for clip: {slug}")
        return None

    encoded = quote(token, safe="!*'()")
    return f"{source_url}?sig={signature}&token={encoded}"
