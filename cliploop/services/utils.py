from typing import Any, Dict
from urllib.parse import parse_qs

from ..models import PlayerConfig

# Query parameter names -> PlayerConfig fields
QUERY_FIELDS = {
    "channelName": "channel_name",
    "days": "days",
    "views": "views",
    "shuffle": "shuffle",
    "volume": "volume",
    "showLogo": "show_logo",
    "showInfo": "show_info",
    "showTimer": "show_timer",
}


def _coerce(value: str) -> Any:
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    try:
        return float(value)
    except ValueError:
        return value


def get_query_param(query: str, name: str, default: Any = None) -> Any:
    """
    Reads one parameter from a query string ("?a=1&b=x" or "a=1&b=x").
    "true"/"false" become bools and numeric strings become floats.
    """
    values = parse_qs(query.lstrip("?"), keep_blank_values=True).get(name)
    if not values:
        return default
    return _coerce(values[0])


def parse_player_config(query: str) -> PlayerConfig:
    """Builds a PlayerConfig from a query string. Raises ValueError if channelName is missing."""
    data: Dict[str, Any] = {}
    for param, field in QUERY_FIELDS.items():
        value = get_query_param(query, param)
        if value is not None:
            data[field] = value

    # Channel names like "123abc" must stay strings even if they look numeric
    raw = parse_qs(query.lstrip("?")).get("channelName")
    if not raw or not raw[0].strip():
        raise ValueError("Missing required parameters: channelName")
    data["channel_name"] = raw[0]
    if "shuffle" in data:
        data["shuffle"] = str(data["shuffle"])

    return PlayerConfig(**data)
