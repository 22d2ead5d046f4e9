"""Request locator construction for the generation endpoint.

The locator is ``<base>/image/<prompt>?<params>`` and is directly dispatchable.
The upstream parser requires the ``image`` reference parameter to be the
final query parameter, so it is withheld from normal iteration and appended
last with its own encoding.
"""

import random
import re
from typing import Any, Mapping, Optional
from urllib.parse import quote, urlencode

DEFAULT_API_BASE = "https://gen.pollinations.ai"
IMAGE_PARAM = "image"
SEED_PARAM = "seed"
RETRY_MARKER_PARAM = "_retry"
INTEGER_PARAMS = ("width", "height", "duration")
RANDOM_SEED_MAX = 2147483647

# encodeURIComponent leaves these unescaped; upstream caches key on that form
_PATH_SAFE = "!~*'()"
_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def parse_int(value: Any) -> Optional[int]:
    """Lenient integer parse: leading digits win, anything else is None.

    "12px" → 12, "7.9" → 7, "abc" → None, True → None.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return int(value)
    match = _LEADING_INT_RE.match(str(value))
    return int(match.group(1)) if match else None


def random_seed(rng: Optional[random.Random] = None) -> int:
    return (rng or random).randrange(RANDOM_SEED_MAX)


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def coerce_seed(value: Any, rng: Optional[random.Random] = None) -> int:
    """Explicit non-negative seeds pass through; anything else gets a fresh random seed."""
    seed = parse_int(value)
    if seed is None or seed < 0:
        return random_seed(rng)
    return seed


def build_locator(
    prompt: str,
    params: Mapping[str, Any],
    base_url: str = DEFAULT_API_BASE,
    rng: Optional[random.Random] = None,
) -> str:
    """Build the generation URL for a prompt and parameter set.

    Args:
        prompt: Text prompt, percent-encoded into the path
        params: Query parameters in the order they should appear. Empty values
            are skipped; width/height/duration are coerced to integers and
            dropped when not numeric.
        base_url: API host
        rng: Random source for seed substitution (tests pass a seeded one)

    Returns:
        Complete request URL with ``image`` (if given) as the last parameter
    """
    query: list[tuple[str, str]] = []
    image_value: Any = None
    seed_seen = False

    for key, value in params.items():
        if _is_empty(value):
            continue
        if key == IMAGE_PARAM:
            image_value = value
            continue
        if key == SEED_PARAM:
            seed_seen = True
            query.append((key, str(coerce_seed(value, rng))))
            continue
        if key in INTEGER_PARAMS:
            number = parse_int(value)
            if number is None:
                continue
            query.append((key, str(number)))
            continue
        query.append((key, _format_value(value)))

    if not seed_seen:
        query.append((SEED_PARAM, str(random_seed(rng))))

    locator = f"{base_url.rstrip('/')}/image/{quote(prompt, safe=_PATH_SAFE)}"
    if query:
        locator += "?" + urlencode(query, safe="*")

    if not _is_empty(image_value):
        if isinstance(image_value, (list, tuple)):
            image_value = ",".join(str(v) for v in image_value)
        separator = "&" if query else "?"
        locator += f"{separator}{IMAGE_PARAM}={quote(str(image_value), safe=_PATH_SAFE)}"

    return locator


def with_retry_marker(locator: str, marker: str) -> str:
    """Return the locator with a cache-busting ``_retry`` parameter.

    Any previous marker is replaced, and the marker is inserted before a
    trailing ``image`` parameter so that one stays last.
    """
    base, _, query = locator.partition("?")
    parts = [p for p in query.split("&") if p and not p.startswith(f"{RETRY_MARKER_PARAM}=")]
    marker_part = f"{RETRY_MARKER_PARAM}={quote(marker, safe='')}"

    if parts and parts[-1].startswith(f"{IMAGE_PARAM}="):
        parts.insert(len(parts) - 1, marker_part)
    else:
        parts.append(marker_part)
    return f"{base}?{'&'.join(parts)}"
