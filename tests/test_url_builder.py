"""Request locator construction tests."""

import random
from urllib.parse import parse_qsl, urlsplit

import pytest

from hibiscus.services.generation.url_builder import (
    DEFAULT_API_BASE,
    build_locator,
    parse_int,
    with_retry_marker,
)


def query_pairs(locator: str) -> list[tuple[str, str]]:
    return parse_qsl(urlsplit(locator).query, keep_blank_values=True)


def without_seed(locator: str) -> list[tuple[str, str]]:
    return [(k, v) for k, v in query_pairs(locator) if k != "seed"]


def test_explicit_seed_is_deterministic():
    params = {"model": "flux", "width": 1024, "height": 768, "seed": 42}

    first = build_locator("a red fox", params)
    second = build_locator("a red fox", params)

    assert first == second
    assert first == (
        f"{DEFAULT_API_BASE}/image/a%20red%20fox?model=flux&width=1024&height=768&seed=42"
    )


@pytest.mark.parametrize("seed", [None, -1, "-5", "random"])
def test_missing_or_negative_seed_is_randomized(seed):
    rng = random.Random(99)
    params = {"model": "flux", "seed": seed}

    first = build_locator("a red fox", params, rng=rng)
    second = build_locator("a red fox", params, rng=rng)

    assert first != second
    assert without_seed(first) == without_seed(second)
    assert int(dict(query_pairs(first))["seed"]) >= 0


def test_seed_is_added_when_absent():
    locator = build_locator("a red fox", {"model": "flux"}, rng=random.Random(3))

    assert "seed" in dict(query_pairs(locator))


@pytest.mark.parametrize(
    "params",
    [
        {"image": "https://example.com/a.png", "model": "kontext", "seed": 5},
        {"model": "kontext", "image": "https://example.com/a.png", "seed": 5},
        {"seed": 5, "model": "kontext", "image": "https://example.com/a.png"},
    ],
)
def test_image_parameter_is_always_last(params):
    locator = build_locator("make it night", params)

    key, value = query_pairs(locator)[-1]
    assert key == "image"
    assert value == "https://example.com/a.png"


def test_multiple_reference_images_are_comma_joined():
    locator = build_locator(
        "blend these", {"seed": 1, "image": ["https://x/1.png", "https://x/2.png"]}
    )

    assert query_pairs(locator)[-1] == ("image", "https://x/1.png,https://x/2.png")


@pytest.mark.parametrize(
    "width, expected",
    [(1024, "1024"), ("768px", "768"), ("512.9", "512"), (640.0, "640")],
)
def test_integer_params_are_coerced(width, expected):
    locator = build_locator("a red fox", {"width": width, "seed": 1})

    assert dict(query_pairs(locator))["width"] == expected


@pytest.mark.parametrize("width", ["abc", float("nan"), True])
def test_non_numeric_integer_params_are_dropped(width):
    locator = build_locator("a red fox", {"width": width, "height": 512, "seed": 1})

    pairs = dict(query_pairs(locator))
    assert "width" not in pairs
    assert pairs["height"] == "512"


def test_empty_values_are_skipped_and_booleans_lowercased():
    locator = build_locator(
        "a red fox", {"model": "", "negative": None, "safe": True, "enhance": False, "seed": 1}
    )

    assert query_pairs(locator) == [("safe", "true"), ("enhance", "false"), ("seed", "1")]


def test_prompt_is_percent_encoded_in_path():
    locator = build_locator("cats & dogs? 100%", {"seed": 1})

    assert urlsplit(locator).path == "/image/cats%20%26%20dogs%3F%20100%25"


def test_custom_base_url_trailing_slash_is_stripped():
    locator = build_locator("fox", {"seed": 1}, base_url="https://api.test/")

    assert locator == "https://api.test/image/fox?seed=1"


def test_retry_marker_stays_before_image():
    locator = build_locator("fox", {"seed": 1, "image": "https://x/a.png"})

    marked = with_retry_marker(locator, "1700000000001")
    remarked = with_retry_marker(marked, "1700000000002")

    keys = [k for k, _ in query_pairs(remarked)]
    assert keys == ["seed", "_retry", "image"]
    assert dict(query_pairs(remarked))["_retry"] == "1700000000002"


def test_retry_marker_appended_without_image():
    marked = with_retry_marker(build_locator("fox", {"seed": 1}), "abc")

    assert query_pairs(marked)[-1] == ("_retry", "abc")


@pytest.mark.parametrize(
    "value, expected",
    [("12px", 12), ("7.9", 7), (" 42", 42), ("abc", None), (True, None), (None, None), (3.0, 3)],
)
def test_parse_int(value, expected):
    assert parse_int(value) == expected
