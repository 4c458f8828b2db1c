"""
Adapters from legacy interest-profile shapes to the strict InterestProfile.

Each stored or imported shape has exactly one named adapter; callers pick the
adapter by shape name instead of probing the payload.
"""

from typing import Any, Callable, Iterable

from newslens.core.utils import clamp01
from newslens.models.domain import InterestProfile, InterestTopic

MAX_TOPICS = 24
MAX_SYNONYMS = 8
MAX_TAG_LENGTH = 80
DEFAULT_WEIGHT = 0.6


def _clean(value: Any) -> str:
    return str(value if value is not None else "").strip().lower()[:MAX_TAG_LENGTH]


def _synonyms(values: Iterable[Any] | None) -> list[str]:
    out: list[str] = []
    for v in values or []:
        s = _clean(v)
        if s and s not in out:
            out.append(s)
        if len(out) >= MAX_SYNONYMS:
            break
    return out


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _build(entries: Iterable[tuple[Any, Any, Iterable[Any] | None]]) -> InterestProfile:
    """Dedup by tag (first wins) and cap the topic count."""
    topics: list[InterestTopic] = []
    seen: set[str] = set()
    for tag, weight, synonyms in entries:
        tag = _clean(tag)
        if not tag or tag in seen:
            continue
        seen.add(tag)
        topics.append(
            InterestTopic(
                tag=tag,
                weight=clamp01(weight, default=DEFAULT_WEIGHT),
                synonyms=_synonyms(synonyms),
            )
        )
        if len(topics) >= MAX_TOPICS:
            break
    return InterestProfile(topics=topics)


def from_topic_objects(payload: dict) -> InterestProfile:
    """`{"topics": [{"tag", "weight", "synonyms"}, ...]}`"""
    rows = _list(payload.get("topics"))
    return _build(
        (row.get("tag"), row.get("weight"), row.get("synonyms"))
        for row in rows
        if isinstance(row, dict)
    )


def from_tag_list(payload: dict) -> InterestProfile:
    """`{"tags": ["a", "b"]}`"""
    return _build((tag, None, None) for tag in _list(payload.get("tags")) if isinstance(tag, str))


def from_interest_names(payload: dict) -> InterestProfile:
    """`{"interests": [{"name", "score", "aliases"}, ...]}`"""
    rows = _list(payload.get("interests"))
    return _build(
        (row.get("name"), row.get("score"), row.get("aliases"))
        for row in rows
        if isinstance(row, dict)
    )


def from_plain_strings(payload: list) -> InterestProfile:
    """`["a", "b"]`"""
    return _build((tag, None, None) for tag in _list(payload) if isinstance(tag, str))


LEGACY_PROFILE_ADAPTERS: dict[str, Callable[[Any], InterestProfile]] = {
    "topic_objects": from_topic_objects,
    "tag_list": from_tag_list,
    "interest_names": from_interest_names,
    "plain_strings": from_plain_strings,
}


def adapt_legacy_profile(shape: str, payload: Any) -> InterestProfile:
    """Convert `payload` using the adapter registered for `shape`."""
    try:
        adapter = LEGACY_PROFILE_ADAPTERS[shape]
    except KeyError:
        raise ValueError(
            f"Unknown profile shape {shape!r}; expected one of {sorted(LEGACY_PROFILE_ADAPTERS)}"
        ) from None
    expected = list if shape == "plain_strings" else dict
    if not isinstance(payload, expected):
        raise ValueError(f"Profile shape {shape!r} expects a JSON {'array' if expected is list else 'object'}")
    return adapter(payload)
