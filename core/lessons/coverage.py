"""Segment coverage engine.

Turns noisy watched-interval reports from the player into a canonical,
sorted, disjoint list of segments and an exact count of unique seconds
watched. Overlapping replays are never double-counted.

Everything here is pure and never raises on malformed input: reversed,
non-finite and out-of-range segments are swapped, dropped or clipped.
"""

import math
from collections.abc import Iterable, Mapping

from .types import Segment


def _is_finite_number(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def merge_segments(segments: Iterable[Segment]) -> list[Segment]:
    """Merge segments into canonical form.

    Sorts by start (ties by end) and sweeps once. A segment whose start is
    <= the running end extends it, so touching segments such as (0, 5) and
    (5, 10) coalesce into (0, 10). Consecutive output segments always have a
    strictly positive gap.
    """
    ordered = sorted((start, end) for start, end in segments)
    if not ordered:
        return []

    merged: list[Segment] = []
    current_start, current_end = ordered[0]

    for next_start, next_end in ordered[1:]:
        if next_start <= current_end:
            current_end = max(current_end, next_end)
            continue

        merged.append((current_start, current_end))
        current_start, current_end = next_start, next_end

    merged.append((current_start, current_end))
    return merged


def _normalize(segments: Iterable[Segment]) -> list[Segment]:
    """Swap reversed bounds and drop non-finite or empty segments."""
    normalized = []
    for start, end in segments:
        if not _is_finite_number(start) or not _is_finite_number(end):
            continue
        lower, upper = min(start, end), max(start, end)
        if upper <= lower:
            continue
        normalized.append((lower, upper))
    return normalized


def merge_segment(existing: Iterable[Segment], segment: Segment) -> list[Segment]:
    """Merge one newly reported segment into an already merged list.

    Same result as re-merging the whole list. Reversed bounds are swapped and
    empty segments dropped, so the result is canonical even when the stored
    list was not.
    """
    return merge_segments(_normalize([*existing, segment]))


def sum_segments(segments: Iterable[Segment]) -> float:
    """Total length of a canonical segment list."""
    return sum(end - start for start, end in segments)


def sanitize_segments(segments: Iterable[Segment], duration_sec: float) -> list[Segment]:
    """Swap, clip to [0, duration_sec] and drop segments that collapse."""
    if not _is_finite_number(duration_sec) or duration_sec <= 0:
        return []

    sanitized = []
    for lower, upper in _normalize(segments):
        start = _clamp(lower, 0, duration_sec)
        end = _clamp(upper, 0, duration_sec)
        if end <= start:
            continue
        sanitized.append((start, end))
    return sanitized


def coerce_segments(value) -> list[Segment]:
    """Decode segments from stored JSON or a client payload.

    Accepts [start, end] pairs and mappings keyed start/end, s/e or "0"/"1".
    Entries without two finite numbers are dropped.
    """
    if not isinstance(value, (list, tuple)):
        return []

    segments: list[Segment] = []
    for entry in value:
        if isinstance(entry, (list, tuple)):
            if len(entry) < 2:
                continue
            start, end = entry[0], entry[1]
        elif isinstance(entry, Mapping):
            start = next(
                (entry[key] for key in ("start", "s", "0") if entry.get(key) is not None),
                None,
            )
            end = next(
                (entry[key] for key in ("end", "e", "1") if entry.get(key) is not None),
                None,
            )
        else:
            continue

        if _is_finite_number(start) and _is_finite_number(end):
            segments.append((float(start), float(end)))

    return segments


def compute_unique_seconds(segments: Iterable[Segment], duration_sec: float) -> float:
    """Unique seconds watched, always within [0, duration_sec].

    Returns 0 for a non-positive or non-finite duration.
    """
    if not _is_finite_number(duration_sec) or duration_sec <= 0:
        return 0

    sanitized = sanitize_segments(segments, duration_sec)
    if not sanitized:
        return 0

    total = sum_segments(merge_segments(sanitized))
    # Guard against floating point overrun
    return min(duration_sec, total)


def get_completion_ratio(
    *, duration_sec: float, unique_seconds: float, threshold_pct: float
) -> float:
    """Fraction of the required watch time reached, in [0, 1]."""
    if not _is_finite_number(duration_sec) or duration_sec <= 0:
        return 0

    required_pct = threshold_pct if _is_finite_number(threshold_pct) else 0
    required_seconds = duration_sec * max(required_pct, 0)
    if required_seconds <= 0:
        return 0

    watched = unique_seconds if _is_finite_number(unique_seconds) else 0
    watched = _clamp(watched, 0, duration_sec)
    return _clamp(watched / required_seconds, 0, 1)
