"""
Merge step for collected shows.

Shows are sorted by start time and then compared with the previously kept
show only. A show is dropped when all of these match:
- title
- first 6 characters of venue
- image URL

This is a cheap adjacent pass, not a global one, so sort order decides
what gets merged.
"""

from typing import Iterable

from .models import DedupeResult, Show

VENUE_PREFIX_LENGTH = 6


def sort_shows(shows: Iterable[Show]) -> list[Show]:
    """Stable sort by dt; a missing start time sorts first."""
    return sorted(shows, key=lambda s: s.dt or 0)


def is_duplicate(previous: Show, show: Show) -> bool:
    """Whether show repeats previous."""
    return (
        previous.title == show.title
        and previous.venue[:VENUE_PREFIX_LENGTH] == show.venue[:VENUE_PREFIX_LENGTH]
        and previous.image == show.image
    )


def deduplicate(shows: Iterable[Show]) -> DedupeResult:
    """
    Sort shows and drop adjacent duplicates.

    Args:
        shows: Shows from every source, in any order

    Returns:
        DedupeResult with the surviving shows in start-time order
    """
    ordered = sort_shows(shows)
    kept: list[Show] = []

    for show in ordered:
        if kept and is_duplicate(kept[-1], show):
            continue
        kept.append(show)

    return DedupeResult(
        shows=kept,
        original_count=len(ordered),
        duplicates_removed=len(ordered) - len(kept),
    )


def tally_categories(shows: Iterable[Show]) -> dict[str, int]:
    """Count shows per category."""
    counts: dict[str, int] = {}
    for show in shows:
        counts[show.category] = counts.get(show.category, 0) + 1
    return counts
