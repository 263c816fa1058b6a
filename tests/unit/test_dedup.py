"""Tests for sorting and adjacent deduplication."""

from servers.gigfeed.dedup import (
    VENUE_PREFIX_LENGTH,
    deduplicate,
    is_duplicate,
    sort_shows,
    tally_categories,
)
from servers.gigfeed.models import Show


class TestSortShows:
    """Tests for sort order."""

    def test_sorts_by_dt(self):
        """Shows come out in start-time order."""
        shows = [Show(title="C", dt=3), Show(title="A", dt=1), Show(title="B", dt=2)]
        assert [s.title for s in sort_shows(shows)] == ["A", "B", "C"]

    def test_missing_dt_sorts_first(self):
        """Shows without a start time lead."""
        shows = [Show(title="Later", dt=5), Show(title="Unknown")]
        assert sort_shows(shows)[0].title == "Unknown"

    def test_stable_for_equal_dt(self):
        """Ties keep their input order."""
        shows = [Show(title="First", dt=1), Show(title="Second", dt=1)]
        assert [s.title for s in sort_shows(shows)] == ["First", "Second"]


class TestIsDuplicate:
    """Tests for the duplicate predicate."""

    def test_venue_prefix_only(self):
        """Venues are compared on their first six characters."""
        a = Show(title="X", venue="Venue1 Main Hall", image="i")
        b = Show(title="X", venue="Venue1 Studio", image="i")
        assert VENUE_PREFIX_LENGTH == 6
        assert is_duplicate(a, b)

    def test_different_image(self):
        """A different image means a different show."""
        a = Show(title="X", venue="Venue1", image="i1")
        b = Show(title="X", venue="Venue1", image="i2")
        assert not is_duplicate(a, b)

    def test_different_title(self):
        """Titles must match exactly."""
        a = Show(title="X", venue="Venue1", image="i")
        b = Show(title="x", venue="Venue1", image="i")
        assert not is_duplicate(a, b)


class TestDeduplicate:
    """Tests for the merge pass."""

    def test_drops_adjacent_duplicate(self):
        """Same show listed by two sources at the same time is kept once."""
        shows = [
            Show(title="X", venue="Venue1 Main Hall", image="i", dt=1, promoter="a"),
            Show(title="X", venue="Venue1 Studio", image="i", dt=1, promoter="b"),
            Show(title="Y", venue="Other", image="j", dt=2, promoter="a"),
        ]
        result = deduplicate(shows)

        assert [s.title for s in result.shows] == ["X", "Y"]
        assert result.shows[0].promoter == "a"
        assert result.original_count == 3
        assert result.duplicates_removed == 1

    def test_non_adjacent_duplicates_survive(self):
        """Only neighbours after sorting are compared."""
        shows = [
            Show(title="X", venue="Venue1", image="i", dt=1),
            Show(title="Y", venue="Venue1", image="j", dt=2),
            Show(title="X", venue="Venue1", image="i", dt=3),
        ]
        result = deduplicate(shows)
        assert len(result.shows) == 3
        assert result.duplicates_removed == 0

    def test_run_of_duplicates(self):
        """Several repeats in a row collapse to one."""
        shows = [Show(title="X", venue="Venue1", image="i", dt=1) for _ in range(4)]
        result = deduplicate(shows)
        assert len(result.shows) == 1
        assert result.duplicates_removed == 3

    def test_empty_input(self):
        """No shows, nothing removed."""
        result = deduplicate([])
        assert result.shows == []
        assert result.original_count == 0


class TestTallyCategories:
    """Tests for category counts."""

    def test_counts(self):
        """Each category is counted."""
        shows = [
            Show(title="Film Club", dt=1),
            Show(title="Gig", dt=2),
            Show(title="Another Gig", dt=3),
        ]
        assert tally_categories(shows) == {"film": 1, "live": 2}

    def test_empty(self):
        """No shows gives no categories."""
        assert tally_categories([]) == {}
