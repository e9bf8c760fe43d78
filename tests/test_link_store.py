"""
Unit tests for the link store.
"""

import shutil
import sqlite3
from dataclasses import replace

import pytest
import sys
from pathlib import Path

# Add package root to path
sys.path.append(str(Path(__file__).parent.parent))

from instructor_link.errors import PublishFailure
from instructor_link.ingestion.records import Provider
from instructor_link.match.aggregator import CompositeAggregator, InstructorLink
from instructor_link.match.signals import SignalScores
from instructor_link.store.link_store import LinkStore

AGGREGATOR = CompositeAggregator()


def make_link(instructor_id, provider=Provider.RMP, legacy_id="100", term="2024-fall",
              rating=4.2, count=50):
    breakdown = replace(AGGREGATOR.aggregate(SignalScores(1.0, 0.7, 0.5, 1.0, 0.7, 0.0), count),
                        confident=True)
    return InstructorLink(
        term=term,
        instructor_id=instructor_id,
        provider=provider,
        candidate_key=f"{provider.value}:{legacy_id}",
        legacy_id=legacy_id,
        avg_rating=rating,
        rating_count=count,
        breakdown=breakdown,
    )


class TestLinkStore:
    """Test cases for publishing and reading links."""

    def setup_method(self):
        """Setup test fixtures."""
        self.store = LinkStore(":memory:")

    def teardown_method(self):
        self.store.close()

    def test_publish_and_read(self):
        """Test published links read back unchanged."""
        links = [make_link("1"), make_link("1", Provider.BLUEBOOK, "200", rating=4.0, count=30)]

        result = self.store.publish("2024-fall", links)

        assert result.links_created == 2
        assert result.links_dropped == 0
        assert result.links_total == 2
        assert self.store.get_links("2024-fall") == sorted(links, key=lambda l: (l.instructor_id, l.provider.value))

    def test_breakdown_round_trip(self):
        """Test the stored breakdown is the one that was published."""
        link = make_link("1")
        self.store.publish("2024-fall", [link])

        stored = self.store.get_link("1", Provider.RMP)

        assert stored.breakdown == link.breakdown
        assert stored.confident is True
        assert self.store.get_link("1", Provider.BLUEBOOK) is None

    def test_republish_diff(self):
        """Test created and dropped counts against the previous run."""
        self.store.publish("2024-fall", [make_link("1"), make_link("2", legacy_id="101")])

        same = self.store.publish("2024-fall", [make_link("1"), make_link("2", legacy_id="101")])
        assert (same.links_created, same.links_dropped) == (0, 0)

        changed = self.store.publish("2024-fall", [make_link("1"), make_link("2", legacy_id="102")])
        assert (changed.links_created, changed.links_dropped) == (1, 1)
        assert [l.candidate_key for l in self.store.get_links("2024-fall")] == ["rmp:100", "rmp:102"]

    def test_empty_publish(self):
        """Test publishing nothing clears the term."""
        self.store.publish("2024-fall", [make_link("1")])

        result = self.store.publish("2024-fall", [])

        assert result.links_dropped == 1
        assert self.store.get_links("2024-fall") == []
        assert self.store.latest_term() == "2024-fall"

    def test_terms_are_independent(self):
        """Test a publish only replaces its own term."""
        self.store.publish("2024-fall", [make_link("1")])
        self.store.publish("2025-spring", [make_link("2", term="2025-spring")])

        assert len(self.store.get_links("2024-fall")) == 1
        assert self.store.latest_term() == "2025-spring"
        assert self.store.get_links_for_instructor("1") == []
        assert len(self.store.get_links_for_instructor("1", "2024-fall")) == 1

    def test_no_runs(self):
        """Test reads before any publish."""
        assert self.store.latest_term() is None
        assert self.store.get_links_for_instructor("1") == []

    def test_term_mismatch(self):
        """Test links from another term are rejected."""
        with pytest.raises(ValueError):
            self.store.publish("2024-fall", [make_link("1", term="2025-spring")])

    def test_publish_failure_keeps_previous_links(self, monkeypatch):
        """Test a failed publish leaves the previous link set in place."""
        self.store.publish("2024-fall", [make_link("1")])

        def failing_write(cursor, term, links, published_at):
            cursor.execute("DELETE FROM instructor_links WHERE term = ?", [term])
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(self.store, "_write_links", failing_write)

        with pytest.raises(PublishFailure):
            self.store.publish("2024-fall", [make_link("2", legacy_id="101")])

        assert [l.instructor_id for l in self.store.get_links("2024-fall")] == ["1"]
        assert len(self.store.get_run_history()) == 1

    def test_run_history(self):
        """Test run rows record counts and run metrics."""
        self.store.publish("2024-fall", [make_link("1")],
                           {"run_duration_ms": 12, "instructors_processed": 3, "instructors_failed": 1})

        history = self.store.get_run_history("2024-fall")

        assert len(history) == 1
        row = history.iloc[0]
        assert row["links_total"] == 1
        assert row["instructors_processed"] == 3
        assert row["instructors_failed"] == 1
        assert self.store.get_run_history("2025-spring").empty

    def test_file_database(self, tmp_path):
        """Test a file database persists across store instances."""
        db_path = str(tmp_path / "links" / "links.db")
        LinkStore(db_path).publish("2024-fall", [make_link("1")])

        reopened = LinkStore(db_path)

        assert reopened.latest_term() == "2024-fall"
        assert reopened.get_link("1", Provider.RMP).candidate_key == "rmp:100"

    def test_unreachable_database(self, tmp_path):
        """Test a database that cannot be opened surfaces as PublishFailure."""
        store = LinkStore(str(tmp_path / "sub" / "links.db"))
        shutil.rmtree(tmp_path / "sub")

        with pytest.raises(PublishFailure):
            store.publish("2024-fall", [make_link("1")])


if __name__ == "__main__":
    pytest.main([__file__])
