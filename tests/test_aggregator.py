"""
Unit tests for weights, the composite aggregator and confidence.
"""

import json

import pytest
import sys
from pathlib import Path

# Add package root to path
sys.path.append(str(Path(__file__).parent.parent))

from instructor_link.config import ScoringWeights, get_default_config, merge_configs, validate_config
from instructor_link.errors import WeightInvariantViolation
from instructor_link.ingestion.records import ExternalRatingRecord, Provider
from instructor_link.match.aggregator import (
    CompositeAggregator, NoPlausibleMatch, ScoreBreakdown, ScoredCandidate
)
from instructor_link.match.confidence import ConfidenceClassifier
from instructor_link.match.signals import SignalScores
from instructor_link.normalize.prepared import RecordPreparer

PREPARER = RecordPreparer()


def scored(aggregator, legacy_id, signals, provider=Provider.RMP, count=10):
    candidate = PREPARER.prepare_candidate(ExternalRatingRecord(
        provider=provider, raw_name="Jane Doe", department="CS",
        avg_rating=4.0, rating_count=count, legacy_id=legacy_id,
    ))
    return ScoredCandidate("1", candidate, aggregator.aggregate(signals, count))


class TestScoringWeights:
    """Test cases for the weight invariant."""

    def test_default_weights(self):
        """Test defaults sum to exactly 1.0."""
        weights = ScoringWeights()
        assert weights.as_dict() == {"name": 0.50, "subject": 0.30, "uniqueness": 0.15, "volume": 0.05}

    def test_sum_violation(self):
        """Test weights that do not sum to 1.0 fail fast."""
        with pytest.raises(WeightInvariantViolation):
            ScoringWeights(name=0.5, subject=0.3, uniqueness=0.25, volume=0.05)

    def test_negative_weight(self):
        """Test negative weights are rejected."""
        with pytest.raises(WeightInvariantViolation):
            ScoringWeights(name=1.1, subject=0.0, uniqueness=-0.1, volume=0.0)

    def test_unknown_weight(self):
        """Test unknown weight names are rejected."""
        with pytest.raises(WeightInvariantViolation):
            ScoringWeights.from_config({"weights": {"name": 0.5, "subject": 0.3,
                                                    "uniqueness": 0.15, "popularity": 0.05}})

    def test_validate_config(self):
        """Test configuration validation checks weights."""
        assert validate_config(get_default_config())

        config = merge_configs(get_default_config(), {"scoring": {"weights": {"volume": 0.10}}})
        with pytest.raises(WeightInvariantViolation):
            validate_config(config)

    def test_validate_thresholds(self):
        """Test confidence must be stricter than the acceptance floor."""
        config = merge_configs(get_default_config(),
                               {"scoring": {"thresholds": {"confidence": 0.5}}})
        with pytest.raises(ValueError):
            validate_config(config)

    def test_validate_interval_settings(self):
        """Test the credible interval settings must be positive."""
        config = merge_configs(get_default_config(), {"combine": {"noise_variance": {"bluebook": 0}}})
        with pytest.raises(ValueError):
            validate_config(config)


class TestCompositeAggregator:
    """Test cases for aggregation and selection."""

    def setup_method(self):
        """Setup test fixtures."""
        self.aggregator = CompositeAggregator(ScoringWeights(), {"thresholds": {"acceptance_floor": 0.65}})

    def test_aggregate_is_weighted_sum(self):
        """Test aggregate equals the weighted sum of signals."""
        breakdown = self.aggregator.aggregate(SignalScores(0.85, 0.0, 1.0, 0.5, 0.0, 0.0), 2)

        assert breakdown.aggregate == pytest.approx(0.5 * 0.85 + 0.15 * 1.0 + 0.05 * 0.5)
        assert breakdown.total_responses == 2
        assert breakdown.confident is False

    def test_perfect_match(self):
        """Test all-ones signals aggregate to 1.0."""
        breakdown = self.aggregator.aggregate(SignalScores(1.0, 1.0, 1.0, 1.0, 1.0, 0.0))
        assert breakdown.aggregate == pytest.approx(1.0)
        assert breakdown.aggregate <= 1.0

    def test_contributions(self):
        """Test contributions are bounded by their weights."""
        breakdown = self.aggregator.aggregate(SignalScores(0.7, 1.0, 0.5, 0.3, 1.0, 0.0))
        contributions = breakdown.contributions()

        assert sum(contributions.values()) == pytest.approx(breakdown.aggregate)
        for signal, weight in ScoringWeights().as_dict().items():
            assert 0.0 <= contributions[signal] <= weight

    def test_out_of_range_signal(self):
        """Test signals outside [0, 1] are rejected."""
        with pytest.raises(ValueError):
            self.aggregator.aggregate(SignalScores(1.2, 0.0, 0.0, 0.0))

    def test_breakdown_serialization(self):
        """Test to_dict output is JSON serializable and reloadable."""
        breakdown = self.aggregator.aggregate(SignalScores(1.0, 0.7, 0.5, 0.2, 0.7, 0.0), 3)
        data = breakdown.to_dict()

        assert set(data) == {"name", "subject", "uniqueness", "volume", "department",
                             "review_courses", "aggregate", "total_responses", "confident"}
        assert json.loads(json.dumps(data)) == data
        assert ScoreBreakdown.from_dict(data) == breakdown

    def test_select_best_highest_aggregate(self):
        """Test the highest aggregate wins."""
        low = scored(self.aggregator, "1", SignalScores(0.85, 1.0, 1.0, 1.0, 1.0, 0.0))
        high = scored(self.aggregator, "2", SignalScores(1.0, 1.0, 1.0, 1.0, 1.0, 0.0))

        assert self.aggregator.select_best("1", Provider.RMP, [low, high]).candidate_key == "rmp:2"

    def test_select_best_tie_break(self):
        """Test ties go to the smallest candidate key regardless of order."""
        signals = SignalScores(1.0, 1.0, 1.0, 1.0, 1.0, 0.0)
        first = scored(self.aggregator, "b", signals)
        second = scored(self.aggregator, "a", signals)

        assert self.aggregator.select_best("1", Provider.RMP, [first, second]).candidate_key == "rmp:a"
        assert self.aggregator.select_best("1", Provider.RMP, [second, first]).candidate_key == "rmp:a"

    def test_below_floor(self):
        """Test candidates below the floor give NoPlausibleMatch."""
        weak = scored(self.aggregator, "1", SignalScores(0.85, 0.0, 1.0, 0.45, 0.0, 0.0), count=2)

        result = self.aggregator.select_best("1", Provider.RMP, [weak])

        assert isinstance(result, NoPlausibleMatch)
        assert result.candidates_scored == 1
        assert result.best_aggregate == pytest.approx(weak.aggregate)

    def test_no_candidates(self):
        """Test an empty candidate list."""
        result = self.aggregator.select_best("1", Provider.BLUEBOOK, [])

        assert isinstance(result, NoPlausibleMatch)
        assert result.best_aggregate is None

    def test_get_scoring_statistics(self):
        """Test scoring statistics calculation."""
        breakdowns = [
            self.aggregator.aggregate(SignalScores(1.0, 1.0, 1.0, 1.0)),
            self.aggregator.aggregate(SignalScores(0.1, 0.0, 1.0, 0.0)),
        ]

        stats = self.aggregator.get_scoring_statistics(breakdowns)

        assert stats["total_pairs"] == 2
        assert stats["threshold_statistics"]["accepted_count"] == 1
        assert stats["threshold_statistics"]["rejected_count"] == 1
        assert stats["score_statistics"]["max_score"] == pytest.approx(1.0)
        assert self.aggregator.get_scoring_statistics([]) == {}


class TestConfidenceClassifier:
    """Test cases for the confidence flag."""

    def setup_method(self):
        """Setup test fixtures."""
        self.classifier = ConfidenceClassifier(get_default_config())
        self.aggregator = CompositeAggregator()

    def breakdown(self, aggregate_signals):
        return self.aggregator.aggregate(aggregate_signals)

    def test_confident(self):
        """Test strong match with enough ratings."""
        breakdown = self.breakdown(SignalScores(1.0, 1.0, 1.0, 1.0))
        assert self.classifier.classify(breakdown, 50, Provider.RMP)

    def test_provider_minimums(self):
        """Test per-provider minimum rating counts."""
        breakdown = self.breakdown(SignalScores(1.0, 1.0, 1.0, 1.0))

        assert not self.classifier.classify(breakdown, 4, Provider.RMP)
        assert self.classifier.classify(breakdown, 5, Provider.RMP)
        assert not self.classifier.classify(breakdown, 9, Provider.BLUEBOOK)
        assert self.classifier.classify(breakdown, 10, Provider.BLUEBOOK)

    def test_weak_aggregate(self):
        """Test accepted but weak matches are not confident."""
        breakdown = self.breakdown(SignalScores(0.7, 0.7, 1.0, 1.0))

        assert 0.65 <= breakdown.aggregate < 0.80
        assert not self.classifier.classify(breakdown, 500, Provider.RMP)

    def test_monotone_in_count(self):
        """Test more ratings never remove confidence."""
        breakdown = self.breakdown(SignalScores(1.0, 1.0, 1.0, 1.0))
        flags = [self.classifier.classify(breakdown, n, Provider.BLUEBOOK) for n in range(0, 30)]

        assert flags == sorted(flags)


if __name__ == "__main__":
    pytest.main([__file__])
