"""
Composite aggregator for InstructorLink.

Combines the four signal scores into one aggregate with fixed weights, keeps
the per-signal breakdown for explanation and picks the best acceptable
candidate per (instructor, provider).
"""

import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from ..config import ScoringWeights
from ..ingestion.records import Provider
from ..normalize.prepared import PreparedCandidate
from .signals import SignalScores

logger = logging.getLogger(__name__)

ACCEPTANCE_FLOOR = 0.65


@dataclass(frozen=True)
class ScoreBreakdown:
    """
    Per-signal explanation of one match decision.

    ``aggregate`` is the weighted sum of ``name``, ``subject``,
    ``uniqueness`` and ``volume``; ``department`` and ``review_courses`` are
    the two raw sub-scores behind ``subject``.
    """

    name: float
    subject: float
    uniqueness: float
    volume: float
    department: float
    review_courses: float
    aggregate: float
    total_responses: int = 0
    confident: bool = False
    weights: ScoringWeights = field(default_factory=ScoringWeights, compare=False, repr=False)

    def contributions(self) -> Dict[str, float]:
        """Weighted contribution of each signal to the aggregate."""
        return {
            signal: weight * getattr(self, signal)
            for signal, weight in self.weights.as_dict().items()
        }

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("weights")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], weights: Optional[ScoringWeights] = None) -> "ScoreBreakdown":
        known = {f.name for f in fields(cls)} - {"weights"}
        values = {key: value for key, value in data.items() if key in known}
        return cls(weights=weights or ScoringWeights(), **values)


@dataclass(frozen=True)
class ScoredCandidate:
    """A provider record scored against one instructor."""

    instructor_id: str
    candidate: PreparedCandidate
    breakdown: ScoreBreakdown

    @property
    def candidate_key(self) -> str:
        return self.candidate.candidate_key

    @property
    def provider(self) -> Provider:
        return self.candidate.record.provider

    @property
    def aggregate(self) -> float:
        return self.breakdown.aggregate


@dataclass(frozen=True)
class NoPlausibleMatch:
    """Outcome of selection when no candidate reaches the acceptance floor."""

    instructor_id: str
    provider: Provider
    candidates_scored: int
    best_aggregate: Optional[float] = None


SelectionResult = Union[ScoredCandidate, NoPlausibleMatch]


class CompositeAggregator:
    """
    Weighted combination of signal scores.

    Weights are fixed for the lifetime of the aggregator; they are validated
    when the ``ScoringWeights`` object is built.
    """

    def __init__(self, weights: Optional[ScoringWeights] = None, config: Optional[Dict] = None):
        """
        Initialize composite aggregator.

        Args:
            weights: Validated signal weights
            config: ``scoring`` configuration section
        """
        config = config or {}
        self.weights = weights or ScoringWeights()
        self.config = config
        thresholds = config.get("thresholds", {})
        self.acceptance_floor = thresholds.get("acceptance_floor", ACCEPTANCE_FLOOR)

        logger.info(f"Initialized CompositeAggregator with weights {self.weights.as_dict()} "
                    f"and acceptance floor {self.acceptance_floor}")

    def aggregate(self, signals: SignalScores, total_responses: int = 0) -> ScoreBreakdown:
        """
        Combine signal scores into a breakdown.

        Args:
            signals: The four signal values and the two subject sub-scores
            total_responses: Rating count of the candidate

        Returns:
            ScoreBreakdown with ``confident`` left False

        Raises:
            ValueError: if a signal lies outside [0, 1]
        """
        values = asdict(signals)
        for signal, value in values.items():
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"Signal '{signal}' out of range: {value}")

        weights = self.weights.as_dict()
        aggregate = sum(weights[signal] * values[signal] for signal in weights)

        return ScoreBreakdown(
            aggregate=min(1.0, max(0.0, aggregate)),
            total_responses=max(0, int(total_responses or 0)),
            weights=self.weights,
            **values,
        )

    def select_best(self, instructor_id: str, provider: Provider,
                    scored: Iterable[ScoredCandidate]) -> SelectionResult:
        """
        Pick the winning candidate for one (instructor, provider).

        Candidates below the acceptance floor are discarded. The highest
        aggregate wins; equal aggregates go to the smallest candidate key, so
        the choice does not depend on input order.

        Returns:
            The winning ScoredCandidate, or NoPlausibleMatch
        """
        scored = list(scored)
        accepted = [s for s in scored if s.aggregate >= self.acceptance_floor]

        if not accepted:
            best = max((s.aggregate for s in scored), default=None)
            logger.debug(f"No plausible {provider.value} match for instructor {instructor_id} "
                         f"({len(scored)} scored, best aggregate {best})")
            return NoPlausibleMatch(instructor_id=instructor_id, provider=provider,
                                    candidates_scored=len(scored), best_aggregate=best)

        return min(accepted, key=lambda s: (-s.aggregate, s.candidate_key))

    def get_scoring_statistics(self, breakdowns: List[ScoreBreakdown]) -> Dict[str, Any]:
        """
        Calculate scoring statistics over a batch of breakdowns.

        Args:
            breakdowns: Breakdowns produced during a run

        Returns:
            Dictionary with scoring statistics
        """
        if not breakdowns:
            return {}

        scores_df = pd.DataFrame([b.to_dict() for b in breakdowns])
        aggregates = scores_df["aggregate"]

        score_stats = {
            "mean_score": float(aggregates.mean()),
            "median_score": float(aggregates.median()),
            "std_score": float(aggregates.std()) if len(aggregates) > 1 else 0.0,
            "min_score": float(aggregates.min()),
            "max_score": float(aggregates.max()),
            "p90_score": float(np.percentile(aggregates, 90)),
        }

        accepted = aggregates >= self.acceptance_floor
        threshold_stats = {
            "accepted_count": int(accepted.sum()),
            "rejected_count": int((~accepted).sum()),
            "accepted_percentage": float(accepted.mean() * 100),
            "confident_count": int(scores_df["confident"].sum()),
        }

        signal_means = {
            signal: float(scores_df[signal].mean())
            for signal in self.weights.as_dict()
        }

        return {
            "total_pairs": int(len(scores_df)),
            "score_statistics": score_stats,
            "threshold_statistics": threshold_stats,
            "signal_means": signal_means,
            "weights": self.weights.as_dict(),
            "acceptance_floor": self.acceptance_floor,
        }


@dataclass(frozen=True)
class InstructorLink:
    """
    The published pairing of one instructor with one provider record.

    Identity across runs is ``(instructor_id, provider, candidate_key)``.
    """

    term: str
    instructor_id: str
    provider: Provider
    candidate_key: str
    legacy_id: Optional[str]
    avg_rating: Optional[float]
    rating_count: int
    breakdown: ScoreBreakdown

    @property
    def identity(self):
        return self.instructor_id, self.provider.value, self.candidate_key

    @property
    def confident(self) -> bool:
        return self.breakdown.confident

    @property
    def has_rating(self) -> bool:
        """Whether the linked record carries a rating the combiner can use."""
        return self.avg_rating is not None and self.rating_count > 0

    @classmethod
    def from_scored(cls, term: str, scored: ScoredCandidate) -> "InstructorLink":
        record = scored.candidate.record
        return cls(
            term=term,
            instructor_id=scored.instructor_id,
            provider=record.provider,
            candidate_key=scored.candidate_key,
            legacy_id=record.legacy_id,
            avg_rating=record.avg_rating,
            rating_count=record.rating_count,
            breakdown=scored.breakdown,
        )
