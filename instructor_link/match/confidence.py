"""
Confidence classifier for InstructorLink.

Confidence is a display flag, separate from acceptance: a link can be
published and still not be confident.
"""

import logging
from typing import Dict, Optional

from ..ingestion.records import Provider
from .aggregator import ScoreBreakdown

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.80

# Minimum rating counts before a provider's average is considered reliable.
MIN_RATINGS = {
    Provider.RMP: 5,
    Provider.BLUEBOOK: 10,
}


class ConfidenceClassifier:
    """Flags links backed by enough ratings and a strong match."""

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize confidence classifier.

        Args:
            config: Full configuration; reads ``confidence.min_ratings`` and
                ``scoring.thresholds.confidence``
        """
        config = config or {}
        configured = config.get("confidence", {}).get("min_ratings", {})
        self.min_ratings = {
            provider: configured.get(provider.value, default)
            for provider, default in MIN_RATINGS.items()
        }
        self.threshold = (config.get("scoring", {})
                          .get("thresholds", {})
                          .get("confidence", CONFIDENCE_THRESHOLD))

        logger.info(f"Initialized ConfidenceClassifier with threshold {self.threshold}")

    def classify(self, breakdown: ScoreBreakdown, candidate_volume: int, provider: Provider) -> bool:
        """
        Decide whether a link is confident.

        Args:
            breakdown: Score breakdown of the link
            candidate_volume: Rating count of the linked record
            provider: Provider of the linked record

        Returns:
            True iff the volume reaches the provider minimum and the aggregate
            reaches the confidence threshold
        """
        enough_ratings = (candidate_volume or 0) >= self.min_ratings[provider]
        return enough_ratings and breakdown.aggregate >= self.threshold
