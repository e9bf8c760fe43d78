"""
Rating combiner for InstructorLink.

Derives the displayed composite rating of an instructor from the provider
links of the latest run. Composite ratings are never stored; they are
recomputed from the active links on request.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from ..ingestion.records import Provider
from ..match.aggregator import InstructorLink

logger = logging.getLogger(__name__)

# BlueBook survey averages map onto the RMP 1-5 scale through a linear fit.
BLUEBOOK_ALPHA = -2.58
BLUEBOOK_BETA = 1.45
RATING_MIN = 1.0
RATING_MAX = 5.0

# Blend weight per link is sqrt(rating_count) * factor.
N_FACTORS = {
    Provider.RMP: 2.0,
    Provider.BLUEBOOK: 1.0,
}

# Normal prior over an instructor's true quality on the RMP scale, and the
# per-rating noise of each provider. Used for the credible interval only.
PRIOR_MEAN = 3.775
PRIOR_VARIANCE = 1.045
NOISE_VARIANCES = {
    Provider.RMP: 1.5,
    Provider.BLUEBOOK: 1.036,
}

# z for a two-sided 80% interval
CI_Z = 1.2816


class RatingMode(str, Enum):
    RMP_ONLY = "rmp_only"
    BB_ONLY = "bb_only"
    BOTH = "both"


@dataclass(frozen=True)
class ProviderContribution:
    """How one provider link entered the composite rating."""

    provider: Provider
    rating: float
    normalized_rating: float
    count: int
    weight: float
    confident: bool


@dataclass(frozen=True)
class CompositeRating:
    """
    Displayed rating of one instructor.

    ``ci_lower`` and ``ci_upper`` bound the posterior estimate of the
    instructor's quality; thinly rated instructors are pulled toward the
    prior mean and get wide intervals. ``sort_score`` is the lower bound,
    so well-evidenced ratings rank above a few enthusiastic ones.
    """

    score: float
    total_responses: int
    mode: RatingMode
    confident: bool
    providers: Tuple[ProviderContribution, ...]
    ci_lower: float
    ci_upper: float

    @property
    def sort_score(self) -> float:
        return self.ci_lower

    def to_dict(self) -> Dict:
        return {
            "score": self.score,
            "total_responses": self.total_responses,
            "mode": self.mode.value,
            "confident": self.confident,
            "ci_lower": self.ci_lower,
            "ci_upper": self.ci_upper,
            "sort_score": self.sort_score,
            "providers": [
                {
                    "provider": p.provider.value,
                    "rating": p.rating,
                    "normalized_rating": p.normalized_rating,
                    "count": p.count,
                    "weight": p.weight,
                    "confident": p.confident,
                }
                for p in self.providers
            ],
        }


class RatingCombiner:
    """
    Combines up to one link per provider into a composite rating.

    With a single usable link its rating is shown verbatim. With both
    providers the BlueBook average is calibrated onto the RMP scale and the
    two are averaged with weights ``sqrt(count) * factor``. Either way the
    credible interval comes from a normal-normal posterior over the
    calibrated ratings.
    """

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize rating combiner.

        Args:
            config: ``combine`` configuration section
        """
        config = config or {}
        calibration = config.get("bluebook_calibration", {})
        self.alpha = calibration.get("alpha", BLUEBOOK_ALPHA)
        self.beta = calibration.get("beta", BLUEBOOK_BETA)
        n_factors = config.get("n_factors", {})
        self.n_factors = {
            provider: n_factors.get(provider.value, default)
            for provider, default in N_FACTORS.items()
        }

        prior = config.get("prior", {})
        self.prior_mean = prior.get("mean", PRIOR_MEAN)
        self.prior_variance = prior.get("variance", PRIOR_VARIANCE)
        noise_variances = config.get("noise_variance", {})
        self.noise_variances = {
            provider: noise_variances.get(provider.value, default)
            for provider, default in NOISE_VARIANCES.items()
        }
        self.ci_z = config.get("ci_z", CI_Z)

        logger.info("Initialized RatingCombiner")

    def normalize_rating(self, provider: Provider, rating: float) -> float:
        """Map a provider average onto the RMP scale."""
        if provider == Provider.BLUEBOOK:
            return float(np.clip(self.alpha + self.beta * rating, RATING_MIN, RATING_MAX))
        return float(rating)

    def blend_weight(self, provider: Provider, count: int) -> float:
        return float(np.sqrt(count) * self.n_factors[provider])

    def credible_interval(self, contributions: Iterable[ProviderContribution]) -> Tuple[float, float]:
        """
        Posterior interval for an instructor's quality on the RMP scale.

        Each contribution adds precision ``weight / noise_variance`` around its
        calibrated rating, starting from the prior.

        Args:
            contributions: Usable provider contributions

        Returns:
            Tuple of (lower, upper), clamped to the 1-5 scale
        """
        precision = 1.0 / self.prior_variance
        weighted_sum = self.prior_mean / self.prior_variance

        for contribution in contributions:
            provider_precision = contribution.weight / self.noise_variances[contribution.provider]
            precision += provider_precision
            weighted_sum += contribution.normalized_rating * provider_precision

        mean = weighted_sum / precision
        margin = self.ci_z * np.sqrt(1.0 / precision)
        return float(max(RATING_MIN, mean - margin)), float(min(RATING_MAX, mean + margin))

    def combine(self, links: Iterable[InstructorLink]) -> Optional[CompositeRating]:
        """
        Combine an instructor's active links.

        Args:
            links: Links of one instructor, at most one per provider

        Returns:
            CompositeRating, or None when no link carries a usable rating
        """
        usable: Dict[Provider, InstructorLink] = {}
        for link in links:
            if not link.has_rating:
                continue
            if link.provider in usable:
                raise ValueError(f"More than one {link.provider.value} link for instructor "
                                 f"{link.instructor_id}")
            usable[link.provider] = link

        if not usable:
            return None

        contributions = tuple(
            ProviderContribution(
                provider=provider,
                rating=usable[provider].avg_rating,
                normalized_rating=self.normalize_rating(provider, usable[provider].avg_rating),
                count=usable[provider].rating_count,
                weight=self.blend_weight(provider, usable[provider].rating_count),
                confident=usable[provider].confident,
            )
            for provider in (Provider.RMP, Provider.BLUEBOOK)
            if provider in usable
        )
        ci_lower, ci_upper = self.credible_interval(contributions)

        if len(contributions) == 1:
            contribution = contributions[0]
            mode = RatingMode.RMP_ONLY if contribution.provider == Provider.RMP else RatingMode.BB_ONLY
            return CompositeRating(
                score=contribution.rating,
                total_responses=contribution.count,
                mode=mode,
                confident=contribution.confident,
                providers=contributions,
                ci_lower=ci_lower,
                ci_upper=ci_upper,
            )

        score = float(np.average(
            [c.normalized_rating for c in contributions],
            weights=[c.weight for c in contributions],
        ))

        return CompositeRating(
            score=score,
            total_responses=sum(c.count for c in contributions),
            mode=RatingMode.BOTH,
            confident=any(c.confident for c in contributions),
            providers=contributions,
            ci_lower=ci_lower,
            ci_upper=ci_upper,
        )
