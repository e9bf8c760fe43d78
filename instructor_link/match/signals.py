"""
Signal scorers for InstructorLink.

Four independent scorers (name, subject, uniqueness, volume) each map an
(instructor, candidate) pair to a value in [0, 1]. Scorers never raise: bad
input is logged and scores 0.0 so that one broken record only weakens its own
candidacy.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from functools import wraps
from typing import Dict, Iterable, List, Optional, Tuple

from jellyfish import jaro_winkler_similarity
from Levenshtein import distance as levenshtein_distance
from thefuzz import fuzz

from ..errors import MalformedRecord
from ..normalize.name_normalizer import nickname_equivalent
from ..normalize.prepared import PreparedCandidate, PreparedInstructor
from ..normalize.subject_normalizer import SubjectNormalizer

logger = logging.getLogger(__name__)

FLOOR_SCORE = 0.0

# Name tiers
NAME_EXACT = 1.0
NAME_MIDDLE_CONFLICT = 0.95
NAME_FIRST_INITIAL = 0.85
NAME_TOKEN_OVERLAP = 0.8
NAME_CLOSE_SPELLING = 0.75
NAME_NICKNAME = 0.7
NAME_LAST_ONLY = 0.4
NAME_FIRST_CONFLICT = 0.1

# Multipliers for last names that match only partially
COMPOUND_LAST_FACTOR = 0.9
APPROXIMATE_LAST_FACTOR = 0.8

JARO_WINKLER_MIN = 0.9
FUZZ_RATIO_MIN = 85
TOKEN_SET_MIN = 95
LEVENSHTEIN_MAX_DISTANCE = 1
APPROXIMATE_LAST_MIN_LENGTH = 5

VOLUME_SATURATION = 10


def never_raises(method):
    """Turn scorer failures into a logged floor score."""

    @wraps(method)
    def wrapper(self, instructor, candidate=None, *args, **kwargs):
        try:
            value = method(self, instructor, candidate, *args, **kwargs)
        except (MalformedRecord, ValueError, TypeError, AttributeError) as e:
            key = getattr(candidate, "candidate_key", "?")
            who = getattr(instructor, "instructor_id", "?")
            logger.warning(f"{type(self).__name__} failed for instructor {who} / {key}: {e}")
            return FLOOR_SCORE
        return min(1.0, max(0.0, float(value)))

    return wrapper


class NameScorer:
    """
    Scores how well two normalized names agree.

    A last-name mismatch short-circuits to 0.0. Otherwise the first-name
    tier (exact, initial, token overlap, close spelling, nickname, missing,
    conflicting) is scaled down when the last names only match partially.
    """

    def last_name_factor(self, instructor: PreparedInstructor, candidate: PreparedCandidate) -> float:
        a, b = instructor.name, candidate.name
        if a.last_key and a.last_key == b.last_key:
            return 1.0
        shared = {t for t in a.last_tokens if len(t) > 1} & {t for t in b.last_tokens if len(t) > 1}
        if shared and (len(a.last_tokens) > 1 or len(b.last_tokens) > 1):
            return COMPOUND_LAST_FACTOR
        if (len(a.last_key) >= APPROXIMATE_LAST_MIN_LENGTH and len(b.last_key) >= APPROXIMATE_LAST_MIN_LENGTH
                and levenshtein_distance(a.last_key, b.last_key) <= LEVENSHTEIN_MAX_DISTANCE):
            return APPROXIMATE_LAST_FACTOR
        if a.last_phonetic and a.last_phonetic == b.last_phonetic and a.last_key[:1] == b.last_key[:1]:
            return APPROXIMATE_LAST_FACTOR
        return 0.0

    def first_name_tier(self, instructor: PreparedInstructor, candidate: PreparedCandidate) -> float:
        a, b = instructor.name, candidate.name
        fa, fb = a.first_key, b.first_key

        if not fa or not fb:
            return NAME_LAST_ONLY

        if fa == fb:
            if a.middle_initials and b.middle_initials and a.middle_initials[0] != b.middle_initials[0]:
                return NAME_MIDDLE_CONFLICT
            return NAME_EXACT

        if (a.first_is_initial or b.first_is_initial) and fa[0] == fb[0]:
            return NAME_FIRST_INITIAL

        if len(a.first_tokens) > 1 or len(b.first_tokens) > 1:
            tokens_a = " ".join(sorted(t for t in a.first_tokens if len(t) > 1))
            tokens_b = " ".join(sorted(t for t in b.first_tokens if len(t) > 1))
            if tokens_a and tokens_b and fuzz.token_set_ratio(tokens_a, tokens_b) >= TOKEN_SET_MIN:
                return NAME_TOKEN_OVERLAP

        if (not a.first_is_initial and not b.first_is_initial
                and (jaro_winkler_similarity(fa, fb) >= JARO_WINKLER_MIN
                     or fuzz.ratio(fa, fb) >= FUZZ_RATIO_MIN)):
            return NAME_CLOSE_SPELLING

        nicks_a = set(a.nickname_keys) | {fa}
        nicks_b = set(b.nickname_keys) | {fb}
        if nicks_a & nicks_b or any(nickname_equivalent(x, y) for x in nicks_a for y in nicks_b):
            return NAME_NICKNAME

        return NAME_FIRST_CONFLICT

    @never_raises
    def score(self, instructor: PreparedInstructor, candidate: PreparedCandidate) -> float:
        factor = self.last_name_factor(instructor, candidate)
        if factor == 0.0:
            return 0.0
        return self.first_name_tier(instructor, candidate) * factor


class SubjectScorer:
    """
    Scores subject alignment from two sub-signals.

    ``department`` compares the provider's department string with the
    instructor's subject codes; ``review_courses`` checks whether reviewed
    course codes fall in subjects the instructor teaches. The subject score is
    the larger of the two; both are kept for explanation.
    """

    def __init__(self, subject_normalizer: Optional[SubjectNormalizer] = None):
        self.subject_normalizer = subject_normalizer or SubjectNormalizer()

    @never_raises
    def department_score(self, instructor: PreparedInstructor, candidate: PreparedCandidate) -> float:
        return self.subject_normalizer.department_similarity(instructor.subject_codes, candidate.department)

    @never_raises
    def review_courses_score(self, instructor: PreparedInstructor, candidate: PreparedCandidate) -> float:
        if not candidate.review_subjects or not instructor.subject_codes:
            return 0.0
        reviewed = set(candidate.review_subjects)
        overlap = reviewed & set(instructor.subject_codes)
        if not overlap:
            return 0.0
        return 0.5 + 0.5 * (len(overlap) / len(reviewed))

    def sub_scores(self, instructor: PreparedInstructor, candidate: PreparedCandidate) -> Tuple[float, float]:
        return self.department_score(instructor, candidate), self.review_courses_score(instructor, candidate)

    @never_raises
    def score(self, instructor: PreparedInstructor, candidate: PreparedCandidate) -> float:
        return max(self.sub_scores(instructor, candidate))


class UniquenessScorer:
    """
    Penalizes surnames shared by other instructors of the same term.

    ``1 / (1 + k)`` where ``k`` counts the other instructors of the term with
    the same compact last name who share at least one subject code (any
    subject when the instructor has none).
    """

    def __init__(self, instructors: Iterable[PreparedInstructor]):
        index: Dict[Tuple[str, str], List[Tuple[str, frozenset]]] = defaultdict(list)
        for instructor in instructors:
            key = (instructor.record.term, instructor.name.last_key)
            index[key].append((instructor.instructor_id, frozenset(instructor.subject_codes)))
        self._index = dict(index)
        logger.debug(f"Initialized UniquenessScorer with {len(self._index)} surname groups")

    def namesakes(self, instructor: PreparedInstructor) -> int:
        """Number of other instructors that could be confused with this one."""
        peers = self._index.get((instructor.record.term, instructor.name.last_key), [])
        subjects = set(instructor.subject_codes)
        count = 0
        for other_id, other_subjects in peers:
            if other_id == instructor.instructor_id:
                continue
            if not subjects or subjects & other_subjects:
                count += 1
        return count

    @never_raises
    def score(self, instructor: PreparedInstructor, candidate: Optional[PreparedCandidate] = None) -> float:
        return 1.0 / (1 + self.namesakes(instructor))


class VolumeScorer:
    """
    Rewards statistically meaningful rating counts with diminishing returns.

    ``min(1, log1p(n) / log1p(saturation))``: monotone in ``n`` and equal to
    1.0 from ``saturation`` ratings upwards.
    """

    def __init__(self, saturation: float = VOLUME_SATURATION):
        if saturation <= 0:
            raise ValueError("volume saturation must be positive")
        self.saturation = saturation
        self._denominator = math.log1p(saturation)

    def volume(self, count: int) -> float:
        if count is None or count <= 0:
            return 0.0
        return min(1.0, math.log1p(count) / self._denominator)

    @never_raises
    def score(self, instructor: PreparedInstructor, candidate: PreparedCandidate) -> float:
        return self.volume(candidate.record.rating_count)


@dataclass(frozen=True)
class SignalScores:
    """Raw signal values for one (instructor, candidate) pair."""

    name: float
    subject: float
    uniqueness: float
    volume: float
    department: float = 0.0
    review_courses: float = 0.0


class SignalSet:
    """Runs all four scorers over one pair."""

    def __init__(self, uniqueness_scorer: UniquenessScorer, config: Optional[Dict] = None,
                 subject_normalizer: Optional[SubjectNormalizer] = None):
        """
        Initialize the scorer set for one run.

        Args:
            uniqueness_scorer: Scorer built from the run's instructors
            config: ``scoring`` configuration section
            subject_normalizer: Shared subject normalizer
        """
        config = config or {}
        self.name_scorer = NameScorer()
        self.subject_scorer = SubjectScorer(subject_normalizer)
        self.uniqueness_scorer = uniqueness_scorer
        self.volume_scorer = VolumeScorer(config.get("volume_saturation", VOLUME_SATURATION))

    def score(self, instructor: PreparedInstructor, candidate: PreparedCandidate) -> SignalScores:
        department, review_courses = self.subject_scorer.sub_scores(instructor, candidate)
        return SignalScores(
            name=self.name_scorer.score(instructor, candidate),
            subject=max(department, review_courses),
            uniqueness=self.uniqueness_scorer.score(instructor, candidate),
            volume=self.volume_scorer.score(instructor, candidate),
            department=department,
            review_courses=review_courses,
        )
