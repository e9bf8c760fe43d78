"""
Unit tests for the signal scorers.
"""

import math

import pytest
import sys
from pathlib import Path

# Add package root to path
sys.path.append(str(Path(__file__).parent.parent))

from instructor_link.ingestion.records import ExternalRatingRecord, InstructorRecord, Provider
from instructor_link.match.signals import (
    NameScorer, SignalSet, SubjectScorer, UniquenessScorer, VolumeScorer
)
from instructor_link.normalize.prepared import RecordPreparer

PREPARER = RecordPreparer()


def make_instructor(name, subjects=("CS",), instructor_id="1", term="2024-fall"):
    return PREPARER.prepare_instructor(InstructorRecord(instructor_id, name, tuple(subjects), term))


def make_candidate(name, department=None, count=0, courses=(), provider=Provider.RMP, legacy_id="1"):
    return PREPARER.prepare_candidate(ExternalRatingRecord(
        provider=provider,
        raw_name=name,
        department=department,
        avg_rating=4.0 if count else None,
        rating_count=count,
        legacy_id=legacy_id,
        reviewed_courses=tuple(courses),
    ))


class TestNameScorer:
    """Test cases for name scoring tiers."""

    def setup_method(self):
        """Setup test fixtures."""
        self.scorer = NameScorer()
        self.jane = make_instructor("Doe, Jane A.")

    def test_exact_first_name(self):
        """Test exact first-name match."""
        assert self.scorer.score(self.jane, make_candidate("Jane Doe")) == 1.0

    def test_conflicting_middle_initial(self):
        """Test conflicting middle initials."""
        assert self.scorer.score(self.jane, make_candidate("Jane B. Doe")) == 0.95

    def test_first_initial(self):
        """Test initial-only first name."""
        assert self.scorer.score(self.jane, make_candidate("J. Doe")) == 0.85

    def test_token_overlap(self):
        """Test multi-token first names sharing a token."""
        instructor = make_instructor("LeBlanc, H. Paul")
        assert self.scorer.score(instructor, make_candidate("Paul LeBlanc")) == 0.8

    def test_close_spelling(self):
        """Test close first-name spelling."""
        instructor = make_instructor("Doe, Jonathan")
        assert self.scorer.score(instructor, make_candidate("Johnathan Doe")) == 0.75

    def test_nickname(self):
        """Test nickname match."""
        instructor = make_instructor("Burchenal, William")
        assert self.scorer.score(instructor, make_candidate("Bill Burchenal")) == 0.7

    def test_last_name_only(self):
        """Test missing first name on one side."""
        assert self.scorer.score(self.jane, make_candidate("Doe")) == 0.4

    def test_conflicting_first_name(self):
        """Test conflicting first names."""
        assert self.scorer.score(self.jane, make_candidate("Mark Doe")) == 0.1

    def test_last_name_mismatch(self):
        """Test last-name mismatch short-circuits."""
        assert self.scorer.score(self.jane, make_candidate("Jane Smith")) == 0.0

    def test_approximate_last_name(self):
        """Test one-edit last names are scaled down."""
        instructor = make_instructor("Kowalski, Anna")
        assert self.scorer.score(instructor, make_candidate("Anna Kowalsky")) == pytest.approx(0.8)

    def test_never_raises(self):
        """Test bad input scores 0.0 instead of raising."""
        assert self.scorer.score(self.jane, object()) == 0.0
        assert self.scorer.score(None, None) == 0.0


class TestSubjectScorer:
    """Test cases for subject scoring."""

    def setup_method(self):
        """Setup test fixtures."""
        self.scorer = SubjectScorer()
        self.instructor = make_instructor("Doe, Jane", subjects=("CS",))

    def test_department_match(self):
        """Test department name match."""
        candidate = make_candidate("Jane Doe", department="Computer Science")
        assert self.scorer.sub_scores(self.instructor, candidate) == (1.0, 0.0)
        assert self.scorer.score(self.instructor, candidate) == 1.0

    def test_generic_department(self):
        """Test catch-all department match."""
        instructor = make_instructor("Doe, Jane", subjects=("BIO",))
        candidate = make_candidate("Jane Doe", department="Science")
        assert self.scorer.score(instructor, candidate) == 0.7

    def test_absent_department(self):
        """Test absent department scores 0.0."""
        candidate = make_candidate("Jane Doe")
        assert self.scorer.score(self.instructor, candidate) == 0.0

    def test_review_courses(self):
        """Test review-course sub-score."""
        all_taught = make_candidate("Jane Doe", courses=("CS3343", "CS1083"))
        half_taught = make_candidate("Jane Doe", courses=("CS3343", "MAT1214"))
        none_taught = make_candidate("Jane Doe", courses=("HIS1043",))

        assert self.scorer.sub_scores(self.instructor, all_taught) == (0.0, 1.0)
        assert self.scorer.sub_scores(self.instructor, half_taught) == (0.0, 0.75)
        assert self.scorer.score(self.instructor, none_taught) == 0.0

    def test_subject_is_max_of_sub_scores(self):
        """Test subject keeps the stronger sub-score."""
        candidate = make_candidate("Jane Doe", department="Science", courses=("CS3343", "MAT1214"))
        department, review_courses = self.scorer.sub_scores(self.instructor, candidate)

        assert self.scorer.score(self.instructor, candidate) == max(department, review_courses)


class TestUniquenessScorer:
    """Test cases for surname uniqueness."""

    def setup_method(self):
        """Setup test fixtures."""
        self.garcias = [
            make_instructor(f"Garcia, {first}", subjects=("MAT",), instructor_id=str(i))
            for i, first in enumerate(["Maria", "Luis", "Ana", "Jorge", "Elena", "Pablo"])
        ]
        self.other_department = make_instructor("Garcia, Rosa", subjects=("HIS",), instructor_id="10")
        self.unique = make_instructor("Doe, Jane", subjects=("MAT",), instructor_id="20")
        self.scorer = UniquenessScorer(self.garcias + [self.other_department, self.unique])

    def test_shared_last_name(self):
        """Test five namesakes in the same department."""
        assert self.scorer.namesakes(self.garcias[0]) == 5
        assert self.scorer.score(self.garcias[0]) == pytest.approx(1 / 6)

    def test_unique_last_name(self):
        """Test a unique last name."""
        assert self.scorer.score(self.unique) == 1.0

    def test_other_department_not_counted(self):
        """Test namesakes without a shared subject are ignored."""
        assert self.scorer.score(self.other_department) == 1.0

    def test_other_term_not_counted(self):
        """Test namesakes from another term are ignored."""
        later = make_instructor("Garcia, Maria", subjects=("MAT",), instructor_id="0", term="2025-spring")
        assert self.scorer.score(later) == 1.0


class TestVolumeScorer:
    """Test cases for volume scoring."""

    def setup_method(self):
        """Setup test fixtures."""
        self.scorer = VolumeScorer(10)

    def test_bounds(self):
        """Test zero and saturation."""
        assert self.scorer.volume(0) == 0.0
        assert self.scorer.volume(10) == 1.0
        assert self.scorer.volume(500) == 1.0

    def test_formula(self):
        """Test diminishing returns formula."""
        assert self.scorer.volume(2) == pytest.approx(math.log1p(2) / math.log1p(10))

    def test_monotone(self):
        """Test volume never decreases with more ratings."""
        values = [self.scorer.volume(n) for n in range(0, 40)]
        assert values == sorted(values)
        assert all(0.0 <= v <= 1.0 for v in values)

    def test_invalid_saturation(self):
        """Test saturation must be positive."""
        with pytest.raises(ValueError):
            VolumeScorer(0)


class TestSignalSet:
    """Test cases for the combined signal run."""

    def test_scenario_signals(self):
        """Test strong and weak candidates for one instructor."""
        instructor = make_instructor("Doe, Jane A.", subjects=("CS",))
        signal_set = SignalSet(UniquenessScorer([instructor]), {"volume_saturation": 10})

        strong = signal_set.score(instructor, make_candidate("Jane Doe", department="CS", count=50))
        weak = signal_set.score(instructor, make_candidate("J. Doe", department="MATH", count=2))

        assert (strong.name, strong.subject, strong.uniqueness, strong.volume) == (1.0, 1.0, 1.0, 1.0)
        assert weak.name == 0.85
        assert weak.subject == 0.0
        assert weak.volume < 0.5


if __name__ == "__main__":
    pytest.main([__file__])
