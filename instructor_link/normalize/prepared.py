"""
Normalized views of registrar and provider records.

Each record is normalized once per run; blocking and scoring work only on
these prepared views and never re-parse raw strings.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from ..errors import MalformedRecord
from ..ingestion.records import ExternalRatingRecord, InstructorRecord
from .name_normalizer import NameNormalizer, NormalizedName
from .subject_normalizer import NormalizedSubject, SubjectNormalizer, course_subject, normalize_subject_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedInstructor:
    record: InstructorRecord
    name: NormalizedName
    subject_codes: Tuple[str, ...]

    @property
    def instructor_id(self) -> str:
        return self.record.instructor_id


@dataclass(frozen=True)
class PreparedCandidate:
    record: ExternalRatingRecord
    name: NormalizedName
    department: Optional[NormalizedSubject]
    review_subjects: Tuple[str, ...]

    @property
    def candidate_key(self) -> str:
        return self.record.candidate_key


class RecordPreparer:
    """Normalizes registrar and provider records for matching."""

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}
        self.name_normalizer = NameNormalizer(config.get("name", {}))
        self.subject_normalizer = SubjectNormalizer()

    def prepare_instructor(self, record: InstructorRecord) -> PreparedInstructor:
        """
        Normalize a registrar instructor.

        Raises:
            MalformedRecord: if the display name cannot be parsed
        """
        name = self.name_normalizer.normalize_name(record.display_name)
        codes = set()
        for raw_code in record.subject_codes:
            try:
                codes.add(normalize_subject_code(raw_code))
            except MalformedRecord as e:
                logger.warning(f"Instructor {record.instructor_id}: dropping subject code: {e}")
        return PreparedInstructor(record=record, name=name, subject_codes=tuple(sorted(codes)))

    def prepare_candidate(self, record: ExternalRatingRecord) -> PreparedCandidate:
        """
        Normalize a provider rating record.

        Raises:
            MalformedRecord: if the name cannot be parsed
        """
        try:
            name = self.name_normalizer.normalize_name(record.raw_name)
        except MalformedRecord as e:
            raise MalformedRecord(str(e), record_key=record.candidate_key) from e

        department = self.subject_normalizer.normalize_department(record.department)
        review_subjects = {course_subject(code) for code in record.reviewed_courses}
        review_subjects.discard(None)

        return PreparedCandidate(
            record=record,
            name=name,
            department=department,
            review_subjects=tuple(sorted(review_subjects)),
        )
