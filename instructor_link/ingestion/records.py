"""
Record types exchanged between InstructorLink and its collaborators.

Registrar instructors are authoritative; external rating records come from
one of two providers and carry provider-specific optional fields. Absent
values are ``None`` or an empty tuple, never an empty-string placeholder.
"""

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class Provider(str, Enum):
    """External rating providers."""

    RMP = "rmp"
    BLUEBOOK = "bluebook"

    @classmethod
    def parse(cls, value: str) -> "Provider":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown rating provider: {value!r}") from None


@dataclass(frozen=True)
class InstructorRecord:
    """An instructor from the registrar snapshot of one term."""

    instructor_id: str
    display_name: str
    subject_codes: Tuple[str, ...]
    term: str


@dataclass(frozen=True)
class ExternalRatingRecord:
    """
    A rating record scraped from one provider.

    Args:
        provider: Provider the record came from
        raw_name: Name exactly as the provider reports it
        department: Department string, if the provider has one
        avg_rating: Average rating on the provider's 1-5 scale
        rating_count: Number of ratings or survey responses
        legacy_id: Opaque provider key, if any
        reviewed_courses: Course codes the reviews mention (e.g. "CS3343")
    """

    provider: Provider
    raw_name: str
    department: Optional[str] = None
    avg_rating: Optional[float] = None
    rating_count: int = 0
    legacy_id: Optional[str] = None
    reviewed_courses: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def candidate_key(self) -> str:
        """Stable identifier used for tie-breaking and link identity."""
        if self.legacy_id:
            return f"{self.provider.value}:{self.legacy_id}"
        digest_source = "|".join([self.provider.value, self.raw_name, self.department or ""])
        digest = hashlib.sha256(digest_source.encode("utf-8")).hexdigest()[:16]
        return f"{self.provider.value}:~{digest}"
