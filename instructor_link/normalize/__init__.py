"""
Data normalization modules for InstructorLink.

Canonicalizes free-text instructor names and subject/department labels into
comparable tokens. All rules are fixed tables, so identical input always
yields identical output.
"""

from enum import Enum
from typing import Union

from .name_normalizer import NameNormalizer, NormalizedName, compact_key
from .subject_normalizer import NormalizedSubject, SubjectNormalizer, normalize_subject_code


class TokenKind(str, Enum):
    NAME = "name"
    SUBJECT = "subject"


_name_normalizer = NameNormalizer()
_subject_normalizer = SubjectNormalizer()


def normalize(raw: str, kind: TokenKind) -> Union[NormalizedName, NormalizedSubject]:
    """
    Normalize a name or subject string with the default rules.

    Subjects that parse as a single registrar code ("CS 3343") come back with
    that code; longer department strings go through the department rules.

    Raises:
        MalformedRecord: if the string cannot be parsed
    """
    if kind == TokenKind.NAME:
        return _name_normalizer.normalize_name(raw)
    if kind == TokenKind.SUBJECT:
        department = _subject_normalizer.normalize_department(raw)
        if department is None:
            return NormalizedSubject(codes=(normalize_subject_code(raw),), phrase="")
        looks_like_code = len(raw.split()) == 1 or any(ch.isdigit() for ch in raw)
        if not department.codes and looks_like_code:
            return NormalizedSubject(codes=(normalize_subject_code(raw),), phrase=department.phrase)
        return department
    raise ValueError(f"Unknown token kind: {kind!r}")


__all__ = [
    "NameNormalizer",
    "NormalizedName",
    "NormalizedSubject",
    "SubjectNormalizer",
    "TokenKind",
    "compact_key",
    "normalize",
    "normalize_subject_code",
]
