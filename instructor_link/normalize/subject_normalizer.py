"""
Subject and department normalization for InstructorLink.

Registrar subjects arrive as short codes ("CS", "cs 3343"); providers report
free-text departments ("Computer Science", "Science", "MATH"). Both are
reduced to upper-case codes plus a lower-case phrase that can be checked
against a fixed abbreviation table.
"""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from text_unidecode import unidecode

from ..errors import MalformedRecord

logger = logging.getLogger(__name__)

# Subject code -> department phrases. The first phrase is the specific name of
# the department; later phrases are broader catch-alls that rating sites use
# ("science", "business").
SUBJECT_EXPANSIONS: Dict[str, Tuple[str, ...]] = {
    # Computer science & engineering
    "CS": ("computer science",),
    "ECE": ("early childhood education", "early childhood"),
    "EE": ("electrical engineering", "electrical", "engineering"),
    "ME": ("mechanical engineering", "mechanical", "engineering"),
    "CE": ("civil engineering", "civil", "engineering"),
    "EGR": ("engineering",),
    "BME": ("biomedical engineering", "engineering"),
    "CME": ("chemical engineering", "engineering"),
    "CPE": ("computer engineering", "engineering"),
    "ISE": ("industrial", "systems engineering", "engineering"),
    "MATE": ("materials engineering", "engineering"),
    # Sciences
    "BIO": ("biology", "biological", "science"),
    "CHE": ("chemistry", "science"),
    "CHEM": ("chemistry", "science"),
    "BCH": ("biochemistry", "chemistry", "science"),
    "PHY": ("physics", "science"),
    "PHYS": ("physics", "science"),
    "MAT": ("mathematics", "math"),
    "MATH": ("mathematics", "math"),
    "STA": ("statistics",),
    "GEO": ("geology", "science"),
    "AST": ("astronomy", "science"),
    "ES": ("environmental science", "science"),
    # English & humanities
    "ENG": ("english", "literature"),
    "HIS": ("history",),
    "PHI": ("philosophy",),
    "CLA": ("classics",),
    "HUM": ("humanities",),
    "WGSS": ("womens studies",),
    # Social sciences
    "POL": ("political science", "social science"),
    "PSY": ("psychology", "social science"),
    "SOC": ("sociology", "social science"),
    "ANT": ("anthropology", "social science"),
    "ECO": ("economics", "business"),
    "CRJ": ("criminal justice",),
    "SWK": ("social work",),
    "PAD": ("public administration",),
    "GRG": ("geography",),
    "GES": ("geography",),
    # Business
    "ACC": ("accounting", "business", "managerial science", "managerial"),
    "FIN": ("finance", "business", "managerial science", "managerial"),
    "MGT": ("management", "business", "managerial science", "managerial"),
    "MKT": ("marketing", "business", "managerial science", "managerial"),
    "MS": ("management science", "managerial science", "managerial"),
    "IS": ("information systems", "information science", "business"),
    "GBA": ("general business", "business", "managerial science", "managerial"),
    "ENT": ("entrepreneurship", "business", "managerial science", "managerial"),
    "BLW": ("business law", "law", "business"),
    "RFD": ("real estate",),
    "MOT": ("management of technology", "management", "business"),
    # Arts
    "ART": ("art", "fine arts"),
    "MUS": ("music", "fine arts"),
    "DAN": ("dance", "fine arts"),
    "THR": ("theater", "fine arts"),
    "AHC": ("art history", "fine arts"),
    "ARC": ("architecture",),
    "IDE": ("interior design", "design"),
    # Ethnic studies
    "AAS": ("african american studies", "ethnic studies"),
    "MAS": ("mexican american studies", "ethnic studies"),
    # Languages
    "LNG": ("linguistics", "applied linguistics", "languages"),
    "SPN": ("spanish", "languages", "modern languages"),
    "FRN": ("french", "languages", "modern languages"),
    "GER": ("german", "languages", "modern languages"),
    "CHN": ("chinese", "languages", "modern languages"),
    "JPN": ("japanese", "languages", "modern languages"),
    "KOR": ("korean", "languages", "modern languages"),
    "ITL": ("italian", "languages", "modern languages"),
    "RUS": ("russian", "languages", "modern languages"),
    "LAT": ("latin", "languages"),
    "ASL": ("american sign language", "sign language", "languages"),
    # Education
    "EDU": ("education",),
    "CI": ("curriculum", "education"),
    "EDL": ("educational leadership", "education"),
    "EDP": ("educational psychology", "education", "psychology"),
    "BBL": ("bilingual education", "education"),
    "SPE": ("special education", "education"),
    # Health
    "HTH": ("health",),
    "HCP": ("health science", "health"),
    "NTR": ("nutrition",),
    "KIN": ("kinesiology", "physical education"),
    # Other
    "COM": ("communication", "film"),
    "MSC": ("military science",),
    "COU": ("counseling", "psychology", "education"),
    "ESL": ("english as a second language", "bilingual", "education"),
    "HON": ("honors",),
    "WRC": ("writing", "english"),
}

DEPARTMENT_MATCH = 1.0
GENERIC_DEPARTMENT_MATCH = 0.7
NO_MATCH = 0.0

_PHRASE_STRIP = re.compile(r"[^a-z0-9\s]")
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")
_WHITESPACE = re.compile(r"\s+")
_COURSE_PREFIX = re.compile(r"\s*([A-Za-z]+)")


def _phrase(value: str) -> str:
    text = unidecode(value).lower().replace("'", "").replace("&", " and ")
    text = _PHRASE_STRIP.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


@dataclass(frozen=True)
class NormalizedSubject:
    """Subject codes and a comparable phrase for one subject/department string."""

    codes: Tuple[str, ...]
    phrase: str


def normalize_subject_code(raw: str) -> str:
    """
    Normalize a registrar subject code, dropping course-level digits.

    "cs 3343" -> "CS", "MATH1214" -> "MATH".

    Raises:
        MalformedRecord: if no alphabetic code remains
    """
    if not isinstance(raw, str):
        raise MalformedRecord(f"Subject code must be a string: {raw!r}")
    text = unidecode(raw).upper()
    text = _NON_ALNUM.sub("", text)
    code = text.rstrip("0123456789")
    code = "".join(ch for ch in code if ch.isalpha())
    if not code:
        raise MalformedRecord(f"No subject code in {raw!r}")
    return code


def course_subject(course_code: str) -> Optional[str]:
    """
    Extract the alphabetic subject prefix of a course code.

    "WRC1013" -> "WRC", "cs 3343" -> "CS". Returns None when there is none.
    """
    if not isinstance(course_code, str):
        return None
    match = _COURSE_PREFIX.match(unidecode(course_code))
    return match.group(1).upper() if match else None


class SubjectNormalizer:
    """
    Normalizes department strings and compares them with subject codes.

    Department strings may be codes ("CS", "CS/MATH") or names
    ("Computer Science"); both forms resolve to codes through the fixed
    abbreviation table.
    """

    def __init__(self, expansions: Optional[Dict[str, Tuple[str, ...]]] = None):
        self.expansions = {
            code: tuple(_phrase(p) for p in phrases)
            for code, phrases in (expansions or SUBJECT_EXPANSIONS).items()
        }
        primary_index = defaultdict(set)
        for code, phrases in self.expansions.items():
            primary_index[phrases[0]].add(code)
        self.primary_index: Dict[str, Tuple[str, ...]] = {
            phrase: tuple(sorted(codes)) for phrase, codes in primary_index.items()
        }

        logger.debug(f"Initialized SubjectNormalizer with {len(self.expansions)} subject expansions")

    def normalize_department(self, raw: Optional[str]) -> Optional[NormalizedSubject]:
        """
        Normalize a department string.

        Args:
            raw: Department as reported by a provider

        Returns:
            NormalizedSubject, or None when the department is absent
        """
        if raw is None or not isinstance(raw, str) or not raw.strip():
            return None

        phrase = _phrase(raw)
        codes = set()

        for token in _NON_ALNUM.split(unidecode(raw)):
            if not token:
                continue
            stripped = token.rstrip("0123456789")
            upper = stripped.upper()
            if not upper.isalpha() or len(upper) > 5:
                continue
            # Upper-case tokens and tokens with course digits read as codes;
            # plain words only when the table knows them as a code.
            if token.isupper() or stripped != token or (upper in self.expansions and len(upper) >= 3):
                codes.add(upper)

        for primary, primary_codes in self.primary_index.items():
            if primary and self._contains_phrase(phrase, primary):
                codes.update(primary_codes)

        return NormalizedSubject(codes=tuple(sorted(codes)), phrase=phrase)

    @staticmethod
    def _contains_phrase(haystack: str, needle: str) -> bool:
        return f" {needle} " in f" {haystack} "

    def department_similarity(self, subject_codes: Iterable[str],
                              department: Optional[NormalizedSubject]) -> float:
        """
        Score how well a department string fits an instructor's subjects.

        Returns 1.0 for a code or specific department-name match, 0.7 when only
        a generic catch-all phrase matches ("science") and 0.0 otherwise,
        including when the department is absent.
        """
        if department is None:
            return NO_MATCH

        best = NO_MATCH
        for code in subject_codes:
            if code in department.codes:
                return DEPARTMENT_MATCH
            phrases = self.expansions.get(code, ())
            for position, phrase in enumerate(phrases):
                if not self._contains_phrase(department.phrase, phrase):
                    continue
                if position == 0:
                    return DEPARTMENT_MATCH
                best = max(best, GENERIC_DEPARTMENT_MATCH)
        return best
