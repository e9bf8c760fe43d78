"""
Name normalization for InstructorLink.

Turns registrar display names ("Doe, Jane A.") and provider name strings
("Dr. Jane Doe", "William (Ken) Burchenal") into a canonical
``(last, first, middle_initials)`` form with compact ASCII matching keys.
"""

import html
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from jellyfish import metaphone
from text_unidecode import unidecode

from ..errors import MalformedRecord

logger = logging.getLogger(__name__)

# Lower-case particles that belong to the surname in "First Last" order.
SURNAME_PARTICLES = {"de", "del", "della", "der", "da", "di", "du", "la", "le",
                     "van", "von", "st", "san", "mc", "bin", "al"}

# Common given-name diminutives, canonical name -> variants. Fixed table so
# that matching stays deterministic.
NICKNAMES: Dict[str, Tuple[str, ...]] = {
    "alexander": ("alex", "xander"),
    "alexandra": ("alex", "sandra", "lexi"),
    "andrew": ("andy", "drew"),
    "anthony": ("tony",),
    "benjamin": ("ben", "benny"),
    "catherine": ("cathy", "kate", "katie"),
    "charles": ("charlie", "chuck"),
    "christopher": ("chris",),
    "christine": ("chris", "tina"),
    "daniel": ("dan", "danny"),
    "david": ("dave",),
    "deborah": ("debbie", "deb"),
    "edward": ("ed", "eddie", "ted"),
    "elizabeth": ("liz", "beth", "betsy", "eliza"),
    "frederick": ("fred",),
    "gregory": ("greg",),
    "james": ("jim", "jimmy", "jamie"),
    "jennifer": ("jen", "jenny"),
    "john": ("jack", "johnny"),
    "jonathan": ("jon",),
    "joseph": ("joe", "joey"),
    "katherine": ("kathy", "kate", "katie"),
    "kenneth": ("ken", "kenny"),
    "margaret": ("maggie", "peggy", "meg"),
    "matthew": ("matt",),
    "michael": ("mike", "mikey"),
    "nicholas": ("nick",),
    "patricia": ("pat", "patty", "trish"),
    "patrick": ("pat",),
    "rebecca": ("becky", "becca"),
    "richard": ("rick", "dick", "rich"),
    "robert": ("rob", "bob", "bobby"),
    "samuel": ("sam",),
    "stephen": ("steve",),
    "steven": ("steve",),
    "susan": ("sue", "susie"),
    "thomas": ("tom", "tommy"),
    "timothy": ("tim",),
    "william": ("will", "bill", "billy", "liam"),
}


def _build_nickname_groups() -> Dict[str, frozenset]:
    groups: Dict[str, set] = {}
    for canonical, variants in NICKNAMES.items():
        members = {canonical, *variants}
        for member in members:
            groups.setdefault(member, set()).update(members)
    return {name: frozenset(members) for name, members in groups.items()}


NICKNAME_GROUPS = _build_nickname_groups()


def compact_key(value: str) -> str:
    """
    Lower-case ASCII letters only.

    "García" -> "garcia", "O'Brien" -> "obrien", "Aguirre-Mesa" -> "aguirremesa".
    """
    if not value:
        return ""
    return "".join(ch for ch in unidecode(value).lower() if "a" <= ch <= "z")


def nickname_equivalent(first_a: str, first_b: str) -> bool:
    """True when two compact first names are known diminutives of each other."""
    if not first_a or not first_b or first_a == first_b:
        return False
    return first_b in NICKNAME_GROUPS.get(first_a, ())


@dataclass(frozen=True)
class NormalizedName:
    """Canonical name components; keys are compact ASCII strings."""

    last: str
    first: str = ""
    middle_initials: Tuple[str, ...] = ()
    last_key: str = ""
    first_key: str = ""
    first_tokens: Tuple[str, ...] = ()
    last_tokens: Tuple[str, ...] = ()
    nickname_keys: Tuple[str, ...] = field(default_factory=tuple)
    last_phonetic: str = ""

    @property
    def first_initial(self) -> str:
        return self.first_key[:1]

    @property
    def first_is_initial(self) -> bool:
        return len(self.first_key) == 1

    def as_tuple(self) -> Tuple[str, str, Tuple[str, ...]]:
        """The canonical ``(last, first, middle_initials)`` tuple."""
        return self.last_key, self.first_key, self.middle_initials


class NameNormalizer:
    """
    Normalizes instructor names for identity resolution.

    Handles HTML entities, nicknames, titles/suffixes, diacritics and both
    "Last, First" and "First Last" orderings.
    """

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize name normalizer with configuration.

        Args:
            config: ``normalization.name`` configuration section
        """
        config = config or {}
        self.config = config
        self.remove_titles = config.get("remove_titles", ["Dr", "Prof", "Professor", "Mr", "Mrs", "Ms", "PhD"])
        self.remove_suffixes = config.get("remove_suffixes", ["Jr", "Sr", "II", "III", "IV"])

        self._title_tokens = {compact_key(t) for t in self.remove_titles}
        self._suffix_tokens = {t.lower().rstrip(".") for t in self.remove_suffixes}

        self.nickname_pattern = re.compile(r'\(([^)]*)\)|["“”]([^"“”]*)["“”]')
        self.punctuation_pattern = re.compile(r"[^\w\s,.'-]")
        self.whitespace_pattern = re.compile(r'\s+')

        logger.debug("Initialized NameNormalizer")

    def _clean(self, raw: str) -> Tuple[str, List[str]]:
        """Decode entities, pull out nicknames and drop junk characters."""
        text = html.unescape(raw).strip()

        if "@" in text and "." in text and " " not in text:
            raise MalformedRecord(f"Name looks like an e-mail address: {raw!r}")

        nicknames = []
        for paren, quoted in self.nickname_pattern.findall(text):
            nick = (paren or quoted).strip()
            if nick:
                nicknames.append(nick)
        text = self.nickname_pattern.sub(" ", text)

        text = self.punctuation_pattern.sub(" ", text)
        text = self.whitespace_pattern.sub(" ", text).strip().strip(",").strip()
        return text, nicknames

    def _drop_affixes(self, tokens: List[str]) -> List[str]:
        """Remove title and suffix tokens, keeping at least one token."""
        kept = []
        for token in tokens:
            bare = token.strip(".,")
            if compact_key(bare) in self._title_tokens and len(tokens) > 1:
                continue
            if bare.lower() in self._suffix_tokens and len(tokens) > 1:
                continue
            kept.append(token)
        return kept

    @staticmethod
    def _split_last_first(tokens: List[str]) -> Tuple[List[str], List[str]]:
        """Split "First Middle Last" tokens, keeping surname particles."""
        if len(tokens) == 1:
            return tokens, []
        split_at = len(tokens) - 1
        while split_at > 1 and tokens[split_at - 1].lower().strip(".") in SURNAME_PARTICLES:
            split_at -= 1
        return tokens[split_at:], tokens[:split_at]

    def normalize_name(self, raw: str) -> NormalizedName:
        """
        Normalize a single name string.

        Args:
            raw: Name as found in the source ("Doe, Jane A." or "Dr. Jane Doe")

        Returns:
            NormalizedName

        Raises:
            MalformedRecord: if no usable last name can be extracted
        """
        if not isinstance(raw, str) or not raw.strip():
            raise MalformedRecord(f"Empty or non-string name: {raw!r}")

        text, nicknames = self._clean(raw)

        if "," in text:
            last_part, first_part = text.split(",", 1)
            last_tokens = self._drop_affixes(last_part.split())
            first_tokens = [t for t in self._drop_affixes(first_part.replace(",", " ").split())
                            if compact_key(t) not in self._title_tokens
                            and t.lower().strip(".") not in self._suffix_tokens]
            if not first_tokens and len(last_tokens) > 1:
                # "Jane Doe, PhD": the comma only separated a trailing title.
                last_tokens, first_tokens = self._split_last_first(last_tokens)
        else:
            tokens = self._drop_affixes(text.split())
            last_tokens, first_tokens = self._split_last_first(tokens)

        return self._build(last_tokens, first_tokens, nicknames, raw)

    def _build(self, last_tokens: List[str], first_tokens: List[str],
               nicknames: List[str], raw: str) -> NormalizedName:
        last_display = " ".join(t.strip(".") for t in last_tokens).strip()
        last_key = compact_key(last_display)
        if not last_key:
            raise MalformedRecord(f"No usable last name in {raw!r}")

        first_keys = [compact_key(t) for t in first_tokens]
        first_keys = [k for k in first_keys if k]
        first_key = first_keys[0] if first_keys else ""
        middle_initials = tuple(k[0].upper() for k in first_keys[1:])

        last_parts = tuple(
            key for key in (compact_key(part) for part in re.split(r"[\s-]+", last_display)) if key
        )
        nickname_keys = tuple(sorted({compact_key(n) for n in nicknames} - {""}))

        return NormalizedName(
            last=last_display,
            first=first_tokens[0].strip(".") if first_tokens else "",
            middle_initials=middle_initials,
            last_key=last_key,
            first_key=first_key,
            first_tokens=tuple(first_keys),
            last_tokens=last_parts,
            nickname_keys=nickname_keys,
            last_phonetic=metaphone(last_key) if last_key else "",
        )
