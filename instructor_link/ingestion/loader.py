"""
File loaders for InstructorLink.

Reads registrar and provider extracts from CSV, JSON-lines or Parquet files
and turns validated rows into immutable records.
"""

import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set, Tuple

import pandas as pd

from .records import ExternalRatingRecord, InstructorRecord, Provider
from .schema_validator import InstructorRow, RatingRow, is_missing, optional_str, validate_records

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = {".csv": "csv", ".parquet": "parquet", ".pq": "parquet",
                     ".jsonl": "json", ".json": "json", ".ndjson": "json"}


def load_frame(path: str, file_format: Optional[str] = None) -> pd.DataFrame:
    """
    Load a file into a DataFrame.

    Args:
        path: Path to a CSV, JSON-lines or Parquet file
        file_format: Override the format inferred from the extension

    Returns:
        DataFrame with the file contents
    """
    file_path = Path(path)
    file_format = file_format or SUPPORTED_FORMATS.get(file_path.suffix.lower())

    if file_format == "csv":
        df = pd.read_csv(file_path, dtype=str, keep_default_na=False, na_values=[""])
    elif file_format == "parquet":
        df = pd.read_parquet(file_path)
    elif file_format == "json":
        df = pd.read_json(file_path, lines=True, dtype=False)
    else:
        raise ValueError(f"Unsupported file format for {path}")

    logger.info(f"Loaded {len(df)} rows from {path}")
    return df


def _compose_name(row: pd.Series) -> Optional[str]:
    """Build a "Last, First" name from split name columns."""
    last = optional_str(row.get("last_name"))
    first = optional_str(row.get("first_name"))
    if last is None:
        return None
    return f"{last}, {first}" if first else last


def load_instructors(path: str, term: str) -> List[InstructorRecord]:
    """
    Load the registrar snapshot of one term.

    A ``term`` column, when present, filters the rows; otherwise every row
    belongs to ``term``. Rows without subject codes are dropped.

    Args:
        path: Path to the registrar extract
        term: Term to load

    Returns:
        List of InstructorRecord
    """
    df = load_frame(path)
    if "term" in df.columns:
        df = df[df["term"].astype(str) == str(term)]

    if "display_name" not in df.columns and "last_name" in df.columns:
        df = df.copy()
        df["display_name"] = [_compose_name(row) for _, row in df.iterrows()]

    rows, _ = validate_records(df, InstructorRow)

    records = [
        InstructorRecord(
            instructor_id=row.instructor_id,
            display_name=row.display_name,
            subject_codes=row.subject_codes,
            term=str(term),
        )
        for row in rows
    ]

    logger.info(f"Loaded {len(records)} instructors for term {term}")
    return records


def load_ratings(path: str, provider: Provider) -> List[ExternalRatingRecord]:
    """
    Load one provider's rating records.

    Names may come as a single ``raw_name`` column or as ``first_name`` /
    ``last_name`` columns.

    Args:
        path: Path to the provider extract
        provider: Provider the file belongs to

    Returns:
        List of ExternalRatingRecord
    """
    provider = Provider.parse(provider) if not isinstance(provider, Provider) else provider
    df = load_frame(path)

    if "raw_name" not in df.columns and "last_name" in df.columns:
        df = df.copy()
        df["raw_name"] = [_compose_name(row) for _, row in df.iterrows()]

    rows, _ = validate_records(df, RatingRow)

    records = [
        ExternalRatingRecord(
            provider=provider,
            raw_name=row.raw_name,
            department=row.department,
            avg_rating=row.avg_rating,
            rating_count=row.rating_count,
            legacy_id=row.legacy_id,
            reviewed_courses=row.reviewed_courses,
        )
        for row in rows
    ]

    logger.info(f"Loaded {len(records)} {provider.value} rating records from {path}")
    return records


def load_rejected_pairs(path: str) -> Set[Tuple[str, str]]:
    """
    Load reviewer-rejected (instructor_id, candidate_key) pairs.

    Args:
        path: File with ``instructor_id`` and ``candidate_key`` columns

    Returns:
        Set of rejected pairs
    """
    df = load_frame(path)
    missing = {"instructor_id", "candidate_key"} - set(df.columns)
    if missing:
        raise ValueError(f"Rejected pairs file is missing columns: {sorted(missing)}")

    pairs = {
        (optional_str(row["instructor_id"]), optional_str(row["candidate_key"]))
        for row in df.to_dict(orient="records")
        if not is_missing(row["instructor_id"]) and not is_missing(row["candidate_key"])
    }
    logger.info(f"Loaded {len(pairs)} rejected pairs from {path}")
    return pairs


def file_instructor_source(path: str) -> Callable[[str], Iterable[InstructorRecord]]:
    """Registrar source callable backed by a file."""
    return lambda term: load_instructors(path, term)


def file_rating_source(paths: Iterable[Tuple[str, Provider]]) -> Callable[[], Iterable[ExternalRatingRecord]]:
    """Rating source callable backed by one file per provider."""
    paths = list(paths)

    def source() -> List[ExternalRatingRecord]:
        records: List[ExternalRatingRecord] = []
        for path, provider in paths:
            records.extend(load_ratings(path, provider))
        return records

    return source
