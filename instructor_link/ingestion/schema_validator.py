"""
Schema validation for InstructorLink input files.

Each row of a registrar or provider extract is validated against a pydantic
row model before any record is built. Rows that fail are dropped and counted
so that a bad load can be explained without printing record contents.
"""

import logging
import re
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

_LIST_SEPARATOR = re.compile(r"[;,|]")


def is_missing(value: Any) -> bool:
    """Blank strings, None, NaN and pandas NA all count as missing."""
    if isinstance(value, str):
        return not value.strip()
    return pd.api.types.is_scalar(value) and bool(pd.isna(value))


def optional_str(value: Any) -> Optional[str]:
    if is_missing(value):
        return None
    # Numeric ids read back from JSON or Parquet as floats
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def split_list(value: Any) -> Tuple[str, ...]:
    """Split a list-valued cell ("CS;MATH" or a parsed list) into a tuple."""
    if value is None:
        return ()
    if isinstance(value, str):
        items = _LIST_SEPARATOR.split(value)
    elif hasattr(value, "__iter__"):
        items = [str(item) for item in value if not is_missing(item)]
    elif is_missing(value):
        return ()
    else:
        items = [str(value)]
    return tuple(item.strip() for item in items if item and item.strip())


class InstructorRow(BaseModel):
    """One row of a registrar extract."""

    schema_name: ClassVar[str] = "instructors"
    unique_key: ClassVar[Optional[str]] = "instructor_id"

    instructor_id: str = Field(..., min_length=1, description="Registrar instructor id")
    display_name: str = Field(..., min_length=1, description="Name as the registrar shows it")
    subject_codes: Tuple[str, ...] = Field(..., min_length=1, description="Subjects taught this term")

    model_config = ConfigDict(extra="ignore")

    @field_validator("instructor_id", "display_name", mode="before")
    @classmethod
    def parse_text(cls, v):
        return optional_str(v)

    @field_validator("subject_codes", mode="before")
    @classmethod
    def parse_subject_codes(cls, v):
        return split_list(v)


class RatingRow(BaseModel):
    """One row of an RMP or BlueBook extract."""

    schema_name: ClassVar[str] = "ratings"
    unique_key: ClassVar[Optional[str]] = "legacy_id"

    raw_name: str = Field(..., min_length=1, description="Name exactly as the provider reports it")
    department: Optional[str] = None
    avg_rating: Optional[float] = Field(None, ge=1.0, le=5.0)
    rating_count: int = Field(0, ge=0)
    legacy_id: Optional[str] = None
    reviewed_courses: Tuple[str, ...] = ()

    model_config = ConfigDict(extra="ignore")

    @field_validator("raw_name", "department", "legacy_id", mode="before")
    @classmethod
    def parse_text(cls, v):
        return optional_str(v)

    @field_validator("avg_rating", mode="before")
    @classmethod
    def parse_rating(cls, v):
        if is_missing(v):
            return None
        return float(v)

    @field_validator("rating_count", mode="before")
    @classmethod
    def parse_count(cls, v):
        """Counts may arrive as "12", 12.0 or blank."""
        if is_missing(v):
            return 0
        return int(float(v))

    @field_validator("reviewed_courses", mode="before")
    @classmethod
    def parse_courses(cls, v):
        return split_list(v)


class RecordSchemaValidator:
    """
    Validates input DataFrames row by row against a pydantic row model.

    Duplicate keys are reported but kept: which of the duplicates wins is
    decided downstream, independent of file order.
    """

    def __init__(self, model: Type[BaseModel]):
        """
        Initialize validator with a row model.

        Args:
            model: Pydantic model every row must satisfy
        """
        self.model = model
        self.name = getattr(model, "schema_name", model.__name__)
        self.unique_key = getattr(model, "unique_key", None)
        self.required_columns = [
            name for name, field in model.model_fields.items() if field.is_required()
        ]

        logger.debug(f"Initialized RecordSchemaValidator for {self.name}")

    def missing_columns(self, df: pd.DataFrame) -> List[str]:
        return [column for column in self.required_columns if column not in df.columns]

    def validate_rows(self, df: pd.DataFrame) -> Tuple[List[BaseModel], Dict[str, Any]]:
        """
        Validate every row of a DataFrame.

        Args:
            df: DataFrame to validate

        Returns:
            Tuple of (valid rows in file order, validation summary)
        """
        valid: List[BaseModel] = []
        errors: List[Dict[str, Any]] = []

        for index, row in enumerate(df.to_dict(orient="records")):
            try:
                valid.append(self.model.model_validate(row))
            except ValidationError as e:
                for error in e.errors():
                    field = ".".join(str(part) for part in error["loc"]) or "row"
                    errors.append({"row": index, "field": field, "message": error["msg"]})
                    logger.warning(f"{self.name} row {index} rejected: {field}: {error['msg']}")

        duplicate_keys = 0
        if self.unique_key:
            keys = [getattr(row, self.unique_key) for row in valid]
            keys = [key for key in keys if key is not None]
            duplicate_keys = len(keys) - len(set(keys))
            if duplicate_keys:
                logger.warning(f"{self.name} input has {duplicate_keys} duplicate "
                               f"{self.unique_key} values")

        invalid_rows = len(df) - len(valid)
        summary = {
            "schema": self.name,
            "success": invalid_rows == 0 and duplicate_keys == 0,
            "total_rows": len(df),
            "valid_rows": len(valid),
            "invalid_rows": invalid_rows,
            "duplicate_keys": duplicate_keys,
            "errors": errors,
        }

        if invalid_rows:
            logger.info(f"Validation of {self.name}: removed {invalid_rows} invalid rows "
                        f"({invalid_rows / len(df):.2%} of data)")
        else:
            logger.info(f"Validation of {self.name}: all {len(df)} rows passed")
        return valid, summary


def validate_records(df: pd.DataFrame, model: Type[BaseModel]) -> Tuple[List[BaseModel], Dict[str, Any]]:
    """
    Convenience function to validate an input DataFrame.

    Args:
        df: DataFrame to validate
        model: Row model

    Returns:
        Tuple of (valid rows, validation summary)

    Raises:
        ValueError: if required columns are missing entirely
    """
    validator = RecordSchemaValidator(model)
    missing = validator.missing_columns(df)
    if missing:
        raise ValueError(f"{validator.name} input is missing required columns: {missing}")
    return validator.validate_rows(df)
