"""
Unit tests for input schema validation.
"""

import pytest
import pandas as pd
import sys
from pathlib import Path

# Add package root to path
sys.path.append(str(Path(__file__).parent.parent))

from instructor_link.ingestion.schema_validator import (
    InstructorRow, RatingRow, RecordSchemaValidator, split_list, validate_records
)


class TestRecordSchemaValidator:
    """Test cases for row validation."""

    def setup_method(self):
        """Setup test fixtures."""
        self.ratings = pd.DataFrame({
            "legacy_id": ["100", "101", "102", "103", "100"],
            "raw_name": ["Jane Doe", "  ", "John Smith", "Ana Aguirre", "Jane A. Doe"],
            "department": ["CS", "CS", None, "History", "CS"],
            "avg_rating": ["4.2", "3.0", "abc", "", "4.0"],
            "rating_count": ["50", "4", "10", "", "12.0"],
            "reviewed_courses": ["CS3343;CS1083", None, None, None, None],
        })

    def test_valid_rows_are_typed(self):
        """Test valid rows come back converted."""
        rows, _ = validate_records(self.ratings, RatingRow)

        assert rows[0].avg_rating == 4.2
        assert rows[0].rating_count == 50
        assert rows[0].reviewed_courses == ("CS3343", "CS1083")
        assert rows[1].avg_rating is None
        assert rows[1].rating_count == 0
        assert rows[1].department == "History"
        assert rows[2].rating_count == 12

    def test_invalid_rows_dropped(self):
        """Test blank names and non-numeric ratings are rejected."""
        rows, summary = validate_records(self.ratings, RatingRow)

        assert [row.legacy_id for row in rows] == ["100", "103", "100"]
        assert summary["total_rows"] == 5
        assert summary["invalid_rows"] == 2
        assert {error["field"] for error in summary["errors"]} == {"raw_name", "avg_rating"}
        assert summary["success"] is False

    def test_duplicates_reported_not_dropped(self):
        """Test duplicate keys are counted and every duplicate is kept."""
        rows, summary = validate_records(self.ratings, RatingRow)

        assert summary["duplicate_keys"] == 1
        assert [row.raw_name for row in rows if row.legacy_id == "100"] == ["Jane Doe", "Jane A. Doe"]

    def test_rating_range(self):
        """Test ratings outside 1-5 and negative counts are rejected."""
        df = pd.DataFrame({"raw_name": ["A", "B", "C"], "avg_rating": [7.5, 0.5, 5.0],
                           "rating_count": [10, 10, -1]})

        rows, summary = validate_records(df, RatingRow)

        assert rows == []
        assert summary["invalid_rows"] == 3

    def test_numeric_ids(self):
        """Test float ids read back from JSON or Parquet become plain strings."""
        df = pd.DataFrame({"instructor_id": [7.0, 8.0], "display_name": ["Doe, Jane", "Smith, Bob"],
                           "subject_codes": [["CS", "MAT"], "ART|ARTH"]})

        rows, summary = validate_records(df, InstructorRow)

        assert [row.instructor_id for row in rows] == ["7", "8"]
        assert rows[0].subject_codes == ("CS", "MAT")
        assert rows[1].subject_codes == ("ART", "ARTH")
        assert summary["success"] is True

    def test_missing_subjects_rejected(self):
        """Test instructors need at least one subject code."""
        df = pd.DataFrame({"instructor_id": ["1"], "display_name": ["Doe, Jane"], "subject_codes": [""]})

        rows, summary = validate_records(df, InstructorRow)

        assert rows == []
        assert summary["errors"][0]["field"] == "subject_codes"

    def test_missing_columns(self):
        """Test missing required columns fail the whole load."""
        validator = RecordSchemaValidator(InstructorRow)

        assert validator.required_columns == ["instructor_id", "display_name", "subject_codes"]
        with pytest.raises(ValueError):
            validate_records(pd.DataFrame({"instructor_id": ["1"]}), InstructorRow)

    def test_empty_frame(self):
        """Test an empty frame validates to no rows."""
        rows, summary = validate_records(pd.DataFrame(columns=["raw_name"]), RatingRow)

        assert rows == []
        assert summary["total_rows"] == 0
        assert summary["success"] is True

    def test_split_list(self):
        """Test list cell splitting."""
        assert split_list("CS; MATH,ART") == ("CS", "MATH", "ART")
        assert split_list(float("nan")) == ()
        assert split_list(None) == ()


if __name__ == "__main__":
    pytest.main([__file__])
