"""
Candidate blocker for InstructorLink.

Narrows the provider records compared against each registrar instructor to a
cheaply computed block instead of the full cross product.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from ..normalize.prepared import PreparedCandidate, PreparedInstructor

logger = logging.getLogger(__name__)

MAX_CANDIDATES_PER_BLOCK = 200
MAX_FULL_SCAN = 500


class CandidateBlocker:
    """
    Builds last-name and department blocks over provider records.

    Blocks are built once and only read afterwards, so one blocker can be
    shared by every worker of a run. Lookup order per instructor:

    1. last-name block (the compact last name and each of its tokens);
    2. department block, only when the name block is empty;
    3. full scan, only when both are empty, capped at ``max_full_scan``.
    """

    def __init__(self, candidates: Iterable[PreparedCandidate], config: Optional[Dict] = None):
        """
        Initialize candidate blocker.

        Args:
            candidates: Normalized provider records
            config: ``blocking`` configuration section
        """
        config = config or {}
        self.config = config
        self.max_candidates_per_block = config.get("max_candidates_per_block", MAX_CANDIDATES_PER_BLOCK)
        self.max_full_scan = config.get("max_full_scan", MAX_FULL_SCAN)

        name_blocks: Dict[str, Dict[str, PreparedCandidate]] = defaultdict(dict)
        department_blocks: Dict[str, Dict[str, PreparedCandidate]] = defaultdict(dict)
        everything: Dict[str, PreparedCandidate] = {}

        for candidate in candidates:
            key = candidate.candidate_key
            everything[key] = candidate
            for name_key in self._name_keys(candidate.name.last_key, candidate.name.last_tokens):
                name_blocks[name_key][key] = candidate
            if candidate.department is not None:
                for code in candidate.department.codes:
                    department_blocks[code][key] = candidate

        self._name_blocks = {k: self._ordered(v) for k, v in name_blocks.items()}
        self._department_blocks = {k: self._ordered(v) for k, v in department_blocks.items()}
        self._all = self._ordered(everything)

        logger.info(f"Initialized CandidateBlocker with {len(self._all)} records, "
                    f"{len(self._name_blocks)} name blocks, {len(self._department_blocks)} department blocks")

    @staticmethod
    def _ordered(block: Dict[str, PreparedCandidate]) -> Tuple[PreparedCandidate, ...]:
        return tuple(block[key] for key in sorted(block))

    @staticmethod
    def _name_keys(last_key: str, last_tokens: Tuple[str, ...]) -> List[str]:
        keys = [last_key] if last_key else []
        if len(last_tokens) > 1:
            keys.extend(token for token in last_tokens if len(token) > 1 and token != last_key)
        return keys

    def _name_block(self, instructor: PreparedInstructor) -> List[PreparedCandidate]:
        merged: Dict[str, PreparedCandidate] = {}
        for name_key in self._name_keys(instructor.name.last_key, instructor.name.last_tokens):
            for candidate in self._name_blocks.get(name_key, ()):
                merged[candidate.candidate_key] = candidate
        return [merged[key] for key in sorted(merged)]

    def _department_block(self, instructor: PreparedInstructor) -> List[PreparedCandidate]:
        merged: Dict[str, PreparedCandidate] = {}
        for code in instructor.subject_codes:
            for candidate in self._department_blocks.get(code, ()):
                merged[candidate.candidate_key] = candidate
        return [merged[key] for key in sorted(merged)]

    def _resolve(self, instructor: PreparedInstructor) -> Tuple[str, Sequence[PreparedCandidate], int]:
        """Pick the block for an instructor: (strategy, block, cap)."""
        name_block = self._name_block(instructor)
        if name_block:
            return "name", name_block, self.max_candidates_per_block
        department_block = self._department_block(instructor)
        if department_block:
            return "department", department_block, self.max_candidates_per_block
        return "full_scan", self._all, self.max_full_scan

    def block_for(self, instructor: PreparedInstructor) -> Tuple[str, int]:
        """Return which block an instructor resolves to and its uncapped size."""
        strategy, block, _ = self._resolve(instructor)
        return strategy, len(block)

    def candidates(self, instructor: PreparedInstructor) -> Iterator[PreparedCandidate]:
        """
        Lazily yield the provider records to score against one instructor.

        The result is finite, ordered by candidate key and can be requested
        again for the same instructor with identical output.
        """
        strategy, block, cap = self._resolve(instructor)
        size = len(block)

        if size > cap:
            logger.warning(f"Instructor {instructor.instructor_id}: {strategy} block has {size} records, "
                           f"truncating to {cap}")

        for candidate in block[:cap]:
            yield candidate

    def get_blocking_statistics(self, instructors: Iterable[PreparedInstructor]) -> Dict[str, object]:
        """
        Calculate blocking efficiency statistics.

        Args:
            instructors: Instructors that will be matched

        Returns:
            Dictionary with blocking statistics
        """
        rows = []
        for instructor in instructors:
            strategy, block, cap = self._resolve(instructor)
            size = len(block)
            capped = min(size, cap)
            rows.append({"strategy": strategy, "block_size": size, "compared": capped})

        total_records = len(self._all)
        if not rows:
            return {"total_records": total_records, "total_instructors": 0,
                    "total_possible_pairs": 0, "generated_candidates": 0,
                    "reduction_ratio": 0.0, "strategies": {}}

        stats_df = pd.DataFrame(rows)
        total_possible_pairs = len(stats_df) * total_records
        generated = int(stats_df["compared"].sum())
        reduction_ratio = 1 - (generated / total_possible_pairs) if total_possible_pairs > 0 else 0.0

        strategies = {
            strategy: {
                "instructors": int(len(group)),
                "avg_block_size": float(group["block_size"].mean()),
                "max_block_size": int(group["block_size"].max()),
            }
            for strategy, group in stats_df.groupby("strategy")
        }

        statistics = {
            "total_records": total_records,
            "total_instructors": int(len(stats_df)),
            "total_possible_pairs": int(total_possible_pairs),
            "generated_candidates": generated,
            "reduction_ratio": reduction_ratio,
            "strategies": strategies,
        }

        logger.info(f"Blocking statistics: {generated:,} comparisons from "
                    f"{total_possible_pairs:,} possible pairs ({reduction_ratio * 100:.2f}% reduction)")
        return statistics
