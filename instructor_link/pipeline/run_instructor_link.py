"""
Main pipeline orchestrator for InstructorLink.

Runs one matching batch per term: ingestion, normalization, blocking,
scoring, selection, confidence and an all-or-nothing publish of the term's
links. Composite ratings are derived on request from the published links.
"""

import argparse
import concurrent.futures
import logging
import sqlite3
import sys
import threading
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from ..blocking.candidate_blocker import CandidateBlocker
from ..config import DEFAULT_CONFIG_PATH, ScoringWeights, load_config, validate_config
from ..errors import InstructorLinkError, MalformedRecord, RunCancelled
from ..ingestion.loader import file_instructor_source, file_rating_source, load_rejected_pairs
from ..ingestion.records import ExternalRatingRecord, InstructorRecord, Provider
from ..match.aggregator import (CompositeAggregator, InstructorLink, NoPlausibleMatch,
                                ScoreBreakdown, ScoredCandidate)
from ..match.confidence import ConfidenceClassifier
from ..match.signals import SignalSet, UniquenessScorer
from ..merge.rating_combiner import CompositeRating, RatingCombiner
from ..normalize.prepared import PreparedCandidate, PreparedInstructor, RecordPreparer
from ..store.link_store import LinkStore

logger = logging.getLogger(__name__)

InstructorSource = Callable[[str], Iterable[InstructorRecord]]
RatingSource = Callable[[], Iterable[ExternalRatingRecord]]


def _instructor_sort_key(record: InstructorRecord) -> Tuple:
    return (record.instructor_id, record.display_name, record.subject_codes, record.term)


def _rating_sort_key(record: ExternalRatingRecord) -> Tuple:
    avg_rating = record.avg_rating if record.avg_rating is not None else -1.0
    return (record.candidate_key, record.raw_name, record.department or "", avg_rating,
            record.rating_count, record.reviewed_courses)


@dataclass(frozen=True)
class RunResult:
    """Summary of one published matching run."""

    term: str
    links_created: int
    links_dropped: int
    run_duration_ms: int
    links_total: int = 0
    instructors_processed: int = 0
    instructors_failed: int = 0
    instructors_without_candidates: int = 0


@dataclass(frozen=True)
class InstructorOutcome:
    """Everything one worker produced for one instructor."""

    instructor_id: str
    links: Tuple[InstructorLink, ...]
    no_match: Tuple[NoPlausibleMatch, ...]
    candidates_scored: int


class InstructorLinkPipeline:
    """
    Main pipeline orchestrator for InstructorLink.

    Shared inputs (prepared records, blocks, uniqueness index) are built once
    per run and only read by the workers; each worker returns its own
    outcome, and outcomes are merged into the batch on the calling thread.
    """

    def __init__(self, instructor_source: InstructorSource, rating_source: RatingSource,
                 link_store: Optional[LinkStore] = None,
                 config_path: str = DEFAULT_CONFIG_PATH,
                 config: Optional[Dict] = None,
                 rejected_pairs: Optional[Iterable[Tuple[str, str]]] = None):
        """
        Initialize pipeline with configuration.

        Args:
            instructor_source: Callable returning the registrar records of a term
            rating_source: Callable returning all provider rating records
            link_store: Store links are published to
            config_path: Path to configuration file, used when ``config`` is None
            config: Already loaded configuration dictionary
            rejected_pairs: (instructor_id, candidate_key) pairs never to link

        Raises:
            WeightInvariantViolation: if the signal weights do not sum to 1.0
            ValueError: if any other setting is invalid
        """
        if config is None:
            config = load_config(config_path)
        else:
            validate_config(config)
        self.config = config

        self.instructor_source = instructor_source
        self.rating_source = rating_source
        self.rejected_pairs: Set[Tuple[str, str]] = set(rejected_pairs or ())

        scoring_config = config.get("scoring", {})
        self.weights = ScoringWeights.from_config(scoring_config)
        self.preparer = RecordPreparer(config.get("normalization", {}))
        self.aggregator = CompositeAggregator(self.weights, scoring_config)
        self.confidence_classifier = ConfidenceClassifier(config)
        self.rating_combiner = RatingCombiner(config.get("combine", {}))
        self.link_store = link_store or LinkStore(config["storage"]["db_path"], self.weights)

        pipeline_config = config.get("pipeline", {})
        self.max_workers = pipeline_config.get("max_workers", 8)
        self.run_timeout_seconds = pipeline_config.get("run_timeout_seconds", 600)

        self._cancel_event = threading.Event()
        self.stage_times: Dict[str, float] = {}
        self.last_statistics: Dict[str, Dict] = {}

        logger.info("Initialized InstructorLink pipeline")

    def _start_stage_timer(self, stage_name: str):
        """Start timing for a pipeline stage."""
        self.stage_times[stage_name] = time.time()
        logger.info(f"Starting stage: {stage_name}")

    def _end_stage_timer(self, stage_name: str):
        """End timing for a pipeline stage."""
        if stage_name in self.stage_times:
            duration = time.time() - self.stage_times[stage_name]
            logger.info(f"Completed stage: {stage_name} in {duration:.2f} seconds")

    def cancel(self):
        """
        Abort the run in progress; nothing from it is published.

        A cancel issued between runs aborts the next run.
        """
        logger.warning("Cancellation requested")
        self._cancel_event.set()

    def _check_cancelled(self):
        if self._cancel_event.is_set():
            raise RunCancelled("Matching run was cancelled")

    def ingest_data(self, term: str) -> Tuple[List[InstructorRecord], List[ExternalRatingRecord]]:
        """Pull the term's registrar snapshot and all provider records."""
        self._start_stage_timer("ingestion")

        instructors = []
        for record in self.instructor_source(term):
            if record.term != term:
                logger.warning(f"Instructor {record.instructor_id} belongs to term {record.term}, skipping")
                continue
            instructors.append(record)
        ratings = list(self.rating_source())

        logger.info(f"Ingested {len(instructors)} instructors and {len(ratings)} rating records")
        self._end_stage_timer("ingestion")
        return instructors, ratings

    def normalize_data(self, instructors: List[InstructorRecord],
                       ratings: List[ExternalRatingRecord]
                       ) -> Tuple[List[PreparedInstructor], List[PreparedCandidate], int]:
        """
        Normalize every record once.

        Records are ordered by instructor id and candidate key, then by their
        remaining fields, so that the outcome does not depend on input order.
        When an id repeats, the first record in that order is kept.

        Returns:
            Tuple of (prepared instructors, prepared candidates, failed instructor count)
        """
        self._start_stage_timer("normalization")

        prepared_instructors: Dict[str, PreparedInstructor] = {}
        failed = 0
        for record in sorted(instructors, key=_instructor_sort_key):
            if record.instructor_id in prepared_instructors:
                logger.warning(f"Duplicate instructor id {record.instructor_id}, keeping first")
                continue
            try:
                prepared_instructors[record.instructor_id] = self.preparer.prepare_instructor(record)
            except MalformedRecord as e:
                failed += 1
                logger.error(f"Instructor {record.instructor_id} skipped: {e}")

        prepared_candidates: Dict[str, PreparedCandidate] = {}
        skipped = 0
        for record in sorted(ratings, key=_rating_sort_key):
            key = record.candidate_key
            if key in prepared_candidates:
                logger.warning(f"Duplicate rating record {key}, keeping first")
                continue
            try:
                prepared_candidates[key] = self.preparer.prepare_candidate(record)
            except MalformedRecord as e:
                skipped += 1
                logger.warning(f"Rating record {e.record_key} skipped: {e}")

        if skipped:
            logger.warning(f"{skipped} rating records could not be normalized")
        logger.info(f"Normalized {len(prepared_instructors)} instructors and "
                    f"{len(prepared_candidates)} rating records")
        self._end_stage_timer("normalization")
        return list(prepared_instructors.values()), list(prepared_candidates.values()), failed

    def match_instructor(self, instructor: PreparedInstructor, term: str,
                         blocker: CandidateBlocker, signal_set: SignalSet) -> InstructorOutcome:
        """
        Score one instructor's candidates and choose at most one link per provider.

        Args:
            instructor: Prepared registrar instructor
            term: Term being matched
            blocker: Shared candidate blocker
            signal_set: Shared signal scorers

        Returns:
            InstructorOutcome
        """
        scored: Dict[Provider, List[ScoredCandidate]] = defaultdict(list)
        candidates_scored = 0

        for candidate in blocker.candidates(instructor):
            self._check_cancelled()
            if (instructor.instructor_id, candidate.candidate_key) in self.rejected_pairs:
                logger.debug(f"Skipping rejected pair {instructor.instructor_id} / {candidate.candidate_key}")
                continue
            signals = signal_set.score(instructor, candidate)
            breakdown = self.aggregator.aggregate(signals, candidate.record.rating_count)
            scored[candidate.record.provider].append(
                ScoredCandidate(instructor_id=instructor.instructor_id, candidate=candidate, breakdown=breakdown)
            )
            candidates_scored += 1

        links = []
        no_match = []
        for provider in Provider:
            selection = self.aggregator.select_best(instructor.instructor_id, provider, scored.get(provider, []))
            if isinstance(selection, NoPlausibleMatch):
                no_match.append(selection)
                continue
            confident = self.confidence_classifier.classify(
                selection.breakdown, selection.candidate.record.rating_count, provider
            )
            selection = replace(selection, breakdown=replace(selection.breakdown, confident=confident))
            links.append(InstructorLink.from_scored(term, selection))

        return InstructorOutcome(
            instructor_id=instructor.instructor_id,
            links=tuple(links),
            no_match=tuple(no_match),
            candidates_scored=candidates_scored,
        )

    def score_instructors(self, term: str, instructors: List[PreparedInstructor],
                          blocker: CandidateBlocker, signal_set: SignalSet
                          ) -> Tuple[List[InstructorOutcome], int]:
        """
        Fan out instructor matching over a worker pool.

        Returns:
            Tuple of (outcomes ordered by instructor id, failed instructor count)

        Raises:
            RunCancelled: on timeout or cancel()
        """
        self._start_stage_timer("scoring")

        outcomes: Dict[str, InstructorOutcome] = {}
        failed = 0
        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="instructor-link")
        futures = {
            executor.submit(self.match_instructor, instructor, term, blocker, signal_set): instructor
            for instructor in instructors
        }

        try:
            for future in as_completed(futures, timeout=self.run_timeout_seconds):
                self._check_cancelled()
                instructor = futures[future]
                try:
                    outcomes[instructor.instructor_id] = future.result()
                except RunCancelled:
                    raise
                except Exception as e:
                    failed += 1
                    logger.error(f"Matching failed for instructor {instructor.instructor_id}: {e}")

                completed = len(outcomes) + failed
                if completed % 500 == 0:
                    logger.info(f"Matched {completed}/{len(instructors)} instructors...")

        except concurrent.futures.TimeoutError:
            self._cancel_event.set()
            raise RunCancelled(f"Matching run exceeded {self.run_timeout_seconds}s timeout") from None

        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        self._check_cancelled()
        self._end_stage_timer("scoring")
        return [outcomes[key] for key in sorted(outcomes)], failed

    def run_matching(self, term: str) -> RunResult:
        """
        Run one matching batch for a term and publish its links.

        Args:
            term: Term to match

        Returns:
            RunResult

        Raises:
            RunCancelled: if the run timed out or was cancelled; nothing is published
            PublishFailure: if the link batch could not be committed
        """
        pipeline_start_time = time.time()
        logger.info(f"Starting InstructorLink run for term {term}")

        try:
            instructors, ratings = self.ingest_data(term)
            self._check_cancelled()

            prepared_instructors, prepared_candidates, failed = self.normalize_data(instructors, ratings)
            self._check_cancelled()

            self._start_stage_timer("blocking")
            blocker = CandidateBlocker(prepared_candidates, self.config.get("blocking", {}))
            uniqueness_scorer = UniquenessScorer(prepared_instructors)
            signal_set = SignalSet(uniqueness_scorer, self.config.get("scoring", {}),
                                   self.preparer.subject_normalizer)
            blocking_statistics = blocker.get_blocking_statistics(prepared_instructors)
            self._end_stage_timer("blocking")

            outcomes, scoring_failures = self.score_instructors(term, prepared_instructors, blocker, signal_set)
            failed += scoring_failures

            links = [link for outcome in outcomes for link in outcome.links]
            without_candidates = sum(1 for outcome in outcomes if outcome.candidates_scored == 0)
            self.last_statistics = {
                "blocking": blocking_statistics,
                "scoring": self.aggregator.get_scoring_statistics([link.breakdown for link in links]),
            }

            self._check_cancelled()
            self._start_stage_timer("publish")
            duration_ms = int((time.time() - pipeline_start_time) * 1000)
            published = self.link_store.publish(term, links, {
                "run_duration_ms": duration_ms,
                "instructors_processed": len(outcomes),
                "instructors_failed": failed,
            })
            self._end_stage_timer("publish")

        except RunCancelled as e:
            logger.error(f"Run for term {term} cancelled before publish: {e}")
            raise

        except InstructorLinkError as e:
            logger.error(f"Run for term {term} failed: {e}")
            raise

        finally:
            self._cancel_event.clear()

        result = RunResult(
            term=term,
            links_created=published.links_created,
            links_dropped=published.links_dropped,
            run_duration_ms=int((time.time() - pipeline_start_time) * 1000),
            links_total=published.links_total,
            instructors_processed=len(outcomes),
            instructors_failed=failed,
            instructors_without_candidates=without_candidates,
        )

        logger.info(f"Run for term {term} completed in {result.run_duration_ms} ms: {asdict(result)}")
        return result

    def get_composite_rating(self, instructor_id: str, term: Optional[str] = None) -> Optional[CompositeRating]:
        """
        Composite rating of an instructor from the published links.

        Args:
            instructor_id: Registrar instructor id
            term: Term to read; defaults to the latest published term

        Returns:
            CompositeRating, or None when no link carries a rating
        """
        return self.rating_combiner.combine(self.link_store.get_links_for_instructor(instructor_id, term))

    def get_score_breakdown(self, instructor_id: str, provider: Union[Provider, str],
                            term: Optional[str] = None) -> Optional[ScoreBreakdown]:
        """Breakdown behind a published link, or None when there is no link."""
        if not isinstance(provider, Provider):
            provider = Provider.parse(provider)
        link = self.link_store.get_link(instructor_id, provider, term)
        return link.breakdown if link else None


def main():
    """Main entry point for InstructorLink pipeline."""
    parser = argparse.ArgumentParser(description="InstructorLink Identity Resolution Pipeline")
    parser.add_argument("--term", required=True, help="Term to match (e.g. 2024-fall)")
    parser.add_argument("--instructors", required=True, help="Registrar extract (CSV, JSON-lines or Parquet)")
    parser.add_argument("--rmp", help="RMP rating records file")
    parser.add_argument("--bluebook", help="BlueBook rating records file")
    parser.add_argument("--rejected", help="File of reviewer-rejected instructor/candidate pairs")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Configuration file path")
    parser.add_argument("--db", help="Link database path (overrides storage.db_path)")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    args = parser.parse_args()

    # Ensure log directory exists
    Path("logs").mkdir(exist_ok=True)

    # Setup logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler("logs/instructor_link.log")
        ]
    )

    rating_files = [(path, provider) for path, provider in
                    ((args.rmp, Provider.RMP), (args.bluebook, Provider.BLUEBOOK)) if path]
    if not rating_files:
        parser.error("at least one of --rmp or --bluebook is required")

    try:
        config = load_config(args.config)
        if args.db:
            config["storage"]["db_path"] = args.db

        rejected_pairs = load_rejected_pairs(args.rejected) if args.rejected else set()

        pipeline = InstructorLinkPipeline(
            instructor_source=file_instructor_source(args.instructors),
            rating_source=file_rating_source(rating_files),
            config=config,
            rejected_pairs=rejected_pairs,
        )
        result = pipeline.run_matching(args.term)

        # Print summary
        print("\n" + "="*50)
        print("INSTRUCTORLINK RUN SUMMARY")
        print("="*50)
        print(f"Term: {result.term}")
        print(f"Instructors Processed: {result.instructors_processed:,}")
        print(f"Instructors Failed: {result.instructors_failed:,}")
        print(f"Instructors Without Candidates: {result.instructors_without_candidates:,}")
        print(f"Links Published: {result.links_total:,} "
              f"(+{result.links_created:,} / -{result.links_dropped:,})")
        print(f"Total Duration: {result.run_duration_ms / 1000:.2f} seconds")
        print("="*50)

    except (InstructorLinkError, ValueError, OSError, sqlite3.Error) as e:
        logger.error(f"Pipeline execution failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
