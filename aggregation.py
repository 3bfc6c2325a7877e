# aggregation.py
"""Recompute per-classroom average scores and store them for the dashboards.

A run reads every progress row, groups the scores by classroom, and upserts
one rounded mean per classroom into the averages store. Runs are full
recomputes; the store keeps only the latest average for each classroom.
"""
import logging
import math
from collections import namedtuple
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from numbers import Real
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from averages_store import connect_averages_store
from errors import AggregationError, InvalidRecordError, SourceReadError, StoreConnectionError, WriteError
from models import db, Progress

logger = logging.getLogger(__name__)

ProgressRecord = namedtuple("ProgressRecord", ["classroom_id", "score"])

TWO_PLACES = Decimal("0.01")


# ----- Record source -----

def read_progress_records(session=None):
    """Every progress row as ``(classroom_id, score)``, unfiltered and unpaginated."""
    session = session or db.session
    try:
        rows = session.query(Progress.classroom_id, Progress.score).all()
    except SQLAlchemyError as exc:
        session.rollback()
        raise SourceReadError(f"Could not read progress records: {exc}", cause=exc) from exc
    return [ProgressRecord(classroom_id, score) for classroom_id, score in rows]


# ----- Aggregation -----

@dataclass
class ClassroomAggregate:
    classroom_id: Any
    total_score: float = 0.0
    count: int = 0

    def add(self, score):
        self.total_score += score
        self.count += 1

    @property
    def average(self):
        return self.total_score / self.count


def round_score(value):
    """Round half away from zero to two places, on the decimal form of ``value``.

    ``round()`` works on the binary float and rounds ties to even, so
    ``round(80.125, 2) == 80.12``; this gives ``80.13``.
    """
    return float(Decimal(repr(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def _checked_score(record, position):
    classroom_id, score = record
    if classroom_id is None:
        raise InvalidRecordError(
            f"Progress record #{position} has no classroom_id",
            classroom_id=None,
            position=position,
        )
    if isinstance(score, bool) or not isinstance(score, (Real, Decimal)):
        raise InvalidRecordError(
            f"Progress record #{position} for classroom {classroom_id} has a non-numeric score: {score!r}",
            classroom_id=classroom_id,
            position=position,
        )
    score = float(score)
    if not math.isfinite(score):
        raise InvalidRecordError(
            f"Progress record #{position} for classroom {classroom_id} has a non-finite score: {score!r}",
            classroom_id=classroom_id,
            position=position,
        )
    return classroom_id, score


def aggregate_by_classroom(records):
    aggregates = {}
    for position, record in enumerate(records):
        classroom_id, score = _checked_score(record, position)
        if classroom_id not in aggregates:
            aggregates[classroom_id] = ClassroomAggregate(classroom_id)
        aggregates[classroom_id].add(score)
    return aggregates


def compute_class_averages(records):
    """``[(classroom_id, average_score), ...]``, one pair per classroom seen."""
    aggregates = aggregate_by_classroom(records)
    averages = []
    for agg in aggregates.values():
        average = agg.average
        if not math.isfinite(average):
            raise InvalidRecordError(
                f"Scores for classroom {agg.classroom_id} overflow: total of {agg.count} records is {agg.total_score!r}",
                classroom_id=agg.classroom_id,
            )
        averages.append((agg.classroom_id, round_score(average)))
    return averages


# ----- Job -----

class JobState(str, Enum):
    IDLE = "Idle"
    CONNECTING = "Connecting"
    READING = "Reading"
    AGGREGATING = "Aggregating"
    WRITING = "Writing"
    DONE = "Done"
    FAILED = "Failed"


@dataclass
class JobReport:
    state: JobState = JobState.IDLE
    classrooms_processed: int = 0
    records_processed: int = 0
    error: Optional[Dict[str, str]] = None
    failed_classroom_id: Any = None
    release_error: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def ok(self):
        return self.state == JobState.DONE

    def to_dict(self):
        payload = {
            "state": self.state.value,
            "classrooms_processed": self.classrooms_processed,
            "records_processed": self.records_processed,
        }
        if self.error is not None:
            payload["error"] = dict(self.error)
        if self.failed_classroom_id is not None:
            payload["failed_classroom_id"] = self.failed_classroom_id
        if self.release_error is not None:
            payload["release_error"] = self.release_error
        payload["started_at"] = self.started_at.isoformat()
        payload["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return payload


def _enter(report, state):
    logger.info("Aggregation: %s -> %s", report.state.value, state.value)
    report.state = state


def _fail(report, exc):
    report.error = exc.to_dict()
    report.state = JobState.FAILED
    logger.error("Aggregation failed (%s): %s", exc.kind, exc.message)


# error kind reported for an unexpected exception, by the state it escaped from
_UNEXPECTED_ERRORS = {
    JobState.CONNECTING: StoreConnectionError,
    JobState.READING: SourceReadError,
    JobState.AGGREGATING: InvalidRecordError,
    JobState.WRITING: WriteError,
}


def _unexpected(report, exc):
    error_cls = _UNEXPECTED_ERRORS.get(report.state, StoreConnectionError)
    logger.exception("Unexpected error while %s", report.state.value)
    return error_cls(f"Unexpected error while {report.state.value}: {exc!r}")


def _check_source_config(config):
    if not config.get("SQLALCHEMY_DATABASE_URI"):
        raise StoreConnectionError("Missing record source configuration. SQLALCHEMY_DATABASE_URI is not set")


def run_aggregation(config, session=None, client_factory=None, now=None):
    """Run one aggregation and return a ``JobReport``.

    No exception escapes: an ``AggregationError`` becomes a ``Failed``
    report, and anything else is reported under the kind of the step it
    escaped from. The
    store handle is closed exactly once however the run ends; a failure to
    close is recorded without replacing an earlier error.
    """
    report = JobReport()
    store = None
    try:
        _enter(report, JobState.CONNECTING)
        _check_source_config(config)
        store = connect_averages_store(config, client_factory=client_factory)

        _enter(report, JobState.READING)
        records = read_progress_records(session)
        report.records_processed = len(records)
        logger.info("Fetched %d progress records.", len(records))

        _enter(report, JobState.AGGREGATING)
        averages = compute_class_averages(records)

        _enter(report, JobState.WRITING)
        if not averages:
            logger.info("No progress records found.")
        report.classrooms_processed = store.upsert_averages(
            averages,
            now=now,
            batch=bool(config.get("AVERAGES_BATCH_WRITE")),
        )
        _enter(report, JobState.DONE)
        logger.info(
            "Saved averages for %d classrooms from %d records.",
            report.classrooms_processed, report.records_processed,
        )
    except AggregationError as exc:
        if exc.kind == "WriteError":
            report.classrooms_processed = exc.written
            report.failed_classroom_id = exc.classroom_id
        _fail(report, exc)
    except Exception as exc:
        _fail(report, _unexpected(report, exc))
    finally:
        if store is not None:
            try:
                store.close()
            except Exception as close_exc:
                logger.exception("Error closing MongoDB connection")
                report.release_error = f"Error closing averages store: {close_exc}"
                if report.error is None:
                    _fail(report, StoreConnectionError(report.release_error, cause=close_exc))
        report.finished_at = datetime.now(timezone.utc)
    return report
