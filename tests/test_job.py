from __future__ import annotations

from datetime import datetime, timedelta, timezone

from aggregation import JobState, run_aggregation
from errors import SourceReadError
from tests.mocks.mongo import unreachable, write_failure

NOW = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)


def _scores(averages):
    return {d["classroom_id"]: d["average_score"] for d in averages.find({}, {"_id": 0})}


def test_scenario_end_to_end(app, add_scores, averages, mongo_server) -> None:
    add_scores({"A": [80, 90], "B": [100]})

    report = run_aggregation(app.config, now=NOW)

    assert report.ok
    assert report.state == JobState.DONE
    payload = report.to_dict()
    assert {k: payload[k] for k in ("state", "classrooms_processed", "records_processed")} == {
        "state": "Done", "classrooms_processed": 2, "records_processed": 3,
    }
    assert "error" not in payload
    assert _scores(averages) == {"A": 85.0, "B": 100.0}
    assert all(d["last_calculated"] == NOW for d in averages.docs)
    assert mongo_server.clients[0].close_calls == 1


def test_rounded_average_is_stored(app, add_scores, averages) -> None:
    add_scores({"A": [70, 85, 90]})

    run_aggregation(app.config)

    assert _scores(averages) == {"A": 81.67}


def test_empty_source_succeeds_without_writes(app, averages, mongo_server) -> None:
    report = run_aggregation(app.config)

    assert report.ok
    assert report.classrooms_processed == 0
    assert report.records_processed == 0
    assert averages.docs == []
    assert averages.update_calls == []
    assert mongo_server.clients[0].close_calls == 1


def test_second_run_overwrites_instead_of_duplicating(app, add_scores, averages) -> None:
    add_scores({"A": [80, 90], "B": [100], "C": [40, 41]})

    first = run_aggregation(app.config, now=NOW)
    after_first = _scores(averages)
    second = run_aggregation(app.config, now=NOW + timedelta(hours=1))

    assert first.ok and second.ok
    assert _scores(averages) == after_first
    assert len(averages.docs) == 3
    assert sorted(d["classroom_id"] for d in averages.docs) == ["A", "B", "C"]
    assert all(d["last_calculated"] == NOW + timedelta(hours=1) for d in averages.docs)


def test_new_scores_change_the_stored_average(app, add_scores, averages) -> None:
    add_scores({"A": [80]})
    run_aggregation(app.config)
    add_scores({"A": [60]})
    run_aggregation(app.config)

    assert _scores(averages) == {"A": 70.0}


def test_partial_write_failure_is_reported(app, add_scores, averages, mongo_server) -> None:
    add_scores({"A": [10], "B": [20], "C": [30], "D": [40], "E": [50]})
    # insertion order decides write order; fail on the fourth
    averages.fail_on["D"] = write_failure()

    report = run_aggregation(app.config)

    assert report.state == JobState.FAILED
    assert report.classrooms_processed == 3
    assert report.records_processed == 5
    assert report.failed_classroom_id == "D"
    assert report.error["kind"] == "WriteError"
    assert "classroom D" in report.error["message"]
    assert sorted(_scores(averages)) == ["A", "B", "C"]
    assert mongo_server.clients[0].close_calls == 1


def test_partial_write_failure_in_batch_mode(app, add_scores, averages) -> None:
    add_scores({"A": [10], "B": [20], "C": [30], "D": [40], "E": [50]})
    averages.fail_on["D"] = write_failure()
    app.config["AVERAGES_BATCH_WRITE"] = True

    report = run_aggregation(app.config)

    assert averages.bulk_calls == 1
    assert report.classrooms_processed == 3
    assert report.failed_classroom_id == "D"


def test_missing_store_configuration(app, mongo_server) -> None:
    app.config["MONGO_URI"] = None

    report = run_aggregation(app.config)

    assert report.state == JobState.FAILED
    assert report.error["kind"] == "ConnectionError"
    assert "MONGO_URI: False" in report.error["message"]
    assert mongo_server.clients == []


def test_missing_source_configuration(app, mongo_server) -> None:
    config = dict(app.config)
    config["SQLALCHEMY_DATABASE_URI"] = ""

    report = run_aggregation(config)

    assert report.error["kind"] == "ConnectionError"
    assert mongo_server.clients == []


def test_unreachable_store(app, add_scores, mongo_server) -> None:
    add_scores({"A": [50]})
    mongo_server.ping_error = unreachable()

    report = run_aggregation(app.config)

    assert report.error["kind"] == "ConnectionError"
    assert report.records_processed == 0


def test_source_read_failure_releases_store(app, mongo_server, averages, monkeypatch) -> None:
    def broken_read(session=None):
        raise SourceReadError("Could not read progress records: permission denied for table progress")

    monkeypatch.setattr("aggregation.read_progress_records", broken_read)

    report = run_aggregation(app.config)

    assert report.state == JobState.FAILED
    assert report.error == {
        "kind": "SourceReadError",
        "message": "Could not read progress records: permission denied for table progress",
    }
    assert averages.update_calls == []
    assert mongo_server.clients[0].close_calls == 1


def test_invalid_record_is_reported(app, mongo_server, averages, monkeypatch) -> None:
    monkeypatch.setattr("aggregation.read_progress_records", lambda session=None: [("A", 80), ("A", "ninety")])

    report = run_aggregation(app.config)

    assert report.error["kind"] == "InvalidRecordError"
    assert averages.update_calls == []
    assert mongo_server.clients[0].close_calls == 1


def test_release_failure_does_not_mask_write_error(app, add_scores, averages, mongo_server) -> None:
    add_scores({"A": [10], "B": [20]})
    averages.fail_on["B"] = write_failure()
    mongo_server.close_error = RuntimeError("socket already closed")

    report = run_aggregation(app.config)

    assert report.error["kind"] == "WriteError"
    assert report.classrooms_processed == 1
    assert "socket already closed" in report.release_error
    assert mongo_server.clients[0].close_calls == 1


def test_release_failure_after_success_fails_the_run(app, add_scores, mongo_server) -> None:
    add_scores({"A": [10]})
    mongo_server.close_error = RuntimeError("socket already closed")

    report = run_aggregation(app.config)

    assert report.state == JobState.FAILED
    assert report.error["kind"] == "ConnectionError"
    assert report.classrooms_processed == 1
    assert report.to_dict()["release_error"].endswith("socket already closed")


def test_each_run_uses_its_own_client(app, add_scores, mongo_server) -> None:
    add_scores({"A": [10]})

    run_aggregation(app.config)
    run_aggregation(app.config)

    assert len(mongo_server.clients) == 2
    assert [c.close_calls for c in mongo_server.clients] == [1, 1]


def test_report_carries_run_timestamps(app) -> None:
    report = run_aggregation(app.config)

    payload = report.to_dict()
    assert report.finished_at >= report.started_at
    assert datetime.fromisoformat(payload["started_at"]) == report.started_at
    assert datetime.fromisoformat(payload["finished_at"]) == report.finished_at


def test_overflowing_total_is_reported_not_raised(app, mongo_server, averages, monkeypatch) -> None:
    monkeypatch.setattr("aggregation.read_progress_records", lambda session=None: [("A", 1e308), ("A", 1e308)])

    report = run_aggregation(app.config)

    assert report.state == JobState.FAILED
    assert report.error["kind"] == "InvalidRecordError"
    assert "classroom A" in report.error["message"]
    assert averages.update_calls == []
    assert mongo_server.clients[0].close_calls == 1


def test_unexpected_error_becomes_report_for_its_step(app, mongo_server, monkeypatch) -> None:
    def broken_read(session=None):
        raise RuntimeError("driver bug")

    monkeypatch.setattr("aggregation.read_progress_records", broken_read)

    report = run_aggregation(app.config)

    assert report.state == JobState.FAILED
    assert report.error["kind"] == "SourceReadError"
    assert "driver bug" in report.error["message"]
    assert mongo_server.clients[0].close_calls == 1


def test_batch_write_concern_failure_reports_applied_classrooms(app, add_scores, averages) -> None:
    add_scores({"A": [10], "B": [20], "C": [30]})
    averages.write_concern_error = "waiting for replication timed out"
    app.config["AVERAGES_BATCH_WRITE"] = True

    report = run_aggregation(app.config)

    assert report.error["kind"] == "WriteError"
    assert report.classrooms_processed == 3
    assert report.failed_classroom_id is None
    assert len(averages.docs) == 3
