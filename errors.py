# errors.py
"""Failures of an aggregation run.

Every class carries the ``kind`` string that ends up in the job report, so
callers can branch on it without importing the classes.
"""


class AggregationError(Exception):
    kind = "AggregationError"

    def __init__(self, message, cause=None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self):
        return {"kind": self.kind, "message": self.message}


class StoreConnectionError(AggregationError):
    """The averages store (or the source configuration) is unreachable."""
    kind = "ConnectionError"


class SourceReadError(AggregationError):
    kind = "SourceReadError"


class InvalidRecordError(AggregationError):
    kind = "InvalidRecordError"

    def __init__(self, message, classroom_id=None, position=None):
        super().__init__(message)
        self.classroom_id = classroom_id
        self.position = position


class WriteError(AggregationError):
    kind = "WriteError"

    def __init__(self, message, classroom_id=None, written=0, cause=None):
        super().__init__(message, cause=cause)
        self.classroom_id = classroom_id
        self.written = written
