# averages_store.py
"""MongoDB-backed store of precomputed classroom averages.

One document per classroom, keyed by ``classroom_id``::

    {"classroom_id": "...", "average_score": 81.67, "last_calculated": datetime}

A store handle wraps a single client and is meant to live for one job run or
one request; nothing here caches a client at module level.
"""
import logging
import re
from datetime import datetime, timezone

from pymongo import ASCENDING, MongoClient, UpdateOne
from pymongo.errors import BulkWriteError, PyMongoError

from errors import StoreConnectionError, WriteError

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "class_averages"


def mask_uri(uri):
    """Hide credentials in a connection string before it is logged."""
    if not uri:
        return "Not Set"
    return re.sub(r"://[^@/]+@", "://***@", uri)


def _summary_update(average_score, now):
    return {"$set": {"average_score": average_score, "last_calculated": now}}


class AveragesStore:
    def __init__(self, client, collection):
        self.client = client
        self.collection = collection
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def closed(self):
        return self._closed

    def upsert_averages(self, averages, now=None, batch=False):
        """Upsert ``(classroom_id, average_score)`` pairs; returns how many were written.

        Stops at the first failure and raises ``WriteError`` carrying the
        failing classroom and the number already written.
        """
        averages = list(averages)
        if not averages:
            return 0
        now = now or datetime.now(timezone.utc)
        if batch:
            return self._bulk_upsert(averages, now)

        written = 0
        for classroom_id, average_score in averages:
            try:
                self.collection.update_one(
                    {"classroom_id": classroom_id},
                    _summary_update(average_score, now),
                    upsert=True,
                )
            except PyMongoError as exc:
                raise WriteError(
                    f"Failed to save average for classroom {classroom_id}: {exc}",
                    classroom_id=classroom_id,
                    written=written,
                    cause=exc,
                ) from exc
            written += 1
        return written

    def _bulk_upsert(self, averages, now):
        operations = [
            UpdateOne({"classroom_id": classroom_id}, _summary_update(average_score, now), upsert=True)
            for classroom_id, average_score in averages
        ]
        try:
            self.collection.bulk_write(operations, ordered=True)
        except BulkWriteError as exc:
            write_errors = exc.details.get("writeErrors") or []
            if not write_errors:
                # every upsert was applied; only the write concern was not met
                written = exc.details.get("nUpserted", 0) + exc.details.get("nMatched", 0)
                raise WriteError(
                    f"Write concern not satisfied for class averages batch: {exc.details.get('writeConcernErrors')}",
                    classroom_id=None,
                    written=written or len(operations),
                    cause=exc,
                ) from exc
            index = write_errors[0].get("index", 0)
            classroom_id = averages[index][0]
            raise WriteError(
                f"Failed to save average for classroom {classroom_id}: {write_errors[0].get('errmsg', exc)}",
                classroom_id=classroom_id,
                written=index,
                cause=exc,
            ) from exc
        except PyMongoError as exc:
            # Nothing is known to have been applied
            classroom_id = averages[0][0]
            raise WriteError(
                f"Batch write of class averages failed: {exc}",
                classroom_id=classroom_id,
                written=0,
                cause=exc,
            ) from exc
        return len(operations)

    def fetch_averages(self):
        docs = self.collection.find({}, {"_id": 0}).sort("classroom_id", ASCENDING)
        return list(docs)

    def get_average(self, classroom_id):
        """Return the summary for one classroom, or None if not yet calculated."""
        return self.collection.find_one({"classroom_id": classroom_id}, {"_id": 0})

    def close(self):
        if self._closed:
            return
        self._closed = True
        self.client.close()
        logger.info("MongoDB connection closed.")


def connect_averages_store(config, client_factory=None):
    """Open a store handle from ``config`` (a mapping such as ``app.config``).

    Raises ``StoreConnectionError`` when the URI or database name is missing
    or the server does not answer a ping within ``MONGO_TIMEOUT_MS``.
    """
    uri = config.get("MONGO_URI")
    db_name = config.get("MONGO_DB_NAME")
    collection_name = config.get("AVERAGES_COLLECTION") or DEFAULT_COLLECTION
    timeout_ms = int(config.get("MONGO_TIMEOUT_MS") or 5000)

    logger.info("Mongo DB name: %s", db_name)
    logger.info("Mongo URI (masked): %s", mask_uri(uri))

    if not uri or not db_name:
        raise StoreConnectionError(
            f"Missing averages store configuration. MONGO_URI: {bool(uri)}, MONGO_DB_NAME: {bool(db_name)}"
        )

    factory = client_factory or config.get("AVERAGES_CLIENT_FACTORY") or MongoClient
    client = None
    try:
        client = factory(
            uri,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms,
        )
        client.admin.command("ping")
        collection = client[db_name][collection_name]
        collection.create_index([("classroom_id", ASCENDING)], unique=True)
    except PyMongoError as exc:
        if client is not None:
            client.close()
        raise StoreConnectionError(f"Could not connect to the averages store: {exc}", cause=exc) from exc

    logger.info("MongoDB connected successfully.")
    return AveragesStore(client, collection)
