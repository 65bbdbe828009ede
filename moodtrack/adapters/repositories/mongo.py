"""
MongoDB event store.

This module provides:
- Connection configuration and a singleton connection manager
- MongoEventStore: events, shared track descriptors, classifications and
  daily aggregates, all written with idempotent `replace_one(..., upsert=True)`
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import pymongo
from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError, ServerSelectionTimeoutError
import certifi

from moodtrack.adapters.repositories.base import EventStore, aggregate_document
from moodtrack.config import DEFAULT_DB_NAME, EngineConfig
from moodtrack.core.errors import PersistenceConflictError, StoreOperationError
from moodtrack.core.models import Bucket, Classification, EventSource, ListeningEvent, TrackDescriptor

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

EVENTS_COLLECTION = "listening_events"
DESCRIPTORS_COLLECTION = "track_descriptors"
CLASSIFICATIONS_COLLECTION = "classifications"
AGGREGATES_COLLECTION = "daily_aggregates"

CONNECTION_TIMEOUT_MS = 10000


# ============================================================================
# EXCEPTIONS
# ============================================================================

class MongoDBConnectionError(StoreOperationError):
    """Raised when MongoDB connection fails."""
    pass


# ============================================================================
# DATABASE CONNECTION
# ============================================================================

class DatabaseConfig:
    """Encapsulates MongoDB connection configuration."""

    def __init__(self, uri: Optional[str] = None, db_name: str = DEFAULT_DB_NAME):
        """
        Initialize database configuration.

        Args:
            uri: MongoDB connection URI.
            db_name: Database name.

        Raises:
            ValueError: If URI not provided.
        """
        self.uri = uri
        self.db_name = db_name
        if not self.uri:
            raise ValueError("MONGODB_URI environment variable not set")

    def get_client(self) -> MongoClient:
        """
        Creates a MongoDB client with secure SSL/TLS configuration.

        Returns:
            Connected MongoClient instance.

        Raises:
            MongoDBConnectionError: If connection fails.
        """
        try:
            client = MongoClient(
                self.uri,
                tlsCAFile=certifi.where(),
                tz_aware=True,
                serverSelectionTimeoutMS=CONNECTION_TIMEOUT_MS,
                connectTimeoutMS=CONNECTION_TIMEOUT_MS
            )
            client.admin.command('ping')
            logger.info("[OK] MongoDB connected successfully")
            return client

        except ServerSelectionTimeoutError:
            logger.error("MongoDB connection timeout")
            raise MongoDBConnectionError("Connection timeout") from None
        except OperationFailure as e:
            logger.error(f"MongoDB authentication failed: {e}")
            raise MongoDBConnectionError(f"Authentication failed: {e}") from None
        except PyMongoError as e:
            logger.error(f"MongoDB connection failed: {e}")
            raise MongoDBConnectionError(str(e)) from e


class DatabaseConnection:
    """Singleton connection manager for MongoDB."""

    _instance: Optional['DatabaseConnection'] = None
    _client: Optional[MongoClient] = None

    def __new__(cls) -> 'DatabaseConnection':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def get_client(self, config: DatabaseConfig) -> MongoClient:
        """
        Gets or creates MongoDB client.

        Raises:
            MongoDBConnectionError: If connection fails.
        """
        if self._client is None:
            self._client = config.get_client()
        return self._client

    def get_database(self, config: DatabaseConfig) -> pymongo.database.Database:
        return self.get_client(config)[config.db_name]

    def close(self) -> None:
        """Closes database connection."""
        if self._client:
            self._client.close()
            self._client = None
            logger.info("MongoDB connection closed")


def get_database(config: EngineConfig) -> pymongo.database.Database:
    """
    Main entry point for database access.

    Raises:
        MongoDBConnectionError: If the URI is missing or the connection fails.
    """
    try:
        db_config = DatabaseConfig(config.mongodb_uri, config.db_name)
    except ValueError as e:
        logger.error(str(e))
        raise MongoDBConnectionError(str(e)) from e
    return DatabaseConnection().get_database(db_config)


# ============================================================================
# EVENT STORE
# ============================================================================

class MongoEventStore(EventStore):
    """EventStore backed by four MongoDB collections."""

    def __init__(self, db: pymongo.database.Database):
        self.db = db
        self.events = db[EVENTS_COLLECTION]
        self.descriptors = db[DESCRIPTORS_COLLECTION]
        self.classifications = db[CLASSIFICATIONS_COLLECTION]
        self.aggregates = db[AGGREGATES_COLLECTION]

    @classmethod
    def from_config(cls, config: EngineConfig) -> "MongoEventStore":
        return cls(get_database(config))

    # ------------------------------------------------------------------
    # EVENTS
    # ------------------------------------------------------------------

    def find_events(self, user_id: str,
                    start: Optional[datetime] = None,
                    end: Optional[datetime] = None,
                    source: Optional[EventSource] = None,
                    limit: Optional[int] = None,
                    unclassified_only: bool = False,
                    newest_first: bool = False) -> List[ListeningEvent]:
        query: Dict[str, Any] = {"user_id": user_id}
        played_at: Dict[str, Any] = {}
        if start is not None:
            played_at["$gte"] = start
        if end is not None:
            played_at["$lt"] = end
        if played_at:
            query["played_at"] = played_at
        if source is not None:
            query["source"] = source.value

        direction = pymongo.DESCENDING if newest_first else pymongo.ASCENDING
        try:
            if unclassified_only:
                pipeline: List[Dict[str, Any]] = [
                    {"$match": query},
                    {"$lookup": {
                        "from": CLASSIFICATIONS_COLLECTION,
                        "localField": "event_id",
                        "foreignField": "event_id",
                        "as": "_classification",
                    }},
                    {"$match": {"_classification": {"$size": 0}}},
                    {"$project": {"_classification": 0}},
                    {"$sort": {"played_at": direction, "event_id": direction}},
                ]
                if limit:
                    pipeline.append({"$limit": limit})
                docs = list(self.events.aggregate(pipeline))
            else:
                cursor = self.events.find(query).sort(
                    [("played_at", direction), ("event_id", direction)]
                )
                if limit:
                    cursor = cursor.limit(limit)
                docs = list(cursor)
        except PyMongoError as e:
            logger.error(f"Failed to read events of {user_id}: {e}")
            raise StoreOperationError(f"Event query failed: {e}") from e

        return [ListeningEvent.from_document(doc) for doc in docs]

    def insert_events(self, events: Iterable[ListeningEvent]) -> int:
        inserted = 0
        try:
            for event in events:
                result = self.events.update_one(
                    {"event_id": event.id},
                    {"$setOnInsert": event.to_document()},
                    upsert=True
                )
                if result.upserted_id is not None:
                    inserted += 1
        except PyMongoError as e:
            logger.error(f"Failed to insert events: {e}")
            raise StoreOperationError(f"Event insert failed: {e}") from e
        logger.info(f"[OK] Inserted {inserted} new events")
        return inserted

    # ------------------------------------------------------------------
    # DESCRIPTORS & CLASSIFICATIONS
    # ------------------------------------------------------------------

    def get_descriptors(self, track_ids: Iterable[str]) -> Dict[str, TrackDescriptor]:
        ids = list(set(track_ids))
        if not ids:
            return {}
        try:
            docs = self.descriptors.find({"track_id": {"$in": ids}})
            return {doc["track_id"]: TrackDescriptor.from_document(doc) for doc in docs}
        except PyMongoError as e:
            raise StoreOperationError(f"Descriptor query failed: {e}") from e

    def upsert_descriptor(self, descriptor: TrackDescriptor) -> bool:
        return self._replace(self.descriptors, {"track_id": descriptor.track_id},
                             descriptor.to_document())

    def get_classifications(self, event_ids: Iterable[str]) -> Dict[str, Classification]:
        ids = list(set(event_ids))
        if not ids:
            return {}
        try:
            docs = self.classifications.find({"event_id": {"$in": ids}})
            return {doc["event_id"]: Classification.from_document(doc) for doc in docs}
        except PyMongoError as e:
            raise StoreOperationError(f"Classification query failed: {e}") from e

    def upsert_classification(self, classification: Classification) -> bool:
        return self._replace(self.classifications, {"event_id": classification.event_id},
                             classification.to_document())

    # ------------------------------------------------------------------
    # AGGREGATES & RESET
    # ------------------------------------------------------------------

    def upsert_daily_aggregate(self, user_id: str, bucket: Bucket) -> bool:
        doc = aggregate_document(user_id, bucket)
        return self._replace(self.aggregates, {"user_id": user_id, "date": doc["date"]}, doc)

    def get_daily_aggregates(self, user_id: str) -> List[Dict[str, object]]:
        try:
            cursor = self.aggregates.find({"user_id": user_id}, {"_id": 0}).sort("date", pymongo.ASCENDING)
            return list(cursor)
        except PyMongoError as e:
            raise StoreOperationError(f"Aggregate query failed: {e}") from e

    def delete_user_data(self, user_id: str) -> Dict[str, int]:
        try:
            event_ids = self.events.distinct("event_id", {"user_id": user_id})
            classifications = self.classifications.delete_many(
                {"$or": [{"event_id": {"$in": event_ids}}, {"user_id": user_id}]}
            )
            aggregates = self.aggregates.delete_many({"user_id": user_id})
            events = self.events.delete_many({"user_id": user_id})
        except PyMongoError as e:
            logger.error(f"Failed to delete data of {user_id}: {e}")
            raise StoreOperationError(f"Delete failed: {e}") from e

        counts = {
            "classifications": classifications.deleted_count,
            "aggregates": aggregates.deleted_count,
            "events": events.deleted_count,
        }
        logger.info(f"[OK] Deleted data of {user_id}: {counts}")
        return counts

    @staticmethod
    def _replace(collection: pymongo.collection.Collection,
                 key: Dict[str, Any], document: Dict[str, Any]) -> bool:
        """
        Create-or-replace one document.

        Returns:
            True when the document was created.

        Raises:
            PersistenceConflictError: If a concurrent upsert won the race on a unique key.
            StoreOperationError: On any other database failure.
        """
        try:
            result = collection.replace_one(key, document, upsert=True)
        except DuplicateKeyError as e:
            logger.warning(f"[WARN] Duplicate key on {collection.name} {key}: {e}")
            raise PersistenceConflictError(f"Concurrent write on {key}") from e
        except PyMongoError as e:
            logger.error(f"Failed to upsert into {collection.name}: {e}")
            raise StoreOperationError(f"Upsert failed: {e}") from e
        return result.upserted_id is not None
