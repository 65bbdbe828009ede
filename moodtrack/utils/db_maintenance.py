"""
Database Maintenance Utility
Creates the indexes the event store relies on for idempotent upserts.
"""

import logging
from typing import List

import pymongo
from pymongo.errors import PyMongoError

from moodtrack.adapters.repositories.mongo import (
    AGGREGATES_COLLECTION,
    CLASSIFICATIONS_COLLECTION,
    DESCRIPTORS_COLLECTION,
    EVENTS_COLLECTION,
)
from moodtrack.core.errors import StoreOperationError

logger = logging.getLogger(__name__)


class DatabaseMaintainer:
    """Manages indexes of the moodtrack database."""

    def __init__(self, db: pymongo.database.Database):
        self.db = db

    def ensure_indexes(self) -> List[str]:
        """
        Creates unique and query indexes (no-op when they already exist).

        Returns:
            Names of the indexes.

        Raises:
            StoreOperationError: If index creation fails.
        """
        try:
            names = [
                self.db[EVENTS_COLLECTION].create_index("event_id", unique=True),
                self.db[EVENTS_COLLECTION].create_index(
                    [("user_id", pymongo.ASCENDING), ("played_at", pymongo.ASCENDING)]
                ),
                self.db[DESCRIPTORS_COLLECTION].create_index("track_id", unique=True),
                self.db[CLASSIFICATIONS_COLLECTION].create_index("event_id", unique=True),
                self.db[CLASSIFICATIONS_COLLECTION].create_index("user_id"),
                self.db[AGGREGATES_COLLECTION].create_index(
                    [("user_id", pymongo.ASCENDING), ("date", pymongo.ASCENDING)], unique=True
                ),
            ]
        except PyMongoError as e:
            logger.error(f"Index creation failed: {e}")
            raise StoreOperationError(f"Index creation failed: {e}") from e

        logger.info(f"[OK] Indexes ready: {', '.join(names)}")
        return names
