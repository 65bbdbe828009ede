"""
Event store interface used by the batch jobs and read models.

Implementations:
- MongoEventStore (pymongo)
- InMemoryEventStore (tests and local runs)
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from moodtrack.core.models import Bucket, Classification, EventSource, ListeningEvent, TrackDescriptor


class EventStore(ABC):
    """Persistence boundary for events, descriptors, classifications and daily aggregates."""

    @abstractmethod
    def find_events(self, user_id: str,
                    start: Optional[datetime] = None,
                    end: Optional[datetime] = None,
                    source: Optional[EventSource] = None,
                    limit: Optional[int] = None,
                    unclassified_only: bool = False,
                    newest_first: bool = False) -> List[ListeningEvent]:
        """
        Returns the user's events with start <= played_at < end.

        Args:
            user_id: Owner of the events.
            start / end: Optional window bounds (end exclusive).
            source: Only events from this source.
            limit: Maximum number of events.
            unclassified_only: Only events without a classification.
            newest_first: Order by played_at descending instead of ascending.
        """

    @abstractmethod
    def insert_events(self, events: Iterable[ListeningEvent]) -> int:
        """Stores events, ignoring ids that already exist. Returns the number inserted."""

    @abstractmethod
    def get_descriptors(self, track_ids: Iterable[str]) -> Dict[str, TrackDescriptor]:
        """Descriptors keyed by track id (unknown ids are absent)."""

    @abstractmethod
    def upsert_descriptor(self, descriptor: TrackDescriptor) -> bool:
        """Create-or-replace by track_id. Returns True when created."""

    @abstractmethod
    def get_classifications(self, event_ids: Iterable[str]) -> Dict[str, Classification]:
        """Classifications keyed by event id."""

    @abstractmethod
    def upsert_classification(self, classification: Classification) -> bool:
        """Create-or-replace by event_id. Returns True when created, False when replaced."""

    @abstractmethod
    def upsert_daily_aggregate(self, user_id: str, bucket: Bucket) -> bool:
        """Create-or-replace by (user_id, date). Returns True when created."""

    @abstractmethod
    def get_daily_aggregates(self, user_id: str) -> List[Dict[str, object]]:
        """Stored daily aggregates ordered by date."""

    @abstractmethod
    def delete_user_data(self, user_id: str) -> Dict[str, int]:
        """
        Removes the user's classifications, aggregates and events (in that order).

        Shared track descriptors are kept. Returns deleted counts per collection.
        """

    def load_window(self, user_id: str,
                    start: Optional[datetime] = None,
                    end: Optional[datetime] = None,
                    source: Optional[EventSource] = None):
        """
        Reads a consistent snapshot for aggregation.

        Returns:
            Tuple (events, classifications by event id, descriptors by track id).
        """
        events = self.find_events(user_id, start=start, end=end, source=source)
        classifications = self.get_classifications(e.id for e in events)
        descriptors = self.get_descriptors({e.track_id for e in events})
        return events, classifications, descriptors


def aggregate_document(user_id: str, bucket: Bucket) -> Dict[str, object]:
    """Daily aggregate document stored per (user_id, date)."""
    doc = bucket.to_dict()
    doc.pop("period_start")
    doc.pop("category")
    doc["user_id"] = user_id
    doc["date"] = bucket.period_start.isoformat()
    return doc
