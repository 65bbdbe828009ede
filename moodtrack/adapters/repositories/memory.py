"""
In-memory event store with the same semantics as the MongoDB store.

Used by the test suite and by local runs without a database. Upserts are
guarded by a lock so concurrent writers never observe a half-written record.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from moodtrack.adapters.repositories.base import EventStore, aggregate_document
from moodtrack.core.models import Bucket, Classification, EventSource, ListeningEvent, TrackDescriptor

logger = logging.getLogger(__name__)


class InMemoryEventStore(EventStore):
    """Dictionary-backed EventStore."""

    def __init__(self):
        self._lock = threading.Lock()
        self._events: Dict[str, ListeningEvent] = {}
        self._descriptors: Dict[str, TrackDescriptor] = {}
        self._classifications: Dict[str, Classification] = {}
        self._aggregates: Dict[Tuple[str, str], Dict[str, object]] = {}

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
        with self._lock:
            selected = [
                e for e in self._events.values()
                if e.user_id == user_id
                and (start is None or e.played_at >= start)
                and (end is None or e.played_at < end)
                and (source is None or e.source == source)
                and (not unclassified_only or e.id not in self._classifications)
            ]
        selected.sort(key=lambda e: (e.played_at, e.id), reverse=newest_first)
        if limit is not None:
            selected = selected[:limit]
        return selected

    def insert_events(self, events: Iterable[ListeningEvent]) -> int:
        inserted = 0
        with self._lock:
            for event in events:
                if event.id in self._events:
                    continue
                self._events[event.id] = event
                inserted += 1
        return inserted

    # ------------------------------------------------------------------
    # DESCRIPTORS & CLASSIFICATIONS
    # ------------------------------------------------------------------

    def get_descriptors(self, track_ids: Iterable[str]) -> Dict[str, TrackDescriptor]:
        with self._lock:
            return {tid: self._descriptors[tid] for tid in set(track_ids) if tid in self._descriptors}

    def upsert_descriptor(self, descriptor: TrackDescriptor) -> bool:
        with self._lock:
            created = descriptor.track_id not in self._descriptors
            self._descriptors[descriptor.track_id] = descriptor
        return created

    def get_classifications(self, event_ids: Iterable[str]) -> Dict[str, Classification]:
        with self._lock:
            return {eid: self._classifications[eid] for eid in set(event_ids) if eid in self._classifications}

    def upsert_classification(self, classification: Classification) -> bool:
        with self._lock:
            created = classification.event_id not in self._classifications
            self._classifications[classification.event_id] = classification
        return created

    # ------------------------------------------------------------------
    # AGGREGATES & RESET
    # ------------------------------------------------------------------

    def upsert_daily_aggregate(self, user_id: str, bucket: Bucket) -> bool:
        doc = aggregate_document(user_id, bucket)
        key = (user_id, doc["date"])
        with self._lock:
            created = key not in self._aggregates
            self._aggregates[key] = doc
        return created

    def get_daily_aggregates(self, user_id: str) -> List[Dict[str, object]]:
        with self._lock:
            docs = [dict(doc) for (uid, _), doc in self._aggregates.items() if uid == user_id]
        return sorted(docs, key=lambda d: d["date"])

    def delete_user_data(self, user_id: str) -> Dict[str, int]:
        with self._lock:
            event_ids = {eid for eid, e in self._events.items() if e.user_id == user_id}
            classification_ids = [
                eid for eid, c in self._classifications.items()
                if eid in event_ids or c.user_id == user_id
            ]
            for eid in classification_ids:
                del self._classifications[eid]

            aggregate_keys = [key for key in self._aggregates if key[0] == user_id]
            for key in aggregate_keys:
                del self._aggregates[key]

            for eid in event_ids:
                del self._events[eid]

        counts = {
            "classifications": len(classification_ids),
            "aggregates": len(aggregate_keys),
            "events": len(event_ids),
        }
        logger.info(f"[OK] Deleted data of {user_id}: {counts}")
        return counts
