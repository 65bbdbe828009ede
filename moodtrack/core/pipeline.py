"""
Batch jobs orchestrating the engine over an event store.

Each job is a synchronous single pass bounded by an item cap. Single-item
writes are retried once on a store error, then skipped and counted; a job
always returns a BatchReport describing partial progress.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from moodtrack.adapters.clients.spotify import is_valid_track_id
from moodtrack.adapters.clients.suggestions import Ok, SuggestionProvider, TrackMeta
from moodtrack.adapters.repositories.base import EventStore
from moodtrack.config import AIMode, EngineConfig
from moodtrack.core.aggregator import summarize_buckets
from moodtrack.core.classifier import FIXED_THRESHOLDS, Thresholds, classify
from moodtrack.core.cuts import estimate_cuts
from moodtrack.core.errors import InsufficientDataError, StoreOperationError
from moodtrack.core.features import normalize_features
from moodtrack.core.models import (
    BatchReport,
    Classification,
    ClassificationMethod,
    EmotionLabel,
    ListeningEvent,
    TrackDescriptor,
    ensure_utc,
)
from moodtrack.core.reconciler import ReconciliationSource, reconcile

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

FILL_LIMIT = 2000
RECLASSIFY_LIMIT = 5000
RECLASSIFY_DAYS = 30
BACKFILL_DAYS = 180
STATS_DAYS = 30


def _now(now: Optional[datetime]) -> datetime:
    return ensure_utc(now) if now else datetime.now(timezone.utc)


def _write_with_retry(write: Callable[[], bool], key: str, report: BatchReport) -> None:
    """Runs one idempotent write, retrying once; records created / updated / errors."""
    for attempt in (1, 2):
        try:
            created = write()
        except StoreOperationError as e:
            if attempt == 1:
                logger.warning(f"[WARN] Write for {key} failed, retrying: {e}")
                continue
            logger.error(f"[SKIP] Write for {key} failed twice: {e}")
            report.errors += 1
            return
        if created:
            report.created += 1
        else:
            report.updated += 1
        return


# ============================================================================
# CLASSIFICATION
# ============================================================================

def classify_event(event: ListeningEvent,
                   descriptor: TrackDescriptor,
                   config: EngineConfig,
                   suggester: Optional[SuggestionProvider] = None,
                   thresholds: Thresholds = FIXED_THRESHOLDS,
                   method: ClassificationMethod = ClassificationMethod.FIXED) -> Optional[Classification]:
    """
    Classifies one event, optionally reconciled with an AI suggestion.

    The deterministic label, valence, arousal and confidence are always kept;
    the AI may change the category and the mood score.

    Returns:
        Classification, or None when ai_mode is "only" and no suggestion came back.
    """
    result = classify(normalize_features(descriptor), thresholds)

    use_ai = suggester is not None and config.ai_mode != AIMode.OFF
    if not use_ai or result.label == EmotionLabel.SPEECH:
        if config.ai_mode == AIMode.ONLY and result.label != EmotionLabel.SPEECH:
            return None
        return result.to_classification(event.id, method, event.user_id)

    answer = suggester.suggest(TrackMeta(event.track_name, list(event.artists)), descriptor)
    if not isinstance(answer, Ok):
        if config.ai_mode == AIMode.ONLY:
            return None
        return result.to_classification(event.id, method, event.user_id)

    merged = reconcile(answer.value, descriptor.to_document())
    return result.to_classification(
        event.id,
        ClassificationMethod.AI if merged.source == ReconciliationSource.AI else method,
        event.user_id,
        category=merged.category,
        mood=merged.mood_score,
    )


def _classify_all(store: EventStore, events: List[ListeningEvent], config: EngineConfig,
                  suggester: Optional[SuggestionProvider], thresholds: Thresholds,
                  method: ClassificationMethod) -> BatchReport:
    report = BatchReport()
    descriptors = store.get_descriptors({e.track_id for e in events})

    for event in events:
        report.processed += 1
        descriptor = descriptors.get(event.track_id)
        if descriptor is None:
            report.skipped += 1
            continue
        classification = classify_event(event, descriptor, config, suggester, thresholds, method)
        if classification is None:
            report.skipped += 1
            continue
        _write_with_retry(lambda: store.upsert_classification(classification), event.id, report)

    return report


def fill_missing_classifications(store: EventStore, user_id: str, config: EngineConfig,
                                 suggester: Optional[SuggestionProvider] = None,
                                 limit: int = FILL_LIMIT) -> BatchReport:
    """
    Classifies the newest events that have no classification yet.

    Events whose track has no descriptor are skipped.

    Args:
        store: Event store.
        user_id: Owner of the events.
        config: Engine configuration (ai_mode).
        suggester: Optional AI backend.
        limit: Maximum number of events scanned.

    Returns:
        BatchReport (created counts new classifications).
    """
    events = store.find_events(user_id, limit=limit, unclassified_only=True, newest_first=True)
    report = _classify_all(store, events, config, suggester, FIXED_THRESHOLDS, ClassificationMethod.FIXED)
    logger.info(f"[OK] Filled missing classifications for {user_id}: {report.to_dict()}")
    return report


def rebuild_classifications(store: EventStore, user_id: str, config: EngineConfig,
                            suggester: Optional[SuggestionProvider] = None,
                            limit: Optional[int] = None) -> BatchReport:
    """Recomputes every classification of the user with the fixed thresholds."""
    events = store.find_events(user_id, limit=limit, newest_first=True)
    report = _classify_all(store, events, config, suggester, FIXED_THRESHOLDS, ClassificationMethod.FIXED)
    logger.info(f"[OK] Rebuilt classifications for {user_id}: {report.to_dict()}")
    return report


def _population(store: EventStore, user_id: str) -> List[TrackDescriptor]:
    """One descriptor per event of the user's full history (repeat plays count again)."""
    history = store.find_events(user_id)
    descriptors = store.get_descriptors({e.track_id for e in history})
    return [descriptors[e.track_id] for e in history if e.track_id in descriptors]


def reclassify_with_cuts(store: EventStore, user_id: str,
                         days: int = RECLASSIFY_DAYS,
                         limit: int = RECLASSIFY_LIMIT,
                         axis: str = "arousal",
                         now: Optional[datetime] = None) -> BatchReport:
    """
    Reclassifies recent events against the user's own percentile cut points.

    Cuts are estimated over the full history; only events of the last `days`
    days that have descriptors are rewritten.

    Raises:
        InsufficientDataError: If the user has no descriptor-backed events.
    """
    cuts = estimate_cuts(_population(store, user_id), axis=axis)
    thresholds = Thresholds.from_cuts(cuts)

    start = _now(now) - timedelta(days=days)
    events = store.find_events(user_id, start=start, limit=limit)
    report = _classify_all(store, events, EngineConfig(ai_mode=AIMode.OFF), None,
                           thresholds, ClassificationMethod.CUTS)
    logger.info(f"[OK] Reclassified {user_id} over {days} days with cuts: {report.to_dict()}")
    return report


# ============================================================================
# DESCRIPTORS
# ============================================================================

def backfill_descriptors(store: EventStore, catalog: Any, user_id: str,
                         days: int = BACKFILL_DAYS,
                         now: Optional[datetime] = None) -> BatchReport:
    """
    Fetches descriptors for tracks played in the window that have none.

    Args:
        store: Event store.
        catalog: Descriptor provider exposing `fetch_descriptors(track_ids)`.
        user_id: Owner of the events.
        days: Window length.
        now: Reference time (defaults to the current time).

    Returns:
        BatchReport; processed counts tracks missing a descriptor, skipped
        counts invalid ids and ids the catalog did not return.
    """
    report = BatchReport()
    start = _now(now) - timedelta(days=days)
    track_ids = {e.track_id for e in store.find_events(user_id, start=start)}
    if not track_ids:
        logger.info(f"[SKIP] No recent plays for {user_id}")
        return report

    known = store.get_descriptors(track_ids)
    missing = sorted(tid for tid in track_ids if tid not in known)
    report.processed = len(missing)

    valid = [tid for tid in missing if is_valid_track_id(tid)]
    report.skipped += len(missing) - len(valid)
    if not valid:
        logger.info(f"[SKIP] No tracks missing descriptors for {user_id}")
        return report

    fetched = catalog.fetch_descriptors(valid)
    report.skipped += len([tid for tid in valid if tid not in fetched])
    for track_id in valid:
        descriptor = fetched.get(track_id)
        if descriptor is not None:
            _write_with_retry(lambda: store.upsert_descriptor(descriptor), track_id, report)

    logger.info(f"[OK] Backfilled descriptors for {user_id}: {report.to_dict()}")
    return report


# ============================================================================
# AGGREGATES, RESET, QUALITY
# ============================================================================

def rebuild_daily_aggregates(store: EventStore, user_id: str,
                             timezone_name: Optional[str] = None) -> BatchReport:
    """Recomputes day summaries of the user's whole history and upserts them by (user, date)."""
    events, classifications, _ = store.load_window(user_id)
    report = BatchReport()
    for bucket in summarize_buckets(events, classifications, "day", timezone_name):
        report.processed += 1
        _write_with_retry(lambda: store.upsert_daily_aggregate(user_id, bucket),
                          f"{user_id}/{bucket.period_start}", report)
    logger.info(f"[OK] Rebuilt daily aggregates for {user_id}: {report.to_dict()}")
    return report


def reset_user_data(store: EventStore, user_id: str) -> Dict[str, int]:
    """Deletes the user's classifications, aggregates and events; shared descriptors are kept."""
    return store.delete_user_data(user_id)


def _min_max(values: Iterable[float]) -> Dict[str, Optional[float]]:
    values = list(values)
    if not values:
        return {"min": None, "max": None}
    return {"min": min(values), "max": max(values)}


def data_quality_report(store: EventStore, user_id: str,
                        days: int = STATS_DAYS,
                        now: Optional[datetime] = None,
                        axis: str = "energy") -> Dict[str, Any]:
    """
    Sanity statistics over the user's recent plays.

    Returns:
        Dict with missing valence / energy counts, descriptor extremes,
        zero-duration plays, average completion weight and the current cuts
        (None when there is not enough data).
    """
    start = _now(now) - timedelta(days=days)
    events = store.find_events(user_id, start=start)
    descriptors = store.get_descriptors({e.track_id for e in events})

    missing_valence = 0
    missing_energy = 0
    valences: List[float] = []
    energies: List[float] = []
    zero_ms = 0
    weights: List[float] = []

    for event in events:
        descriptor = descriptors.get(event.track_id)
        if event.ms_played == 0:
            zero_ms += 1
        if descriptor is None or descriptor.valence is None:
            missing_valence += 1
        else:
            valences.append(descriptor.valence)
        if descriptor is None or descriptor.energy is None:
            missing_energy += 1
        else:
            energies.append(descriptor.energy)
        if descriptor is not None and descriptor.duration_ms and descriptor.duration_ms > 0:
            weights.append(event.ms_played / descriptor.duration_ms)

    try:
        cuts = estimate_cuts(_population(store, user_id), axis=axis)
        cuts_doc: Optional[Dict[str, float]] = {
            "v_lo": cuts.v_lo, "v_hi": cuts.v_hi, "e_lo": cuts.e_lo, "e_hi": cuts.e_hi
        }
    except InsufficientDataError:
        cuts_doc = None

    return {
        "days": days,
        "events": len(events),
        "missing": {"valence": missing_valence, "energy": missing_energy},
        "extremes": {"valence": _min_max(valences), "energy": _min_max(energies)},
        "weights": {
            "zero_ms": zero_ms,
            "avg_weight": sum(weights) / len(weights) if weights else None,
        },
        "cuts": cuts_doc,
    }
