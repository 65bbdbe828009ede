import pytest
from datetime import date, datetime, timezone

from moodtrack.core import pipeline, reports
from moodtrack.core.models import EmotionCategory, EventSource

from conftest import make_descriptor, make_event


def at(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def classified_store(seeded_store, config):
    pipeline.fill_missing_classifications(seeded_store, "u1", config)
    return seeded_store


class TestCalendarHeatmap:

    def test_days_and_anomaly(self, classified_store, now):
        heatmap = reports.calendar_heatmap(classified_store, "u1", "UTC", "30d", now=now)

        assert heatmap["timezone"] == "UTC"
        days = heatmap["days"]
        assert len(days) == 20
        assert days[0]["period_start"] == "2025-03-11"
        # The podcast pulls 2025-03-29 below every other day
        flagged = [d["period_start"] for d in days if d["anomaly"]]
        assert flagged == ["2025-03-29"]
        assert next(d for d in days if d["period_start"] == "2025-03-29")["count"] == 3

    def test_named_range(self, classified_store, now):
        heatmap = reports.calendar_heatmap(classified_store, "u1", range_key="7d", now=now)
        assert len(heatmap["days"]) == 7

    def test_unknown_range(self, classified_store):
        with pytest.raises(ValueError):
            reports.calendar_heatmap(classified_store, "u1", range_key="2w")

    def test_explicit_bounds_override_range(self, classified_store, now):
        heatmap = reports.calendar_heatmap(classified_store, "u1", range_key="all",
                                           start=now.replace(day=29, hour=0), end=now.replace(day=30, hour=0))
        assert [d["period_start"] for d in heatmap["days"]] == ["2025-03-29"]


def test_distribution(classified_store):
    rows = reports.emotion_distribution(classified_store, "u1", "month")

    assert [(r["period_start"], r["category"], r["count"]) for r in rows] == [
        ("2025-03-01", "Excited/Happy", 20),
        ("2025-03-01", "Sad/Melancholic", 20),
        ("2025-03-01", "Neutral", 1),
    ]


def test_distribution_for_one_category(classified_store):
    rows = reports.emotion_distribution(classified_store, "u1", "week", weighted=True,
                                        category=EmotionCategory.SAD_MELANCHOLIC)

    assert {r["category"] for r in rows} == {"Sad/Melancholic"}
    assert sum(r["count"] for r in rows) == 20


class TestWeekdayHour:

    def test_matrix_leaves_out_speech(self, classified_store):
        cells = reports.weekday_hour_report(classified_store, "u1")

        assert {c["hour"] for c in cells} == {9, 21}
        assert sum(c["count"] for c in cells) == 40

    def test_detail(self, classified_store):
        # 2025-03-16, 23 and 30 are Sundays
        top = reports.weekday_hour_detail(classified_store, "u1", 6, 9)
        assert top == [{"track_id": "happy", "name": None, "artists": [], "count": 3}]

    @pytest.mark.parametrize("weekday,hour", [(7, 9), (0, 24), (-1, 0)])
    def test_invalid_cell(self, classified_store, weekday, hour):
        with pytest.raises(ValueError):
            reports.weekday_hour_detail(classified_store, "u1", weekday, hour)


def test_trend_report(classified_store, now):
    rows = reports.trend_report(classified_store, "u1", window_days=7, now=now)

    assert rows == [
        {"category": "Sad/Melancholic", "current": 7, "previous": 7, "percent_change": 0.0},
        {"category": "Excited/Happy", "current": 6, "previous": 7, "percent_change": -14.29},
        {"category": "Neutral", "current": 1, "previous": 0, "percent_change": 0.0},
    ]


def test_listening_time(classified_store):
    rows = reports.listening_time_report(classified_store, "u1")

    assert [r["category"] for r in rows] == ["Excited/Happy", "Sad/Melancholic", "Neutral"]
    assert rows[0]["ms_played"] == 4_000_000
    assert rows[0]["hours"] == 1.11


class TestDayDetail:

    @pytest.fixture
    def day_store(self, store, config):
        store.upsert_descriptor(make_descriptor("happy", valence=0.9, energy=0.9, tempo=150.0, acousticness=0.1))
        store.upsert_descriptor(make_descriptor("sad", valence=0.1, energy=0.1, tempo=70.0, acousticness=0.9,
                                                loudness=-25.0))
        store.insert_events([
            make_event("a", at(2025, 3, 29, 9), track_id="happy", track_name="Up", artists=["Ann"]),
            make_event("b", at(2025, 3, 29, 21), track_id="sad", track_name="Down", artists=["Bob"]),
            make_event("c", at(2025, 3, 29, 22, 30), track_id="happy", track_name="Up", artists=["Ann"]),
            make_event("d", at(2025, 3, 29, 12), track_id="unknown", artists=["Cy"]),
            make_event("e", at(2025, 3, 30, 1), track_id="happy"),
            make_event("f", at(2025, 3, 29, 10), track_id="happy", artists=["Ann"], source=EventSource.UPLOAD),
        ])
        pipeline.fill_missing_classifications(store, "u1", config)
        return store

    def test_utc_day(self, day_store):
        detail = reports.day_detail(day_store, "u1", "2025-03-29", source=EventSource.SYNC)

        assert detail["date"] == "2025-03-29"
        # "d" has no descriptor so it was never classified
        assert detail["total"] == 3
        assert detail["breakdown"] == [
            {"category": "Excited/Happy", "count": 2},
            {"category": "Sad/Melancholic", "count": 1},
        ]
        assert detail["tracks_by_emotion"]["Excited/Happy"] == [
            {"track_id": "happy", "name": "Up", "artists": ["Ann"]},
            {"track_id": "happy", "name": "Up", "artists": ["Ann"]},
        ]
        assert detail["top_artists"] == [{"artist": "Ann", "count": 2}, {"artist": "Bob", "count": 1}]

    def test_all_sources(self, day_store):
        detail = reports.day_detail(day_store, "u1", date(2025, 3, 29))

        assert detail["total"] == 4
        assert detail["top_artists"][0] == {"artist": "Ann", "count": 3}

    def test_local_day_boundaries(self, day_store):
        # Tokyo 2025-03-30 runs from 2025-03-29 15:00 to 2025-03-30 15:00 UTC
        detail = reports.day_detail(day_store, "u1", "2025-03-30", "Asia/Tokyo")

        assert detail["timezone"] == "Asia/Tokyo"
        assert detail["total"] == 3
        assert [b["category"] for b in detail["breakdown"]] == ["Sad/Melancholic", "Excited/Happy"]
        assert detail["top_artists"] == [
            {"artist": "Bob", "count": 1},
            {"artist": "Ann", "count": 1},
            {"artist": "Unknown", "count": 1},
        ]

    def test_empty_day(self, day_store):
        detail = reports.day_detail(day_store, "u1", "2025-01-01")
        assert detail["total"] == 0
        assert detail["breakdown"] == []
        assert detail["tracks_by_emotion"] == {}

    @pytest.mark.parametrize("value", ["29/03/2025", "2025-02-30", "yesterday"])
    def test_invalid_date(self, day_store, value):
        with pytest.raises(ValueError):
            reports.day_detail(day_store, "u1", value)

    def test_unknown_timezone(self, day_store):
        with pytest.raises(ValueError):
            reports.day_detail(day_store, "u1", "2025-03-29", "Mars/Olympus")
