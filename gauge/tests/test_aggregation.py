"""Tests for the Gauge aggregation engine.

Covers per-record averages, trend series, daily activity, window
comparison, client performance, dashboard metrics, distributions, NPS,
and the analytics overview. Inputs are plain mappings unless a test is
about model instances.
"""

from __future__ import annotations

import copy
from datetime import datetime, timedelta
from typing import Any

import pytest

from gauge.src.aggregation import (
    MISSING_INDUSTRY,
    PLACEHOLDER_CLIENT_NAME,
    average_rating_of,
    build_analytics_overview,
    compare_windows,
    compute_daily_activity,
    compute_trend_series,
    distribution_by_category,
    distribution_by_source,
    filter_by_date_window,
    net_promoter_score,
    placeholder_distributions,
    rank_client_performance,
    round_half_up,
    satisfaction_band,
    summarize_dashboard_metrics,
)
from ledger.src.models import Client, FeedbackRecord, RatingAnswer

# ===================================================================
# Helpers
# ===================================================================


def _fb(
    client_id: Any = "c1",
    when: Any = "2024-01-01T10:00:00",
    values: list[Any] | None = None,
    source: str | None = None,
) -> dict[str, Any]:
    """Build a raw feedback mapping."""
    return {
        "client_id": client_id,
        "submitted_at": when,
        "ratings": [{"question_ref": f"q{i}", "value": v} for i, v in enumerate(values or [])],
        "source": source,
    }


def _days(start: datetime, count: int, value: float = 4) -> list[dict[str, Any]]:
    """One rated record per consecutive day."""
    return [_fb(when=(start + timedelta(days=i)).isoformat(), values=[value]) for i in range(count)]


# ===================================================================
# Ratings
# ===================================================================


class TestRoundHalfUp:
    """Tests for half-up rounding."""

    def test_half_rounds_up(self) -> None:
        """Exact halves round away from zero."""
        assert round_half_up(0.25) == 0.3
        assert round_half_up(3.75) == 3.8
        assert round_half_up(2.5, 0) == 3.0

    def test_negative_symmetric(self) -> None:
        """Negative halves round away from zero too."""
        assert round_half_up(-0.25) == -0.3

    def test_zero(self) -> None:
        """Zero stays a positive zero."""
        assert round_half_up(0.0) == 0.0
        assert round_half_up(-0.01) == 0.0


class TestAverageRating:
    """Tests for average_rating_of."""

    def test_empty_is_zero(self) -> None:
        """No ratings means exactly 0."""
        assert average_rating_of(_fb(values=[])) == 0
        assert average_rating_of([]) == 0

    def test_mean(self) -> None:
        """Non-empty ratings give their arithmetic mean."""
        assert average_rating_of(_fb(values=[4, 5])) == 4.5
        assert average_rating_of(_fb(values=[1, 2, 3, 4, 5])) == 3.0

    def test_bare_ratings_list(self) -> None:
        """A bare list of ratings is accepted."""
        assert average_rating_of([{"value": 2}, {"value": 4}]) == 3.0

    def test_missing_and_bad_values_count_as_zero(self) -> None:
        """Missing, None, non-numeric, and boolean values count as 0."""
        ratings = [{"value": 4}, {}, {"value": None}, {"value": "x"}, {"value": True}]
        assert average_rating_of(ratings) == pytest.approx(0.8)

    def test_numeric_strings(self) -> None:
        """Numeric strings are read as numbers."""
        assert average_rating_of([{"value": "5"}, {"value": "3"}]) == 4.0

    def test_model_instance(self) -> None:
        """FeedbackRecord instances work like mappings."""
        record = FeedbackRecord(id="fb_1", ratings=[RatingAnswer("q", 3), RatingAnswer("r", 4)])
        assert average_rating_of(record) == 3.5

    def test_record_without_ratings_field(self) -> None:
        """A record with no ratings key averages 0."""
        assert average_rating_of({"client_id": "c1"}) == 0


# ===================================================================
# Trend series
# ===================================================================


class TestComputeTrendSeries:
    """Tests for compute_trend_series."""

    def test_empty_input(self) -> None:
        """Empty feedback gives one empty series and no categories."""
        assert compute_trend_series([], "all", 30).to_dict() == {
            "series": [{"name": "Average Rating", "data": []}],
            "categories": [],
        }

    def test_same_day_records_averaged(self) -> None:
        """Two c1 records on one day with [4,5] and [3] give 3.75."""
        feedback = [
            _fb("c1", "2024-01-01T09:00:00", [4, 5]),
            _fb("c1", "2024-01-01T17:30:00", [3]),
        ]
        trend = compute_trend_series(feedback, "c1", 7)
        assert trend.series[0].data == [3.75]
        assert trend.categories == ["01/01/2024"]

    def test_days_sorted_ascending(self) -> None:
        """Days come out in chronological order regardless of input order."""
        feedback = [
            _fb(when="2024-01-03T10:00:00", values=[3]),
            _fb(when="2024-01-01T10:00:00", values=[5]),
            _fb(when="2024-01-02T10:00:00", values=[4]),
        ]
        trend = compute_trend_series(feedback)
        assert trend.categories == ["01/01/2024", "01/02/2024", "01/03/2024"]
        assert trend.series[0].data == [5.0, 4.0, 3.0]

    def test_gaps_not_zero_filled(self) -> None:
        """Days without feedback are omitted."""
        feedback = [
            _fb(when="2024-01-01T10:00:00", values=[5]),
            _fb(when="2024-01-10T10:00:00", values=[3]),
        ]
        trend = compute_trend_series(feedback, window_size_days=7)
        assert trend.categories == ["01/01/2024", "01/10/2024"]

    def test_window_keeps_most_recent_days(self) -> None:
        """Only the last N days with data are kept."""
        trend = compute_trend_series(_days(datetime(2024, 1, 1, 10), 10), window_size_days=7)
        assert len(trend.categories) == 7
        assert trend.categories[0] == "01/04/2024"
        assert trend.categories[-1] == "01/10/2024"

    def test_oversize_window_returns_all(self) -> None:
        """A window larger than the history returns every day, unpadded."""
        trend = compute_trend_series(_days(datetime(2024, 1, 1, 10), 5), window_size_days=90)
        assert len(trend.categories) == 5
        assert len(trend.series[0].data) == 5

    def test_client_filter(self) -> None:
        """Only the selected client's feedback is charted."""
        feedback = [
            _fb("c1", "2024-01-01T10:00:00", [5]),
            _fb("c2", "2024-01-01T11:00:00", [1]),
            _fb(None, "2024-01-01T12:00:00", [1]),
        ]
        assert compute_trend_series(feedback, "c1").series[0].data == [5.0]
        assert compute_trend_series(feedback, "all").series[0].data == [pytest.approx(7 / 3)]
        assert compute_trend_series(feedback, None).series[0].data == [pytest.approx(7 / 3)]

    def test_numeric_client_ids_match_strings(self) -> None:
        """Client IDs are compared as strings."""
        feedback = [_fb(7, "2024-01-01T10:00:00", [4])]
        assert compute_trend_series(feedback, "7").series[0].data == [4.0]

    def test_undated_records_skipped(self) -> None:
        """Records without a usable timestamp are ignored."""
        feedback = [
            _fb(when=None, values=[1]),
            _fb(when="garbage", values=[1]),
            _fb(when="2024-01-01T10:00:00", values=[5]),
        ]
        assert compute_trend_series(feedback).series[0].data == [5.0]

    def test_legacy_timestamp_and_date_only(self) -> None:
        """A ``timestamp`` field and date-only strings are accepted."""
        feedback = [
            {"client_id": "c1", "timestamp": "2024-02-01T08:00:00", "ratings": [{"value": 4}]},
            _fb(when="2024-02-02", values=[2]),
        ]
        trend = compute_trend_series(feedback)
        assert trend.categories == ["02/01/2024", "02/02/2024"]

    def test_unrated_records_count_as_zero(self) -> None:
        """A dated record without ratings contributes 0 to its day."""
        feedback = [
            _fb(when="2024-01-01T10:00:00", values=[4]),
            _fb(when="2024-01-01T11:00:00", values=[]),
        ]
        assert compute_trend_series(feedback).series[0].data == [2.0]

    def test_label_format(self) -> None:
        """Labels follow the given strftime pattern."""
        trend = compute_trend_series(
            [_fb(when="2024-01-05T10:00:00", values=[4])], label_format="%Y-%m-%d"
        )
        assert trend.categories == ["2024-01-05"]

    @pytest.mark.parametrize("window", [0, 14, 365, -7])
    def test_invalid_window(self, window: int) -> None:
        """Only 7, 30, and 90 day windows are accepted."""
        with pytest.raises(ValueError, match="window_size_days"):
            compute_trend_series([], window_size_days=window)

    def test_categories_match_data_length(self) -> None:
        """Categories and data always have equal length."""
        feedback = _days(datetime(2024, 1, 1, 10), 40) + [_fb(when=None, values=[3])]
        for window in (7, 30, 90):
            trend = compute_trend_series(feedback, window_size_days=window)
            assert len(trend.categories) == len(trend.series[0].data)

    def test_idempotent_and_non_mutating(self) -> None:
        """Repeated calls agree and the input is left untouched."""
        feedback = [_fb("c1", "2024-01-01T09:00:00", [4, 5]), _fb("c2", "2024-01-02", [3])]
        snapshot = copy.deepcopy(feedback)
        first = compute_trend_series(feedback, "all", 30).to_dict()
        second = compute_trend_series(feedback, "all", 30).to_dict()
        assert first == second
        assert feedback == snapshot


class TestComputeDailyActivity:
    """Tests for compute_daily_activity."""

    def test_counts_and_rounded_averages(self) -> None:
        """Two parallel series: counts and one-decimal averages."""
        feedback = [
            _fb(when="2024-01-01T09:00:00", values=[4, 5]),
            _fb(when="2024-01-01T10:00:00", values=[3]),
            _fb(when="2024-01-02T10:00:00", values=[5]),
        ]
        activity = compute_daily_activity(feedback, 30)
        assert activity.to_dict() == {
            "series": [
                {"name": "Daily Responses", "data": [2, 1]},
                {"name": "Average Rating", "data": [3.8, 5.0]},
            ],
            "categories": ["01/01/2024", "01/02/2024"],
        }

    def test_any_positive_window(self) -> None:
        """Windows other than 7/30/90 are allowed here."""
        activity = compute_daily_activity(_days(datetime(2024, 1, 1, 10), 20), 14)
        assert len(activity.categories) == 14

    def test_invalid_window(self) -> None:
        """Non-positive windows are rejected."""
        with pytest.raises(ValueError):
            compute_daily_activity([], 0)


# ===================================================================
# Date windows
# ===================================================================


class TestDateWindows:
    """Tests for filter_by_date_window and compare_windows."""

    def test_filter_by_date_window(self) -> None:
        """Only records in (now - days, now] survive, order kept."""
        now = datetime(2024, 3, 15, 12)
        feedback = [
            _fb(when=(now - timedelta(days=3)).isoformat(), values=[1]),
            _fb(when=(now - timedelta(days=10)).isoformat(), values=[2]),
            _fb(when=(now + timedelta(days=1)).isoformat(), values=[3]),
            _fb(when=None, values=[4]),
            _fb(when=(now - timedelta(days=1)).isoformat(), values=[5]),
        ]
        kept = filter_by_date_window(feedback, 7, now)
        assert [average_rating_of(r) for r in kept] == [1.0, 5.0]

    def test_compare_rating_up(self) -> None:
        """A higher current average is reported as up."""
        now = datetime(2024, 3, 15, 12)
        feedback = [
            _fb(when=(now - timedelta(days=2)).isoformat(), values=[5]),
            _fb(when=(now - timedelta(days=9)).isoformat(), values=[4]),
        ]
        trend = compare_windows(feedback, 7, now)
        assert trend.direction == "up"
        assert trend.current == 5.0
        assert trend.previous == 4.0
        assert trend.change_percent == 25.0

    def test_compare_volume_down(self) -> None:
        """Fewer records in the current window is down."""
        now = datetime(2024, 3, 15, 12)
        feedback = [
            _fb(when=(now - timedelta(days=1)).isoformat(), values=[3]),
            _fb(when=(now - timedelta(days=8)).isoformat(), values=[3]),
            _fb(when=(now - timedelta(days=9)).isoformat(), values=[3]),
        ]
        trend = compare_windows(feedback, 7, now, metric="volume")
        assert trend.direction == "down"
        assert trend.change_percent == -50.0

    def test_compare_empty_previous(self) -> None:
        """With nothing before, any activity is a 100% rise."""
        now = datetime(2024, 3, 15, 12)
        feedback = [_fb(when=(now - timedelta(days=1)).isoformat(), values=[4])]
        trend = compare_windows(feedback, 30, now)
        assert trend.direction == "up"
        assert trend.change_percent == 100.0

    def test_compare_nothing(self) -> None:
        """No feedback at all is flat."""
        trend = compare_windows([], 30, datetime(2024, 3, 15))
        assert trend.direction == "flat"
        assert trend.change_percent == 0.0

    def test_compare_invalid_metric(self) -> None:
        """Unknown metrics are rejected."""
        with pytest.raises(ValueError):
            compare_windows([], 7, metric="speed")


# ===================================================================
# Client performance
# ===================================================================


class TestRankClientPerformance:
    """Tests for rank_client_performance."""

    def test_client_without_feedback(self) -> None:
        """A client with no feedback gets zeros and the N/A industry."""
        rows = rank_client_performance([{"id": "c1", "name": "Acme"}], [])
        assert [r.to_dict() for r in rows] == [
            {"id": "c1", "name": "Acme", "industry": "N/A", "responses": 0, "avg_rating": 0}
        ]

    def test_counts_and_averages(self) -> None:
        """Responses and one-decimal averages per client; orphans ignored."""
        clients = [{"id": "c1", "name": "Acme", "industry": "Retail"}, {"id": "c2", "name": "B"}]
        feedback = [
            _fb("c1", values=[4, 5]),
            _fb("c1", values=[3]),
            _fb("c2", values=[2]),
            _fb("ghost", values=[5]),
            _fb(None, values=[5]),
        ]
        rows = rank_client_performance(clients, feedback)
        assert [(r.id, r.responses, r.avg_rating) for r in rows] == [("c1", 2, 3.8), ("c2", 1, 2.0)]
        assert rows[0].industry == "Retail"

    def test_preserves_order_and_count(self) -> None:
        """Output order and length follow the input clients."""
        clients = [{"id": f"c{i}", "name": f"N{i}"} for i in (3, 1, 2)]
        rows = rank_client_performance(clients, [_fb("c2", values=[5])])
        assert [r.id for r in rows] == ["c3", "c1", "c2"]

    def test_placeholders(self) -> None:
        """Missing names and industries get placeholders."""
        row = rank_client_performance([{"id": "c1", "name": None, "industry": ""}], [])[0]
        assert row.name == PLACEHOLDER_CLIENT_NAME
        assert row.industry == MISSING_INDUSTRY

    def test_model_instances(self) -> None:
        """Client and FeedbackRecord models are accepted."""
        clients = [Client(id="c1", name="Acme")]
        feedback = [FeedbackRecord(id="f", client_id="c1", ratings=[RatingAnswer("q", 4)])]
        assert rank_client_performance(clients, feedback)[0].avg_rating == 4.0

    def test_sort_options(self) -> None:
        """Sorting by responses, avg_rating, and name."""
        clients = [
            {"id": "a", "name": "zeta"},
            {"id": "b", "name": "Alpha"},
            {"id": "c", "name": "mid"},
        ]
        feedback = [_fb("a", values=[2]), _fb("a", values=[2]), _fb("b", values=[5])]
        assert [r.id for r in rank_client_performance(clients, feedback, "responses")] == [
            "a",
            "b",
            "c",
        ]
        assert [r.id for r in rank_client_performance(clients, feedback, "avg_rating")] == [
            "b",
            "a",
            "c",
        ]
        assert [r.id for r in rank_client_performance(clients, feedback, "name")] == [
            "b",
            "c",
            "a",
        ]

    def test_unknown_sort(self) -> None:
        """Unknown sort keys are rejected."""
        with pytest.raises(ValueError):
            rank_client_performance([], [], "revenue")


# ===================================================================
# Dashboard metrics
# ===================================================================


class TestSummarizeDashboardMetrics:
    """Tests for summarize_dashboard_metrics."""

    def test_no_clients_no_division_error(self) -> None:
        """No clients yields a 0 response rate."""
        metrics = summarize_dashboard_metrics([_fb(values=[5])], [])
        assert metrics.response_rate == 0.0
        assert metrics.total_feedback == 1

    def test_empty(self) -> None:
        """Nothing at all yields zeros."""
        assert summarize_dashboard_metrics([], []).to_dict() == {
            "total_feedback": 0,
            "average_rating": 0.0,
            "response_rate": 0.0,
            "sentiment_score": 0,
        }

    def test_sentiment_uses_unrounded_average(self) -> None:
        """Average 3.75 displays as 3.8 but maps to sentiment 75."""
        feedback = [_fb(values=[4, 5]), _fb(values=[3])]
        clients = [{"id": f"c{i}"} for i in range(4)]
        metrics = summarize_dashboard_metrics(feedback, clients)
        assert metrics.average_rating == 3.8
        assert metrics.sentiment_score == 75
        assert metrics.response_rate == 50.0

    def test_response_rate_capped(self) -> None:
        """The response rate never exceeds 100."""
        feedback = [_fb(values=[5]) for _ in range(3)]
        assert summarize_dashboard_metrics(feedback, [{"id": "c1"}]).response_rate == 100.0

    def test_response_rate_scale(self) -> None:
        """The display multiplier is configurable."""
        feedback = [_fb(values=[5])]
        clients = [{"id": "c1"}, {"id": "c2"}]
        assert summarize_dashboard_metrics(feedback, clients, 10).response_rate == 5.0

    def test_bounds(self) -> None:
        """All metrics stay non-negative and sentiment caps at 100."""
        metrics = summarize_dashboard_metrics([_fb(values=[5, 5])], [{"id": "c1"}])
        assert metrics.sentiment_score == 100
        assert min(metrics.total_feedback, metrics.average_rating, metrics.response_rate) >= 0


# ===================================================================
# Distributions and NPS
# ===================================================================


class TestDistributions:
    """Tests for the category and source distributions."""

    def test_satisfaction_band_edges(self) -> None:
        """Band minimums are inclusive."""
        assert satisfaction_band(4.5) == "Very Satisfied"
        assert satisfaction_band(4.49) == "Satisfied"
        assert satisfaction_band(2.5) == "Neutral"
        assert satisfaction_band(1.5) == "Dissatisfied"
        assert satisfaction_band(0) == "Very Dissatisfied"

    def test_category_distribution(self) -> None:
        """Rated records are bucketed; unrated ones are ignored."""
        feedback = [
            _fb(values=[5, 4]),
            _fb(values=[4]),
            _fb(values=[4]),
            _fb(values=[1]),
            _fb(values=[]),
        ]
        slices = distribution_by_category(feedback)
        assert [s.name for s in slices] == [
            "Very Satisfied",
            "Satisfied",
            "Neutral",
            "Dissatisfied",
            "Very Dissatisfied",
        ]
        assert [s.count for s in slices] == [1, 2, 0, 0, 1]
        assert [s.percent for s in slices] == [25.0, 50.0, 0.0, 0.0, 25.0]
        assert all(s.color for s in slices)

    def test_category_distribution_empty(self) -> None:
        """No feedback still returns five zero bands."""
        slices = distribution_by_category([])
        assert len(slices) == 5
        assert all(s.count == 0 and s.percent == 0.0 for s in slices)

    def test_source_distribution(self) -> None:
        """Sources are labelled, counted, and ordered by count then name."""
        feedback = [
            _fb(source="mobile_app"),
            _fb(source="email"),
            _fb(source="mobile_app"),
            _fb(source=None),
            _fb(source="  "),
            _fb(source="in-store"),
        ]
        slices = distribution_by_source(feedback)
        assert [(s.name, s.count) for s in slices] == [
            ("Mobile App", 2),
            ("Unknown", 2),
            ("Email", 1),
            ("In Store", 1),
        ]
        assert slices[0].percent == pytest.approx(33.3)
        assert "color" not in slices[0].to_dict()

    def test_placeholders(self) -> None:
        """Placeholders carry the illustrative percentages and no counts."""
        categories, sources = placeholder_distributions()
        assert sum(s.percent for s in categories) == 100.0
        assert sum(s.percent for s in sources) == 100.0
        assert all(s.count == 0 for s in categories + sources)


class TestNetPromoterScore:
    """Tests for net_promoter_score."""

    def test_breakdown(self) -> None:
        """Promoters minus detractors as a share of rated records."""
        feedback = [
            _fb(values=[5]),
            _fb(values=[5, 4]),
            _fb(values=[4]),
            _fb(values=[3]),
            _fb(values=[]),
        ]
        nps = net_promoter_score(feedback)
        assert (nps.promoters, nps.passives, nps.detractors) == (2, 1, 1)
        assert nps.score == 25.0

    def test_empty(self) -> None:
        """Nothing rated gives 0."""
        assert net_promoter_score([_fb(values=[])]).to_dict() == {
            "score": 0.0,
            "promoters": 0,
            "passives": 0,
            "detractors": 0,
        }

    def test_all_detractors(self) -> None:
        """The score bottoms out at -100."""
        assert net_promoter_score([_fb(values=[1]), _fb(values=[2])]).score == -100.0


# ===================================================================
# Overview
# ===================================================================


class TestBuildAnalyticsOverview:
    """Tests for build_analytics_overview."""

    def test_overview(self) -> None:
        """Metrics, activity, and distributions cover only the window."""
        now = datetime(2024, 3, 15, 12)
        feedback = [
            _fb("c1", (now - timedelta(days=1)).isoformat(), [5], "email"),
            _fb("c1", (now - timedelta(days=3)).isoformat(), [3], "website"),
            _fb("c1", (now - timedelta(days=10)).isoformat(), [1], "email"),
        ]
        overview = build_analytics_overview(feedback, [{"id": "c1"}], days=7, now=now)
        data = overview.to_dict()
        assert data["period_days"] == 7
        assert data["metrics"]["total_feedback"] == 2
        assert data["metrics"]["average_rating"] == 4.0
        assert data["activity"]["series"][0]["data"] == [1, 1]
        assert sum(s["count"] for s in data["categories"]) == 2
        assert set(data["trends"]) == {"average_rating", "total_feedback"}
        assert data["trends"]["average_rating"]["direction"] == "up"

    def test_placeholders_only_when_requested_and_empty(self) -> None:
        """Demo placeholders appear only with the flag and no feedback."""
        now = datetime(2024, 3, 15)
        with_flag = build_analytics_overview([], [], now=now, fallback_to_placeholders=True)
        assert with_flag.categories[0].percent == 45.0
        without_flag = build_analytics_overview([], [], now=now)
        assert without_flag.categories[0].percent == 0.0
        assert without_flag.sources == []
