"""Client-side analytics aggregation over feedback records.

Turns raw feedback and client collections into the derived views the
dashboard renders: per-day rating trend series, client performance
tables, satisfaction and source distributions, and headline metrics.

Every function here is pure. Inputs are only read, never mutated, and
each call returns freshly built dataclasses, so calling a function twice
with the same collections yields identical output. Records may be model
instances from ``ledger.src.models`` or plain mappings straight from the
record API; missing or malformed fields degrade to zero/default values
instead of raising.

Rounding follows the dashboard's display convention: one decimal place,
halves rounded up (``3.75 -> 3.8``).

Example::

    trend = compute_trend_series(feedback, client_filter="all", window_size_days=30)
    chart = trend.to_dict()   # {"series": [{"name", "data"}], "categories": [...]}
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from ledger.src.models import parse_timestamp

ALL_CLIENTS = "all"
TREND_WINDOWS = (7, 30, 90)
DEFAULT_LABEL_FORMAT = "%m/%d/%Y"
DEFAULT_RESPONSE_RATE_SCALE = 100.0
PLACEHOLDER_CLIENT_NAME = "Unnamed Client"
MISSING_INDUSTRY = "N/A"
UNKNOWN_SOURCE = "Unknown"

_PROMOTER_THRESHOLD = 4.5
_DETRACTOR_THRESHOLD = 3.0

# (label, minimum average, chart colour), highest band first
SATISFACTION_BANDS: tuple[tuple[str, float, str], ...] = (
    ("Very Satisfied", 4.5, "#10B981"),
    ("Satisfied", 3.5, "#34D399"),
    ("Neutral", 2.5, "#F59E0B"),
    ("Dissatisfied", 1.5, "#F97316"),
    ("Very Dissatisfied", 0.0, "#EF4444"),
)

# Illustrative breakdowns shown by demo mode when there is no feedback at
# all. They are display placeholders, not business data.
PLACEHOLDER_CATEGORY_BREAKDOWN: tuple[tuple[str, float, str], ...] = (
    ("Very Satisfied", 45.0, "#10B981"),
    ("Satisfied", 30.0, "#34D399"),
    ("Neutral", 15.0, "#F59E0B"),
    ("Dissatisfied", 7.0, "#F97316"),
    ("Very Dissatisfied", 3.0, "#EF4444"),
)
PLACEHOLDER_SOURCE_BREAKDOWN: tuple[tuple[str, float], ...] = (
    ("Website", 40.0),
    ("Email", 25.0),
    ("Mobile App", 20.0),
    ("Social Media", 10.0),
    ("In-Store", 5.0),
)


# ===================================================================
# Result types
# ===================================================================


@dataclass
class SeriesData:
    """One named numeric series for a chart."""

    name: str
    data: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"name": self.name, "data": list(self.data)}


@dataclass
class TrendSeries:
    """Day-indexed chart data.

    Attributes:
        series: Parallel numeric series, one value per category.
        categories: Formatted day labels in ascending chronological order.
    """

    series: list[SeriesData]
    categories: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "series": [s.to_dict() for s in self.series],
            "categories": list(self.categories),
        }


@dataclass
class ClientPerformance:
    """One row of the client performance table."""

    id: Any
    name: str
    industry: str
    responses: int
    avg_rating: float

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "industry": self.industry,
            "responses": self.responses,
            "avg_rating": self.avg_rating,
        }


@dataclass
class DashboardMetrics:
    """Headline metrics shown on the dashboard cards.

    Attributes:
        total_feedback: Number of feedback records.
        average_rating: Mean per-record rating, one decimal.
        response_rate: Scaled feedback-per-client ratio, capped at 100.
        sentiment_score: Average rating mapped linearly onto 0-100.
    """

    total_feedback: int
    average_rating: float
    response_rate: float
    sentiment_score: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "total_feedback": self.total_feedback,
            "average_rating": self.average_rating,
            "response_rate": self.response_rate,
            "sentiment_score": self.sentiment_score,
        }


@dataclass
class DistributionSlice:
    """One slice of a distribution chart."""

    name: str
    count: int
    percent: float
    color: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        data: dict[str, Any] = {"name": self.name, "count": self.count, "percent": self.percent}
        if self.color is not None:
            data["color"] = self.color
        return data


@dataclass
class TrendIndicator:
    """Direction of change between the current and previous window.

    Attributes:
        metric: Which metric was compared ("rating" or "volume").
        direction: "up", "down" or "flat".
        change_percent: Signed relative change, one decimal.
        current: Metric value over the current window.
        previous: Metric value over the window before it.
    """

    metric: str
    direction: str
    change_percent: float
    current: float
    previous: float

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "metric": self.metric,
            "direction": self.direction,
            "change_percent": self.change_percent,
            "current": self.current,
            "previous": self.previous,
        }


@dataclass
class NpsBreakdown:
    """Net promoter score on the five-point scale."""

    score: float
    promoters: int
    passives: int
    detractors: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "score": self.score,
            "promoters": self.promoters,
            "passives": self.passives,
            "detractors": self.detractors,
        }


@dataclass
class AnalyticsOverview:
    """Everything the analytics page renders for one date range."""

    period_days: int
    metrics: DashboardMetrics
    activity: TrendSeries
    categories: list[DistributionSlice]
    sources: list[DistributionSlice]
    trends: dict[str, TrendIndicator]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "period_days": self.period_days,
            "metrics": self.metrics.to_dict(),
            "activity": self.activity.to_dict(),
            "categories": [c.to_dict() for c in self.categories],
            "sources": [s.to_dict() for s in self.sources],
            "trends": {k: v.to_dict() for k, v in self.trends.items()},
        }


# ===================================================================
# Field access
# ===================================================================


def _get(record: Any, name: str, default: Any = None) -> Any:
    """Read a field from a mapping or an object, tolerating absence."""
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def _numeric(value: Any) -> float:
    """Coerce a rating value to float; anything unusable counts as 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def round_half_up(value: float, digits: int = 1) -> float:
    """Round half away from zero (``2.25 -> 2.3``, ``-2.25 -> -2.3``).

    Args:
        value: Number to round.
        digits: Decimal places to keep.

    Returns:
        Rounded value.
    """
    factor = 10**digits
    rounded = math.floor(abs(value) * factor + 0.5) / factor
    if rounded == 0:
        return 0.0
    return rounded if value > 0 else -rounded


def _ratings_of(feedback: Any) -> Sequence[Any]:
    if isinstance(feedback, (list, tuple)):
        return feedback
    ratings = _get(feedback, "ratings")
    return ratings if isinstance(ratings, (list, tuple)) else ()


def _has_ratings(feedback: Any) -> bool:
    return len(_ratings_of(feedback)) > 0


def _submitted_at(feedback: Any) -> datetime | None:
    """Submission time as a naive local datetime, or None if unusable."""
    raw = _get(feedback, "submitted_at")
    if raw is None:
        raw = _get(feedback, "timestamp")
    parsed = parse_timestamp(raw)
    if parsed is None:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _local_day(feedback: Any) -> date | None:
    submitted = _submitted_at(feedback)
    return submitted.date() if submitted is not None else None


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# ===================================================================
# Ratings and trends
# ===================================================================


def average_rating_of(feedback: Any) -> float:
    """Mean of a feedback record's rating values.

    Args:
        feedback: A feedback record (model or mapping) or a bare list of ratings.

    Returns:
        Arithmetic mean of the ``value`` fields; 0 for an empty list.
        Missing or non-numeric values count as 0.
    """
    ratings = _ratings_of(feedback)
    if not ratings:
        return 0.0
    return sum(_numeric(_get(r, "value")) for r in ratings) / len(ratings)


def _filter_client(feedback: Iterable[Any], client_filter: Any) -> list[Any]:
    if client_filter is None or client_filter == ALL_CLIENTS:
        return list(feedback)
    wanted = str(client_filter)
    kept = []
    for record in feedback:
        client_id = _get(record, "client_id")
        if client_id is not None and str(client_id) == wanted:
            kept.append(record)
    return kept


def _group_by_day(feedback: Iterable[Any]) -> dict[date, list[float]]:
    """Group per-record averages by local calendar day; undated records are skipped."""
    groups: dict[date, list[float]] = {}
    for record in feedback:
        day = _local_day(record)
        if day is None:
            continue
        groups.setdefault(day, []).append(average_rating_of(record))
    return groups


def compute_trend_series(
    feedback: Iterable[Any],
    client_filter: Any = ALL_CLIENTS,
    window_size_days: int = 30,
    label_format: str = DEFAULT_LABEL_FORMAT,
) -> TrendSeries:
    """Per-day average rating for the most recent days that have feedback.

    Records are filtered by client (unless ``"all"``), grouped by the
    local calendar day of ``submitted_at``, and each day's value is the
    mean of its records' average ratings. Only days with at least one
    record appear; the last ``window_size_days`` of them are kept, so a
    window larger than the available history returns every day without
    padding.

    Args:
        feedback: Feedback collection.
        client_filter: Client ID to keep, or ``"all"``/None for every client.
        window_size_days: How many trailing days to keep (7, 30 or 90).
        label_format: strftime pattern for the category labels.

    Returns:
        TrendSeries with one "Average Rating" series parallel to the labels.

    Raises:
        ValueError: If ``window_size_days`` is not a supported window.
    """
    if window_size_days not in TREND_WINDOWS:
        raise ValueError(
            f"window_size_days must be one of {', '.join(str(w) for w in TREND_WINDOWS)}"
        )

    groups = _group_by_day(_filter_client(feedback, client_filter))
    days = sorted(groups)[-window_size_days:]
    return TrendSeries(
        series=[SeriesData(name="Average Rating", data=[_mean(groups[d]) for d in days])],
        categories=[d.strftime(label_format) for d in days],
    )


def compute_daily_activity(
    feedback: Iterable[Any],
    window_size_days: int = 30,
    client_filter: Any = ALL_CLIENTS,
    label_format: str = DEFAULT_LABEL_FORMAT,
) -> TrendSeries:
    """Daily response counts alongside the daily average rating.

    Uses the same grouping and windowing as ``compute_trend_series`` and
    returns two parallel series: "Daily Responses" and "Average Rating"
    (one decimal).

    Args:
        feedback: Feedback collection.
        window_size_days: How many trailing days with feedback to keep.
        client_filter: Client ID to keep, or ``"all"``.
        label_format: strftime pattern for the category labels.

    Returns:
        TrendSeries with two series.

    Raises:
        ValueError: If ``window_size_days`` is not positive.
    """
    if window_size_days < 1:
        raise ValueError("window_size_days must be positive")

    groups = _group_by_day(_filter_client(feedback, client_filter))
    days = sorted(groups)[-window_size_days:]
    return TrendSeries(
        series=[
            SeriesData(name="Daily Responses", data=[len(groups[d]) for d in days]),
            SeriesData(
                name="Average Rating", data=[round_half_up(_mean(groups[d])) for d in days]
            ),
        ],
        categories=[d.strftime(label_format) for d in days],
    )


def filter_by_date_window(
    feedback: Iterable[Any], days: int, now: datetime | None = None
) -> list[Any]:
    """Keep feedback submitted within the last *days* days.

    Args:
        feedback: Feedback collection.
        days: Look-back window in days.
        now: Reference time. Defaults to the current local time.

    Returns:
        Matching records in their original order. Undated records are dropped.
    """
    end = now or datetime.now()
    if end.tzinfo is not None:
        end = end.astimezone().replace(tzinfo=None)
    start = end - timedelta(days=days)
    kept = []
    for record in feedback:
        submitted = _submitted_at(record)
        if submitted is not None and start <= submitted <= end:
            kept.append(record)
    return kept


def compare_windows(
    feedback: Iterable[Any],
    window_days: int,
    now: datetime | None = None,
    metric: str = "rating",
) -> TrendIndicator:
    """Compare the current window with the window immediately before it.

    Args:
        feedback: Feedback collection.
        window_days: Length of each window in days.
        now: Reference time. Defaults to the current local time.
        metric: ``"rating"`` (mean per-record average) or ``"volume"`` (count).

    Returns:
        TrendIndicator with direction and signed percent change.

    Raises:
        ValueError: On an unknown metric or non-positive window.
    """
    if metric not in ("rating", "volume"):
        raise ValueError(f"Unknown metric: '{metric}'")
    if window_days < 1:
        raise ValueError("window_days must be positive")

    end = now or datetime.now()
    if end.tzinfo is not None:
        end = end.astimezone().replace(tzinfo=None)
    split = end - timedelta(days=window_days)
    start = split - timedelta(days=window_days)

    current_records: list[Any] = []
    previous_records: list[Any] = []
    for record in feedback:
        submitted = _submitted_at(record)
        if submitted is None:
            continue
        if split < submitted <= end:
            current_records.append(record)
        elif start < submitted <= split:
            previous_records.append(record)

    if metric == "volume":
        current = float(len(current_records))
        previous = float(len(previous_records))
    else:
        current = round_half_up(_mean([average_rating_of(r) for r in current_records]))
        previous = round_half_up(_mean([average_rating_of(r) for r in previous_records]))

    if previous == 0:
        change = 0.0 if current == 0 else 100.0
    else:
        change = round_half_up((current - previous) / previous * 100)

    if current > previous:
        direction = "up"
    elif current < previous:
        direction = "down"
    else:
        direction = "flat"

    return TrendIndicator(
        metric=metric,
        direction=direction,
        change_percent=change,
        current=current,
        previous=previous,
    )


# ===================================================================
# Clients and headline metrics
# ===================================================================

_SORT_KEYS = ("responses", "avg_rating", "name")


def rank_client_performance(
    clients: Iterable[Any],
    feedback: Iterable[Any],
    sort_by: str | None = None,
) -> list[ClientPerformance]:
    """Responses and average rating per client.

    The output has one row per input client in input order unless
    *sort_by* is given: ``"responses"`` and ``"avg_rating"`` sort
    descending, ``"name"`` ascending; ties keep input order.

    Args:
        clients: Client collection.
        feedback: Feedback collection.
        sort_by: Optional sort key.

    Returns:
        List of ClientPerformance rows.

    Raises:
        ValueError: On an unknown sort key.
    """
    if sort_by is not None and sort_by not in _SORT_KEYS:
        raise ValueError(f"sort_by must be one of {', '.join(_SORT_KEYS)}")

    by_client: dict[str, list[float]] = {}
    for record in feedback:
        client_id = _get(record, "client_id")
        if client_id is None:
            continue
        by_client.setdefault(str(client_id), []).append(average_rating_of(record))

    rows: list[ClientPerformance] = []
    for client in clients:
        client_id = _get(client, "id")
        averages = by_client.get(str(client_id), []) if client_id is not None else []
        rows.append(
            ClientPerformance(
                id=client_id,
                name=_get(client, "name") or PLACEHOLDER_CLIENT_NAME,
                industry=_get(client, "industry") or MISSING_INDUSTRY,
                responses=len(averages),
                avg_rating=round_half_up(_mean(averages)),
            )
        )

    if sort_by == "name":
        rows.sort(key=lambda r: r.name.lower())
    elif sort_by == "responses":
        rows.sort(key=lambda r: r.responses, reverse=True)
    elif sort_by == "avg_rating":
        rows.sort(key=lambda r: r.avg_rating, reverse=True)
    return rows


def summarize_dashboard_metrics(
    feedback: Iterable[Any],
    clients: Iterable[Any],
    response_rate_scale: float = DEFAULT_RESPONSE_RATE_SCALE,
) -> DashboardMetrics:
    """Headline metrics for the dashboard cards.

    ``response_rate`` is feedback-per-client times *response_rate_scale*,
    capped at 100; with no clients it is 0. ``sentiment_score`` maps the
    unrounded average rating linearly from 0-5 onto 0-100.

    Args:
        feedback: Feedback collection.
        clients: Client collection.
        response_rate_scale: Display multiplier for the response rate.

    Returns:
        DashboardMetrics.
    """
    records = list(feedback)
    client_count = len(list(clients))
    total = len(records)
    raw_average = _mean([average_rating_of(r) for r in records])

    if client_count == 0:
        response_rate = 0.0
    else:
        response_rate = min(100.0, round_half_up(total / client_count * response_rate_scale))

    return DashboardMetrics(
        total_feedback=total,
        average_rating=round_half_up(raw_average),
        response_rate=response_rate,
        sentiment_score=int(round_half_up(min(100.0, raw_average * 20), 0)),
    )


# ===================================================================
# Distributions
# ===================================================================


def _percent(count: int, total: int) -> float:
    return round_half_up(count / total * 100) if total else 0.0


def satisfaction_band(average: float) -> str:
    """Name of the satisfaction band an average rating falls into."""
    for label, minimum, _color in SATISFACTION_BANDS:
        if average >= minimum:
            return label
    return SATISFACTION_BANDS[-1][0]


def distribution_by_category(feedback: Iterable[Any]) -> list[DistributionSlice]:
    """Share of rated feedback in each satisfaction band.

    Records without ratings are not counted. All five bands are always
    returned, highest first.

    Args:
        feedback: Feedback collection.

    Returns:
        Five DistributionSlice entries with chart colours.
    """
    counts = {label: 0 for label, _minimum, _color in SATISFACTION_BANDS}
    for record in feedback:
        if _has_ratings(record):
            counts[satisfaction_band(average_rating_of(record))] += 1
    total = sum(counts.values())
    return [
        DistributionSlice(
            name=label,
            count=counts[label],
            percent=_percent(counts[label], total),
            color=color,
        )
        for label, _minimum, color in SATISFACTION_BANDS
    ]


def _source_label(raw: Any) -> str:
    if not isinstance(raw, str) or not raw.strip():
        return UNKNOWN_SOURCE
    return raw.strip().replace("_", " ").replace("-", " ").title()


def distribution_by_source(feedback: Iterable[Any]) -> list[DistributionSlice]:
    """Share of feedback per submission channel.

    Records without a ``source`` count as "Unknown". Ordered by count
    descending, then name.

    Args:
        feedback: Feedback collection.

    Returns:
        DistributionSlice per channel.
    """
    counts: dict[str, int] = {}
    for record in feedback:
        label = _source_label(_get(record, "source"))
        counts[label] = counts.get(label, 0) + 1
    total = sum(counts.values())
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [
        DistributionSlice(name=name, count=count, percent=_percent(count, total))
        for name, count in ordered
    ]


def placeholder_distributions() -> tuple[list[DistributionSlice], list[DistributionSlice]]:
    """Illustrative category and source breakdowns for an empty demo store."""
    categories = [
        DistributionSlice(name=name, count=0, percent=percent, color=color)
        for name, percent, color in PLACEHOLDER_CATEGORY_BREAKDOWN
    ]
    sources = [
        DistributionSlice(name=name, count=0, percent=percent)
        for name, percent in PLACEHOLDER_SOURCE_BREAKDOWN
    ]
    return categories, sources


def net_promoter_score(feedback: Iterable[Any]) -> NpsBreakdown:
    """Net promoter score adapted to the five-point rating scale.

    Rated records averaging 4.5 or more are promoters, 3 or less are
    detractors, the rest passives. The score is the promoter share minus
    the detractor share, in percentage points (-100 to 100).

    Args:
        feedback: Feedback collection.

    Returns:
        NpsBreakdown; score 0 when nothing is rated.
    """
    promoters = passives = detractors = 0
    for record in feedback:
        if not _has_ratings(record):
            continue
        average = average_rating_of(record)
        if average >= _PROMOTER_THRESHOLD:
            promoters += 1
        elif average <= _DETRACTOR_THRESHOLD:
            detractors += 1
        else:
            passives += 1
    rated = promoters + passives + detractors
    score = (promoters - detractors) / rated * 100 if rated else 0.0
    return NpsBreakdown(
        score=round_half_up(score),
        promoters=promoters,
        passives=passives,
        detractors=detractors,
    )


# ===================================================================
# Page-level overview
# ===================================================================


def build_analytics_overview(
    feedback: Iterable[Any],
    clients: Iterable[Any],
    days: int = 30,
    now: datetime | None = None,
    response_rate_scale: float = DEFAULT_RESPONSE_RATE_SCALE,
    label_format: str = DEFAULT_LABEL_FORMAT,
    fallback_to_placeholders: bool = False,
) -> AnalyticsOverview:
    """Assemble the analytics page for the last *days* days.

    Args:
        feedback: Full feedback collection.
        clients: Full client collection.
        days: Look-back window in days.
        now: Reference time. Defaults to the current local time.
        response_rate_scale: Display multiplier for the response rate.
        label_format: strftime pattern for day labels.
        fallback_to_placeholders: Show the illustrative distributions when
            the store has no feedback at all (demo mode only).

    Returns:
        AnalyticsOverview.
    """
    records = list(feedback)
    client_list = list(clients)
    windowed = filter_by_date_window(records, days, now)

    if fallback_to_placeholders and not records:
        categories, sources = placeholder_distributions()
    else:
        categories = distribution_by_category(windowed)
        sources = distribution_by_source(windowed)

    return AnalyticsOverview(
        period_days=days,
        metrics=summarize_dashboard_metrics(windowed, client_list, response_rate_scale),
        activity=compute_daily_activity(windowed, days, label_format=label_format),
        categories=categories,
        sources=sources,
        trends={
            "average_rating": compare_windows(records, days, now, metric="rating"),
            "total_feedback": compare_windows(records, days, now, metric="volume"),
        },
    )
