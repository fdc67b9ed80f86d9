# rentalindex/analytics.py
"""Market statistics over daily index rows.

Every function takes rows shaped like ``schemas.IndexRow`` (``date``,
``district``, ``bedrooms``, ``listing_count`` and the four price fields),
sorted ascending by date unless noted. Rows never touch live listings.

Medians across segments are listing-weighted: a segment's median counts
once per listing in it (at least once), so large segments dominate.
Null prices are left out of numeric aggregation but still count toward
listing totals.
"""
import csv
import io
import math
from collections import OrderedDict
from datetime import timedelta
from typing import Dict, List, Optional, Sequence

from .schemas import (
    DistributionBucket, HeatmapDistrictRow, KpiSummary, MoverRow, TrendPoint,
)

MA_WINDOW = 90
MA_MIN_POINTS = 7
MOVERS_LIMIT = 20
SUPPLY_WINDOW = 14

BUCKETS = [
    ("$0 - $300", 0, 300),
    ("$300 - $500", 300, 500),
    ("$500 - $700", 500, 700),
    ("$700 - $1,000", 700, 1000),
    ("$1,000+", 1000, None),
]


# ---------- plain statistics ----------

def percentile(sorted_values: Sequence[float], p: float) -> Optional[float]:
    """Linear-interpolated percentile of an ascending sequence."""
    if not sorted_values:
        return None
    if len(sorted_values) == 1:
        return sorted_values[0]
    index = p * (len(sorted_values) - 1)
    lower = math.floor(index)
    upper = math.ceil(index)
    if lower == upper:
        return sorted_values[lower]
    weight = index - lower
    return sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight


def std_dev(values: Sequence[float]) -> float:
    """Sample standard deviation (n-1), rounded to cents; 0 below two values."""
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / (len(values) - 1)
    return round(math.sqrt(variance), 2)


def _weighted_middle(pairs) -> Optional[float]:
    # same element as sorting the value repeated `weight` times and taking index n // 2
    pairs = sorted(pairs, key=lambda vw: vw[0])
    total = sum(w for _, w in pairs)
    if total == 0:
        return None
    target = total // 2
    seen = 0
    for value, weight in pairs:
        seen += weight
        if seen > target:
            return value
    return pairs[-1][0]


def _weight(row) -> int:
    return max(row.listing_count or 0, 1)


def weighted_median(rows, field: str = "median_price_usd") -> Optional[float]:
    return _weighted_middle(
        (getattr(r, field), _weight(r)) for r in rows if getattr(r, field) is not None
    )


def weighted_mean(rows) -> Optional[float]:
    total = 0
    acc = 0.0
    for r in rows:
        if r.mean_price_usd is not None:
            acc += r.mean_price_usd * _weight(r)
            total += _weight(r)
    if total == 0:
        return None
    return round(acc / total, 2)


def group_by_date(rows) -> "OrderedDict":
    by_date: Dict = {}
    for r in rows:
        by_date.setdefault(r.date, []).append(r)
    return OrderedDict(sorted(by_date.items()))


def daily_weighted_medians(rows) -> "OrderedDict":
    return OrderedDict((day, weighted_median(day_rows)) for day, day_rows in group_by_date(rows).items())


def percent_change(daily_medians: "OrderedDict", days_ago: int) -> Optional[float]:
    """Change from the date nearest ``days_ago`` before the latest date, in percent."""
    dates = list(daily_medians.keys())
    if len(dates) < 2:
        return None
    latest_date = dates[-1]
    latest = daily_medians[latest_date]
    if latest is None:
        return None
    target = latest_date - timedelta(days=days_ago)
    closest = min(dates, key=lambda d: abs((d - target).days))
    old = daily_medians[closest]
    if not old:
        return None
    return round((latest - old) / old * 100, 2)


def _latest_rows(rows) -> list:
    if not rows:
        return []
    latest = max(r.date for r in rows)
    return [r for r in rows if r.date == latest]


# ---------- KPIs ----------

def supply_signal(rows, dates: Optional[List] = None) -> str:
    """``oversupply`` / ``squeeze`` / ``neutral`` from the last 14 dates against the 14 before."""
    dates = dates if dates is not None else list(group_by_date(rows).keys())
    if len(dates) < SUPPLY_WINDOW:
        return "neutral"
    recent_cutoff = dates[-SUPPLY_WINDOW]
    prior_cutoff = dates[max(0, len(dates) - 2 * SUPPLY_WINDOW)]
    recent = [r for r in rows if r.date >= recent_cutoff]
    prior = [r for r in rows if prior_cutoff <= r.date < recent_cutoff]
    if not recent or not prior:
        return "neutral"

    recent_count = sum(r.listing_count for r in recent)
    prior_count = sum(r.listing_count for r in prior)
    recent_median = weighted_median(recent)
    prior_median = weighted_median(prior)
    if recent_median is None or not prior_median:
        return "neutral"

    count_change = (recent_count - prior_count) / max(prior_count, 1)
    price_change = (recent_median - prior_median) / prior_median
    if count_change > 0.10 and price_change < -0.02:
        return "oversupply"
    if count_change < -0.10 and price_change > 0.02:
        return "squeeze"
    return "neutral"


def compute_kpi(rows) -> KpiSummary:
    if not rows:
        return KpiSummary()
    latest = _latest_rows(rows)
    medians = daily_weighted_medians(rows)
    series = [v for v in medians.values() if v is not None]
    return KpiSummary(
        current_median=weighted_median(latest),
        current_1bed=weighted_median([r for r in latest if r.bedrooms == 1]),
        current_2bed=weighted_median([r for r in latest if r.bedrooms == 2]),
        total_listings=sum(r.listing_count for r in latest),
        change_1m=percent_change(medians, 30),
        change_3m=percent_change(medians, 90),
        volatility=std_dev(series),
        supply_signal=supply_signal(rows, list(medians.keys())),
    )


# ---------- series ----------

def compute_trend(rows) -> List[TrendPoint]:
    points = []
    window: List[float] = []
    for day, day_rows in group_by_date(rows).items():
        median = weighted_median(day_rows)
        if median is not None:
            window.append(median)
            if len(window) > MA_WINDOW:
                window.pop(0)
        ma90 = round(sum(window) / len(window), 2) if len(window) >= MA_MIN_POINTS else None
        points.append(TrendPoint(
            date=day.isoformat(),
            median=median,
            mean=weighted_mean(day_rows),
            p25=weighted_median(day_rows, "p25_price_usd"),
            p75=weighted_median(day_rows, "p75_price_usd"),
            listing_count=sum(r.listing_count for r in day_rows),
            ma90=ma90,
        ))
    return points


def compute_distribution(rows) -> List[DistributionBucket]:
    """Share of the latest day's listings per price bucket, by segment median."""
    buckets = [DistributionBucket(label=label, min=lo, max=hi) for label, lo, hi in BUCKETS]
    total = 0
    for r in _latest_rows(rows):
        if r.median_price_usd is None:
            continue
        for b in buckets:
            if r.median_price_usd >= b.min and (b.max is None or r.median_price_usd < b.max):
                b.count += r.listing_count
                total += r.listing_count
                break
    if total:
        for b in buckets:
            b.percentage = round(b.count / total * 100, 1)
    return buckets


def _by_district(rows) -> Dict[str, list]:
    out: Dict[str, list] = {}
    for r in rows:
        if r.district:
            out.setdefault(r.district, []).append(r)
    return out


def compute_movers(rows) -> List[MoverRow]:
    """Districts ranked by absolute one-month change, top 20."""
    movers = []
    for district, district_rows in _by_district(rows).items():
        medians = daily_weighted_medians(district_rows)
        if len(medians) < 2:
            continue
        latest_day = next(reversed(medians))
        movers.append(MoverRow(
            rank=0,
            district=district,
            change_1m=percent_change(medians, 30),
            change_3m=percent_change(medians, 90),
            median=medians[latest_day],
            volatility=std_dev([v for v in medians.values() if v is not None]),
            listing_count=sum(r.listing_count for r in district_rows if r.date == latest_day),
        ))
    movers.sort(key=lambda m: abs(m.change_1m or 0), reverse=True)
    for i, m in enumerate(movers, start=1):
        m.rank = i
    return movers[:MOVERS_LIMIT]


def compute_district_heatmap(rows) -> List[HeatmapDistrictRow]:
    """Every district's latest-day listing count and weighted median, busiest first."""
    result = []
    for district, district_rows in _by_district(rows).items():
        latest = _latest_rows(district_rows)
        result.append(HeatmapDistrictRow(
            district=district,
            listing_count=sum(r.listing_count for r in latest),
            median_price_usd=weighted_median(latest),
        ))
    result.sort(key=lambda h: (-h.listing_count, h.district))
    return result


def trend_csv(points: List[TrendPoint]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["date", "median", "mean", "p25", "p75", "listingCount", "ma90"])
    for p in points:
        writer.writerow([
            p.date,
            "" if p.median is None else p.median,
            "" if p.mean is None else p.mean,
            "" if p.p25 is None else p.p25,
            "" if p.p75 is None else p.p75,
            p.listing_count,
            "" if p.ma90 is None else p.ma90,
        ])
    return buf.getvalue()
