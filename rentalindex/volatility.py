# rentalindex/volatility.py
from datetime import timedelta
from typing import List, Sequence

from .analytics import daily_weighted_medians, std_dev
from .schemas import DistrictVolatility, VolatilityPoint

# CV of 0.30 scores 100
CV_SCALE = 333


def volatility_score(values: Sequence[float]) -> int:
    """0 (flat) to 100 (very volatile) from the coefficient of variation."""
    if len(values) < 2:
        return 0
    mean = sum(values) / len(values)
    if mean == 0:
        return 0
    cv = std_dev(values) / mean
    return min(100, round(cv * CV_SCALE))


def rolling_volatility(rows, window_days: int = 30) -> List[VolatilityPoint]:
    """Std-dev of the daily weighted median over a trailing window ending at each date."""
    medians = list(daily_weighted_medians(rows).items())
    points = []
    for i, (day, _) in enumerate(medians):
        start = day - timedelta(days=window_days)
        window = [m for d, m in medians[: i + 1] if d >= start and m is not None]
        points.append(VolatilityPoint(
            date=day.isoformat(),
            volatility=std_dev(window) if len(window) >= 2 else 0.0,
            window_size=len(window),
        ))
    return points


def district_volatilities(rows, min_points: int = 3) -> List[DistrictVolatility]:
    """Districts ranked by std-dev of their segment medians, most volatile first."""
    by_district = {}
    for r in rows:
        if r.district and r.median_price_usd is not None:
            by_district.setdefault(r.district, []).append(r.median_price_usd)
    result = [
        DistrictVolatility(district=d, volatility=std_dev(values), data_points=len(values))
        for d, values in by_district.items()
        if len(values) >= min_points
    ]
    result.sort(key=lambda v: v.volatility, reverse=True)
    return result
