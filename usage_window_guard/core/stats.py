"""
Small statistics helpers shared by the estimators.

Plain-Python implementations; inputs are short lists of window totals
or bucket sums.
"""

import math
from typing import List, Sequence, Tuple


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from negative infinity."""
    return int(math.floor(value + 0.5))


def compute_percentile(values: Sequence[float], percentile: float) -> float:
    """Compute a percentile using linear interpolation between ranks.

    Uses ``index = p/100 * (n - 1)`` and interpolates between the
    floor and ceiling ranks, the same method as numpy's default.

    Args:
        values: Numeric values (any order)
        percentile: Percentile to compute (0-100)

    Returns:
        Exact percentile value

    Raises:
        ValueError: If values is empty or percentile is outside 0-100
    """
    if not values:
        raise ValueError("Values list cannot be empty")

    if percentile < 0 or percentile > 100:
        raise ValueError("Percentile must be between 0 and 100")

    sorted_values = sorted(values)
    n = len(sorted_values)

    position = (percentile / 100.0) * (n - 1)
    lower_index = int(math.floor(position))
    upper_index = min(lower_index + 1, n - 1)
    fraction = position - lower_index

    lower_value = sorted_values[lower_index]
    upper_value = sorted_values[upper_index]

    return lower_value + fraction * (upper_value - lower_value)


def compute_median(values: Sequence[float]) -> float:
    """Median, averaging the two middle values for even counts."""
    return compute_percentile(values, 50)


def compute_mean(values: Sequence[float]) -> float:
    if not values:
        raise ValueError("Values list cannot be empty")
    return sum(values) / len(values)


def compute_population_stddev(values: Sequence[float], mean: float) -> float:
    """Population standard deviation (divides by n) around ``mean``."""
    if not values:
        raise ValueError("Values list cannot be empty")
    variance = sum((value - mean) ** 2 for value in values) / len(values)
    return math.sqrt(variance)


def remove_outliers_iqr(values: Sequence[float], factor: float = 1.5) -> List[float]:
    """Drop values outside ``[Q1 - factor*IQR, Q3 + factor*IQR]``.

    Fewer than four values carry no meaningful quartiles and are
    returned unchanged. Input order is preserved.
    """
    if len(values) < 4:
        return list(values)

    q1 = compute_percentile(values, 25)
    q3 = compute_percentile(values, 75)
    iqr = q3 - q1
    lower_bound = q1 - factor * iqr
    upper_bound = q3 + factor * iqr

    return [value for value in values if lower_bound <= value <= upper_bound]


def linear_regression(xs: Sequence[float], ys: Sequence[float]) -> Tuple[float, float]:
    """Ordinary least squares fit. Returns (slope, intercept)."""
    n = len(xs)
    if n < 2:
        return 0.0, (ys[0] if ys else 0.0)
    x_mean = sum(xs) / n
    y_mean = sum(ys) / n
    ss_xy = sum((x - x_mean) * (y - y_mean) for x, y in zip(xs, ys))
    ss_xx = sum((x - x_mean) ** 2 for x in xs)
    if ss_xx == 0:
        return 0.0, y_mean
    slope = ss_xy / ss_xx
    return slope, y_mean - slope * x_mean
