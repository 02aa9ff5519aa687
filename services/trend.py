"""Least-squares trend extrapolation over a short window."""

from __future__ import annotations

from statistics import linear_regression
from typing import Sequence


class InsufficientDataError(ValueError):
    """Raised when a window is too short to fit a trend line."""


class TrendPredictor:
    """Fits ``value = slope * i + intercept`` over ``i = 0..n-1`` and extrapolates to ``i = n``.

    Values must be ordered oldest first. The fit is recomputed on every call.
    """

    min_points = 2

    def predict_next(self, values: Sequence[float]) -> float:
        count = len(values)
        if count < self.min_points:
            raise InsufficientDataError(
                f"Not enough data for linear regression: size {count}"
            )
        steps = [float(index) for index in range(count)]
        slope, intercept = linear_regression(steps, [float(value) for value in values])
        return slope * count + intercept
