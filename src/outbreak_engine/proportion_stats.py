from __future__ import annotations

import numpy as np
import pandas as pd
from scipy.stats import norm

DEFAULT_CONFIDENCE = 0.95
Z_95 = 1.96
DEFAULT_SMALL_CELL_THRESHOLD = 5


def _to_float_array(values: pd.Series | np.ndarray | list[float]) -> np.ndarray:
    if isinstance(values, pd.Series):
        return pd.to_numeric(values, errors="coerce").to_numpy(dtype=float)
    return np.asarray(values, dtype=float)


def z_for_confidence(confidence: float = DEFAULT_CONFIDENCE) -> float:
    if not 0.0 < confidence < 1.0:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")
    if confidence == DEFAULT_CONFIDENCE:
        return Z_95
    return float(norm.ppf(0.5 + confidence / 2.0))


def wilson_interval(
    successes: pd.Series | np.ndarray | list[float],
    totals: pd.Series | np.ndarray | list[float],
    confidence: float = DEFAULT_CONFIDENCE,
) -> tuple[np.ndarray, np.ndarray]:
    """Wilson score bounds per element.

    ``n == 0`` gives (0, 0). ``x == 0`` and ``x == n`` use the exact one-sided
    bounds ``1 - alpha**(1/n)`` and ``alpha**(1/n)``. Non-finite inputs give NaN.
    """
    n = _to_float_array(totals)
    k = _to_float_array(successes)
    z = z_for_confidence(confidence)
    alpha = 1.0 - confidence

    lower = np.full(n.shape, np.nan, dtype=float)
    upper = np.full(n.shape, np.nan, dtype=float)

    finite = np.isfinite(n) & np.isfinite(k)
    empty = finite & (n <= 0.0)
    lower[empty] = 0.0
    upper[empty] = 0.0

    valid = finite & (n > 0.0)
    if not np.any(valid):
        return lower, upper

    n_valid = n[valid]
    p_valid = np.clip(k[valid] / n_valid, 0.0, 1.0)
    z2 = z * z
    denom = 1.0 + (z2 / n_valid)
    center = p_valid + (z2 / (2.0 * n_valid))
    margin = z * np.sqrt((p_valid * (1.0 - p_valid) + (z2 / (4.0 * n_valid))) / n_valid)

    lower[valid] = np.clip((center - margin) / denom, 0.0, 1.0)
    upper[valid] = np.clip((center + margin) / denom, 0.0, 1.0)

    with np.errstate(divide="ignore", invalid="ignore"):
        exact_bound = np.power(alpha, 1.0 / n)
    none_observed = valid & (k <= 0.0)
    lower[none_observed] = 0.0
    upper[none_observed] = 1.0 - exact_bound[none_observed]
    all_observed = valid & (k >= n)
    lower[all_observed] = exact_bound[all_observed]
    upper[all_observed] = 1.0
    return lower, upper


def wilson_score_interval(
    successes: int,
    total: int,
    confidence: float = DEFAULT_CONFIDENCE,
) -> tuple[float, float]:
    lower, upper = wilson_interval([successes], [total], confidence=confidence)
    return float(lower[0]), float(upper[0])


def wilson_half_width(
    successes: pd.Series | np.ndarray | list[float],
    totals: pd.Series | np.ndarray | list[float],
    confidence: float = DEFAULT_CONFIDENCE,
) -> np.ndarray:
    lower, upper = wilson_interval(successes=successes, totals=totals, confidence=confidence)
    return (upper - lower) / 2.0


def small_cell_mask(
    counts: pd.Series | np.ndarray | list[float],
    threshold: int = DEFAULT_SMALL_CELL_THRESHOLD,
) -> np.ndarray:
    """Flag counts with ``0 < count < threshold`` (disclosure risk)."""
    values = _to_float_array(counts)
    limit = float(max(1, int(threshold)))
    return np.isfinite(values) & (values > 0.0) & (values < limit)
