"""Treatment/outcome summaries, divergence scores, and split gain."""

from __future__ import annotations

import polars as pl

from upliftkit.exceptions import DegenerateGroupError
from upliftkit.uplift_tree.models import DivergenceMetric, UpliftSummary

_COUNT_ALIAS = "__n"
_OUTCOME_SUM_ALIAS = "__outcome_sum"
_NORMALIZATION_OFFSET = 0.5


def summarize(
    frame: pl.DataFrame | pl.LazyFrame,
    *,
    treatment_column: str,
    outcome_column: str,
) -> UpliftSummary | None:
    """Count rows and sum outcomes per treatment arm.

    Accepts a LazyFrame so that a filtered view can be summarized without
    materializing its rows.

    Args:
        frame (pl.DataFrame | pl.LazyFrame): The dataset slice to summarize.
        treatment_column (str): Column holding 0 (control) or 1 (treatment).
        outcome_column (str): Column summed per arm.

    Returns:
        UpliftSummary | None: `(n_c, n_pc, n_t, n_pt)` ordered by ascending
            treatment value, or `None` unless exactly two arms are present.
    """
    grouped = (
        frame.lazy()
        .group_by(treatment_column)
        .agg(
            pl.len().alias(_COUNT_ALIAS),
            pl.col(outcome_column).sum().alias(_OUTCOME_SUM_ALIAS),
        )
        .sort(treatment_column)
        .collect()
    )
    if grouped.height != 2:
        return None
    (n_c, n_t) = grouped[_COUNT_ALIAS].to_list()
    (n_pc, n_pt) = grouped[_OUTCOME_SUM_ALIAS].to_list()
    return UpliftSummary(n_c=n_c, n_pc=n_pc, n_t=n_t, n_pt=n_pt)


def score(summary: UpliftSummary, metric: DivergenceMetric = "euclidean") -> float:
    """Return the divergence between treatment and control outcome rates.

    Args:
        summary (UpliftSummary): Counts and outcome sums of a dataset slice.
        metric (DivergenceMetric): Divergence to compute.

    Returns:
        float: For `"euclidean"`, `(n_pc / n_c - n_pt / n_t) ** 2`.

    Raises:
        DegenerateGroupError: If either arm has a count of zero.
        ValueError: If `metric` is not recognized.
    """
    if summary.n_c == 0 or summary.n_t == 0:
        raise DegenerateGroupError(f"Cannot score a summary with an empty arm: {summary}")
    p = summary.n_pc / summary.n_c
    q = summary.n_pt / summary.n_t
    if metric == "euclidean":
        return (p - q) ** 2
    raise ValueError(f"Unexpected divergence metric: {metric!r}")


def normalize(n_c: int, n_t: int, n_c_left: int, n_t_left: int) -> float:
    """Return the normalization term that penalizes treatment/control imbalance in a split.

    With `p_t = n_t / (n_t + n_c)` and `p_c_left = n_c_left / (n_t_left + n_c_left)`:

        (1 - p_t^2 - p_c^2) * (p_c_left - p_t_left)^2
          + p_t * (1 - p_t_left^2) + p_c * (1 - p_c_left^2) + 0.5

    The result is always at least 0.5.

    Args:
        n_c (int): Control rows in the parent.
        n_t (int): Treatment rows in the parent.
        n_c_left (int): Control rows in the left child.
        n_t_left (int): Treatment rows in the left child.

    Returns:
        float: The normalization divisor.

    Raises:
        DegenerateGroupError: If the parent or the left child has no rows.
    """
    if n_t + n_c == 0 or n_t_left + n_c_left == 0:
        msg = f"Cannot normalize over an empty node: parent=({n_c}, {n_t}), left=({n_c_left}, {n_t_left})"
        raise DegenerateGroupError(msg)
    p_t = n_t / (n_t + n_c)
    p_c = 1.0 - p_t
    p_c_left = n_c_left / (n_t_left + n_c_left)
    p_t_left = 1.0 - p_c_left

    return (
        (1.0 - p_t**2 - p_c**2) * (p_c_left - p_t_left) ** 2
        + p_t * (1.0 - p_t_left**2)
        + p_c * (1.0 - p_c_left**2)
        + _NORMALIZATION_OFFSET
    )


def compute_gain(
    parent: UpliftSummary,
    left: UpliftSummary,
    right: UpliftSummary,
    *,
    left_fraction: float,
    metric: DivergenceMetric = "euclidean",
) -> float:
    """Return the normalized change in divergence achieved by a split.

    Args:
        parent (UpliftSummary): Summary of the node being split.
        left (UpliftSummary): Summary of the true-branch side.
        right (UpliftSummary): Summary of the false-branch side.
        left_fraction (float): Share of the parent's rows on the left side.
        metric (DivergenceMetric): Divergence used for all three scores.

    Returns:
        float: `(score(left) * p + score(right) * (1 - p) - score(parent)) / normalize(...)`.
    """
    weighted = score(left, metric) * left_fraction + score(right, metric) * (1.0 - left_fraction)
    return (weighted - score(parent, metric)) / normalize(parent.n_c, parent.n_t, left.n_c, left.n_t)
