"""Split-candidate generation and dataset partitioning."""

from __future__ import annotations

import itertools

import numpy as np
import polars as pl

from upliftkit.polars_utils import sorted_distinct_values
from upliftkit.uplift_tree.models import CategoricalSplit, NumericSplit, SplitValue


def generate_split_values(
    series: pl.Series,
    *,
    max_splits: int,
    rng: np.random.Generator,
) -> list[SplitValue]:
    """Produce the candidate split values for one feature column.

    - At most `max_splits` distinct values: every distinct value, ascending.
    - Numeric with more distinct values: walk the sorted column with
      `stride = len(series) // max_splits` and keep the value at every
      position `i` with `i % stride == stride - 1`; equal neighbours are
      collapsed (adjacent duplicates only).
    - Categorical with more distinct values: `max_splits` labels drawn
      without replacement from the distinct labels using `rng`.

    Args:
        series (pl.Series): A Float64 or Categorical feature column.
        max_splits (int): Upper bound on the number of distinct values that
            are all used as candidates.
        rng (np.random.Generator): Random source for categorical sampling.

    Returns:
        list[SplitValue]: Candidates in evaluation order. Empty only when the
            column has no rows.
    """
    distinct_values = sorted_distinct_values(series)
    is_numeric = series.dtype.is_numeric()

    if distinct_values.len() <= max_splits:
        if is_numeric:
            return [NumericSplit(value=v) for v in distinct_values.to_list()]
        return [CategoricalSplit(value=str(v)) for v in distinct_values.to_list()]

    if is_numeric:
        # Only reachable with len(series) > max_splits, so the floor is never hit.
        stride = max(series.len() // max_splits, 1)
        selected = series.sort().to_list()[stride - 1 :: stride]
        return [NumericSplit(value=v) for v, _ in itertools.groupby(selected)]

    labels = distinct_values.to_list()
    chosen = rng.choice(len(labels), size=max_splits, replace=False)
    return [CategoricalSplit(value=str(labels[i])) for i in chosen]


def split_expressions(feature: str, value: SplitValue) -> tuple[pl.Expr, pl.Expr]:
    """Build the true-branch and false-branch row predicates for a split.

    Args:
        feature (str): The feature column to split on.
        value (SplitValue): The split criterion.

    Returns:
        tuple[pl.Expr, pl.Expr]: `(left, right)` filter expressions. Numeric:
            `feature <= v` / `feature > v`. Categorical: `feature == v` /
            `feature != v`.
    """
    column = pl.col(feature)
    if isinstance(value, NumericSplit):
        return column <= value.value, column > value.value
    return column == value.value, column != value.value


def partition(df: pl.DataFrame, feature: str, value: SplitValue) -> tuple[pl.DataFrame, pl.DataFrame]:
    """Divide a dataset into the two disjoint sides of a split.

    Args:
        df (pl.DataFrame): The dataset to partition. Must not contain nulls in
            `feature`.
        feature (str): The feature column to split on.
        value (SplitValue): The split criterion.

    Returns:
        tuple[pl.DataFrame, pl.DataFrame]: `(left, right)`, whose row counts
            sum to `df.height`.

    Examples:
        >>> df = pl.DataFrame({"x": [1.0, 2.0, 3.0]})
        >>> left, right = partition(df, "x", NumericSplit(value=2.0))
        >>> left["x"].to_list(), right["x"].to_list()
        ([1.0, 2.0], [3.0])
    """
    left_expr, right_expr = split_expressions(feature, value)
    return df.filter(left_expr), df.filter(right_expr)
