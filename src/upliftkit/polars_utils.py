"""Utility functions for working with Polars DataFrames."""

from __future__ import annotations

from collections.abc import Sequence

import polars as pl

from upliftkit.exceptions import ColumnsNotFoundError, DuplicateColumnsError, NullValuesError


def validate_columns(columns: Sequence[str], df_columns: Sequence[str]) -> None:
    """Validate that columns exist in the DataFrame and contain no duplicates.

    Args:
        columns (Sequence[str]): Column names to validate.
        df_columns (Sequence[str]): Column names present in the DataFrame.

    Raises:
        ValueError: If columns list is empty.
        DuplicateColumnsError: If columns contain duplicates.
        ColumnsNotFoundError: If any columns do not exist in the DataFrame.
    """
    if len(columns) == 0:
        raise ValueError("columns list must not be empty")
    if len(columns) != len(set(columns)):
        raise DuplicateColumnsError(columns=list(columns))
    missing_columns = set(columns) - set(df_columns)
    if missing_columns:
        raise ColumnsNotFoundError(
            missing_columns=sorted(missing_columns),
            available_columns=list(df_columns),
        )


def validate_no_nulls(df: pl.DataFrame, columns: Sequence[str]) -> None:
    """Raise if any of the given columns contains a null value.

    Args:
        df (pl.DataFrame): The DataFrame to inspect.
        columns (Sequence[str]): Column names to check.

    Raises:
        NullValuesError: If one or more columns hold nulls.
    """
    null_counts = df.select(pl.col(columns).null_count()).row(0, named=True)
    null_columns = [name for name in columns if null_counts[name] > 0]
    if null_columns:
        raise NullValuesError(columns=null_columns)


def sorted_distinct_values(series: pl.Series) -> pl.Series:
    """Return the distinct values of a Series in ascending order.

    Categorical series are compared by their string labels rather than their
    physical encoding, so the order does not depend on category insertion.

    Args:
        series (pl.Series): The Series to inspect.

    Returns:
        pl.Series: Distinct values, sorted ascending.
    """
    if isinstance(series.dtype, (pl.Categorical, pl.Enum)):
        series = series.cast(pl.String)
    return series.unique().sort()
